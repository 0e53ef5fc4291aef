from __future__ import annotations

import unittest
from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

from stock_recon.errors import ValidationError
from stock_recon.services.auto_compare_service import AutoCompareReason, auto_compare_if_ready
from stock_recon.services.manual_count_service import save_manual_counts
from stock_recon.services.memory_stores import build_memory_backend
from stock_recon.services.stores import ManualCountInput

STORE_ID = 5
COUNT_DATE = date(2024, 9, 1)


class SaveManualCountsTests(unittest.TestCase):
    def setUp(self) -> None:
        self.backend = build_memory_backend(notifier=MagicMock())

    def test_replaces_previous_counts_for_the_day(self) -> None:
        self.backend.capture.add_manual_count(STORE_ID, COUNT_DATE, 'OLD', 9)
        self.backend.capture.add_manual_count(STORE_ID, date(2024, 8, 31), 'KEEP', 1)

        result = save_manual_counts(
            self.backend,
            store_id=STORE_ID,
            count_date=COUNT_DATE,
            counts=[ManualCountInput('A', Decimal('3')), ManualCountInput('B', Decimal('0'))],
        )

        self.assertEqual(result.saved, 2)
        codes = [row.product_code for row in self.backend.capture.list_manual_counts(STORE_ID, COUNT_DATE)]
        self.assertEqual(codes, ['A', 'B'])
        self.assertTrue(self.backend.capture.has_manual_counts(STORE_ID, date(2024, 8, 31)))

    def test_repeated_code_keeps_last_quantity(self) -> None:
        save_manual_counts(
            self.backend,
            store_id=STORE_ID,
            count_date=COUNT_DATE,
            counts=[ManualCountInput('A', Decimal('3')), ManualCountInput('A', Decimal('4'))],
        )

        rows = self.backend.capture.list_manual_counts(STORE_ID, COUNT_DATE)
        self.assertEqual([(row.product_code, row.quantity) for row in rows], [('A', Decimal('4'))])

    def test_writes_count_saved_audit(self) -> None:
        save_manual_counts(
            self.backend,
            store_id=STORE_ID,
            count_date=COUNT_DATE,
            counts=[ManualCountInput('A', Decimal('3'))],
        )

        entries = self.backend.audit.of_type('STOCK_COUNT_SAVED')
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].table_name, 'manual_counts')
        self.assertEqual(entries[0].new_value, {'count_date': '2024-09-01', 'items_count': 1})

    def test_save_after_pos_upload_makes_date_comparable(self) -> None:
        self.backend.capture.add_pos_batch(STORE_ID, COUNT_DATE, {'A': 3})
        self.assertEqual(
            auto_compare_if_ready(self.backend, store_id=STORE_ID, comp_date=COUNT_DATE).reason,
            AutoCompareReason.NO_MANUAL,
        )

        save_manual_counts(
            self.backend,
            store_id=STORE_ID,
            count_date=COUNT_DATE,
            counts=[ManualCountInput('A', Decimal('3'))],
        )

        result = auto_compare_if_ready(self.backend, store_id=STORE_ID, comp_date=COUNT_DATE)
        self.assertTrue(result.compared)
        self.assertEqual(result.summary.match, 1)

    def test_validation(self) -> None:
        cases = [
            {'store_id': None, 'count_date': COUNT_DATE, 'counts': [ManualCountInput('A', Decimal('1'))]},
            {'store_id': STORE_ID, 'count_date': None, 'counts': [ManualCountInput('A', Decimal('1'))]},
            {'store_id': STORE_ID, 'count_date': COUNT_DATE, 'counts': []},
            {'store_id': STORE_ID, 'count_date': COUNT_DATE, 'counts': [ManualCountInput('', Decimal('1'))]},
            {'store_id': STORE_ID, 'count_date': COUNT_DATE, 'counts': [ManualCountInput('A', Decimal('-1'))]},
        ]
        for case in cases:
            with self.subTest(case=case):
                with self.assertRaises(ValidationError):
                    save_manual_counts(self.backend, **case)
        self.assertEqual(self.backend.audit.entries, [])


if __name__ == '__main__':
    unittest.main()
