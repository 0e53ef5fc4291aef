from __future__ import annotations

import unittest
from datetime import date
from unittest.mock import MagicMock

from stock_recon.errors import ValidationError
from stock_recon.models import CountStatus
from stock_recon.services.auto_compare_service import (
    AutoCompareReason,
    MissingItem,
    auto_compare_if_ready,
    check_existing_pos_upload,
)
from stock_recon.services.memory_stores import build_memory_backend

STORE_ID = 3
BUSINESS_DATE = date(2024, 5, 2)


class AutoCompareTests(unittest.TestCase):
    def setUp(self) -> None:
        self.backend = build_memory_backend(notifier=MagicMock())
        self.capture = self.backend.capture

    def test_no_data(self) -> None:
        result = auto_compare_if_ready(self.backend, store_id=STORE_ID, comp_date=BUSINESS_DATE)

        self.assertFalse(result.compared)
        self.assertEqual(result.reason, AutoCompareReason.NO_DATA)
        self.assertIsNone(result.summary)
        self.assertEqual(self.capture.comparisons, {})

    def test_pos_only_waits_for_manual_count(self) -> None:
        self.capture.add_pos_batch(STORE_ID, BUSINESS_DATE, {'A': 1})

        result = auto_compare_if_ready(self.backend, store_id=STORE_ID, comp_date=BUSINESS_DATE)

        self.assertFalse(result.compared)
        self.assertEqual(result.reason, AutoCompareReason.NO_MANUAL)
        self.assertEqual(self.capture.comparisons, {})

    def test_manual_only_waits_for_pos_upload(self) -> None:
        self.capture.add_manual_count(STORE_ID, BUSINESS_DATE, 'A', 1)

        result = auto_compare_if_ready(self.backend, store_id=STORE_ID, comp_date=BUSINESS_DATE)

        self.assertFalse(result.compared)
        self.assertEqual(result.reason, AutoCompareReason.NO_POS)

    def test_other_dates_do_not_count(self) -> None:
        self.capture.add_manual_count(STORE_ID, BUSINESS_DATE, 'A', 1)
        self.capture.add_pos_batch(STORE_ID, date(2024, 5, 1), {'A': 1})

        result = auto_compare_if_ready(self.backend, store_id=STORE_ID, comp_date=BUSINESS_DATE)

        self.assertEqual(result.reason, AutoCompareReason.NO_POS)

    def test_both_sides_present_runs_comparison(self) -> None:
        self.backend.catalog.add_product(STORE_ID, 'A', 'Lager')
        self.capture.add_manual_count(STORE_ID, BUSINESS_DATE, 'A', 4)
        self.capture.add_pos_batch(STORE_ID, BUSINESS_DATE, {'A': 4})

        result = auto_compare_if_ready(self.backend, store_id=STORE_ID, comp_date=BUSINESS_DATE)

        self.assertTrue(result.compared)
        self.assertEqual(result.reason, AutoCompareReason.COMPARED)
        self.assertEqual(result.summary.total, 1)
        self.assertEqual(result.summary.match, 1)
        self.assertIsNone(result.missing_items)
        self.assertEqual(len(self.capture.list_comparisons(STORE_ID, BUSINESS_DATE)), 1)

    def test_reports_countable_pos_items_missing_from_manual_count(self) -> None:
        catalog = self.backend.catalog
        catalog.add_product(STORE_ID, 'A', 'Lager')
        catalog.add_product(STORE_ID, 'B', 'Stout')
        catalog.add_product(STORE_ID, 'C', 'Bar snacks', count_status=CountStatus.EXCLUDED)
        catalog.add_product(STORE_ID, 'D', 'Retired cider', active=False)
        self.capture.add_manual_count(STORE_ID, BUSINESS_DATE, 'A', 4)
        self.capture.add_pos_batch(STORE_ID, BUSINESS_DATE, {'A': 4, 'B': 2, 'C': 9, 'D': 1, 'UNKNOWN': 1})

        result = auto_compare_if_ready(self.backend, store_id=STORE_ID, comp_date=BUSINESS_DATE)

        self.assertTrue(result.compared)
        self.assertEqual(result.missing_items, [MissingItem(product_code='B', product_name='Stout')])

    def test_requires_store_and_date(self) -> None:
        with self.assertRaises(ValidationError):
            auto_compare_if_ready(self.backend, store_id=None, comp_date=BUSINESS_DATE)
        with self.assertRaises(ValidationError):
            auto_compare_if_ready(self.backend, store_id=STORE_ID, comp_date=None)


class PosUploadCheckTests(unittest.TestCase):
    def test_reports_latest_batch(self) -> None:
        backend = build_memory_backend(notifier=MagicMock())
        self.assertFalse(check_existing_pos_upload(backend, store_id=STORE_ID, comp_date=BUSINESS_DATE).exists)

        backend.capture.add_pos_batch(STORE_ID, BUSINESS_DATE, {'A': 1})
        latest = backend.capture.add_pos_batch(STORE_ID, BUSINESS_DATE, {'A': 2})

        check = check_existing_pos_upload(backend, store_id=STORE_ID, comp_date=BUSINESS_DATE)
        self.assertTrue(check.exists)
        self.assertEqual(check.ingest_batch_id, latest)


if __name__ == '__main__':
    unittest.main()
