from __future__ import annotations

import unittest
from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock, patch

from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from stock_recon.db import get_db
from stock_recon.errors import PersistenceError
from stock_recon.main import app
from stock_recon.models import Comparison, IngestBatch, ManualCount, Product, Store, StoreSetting
from stock_recon.services import provider_factory
from test_sql_stores import make_sqlite_engine

BUSINESS_DATE = date(2024, 8, 9)


class StockRouterTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = make_sqlite_engine()
        self.Session = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)

        with self.Session() as db:
            store = Store(name='Quay Bar', active=True)
            db.add(store)
            db.flush()
            db.add(StoreSetting(store_id=store.id, diff_tolerance_percent=Decimal('5')))
            db.add(Product(store_id=store.id, product_code='LAG', product_name='Lager', active=True))
            db.add(Product(store_id=store.id, product_code='STT', product_name='Stout', active=False))
            db.commit()
            self.store_id = store.id

        def override_get_db():
            db = self.Session()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self.engine.dispose()

    def _add_manual(self, code: str, qty: str) -> None:
        with self.Session() as db:
            db.add(
                ManualCount(
                    store_id=self.store_id,
                    count_date=BUSINESS_DATE,
                    product_code=code,
                    count_quantity=Decimal(qty),
                )
            )
            db.commit()

    def _upload(self, items: list[dict], **extra) -> dict:
        response = self.client.post(
            '/stock/process-txt',
            json={'store_id': self.store_id, 'upload_date': BUSINESS_DATE.isoformat(), 'items': items, **extra},
        )
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()

    def test_process_txt_syncs_catalog(self) -> None:
        body = self._upload(
            [
                {'product_code': 'LAG', 'product_name': 'Lager', 'quantity': 0},
                {'product_code': ' STT ', 'product_name': 'Stout', 'quantity': 12},
                {'product_code': 'GIN', 'product_name': 'Gin', 'quantity': 3, 'unit': 'bottle', 'category': 'spirits'},
            ]
        )

        self.assertTrue(body['success'])
        self.assertEqual(
            body['summary'],
            {'total_items': 3, 'matched': 2, 'new_added': 1, 'zero_qty': 1, 'deactivated': 1, 'reactivated': 1},
        )
        self.assertTrue(all(step['ok'] for step in body['steps']))
        self.assertIsNone(body['auto_compare'])

        with self.Session() as db:
            self.assertFalse(db.query(Product).filter_by(product_code='LAG').one().active)
            self.assertTrue(db.query(Product).filter_by(product_code='STT').one().active)
            self.assertEqual(db.query(Product).filter_by(product_code='GIN').one().category, 'spirits')

        exists = self.client.get('/stock/pos-upload', params={'store_id': self.store_id, 'date': BUSINESS_DATE.isoformat()})
        self.assertEqual(exists.status_code, 200)
        self.assertEqual(exists.json(), {'exists': True, 'ingest_batch_id': body['ingest_batch_id']})

    def test_process_txt_with_auto_compare(self) -> None:
        self._add_manual('LAG', '10')

        body = self._upload(
            [
                {'product_code': 'LAG', 'product_name': 'Lager', 'quantity': 8},
                {'product_code': 'STT', 'product_name': 'Stout', 'quantity': 4},
            ],
            auto_compare=True,
        )

        auto = body['auto_compare']
        self.assertTrue(auto['compared'])
        self.assertEqual(auto['reason'], 'compared')
        self.assertEqual(auto['summary']['over_tolerance'], 1)
        self.assertEqual(auto['summary']['pos_only'], 1)
        # STT was reactivated by the same upload, so it is now expected in the count.
        self.assertEqual(auto['missing_items'], [{'product_code': 'STT', 'product_name': 'Stout'}])

        listing = self.client.get(
            '/stock/comparisons',
            params={'store_id': self.store_id, 'comp_date': BUSINESS_DATE.isoformat()},
        )
        self.assertEqual(listing.status_code, 200)
        rows = {row['product_code']: row for row in listing.json()['rows']}
        self.assertEqual(rows['LAG']['diff_percent'], 25.0)
        self.assertEqual(rows['LAG']['status'], 'pending')
        self.assertEqual(rows['STT']['status'], 'approved')
        self.assertIsNone(rows['STT']['manual_quantity'])

    def test_compare_endpoint(self) -> None:
        self._add_manual('LAG', '4')
        self._upload([{'product_code': 'LAG', 'product_name': 'Lager', 'quantity': 4}])

        response = self.client.post(
            '/stock/compare',
            json={'store_id': self.store_id, 'comp_date': BUSINESS_DATE.isoformat()},
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['summary']['match'], 1)

    def test_auto_compare_waits_for_pos(self) -> None:
        self._add_manual('LAG', '4')

        response = self.client.post(
            '/stock/auto-compare',
            json={'store_id': self.store_id, 'date': BUSINESS_DATE.isoformat()},
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {'compared': False, 'reason': 'no_pos', 'summary': None, 'missing_items': None, 'error': None},
        )

    def test_empty_upload_is_rejected(self) -> None:
        response = self.client.post(
            '/stock/process-txt',
            json={'store_id': self.store_id, 'upload_date': BUSINESS_DATE.isoformat(), 'items': []},
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['detail']['code'], 'validation_error')

    def test_negative_quantity_fails_request_validation(self) -> None:
        response = self.client.post(
            '/stock/process-txt',
            json={
                'store_id': self.store_id,
                'upload_date': BUSINESS_DATE.isoformat(),
                'items': [{'product_code': 'LAG', 'quantity': -1}],
            },
        )

        self.assertEqual(response.status_code, 422)

    def test_missing_comparison_is_not_found(self) -> None:
        response = self.client.get(
            '/stock/comparisons',
            params={'store_id': self.store_id, 'comp_date': BUSINESS_DATE.isoformat()},
        )

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()['detail']['code'], 'not_found')

    def _count(self, model) -> int:
        with self.Session() as db:
            return db.query(model).count()

    def test_compare_alerts_owners_after_commit(self) -> None:
        self._add_manual('LAG', '10')
        self._upload([{'product_code': 'LAG', 'product_name': 'Lager', 'quantity': 1}])
        notifier = MagicMock()

        with patch.object(provider_factory, 'get_notifier', return_value=notifier):
            response = self.client.post(
                '/stock/compare',
                json={'store_id': self.store_id, 'comp_date': BUSINESS_DATE.isoformat()},
            )

        self.assertEqual(response.status_code, 200)
        notifier.notify_over_tolerance.assert_called_once_with(
            store_id=self.store_id,
            comp_date=BUSINESS_DATE,
            over_tolerance_count=1,
        )

    def test_compare_commit_failure_sends_no_alert(self) -> None:
        self._add_manual('LAG', '10')
        self._upload([{'product_code': 'LAG', 'product_name': 'Lager', 'quantity': 1}])
        notifier = MagicMock()

        with patch.object(provider_factory, 'get_notifier', return_value=notifier), patch.object(
            Session,
            'commit',
            side_effect=OperationalError('COMMIT', {}, Exception('disk I/O error')),
        ):
            response = self.client.post(
                '/stock/compare',
                json={'store_id': self.store_id, 'comp_date': BUSINESS_DATE.isoformat()},
            )

        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()['detail']['code'], 'persistence_error')
        notifier.notify_over_tolerance.assert_not_called()
        self.assertEqual(self._count(Comparison), 0)

    def test_failed_auto_compare_keeps_saved_upload(self) -> None:
        self._add_manual('LAG', '10')

        with patch(
            'stock_recon.routers.stock.auto_compare_if_ready',
            side_effect=PersistenceError('Failed to fetch manual counts'),
        ):
            body = self._upload(
                [{'product_code': 'LAG', 'product_name': 'Lager', 'quantity': 8}],
                auto_compare=True,
            )

        self.assertTrue(body['success'])
        self.assertEqual(body['summary']['matched'], 1)
        auto = body['auto_compare']
        self.assertFalse(auto['compared'])
        self.assertEqual(auto['reason'], 'error')
        self.assertEqual(auto['error'], {'code': 'persistence_error', 'message': 'Failed to fetch manual counts'})
        self.assertEqual(self._count(IngestBatch), 1)
        self.assertEqual(self._count(Comparison), 0)

    def test_manual_counts_save_replaces_and_triggers_compare(self) -> None:
        self._upload([{'product_code': 'LAG', 'product_name': 'Lager', 'quantity': 6}])
        self._add_manual('OLD', '3')

        response = self.client.post(
            '/stock/manual-counts',
            json={
                'store_id': self.store_id,
                'count_date': BUSINESS_DATE.isoformat(),
                'counts': [{'product_code': ' LAG ', 'quantity': 6, 'notes': 'cooler'}],
                'auto_compare': True,
            },
        )

        self.assertEqual(response.status_code, 200, response.text)
        body = response.json()
        self.assertEqual(body['saved'], 1)
        self.assertTrue(body['auto_compare']['compared'])
        self.assertEqual(body['auto_compare']['summary']['match'], 1)
        self.assertEqual(body['auto_compare']['summary']['total'], 1)
        with self.Session() as db:
            codes = [row.product_code for row in db.query(ManualCount).all()]
        self.assertEqual(codes, ['LAG'])

    def test_manual_counts_without_pos_upload_wait(self) -> None:
        response = self.client.post(
            '/stock/manual-counts',
            json={
                'store_id': self.store_id,
                'count_date': BUSINESS_DATE.isoformat(),
                'counts': [{'product_code': 'LAG', 'quantity': 2}],
                'auto_compare': True,
            },
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['auto_compare']['reason'], 'no_pos')

    def test_manual_counts_require_at_least_one_line(self) -> None:
        response = self.client.post(
            '/stock/manual-counts',
            json={'store_id': self.store_id, 'count_date': BUSINESS_DATE.isoformat(), 'counts': []},
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['detail']['code'], 'validation_error')

    def test_memory_backend_reaches_compared_over_http(self) -> None:
        provider_factory.get_notifier.cache_clear()
        provider_factory._memory_backend.cache_clear()
        self.addCleanup(provider_factory._memory_backend.cache_clear)
        self.addCleanup(provider_factory.get_notifier.cache_clear)

        with patch.object(provider_factory, 'settings') as settings_mock:
            settings_mock.store_backend = 'memory'
            settings_mock.notifier_provider = 'log'
            self._upload([{'product_code': 'LAG', 'product_name': 'Lager', 'quantity': 5}])
            response = self.client.post(
                '/stock/manual-counts',
                json={
                    'store_id': self.store_id,
                    'count_date': BUSINESS_DATE.isoformat(),
                    'counts': [{'product_code': 'LAG', 'quantity': 5}],
                    'auto_compare': True,
                },
            )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['auto_compare']['reason'], 'compared')
        self.assertEqual(self._count(IngestBatch), 0)

    def test_healthz(self) -> None:
        response = self.client.get('/healthz')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.text, 'ok')


if __name__ == '__main__':
    unittest.main()
