from __future__ import annotations

import io
import json
import unittest
from datetime import date
from unittest.mock import MagicMock, patch
from urllib.error import HTTPError, URLError

from stock_recon.errors import NotifierError
from stock_recon.services.notification_service import LogNotifier, WebhookNotifier, over_tolerance_payload


class OverTolerancePayloadTests(unittest.TestCase):
    def test_payload_shape(self) -> None:
        payload = over_tolerance_payload(store_id=4, comp_date=date(2024, 2, 29), over_tolerance_count=3)

        self.assertEqual(payload['type'], 'stock_alert')
        self.assertEqual(payload['store_id'], 4)
        self.assertIn('3 item(s)', payload['body'])
        self.assertEqual(payload['data'], {'date': '2024-02-29', 'total_diffs': 3, 'url': '/stock/comparison'})


class LogNotifierTests(unittest.TestCase):
    def test_logs_alert(self) -> None:
        with self.assertLogs('stock_recon.services.notification_service', level='INFO') as captured:
            LogNotifier().notify_over_tolerance(store_id=1, comp_date=date(2024, 1, 1), over_tolerance_count=2)

        self.assertIn('store 1', captured.output[0])


class WebhookNotifierTests(unittest.TestCase):
    def test_requires_url(self) -> None:
        with self.assertRaises(ValueError):
            WebhookNotifier(url='')

    def test_posts_json_payload(self) -> None:
        response = MagicMock()
        response.__enter__.return_value = response
        response.read.return_value = b'{}'

        with patch('stock_recon.services.notification_service.urlopen', return_value=response) as urlopen_mock:
            WebhookNotifier(url='https://hooks.example.test/stock', timeout_seconds=3).notify_over_tolerance(
                store_id=2,
                comp_date=date(2024, 1, 5),
                over_tolerance_count=1,
            )

        request = urlopen_mock.call_args.args[0]
        self.assertEqual(urlopen_mock.call_args.kwargs['timeout'], 3)
        self.assertEqual(request.get_method(), 'POST')
        self.assertEqual(request.full_url, 'https://hooks.example.test/stock')
        body = json.loads(request.data.decode('utf-8'))
        self.assertEqual(body['data']['total_diffs'], 1)

    def test_http_error_becomes_notifier_error(self) -> None:
        error = HTTPError('https://hooks.example.test/stock', 502, 'Bad Gateway', {}, io.BytesIO(b'upstream down'))

        with patch('stock_recon.services.notification_service.urlopen', side_effect=error):
            with self.assertRaises(NotifierError) as ctx:
                WebhookNotifier(url='https://hooks.example.test/stock').notify_over_tolerance(
                    store_id=2,
                    comp_date=date(2024, 1, 5),
                    over_tolerance_count=1,
                )

        self.assertIn('502', str(ctx.exception))
        self.assertIn('upstream down', str(ctx.exception))

    def test_network_error_becomes_notifier_error(self) -> None:
        with patch('stock_recon.services.notification_service.urlopen', side_effect=URLError('timed out')):
            with self.assertRaises(NotifierError):
                WebhookNotifier(url='https://hooks.example.test/stock').notify_over_tolerance(
                    store_id=2,
                    comp_date=date(2024, 1, 5),
                    over_tolerance_count=1,
                )


if __name__ == '__main__':
    unittest.main()
