from __future__ import annotations

import json
import logging
from datetime import date
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from stock_recon.errors import NotifierError

logger = logging.getLogger(__name__)

COMPARISON_URL = '/stock/comparison'


def over_tolerance_payload(*, store_id: int, comp_date: date, over_tolerance_count: int) -> dict:
    return {
        'store_id': store_id,
        'type': 'stock_alert',
        'title': 'Stock comparison result',
        'body': f'{over_tolerance_count} item(s) differ beyond the allowed tolerance',
        'data': {
            'date': comp_date.isoformat(),
            'total_diffs': over_tolerance_count,
            'url': COMPARISON_URL,
        },
    }


class LogNotifier:
    """Records the alert in the application log instead of delivering it."""

    def notify_over_tolerance(self, *, store_id: int, comp_date: date, over_tolerance_count: int) -> None:
        payload = over_tolerance_payload(store_id=store_id, comp_date=comp_date, over_tolerance_count=over_tolerance_count)
        logger.info('Over-tolerance alert for store %s on %s: %s', store_id, comp_date, payload['body'])


class WebhookNotifier:
    def __init__(self, *, url: str, timeout_seconds: int = 10) -> None:
        if not url:
            raise ValueError('NOTIFIER_WEBHOOK_URL is required when NOTIFIER_PROVIDER=webhook')
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.headers = {'Content-Type': 'application/json'}

    def notify_over_tolerance(self, *, store_id: int, comp_date: date, over_tolerance_count: int) -> None:
        payload = over_tolerance_payload(store_id=store_id, comp_date=comp_date, over_tolerance_count=over_tolerance_count)
        req = Request(
            url=self.url,
            data=json.dumps(payload).encode('utf-8'),
            headers=self.headers,
            method='POST',
        )
        try:
            with urlopen(req, timeout=self.timeout_seconds) as response:
                response.read()
        except HTTPError as exc:
            body = exc.read().decode('utf-8', errors='ignore') if exc.fp else ''
            raise NotifierError(f'Notifier webhook error {exc.code}: {body}') from exc
        except URLError as exc:
            raise NotifierError(f'Notifier webhook network error: {exc.reason}') from exc
