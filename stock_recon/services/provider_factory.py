from __future__ import annotations

from functools import lru_cache

from sqlalchemy.orm import Session

from stock_recon.config import settings
from stock_recon.services.memory_stores import build_memory_backend
from stock_recon.services.notification_service import LogNotifier, WebhookNotifier
from stock_recon.services.sql_stores import build_sql_backend
from stock_recon.services.stores import Notifier, StockBackend


@lru_cache(maxsize=1)
def get_notifier() -> Notifier:
    provider = settings.notifier_provider.strip().lower()
    if provider == 'webhook':
        return WebhookNotifier(
            url=settings.notifier_webhook_url or '',
            timeout_seconds=settings.notifier_timeout_seconds,
        )
    return LogNotifier()


@lru_cache(maxsize=1)
def _memory_backend() -> StockBackend:
    return build_memory_backend(notifier=get_notifier())


def build_backend(db: Session) -> StockBackend:
    backend = settings.store_backend.strip().lower()
    if backend == 'memory':
        return _memory_backend()
    return build_sql_backend(db, notifier=get_notifier())
