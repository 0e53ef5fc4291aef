from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date

from stock_recon.errors import ValidationError
from stock_recon.services.audit_service import AuditAction, emit_audit
from stock_recon.services.stores import ManualCountInput, StockBackend

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ManualCountSaveResult:
    count_date: date
    saved: int


def _latest_per_code(counts: list[ManualCountInput]) -> list[ManualCountInput]:
    by_code: dict[str, ManualCountInput] = {}
    for count in counts:
        by_code[count.product_code] = count
    return list(by_code.values())


def save_manual_counts(
    backend: StockBackend,
    *,
    store_id: int,
    count_date: date | None,
    counts: list[ManualCountInput],
) -> ManualCountSaveResult:
    """
    Replace the day's manual counts for a store with ``counts``.

    A product code listed twice keeps its last quantity. The previous counts for
    the date are removed first, so a save is the full count for that day.
    """
    if not store_id or not count_date:
        raise ValidationError('store_id and count_date are required')
    if not counts:
        raise ValidationError('At least one manual count is required')
    for count in counts:
        if not count.product_code:
            raise ValidationError('Every manual count needs a product_code')
        if count.quantity < 0:
            raise ValidationError(f'Manual count for {count.product_code} cannot be negative')

    rows = _latest_per_code(counts)
    saved = backend.capture.replace_manual_counts(store_id, count_date, rows)

    emit_audit(
        backend.audit,
        store_id=store_id,
        action_type=AuditAction.STOCK_COUNT_SAVED,
        table_name='manual_counts',
        new_value={'count_date': count_date.isoformat(), 'items_count': saved},
    )
    logger.info('Saved %s manual counts for store %s on %s', saved, store_id, count_date)
    return ManualCountSaveResult(count_date=count_date, saved=saved)
