from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum

from stock_recon.errors import ValidationError
from stock_recon.models import CountStatus
from stock_recon.services.reconciliation_service import ReconciliationSummary, reconcile
from stock_recon.services.stores import StockBackend

logger = logging.getLogger(__name__)


class AutoCompareReason(str, Enum):
    COMPARED = 'compared'
    NO_DATA = 'no_data'
    NO_MANUAL = 'no_manual'
    NO_POS = 'no_pos'


@dataclass(frozen=True)
class MissingItem:
    product_code: str
    product_name: str


@dataclass(frozen=True)
class AutoCompareResult:
    compared: bool
    reason: AutoCompareReason
    summary: ReconciliationSummary | None = None
    missing_items: list[MissingItem] | None = None


@dataclass(frozen=True)
class PosUploadCheck:
    exists: bool
    ingest_batch_id: int | None = None


def find_missing_items(backend: StockBackend, *, store_id: int, comp_date: date, batch_id: int) -> list[MissingItem]:
    """POS items that should have been counted (active and counted products) but have no manual count."""
    manual_codes = {row.product_code for row in backend.capture.list_manual_counts(store_id, comp_date)}
    countable = {
        product.product_code: product.product_name
        for product in backend.catalog.list_products(store_id)
        if product.active and product.count_status == CountStatus.ACTIVE
    }

    seen: set[str] = set()
    missing: list[MissingItem] = []
    for item in backend.capture.list_ingest_items(batch_id):
        code = item.product_code
        if not code or code not in countable or code in manual_codes or code in seen:
            continue
        seen.add(code)
        missing.append(
            MissingItem(
                product_code=code,
                product_name=countable[code] or item.product_name or code,
            )
        )
    return missing


def auto_compare_if_ready(backend: StockBackend, *, store_id: int, comp_date: date) -> AutoCompareResult:
    """
    Run a reconciliation when both a manual count and a POS upload exist for the date.

    Called after either side is saved, so whichever arrives second triggers the run.
    """
    if not store_id or not comp_date:
        raise ValidationError('store_id and date are required')

    has_manual = backend.capture.has_manual_counts(store_id, comp_date)
    batch_id = backend.capture.latest_ingest_batch(store_id, comp_date)
    has_pos = batch_id is not None

    if not has_manual and not has_pos:
        return AutoCompareResult(compared=False, reason=AutoCompareReason.NO_DATA)
    if not has_manual:
        return AutoCompareResult(compared=False, reason=AutoCompareReason.NO_MANUAL)
    if not has_pos:
        return AutoCompareResult(compared=False, reason=AutoCompareReason.NO_POS)

    summary = reconcile(backend, store_id=store_id, comp_date=comp_date)
    missing = find_missing_items(backend, store_id=store_id, comp_date=comp_date, batch_id=batch_id)
    if missing:
        logger.info('Store %s on %s has %s POS items without a manual count', store_id, comp_date, len(missing))

    return AutoCompareResult(
        compared=True,
        reason=AutoCompareReason.COMPARED,
        summary=summary,
        missing_items=missing or None,
    )


def check_existing_pos_upload(backend: StockBackend, *, store_id: int, comp_date: date) -> PosUploadCheck:
    if not store_id or not comp_date:
        raise ValidationError('store_id and date are required')
    batch_id = backend.capture.latest_ingest_batch(store_id, comp_date)
    return PosUploadCheck(exists=batch_id is not None, ingest_batch_id=batch_id)
