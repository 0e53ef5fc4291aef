from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from stock_recon.errors import PersistenceError, ValidationError
from stock_recon.models import IngestBatchStatus
from stock_recon.services.audit_service import AuditAction, emit_audit
from stock_recon.services.stores import IngestItemInput, NewProduct, ProductRecord, StockBackend

logger = logging.getLogger(__name__)

TXT_CONFIDENCE = Decimal('100')
UPLOAD_METHOD_TXT = 'txt'

STEP_AUTO_ADD = 'auto_add'
STEP_AUTO_DEACTIVATE = 'auto_deactivate'
STEP_AUTO_REACTIVATE = 'auto_reactivate'


@dataclass(frozen=True)
class StepOutcome:
    step: str
    ok: bool
    affected: int = 0
    error: str | None = None


@dataclass(frozen=True)
class CatalogSyncResult:
    total_items: int
    matched: int
    new_added: int
    zero_qty: int
    deactivated: int
    reactivated: int
    ingest_batch_id: int
    steps: tuple[StepOutcome, ...] = field(default_factory=tuple)

    @property
    def failed_steps(self) -> list[StepOutcome]:
        return [step for step in self.steps if not step.ok]

    def summary(self) -> dict[str, int]:
        return {
            'total_items': self.total_items,
            'matched': self.matched,
            'new_added': self.new_added,
            'zero_qty': self.zero_qty,
            'deactivated': self.deactivated,
            'reactivated': self.reactivated,
        }


@dataclass
class _Classification:
    matched: list[IngestItemInput] = field(default_factory=list)
    new_items: list[IngestItemInput] = field(default_factory=list)
    zero_qty: list[IngestItemInput] = field(default_factory=list)


def _has_catalog_fields(item: IngestItemInput) -> bool:
    return bool(item.product_code and item.product_name and item.unit and item.category)


def classify_items(items: list[IngestItemInput], product_map: dict[str, ProductRecord]) -> _Classification:
    result = _Classification()
    new_codes: set[str] = set()
    for item in items:
        if item.quantity == 0:
            result.zero_qty.append(item)

        if item.product_code and item.product_code in product_map:
            result.matched.append(item)
        elif _has_catalog_fields(item) and item.product_code not in new_codes:
            new_codes.add(item.product_code)
            result.new_items.append(item)
        # Unknown items without full catalog fields are only stored as batch items.
    return result


def _unique_codes(items: list[IngestItemInput]) -> list[str]:
    return list(dict.fromkeys(item.product_code for item in items if item.product_code))


def _auto_add(
    backend: StockBackend,
    *,
    store_id: int,
    new_items: list[IngestItemInput],
    product_map: dict[str, ProductRecord],
) -> StepOutcome:
    if not new_items:
        return StepOutcome(step=STEP_AUTO_ADD, ok=True)

    inserted = backend.catalog.insert_products(
        store_id,
        [
            NewProduct(
                product_code=item.product_code,
                product_name=item.product_name,
                unit=item.unit,
                category=item.category,
                active=item.quantity > 0,
            )
            for item in new_items
        ],
    )
    for product in inserted:
        product_map[product.product_code] = product
        emit_audit(
            backend.audit,
            store_id=store_id,
            action_type=AuditAction.AUTO_ADD_PRODUCT,
            table_name='products',
            record_id=product.id,
            new_value={
                'product_code': product.product_code,
                'product_name': product.product_name,
                'active': product.active,
                'source': 'txt_upload',
            },
        )
    return StepOutcome(step=STEP_AUTO_ADD, ok=True, affected=len(inserted))


def _set_active_best_effort(
    backend: StockBackend,
    *,
    store_id: int,
    step: str,
    codes: list[str],
    active: bool,
    product_map: dict[str, ProductRecord],
) -> StepOutcome:
    if not codes:
        return StepOutcome(step=step, ok=True)

    try:
        backend.catalog.set_active(store_id, codes, active)
    except PersistenceError as exc:
        logger.warning('Catalog step %s failed for store %s (%s products): %s', step, store_id, len(codes), exc)
        return StepOutcome(step=step, ok=False, error=str(exc))

    action = AuditAction.AUTO_REACTIVATE if active else AuditAction.AUTO_DEACTIVATE
    reason = 'qty_positive_from_txt' if active else 'qty_zero_from_txt'
    for code in codes:
        existing = product_map.get(code)
        emit_audit(
            backend.audit,
            store_id=store_id,
            action_type=action,
            table_name='products',
            record_id=existing.id if existing else None,
            old_value={'active': not active},
            new_value={'active': active, 'reason': reason, 'product_code': code},
        )
    return StepOutcome(step=step, ok=True, affected=len(codes))


def sync_catalog_from_ingest(
    backend: StockBackend,
    *,
    store_id: int,
    items: list[IngestItemInput],
    upload_date: date | None,
    include_zero_qty: bool = False,
) -> CatalogSyncResult:
    """
    Bring the store catalog in line with a POS upload and record the upload as a batch.

    Unknown codes are added, active products reported at zero are deactivated and
    inactive products reported with stock are reactivated. The deactivate and
    reactivate steps are best-effort: their failures show up in ``steps`` and the
    upload itself is still saved.
    """
    if not store_id or not items:
        raise ValidationError('Missing required fields: store_id and items array')
    if not upload_date:
        raise ValidationError('Missing required field: upload_date')

    product_map = {product.product_code: product for product in backend.catalog.list_products(store_id)}
    classified = classify_items(items, product_map)
    # Decided against the product state before this upload.
    snapshot = dict(product_map)

    add_outcome = _auto_add(backend, store_id=store_id, new_items=classified.new_items, product_map=product_map)

    deactivate_codes = [
        code for code in _unique_codes(classified.zero_qty) if code in snapshot and snapshot[code].active
    ]
    deactivate_outcome = _set_active_best_effort(
        backend,
        store_id=store_id,
        step=STEP_AUTO_DEACTIVATE,
        codes=deactivate_codes,
        active=False,
        product_map=product_map,
    )

    reactivate_codes = [
        code
        for code in _unique_codes([item for item in classified.matched if item.quantity > 0])
        if not snapshot[code].active
    ]
    reactivate_outcome = _set_active_best_effort(
        backend,
        store_id=store_id,
        step=STEP_AUTO_REACTIVATE,
        codes=reactivate_codes,
        active=True,
        product_map=product_map,
    )

    items_to_save = [item for item in items if item.quantity > 0 or include_zero_qty]
    status = IngestBatchStatus.COMPLETED if items_to_save else IngestBatchStatus.NO_ITEMS
    batch_id = backend.capture.create_ingest_batch(
        store_id=store_id,
        upload_date=upload_date,
        item_count=len(items),
        processed_count=len(items_to_save),
        status=status,
        upload_method=UPLOAD_METHOD_TXT,
    )
    backend.capture.create_ingest_items(batch_id, items_to_save, confidence=TXT_CONFIDENCE, status='confirmed')

    emit_audit(
        backend.audit,
        store_id=store_id,
        action_type=AuditAction.STOCK_TXT_UPLOADED,
        table_name='ingest_batches',
        record_id=batch_id,
        new_value={
            'upload_date': upload_date.isoformat(),
            'item_count': len(items),
            'processed_count': len(items_to_save),
            'status': status.value,
            'upload_method': UPLOAD_METHOD_TXT,
        },
    )

    result = CatalogSyncResult(
        total_items=len(items),
        matched=len(classified.matched),
        new_added=add_outcome.affected,
        zero_qty=len(classified.zero_qty),
        deactivated=deactivate_outcome.affected,
        reactivated=reactivate_outcome.affected,
        ingest_batch_id=batch_id,
        steps=(add_outcome, deactivate_outcome, reactivate_outcome),
    )
    logger.info('Catalog synced for store %s from upload %s: %s', store_id, batch_id, result.summary())
    return result
