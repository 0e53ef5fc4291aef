from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP

from stock_recon.config import settings
from stock_recon.errors import ValidationError
from stock_recon.models import ComparisonStatus
from stock_recon.services.audit_service import AuditAction, emit_audit
from stock_recon.services.key_lock import KeyedLock
from stock_recon.services.stores import CodeQuantity, ComparisonRow, IngestItemRecord, StockBackend

logger = logging.getLogger(__name__)

_PERCENT_PLACES = Decimal('0.01')
_comparison_locks = KeyedLock()


@dataclass(frozen=True)
class LineFigures:
    manual_quantity: Decimal | None
    pos_quantity: Decimal | None
    difference: Decimal | None
    diff_percent: Decimal | None

    @property
    def manual_only(self) -> bool:
        return self.manual_quantity is not None and self.pos_quantity is None

    @property
    def pos_only(self) -> bool:
        return self.manual_quantity is None and self.pos_quantity is not None


@dataclass(frozen=True)
class StatusRule:
    name: str
    applies: Callable[[LineFigures, Decimal], bool]
    status: ComparisonStatus
    counter: str | None


# Evaluated in order; the first rule that applies decides the status. A zero POS
# quantity with a nonzero manual count has no percentage, so it falls through to
# the final rule.
STATUS_RULES: tuple[StatusRule, ...] = (
    StatusRule(
        name='one_side_missing',
        applies=lambda figures, tolerance: figures.difference is None,
        status=ComparisonStatus.APPROVED,
        counter=None,
    ),
    StatusRule(
        name='exact_match',
        applies=lambda figures, tolerance: figures.difference == 0,
        status=ComparisonStatus.APPROVED,
        counter='match',
    ),
    StatusRule(
        name='within_tolerance',
        applies=lambda figures, tolerance: figures.diff_percent is not None and abs(figures.diff_percent) <= tolerance,
        status=ComparisonStatus.APPROVED,
        counter='within_tolerance',
    ),
    StatusRule(
        name='over_tolerance',
        applies=lambda figures, tolerance: True,
        status=ComparisonStatus.PENDING,
        counter='over_tolerance',
    ),
)


@dataclass
class ReconciliationSummary:
    total: int = 0
    match: int = 0
    within_tolerance: int = 0
    over_tolerance: int = 0
    manual_only: int = 0
    pos_only: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def compute_line_figures(manual_quantity: Decimal | None, pos_quantity: Decimal | None) -> LineFigures:
    difference: Decimal | None = None
    diff_percent: Decimal | None = None
    if manual_quantity is not None and pos_quantity is not None:
        difference = manual_quantity - pos_quantity
        if pos_quantity != 0:
            diff_percent = (difference / pos_quantity * 100).quantize(_PERCENT_PLACES, rounding=ROUND_HALF_UP)
    return LineFigures(
        manual_quantity=manual_quantity,
        pos_quantity=pos_quantity,
        difference=difference,
        diff_percent=diff_percent,
    )


def classify(figures: LineFigures, tolerance: Decimal) -> StatusRule:
    for rule in STATUS_RULES:
        if rule.applies(figures, tolerance):
            return rule
    raise AssertionError('STATUS_RULES must end with a catch-all rule')


def _quantity_map(rows: list[CodeQuantity] | list[IngestItemRecord]) -> dict[str, Decimal]:
    quantities: dict[str, Decimal] = {}
    for row in rows:
        if row.product_code:
            quantities[row.product_code] = Decimal(row.quantity)
    return quantities


def build_comparison_rows(
    *,
    manual_map: dict[str, Decimal],
    pos_map: dict[str, Decimal],
    tolerance: Decimal,
    product_names: dict[str, str] | None = None,
) -> tuple[list[ComparisonRow], ReconciliationSummary]:
    names = product_names or {}
    summary = ReconciliationSummary()
    rows: list[ComparisonRow] = []

    for product_code in sorted(manual_map.keys() | pos_map.keys()):
        figures = compute_line_figures(manual_map.get(product_code), pos_map.get(product_code))
        rule = classify(figures, tolerance)

        summary.total += 1
        if rule.counter:
            setattr(summary, rule.counter, getattr(summary, rule.counter) + 1)
        if figures.manual_only:
            summary.manual_only += 1
        if figures.pos_only:
            summary.pos_only += 1

        rows.append(
            ComparisonRow(
                product_code=product_code,
                product_name=names.get(product_code),
                manual_quantity=figures.manual_quantity,
                pos_quantity=figures.pos_quantity,
                difference=figures.difference,
                diff_percent=figures.diff_percent,
                status=rule.status,
            )
        )
    return rows, summary


def resolve_tolerance(backend: StockBackend, *, store_id: int) -> Decimal:
    configured = backend.tolerance.get(store_id)
    if configured is None:
        return Decimal(settings.default_diff_tolerance_percent)
    return Decimal(configured)


def _notify_over_tolerance(backend: StockBackend, *, store_id: int, comp_date: date, count: int) -> None:
    try:
        backend.notifier.notify_over_tolerance(store_id=store_id, comp_date=comp_date, over_tolerance_count=count)
    except Exception:
        logger.exception('Failed to notify owners of store %s about %s over-tolerance items', store_id, count)


def hold_comparison_key(store_id: int, comp_date: date):
    """Serialize comparison runs for one store and date within this process.

    Callers that commit after ``reconcile`` hold the key through the commit; the lock is
    reentrant, so ``reconcile`` takes it again without blocking.
    """
    return _comparison_locks.hold((store_id, comp_date))


def reconcile(backend: StockBackend, *, store_id: int, comp_date: date) -> ReconciliationSummary:
    """
    Rebuild the comparison rows for one store and business date.

    Manual counts are matched against the latest POS batch for the same date. The
    previous rows for the date are replaced as a whole, so repeated runs over the
    same inputs produce the same rows. Over-tolerance alerts go through
    ``backend.notifier``; the SQL backend holds them until the session commits.
    """
    if not store_id or not comp_date:
        raise ValidationError('store_id and comp_date are required')

    with hold_comparison_key(store_id, comp_date):
        manual_map = _quantity_map(backend.capture.list_manual_counts(store_id, comp_date))

        pos_map: dict[str, Decimal] = {}
        batch_id = backend.capture.latest_ingest_batch(store_id, comp_date)
        if batch_id is not None:
            pos_map = _quantity_map(backend.capture.list_ingest_items(batch_id))

        tolerance = resolve_tolerance(backend, store_id=store_id)
        codes = sorted(manual_map.keys() | pos_map.keys())
        names = backend.catalog.product_names(store_id, codes) if codes else {}

        rows, summary = build_comparison_rows(
            manual_map=manual_map,
            pos_map=pos_map,
            tolerance=tolerance,
            product_names=names,
        )
        backend.capture.replace_comparisons(store_id, comp_date, rows)

    logger.info(
        'Comparison generated for store %s on %s (batch %s, tolerance %s%%): %s',
        store_id,
        comp_date,
        batch_id,
        tolerance,
        summary.as_dict(),
    )
    emit_audit(
        backend.audit,
        store_id=store_id,
        action_type=AuditAction.STOCK_COMPARISON_GENERATED,
        table_name='comparisons',
        new_value={'comp_date': comp_date.isoformat(), **summary.as_dict()},
    )

    if summary.over_tolerance > 0:
        _notify_over_tolerance(backend, store_id=store_id, comp_date=comp_date, count=summary.over_tolerance)

    return summary
