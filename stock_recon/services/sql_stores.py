from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date
from decimal import Decimal

from sqlalchemy import delete, event, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stock_recon.errors import PersistenceError
from stock_recon.models import (
    Comparison,
    IngestBatch,
    IngestBatchStatus,
    IngestItem,
    ManualCount,
    Product,
    StoreSetting,
)
from stock_recon.services.audit_service import log_audit
from stock_recon.services.stores import (
    CodeQuantity,
    ComparisonRow,
    IngestItemInput,
    IngestItemRecord,
    ManualCountInput,
    NewProduct,
    Notifier,
    ProductRecord,
    StockBackend,
)

logger = logging.getLogger(__name__)


@contextmanager
def _store_errors(action: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        raise PersistenceError(f'Failed to {action}') from exc


def _product_record(row: Product) -> ProductRecord:
    return ProductRecord(
        id=row.id,
        product_code=row.product_code,
        product_name=row.product_name,
        active=row.active,
        unit=row.unit,
        category=row.category,
        count_status=row.count_status,
    )


class SqlCatalogStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    def list_products(self, store_id: int) -> list[ProductRecord]:
        with _store_errors('fetch existing products'):
            rows = self.db.execute(
                select(Product).where(Product.store_id == store_id).order_by(Product.product_code.asc())
            ).scalars().all()
        return [_product_record(row) for row in rows]

    def insert_products(self, store_id: int, rows: list[NewProduct]) -> list[ProductRecord]:
        if not rows:
            return []
        products = [
            Product(
                store_id=store_id,
                product_code=row.product_code,
                product_name=row.product_name,
                unit=row.unit,
                category=row.category,
                active=row.active,
            )
            for row in rows
        ]
        with _store_errors('auto-add new products'):
            with self.db.begin_nested():
                self.db.add_all(products)
        return [_product_record(product) for product in products]

    def set_active(self, store_id: int, codes: list[str], active: bool) -> int:
        if not codes:
            return 0
        action = 'reactivate products' if active else 'deactivate products'
        with _store_errors(action):
            with self.db.begin_nested():
                result = self.db.execute(
                    update(Product)
                    .where(Product.store_id == store_id, Product.product_code.in_(codes))
                    .values(active=active)
                )
        return int(result.rowcount or 0)

    def product_names(self, store_id: int, codes: list[str]) -> dict[str, str]:
        if not codes:
            return {}
        with _store_errors('fetch product names'):
            rows = self.db.execute(
                select(Product.product_code, Product.product_name).where(
                    Product.store_id == store_id,
                    Product.product_code.in_(codes),
                )
            ).all()
        return {row.product_code: row.product_name for row in rows}


class SqlCaptureStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    def list_manual_counts(self, store_id: int, count_date: date) -> list[CodeQuantity]:
        with _store_errors('fetch manual counts'):
            rows = self.db.execute(
                select(ManualCount.product_code, ManualCount.count_quantity)
                .where(ManualCount.store_id == store_id, ManualCount.count_date == count_date)
                .order_by(ManualCount.id.asc())
            ).all()
        return [CodeQuantity(product_code=row.product_code, quantity=Decimal(row.count_quantity)) for row in rows]

    def has_manual_counts(self, store_id: int, count_date: date) -> bool:
        with _store_errors('check manual counts'):
            found = self.db.execute(
                select(ManualCount.id)
                .where(ManualCount.store_id == store_id, ManualCount.count_date == count_date)
                .limit(1)
            ).scalar_one_or_none()
        return found is not None

    def replace_manual_counts(self, store_id: int, count_date: date, counts: list[ManualCountInput]) -> int:
        with _store_errors('clear existing manual counts'):
            self.db.execute(
                delete(ManualCount).where(ManualCount.store_id == store_id, ManualCount.count_date == count_date)
            )
        if not counts:
            return 0
        with _store_errors('save manual counts'):
            self.db.add_all(
                [
                    ManualCount(
                        store_id=store_id,
                        count_date=count_date,
                        product_code=count.product_code,
                        count_quantity=count.quantity,
                        notes=count.notes or None,
                    )
                    for count in counts
                ]
            )
            self.db.flush()
        return len(counts)

    def latest_ingest_batch(self, store_id: int, upload_date: date) -> int | None:
        with _store_errors('fetch ingest batches'):
            return self.db.execute(
                select(IngestBatch.id)
                .where(IngestBatch.store_id == store_id, IngestBatch.upload_date == upload_date)
                .order_by(IngestBatch.created_at.desc(), IngestBatch.id.desc())
                .limit(1)
            ).scalar_one_or_none()

    def list_ingest_items(self, batch_id: int) -> list[IngestItemRecord]:
        with _store_errors('fetch ingest items'):
            rows = self.db.execute(
                select(IngestItem.product_code, IngestItem.product_name, IngestItem.quantity)
                .where(IngestItem.ingest_batch_id == batch_id)
                .order_by(IngestItem.id.asc())
            ).all()
        return [
            IngestItemRecord(product_code=row.product_code, product_name=row.product_name, quantity=Decimal(row.quantity))
            for row in rows
        ]

    def create_ingest_batch(
        self,
        *,
        store_id: int,
        upload_date: date,
        item_count: int,
        processed_count: int,
        status: IngestBatchStatus,
        upload_method: str,
    ) -> int:
        batch = IngestBatch(
            store_id=store_id,
            upload_date=upload_date,
            item_count=item_count,
            processed_count=processed_count,
            status=status,
            upload_method=upload_method,
        )
        with _store_errors('create upload log entry'):
            self.db.add(batch)
            self.db.flush()
        return batch.id

    def create_ingest_items(
        self,
        batch_id: int,
        items: list[IngestItemInput],
        *,
        confidence: Decimal,
        status: str,
    ) -> int:
        if not items:
            return 0
        with _store_errors('save item data'):
            self.db.add_all(
                [
                    IngestItem(
                        ingest_batch_id=batch_id,
                        product_code=item.product_code or None,
                        product_name=item.product_name or None,
                        quantity=item.quantity,
                        unit=item.unit or None,
                        confidence=confidence,
                        status=status,
                    )
                    for item in items
                ]
            )
            self.db.flush()
        return len(items)

    def _lock_comparison_key(self, store_id: int, comp_date: date) -> None:
        if self.db.get_bind().dialect.name != 'postgresql':
            return
        # Held until the surrounding transaction commits or rolls back.
        key = f'comparisons:{store_id}:{comp_date.isoformat()}'
        self.db.execute(select(func.pg_advisory_xact_lock(func.hashtext(key))))

    def replace_comparisons(self, store_id: int, comp_date: date, rows: list[ComparisonRow]) -> None:
        with _store_errors('clear existing comparisons'):
            self._lock_comparison_key(store_id, comp_date)
            self.db.execute(
                delete(Comparison)
                .where(Comparison.store_id == store_id, Comparison.comp_date == comp_date)
            )
        if not rows:
            return
        with _store_errors('insert comparison data'):
            self.db.add_all(
                [
                    Comparison(
                        store_id=store_id,
                        comp_date=comp_date,
                        product_code=row.product_code,
                        product_name=row.product_name,
                        manual_quantity=row.manual_quantity,
                        pos_quantity=row.pos_quantity,
                        difference=row.difference,
                        diff_percent=row.diff_percent,
                        status=row.status,
                    )
                    for row in rows
                ]
            )
            self.db.flush()

    def list_comparisons(self, store_id: int, comp_date: date) -> list[ComparisonRow]:
        with _store_errors('fetch comparisons'):
            rows = self.db.execute(
                select(Comparison)
                .where(Comparison.store_id == store_id, Comparison.comp_date == comp_date)
                .order_by(Comparison.product_code.asc())
            ).scalars().all()
        return [
            ComparisonRow(
                product_code=row.product_code,
                product_name=row.product_name,
                manual_quantity=row.manual_quantity,
                pos_quantity=row.pos_quantity,
                difference=row.difference,
                diff_percent=row.diff_percent,
                status=row.status,
            )
            for row in rows
        ]


class SqlToleranceSettings:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, store_id: int) -> Decimal | None:
        with _store_errors('fetch store settings'):
            value = self.db.execute(
                select(StoreSetting.diff_tolerance_percent).where(StoreSetting.store_id == store_id)
            ).scalar_one_or_none()
        return Decimal(value) if value is not None else None


class SqlAuditSink:
    def __init__(self, db: Session) -> None:
        self.db = db

    def record(
        self,
        *,
        store_id: int | None,
        action_type: str,
        table_name: str | None,
        record_id: str | None = None,
        old_value: dict | None = None,
        new_value: dict | None = None,
    ) -> None:
        with _store_errors('insert audit log'):
            with self.db.begin_nested():
                log_audit(
                    self.db,
                    store_id=store_id,
                    action_type=action_type,
                    table_name=table_name,
                    record_id=record_id,
                    old_value=old_value,
                    new_value=new_value,
                )


class CommitBoundNotifier:
    """
    Holds over-tolerance alerts until the session's outer transaction commits.

    Alerts queued in a transaction that rolls back are dropped, so owners are
    never told about comparison rows that were not saved.
    """

    def __init__(self, db: Session, notifier: Notifier) -> None:
        self.notifier = notifier
        self._pending: list[dict] = []
        event.listen(db, 'after_commit', self._deliver)
        event.listen(db, 'after_transaction_end', self._discard)

    def notify_over_tolerance(self, *, store_id: int, comp_date: date, over_tolerance_count: int) -> None:
        self._pending.append(
            {'store_id': store_id, 'comp_date': comp_date, 'over_tolerance_count': over_tolerance_count}
        )

    @property
    def pending(self) -> int:
        return len(self._pending)

    def _deliver(self, session: Session) -> None:
        if session.in_nested_transaction():
            return
        pending, self._pending = self._pending, []
        for alert in pending:
            try:
                self.notifier.notify_over_tolerance(**alert)
            except Exception:
                logger.exception(
                    'Failed to notify owners of store %s about %s over-tolerance items',
                    alert['store_id'],
                    alert['over_tolerance_count'],
                )

    def _discard(self, session: Session, transaction) -> None:
        # Runs after _deliver on commit; on rollback the queued alerts are dropped here.
        if transaction.parent is None and self._pending:
            logger.info('Dropping %s over-tolerance alert(s) from a rolled back transaction', len(self._pending))
            self._pending.clear()


def build_sql_backend(db: Session, *, notifier: Notifier) -> StockBackend:
    return StockBackend(
        catalog=SqlCatalogStore(db),
        capture=SqlCaptureStore(db),
        tolerance=SqlToleranceSettings(db),
        audit=SqlAuditSink(db),
        notifier=CommitBoundNotifier(db, notifier),
    )
