from __future__ import annotations

import itertools
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from decimal import Decimal

from stock_recon.models import CountStatus, IngestBatchStatus
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


class InMemoryCatalogStore:
    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.products: dict[tuple[int, str], ProductRecord] = {}

    def add_product(
        self,
        store_id: int,
        product_code: str,
        product_name: str,
        *,
        active: bool = True,
        unit: str | None = None,
        category: str | None = None,
        count_status: CountStatus = CountStatus.ACTIVE,
    ) -> ProductRecord:
        record = ProductRecord(
            id=next(self._ids),
            product_code=product_code,
            product_name=product_name,
            active=active,
            unit=unit,
            category=category,
            count_status=count_status,
        )
        self.products[(store_id, product_code)] = record
        return record

    def get(self, store_id: int, product_code: str) -> ProductRecord | None:
        return self.products.get((store_id, product_code))

    def list_products(self, store_id: int) -> list[ProductRecord]:
        return [record for (owner, _), record in sorted(self.products.items()) if owner == store_id]

    def insert_products(self, store_id: int, rows: list[NewProduct]) -> list[ProductRecord]:
        return [
            self.add_product(
                store_id,
                row.product_code,
                row.product_name,
                active=row.active,
                unit=row.unit,
                category=row.category,
            )
            for row in rows
        ]

    def set_active(self, store_id: int, codes: list[str], active: bool) -> int:
        changed = 0
        for code in set(codes):
            record = self.products.get((store_id, code))
            if record is None:
                continue
            self.products[(store_id, code)] = replace(record, active=active)
            changed += 1
        return changed

    def product_names(self, store_id: int, codes: list[str]) -> dict[str, str]:
        names: dict[str, str] = {}
        for code in codes:
            record = self.products.get((store_id, code))
            if record:
                names[code] = record.product_name
        return names


@dataclass
class _Batch:
    id: int
    store_id: int
    upload_date: date
    item_count: int
    processed_count: int
    status: IngestBatchStatus
    upload_method: str
    created_at: datetime
    items: list[IngestItemRecord] = field(default_factory=list)


class InMemoryCaptureStore:
    def __init__(self) -> None:
        self._batch_ids = itertools.count(1)
        self.manual_counts: dict[tuple[int, date], list[CodeQuantity]] = {}
        self.batches: dict[int, _Batch] = {}
        self.comparisons: dict[tuple[int, date], list[ComparisonRow]] = {}

    def add_manual_count(self, store_id: int, count_date: date, product_code: str, quantity: Decimal | int) -> None:
        self.manual_counts.setdefault((store_id, count_date), []).append(
            CodeQuantity(product_code=product_code, quantity=Decimal(str(quantity)))
        )

    def add_pos_batch(
        self,
        store_id: int,
        upload_date: date,
        quantities: dict[str, Decimal | int],
    ) -> int:
        items = [
            IngestItemInput(product_code=code, product_name=code, quantity=Decimal(str(qty)))
            for code, qty in quantities.items()
        ]
        batch_id = self.create_ingest_batch(
            store_id=store_id,
            upload_date=upload_date,
            item_count=len(items),
            processed_count=len(items),
            status=IngestBatchStatus.COMPLETED if items else IngestBatchStatus.NO_ITEMS,
            upload_method='txt',
        )
        self.create_ingest_items(batch_id, items, confidence=Decimal('100'), status='confirmed')
        return batch_id

    def list_manual_counts(self, store_id: int, count_date: date) -> list[CodeQuantity]:
        return list(self.manual_counts.get((store_id, count_date), []))

    def has_manual_counts(self, store_id: int, count_date: date) -> bool:
        return bool(self.manual_counts.get((store_id, count_date)))

    def replace_manual_counts(self, store_id: int, count_date: date, counts: list[ManualCountInput]) -> int:
        self.manual_counts[(store_id, count_date)] = [
            CodeQuantity(product_code=count.product_code, quantity=Decimal(count.quantity)) for count in counts
        ]
        return len(counts)

    def latest_ingest_batch(self, store_id: int, upload_date: date) -> int | None:
        candidates = [
            batch for batch in self.batches.values() if batch.store_id == store_id and batch.upload_date == upload_date
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda batch: (batch.created_at, batch.id)).id

    def list_ingest_items(self, batch_id: int) -> list[IngestItemRecord]:
        batch = self.batches.get(batch_id)
        return list(batch.items) if batch else []

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
        batch_id = next(self._batch_ids)
        self.batches[batch_id] = _Batch(
            id=batch_id,
            store_id=store_id,
            upload_date=upload_date,
            item_count=item_count,
            processed_count=processed_count,
            status=status,
            upload_method=upload_method,
            created_at=datetime.now(tz=timezone.utc),
        )
        return batch_id

    def create_ingest_items(
        self,
        batch_id: int,
        items: list[IngestItemInput],
        *,
        confidence: Decimal,
        status: str,
    ) -> int:
        batch = self.batches[batch_id]
        batch.items.extend(
            IngestItemRecord(product_code=item.product_code or None, product_name=item.product_name, quantity=item.quantity)
            for item in items
        )
        return len(items)

    def replace_comparisons(self, store_id: int, comp_date: date, rows: list[ComparisonRow]) -> None:
        self.comparisons.pop((store_id, comp_date), None)
        if rows:
            self.comparisons[(store_id, comp_date)] = list(rows)

    def list_comparisons(self, store_id: int, comp_date: date) -> list[ComparisonRow]:
        rows = self.comparisons.get((store_id, comp_date), [])
        return sorted(rows, key=lambda row: row.product_code)


class InMemoryToleranceSettings:
    def __init__(self, values: dict[int, Decimal] | None = None) -> None:
        self.values: dict[int, Decimal] = dict(values or {})

    def get(self, store_id: int) -> Decimal | None:
        return self.values.get(store_id)


@dataclass(frozen=True)
class AuditEntry:
    store_id: int | None
    action_type: str
    table_name: str | None
    record_id: str | None
    old_value: dict | None
    new_value: dict | None
    changed_by: int | None = None


class InMemoryAuditSink:
    def __init__(self) -> None:
        self.entries: list[AuditEntry] = []

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
        self.entries.append(
            AuditEntry(
                store_id=store_id,
                action_type=action_type,
                table_name=table_name,
                record_id=record_id,
                old_value=old_value,
                new_value=new_value,
            )
        )

    def of_type(self, action_type: str) -> list[AuditEntry]:
        return [entry for entry in self.entries if entry.action_type == action_type]


def build_memory_backend(*, notifier: Notifier, tolerances: dict[int, Decimal] | None = None) -> StockBackend:
    return StockBackend(
        catalog=InMemoryCatalogStore(),
        capture=InMemoryCaptureStore(),
        tolerance=InMemoryToleranceSettings(tolerances),
        audit=InMemoryAuditSink(),
        notifier=notifier,
    )
