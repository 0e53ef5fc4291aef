from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Protocol

from stock_recon.models import ComparisonStatus, CountStatus, IngestBatchStatus


@dataclass(frozen=True)
class IngestItemInput:
    product_code: str | None
    product_name: str | None
    quantity: Decimal
    unit: str | None = None
    category: str | None = None


@dataclass(frozen=True)
class ProductRecord:
    id: int | str
    product_code: str
    product_name: str
    active: bool
    unit: str | None = None
    category: str | None = None
    count_status: CountStatus = CountStatus.ACTIVE


@dataclass(frozen=True)
class NewProduct:
    product_code: str
    product_name: str
    unit: str | None
    category: str | None
    active: bool


@dataclass(frozen=True)
class ManualCountInput:
    product_code: str
    quantity: Decimal
    notes: str | None = None


@dataclass(frozen=True)
class CodeQuantity:
    product_code: str
    quantity: Decimal


@dataclass(frozen=True)
class IngestItemRecord:
    product_code: str | None
    product_name: str | None
    quantity: Decimal


@dataclass(frozen=True)
class ComparisonRow:
    product_code: str
    product_name: str | None
    manual_quantity: Decimal | None
    pos_quantity: Decimal | None
    difference: Decimal | None
    diff_percent: Decimal | None
    status: ComparisonStatus


class CatalogStore(Protocol):
    def list_products(self, store_id: int) -> list[ProductRecord]: ...

    def insert_products(self, store_id: int, rows: list[NewProduct]) -> list[ProductRecord]: ...

    def set_active(self, store_id: int, codes: list[str], active: bool) -> int: ...

    def product_names(self, store_id: int, codes: list[str]) -> dict[str, str]: ...


class CaptureStore(Protocol):
    def list_manual_counts(self, store_id: int, count_date: date) -> list[CodeQuantity]: ...

    def has_manual_counts(self, store_id: int, count_date: date) -> bool: ...

    def replace_manual_counts(self, store_id: int, count_date: date, counts: list[ManualCountInput]) -> int: ...

    def latest_ingest_batch(self, store_id: int, upload_date: date) -> int | None: ...

    def list_ingest_items(self, batch_id: int) -> list[IngestItemRecord]: ...

    def create_ingest_batch(
        self,
        *,
        store_id: int,
        upload_date: date,
        item_count: int,
        processed_count: int,
        status: IngestBatchStatus,
        upload_method: str,
    ) -> int: ...

    def create_ingest_items(
        self,
        batch_id: int,
        items: list[IngestItemInput],
        *,
        confidence: Decimal,
        status: str,
    ) -> int: ...

    def replace_comparisons(self, store_id: int, comp_date: date, rows: list[ComparisonRow]) -> None: ...

    def list_comparisons(self, store_id: int, comp_date: date) -> list[ComparisonRow]: ...


class ToleranceSettings(Protocol):
    def get(self, store_id: int) -> Decimal | None: ...


class AuditSink(Protocol):
    def record(
        self,
        *,
        store_id: int | None,
        action_type: str,
        table_name: str | None,
        record_id: str | None = None,
        old_value: dict | None = None,
        new_value: dict | None = None,
    ) -> None: ...


class Notifier(Protocol):
    def notify_over_tolerance(self, *, store_id: int, comp_date: date, over_tolerance_count: int) -> None: ...


@dataclass(frozen=True)
class StockBackend:
    catalog: CatalogStore
    capture: CaptureStore
    tolerance: ToleranceSettings
    audit: AuditSink
    notifier: Notifier
