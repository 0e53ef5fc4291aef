from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field


class TxtItemIn(BaseModel):
    product_code: str | None = None
    product_name: str | None = None
    quantity: Decimal = Field(ge=0)
    unit: str | None = None
    category: str | None = None


class ProcessTxtRequest(BaseModel):
    store_id: int
    items: list[TxtItemIn]
    upload_date: dt.date
    include_zero_qty: bool = False
    auto_compare: bool = False


class ManualCountIn(BaseModel):
    product_code: str = Field(min_length=1)
    quantity: Decimal = Field(ge=0)
    notes: str | None = None


class SaveManualCountsRequest(BaseModel):
    store_id: int
    count_date: dt.date
    counts: list[ManualCountIn]
    auto_compare: bool = False


class CompareRequest(BaseModel):
    store_id: int
    comp_date: dt.date


class AutoCompareRequest(BaseModel):
    store_id: int
    date: dt.date


class ReconciliationSummaryOut(BaseModel):
    total: int
    match: int
    within_tolerance: int
    over_tolerance: int
    manual_only: int
    pos_only: int


class CompareResponse(BaseModel):
    success: bool = True
    comp_date: dt.date
    summary: ReconciliationSummaryOut


class StepOutcomeOut(BaseModel):
    step: str
    ok: bool
    affected: int
    error: str | None = None


class CatalogSyncSummaryOut(BaseModel):
    total_items: int
    matched: int
    new_added: int
    zero_qty: int
    deactivated: int
    reactivated: int


class MissingItemOut(BaseModel):
    product_code: str
    product_name: str


class AutoCompareResponse(BaseModel):
    compared: bool
    reason: str
    summary: ReconciliationSummaryOut | None = None
    missing_items: list[MissingItemOut] | None = None
    error: dict[str, Any] | None = None


class ProcessTxtResponse(BaseModel):
    success: bool = True
    ingest_batch_id: int
    summary: CatalogSyncSummaryOut
    steps: list[StepOutcomeOut]
    auto_compare: AutoCompareResponse | None = None


class SaveManualCountsResponse(BaseModel):
    success: bool = True
    count_date: dt.date
    saved: int
    auto_compare: AutoCompareResponse | None = None


class PosUploadResponse(BaseModel):
    exists: bool
    ingest_batch_id: int | None = None


class ComparisonRowOut(BaseModel):
    product_code: str
    product_name: str | None
    manual_quantity: float | None
    pos_quantity: float | None
    difference: float | None
    diff_percent: float | None
    status: str


class ComparisonListResponse(BaseModel):
    store_id: int
    comp_date: dt.date
    rows: list[ComparisonRowOut]
