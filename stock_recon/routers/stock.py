from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import date
from decimal import Decimal
from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stock_recon.db import get_db
from stock_recon.errors import ApiError, PersistenceError, ReconciliationError, ValidationError
from stock_recon.schemas import (
    AutoCompareRequest,
    AutoCompareResponse,
    CatalogSyncSummaryOut,
    CompareRequest,
    CompareResponse,
    ComparisonListResponse,
    ComparisonRowOut,
    MissingItemOut,
    PosUploadResponse,
    ProcessTxtRequest,
    ProcessTxtResponse,
    ReconciliationSummaryOut,
    SaveManualCountsRequest,
    SaveManualCountsResponse,
    StepOutcomeOut,
)
from stock_recon.services.auto_compare_service import (
    AutoCompareResult,
    auto_compare_if_ready,
    check_existing_pos_upload,
)
from stock_recon.services.catalog_sync_service import sync_catalog_from_ingest
from stock_recon.services.manual_count_service import save_manual_counts
from stock_recon.services.provider_factory import build_backend
from stock_recon.services.reconciliation_service import hold_comparison_key, reconcile
from stock_recon.services.stores import IngestItemInput, ManualCountInput, StockBackend

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/stock', tags=['stock'])


def get_backend(db: Session = Depends(get_db)) -> StockBackend:
    return build_backend(db)


def _raise_http(db: Session, exc: ReconciliationError) -> NoReturn:
    db.rollback()
    if isinstance(exc, ValidationError):
        status_code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, PersistenceError):
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    raise HTTPException(status_code=status_code, detail=ApiError.from_exception(exc).to_dict()) from exc


def _commit(db: Session) -> None:
    try:
        db.commit()
    except SQLAlchemyError:
        _raise_http(db, PersistenceError('Failed to commit changes'))


def _as_float(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


def _strip(value: str | None) -> str | None:
    return (value or '').strip() or None


def _auto_compare_out(result: AutoCompareResult) -> AutoCompareResponse:
    return AutoCompareResponse(
        compared=result.compared,
        reason=result.reason.value,
        summary=ReconciliationSummaryOut(**result.summary.as_dict()) if result.summary else None,
        missing_items=(
            [MissingItemOut(product_code=item.product_code, product_name=item.product_name) for item in result.missing_items]
            if result.missing_items
            else None
        ),
    )


def _auto_compare_after_save(db: Session, backend: StockBackend, *, store_id: int, comp_date: date) -> AutoCompareResponse:
    """Run the trigger after a committed save; a failure here is reported without undoing the save."""
    with hold_comparison_key(store_id, comp_date):
        try:
            result = auto_compare_if_ready(backend, store_id=store_id, comp_date=comp_date)
            db.commit()
        except (ReconciliationError, SQLAlchemyError) as exc:
            db.rollback()
            error = exc if isinstance(exc, ReconciliationError) else PersistenceError('Failed to commit changes')
            logger.warning('Auto-compare failed for store %s on %s: %s', store_id, comp_date, error)
            return AutoCompareResponse(compared=False, reason='error', error=ApiError.from_exception(error).to_dict())
    return _auto_compare_out(result)


@router.post('/process-txt', response_model=ProcessTxtResponse)
def process_txt(
    payload: ProcessTxtRequest,
    db: Session = Depends(get_db),
    backend: StockBackend = Depends(get_backend),
):
    items = [
        IngestItemInput(
            product_code=_strip(item.product_code),
            product_name=_strip(item.product_name),
            quantity=item.quantity,
            unit=_strip(item.unit),
            category=_strip(item.category),
        )
        for item in payload.items
    ]
    try:
        result = sync_catalog_from_ingest(
            backend,
            store_id=payload.store_id,
            items=items,
            upload_date=payload.upload_date,
            include_zero_qty=payload.include_zero_qty,
        )
    except ReconciliationError as exc:
        _raise_http(db, exc)
    _commit(db)

    auto_compare_out = None
    if payload.auto_compare:
        auto_compare_out = _auto_compare_after_save(
            db, backend, store_id=payload.store_id, comp_date=payload.upload_date
        )

    return ProcessTxtResponse(
        ingest_batch_id=result.ingest_batch_id,
        summary=CatalogSyncSummaryOut(**result.summary()),
        steps=[StepOutcomeOut(**asdict(step)) for step in result.steps],
        auto_compare=auto_compare_out,
    )


@router.post('/manual-counts', response_model=SaveManualCountsResponse)
def save_counts(
    payload: SaveManualCountsRequest,
    db: Session = Depends(get_db),
    backend: StockBackend = Depends(get_backend),
):
    counts = [
        ManualCountInput(
            product_code=count.product_code.strip(),
            quantity=count.quantity,
            notes=_strip(count.notes),
        )
        for count in payload.counts
    ]
    try:
        result = save_manual_counts(backend, store_id=payload.store_id, count_date=payload.count_date, counts=counts)
    except ReconciliationError as exc:
        _raise_http(db, exc)
    _commit(db)

    auto_compare_out = None
    if payload.auto_compare:
        auto_compare_out = _auto_compare_after_save(
            db, backend, store_id=payload.store_id, comp_date=payload.count_date
        )

    return SaveManualCountsResponse(count_date=result.count_date, saved=result.saved, auto_compare=auto_compare_out)


@router.post('/compare', response_model=CompareResponse)
def compare(
    payload: CompareRequest,
    db: Session = Depends(get_db),
    backend: StockBackend = Depends(get_backend),
):
    with hold_comparison_key(payload.store_id, payload.comp_date):
        try:
            summary = reconcile(backend, store_id=payload.store_id, comp_date=payload.comp_date)
        except ReconciliationError as exc:
            _raise_http(db, exc)
        _commit(db)
    return CompareResponse(comp_date=payload.comp_date, summary=ReconciliationSummaryOut(**summary.as_dict()))


@router.post('/auto-compare', response_model=AutoCompareResponse)
def auto_compare(
    payload: AutoCompareRequest,
    db: Session = Depends(get_db),
    backend: StockBackend = Depends(get_backend),
):
    with hold_comparison_key(payload.store_id, payload.date):
        try:
            result = auto_compare_if_ready(backend, store_id=payload.store_id, comp_date=payload.date)
        except ReconciliationError as exc:
            _raise_http(db, exc)
        _commit(db)
    return _auto_compare_out(result)


@router.get('/pos-upload', response_model=PosUploadResponse)
def pos_upload_exists(
    store_id: int = Query(...),
    upload_date: date = Query(..., alias='date'),
    db: Session = Depends(get_db),
    backend: StockBackend = Depends(get_backend),
):
    try:
        check = check_existing_pos_upload(backend, store_id=store_id, comp_date=upload_date)
    except ReconciliationError as exc:
        _raise_http(db, exc)
    return PosUploadResponse(exists=check.exists, ingest_batch_id=check.ingest_batch_id)


@router.get('/comparisons', response_model=ComparisonListResponse)
def list_comparisons(
    store_id: int = Query(...),
    comp_date: date = Query(...),
    db: Session = Depends(get_db),
    backend: StockBackend = Depends(get_backend),
):
    try:
        rows = backend.capture.list_comparisons(store_id, comp_date)
    except ReconciliationError as exc:
        _raise_http(db, exc)
    if not rows:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=ApiError(code='not_found', message='No comparison for this store and date').to_dict(),
        )
    return ComparisonListResponse(
        store_id=store_id,
        comp_date=comp_date,
        rows=[
            ComparisonRowOut(
                product_code=row.product_code,
                product_name=row.product_name,
                manual_quantity=_as_float(row.manual_quantity),
                pos_quantity=_as_float(row.pos_quantity),
                difference=_as_float(row.difference),
                diff_percent=_as_float(row.diff_percent),
                status=row.status.value,
            )
            for row in rows
        ],
    )
