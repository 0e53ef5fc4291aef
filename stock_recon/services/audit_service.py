from __future__ import annotations

import logging
from enum import Enum

from sqlalchemy.orm import Session

from stock_recon.errors import PersistenceError
from stock_recon.models import AuditLog
from stock_recon.services.stores import AuditSink

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    AUTO_ADD_PRODUCT = 'AUTO_ADD_PRODUCT'
    AUTO_DEACTIVATE = 'AUTO_DEACTIVATE'
    AUTO_REACTIVATE = 'AUTO_REACTIVATE'
    STOCK_COUNT_SAVED = 'STOCK_COUNT_SAVED'
    STOCK_COMPARISON_GENERATED = 'STOCK_COMPARISON_GENERATED'
    STOCK_TXT_UPLOADED = 'STOCK_TXT_UPLOADED'


def log_audit(
    db: Session,
    *,
    store_id: int | None,
    action_type: str,
    table_name: str | None,
    record_id: str | None = None,
    old_value: dict | None = None,
    new_value: dict | None = None,
    changed_by: int | None = None,
) -> None:
    db.add(
        AuditLog(
            store_id=store_id,
            action_type=action_type,
            table_name=table_name,
            record_id=record_id,
            old_value=old_value,
            new_value=new_value,
            changed_by=changed_by,
        )
    )


def emit_audit(
    sink: AuditSink,
    *,
    store_id: int | None,
    action_type: AuditAction,
    table_name: str | None,
    record_id: int | str | None = None,
    old_value: dict | None = None,
    new_value: dict | None = None,
) -> bool:
    """Write one system-initiated audit record; failures are logged and reported as ``False``."""
    try:
        sink.record(
            store_id=store_id,
            action_type=action_type.value,
            table_name=table_name,
            record_id=str(record_id) if record_id is not None else None,
            old_value=old_value,
            new_value=new_value,
        )
    except PersistenceError:
        logger.warning('Failed to write %s audit record for store %s', action_type.value, store_id, exc_info=True)
        return False
    return True
