from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class ReconciliationError(Exception):
    code = 'reconciliation_error'


class ValidationError(ReconciliationError, ValueError):
    code = 'validation_error'


class PersistenceError(ReconciliationError):
    code = 'persistence_error'


class NotifierError(ReconciliationError):
    code = 'notifier_error'


@dataclass
class ApiError:
    code: str
    message: str
    details: dict[str, Any] | None = None

    @classmethod
    def from_exception(cls, exc: ReconciliationError) -> ApiError:
        return cls(code=exc.code, message=str(exc))

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            'code': self.code,
            'message': self.message,
        }
        if self.details:
            payload['details'] = self.details
        return payload
