"""Typed failures raised by the ledger, the allocation engine and the gate.

Every error carries the entity, field and constraint involved so the API
layer can render a specific message.
"""
from typing import Any, Optional


class LedgerError(Exception):
    status_code = 400
    code = "ledger_error"

    def __init__(
        self,
        message: str,
        *,
        entity: Optional[str] = None,
        field: Optional[str] = None,
        constraint: Optional[str] = None,
        **details: Any,
    ):
        super().__init__(message)
        self.message    = message
        self.entity     = entity
        self.field      = field
        self.constraint = constraint
        self.details    = details

    def to_dict(self) -> dict:
        data = {
            "error":      self.code,
            "message":    self.message,
            "entity":     self.entity,
            "field":      self.field,
            "constraint": self.constraint,
        }
        data.update(self.details)
        return data


class NotFound(LedgerError):
    status_code = 404
    code = "not_found"

    def __init__(self, entity: str, id: Any = None, **details: Any):
        super().__init__(f"{entity} not found", entity=entity, field="id", id=id, **details)


class ConstraintViolation(LedgerError):
    status_code = 409
    code = "constraint_violation"


class InvalidAmount(LedgerError):
    status_code = 422
    code = "invalid_amount"


class OwnershipMismatch(LedgerError):
    status_code = 422
    code = "ownership_mismatch"


class CategoryMismatch(OwnershipMismatch):
    code = "category_mismatch"


class OverAllocation(LedgerError):
    status_code = 409
    code = "over_allocation"


class DependencyExists(LedgerError):
    status_code = 409
    code = "dependency_exists"


class Timeout(LedgerError):
    """The outcome of the write is unknown; re-read before retrying."""
    status_code = 504
    code = "timeout"


class Conflict(LedgerError):
    """Optimistic-lock version mismatch. Re-read, reapply and resubmit."""
    status_code = 409
    code = "conflict"


class Forbidden(LedgerError):
    status_code = 403
    code = "forbidden"
