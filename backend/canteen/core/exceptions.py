"""Domain exceptions for the inventory reconciliation engine.

Every error names the offending line or field when there is one, so the
person doing the count can fix a single entry instead of redoing the batch.
The HTTP layer maps each class to a status code through ``http_status``.
"""

from typing import Any, Dict, List, Optional


class InventoryError(Exception):
    """Base class for all reconciliation errors."""

    code = "inventory_error"
    http_status = 400

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        item_id: Optional[int] = None,
        details: Optional[List[Dict[str, Any]]] = None,
    ):
        self.message = message
        self.field = field
        self.item_id = item_id
        self.details = details or []
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detail": self.message,
            "error": self.code,
            "field": self.field,
            "item_id": self.item_id,
            "details": self.details,
        }


class NotFound(InventoryError):
    """Referenced inventory, item, product or warehouse does not exist."""

    code = "not_found"
    http_status = 404


class InvalidState(InventoryError):
    """Operation attempted outside its legal lifecycle state."""

    code = "invalid_state"
    http_status = 409

    def __init__(self, message: str, current_status: Optional[str] = None, **kwargs):
        self.current_status = current_status
        super().__init__(message, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["current_status"] = self.current_status
        return data


class VersionConflict(InventoryError):
    """A count line changed since the caller last read it (opt-in check)."""

    code = "version_conflict"
    http_status = 409

    def __init__(self, item_id: int, expected: int, current: int):
        self.expected = expected
        self.current = current
        super().__init__(
            f"Version conflict on item {item_id}: expected {expected}, current {current}",
            field="expected_version",
            item_id=item_id,
        )


class ValidationError(InventoryError):
    """Negative quantities, duplicate lines, malformed line data."""

    code = "validation_error"
    http_status = 422


class PartialFailure(InventoryError):
    """Some sub-operations succeeded and others did not.

    ``details`` holds one outcome entry per line or document.
    """

    code = "partial_failure"
    http_status = 207


class DependencyFailure(InventoryError):
    """The stock balance store or document subsystem call failed."""

    code = "dependency_failure"
    http_status = 502

    def __init__(self, message: str, dependency: str, **kwargs):
        self.dependency = dependency
        super().__init__(message, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["dependency"] = self.dependency
        return data
