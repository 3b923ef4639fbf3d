"""Typed errors raised by the cycle count lifecycle.

Each class carries a machine-readable ``code`` so the HTTP and MCP
surfaces can report failures without parsing messages.

    CycleCountError
    +-- InvalidStateError
    |   +-- ConcurrentModificationError
    +-- ValidationError
    +-- NotFoundError
    +-- DependencyFailure
"""

from typing import Iterable, Optional


class CycleCountError(Exception):
    """Base exception for all cycle count errors."""

    code: str = "CYCLE_COUNT_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidStateError(CycleCountError):
    """Operation attempted from a status that does not permit it."""

    code: str = "INVALID_STATE"

    def __init__(
        self,
        count_number: str,
        current_status: str,
        action: str,
        allowed: Optional[Iterable[str]] = None,
    ):
        self.count_number = count_number
        self.current_status = current_status
        self.action = action
        self.allowed = sorted(allowed) if allowed is not None else []
        message = f"Cannot {action} cycle count {count_number} while it is {current_status}"
        if self.allowed:
            message += f" (allowed from: {', '.join(self.allowed)})"
        super().__init__(message)


class ConcurrentModificationError(InvalidStateError):
    """The count changed underneath the caller; re-fetch and retry."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, count_number: str, current_status: str, action: str):
        super().__init__(count_number, current_status, action)
        self.message = (
            f"Cycle count {count_number} was modified by someone else; "
            f"reload it before trying to {action} again"
        )
        self.args = (self.message,)


class ValidationError(CycleCountError):
    """Malformed input: negative quantity, missing scope, foreign item ids."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class NotFoundError(CycleCountError):
    """A count, item, product or location id did not resolve."""

    code: str = "NOT_FOUND"

    def __init__(self, entity: str, identifier: object):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} {identifier} not found")


class DependencyFailure(CycleCountError):
    """The inventory store rejected an adjustment; nothing was applied."""

    code: str = "DEPENDENCY_FAILURE"

    def __init__(self, message: str, item_id: Optional[int] = None):
        self.item_id = item_id
        super().__init__(message)


class InventoryAdjustmentError(Exception):
    """Raised by the inventory store when a quantity change cannot be applied."""

    def __init__(self, product_id: int, location_id: int, delta: int, reason: str):
        self.product_id = product_id
        self.location_id = location_id
        self.delta = delta
        self.reason = reason
        super().__init__(
            f"Cannot adjust product {product_id} at location {location_id} by {delta}: {reason}"
        )
