"""
Typed failures raised by Usage Meter.

Validation and not-found errors are raised before any state change.
"""


class UsageMeterError(Exception):
    """Base class for all Usage Meter errors."""


class ValidationError(UsageMeterError, ValueError):
    """Raised when input is rejected before anything is written."""


class NotFoundError(UsageMeterError, LookupError):
    """Raised when an id does not exist or belongs to another owner."""

    def __init__(self, kind: str, item_id: str):
        super().__init__(f"{kind} not found: {item_id}")
        self.kind = kind
        self.item_id = item_id
