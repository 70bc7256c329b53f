"""
Error types raised by the pricing engine.

Every error carries a machine-readable ``kind`` and a human-readable message.
Callers should only retry ``DependencyError``.
"""


class PricingError(Exception):
    """Base class for all pricing engine errors."""
    kind = "pricing"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class ValidationError(PricingError):
    """Malformed or inconsistent request. Not retryable without new input."""
    kind = "validation"


class NotFoundError(PricingError):
    """A referenced entity or snapshot does not exist."""
    kind = "not_found"


class StateError(PricingError):
    """Referenced entities exist but are mutually inconsistent or inactive."""
    kind = "state"


class DependencyError(PricingError):
    """An external read model or the snapshot store failed."""
    kind = "dependency"


class SnapshotExistsError(StateError):
    """Attempt to write a snapshot id that is already stored."""

    def __init__(self, snapshot_id: str):
        super().__init__(f"Snapshot '{snapshot_id}' already exists and cannot be overwritten")
        self.snapshot_id = snapshot_id
