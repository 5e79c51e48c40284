"""
warden.errors — Domain Exception Taxonomy
==========================================

Validation and business-rule errors are expected and recoverable; they
propagate to the caller unchanged so the UI can show them.  Each error
carries a stable ``code`` that the API layer returns alongside the message.
"""

from __future__ import annotations


class WardenError(Exception):
    """Base class for every error raised by the core."""

    code = "error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class ValidationError(WardenError, ValueError):
    """A required field is missing or malformed."""

    code = "validation_error"

    def __init__(self, reason: str, message: str | None = None) -> None:
        super().__init__(message or reason)
        self.reason = reason


class NotFoundError(WardenError, LookupError):
    code = "not_found"


class ModifyLimitExceeded(WardenError):
    code = "modify_limit_exceeded"


class InsufficientEnergy(WardenError):
    code = "insufficient_energy"

    def __init__(self, requested: int, available: int) -> None:
        super().__init__(
            f"Insufficient energy: requested {requested}, available {available}"
        )
        self.requested = requested
        self.available = available


class TerminalStage(WardenError):
    """Guardian is already at its final stage.  Treated as a no-op, not a failure."""

    code = "terminal_stage"


class GuardianLocked(WardenError):
    code = "guardian_locked"


class AlreadyClaimed(WardenError):
    code = "already_claimed"


class NotCompleted(WardenError):
    code = "not_completed"


class ConcurrencyConflict(WardenError):
    """Optimistic retry budget exhausted."""

    code = "concurrency_conflict"


class StoreTimeout(WardenError, TimeoutError):
    """The store did not acknowledge in time.  The transaction was rolled back."""

    code = "timeout"
