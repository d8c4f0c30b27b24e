"""Exception hierarchy for the booking ledger."""

from __future__ import annotations


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


# ========== Validation ==========

class ValidationError(LedgerError):
    """An action or correction was rejected. Nothing was changed."""
    pass


class OutOfOrderAction(ValidationError):
    """Raised when an action's timestamp precedes already recorded work."""
    pass


class InvalidTransition(ValidationError):
    """Raised when an action does not fit the current day state."""
    pass


class InvalidInstant(ValidationError):
    """Raised when an instant is unusable (end before start, wrong day)."""
    pass


class OverlapConflict(ValidationError):
    """Raised when a fixed booking overlaps existing records under the reject policy."""
    pass


class ZeroDurationError(ValidationError):
    """Raised when a fixed booking covers no time at all."""
    pass


class NothingToRetract(ValidationError):
    """Raised when undo is requested on an empty action log."""
    pass


class InvalidIssue(ValidationError):
    """Raised when an issue identifier does not match the configured pattern."""
    pass


# ========== Storage ==========

class StorageError(LedgerError):
    """Raised when reading or writing ledger files fails."""
    pass


class RotationConflict(StorageError):
    """Raised when a week file already holds a finalized entry for the date."""
    pass


class AlreadyRunning(StorageError):
    """Raised when another process owns the data directory."""
    pass


class CorruptLedgerFile(StorageError):
    """Raised when a ledger file cannot be parsed."""
    pass
