"""Booking ledger - turns interruption-heavy workday events into clean time bookings."""

import logging

from .config import LedgerConfig, load_config
from .errors import (
    AlreadyRunning,
    CorruptLedgerFile,
    InvalidInstant,
    InvalidIssue,
    InvalidTransition,
    LedgerError,
    NothingToRetract,
    OutOfOrderAction,
    OverlapConflict,
    RotationConflict,
    StorageError,
    ValidationError,
    ZeroDurationError,
)
from .interval import TimeInterval
from .ledger import BookingLedger, CurrentState, SubmitResult
from .locking import InstanceLock
from .models import Action, ActionKind, BookingRecord, Inconsistency, InconsistencyKind, IssueRef
from .normalizer import DayState, NormalizedDay, Normalizer, OverlapPolicy

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"

__all__ = [
    "Action",
    "ActionKind",
    "AlreadyRunning",
    "BookingLedger",
    "BookingRecord",
    "CorruptLedgerFile",
    "CurrentState",
    "DayState",
    "Inconsistency",
    "InconsistencyKind",
    "InstanceLock",
    "InvalidInstant",
    "InvalidIssue",
    "InvalidTransition",
    "IssueRef",
    "LedgerConfig",
    "LedgerError",
    "NormalizedDay",
    "Normalizer",
    "NothingToRetract",
    "OutOfOrderAction",
    "OverlapConflict",
    "OverlapPolicy",
    "RotationConflict",
    "StorageError",
    "SubmitResult",
    "TimeInterval",
    "ValidationError",
    "ZeroDurationError",
    "load_config",
]
