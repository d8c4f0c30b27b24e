"""Tool definitions wrapping the booking ledger for collaborators.

GUI, shortcut hooks and scrapers talk to the ledger through JSON-style
arguments; results are always dicts with a ``success`` flag, never raised
exceptions.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any, Optional

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
from .ledger import BookingLedger
from .models import Action, ActionKind, IssueRef
from .normalizer import OverlapPolicy

_INSTANT = {"type": "string", "description": "ISO 8601 timestamp; naive values use the ledger's zone"}
_DAY = {"type": "string", "description": "ISO date (YYYY-MM-DD); default: the open day"}


def make_tools(ledger: BookingLedger) -> dict[str, dict]:
    """Create tool definitions for the booking ledger.

    Returns:
        Dict mapping tool names to their definitions.
    """

    tools = {}

    tools["submit_action"] = {
        "name": "submit_action",
        "description": "Record one user action (start/end day, work, interruption, or a fixed booking).",
        "inputSchema": {
            "type": "object",
            "properties": {
                "kind": {
                    "type": "string",
                    "enum": [k.value for k in ActionKind],
                    "description": "Action type",
                },
                "at": _INSTANT,
                "issue": {
                    "type": "string",
                    "description": "Issue or cost-unit identifier (work, interruption, fixed booking)",
                },
                "comment": {
                    "type": "string",
                    "description": "Free-text comment for the booking",
                },
                "default_duration_minutes": {
                    "type": "integer",
                    "description": "Interruption length used when it is never ended explicitly",
                },
                "end": {
                    "type": "string",
                    "description": "End of a fixed booking (ISO 8601)",
                },
            },
            "required": ["kind", "at"],
        },
    }

    tools["retract_last"] = {
        "name": "retract_last",
        "description": "Undo the most recent action of the open day.",
        "inputSchema": {"type": "object", "properties": {}},
    }

    tools["current_state"] = {
        "name": "current_state",
        "description": "Report whether work is in progress and on which issue.",
        "inputSchema": {
            "type": "object",
            "properties": {"now": _INSTANT},
            "required": ["now"],
        },
    }

    tools["day_summary"] = {
        "name": "day_summary",
        "description": "Bookings, per-issue totals and inconsistencies of a day.",
        "inputSchema": {
            "type": "object",
            "properties": {"day": _DAY, "now": _INSTANT},
        },
    }

    tools["week_summary"] = {
        "name": "week_summary",
        "description": "Bookings and totals of the ISO week containing a day.",
        "inputSchema": {
            "type": "object",
            "properties": {"day": _DAY, "now": _INSTANT},
        },
    }

    tools["export"] = {
        "name": "export",
        "description": "Render bookings as text for a time-booking platform.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "scope": {"type": "string", "enum": ["day", "week"], "default": "day"},
                "day": _DAY,
                "format": {"type": "string", "enum": ["csv", "pipe"], "default": "csv"},
                "now": _INSTANT,
                "rounded": {"type": "boolean", "default": False},
                "combined": {"type": "boolean"},
            },
        },
    }

    tools["amend_day"] = {
        "name": "amend_day",
        "description": "Correct a finalized day with fixed bookings.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "day": {"type": "string", "description": "ISO date of the finalized day"},
                "bookings": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "start": {"type": "string"},
                            "end": {"type": "string"},
                            "issue": {"type": "string"},
                            "comment": {"type": "string"},
                        },
                        "required": ["start", "end", "issue"],
                    },
                },
                "policy": {"type": "string", "enum": [p.value for p in OverlapPolicy]},
            },
            "required": ["day", "bookings"],
        },
    }

    tools["recent_issues"] = {
        "name": "recent_issues",
        "description": "Most recently booked issues, newest first.",
        "inputSchema": {
            "type": "object",
            "properties": {"limit": {"type": "integer", "default": 10}},
        },
    }

    return tools


def _parse_instant(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except (TypeError, ValueError) as e:
        raise InvalidInstant(f"Invalid timestamp: {value!r}") from e


def _parse_day(value: Optional[str]) -> Optional[date]:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError) as e:
        raise InvalidInstant(f"Invalid date: {value!r}") from e


def _optional_instant(arguments: dict[str, Any], key: str) -> Optional[datetime]:
    value = arguments.get(key)
    return _parse_instant(value) if value is not None else None


def action_from_arguments(arguments: dict[str, Any]) -> Action:
    """Build an Action from tool arguments."""
    try:
        kind = ActionKind(arguments["kind"])
    except ValueError:
        raise ValidationError(f"Unknown action kind: {arguments['kind']!r}") from None
    at = _parse_instant(arguments["at"])

    issue = None
    if arguments.get("issue"):
        issue = IssueRef(arguments["issue"], arguments.get("comment") or "")
    elif kind in (ActionKind.START_WORK, ActionKind.START_INTERRUPTION, ActionKind.BOOK_FIXED):
        raise ValidationError(f"Action {kind.value} requires an issue")

    if kind == ActionKind.START_DAY:
        return Action.start_day(at)
    if kind == ActionKind.END_DAY:
        return Action.end_day(at)
    if kind == ActionKind.START_WORK:
        return Action.start_work(at, issue)
    if kind == ActionKind.END_WORK:
        return Action.end_work(at)
    if kind == ActionKind.START_INTERRUPTION:
        minutes = arguments.get("default_duration_minutes")
        duration = timedelta(minutes=minutes) if minutes is not None else None
        return Action.start_interruption(at, issue, duration)
    if kind == ActionKind.END_INTERRUPTION:
        return Action.end_interruption(at)
    if "end" not in arguments:
        raise ValidationError("Fixed booking requires an end")
    return Action.book_fixed(TimeInterval(at, _parse_instant(arguments["end"])), issue)


async def execute_tool(ledger: BookingLedger, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
    """Execute a ledger tool and return the result.

    Args:
        ledger: BookingLedger instance
        name: Tool name
        arguments: Tool arguments

    Returns:
        Result dict with success status and data or error
    """
    try:
        if name == "submit_action":
            result = ledger.submit(action_from_arguments(arguments))
            return {
                "success": True,
                "action": result.action.to_dict(),
                "state": result.normalized.state.value,
                "records": [r.to_dict() for r in result.normalized.records],
                "inconsistencies": [i.to_dict() for i in result.inconsistencies],
                "rotated": [d.isoformat() for d in result.rotated],
            }

        elif name == "retract_last":
            action = ledger.retract_last()
            return {
                "success": True,
                "retracted": action.to_dict(),
                "message": f"Retracted {action}",
            }

        elif name == "current_state":
            state = ledger.current_state(_parse_instant(arguments["now"]))
            return {
                "success": True,
                **state.to_dict(),
            }

        elif name == "day_summary":
            summary = ledger.day_summary(
                day=_parse_day(arguments.get("day")),
                now=_optional_instant(arguments, "now"),
            )
            return {
                "success": True,
                **summary.to_dict(),
            }

        elif name == "week_summary":
            summary = ledger.week_summary(
                day=_parse_day(arguments.get("day")),
                now=_optional_instant(arguments, "now"),
            )
            return {
                "success": True,
                **summary.to_dict(),
            }

        elif name == "export":
            text = ledger.export(
                scope=arguments.get("scope", "day"),
                day=_parse_day(arguments.get("day")),
                fmt=arguments.get("format", "csv"),
                now=_optional_instant(arguments, "now"),
                rounded=arguments.get("rounded", False),
                combined=arguments.get("combined"),
            )
            return {
                "success": True,
                "format": arguments.get("format", "csv"),
                "content": text,
            }

        elif name == "amend_day":
            corrections = [
                Action.book_fixed(
                    TimeInterval(_parse_instant(b["start"]), _parse_instant(b["end"])),
                    IssueRef(b["issue"], b.get("comment") or ""),
                )
                for b in arguments["bookings"]
            ]
            policy = OverlapPolicy(arguments["policy"]) if arguments.get("policy") else None
            summary = ledger.amend_day(_parse_day(arguments["day"]), corrections, policy)
            return {
                "success": True,
                **summary.to_dict(),
            }

        elif name == "recent_issues":
            issues = ledger.recent_issues(limit=arguments.get("limit", 10))
            return {
                "success": True,
                "count": len(issues),
                "issues": issues,
            }

        else:
            return {
                "success": False,
                "error": f"Unknown tool: {name}",
            }

    except OutOfOrderAction as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "out_of_order_action",
            "suggestion": "Submit a fixed booking to correct earlier times",
        }

    except InvalidTransition as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "invalid_transition",
            "suggestion": "Use current_state to see what the day expects next",
        }

    except OverlapConflict as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "overlap_conflict",
            "suggestion": "Pick a free time span or use the overwrite policy",
        }

    except (InvalidInstant, ZeroDurationError) as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "invalid_instant",
        }

    except InvalidIssue as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "invalid_issue",
        }

    except NothingToRetract as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "nothing_to_retract",
        }

    except ValidationError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "validation_error",
        }

    except RotationConflict as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "rotation_conflict",
            "suggestion": "Use amend_day to correct a finalized day",
        }

    except AlreadyRunning as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "already_running",
        }

    except CorruptLedgerFile as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "corrupt_ledger_file",
        }

    except StorageError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "storage_error",
            "suggestion": "Files were left unchanged; retry the operation",
        }

    except LedgerError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "ledger_error",
        }

    except (KeyError, ValueError) as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "invalid_arguments",
        }

    except Exception as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "unexpected_error",
        }
