"""Booking Ledger Configuration - Advanced Python Example

Copy to your project root as booking_config.py for full extensibility.

Convention:
- CONFIG dict for static configuration (same structure as TOML)
- Functions named hook_* become lifecycle hooks
"""

import dataclasses

# =============================================================================
# Static Configuration (same structure as TOML)
# =============================================================================

CONFIG = {
    "storage": {
        "data_dir": "bookings",
        "lock_timeout": 5,
    },
    "booking": {
        "overlap_policy": "overwrite",
        "timezone": "Europe/Vienna",
        "issue_pattern": r"[A-Z][A-Z0-9]*-\d+|MEETING|ORG",
        "default_comment": "work",
    },
    "export": {
        "resolution_minutes": 15,
        "combine_bookings": False,
        "csv_delimiter": ";",
    },
}


# =============================================================================
# Hooks - Called during ledger operations
# =============================================================================

# Short names typed into the quick-entry box, expanded to booking issues
SHORTCUTS = {
    "m": "MEETING",
    "o": "ORG",
}


def hook_pre_submit(action):
    """Called before an action is validated and recorded.

    Return a (possibly replaced) action; returning None keeps the original.
    """
    if action.issue is not None and action.issue.ident.lower() in SHORTCUTS:
        issue = dataclasses.replace(action.issue, ident=SHORTCUTS[action.issue.ident.lower()])
        return dataclasses.replace(action, issue=issue)
    return action


def hook_post_rotate(day, records):
    """Called after a finished day was written to its week file.

    Useful for notifications, or committing the week file to a git repo.
    """
    print(f"[Bookings] {day.isoformat()}: {len(records)} bookings finalized")
