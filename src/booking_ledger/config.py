"""Configuration loading for the booking ledger.

Supports three tiers:
1. Simple config via .toml or .json - most users
2. Python config via .py - power users with hooks
3. Full override via subclassing - rare cases
"""

from __future__ import annotations

import importlib.util
import json
import sys
import tomllib
from dataclasses import dataclass, field
from datetime import tzinfo
from pathlib import Path
from typing import Any, Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .normalizer import OverlapPolicy


@dataclass
class LedgerConfig:
    """Configuration for a booking ledger."""

    project_root: Path = field(default_factory=Path.cwd)

    # Storage (data_dir is relative to project_root unless absolute)
    data_dir: str = "bookings"
    lock_timeout: float = 10.0

    # Booking behaviour
    overlap_policy: OverlapPolicy = OverlapPolicy.OVERWRITE
    timezone: Optional[str] = None  # IANA name; None = system local zone
    issue_pattern: Optional[str] = None  # e.g. r"[A-Z]+-\d+" for Jira keys
    default_comment: str = ""

    # Export
    resolution_minutes: int = 15
    combine_bookings: bool = False
    csv_delimiter: str = ","

    # Hooks (populated from Python config)
    hooks: dict[str, Callable] = field(default_factory=dict)

    def get_data_path(self) -> Path:
        return self.project_root / self.data_dir

    def get_tzinfo(self) -> Optional[tzinfo]:
        """Resolve the configured zone, or None for the system local zone."""
        if self.timezone is None:
            return None
        try:
            return ZoneInfo(self.timezone)
        except ZoneInfoNotFoundError as e:
            raise ValueError(f"Unknown timezone: {self.timezone}") from e


def load_toml_config(path: Path) -> dict[str, Any]:
    """Load configuration from TOML file."""
    with open(path, "rb") as f:
        return tomllib.load(f)


def load_json_config(path: Path) -> dict[str, Any]:
    """Load configuration from JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def load_python_config(path: Path) -> tuple[dict[str, Any], dict[str, Callable]]:
    """Load configuration from Python file.

    Returns:
        Tuple of (config_dict, hooks_dict)

    Convention:
        - CONFIG dict or config dict for static configuration
        - Functions named hook_* become hooks (pre_submit, post_rotate)
    """
    spec = importlib.util.spec_from_file_location("booking_config", path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot load Python config from {path}")

    module = importlib.util.module_from_spec(spec)
    sys.modules["booking_config"] = module
    spec.loader.exec_module(module)

    config_dict = {}
    if hasattr(module, "CONFIG"):
        config_dict = module.CONFIG
    elif hasattr(module, "config"):
        config_dict = module.config

    hooks = {}
    for name in dir(module):
        if name.startswith("hook_"):
            hooks[name[5:]] = getattr(module, name)

    return config_dict, hooks


def parse_overlap_policy(value: str) -> OverlapPolicy:
    try:
        return OverlapPolicy(value)
    except ValueError:
        allowed = [p.value for p in OverlapPolicy]
        raise ValueError(f"Unknown overlap policy: {value!r}. Allowed: {allowed}") from None


def dict_to_config(data: dict[str, Any], project_root: Path) -> LedgerConfig:
    """Convert dictionary to LedgerConfig."""
    config = LedgerConfig(project_root=project_root)

    if "storage" in data:
        storage = data["storage"]
        if "data_dir" in storage:
            config.data_dir = storage["data_dir"]
        if "lock_timeout" in storage:
            config.lock_timeout = float(storage["lock_timeout"])

    if "booking" in data:
        booking = data["booking"]
        if "overlap_policy" in booking:
            config.overlap_policy = parse_overlap_policy(booking["overlap_policy"])
        if "timezone" in booking:
            config.timezone = booking["timezone"]
            config.get_tzinfo()
        if "issue_pattern" in booking:
            config.issue_pattern = booking["issue_pattern"]
        if "default_comment" in booking:
            config.default_comment = booking["default_comment"]

    if "export" in data:
        export = data["export"]
        if "resolution_minutes" in export:
            resolution = int(export["resolution_minutes"])
            if resolution < 1:
                raise ValueError(f"resolution_minutes must be positive, got {resolution}")
            config.resolution_minutes = resolution
        if "combine_bookings" in export:
            config.combine_bookings = bool(export["combine_bookings"])
        if "csv_delimiter" in export:
            config.csv_delimiter = export["csv_delimiter"]

    return config


def find_config_file(project_root: Path) -> Optional[Path]:
    """Find configuration file in project root.

    Search order:
    1. booking_config.py (most flexible)
    2. booking_config.toml
    3. booking_config.json
    4. .booking.toml
    5. .booking.json
    """
    candidates = [
        "booking_config.py",
        "booking_config.toml",
        "booking_config.json",
        ".booking.toml",
        ".booking.json",
    ]

    for name in candidates:
        path = project_root / name
        if path.exists():
            return path

    return None


def load_config(project_root: Path, config_path: Optional[Path] = None) -> LedgerConfig:
    """Load ledger configuration.

    Args:
        project_root: Directory the data directory is resolved against
        config_path: Optional explicit path to config file

    Returns:
        LedgerConfig instance
    """
    if config_path is None:
        config_path = find_config_file(project_root)

    if config_path is None:
        return LedgerConfig(project_root=project_root)

    suffix = config_path.suffix.lower()

    if suffix == ".py":
        config_dict, hooks = load_python_config(config_path)
        config = dict_to_config(config_dict, project_root)
        config.hooks = hooks
        return config

    elif suffix == ".toml":
        return dict_to_config(load_toml_config(config_path), project_root)

    elif suffix == ".json":
        return dict_to_config(load_json_config(config_path), project_root)

    else:
        raise ValueError(f"Unsupported config file type: {suffix}")
