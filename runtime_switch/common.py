"""
Common utilities shared across runtime_switch modules.
"""

from __future__ import annotations

import os
import sys


def is_windows() -> bool:
    """Check if running on Windows."""
    return sys.platform == "win32"


def normalize_entry(entry: str) -> str:
    """
    Normalize a PATH entry or directory for comparison.

    Strips surrounding whitespace and quotes and trailing separators, then
    case-folds on Windows where the filesystem is case-insensitive.

    Args:
        entry: Directory path as stored in PATH

    Returns:
        Comparison key for the entry
    """
    value = entry.strip().strip('"')
    if len(value) > 1:
        value = value.rstrip("\\/") or value
    return os.path.normcase(os.path.normpath(value)) if value else value


def same_path(a: str, b: str) -> bool:
    """Return True when two paths refer to the same location."""
    if not a or not b:
        return False
    return normalize_entry(os.path.realpath(a)) == normalize_entry(os.path.realpath(b))


def is_within(path: str, directory: str) -> bool:
    """
    Check whether path lies inside directory (or is directory itself).

    Both sides are resolved through symlinks/junctions first.
    """
    if not path or not directory:
        return False
    child = normalize_entry(os.path.realpath(path))
    parent = normalize_entry(os.path.realpath(directory))
    if child == parent:
        return True
    return child.startswith(parent.rstrip(os.sep) + os.sep)


def split_path(value: str | None) -> list[str]:
    """Split a PATH value into non-empty entries."""
    if not value:
        return []
    return [entry for entry in value.split(os.pathsep) if entry.strip()]


def vlog(msg: str, verbose: bool = False) -> None:
    """
    Log verbose message using structured logging.

    Args:
        msg: Message to log
        verbose: Whether verbose mode is enabled
    """
    if verbose or os.environ.get("RUNTIME_SWITCH_DEBUG", "0") == "1":
        from .logging_config import get_logger
        get_logger().info(msg)
