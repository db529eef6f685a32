"""
Output rendering and formatting.
"""

import os
import sys
from typing import Iterable

from .discovery import HomeCandidate
from .installer import MutationResult
from .probe import FamilyStatus, InstalledVariant


# Environment options
USE_EMOJI = os.environ.get("RUNTIME_SWITCH_EMOJI", "1") == "1"
USE_COLOR = os.environ.get("RUNTIME_SWITCH_COLOR", "1") == "1"

# ANSI color codes
GREEN = "\033[32m"
BOLD_GREEN = "\033[1;32m"
YELLOW = "\033[33m"
BLUE = "\033[34m"
RED = "\033[31m"
RESET = "\033[0m"

# Row states
ACTIVE = "ACTIVE"
INSTALLED = "INSTALLED"
UNMANAGED = "UNMANAGED"
MISSING = "NOT INSTALLED"


def status_icon(state: str) -> str:
    """Get status icon for a table row.

    Args:
        state: Row state (ACTIVE, INSTALLED, UNMANAGED, NOT INSTALLED)

    Returns:
        Status icon string
    """
    if not USE_EMOJI:
        if state == ACTIVE:
            return "*"
        if state == INSTALLED:
            return "-"
        if state == UNMANAGED:
            return "!"
        return "x"

    if state == ACTIVE:
        return "✅"
    if state == INSTALLED:
        return "📦"
    if state == UNMANAGED:
        return "⚠️"
    return "❌"


def colorize(text: str, color: str) -> str:
    """Apply color to text.

    Args:
        text: Text to colorize
        color: ANSI color code

    Returns:
        Colored text or plain text if colors disabled
    """
    if not USE_COLOR or not text:
        return text
    return f"{color}{text}{RESET}"


STATE_COLOR = {
    ACTIVE: BOLD_GREEN,
    INSTALLED: GREEN,
    UNMANAGED: YELLOW,
    MISSING: BLUE,
}


def _row(state: str, family: str, identifier: str, location: str) -> str:
    color = STATE_COLOR.get(state, BLUE)
    return "|".join((status_icon(state), family, colorize(identifier, color), location))


def status_rows(status: FamilyStatus) -> list[str]:
    """Table rows for one family: one per installed variant, plus PATH oddities."""
    rows = []
    for variant in status.installed:
        state = ACTIVE if variant.active else INSTALLED
        scope = " (global)" if variant.global_install else ""
        rows.append(_row(state, status.family, variant.identifier + scope, variant.path))

    if status.unmanaged:
        rows.append(_row(UNMANAGED, status.family, "(unmanaged)", status.resolved_executable or ""))
    elif not status.installed:
        rows.append(_row(MISSING, status.family, "-", ""))
    return rows


def render_status(statuses: Iterable[FamilyStatus]) -> None:
    """Render family status as a pipe-delimited table.

    Args:
        statuses: Probe results, one per family
    """
    statuses = list(statuses)
    print("|".join(("state", "family", "variant", "path")))
    for status in statuses:
        for row in status_rows(status):
            print(row)
    print_summary(statuses)


def print_summary(statuses: list[FamilyStatus]) -> None:
    """Print summary line to stderr."""
    installed = sum(len(s.installed) for s in statuses)
    active = sum(1 for s in statuses if s.active is not None)
    unmanaged = sum(1 for s in statuses if s.unmanaged)

    parts = [f"{len(statuses)} families", f"{installed} installed", f"{active} active"]
    if unmanaged > 0:
        parts.append(f"{unmanaged} unmanaged")
    print(f"\nRuntimes: {', '.join(parts)}", file=sys.stderr)


def render_variants(variants: list[InstalledVariant]) -> None:
    """Render a numbered list of installed variants."""
    if not variants:
        print("  (none installed)")
        return
    for index, variant in enumerate(variants, start=1):
        marker = colorize("active", BOLD_GREEN) if variant.active else ""
        print(f"  {index}) {variant.identifier:<16} {variant.path}  {marker}".rstrip())


def render_homes(candidates: list[HomeCandidate]) -> None:
    """Render a numbered list of home directory candidates."""
    for index, candidate in enumerate(candidates, start=1):
        print(f"  {index}) {candidate.label:<28} {candidate.path}")


def render_result(result: MutationResult) -> None:
    """Print the outcome of a mutation, with warnings and leftovers on stderr."""
    if result.success:
        icon = "✅" if USE_EMOJI else "ok"
        color = YELLOW if result.degraded else GREEN
    else:
        icon = "❌" if USE_EMOJI else "failed"
        color = RED
    print(f"{icon} {colorize(result.message, color)}")

    for attempt in result.attempts:
        if not attempt.success:
            print(f"  tried {attempt.identifier or repr(attempt.identifier)}: {attempt.message}", file=sys.stderr)
    for path in result.leftovers:
        print(f"  left behind: {path}", file=sys.stderr)
    for warning in result.warnings:
        print(f"  {colorize('warning:', YELLOW)} {warning}", file=sys.stderr)
