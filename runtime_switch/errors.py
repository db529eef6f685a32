"""
Exception taxonomy for runtime-switch.

Package manager failures never escape as raw subprocess errors: the
mutation driver converts them into MutationResult values, and only the
conditions below are raised to the command-line layer.
"""

from __future__ import annotations

from typing import Sequence


class SwitchError(Exception):
    """
    Base exception for runtime-switch errors.

    Attributes:
        message: Human-readable error message
        remediation: Suggested fix for the error
    """
    def __init__(self, message: str, remediation: str | None = None):
        self.message = message
        self.remediation = remediation
        super().__init__(message)


class PreconditionError(SwitchError):
    """The package manager is unavailable and could not be bootstrapped."""


class ResolutionExhaustedError(SwitchError):
    """
    No candidate identifier could be installed.

    Attributes:
        requested: The version string exactly as the user typed it
        attempted: Candidate identifiers that were tried, in order
    """
    def __init__(self, requested: str, attempted: Sequence[str], message: str | None = None):
        self.requested = requested
        self.attempted = tuple(attempted)
        tried = ", ".join(self.attempted) or "(none)"
        super().__init__(
            message or f"No candidate for '{requested}' could be installed (tried: {tried})",
            remediation=f"Retry with an exact package identifier instead of '{requested}'",
        )


class EnvironmentStoreError(SwitchError):
    """The persisted environment store could not be read or written."""
