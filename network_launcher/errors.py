"""
Launcher error taxonomy.

Every startup-phase failure is fatal: the error is raised at the failing step
with enough context to print a one-line cause, and ``cli.main`` maps it to the
process exit status. Nothing here is retried.
"""

from __future__ import annotations

from typing import Optional


class LauncherError(Exception):
    """Base class for fatal launcher errors."""

    exit_code: int = 1

    def __init__(self, message: str, *, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message


class ConfigurationError(LauncherError):
    """Malformed or unknown arguments."""

    exit_code = 2

    def __init__(
        self,
        message: str,
        *,
        usage: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, cause=cause)
        self.usage = usage


class VersionCompatibilityError(LauncherError):
    """Declared interface version is outside the supported range."""


class SpawnError(LauncherError):
    """The server binary is missing or could not be executed."""


class DiscoveryError(LauncherError):
    """The port file could not be watched, read or parsed."""


class ConfigurationRoundTripError(LauncherError):
    """A call to the control API failed."""


class StatusWriteError(LauncherError):
    """status.json could not be written."""
