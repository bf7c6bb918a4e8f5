"""Exception types raised by paver.

Only failures that stop a command (or exclude a single file) are
exceptions. Rule violations, failed verification commands and output
mismatches are reported as diagnostics instead.
"""

from __future__ import annotations

from pathlib import Path


class PaverError(Exception):
    """Base class for paver failures."""


class ConfigError(PaverError):
    """Configuration is missing, malformed, or points at something absent.

    Fatal: the CLI aborts before any checking and exits with the usage code.
    """

    def __init__(self, message: str, *, path: Path | None = None):
        super().__init__(message)
        self.path = path

    def __str__(self) -> str:
        message = super().__str__()
        if self.path is None:
            return message
        return f"{self.path}: {message}"


class ParseError(PaverError):
    """A documentation file could not be decoded as text."""

    def __init__(self, path: Path, line: int, reason: str):
        super().__init__(f"{path}:{line}: {reason}")
        self.path = path
        self.line = line
        self.reason = reason


class VcsError(PaverError):
    """The version-control collaborator could not produce a listing."""


class RunInterrupted(PaverError):
    """A user interrupt stopped the run; in-flight commands were killed."""
