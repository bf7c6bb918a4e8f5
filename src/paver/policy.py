"""Severity and exit-code policy shared by every command."""

from __future__ import annotations

from dataclasses import replace
from enum import IntEnum
from typing import Iterable

from paver.model import Diagnostic, Severity


class ExitCode(IntEnum):
    OK = 0
    FAILED = 1
    USAGE = 2
    INTERRUPTED = 130


def apply_gradual(diagnostics: Iterable[Diagnostic], *, gradual: bool) -> list[Diagnostic]:
    """Relabel downgradable errors as warnings while gradual mode is active.

    Returns new diagnostics; ``nominal_severity`` is left untouched.
    """
    items = list(diagnostics)
    if not gradual:
        return items
    return [
        replace(item, severity=Severity.WARNING)
        if item.severity is Severity.ERROR and item.downgradable
        else item
        for item in items
    ]


def exit_code_for(diagnostics: Iterable[Diagnostic], *, gradual: bool) -> ExitCode:
    if gradual:
        return ExitCode.OK
    if any(item.severity is Severity.ERROR for item in diagnostics):
        return ExitCode.FAILED
    return ExitCode.OK


def summarize(diagnostics: Iterable[Diagnostic]) -> dict[str, int]:
    counts = {severity.value: 0 for severity in Severity}
    for item in diagnostics:
        counts[item.severity.value] += 1
    return counts


def sort_diagnostics(diagnostics: Iterable[Diagnostic]) -> list[Diagnostic]:
    return sorted(
        diagnostics,
        key=lambda item: (item.path or "", item.line or 0, item.rule, item.message),
    )
