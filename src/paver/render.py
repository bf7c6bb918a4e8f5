"""Report rendering: text, json and GitHub workflow annotations.

Every format renders the same diagnostic set; only the layout differs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping

from paver.model import Diagnostic, Severity
from paver.policy import sort_diagnostics, summarize
from paver.runtime.json_io import dump_json_text


class OutputFormat(str, Enum):
    TEXT = "text"
    JSON = "json"
    GITHUB = "github"


@dataclass(frozen=True)
class Report:
    command: str
    diagnostics: tuple[Diagnostic, ...]
    exit_code: int
    gradual: bool = False
    documents: int | None = None
    extras: Mapping[str, object] = field(default_factory=dict)
    notes: tuple[str, ...] = ()


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" + ("" if count == 1 else "s")


def _location(item: Diagnostic) -> str:
    if item.path is None:
        return "<repository>"
    if item.line is None:
        return item.path
    return f"{item.path}:{item.line}"


def render_text(report: Report) -> str:
    lines: list[str] = []
    for item in sort_diagnostics(report.diagnostics):
        lines.append(f"{_location(item)}: {item.severity.value} [{item.rule}] {item.message}")
    lines.extend(report.notes)
    counts = summarize(report.diagnostics)
    summary = (
        f"paver {report.command}: {_plural(counts['error'], 'error')}, "
        f"{_plural(counts['warning'], 'warning')}, {_plural(counts['notice'], 'notice')}"
    )
    if report.documents is not None:
        summary += f" ({_plural(report.documents, 'document')})"
    if report.gradual:
        summary += " [gradual mode: not failing]"
    lines.append(summary)
    return "\n".join(lines) + "\n"


def render_json(report: Report) -> str:
    payload: dict[str, object] = {
        "command": report.command,
        "exit_code": report.exit_code,
        "gradual": report.gradual,
        "documents": report.documents,
        "summary": summarize(report.diagnostics),
        "diagnostics": [item.as_json_dict() for item in sort_diagnostics(report.diagnostics)],
    }
    for key, value in report.extras.items():
        payload[key] = value
    return dump_json_text(payload)


def _escape_data(text: str) -> str:
    return text.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")


def _escape_property(text: str) -> str:
    return _escape_data(text).replace(":", "%3A").replace(",", "%2C")


_GITHUB_LEVELS = {
    Severity.ERROR: "error",
    Severity.WARNING: "warning",
    Severity.NOTICE: "notice",
}


def render_github(report: Report) -> str:
    lines: list[str] = []
    for item in sort_diagnostics(report.diagnostics):
        props: list[str] = []
        if item.path is not None:
            props.append(f"file={_escape_property(item.path)}")
            if item.line is not None:
                props.append(f"line={item.line}")
        props.append(f"title={_escape_property(f'paver {item.rule}')}")
        lines.append(f"::{_GITHUB_LEVELS[item.severity]} {','.join(props)}::{_escape_data(item.message)}")
    lines.extend(report.notes)
    counts = summarize(report.diagnostics)
    lines.append(
        f"paver {report.command}: {counts['error']} error(s), "
        f"{counts['warning']} warning(s), {counts['notice']} notice(s)"
    )
    return "\n".join(lines) + "\n"


def render_report(report: Report, output_format: OutputFormat) -> str:
    if output_format is OutputFormat.JSON:
        return render_json(report)
    if output_format is OutputFormat.GITHUB:
        return render_github(report)
    return render_text(report)
