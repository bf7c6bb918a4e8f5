from __future__ import annotations

import json

from paver.model import Diagnostic, Severity
from paver.render import OutputFormat, Report, render_report


def _report(**overrides) -> Report:
    values = dict(
        command="check",
        diagnostics=(
            Diagnostic.create(
                path="docs/a.md",
                rule="require-examples",
                message="missing required section 'Examples'",
                severity=Severity.ERROR,
                line=3,
            ),
            Diagnostic.create(
                path=None,
                rule="gradual-expired",
                message="gradual mode expired on 2026-01-01, enforce: now",
                severity=Severity.NOTICE,
            ),
        ),
        exit_code=1,
        documents=2,
    )
    values.update(overrides)
    return Report(**values)


def test_render_text() -> None:
    text = render_report(_report(notes=("a note",)), OutputFormat.TEXT)
    lines = text.splitlines()
    assert lines[0].startswith("<repository>: notice [gradual-expired]")
    assert lines[1] == "docs/a.md:3: error [require-examples] missing required section 'Examples'"
    assert lines[2] == "a note"
    assert lines[3] == "paver check: 1 error, 0 warnings, 1 notice (2 documents)"


def test_render_text_marks_gradual_mode() -> None:
    text = render_report(_report(gradual=True, exit_code=0), OutputFormat.TEXT)
    assert text.rstrip().endswith("[gradual mode: not failing]")


def test_render_json() -> None:
    payload = json.loads(
        render_report(_report(extras={"coverage": {"percentage": 50.0}}), OutputFormat.JSON)
    )
    assert payload["command"] == "check"
    assert payload["exit_code"] == 1
    assert payload["summary"] == {"error": 1, "notice": 1, "warning": 0}
    assert payload["coverage"] == {"percentage": 50.0}
    first = payload["diagnostics"][1]
    assert first == {
        "line": 3,
        "message": "missing required section 'Examples'",
        "nominal_severity": "error",
        "path": "docs/a.md",
        "rule": "require-examples",
        "severity": "error",
    }


def test_render_github_escapes_annotations() -> None:
    text = render_report(_report(), OutputFormat.GITHUB)
    lines = text.splitlines()
    assert lines[0] == (
        "::notice title=paver gradual-expired::gradual mode expired on 2026-01-01, enforce: now"
    )
    assert lines[1] == (
        "::error file=docs/a.md,line=3,title=paver require-examples::"
        "missing required section 'Examples'"
    )
    assert lines[-1] == "paver check: 1 error(s), 0 warning(s), 1 notice(s)"


def test_render_github_escapes_newlines_and_commas() -> None:
    report = _report(
        diagnostics=(
            Diagnostic.create(
                path="docs/a,b.md",
                rule="command-failed",
                message="50% done\nthen failed",
                severity=Severity.ERROR,
            ),
        )
    )
    line = render_report(report, OutputFormat.GITHUB).splitlines()[0]
    assert line == "::error file=docs/a%2Cb.md,title=paver command-failed::50%25 done%0Athen failed"
