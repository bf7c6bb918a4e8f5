from __future__ import annotations

import json
import os
from pathlib import Path
import shutil
import signal
import subprocess
import threading

import pytest
from typer.testing import CliRunner

from paver import cli
from paver.policy import ExitCode
from tests.doc_helpers import GOOD_DOC

MISSING_VERIFICATION = """\
# Widget

## Examples

Run `widget`.
"""

FAILING_VERIFICATION = """\
# Widget

## Examples

Run `widget`.

## Verification

```bash
echo before
exit 3
echo after
```
"""


def _invoke(args: list[str]):
    return CliRunner().invoke(cli.app, args)


def _json(result) -> dict:
    return json.loads(result.stdout)


def test_help_lists_commands() -> None:
    result = _invoke(["--help"])
    assert result.exit_code == 0
    for name in ("check", "verify", "changed", "coverage", "config"):
        assert name in result.stdout


def test_check_clean_repository(make_repo) -> None:
    root = make_repo({"docs/widget.md": GOOD_DOC})
    result = _invoke(["check", "--root", str(root)])
    assert result.exit_code == 0
    assert "paver check: 0 errors, 0 warnings, 0 notices (1 document)" in result.stdout


def test_check_missing_verification_reports_one_error(make_repo) -> None:
    root = make_repo({"docs/widget.md": MISSING_VERIFICATION})
    result = _invoke(["check", "--root", str(root), "--format", "json"])
    assert result.exit_code == 1
    payload = _json(result)
    assert payload["summary"] == {"error": 1, "notice": 0, "warning": 0}
    [diagnostic] = payload["diagnostics"]
    assert diagnostic["rule"] == "require-verification"
    assert diagnostic["path"] == "docs/widget.md"


def test_check_gradual_mode_does_not_fail(make_repo) -> None:
    root = make_repo(
        {"docs/widget.md": MISSING_VERIFICATION},
        config="""
        [rules]
        gradual = true
        gradual_until = 2999-12-31
        """,
    )
    result = _invoke(["check", "--root", str(root), "--format", "json"])
    assert result.exit_code == 0
    payload = _json(result)
    assert payload["gradual"] is True
    [diagnostic] = payload["diagnostics"]
    assert diagnostic["severity"] == "warning"
    assert diagnostic["nominal_severity"] == "error"


def test_check_gradual_expired_enforces(make_repo) -> None:
    root = make_repo(
        {"docs/widget.md": MISSING_VERIFICATION},
        config="""
        [rules]
        gradual = true
        gradual_until = 2000-01-01
        """,
    )
    result = _invoke(["check", "--root", str(root), "--format", "json"])
    assert result.exit_code == 1
    payload = _json(result)
    rules = sorted(item["rule"] for item in payload["diagnostics"])
    assert rules == ["gradual-expired", "require-verification"]
    assert payload["gradual"] is False


def test_check_strict_beats_gradual_flag(make_repo) -> None:
    root = make_repo({"docs/widget.md": MISSING_VERIFICATION})
    gradual = _invoke(["check", "--root", str(root), "--gradual"])
    assert gradual.exit_code == 0
    assert "[gradual mode: not failing]" in gradual.stdout
    strict = _invoke(["check", "--root", str(root), "--gradual", "--strict"])
    assert strict.exit_code == 1


def test_check_selected_paths_only(make_repo) -> None:
    root = make_repo(
        {"docs/widget.md": GOOD_DOC, "docs/broken.md": MISSING_VERIFICATION}
    )
    result = _invoke(["check", "--root", str(root), str(root / "docs" / "widget.md")])
    assert result.exit_code == 0
    assert "(1 document)" in result.stdout


def test_check_unreadable_document_is_an_error(make_repo) -> None:
    root = make_repo({"docs/widget.md": GOOD_DOC})
    (root / "docs" / "bad.md").write_bytes(b"# title\n\xff\n")
    result = _invoke(["check", "--root", str(root), "--format", "github"])
    assert result.exit_code == 1
    assert "::error file=docs/bad.md,line=2,title=paver parse-error::" in result.stdout


def test_check_malformed_config_is_usage_error(make_repo) -> None:
    root = make_repo({"docs/widget.md": GOOD_DOC}, config="[rules\n")
    result = _invoke(["check", "--root", str(root)])
    assert result.exit_code == 2


def test_check_missing_docs_root_is_usage_error(make_repo) -> None:
    root = make_repo(config='[docs]\nroot = "handbook"\n')
    result = _invoke(["check", "--root", str(root)])
    assert result.exit_code == 2


def test_verify_passing_document(make_repo) -> None:
    root = make_repo({"docs/widget.md": GOOD_DOC})
    result = _invoke(["verify", "--root", str(root)])
    assert result.exit_code == 0
    assert "ran 1 command(s) from 1 document(s)" in result.stdout


def test_verify_stops_document_on_failure_and_writes_report(make_repo, tmp_path: Path) -> None:
    root = make_repo({"docs/widget.md": FAILING_VERIFICATION})
    report_path = tmp_path / "out" / "verify.json"
    result = _invoke(
        ["verify", "--root", str(root), "--format", "json", "--report", str(report_path)]
    )
    assert result.exit_code == 1
    payload = _json(result)
    [diagnostic] = payload["diagnostics"]
    assert diagnostic["rule"] == "command-failed"
    commands = payload["verification"]["commands"]
    assert [command["command"] for command in commands] == ["echo before", "exit 3"]
    written = json.loads(report_path.read_text(encoding="utf-8"))
    assert written["command"] == "verify"
    assert len(written["commands"]) == 2


def test_verify_keep_going_and_fail_fast_conflict(make_repo) -> None:
    root = make_repo({"docs/widget.md": GOOD_DOC})
    result = _invoke(["verify", "--root", str(root), "--keep-going", "--fail-fast"])
    assert result.exit_code == 2


def test_verify_gradual_mode_exits_zero(make_repo) -> None:
    root = make_repo(
        {"docs/widget.md": FAILING_VERIFICATION},
        config="[rules]\ngradual = true\n",
    )
    result = _invoke(["verify", "--root", str(root), "--format", "json", "--keep-going"])
    assert result.exit_code == 0
    payload = _json(result)
    [diagnostic] = payload["diagnostics"]
    assert diagnostic["severity"] == "error"
    assert len(payload["verification"]["commands"]) == 3


def test_coverage_threshold(make_repo) -> None:
    root = make_repo(
        {
            "docs/widget.md": GOOD_DOC,
            "src/widget/main.py": "",
            "src/other.py": "",
        }
    )
    ok = _invoke(["coverage", "--root", str(root), "--threshold", "50"])
    assert ok.exit_code == 0
    assert "coverage: 50.0% (1/2 paths)" in ok.stdout
    assert "uncovered: src/other.py" in ok.stdout
    failing = _invoke(["coverage", "--root", str(root), "--threshold", "50.1", "--format", "json"])
    assert failing.exit_code == 1
    payload = _json(failing)
    assert payload["coverage"]["percentage"] == 50.0
    assert payload["coverage"]["uncovered"] == ["src/other.py"]
    assert payload["diagnostics"][0]["rule"] == "coverage-threshold"


def test_coverage_include_filter(make_repo) -> None:
    root = make_repo(
        {
            "docs/widget.md": GOOD_DOC,
            "src/widget/main.py": "",
            "src/other.py": "",
        }
    )
    result = _invoke(["coverage", "--root", str(root), "--include", "src/widget/**", "--threshold", "100"])
    assert result.exit_code == 0
    assert "coverage: 100.0% (1/1 paths)" in result.stdout


def test_config_subcommands(make_repo) -> None:
    root = make_repo(config="[rules]\nmax_lines = 77\n")
    listed = _invoke(["config", "list", "--root", str(root)])
    assert listed.exit_code == 0
    assert "rules.max_lines = 77" in listed.stdout
    assert "rules.gradual = false" in listed.stdout
    value = _invoke(["config", "get", "rules.max_lines", "--root", str(root)])
    assert value.stdout.strip() == "77"
    unknown = _invoke(["config", "get", "rules.bogus", "--root", str(root)])
    assert unknown.exit_code == 2
    located = _invoke(["config", "path", "--root", str(root)])
    assert located.stdout.strip() == str((root / ".pave.toml").resolve())


@pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")
def test_changed_reports_stale_documents(make_repo) -> None:
    root = make_repo({"docs/widget.md": GOOD_DOC, "src/widget/main.py": "v1\n"})

    def git(*args: str) -> None:
        subprocess.run(
            ["git", "-c", "user.name=paver", "-c", "user.email=paver@example.invalid", *args],
            cwd=root,
            check=True,
            capture_output=True,
        )

    git("init", "-q", "-b", "main")
    git("add", ".")
    git("commit", "-q", "-m", "initial")
    (root / "src/widget/main.py").write_text("v2\n", encoding="utf-8")

    informational = _invoke(["changed", "--root", str(root), "--format", "json"])
    assert informational.exit_code == 0
    payload = _json(informational)
    assert payload["change_set"]["stale"] == ["docs/widget.md"]
    assert payload["diagnostics"][0]["severity"] == "notice"

    strict = _invoke(["changed", "--root", str(root), "--strict"])
    assert strict.exit_code == 1
    assert "stale-document" in strict.stdout

    checked = _invoke(["check", "--root", str(root), "--changed", "--format", "json"])
    assert checked.exit_code == 0
    assert _json(checked)["documents"] == 1

    bad_base = _invoke(["changed", "--root", str(root), "--base", "no-such-ref"])
    assert bad_base.exit_code == 2


@pytest.mark.skipif(os.name != "posix", reason="needs POSIX signals")
def test_verify_interrupt_exits_130(make_repo) -> None:
    slow = "# Widget\n\n## Examples\n\nRun `widget`.\n\n## Verification\n\n```bash\nsleep 20\n```\n"
    root = make_repo({"docs/widget.md": slow})
    timer = threading.Timer(0.5, os.kill, (os.getpid(), signal.SIGINT))
    timer.start()
    try:
        result = _invoke(["verify", "--root", str(root), "--timeout", "30"])
    finally:
        timer.cancel()
    assert result.exit_code == int(ExitCode.INTERRUPTED) == 130
    assert "interrupted" in result.output
