from __future__ import annotations

from pathlib import Path

import pytest

from paver.config import PaverConfig
from paver.coverage import (
    THRESHOLD_RULE,
    below_threshold,
    compute_coverage,
    coverage_diagnostics,
    in_scope_paths,
)
from paver.model import CoverageReport


def _doc_with_paths(parse_doc, rel: str, *patterns: str):
    bullets = "\n".join(f"- `{pattern}`" for pattern in patterns)
    return parse_doc(f"# Doc\n\n## Paths\n\n{bullets}\n", rel=rel)


def test_in_scope_excludes_docs_config_and_builtins(tmp_path: Path) -> None:
    config = PaverConfig(
        repo_root=tmp_path,
        config_path=tmp_path / ".pave.toml",
        docs_root=tmp_path / "docs",
        mapping_exclude=("node_modules/", "generated/**"),
    )
    files = [
        ".pave.toml",
        "docs/api.md",
        "src/a.py",
        "web/node_modules/x.js",
        "generated/schema.py",
        "tests/test_a.py",
    ]
    assert in_scope_paths(files, config) == ["src/a.py", "tests/test_a.py"]
    assert in_scope_paths(files, config, include=["src/**"]) == ["src/a.py"]
    assert in_scope_paths(files, config, exclude=["tests/"]) == ["src/a.py"]


def test_compute_coverage(parse_doc) -> None:
    documents = [
        _doc_with_paths(parse_doc, "docs/api.md", "src/api/**"),
        _doc_with_paths(parse_doc, "docs/cli.md", "src/cli.py", "/bad"),
    ]
    scoped = ["src/api/a.py", "src/api/b.py", "src/cli.py", "src/util.py", "Makefile"]
    report = compute_coverage(documents, scoped, threshold=50)
    assert report.total == 5
    assert report.covered == 3
    assert report.percentage == 60.0
    assert report.uncovered == ("src/util.py", "Makefile")
    assert coverage_diagnostics(report) == []


def test_empty_scope_counts_as_fully_covered() -> None:
    report = compute_coverage([], [], threshold=100)
    assert report.percentage == 100.0
    assert coverage_diagnostics(report) == []


@pytest.mark.parametrize(
    ("covered", "total", "threshold", "expected"),
    [
        (4, 5, 80, False),
        (4, 5, 80.0, False),
        (799, 1000, 80, True),
        (799, 1000, 79.9, False),
        (2, 3, 66.67, True),
        (0, 1, 0, False),
    ],
)
def test_threshold_boundary(covered: int, total: int, threshold: float, expected: bool) -> None:
    report = CoverageReport(total=total, covered=covered, percentage=0.0)
    assert below_threshold(report, threshold) is expected


def test_threshold_failure_is_not_downgradable(parse_doc) -> None:
    documents = [_doc_with_paths(parse_doc, "docs/api.md", "src/api/**")]
    report = compute_coverage(documents, ["src/api/a.py", "src/b.py"], threshold=75)
    [diagnostic] = coverage_diagnostics(report)
    assert diagnostic.rule == THRESHOLD_RULE
    assert diagnostic.downgradable is False
    assert "50.0%" in diagnostic.message
    assert "75%" in diagnostic.message


def test_adding_documentation_never_lowers_coverage(parse_doc) -> None:
    scoped = ["src/a.py", "src/b.py", "lib/c.py"]
    base = [_doc_with_paths(parse_doc, "docs/a.md", "src/a.py")]
    more = base + [_doc_with_paths(parse_doc, "docs/b.md", "src/**")]
    assert compute_coverage(more, scoped).covered >= compute_coverage(base, scoped).covered
