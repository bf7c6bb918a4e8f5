from __future__ import annotations

from fractions import Fraction
import logging
from typing import Iterable, Sequence

from paver.config import PaverConfig
from paver.globmatch import excluded, matches, matches_any, pattern_error
from paver.model import CoverageReport, Diagnostic, Document, Severity

logger = logging.getLogger(__name__)

THRESHOLD_RULE = "coverage-threshold"


def in_scope_paths(
    files: Iterable[str],
    config: PaverConfig,
    *,
    include: Sequence[str] = (),
    exclude: Sequence[str] = (),
) -> list[str]:
    """Repository files that count towards coverage for this run.

    ``include``/``exclude`` narrow the scope for one invocation and leave the
    configured excludes alone.
    """
    fixed_excludes = list(config.mapping_exclude)
    docs_rel = config.docs_root_rel
    if docs_rel and docs_rel != ".":
        fixed_excludes.append(docs_rel.rstrip("/") + "/**")
    if config.config_path is not None:
        try:
            fixed_excludes.append(config.config_path.relative_to(config.repo_root).as_posix())
        except ValueError:
            pass
    scoped: list[str] = []
    for path in files:
        if excluded(path, fixed_excludes):
            continue
        if include and not matches_any(include, path):
            continue
        if exclude and excluded(path, exclude):
            continue
        scoped.append(path)
    return sorted(set(scoped))


def _percentage(covered: int, total: int) -> Fraction:
    if total == 0:
        return Fraction(100)
    return Fraction(covered * 100, total)


def compute_coverage(
    documents: Iterable[Document],
    scoped_paths: Sequence[str],
    *,
    threshold: float | None = None,
) -> CoverageReport:
    patterns = sorted(
        {
            pattern
            for document in documents
            for pattern in document.path_patterns
            if pattern_error(pattern) is None
        }
    )
    covered: list[str] = []
    uncovered: list[str] = []
    for path in scoped_paths:
        if any(matches(pattern, path) for pattern in patterns):
            covered.append(path)
        else:
            uncovered.append(path)
    percentage = _percentage(len(covered), len(scoped_paths))
    logger.info(
        "coverage %d/%d (%.1f%%) from %d pattern(s)",
        len(covered),
        len(scoped_paths),
        float(percentage),
        len(patterns),
    )
    return CoverageReport(
        total=len(scoped_paths),
        covered=len(covered),
        percentage=round(float(percentage), 2),
        uncovered=tuple(uncovered),
        threshold=threshold,
    )


def below_threshold(report: CoverageReport, threshold: float) -> bool:
    """Exact comparison so 80.0% meets a threshold of 80 and 79.9% does not."""
    return _percentage(report.covered, report.total) < Fraction(str(threshold))


def coverage_diagnostics(report: CoverageReport) -> list[Diagnostic]:
    if report.threshold is None or not below_threshold(report, report.threshold):
        return []
    return [
        Diagnostic.create(
            path=None,
            rule=THRESHOLD_RULE,
            message=(
                f"documentation coverage {report.percentage:.1f}% "
                f"({report.covered}/{report.total}) is below the threshold of {report.threshold:g}%"
            ),
            severity=Severity.ERROR,
            downgradable=False,
        )
    ]
