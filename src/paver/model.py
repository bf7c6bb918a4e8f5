from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Mapping


SECTION_ALIASES: dict[str, tuple[str, ...]] = {
    "examples": ("examples", "example", "usage examples"),
    "paths": ("paths", "path", "file paths"),
    "verification": ("verification", "verify", "how to verify"),
}


class DocType(str, Enum):
    COMPONENT = "component"
    RUNBOOK = "runbook"
    ADR = "adr"
    UNCLASSIFIED = "unclassified"


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    NOTICE = "notice"


@dataclass(frozen=True)
class CodeBlock:
    lang: str
    content: str
    line: int
    is_executable: bool


@dataclass(frozen=True)
class Section:
    heading: str
    level: int
    line: int
    body: str
    code_blocks: tuple[CodeBlock, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.body.strip()


@dataclass(frozen=True)
class VerificationCommand:
    command: str
    line: int
    expected_output: str | None = None


@dataclass(frozen=True)
class Document:
    """One parsed documentation file.

    ``sections`` keeps heading order. ``section()`` returns ``None`` for an
    absent heading, which is distinct from a present-but-empty section.
    """

    path: Path
    rel_path: str
    docs_rel_path: str
    doc_type: DocType
    title: str | None
    line_count: int
    sections: tuple[Section, ...]
    verification_commands: tuple[VerificationCommand, ...]
    path_patterns: tuple[str, ...]

    def section(self, name: str) -> Section | None:
        wanted = name.strip().lower()
        names = SECTION_ALIASES.get(wanted, (wanted,))
        for section in self.sections:
            if section.heading.strip().lower() in names:
                return section
        return None

    def has_section(self, name: str) -> bool:
        return self.section(name) is not None

    @property
    def headings(self) -> tuple[str, ...]:
        return tuple(section.heading for section in self.sections)


@dataclass(frozen=True)
class Diagnostic:
    """One reported problem.

    ``severity`` is what gets reported after policy; ``nominal_severity`` is
    the rule's own class and never changes.
    """

    path: str | None
    rule: str
    message: str
    severity: Severity
    nominal_severity: Severity
    line: int | None = None
    downgradable: bool = True

    @classmethod
    def create(
        cls,
        *,
        path: str | None,
        rule: str,
        message: str,
        severity: Severity,
        line: int | None = None,
        downgradable: bool = True,
    ) -> "Diagnostic":
        return cls(
            path=path,
            rule=rule,
            message=message,
            severity=severity,
            nominal_severity=severity,
            line=line,
            downgradable=downgradable,
        )

    def as_json_dict(self) -> dict[str, object]:
        return {
            "path": self.path,
            "line": self.line,
            "rule": self.rule,
            "severity": self.severity.value,
            "nominal_severity": self.nominal_severity.value,
            "message": self.message,
        }


@dataclass(frozen=True)
class ChangeSet:
    base: str
    changed_paths: tuple[str, ...]
    matches: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    impacted: tuple[str, ...] = ()
    stale: tuple[str, ...] = ()

    def as_json_dict(self) -> dict[str, object]:
        return {
            "base": self.base,
            "changed_paths": list(self.changed_paths),
            "matches": {path: list(docs) for path, docs in self.matches.items()},
            "impacted": list(self.impacted),
            "stale": list(self.stale),
        }


@dataclass(frozen=True)
class CoverageReport:
    total: int
    covered: int
    percentage: float
    uncovered: tuple[str, ...] = ()
    threshold: float | None = None

    def as_json_dict(self) -> dict[str, object]:
        return {
            "total": self.total,
            "covered": self.covered,
            "percentage": self.percentage,
            "threshold": self.threshold,
            "uncovered": list(self.uncovered),
        }
