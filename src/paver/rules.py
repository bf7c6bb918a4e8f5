from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Mapping

import yaml

from paver.model import DocType, Severity

DEFAULT_RULES_PATH = Path(__file__).resolve().with_name("rules.yaml")

KNOWN_CHECKS = frozenset(
    {
        "max_lines",
        "require_section",
        "verification_commands",
        "path_syntax",
        "path_matches",
        "required_sections",
        "allowed_status",
    }
)


@dataclass(frozen=True)
class RuleSpec:
    rule_id: str
    check: str
    severity: Severity
    summary: str
    toggle: str | None = None
    doc_type: DocType | None = None
    section: str | None = None
    sections: tuple[str, ...] = ()
    allowed: tuple[str, ...] = ()
    require_body: bool = False

    def applies_to(self, doc_type: DocType) -> bool:
        return self.doc_type is None or self.doc_type is doc_type


@dataclass(frozen=True)
class RuleRegistry:
    rules: Mapping[str, RuleSpec]

    def get(self, rule_id: str) -> RuleSpec | None:
        return self.rules.get(rule_id)

    def __iter__(self):
        return iter(self.rules.values())

    def __len__(self) -> int:
        return len(self.rules)


def _str_tuple(raw: object, *, field_name: str) -> tuple[str, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list) or any(not isinstance(item, str) for item in raw):
        raise ValueError(f"rule registry invalid {field_name}: expected list[str]")
    return tuple(raw)


def _optional_str(raw: object, *, field_name: str) -> str | None:
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise ValueError(f"rule registry invalid {field_name}: expected str")
    return raw


def _rule_from_mapping(rule_id: str, payload: Mapping[str, object]) -> RuleSpec:
    check = payload.get("check")
    if not isinstance(check, str) or check not in KNOWN_CHECKS:
        raise ValueError(f"rule registry invalid rules.{rule_id}.check: {check!r}")
    try:
        severity = Severity(str(payload.get("severity", "error")))
    except ValueError as exc:
        raise ValueError(f"rule registry invalid rules.{rule_id}.severity") from exc
    if severity is Severity.NOTICE:
        raise ValueError(f"rule registry invalid rules.{rule_id}.severity: notice")
    doc_type = None
    raw_type = payload.get("doc_type")
    if raw_type is not None:
        try:
            doc_type = DocType(str(raw_type))
        except ValueError as exc:
            raise ValueError(f"rule registry invalid rules.{rule_id}.doc_type") from exc
    return RuleSpec(
        rule_id=rule_id,
        check=check,
        severity=severity,
        summary=str(payload.get("summary", "")),
        toggle=_optional_str(payload.get("toggle"), field_name=f"rules.{rule_id}.toggle"),
        doc_type=doc_type,
        section=_optional_str(payload.get("section"), field_name=f"rules.{rule_id}.section"),
        sections=_str_tuple(payload.get("sections"), field_name=f"rules.{rule_id}.sections"),
        allowed=_str_tuple(payload.get("allowed"), field_name=f"rules.{rule_id}.allowed"),
        require_body=bool(payload.get("require_body", False)),
    )


@lru_cache(maxsize=4)
def load_rule_registry(path: Path | None = None) -> RuleRegistry:
    rule_path = DEFAULT_RULES_PATH if path is None else path
    with rule_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, Mapping):
        raise ValueError("rule registry root must be a mapping")
    rules_raw = raw.get("rules")
    if not isinstance(rules_raw, Mapping):
        raise ValueError("rule registry must define rules")
    rules: dict[str, RuleSpec] = {}
    for rule_id, payload in rules_raw.items():
        if not isinstance(rule_id, str) or not isinstance(payload, Mapping):
            raise ValueError(f"rule registry invalid entry: {rule_id!r}")
        rules[rule_id] = _rule_from_mapping(rule_id, payload)
    return RuleRegistry(rules=rules)
