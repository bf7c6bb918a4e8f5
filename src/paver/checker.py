from __future__ import annotations

import logging
from typing import Callable, Iterable, Sequence

from paver.config import PaverConfig
from paver.globmatch import matches, pattern_error
from paver.model import Diagnostic, DocType, Document
from paver.rules import RuleRegistry, RuleSpec, load_rule_registry

logger = logging.getLogger(__name__)

RuleCheck = Callable[["RuleChecker", RuleSpec, Document], list[Diagnostic]]


def _diagnostic(rule: RuleSpec, document: Document, message: str, line: int | None = None) -> Diagnostic:
    return Diagnostic.create(
        path=document.rel_path,
        rule=rule.rule_id,
        message=message,
        severity=rule.severity,
        line=line,
    )


def _check_max_lines(checker: "RuleChecker", rule: RuleSpec, document: Document) -> list[Diagnostic]:
    limit = checker.config.rules.max_lines
    if document.line_count <= limit:
        return []
    return [
        _diagnostic(
            rule,
            document,
            f"document has {document.line_count} lines; the limit is {limit}",
        )
    ]


def _check_require_section(checker: "RuleChecker", rule: RuleSpec, document: Document) -> list[Diagnostic]:
    name = rule.section or ""
    section = document.section(name)
    if section is None:
        return [_diagnostic(rule, document, f"missing required section '{name}'")]
    if rule.require_body and section.is_empty:
        return [_diagnostic(rule, document, f"section '{section.heading}' is empty", section.line)]
    return []


def _check_verification_commands(
    checker: "RuleChecker", rule: RuleSpec, document: Document
) -> list[Diagnostic]:
    # A missing section is require-verification's finding, not this rule's.
    section = document.section("verification")
    if section is None or document.verification_commands:
        return []
    return [
        _diagnostic(
            rule,
            document,
            f"section '{section.heading}' has no executable command blocks",
            section.line,
        )
    ]


def _check_path_syntax(checker: "RuleChecker", rule: RuleSpec, document: Document) -> list[Diagnostic]:
    section = document.section("paths")
    line = section.line if section is not None else None
    found: list[Diagnostic] = []
    for pattern in document.path_patterns:
        problem = pattern_error(pattern)
        if problem is not None:
            found.append(_diagnostic(rule, document, f"invalid path pattern '{pattern}': {problem}", line))
    return found


def _check_path_matches(checker: "RuleChecker", rule: RuleSpec, document: Document) -> list[Diagnostic]:
    files = checker.repository_files
    if files is None:
        return []
    section = document.section("paths")
    line = section.line if section is not None else None
    found: list[Diagnostic] = []
    for pattern in document.path_patterns:
        if pattern_error(pattern) is not None:
            continue
        if not any(matches(pattern, path) for path in files):
            found.append(_diagnostic(rule, document, f"path pattern '{pattern}' matches no files", line))
    return found


def _check_required_sections(
    checker: "RuleChecker", rule: RuleSpec, document: Document
) -> list[Diagnostic]:
    return [
        _diagnostic(
            rule,
            document,
            f"{document.doc_type.value} doc is missing required section '{name}'",
        )
        for name in rule.sections
        if not document.has_section(name)
    ]


def _check_allowed_status(checker: "RuleChecker", rule: RuleSpec, document: Document) -> list[Diagnostic]:
    section = document.section(rule.section or "status")
    if section is None:
        return []
    words = section.body.replace("*", " ").replace("`", " ").split()
    status = words[0].strip(".:,").lower() if words else ""
    if status in {value.lower() for value in rule.allowed}:
        return []
    allowed = ", ".join(rule.allowed)
    shown = status or "<empty>"
    return [_diagnostic(rule, document, f"status '{shown}' is not one of: {allowed}", section.line)]


_CHECKS: dict[str, RuleCheck] = {
    "max_lines": _check_max_lines,
    "require_section": _check_require_section,
    "verification_commands": _check_verification_commands,
    "path_syntax": _check_path_syntax,
    "path_matches": _check_path_matches,
    "required_sections": _check_required_sections,
    "allowed_status": _check_allowed_status,
}


class RuleChecker:
    """Applies the rule registry to parsed documents.

    Rule applicability is resolved once, at construction, into a mapping
    from document type to the rules that run for it.
    """

    def __init__(
        self,
        config: PaverConfig,
        registry: RuleRegistry | None = None,
        *,
        repository_files: Sequence[str] | None = None,
    ):
        self.config = config
        self.registry = registry if registry is not None else load_rule_registry()
        self.repository_files = tuple(repository_files) if repository_files is not None else None
        self._rules_by_type: dict[DocType, tuple[RuleSpec, ...]] = {
            doc_type: tuple(
                rule
                for rule in self.registry
                if rule.applies_to(doc_type) and self._enabled(rule, doc_type)
            )
            for doc_type in DocType
        }

    def _enabled(self, rule: RuleSpec, doc_type: DocType) -> bool:
        if rule.doc_type is not None and not self.config.rules.type_specific.enabled_for(doc_type):
            return False
        if rule.toggle is None:
            return True
        value = getattr(self.config.rules, rule.toggle, None)
        if value is None:
            logger.warning("rule %s names unknown toggle %s", rule.rule_id, rule.toggle)
            return False
        if isinstance(value, bool):
            return value
        return True

    def rules_for(self, doc_type: DocType) -> tuple[RuleSpec, ...]:
        return self._rules_by_type[doc_type]

    def check_document(self, document: Document) -> list[Diagnostic]:
        found: list[Diagnostic] = []
        for rule in self.rules_for(document.doc_type):
            found.extend(_CHECKS[rule.check](self, rule, document))
        return found

    def check(self, documents: Iterable[Document]) -> list[Diagnostic]:
        found: list[Diagnostic] = []
        count = 0
        for document in documents:
            count += 1
            found.extend(self.check_document(document))
        logger.info("checked %d document(s): %d finding(s)", count, len(found))
        return found
