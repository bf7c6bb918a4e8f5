"""Change detection: which documents are impacted or stale for a diff.

Only documents that declare a Paths section take part. A document without
declared paths can never be impacted; that is a known limitation surfaced
to users, since undeclared scope cannot be checked.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Sequence

from paver.globmatch import matches, normalize_path, pattern_error
from paver.model import ChangeSet, Diagnostic, Document, Severity
from paver.tooling.git_paths import ChangedPathsProvider, git_changed_paths

logger = logging.getLogger(__name__)

DEFAULT_BASE = "main"
STALE_RULE = "stale-document"
UNDECLARED_PATHS_NOTE = (
    "documents without a Paths section are not analysed for staleness"
)


def detect_changes(
    documents: Iterable[Document],
    changed_paths: Iterable[str],
    *,
    base: str,
) -> ChangeSet:
    changed = tuple(sorted({normalize_path(path) for path in changed_paths if path.strip()}))
    changed_set = set(changed)
    matched: dict[str, list[str]] = {}
    impacted: list[str] = []
    stale: list[str] = []
    for document in sorted(documents, key=lambda item: item.rel_path):
        patterns = [pattern for pattern in document.path_patterns if pattern_error(pattern) is None]
        if not patterns:
            continue
        hits = [path for path in changed if any(matches(pattern, path) for pattern in patterns)]
        if not hits:
            continue
        impacted.append(document.rel_path)
        for path in hits:
            matched.setdefault(path, []).append(document.rel_path)
        if document.rel_path not in changed_set:
            stale.append(document.rel_path)
    logger.info(
        "%d changed path(s): %d impacted document(s), %d stale",
        len(changed),
        len(impacted),
        len(stale),
    )
    return ChangeSet(
        base=base,
        changed_paths=changed,
        matches={path: tuple(docs) for path, docs in sorted(matched.items())},
        impacted=tuple(impacted),
        stale=tuple(stale),
    )


def change_diagnostics(change_set: ChangeSet, *, strict: bool) -> list[Diagnostic]:
    """One ``stale-document`` diagnostic per stale document.

    Error under ``strict``; otherwise informational.
    """
    severity = Severity.ERROR if strict else Severity.NOTICE
    found: list[Diagnostic] = []
    for doc_path in change_set.stale:
        sources = sorted(path for path, docs in change_set.matches.items() if doc_path in docs)
        shown = ", ".join(sources[:5])
        if len(sources) > 5:
            shown += f" (+{len(sources) - 5} more)"
        found.append(
            Diagnostic.create(
                path=doc_path,
                rule=STALE_RULE,
                message=f"documented paths changed since {change_set.base} but the document did not: {shown}",
                severity=severity,
            )
        )
    return found


def changed_documents(documents: Sequence[Document], change_set: ChangeSet) -> list[Document]:
    """Documents impacted by the change set or edited in it."""
    keep = set(change_set.impacted) | set(change_set.changed_paths)
    return [document for document in documents if document.rel_path in keep]


def detect_for_base(
    documents: Sequence[Document],
    *,
    repo_root: Path,
    base: str,
    provider: ChangedPathsProvider = git_changed_paths,
) -> ChangeSet:
    return detect_changes(documents, provider(repo_root, base), base=base)
