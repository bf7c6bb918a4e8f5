"""Markdown documentation parser.

Parsing is permissive: a document with missing or malformed sections still
parses, and the rule checker reports what is wrong with it. Only a file
that cannot be read or decoded raises :class:`ParseError`.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import logging
from pathlib import Path
import re
from typing import Iterable, Sequence

import yaml

from paver.exceptions import ParseError
from paver.model import (
    CodeBlock,
    Diagnostic,
    DocType,
    Document,
    Section,
    Severity,
    VerificationCommand,
)

logger = logging.getLogger(__name__)

DOC_SUFFIXES = frozenset({".md", ".markdown"})
EXECUTABLE_LANGS = frozenset(
    {"bash", "sh", "shell", "zsh", "console", "shell-session", "shellsession"}
)
OUTPUT_LANGS = frozenset({"output", "text", "txt", "stdout"})

_HEADING_RE = re.compile(r"^(?P<marks>#{1,6})[ \t]+(?P<text>.*?)(?:[ \t]+#+)?[ \t]*$")
_FENCE_RE = re.compile(r"^[ \t]{0,3}(?P<fence>`{3,}|~{3,})(?P<info>.*)$")
_BULLET_RE = re.compile(r"^(?:[-*+]|\d+[.)])[ \t]+")
_BACKTICK_RE = re.compile(r"`([^`]+)`")
_PROMPT_PREFIXES = ("$ ",)

_TYPE_NAMES: dict[str, DocType] = {
    "component": DocType.COMPONENT,
    "components": DocType.COMPONENT,
    "runbook": DocType.RUNBOOK,
    "runbooks": DocType.RUNBOOK,
    "adr": DocType.ADR,
    "adrs": DocType.ADR,
}


def classify_document(docs_rel_path: str, marker: str | None = None) -> DocType:
    """Single classification point for document types.

    An explicit front-matter marker wins; otherwise the nearest enclosing
    directory named after a type decides.
    """
    if marker is not None:
        explicit = _TYPE_NAMES.get(marker.strip().lower())
        if explicit is not None:
            return explicit
    directories = docs_rel_path.replace("\\", "/").split("/")[:-1]
    for directory in reversed(directories):
        doc_type = _TYPE_NAMES.get(directory.lower())
        if doc_type is not None:
            return doc_type
    return DocType.UNCLASSIFIED


def _front_matter(lines: list[str]) -> tuple[dict[str, object], int]:
    if not lines or lines[0].strip() != "---":
        return {}, 0
    for index in range(1, len(lines)):
        if lines[index].strip() in {"---", "..."}:
            try:
                payload = yaml.safe_load("\n".join(lines[1:index]))
            except yaml.YAMLError as exc:
                logger.debug("leading '---' block is not YAML front matter: %s", exc)
                return {}, 0
            # Only a mapping counts as front matter; otherwise the dashes are body text.
            if not isinstance(payload, dict):
                return {}, 0
            return payload, index + 1
    return {}, 0


def _is_prompt(line: str) -> bool:
    stripped = line.strip()
    return stripped == "$" or stripped.startswith(_PROMPT_PREFIXES)


def _prompt_command(stripped: str) -> str | None:
    if stripped == "$":
        return ""
    for prefix in _PROMPT_PREFIXES:
        if stripped.startswith(prefix):
            return stripped[len(prefix) :].strip()
    return None


def _block_is_executable(lang: str, content: str) -> bool:
    if lang.lower() in EXECUTABLE_LANGS:
        return True
    if lang:
        return False
    return any(_is_prompt(line) for line in content.splitlines())


@dataclass
class _Heading:
    text: str
    level: int
    index: int


@dataclass
class _Scan:
    headings: list[_Heading]
    blocks: list[tuple[int, CodeBlock]]


def _scan(lines: list[str], start: int) -> _Scan:
    headings: list[_Heading] = []
    blocks: list[tuple[int, CodeBlock]] = []
    index = start
    while index < len(lines):
        line = lines[index]
        fence = _FENCE_RE.match(line)
        if fence is not None:
            marker = fence.group("fence")
            info = fence.group("info").strip()
            lang = info.split()[0] if info else ""
            content: list[str] = []
            close = index + 1
            while close < len(lines):
                candidate = lines[close].strip()
                if candidate.startswith(marker[0] * len(marker)) and not candidate.strip(marker[0]):
                    break
                content.append(lines[close])
                close += 1
            text = "\n".join(content)
            blocks.append(
                (
                    index,
                    CodeBlock(
                        lang=lang,
                        content=text,
                        line=index + 1,
                        is_executable=_block_is_executable(lang, text),
                    ),
                )
            )
            index = close + 1
            continue
        heading = _HEADING_RE.match(line)
        if heading is not None:
            headings.append(
                _Heading(
                    text=heading.group("text").strip(),
                    level=len(heading.group("marks")),
                    index=index,
                )
            )
        index += 1
    return _Scan(headings=headings, blocks=blocks)


def _build_sections(lines: list[str], scan: _Scan) -> tuple[Section, ...]:
    sections: list[Section] = []
    for position, heading in enumerate(scan.headings):
        end = len(lines)
        for later in scan.headings[position + 1 :]:
            if later.level <= heading.level:
                end = later.index
                break
        body = "\n".join(lines[heading.index + 1 : end]).strip("\n")
        blocks = tuple(
            block for start, block in scan.blocks if heading.index < start < end
        )
        sections.append(
            Section(
                heading=heading.text,
                level=heading.level,
                line=heading.index + 1,
                body=body,
                code_blocks=blocks,
            )
        )
    return tuple(sections)


def _commands_from_block(block: CodeBlock) -> list[VerificationCommand]:
    lines = block.content.splitlines()
    uses_prompts = any(_is_prompt(line) for line in lines)
    entries: list[tuple[str, int, list[str]]] = []
    pending: list[str] = []
    pending_line = 0
    for offset, raw in enumerate(lines, start=1):
        stripped = raw.strip()
        line_no = block.line + offset
        if pending:
            if stripped.endswith("\\"):
                pending.append(stripped[:-1].strip())
                continue
            pending.append(stripped)
            entries.append((" ".join(part for part in pending if part), pending_line, []))
            pending = []
            continue
        if uses_prompts:
            command = _prompt_command(stripped)
            if command is None:
                if entries:
                    entries[-1][2].append(raw.rstrip())
                continue
        else:
            command = stripped
        if not command or command.startswith("#"):
            continue
        if command.endswith("\\"):
            pending = [command[:-1].strip()]
            pending_line = line_no
            continue
        entries.append((command, line_no, []))
    if pending:
        entries.append((" ".join(part for part in pending if part), pending_line, []))
    return [
        VerificationCommand(
            command=command,
            line=line_no,
            expected_output="\n".join(output).strip() or None,
        )
        for command, line_no, output in entries
    ]


def extract_verification_commands(section: Section | None) -> tuple[VerificationCommand, ...]:
    """Commands from the executable fenced blocks of a Verification section.

    An ``output``/``text`` block directly after an executable block supplies
    the expected output of that block's last command.
    """
    if section is None:
        return ()
    commands: list[VerificationCommand] = []
    previous_executable = False
    for block in section.code_blocks:
        if block.is_executable:
            commands.extend(_commands_from_block(block))
            previous_executable = True
            continue
        if (
            previous_executable
            and block.lang.lower() in OUTPUT_LANGS
            and commands
            and commands[-1].expected_output is None
            and block.content.strip()
        ):
            last = commands[-1]
            commands[-1] = VerificationCommand(
                command=last.command,
                line=last.line,
                expected_output=block.content.strip(),
            )
        previous_executable = False
    return tuple(commands)


def _pattern_text(line: str) -> str:
    text = _BULLET_RE.sub("", line.strip())
    quoted = _BACKTICK_RE.search(text)
    if quoted is not None:
        return quoted.group(1).strip()
    return text.strip()


def extract_path_patterns(section: Section | None) -> tuple[str, ...]:
    """Literal glob strings listed under a Paths section, unexpanded."""
    if section is None:
        return ()
    candidates: list[tuple[bool, str]] = []
    in_fence = False
    fence_marker = ""
    for raw in section.body.splitlines():
        stripped = raw.strip()
        fence = _FENCE_RE.match(raw)
        if fence is not None and (not in_fence or stripped.startswith(fence_marker)):
            in_fence = not in_fence
            fence_marker = fence.group("fence") if in_fence else ""
            continue
        if not stripped or stripped.startswith(("#", "<!--")):
            continue
        structured = in_fence or _BULLET_RE.match(stripped) is not None
        candidates.append((structured, stripped))
    if any(structured for structured, _ in candidates):
        candidates = [item for item in candidates if item[0]]
    patterns: list[str] = []
    for _, line in candidates:
        pattern = _pattern_text(line)
        if pattern and pattern not in patterns:
            patterns.append(pattern)
    return tuple(patterns)


def _relative(path: Path, root: Path) -> str:
    try:
        return path.resolve().relative_to(root.resolve()).as_posix()
    except ValueError:
        return path.as_posix()


def parse_document_text(
    path: Path,
    text: str,
    *,
    repo_root: Path,
    docs_root: Path,
) -> Document:
    lines = text.splitlines()
    meta, body_start = _front_matter(lines)
    docs_rel = _relative(path, docs_root)
    marker = meta.get("type")
    doc_type = classify_document(docs_rel, marker if isinstance(marker, str) else None)
    scan = _scan(lines, body_start)
    sections = _build_sections(lines, scan)
    title = next((section.heading for section in sections if section.level == 1), None)
    skeleton = Document(
        path=path,
        rel_path=_relative(path, repo_root),
        docs_rel_path=docs_rel,
        doc_type=doc_type,
        title=title,
        line_count=len(lines),
        sections=sections,
        verification_commands=(),
        path_patterns=(),
    )
    return replace(
        skeleton,
        verification_commands=extract_verification_commands(skeleton.section("verification")),
        path_patterns=extract_path_patterns(skeleton.section("paths")),
    )


def read_document_text(path: Path) -> str:
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise ParseError(path, 1, f"cannot read file: {exc.strerror or exc}") from exc
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        line = data.count(b"\n", 0, exc.start) + 1
        raise ParseError(path, line, f"not valid UTF-8 text ({exc.reason})") from exc


def parse_document(path: Path, *, repo_root: Path, docs_root: Path) -> Document:
    return parse_document_text(
        path,
        read_document_text(path),
        repo_root=repo_root,
        docs_root=docs_root,
    )


def _is_hidden(path: Path, root: Path) -> bool:
    try:
        parts = path.relative_to(root).parts
    except ValueError:
        parts = path.parts
    return any(part.startswith(".") for part in parts)


def discover_documents(docs_root: Path, targets: Sequence[Path] | None = None) -> list[Path]:
    """Documentation files under ``docs_root`` (or the given targets), sorted."""
    found: set[Path] = set()
    roots = list(targets) if targets else [docs_root]
    for target in roots:
        resolved = target.resolve()
        if resolved.is_dir():
            for candidate in resolved.rglob("*"):
                if (
                    candidate.is_file()
                    and candidate.suffix.lower() in DOC_SUFFIXES
                    and not _is_hidden(candidate, resolved)
                ):
                    found.add(candidate)
        elif resolved.is_file():
            found.add(resolved)
        else:
            logger.warning("skipping missing documentation target %s", target)
    return sorted(found)


def load_documents(
    paths: Iterable[Path],
    *,
    repo_root: Path,
    docs_root: Path,
) -> tuple[list[Document], list[Diagnostic]]:
    """Parse each file; undecodable files become diagnostics and are skipped."""
    documents: list[Document] = []
    diagnostics: list[Diagnostic] = []
    for path in paths:
        try:
            documents.append(parse_document(path, repo_root=repo_root, docs_root=docs_root))
        except ParseError as exc:
            logger.debug("parse failed: %s", exc)
            diagnostics.append(
                Diagnostic.create(
                    path=_relative(path, repo_root),
                    rule="parse-error",
                    message=exc.reason,
                    severity=Severity.ERROR,
                    line=exc.line,
                )
            )
    logger.info("parsed %d document(s), %d unreadable", len(documents), len(diagnostics))
    return documents, diagnostics
