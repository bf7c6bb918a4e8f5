"""Glob matching shared by change detection, coverage and path rules.

Patterns are repository-relative and ``/``-separated. ``**`` as a whole
segment matches any number of segments (including none), ``*`` and ``?``
never cross a ``/``, ``[...]`` is a character class, and a trailing ``/``
means everything below that directory.
"""

from __future__ import annotations

from functools import lru_cache
import re
from typing import Iterable


def normalize_path(path: str) -> str:
    text = path.replace("\\", "/").strip()
    while text.startswith("./"):
        text = text[2:]
    return text


def normalize_pattern(pattern: str) -> str:
    text = normalize_path(pattern)
    if text.endswith("/"):
        text = text.rstrip("/") + "/**"
    return text


def _class_end(segment: str, start: int) -> int:
    index = start + 1
    if index < len(segment) and segment[index] in "!^":
        index += 1
    if index < len(segment) and segment[index] == "]":
        index += 1
    return segment.find("]", index)


def _translate_segment(segment: str) -> str:
    out: list[str] = []
    index = 0
    while index < len(segment):
        ch = segment[index]
        if ch == "*":
            out.append("[^/]*")
        elif ch == "?":
            out.append("[^/]")
        elif ch == "[":
            end = _class_end(segment, index)
            if end == -1:
                out.append(re.escape(ch))
            else:
                body = segment[index + 1 : end]
                if body[:1] in {"!", "^"}:
                    body = "^" + body[1:]
                body = body.replace("\\", "\\\\")
                out.append(f"(?!/)[{body}]")
                index = end
        else:
            out.append(re.escape(ch))
        index += 1
    return "".join(out)


@lru_cache(maxsize=4096)
def compile_pattern(pattern: str) -> re.Pattern[str]:
    segments = normalize_pattern(pattern).split("/")
    parts: list[str] = []
    last_index = len(segments) - 1
    for index, segment in enumerate(segments):
        last = index == last_index
        if segment == "**":
            parts.append(".*" if last else "(?:[^/]+/)*")
        else:
            parts.append(_translate_segment(segment) + ("" if last else "/"))
    return re.compile("".join(parts), re.DOTALL)


def matches(pattern: str, path: str) -> bool:
    """Return True when ``path`` is matched by ``pattern``."""
    return compile_pattern(pattern).fullmatch(normalize_path(path)) is not None


def matches_any(patterns: Iterable[str], path: str) -> bool:
    return any(matches(pattern, path) for pattern in patterns)


def pattern_error(pattern: str) -> str | None:
    """Return why ``pattern`` is not a usable glob, or None when it is."""
    text = pattern.strip()
    if not text:
        return "pattern is empty"
    if text.startswith("/") or re.match(r"^[A-Za-z]:[\\/]", text):
        return "pattern must be relative to the repository root"
    segments = normalize_path(text).rstrip("/").split("/")
    if any(segment == ".." for segment in segments):
        return "pattern must not leave the repository root"
    for segment in segments:
        if "**" in segment and segment != "**":
            return "'**' must be a whole path segment"
        index = 0
        while index < len(segment):
            if segment[index] == "[":
                end = _class_end(segment, index)
                if end == -1:
                    return f"unclosed character class in segment '{segment}'"
                index = end
            index += 1
    return None


def _segment_matches(name: str, segment: str) -> bool:
    return re.fullmatch(_translate_segment(name), segment) is not None


def excluded(path: str, patterns: Iterable[str]) -> bool:
    """Exclude-list semantics.

    A bare ``name/`` entry excludes that directory at any depth; any other
    entry excludes the paths it matches and everything below them.
    """
    normalized = normalize_path(path)
    parts = normalized.split("/")
    for raw in patterns:
        text = normalize_path(raw)
        if not text:
            continue
        if text.endswith("/"):
            name = text.rstrip("/")
            if "/" not in name:
                if any(_segment_matches(name, segment) for segment in parts[:-1]):
                    return True
                continue
        if matches(text, normalized):
            return True
        if any(matches(text, "/".join(parts[:index])) for index in range(1, len(parts))):
            return True
    return False
