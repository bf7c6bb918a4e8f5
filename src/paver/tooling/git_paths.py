"""Version-control collaborator: changed-path and file listings from git."""

from __future__ import annotations

import logging
import os
from pathlib import Path
import subprocess
from typing import Callable, Sequence

from paver.exceptions import VcsError

logger = logging.getLogger(__name__)

ChangedPathsProvider = Callable[[Path, str], list[str]]


def _run_git(root: Path, args: Sequence[str]) -> str:
    cmd = ["git", *args]
    logger.debug("running %s in %s", " ".join(cmd), root)
    try:
        proc = subprocess.run(
            cmd,
            cwd=root,
            check=False,
            capture_output=True,
            text=True,
        )
    except FileNotFoundError as exc:
        raise VcsError("git executable not found") from exc
    if proc.returncode != 0:
        message = proc.stderr.strip() or proc.stdout.strip() or f"git {args[0]} failed"
        raise VcsError(message)
    return proc.stdout


def parse_name_list(text: str) -> list[str]:
    paths: list[str] = []
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        if len(line) >= 2 and line[0] == line[-1] == '"':
            # core.quotePath output; keep the literal path text.
            line = line[1:-1]
        paths.append(line.replace(os.sep, "/"))
    return paths


def git_changed_paths(root: Path, base: str) -> list[str]:
    """Files that differ between ``base`` and the working tree, plus untracked files.

    Renames are listed as both the old and the new path.
    """
    changed = parse_name_list(
        _run_git(root, ["diff", "--name-only", "--no-renames", "--relative", base, "--"])
    )
    untracked = parse_name_list(
        _run_git(root, ["ls-files", "--others", "--exclude-standard"])
    )
    return sorted(set(changed) | set(untracked))


def is_git_worktree(root: Path) -> bool:
    try:
        return _run_git(root, ["rev-parse", "--is-inside-work-tree"]).strip() == "true"
    except VcsError:
        return False


def git_list_files(root: Path) -> list[str]:
    return sorted(
        set(
            parse_name_list(
                _run_git(root, ["ls-files", "--cached", "--others", "--exclude-standard"])
            )
        )
    )


def walk_files(root: Path) -> list[str]:
    files: list[str] = []
    for current, dirs, names in os.walk(root):
        dirs[:] = sorted(name for name in dirs if name != ".git")
        for name in names:
            rel = (Path(current) / name).relative_to(root)
            files.append(rel.as_posix())
    return sorted(files)


def list_repository_files(root: Path) -> list[str]:
    """Tracked and untracked-but-not-ignored files; a plain walk outside git."""
    if is_git_worktree(root):
        return [path for path in git_list_files(root) if (root / path).is_file()]
    logger.info("%s is not a git work tree; walking the filesystem", root)
    return walk_files(root)
