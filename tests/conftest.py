from __future__ import annotations

from pathlib import Path
import sys
import textwrap
from typing import Callable, Mapping

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest

from paver.config import PaverConfig, RulesConfig
from paver.parser import parse_document_text
from tests.doc_helpers import write_tree


@pytest.fixture
def make_repo(tmp_path: Path) -> Callable[..., Path]:
    """Build a repository with a ``.pave.toml`` and the given files."""

    def _make(files: Mapping[str, str] | None = None, *, config: str = "") -> Path:
        root = tmp_path / "repo"
        root.mkdir(exist_ok=True)
        (root / ".pave.toml").write_text(textwrap.dedent(config), encoding="utf-8")
        (root / "docs").mkdir(exist_ok=True)
        write_tree(root, files or {})
        return root

    return _make


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., PaverConfig]:
    def _make(**rule_values: object) -> PaverConfig:
        return PaverConfig(
            repo_root=tmp_path,
            config_path=None,
            docs_root=tmp_path / "docs",
            rules=RulesConfig(**rule_values),
        )

    return _make


@pytest.fixture
def parse_doc(tmp_path: Path):
    def _parse(text: str, rel: str = "docs/widget.md"):
        return parse_document_text(
            tmp_path / rel,
            textwrap.dedent(text),
            repo_root=tmp_path,
            docs_root=tmp_path / "docs",
        )

    return _parse
