from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional, Sequence

import typer

from paver.changes import (
    DEFAULT_BASE,
    UNDECLARED_PATHS_NOTE,
    change_diagnostics,
    changed_documents,
    detect_for_base,
)
from paver.checker import RuleChecker
from paver.config import (
    DEFAULT_CONFIG_NAME,
    CliOverrides,
    PaverConfig,
    ResolvedConfig,
    config_items,
    config_value,
    load_config,
)
from paver.coverage import compute_coverage, coverage_diagnostics, in_scope_paths
from paver.exceptions import ConfigError, RunInterrupted, VcsError
from paver.model import Diagnostic, Document
from paver.parser import discover_documents, load_documents
from paver.policy import ExitCode, apply_gradual, exit_code_for
from paver.render import OutputFormat, Report, render_report
from paver.runtime.json_io import write_json_object
from paver.runtime.log_policy import configure_logging
from paver.tooling.git_paths import list_repository_files
from paver.verification import VerificationSettings, verify_documents

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    help="Validate, verify and measure PAVED documentation.",
)
config_app = typer.Typer(add_completion=False, no_args_is_help=True, help="Inspect resolved configuration.")
app.add_typer(config_app, name="config")

logger = logging.getLogger(__name__)

_UNCOVERED_PREVIEW = 10


@app.callback()
def _main_callback(
    verbose: int = typer.Option(
        0, "--verbose", "-v", count=True, help="Log progress to stderr (-vv for debug)."
    ),
) -> None:
    configure_logging(verbose)


def _fail_usage(message: str) -> typer.Exit:
    typer.echo(f"paver: {message}", err=True)
    return typer.Exit(code=int(ExitCode.USAGE))


def _resolve_config(
    root: Path,
    overrides: CliOverrides | None = None,
    *,
    require_docs_root: bool = True,
) -> ResolvedConfig:
    try:
        return load_config(root, overrides, require_docs_root=require_docs_root)
    except ConfigError as exc:
        raise _fail_usage(f"config error: {exc}") from exc


def _load(config: PaverConfig, paths: Sequence[Path] | None) -> tuple[list[Document], list[Diagnostic]]:
    targets = [path.resolve() for path in paths] if paths else None
    files = discover_documents(config.docs_root, targets)
    return load_documents(files, repo_root=config.repo_root, docs_root=config.docs_root)


def _repository_files(config: PaverConfig) -> list[str]:
    try:
        return list_repository_files(config.repo_root)
    except VcsError as exc:
        raise _fail_usage(f"cannot list repository files: {exc}") from exc


def _finish(
    *,
    command: str,
    config: PaverConfig,
    diagnostics: Sequence[Diagnostic],
    output_format: OutputFormat,
    documents: int | None,
    extras: dict[str, object] | None = None,
    notes: Sequence[str] = (),
) -> None:
    reported = apply_gradual(diagnostics, gradual=config.gradual)
    exit_code = exit_code_for(reported, gradual=config.gradual)
    report = Report(
        command=command,
        diagnostics=tuple(reported),
        exit_code=int(exit_code),
        gradual=config.gradual,
        documents=documents,
        extras=extras or {},
        notes=tuple(notes),
    )
    typer.echo(render_report(report, output_format), nl=False)
    raise typer.Exit(code=int(exit_code))


@app.command("check")
def check(
    paths: Optional[List[Path]] = typer.Argument(None, help="Documents or directories to check."),
    output_format: OutputFormat = typer.Option(OutputFormat.TEXT, "--format"),
    strict: bool = typer.Option(False, "--strict", help="Enforce errors even in gradual mode."),
    gradual: bool = typer.Option(False, "--gradual", help="Report errors as warnings and do not fail."),
    changed: bool = typer.Option(False, "--changed", help="Only check documents touched by changes since --base."),
    base: str = typer.Option(DEFAULT_BASE, "--base", help="Base git reference for --changed."),
    root: Path = typer.Option(Path("."), "--root"),
) -> None:
    """Validate documentation structure against the configured rules."""
    overrides = CliOverrides(gradual=True if gradual else None, strict=strict)
    resolved = _resolve_config(root, overrides)
    config = resolved.config
    documents, diagnostics = _load(config, paths)
    extras: dict[str, object] = {}
    if changed:
        try:
            change_set = detect_for_base(documents, repo_root=config.repo_root, base=base)
        except VcsError as exc:
            raise _fail_usage(f"cannot diff against {base}: {exc}") from exc
        documents = changed_documents(documents, change_set)
        extras["change_set"] = change_set.as_json_dict()
    repository_files = _repository_files(config) if config.rules.warn_empty_paths else None
    checker = RuleChecker(config, repository_files=repository_files)
    diagnostics = [*resolved.notices, *diagnostics, *checker.check(documents)]
    _finish(
        command="check",
        config=config,
        diagnostics=diagnostics,
        output_format=output_format,
        documents=len(documents),
        extras=extras,
    )


@app.command("verify")
def verify(
    paths: Optional[List[Path]] = typer.Argument(None, help="Documents or directories to verify."),
    output_format: OutputFormat = typer.Option(OutputFormat.TEXT, "--format"),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", min=0.001, help="Per-command timeout in seconds."
    ),
    keep_going: bool = typer.Option(
        False, "--keep-going", help="Keep running a document's commands after one fails."
    ),
    fail_fast: bool = typer.Option(
        False, "--fail-fast", help="Abort the whole run at the first failing command."
    ),
    jobs: Optional[int] = typer.Option(None, "--jobs", "-j", min=1, help="Documents verified in parallel."),
    report: Optional[Path] = typer.Option(None, "--report", help="Write a JSON run report to this path."),
    root: Path = typer.Option(Path("."), "--root"),
) -> None:
    """Run each document's verification commands and check their output."""
    if keep_going and fail_fast:
        raise typer.BadParameter("Use --keep-going or --fail-fast, not both.")
    resolved = _resolve_config(root, CliOverrides(verification_timeout=timeout))
    config = resolved.config
    documents, diagnostics = _load(config, paths)
    settings = VerificationSettings.from_config(
        config,
        keep_going=keep_going,
        fail_fast=fail_fast,
        jobs=jobs,
    )
    try:
        run = verify_documents(documents, settings)
    except RunInterrupted as exc:
        typer.echo(f"paver: {exc}", err=True)
        raise typer.Exit(code=int(ExitCode.INTERRUPTED)) from exc
    diagnostics = [*resolved.notices, *diagnostics, *run.diagnostics]
    if report is not None:
        write_json_object(
            report,
            {
                "command": "verify",
                **run.as_json_dict(),
                "diagnostics": [item.as_json_dict() for item in diagnostics],
            },
        )
        logger.info("wrote verification report %s", report)
    notes = [
        f"ran {len(run.outcomes)} command(s) from {run.documents} document(s); "
        f"{len(documents) - run.documents} document(s) declare no commands"
    ]
    if run.aborted:
        notes.append("stopped at the first failure (--fail-fast)")
    _finish(
        command="verify",
        config=config,
        diagnostics=diagnostics,
        output_format=output_format,
        documents=len(documents),
        extras={"verification": run.as_json_dict()},
        notes=notes,
    )


@app.command("changed")
def changed(
    base: str = typer.Option(DEFAULT_BASE, "--base", help="Base git reference to diff against."),
    strict: bool = typer.Option(False, "--strict", help="Fail when a documented path changed without its doc."),
    output_format: OutputFormat = typer.Option(OutputFormat.TEXT, "--format"),
    root: Path = typer.Option(Path("."), "--root"),
) -> None:
    """Report documents whose declared paths changed without the document."""
    resolved = _resolve_config(root, CliOverrides(strict=strict))
    config = resolved.config
    documents, diagnostics = _load(config, None)
    try:
        change_set = detect_for_base(documents, repo_root=config.repo_root, base=base)
    except VcsError as exc:
        raise _fail_usage(f"cannot diff against {base}: {exc}") from exc
    undeclared = sum(1 for document in documents if not document.path_patterns)
    notes = [
        f"{len(change_set.changed_paths)} changed path(s) since {base}; "
        f"{len(change_set.impacted)} impacted document(s), {len(change_set.stale)} stale"
    ]
    notes.extend(f"impacted: {doc_path}" for doc_path in change_set.impacted)
    if undeclared:
        notes.append(f"note: {undeclared} document(s) skipped; {UNDECLARED_PATHS_NOTE}")
    _finish(
        command="changed",
        config=config,
        diagnostics=[*resolved.notices, *diagnostics, *change_diagnostics(change_set, strict=strict)],
        output_format=output_format,
        documents=len(documents),
        extras={"change_set": change_set.as_json_dict()},
        notes=notes,
    )


@app.command("coverage")
def coverage(
    threshold: Optional[float] = typer.Option(
        None, "--threshold", min=0.0, max=100.0, help="Fail when coverage is below N percent."
    ),
    include: Optional[List[str]] = typer.Option(None, "--include", help="Only count paths matching this glob."),
    exclude: Optional[List[str]] = typer.Option(None, "--exclude", help="Do not count paths matching this glob."),
    output_format: OutputFormat = typer.Option(OutputFormat.TEXT, "--format"),
    root: Path = typer.Option(Path("."), "--root"),
) -> None:
    """Measure how much of the repository is claimed by documentation Paths."""
    resolved = _resolve_config(root)
    config = resolved.config
    documents, diagnostics = _load(config, None)
    scoped = in_scope_paths(
        _repository_files(config),
        config,
        include=include or (),
        exclude=exclude or (),
    )
    result = compute_coverage(documents, scoped, threshold=threshold)
    notes = [f"coverage: {result.percentage:.1f}% ({result.covered}/{result.total} paths)"]
    if result.uncovered:
        preview = result.uncovered[:_UNCOVERED_PREVIEW]
        notes.extend(f"uncovered: {path}" for path in preview)
        if len(result.uncovered) > len(preview):
            notes.append(f"... and {len(result.uncovered) - len(preview)} more uncovered path(s)")
    _finish(
        command="coverage",
        config=config,
        diagnostics=[*resolved.notices, *diagnostics, *coverage_diagnostics(result)],
        output_format=output_format,
        documents=len(documents),
        extras={"coverage": result.as_json_dict()},
        notes=notes,
    )


def _format_value(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return json.dumps(list(value))
    return str(value)


@config_app.command("list")
def config_list(root: Path = typer.Option(Path("."), "--root")) -> None:
    """List every resolved configuration value."""
    config = _resolve_config(root, require_docs_root=False).config
    for key, value in config_items(config):
        typer.echo(f"{key} = {_format_value(value)}")


@config_app.command("get")
def config_get(
    key: str = typer.Argument(..., help="Dotted key, e.g. rules.max_lines."),
    root: Path = typer.Option(Path("."), "--root"),
) -> None:
    """Print one resolved configuration value."""
    config = _resolve_config(root, require_docs_root=False).config
    try:
        value = config_value(config, key)
    except ConfigError as exc:
        raise _fail_usage(str(exc)) from exc
    typer.echo(_format_value(value))


@config_app.command("path")
def config_path(root: Path = typer.Option(Path("."), "--root")) -> None:
    """Print the path of the configuration file in effect."""
    config = _resolve_config(root, require_docs_root=False).config
    if config.config_path is None:
        typer.echo(f"no {DEFAULT_CONFIG_NAME} found", err=True)
        raise typer.Exit(code=int(ExitCode.FAILED))
    typer.echo(str(config.config_path))


def main() -> None:
    app()
