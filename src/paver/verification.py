"""Run the verification commands declared in documents.

Documents run concurrently on a bounded pool; the commands of one document
run in declared order because later commands may rely on earlier ones.
Timeouts and user interrupts both end a command as an ``abnormal`` outcome
carrying a reason, so diagnostics are produced by a single code path.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
import logging
import os
from pathlib import Path
import re
import signal
import subprocess
import threading
import time
from typing import Callable, Iterable, Sequence

from paver.config import PaverConfig
from paver.exceptions import RunInterrupted
from paver.model import Diagnostic, Document, Severity, VerificationCommand

logger = logging.getLogger(__name__)

COMMAND_FAILED_RULE = "command-failed"
COMMAND_TIMEOUT_RULE = "command-timeout"
MISMATCH_RULE = "verification-mismatch"

_ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]")
_WHITESPACE_RE = re.compile(r"\s+")
_STDERR_TAIL_LINES = 5


def default_jobs() -> int:
    return max(1, min(4, os.cpu_count() or 1))


class OutcomeStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    ABNORMAL = "abnormal"


@dataclass(frozen=True)
class ProcessResult:
    status: OutcomeStatus
    exit_code: int | None
    stdout: str
    stderr: str
    reason: str | None = None


@dataclass(frozen=True)
class CommandOutcome:
    document: str
    command: VerificationCommand
    status: OutcomeStatus
    exit_code: int | None
    stdout: str
    stderr: str
    duration: float
    reason: str | None = None
    output_matched: bool | None = None

    def as_json_dict(self) -> dict[str, object]:
        return {
            "document": self.document,
            "line": self.command.line,
            "command": self.command.command,
            "status": self.status.value,
            "reason": self.reason,
            "exit_code": self.exit_code,
            "duration_seconds": round(self.duration, 3),
            "expected_output": self.command.expected_output,
            "output_matched": self.output_matched,
            "stdout": self.stdout,
            "stderr": self.stderr,
        }


@dataclass(frozen=True)
class VerificationSettings:
    repo_root: Path
    timeout: float
    keep_going: bool = False
    fail_fast: bool = False
    jobs: int = 1
    strict_output_matching: bool = False
    skip_output_matching: bool = False

    @classmethod
    def from_config(
        cls,
        config: PaverConfig,
        *,
        timeout: float | None = None,
        keep_going: bool = False,
        fail_fast: bool = False,
        jobs: int | None = None,
    ) -> "VerificationSettings":
        return cls(
            repo_root=config.repo_root,
            timeout=timeout if timeout is not None else config.rules.verification_timeout,
            keep_going=keep_going,
            fail_fast=fail_fast,
            jobs=jobs if jobs is not None else default_jobs(),
            strict_output_matching=config.rules.strict_output_matching,
            skip_output_matching=config.rules.skip_output_matching,
        )


@dataclass(frozen=True)
class VerificationRun:
    outcomes: tuple[CommandOutcome, ...]
    diagnostics: tuple[Diagnostic, ...]
    documents: int
    aborted: bool = False

    def as_json_dict(self) -> dict[str, object]:
        return {
            "documents": self.documents,
            "aborted": self.aborted,
            "commands": [outcome.as_json_dict() for outcome in self.outcomes],
        }


def normalize_output(text: str) -> str:
    """ANSI escapes removed, line endings unified, whitespace runs collapsed."""
    cleaned = _ANSI_RE.sub("", text).replace("\r\n", "\n").replace("\r", "\n")
    return _WHITESPACE_RE.sub(" ", cleaned).strip()


def output_matches(expected: str, actual: str) -> bool:
    return normalize_output(expected) in normalize_output(actual)


class ProcessSupervisor:
    """Tracks in-flight commands so an interrupt can kill all of them."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._running: set[subprocess.Popen[str]] = set()
        self.cancelled = threading.Event()

    def _kill(self, proc: subprocess.Popen[str]) -> None:
        if proc.poll() is not None:
            return
        try:
            if os.name == "posix":
                os.killpg(proc.pid, signal.SIGKILL)
            else:
                proc.kill()
        except ProcessLookupError:
            pass

    def cancel(self) -> None:
        self.cancelled.set()
        with self._lock:
            running = list(self._running)
        for proc in running:
            self._kill(proc)

    def run(self, command: str, *, cwd: Path, timeout: float) -> ProcessResult:
        if self.cancelled.is_set():
            return ProcessResult(OutcomeStatus.ABNORMAL, None, "", "", reason="interrupted")
        proc = subprocess.Popen(
            command,
            shell=True,
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            start_new_session=os.name == "posix",
        )
        with self._lock:
            self._running.add(proc)
            cancelled = self.cancelled.is_set()
        try:
            if cancelled:
                # cancel() ran between the first check and registration.
                self._kill(proc)
            try:
                stdout, stderr = proc.communicate(timeout=timeout)
            except subprocess.TimeoutExpired:
                self._kill(proc)
                stdout, stderr = proc.communicate()
                return ProcessResult(
                    OutcomeStatus.ABNORMAL, None, stdout or "", stderr or "", reason="timeout"
                )
        finally:
            with self._lock:
                self._running.discard(proc)
        if self.cancelled.is_set():
            return ProcessResult(
                OutcomeStatus.ABNORMAL, proc.returncode, stdout or "", stderr or "", reason="interrupted"
            )
        status = OutcomeStatus.PASSED if proc.returncode == 0 else OutcomeStatus.FAILED
        return ProcessResult(status, proc.returncode, stdout or "", stderr or "")


CommandRunner = Callable[[str, Path, float], ProcessResult]


def _stderr_tail(text: str) -> str:
    lines = [line for line in text.strip().splitlines() if line.strip()]
    return "\n".join(lines[-_STDERR_TAIL_LINES:])


def outcome_diagnostics(outcome: CommandOutcome, settings: VerificationSettings) -> list[Diagnostic]:
    command = outcome.command
    if outcome.status is OutcomeStatus.ABNORMAL:
        if outcome.reason == "interrupted":
            return []
        return [
            Diagnostic.create(
                path=outcome.document,
                rule=COMMAND_TIMEOUT_RULE,
                message=f"`{command.command}` timed out after {settings.timeout:g}s and was terminated",
                severity=Severity.ERROR,
                line=command.line,
                downgradable=False,
            )
        ]
    if outcome.status is OutcomeStatus.FAILED:
        message = f"`{command.command}` exited with status {outcome.exit_code}"
        tail = _stderr_tail(outcome.stderr)
        if tail:
            message += f": {tail}"
        return [
            Diagnostic.create(
                path=outcome.document,
                rule=COMMAND_FAILED_RULE,
                message=message,
                severity=Severity.ERROR,
                line=command.line,
                downgradable=False,
            )
        ]
    if outcome.output_matched is False:
        return [
            Diagnostic.create(
                path=outcome.document,
                rule=MISMATCH_RULE,
                message=(
                    f"output of `{command.command}` does not contain the expected text "
                    f"{normalize_output(command.expected_output or '')!r}"
                ),
                severity=Severity.ERROR if settings.strict_output_matching else Severity.WARNING,
                line=command.line,
            )
        ]
    return []


class VerificationExecutor:
    def __init__(
        self,
        settings: VerificationSettings,
        *,
        supervisor: ProcessSupervisor | None = None,
        runner: CommandRunner | None = None,
    ):
        self.settings = settings
        self.supervisor = supervisor if supervisor is not None else ProcessSupervisor()
        self._runner = runner
        self._abort = threading.Event()

    def _run_process(self, command: str) -> ProcessResult:
        if self._runner is not None:
            return self._runner(command, self.settings.repo_root, self.settings.timeout)
        return self.supervisor.run(command, cwd=self.settings.repo_root, timeout=self.settings.timeout)

    def run_command(self, document: Document, command: VerificationCommand) -> CommandOutcome:
        logger.info("%s:%d: running %s", document.rel_path, command.line, command.command)
        started = time.monotonic()
        result = self._run_process(command.command)
        duration = time.monotonic() - started
        matched: bool | None = None
        if (
            result.status is OutcomeStatus.PASSED
            and command.expected_output is not None
            and not self.settings.skip_output_matching
        ):
            matched = output_matches(command.expected_output, result.stdout)
        logger.debug(
            "%s:%d: %s (exit %s) in %.2fs",
            document.rel_path,
            command.line,
            result.reason or result.status.value,
            result.exit_code,
            duration,
        )
        return CommandOutcome(
            document=document.rel_path,
            command=command,
            status=result.status,
            exit_code=result.exit_code,
            stdout=result.stdout,
            stderr=result.stderr,
            duration=duration,
            reason=result.reason,
            output_matched=matched,
        )

    def run_document(self, document: Document) -> list[CommandOutcome]:
        outcomes: list[CommandOutcome] = []
        for command in document.verification_commands:
            if self._abort.is_set() or self.supervisor.cancelled.is_set():
                break
            outcome = self.run_command(document, command)
            outcomes.append(outcome)
            if outcome.status is OutcomeStatus.PASSED:
                continue
            if outcome.reason == "interrupted":
                break
            if self.settings.fail_fast:
                self._abort.set()
                break
            if not self.settings.keep_going:
                break
        return outcomes

    def run(self, documents: Iterable[Document]) -> VerificationRun:
        runnable = [document for document in documents if document.verification_commands]
        logger.info(
            "verifying %d document(s) with %d worker(s)", len(runnable), self.settings.jobs
        )
        results: dict[int, list[CommandOutcome]] = {}
        pool = ThreadPoolExecutor(max_workers=max(1, self.settings.jobs))
        futures: list[Future[list[CommandOutcome]]] = []
        try:
            futures = [pool.submit(self.run_document, document) for document in runnable]
            for index, future in enumerate(futures):
                if future.cancelled():
                    continue
                results[index] = future.result()
                if self._abort.is_set():
                    for pending in futures[index + 1 :]:
                        pending.cancel()
        except KeyboardInterrupt:
            self.supervisor.cancel()
            pool.shutdown(wait=True, cancel_futures=True)
            raise RunInterrupted("verification interrupted; running commands were terminated")
        pool.shutdown(wait=True)
        if self.supervisor.cancelled.is_set():
            raise RunInterrupted("verification interrupted; running commands were terminated")
        outcomes = tuple(outcome for index in sorted(results) for outcome in results[index])
        diagnostics = tuple(
            diagnostic for outcome in outcomes for diagnostic in outcome_diagnostics(outcome, self.settings)
        )
        return VerificationRun(
            outcomes=outcomes,
            diagnostics=diagnostics,
            documents=len(runnable),
            aborted=self._abort.is_set(),
        )


def verify_documents(
    documents: Sequence[Document],
    settings: VerificationSettings,
) -> VerificationRun:
    return VerificationExecutor(settings).run(documents)
