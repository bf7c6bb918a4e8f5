"""Logging setup for the CLI.

Reports go to stdout; log records go to stderr so ``--format json`` output
stays machine-readable.
"""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


def level_for_verbosity(verbosity: int) -> int:
    if verbosity >= 2:
        return logging.DEBUG
    if verbosity == 1:
        return logging.INFO
    return logging.WARNING


def configure_logging(verbosity: int = 0) -> None:
    root = logging.getLogger("paver")
    root.setLevel(level_for_verbosity(verbosity))
    for handler in list(root.handlers):
        if getattr(handler, "_paver_cli", False):
            root.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._paver_cli = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.propagate = False
