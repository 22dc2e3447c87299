"""Logging configuration: stderr handler plus an optional file log."""

from __future__ import annotations

import logging
import sys
from pathlib import Path


class _ThirdPartyNoiseFilter(logging.Filter):
    """
    Keep everything logged under taskboard.*; let other libraries through
    only at WARNING or above (sqlalchemy.engine echo is the usual offender).
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.startswith("taskboard."):
            return True
        if record.name == "py.warnings":
            return record.levelno >= logging.ERROR
        return record.levelno >= logging.WARNING


def setup_logging(
    *,
    level: str | int = logging.INFO,
    log_dir: str | Path | None = None,
) -> None:
    """
    Configure the root logger once, at application startup.

    A file handler is added only when ``log_dir`` is given; it receives
    DEBUG and up without the third-party filter.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(level)
    ch.setFormatter(fmt)
    ch.addFilter(_ThirdPartyNoiseFilter())
    root.addHandler(ch)

    if log_dir:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(str(log_dir / "taskboard.log"), encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(fmt)
        root.addHandler(fh)

    logging.captureWarnings(True)
