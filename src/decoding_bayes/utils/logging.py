"""
Structured Logging
==================

Two-tier logging: a Rich console handler for interactive use and an
optional plain-text file handler for batch runs.

Design Principles:
    - No hidden globals (module-level singleton with explicit configure/get)
    - Pipe-delimited key=value format for structured log messages
    - Colour-coded severity levels for fast visual scanning
    - Simultaneous file + console output for auditability

Severity Levels:
    info     (cyan)     — routine progress
    ok       (green)    — successful completion
    warn     (yellow)   — recoverable issues (convergence, low resolution)
    error    (red)      — failures
    metric   (magenta)  — quantitative results (elpd, R-hat, accuracy)

Usage::

    from decoding_bayes.utils.logging import get_logger, log

    logger = get_logger(__name__)
    logger.info("munge | participants=10 regions=26 rows=46800")
    log("loo | model=slopes elpd=-20311.4 se=81.2", severity="metric")
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

SEVERITY_COLORS = {
    "info":   "cyan",
    "ok":     "green",
    "warn":   "yellow",
    "error":  "red",
    "metric": "magenta",
}

_FILE_FORMAT = "[%(asctime)s] %(levelname)-7s %(name)s — %(message)s"

_console = Console(stderr=True)
_file_handler: Optional[logging.FileHandler] = None
_configured = False
_log_dir: Optional[Path] = None


def configure_logging(
    level: str = "INFO",
    log_dir: Optional[str | Path] = None,
    log_file: Optional[str] = None,
) -> None:
    """
    Configure the global logging system.

    Call once at pipeline start. Sets up the Rich console handler and an
    optional file handler. Safe to call multiple times (idempotent).

    Args:
        level:    Log level string (DEBUG, INFO, WARNING, ERROR).
        log_dir:  Directory for log files.  Created if needed.
        log_file: Log filename.  Defaults to ``decoding_bayes_<timestamp>.log``.
    """
    global _configured, _file_handler, _log_dir

    if _configured:
        return

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    console_handler = RichHandler(
        console=_console,
        rich_tracebacks=True,
        show_path=False,
        markup=True,
    )
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(console_handler)

    if log_dir is not None:
        _log_dir = Path(log_dir)
        _log_dir.mkdir(parents=True, exist_ok=True)
        if log_file is None:
            ts = datetime.now().strftime("%Y%m%d_%H%M%S")
            log_file = f"decoding_bayes_{ts}.log"
        fh = logging.FileHandler(_log_dir / log_file, encoding="utf-8")
        fh.setFormatter(logging.Formatter(_FILE_FORMAT))
        root.addHandler(fh)
        _file_handler = fh

    _configured = True


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Get a logger, configuring the console handler on first use.

    Args:
        name:  Logger name (typically ``__name__``).
        level: Per-logger level override.

    Returns:
        Configured ``logging.Logger`` instance.
    """
    if not _configured:
        configure_logging()

    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    return logger


def log(msg: str, severity: str = "info") -> None:
    """
    Quick-log a message with a severity tag.

    Args:
        msg:      Pipe-delimited message (e.g. ``"fit | model=slopes chains=4"``).
        severity: One of info, ok, warn, error, metric.
    """
    logger = get_logger("decoding-bayes")
    colour = SEVERITY_COLORS.get(severity, "white")

    if severity == "error":
        logger.error(msg)
    elif severity == "warn":
        logger.warning(msg)
    else:
        logger.info(f"[{colour}]{msg}[/{colour}]")
