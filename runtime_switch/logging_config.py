"""
Logging setup for runtime-switch.

Console output goes to stderr so that ``--json`` output on stdout stays
machine-readable. A file handler can be added for a full DEBUG trace of
every package manager command that was run.
"""

import logging
import os
import sys
from pathlib import Path
from typing import Optional


LOGGER_NAME = "runtime_switch"

_logger: Optional[logging.Logger] = None


def setup_logging(
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    verbose: bool = False,
    quiet: bool = False,
    propagate: bool = False,
) -> logging.Logger:
    """
    Configure the runtime_switch logger.

    Args:
        level: Log level name; defaults to $RUNTIME_SWITCH_LOG_LEVEL or INFO
        log_file: Optional file path for log output
        verbose: Enable DEBUG output on the console
        quiet: Only warnings and errors on the console
        propagate: Allow propagation to the root logger (useful for testing)

    Returns:
        Configured logger instance
    """
    global _logger

    if verbose:
        effective_level = "DEBUG"
    elif quiet:
        effective_level = "WARNING"
    else:
        effective_level = (level or os.environ.get("RUNTIME_SWITCH_LOG_LEVEL", "INFO")).upper()

    numeric_level = getattr(logging, effective_level, None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {effective_level}")

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if log_file else numeric_level)
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(
        ColoredFormatter("%(levelname_colored)s %(message)s", use_colors=sys.stderr.isatty())
    )
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        logger.addHandler(file_handler)

    logger.propagate = propagate

    _logger = logger
    return logger


def get_logger() -> logging.Logger:
    """Get the configured logger, setting up defaults on first use."""
    global _logger
    if _logger is None:
        _logger = setup_logging()
    return _logger


class ColoredFormatter(logging.Formatter):
    """
    Formatter that prefixes each record with a colored level tag.
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;31m",
    }
    RESET = "\033[0m"

    TAGS = {
        "DEBUG": "[debug]",
        "INFO": "[info]",
        "WARNING": "[warn]",
        "ERROR": "[error]",
        "CRITICAL": "[fatal]",
    }

    def __init__(self, fmt: str, use_colors: bool = True):
        super().__init__(fmt)
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        tag = self.TAGS.get(record.levelname, f"[{record.levelname.lower()}]")
        if self.use_colors:
            color = self.COLORS.get(record.levelname, "")
            record.levelname_colored = f"{color}{tag}{self.RESET}"
        else:
            record.levelname_colored = tag
        return super().format(record)
