"""Logging configuration for worktree-hub."""

import logging
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def resolve_level(verbose: bool = False, debug: bool = False, default: str = "WARNING") -> int:
    """Map CLI verbosity flags (or a configured level name) to a logging level."""
    if debug:
        return logging.DEBUG
    if verbose:
        return logging.INFO
    level = logging.getLevelName(default.upper())
    return level if isinstance(level, int) else logging.WARNING


def setup_logging(
    verbose: bool = False,
    debug: bool = False,
    log_file: Optional[str] = None,
    default_level: str = "WARNING",
) -> None:
    """
    Configure the root logger.

    Console output goes to stderr through rich so it never mixes with
    command output on stdout. When ``log_file`` is given everything down to
    DEBUG is also written there.

    Args:
        verbose: Show INFO messages.
        debug: Show DEBUG messages with timestamps and logger names.
        log_file: Optional path of a log file.
        default_level: Level used when neither flag is set.
    """
    level = resolve_level(verbose, debug, default_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if log_file else level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = RichHandler(
        console=Console(stderr=True),
        level=level,
        show_time=debug,
        show_path=debug,
        markup=False,
        rich_tracebacks=debug,
    )
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(console_handler)

    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root_logger.addHandler(file_handler)
