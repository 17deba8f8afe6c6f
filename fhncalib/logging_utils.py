"""Logging setup shared by the CLI and the mici worker process.

The worker writes to stderr, which the parent captures, so both sides use
the same record format.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Kept at WARNING or above whatever the run level is.
QUIET_LOGGERS = ("jax", "absl", "matplotlib", "h5py")


def resolve_level(level: Union[str, int]) -> int:
    """Map a level name or number to a logging level constant.

    Raises:
        ValueError: For an unknown level name.
    """
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level {level!r}")
    return resolved


def _attach(
    logger: logging.Logger,
    handler: logging.Handler,
    level: int,
    formatter: logging.Formatter,
) -> None:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def setup_logging(
    level: Union[str, int] = "INFO",
    log_file: Optional[Union[str, Path]] = None,
    console: bool = True,
) -> logging.Logger:
    """Configure the root logger for a benchmark run.

    Earlier handlers are replaced, so calling this again (e.g. once per CLI
    invocation in the same interpreter) never duplicates records.
    """
    root = logging.getLogger()
    resolved = resolve_level(level)

    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    root.setLevel(resolved)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    if console:
        _attach(root, logging.StreamHandler(), resolved, formatter)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        _attach(root, logging.FileHandler(path, encoding="utf-8"), resolved, formatter)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved, logging.WARNING))

    return root


def current_level_name() -> str:
    """Name of the root logger's level, for handing to a child process."""
    return logging.getLevelName(logging.getLogger().getEffectiveLevel())
