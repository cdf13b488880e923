"""Logging setup shared by the docsynth CLI and the HTTP service.

Every component logs through ``get_logger(<component>)``; console lines are
tagged with that component (``[docsynth:tree] DEBUG ...``) so fetch, cache
and generation traffic can be told apart when running with ``--verbose``.
"""

from __future__ import annotations

import logging
from pathlib import Path

_LOGGER_NAME = "docsynth"

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class ComponentFormatter(logging.Formatter):
    """Expose ``%(component)s``: the logger name relative to the docsynth root."""

    def format(self, record: logging.LogRecord) -> str:
        prefix = f"{_LOGGER_NAME}."
        if record.name.startswith(prefix):
            record.component = f"{_LOGGER_NAME}:{record.name[len(prefix):]}"
        else:
            record.component = _LOGGER_NAME
        return super().format(record)


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a component logger under the docsynth hierarchy."""
    full_name = f"{_LOGGER_NAME}.{name}" if name else _LOGGER_NAME
    return logging.getLogger(full_name)


def resolve_level(level: str | None = None, *, verbose: bool = False) -> int:
    if verbose:
        return logging.DEBUG
    if not level:
        return logging.INFO
    try:
        return LEVELS[level.strip().lower()]
    except KeyError:
        choices = ", ".join(LEVELS)
        raise ValueError(f"Unknown log level '{level}'. Use one of: {choices}.") from None


def configure_logging(
    *,
    verbose: bool = False,
    level: str | None = None,
    log_file: Path | None = None,
) -> logging.Logger:
    """Install console and optional file handlers; ``verbose`` overrides ``level``."""
    resolved = resolve_level(level, verbose=verbose)
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(resolved)
    logger.propagate = False

    # Reconfiguring after the config file is read must not duplicate output.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(resolved)
    stream_handler.setFormatter(ComponentFormatter("[%(component)s] %(levelname)s %(message)s"))
    logger.addHandler(stream_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(resolved)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        logger.addHandler(file_handler)

    return logger


__all__ = ["LEVELS", "ComponentFormatter", "configure_logging", "get_logger", "resolve_level"]
