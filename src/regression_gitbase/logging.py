"""Logging setup for regression-gitbase.

A console handler whose level follows ``--verbose``/``--quiet`` and an
optional file handler that always records DEBUG.  Benchmark code logs
through :func:`with_fields`, which prefixes messages with ``key=value``
context (version, query id) so interleaved repetitions stay readable.
"""

from __future__ import annotations

import logging
from collections.abc import MutableMapping
from pathlib import Path
from typing import Any

_LOGGER_NAME = "regression_gitbase"
_DEFAULT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
_CONSOLE_FORMAT = "%(levelname)-8s %(message)s"

# Chatty libraries that log every HTTP connection at DEBUG.
_NOISY_LOGGERS = ("urllib3", "sqlalchemy.engine")


def setup_logging(
    *,
    verbose: bool = False,
    quiet: bool = False,
    log_file: Path | None = None,
) -> logging.Logger:
    """Configure and return the root regression_gitbase logger.

    Args:
        verbose: If True, set console log level to DEBUG.
        quiet: If True, set console log level to WARNING. Ignored if *verbose* is True.
        log_file: If provided, add a file handler at DEBUG level to this path.

    Returns:
        The configured package logger.
    """
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)

    # Allow reconfiguration (tests call this repeatedly).
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler()
    if verbose:
        console.setLevel(logging.DEBUG)
    elif quiet:
        console.setLevel(logging.WARNING)
    else:
        console.setLevel(logging.INFO)
    console.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
    logger.addHandler(console)

    if log_file is not None:
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter(_DEFAULT_FORMAT))
        logger.addHandler(fh)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a named child logger under the regression_gitbase namespace."""
    return logging.getLogger(f"{_LOGGER_NAME}.{name}")


class FieldsAdapter(logging.LoggerAdapter):  # type: ignore[type-arg]
    """Logger adapter that prefixes each message with ``key=value`` pairs."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, Any]:
        fields = " ".join(f"{k}={v}" for k, v in (self.extra or {}).items())
        if fields:
            msg = f"[{fields}] {msg}"
        return msg, kwargs


def with_fields(logger: logging.Logger, **fields: Any) -> FieldsAdapter:
    """Wrap *logger* so every message carries the given context fields.

    Example::

        log = with_fields(get_logger("runner"), version="v0.24.0")
        log.info("Running query")   # -> "[version=v0.24.0] Running query"
    """
    return FieldsAdapter(logger, fields)
