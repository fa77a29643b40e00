"""Logging configuration for microdeploy.

All modules obtain their logger through :func:`get_logger` so that output is
routed under the ``microdeploy`` root logger configured by :func:`setup_logging`.
"""

from __future__ import annotations

import logging
import sys

ROOT_LOGGER_NAME = "microdeploy"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Chatty third-party loggers kept at WARNING unless verbose
_NOISY_LOGGERS = ("paramiko", "uvicorn", "uvicorn.access", "urllib3")


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure the microdeploy root logger.

    Args:
        verbose: Enable DEBUG output, including third-party libraries.
        quiet: Only emit warnings and errors.
    """
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)

    # Replace handlers so repeated CLI invocations in one process don't duplicate
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.propagate = False

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if verbose else logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Return a logger nested under the microdeploy root logger.

    Args:
        name: Usually ``__name__`` of the calling module.

    Returns:
        Logger instance.
    """
    if name == ROOT_LOGGER_NAME or name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
