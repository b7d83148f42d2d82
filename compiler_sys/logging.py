"""Logging helpers shared by every compiler_sys component."""

from __future__ import annotations

import logging
from typing import Optional, Union

from compiler_sys.env import get_compiler_sys_log_level

_ROOT_LOGGER_NAME = "compiler_sys"
_DEFAULT_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"


def configure_logging(level: Optional[Union[int, str]] = None, fmt: str = _DEFAULT_FORMAT) -> None:
    """Attach a stream handler to the ``compiler_sys`` logger.

    Parameters
    ----------
    level : Optional[Union[int, str]]
        Log level name or number. Default is the environment variable
        COMPILER_SYS_LOG_LEVEL if it exists, or ``WARNING``.
    fmt : str
        Format string for the handler.
    """
    root = logging.getLogger(_ROOT_LOGGER_NAME)
    if level is None:
        level = get_compiler_sys_log_level()
    if isinstance(level, str):
        level = level.upper()
    root.setLevel(level)

    if not any(getattr(h, "_compiler_sys_handler", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt))
        handler._compiler_sys_handler = True  # type: ignore[attr-defined]
        root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """Return the logger for a component, nested under the ``compiler_sys`` namespace."""
    return logging.getLogger(f"{_ROOT_LOGGER_NAME}.{name}")
