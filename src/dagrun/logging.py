# src/dagrun/logging.py
from __future__ import annotations

import logging
import sys
from typing import Optional, TextIO

_HANDLER_MARK = "_dagrun_handler"


def configure_logging(log_level: str = "info", *, stream: Optional[TextIO] = None) -> None:
    """
    Configures root logging for the CLI and the API service.

    - logs to `stream` (stdout for the service; the CLI passes stderr so its
      report lines on stdout stay clean)
    - replaces only the handler installed by a previous call, so repeated
      init (reload, several CLI invocations in one process) never stacks handlers
    """
    level = _parse_level(log_level)

    root = logging.getLogger()
    root.setLevel(level)

    for h in list(root.handlers):
        if getattr(h, _HANDLER_MARK, False):
            root.removeHandler(h)

    handler = logging.StreamHandler(stream if stream is not None else sys.stdout)
    handler.setLevel(level)
    setattr(handler, _HANDLER_MARK, True)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s %(levelname)s %(name)s [%(threadName)s] - %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )
    )
    root.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(max(level, logging.INFO))
    logging.getLogger("uvicorn.error").setLevel(level)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name if name else "dagrun")


def _parse_level(log_level: str) -> int:
    mapping = {
        "critical": logging.CRITICAL,
        "error": logging.ERROR,
        "warning": logging.WARNING,
        "warn": logging.WARNING,
        "info": logging.INFO,
        "debug": logging.DEBUG,
        "trace": logging.DEBUG,  # Python stdlib has no TRACE; map to DEBUG.
    }
    return mapping.get(log_level.lower().strip(), logging.INFO)
