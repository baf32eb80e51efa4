# src/PACE/app_logger.py
"""
Logger hierarchy for PACE.

Modules log through children of the ``PACE`` logger (``get_logger("catalog")``
is ``PACE.catalog``). Importing this module configures nothing; the entry
points do that once:

* the web app calls ``configure_logging()`` for JSON lines on stdout
  (python-json-logger, same format as ``gunicorn.conf.py``);
* the ``pace`` CLI calls ``configure_logging(console=True)`` so job logs
  render through rich next to its report tables.
"""
from __future__ import annotations

import logging
import logging.config
import os
from typing import Any, Optional

ROOT_LOGGER = "PACE"
JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s %(process)d %(module)s"


def default_level() -> str:
    return os.getenv("PACE_LOG_LEVEL", "INFO").upper()


def logging_config(level: Optional[str] = None, console: bool = False) -> dict[str, Any]:
    """dictConfig for either the JSON server output or the rich CLI console."""
    level = (level or default_level()).upper()
    if console:
        handler: dict[str, Any] = {
            "class": "rich.logging.RichHandler",
            "show_path": False,
            "rich_tracebacks": True,
        }
    else:
        handler = {
            "class": "logging.StreamHandler",
            "formatter": "json",
            "stream": "ext://sys.stdout",
        }
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": "pythonjsonlogger.jsonlogger.JsonFormatter", "fmt": JSON_FORMAT},
        },
        "handlers": {"default": handler},
        "root": {"handlers": ["default"], "level": "INFO"},
        "loggers": {
            ROOT_LOGGER:      {"handlers": ["default"], "level": level, "propagate": False},
            "uvicorn":        {"handlers": ["default"], "level": "INFO", "propagate": False},
            "uvicorn.error":  {"handlers": ["default"], "level": "INFO", "propagate": False},
            "uvicorn.access": {"handlers": ["default"], "level": "INFO", "propagate": False},
        },
    }


def configure_logging(level: Optional[str] = None, *, console: bool = False) -> logging.Logger:
    logging.config.dictConfig(logging_config(level, console))
    return logging.getLogger(ROOT_LOGGER)


def get_logger(name: str | None = None) -> logging.Logger:
    base = logging.getLogger(ROOT_LOGGER)
    return base.getChild(name) if name else base
