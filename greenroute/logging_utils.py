"""
Logging Utilities

Plain-text process logging plus a JSON line logger (``greenroute.events``)
for structured analytics records. Log level comes from GREENROUTE_LOG_LEVEL.
"""

import logging
import os
from typing import Any, Optional

from pythonjsonlogger import jsonlogger

EVENT_LOGGER_NAME = "greenroute.events"


def _parse_level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(level: Optional[str] = None) -> None:
    """Plain-text root logging for the service process"""
    logging.basicConfig(
        level=_parse_level(level or os.getenv("GREENROUTE_LOG_LEVEL", "INFO")),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def get_event_logger() -> logging.Logger:
    logger = logging.getLogger(EVENT_LOGGER_NAME)

    # Prevent duplicate handlers (common with reloaders)
    if getattr(logger, "_configured", False):
        return logger

    logger.setLevel(logging.INFO)
    logger.propagate = False

    handler = logging.StreamHandler()
    handler.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(message)s"))
    logger.addHandler(handler)

    log_path = os.getenv("GREENROUTE_EVENT_LOG")
    if log_path:
        try:
            fh = logging.FileHandler(log_path, encoding="utf-8")
            fh.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(message)s"))
            logger.addHandler(fh)
        except OSError as e:
            logging.getLogger(__name__).warning("[EVENTS] Cannot open %s: %s", log_path, e)

    logger._configured = True  # type: ignore[attr-defined]
    return logger


def log_event(event: str, **fields: Any) -> None:
    # Structured: event is message + a top-level key
    get_event_logger().info(event, extra={"event": event, **fields})
