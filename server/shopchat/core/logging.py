from __future__ import annotations

import logging
import logging.config
from typing import Any, Dict

from pythonjsonlogger import jsonlogger

from shopchat.core.context import get_request_id

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(request_id)s] %(message)s"
JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


class RequestContextFilter(logging.Filter):
    """Stamps every record with the current request's correlation id."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id() or "-"
        return True


def _build_logging_config(level: str, json_logs: bool) -> Dict[str, Any]:
    if json_logs:
        formatter: Dict[str, Any] = {"()": jsonlogger.JsonFormatter, "fmt": JSON_FORMAT, "datefmt": DATE_FORMAT}
    else:
        formatter = {"format": TEXT_FORMAT, "datefmt": DATE_FORMAT}

    def _logger(logger_level: str = level) -> Dict[str, Any]:
        return {"handlers": ["default"], "level": logger_level, "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"request_context": {"()": RequestContextFilter}},
        "formatters": {"default": formatter},
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "filters": ["request_context"],
            }
        },
        "loggers": {
            "uvicorn": _logger(),
            "uvicorn.error": _logger(),
            "uvicorn.access": _logger(),
            "shopchat": _logger(),
            # Upstream client chatter stays quiet unless something goes wrong.
            "httpx": _logger("WARNING"),
            "openai": _logger("WARNING"),
        },
        "root": {"handlers": ["default"], "level": level},
    }


def configure_logging(level: str = "INFO", json_logs: bool = True) -> None:
    logging.config.dictConfig(_build_logging_config(level.upper(), json_logs))
