"""Loguru setup: console, rotating file and Slack alerts for ERROR records.

Every component logs through ``get_logger(name)`` so each line carries the
component that wrote it. Stuck sources and notifications that exhausted
their retries are logged at ERROR and therefore also reach Slack when
``SLACK_WEBHOOK_URL`` is set.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Dict, List

import httpx
from loguru import logger

from govsync.core.config import settings

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level} | {extra[name]}:{function}:{line} | {message}"
LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}

_configured = False


class InterceptHandler(logging.Handler):
    """Route stdlib records (uvicorn, alembic, httpx) into Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_name == "emit":
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).bind(name=record.name).log(level, record.getMessage())


def slack_alert(message: Any) -> None:
    record = message.record
    text = f":rotating_light: *{record['level'].name}* `{record['extra'].get('name', 'govsync')}`\n{record['message']}"
    if record["exception"] is not None:
        text += f"\n`{record['exception'].type.__name__}: {record['exception'].value}`"
    try:
        httpx.post(settings.SLACK_WEBHOOK_URL, json={"text": text}, timeout=5.0)
    except httpx.HTTPError:
        # Never log from inside a sink
        pass


def resolve_level(raw: str | None) -> str:
    level = (raw or "INFO").strip().upper()
    level = {"WARN": "WARNING", "FATAL": "CRITICAL"}.get(level, level)
    if level not in LEVELS:
        return "INFO"
    if settings.is_production and level in ("TRACE", "DEBUG"):
        return "INFO"
    return level


def _handlers(level: str) -> List[Dict[str, Any]]:
    log_dir = Path(settings.LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)

    handlers: List[Dict[str, Any]] = [
        {"sink": sys.stdout, "level": level, "format": LOG_FORMAT, "backtrace": False, "diagnose": False},
        {
            "sink": log_dir / "govsync.log",
            "level": level,
            "format": LOG_FORMAT,
            "rotation": "10 MB",
            "retention": "14 days",
            "enqueue": True,
            "backtrace": False,
            "diagnose": False,
        },
    ]
    if settings.SLACK_WEBHOOK_URL:
        handlers.append({"sink": slack_alert, "level": "ERROR", "enqueue": True})
    return handlers


def configure_logging() -> None:
    global _configured

    if _configured:
        return
    _configured = True

    logger.configure(handlers=_handlers(resolve_level(settings.LOG_LEVEL)), extra={"name": "govsync"})

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).handlers = [InterceptHandler()]
        logging.getLogger(name).propagate = False
    for name in filter(None, (n.strip() for n in settings.QUIET_LOGGERS.split(","))):
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str):
    return logger.bind(name=name)


configure_logging()
