"""JSON logging for the gigpay backend."""
from __future__ import annotations

import logging
from typing import Any, Optional

from pythonjsonlogger import jsonlogger

SERVICE_NAME = "gigpay"
# gateway clients log their own failures; httpx request lines are noise at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine")


class GigpayJsonFormatter(jsonlogger.JsonFormatter):
    """Adds ``service`` and ``env`` to every record and renames ``levelname`` to ``level``."""

    def __init__(self, *args: Any, env: str = "dev", **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._env = env

    def add_fields(self, log_record: dict[str, Any], record: logging.LogRecord, message_dict: dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["level"] = log_record.pop("levelname", record.levelname)
        log_record.setdefault("service", SERVICE_NAME)
        log_record.setdefault("env", self._env)


def setup_logging(level: str = "INFO", *, env: str = "dev") -> None:
    """Route the root logger through a single JSON stream handler."""

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    root_logger.setLevel(level.upper())

    handler = logging.StreamHandler()
    handler.setFormatter(GigpayJsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s", env=env))
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(level.upper())
    return logger


__all__ = ["GigpayJsonFormatter", "get_logger", "setup_logging"]
