"""
unibo.observability.logging

Structured logging for DAO operations.

Responsibilities:
- Configure `structlog` so every DAO event (dao_create, duplicated_entry, row_vanished, ...)
  carries its operation context and service name.
- Render JSON for shipped logs, or a console layout for local development.
- Provide a small wrapper for obtaining bound loggers.
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from unibo.settings import Settings


def configure_logging(*, service_name: str, level: str, json: bool = True) -> None:
    """
    Set up stdlib logging and structlog; call once from the application's composition root.

    DAOs log each operation at debug and duplicate/vanished-row outcomes at info, so
    `level="DEBUG"` traces every read and write.
    """

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )

    renderer = structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _add_service_name(service_name),
            structlog.processors.dict_tracebacks,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def configure_logging_from_settings(settings: Settings) -> None:
    # Console output only for local development.
    configure_logging(
        service_name=settings.service_name,
        level=settings.log_level,
        json=settings.env != "dev",
    )


def _add_service_name(service_name: str):
    def processor(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict

    return processor


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


# --- Module Notes -----------------------------------------------------------
# Operation metadata (dao/table/op) is bound via contextvars in `observability.context`.
