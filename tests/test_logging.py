"""
tests.test_logging

Operation context binding and DAO log events.
"""

from __future__ import annotations

import json
import logging

import structlog
from structlog.testing import capture_logs

from unibo.bo.universal import UniversalBo
from unibo.dao.document import DocumentDao
from unibo.observability.context import operation_context
from unibo.observability.logging import (
    configure_logging,
    configure_logging_from_settings,
    get_logger,
)
from unibo.settings import Settings


def test_operation_context_binds_and_restores() -> None:
    with operation_context(dao="sql", op="get"):
        with operation_context(op="save"):
            assert structlog.contextvars.get_contextvars() == {"dao": "sql", "op": "save"}
        assert structlog.contextvars.get_contextvars() == {"dao": "sql", "op": "get"}
    assert structlog.contextvars.get_contextvars() == {}


def test_dao_emits_operation_events(mongo_db) -> None:
    dao = DocumentDao(mongo_db["events"])
    with capture_logs() as logs:
        dao.create(UniversalBo("e1"))
        dao.get("e1")
    events = [entry["event"] for entry in logs]
    assert events == ["dao_create", "dao_get"]
    assert logs[1]["found"] is True


def test_json_output(caplog) -> None:
    caplog.set_level(logging.INFO)
    configure_logging(service_name="unibo-test", level="INFO")
    try:
        get_logger("tests.json").info("startup", answer=42)
        payload = json.loads(caplog.records[-1].getMessage())
        assert payload["event"] == "startup"
        assert payload["service"] == "unibo-test"
        assert payload["answer"] == 42
    finally:
        structlog.reset_defaults()


def test_settings_choose_the_renderer(caplog) -> None:
    caplog.set_level(logging.INFO)
    try:
        configure_logging_from_settings(Settings(env="test", service_name="svc"))
        get_logger("tests.settings.json").info("startup")
        assert json.loads(caplog.records[-1].getMessage())["service"] == "svc"

        configure_logging_from_settings(Settings(env="dev"))
        get_logger("tests.settings.console").info("startup")
        message = caplog.records[-1].getMessage()
        assert "startup" in message
        assert not message.lstrip().startswith("{")
    finally:
        structlog.reset_defaults()
