from __future__ import annotations

import json
import logging

import pytest
import structlog

from backend.util.logging_config import configure_logging


@pytest.fixture(autouse=True)
def _reset_logging():
    level = logging.getLogger().level
    yield
    logging.getLogger().setLevel(level)
    structlog.reset_defaults()


def test_json_logs_carry_bound_context(capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging("INFO", json_output=True)
    root = logging.getLogger()
    handler = logging.StreamHandler()
    root.addHandler(handler)
    try:
        with structlog.contextvars.bound_contextvars(cluster_id="4"):
            structlog.get_logger("smartanno.test").info("llm.request", attempt=1)
    finally:
        root.removeHandler(handler)

    line = capsys.readouterr().err.strip().splitlines()[-1]
    event = json.loads(line)
    assert event["event"] == "llm.request"
    assert event["cluster_id"] == "4"
    assert event["attempt"] == 1
    assert event["level"] == "info"
