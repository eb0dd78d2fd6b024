"""Tests for the JSON log formatter."""

import json
import logging
import uuid

from examdesk.core.logging import CustomJsonFormatter, request_id_var


def _format(extra: dict) -> dict:
    formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(logger)s")
    record = logging.LogRecord(
        "examdesk.services.attempt_engine", logging.INFO, __file__, 1, "Attempt finalized", None, None
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return json.loads(formatter.format(record))


def test_attempt_context_is_serialized():
    attempt_id = uuid.uuid4()

    line = _format({"attempt_id": attempt_id, "event": "attempt_submitted", "exam_id": None})

    assert line["attempt_id"] == str(attempt_id)
    assert line["event"] == "attempt_submitted"
    assert "exam_id" not in line
    assert line["msg"] == "Attempt finalized"
    assert line["level"] == "INFO"


def test_request_id_comes_from_context():
    token = request_id_var.set("req-123")
    try:
        line = _format({})
    finally:
        request_id_var.reset(token)

    assert line["request_id"] == "req-123"


def test_explicit_request_id_wins():
    token = request_id_var.set("from-context")
    try:
        line = _format({"request_id": "explicit"})
    finally:
        request_id_var.reset(token)

    assert line["request_id"] == "explicit"
