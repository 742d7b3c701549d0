from __future__ import annotations

import io
import json
import logging
import sys
import uuid

from eprometna.logger import JSONFormatter, StructuredLogger


def _logger(tmp_path, stream):
    return StructuredLogger(
        name=f"tests.logger.{uuid.uuid4().hex[:8]}",
        stream=stream,
        log_file=str(tmp_path / "audit.log"),
    )


def test_entries_are_json_with_extra_fields(tmp_path):
    stream = io.StringIO()
    log = _logger(tmp_path, stream)

    log.info("Device registered for %s.", "Ivana", extra={"event": "REGISTER", "user_id": 7})

    entry = json.loads(stream.getvalue().splitlines()[-1])
    assert entry["level"] == "INFO"
    assert entry["message"] == "Device registered for Ivana."
    assert entry["extra"] == {"event": "REGISTER", "user_id": "7"}
    assert "timestamp" in entry


def test_entries_are_mirrored_to_the_log_file(tmp_path):
    log = _logger(tmp_path, io.StringIO())

    log.warning("Scan failed", extra={"event": "SCAN_FAILED"})
    for handler in log.logger.handlers:
        handler.flush()

    lines = (tmp_path / "audit.log").read_text(encoding="utf-8").splitlines()
    assert json.loads(lines[-1])["extra"]["event"] == "SCAN_FAILED"


def test_debug_is_filtered_at_default_level(tmp_path):
    stream = io.StringIO()
    log = _logger(tmp_path, stream)

    log.debug("noise")

    assert stream.getvalue() == ""


def test_reusing_a_name_does_not_duplicate_handlers(tmp_path):
    name = f"tests.logger.{uuid.uuid4().hex[:8]}"
    first = StructuredLogger(name=name, stream=io.StringIO(), log_file=str(tmp_path / "a.log"))
    second = StructuredLogger(name=name, stream=io.StringIO(), log_file=str(tmp_path / "a.log"))

    assert first.logger is second.logger
    assert len(second.logger.handlers) == 2


def test_formatter_includes_exception_text():
    try:
        raise ValueError("boom")
    except ValueError:
        record = logging.getLogger("x").makeRecord(
            "x", logging.ERROR, __file__, 1, "failed", (), exc_info=sys.exc_info(),
        )

    entry = json.loads(JSONFormatter().format(record))

    assert "ValueError: boom" in entry["exception"]
    assert "extra" not in entry


def test_credential_like_extra_fields_are_masked(tmp_path):
    stream = io.StringIO()
    log = _logger(tmp_path, stream)

    log.info("Tokens received", extra={"access_token": "eyJhbGciOi", "refreshToken": "r", "event": "LOGIN"})

    entry = json.loads(stream.getvalue().splitlines()[-1])
    assert entry["extra"] == {"access_token": "***", "refreshToken": "***", "event": "LOGIN"}
    assert "eyJhbGciOi" not in stream.getvalue()


def test_explicit_level_overrides_config(tmp_path):
    stream = io.StringIO()
    log = StructuredLogger(
        name=f"tests.logger.{uuid.uuid4().hex[:8]}",
        level=logging.DEBUG,
        stream=stream,
        log_file=str(tmp_path / "debug.log"),
    )

    log.debug("verbose")

    assert json.loads(stream.getvalue())["level"] == "DEBUG"
