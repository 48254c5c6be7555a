# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Tests for the structured JSON logger.

We verify:
  - output is valid JSON on stderr, never on stdout
  - all mandatory fields are present (ts, level, module, msg)
  - set_log_level retunes loggers that already exist
"""

import json
import logging
from pathlib import Path

import pytest

from shipwright.logging.logger import get_logger, set_log_level


@pytest.fixture(autouse=True)
def _reset_loggers() -> None:
    """
    Clear test logger handlers so each test binds a fresh handler to the
    stderr that capsys installed for it.
    """
    yield  # type: ignore[misc]
    for name in list(logging.Logger.manager.loggerDict):
        if name.startswith("shipwright.test"):
            logging.getLogger(name).handlers.clear()


class TestJsonOutput:
    def test_output_is_json_on_stderr(self, capsys: pytest.CaptureFixture[str]) -> None:
        logger = get_logger("shipwright.test.json")
        logger.info("hello")
        captured = capsys.readouterr()

        assert captured.out == ""
        assert isinstance(json.loads(captured.err.strip()), dict)

    def test_mandatory_fields_are_present(self, capsys: pytest.CaptureFixture[str]) -> None:
        logger = get_logger("shipwright.test.fields")
        logger.warning("Release v1.2.3 already exists on github")
        parsed = json.loads(capsys.readouterr().err.strip())

        assert set(parsed) >= {"ts", "level", "module", "msg"}
        assert parsed["level"] == "WARNING"
        assert parsed["module"] == "shipwright.test.fields"
        assert parsed["msg"] == "Release v1.2.3 already exists on github"

    def test_extra_fields_are_included(self, capsys: pytest.CaptureFixture[str]) -> None:
        logger = get_logger("shipwright.test.extra")
        logger.info("Processing platform", extra={"platform": "linux_amd64", "attempt": 2, "path": Path("dist")})
        parsed = json.loads(capsys.readouterr().err.strip())

        assert parsed["platform"] == "linux_amd64"
        assert parsed["attempt"] == 2
        assert parsed["path"] == "dist"

    def test_exception_info_is_attached(self, capsys: pytest.CaptureFixture[str]) -> None:
        logger = get_logger("shipwright.test.exc")
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            logger.exception("failed")
        parsed = json.loads(capsys.readouterr().err.strip())

        assert "RuntimeError: boom" in parsed["exc"]


class TestLogLevels:
    def test_debug_hidden_at_info(self, capsys: pytest.CaptureFixture[str]) -> None:
        logger = get_logger("shipwright.test.filter", log_level="INFO")
        logger.debug("hidden")
        assert capsys.readouterr().err == ""

    def test_set_log_level_retunes_existing_loggers(self, capsys: pytest.CaptureFixture[str]) -> None:
        logger = get_logger("shipwright.test.retune", log_level="INFO")
        set_log_level("DEBUG")
        try:
            logger.debug("now visible")
            assert json.loads(capsys.readouterr().err.strip())["level"] == "DEBUG"
        finally:
            set_log_level("INFO")

    def test_set_log_level_leaves_foreign_loggers_alone(self) -> None:
        foreign = logging.getLogger("someone.else")
        foreign.setLevel(logging.ERROR)
        set_log_level("DEBUG")
        try:
            assert foreign.level == logging.ERROR
        finally:
            set_log_level("INFO")

    def test_invalid_level_raises(self) -> None:
        with pytest.raises(ValueError, match="Invalid log level"):
            get_logger("shipwright.test.bad", log_level="LOUD")

    def test_no_handler_stacking(self) -> None:
        first = get_logger("shipwright.test.stack")
        second = get_logger("shipwright.test.stack")
        assert first is second
        assert len(second.handlers) == 1


def test_log_file_receives_json(tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "run.log"
    logger = get_logger("shipwright.test.file", log_file=log_file)
    logger.info("to file")
    for handler in logger.handlers:
        handler.flush()

    parsed = json.loads(log_file.read_text(encoding="utf-8").strip())
    assert parsed["msg"] == "to file"
    for handler in logger.handlers:
        handler.close()
