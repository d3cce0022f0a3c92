"""
Tests for Rua logging setup and the exception hierarchy.
"""

import logging
from pathlib import Path

import pytest

from rua.core.config import RuaConfig
from rua.core.exceptions import (
    ActivationError,
    CapabilityError,
    CapabilityPermissionError,
    CapabilityUnavailableError,
    ConfigurationError,
    ExtensionTimeoutError,
    ManifestValidationError,
    NotFoundError,
    RuaException,
    ValidationError,
)
from rua.core.logging import StructuredFormatter, get_logger, log_structured, setup_logging


@pytest.fixture
def restore_rua_logger():
    """Undo setup_logging changes so later tests can capture records."""
    loggers = [logging.getLogger(), logging.getLogger("rua"), logging.getLogger("aiohttp")]
    saved = [(lg, list(lg.handlers), lg.level, lg.propagate) for lg in loggers]
    yield loggers[1]
    for lg, handlers, level, propagate in saved:
        for handler in list(lg.handlers):
            if handler not in handlers:
                lg.removeHandler(handler)
                handler.close()
        lg.setLevel(level)
        lg.propagate = propagate


class TestLogging:
    def test_setup_logging_writes_to_file(
        self, test_config: RuaConfig, temp_dir: Path, restore_rua_logger
    ):
        log_file = temp_dir / "logs" / "rua.log"

        setup_logging(log_level="DEBUG", log_file=log_file)
        get_logger("rua.tests").info("hello from tests")
        for handler in restore_rua_logger.handlers:
            handler.flush()

        assert log_file.exists()
        assert "hello from tests" in log_file.read_text(encoding="utf-8")

    def test_structured_formatter_appends_data(self):
        formatter = StructuredFormatter("%(message)s")
        record = logging.LogRecord("rua", logging.INFO, "", 0, "loaded", (), None)
        record.structured_data = {"version": "1.0.0", "extension_id": "acme.hello"}
        plain = logging.LogRecord("rua", logging.INFO, "", 0, "plain", (), None)

        assert formatter.format(record) == "loaded | extension_id='acme.hello' version='1.0.0'"
        assert formatter.format(plain) == "plain"
        assert record.msg == "loaded"

    def test_debug_mode_implies_debug_level(self, test_config: RuaConfig, restore_rua_logger):
        setup_logging(test_config)
        assert restore_rua_logger.level == logging.DEBUG

        quiet = test_config.model_copy(deep=True)
        quiet.debug = False
        quiet.logging.level = "WARNING"
        setup_logging(quiet)
        assert restore_rua_logger.level == logging.WARNING

        setup_logging(quiet, log_level="error")
        assert restore_rua_logger.level == logging.ERROR

    def test_unwritable_log_location_is_a_configuration_error(
        self, test_config: RuaConfig, temp_dir: Path, restore_rua_logger
    ):
        blocker = temp_dir / "not-a-dir"
        blocker.write_text("", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="Cannot create log directory"):
            setup_logging(log_file=blocker / "rua.log")

    def test_log_structured_attaches_data(self, caplog):
        logger = get_logger("rua.tests.structured")

        with caplog.at_level(logging.WARNING, logger="rua.tests.structured"):
            log_structured(logger, logging.WARNING, "timed out", extension_id="acme.slow")
            log_structured(logger, logging.DEBUG, "not emitted", extension_id="acme.slow")

        assert len(caplog.records) == 1
        assert caplog.records[0].structured_data == {"extension_id": "acme.slow"}


class TestExceptions:
    def test_details_are_appended_to_message(self):
        error = RuaException("Something failed", {"key": "value"})

        assert str(error) == "Something failed (Details: {'key': 'value'})"
        assert str(RuaException("Plain")) == "Plain"

    def test_validation_error_carries_findings(self):
        finding = ManifestValidationError("id is required", "id", None)
        error = ValidationError("Invalid manifest", errors=[finding])

        assert error.errors == [finding]
        assert isinstance(finding, ValidationError)
        assert finding.field == "id"

    def test_manifest_findings_compare_by_value(self):
        first = ManifestValidationError("bad", "rua.actions", ["a"])
        second = ManifestValidationError("bad", "rua.actions", ["a"])

        assert first == second
        assert len({first, second}) == 1

    def test_not_found_error_names_extension(self):
        error = NotFoundError("acme.missing")

        assert "Extension not found: acme.missing" in str(error)
        assert error.extension_id == "acme.missing"

    def test_timeout_error(self):
        error = ExtensionTimeoutError("acme.slow", 5000)

        assert "timed out after 5000ms" in str(error)
        assert error.timeout_ms == 5000

    def test_activation_error_records_phase(self):
        error = ActivationError("acme.broken", "boom", phase="import")

        assert error.phase == "import"
        assert error.extension_id == "acme.broken"

    def test_capability_errors_are_descriptive(self):
        denied = CapabilityPermissionError("acme.hello", "clipboard", "read", "clipboard")
        unavailable = CapabilityUnavailableError("shell", "execute")

        assert isinstance(denied, CapabilityError)
        assert "permission denied" in str(denied)
        assert "'clipboard' permission" in str(denied)
        assert "capability unavailable" in str(unavailable)
        assert unavailable.capability == "shell"
        assert unavailable.method == "execute"
