"""
Unit tests for structured logging setup and correlation ids
"""

import json
import logging

import pytest

from reqsession.core.utils.logging_config import (
    StructuredFormatter,
    correlation_id_ctx,
    get_correlation_id,
    init_session_logging,
    set_correlation_id,
    setup_logging,
)

pytestmark = pytest.mark.unit


@pytest.fixture
def restore_root_logger():
    """setup_logging replaces root handlers; put pytest's back afterwards"""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def fresh_correlation_id():
    token = correlation_id_ctx.set(None)
    yield
    correlation_id_ctx.reset(token)


class TestSetupLogging:
    """Test root logger configuration"""

    def test_json_formatter_installed(self, restore_root_logger):
        setup_logging(log_level="DEBUG", enable_json=True)

        assert restore_root_logger.level == logging.DEBUG
        assert len(restore_root_logger.handlers) == 1
        assert isinstance(restore_root_logger.handlers[0].formatter, StructuredFormatter)

    def test_plain_formatter_when_json_disabled(self, restore_root_logger):
        setup_logging(log_level="warning", enable_json=False)

        assert restore_root_logger.level == logging.WARNING
        assert not isinstance(restore_root_logger.handlers[0].formatter, StructuredFormatter)

    def test_log_file_handler(self, restore_root_logger, tmp_path):
        log_file = tmp_path / "sessions.log"
        setup_logging(log_file=str(log_file))

        logging.getLogger("reqsession.test").info("written to file")
        for handler in restore_root_logger.handlers:
            handler.flush()

        entry = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert entry["message"] == "written to file"
        assert entry["level"] == "INFO"

    def test_init_from_settings(self, restore_root_logger, session_settings):
        init_session_logging(session_settings.model_copy(update={"log_level": "ERROR"}))

        assert restore_root_logger.level == logging.ERROR

    def test_sensitive_fields_only_at_debug(self, restore_root_logger, session_settings):
        init_session_logging(
            session_settings.model_copy(update={"log_level": "DEBUG", "json_logs": True})
        )
        assert restore_root_logger.handlers[0].formatter.include_sensitive

        init_session_logging(
            session_settings.model_copy(update={"log_level": "INFO", "json_logs": True})
        )
        assert not restore_root_logger.handlers[0].formatter.include_sensitive


class TestCorrelationId:
    """Test per-context correlation ids"""

    def test_generated_once_per_context(self, fresh_correlation_id):
        first = get_correlation_id()
        assert first
        assert get_correlation_id() == first

    def test_set_correlation_id(self, fresh_correlation_id):
        set_correlation_id("req-123")
        assert get_correlation_id() == "req-123"

    def test_correlation_id_in_formatted_output(self, fresh_correlation_id):
        set_correlation_id("req-456")
        record = logging.LogRecord("reqsession", logging.INFO, __file__, 1, "hello", (), None)

        entry = json.loads(StructuredFormatter().format(record))
        assert entry["correlation_id"] == "req-456"

    def test_middleware_echoes_request_id_header(self, client):
        response = client.get("/whoami", headers={"X-Request-ID": "abc-123"})
        assert response.headers["X-Request-ID"] == "abc-123"

    def test_middleware_generates_request_id(self, client):
        first = client.get("/whoami").headers["X-Request-ID"]
        second = client.get("/whoami").headers["X-Request-ID"]
        assert first and second and first != second
