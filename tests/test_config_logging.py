"""
Tests for configuration loading and structured logging
"""

import json
import logging

from payroll_core.config import PayrollConfig, get_config, reload_config
from payroll_core.logging_config import (
    JSONFormatter, correlation_context, get_correlation_id, get_logger, log_action, setup_logging
)


class TestConfig:
    """Test environment-driven configuration"""

    def test_defaults(self):
        config = PayrollConfig()
        assert config.payment_day == 10
        assert config.amount_tolerance == "0.01"
        assert config.contract_url_ttl_seconds == 3600

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("PAYROLL_PAYMENT_DAY", "25")
        monkeypatch.setenv("PAYROLL_AUTH_ENABLED", "false")
        config = PayrollConfig()
        assert config.payment_day == 25
        assert config.auth_enabled is False

    def test_reload_replaces_global(self, monkeypatch):
        monkeypatch.setenv("PAYROLL_LOG_LEVEL", "DEBUG")
        try:
            assert reload_config().log_level == "DEBUG"
            assert get_config().log_level == "DEBUG"
        finally:
            monkeypatch.delenv("PAYROLL_LOG_LEVEL")
            reload_config()


class TestLogging:
    """Test JSON log output"""

    def test_formatter_includes_structured_fields(self):
        record = logging.LogRecord("payroll_core", logging.INFO, __file__, 1,
                                   "Loan created", (), None)
        record.user_id = "hr-1"
        record.action = "create_loan"
        entry = json.loads(JSONFormatter().format(record))

        assert entry["message"] == "Loan created"
        assert entry["user_id"] == "hr-1"
        assert entry["action"] == "create_loan"
        assert "resource" not in entry

    def test_setup_logging_writes_json(self, tmp_path):
        log_file = tmp_path / "payroll.log"
        logger = setup_logging("INFO", logger_name="payroll_core.test", log_file=str(log_file))

        log_action(logger, "info", "Cancelled loan", user_id="owner-1",
                   action="cancel_loan", resource="loan:1", extra={"pending": 2})
        log_action(logger, "debug", "Not emitted")
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)

        lines = log_file.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 1
        entry = json.loads(lines[0])
        assert entry["resource"] == "loan:1"
        assert entry["extra"] == {"pending": 2}
        assert entry["level"] == "INFO"

    def test_get_logger(self):
        assert get_logger("payroll_core.loans") is logging.getLogger("payroll_core.loans")

    def test_formatter_uses_bound_correlation_id(self):
        record = logging.LogRecord("payroll_core", logging.INFO, __file__, 1,
                                   "Paid", (), None)
        with correlation_context("req-7"):
            entry = json.loads(JSONFormatter().format(record))
        assert entry["correlation_id"] == "req-7"

        entry = json.loads(JSONFormatter().format(record))
        assert "correlation_id" not in entry


class TestCorrelationContext:
    """Test request correlation ids"""

    def test_binds_and_resets(self):
        assert get_correlation_id() is None
        with correlation_context("abc") as correlation_id:
            assert correlation_id == "abc"
            assert get_correlation_id() == "abc"
        assert get_correlation_id() is None

    def test_generates_id(self):
        with correlation_context() as correlation_id:
            assert len(correlation_id) == 32
            assert get_correlation_id() == correlation_id

    def test_nested_restores_outer(self):
        with correlation_context("outer"):
            with correlation_context("inner"):
                assert get_correlation_id() == "inner"
            assert get_correlation_id() == "outer"
