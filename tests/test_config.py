"""
Tests for configuration and structured logging
"""

import json
import logging
import sys

from debt_ledger import config as config_module
from debt_ledger.config import DebtLedgerConfig, get_config, reload_config
from debt_ledger.logging_config import JSONFormatter, get_logger, log_action, setup_logging


class TestConfig:
    """Test environment-based configuration"""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("DEBT_LEDGER_API_PORT", raising=False)
        settings = DebtLedgerConfig(_env_file=None)
        assert settings.api_port == 8090
        assert settings.calculation_precision == 28
        assert settings.reference_timezone == "UTC"
        assert settings.due_date_hour == 12
        assert settings.max_page_size == 200

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("DEBT_LEDGER_API_PORT", "9100")
        monkeypatch.setenv("debt_ledger_database_url", "memory://")
        settings = DebtLedgerConfig(_env_file=None)
        assert settings.api_port == 9100
        assert settings.database_url == "memory://"

    def test_reload(self, monkeypatch):
        original = get_config()
        monkeypatch.setenv("DEBT_LEDGER_OVERDUE_GRACE_DAYS", "5")
        try:
            reloaded = reload_config()
            assert reloaded.overdue_grace_days == 5
            assert get_config() is reloaded
        finally:
            config_module.config = original


class TestJSONFormatter:
    """Test structured log output"""

    def test_structured_fields(self):
        record = logging.LogRecord("debt_ledger.test", logging.INFO, __file__, 1, "Payment recorded", (), None)
        record.debt_id = "debt-1"
        record.action = "record_payment"
        record.extra = {"amount": "10.00"}

        entry = json.loads(JSONFormatter().format(record))

        assert entry["level"] == "INFO"
        assert entry["message"] == "Payment recorded"
        assert entry["debt_id"] == "debt-1"
        assert entry["action"] == "record_payment"
        assert entry["extra"] == {"amount": "10.00"}
        assert "correlation_id" not in entry

    def test_exception_included(self):
        try:
            raise ValueError("bad amount")
        except ValueError:
            record = logging.LogRecord("debt_ledger.test", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())
        entry = json.loads(JSONFormatter().format(record))
        assert "bad amount" in entry["exception"]


class TestSetupLogging:
    """Test logger configuration"""

    def test_log_action_writes_json(self, tmp_path):
        log_file = tmp_path / "ledger.log"
        logger = setup_logging("DEBUG", logger_name="debt_ledger.test_json", log_file=str(log_file))

        log_action(logger, "info", "Debt created", debt_id="debt-1", action="create_debt",
                   resource="debt", correlation_id="req-7")
        for handler in logger.handlers:
            handler.flush()

        entry = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert entry["debt_id"] == "debt-1"
        assert entry["resource"] == "debt"
        assert entry["correlation_id"] == "req-7"

    def test_level_filters_actions(self, tmp_path):
        log_file = tmp_path / "ledger.log"
        logger = setup_logging("WARNING", logger_name="debt_ledger.test_level", log_file=str(log_file))
        log_action(logger, "info", "ignored")
        for handler in logger.handlers:
            handler.flush()
        assert log_file.read_text() == ""

    def test_text_format(self, tmp_path):
        log_file = tmp_path / "ledger.log"
        logger = setup_logging("INFO", logger_name="debt_ledger.test_text", log_format="text",
                               log_file=str(log_file))
        logger.info("plain line")
        for handler in logger.handlers:
            handler.flush()
        assert "INFO [debt_ledger.test_text] plain line" in log_file.read_text()

    def test_setup_replaces_handlers(self):
        logger = setup_logging(logger_name="debt_ledger.test_handlers")
        setup_logging(logger_name="debt_ledger.test_handlers")
        assert len(logger.handlers) == 1
        assert not logger.propagate
        assert get_logger("debt_ledger.test_handlers") is logger
