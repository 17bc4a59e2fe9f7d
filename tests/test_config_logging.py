"""
Test suite for configuration and structured logging
"""

import json
import logging
from decimal import Decimal

import pytest
from pydantic import ValidationError

from loan_engine import config as config_module
from loan_engine.config import EngineConfig, get_config, reload_config
from loan_engine.logging_config import JSONFormatter, setup_logging, log_action


class TestEngineConfig:
    """Test environment-based configuration"""

    def test_defaults(self):
        config = EngineConfig()

        assert config.default_currency == "KES"
        assert config.default_allocation_strategy == "interest_fee_principal_penalty"
        assert config.strict_strategy_codes is False
        assert config.balance_epsilon == Decimal("0.0001")
        assert config.timely_epsilon == Decimal("0.01")
        assert config.api_port == 8091

    def test_currency_code_normalized(self):
        assert EngineConfig(default_currency=" ugx ").default_currency == "UGX"

    def test_unknown_currency_rejected(self):
        with pytest.raises(ValidationError, match="Unknown currency code"):
            EngineConfig(default_currency="XYZ")

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("LOAN_ENGINE_BALANCE_EPSILON", "0.001")
        monkeypatch.setenv("LOAN_ENGINE_STRICT_STRATEGY_CODES", "true")
        monkeypatch.setenv("LOAN_ENGINE_DEFAULT_CURRENCY", "UGX")

        try:
            config = reload_config()

            assert config.balance_epsilon == Decimal("0.001")
            assert config.strict_strategy_codes is True
            assert config.default_currency == "UGX"
            assert get_config() is config
            assert config_module.config is config
        finally:
            monkeypatch.delenv("LOAN_ENGINE_BALANCE_EPSILON")
            monkeypatch.delenv("LOAN_ENGINE_STRICT_STRATEGY_CODES")
            monkeypatch.delenv("LOAN_ENGINE_DEFAULT_CURRENCY")
            reload_config()


class TestStructuredLogging:
    """Test JSON log output"""

    def test_json_formatter(self):
        record = logging.LogRecord(
            "loan_engine.servicing", logging.INFO, __file__, 10,
            "Loan payment %s", ("recorded",), None
        )
        record.loan_id = "LN-1"
        record.action = "record_payment"

        entry = json.loads(JSONFormatter().format(record))

        assert entry["level"] == "INFO"
        assert entry["logger"] == "loan_engine.servicing"
        assert entry["message"] == "Loan payment recorded"
        assert entry["loan_id"] == "LN-1"
        assert entry["action"] == "record_payment"
        assert "extra" not in entry
        assert "timestamp" in entry

    def test_setup_logging_replaces_handlers(self):
        logger = setup_logging("DEBUG", "loan_engine.test_setup")
        logger = setup_logging("WARNING", "loan_engine.test_setup", fmt="text")

        assert len(logger.handlers) == 1
        assert logger.level == logging.WARNING
        assert logger.propagate is False
        assert not isinstance(logger.handlers[0].formatter, JSONFormatter)

    def test_log_action_writes_structured_line(self, tmp_path):
        log_file = tmp_path / "engine.log"
        logger = setup_logging("INFO", "loan_engine.test_actions", log_file=str(log_file))

        try:
            log_action(logger, "debug", "Not written")
            log_action(
                logger, "warning", "Loan written off",
                action="write_off", loan_id="LN-9", extra={"amount": "100.00"}
            )
        finally:
            for handler in logger.handlers[:]:
                handler.close()
                logger.removeHandler(handler)

        lines = log_file.read_text().strip().splitlines()
        assert len(lines) == 1

        entry = json.loads(lines[0])
        assert entry["level"] == "WARNING"
        assert entry["message"] == "Loan written off"
        assert entry["action"] == "write_off"
        assert entry["loan_id"] == "LN-9"
        assert entry["extra"] == {"amount": "100.00"}
