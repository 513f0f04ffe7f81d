"""
Tests for configuration and structured logging
"""

import io
import json
import logging
from datetime import date
from decimal import Decimal

import pytest

from peer_lending import config as config_module
from peer_lending.amortization import first_payment_date
from peer_lending.config import PeerLendingConfig, get_config, reload_config
from peer_lending.logging_config import JSONFormatter, setup_logging, log_action


@pytest.fixture
def restore_config():
    original = config_module.config
    yield
    config_module.config = original


class TestConfig:
    """Test defaults and environment overrides"""

    def test_defaults(self):
        settings = PeerLendingConfig(_env_file=None)
        assert settings.currency == "COP"
        assert Decimal(settings.default_technology_fee) == Decimal('8000')
        assert settings.min_first_period_days == 15
        assert Decimal(settings.platform_commission_rate) == Decimal('0.30')
        assert settings.solver_max_iterations == 100
        assert settings.reservation_ttl_seconds == 300

    def test_environment_override(self, monkeypatch, restore_config):
        monkeypatch.setenv("PEER_LENDING_RESERVATION_TTL_SECONDS", "60")
        monkeypatch.setenv("PEER_LENDING_PLATFORM_INVESTOR_ID", "house")
        reloaded = reload_config()
        assert reloaded is get_config()
        assert reloaded.reservation_ttl_seconds == 60
        assert reloaded.platform_investor_id == "house"

    def test_override_reaches_engine(self, monkeypatch, restore_config):
        monkeypatch.setenv("PEER_LENDING_MIN_FIRST_PERIOD_DAYS", "30")
        reload_config()
        assert first_payment_date(date(2025, 1, 10), 5) == date(2025, 3, 5)


class TestStructuredLogging:
    """Test JSON log output"""

    def setup_method(self):
        self.stream = io.StringIO()
        self.logger = setup_logging("DEBUG", "peer_lending_test_logging")
        self.logger.handlers[0].stream = self.stream

    def teardown_method(self):
        for handler in self.logger.handlers[:]:
            self.logger.removeHandler(handler)

    def test_log_action_fields(self):
        log_action(self.logger, "info", "Reserved COP 100,000.00", user_id="payer-a",
                   action="claim", loan_id="loan-1", extra={'amount': '100000.00'})
        entry = json.loads(self.stream.getvalue())
        assert entry["message"] == "Reserved COP 100,000.00"
        assert entry["level"] == "INFO"
        assert entry["user_id"] == "payer-a"
        assert entry["action"] == "claim"
        assert entry["loan_id"] == "loan-1"
        assert entry["extra"] == {'amount': '100000.00'}
        assert "correlation_id" not in entry

    def test_disabled_level_is_skipped(self):
        self.logger.setLevel(logging.WARNING)
        log_action(self.logger, "info", "quiet")
        assert self.stream.getvalue() == ""

    def test_formatter_includes_exception(self):
        try:
            raise ValueError("boom")
        except ValueError:
            self.logger.exception("failed")
        entry = json.loads(self.stream.getvalue())
        assert "ValueError: boom" in entry["exception"]
        assert isinstance(self.logger.handlers[0].formatter, JSONFormatter)
