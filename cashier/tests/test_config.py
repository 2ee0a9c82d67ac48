"""Tests for settings and logging setup."""

import json
import logging

import pytest

from cashier.config import Settings
from cashier.exceptions import ConfigurationError
from cashier.logging import JsonFormatter, setup_logging


class TestSettings:

    def test_defaults(self, monkeypatch):
        for var in ("CASHIER_DB_PATH", "CASHIER_STORE", "CASHIER_TIMEZONE", "CASHIER_STORE_TIMEOUT"):
            monkeypatch.delenv(var, raising=False)
        settings = Settings.from_env()

        assert settings.store_backend == "sqlite"
        assert settings.database_path.name == "cashier.db"
        assert settings.timezone is None
        assert settings.tzinfo is not None

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("CASHIER_STORE", "memory")
        monkeypatch.setenv("CASHIER_TIMEZONE", "Europe/Madrid")
        monkeypatch.setenv("CASHIER_STORE_TIMEOUT", "2.5")
        monkeypatch.setenv("CASHIER_CODE_ATTEMPTS", "3")
        monkeypatch.setenv("CASHIER_SEED_USERS", "false")
        monkeypatch.setenv("CASHIER_CORS_ORIGINS", "http://a.test, http://b.test")

        settings = Settings.from_env()

        assert settings.store_backend == "memory"
        assert str(settings.tzinfo) == "Europe/Madrid"
        assert settings.store_timeout_seconds == 2.5
        assert settings.ticket_code_attempts == 3
        assert settings.seed_default_users is False
        assert settings.cors_origins == ["http://a.test", "http://b.test"]

    @pytest.mark.parametrize("kwargs", [
        {"store_backend": "postgres"},
        {"timezone": "Mars/Olympus"},
        {"store_timeout_seconds": 0},
        {"ticket_code_attempts": 0},
        {"bcrypt_rounds": 2},
    ])
    def test_invalid_settings(self, kwargs):
        with pytest.raises(ConfigurationError):
            Settings(**kwargs)

    def test_invalid_numeric_env(self, monkeypatch):
        monkeypatch.setenv("CASHIER_STORE_TIMEOUT", "soon")
        with pytest.raises(ConfigurationError):
            Settings.from_env()


class TestLogging:

    def test_setup_logging_sets_level(self):
        setup_logging("DEBUG")
        assert logging.getLogger("cashier").level == logging.DEBUG
        setup_logging("INFO")

    def test_json_formatter(self):
        record = logging.LogRecord("cashier.service", logging.INFO, __file__, 1, "Deposit %s", ("10.00",), None)
        payload = json.loads(JsonFormatter().format(record))

        assert payload["level"] == "INFO"
        assert payload["logger"] == "cashier.service"
        assert payload["message"] == "Deposit 10.00"
        assert payload["thread"] == record.threadName
        assert "client_id" not in payload

    def test_json_formatter_promotes_ledger_context(self):
        record = logging.LogRecord("cashier.service", logging.INFO, __file__, 1, "Deposit", (), None)
        record.client_id = 7
        record.ticket_code = "TICK-00007-1-001"

        payload = json.loads(JsonFormatter().format(record))

        assert payload["client_id"] == 7
        assert payload["ticket_code"] == "TICK-00007-1-001"
        assert "username" not in payload
