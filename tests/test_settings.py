"""Tests for settings and ledger defaults."""

import logging
from unittest.mock import patch

import pytest
import structlog

from shop_ledger.config import LedgerDefaults, configure_logging, get_settings
from shop_ledger.config.settings import FlatSettings


@pytest.fixture
def fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestSettings:
    """Tests for FlatSettings."""

    def test_defaults(self, fresh_settings):
        settings = get_settings()

        assert settings.ledger_api_key.get_secret_value() == "anon-test-key"
        assert settings.default_payment_method == "Cash"
        assert settings.purchase_category == "expense_purchases"
        assert settings.sale_category == "income_sales"
        assert settings.default_account_id is None

    def test_env_overrides(self, fresh_settings, monkeypatch):
        monkeypatch.setenv("LEDGER_DEFAULT_ACCOUNT_ID", "acc-main")
        monkeypatch.setenv("LEDGER_PURCHASE_CATEGORY", "cat-7")
        monkeypatch.setenv("LOG_FORMAT", "json")

        settings = get_settings()

        assert settings.default_account_id == "acc-main"
        assert settings.purchase_category == "cat-7"
        assert settings.log_format == "json"

    def test_settings_are_cached(self, fresh_settings):
        assert get_settings() is get_settings()

    def test_api_key_is_secret(self, fresh_settings):
        assert "anon-test-key" not in repr(get_settings())


class TestLedgerDefaults:
    """Tests for resolving LedgerDefaults."""

    def test_from_settings(self, monkeypatch):
        monkeypatch.setenv("LEDGER_DEFAULT_ACCOUNT_ID", "acc-main")
        monkeypatch.setenv("LEDGER_DEFAULT_PAYMENT_METHOD", "Bank Transfer")

        defaults = LedgerDefaults.from_settings(FlatSettings())

        assert defaults == LedgerDefaults(
            purchase_category="expense_purchases",
            sale_category="income_sales",
            payment_method="Bank Transfer",
            account_id="acc-main",
        )

    def test_defaults_are_frozen(self):
        with pytest.raises(AttributeError):
            LedgerDefaults().account_id = "x"


class TestLogging:
    """Tests for configure_logging."""

    def test_json_format_and_quiet_http_loggers(self):
        with patch("logging.basicConfig") as basic_config, patch.object(structlog, "configure") as configure:
            configure_logging(level="DEBUG", log_format="json")

        assert basic_config.call_args.kwargs["level"] == logging.DEBUG
        processors = configure.call_args.kwargs["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_defaults_come_from_settings(self):
        with patch("logging.basicConfig") as basic_config, patch.object(structlog, "configure") as configure:
            configure_logging()

        assert basic_config.call_args.kwargs["level"] == getattr(logging, get_settings().log_level)
        renderer = configure.call_args.kwargs["processors"][-1]
        expected = (
            structlog.processors.JSONRenderer
            if get_settings().log_format == "json"
            else structlog.dev.ConsoleRenderer
        )
        assert isinstance(renderer, expected)
