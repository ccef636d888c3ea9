# tests/test_config.py
"""
Tests for Settings validation.
"""

import pytest
from pydantic import ValidationError

from portfolio_engine.config import Settings


class TestDatabaseConfig:
    """Environment-specific database rules."""

    def test_test_environment_defaults_to_sqlite_memory(self):
        settings = Settings(environment="test", database_url=None)

        assert settings.database_url == "sqlite:///:memory:"
        assert settings.is_sqlite
        assert settings.is_test

    def test_production_requires_postgres(self):
        with pytest.raises(ValidationError, match="requires PostgreSQL"):
            Settings(environment="production", database_url="sqlite:///engine.db")

    def test_production_accepts_postgres(self):
        settings = Settings(environment="production", database_url="postgresql://u:p@localhost:5432/engine")
        assert settings.is_production
        assert not settings.is_sqlite

    def test_development_requires_url(self):
        with pytest.raises(ValidationError, match="DATABASE_URL is required"):
            Settings(environment="development", database_url=None)

    def test_development_sqlite_warns(self):
        with pytest.warns(UserWarning, match="SQLite in development"):
            Settings(environment="development", database_url="sqlite:///dev.db")


class TestMarketDataConfig:
    """Provider chain and currency settings."""

    def test_defaults(self):
        settings = Settings(environment="test")

        assert settings.price_providers == ["yahoo", "stooq"]
        assert settings.default_home_currency == "TWD"
        assert settings.price_lookback_days == 10
        assert settings.negative_cache_min_age_days == 7

    def test_providers_normalized(self):
        settings = Settings(environment="test", price_providers=[" Stooq", "YAHOO"])
        assert settings.price_providers == ["stooq", "yahoo"]

    def test_unknown_provider_rejected(self):
        with pytest.raises(ValidationError, match="Unknown price provider"):
            Settings(environment="test", price_providers=["bloomberg"])

    def test_empty_provider_chain_rejected(self):
        with pytest.raises(ValidationError):
            Settings(environment="test", price_providers=[])

    def test_home_currency_upper_cased(self):
        assert Settings(environment="test", default_home_currency="usd").default_home_currency == "USD"
