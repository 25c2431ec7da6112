"""Tests for settings parsing and logging setup."""

from __future__ import annotations

import logging

import pytest
from pydantic import ValidationError

from escrow_marketplace.config import DEV_MAESTER, Settings
from escrow_marketplace.logging_config import get_logger, setup_logging


class TestSettings:
    def test_defaults(self) -> None:
        settings = Settings()
        assert settings.registry_maester_list == [DEV_MAESTER]
        assert settings.registry_authorization_policy == "single"
        assert settings.is_sqlite

    def test_maester_list_is_comma_separated(self) -> None:
        settings = Settings(registry_maesters=" 0xaa , 0xbb,,")
        assert settings.registry_maester_list == ["0xaa", "0xbb"]

    def test_unknown_policy_fails_fast(self) -> None:
        with pytest.raises(ValidationError):
            Settings(registry_authorization_policy="committee")

    def test_environment_overrides(self, monkeypatch) -> None:
        monkeypatch.setenv("APP_ENV", "production")
        monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://u:p@db/escrow")
        settings = Settings()
        assert not settings.is_development
        assert not settings.is_sqlite


class TestLogging:
    def test_setup_sets_root_level(self) -> None:
        setup_logging(log_level="WARNING", json_logs=True)
        assert logging.getLogger().level == logging.WARNING
        setup_logging(log_level="DEBUG", json_logs=False)
        assert logging.getLogger().level == logging.DEBUG

    def test_get_logger_is_bound(self) -> None:
        logger = get_logger("escrow_marketplace.tests")
        logger.info("tests.logger_ready", ok=True)
