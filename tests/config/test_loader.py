# tests/config/test_loader.py
"""
Тесты загрузчика конфигурации.
"""

from __future__ import annotations

from unittest.mock import patch

from quickbite.config.loader import Settings, get_config_path, load_config_json


class TestConfigFile:
    """Тесты файла config.json."""

    def test_config_exists(self) -> None:
        assert get_config_path().exists()

    def test_comments_present(self) -> None:
        data = load_config_json()
        assert any(key.startswith("_comment_") for key in data)


class TestSettings:
    """Тесты сборки Settings."""

    def test_sections_built(self) -> None:
        settings = Settings.from_config_json()

        assert settings.deployment.ORDERS_SERVICE_PORT == 3002
        assert settings.deployment.PAYMENTS_SERVICE_PORT == 3004
        assert settings.redis_ttl.ORDER_TTL > 0
        assert settings.stripe.STRIPE_MAX_NETWORK_RETRIES == 0
        assert settings.stripe.CHECKOUT_EXPIRES_MINUTES == 30
        assert "USD" in settings.payments.SUPPORTED_CURRENCIES

    def test_env_overrides_secrets_and_urls(self) -> None:
        env = {
            "STRIPE_WEBHOOK_SECRET": "whsec_from_env",
            "ORDER_SERVICE_URL": "http://orders:3002",
        }
        with patch.dict("os.environ", env):
            settings = Settings.from_config_json()

        assert settings.stripe.STRIPE_WEBHOOK_SECRET == "whsec_from_env"
        assert settings.services.ORDER_SERVICE_URL == "http://orders:3002"

    def test_database_dsn(self) -> None:
        settings = Settings.from_config_json()
        dsn = settings.database.dsn

        assert dsn.startswith("postgresql://")
        assert settings.database.DB_NAME in dsn
