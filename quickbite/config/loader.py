# quickbite/config/loader.py
"""
Загрузчик конфигурации проекта.
Единственный источник истины — config/config.json.
Секретные данные и адреса сервисов переопределяются из переменных окружения.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


# =============================================================================
# ОПРЕДЕЛЕНИЕ ПУТЕЙ
# =============================================================================

def get_project_root() -> Path:
    """Возвращает корневую директорию проекта."""
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    """Возвращает путь к файлу конфигурации."""
    return get_project_root() / "config" / "config.json"


def load_config_json() -> dict[str, Any]:
    """Загружает config.json и возвращает словарь."""
    config_path = get_config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Файл конфигурации не найден: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        return json.load(f)


# =============================================================================
# PYDANTIC МОДЕЛИ КОНФИГУРАЦИИ
# =============================================================================

class SystemSettings(BaseModel):
    """Системные настройки."""
    PROJECT_NAME: str = "quickbite"
    VERSION: str = "1.0.0"
    DEBUG: bool = True
    LOG_LEVEL: str = "DEBUG"
    ENVIRONMENT: str = "development"
    COMPONENT_MODE: str = "all"


class DeploymentSettings(BaseModel):
    """Настройки развертывания микросервисов."""
    ORDERS_SERVICE_HOST: str = "0.0.0.0"
    ORDERS_SERVICE_PORT: int = 3002
    PAYMENTS_SERVICE_HOST: str = "0.0.0.0"
    PAYMENTS_SERVICE_PORT: int = 3004


class ServiceUrlsSettings(BaseModel):
    """Базовые URL внешних сервисов-коллабораторов."""
    ORDER_SERVICE_URL: str = "http://localhost:3002"
    PAYMENT_SERVICE_URL: str = "http://localhost:3004"
    RESTAURANT_SERVICE_URL: str = "http://localhost:3003"
    USER_SERVICE_URL: str = "http://localhost:3001"
    NOTIFICATION_SERVICE_URL: str = "http://localhost:3006"


class HttpClientSettings(BaseModel):
    """Таймауты и политика повторов для исходящих HTTP-вызовов."""
    HTTP_TIMEOUT: float = 5.0
    HTTP_CONNECT_TIMEOUT: float = 2.0
    HTTP_RETRY_ATTEMPTS: int = 3
    HTTP_RETRY_DELAY: float = 0.2


class LoggingSettings(BaseModel):
    """Настройки логирования."""
    LOG_LEVEL: str = "DEBUG"
    LOG_TO_FILE: bool = True
    LOG_FILE_PATH: str = "logs/app.log"
    LOG_FORMAT: str = "colored"
    LOG_MAX_BYTES: int = 10485760
    LOG_BACKUP_COUNT: int = 5


class DatabaseSettings(BaseModel):
    """Настройки PostgreSQL."""
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "quickbite"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_MIN_POOL_SIZE: int = 5
    DB_MAX_POOL_SIZE: int = 20
    DB_COMMAND_TIMEOUT: int = 60
    DB_RETRY_ATTEMPTS: int = 3
    DB_RETRY_DELAY: float = 1.0

    @field_validator("DB_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("DB_PASSWORD", "")
        return v

    @property
    def dsn(self) -> str:
        """Возвращает DSN для подключения к PostgreSQL."""
        return (
            f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )


class RedisSettings(BaseModel):
    """Настройки Redis."""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""
    REDIS_NAMESPACE: str = "quickbite"
    REDIS_MAX_CONNECTIONS: int = 50

    @field_validator("REDIS_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("REDIS_PASSWORD", "")
        return v

    @property
    def url(self) -> str:
        """Возвращает URL для подключения к Redis."""
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"


class RedisTTLSettings(BaseModel):
    """Настройки TTL кэша."""
    ORDER_TTL: int = 300


class RabbitMQSettings(BaseModel):
    """Настройки RabbitMQ."""
    RABBITMQ_HOST: str = "localhost"
    RABBITMQ_PORT: int = 5672
    RABBITMQ_USER: str = "guest"
    RABBITMQ_PASSWORD: str = "guest"
    RABBITMQ_VHOST: str = "/"
    RABBITMQ_EXCHANGE: str = "quickbite.events"
    RABBITMQ_PREFETCH_COUNT: int = 10

    @field_validator("RABBITMQ_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        env_pass = os.getenv("RABBITMQ_PASSWORD", "")
        if env_pass:
            return env_pass
        return v

    @property
    def url(self) -> str:
        """Возвращает URL для подключения к RabbitMQ."""
        return (
            f"amqp://{self.RABBITMQ_USER}:{self.RABBITMQ_PASSWORD}"
            f"@{self.RABBITMQ_HOST}:{self.RABBITMQ_PORT}{self.RABBITMQ_VHOST}"
        )


class StripeSettings(BaseModel):
    """Настройки платёжного провайдера Stripe."""
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_TIMEOUT: float = 15.0
    STRIPE_MAX_NETWORK_RETRIES: int = 0
    CHECKOUT_EXPIRES_MINUTES: int = 30
    CHECKOUT_SUCCESS_URL: str = "http://localhost:3004/success?session_id={CHECKOUT_SESSION_ID}"
    CHECKOUT_CANCEL_URL: str = "http://localhost:3004/cancel"

    @field_validator("STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET", mode="before")
    @classmethod
    def get_from_env(cls, v: str, info) -> str:
        """Получает секреты Stripe из переменных окружения, если не заданы."""
        if not v:
            return os.getenv(info.field_name, "")
        return v


class PaymentSettings(BaseModel):
    """Бизнес-настройки платежей и заказов."""
    DEFAULT_CURRENCY: str = "USD"
    SUPPORTED_CURRENCIES: list[str] = Field(default_factory=lambda: ["USD", "EUR", "GBP", "JPY"])
    DRIVER_ETA_MINUTES: int = 15


# =============================================================================
# ГЛАВНЫЙ КЛАСС НАСТРОЕК
# =============================================================================

class Settings(BaseSettings):
    """
    Главный класс настроек приложения.
    Агрегирует все секции конфигурации.
    """
    system: SystemSettings = Field(default_factory=SystemSettings)
    deployment: DeploymentSettings = Field(default_factory=DeploymentSettings)
    services: ServiceUrlsSettings = Field(default_factory=ServiceUrlsSettings)
    http: HttpClientSettings = Field(default_factory=HttpClientSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    redis_ttl: RedisTTLSettings = Field(default_factory=RedisTTLSettings)
    rabbitmq: RabbitMQSettings = Field(default_factory=RabbitMQSettings)
    stripe: StripeSettings = Field(default_factory=StripeSettings)
    payments: PaymentSettings = Field(default_factory=PaymentSettings)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @classmethod
    def from_config_json(cls) -> "Settings":
        """
        Создаёт объект Settings из config.json.
        Секреты и адреса переопределяются из переменных окружения.
        """
        config_data = load_config_json()

        # Фильтруем комментарии (ключи, начинающиеся с _comment_)
        filtered_data = {k: v for k, v in config_data.items() if not k.startswith("_comment_")}

        return cls(
            system=SystemSettings(
                PROJECT_NAME=filtered_data.get("PROJECT_NAME", "quickbite"),
                VERSION=filtered_data.get("VERSION", "1.0.0"),
                DEBUG=filtered_data.get("DEBUG", True),
                LOG_LEVEL=filtered_data.get("LOG_LEVEL", "DEBUG"),
                ENVIRONMENT=os.getenv("ENVIRONMENT", filtered_data.get("ENVIRONMENT", "development")),
                COMPONENT_MODE=os.getenv("COMPONENT_MODE", filtered_data.get("COMPONENT_MODE", "all")),
            ),
            deployment=DeploymentSettings(
                ORDERS_SERVICE_HOST=os.getenv("ORDERS_SERVICE_HOST", filtered_data.get("ORDERS_SERVICE_HOST", "0.0.0.0")),
                ORDERS_SERVICE_PORT=int(os.getenv("ORDERS_SERVICE_PORT", filtered_data.get("ORDERS_SERVICE_PORT", 3002))),
                PAYMENTS_SERVICE_HOST=os.getenv("PAYMENTS_SERVICE_HOST", filtered_data.get("PAYMENTS_SERVICE_HOST", "0.0.0.0")),
                PAYMENTS_SERVICE_PORT=int(os.getenv("PAYMENTS_SERVICE_PORT", filtered_data.get("PAYMENTS_SERVICE_PORT", 3004))),
            ),
            services=ServiceUrlsSettings(
                ORDER_SERVICE_URL=os.getenv("ORDER_SERVICE_URL", filtered_data.get("ORDER_SERVICE_URL", "http://localhost:3002")),
                PAYMENT_SERVICE_URL=os.getenv("PAYMENT_SERVICE_URL", filtered_data.get("PAYMENT_SERVICE_URL", "http://localhost:3004")),
                RESTAURANT_SERVICE_URL=os.getenv("RESTAURANT_SERVICE_URL", filtered_data.get("RESTAURANT_SERVICE_URL", "http://localhost:3003")),
                USER_SERVICE_URL=os.getenv("USER_SERVICE_URL", filtered_data.get("USER_SERVICE_URL", "http://localhost:3001")),
                NOTIFICATION_SERVICE_URL=os.getenv("NOTIFICATION_SERVICE_URL", filtered_data.get("NOTIFICATION_SERVICE_URL", "http://localhost:3006")),
            ),
            http=HttpClientSettings(
                HTTP_TIMEOUT=filtered_data.get("HTTP_TIMEOUT", 5.0),
                HTTP_CONNECT_TIMEOUT=filtered_data.get("HTTP_CONNECT_TIMEOUT", 2.0),
                HTTP_RETRY_ATTEMPTS=filtered_data.get("HTTP_RETRY_ATTEMPTS", 3),
                HTTP_RETRY_DELAY=filtered_data.get("HTTP_RETRY_DELAY", 0.2),
            ),
            logging=LoggingSettings(
                LOG_LEVEL=filtered_data.get("LOG_LEVEL", "DEBUG"),
                LOG_TO_FILE=filtered_data.get("LOG_TO_FILE", True),
                LOG_FILE_PATH=filtered_data.get("LOG_FILE_PATH", "logs/app.log"),
                LOG_FORMAT=filtered_data.get("LOG_FORMAT", "json"),
                LOG_MAX_BYTES=filtered_data.get("LOG_MAX_BYTES", 10485760),
                LOG_BACKUP_COUNT=filtered_data.get("LOG_BACKUP_COUNT", 5),
            ),
            database=DatabaseSettings(
                DB_HOST=os.getenv("DB_HOST", filtered_data.get("DB_HOST", "localhost")),
                DB_PORT=int(os.getenv("DB_PORT", filtered_data.get("DB_PORT", 5432))),
                DB_NAME=os.getenv("DB_NAME", filtered_data.get("DB_NAME", "quickbite")),
                DB_USER=os.getenv("DB_USER", filtered_data.get("DB_USER", "postgres")),
                DB_PASSWORD=os.getenv("DB_PASSWORD", filtered_data.get("DB_PASSWORD", "")),
                DB_MIN_POOL_SIZE=filtered_data.get("DB_MIN_POOL_SIZE", 5),
                DB_MAX_POOL_SIZE=filtered_data.get("DB_MAX_POOL_SIZE", 20),
                DB_COMMAND_TIMEOUT=filtered_data.get("DB_COMMAND_TIMEOUT", 60),
                DB_RETRY_ATTEMPTS=filtered_data.get("DB_RETRY_ATTEMPTS", 3),
                DB_RETRY_DELAY=filtered_data.get("DB_RETRY_DELAY", 1.0),
            ),
            redis=RedisSettings(
                REDIS_HOST=os.getenv("REDIS_HOST", filtered_data.get("REDIS_HOST", "localhost")),
                REDIS_PORT=int(os.getenv("REDIS_PORT", filtered_data.get("REDIS_PORT", 6379))),
                REDIS_DB=filtered_data.get("REDIS_DB", 0),
                REDIS_PASSWORD=os.getenv("REDIS_PASSWORD", filtered_data.get("REDIS_PASSWORD", "")),
                REDIS_NAMESPACE=filtered_data.get("REDIS_NAMESPACE", "quickbite"),
                REDIS_MAX_CONNECTIONS=filtered_data.get("REDIS_MAX_CONNECTIONS", 50),
            ),
            redis_ttl=RedisTTLSettings(
                ORDER_TTL=filtered_data.get("ORDER_TTL", 300),
            ),
            rabbitmq=RabbitMQSettings(
                RABBITMQ_HOST=os.getenv("RABBITMQ_HOST", filtered_data.get("RABBITMQ_HOST", "localhost")),
                RABBITMQ_PORT=int(os.getenv("RABBITMQ_PORT", filtered_data.get("RABBITMQ_PORT", 5672))),
                RABBITMQ_USER=os.getenv("RABBITMQ_USER", filtered_data.get("RABBITMQ_USER", "guest")),
                RABBITMQ_PASSWORD=os.getenv("RABBITMQ_PASSWORD", filtered_data.get("RABBITMQ_PASSWORD", "guest")),
                RABBITMQ_VHOST=filtered_data.get("RABBITMQ_VHOST", "/"),
                RABBITMQ_EXCHANGE=filtered_data.get("RABBITMQ_EXCHANGE", "quickbite.events"),
                RABBITMQ_PREFETCH_COUNT=filtered_data.get("RABBITMQ_PREFETCH_COUNT", 10),
            ),
            stripe=StripeSettings(
                STRIPE_SECRET_KEY=os.getenv("STRIPE_SECRET_KEY", filtered_data.get("STRIPE_SECRET_KEY", "")),
                STRIPE_WEBHOOK_SECRET=os.getenv("STRIPE_WEBHOOK_SECRET", filtered_data.get("STRIPE_WEBHOOK_SECRET", "")),
                STRIPE_TIMEOUT=filtered_data.get("STRIPE_TIMEOUT", 15.0),
                STRIPE_MAX_NETWORK_RETRIES=filtered_data.get("STRIPE_MAX_NETWORK_RETRIES", 0),
                CHECKOUT_EXPIRES_MINUTES=filtered_data.get("CHECKOUT_EXPIRES_MINUTES", 30),
                CHECKOUT_SUCCESS_URL=filtered_data.get(
                    "CHECKOUT_SUCCESS_URL",
                    "http://localhost:3004/success?session_id={CHECKOUT_SESSION_ID}",
                ),
                CHECKOUT_CANCEL_URL=filtered_data.get("CHECKOUT_CANCEL_URL", "http://localhost:3004/cancel"),
            ),
            payments=PaymentSettings(
                DEFAULT_CURRENCY=filtered_data.get("DEFAULT_CURRENCY", "USD"),
                SUPPORTED_CURRENCIES=filtered_data.get("SUPPORTED_CURRENCIES", ["USD", "EUR", "GBP", "JPY"]),
                DRIVER_ETA_MINUTES=filtered_data.get("DRIVER_ETA_MINUTES", 15),
            ),
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Возвращает синглтон настроек приложения.
    Использует кэширование для производительности.
    """
    from dotenv import load_dotenv

    # Загружаем .env файл
    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_config_json()


# Экспорт синглтона для удобного импорта
settings = get_settings()
