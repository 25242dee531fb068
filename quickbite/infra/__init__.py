# quickbite/infra/__init__.py
"""
Инфраструктурный слой.
Работа с внешними системами: PostgreSQL, Redis, RabbitMQ, HTTP-сервисы.
"""

from quickbite.infra.database import DatabaseManager, get_db
from quickbite.infra.redis_client import RedisClient, get_redis
from quickbite.infra.event_bus import EventBus, get_event_bus
from quickbite.infra.http_client import BaseClient

__all__ = [
    "DatabaseManager",
    "get_db",
    "RedisClient",
    "get_redis",
    "EventBus",
    "get_event_bus",
    "BaseClient",
]
