# quickbite/services/orders/dependencies.py
"""
Dependency Injection для Orders Service.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from quickbite.infra.database import DatabaseManager
    from quickbite.infra.event_bus import EventBus
    from quickbite.infra.redis_client import RedisClient
    from quickbite.services.orders.clients import (
        CatalogClient,
        PaymentsClient,
        RestaurantClient,
        UsersClient,
    )
    from quickbite.services.orders.service import OrderService


# Синглтоны для инфраструктуры
_db: "DatabaseManager | None" = None
_redis: "RedisClient | None" = None
_event_bus: "EventBus | None" = None

# HTTP-клиенты коллабораторов
_catalog: "CatalogClient | None" = None
_users: "UsersClient | None" = None
_restaurants: "RestaurantClient | None" = None
_payments: "PaymentsClient | None" = None

_order_service: "OrderService | None" = None


async def init_dependencies(
    db: "DatabaseManager",
    redis: "RedisClient | None",
    event_bus: "EventBus",
) -> None:
    """Инициализировать зависимости при старте приложения."""
    from quickbite.config import settings
    from quickbite.services.orders.clients import (
        CatalogClient,
        PaymentsClient,
        RestaurantClient,
        UsersClient,
    )

    global _db, _redis, _event_bus, _catalog, _users, _restaurants, _payments
    _db = db
    _redis = redis
    _event_bus = event_bus
    _catalog = CatalogClient(settings.services.RESTAURANT_SERVICE_URL)
    _users = UsersClient(settings.services.USER_SERVICE_URL)
    _restaurants = RestaurantClient(settings.services.RESTAURANT_SERVICE_URL)
    _payments = PaymentsClient(settings.services.PAYMENT_SERVICE_URL)


def get_db() -> "DatabaseManager":
    """Получить менеджер базы данных."""
    if _db is None:
        raise RuntimeError("База данных не инициализирована. Вызовите init_dependencies()")
    return _db


def get_event_bus() -> "EventBus":
    """Получить шину событий."""
    if _event_bus is None:
        raise RuntimeError("EventBus не инициализирован. Вызовите init_dependencies()")
    return _event_bus


def get_order_service() -> "OrderService":
    """Получить сервис заказов."""
    global _order_service

    if _order_service is None:
        from quickbite.config import settings
        from quickbite.services.orders.repository import OrderRepository
        from quickbite.services.orders.service import OrderService

        if _catalog is None or _users is None or _restaurants is None or _payments is None:
            raise RuntimeError("HTTP-клиенты не инициализированы. Вызовите init_dependencies()")

        _order_service = OrderService(
            repository=OrderRepository(get_db()),
            event_bus=get_event_bus(),
            catalog=_catalog,
            users=_users,
            restaurants=_restaurants,
            payments=_payments,
            redis=_redis,
            cache_ttl=settings.redis_ttl.ORDER_TTL,
            driver_eta_minutes=settings.payments.DRIVER_ETA_MINUTES,
        )

    return _order_service


async def cleanup_dependencies() -> None:
    """Очистить ресурсы при остановке приложения."""
    global _order_service, _catalog, _users, _restaurants, _payments
    for client in (_catalog, _users, _restaurants, _payments):
        if client is not None:
            await client.close()
    _order_service = None
    _catalog = _users = _restaurants = _payments = None
