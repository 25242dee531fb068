# quickbite/services/orders/app.py
"""
FastAPI приложение для Orders Service.

Endpoints:
- POST /api/orders - создать заказ
- GET /api/orders/{id} - получить заказ
- GET /api/orders/customer/{customer_id} - заказы клиента
- GET /api/orders/restaurant/{restaurant_id} - заказы ресторана
- GET /api/orders/driver/available - заказы без водителя
- GET /api/orders/stats - статистика по статусам
- GET /api/orders/{id}/history - история статусов
- PATCH /api/orders/{id}/status - сменить статус
- POST /api/orders/{id}/accept - водитель принимает заказ
- PATCH /api/orders/{id}/cancel - отменить заказ
- PUT /api/orders/{id}/payment-status - статус оплаты (от сервиса платежей)
- PUT /api/orders/{id}/refund-status - статус возврата (от сервиса платежей)
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from redis.exceptions import RedisError

from quickbite import __version__
from quickbite.common.logger import log_warning, setup_logging
from quickbite.infra.database import close_db, get_db, init_db
from quickbite.infra.event_bus import close_event_bus, get_event_bus, init_event_bus
from quickbite.infra.redis_client import close_redis, get_redis, init_redis
from quickbite.services.orders.dependencies import cleanup_dependencies, init_dependencies
from quickbite.services.orders.routes import router
from quickbite.shared.models.common import HealthStatus

SERVICE_NAME = "orders_service"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Жизненный цикл приложения."""
    setup_logging()
    db = await init_db("orders_service.sql")
    try:
        redis = await init_redis()
    except (RedisError, OSError) as e:
        await log_warning(f"Redis недоступен, кэш заказов отключён: {e}")
        redis = None
    event_bus = await init_event_bus(SERVICE_NAME)

    await init_dependencies(db, redis, event_bus)

    yield

    await cleanup_dependencies()
    await close_event_bus()
    if redis is not None:
        await close_redis()
    await close_db()


app = FastAPI(
    title="Orders Service",
    description="Учёт заказов QuickBite: статусы, водители, оплата и возвраты.",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(router, prefix="/api")


@app.get("/health", response_model=HealthStatus, tags=["Health"])
async def health_check() -> HealthStatus:
    """Проверка здоровья сервиса."""
    db_ok = await get_db().health_check()
    redis_client = get_redis()
    redis_ok = redis_client.is_connected and await redis_client.health_check()
    bus_ok = await get_event_bus().health_check()
    return HealthStatus(
        service=SERVICE_NAME,
        status="healthy" if db_ok else "unhealthy",
        version=__version__,
        dependencies={
            "postgres": "ok" if db_ok else "down",
            "redis": "ok" if redis_ok else "down",
            "rabbitmq": "ok" if bus_ok else "down",
        },
    )
