# quickbite/services/payments/app.py
"""
FastAPI приложение для Payments Service.

Endpoints:
- POST /api/payments/create - PaymentIntent
- POST /api/payments/create-checkout - hosted checkout
- POST /api/payments/create-payment-link - платёжная ссылка
- POST /api/payments/confirm - подтвердить платёж
- POST /api/payments/{intent_id}/cancel - отменить платёж
- PATCH /api/payments/sessions/{session_id}/cancel - закрыть checkout
- GET /api/payments/order/{order_id} - платёж заказа
- GET /api/payments/{payment_id} - платёж
- POST /api/payments/driver-earnings, /settlements (+ /{id}/payout) - выплаты
- POST /api/payments/webhook - вебхук провайдера
- /api/refunds - возвраты
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from quickbite import __version__
from quickbite.common.logger import setup_logging
from quickbite.infra.database import close_db, get_db, init_db
from quickbite.infra.event_bus import close_event_bus, get_event_bus, init_event_bus
from quickbite.services.payments.dependencies import cleanup_dependencies, init_dependencies
from quickbite.services.payments.routes import refunds_router, router
from quickbite.shared.models.common import HealthStatus

SERVICE_NAME = "payments_service"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Жизненный цикл приложения."""
    setup_logging()
    db = await init_db("payments_service.sql")
    event_bus = await init_event_bus(SERVICE_NAME)

    await init_dependencies(db, event_bus)

    yield

    await cleanup_dependencies()
    await close_event_bus()
    await close_db()


app = FastAPI(
    title="Payments Service",
    description="Платежи, возвраты и выплаты QuickBite.",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(router, prefix="/api")
app.include_router(refunds_router, prefix="/api")


@app.get("/health", response_model=HealthStatus, tags=["Health"])
async def health_check() -> HealthStatus:
    """Проверка здоровья сервиса."""
    db_ok = await get_db().health_check()
    bus_ok = await get_event_bus().health_check()
    return HealthStatus(
        service=SERVICE_NAME,
        status="healthy" if db_ok else "unhealthy",
        version=__version__,
        dependencies={
            "postgres": "ok" if db_ok else "down",
            "rabbitmq": "ok" if bus_ok else "down",
        },
    )
