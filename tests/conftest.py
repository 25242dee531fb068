# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import os
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("REDIS_PASSWORD", "")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")


# =============================================================================
# ФИКСТУРЫ ИНФРАСТРУКТУРЫ (МОКИ)
# =============================================================================

@pytest.fixture
def mock_db() -> AsyncMock:
    """Мок менеджера базы данных."""
    db = AsyncMock()
    db.fetchrow = AsyncMock(return_value=None)
    db.fetch = AsyncMock(return_value=[])
    db.execute = AsyncMock(return_value="INSERT 0 1")
    db.fetchval = AsyncMock(return_value=None)
    return db


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Мок клиента Redis."""
    redis = AsyncMock()
    redis.get_model = AsyncMock(return_value=None)
    redis.set_model = AsyncMock(return_value=True)
    redis.delete = AsyncMock(return_value=1)
    return redis


@pytest.fixture
def mock_event_bus() -> AsyncMock:
    """Мок шины событий."""
    event_bus = AsyncMock()
    event_bus.publish = AsyncMock(return_value=True)
    event_bus.is_connected = True
    return event_bus


# =============================================================================
# ФИКСТУРЫ МОДЕЛЕЙ
# =============================================================================

@pytest.fixture
def order_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture
def order_row(order_id: str) -> dict[str, Any]:
    """Строка заказа как её возвращает asyncpg."""
    now = datetime.now(timezone.utc)
    return {
        "id": uuid.UUID(order_id),
        "order_number": "ORD12345678ABCD",
        "customer_id": "cust-1",
        "restaurant_id": "rest-1",
        "driver_id": None,
        "status": "pending",
        "subtotal": Decimal("450.00"),
        "delivery_fee": Decimal("50.00"),
        "total_amount": Decimal("500.00"),
        "refund_amount": Decimal("0.00"),
        "payment_status": "pending",
        "delivery_address": "1 Main St",
        "estimated_delivery_time": None,
        "actual_delivery_time": None,
        "notes": None,
        "created_at": now,
        "updated_at": now,
    }


@pytest.fixture
def payment_row(order_id: str) -> dict[str, Any]:
    """Строка платежа: 10.00 USD, успешно оплачен."""
    now = datetime.now(timezone.utc)
    return {
        "id": uuid.uuid4(),
        "order_id": uuid.UUID(order_id),
        "user_id": "cust-1",
        "restaurant_id": "rest-1",
        "provider_intent_id": "pi_1",
        "checkout_session_id": None,
        "amount": Decimal("10.00"),
        "currency": "USD",
        "method": "card",
        "status": "succeeded",
        "fees": Decimal("0.00"),
        "metadata": {},
        "created_at": now,
        "updated_at": now,
    }
