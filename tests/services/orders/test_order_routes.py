# tests/services/orders/test_order_routes.py
"""
Тесты HTTP-маршрутов сервиса заказов.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from quickbite.common.exceptions import ConflictError, NotFoundError, UpstreamError
from quickbite.services.orders.dependencies import get_order_service
from quickbite.services.orders.routes import router
from quickbite.shared.models.enums import PaymentEvent
from quickbite.shared.models.order import OrderDTO, OrderStats, OrderStatusHistoryDTO


@pytest.fixture
def service() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def client(service) -> TestClient:
    app = FastAPI()
    app.include_router(router, prefix="/api")
    app.dependency_overrides[get_order_service] = lambda: service
    return TestClient(app)


def _order(order_id: str) -> OrderDTO:
    return OrderDTO(
        id=order_id,
        order_number="ORD12345678ABCD",
        customer_id="cust-1",
        restaurant_id="rest-1",
        subtotal=Decimal("450.00"),
        delivery_fee=Decimal("50.00"),
        total_amount=Decimal("500.00"),
        delivery_address="1 Main St",
        created_at=datetime.now(timezone.utc),
    )


class TestOrderRoutes:
    """Тесты маршрутов заказов."""

    def test_create(self, client, service, order_id) -> None:
        service.create_order.return_value = _order(order_id)

        response = client.post("/api/orders", json={
            "customer_id": "cust-1",
            "restaurant_id": "rest-1",
            "items": [{"menu_item_id": "burger", "quantity": 2}],
            "delivery_address": "1 Main St",
        })

        assert response.status_code == 201
        assert response.json()["id"] == order_id

    def test_create_requires_items(self, client, service) -> None:
        response = client.post("/api/orders", json={
            "customer_id": "cust-1",
            "restaurant_id": "rest-1",
            "items": [],
            "delivery_address": "1 Main St",
        })

        assert response.status_code == 422
        service.create_order.assert_not_called()

    def test_catalog_failure_is_502(self, client, service) -> None:
        service.create_order.side_effect = UpstreamError("catalog down")

        response = client.post("/api/orders", json={
            "customer_id": "cust-1",
            "restaurant_id": "rest-1",
            "items": [{"menu_item_id": "burger", "quantity": 1}],
            "delivery_address": "1 Main St",
        })

        assert response.status_code == 502

    def test_get_missing(self, client, service) -> None:
        service.get_order.side_effect = NotFoundError("Order not found")

        assert client.get(f"/api/orders/{uuid.uuid4()}").status_code == 404

    def test_history(self, client, service, order_id) -> None:
        service.get_order_history.return_value = [
            OrderStatusHistoryDTO(
                id=str(uuid.uuid4()),
                order_id=order_id,
                status="pending",
                notes="Order created",
                created_at=datetime.now(timezone.utc),
            )
        ]

        response = client.get(f"/api/orders/{order_id}/history")

        assert response.status_code == 200
        assert response.json()[0]["notes"] == "Order created"
        service.get_order_history.assert_awaited_once_with(order_id)

    def test_stats_not_shadowed_by_id(self, client, service) -> None:
        service.get_order_stats.return_value = OrderStats(total=0)

        assert client.get("/api/orders/stats").status_code == 200
        service.get_order.assert_not_called()

    def test_accept_conflict(self, client, service, order_id) -> None:
        service.assign_driver.side_effect = ConflictError("already has a driver assigned")

        response = client.post(f"/api/orders/{order_id}/accept", json={"driver_id": "drv-2"})

        assert response.status_code == 409
        assert response.json()["detail"]["error_code"] == "conflict"

    def test_invalid_transition_is_409(self, client, service, order_id) -> None:
        service.update_order_status.side_effect = ConflictError("Invalid order status transition")

        response = client.patch(f"/api/orders/{order_id}/status", json={"status": "delivered"})

        assert response.status_code == 409

    def test_payment_status_update(self, client, service, order_id) -> None:
        service.update_payment_status.return_value = _order(order_id)

        response = client.put(f"/api/orders/{order_id}/payment-status", json={
            "event": "paid", "timestamp": "2026-01-01T12:00:00Z",
        })

        assert response.status_code == 200
        args = service.update_payment_status.call_args.args
        assert args[0] == order_id
        assert args[1] == PaymentEvent.PAID

    def test_refund_status_update(self, client, service, order_id) -> None:
        service.update_refund_status.return_value = _order(order_id)

        response = client.put(f"/api/orders/{order_id}/refund-status", json={
            "event": "refunded", "amount": "100.00", "timestamp": "2026-01-01T12:00:00Z",
        })

        assert response.status_code == 200
        assert service.update_refund_status.call_args.args[2] == Decimal("100.00")

    def test_cancel_without_body(self, client, service, order_id) -> None:
        service.cancel_order.return_value = _order(order_id)

        response = client.patch(f"/api/orders/{order_id}/cancel")

        assert response.status_code == 200
        service.cancel_order.assert_awaited_once_with(order_id, None)
