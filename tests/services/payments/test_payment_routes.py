# tests/services/payments/test_payment_routes.py
"""
Тесты HTTP-маршрутов сервиса платежей.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from quickbite.common.exceptions import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ProviderOutcomeUnknownError,
    UpstreamError,
    ValidationError,
)
from quickbite.services.payments.dependencies import (
    get_payment_service,
    get_payout_service,
    get_refund_service,
    get_webhook_reconciler,
)
from quickbite.services.payments.routes import refunds_router, router
from quickbite.shared.models.enums import RefundReason
from quickbite.shared.models.payment import PaymentDTO, RefundDTO


@pytest.fixture
def payments() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def refunds() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def payouts() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def reconciler() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def client(payments, refunds, payouts, reconciler) -> TestClient:
    app = FastAPI()
    app.include_router(router, prefix="/api")
    app.include_router(refunds_router, prefix="/api")
    app.dependency_overrides[get_payment_service] = lambda: payments
    app.dependency_overrides[get_refund_service] = lambda: refunds
    app.dependency_overrides[get_payout_service] = lambda: payouts
    app.dependency_overrides[get_webhook_reconciler] = lambda: reconciler
    return TestClient(app)


def _payment(order_id: str) -> PaymentDTO:
    return PaymentDTO(
        id=str(uuid.uuid4()),
        order_id=order_id,
        user_id="cust-1",
        amount=Decimal("10.00"),
        status="succeeded",
        created_at=datetime.now(timezone.utc),
    )


class TestErrorMapping:
    """Тесты перевода доменных ошибок в HTTP-коды."""

    @pytest.mark.parametrize("error,status_code", [
        (ValidationError("bad amount"), 400),
        (NotFoundError("order not found"), 404),
        (ConflictError("active payment exists"), 409),
        (UpstreamError("provider down"), 502),
    ])
    def test_create_payment(self, client, payments, order_id, error, status_code) -> None:
        payments.create_payment.side_effect = error

        response = client.post("/api/payments/create", json={
            "order_id": order_id, "user_id": "cust-1", "amount": "10.00",
        })

        assert response.status_code == status_code
        assert response.json()["detail"]["message"] == error.message

    def test_refund_over_budget_is_conflict(self, client, refunds, order_id) -> None:
        refunds.create_refund.side_effect = InvalidStateError("Refund amount exceeds the remaining refundable amount")

        response = client.post("/api/refunds/", json={
            "order_id": order_id, "amount": "5.00", "requested_by": "support-1",
        })

        assert response.status_code == 409
        assert response.json()["detail"]["error_code"] == "invalid_state"

    def test_second_payout_is_conflict(self, client, payouts) -> None:
        payouts.process_driver_payout.side_effect = ConflictError("Payout already processed")

        response = client.post(
            f"/api/payments/driver-earnings/{uuid.uuid4()}/payout",
            json={"destination_account": "acct_1"},
        )

        assert response.status_code == 409


class TestPaymentRoutes:
    def test_get_by_order(self, client, payments, order_id) -> None:
        payments.get_payment_by_order.return_value = _payment(order_id)

        response = client.get(f"/api/payments/order/{order_id}")

        assert response.status_code == 200
        assert response.json()["order_id"] == order_id
        payments.get_payment_by_order.assert_awaited_once_with(order_id)

    def test_get_by_id_after_static_paths(self, client, payments, order_id) -> None:
        payment = _payment(order_id)
        payments.get_payment.return_value = payment

        response = client.get(f"/api/payments/{payment.id}")

        assert response.status_code == 200
        payments.get_payment.assert_awaited_once_with(payment.id)


class TestWebhookRoute:
    """Тесты маршрута вебхука."""

    def test_raw_body_and_signature_passed(self, client, reconciler) -> None:
        reconciler.handle.return_value = {"received": True, "handled": True}
        body = b'{"id": "evt_1", "type": "payment_intent.succeeded"}'

        response = client.post(
            "/api/payments/webhook",
            content=body,
            headers={"stripe-signature": "t=1,v1=abc", "content-type": "application/json"},
        )

        assert response.status_code == 200
        assert response.json() == {"received": True, "handled": True}
        reconciler.handle.assert_awaited_once_with(body, "t=1,v1=abc")

    def test_bad_signature_is_400(self, client, reconciler) -> None:
        reconciler.handle.side_effect = ValidationError("Invalid webhook signature")

        response = client.post("/api/payments/webhook", content=b"{}")

        assert response.status_code == 400
        reconciler.handle.assert_awaited_once_with(b"{}", None)


class TestRefundRoutes:
    def test_auto_refund_nothing_to_refund(self, client, refunds, order_id) -> None:
        refunds.process_automatic_refund.return_value = None

        response = client.post("/api/refunds/auto", json={"order_id": order_id})

        assert response.status_code == 200
        assert response.json() is None
        refunds.process_automatic_refund.assert_awaited_once_with(order_id, RefundReason.RESTAURANT_CANCELLED)

    def test_stats_route_not_shadowed(self, client, refunds) -> None:
        refunds.get_refund_stats.return_value = {
            "total_refunds": 0, "successful_refunds": 0, "total_refund_amount": "0", "refund_rate": "0",
        }

        response = client.get("/api/refunds/stats")

        assert response.status_code == 200
        refunds.get_refund.assert_not_called()

    def test_get_refund(self, client, refunds, order_id) -> None:
        refund = RefundDTO(
            id=str(uuid.uuid4()),
            payment_id=str(uuid.uuid4()),
            order_id=order_id,
            amount=Decimal("6.00"),
            reason=RefundReason.FOOD_QUALITY,
            requested_by="support-1",
            requested_at=datetime.now(timezone.utc),
        )
        refunds.get_refund.return_value = refund

        response = client.get(f"/api/refunds/{refund.id}")

        assert response.status_code == 200
        assert response.json()["status"] == "pending"

    def test_retry_refund(self, client, refunds, order_id) -> None:
        refund = RefundDTO(
            id=str(uuid.uuid4()),
            payment_id=str(uuid.uuid4()),
            order_id=order_id,
            amount=Decimal("6.00"),
            reason=RefundReason.FOOD_QUALITY,
            status="processing",
            requested_by="support-1",
            provider_refund_id="re_1",
            requested_at=datetime.now(timezone.utc),
        )
        refunds.retry_refund.return_value = refund

        response = client.post(f"/api/refunds/{refund.id}/retry")

        assert response.status_code == 200
        assert response.json()["provider_refund_id"] == "re_1"
        refunds.retry_refund.assert_awaited_once_with(refund.id)

    def test_unknown_outcome_is_502_with_refund_id(self, client, refunds, order_id) -> None:
        refunds.create_refund.side_effect = ProviderOutcomeUnknownError(
            "Payment provider timeout during refund.create", {"refund_id": "r-1"}
        )

        response = client.post("/api/refunds/", json={
            "order_id": order_id, "amount": "5.00", "reason": "food_quality", "requested_by": "support-1",
        })

        assert response.status_code == 502
        detail = response.json()["detail"]
        assert detail["error_code"] == "provider_outcome_unknown"
        assert detail["details"]["refund_id"] == "r-1"
