# tests/services/payments/test_webhooks.py
"""
Тесты обработки вебхуков и шлюза провайдера.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
import uuid
from decimal import Decimal
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock

import pytest
import stripe

from quickbite.common.exceptions import ConflictError, ProviderOutcomeUnknownError, UpstreamError, ValidationError
from quickbite.services.payments.stripe_gateway import StripeGateway
from quickbite.services.payments.webhooks import WebhookReconciler
from quickbite.shared.models.enums import PaymentStatus, RefundStatus

SECRET = "whsec_test_secret"


def sign(payload: bytes, secret: str = SECRET, timestamp: int | None = None) -> str:
    """Заголовок подписи в формате провайдера: t=<ts>,v1=<hmac>."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode()}".encode()
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def event(event_type: str, obj: dict[str, Any], event_id: str = "evt_1") -> bytes:
    return json.dumps({"id": event_id, "object": "event", "type": event_type, "data": {"object": obj}}).encode()


@pytest.fixture
def gateway() -> StripeGateway:
    return StripeGateway(api_key="sk_test_dummy", webhook_secret=SECRET)


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
def reconciler(gateway, payments, refunds, payouts) -> WebhookReconciler:
    return WebhookReconciler(gateway=gateway, payments=payments, refunds=refunds, payouts=payouts)


class TestSignature:
    """Тесты проверки подписи."""

    @pytest.mark.asyncio
    async def test_missing_signature(self, reconciler, payments) -> None:
        with pytest.raises(ValidationError):
            await reconciler.handle(event("payment_intent.succeeded", {"id": "pi_1"}), None)
        payments.update_payment_status.assert_not_called()

    @pytest.mark.asyncio
    async def test_wrong_secret(self, reconciler, payments) -> None:
        payload = event("payment_intent.succeeded", {"id": "pi_1"})

        with pytest.raises(ValidationError):
            await reconciler.handle(payload, sign(payload, secret="whsec_other"))
        payments.update_payment_status.assert_not_called()

    @pytest.mark.asyncio
    async def test_tampered_body(self, reconciler) -> None:
        payload = event("payment_intent.succeeded", {"id": "pi_1"})
        signature = sign(payload)

        with pytest.raises(ValidationError):
            await reconciler.handle(payload.replace(b"pi_1", b"pi_2"), signature)

    @pytest.mark.asyncio
    async def test_stale_timestamp(self, reconciler) -> None:
        payload = event("payment_intent.succeeded", {"id": "pi_1"})

        with pytest.raises(ValidationError):
            await reconciler.handle(payload, sign(payload, timestamp=int(time.time()) - 3600))

    def test_secret_not_configured(self) -> None:
        gateway = StripeGateway(api_key="sk_test_dummy", webhook_secret="")
        payload = event("payment_intent.succeeded", {"id": "pi_1"})

        with pytest.raises(ValidationError):
            gateway.verify_webhook(payload, sign(payload))


class TestRouting:
    """Тесты маршрутизации событий."""

    @pytest.mark.asyncio
    async def test_intent_succeeded(self, reconciler, payments) -> None:
        payload = event("payment_intent.succeeded", {"id": "pi_1", "metadata": {"payment_id": "p-1"}})

        result = await reconciler.handle(payload, sign(payload))

        assert result == {"received": True, "handled": True}
        payments.update_payment_status.assert_awaited_once_with("pi_1", PaymentStatus.SUCCEEDED, "p-1")

    @pytest.mark.asyncio
    async def test_intent_failed_without_metadata(self, reconciler, payments) -> None:
        payload = event("payment_intent.payment_failed", {"id": "pi_1"})

        await reconciler.handle(payload, sign(payload))

        payments.update_payment_status.assert_awaited_once_with("pi_1", PaymentStatus.FAILED, None)

    @pytest.mark.asyncio
    async def test_checkout_completed_links_intent(self, reconciler, payments) -> None:
        payload = event("checkout.session.completed", {"id": "cs_1", "payment_intent": "pi_1"})

        await reconciler.handle(payload, sign(payload))

        payments.update_payment_status_by_session_id.assert_awaited_once_with(
            "cs_1", PaymentStatus.SUCCEEDED, "pi_1", payment_id=None
        )

    @pytest.mark.asyncio
    async def test_payment_link_session_passes_payment_id(self, reconciler, payments) -> None:
        payment_id = str(uuid.uuid4())
        payload = event("checkout.session.completed", {
            "id": "cs_link",
            "payment_intent": "pi_7",
            "payment_link": "plink_1",
            "metadata": {"payment_id": payment_id},
        })

        await reconciler.handle(payload, sign(payload))

        payments.update_payment_status_by_session_id.assert_awaited_once_with(
            "cs_link", PaymentStatus.SUCCEEDED, "pi_7", payment_id=payment_id
        )

    @pytest.mark.asyncio
    async def test_checkout_expired(self, reconciler, payments) -> None:
        payment_id = str(uuid.uuid4())
        payload = event("checkout.session.expired", {"id": "cs_1", "metadata": {"payment_id": payment_id}})

        await reconciler.handle(payload, sign(payload))

        payments.update_payment_status_by_session_id.assert_awaited_once_with(
            "cs_1", PaymentStatus.CANCELLED, payment_id=payment_id
        )

    @pytest.mark.asyncio
    async def test_expired_link_session_keeps_payment(self, reconciler, payments) -> None:
        payload = event("checkout.session.expired", {
            "id": "cs_link", "payment_link": "plink_1", "metadata": {"payment_id": str(uuid.uuid4())},
        })

        await reconciler.handle(payload, sign(payload))

        payments.update_payment_status_by_session_id.assert_awaited_once_with(
            "cs_link", PaymentStatus.CANCELLED, payment_id=None
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("provider_status,expected", [
        ("succeeded", RefundStatus.SUCCEEDED),
        ("failed", RefundStatus.FAILED),
        ("canceled", RefundStatus.FAILED),
        ("pending", RefundStatus.PROCESSING),
    ])
    async def test_refund_status_mapping(self, reconciler, refunds, provider_status, expected) -> None:
        payload = event("refund.updated", {"id": "re_1", "status": provider_status, "metadata": {"refund_id": "r-1"}})

        await reconciler.handle(payload, sign(payload))

        refunds.update_refund_status.assert_awaited_once_with("re_1", expected, "r-1")

    @pytest.mark.asyncio
    async def test_transfer_created(self, reconciler, payouts) -> None:
        payload = event("transfer.created", {"id": "tr_1", "metadata": {"earning_id": "e-1"}})

        await reconciler.handle(payload, sign(payload))

        payouts.mark_transfer_paid.assert_awaited_once_with("tr_1", {"earning_id": "e-1"})

    @pytest.mark.asyncio
    async def test_transfer_reversed_only_logged(self, reconciler, payouts) -> None:
        payload = event("transfer.reversed", {"id": "tr_1", "reversed": True, "amount_reversed": 1050})

        await reconciler.handle(payload, sign(payload))

        payouts.mark_transfer_paid.assert_not_called()
        payouts.log_transfer.assert_awaited_once_with("transfer.reversed", "tr_1")

    @pytest.mark.asyncio
    async def test_dispute_acknowledged(self, reconciler) -> None:
        payload = event("charge.dispute.created", {"id": "dp_1", "payment_intent": "pi_1", "amount": 1000})

        assert (await reconciler.handle(payload, sign(payload)))["handled"] is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("event_type", ["charge.succeeded", "invoice.paid"])
    async def test_ignored_and_unknown(self, reconciler, payments, event_type) -> None:
        payload = event(event_type, {"id": "x"})

        result = await reconciler.handle(payload, sign(payload))

        assert result == {"received": True, "handled": False}
        payments.update_payment_status.assert_not_called()

    @pytest.mark.asyncio
    async def test_inapplicable_event_acknowledged(self, reconciler, payments) -> None:
        payments.update_payment_status.side_effect = ConflictError("order already has an active payment")
        payload = event("payment_intent.succeeded", {"id": "pi_late"})

        result = await reconciler.handle(payload, sign(payload))

        assert result == {"received": True, "handled": False}

    @pytest.mark.asyncio
    async def test_duplicate_delivery_reaches_handler_twice(self, reconciler, payments) -> None:
        payload = event("payment_intent.succeeded", {"id": "pi_1"})

        await reconciler.handle(payload, sign(payload))
        await reconciler.handle(payload, sign(payload))

        assert payments.update_payment_status.await_count == 2

    def test_custom_handler_registration(self, reconciler) -> None:
        @reconciler.register("payout.paid")
        async def on_payout(obj: dict) -> None:
            return None

        assert "payout.paid" in reconciler.registered_events


class TestGatewayCalls:
    """Тесты перевода ошибок SDK."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        stripe.APIConnectionError("network down"),
        stripe.APIError("internal", http_status=500),
        stripe.IdempotencyError("request in progress", http_status=409),
        stripe.RateLimitError("overloaded", http_status=503),
    ])
    async def test_outcome_unknown_errors(self, gateway, error) -> None:
        def failing(**params):
            raise error

        with pytest.raises(ProviderOutcomeUnknownError) as exc_info:
            await gateway._call("refund.create", failing, amount=100)
        assert exc_info.value.details["operation"] == "refund.create"

    @pytest.mark.asyncio
    async def test_rejection_is_definite(self, gateway) -> None:
        def failing(**params):
            raise stripe.InvalidRequestError("Amount too small", "amount", code="amount_too_small", http_status=400)

        with pytest.raises(UpstreamError) as exc_info:
            await gateway._call("refund.create", failing, amount=1)
        assert not isinstance(exc_info.value, ProviderOutcomeUnknownError)
        assert exc_info.value.details["provider_code"] == "amount_too_small"

    @pytest.mark.asyncio
    async def test_timeout_is_outcome_unknown(self) -> None:
        gateway = StripeGateway(api_key="sk_test_dummy", timeout=0.01)

        def slow(**params):
            time.sleep(0.2)

        with pytest.raises(ProviderOutcomeUnknownError):
            await gateway._call("transfer.create", slow)

    @pytest.mark.asyncio
    async def test_payment_link_carries_metadata_to_intent(self, gateway, monkeypatch) -> None:
        captured: dict[str, Any] = {}

        monkeypatch.setattr(stripe.Product, "create", lambda **params: SimpleNamespace(id="prod_1"))
        monkeypatch.setattr(stripe.Price, "create", lambda **params: SimpleNamespace(id="price_1"))

        def fake_link(**params):
            captured.update(params)
            return SimpleNamespace(id="plink_1", url="https://pay.example/plink_1")

        monkeypatch.setattr(stripe.PaymentLink, "create", fake_link)
        metadata = {"order_id": "o-1", "user_id": "cust-1", "payment_id": "p-1"}

        await gateway.create_payment_link(Decimal("10"), "USD", metadata, "payment-p-1")

        assert captured["payment_intent_data"]["metadata"] == metadata
        assert captured["metadata"] == metadata
        assert captured["restrictions"] == {"completed_sessions": {"limit": 1}}
        assert captured["idempotency_key"] == "payment-p-1-link"
    @pytest.mark.asyncio
    async def test_amount_sent_in_minor_units(self, gateway, monkeypatch) -> None:
        captured: dict[str, Any] = {}

        def fake_create(**params):
            captured.update(params)
            return {"id": "re_1", "status": "pending"}

        monkeypatch.setattr(stripe.Refund, "create", fake_create)

        result = await gateway.create_refund("pi_1", Decimal("10.50"), "USD", {"refund_id": "r-1"}, "refund-r-1")

        assert result["id"] == "re_1"
        assert captured["amount"] == 1050
        assert captured["reason"] == "requested_by_customer"
        assert captured["idempotency_key"] == "refund-r-1"
