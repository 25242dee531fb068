# quickbite/services/payments/stripe_gateway.py
"""
Шлюз к платёжному провайдеру Stripe.

SDK синхронный, поэтому каждый вызов уходит в worker-поток и ограничен
таймаутом. Мутирующие вызовы не повторяются здесь: вместо повторов у каждого
есть idempotency_key, по которому провайдер отдаёт сохранённый результат.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime
from decimal import Decimal
from functools import partial
from typing import Any, Callable

import stripe

from quickbite.common.exceptions import ProviderOutcomeUnknownError, UpstreamError, ValidationError
from quickbite.common.logger import log_error
from quickbite.common.money import to_minor_units

# Все причины возврата у нас сводятся к одной причине провайдера
PROVIDER_REFUND_REASON = "requested_by_customer"

# Ответы, после которых неизвестно, выполнил ли провайдер операцию
_UNKNOWN_OUTCOME_ERRORS = (stripe.APIConnectionError, stripe.APIError, stripe.IdempotencyError)


def is_outcome_unknown(error: stripe.StripeError) -> bool:
    """Таймаут, обрыв связи, 5xx или незавершённый конкурирующий запрос с тем же ключом."""
    if isinstance(error, _UNKNOWN_OUTCOME_ERRORS):
        return True
    status = getattr(error, "http_status", None)
    return status is not None and status >= 500


class StripeGateway:
    """Асинхронная обёртка над stripe SDK."""

    def __init__(
        self,
        api_key: str,
        webhook_secret: str = "",
        timeout: float = 15.0,
        max_network_retries: int = 0,
    ) -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.timeout = timeout
        stripe.api_key = api_key
        stripe.max_network_retries = max_network_retries

    async def _call(self, operation: str, func: Callable[..., Any], **params: Any) -> Any:
        """
        Выполняет вызов SDK в потоке с таймаутом и переводит ошибки в UpstreamError.

        Raises:
            ProviderOutcomeUnknownError: таймаут, обрыв связи или 5xx, исход неизвестен
            UpstreamError: провайдер однозначно отклонил запрос
        """
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(partial(func, **params)),
                timeout=self.timeout,
            )
        except stripe.StripeError as e:
            await log_error(f"Stripe {operation} failed: {e}")
            details = {"provider_code": getattr(e, "code", None), "operation": operation}
            if is_outcome_unknown(e):
                raise ProviderOutcomeUnknownError(
                    f"Payment provider outcome unknown during {operation}", details
                ) from e
            raise UpstreamError(
                f"Payment provider error during {operation}: {getattr(e, 'user_message', None) or e}",
                details,
            ) from e
        except asyncio.TimeoutError as e:
            await log_error(f"Stripe {operation} timed out after {self.timeout}s")
            raise ProviderOutcomeUnknownError(
                f"Payment provider timeout during {operation}", {"operation": operation}
            ) from e

    # =========================================================================
    # ПЛАТЕЖИ
    # =========================================================================

    async def create_payment_intent(
        self,
        amount: Decimal,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> Any:
        return await self._call(
            "payment_intent.create",
            stripe.PaymentIntent.create,
            amount=to_minor_units(amount, currency),
            currency=currency.lower(),
            metadata=metadata,
            automatic_payment_methods={"enabled": True},
            idempotency_key=idempotency_key,
        )

    async def create_checkout_session(
        self,
        amount: Decimal,
        currency: str,
        metadata: dict[str, str],
        success_url: str,
        cancel_url: str,
        expires_at: datetime,
        idempotency_key: str,
        customer_email: str | None = None,
    ) -> Any:
        description = f"Payment for order {metadata.get('order_id', 'N/A')}"
        params: dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [{
                "price_data": {
                    "currency": currency.lower(),
                    "product_data": {"name": "Order Payment", "description": description},
                    "unit_amount": to_minor_units(amount, currency),
                },
                "quantity": 1,
            }],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "expires_at": int(expires_at.timestamp()),
            "metadata": metadata,
            "payment_intent_data": {"metadata": metadata, "description": description},
            "idempotency_key": idempotency_key,
        }
        if customer_email:
            params["customer_email"] = customer_email
        return await self._call("checkout.session.create", stripe.checkout.Session.create, **params)

    async def create_payment_link(
        self,
        amount: Decimal,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str,
        description: str | None = None,
    ) -> Any:
        """
        Товар → цена → платёжная ссылка; у каждого шага свой ключ идемпотентности.

        Метаданные копируются в payment_intent_data: сессии по ссылке создаёт
        провайдер, и связать их с платежом можно только по payment_id.
        """
        description = description or f"Payment for order {metadata.get('order_id', 'N/A')}"
        product = await self._call(
            "product.create",
            stripe.Product.create,
            name="Order Payment",
            description=description,
            metadata=metadata,
            idempotency_key=f"{idempotency_key}-product",
        )
        price = await self._call(
            "price.create",
            stripe.Price.create,
            unit_amount=to_minor_units(amount, currency),
            currency=currency.lower(),
            product=product.id,
            idempotency_key=f"{idempotency_key}-price",
        )
        return await self._call(
            "payment_link.create",
            stripe.PaymentLink.create,
            line_items=[{"price": price.id, "quantity": 1}],
            metadata=metadata,
            payment_intent_data={"metadata": metadata, "description": description},
            # Одна ссылка оплачивает один платёж
            restrictions={"completed_sessions": {"limit": 1}},
            idempotency_key=f"{idempotency_key}-link",
        )

    async def confirm_payment_intent(self, intent_id: str, payment_method_id: str | None = None) -> Any:
        params: dict[str, Any] = {}
        if payment_method_id:
            params["payment_method"] = payment_method_id
        return await self._call("payment_intent.confirm", stripe.PaymentIntent.confirm, intent=intent_id, **params)

    async def cancel_payment_intent(self, intent_id: str) -> Any:
        return await self._call("payment_intent.cancel", stripe.PaymentIntent.cancel, intent=intent_id)

    async def expire_checkout_session(self, session_id: str) -> Any:
        return await self._call("checkout.session.expire", stripe.checkout.Session.expire, session=session_id)

    # =========================================================================
    # ВОЗВРАТЫ И ВЫПЛАТЫ
    # =========================================================================

    async def create_refund(
        self,
        intent_id: str,
        amount: Decimal,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> Any:
        return await self._call(
            "refund.create",
            stripe.Refund.create,
            payment_intent=intent_id,
            amount=to_minor_units(amount, currency),
            reason=PROVIDER_REFUND_REASON,
            metadata=metadata,
            idempotency_key=idempotency_key,
        )

    async def create_transfer(
        self,
        amount: Decimal,
        currency: str,
        destination: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> Any:
        return await self._call(
            "transfer.create",
            stripe.Transfer.create,
            amount=to_minor_units(amount, currency),
            currency=currency.lower(),
            destination=destination,
            metadata=metadata,
            idempotency_key=idempotency_key,
        )

    # =========================================================================
    # ВЕБХУКИ
    # =========================================================================

    def verify_webhook(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        """
        Проверяет подпись вебхука и возвращает событие как dict.

        Raises:
            ValidationError: нет подписи, нет секрета, подпись неверна или тело не JSON
        """
        if not signature:
            raise ValidationError("Missing stripe-signature header")
        if not self.webhook_secret:
            raise ValidationError("Webhook secret is not configured")
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            raise ValidationError("Invalid webhook signature") from e
        except ValueError as e:
            raise ValidationError("Invalid webhook payload") from e
        return json.loads(payload)
