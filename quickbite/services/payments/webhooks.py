# quickbite/services/payments/webhooks.py
"""
Сверка состояния по вебхукам провайдера.

Подпись проверяется до любых изменений. Повторная доставка события
безопасна: все обработчики сводятся к условным переходам статусов.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Awaitable, Callable

from quickbite.common.exceptions import ConflictError
from quickbite.common.logger import log_debug, log_info, log_warning, set_correlation_id
from quickbite.services.payments.refund_service import PROVIDER_REFUND_STATUS_MAP
from quickbite.shared.models.enums import PaymentStatus

if TYPE_CHECKING:
    from quickbite.services.payments.payout_service import PayoutService
    from quickbite.services.payments.refund_service import RefundService
    from quickbite.services.payments.service import PaymentService
    from quickbite.services.payments.stripe_gateway import StripeGateway


WebhookHandler = Callable[[dict[str, Any]], Awaitable[None]]

# Подтверждаем, но не обрабатываем
IGNORED_EVENTS = frozenset({
    "payment_intent.created",
    "charge.succeeded",
    "charge.updated",
})


class WebhookReconciler:
    """Маршрутизация событий провайдера по типу."""

    def __init__(
        self,
        gateway: "StripeGateway",
        payments: "PaymentService",
        refunds: "RefundService",
        payouts: "PayoutService",
    ) -> None:
        self.gateway = gateway
        self.payments = payments
        self.refunds = refunds
        self.payouts = payouts
        self._handlers: dict[str, WebhookHandler] = {}

        self.register("checkout.session.completed")(self._on_checkout_completed)
        self.register("checkout.session.expired")(self._on_checkout_expired)
        self.register("payment_intent.succeeded")(self._on_intent_succeeded)
        self.register("payment_intent.payment_failed")(self._on_intent_failed)
        self.register("payment_intent.canceled")(self._on_intent_canceled)
        for event_type in ("refund.created", "refund.updated"):
            self.register(event_type)(self._on_refund)
        for event_type in ("transfer.created", "transfer.updated", "transfer.reversed"):
            self.register(event_type)(self._on_transfer)
        self.register("charge.dispute.created")(self._on_dispute)

    def register(self, event_type: str) -> Callable[[WebhookHandler], WebhookHandler]:
        """Декоратор регистрации обработчика для типа события."""
        def decorator(handler: WebhookHandler) -> WebhookHandler:
            self._handlers[event_type] = handler
            return handler
        return decorator

    @property
    def registered_events(self) -> list[str]:
        return sorted(self._handlers)

    async def handle(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        """
        Проверить подпись и обработать событие.

        Raises:
            ValidationError: подпись или тело некорректны (ответ 400)
        """
        event = self.gateway.verify_webhook(payload, signature)
        event_type = event.get("type", "unknown")
        event_id = event.get("id")
        set_correlation_id(event_id)

        if event_type in IGNORED_EVENTS:
            await log_debug(f"Вебхук {event_type} ({event_id}) пропущен")
            return {"received": True, "handled": False}

        handler = self._handlers.get(event_type)
        if handler is None:
            await log_info(f"Вебхук {event_type} ({event_id}) без обработчика")
            return {"received": True, "handled": False}

        try:
            await handler(event.get("data", {}).get("object", {}))
        except ConflictError as e:
            # Событие неприменимо к текущему состоянию; повтор не поможет
            await log_warning(f"Вебхук {event_type} ({event_id}) неприменим: {e.message}")
            return {"received": True, "handled": False}

        await log_info(f"Вебхук {event_type} ({event_id}) обработан")
        return {"received": True, "handled": True}

    # =========================================================================
    # ПЛАТЕЖИ
    # =========================================================================

    async def _on_checkout_completed(self, session: dict[str, Any]) -> None:
        metadata = session.get("metadata") or {}
        await self.payments.update_payment_status_by_session_id(
            session["id"],
            PaymentStatus.SUCCEEDED,
            session.get("payment_intent"),
            payment_id=metadata.get("payment_id"),
        )

    async def _on_checkout_expired(self, session: dict[str, Any]) -> None:
        # Истёкшая сессия платёжной ссылки не отменяет платёж: по ссылке можно открыть новую
        payment_id = None
        if not session.get("payment_link"):
            payment_id = (session.get("metadata") or {}).get("payment_id")
        await self.payments.update_payment_status_by_session_id(
            session["id"], PaymentStatus.CANCELLED, payment_id=payment_id
        )

    async def _on_intent_succeeded(self, intent: dict[str, Any]) -> None:
        await self._update_intent(intent, PaymentStatus.SUCCEEDED)

    async def _on_intent_failed(self, intent: dict[str, Any]) -> None:
        await self._update_intent(intent, PaymentStatus.FAILED)

    async def _on_intent_canceled(self, intent: dict[str, Any]) -> None:
        await self._update_intent(intent, PaymentStatus.CANCELLED)

    async def _update_intent(self, intent: dict[str, Any], status: PaymentStatus) -> None:
        metadata = intent.get("metadata") or {}
        await self.payments.update_payment_status(intent["id"], status, metadata.get("payment_id"))

    # =========================================================================
    # ВОЗВРАТЫ, ВЫПЛАТЫ, СПОРЫ
    # =========================================================================

    async def _on_refund(self, refund: dict[str, Any]) -> None:
        status = PROVIDER_REFUND_STATUS_MAP.get(refund.get("status", ""))
        if status is None:
            await log_debug(f"Возврат {refund.get('id')}: статус {refund.get('status')} не отслеживается")
            return
        metadata = refund.get("metadata") or {}
        await self.refunds.update_refund_status(refund["id"], status, metadata.get("refund_id"))

    async def _on_transfer(self, transfer: dict[str, Any]) -> None:
        metadata = transfer.get("metadata") or {}
        if transfer.get("reversed") or transfer.get("amount_reversed"):
            await self.payouts.log_transfer("transfer.reversed", transfer["id"])
            return
        await self.payouts.mark_transfer_paid(transfer["id"], metadata)

    async def _on_dispute(self, dispute: dict[str, Any]) -> None:
        await log_warning(
            f"Открыт спор {dispute.get('id')} по платежу {dispute.get('payment_intent')}: "
            f"{dispute.get('reason')}, сумма {dispute.get('amount')} {dispute.get('currency')}"
        )
