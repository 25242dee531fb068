# quickbite/services/payments/service.py
"""
Бизнес-логика платежей (Payment Intent Manager).

Ответственности:
- создание платежа у провайдера (PaymentIntent, checkout session, платёжная ссылка)
- идемпотентное применение статусов из вебхуков и ручных действий
- уведомление сервиса заказов ровно один раз на реальный переход
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import httpx

from quickbite.common.constants import TypeMsg
from quickbite.common.exceptions import (
    ConflictError,
    NotFoundError,
    ProviderOutcomeUnknownError,
    UpstreamError,
    ValidationError,
)
from quickbite.common.logger import log_debug, log_info, log_warning
from quickbite.common.money import SUPPORTED_CURRENCIES, validate_amount, validate_currency
from quickbite.services.payments.state_machine import PaymentStateMachine
from quickbite.shared.events.payment_events import PaymentRequested, PaymentStatusChanged
from quickbite.shared.models.enums import PaymentEvent, PaymentMethod, PaymentStatus
from quickbite.shared.models.payment import (
    CheckoutResult,
    CreateCheckoutRequest,
    CreatePaymentLinkRequest,
    CreatePaymentRequest,
    OrderSnapshot,
    PaymentDTO,
    PaymentIntentResult,
    PaymentLinkResult,
)

if TYPE_CHECKING:
    from asyncpg import Record

    from quickbite.infra.event_bus import EventBus
    from quickbite.services.payments.clients import OrderServiceClient
    from quickbite.services.payments.repository import PaymentRepository
    from quickbite.services.payments.stripe_gateway import StripeGateway


# Статус PaymentIntent у провайдера → наш статус; None означает без изменений
INTENT_STATUS_MAP: dict[str, PaymentStatus | None] = {
    "succeeded": PaymentStatus.SUCCEEDED,
    "processing": PaymentStatus.PROCESSING,
    "canceled": PaymentStatus.CANCELLED,
    "requires_payment_method": PaymentStatus.FAILED,
    "requires_action": None,
    "requires_confirmation": None,
    "requires_capture": None,
}

# Какие переходы сообщаются сервису заказов
ORDER_NOTIFICATIONS: dict[PaymentStatus, PaymentEvent] = {
    PaymentStatus.SUCCEEDED: PaymentEvent.PAID,
    PaymentStatus.FAILED: PaymentEvent.FAILED,
}

# Способ создания платежа у провайдера, хранится в metadata резерва
FLOW_INTENT = "intent"
FLOW_CHECKOUT = "checkout"
FLOW_LINK = "link"

# Пометка исхода вызова провайдера в metadata платежа
OUTCOME_KEY = "provider_outcome"
OUTCOME_UNKNOWN = "unknown"
OUTCOME_CREATED = "created"


def parse_uuid(value: str | None, field: str) -> str:
    """Нормализует UUID; некорректное значение → ValidationError."""
    try:
        return str(uuid.UUID(str(value)))
    except (ValueError, TypeError) as e:
        raise ValidationError(f"Invalid {field}: {value!r}") from e


def map_payment(row: "Record | dict[str, Any]") -> PaymentDTO:
    return PaymentDTO(
        id=str(row["id"]),
        order_id=str(row["order_id"]),
        user_id=row["user_id"],
        restaurant_id=row["restaurant_id"],
        provider_intent_id=row["provider_intent_id"],
        checkout_session_id=row["checkout_session_id"],
        amount=row["amount"],
        currency=row["currency"],
        method=row["method"],
        status=row["status"],
        fees=row["fees"],
        metadata=row["metadata"] or {},
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def is_retryable(row: "Record | dict[str, Any]", user_id: str, flow: str, amount: Decimal, currency: str) -> bool:
    """
    Резерв с неизвестным исходом, который можно повторить тем же ключом.
    Запрос должен совпадать с исходным, иначе провайдер отвергнет ключ.
    """
    metadata = row["metadata"] or {}
    return (
        row["status"] == PaymentStatus.PENDING
        and row["provider_intent_id"] is None
        and row["checkout_session_id"] is None
        and metadata.get(OUTCOME_KEY) == OUTCOME_UNKNOWN
        and metadata.get("flow") == flow
        and row["user_id"] == user_id
        and row["amount"] == amount
        and row["currency"] == currency
    )


class PaymentService:
    """Сервис управления платежами."""

    def __init__(
        self,
        repository: "PaymentRepository",
        gateway: "StripeGateway",
        orders: "OrderServiceClient",
        event_bus: "EventBus",
        supported_currencies: tuple[str, ...] | list[str] = SUPPORTED_CURRENCIES,
        checkout_success_url: str = "http://localhost:3004/success?session_id={CHECKOUT_SESSION_ID}",
        checkout_cancel_url: str = "http://localhost:3004/cancel",
        checkout_expires_minutes: int = 30,
    ) -> None:
        self.repository = repository
        self.gateway = gateway
        self.orders = orders
        self.event_bus = event_bus
        self.supported_currencies = supported_currencies
        self.checkout_success_url = checkout_success_url
        self.checkout_cancel_url = checkout_cancel_url
        self.checkout_expires_minutes = checkout_expires_minutes

    # =========================================================================
    # СОЗДАНИЕ ПЛАТЕЖА
    # =========================================================================

    async def _prepare(
        self,
        order_id: str,
        amount: Any,
        currency: str | None,
        user_id: str,
        flow: str,
    ) -> tuple[OrderSnapshot, Decimal, str, "Record | None"]:
        """
        Общие проверки перед обращением к провайдеру.
        Ничего не пишет и не вызывает провайдера.

        Returns:
            (заказ, сумма, валюта, платёж для повтора или None)
        """
        order_id = parse_uuid(order_id, "order_id")
        currency = validate_currency(currency, self.supported_currencies)
        amount = validate_amount(amount, currency)

        order = await self.orders.get_order(order_id)

        live = await self.repository.get_live_payment_for_order(
            order_id, [str(s) for s in PaymentStateMachine.LIVE]
        )
        if live is None:
            return order, amount, currency, None
        if is_retryable(live, user_id, flow, amount, currency):
            await log_info(f"Платёж {live['id']}: повтор вызова провайдера с тем же ключом", type_msg=TypeMsg.INFO)
            return order, amount, currency, live
        raise ConflictError(
            f"Order {order_id} already has an active payment",
            {"payment_id": str(live["id"]), "status": live["status"]},
        )

    async def _reserve(
        self,
        order: OrderSnapshot,
        user_id: str,
        amount: Decimal,
        currency: str,
        method: PaymentMethod,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Создаёт локальную запись pending до вызова провайдера."""
        payment_id = str(uuid.uuid4())
        await self.repository.create_payment({
            "id": payment_id,
            "order_id": order.id,
            "user_id": user_id,
            "restaurant_id": order.restaurant_id,
            "amount": amount,
            "currency": currency,
            "method": method,
            "metadata": metadata or {},
        })
        return payment_id

    async def _release(self, payment_id: str, error: UpstreamError) -> None:
        """
        Отказ провайдера снимает резерв.

        При неизвестном исходе запись остаётся pending с пометкой: её свяжет
        вебхук по payment_id из метаданных или повторный запрос с тем же ключом.
        """
        if isinstance(error, ProviderOutcomeUnknownError):
            await self.repository.attach_provider_refs(payment_id, metadata={OUTCOME_KEY: OUTCOME_UNKNOWN})
            error.details["payment_id"] = payment_id
            await log_warning(f"Платёж {payment_id}: исход у провайдера неизвестен, резерв сохранён")
            return
        await self.repository.delete_payment(payment_id)

    async def create_payment(self, request: CreatePaymentRequest) -> PaymentIntentResult:
        """
        Создать PaymentIntent.

        1. Проверяет сумму, валюту и заказ
        2. Резервирует платёж по заказу (pending)
        3. Создаёт PaymentIntent с ключом идемпотентности payment-{id}
        4. При отказе провайдера удаляет резерв, при неизвестном исходе оставляет
        """
        order, amount, currency, pending = await self._prepare(
            request.order_id, request.amount, request.currency, request.user_id, FLOW_INTENT
        )
        if pending is None:
            payment_id = await self._reserve(
                order, request.user_id, amount, currency, request.method,
                {**(request.metadata or {}), "flow": FLOW_INTENT},
            )
        else:
            payment_id = str(pending["id"])

        provider_metadata = {"order_id": order.id, "user_id": request.user_id, "payment_id": payment_id}
        try:
            intent = await self.gateway.create_payment_intent(
                amount, currency, provider_metadata, idempotency_key=f"payment-{payment_id}"
            )
        except UpstreamError as e:
            await self._release(payment_id, e)
            raise

        row = await self.repository.attach_provider_refs(
            payment_id, intent_id=intent.id, metadata={OUTCOME_KEY: OUTCOME_CREATED}
        )
        await self._on_created(row)
        return PaymentIntentResult(payment=map_payment(row), client_secret=getattr(intent, "client_secret", None))

    async def create_payment_with_checkout(self, request: CreateCheckoutRequest) -> CheckoutResult:
        """
        Создать hosted checkout session.
        intent id провайдер может выдать только после оплаты, поэтому он дозаписывается вебхуком.

        Параметры сессии сохраняются в резерве: повтор после неизвестного исхода
        должен отправить провайдеру тот же запрос под тем же ключом.
        """
        order, amount, currency, pending = await self._prepare(
            request.order_id, request.amount, request.currency, request.user_id, FLOW_CHECKOUT
        )
        if pending is None:
            replay = {
                "flow": FLOW_CHECKOUT,
                "expires_at": (
                    datetime.now(timezone.utc) + timedelta(minutes=self.checkout_expires_minutes)
                ).isoformat(),
                "success_url": request.success_url or self.checkout_success_url,
                "cancel_url": request.cancel_url or self.checkout_cancel_url,
                "customer_email": request.customer_email,
            }
            payment_id = await self._reserve(order, request.user_id, amount, currency, request.method, replay)
        else:
            replay = pending["metadata"]
            payment_id = str(pending["id"])

        expires_at = datetime.fromisoformat(replay["expires_at"])
        provider_metadata = {"order_id": order.id, "user_id": request.user_id, "payment_id": payment_id}
        try:
            session = await self.gateway.create_checkout_session(
                amount,
                currency,
                provider_metadata,
                success_url=replay["success_url"],
                cancel_url=replay["cancel_url"],
                expires_at=expires_at,
                idempotency_key=f"payment-{payment_id}",
                customer_email=replay.get("customer_email"),
            )
        except UpstreamError as e:
            await self._release(payment_id, e)
            raise

        row = await self.repository.attach_provider_refs(
            payment_id,
            intent_id=getattr(session, "payment_intent", None) or None,
            session_id=session.id,
            metadata={"checkout_url": session.url, OUTCOME_KEY: OUTCOME_CREATED},
        )
        await self._on_created(row)
        return CheckoutResult(
            payment=map_payment(row),
            session_id=session.id,
            checkout_url=session.url,
            expires_at=expires_at,
        )

    async def create_payment_link(self, request: CreatePaymentLinkRequest) -> PaymentLinkResult:
        """Создать платёжную ссылку (товар → цена → ссылка)."""
        order, amount, currency, pending = await self._prepare(
            request.order_id, request.amount, request.currency, request.user_id, FLOW_LINK
        )
        if pending is None:
            description = request.description
            payment_id = await self._reserve(
                order, request.user_id, amount, currency, PaymentMethod.CARD,
                {"flow": FLOW_LINK, "description": description},
            )
        else:
            description = pending["metadata"].get("description")
            payment_id = str(pending["id"])

        provider_metadata = {"order_id": order.id, "user_id": request.user_id, "payment_id": payment_id}
        try:
            link = await self.gateway.create_payment_link(
                amount,
                currency,
                provider_metadata,
                idempotency_key=f"payment-{payment_id}",
                description=description,
            )
        except UpstreamError as e:
            await self._release(payment_id, e)
            raise

        row = await self.repository.attach_provider_refs(
            payment_id,
            metadata={"payment_link_id": link.id, "payment_link_url": link.url, OUTCOME_KEY: OUTCOME_CREATED},
        )
        await self._on_created(row)
        return PaymentLinkResult(payment=map_payment(row), link_id=link.id, url=link.url)

    async def _on_created(self, row: "Record") -> None:
        await log_info(
            f"Платёж {row['id']} создан: заказ {row['order_id']}, {row['amount']} {row['currency']}",
            type_msg=TypeMsg.INFO,
        )
        await self.event_bus.publish(PaymentRequested(
            payment_id=str(row["id"]),
            order_id=str(row["order_id"]),
            user_id=row["user_id"],
            amount=row["amount"],
            currency=row["currency"],
            method=row["method"],
        ))

    # =========================================================================
    # ПОДТВЕРЖДЕНИЕ И ОТМЕНА
    # =========================================================================

    async def confirm_payment(self, intent_id: str, payment_method_id: str | None = None) -> PaymentDTO:
        """Подтвердить PaymentIntent и применить статус, который вернул провайдер."""
        row = await self.repository.get_by_intent_id(intent_id)
        if row is None:
            raise NotFoundError(f"Payment with intent {intent_id} not found")

        intent = await self.gateway.confirm_payment_intent(intent_id, payment_method_id)
        status = INTENT_STATUS_MAP.get(getattr(intent, "status", ""))
        if status is None:
            return map_payment(row)
        return await self._apply_transition(row, status, intent_id)

    async def cancel_payment(self, intent_id: str) -> PaymentDTO:
        row = await self.repository.get_by_intent_id(intent_id)
        if row is None:
            raise NotFoundError(f"Payment with intent {intent_id} not found")
        if not PaymentStateMachine.can_transition(row["status"], PaymentStatus.CANCELLED):
            raise ConflictError(f"Payment in status {row['status']} cannot be cancelled")

        await self.gateway.cancel_payment_intent(intent_id)
        return await self._apply_transition(row, PaymentStatus.CANCELLED, intent_id)

    async def cancel_checkout_session(self, session_id: str) -> PaymentDTO:
        row = await self.repository.get_by_session_id(session_id)
        if row is None:
            raise NotFoundError(f"Payment with checkout session {session_id} not found")
        if not PaymentStateMachine.can_transition(row["status"], PaymentStatus.CANCELLED):
            raise ConflictError(f"Payment in status {row['status']} cannot be cancelled")

        await self.gateway.expire_checkout_session(session_id)
        return await self._apply_transition(row, PaymentStatus.CANCELLED)

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def get_payment(self, payment_id: str) -> PaymentDTO:
        row = await self.repository.get_payment(parse_uuid(payment_id, "payment_id"))
        if row is None:
            raise NotFoundError(f"Payment {payment_id} not found")
        return map_payment(row)

    async def get_payment_by_order(self, order_id: str) -> PaymentDTO:
        row = await self.repository.get_latest_payment_for_order(parse_uuid(order_id, "order_id"))
        if row is None:
            raise NotFoundError(f"No payment found for order {order_id}")
        return map_payment(row)

    # =========================================================================
    # СТАТУСЫ (вебхуки)
    # =========================================================================

    async def update_payment_status(
        self,
        intent_id: str,
        status: PaymentStatus,
        payment_id: str | None = None,
    ) -> PaymentDTO | None:
        """
        Применить статус по intent id.

        Если платёж ещё не связан с intent (checkout), ищем его по локальному
        payment_id из метаданных провайдера и дозаписываем intent id.
        """
        row = await self.repository.get_by_intent_id(intent_id)
        if row is None and payment_id:
            try:
                row = await self.repository.get_unlinked_payment(parse_uuid(payment_id, "payment_id"))
            except ValidationError:
                row = None
        if row is None:
            await log_warning(f"Платёж для intent {intent_id} не найден (payment_id={payment_id})")
            return None
        return await self._apply_transition(row, status, intent_id)

    async def update_payment_status_by_session_id(
        self,
        session_id: str,
        status: PaymentStatus,
        intent_id: str | None = None,
        payment_id: str | None = None,
    ) -> PaymentDTO | None:
        """
        Применить статус по checkout session.

        Сессии платёжной ссылки создаёт провайдер, их id у нас нет: такой платёж
        находится по payment_id из метаданных сессии, id сессии дозаписывается.
        """
        row = await self.repository.get_by_session_id(session_id)
        if row is None and payment_id:
            try:
                row = await self.repository.get_payment_without_session(parse_uuid(payment_id, "payment_id"))
            except ValidationError:
                row = None
        if row is None:
            await log_warning(f"Платёж для checkout session {session_id} не найден (payment_id={payment_id})")
            return None
        return await self._apply_transition(row, status, intent_id, session_id)

    async def _apply_transition(
        self,
        row: "Record",
        status: PaymentStatus,
        intent_id: str | None = None,
        session_id: str | None = None,
    ) -> PaymentDTO:
        """
        Условный переход статуса. Побочные эффекты (уведомление заказа, событие)
        только если UPDATE вернул строку.
        """
        payment_id = str(row["id"])

        if row["status"] == status:
            missing_intent = intent_id and row["provider_intent_id"] is None
            missing_session = session_id and row["checkout_session_id"] is None
            if missing_intent or missing_session:
                row = await self.repository.attach_provider_refs(
                    payment_id, intent_id=intent_id, session_id=session_id
                ) or row
            await log_debug(f"Платёж {payment_id} уже в статусе {status}, повтор проигнорирован")
            return map_payment(row)

        if not PaymentStateMachine.can_transition(row["status"], status):
            await log_warning(f"Платёж {payment_id}: переход {row['status']} → {status} недопустим, пропущен")
            return map_payment(row)

        updated = await self.repository.transition_status(
            payment_id, str(status), PaymentStateMachine.predecessors(status), intent_id, session_id=session_id
        )
        if updated is None:
            # Параллельный обработчик успел первым
            current = await self.repository.get_payment(payment_id)
            await log_debug(f"Платёж {payment_id}: переход в {status} уже выполнен другим обработчиком")
            return map_payment(current or row)

        await log_info(f"Платёж {payment_id}: {row['status']} → {status}", type_msg=TypeMsg.INFO)
        await self.event_bus.publish(PaymentStatusChanged(
            payment_id=payment_id,
            order_id=str(updated["order_id"]),
            old_status=row["status"],
            new_status=str(status),
            provider_intent_id=updated["provider_intent_id"],
        ))

        event = ORDER_NOTIFICATIONS.get(status)
        if event is not None:
            await self.notify_order_service(str(updated["order_id"]), event)

        return map_payment(updated)

    async def notify_order_service(self, order_id: str, event: PaymentEvent) -> None:
        """Best effort: сбой уведомления не откатывает переход."""
        try:
            await self.orders.notify_payment_status(order_id, event)
        except (UpstreamError, NotFoundError, httpx.HTTPError) as e:
            await log_warning(f"Не удалось уведомить сервис заказов ({order_id}, {event}): {e}")
