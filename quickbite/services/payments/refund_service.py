# quickbite/services/payments/refund_service.py
"""
Бизнес-логика возвратов (Refund Ledger).

Главный инвариант: сумма успешных возвратов по платежу не превышает сумму
платежа. Бюджет проверяется и резервируется под блокировкой строки платежа,
вызов провайдера идёт уже вне блокировки.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import httpx

from quickbite.common.constants import TypeMsg
from quickbite.common.exceptions import (
    InvalidStateError,
    NotFoundError,
    ProviderOutcomeUnknownError,
    UpstreamError,
    ValidationError,
)
from quickbite.common.logger import log_debug, log_info, log_warning
from quickbite.common.money import ZERO, sanitize_amount, validate_amount
from quickbite.services.payments.service import parse_uuid
from quickbite.services.payments.state_machine import RefundStateMachine
from quickbite.shared.events.payment_events import RefundCompleted, RefundRequested
from quickbite.shared.models.enums import PaymentEvent, PaymentStatus, RefundReason, RefundStatus
from quickbite.shared.models.payment import (
    AutomaticRefundResult,
    CreateRefundRequest,
    RefundDTO,
    RefundStats,
)

if TYPE_CHECKING:
    from asyncpg import Record

    from quickbite.infra.event_bus import EventBus
    from quickbite.services.payments.clients import NotificationClient, OrderServiceClient, UsersClient
    from quickbite.services.payments.repository import PaymentRepository, RefundRepository
    from quickbite.services.payments.stripe_gateway import StripeGateway


# Статус возврата у провайдера → наш статус
PROVIDER_REFUND_STATUS_MAP: dict[str, RefundStatus] = {
    "succeeded": RefundStatus.SUCCEEDED,
    "failed": RefundStatus.FAILED,
    "canceled": RefundStatus.FAILED,
    "pending": RefundStatus.PROCESSING,
    "requires_action": RefundStatus.PROCESSING,
}

REFUND_NOTIFICATION_TYPE = "refund_processed"


def map_refund(row: "Record | dict[str, Any]") -> RefundDTO:
    return RefundDTO(
        id=str(row["id"]),
        payment_id=str(row["payment_id"]),
        order_id=str(row["order_id"]),
        amount=row["amount"],
        reason=row["reason"],
        description=row["description"],
        status=row["status"],
        requested_by=row["requested_by"],
        processed_by=row["processed_by"],
        provider_refund_id=row["provider_refund_id"],
        requested_at=row["requested_at"],
        processed_at=row["processed_at"],
    )


class RefundService:
    """Сервис возвратов."""

    def __init__(
        self,
        refunds: "RefundRepository",
        payments: "PaymentRepository",
        gateway: "StripeGateway",
        orders: "OrderServiceClient",
        notifications: "NotificationClient",
        users: "UsersClient",
        event_bus: "EventBus",
    ) -> None:
        self.refunds = refunds
        self.payments = payments
        self.gateway = gateway
        self.orders = orders
        self.notifications = notifications
        self.users = users
        self.event_bus = event_bus

    # =========================================================================
    # СОЗДАНИЕ ВОЗВРАТА
    # =========================================================================

    async def create_refund(self, request: CreateRefundRequest) -> RefundDTO:
        """
        Создать возврат.

        1. Находит успешный платёж по заказу
        2. Резервирует сумму под блокировкой платежа (InvalidStateError при превышении)
        3. Отправляет возврат провайдеру с ключом идемпотентности refund-{id}
        4. При отказе провайдера освобождает резерв, при неизвестном исходе оставляет
        5. Сообщает сервису заказов о начале возврата
        """
        order_id = parse_uuid(request.order_id, "order_id")
        payment = await self.payments.get_latest_payment_for_order(order_id)
        if payment is None:
            raise NotFoundError(f"No payment found for order {order_id}")
        if payment["status"] != PaymentStatus.SUCCEEDED or not payment["provider_intent_id"]:
            raise InvalidStateError(
                f"Payment for order {order_id} is not refundable in status {payment['status']}",
                {"payment_id": str(payment["id"]), "status": payment["status"]},
            )

        currency = payment["currency"]
        if request.amount is None:
            amount = payment["amount"]
        else:
            amount = validate_amount(request.amount, currency)
        if amount <= ZERO:
            raise ValidationError("Refund amount must be greater than 0")
        if amount > payment["amount"]:
            raise InvalidStateError(
                "Refund amount exceeds payment amount",
                {"payment_amount": str(payment["amount"]), "requested": str(amount)},
            )

        refund_id = str(uuid.uuid4())
        row = await self.refunds.reserve_refund(
            {
                "id": refund_id,
                "payment_id": str(payment["id"]),
                "order_id": order_id,
                "amount": amount,
                "reason": request.reason,
                "description": request.description,
                "requested_by": request.requested_by,
            },
            [str(s) for s in RefundStateMachine.RESERVING],
        )
        await log_info(
            f"Возврат {refund_id} зарезервирован: заказ {order_id}, {amount} {currency}",
            type_msg=TypeMsg.INFO,
        )
        await self.event_bus.publish(RefundRequested(
            refund_id=refund_id,
            payment_id=str(payment["id"]),
            order_id=order_id,
            amount=amount,
            reason=str(request.reason),
            requested_by=request.requested_by,
        ))

        return await self._submit(row, payment)

    async def retry_refund(self, refund_id: str) -> RefundDTO:
        """
        Повторно отправить провайдеру возврат, исход которого неизвестен.

        Ключ идемпотентности тот же (refund-{id}), поэтому провайдер либо
        вернёт уже созданный возврат, либо создаст его впервые.

        Raises:
            NotFoundError: возврат не найден
            InvalidStateError: возврат уже отправлен или завершён
        """
        row = await self.refunds.get_refund(parse_uuid(refund_id, "refund_id"))
        if row is None:
            raise NotFoundError(f"Refund {refund_id} not found")
        if row["status"] != RefundStatus.PENDING or row["provider_refund_id"]:
            raise InvalidStateError(
                f"Refund {refund_id} was already submitted",
                {"refund_id": refund_id, "status": row["status"]},
            )
        payment = await self.payments.get_payment(str(row["payment_id"]))
        if payment is None:
            raise NotFoundError(f"Payment {row['payment_id']} not found")
        return await self._submit(row, payment)

    async def _submit(self, row: "Record", payment: "Record") -> RefundDTO:
        """
        Отправляет зарезервированный возврат провайдеру.
        Отказ снимает резерв, при неизвестном исходе резерв остаётся до вебхука или повтора.
        """
        refund_id = str(row["id"])
        order_id = str(row["order_id"])
        try:
            provider_refund = await self.gateway.create_refund(
                payment["provider_intent_id"],
                row["amount"],
                payment["currency"],
                {"refund_id": refund_id, "order_id": order_id, "payment_id": str(payment["id"])},
                idempotency_key=f"refund-{refund_id}",
            )
        except ProviderOutcomeUnknownError as e:
            e.details["refund_id"] = refund_id
            await log_warning(f"Возврат {refund_id}: исход у провайдера неизвестен, резерв сохранён")
            raise
        except UpstreamError:
            await self.refunds.release_reservation(refund_id)
            await log_warning(f"Провайдер отклонил возврат {refund_id}, резерв снят")
            raise

        row = await self.refunds.mark_submitted(refund_id, provider_refund.id) or row

        provider_status = PROVIDER_REFUND_STATUS_MAP.get(getattr(provider_refund, "status", ""))
        if provider_status in (RefundStatus.SUCCEEDED, RefundStatus.FAILED):
            return await self._apply_transition(row, provider_status, provider_refund.id)

        succeeded_total = await self._succeeded_total(str(payment["id"]))
        await self._notify_order(order_id, PaymentEvent.PENDING, succeeded_total)
        return map_refund(row)

    async def process_automatic_refund(
        self,
        order_id: str,
        reason: RefundReason,
    ) -> AutomaticRefundResult | None:
        """
        Вернуть остаток платежа по отменённому заказу.
        None, если успешного платежа нет или возвращать уже нечего.
        """
        order_id = parse_uuid(order_id, "order_id")
        payment = await self.payments.get_latest_payment_for_order(order_id)
        if payment is None or payment["status"] != PaymentStatus.SUCCEEDED:
            return None

        reserved = await self.refunds.sum_by_status(
            str(payment["id"]), [str(s) for s in RefundStateMachine.RESERVING]
        )
        remaining = payment["amount"] - reserved
        if remaining <= ZERO:
            await log_debug(f"Автовозврат по заказу {order_id} не нужен: бюджет исчерпан")
            return None

        customer_email = None
        try:
            user = await self.users.get_user(payment["user_id"])
            customer_email = user.get("email") or None
        except (UpstreamError, NotFoundError, httpx.HTTPError) as e:
            await log_warning(f"Не удалось получить email клиента {payment['user_id']}: {e}")

        refund = await self.create_refund(CreateRefundRequest(
            order_id=order_id,
            amount=remaining,
            reason=reason,
            description=f"Automatic refund due to {reason}",
            requested_by=payment["user_id"],
        ))
        return AutomaticRefundResult(refund=refund, customer_email=customer_email, refund_amount=refund.amount)

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def get_refund(self, refund_id: str) -> RefundDTO:
        row = await self.refunds.get_refund(parse_uuid(refund_id, "refund_id"))
        if row is None:
            raise NotFoundError(f"Refund {refund_id} not found")
        return map_refund(row)

    async def get_refunds_by_order(self, order_id: str) -> list[RefundDTO]:
        rows = await self.refunds.get_refunds_by_order(parse_uuid(order_id, "order_id"))
        return [map_refund(row) for row in rows]

    async def get_refund_stats(
        self,
        restaurant_id: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> RefundStats:
        if date_from and date_to and date_from > date_to:
            raise ValidationError("date_from must not be later than date_to")
        row = await self.refunds.get_stats(restaurant_id, date_from, date_to)
        total = int(row["total_refunds"])
        successful = int(row["successful_refunds"])
        rate = Decimal(successful * 100) / Decimal(total) if total else ZERO
        return RefundStats(
            total_refunds=total,
            successful_refunds=successful,
            total_refund_amount=sanitize_amount(row["total_refund_amount"]),
            refund_rate=rate.quantize(Decimal("0.01")),
        )

    # =========================================================================
    # СТАТУСЫ (вебхуки)
    # =========================================================================

    async def update_refund_status(
        self,
        provider_refund_id: str,
        status: RefundStatus,
        refund_id: str | None = None,
    ) -> RefundDTO | None:
        """
        Применить статус возврата от провайдера.
        Если id провайдера ещё не записан, ищем по refund_id из метаданных.
        """
        row = await self.refunds.get_by_provider_id(provider_refund_id)
        if row is None and refund_id:
            try:
                row = await self.refunds.get_unlinked_refund(parse_uuid(refund_id, "refund_id"))
            except ValidationError:
                row = None
        if row is None:
            await log_warning(f"Возврат {provider_refund_id} не найден (refund_id={refund_id})")
            return None
        return await self._apply_transition(row, status, provider_refund_id)

    async def _apply_transition(
        self,
        row: "Record",
        status: RefundStatus,
        provider_refund_id: str | None = None,
    ) -> RefundDTO:
        refund_id = str(row["id"])

        if row["status"] == status or not RefundStateMachine.can_transition(row["status"], status):
            await log_debug(f"Возврат {refund_id}: {row['status']} → {status} пропущен")
            return map_refund(row)

        terminal = status in (RefundStatus.SUCCEEDED, RefundStatus.FAILED)
        updated = await self.refunds.transition_status(
            refund_id,
            str(status),
            RefundStateMachine.predecessors(status),
            provider_refund_id,
            terminal=terminal,
        )
        if updated is None:
            current = await self.refunds.get_refund(refund_id)
            await log_debug(f"Возврат {refund_id}: переход в {status} уже выполнен другим обработчиком")
            return map_refund(current or row)

        await log_info(f"Возврат {refund_id}: {row['status']} → {status}", type_msg=TypeMsg.INFO)

        if terminal:
            await self.event_bus.publish(RefundCompleted(
                refund_id=refund_id,
                payment_id=str(updated["payment_id"]),
                order_id=str(updated["order_id"]),
                amount=updated["amount"],
                status=str(status),
                provider_refund_id=updated["provider_refund_id"],
            ))

        order_id = str(updated["order_id"])
        if status == RefundStatus.SUCCEEDED:
            succeeded_total = await self._succeeded_total(str(updated["payment_id"]))
            await self._notify_order(order_id, PaymentEvent.REFUNDED, succeeded_total)
            await self._notify_customer(updated, succeeded_total)
        elif status == RefundStatus.FAILED:
            succeeded_total = await self._succeeded_total(str(updated["payment_id"]))
            await self._notify_order(order_id, PaymentEvent.FAILED, succeeded_total)

        return map_refund(updated)

    # =========================================================================
    # УВЕДОМЛЕНИЯ (best effort)
    # =========================================================================

    async def _succeeded_total(self, payment_id: str) -> Decimal:
        return await self.refunds.sum_by_status(payment_id, [str(RefundStatus.SUCCEEDED)])

    async def _notify_order(self, order_id: str, event: PaymentEvent, succeeded_total: Decimal) -> None:
        try:
            await self.orders.notify_refund_status(order_id, event, succeeded_total)
        except (UpstreamError, NotFoundError, httpx.HTTPError) as e:
            await log_warning(f"Не удалось уведомить сервис заказов о возврате ({order_id}, {event}): {e}")

    async def _notify_customer(self, refund: "Record", succeeded_total: Decimal) -> None:
        payment = await self.payments.get_payment(str(refund["payment_id"]))
        if payment is None:
            return
        try:
            await self.notifications.send(
                REFUND_NOTIFICATION_TYPE,
                payment["user_id"],
                {
                    "order_id": str(refund["order_id"]),
                    "refund_id": str(refund["id"]),
                    "amount": str(refund["amount"]),
                    "total_refunded": str(succeeded_total),
                    "currency": payment["currency"],
                },
            )
        except (UpstreamError, NotFoundError, httpx.HTTPError) as e:
            await log_warning(f"Не удалось отправить уведомление о возврате {refund['id']}: {e}")
