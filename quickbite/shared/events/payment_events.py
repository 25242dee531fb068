# quickbite/shared/events/payment_events.py
"""
События домена платежей: платежи, возвраты, выплаты.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Literal

from quickbite.shared.events.base import DomainEvent


class PaymentRequested(DomainEvent):
    """Событие: платёж создан у провайдера и ожидает оплаты."""

    event_type: Literal["payment.requested"] = "payment.requested"

    payment_id: str
    order_id: str
    user_id: str
    amount: Decimal
    currency: str = "USD"
    method: str = "card"


class PaymentStatusChanged(DomainEvent):
    """Событие: платёж перешёл в новый статус (только реальные переходы)."""

    event_type: Literal["payment.status_changed"] = "payment.status_changed"

    payment_id: str
    order_id: str
    old_status: str
    new_status: str
    provider_intent_id: str | None = None


class RefundRequested(DomainEvent):
    """Событие: возврат зарезервирован и отправлен провайдеру."""

    event_type: Literal["refund.requested"] = "refund.requested"

    refund_id: str
    payment_id: str
    order_id: str
    amount: Decimal
    reason: str
    requested_by: str


class RefundCompleted(DomainEvent):
    """Событие: возврат завершён (succeeded или failed)."""

    event_type: Literal["refund.completed"] = "refund.completed"

    refund_id: str
    payment_id: str
    order_id: str
    amount: Decimal
    status: str
    provider_refund_id: str | None = None


class PayoutRequested(DomainEvent):
    """Событие: выплата водителю или ресторану отправлена провайдеру."""

    event_type: Literal["payout.requested"] = "payout.requested"

    ledger: Literal["driver_earning", "restaurant_settlement"]
    entry_id: str
    payee_id: str
    order_id: str
    amount: Decimal
    provider_transfer_id: str
