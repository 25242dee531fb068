# quickbite/shared/models/payment.py
"""
DTO сервиса платежей: платежи, возвраты, начисления водителям и расчёты с ресторанами.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from quickbite.shared.models.enums import (
    OrderPaymentStatus,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    PayoutStatus,
    RefundReason,
    RefundStatus,
)


# =============================================================================
# ПЛАТЕЖИ
# =============================================================================

class CreatePaymentRequest(BaseModel):
    """Запрос на создание PaymentIntent."""
    order_id: str
    user_id: str
    amount: Decimal
    currency: str = "USD"
    method: PaymentMethod = PaymentMethod.CARD
    metadata: dict[str, Any] | None = None


class CreateCheckoutRequest(BaseModel):
    """Запрос на создание hosted checkout session."""
    order_id: str
    user_id: str
    amount: Decimal
    currency: str = "USD"
    method: PaymentMethod = PaymentMethod.CARD
    success_url: str | None = None
    cancel_url: str | None = None
    customer_email: str | None = None


class CreatePaymentLinkRequest(BaseModel):
    """Запрос на создание платёжной ссылки."""
    order_id: str
    user_id: str
    amount: Decimal
    currency: str = "USD"
    description: str | None = None


class ConfirmPaymentRequest(BaseModel):
    """Подтверждение PaymentIntent на стороне сервера."""
    payment_intent_id: str
    payment_method_id: str | None = None


class PaymentDTO(BaseModel):
    """Платёж."""
    id: str
    order_id: str
    user_id: str
    restaurant_id: str | None = None
    provider_intent_id: str | None = None
    checkout_session_id: str | None = None
    amount: Decimal
    currency: str = "USD"
    method: PaymentMethod = PaymentMethod.CARD
    status: PaymentStatus = PaymentStatus.PENDING
    fees: Decimal = Decimal("0")
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime | None = None


class PaymentIntentResult(BaseModel):
    """Платёж + client_secret для подтверждения на клиенте."""
    payment: PaymentDTO
    client_secret: str | None = None


class CheckoutResult(BaseModel):
    """Платёж + ссылка на hosted checkout."""
    payment: PaymentDTO
    session_id: str
    checkout_url: str | None = None
    expires_at: datetime


class PaymentLinkResult(BaseModel):
    """Платёж + платёжная ссылка."""
    payment: PaymentDTO
    link_id: str
    url: str


class OrderSnapshot(BaseModel):
    """То, что сервис платежей знает о заказе из сервиса заказов."""
    id: str
    customer_id: str
    restaurant_id: str
    total_amount: Decimal
    status: OrderStatus
    payment_status: OrderPaymentStatus


# =============================================================================
# ВОЗВРАТЫ
# =============================================================================

class CreateRefundRequest(BaseModel):
    """Запрос на возврат (полный, если amount не указан)."""
    order_id: str
    amount: Decimal | None = None
    reason: RefundReason = RefundReason.CUSTOMER_REQUEST
    description: str | None = None
    requested_by: str


class AutoRefundRequest(BaseModel):
    """Автоматический возврат при отмене заказа."""
    order_id: str
    reason: RefundReason = RefundReason.RESTAURANT_CANCELLED


class RefundDTO(BaseModel):
    """Возврат."""
    id: str
    payment_id: str
    order_id: str
    amount: Decimal
    reason: RefundReason
    description: str | None = None
    status: RefundStatus = RefundStatus.PENDING
    requested_by: str
    processed_by: str | None = None
    provider_refund_id: str | None = None
    requested_at: datetime
    processed_at: datetime | None = None


class AutomaticRefundResult(BaseModel):
    """Результат автоматического возврата."""
    refund: RefundDTO
    customer_email: str | None = None
    refund_amount: Decimal


class RefundStats(BaseModel):
    """Сводка по возвратам."""
    total_refunds: int = 0
    successful_refunds: int = 0
    total_refund_amount: Decimal = Decimal("0")
    refund_rate: Decimal = Decimal("0")


# =============================================================================
# НАЧИСЛЕНИЯ И РАСЧЁТЫ
# =============================================================================

class CreateDriverEarningRequest(BaseModel):
    """Начисление водителю за заказ."""
    driver_id: str
    order_id: str
    base_amount: Decimal
    tip_amount: Decimal = Decimal("0")
    bonus_amount: Decimal = Decimal("0")


class CreateSettlementRequest(BaseModel):
    """Расчёт с рестораном за заказ."""
    restaurant_id: str
    order_id: str
    gross_amount: Decimal
    commission_rate: Decimal = Field(..., ge=0, le=1)


class PayoutRequest(BaseModel):
    """Запрос на выплату на подключённый аккаунт провайдера."""
    destination_account: str


class DriverEarningDTO(BaseModel):
    """Начисление водителю."""
    id: str
    driver_id: str
    order_id: str
    base_amount: Decimal
    tip_amount: Decimal = Decimal("0")
    bonus_amount: Decimal = Decimal("0")
    total_amount: Decimal
    payout_status: PayoutStatus = PayoutStatus.PENDING
    provider_transfer_id: str | None = None
    created_at: datetime
    updated_at: datetime | None = None


class RestaurantSettlementDTO(BaseModel):
    """Расчёт с рестораном."""
    id: str
    restaurant_id: str
    order_id: str
    gross_amount: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    net_amount: Decimal
    settlement_status: PayoutStatus = PayoutStatus.PENDING
    provider_transfer_id: str | None = None
    created_at: datetime
    updated_at: datetime | None = None
