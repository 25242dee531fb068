# quickbite/shared/models/enums.py
"""Перечисления статусов, общие для сервисов заказов и платежей."""

from enum import Enum


class OrderStatus(str, Enum):
    """Статусы заказа."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    PICKED_UP = "picked_up"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    def __str__(self) -> str:
        return self.value


class OrderPaymentStatus(str, Enum):
    """Статус оплаты заказа (со стороны сервиса заказов)."""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUND_PENDING = "refund_pending"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"

    def __str__(self) -> str:
        return self.value


class PaymentEvent(str, Enum):
    """События, которые сервис платежей сообщает сервису заказов."""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"

    def __str__(self) -> str:
        return self.value


class PaymentStatus(str, Enum):
    """Статус платежа у провайдера."""
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    def __str__(self) -> str:
        return self.value


class PaymentMethod(str, Enum):
    """Способы оплаты."""
    CARD = "card"
    WALLET = "wallet"
    BANK_TRANSFER = "bank_transfer"

    def __str__(self) -> str:
        return self.value


class RefundStatus(str, Enum):
    """Статус возврата."""
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


class RefundReason(str, Enum):
    """Причина возврата."""
    CUSTOMER_REQUEST = "customer_request"
    RESTAURANT_CANCELLED = "restaurant_cancelled"
    DRIVER_UNAVAILABLE = "driver_unavailable"
    FOOD_QUALITY = "food_quality"
    OTHER = "other"

    def __str__(self) -> str:
        return self.value


class PayoutStatus(str, Enum):
    """Статус выплаты водителю / ресторану."""
    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"

    def __str__(self) -> str:
        return self.value
