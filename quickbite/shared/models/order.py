# quickbite/shared/models/order.py
"""
DTO сервиса заказов.
Денежные поля — Decimal, в JSON сериализуются строками.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from quickbite.shared.models.enums import OrderPaymentStatus, OrderStatus, PaymentEvent


# === ЗАПРОСЫ ===

class OrderItemRequest(BaseModel):
    """Позиция заказа в запросе на создание."""
    menu_item_id: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)


class CreateOrderRequest(BaseModel):
    """Запрос на создание заказа."""
    customer_id: str = Field(..., min_length=1)
    restaurant_id: str = Field(..., min_length=1)
    items: list[OrderItemRequest] = Field(..., min_length=1)
    delivery_address: str = Field(..., min_length=1)
    delivery_fee: Decimal = Field(default=Decimal("0"), ge=0)


class UpdateOrderStatusRequest(BaseModel):
    """Запрос на смену статуса заказа."""
    status: OrderStatus
    driver_id: str | None = None
    estimated_delivery_minutes: int | None = Field(default=None, ge=1, le=480)
    actual_delivery_time: datetime | None = None
    payment_status: OrderPaymentStatus | None = None
    notes: str | None = None


class AssignDriverRequest(BaseModel):
    """Водитель принимает заказ."""
    driver_id: str = Field(..., min_length=1)


class CancelOrderRequest(BaseModel):
    """Запрос на отмену заказа."""
    reason: str | None = None


class PaymentStatusUpdate(BaseModel):
    """Уведомление сервиса платежей о статусе оплаты."""
    event: PaymentEvent
    timestamp: datetime


class RefundStatusUpdate(BaseModel):
    """
    Уведомление сервиса платежей о возврате.
    amount — накопленная сумма успешных возвратов, а не приращение.
    """
    event: PaymentEvent
    amount: Decimal | None = Field(default=None, ge=0)
    timestamp: datetime


# === ОТВЕТЫ ===

class CatalogItem(BaseModel):
    """Снимок позиции меню из каталога ресторана."""
    menu_item_id: str
    name: str
    price: Decimal


class OrderItemDTO(BaseModel):
    """Позиция заказа (снимок имени и цены на момент заказа)."""
    id: str
    order_id: str
    menu_item_id: str
    item_name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal


class OrderDTO(BaseModel):
    """Заказ."""
    id: str
    order_number: str
    customer_id: str
    restaurant_id: str
    driver_id: str | None = None
    status: OrderStatus = OrderStatus.PENDING
    subtotal: Decimal
    delivery_fee: Decimal = Decimal("0")
    total_amount: Decimal
    refund_amount: Decimal = Decimal("0")
    payment_status: OrderPaymentStatus = OrderPaymentStatus.PENDING
    delivery_address: str
    estimated_delivery_time: datetime | None = None
    actual_delivery_time: datetime | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime | None = None
    items: list[OrderItemDTO] = Field(default_factory=list)

    class Config:
        from_attributes = True


class OrderStatusHistoryDTO(BaseModel):
    """Запись журнала статусов."""
    id: str
    order_id: str
    status: OrderStatus
    notes: str | None = None
    created_at: datetime


class DriverAssignmentResult(BaseModel):
    """Результат назначения водителя с необязательным обогащением."""
    order: OrderDTO
    customer_email: str | None = None
    customer_name: str | None = None
    driver_name: str | None = None
    restaurant_email: str | None = None
    restaurant_name: str | None = None
    estimated_arrival: str | None = None


class OrderStats(BaseModel):
    """Количество заказов по статусам."""
    restaurant_id: str | None = None
    total: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
