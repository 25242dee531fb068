# quickbite/shared/events/order_events.py
"""
События домена заказов.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Literal

from quickbite.shared.events.base import DomainEvent


class OrderCreated(DomainEvent):
    """Событие: заказ создан."""

    event_type: Literal["order.created"] = "order.created"

    order_id: str
    order_number: str
    customer_id: str
    restaurant_id: str
    total_amount: Decimal


class OrderStatusChanged(DomainEvent):
    """Событие: статус заказа изменён."""

    event_type: Literal["order.status_changed"] = "order.status_changed"

    order_id: str
    old_status: str
    new_status: str
    driver_id: str | None = None
    notes: str | None = None


class DriverAssigned(DomainEvent):
    """Событие: водитель назначен на заказ."""

    event_type: Literal["order.driver_assigned"] = "order.driver_assigned"

    order_id: str
    driver_id: str
    status: str


class OrderCancelled(DomainEvent):
    """Событие: заказ отменён."""

    event_type: Literal["order.cancelled"] = "order.cancelled"

    order_id: str
    reason: str
    payment_status: str
