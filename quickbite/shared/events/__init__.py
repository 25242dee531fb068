# quickbite/shared/events/__init__.py
"""
Схемы доменных событий для RabbitMQ.

- order_events: создание, смена статуса, назначение водителя, отмена
- payment_events: платежи, возвраты, выплаты

Все события содержат event_id для дедупликации на стороне потребителя.
"""

from quickbite.shared.events.base import DomainEvent, EventMetadata
from quickbite.shared.events.order_events import (
    OrderCreated,
    OrderStatusChanged,
    DriverAssigned,
    OrderCancelled,
)
from quickbite.shared.events.payment_events import (
    PaymentRequested,
    PaymentStatusChanged,
    RefundRequested,
    RefundCompleted,
    PayoutRequested,
)

__all__ = [
    "DomainEvent",
    "EventMetadata",
    "OrderCreated",
    "OrderStatusChanged",
    "DriverAssigned",
    "OrderCancelled",
    "PaymentRequested",
    "PaymentStatusChanged",
    "RefundRequested",
    "RefundCompleted",
    "PayoutRequested",
]
