# quickbite/shared/models/__init__.py
"""
Общие DTO и Pydantic-модели для межсервисного взаимодействия.
"""

from quickbite.shared.models.enums import (
    OrderStatus,
    OrderPaymentStatus,
    PaymentEvent,
    PaymentStatus,
    PaymentMethod,
    RefundStatus,
    RefundReason,
    PayoutStatus,
)
from quickbite.shared.models.common import (
    PaginationParams,
    PaginatedResponse,
    ErrorResponse,
    HealthStatus,
)

__all__ = [
    "OrderStatus",
    "OrderPaymentStatus",
    "PaymentEvent",
    "PaymentStatus",
    "PaymentMethod",
    "RefundStatus",
    "RefundReason",
    "PayoutStatus",
    "PaginationParams",
    "PaginatedResponse",
    "ErrorResponse",
    "HealthStatus",
]
