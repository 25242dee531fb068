# quickbite/services/orders/state_machine.py
"""
Допустимые переходы статусов заказа и статуса его оплаты.
"""

from __future__ import annotations

from quickbite.common.exceptions import ConflictError
from quickbite.shared.models.enums import OrderPaymentStatus, OrderStatus


class OrderStateMachine:
    ALLOWED_TRANSITIONS: dict[OrderStatus, list[OrderStatus]] = {
        OrderStatus.PENDING: [OrderStatus.CONFIRMED, OrderStatus.CANCELLED],
        OrderStatus.CONFIRMED: [OrderStatus.PREPARING, OrderStatus.CANCELLED],
        OrderStatus.PREPARING: [OrderStatus.READY, OrderStatus.CANCELLED],
        OrderStatus.READY: [OrderStatus.PICKED_UP, OrderStatus.CANCELLED],
        OrderStatus.PICKED_UP: [OrderStatus.DELIVERED, OrderStatus.CANCELLED],
        OrderStatus.DELIVERED: [OrderStatus.REFUNDED],
        OrderStatus.CANCELLED: [OrderStatus.REFUNDED],
        OrderStatus.REFUNDED: [],
    }

    # Статусы, в которых водитель ещё может принять заказ
    ASSIGNABLE: tuple[OrderStatus, ...] = (
        OrderStatus.PENDING,
        OrderStatus.CONFIRMED,
        OrderStatus.PREPARING,
        OrderStatus.READY,
    )

    TERMINAL: tuple[OrderStatus, ...] = (
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
        OrderStatus.REFUNDED,
    )

    @staticmethod
    def can_transition(current_status: str, new_status: str) -> bool:
        """
        Проверяет переход. Повторная запись того же нетерминального статуса
        допустима (обновление ETA, водителя и т.п.).
        """
        try:
            curr = OrderStatus(current_status)
            new = OrderStatus(new_status)
        except ValueError:
            return False
        if curr == new:
            return curr not in OrderStateMachine.TERMINAL
        return new in OrderStateMachine.ALLOWED_TRANSITIONS.get(curr, [])

    @staticmethod
    def ensure_transition(current_status: str, new_status: str) -> None:
        if not OrderStateMachine.can_transition(current_status, new_status):
            raise ConflictError(
                f"Invalid order status transition from {current_status} to {new_status}",
                {"from": str(current_status), "to": str(new_status)},
            )


class OrderPaymentStateMachine:
    ALLOWED_TRANSITIONS: dict[OrderPaymentStatus, list[OrderPaymentStatus]] = {
        OrderPaymentStatus.PENDING: [OrderPaymentStatus.PAID, OrderPaymentStatus.FAILED],
        OrderPaymentStatus.FAILED: [OrderPaymentStatus.PAID],
        OrderPaymentStatus.PAID: [OrderPaymentStatus.REFUNDED],
    }

    @staticmethod
    def is_noop(current_status: str, new_status: str) -> bool:
        return str(current_status) == str(new_status)

    @staticmethod
    def ensure_transition(current_status: str, new_status: str) -> None:
        """Повтор текущего значения допустим, остальное только по таблице."""
        try:
            curr = OrderPaymentStatus(current_status)
            new = OrderPaymentStatus(new_status)
        except ValueError as e:
            raise ConflictError(f"Unknown payment status: {e}") from e
        if curr == new:
            return
        if new not in OrderPaymentStateMachine.ALLOWED_TRANSITIONS.get(curr, []):
            raise ConflictError(
                f"Invalid payment status transition from {curr} to {new}",
                {"from": str(curr), "to": str(new)},
            )
