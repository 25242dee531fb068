# quickbite/services/payments/state_machine.py
"""
Допустимые переходы статусов платежа и возврата.
Применяются условным UPDATE: запись проходит только из статуса-предшественника.
"""

from __future__ import annotations

from quickbite.shared.models.enums import PaymentStatus, RefundStatus


class PaymentStateMachine:
    ALLOWED_TRANSITIONS: dict[PaymentStatus, list[PaymentStatus]] = {
        PaymentStatus.PENDING: [
            PaymentStatus.PROCESSING,
            PaymentStatus.SUCCEEDED,
            PaymentStatus.FAILED,
            PaymentStatus.CANCELLED,
        ],
        PaymentStatus.PROCESSING: [
            PaymentStatus.SUCCEEDED,
            PaymentStatus.FAILED,
            PaymentStatus.CANCELLED,
        ],
        # Поздний успех после повторного подтверждения
        PaymentStatus.FAILED: [PaymentStatus.SUCCEEDED],
        PaymentStatus.SUCCEEDED: [],
        PaymentStatus.CANCELLED: [],
    }

    # Платежи, блокирующие создание нового платежа по тому же заказу
    LIVE: tuple[PaymentStatus, ...] = (
        PaymentStatus.PENDING,
        PaymentStatus.PROCESSING,
        PaymentStatus.SUCCEEDED,
    )

    @staticmethod
    def can_transition(current_status: str, new_status: str) -> bool:
        try:
            curr = PaymentStatus(current_status)
            new = PaymentStatus(new_status)
        except ValueError:
            return False
        return new in PaymentStateMachine.ALLOWED_TRANSITIONS.get(curr, [])

    @staticmethod
    def predecessors(new_status: PaymentStatus) -> list[str]:
        """Статусы, из которых допустим переход в new_status."""
        return [
            str(status)
            for status, targets in PaymentStateMachine.ALLOWED_TRANSITIONS.items()
            if new_status in targets
        ]


class RefundStateMachine:
    ALLOWED_TRANSITIONS: dict[RefundStatus, list[RefundStatus]] = {
        RefundStatus.PENDING: [RefundStatus.PROCESSING, RefundStatus.SUCCEEDED, RefundStatus.FAILED],
        RefundStatus.PROCESSING: [RefundStatus.SUCCEEDED, RefundStatus.FAILED],
        RefundStatus.SUCCEEDED: [],
        RefundStatus.FAILED: [],
    }

    # Возвраты, занимающие бюджет платежа
    RESERVING: tuple[RefundStatus, ...] = (
        RefundStatus.PENDING,
        RefundStatus.PROCESSING,
        RefundStatus.SUCCEEDED,
    )

    @staticmethod
    def can_transition(current_status: str, new_status: str) -> bool:
        try:
            curr = RefundStatus(current_status)
            new = RefundStatus(new_status)
        except ValueError:
            return False
        return new in RefundStateMachine.ALLOWED_TRANSITIONS.get(curr, [])

    @staticmethod
    def predecessors(new_status: RefundStatus) -> list[str]:
        return [
            str(status)
            for status, targets in RefundStateMachine.ALLOWED_TRANSITIONS.items()
            if new_status in targets
        ]
