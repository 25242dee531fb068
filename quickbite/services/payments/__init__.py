# quickbite/services/payments/__init__.py
"""
Payments Service: платежи, возвраты, выплаты и сверка по вебхукам.
"""

from quickbite.services.payments.payout_service import PayoutService
from quickbite.services.payments.refund_service import RefundService
from quickbite.services.payments.service import PaymentService
from quickbite.services.payments.state_machine import PaymentStateMachine, RefundStateMachine
from quickbite.services.payments.webhooks import WebhookReconciler

__all__ = [
    "PaymentService",
    "RefundService",
    "PayoutService",
    "WebhookReconciler",
    "PaymentStateMachine",
    "RefundStateMachine",
]
