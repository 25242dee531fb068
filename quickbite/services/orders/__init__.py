# quickbite/services/orders/__init__.py
"""
Orders Service: учёт заказов, их статусов и оплаты.
"""

from quickbite.services.orders.service import OrderService
from quickbite.services.orders.state_machine import OrderPaymentStateMachine, OrderStateMachine

__all__ = ["OrderService", "OrderStateMachine", "OrderPaymentStateMachine"]
