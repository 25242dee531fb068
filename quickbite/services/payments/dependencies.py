# quickbite/services/payments/dependencies.py
"""
Dependency Injection для Payments Service.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from quickbite.infra.database import DatabaseManager
    from quickbite.infra.event_bus import EventBus
    from quickbite.services.payments.clients import NotificationClient, OrderServiceClient, UsersClient
    from quickbite.services.payments.payout_service import PayoutService
    from quickbite.services.payments.refund_service import RefundService
    from quickbite.services.payments.service import PaymentService
    from quickbite.services.payments.stripe_gateway import StripeGateway
    from quickbite.services.payments.webhooks import WebhookReconciler


# Синглтоны для инфраструктуры
_db: "DatabaseManager | None" = None
_event_bus: "EventBus | None" = None
_gateway: "StripeGateway | None" = None

# HTTP-клиенты коллабораторов
_orders: "OrderServiceClient | None" = None
_notifications: "NotificationClient | None" = None
_users: "UsersClient | None" = None

_payment_service: "PaymentService | None" = None
_refund_service: "RefundService | None" = None
_payout_service: "PayoutService | None" = None
_webhook_reconciler: "WebhookReconciler | None" = None


async def init_dependencies(db: "DatabaseManager", event_bus: "EventBus") -> None:
    """Инициализировать зависимости при старте приложения."""
    from quickbite.config import settings
    from quickbite.services.payments.clients import NotificationClient, OrderServiceClient, UsersClient
    from quickbite.services.payments.stripe_gateway import StripeGateway

    global _db, _event_bus, _gateway, _orders, _notifications, _users
    _db = db
    _event_bus = event_bus
    _gateway = StripeGateway(
        api_key=settings.stripe.STRIPE_SECRET_KEY,
        webhook_secret=settings.stripe.STRIPE_WEBHOOK_SECRET,
        timeout=settings.stripe.STRIPE_TIMEOUT,
        max_network_retries=settings.stripe.STRIPE_MAX_NETWORK_RETRIES,
    )
    _orders = OrderServiceClient(settings.services.ORDER_SERVICE_URL)
    _notifications = NotificationClient(settings.services.NOTIFICATION_SERVICE_URL)
    _users = UsersClient(settings.services.USER_SERVICE_URL)


def get_db() -> "DatabaseManager":
    """Получить менеджер базы данных."""
    if _db is None:
        raise RuntimeError("База данных не инициализирована. Вызовите init_dependencies()")
    return _db


def get_event_bus() -> "EventBus":
    """Получить шину событий."""
    if _event_bus is None:
        raise RuntimeError("EventBus не инициализирован. Вызовите init_dependencies()")
    return _event_bus


def get_gateway() -> "StripeGateway":
    """Получить шлюз провайдера."""
    if _gateway is None:
        raise RuntimeError("StripeGateway не инициализирован. Вызовите init_dependencies()")
    return _gateway


def _get_orders_client() -> "OrderServiceClient":
    if _orders is None:
        raise RuntimeError("HTTP-клиенты не инициализированы. Вызовите init_dependencies()")
    return _orders


def get_payment_service() -> "PaymentService":
    """Получить сервис платежей."""
    global _payment_service

    if _payment_service is None:
        from quickbite.config import settings
        from quickbite.services.payments.repository import PaymentRepository
        from quickbite.services.payments.service import PaymentService

        _payment_service = PaymentService(
            repository=PaymentRepository(get_db()),
            gateway=get_gateway(),
            orders=_get_orders_client(),
            event_bus=get_event_bus(),
            supported_currencies=settings.payments.SUPPORTED_CURRENCIES,
            checkout_success_url=settings.stripe.CHECKOUT_SUCCESS_URL,
            checkout_cancel_url=settings.stripe.CHECKOUT_CANCEL_URL,
            checkout_expires_minutes=settings.stripe.CHECKOUT_EXPIRES_MINUTES,
        )

    return _payment_service


def get_refund_service() -> "RefundService":
    """Получить сервис возвратов."""
    global _refund_service

    if _refund_service is None:
        from quickbite.services.payments.refund_service import RefundService
        from quickbite.services.payments.repository import PaymentRepository, RefundRepository

        if _notifications is None or _users is None:
            raise RuntimeError("HTTP-клиенты не инициализированы. Вызовите init_dependencies()")

        db = get_db()
        _refund_service = RefundService(
            refunds=RefundRepository(db),
            payments=PaymentRepository(db),
            gateway=get_gateway(),
            orders=_get_orders_client(),
            notifications=_notifications,
            users=_users,
            event_bus=get_event_bus(),
        )

    return _refund_service


def get_payout_service() -> "PayoutService":
    """Получить сервис выплат."""
    global _payout_service

    if _payout_service is None:
        from quickbite.config import settings
        from quickbite.services.payments.payout_service import PayoutService
        from quickbite.services.payments.repository import PayoutRepository

        _payout_service = PayoutService(
            repository=PayoutRepository(get_db()),
            gateway=get_gateway(),
            event_bus=get_event_bus(),
            currency=settings.payments.DEFAULT_CURRENCY,
        )

    return _payout_service


def get_webhook_reconciler() -> "WebhookReconciler":
    """Получить обработчик вебхуков."""
    global _webhook_reconciler

    if _webhook_reconciler is None:
        from quickbite.services.payments.webhooks import WebhookReconciler

        _webhook_reconciler = WebhookReconciler(
            gateway=get_gateway(),
            payments=get_payment_service(),
            refunds=get_refund_service(),
            payouts=get_payout_service(),
        )

    return _webhook_reconciler


async def cleanup_dependencies() -> None:
    """Очистить ресурсы при остановке приложения."""
    global _payment_service, _refund_service, _payout_service, _webhook_reconciler
    global _orders, _notifications, _users, _gateway
    for client in (_orders, _notifications, _users):
        if client is not None:
            await client.close()
    _payment_service = _refund_service = _payout_service = _webhook_reconciler = None
    _orders = _notifications = _users = None
    _gateway = None
