# quickbite/services/payments/clients.py
"""
HTTP-клиенты сервисов, с которыми работает сервис платежей:
заказы, уведомления и пользователи.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from quickbite.common.exceptions import UpstreamError
from quickbite.infra.http_client import BaseClient
from quickbite.shared.clients import UsersClient, unwrap_envelope
from quickbite.shared.models.enums import PaymentEvent
from quickbite.shared.models.payment import OrderSnapshot

__all__ = ["OrderServiceClient", "NotificationClient", "UsersClient"]


class OrderServiceClient(BaseClient):
    """Сервис заказов (Order Ledger)."""

    async def get_order(self, order_id: str) -> OrderSnapshot:
        """Raises NotFoundError, если заказа нет."""
        body = await self._get(f"/api/orders/{order_id}")
        try:
            return OrderSnapshot.model_validate(unwrap_envelope(body, "order"))
        except PydanticValidationError as e:
            raise UpstreamError(f"Malformed order response for {order_id}") from e

    async def notify_payment_status(self, order_id: str, event: PaymentEvent) -> Any:
        return await self._put(
            f"/api/orders/{order_id}/payment-status",
            json={"event": str(event), "timestamp": datetime.now(timezone.utc).isoformat()},
        )

    async def notify_refund_status(self, order_id: str, event: PaymentEvent, amount: Decimal) -> Any:
        return await self._put(
            f"/api/orders/{order_id}/refund-status",
            json={
                "event": str(event),
                "amount": str(amount),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )


class NotificationClient(BaseClient):
    """Сервис уведомлений."""

    async def send(self, notification_type: str, user_id: str, data: dict[str, Any]) -> Any:
        return await self._post(
            "/api/notifications",
            json={"type": notification_type, "user_id": user_id, "data": data},
        )
