# quickbite/services/orders/clients.py
"""
HTTP-клиенты сервисов, с которыми работает сервис заказов:
каталог ресторанов, пользователи и платежи.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from quickbite.common.exceptions import NotFoundError, UpstreamError
from quickbite.infra.http_client import BaseClient
from quickbite.shared.clients import UsersClient, unwrap_envelope
from quickbite.shared.models.order import CatalogItem

__all__ = ["CatalogClient", "RestaurantClient", "PaymentsClient", "UsersClient"]


class CatalogClient(BaseClient):
    """Каталог меню ресторанов."""

    async def get_menu_item(self, menu_item_id: str) -> CatalogItem:
        try:
            body = await self._get(f"/api/menus/items/{menu_item_id}")
        except NotFoundError as e:
            raise NotFoundError(f"Menu item {menu_item_id} not found", {"menu_item_id": menu_item_id}) from e
        item = unwrap_envelope(body, "item")
        try:
            return CatalogItem(
                menu_item_id=menu_item_id,
                name=item["name"],
                price=Decimal(str(item["price"])),
            )
        except (KeyError, ArithmeticError) as e:
            raise UpstreamError(f"Malformed catalog response for menu item {menu_item_id}") from e


class RestaurantClient(BaseClient):
    """Профили ресторанов."""

    async def get_restaurant(self, restaurant_id: str) -> dict[str, Any]:
        body = await self._get(f"/api/restaurant/{restaurant_id}")
        return unwrap_envelope(body, "restaurant")


class PaymentsClient(BaseClient):
    """Сервис платежей (автоматический возврат при отмене)."""

    async def request_automatic_refund(self, order_id: str, reason: str) -> Any:
        return await self._post("/api/refunds/auto", json={"order_id": order_id, "reason": reason})
