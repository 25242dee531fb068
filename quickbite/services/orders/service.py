# quickbite/services/orders/service.py
"""
Бизнес-логика заказов (Order Ledger).

Ответственности:
- создание заказа со снимком цен из каталога
- переходы статусов по белому списку под блокировкой строки
- эксклюзивное назначение водителя
- статус оплаты и накопленная сумма возвратов, которые сообщает сервис платежей
"""

from __future__ import annotations

import asyncio
import secrets
import string
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import httpx
from redis.exceptions import RedisError

from quickbite.common.constants import (
    ORDER_CACHE_KEY,
    ORDER_NUMBER_PREFIX,
    ORDER_NUMBER_SUFFIX_LENGTH,
    TypeMsg,
)
from quickbite.common.exceptions import ConflictError, NotFoundError, UpstreamError, ValidationError
from quickbite.common.logger import log_error, log_info, log_warning
from quickbite.common.money import ZERO, sanitize_amount
from quickbite.services.orders.state_machine import OrderPaymentStateMachine, OrderStateMachine
from quickbite.shared.events.order_events import (
    DriverAssigned,
    OrderCancelled,
    OrderCreated,
    OrderStatusChanged,
)
from quickbite.shared.models.common import PaginatedResponse, PaginationParams
from quickbite.shared.models.enums import (
    OrderPaymentStatus,
    OrderStatus,
    PaymentEvent,
    RefundReason,
)
from quickbite.shared.models.order import (
    CatalogItem,
    CreateOrderRequest,
    DriverAssignmentResult,
    OrderDTO,
    OrderItemDTO,
    OrderStats,
    OrderStatusHistoryDTO,
    UpdateOrderStatusRequest,
)

if TYPE_CHECKING:
    from asyncpg import Record

    from quickbite.infra.event_bus import EventBus
    from quickbite.infra.redis_client import RedisClient
    from quickbite.services.orders.clients import (
        CatalogClient,
        PaymentsClient,
        RestaurantClient,
        UsersClient,
    )
    from quickbite.services.orders.repository import OrderRepository


_ORDER_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits

_PAYMENT_EVENT_TO_STATUS = {
    PaymentEvent.PENDING: OrderPaymentStatus.PENDING,
    PaymentEvent.PAID: OrderPaymentStatus.PAID,
    PaymentEvent.FAILED: OrderPaymentStatus.FAILED,
    PaymentEvent.REFUNDED: OrderPaymentStatus.REFUNDED,
}


def generate_order_number(now_ms: int | None = None) -> str:
    """ORD + последние 8 цифр времени в миллисекундах + 4 случайных символа."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_ORDER_SUFFIX_ALPHABET) for _ in range(ORDER_NUMBER_SUFFIX_LENGTH))
    return f"{ORDER_NUMBER_PREFIX}{str(now_ms)[-8:]}{suffix}"


class OrderService:
    """Сервис управления заказами."""

    def __init__(
        self,
        repository: "OrderRepository",
        event_bus: "EventBus",
        catalog: "CatalogClient",
        users: "UsersClient",
        restaurants: "RestaurantClient",
        payments: "PaymentsClient",
        redis: "RedisClient | None" = None,
        cache_ttl: int = 300,
        driver_eta_minutes: int = 15,
    ) -> None:
        self.repository = repository
        self.event_bus = event_bus
        self.catalog = catalog
        self.users = users
        self.restaurants = restaurants
        self.payments = payments
        self.redis = redis
        self.cache_ttl = cache_ttl
        self.driver_eta_minutes = driver_eta_minutes

    # =========================================================================
    # СОЗДАНИЕ
    # =========================================================================

    async def create_order(self, request: CreateOrderRequest) -> OrderDTO:
        """
        Создать заказ.

        1. Параллельно получает позиции из каталога (ошибка любой отменяет заказ)
        2. Считает subtotal и total
        3. Одной транзакцией пишет заказ, позиции и историю
        4. Публикует событие order.created
        """
        if not request.delivery_address.strip():
            raise ValidationError("Delivery address is required")
        delivery_fee = sanitize_amount(request.delivery_fee)
        if delivery_fee < ZERO:
            raise ValidationError("Delivery fee cannot be negative")

        catalog_items: list[CatalogItem] = await asyncio.gather(
            *(self.catalog.get_menu_item(item.menu_item_id) for item in request.items)
        )

        items: list[dict[str, Any]] = []
        subtotal = ZERO
        for requested, snapshot in zip(request.items, catalog_items):
            unit_price = sanitize_amount(snapshot.price)
            total_price = unit_price * requested.quantity
            subtotal += total_price
            items.append({
                "menu_item_id": requested.menu_item_id,
                "item_name": snapshot.name,
                "quantity": requested.quantity,
                "unit_price": unit_price,
                "total_price": total_price,
            })

        order_number = generate_order_number()
        order_id = await self.repository.create_order(
            {
                "order_number": order_number,
                "customer_id": request.customer_id,
                "restaurant_id": request.restaurant_id,
                "status": OrderStatus.PENDING,
                "subtotal": subtotal,
                "delivery_fee": delivery_fee,
                "total_amount": subtotal + delivery_fee,
                "payment_status": OrderPaymentStatus.PENDING,
                "delivery_address": request.delivery_address.strip(),
            },
            items,
            note="Order created",
        )

        await log_info(
            f"Заказ {order_number} создан: {len(items)} поз., сумма {subtotal + delivery_fee}",
            type_msg=TypeMsg.INFO,
            extra={"order_id": order_id},
        )

        await self.event_bus.publish(OrderCreated(
            order_id=order_id,
            order_number=order_number,
            customer_id=request.customer_id,
            restaurant_id=request.restaurant_id,
            total_amount=subtotal + delivery_fee,
        ))

        return await self.get_order(order_id)

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def get_order(self, order_id: str) -> OrderDTO:
        cached = await self._cache_get(order_id)
        if cached is not None:
            return cached

        row = await self.repository.get_order(order_id)
        if row is None:
            raise NotFoundError(f"Order {order_id} not found")
        items = await self.repository.get_order_items(order_id)
        order = self._map_order(row, items)

        await self._cache_set(order)
        return order

    async def get_order_history(self, order_id: str) -> list[OrderStatusHistoryDTO]:
        """История статусов заказа в порядке записи."""
        if await self.repository.get_order(order_id) is None:
            raise NotFoundError(f"Order {order_id} not found")
        rows = await self.repository.get_history(order_id)
        return [
            OrderStatusHistoryDTO(
                id=str(row["id"]),
                order_id=str(row["order_id"]),
                status=row["status"],
                notes=row["notes"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    async def get_orders_by_customer(
        self,
        customer_id: str,
        pagination: PaginationParams,
    ) -> PaginatedResponse[OrderDTO]:
        rows = await self.repository.get_orders_by_customer(customer_id, pagination.limit, pagination.offset)
        total = await self.repository.count_orders_by_customer(customer_id)
        return PaginatedResponse[OrderDTO].create(await self._map_page(rows), total, pagination)

    async def get_orders_by_restaurant(
        self,
        restaurant_id: str,
        pagination: PaginationParams,
        status: OrderStatus | None = None,
    ) -> PaginatedResponse[OrderDTO]:
        status_value = str(status) if status else None
        rows = await self.repository.get_orders_by_restaurant(
            restaurant_id, status_value, pagination.limit, pagination.offset
        )
        total = await self.repository.count_orders_by_restaurant(restaurant_id, status_value)
        return PaginatedResponse[OrderDTO].create(await self._map_page(rows), total, pagination)

    async def get_available_orders(self) -> list[OrderDTO]:
        """Заказы, готовящиеся или готовые, без водителя."""
        rows = await self.repository.get_available_orders(
            [str(OrderStatus.PREPARING), str(OrderStatus.READY)]
        )
        return await self._map_page(rows)

    async def get_order_stats(self, restaurant_id: str | None = None) -> OrderStats:
        rows = await self.repository.get_status_counts(restaurant_id)
        by_status = {str(status): 0 for status in OrderStatus}
        total = 0
        for row in rows:
            by_status[row["status"]] = int(row["count"])
            total += int(row["count"])
        return OrderStats(restaurant_id=restaurant_id, total=total, by_status=by_status)

    # =========================================================================
    # СТАТУСЫ
    # =========================================================================

    async def update_order_status(self, order_id: str, request: UpdateOrderStatusRequest) -> OrderDTO:
        """
        Сменить статус заказа.
        Переход проверяется под блокировкой строки, история пишется в той же транзакции.
        """
        def build(current: dict[str, Any]) -> tuple[dict[str, Any], str | None]:
            OrderStateMachine.ensure_transition(current["status"], request.status)

            fields: dict[str, Any] = {"status": request.status}
            if request.driver_id is not None:
                fields["driver_id"] = request.driver_id
            if request.estimated_delivery_minutes is not None:
                fields["estimated_delivery_time"] = _utcnow() + timedelta(minutes=request.estimated_delivery_minutes)
            if request.actual_delivery_time is not None:
                fields["actual_delivery_time"] = request.actual_delivery_time
            elif request.status == OrderStatus.DELIVERED and current["status"] != OrderStatus.DELIVERED:
                fields["actual_delivery_time"] = _utcnow()
            if request.payment_status is not None:
                OrderPaymentStateMachine.ensure_transition(current["payment_status"], request.payment_status)
                fields["payment_status"] = request.payment_status
            if request.notes is not None:
                fields["notes"] = request.notes
            return fields, request.notes

        before, updated = await self.repository.update_with_lock(order_id, build)
        await self._invalidate(order_id)

        await log_info(
            f"Заказ {order_id}: {before['status']} → {request.status}",
            type_msg=TypeMsg.INFO,
        )
        await self.event_bus.publish(OrderStatusChanged(
            order_id=order_id,
            old_status=str(before["status"]),
            new_status=str(request.status),
            driver_id=updated["driver_id"],
            notes=request.notes,
        ))
        return await self.get_order(order_id)

    async def assign_driver(self, order_id: str, driver_id: str) -> DriverAssignmentResult:
        """
        Водитель принимает заказ.
        Один условный UPDATE: из двух одновременных попыток побеждает ровно одна.
        """
        eta = _utcnow() + timedelta(minutes=self.driver_eta_minutes)
        row = await self.repository.assign_driver(
            order_id,
            driver_id,
            [str(s) for s in OrderStateMachine.ASSIGNABLE],
            eta,
            note=f"Assigned to driver {driver_id}",
        )
        if row is None:
            existing = await self.repository.get_order(order_id)
            if existing is None:
                raise NotFoundError(f"Order {order_id} not found")
            if existing["driver_id"] is not None:
                raise ConflictError(
                    f"Order {order_id} already has a driver assigned",
                    {"driver_id": existing["driver_id"]},
                )
            raise ConflictError(
                f"Order {order_id} cannot be assigned in status {existing['status']}",
                {"status": existing["status"]},
            )

        await self._invalidate(order_id)
        await log_info(f"Водитель {driver_id} назначен на заказ {order_id}", type_msg=TypeMsg.INFO)
        await self.event_bus.publish(DriverAssigned(order_id=order_id, driver_id=driver_id, status=row["status"]))

        order = await self.get_order(order_id)
        customer, driver, restaurant = await asyncio.gather(
            self._fetch_best_effort(self.users.get_user, order.customer_id, "customer"),
            self._fetch_best_effort(self.users.get_user, driver_id, "driver"),
            self._fetch_best_effort(self.restaurants.get_restaurant, order.restaurant_id, "restaurant"),
        )
        return DriverAssignmentResult(
            order=order,
            customer_email=customer.get("email"),
            customer_name=customer.get("fullName") or customer.get("full_name"),
            driver_name=driver.get("fullName") or driver.get("full_name"),
            restaurant_email=restaurant.get("email"),
            restaurant_name=restaurant.get("name"),
            estimated_arrival=eta.strftime("%H:%M"),
        )

    async def cancel_order(self, order_id: str, reason: str | None = None) -> OrderDTO:
        """
        Отменить заказ.
        Оплаченный заказ сохраняет статус paid до прихода возврата,
        возврат запрашивается у сервиса платежей после коммита.
        """
        note = reason or "Order cancelled"

        def build(current: dict[str, Any]) -> tuple[dict[str, Any], str | None]:
            OrderStateMachine.ensure_transition(current["status"], OrderStatus.CANCELLED)
            fields: dict[str, Any] = {"status": OrderStatus.CANCELLED, "notes": note}
            if current["payment_status"] != OrderPaymentStatus.PAID:
                fields["payment_status"] = OrderPaymentStatus.FAILED
            return fields, note

        before, updated = await self.repository.update_with_lock(order_id, build)
        await self._invalidate(order_id)

        await log_info(f"Заказ {order_id} отменён: {note}", type_msg=TypeMsg.INFO)
        await self.event_bus.publish(OrderCancelled(
            order_id=order_id,
            reason=note,
            payment_status=str(updated["payment_status"]),
        ))

        if before["payment_status"] == OrderPaymentStatus.PAID:
            try:
                await self.payments.request_automatic_refund(order_id, str(RefundReason.RESTAURANT_CANCELLED))
            except (UpstreamError, NotFoundError, httpx.HTTPError) as e:
                await log_warning(f"Автовозврат по заказу {order_id} не запрошен: {e}")

        return await self.get_order(order_id)

    # =========================================================================
    # ОПЛАТА И ВОЗВРАТЫ (вызываются сервисом платежей)
    # =========================================================================

    async def update_payment_status(self, order_id: str, event: PaymentEvent, timestamp: datetime) -> OrderDTO:
        """Узкий сеттер статуса оплаты. Повтор текущего значения ничего не меняет."""
        new_status = _PAYMENT_EVENT_TO_STATUS[event]

        def build(current: dict[str, Any]) -> tuple[dict[str, Any], str | None] | None:
            if OrderPaymentStateMachine.is_noop(current["payment_status"], new_status):
                return None
            OrderPaymentStateMachine.ensure_transition(current["payment_status"], new_status)
            return {"payment_status": new_status}, f"Payment {event}"

        before, updated = await self.repository.update_with_lock(order_id, build)
        if before["payment_status"] != updated["payment_status"]:
            await self._invalidate(order_id)
            await log_info(
                f"Заказ {order_id}: оплата {before['payment_status']} → {new_status} ({timestamp.isoformat()})",
                type_msg=TypeMsg.INFO,
            )
        return await self.get_order(order_id)

    async def update_refund_status(
        self,
        order_id: str,
        event: PaymentEvent,
        amount: Decimal | None,
        timestamp: datetime,
    ) -> OrderDTO:
        """
        Узкий сеттер возвратов.
        amount — накопленная сумма успешных возвратов, записывается как есть,
        поэтому повторная доставка уведомления идемпотентна.
        """
        refund_total = sanitize_amount(amount) if amount is not None else None
        if event == PaymentEvent.REFUNDED and (refund_total is None or refund_total <= ZERO):
            raise ValidationError("Refunded event requires a positive cumulative amount")

        def build(current: dict[str, Any]) -> tuple[dict[str, Any], str | None] | None:
            total = current["total_amount"]
            if refund_total is not None and refund_total > total:
                raise ValidationError(
                    "Refund amount exceeds order total",
                    {"amount": str(refund_total), "total_amount": str(total)},
                )

            fields: dict[str, Any] = {}
            if event == PaymentEvent.FAILED:
                return {}, "Refund failed"

            if refund_total is not None:
                fields["refund_amount"] = refund_total

            if event == PaymentEvent.REFUNDED:
                fully = refund_total == total
                fields["payment_status"] = (
                    OrderPaymentStatus.REFUNDED if fully else OrderPaymentStatus.PARTIALLY_REFUNDED
                )
                if fully and current["status"] in (OrderStatus.DELIVERED, OrderStatus.CANCELLED):
                    fields["status"] = OrderStatus.REFUNDED
            elif event == PaymentEvent.PENDING:
                if current["payment_status"] not in (
                    OrderPaymentStatus.REFUNDED,
                    OrderPaymentStatus.PARTIALLY_REFUNDED,
                ):
                    fields["payment_status"] = OrderPaymentStatus.REFUND_PENDING
            else:
                raise ConflictError(f"Unsupported refund event: {event}")

            unchanged = all(current.get(k) == v for k, v in fields.items())
            if unchanged:
                return None
            return fields, f"Refund {event}: {refund_total if refund_total is not None else '-'}"

        before, updated = await self.repository.update_with_lock(order_id, build)
        await self._invalidate(order_id)
        await log_info(
            f"Заказ {order_id}: возврат {event}, накоплено {updated['refund_amount']} ({timestamp.isoformat()})",
            type_msg=TypeMsg.INFO,
        )
        if before["status"] != updated["status"]:
            await self.event_bus.publish(OrderStatusChanged(
                order_id=order_id,
                old_status=str(before["status"]),
                new_status=str(updated["status"]),
                notes="Order fully refunded",
            ))
        return await self.get_order(order_id)

    # =========================================================================
    # ВСПОМОГАТЕЛЬНЫЕ
    # =========================================================================

    async def _fetch_best_effort(self, fetch, entity_id: str, label: str) -> dict[str, Any]:
        """Обогащение ответа: ошибка только логируется."""
        try:
            return await fetch(entity_id) or {}
        except (UpstreamError, NotFoundError, httpx.HTTPError) as e:
            await log_warning(f"Не удалось получить данные {label} {entity_id}: {e}")
            return {}

    async def _map_page(self, rows: list["Record"]) -> list[OrderDTO]:
        order_ids = [str(row["id"]) for row in rows]
        items = await self.repository.get_items_for_orders(order_ids)
        by_order: dict[str, list] = {order_id: [] for order_id in order_ids}
        for item in items:
            by_order.setdefault(str(item["order_id"]), []).append(item)
        return [self._map_order(row, by_order[str(row["id"])]) for row in rows]

    def _map_order(self, row: "Record | dict", items: list) -> OrderDTO:
        return OrderDTO(
            id=str(row["id"]),
            order_number=row["order_number"],
            customer_id=row["customer_id"],
            restaurant_id=row["restaurant_id"],
            driver_id=row["driver_id"],
            status=row["status"],
            subtotal=row["subtotal"],
            delivery_fee=row["delivery_fee"],
            total_amount=row["total_amount"],
            refund_amount=row["refund_amount"],
            payment_status=row["payment_status"],
            delivery_address=row["delivery_address"],
            estimated_delivery_time=row["estimated_delivery_time"],
            actual_delivery_time=row["actual_delivery_time"],
            notes=row["notes"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            items=[
                OrderItemDTO(
                    id=str(item["id"]),
                    order_id=str(item["order_id"]),
                    menu_item_id=item["menu_item_id"],
                    item_name=item["item_name"],
                    quantity=item["quantity"],
                    unit_price=item["unit_price"],
                    total_price=item["total_price"],
                )
                for item in items
            ],
        )

    # === КЭШ ===

    async def _cache_get(self, order_id: str) -> OrderDTO | None:
        if self.redis is None:
            return None
        try:
            return await self.redis.get_model(ORDER_CACHE_KEY.format(order_id=order_id), OrderDTO)
        except RedisError as e:
            await log_warning(f"Кэш заказа {order_id} недоступен: {e}")
            return None

    async def _cache_set(self, order: OrderDTO) -> None:
        if self.redis is None:
            return
        try:
            await self.redis.set_model(ORDER_CACHE_KEY.format(order_id=order.id), order, ttl=self.cache_ttl)
        except RedisError as e:
            await log_warning(f"Не удалось закэшировать заказ {order.id}: {e}")

    async def _invalidate(self, order_id: str) -> None:
        if self.redis is None:
            return
        try:
            await self.redis.delete(ORDER_CACHE_KEY.format(order_id=order_id))
        except RedisError as e:
            await log_error(f"Не удалось инвалидировать кэш заказа {order_id}: {e}")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)
