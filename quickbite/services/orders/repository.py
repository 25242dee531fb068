# quickbite/services/orders/repository.py
"""
Репозиторий заказов (PostgreSQL).
Таблицы: orders, order_items, order_status_history
"""

from __future__ import annotations

import uuid
from typing import Any, Callable

from asyncpg import Connection, Record

from quickbite.common.exceptions import NotFoundError
from quickbite.infra.database import DatabaseManager

# Колонки, которые разрешено менять через update_with_lock
UPDATABLE_COLUMNS = frozenset({
    "status",
    "driver_id",
    "estimated_delivery_time",
    "actual_delivery_time",
    "payment_status",
    "refund_amount",
    "notes",
})

# build(locked_row) -> (поля для записи, заметка в историю) или None, если менять нечего
UpdateBuilder = Callable[[dict[str, Any]], "tuple[dict[str, Any], str | None] | None"]


class OrderRepository:
    """Репозиторий заказов."""

    def __init__(self, db: DatabaseManager) -> None:
        self.db = db

    # =========================================================================
    # СОЗДАНИЕ
    # =========================================================================

    async def create_order(
        self,
        order: dict[str, Any],
        items: list[dict[str, Any]],
        note: str,
    ) -> str:
        """
        Создаёт заказ, позиции и первую запись истории в одной транзакции.
        Возвращает id заказа.
        """
        order_id = str(uuid.uuid4())
        async with self.db.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO orders (
                    id, order_number, customer_id, restaurant_id, status,
                    subtotal, delivery_fee, total_amount, payment_status, delivery_address
                )
                VALUES ($1::uuid, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                """,
                order_id,
                order["order_number"],
                order["customer_id"],
                order["restaurant_id"],
                str(order["status"]),
                order["subtotal"],
                order["delivery_fee"],
                order["total_amount"],
                str(order["payment_status"]),
                order["delivery_address"],
            )
            await conn.executemany(
                """
                INSERT INTO order_items (
                    id, order_id, menu_item_id, item_name, quantity, unit_price, total_price
                )
                VALUES ($1::uuid, $2::uuid, $3, $4, $5, $6, $7)
                """,
                [
                    (
                        str(uuid.uuid4()),
                        order_id,
                        item["menu_item_id"],
                        item["item_name"],
                        item["quantity"],
                        item["unit_price"],
                        item["total_price"],
                    )
                    for item in items
                ],
            )
            await self._add_history(conn, order_id, str(order["status"]), note)
        return order_id

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def get_order(self, order_id: str) -> Record | None:
        return await self.db.fetchrow("SELECT * FROM orders WHERE id = $1::uuid", order_id)

    async def get_order_items(self, order_id: str) -> list[Record]:
        return await self.db.fetch(
            "SELECT * FROM order_items WHERE order_id = $1::uuid ORDER BY item_name",
            order_id,
        )

    async def get_items_for_orders(self, order_ids: list[str]) -> list[Record]:
        """Позиции сразу для страницы заказов (без N+1)."""
        if not order_ids:
            return []
        return await self.db.fetch(
            "SELECT * FROM order_items WHERE order_id = ANY($1::uuid[]) ORDER BY item_name",
            order_ids,
        )

    async def get_history(self, order_id: str) -> list[Record]:
        return await self.db.fetch(
            "SELECT * FROM order_status_history WHERE order_id = $1::uuid ORDER BY created_at",
            order_id,
        )

    async def get_orders_by_customer(self, customer_id: str, limit: int, offset: int) -> list[Record]:
        return await self.db.fetch(
            """
            SELECT * FROM orders
            WHERE customer_id = $1
            ORDER BY created_at DESC
            LIMIT $2 OFFSET $3
            """,
            customer_id, limit, offset,
        )

    async def count_orders_by_customer(self, customer_id: str) -> int:
        return await self.db.fetchval("SELECT COUNT(*) FROM orders WHERE customer_id = $1", customer_id)

    async def get_orders_by_restaurant(
        self,
        restaurant_id: str,
        status: str | None,
        limit: int,
        offset: int,
    ) -> list[Record]:
        return await self.db.fetch(
            """
            SELECT * FROM orders
            WHERE restaurant_id = $1 AND ($2::text IS NULL OR status = $2)
            ORDER BY created_at DESC
            LIMIT $3 OFFSET $4
            """,
            restaurant_id, status, limit, offset,
        )

    async def count_orders_by_restaurant(self, restaurant_id: str, status: str | None) -> int:
        return await self.db.fetchval(
            "SELECT COUNT(*) FROM orders WHERE restaurant_id = $1 AND ($2::text IS NULL OR status = $2)",
            restaurant_id, status,
        )

    async def get_available_orders(self, statuses: list[str]) -> list[Record]:
        """Заказы без водителя в указанных статусах, старые первыми."""
        return await self.db.fetch(
            """
            SELECT * FROM orders
            WHERE driver_id IS NULL AND status = ANY($1::text[])
            ORDER BY created_at
            """,
            statuses,
        )

    async def get_status_counts(self, restaurant_id: str | None = None) -> list[Record]:
        return await self.db.fetch(
            """
            SELECT status, COUNT(*) AS count FROM orders
            WHERE $1::text IS NULL OR restaurant_id = $1
            GROUP BY status
            """,
            restaurant_id,
        )

    # =========================================================================
    # ИЗМЕНЕНИЕ
    # =========================================================================

    async def update_with_lock(
        self,
        order_id: str,
        build: UpdateBuilder,
    ) -> tuple[dict[str, Any], Record]:
        """
        Блокирует строку заказа, вычисляет изменения через build() и
        записывает их вместе со строкой истории в одной транзакции.

        Исключение из build() откатывает транзакцию.

        Returns:
            (строка до изменения, строка после изменения)
        """
        async with self.db.transaction() as conn:
            row = await conn.fetchrow("SELECT * FROM orders WHERE id = $1::uuid FOR UPDATE", order_id)
            if row is None:
                raise NotFoundError(f"Order {order_id} not found")

            before = dict(row)
            change = build(before)
            if change is None:
                return before, row

            fields, note = change
            unknown = set(fields) - UPDATABLE_COLUMNS
            if unknown:
                raise ValueError(f"Cannot update columns: {sorted(unknown)}")

            if not fields:
                # Только заметка в истории
                await self._add_history(conn, order_id, before["status"], note)
                return before, row

            values = [str(v) if k in ("status", "payment_status") else v for k, v in fields.items()]
            assignments = ", ".join(f"{col} = ${i}" for i, col in enumerate(fields, start=2))
            updated = await conn.fetchrow(
                f"UPDATE orders SET {assignments}, updated_at = NOW() WHERE id = $1::uuid RETURNING *",
                order_id,
                *values,
            )
            await self._add_history(conn, order_id, str(fields.get("status", before["status"])), note)
            return before, updated

    async def assign_driver(
        self,
        order_id: str,
        driver_id: str,
        assignable: list[str],
        eta: Any,
        note: str,
    ) -> Record | None:
        """
        Назначает водителя одним условным UPDATE.
        Заказ в статусе pending переводится в confirmed, остальные статусы сохраняются.

        Returns:
            Обновлённая строка или None, если условие не выполнено
        """
        async with self.db.transaction() as conn:
            row = await conn.fetchrow(
                """
                UPDATE orders
                SET driver_id = $2,
                    status = CASE WHEN status = 'pending' THEN 'confirmed' ELSE status END,
                    estimated_delivery_time = $3,
                    updated_at = NOW()
                WHERE id = $1::uuid
                  AND driver_id IS NULL
                  AND status = ANY($4::text[])
                RETURNING *
                """,
                order_id, driver_id, eta, assignable,
            )
            if row is not None:
                await self._add_history(conn, order_id, row["status"], note)
            return row

    async def _add_history(self, conn: Connection, order_id: str, status: str, note: str | None) -> None:
        await conn.execute(
            """
            INSERT INTO order_status_history (id, order_id, status, notes)
            VALUES ($1::uuid, $2::uuid, $3, $4)
            """,
            str(uuid.uuid4()), order_id, status, note,
        )
