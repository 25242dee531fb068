# quickbite/services/payments/repository.py
"""
Репозитории сервиса платежей (PostgreSQL).
Таблицы: payments, refunds, driver_earnings, restaurant_settlements
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

import asyncpg
from asyncpg import Record

from quickbite.common.exceptions import ConflictError, InvalidStateError, NotFoundError
from quickbite.infra.database import DatabaseManager


class PaymentRepository:
    """Репозиторий платежей."""

    def __init__(self, db: DatabaseManager) -> None:
        self.db = db

    async def create_payment(self, payment: dict[str, Any]) -> Record:
        """
        Создать платёж в статусе pending.
        Частичный уникальный индекс не даёт завести второй живой платёж по заказу.
        """
        try:
            return await self.db.fetchrow(
                """
                INSERT INTO payments (
                    id, order_id, user_id, restaurant_id, amount, currency,
                    method, status, metadata
                )
                VALUES ($1::uuid, $2::uuid, $3, $4, $5, $6, $7, 'pending', $8::jsonb)
                RETURNING *
                """,
                payment["id"],
                payment["order_id"],
                payment["user_id"],
                payment.get("restaurant_id"),
                payment["amount"],
                payment["currency"],
                str(payment["method"]),
                payment.get("metadata") or {},
            )
        except asyncpg.UniqueViolationError as e:
            raise ConflictError(
                f"Order {payment['order_id']} already has an active payment",
                {"order_id": payment["order_id"]},
            ) from e

    async def attach_provider_refs(
        self,
        payment_id: str,
        intent_id: str | None = None,
        session_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Record | None:
        """Записывает идентификаторы провайдера, не затирая уже известные."""
        return await self.db.fetchrow(
            """
            UPDATE payments
            SET provider_intent_id = COALESCE(provider_intent_id, $2),
                checkout_session_id = COALESCE(checkout_session_id, $3),
                metadata = metadata || COALESCE($4::jsonb, '{}'::jsonb),
                updated_at = NOW()
            WHERE id = $1::uuid
            RETURNING *
            """,
            payment_id, intent_id, session_id, metadata,
        )

    async def delete_payment(self, payment_id: str) -> None:
        """Удаляет платёж, который так и не был создан у провайдера."""
        await self.db.execute(
            "DELETE FROM payments WHERE id = $1::uuid AND status = 'pending' AND provider_intent_id IS NULL "
            "AND checkout_session_id IS NULL",
            payment_id,
        )

    async def get_payment(self, payment_id: str) -> Record | None:
        return await self.db.fetchrow("SELECT * FROM payments WHERE id = $1::uuid", payment_id)

    async def get_by_intent_id(self, intent_id: str) -> Record | None:
        return await self.db.fetchrow("SELECT * FROM payments WHERE provider_intent_id = $1", intent_id)

    async def get_unlinked_payment(self, payment_id: str) -> Record | None:
        """Платёж по локальному id из метаданных провайдера, ещё без intent id."""
        return await self.db.fetchrow(
            "SELECT * FROM payments WHERE id = $1::uuid AND provider_intent_id IS NULL",
            payment_id,
        )

    async def get_by_session_id(self, session_id: str) -> Record | None:
        return await self.db.fetchrow("SELECT * FROM payments WHERE checkout_session_id = $1", session_id)

    async def get_payment_without_session(self, payment_id: str) -> Record | None:
        """Платёж по локальному id, ещё без checkout session (сессии платёжной ссылки)."""
        return await self.db.fetchrow(
            "SELECT * FROM payments WHERE id = $1::uuid AND checkout_session_id IS NULL",
            payment_id,
        )

    async def get_live_payment_for_order(self, order_id: str, live_statuses: list[str]) -> Record | None:
        return await self.db.fetchrow(
            """
            SELECT * FROM payments
            WHERE order_id = $1::uuid AND status = ANY($2::text[])
            ORDER BY created_at DESC
            LIMIT 1
            """,
            order_id, live_statuses,
        )

    async def get_latest_payment_for_order(self, order_id: str) -> Record | None:
        """Последний платёж по заказу; успешный имеет приоритет."""
        return await self.db.fetchrow(
            """
            SELECT * FROM payments
            WHERE order_id = $1::uuid
            ORDER BY (status = 'succeeded') DESC, created_at DESC
            LIMIT 1
            """,
            order_id,
        )

    async def transition_status(
        self,
        payment_id: str,
        new_status: str,
        predecessors: list[str],
        intent_id: str | None = None,
        session_id: str | None = None,
    ) -> Record | None:
        """
        Условный переход статуса с дозаписью intent id и checkout session.

        Returns:
            Обновлённая строка или None, если текущий статус не допускает переход
        """
        try:
            return await self.db.fetchrow(
                """
                UPDATE payments
                SET status = $2,
                    provider_intent_id = COALESCE(provider_intent_id, $4),
                    checkout_session_id = COALESCE(checkout_session_id, $5),
                    updated_at = NOW()
                WHERE id = $1::uuid AND status = ANY($3::text[])
                RETURNING *
                """,
                payment_id, new_status, predecessors, intent_id, session_id,
            )
        except asyncpg.UniqueViolationError as e:
            # Поздний успех, когда по заказу уже есть другой живой платёж
            raise ConflictError(
                f"Payment {payment_id} cannot become {new_status}: order already has an active payment",
                {"payment_id": payment_id},
            ) from e


class RefundRepository:
    """Репозиторий возвратов."""

    def __init__(self, db: DatabaseManager) -> None:
        self.db = db

    async def reserve_refund(
        self,
        refund: dict[str, Any],
        reserving_statuses: list[str],
    ) -> Record:
        """
        Резервирует сумму возврата под блокировкой строки платежа.

        Сумма pending + processing + succeeded возвратов вместе с новым
        не может превысить сумму платежа.

        Raises:
            NotFoundError: платёж не найден
            InvalidStateError: бюджет платежа исчерпан
        """
        async with self.db.transaction() as conn:
            payment = await conn.fetchrow(
                "SELECT id, amount FROM payments WHERE id = $1::uuid FOR UPDATE",
                refund["payment_id"],
            )
            if payment is None:
                raise NotFoundError(f"Payment {refund['payment_id']} not found")

            reserved: Decimal = await conn.fetchval(
                """
                SELECT COALESCE(SUM(amount), 0) FROM refunds
                WHERE payment_id = $1::uuid AND status = ANY($2::text[])
                """,
                refund["payment_id"], reserving_statuses,
            )
            if reserved + refund["amount"] > payment["amount"]:
                raise InvalidStateError(
                    "Refund amount exceeds the remaining refundable amount",
                    {
                        "payment_amount": str(payment["amount"]),
                        "reserved": str(reserved),
                        "requested": str(refund["amount"]),
                        "remaining": str(payment["amount"] - reserved),
                    },
                )

            return await conn.fetchrow(
                """
                INSERT INTO refunds (
                    id, payment_id, order_id, amount, reason, description, status, requested_by
                )
                VALUES ($1::uuid, $2::uuid, $3::uuid, $4, $5, $6, 'pending', $7)
                RETURNING *
                """,
                refund["id"],
                refund["payment_id"],
                refund["order_id"],
                refund["amount"],
                str(refund["reason"]),
                refund.get("description"),
                refund["requested_by"],
            )

    async def mark_submitted(self, refund_id: str, provider_refund_id: str) -> Record | None:
        """
        Провайдер принял возврат: дозаписываем его id, pending → processing.
        Если вебхук успел раньше, статус не откатывается.
        """
        return await self.db.fetchrow(
            """
            UPDATE refunds
            SET provider_refund_id = COALESCE(provider_refund_id, $2),
                status = CASE WHEN status = 'pending' THEN 'processing' ELSE status END,
                updated_at = NOW()
            WHERE id = $1::uuid
            RETURNING *
            """,
            refund_id, provider_refund_id,
        )

    async def release_reservation(self, refund_id: str) -> None:
        """Провайдер отказал: освобождаем зарезервированный бюджет."""
        await self.db.execute(
            "DELETE FROM refunds WHERE id = $1::uuid AND status = 'pending' AND provider_refund_id IS NULL",
            refund_id,
        )

    async def get_refund(self, refund_id: str) -> Record | None:
        return await self.db.fetchrow("SELECT * FROM refunds WHERE id = $1::uuid", refund_id)

    async def get_by_provider_id(self, provider_refund_id: str) -> Record | None:
        return await self.db.fetchrow("SELECT * FROM refunds WHERE provider_refund_id = $1", provider_refund_id)

    async def get_unlinked_refund(self, refund_id: str) -> Record | None:
        return await self.db.fetchrow(
            "SELECT * FROM refunds WHERE id = $1::uuid AND provider_refund_id IS NULL",
            refund_id,
        )

    async def get_refunds_by_order(self, order_id: str) -> list[Record]:
        return await self.db.fetch(
            "SELECT * FROM refunds WHERE order_id = $1::uuid ORDER BY requested_at DESC",
            order_id,
        )

    async def sum_by_status(self, payment_id: str, statuses: list[str]) -> Decimal:
        return await self.db.fetchval(
            "SELECT COALESCE(SUM(amount), 0) FROM refunds WHERE payment_id = $1::uuid AND status = ANY($2::text[])",
            payment_id, statuses,
        )

    async def transition_status(
        self,
        refund_id: str,
        new_status: str,
        predecessors: list[str],
        provider_refund_id: str | None = None,
        terminal: bool = False,
    ) -> Record | None:
        """Условный переход статуса возврата; для финальных статусов пишет processed_at."""
        return await self.db.fetchrow(
            """
            UPDATE refunds
            SET status = $2,
                provider_refund_id = COALESCE(provider_refund_id, $4),
                processed_at = CASE WHEN $5 THEN NOW() ELSE processed_at END,
                updated_at = NOW()
            WHERE id = $1::uuid AND status = ANY($3::text[])
            RETURNING *
            """,
            refund_id, new_status, predecessors, provider_refund_id, terminal,
        )

    async def get_stats(
        self,
        restaurant_id: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> Record:
        return await self.db.fetchrow(
            """
            SELECT
                COUNT(*) AS total_refunds,
                COUNT(*) FILTER (WHERE r.status = 'succeeded') AS successful_refunds,
                COALESCE(SUM(r.amount) FILTER (WHERE r.status = 'succeeded'), 0) AS total_refund_amount
            FROM refunds r
            JOIN payments p ON p.id = r.payment_id
            WHERE ($1::text IS NULL OR p.restaurant_id = $1)
              AND ($2::timestamptz IS NULL OR r.requested_at >= $2)
              AND ($3::timestamptz IS NULL OR r.requested_at <= $3)
            """,
            restaurant_id, date_from, date_to,
        )


class PayoutRepository:
    """Начисления водителям и расчёты с ресторанами."""

    # таблица → (колонка статуса, колонка получателя)
    LEDGERS = {
        "driver_earnings": ("payout_status", "driver_id"),
        "restaurant_settlements": ("settlement_status", "restaurant_id"),
    }

    def __init__(self, db: DatabaseManager) -> None:
        self.db = db

    async def create_driver_earning(self, earning: dict[str, Any]) -> Record:
        return await self.db.fetchrow(
            """
            INSERT INTO driver_earnings (
                id, driver_id, order_id, base_amount, tip_amount, bonus_amount, total_amount, payout_status
            )
            VALUES ($1::uuid, $2, $3::uuid, $4, $5, $6, $7, 'pending')
            RETURNING *
            """,
            str(uuid.uuid4()),
            earning["driver_id"],
            earning["order_id"],
            earning["base_amount"],
            earning["tip_amount"],
            earning["bonus_amount"],
            earning["total_amount"],
        )

    async def create_settlement(self, settlement: dict[str, Any]) -> Record:
        return await self.db.fetchrow(
            """
            INSERT INTO restaurant_settlements (
                id, restaurant_id, order_id, gross_amount, commission_rate,
                commission_amount, net_amount, settlement_status
            )
            VALUES ($1::uuid, $2, $3::uuid, $4, $5, $6, $7, 'pending')
            RETURNING *
            """,
            str(uuid.uuid4()),
            settlement["restaurant_id"],
            settlement["order_id"],
            settlement["gross_amount"],
            settlement["commission_rate"],
            settlement["commission_amount"],
            settlement["net_amount"],
        )

    async def get_entry(self, ledger: str, entry_id: str) -> Record | None:
        return await self.db.fetchrow(f"SELECT * FROM {ledger} WHERE id = $1::uuid", entry_id)

    async def get_entries_by_payee(self, ledger: str, payee_id: str) -> list[Record]:
        _, payee_column = self.LEDGERS[ledger]
        return await self.db.fetch(
            f"SELECT * FROM {ledger} WHERE {payee_column} = $1 ORDER BY created_at DESC",
            payee_id,
        )

    async def set_status(
        self,
        ledger: str,
        entry_id: str,
        new_status: str,
        expected_status: str,
        transfer_id: str | None = None,
    ) -> Record | None:
        """
        Условная смена статуса выплаты.
        Используется для захвата (pending → processing), отката и завершения.
        """
        status_column, _ = self.LEDGERS[ledger]
        return await self.db.fetchrow(
            f"""
            UPDATE {ledger}
            SET {status_column} = $2,
                provider_transfer_id = COALESCE($4, provider_transfer_id),
                updated_at = NOW()
            WHERE id = $1::uuid AND {status_column} = $3
            RETURNING *
            """,
            entry_id, new_status, expected_status, transfer_id,
        )

    async def get_by_transfer_id(self, ledger: str, transfer_id: str) -> Record | None:
        return await self.db.fetchrow(f"SELECT * FROM {ledger} WHERE provider_transfer_id = $1", transfer_id)
