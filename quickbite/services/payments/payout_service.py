# quickbite/services/payments/payout_service.py
"""
Начисления водителям и расчёты с ресторанами.

Выплата захватывает запись условным UPDATE pending → processing, поэтому
два одновременных запроса не отправят перевод дважды. Перевод считается
оплаченным только после вебхука transfer.created.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any

from quickbite.common.constants import TypeMsg
from quickbite.common.exceptions import ConflictError, NotFoundError, UpstreamError, ValidationError
from quickbite.common.logger import log_info, log_warning
from quickbite.common.money import ZERO, sanitize_amount, validate_amount
from quickbite.services.payments.service import parse_uuid
from quickbite.shared.events.payment_events import PayoutRequested
from quickbite.shared.models.enums import PayoutStatus
from quickbite.shared.models.payment import (
    CreateDriverEarningRequest,
    CreateSettlementRequest,
    DriverEarningDTO,
    RestaurantSettlementDTO,
)

if TYPE_CHECKING:
    from asyncpg import Record

    from quickbite.infra.event_bus import EventBus
    from quickbite.services.payments.repository import PayoutRepository
    from quickbite.services.payments.stripe_gateway import StripeGateway


DRIVER_LEDGER = "driver_earnings"
RESTAURANT_LEDGER = "restaurant_settlements"

# таблица → (имя в событии, ключ id в метаданных, колонка суммы к выплате, колонка получателя)
_PAYOUT_FIELDS = {
    DRIVER_LEDGER: ("driver_earning", "earning_id", "total_amount", "driver_id"),
    RESTAURANT_LEDGER: ("restaurant_settlement", "settlement_id", "net_amount", "restaurant_id"),
}


def map_driver_earning(row: "Record | dict[str, Any]") -> DriverEarningDTO:
    return DriverEarningDTO(
        id=str(row["id"]),
        driver_id=row["driver_id"],
        order_id=str(row["order_id"]),
        base_amount=row["base_amount"],
        tip_amount=row["tip_amount"],
        bonus_amount=row["bonus_amount"],
        total_amount=row["total_amount"],
        payout_status=row["payout_status"],
        provider_transfer_id=row["provider_transfer_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def map_settlement(row: "Record | dict[str, Any]") -> RestaurantSettlementDTO:
    return RestaurantSettlementDTO(
        id=str(row["id"]),
        restaurant_id=row["restaurant_id"],
        order_id=str(row["order_id"]),
        gross_amount=row["gross_amount"],
        commission_rate=row["commission_rate"],
        commission_amount=row["commission_amount"],
        net_amount=row["net_amount"],
        settlement_status=row["settlement_status"],
        provider_transfer_id=row["provider_transfer_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PayoutService:
    """Сервис выплат."""

    def __init__(
        self,
        repository: "PayoutRepository",
        gateway: "StripeGateway",
        event_bus: "EventBus",
        currency: str = "USD",
    ) -> None:
        self.repository = repository
        self.gateway = gateway
        self.event_bus = event_bus
        self.currency = currency

    # =========================================================================
    # НАЧИСЛЕНИЯ
    # =========================================================================

    async def create_driver_earning(self, request: CreateDriverEarningRequest) -> DriverEarningDTO:
        base = validate_amount(request.base_amount, self.currency)
        tip = validate_amount(request.tip_amount, self.currency, allow_zero=True)
        bonus = validate_amount(request.bonus_amount, self.currency, allow_zero=True)
        row = await self.repository.create_driver_earning({
            "driver_id": request.driver_id,
            "order_id": parse_uuid(request.order_id, "order_id"),
            "base_amount": base,
            "tip_amount": tip,
            "bonus_amount": bonus,
            "total_amount": base + tip + bonus,
        })
        await log_info(
            f"Начисление водителю {request.driver_id} за заказ {request.order_id}: {row['total_amount']}",
            type_msg=TypeMsg.INFO,
        )
        return map_driver_earning(row)

    async def create_restaurant_settlement(self, request: CreateSettlementRequest) -> RestaurantSettlementDTO:
        """Комиссия = gross × rate с округлением до цента, ресторану остаётся разница."""
        gross = validate_amount(request.gross_amount, self.currency)
        commission = sanitize_amount(gross * request.commission_rate, self.currency)
        row = await self.repository.create_settlement({
            "restaurant_id": request.restaurant_id,
            "order_id": parse_uuid(request.order_id, "order_id"),
            "gross_amount": gross,
            "commission_rate": request.commission_rate,
            "commission_amount": commission,
            "net_amount": gross - commission,
        })
        await log_info(
            f"Расчёт с рестораном {request.restaurant_id} за заказ {request.order_id}: "
            f"{row['net_amount']} (комиссия {commission})",
            type_msg=TypeMsg.INFO,
        )
        return map_settlement(row)

    async def get_driver_earnings(self, driver_id: str) -> list[DriverEarningDTO]:
        rows = await self.repository.get_entries_by_payee(DRIVER_LEDGER, driver_id)
        return [map_driver_earning(row) for row in rows]

    async def get_restaurant_settlements(self, restaurant_id: str) -> list[RestaurantSettlementDTO]:
        rows = await self.repository.get_entries_by_payee(RESTAURANT_LEDGER, restaurant_id)
        return [map_settlement(row) for row in rows]

    # =========================================================================
    # ВЫПЛАТЫ
    # =========================================================================

    async def process_driver_payout(self, earning_id: str, destination_account: str) -> DriverEarningDTO:
        row = await self._process_payout(DRIVER_LEDGER, earning_id, destination_account)
        return map_driver_earning(row)

    async def process_restaurant_settlement(
        self,
        settlement_id: str,
        destination_account: str,
    ) -> RestaurantSettlementDTO:
        row = await self._process_payout(RESTAURANT_LEDGER, settlement_id, destination_account)
        return map_settlement(row)

    async def _process_payout(self, ledger: str, entry_id: str, destination_account: str) -> "Record":
        """
        Захватить запись, отправить перевод и сохранить его id.

        Raises:
            NotFoundError: записи нет
            ConflictError: запись уже выплачивается или выплачена
            UpstreamError: провайдер отклонил перевод (запись снова pending)
        """
        entry_id = parse_uuid(entry_id, "entry_id")
        if not destination_account:
            raise ValidationError("destination_account is required")

        claimed = await self.repository.set_status(
            ledger, entry_id, str(PayoutStatus.PROCESSING), str(PayoutStatus.PENDING)
        )
        if claimed is None:
            if await self.repository.get_entry(ledger, entry_id) is None:
                raise NotFoundError(f"Payout entry {entry_id} not found")
            raise ConflictError(f"Payout {entry_id} already processed")

        event_name, id_key, amount_column, payee_column = _PAYOUT_FIELDS[ledger]
        amount: Decimal = claimed[amount_column]
        if amount <= ZERO:
            await self.repository.set_status(ledger, entry_id, str(PayoutStatus.PENDING), str(PayoutStatus.PROCESSING))
            raise ValidationError(f"Nothing to pay out for {entry_id}")

        try:
            transfer = await self.gateway.create_transfer(
                amount,
                self.currency,
                destination_account,
                {id_key: entry_id, payee_column: claimed[payee_column], "order_id": str(claimed["order_id"])},
                idempotency_key=f"payout-{entry_id}",
            )
        except UpstreamError:
            await self.repository.set_status(ledger, entry_id, str(PayoutStatus.PENDING), str(PayoutStatus.PROCESSING))
            await log_warning(f"Перевод по {ledger}/{entry_id} не выполнен, запись возвращена в pending")
            raise

        # None: вебхук перевода успел отметить запись выплаченной
        row = await self.repository.set_status(
            ledger, entry_id, str(PayoutStatus.PROCESSING), str(PayoutStatus.PROCESSING), transfer.id
        ) or await self.repository.get_entry(ledger, entry_id) or claimed

        await log_info(f"Перевод {transfer.id} по {ledger}/{entry_id} отправлен: {amount}", type_msg=TypeMsg.INFO)
        await self.event_bus.publish(PayoutRequested(
            ledger=event_name,
            entry_id=entry_id,
            payee_id=claimed[payee_column],
            order_id=str(claimed["order_id"]),
            amount=amount,
            provider_transfer_id=transfer.id,
        ))
        return row

    # =========================================================================
    # ВЕБХУКИ ПЕРЕВОДОВ
    # =========================================================================

    async def mark_transfer_paid(self, transfer_id: str, metadata: dict[str, Any] | None = None) -> bool:
        """
        processing → paid для записи с этим переводом. False, если менять нечего.

        transfer.created может прийти раньше, чем сохранён id перевода. Тогда
        запись ищется по earning_id / settlement_id из метаданных перевода,
        и id перевода дозаписывается тем же условным UPDATE.
        """
        for ledger in (DRIVER_LEDGER, RESTAURANT_LEDGER):
            row = await self.repository.get_by_transfer_id(ledger, transfer_id)
            if row is not None:
                return await self._mark_paid(ledger, str(row["id"]), transfer_id, (PayoutStatus.PROCESSING,))

        metadata = metadata or {}
        for ledger in (DRIVER_LEDGER, RESTAURANT_LEDGER):
            id_key = _PAYOUT_FIELDS[ledger][1]
            if not metadata.get(id_key):
                continue
            try:
                entry_id = parse_uuid(metadata[id_key], id_key)
            except ValidationError:
                await log_warning(f"Перевод {transfer_id}: некорректный {id_key}={metadata[id_key]!r}")
                return False
            # pending: исход перевода был неизвестен и запись вернули в очередь
            return await self._mark_paid(
                ledger, entry_id, transfer_id, (PayoutStatus.PROCESSING, PayoutStatus.PENDING)
            )

        await log_warning(f"Перевод {transfer_id} не найден (metadata={metadata})")
        return False

    async def _mark_paid(
        self,
        ledger: str,
        entry_id: str,
        transfer_id: str,
        expected: tuple[PayoutStatus, ...],
    ) -> bool:
        for status in expected:
            updated = await self.repository.set_status(
                ledger, entry_id, str(PayoutStatus.PAID), str(status), transfer_id
            )
            if updated is not None:
                await log_info(f"Перевод {transfer_id}: {ledger}/{entry_id} выплачен", type_msg=TypeMsg.INFO)
                return True
        return False

    async def log_transfer(self, event_type: str, transfer_id: str) -> None:
        """Остальные события переводов только фиксируются в логе."""
        await log_warning(f"Перевод {transfer_id}: событие {event_type}, требуется ручная проверка")
