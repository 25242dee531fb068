# tests/services/payments/test_refund_service.py
"""
Тесты сервиса возвратов и инварианта бюджета платежа.
"""

from __future__ import annotations

import asyncio
import itertools
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock

import pytest

from quickbite.common.exceptions import (
    InvalidStateError,
    NotFoundError,
    ProviderOutcomeUnknownError,
    UpstreamError,
    ValidationError,
)
from quickbite.services.payments.refund_service import RefundService
from quickbite.shared.events.payment_events import RefundCompleted
from quickbite.shared.models.enums import PaymentEvent, RefundReason, RefundStatus
from quickbite.shared.models.payment import CreateRefundRequest


class InMemoryRefundRepository:
    """Репозиторий возвратов в памяти; резерв под блокировкой, как FOR UPDATE."""

    def __init__(self, payments: dict[str, dict[str, Any]]) -> None:
        self.payments = payments
        self.rows: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def reserve_refund(self, refund: dict[str, Any], reserving_statuses: list[str]):
        async with self._lock:
            payment = self.payments.get(refund["payment_id"])
            if payment is None:
                raise NotFoundError("payment not found")
            reserved = await self.sum_by_status(refund["payment_id"], reserving_statuses)
            # Отдаём управление, чтобы конкурентные вызовы успели встать в очередь
            await asyncio.sleep(0)
            if reserved + refund["amount"] > payment["amount"]:
                raise InvalidStateError("Refund amount exceeds the remaining refundable amount")
            row = {
                "id": refund["id"],
                "payment_id": refund["payment_id"],
                "order_id": refund["order_id"],
                "amount": refund["amount"],
                "reason": str(refund["reason"]),
                "description": refund.get("description"),
                "status": "pending",
                "requested_by": refund["requested_by"],
                "processed_by": None,
                "provider_refund_id": None,
                "requested_at": datetime.now(timezone.utc),
                "processed_at": None,
            }
            self.rows[row["id"]] = row
            return dict(row)

    async def mark_submitted(self, refund_id: str, provider_refund_id: str):
        row = self.rows.get(refund_id)
        if row is None:
            return None
        row["provider_refund_id"] = row["provider_refund_id"] or provider_refund_id
        if row["status"] == "pending":
            row["status"] = "processing"
        return dict(row)

    async def release_reservation(self, refund_id: str) -> None:
        row = self.rows.get(refund_id)
        if row and row["status"] == "pending" and row["provider_refund_id"] is None:
            del self.rows[refund_id]

    async def get_refund(self, refund_id: str):
        row = self.rows.get(refund_id)
        return dict(row) if row else None

    async def get_by_provider_id(self, provider_refund_id: str):
        for row in self.rows.values():
            if row["provider_refund_id"] == provider_refund_id:
                return dict(row)
        return None

    async def get_unlinked_refund(self, refund_id: str):
        row = self.rows.get(refund_id)
        return dict(row) if row and row["provider_refund_id"] is None else None

    async def sum_by_status(self, payment_id: str, statuses: list[str]) -> Decimal:
        return sum(
            (r["amount"] for r in self.rows.values() if r["payment_id"] == payment_id and r["status"] in statuses),
            Decimal("0"),
        )

    async def transition_status(self, refund_id, new_status, predecessors, provider_refund_id=None, terminal=False):
        row = self.rows.get(refund_id)
        if row is None or row["status"] not in predecessors:
            return None
        row["status"] = new_status
        row["provider_refund_id"] = row["provider_refund_id"] or provider_refund_id
        if terminal:
            row["processed_at"] = datetime.now(timezone.utc)
        return dict(row)


@pytest.fixture
def payments_repo(payment_row) -> AsyncMock:
    repo = AsyncMock()
    repo.get_latest_payment_for_order = AsyncMock(return_value=payment_row)
    repo.get_payment = AsyncMock(return_value=payment_row)
    return repo


@pytest.fixture
def refunds_repo(payment_row) -> InMemoryRefundRepository:
    return InMemoryRefundRepository({str(payment_row["id"]): payment_row})


@pytest.fixture
def gateway() -> AsyncMock:
    counter = itertools.count(1)

    async def create_refund(intent_id, amount, currency, metadata, idempotency_key):
        return SimpleNamespace(id=f"re_{next(counter)}", status="pending")

    gateway = AsyncMock()
    gateway.create_refund = AsyncMock(side_effect=create_refund)
    return gateway


@pytest.fixture
def orders() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def notifications() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def users() -> AsyncMock:
    users = AsyncMock()
    users.get_user = AsyncMock(return_value={"email": "c@example.com"})
    return users


@pytest.fixture
def service(refunds_repo, payments_repo, gateway, orders, notifications, users, mock_event_bus) -> RefundService:
    return RefundService(
        refunds=refunds_repo,
        payments=payments_repo,
        gateway=gateway,
        orders=orders,
        notifications=notifications,
        users=users,
        event_bus=mock_event_bus,
    )


def _request(order_id: str, amount: str | None) -> CreateRefundRequest:
    return CreateRefundRequest(
        order_id=order_id,
        amount=Decimal(amount) if amount is not None else None,
        reason=RefundReason.FOOD_QUALITY,
        requested_by="support-1",
    )


class TestCreateRefund:
    """Тесты создания возврата."""

    @pytest.mark.asyncio
    async def test_budget_sequence(self, service, order_id) -> None:
        """Платёж 10.00: 6 проходит, 5 отклоняется, 4 проходит."""
        first = await service.create_refund(_request(order_id, "6"))
        assert first.status == RefundStatus.PROCESSING

        with pytest.raises(InvalidStateError):
            await service.create_refund(_request(order_id, "5"))

        second = await service.create_refund(_request(order_id, "4"))
        assert second.amount == Decimal("4.00")

    @pytest.mark.asyncio
    async def test_concurrent_requests_never_exceed_payment(self, service, refunds_repo, order_id) -> None:
        results = await asyncio.gather(
            *(service.create_refund(_request(order_id, "3")) for _ in range(5)),
            return_exceptions=True,
        )

        accepted = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, InvalidStateError)]
        assert len(accepted) == 3
        assert len(rejected) == 2
        total = sum((r["amount"] for r in refunds_repo.rows.values()), Decimal("0"))
        assert total <= Decimal("10.00")

    @pytest.mark.asyncio
    async def test_full_amount_by_default(self, service, gateway, order_id) -> None:
        refund = await service.create_refund(_request(order_id, None))

        assert refund.amount == Decimal("10.00")
        _, kwargs = gateway.create_refund.call_args
        assert kwargs["idempotency_key"] == f"refund-{refund.id}"

    @pytest.mark.asyncio
    async def test_notifies_order_pending(self, service, orders, order_id) -> None:
        await service.create_refund(_request(order_id, "2"))

        orders.notify_refund_status.assert_awaited_once_with(order_id, PaymentEvent.PENDING, Decimal("0"))

    @pytest.mark.asyncio
    async def test_more_than_payment_rejected_before_reservation(self, service, refunds_repo, order_id) -> None:
        with pytest.raises(InvalidStateError):
            await service.create_refund(_request(order_id, "10.01"))
        assert refunds_repo.rows == {}

    @pytest.mark.asyncio
    async def test_zero_rejected(self, service, order_id) -> None:
        with pytest.raises(ValidationError):
            await service.create_refund(_request(order_id, "0"))

    @pytest.mark.asyncio
    async def test_unpaid_order_not_refundable(self, service, payments_repo, payment_row, order_id) -> None:
        payments_repo.get_latest_payment_for_order.return_value = {**payment_row, "status": "pending"}

        with pytest.raises(InvalidStateError):
            await service.create_refund(_request(order_id, "1"))

    @pytest.mark.asyncio
    async def test_no_payment(self, service, payments_repo, order_id) -> None:
        payments_repo.get_latest_payment_for_order.return_value = None

        with pytest.raises(NotFoundError):
            await service.create_refund(_request(order_id, "1"))

    @pytest.mark.asyncio
    async def test_provider_failure_releases_budget(self, service, refunds_repo, gateway, order_id) -> None:
        gateway.create_refund.side_effect = UpstreamError("provider down")

        with pytest.raises(UpstreamError):
            await service.create_refund(_request(order_id, "10"))
        assert refunds_repo.rows == {}

        gateway.create_refund.side_effect = lambda *a, **kw: SimpleNamespace(id="re_ok", status="pending")
        refund = await service.create_refund(_request(order_id, "10"))
        assert refund.provider_refund_id == "re_ok"

    @pytest.mark.asyncio
    async def test_immediate_provider_success(self, service, gateway, orders, notifications, mock_event_bus, order_id) -> None:
        gateway.create_refund.side_effect = lambda *a, **kw: SimpleNamespace(id="re_now", status="succeeded")

        refund = await service.create_refund(_request(order_id, "10"))

        assert refund.status == RefundStatus.SUCCEEDED
        assert refund.processed_at is not None
        orders.notify_refund_status.assert_awaited_once_with(order_id, PaymentEvent.REFUNDED, Decimal("10.00"))
        notifications.send.assert_awaited_once()
        assert isinstance(mock_event_bus.publish.call_args.args[0], RefundCompleted)

    @pytest.mark.asyncio
    async def test_unknown_outcome_keeps_reservation(self, service, refunds_repo, gateway, order_id) -> None:
        gateway.create_refund.side_effect = ProviderOutcomeUnknownError("timeout")

        with pytest.raises(ProviderOutcomeUnknownError) as exc_info:
            await service.create_refund(_request(order_id, "10"))

        refund_id = exc_info.value.details["refund_id"]
        assert refunds_repo.rows[refund_id]["status"] == "pending"
        # Резерв держит бюджет, второй возврат не проходит
        with pytest.raises(InvalidStateError):
            await service.create_refund(_request(order_id, "1"))

        # Возврат у провайдера всё же создан: вебхук связывает его по refund_id
        refund = await service.update_refund_status("re_late", RefundStatus.SUCCEEDED, refund_id)
        assert refund.status == RefundStatus.SUCCEEDED
        assert refund.provider_refund_id == "re_late"


class TestRetryRefund:
    """Тесты повторной отправки возврата."""

    @pytest.mark.asyncio
    async def test_retry_uses_same_key(self, service, refunds_repo, gateway, order_id) -> None:
        gateway.create_refund.side_effect = ProviderOutcomeUnknownError("timeout")
        with pytest.raises(ProviderOutcomeUnknownError) as exc_info:
            await service.create_refund(_request(order_id, "4"))
        refund_id = exc_info.value.details["refund_id"]

        gateway.create_refund.side_effect = lambda *a, **kw: SimpleNamespace(id="re_retry", status="pending")
        refund = await service.retry_refund(refund_id)

        assert refund.status == RefundStatus.PROCESSING
        assert refund.provider_refund_id == "re_retry"
        keys = [c.kwargs["idempotency_key"] for c in gateway.create_refund.call_args_list]
        assert keys == [f"refund-{refund_id}", f"refund-{refund_id}"]
        assert gateway.create_refund.call_args.args[1] == Decimal("4.00")

    @pytest.mark.asyncio
    async def test_submitted_refund_not_retried(self, service, gateway, order_id) -> None:
        refund = await service.create_refund(_request(order_id, "4"))

        with pytest.raises(InvalidStateError):
            await service.retry_refund(refund.id)
        assert gateway.create_refund.await_count == 1

    @pytest.mark.asyncio
    async def test_missing_refund(self, service) -> None:
        with pytest.raises(NotFoundError):
            await service.retry_refund(str(uuid.uuid4()))


class TestRefundWebhookStatus:
    """Тесты статусов из вебхуков."""

    @pytest.mark.asyncio
    async def test_succeeded_reports_cumulative_total(self, service, orders, order_id) -> None:
        first = await service.create_refund(_request(order_id, "6"))
        second = await service.create_refund(_request(order_id, "4"))

        await service.update_refund_status(first.provider_refund_id, RefundStatus.SUCCEEDED)
        await service.update_refund_status(second.provider_refund_id, RefundStatus.SUCCEEDED)

        last = orders.notify_refund_status.call_args.args
        assert last == (order_id, PaymentEvent.REFUNDED, Decimal("10.00"))

    @pytest.mark.asyncio
    async def test_duplicate_delivery_is_noop(self, service, orders, notifications, order_id) -> None:
        refund = await service.create_refund(_request(order_id, "6"))
        orders.notify_refund_status.reset_mock()

        await service.update_refund_status(refund.provider_refund_id, RefundStatus.SUCCEEDED)
        await service.update_refund_status(refund.provider_refund_id, RefundStatus.SUCCEEDED)

        assert orders.notify_refund_status.await_count == 1
        assert notifications.send.await_count == 1

    @pytest.mark.asyncio
    async def test_failed_frees_budget(self, service, orders, order_id) -> None:
        refund = await service.create_refund(_request(order_id, "10"))

        result = await service.update_refund_status(refund.provider_refund_id, RefundStatus.FAILED)

        assert result.status == RefundStatus.FAILED
        assert orders.notify_refund_status.call_args.args[1] == PaymentEvent.FAILED
        again = await service.create_refund(_request(order_id, "10"))
        assert again.amount == Decimal("10.00")

    @pytest.mark.asyncio
    async def test_terminal_not_overwritten(self, service, order_id) -> None:
        refund = await service.create_refund(_request(order_id, "5"))
        await service.update_refund_status(refund.provider_refund_id, RefundStatus.FAILED)

        result = await service.update_refund_status(refund.provider_refund_id, RefundStatus.SUCCEEDED)

        assert result.status == RefundStatus.FAILED

    @pytest.mark.asyncio
    async def test_unknown_refund(self, service) -> None:
        assert await service.update_refund_status("re_missing", RefundStatus.SUCCEEDED, "not-a-uuid") is None

    @pytest.mark.asyncio
    async def test_customer_notification_failure_is_logged(self, service, notifications, order_id) -> None:
        notifications.send.side_effect = UpstreamError("notifications down")
        refund = await service.create_refund(_request(order_id, "5"))

        result = await service.update_refund_status(refund.provider_refund_id, RefundStatus.SUCCEEDED)

        assert result.status == RefundStatus.SUCCEEDED


class TestAutomaticRefund:
    """Тесты автоматического возврата при отмене заказа."""

    @pytest.mark.asyncio
    async def test_refunds_remaining(self, service, order_id) -> None:
        await service.create_refund(_request(order_id, "3"))

        result = await service.process_automatic_refund(order_id, RefundReason.RESTAURANT_CANCELLED)

        assert result.refund_amount == Decimal("7.00")
        assert result.customer_email == "c@example.com"
        assert result.refund.reason == RefundReason.RESTAURANT_CANCELLED
        assert result.refund.requested_by == "cust-1"

    @pytest.mark.asyncio
    async def test_nothing_left(self, service, gateway, order_id) -> None:
        await service.create_refund(_request(order_id, "10"))
        gateway.create_refund.reset_mock()

        assert await service.process_automatic_refund(order_id, RefundReason.RESTAURANT_CANCELLED) is None
        gateway.create_refund.assert_not_called()

    @pytest.mark.asyncio
    async def test_unpaid_order(self, service, payments_repo, order_id) -> None:
        payments_repo.get_latest_payment_for_order.return_value = None

        assert await service.process_automatic_refund(order_id, RefundReason.OTHER) is None

    @pytest.mark.asyncio
    async def test_missing_email_does_not_block(self, service, users, order_id) -> None:
        users.get_user.side_effect = NotFoundError("user not found")

        result = await service.process_automatic_refund(order_id, RefundReason.DRIVER_UNAVAILABLE)

        assert result.customer_email is None
        assert result.refund_amount == Decimal("10.00")


class TestRefundStats:
    @pytest.mark.asyncio
    async def test_rate(self, service, refunds_repo) -> None:
        refunds_repo.get_stats = AsyncMock(return_value={
            "total_refunds": 3,
            "successful_refunds": 2,
            "total_refund_amount": Decimal("15.5"),
        })

        stats = await service.get_refund_stats()

        assert stats.refund_rate == Decimal("66.67")
        assert stats.total_refund_amount == Decimal("15.50")

    @pytest.mark.asyncio
    async def test_inverted_range(self, service) -> None:
        now = datetime.now(timezone.utc)

        with pytest.raises(ValidationError):
            await service.get_refund_stats(date_from=now, date_to=now - timedelta(days=1))
