# tests/infra/test_event_bus.py
"""
Тесты шины событий.
"""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from aio_pika.exceptions import AMQPError

from quickbite.infra.event_bus import EventBus
from quickbite.shared.events.payment_events import RefundRequested


@pytest.fixture
def event() -> RefundRequested:
    return RefundRequested(
        refund_id="r1",
        payment_id="p1",
        order_id="o1",
        amount=Decimal("6.00"),
        reason="customer_request",
        requested_by="cust-1",
    )


@pytest.fixture
def bus() -> EventBus:
    bus = EventBus()
    yield bus
    bus._connection = None
    bus._channel = None
    bus._exchange = None


class TestPublish:
    """Публикация best effort."""

    @pytest.mark.asyncio
    async def test_not_connected_returns_false(self, bus: EventBus, event: RefundRequested) -> None:
        bus._connection = None
        assert await bus.publish(event) is False

    @pytest.mark.asyncio
    async def test_publish_uses_event_type_as_routing_key(self, bus: EventBus, event: RefundRequested) -> None:
        bus._connection = MagicMock(is_closed=False)
        bus._exchange = MagicMock()
        bus._exchange.publish = AsyncMock()
        bus._source_service = "payments_service"

        assert await bus.publish(event) is True

        _, kwargs = bus._exchange.publish.call_args
        assert kwargs["routing_key"] == "refund.requested"
        assert event.metadata.source_service == "payments_service"

    @pytest.mark.asyncio
    async def test_broker_error_swallowed_into_false(self, bus: EventBus, event: RefundRequested) -> None:
        bus._connection = MagicMock(is_closed=False)
        bus._exchange = MagicMock()
        bus._exchange.publish = AsyncMock(side_effect=AMQPError("channel closed"))

        assert await bus.publish(event) is False


class TestEventSerialization:
    """События сериализуются с метаданными."""

    def test_round_trip_keeps_amount(self, event: RefundRequested) -> None:
        restored = RefundRequested.from_json(event.to_json())
        assert restored.amount == Decimal("6.00")
        assert restored.event_id == event.event_id
