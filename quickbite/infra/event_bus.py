# quickbite/infra/event_bus.py
"""
Шина доменных событий на базе RabbitMQ.

Публикация — best effort: события нужны для аналитики и уведомлений,
согласованность заказов и платежей на них не опирается. Если брокер
недоступен, сервис продолжает работу, а событие только логируется.
"""

from __future__ import annotations

from datetime import datetime, timezone

import aio_pika
from aio_pika import ExchangeType, Message
from aio_pika.abc import AbstractChannel, AbstractConnection, AbstractExchange
from aio_pika.exceptions import AMQPError

from quickbite.common.constants import TypeMsg
from quickbite.common.logger import get_logger, log_error, log_info, log_warning
from quickbite.shared.events.base import DomainEvent

logger = get_logger("event_bus")


class EventBus:
    """
    Издатель событий в topic-exchange RabbitMQ.
    routing_key = event_type (например, "payment.succeeded").
    """

    _instance: EventBus | None = None
    _connection: AbstractConnection | None = None
    _channel: AbstractChannel | None = None
    _exchange: AbstractExchange | None = None

    def __new__(cls) -> EventBus:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        """Инициализация (вызывается только один раз благодаря Singleton)."""
        if hasattr(self, "_initialized"):
            return
        self._initialized = True
        self._connection = None
        self._channel = None
        self._exchange = None
        self._exchange_name = "quickbite.events"
        self._source_service = ""

    @property
    def is_connected(self) -> bool:
        """Проверяет, активно ли соединение."""
        return self._connection is not None and not self._connection.is_closed

    async def connect(
        self,
        url: str | None = None,
        exchange_name: str | None = None,
        prefetch_count: int = 10,
        source_service: str = "",
    ) -> None:
        """
        Подключается к RabbitMQ и объявляет exchange.

        Args:
            url: URL RabbitMQ (если None, берётся из конфига)
            exchange_name: Имя exchange
            prefetch_count: Количество сообщений для prefetch
            source_service: Имя сервиса-источника для метаданных событий
        """
        if self.is_connected:
            return

        if url is None:
            from quickbite.config import settings
            url = settings.rabbitmq.url
            exchange_name = settings.rabbitmq.RABBITMQ_EXCHANGE
            prefetch_count = settings.rabbitmq.RABBITMQ_PREFETCH_COUNT

        if exchange_name:
            self._exchange_name = exchange_name
        self._source_service = source_service

        await log_info("Подключение к RabbitMQ...", type_msg=TypeMsg.INFO)

        self._connection = await aio_pika.connect_robust(url)
        self._channel = await self._connection.channel()
        await self._channel.set_qos(prefetch_count=prefetch_count)
        self._exchange = await self._channel.declare_exchange(
            self._exchange_name,
            ExchangeType.TOPIC,
            durable=True,
        )

        await log_info("Подключение к RabbitMQ установлено", type_msg=TypeMsg.INFO)

    async def disconnect(self) -> None:
        """Закрывает соединение с RabbitMQ."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            self._channel = None
            self._exchange = None
            await log_info("Соединение с RabbitMQ закрыто", type_msg=TypeMsg.INFO)

    async def publish(self, event: DomainEvent) -> bool:
        """
        Публикует событие в exchange.

        Returns:
            True, если событие передано брокеру
        """
        if not self.is_connected or self._exchange is None:
            await log_warning(f"Событие {event.event_type} не опубликовано: нет соединения с RabbitMQ")
            return False

        if not event.metadata.source_service:
            event.metadata.source_service = self._source_service

        try:
            message = Message(
                body=event.to_json().encode(),
                content_type="application/json",
                message_id=event.event_id,
                timestamp=datetime.now(timezone.utc),
            )
            await self._exchange.publish(message, routing_key=event.event_type)
            await log_info(f"Событие опубликовано: {event.event_type}", type_msg=TypeMsg.DEBUG)
            return True
        except AMQPError as e:
            await log_error(f"Ошибка публикации события {event.event_type}: {e}")
            return False

    async def health_check(self) -> bool:
        """Проверяет здоровье подключения к RabbitMQ."""
        return self.is_connected


# Глобальный экземпляр
_event_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Возвращает глобальный экземпляр EventBus."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus


async def init_event_bus(source_service: str = "") -> EventBus:
    """
    Инициализирует подключение к RabbitMQ.
    Недоступный брокер не блокирует старт сервиса.
    """
    from quickbite.config import settings

    event_bus = get_event_bus()
    try:
        await event_bus.connect(
            url=settings.rabbitmq.url,
            exchange_name=settings.rabbitmq.RABBITMQ_EXCHANGE,
            prefetch_count=settings.rabbitmq.RABBITMQ_PREFETCH_COUNT,
            source_service=source_service,
        )
        await log_info(
            f"RabbitMQ подключён: {settings.rabbitmq.RABBITMQ_HOST}:{settings.rabbitmq.RABBITMQ_PORT}",
            type_msg=TypeMsg.INFO,
        )
    except (AMQPError, OSError) as e:
        await log_warning(f"RabbitMQ недоступен, события не будут публиковаться: {e}")
    return event_bus


async def close_event_bus() -> None:
    """Закрывает подключение к RabbitMQ."""
    event_bus = get_event_bus()
    await event_bus.disconnect()
    await log_info("RabbitMQ отключён", type_msg=TypeMsg.INFO)
