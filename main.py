#!/usr/bin/env python3
# main.py
"""
Главная точка входа QuickBite.
Запускает сервис заказов, сервис платежей или оба сразу.
"""

from __future__ import annotations

import asyncio
import signal
import sys

from quickbite.common.constants import TypeMsg
from quickbite.common.logger import log_error, log_info, setup_logging
from quickbite.config import settings

VALID_MODES = ("orders_service", "payments_service", "all")

# Глобальный флаг для graceful shutdown
_shutdown_event: asyncio.Event | None = None
_running_tasks: list[asyncio.Task] = []


def setup_signal_handlers() -> None:
    """Настраивает обработчики сигналов для graceful shutdown."""
    global _shutdown_event
    _shutdown_event = asyncio.Event()

    def signal_handler(sig: int) -> None:
        if _shutdown_event and not _shutdown_event.is_set():
            print(f"\nПолучен сигнал остановки (sig={sig}), завершаем работу...")
            _shutdown_event.set()
            for task in _running_tasks:
                if not task.done():
                    task.cancel()

    try:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))
    except NotImplementedError:
        # Windows не поддерживает add_signal_handler
        signal.signal(signal.SIGINT, lambda s, f: signal_handler(s))
        signal.signal(signal.SIGTERM, lambda s, f: signal_handler(s))


async def _serve(name: str, app_path: str, host: str, port: int) -> None:
    """Запускает uvicorn-сервер внутри текущего event loop."""
    import uvicorn

    await log_info(f"Запуск {name} на {host}:{port}...", type_msg=TypeMsg.INFO)
    config = uvicorn.Config(
        app_path,
        host=host,
        port=port,
        log_level="debug" if settings.system.DEBUG else "info",
    )
    server = uvicorn.Server(config)
    try:
        await server.serve()
    except asyncio.CancelledError:
        await log_info(f"{name}: graceful shutdown", type_msg=TypeMsg.DEBUG)
        await server.shutdown()


async def run_orders_service() -> None:
    """Запускает Orders Service (учёт заказов)."""
    await _serve(
        "Orders Service",
        "quickbite.services.orders.app:app",
        settings.deployment.ORDERS_SERVICE_HOST,
        settings.deployment.ORDERS_SERVICE_PORT,
    )


async def run_payments_service() -> None:
    """Запускает Payments Service (платежи, возвраты, выплаты, вебхуки)."""
    await _serve(
        "Payments Service",
        "quickbite.services.payments.app:app",
        settings.deployment.PAYMENTS_SERVICE_HOST,
        settings.deployment.PAYMENTS_SERVICE_PORT,
    )


async def main(mode: str | None = None) -> None:
    """
    Главная функция запуска.

    Args:
        mode: orders_service, payments_service или all.
              Если None, берётся из COMPONENT_MODE.
    """
    global _running_tasks

    setup_logging()
    setup_signal_handlers()

    mode = mode or settings.system.COMPONENT_MODE
    if mode not in VALID_MODES:
        await log_error(f"Неизвестный режим '{mode}'. Допустимые: {', '.join(VALID_MODES)}")
        print_usage()
        sys.exit(1)

    await log_info(f"QuickBite v{settings.system.VERSION} — запуск в режиме '{mode}'", type_msg=TypeMsg.INFO)

    if mode == "orders_service":
        await run_orders_service()
    elif mode == "payments_service":
        await run_payments_service()
    else:
        _running_tasks = [
            asyncio.create_task(run_orders_service()),
            asyncio.create_task(run_payments_service()),
        ]
        try:
            await asyncio.gather(*_running_tasks, return_exceptions=True)
        except asyncio.CancelledError:
            await log_info("Отмена всех задач...", type_msg=TypeMsg.INFO)
            for task in _running_tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*_running_tasks, return_exceptions=True)
            raise

    await log_info("Приложение остановлено", type_msg=TypeMsg.INFO)


def print_usage() -> None:
    """Выводит справку по использованию."""
    print("""
QuickBite — сервисы заказов и платежей

Использование:
    python main.py [режим]

Режимы:
    orders_service    - Orders Service (порт ORDERS_SERVICE_PORT)
    payments_service  - Payments Service (порт PAYMENTS_SERVICE_PORT)
    all               - оба сервиса в одном процессе

Без аргумента режим берётся из COMPONENT_MODE.
""")


if __name__ == "__main__":
    arg = sys.argv[1] if len(sys.argv) > 1 else None
    if arg in ("-h", "--help", "help"):
        print_usage()
        sys.exit(0)
    try:
        asyncio.run(main(arg))
    except KeyboardInterrupt:
        print("\nПолучен сигнал остановки, завершение работы...")
