#!/usr/bin/env python3
"""
Entrypoint для Orders Service.

Запуск:
    python entrypoints/entrypoint_orders_service.py
"""

import sys
from pathlib import Path

# Добавляем корневую директорию проекта в путь
project_root = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(project_root))

import uvicorn

from quickbite.config import settings


def main() -> None:
    """Запустить Orders Service."""
    uvicorn.run(
        "quickbite.services.orders.app:app",
        host=settings.deployment.ORDERS_SERVICE_HOST,
        port=settings.deployment.ORDERS_SERVICE_PORT,
        reload=settings.system.DEBUG,
        log_level=settings.system.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
