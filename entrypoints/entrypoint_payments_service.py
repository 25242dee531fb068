#!/usr/bin/env python3
"""
Entrypoint для Payments Service.

Запуск:
    python entrypoints/entrypoint_payments_service.py
"""

import sys
from pathlib import Path

# Добавляем корневую директорию проекта в путь
project_root = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(project_root))

import uvicorn

from quickbite.config import settings


def main() -> None:
    """Запустить Payments Service."""
    uvicorn.run(
        "quickbite.services.payments.app:app",
        host=settings.deployment.PAYMENTS_SERVICE_HOST,
        port=settings.deployment.PAYMENTS_SERVICE_PORT,
        reload=settings.system.DEBUG,
        log_level=settings.system.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
