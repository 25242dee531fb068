# quickbite/common/exceptions.py
"""
Доменные исключения.

Сервисный слой выбрасывает только их, маршруты переводят их в HTTP-коды:
ValidationError → 400, NotFoundError → 404, ConflictError → 409, UpstreamError → 502.
ProviderOutcomeUnknownError (502) означает, что исход вызова провайдера неизвестен.
"""

from __future__ import annotations

from typing import Any


class QuickBiteError(Exception):
    """Базовое исключение доменного слоя."""

    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(QuickBiteError):
    """Некорректные входные данные. Отклоняется до любых побочных эффектов."""

    status_code = 400
    error_code = "validation_error"


class NotFoundError(QuickBiteError):
    """Неизвестный заказ, платёж, возврат или выплата."""

    status_code = 404
    error_code = "not_found"


class ConflictError(QuickBiteError):
    """Нарушение бизнес-правила. Повтор возможен после смены состояния."""

    status_code = 409
    error_code = "conflict"


class InvalidStateError(ConflictError):
    """Объект находится в состоянии, не допускающем операцию."""

    error_code = "invalid_state"


class UpstreamError(QuickBiteError):
    """Ошибка вызова внешнего сервиса или платёжного провайдера."""

    status_code = 502
    error_code = "upstream_error"


class ProviderOutcomeUnknownError(UpstreamError):
    """
    Провайдер не дал определённого ответа: таймаут, обрыв соединения или 5xx.
    Операция могла выполниться, локальную запись удалять нельзя.
    Повтор с тем же idempotency_key безопасен.
    """

    error_code = "provider_outcome_unknown"
