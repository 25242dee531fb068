# quickbite/services/errors.py
"""
Перевод доменных исключений в HTTP-ответы.
"""

from __future__ import annotations

from fastapi import HTTPException

from quickbite.common.exceptions import QuickBiteError


def to_http_exception(error: QuickBiteError) -> HTTPException:
    """ValidationError → 400, NotFoundError → 404, ConflictError → 409, UpstreamError → 502."""
    return HTTPException(
        status_code=error.status_code,
        detail={
            "error_code": error.error_code,
            "message": error.message,
            "details": error.details or None,
        },
    )
