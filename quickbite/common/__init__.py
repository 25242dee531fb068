# quickbite/common/__init__.py
"""
Общие утилиты, константы, исключения и логгер.
"""

from quickbite.common.logger import get_logger, log_info, log_error, log_warning, log_debug
from quickbite.common.constants import TypeMsg
from quickbite.common.exceptions import (
    QuickBiteError,
    ValidationError,
    NotFoundError,
    ConflictError,
    InvalidStateError,
    UpstreamError,
)

__all__ = [
    "get_logger",
    "log_info",
    "log_error",
    "log_warning",
    "log_debug",
    "TypeMsg",
    "QuickBiteError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "InvalidStateError",
    "UpstreamError",
]
