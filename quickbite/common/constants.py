# quickbite/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


# Номер заказа: ORD + последние 8 цифр timestamp (мс) + 4 символа
ORDER_NUMBER_PREFIX = "ORD"
ORDER_NUMBER_SUFFIX_LENGTH = 4

# Ключи кэша Redis
ORDER_CACHE_KEY = "order:{order_id}"

# Advisory-lock для применения схемы БД при старте
SCHEMA_LOCK_ID = 727001

# Заголовок подписи вебхука провайдера
STRIPE_SIGNATURE_HEADER = "stripe-signature"
