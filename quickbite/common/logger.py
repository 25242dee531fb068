# quickbite/common/logger.py
"""
Модуль структурированного логирования.
Поддерживает JSON и цветной текстовый формат, ротацию файлов по размеру,
отдельный файл ошибок и привязку записей к контексту запроса (correlation id).
"""

from __future__ import annotations

import inspect
import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from quickbite.common.constants import TypeMsg


# =============================================================================
# ГЛОБАЛЬНОЕ СОСТОЯНИЕ
# =============================================================================

# Глобальный файловый хендлер (один для всех логгеров)
_GLOBAL_FILE_HANDLER: logging.Handler | None = None
# Глобальный хендлер ошибок
_GLOBAL_ERROR_HANDLER: logging.Handler | None = None

# Флаг инициализации (предотвращает повторную настройку)
_LOGGING_INITIALIZED: bool = False

# Идентификатор корреляции текущего запроса / вебхука
_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def set_correlation_id(value: str | None) -> None:
    """Привязывает correlation id к текущему контексту выполнения."""
    _correlation_id.set(value)


def get_correlation_id() -> str | None:
    """Возвращает correlation id текущего контекста."""
    return _correlation_id.get()


# =============================================================================
# ФОРМАТТЕРЫ
# =============================================================================

class JsonFormatter(logging.Formatter):
    """Форматтер для JSON логов."""

    def format(self, record: logging.LogRecord) -> str:
        """Форматирует запись лога в JSON."""
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        correlation_id = get_correlation_id()
        if correlation_id:
            log_data["correlation_id"] = correlation_id

        if hasattr(record, "extra_data"):
            log_data["extra"] = record.extra_data

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


class ColoredFormatter(logging.Formatter):
    """Цветной форматтер для консоли (разработка)."""

    COLORS = {
        "DEBUG": "\033[36m",      # Cyan
        "INFO": "\033[32m",       # Green
        "WARNING": "\033[33m",    # Yellow
        "ERROR": "\033[31m",      # Red
        "CRITICAL": "\033[35m",   # Magenta
    }
    RESET = "\033[0m"
    GRAY = "\033[90m"

    def format(self, record: logging.LogRecord) -> str:
        """Форматирует запись лога с цветом."""
        color = self.COLORS.get(record.levelname, self.GRAY)
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

        caller_info = ""
        if hasattr(record, "extra_data") and record.extra_data:
            caller_func = record.extra_data.get("caller_function")
            if caller_func:
                caller_info = (
                    f" {self.GRAY}[{record.extra_data.get('caller_module')}.{caller_func}() "
                    f"{record.extra_data.get('caller_file')}:{record.extra_data.get('caller_line')}]{self.RESET}"
                )

        correlation_id = get_correlation_id()
        correlation = f" {self.GRAY}<{correlation_id}>{self.RESET}" if correlation_id else ""

        message = (
            f"{timestamp} {color}[{record.levelname}]{self.RESET}{caller_info}{correlation} "
            f"{record.getMessage()}"
        )

        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return message


# =============================================================================
# РОТАЦИЯ ФАЙЛОВ
# =============================================================================

class DateBasedRotatingFileHandler(RotatingFileHandler):
    """
    Хендлер для ротации логов.
    Пишет в фиксированный файл (например, quickbite_payments.log).
    При превышении размера переименовывает текущий файл, добавляя дату и время,
    и удаляет самые старые архивы сверх backup_count.
    """

    def __init__(
        self,
        log_dir: str,
        max_bytes: int,
        logger_name: str = "app",
        backup_count: int = 5,
        encoding: str = "utf-8",
    ):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.logger_name = logger_name
        self.archive_limit = backup_count

        super().__init__(
            filename=str(self.log_dir / f"{logger_name}.log"),
            maxBytes=max_bytes,
            backupCount=0,  # Стандартная нумерованная ротация не используется
            encoding=encoding,
        )

    def shouldRollover(self, record: logging.LogRecord) -> bool:
        """Ротация только при превышении размера файла."""
        if self.maxBytes > 0:
            if self.stream is None:
                self.stream = self._open()
            self.stream.seek(0, 2)
            if self.stream.tell() >= self.maxBytes:
                return True
        return False

    def doRollover(self) -> None:
        """Переименовывает текущий файл в архивный и открывает новый."""
        if self.stream:
            self.stream.close()
            self.stream = None

        timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
        archive_filename = self.log_dir / f"{self.logger_name}_{timestamp}.log"

        if os.path.exists(self.baseFilename):
            try:
                os.rename(self.baseFilename, archive_filename)
            except OSError:
                # Файл занят другим процессом: продолжаем писать в текущий
                pass

        self._cleanup_archives()
        self.stream = self._open()

    def _cleanup_archives(self) -> None:
        """Удаляет самые старые архивы сверх лимита."""
        if self.archive_limit <= 0:
            return
        archives = sorted(self.log_dir.glob(f"{self.logger_name}_*.log"))
        for old in archives[:-self.archive_limit]:
            try:
                old.unlink()
            except OSError:
                pass


# =============================================================================
# ЛОГГЕР
# =============================================================================

_loggers: dict[str, logging.Logger] = {}


def _read_logging_settings() -> dict[str, Any]:
    """Читает настройки логирования, не падая при неполной конфигурации."""
    defaults: dict[str, Any] = {
        "level": "DEBUG",
        "format": "colored",
        "to_file": False,
        "file_path": "logs/app.log",
        "max_bytes": 10485760,
        "backup_count": 5,
    }
    try:
        # Ленивый импорт для избежания циклических зависимостей
        from quickbite.config import settings
        log_settings = settings.logging
    except Exception:
        return defaults

    result = {
        "level": log_settings.LOG_LEVEL,
        "format": log_settings.LOG_FORMAT,
        "to_file": log_settings.LOG_TO_FILE,
        "file_path": log_settings.LOG_FILE_PATH,
        "max_bytes": log_settings.LOG_MAX_BYTES,
        "backup_count": log_settings.LOG_BACKUP_COUNT,
    }
    # Защита от MagicMock в тестах
    for key in ("level", "format", "file_path"):
        if not isinstance(result[key], str):
            result[key] = defaults[key]
    for key in ("max_bytes", "backup_count"):
        if not isinstance(result[key], int):
            result[key] = defaults[key]
    if not isinstance(result["to_file"], bool):
        result["to_file"] = False
    return result


def setup_logging() -> None:
    """
    Инициализирует систему логирования.
    Может безопасно вызываться многократно (идемпотентна).
    """
    global _LOGGING_INITIALIZED

    if _LOGGING_INITIALIZED:
        return

    _LOGGING_INITIALIZED = True

    get_logger("quickbite")

    # Уровни для сторонних библиотек
    logging.getLogger("asyncpg").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)
    logging.getLogger("aio_pika").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.WARNING)


def get_logger(name: str = "quickbite") -> logging.Logger:
    """
    Возвращает настроенный логгер.
    Использует кэширование для избежания дублирования хендлеров.

    Args:
        name: Имя логгера

    Returns:
        Настроенный логгер
    """
    if name in _loggers:
        return _loggers[name]

    cfg = _read_logging_settings()

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, cfg["level"].upper(), logging.DEBUG))

    if logger.handlers:
        return logger

    formatter: logging.Formatter = JsonFormatter() if cfg["format"] == "json" else ColoredFormatter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if cfg["to_file"]:
        global _GLOBAL_FILE_HANDLER, _GLOBAL_ERROR_HANDLER
        log_path = Path(cfg["file_path"])
        log_dir = log_path.parent

        if _GLOBAL_FILE_HANDLER is None:
            log_name = log_path.stem
            # Каждый сервис пишет в свой файл
            service_name = os.getenv("SERVICE_NAME")
            if service_name:
                log_name = f"{log_name}_{service_name}"

            _GLOBAL_FILE_HANDLER = DateBasedRotatingFileHandler(
                log_dir=str(log_dir),
                max_bytes=cfg["max_bytes"],
                logger_name=log_name,
                backup_count=cfg["backup_count"],
            )
            _GLOBAL_FILE_HANDLER.setFormatter(formatter)
        logger.addHandler(_GLOBAL_FILE_HANDLER)

        if _GLOBAL_ERROR_HANDLER is None:
            _GLOBAL_ERROR_HANDLER = DateBasedRotatingFileHandler(
                log_dir=str(log_dir),
                max_bytes=cfg["max_bytes"],
                logger_name="error",
                backup_count=cfg["backup_count"],
            )
            _GLOBAL_ERROR_HANDLER.setLevel(logging.ERROR)
            _GLOBAL_ERROR_HANDLER.setFormatter(formatter)
        logger.addHandler(_GLOBAL_ERROR_HANDLER)

    logger.propagate = False

    _loggers[name] = logger
    return logger


# =============================================================================
# ВСПОМОГАТЕЛЬНЫЕ ФУНКЦИИ ЛОГИРОВАНИЯ
# =============================================================================

def _get_caller_info() -> dict[str, Any]:
    """
    Получает информацию о вызывающей функции.

    Стек: [0] _get_caller_info, [1] функция логирования, [2] вызывающий код.
    """
    frame = inspect.currentframe()
    caller_frame = None
    try:
        if frame is None:
            return {}

        caller_frame = frame.f_back
        if caller_frame is not None:
            caller_frame = caller_frame.f_back
        # log_debug / log_warning вызывают log_info: поднимаемся ещё на уровень
        if caller_frame is not None and caller_frame.f_code.co_name in ("log_debug", "log_warning"):
            caller_frame = caller_frame.f_back
        if caller_frame is None:
            return {}

        frame_info = inspect.getframeinfo(caller_frame)
        caller_module = inspect.getmodule(caller_frame)

        return {
            "caller_function": caller_frame.f_code.co_name,
            "caller_module": caller_module.__name__ if caller_module else "unknown",
            "caller_file": Path(frame_info.filename).name if frame_info.filename else "unknown",
            "caller_line": frame_info.lineno,
        }
    except Exception:
        return {}
    finally:
        # Освобождаем ссылки на фреймы для избежания утечек памяти
        del frame
        del caller_frame


async def log_info(
    message: str,
    *,
    type_msg: TypeMsg = TypeMsg.INFO,
    logger_name: str = "quickbite",
    extra: dict[str, Any] | None = None,
) -> None:
    """
    Асинхронная функция логирования (по умолчанию INFO уровень).

    Args:
        message: Сообщение для логирования
        type_msg: Уровень сообщения
        logger_name: Имя логгера
        extra: Дополнительные данные
    """
    logger = get_logger(logger_name)
    record_extra = {"extra_data": {**_get_caller_info(), **(extra or {})}}

    match type_msg:
        case TypeMsg.DEBUG:
            logger.debug(message, extra=record_extra)
        case TypeMsg.INFO:
            logger.info(message, extra=record_extra)
        case TypeMsg.WARNING:
            logger.warning(message, extra=record_extra)
        case TypeMsg.ERROR:
            logger.error(message, extra=record_extra)
        case TypeMsg.CRITICAL:
            logger.critical(message, extra=record_extra)
        case _:
            logger.info(message, extra=record_extra)


async def log_debug(
    message: str,
    logger_name: str = "quickbite",
    extra: dict[str, Any] | None = None,
) -> None:
    """Логирование DEBUG уровня."""
    await log_info(message, type_msg=TypeMsg.DEBUG, logger_name=logger_name, extra=extra)


async def log_warning(
    message: str,
    logger_name: str = "quickbite",
    extra: dict[str, Any] | None = None,
) -> None:
    """Логирование WARNING уровня."""
    await log_info(message, type_msg=TypeMsg.WARNING, logger_name=logger_name, extra=extra)


async def log_error(
    message: str,
    logger_name: str = "quickbite",
    extra: dict[str, Any] | None = None,
    exc_info: bool = False,
) -> None:
    """
    Логирование ERROR уровня.

    Args:
        message: Сообщение об ошибке
        logger_name: Имя логгера
        extra: Дополнительные данные
        exc_info: Включать ли трейсбек исключения
    """
    logger = get_logger(logger_name)
    record_extra = {"extra_data": {**_get_caller_info(), **(extra or {})}}
    logger.error(message, extra=record_extra, exc_info=exc_info)
