# src/common/logger.py
"""
Structured logging.
Colored console output for development, JSON for deployments, optional
size-rotated log files with a separate error log.
"""

from __future__ import annotations

import inspect
import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from src.common.constants import TypeMsg

DEFAULT_LOGGER = "dispatch"

# one file handler and one error handler shared by every logger
_GLOBAL_FILE_HANDLER: logging.Handler | None = None
_GLOBAL_ERROR_HANDLER: logging.Handler | None = None

_LOGGING_INITIALIZED: bool = False


# =============================================================================
# FORMATTERS
# =============================================================================

class JsonFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if hasattr(record, "extra_data"):
            log_data["extra"] = record.extra_data

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


class DateBasedRotatingFileHandler(RotatingFileHandler):
    """
    Writes to a fixed file (e.g. dispatch.log). On rollover the current file
    is renamed with a timestamp suffix and a fresh one is opened.
    """

    def __init__(self, log_dir: str, max_bytes: int, logger_name: str = "app", encoding: str = 'utf-8'):
        """
        Args:
            log_dir: Log directory
            max_bytes: Size that triggers a rollover
            logger_name: Base file name
            encoding: File encoding
        """
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.logger_name = logger_name

        filename = str(self.log_dir / f"{logger_name}.log")

        super().__init__(
            filename=filename,
            maxBytes=max_bytes,
            backupCount=0,
            encoding=encoding,
        )

    def shouldRollover(self, record: logging.LogRecord) -> bool:
        if self.maxBytes > 0:
            if self.stream is None:
                self.stream = self._open()
            self.stream.seek(0, 2)
            if self.stream.tell() >= self.maxBytes:
                return True

        return False

    def doRollover(self) -> None:
        if self.stream:
            self.stream.close()
            self.stream = None

        timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
        archive_filename = self.log_dir / f"{self.logger_name}_{timestamp}.log"

        if os.path.exists(self.baseFilename):
            try:
                os.rename(self.baseFilename, archive_filename)
            except OSError:
                # file still held open elsewhere; keep writing to it
                pass

        self.stream = self._open()


class ColoredFormatter(logging.Formatter):
    """Console formatter with ANSI colors and the calling function."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"
    GRAY = "\033[90m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.GRAY)
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

        caller_info = ""
        if hasattr(record, "extra_data") and record.extra_data:
            caller_func = record.extra_data.get("caller_function")
            caller_module = record.extra_data.get("caller_module")
            caller_file = record.extra_data.get("caller_file")
            caller_line = record.extra_data.get("caller_line")

            if caller_func:
                caller_info = f" {self.GRAY}[{caller_module}.{caller_func}() {caller_file}:{caller_line}]{self.RESET}"

        message = (
            f"{timestamp} {color}[{record.levelname}]{self.RESET}{caller_info} "
            f"{record.getMessage()}"
        )

        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return message


# =============================================================================
# LOGGER
# =============================================================================

_loggers: dict[str, logging.Logger] = {}


def setup_logging() -> None:
    """
    Configures the application logger and quiets third-party libraries.
    Safe to call more than once.
    """
    global _LOGGING_INITIALIZED

    if _LOGGING_INITIALIZED:
        return

    _LOGGING_INITIALIZED = True

    get_logger(DEFAULT_LOGGER)

    logging.getLogger("asyncpg").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)
    logging.getLogger("aio_pika").setLevel(logging.WARNING)
    logging.getLogger("aiormq").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _logging_options() -> dict[str, Any]:
    defaults = {
        "level": "DEBUG",
        "format": "colored",
        "to_file": False,
        "file_path": "logs/dispatch.log",
        "max_bytes": 10485760,
    }
    try:
        from src.config import settings
        cfg = settings.logging
    except Exception:
        return defaults

    options = {
        "level": cfg.LOG_LEVEL,
        "format": cfg.LOG_FORMAT,
        "to_file": cfg.LOG_TO_FILE,
        "file_path": cfg.LOG_FILE_PATH,
        "max_bytes": cfg.LOG_MAX_BYTES,
    }
    # settings may be patched with mocks in tests
    for key, value in options.items():
        if not isinstance(value, type(defaults[key])):
            options[key] = defaults[key]
    return options


def get_logger(name: str = DEFAULT_LOGGER) -> logging.Logger:
    """
    Returns a configured logger, creating handlers once per name.

    Args:
        name: Logger name

    Returns:
        Configured logger
    """
    if name in _loggers:
        return _loggers[name]

    options = _logging_options()

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, options["level"].upper(), logging.DEBUG))

    if logger.handlers:
        return logger

    console_handler = logging.StreamHandler(sys.stdout)
    if options["format"] == "json":
        console_handler.setFormatter(JsonFormatter())
    else:
        console_handler.setFormatter(ColoredFormatter())
    logger.addHandler(console_handler)

    if options["to_file"]:
        global _GLOBAL_FILE_HANDLER, _GLOBAL_ERROR_HANDLER
        log_path = Path(options["file_path"])
        log_dir = log_path.parent

        if _GLOBAL_FILE_HANDLER is None:
            log_name = log_path.stem
            service_name = os.getenv("SERVICE_NAME")
            if service_name:
                log_name = f"{log_name}_{service_name}"

            _GLOBAL_FILE_HANDLER = DateBasedRotatingFileHandler(
                log_dir=str(log_dir),
                max_bytes=options["max_bytes"],
                logger_name=log_name,
            )
            _GLOBAL_FILE_HANDLER.setFormatter(
                JsonFormatter() if options["format"] == "json" else ColoredFormatter()
            )
        logger.addHandler(_GLOBAL_FILE_HANDLER)

        if _GLOBAL_ERROR_HANDLER is None:
            _GLOBAL_ERROR_HANDLER = DateBasedRotatingFileHandler(
                log_dir=str(log_dir),
                max_bytes=options["max_bytes"],
                logger_name="error",
            )
            _GLOBAL_ERROR_HANDLER.setLevel(logging.ERROR)
            _GLOBAL_ERROR_HANDLER.setFormatter(
                JsonFormatter() if options["format"] == "json" else ColoredFormatter()
            )
        logger.addHandler(_GLOBAL_ERROR_HANDLER)

    logger.propagate = False

    _loggers[name] = logger
    return logger


# =============================================================================
# LOGGING HELPERS
# =============================================================================

def _get_caller_info() -> dict[str, Any]:
    """
    Describes the code that called the log helper.

    Returns:
        caller_function, caller_module, caller_file and caller_line,
        or an empty dict when the stack is unavailable
    """
    frame = inspect.currentframe()
    try:
        if frame is None:
            return {}

        # [0] this function, [1] the log helper, [2] the caller
        caller_frame = frame.f_back.f_back if frame.f_back else None
        if caller_frame is None:
            return {}

        frame_info = inspect.getframeinfo(caller_frame)
        caller_module = inspect.getmodule(caller_frame)

        return {
            "caller_function": caller_frame.f_code.co_name,
            "caller_module": caller_module.__name__ if caller_module else "unknown",
            "caller_file": frame_info.filename.split("/")[-1] if frame_info.filename else "unknown",
            "caller_line": frame_info.lineno,
        }
    except Exception:
        return {}
    finally:
        del frame


def _emit(
    level: int,
    message: str,
    logger_name: str,
    extra: dict[str, Any] | None,
    caller_info: dict[str, Any],
    exc_info: bool = False,
) -> None:
    logger = get_logger(logger_name)
    record_extra = {"extra_data": {**caller_info, **(extra or {})}}
    logger.log(level, message, extra=record_extra, exc_info=exc_info)


_LEVELS = {
    TypeMsg.DEBUG: logging.DEBUG,
    TypeMsg.INFO: logging.INFO,
    TypeMsg.WARNING: logging.WARNING,
    TypeMsg.ERROR: logging.ERROR,
    TypeMsg.CRITICAL: logging.CRITICAL,
}


async def log_info(
    message: str,
    *,
    type_msg: TypeMsg = TypeMsg.INFO,
    logger_name: str = DEFAULT_LOGGER,
    extra: dict[str, Any] | None = None,
) -> None:
    """
    Logs a message at the level given by type_msg.

    Args:
        message: Text
        type_msg: Level
        logger_name: Logger name
        extra: Structured fields attached to the record
    """
    _emit(_LEVELS.get(type_msg, logging.INFO), message, logger_name, extra, _get_caller_info())


async def log_debug(
    message: str,
    logger_name: str = DEFAULT_LOGGER,
    extra: dict[str, Any] | None = None,
) -> None:
    _emit(logging.DEBUG, message, logger_name, extra, _get_caller_info())


async def log_warning(
    message: str,
    logger_name: str = DEFAULT_LOGGER,
    extra: dict[str, Any] | None = None,
) -> None:
    _emit(logging.WARNING, message, logger_name, extra, _get_caller_info())


async def log_error(
    message: str,
    logger_name: str = DEFAULT_LOGGER,
    extra: dict[str, Any] | None = None,
    exc_info: bool = False,
) -> None:
    """
    Logs at ERROR level.

    Args:
        message: Text
        logger_name: Logger name
        extra: Structured fields attached to the record
        exc_info: Attach the current traceback
    """
    _emit(logging.ERROR, message, logger_name, extra, _get_caller_info(), exc_info=exc_info)
