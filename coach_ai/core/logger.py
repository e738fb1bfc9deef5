import inspect
import json
import logging
import re
import sys
import time
from contextvars import ContextVar, Token
from functools import wraps
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Optional

# Session id of the generation currently being served
correlation_id_var: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)

# Provider credentials that can leak through SDK error messages
SECRET_PATTERNS = [
    (re.compile(r'\b(sk-|gsk_|AIza)[\w-]{16,}'), r'\1***MASKED***'),
    (re.compile(r'(api[_-]?key\s*[=:]\s*)["\']?[\w-]{20,}["\']?', re.IGNORECASE), r'\1***MASKED***'),
    (re.compile(r'(bearer\s+)[\w.-]{20,}', re.IGNORECASE), r'\1***MASKED***'),
]

LOG_FORMAT = "%(asctime)s - [%(correlation_id)s] - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LOGS_DIR = Path(__file__).resolve().parent.parent.parent / "logs"
LOG_FILE = LOGS_DIR / "coach_ai.log"


def mask_secrets(text: str) -> str:
    """Mask provider keys and bearer tokens in text."""
    for pattern, replacement in SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


class SecretMaskingFilter(logging.Filter):
    """Masks secrets in the message, its args and string values of ``extra_data``."""

    def filter(self, record):
        if isinstance(record.msg, str):
            record.msg = mask_secrets(record.msg)
        if record.args:
            record.args = tuple(mask_secrets(arg) if isinstance(arg, str) else arg for arg in record.args)
        extra_data = getattr(record, 'extra_data', None)
        if isinstance(extra_data, dict):
            record.extra_data = {
                key: mask_secrets(value) if isinstance(value, str) else value
                for key, value in extra_data.items()
            }
        return True


class CorrelationIdFilter(logging.Filter):
    def filter(self, record):
        record.correlation_id = correlation_id_var.get() or "N/A"
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line; ``extra={"extra_data": {...}}`` fields are merged in."""

    def format(self, record):
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, 'correlation_id', 'N/A'),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        if hasattr(record, 'extra_data'):
            log_data.update(record.extra_data)

        return json.dumps(log_data, default=str)


class ColorFormatter(logging.Formatter):
    """Console formatter coloring warnings yellow and errors red."""

    grey = "\x1b[38;20m"
    yellow = "\x1b[33;20m"
    red = "\x1b[31;20m"
    bold_red = "\x1b[31;1m"
    reset = "\x1b[0m"

    COLORS = {
        logging.DEBUG: grey,
        logging.INFO: grey,
        logging.WARNING: yellow,
        logging.ERROR: red,
        logging.CRITICAL: bold_red,
    }

    def __init__(self):
        super().__init__(LOG_FORMAT, datefmt=DATE_FORMAT)
        self._formatters = {
            level: logging.Formatter(color + LOG_FORMAT + self.reset, datefmt=DATE_FORMAT)
            for level, color in self.COLORS.items()
        }

    def format(self, record):
        formatter = self._formatters.get(record.levelno)
        return formatter.format(record) if formatter else super().format(record)


def setup_logger(name: str = "coach_ai", log_level: int = logging.INFO, clear_log: bool = False,
                 use_json: bool = False, mask_secrets: bool = True) -> logging.Logger:
    """
    Sets up the package logger with a colored console handler and a rotating file handler.

    Args:
        name: Logger name; module loggers under ``coach_ai.`` propagate to it
        log_level: Logging level
        clear_log: If True, truncates the log file at startup
        use_json: If True, the file handler writes one JSON object per record
        mask_secrets: If True, masks provider API keys in both handlers
    """
    LOGS_DIR.mkdir(exist_ok=True)
    if clear_log and LOG_FILE.exists():
        LOG_FILE.write_text("")

    logger = logging.getLogger(name)
    logger.setLevel(log_level)
    if logger.hasHandlers():
        return logger

    filters = [CorrelationIdFilter()]
    if mask_secrets:
        filters.append(SecretMaskingFilter())

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(ColorFormatter())

    # Rotate after 5MB, keep 5 backup files
    file_handler = RotatingFileHandler(LOG_FILE, maxBytes=5 * 1024 * 1024, backupCount=5, encoding="utf-8")
    if use_json:
        file_handler.setFormatter(JsonFormatter(datefmt=DATE_FORMAT))
    else:
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))

    for handler in (console_handler, file_handler):
        for log_filter in filters:
            handler.addFilter(log_filter)
        logger.addHandler(handler)

    return logger


def set_correlation_id(correlation_id: Optional[str]) -> Token:
    """Tag records logged in the current context; pass the token to ``reset_correlation_id``."""
    return correlation_id_var.set(correlation_id)


def reset_correlation_id(token: Token) -> None:
    correlation_id_var.reset(token)


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


logger = logging.getLogger(__name__)


def log_async_execution_time(func: Callable[..., Any]) -> Callable[..., Any]:
    """
    Decorator to log the duration of an async call, including failed ones.
    """
    if not inspect.iscoroutinefunction(func):
        raise TypeError(f"{func.__name__} is not a coroutine function")

    @wraps(func)
    async def wrapper(*args, **kwargs):
        start_time = time.perf_counter()
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            duration = time.perf_counter() - start_time
            logger.error(
                f"{func.__qualname__} failed after {duration:.4f} seconds: {str(e)}",
                extra={"extra_data": {"event": "execution_time", "function": func.__qualname__,
                                      "elapsed_ms": int(duration * 1000), "outcome": "error"}},
            )
            raise
        duration = time.perf_counter() - start_time
        logger.info(
            f"{func.__qualname__} finished in {duration:.4f} seconds",
            extra={"extra_data": {"event": "execution_time", "function": func.__qualname__,
                                  "elapsed_ms": int(duration * 1000), "outcome": "ok"}},
        )
        return result
    return wrapper
