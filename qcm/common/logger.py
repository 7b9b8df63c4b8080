"""
Attempt Engine Logging

Every logger of the engine lives under the ``qcm`` hierarchy. Records can
carry structured fields in ``extra={"data": {...}}``; the JSON formatter
lifts them to the top level of the emitted object, and attempt loggers use
the same channel to tag records with the attempt they concern.
"""

import os
import sys
import json
import time
import logging
import datetime
import functools
import asyncio
from typing import Any, Callable, Dict, MutableMapping, Optional, Tuple, TypeVar, Union

DEFAULT_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

APP_LOGGER_NAME = "qcm"

F = TypeVar('F', bound=Callable[..., Any])


class JsonFormatter(logging.Formatter):
    """One JSON object per record, with the record's ``data`` fields merged in."""

    def __init__(self, *, indent: Optional[int] = None):
        super().__init__()
        self.indent = indent

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.datetime.fromtimestamp(record.created, datetime.timezone.utc)
        payload: Dict[str, Any] = {
            "timestamp": created.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        data = getattr(record, "data", None)
        if isinstance(data, dict):
            payload.update(data)

        if record.exc_info:
            payload["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(payload, indent=self.indent, default=str)


def configure_logger(
    name: str = APP_LOGGER_NAME,
    level: Union[str, int] = logging.INFO,
    format_string: str = DEFAULT_LOG_FORMAT,
    date_format: str = DEFAULT_DATE_FORMAT,
    use_json: bool = False,
    log_file: Optional[str] = None,
    console_output: bool = True
) -> logging.Logger:
    """
    (Re)configure a logger's level and handlers.

    Calling it again replaces the handlers it installed before.

    Args:
        name: Logger name
        level: Level name or number
        format_string: Format of plain-text records
        date_format: Date format of plain-text records
        use_json: Emit JSON objects instead of plain text
        log_file: Also write to this file, creating its directory
        console_output: Write to stdout

    Returns:
        The configured logger
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    logger = logging.getLogger(name)
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = JsonFormatter() if use_json else logging.Formatter(format_string, date_format)

    handlers = []
    if console_output:
        handlers.append(logging.StreamHandler(sys.stdout))
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a logger inside the ``qcm`` hierarchy."""
    if name == APP_LOGGER_NAME or name.startswith(APP_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{APP_LOGGER_NAME}.{name}")


class LoggerAdapter(logging.LoggerAdapter):
    """
    Adds bound context to the ``data`` fields of every record.

    Fields passed explicitly with a call take precedence over bound ones.
    """

    def __init__(self, logger: logging.Logger, context: Optional[Dict[str, Any]] = None):
        super().__init__(logger, dict(context or {}))

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra["data"] = {**self.extra, **(extra.get("data") or {})}
        kwargs["extra"] = extra
        return msg, kwargs

    def with_context(self, **context) -> 'LoggerAdapter':
        return LoggerAdapter(self.logger, {**self.extra, **context})


def attempt_logger(logger: logging.Logger, attempt) -> LoggerAdapter:
    """Bind an attempt's ID, student and quiz to ``logger``."""
    return LoggerAdapter(logger, {
        "attempt_id": attempt.id,
        "student_id": attempt.student_id,
        "quiz_id": attempt.quiz_id,
    })


def get_app_logger() -> logging.Logger:
    """
    Return the ``qcm`` logger, configuring it from the environment on first use.

    Reads LOG_LEVEL, LOG_JSON and LOG_FILE; ``qcm.config.configure_logging``
    applies the full settings later.
    """
    logger = logging.getLogger(APP_LOGGER_NAME)
    if logger.handlers:
        return logger
    return configure_logger(
        level=os.environ.get("LOG_LEVEL", "INFO"),
        use_json=os.environ.get("LOG_JSON", "false").lower() == "true",
        log_file=os.environ.get("LOG_FILE"),
    )


app_logger = get_app_logger()


def log_execution_time(logger: Optional[logging.Logger] = None) -> Callable[[F], F]:
    """
    Log at DEBUG how long each call of the decorated function takes.

    Works on plain and async functions; failures are logged and re-raised.
    """
    def decorator(func: F) -> F:
        def report(started: float, error: Optional[Exception] = None) -> None:
            elapsed = time.perf_counter() - started
            log = logger or app_logger
            if error is None:
                log.debug(f"{func.__name__} executed in {elapsed:.3f} seconds")
            else:
                log.debug(f"{func.__name__} failed after {elapsed:.3f} seconds: {error}")

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                report(started, e)
                raise
            report(started)
            return result

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            started = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                report(started, e)
                raise
            report(started)
            return result

        return async_wrapper if asyncio.iscoroutinefunction(func) else wrapper
    return decorator
