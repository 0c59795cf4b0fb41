"""
Logging configuration for the operator.

stdlib handlers on the root logger (plain, colored or JSON output), with
structlog rendering its event dicts through them so both `logging` and
`structlog` loggers end up in the same stream.
"""
import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

from ..config import get_settings
from .reconcile_context import pass_id_var, reconcile_key_var

_CONFIGURED = False

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_RESERVED_ATTRS = {
    "args", "asctime", "created", "exc_info", "exc_text", "filename", "funcName", "levelname",
    "levelno", "lineno", "module", "msecs", "message", "msg", "name", "pathname", "process",
    "processName", "relativeCreated", "stack_info", "thread", "threadName", "taskName",
}


def _extras(record: logging.LogRecord) -> Dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS and not k.startswith("_")}


class ContextFilter(logging.Filter):
    """Inject reconcile_key/pass_id into every LogRecord."""

    def __init__(self, operator_name: str, env: str) -> None:
        super().__init__()
        self.operator_name = operator_name
        self.env = env

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        key = getattr(record, "reconcile_key", None) or reconcile_key_var.get()
        pid = getattr(record, "pass_id", None) or pass_id_var.get()

        if key is not None:
            record.reconcile_key = key
        if pid is not None:
            record.pass_id = pid

        if not hasattr(record, "service"):
            record.service = self.operator_name
        if not hasattr(record, "env"):
            record.env = self.env
        return True


class KeyValueFormatter(logging.Formatter):
    """Plain formatter that appends structured fields as key=value pairs."""

    SKIP = {"service", "env"}

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = " ".join(f"{k}={v}" for k, v in _extras(record).items() if k not in self.SKIP)
        return f"{line} {fields}" if fields else line


class ColoredFormatter(KeyValueFormatter):
    """Colored console output."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record):
        log_color = self.COLORS.get(record.levelname, self.RESET)
        record.levelname = f"{log_color}{record.levelname}{self.RESET}"
        return super().format(record)


class JSONFormatter(logging.Formatter):
    """JSON structured log lines: time, level, name, message plus extra fields."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        payload.update(_extras(record))

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def _configure_structlog() -> None:
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None, use_color: bool = True) -> logging.Logger:
    """Configure the root logger and structlog once per process.

    Args:
        level: log level name, defaults to settings.log_level
        log_file: optional rotating log file path, defaults to settings.log_file
        use_color: color console output when attached to a TTY

    Returns:
        logging.Logger: the operator's top-level logger
    """
    global _CONFIGURED
    settings = get_settings()
    logger = logging.getLogger("permissions_operator")

    if _CONFIGURED:
        return logger

    root = logging.getLogger()
    root.setLevel((level or settings.log_level).upper())

    for h in list(root.handlers):
        root.removeHandler(h)

    context_filter = ContextFilter(settings.operator_name, settings.app_env)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.addFilter(context_filter)

    if settings.log_json:
        console_formatter: logging.Formatter = JSONFormatter(datefmt=LOG_DATE_FORMAT)
    elif use_color and sys.stdout.isatty():
        console_formatter = ColoredFormatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    else:
        console_formatter = KeyValueFormatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    console_handler.setFormatter(console_formatter)
    root.addHandler(console_handler)

    file_path = log_file or settings.log_file
    if file_path:
        Path(file_path).parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            file_path,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.addFilter(context_filter)
        if settings.log_json:
            file_handler.setFormatter(JSONFormatter(datefmt=LOG_DATE_FORMAT))
        else:
            file_handler.setFormatter(KeyValueFormatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        root.addHandler(file_handler)

    # uvicorn ships its own handlers; route them through root instead
    for log_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        l = logging.getLogger(log_name)
        l.handlers = []
        l.propagate = True

    # the kubernetes client logs full request bodies at DEBUG
    logging.getLogger("kubernetes").setLevel(logging.INFO)

    _configure_structlog()
    _CONFIGURED = True
    return logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
