"""Structured logging configuration."""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from pythonjsonlogger import jsonlogger

from clearance_crawler.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter adding timestamp, level and source location."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = datetime.now(timezone.utc).isoformat()
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['source'] = f"{record.filename}:{record.lineno}"

        if record.funcName:
            log_record['function'] = record.funcName

        # Store context from get_logger()
        store = getattr(record, "store", None)
        if store:
            log_record['store'] = store


def setup_logging(base_dir: str | Path | None = None):
    """Configure logging for the crawler.

    Args:
        base_dir: Optional base directory to place the logs/ folder in.
                  If omitted, uses the current working directory.
    """
    logs_dir = (Path(base_dir) if base_dir else Path.cwd()) / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    level = "DEBUG" if settings.debug else settings.log_level.upper()
    root_logger.setLevel(getattr(logging, level, logging.INFO))

    root_logger.handlers.clear()

    # Console handler (human-readable)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    root_logger.addHandler(console_handler)

    # File handler (JSON lines)
    json_formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
    json_handler = logging.FileHandler(logs_dir / "app.log", encoding="utf-8")
    json_handler.setLevel(logging.DEBUG)
    json_handler.setFormatter(json_formatter)
    root_logger.addHandler(json_handler)

    error_handler = logging.FileHandler(logs_dir / "error.log", encoding="utf-8")
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(json_formatter)
    root_logger.addHandler(error_handler)

    # Playwright's own debug chatter is not useful here
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    return root_logger


class LoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that merges context fields into every record."""

    def process(self, msg, kwargs):
        extra = kwargs.get('extra', {})
        extra.update(self.extra)
        kwargs['extra'] = extra
        prefix = self.extra.get("store")
        if prefix:
            msg = f"[store {prefix}] {msg}"
        return msg, kwargs


def get_logger(name: str, **context) -> LoggerAdapter:
    """
    Get a logger with optional context fields.

    Args:
        name: Logger name (usually __name__)
        **context: Additional context fields (e.g., store='0418')

    Returns:
        LoggerAdapter with context
    """
    logger = logging.getLogger(name)
    return LoggerAdapter(logger, context)
