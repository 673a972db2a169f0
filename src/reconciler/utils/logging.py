"""Logging infrastructure with structured JSON logging."""

import logging
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional


# Extra record attributes copied into structured output when present
STRUCTURED_FIELDS = ('run_id', 'resource_id', 'action', 'attempt', 'duration')


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for the run log file."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'thread': record.threadName,
            'message': record.getMessage(),
        }
        for field_name in STRUCTURED_FIELDS:
            if hasattr(record, field_name):
                log_data[field_name] = getattr(record, field_name)

        return json.dumps(log_data, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter for console output."""

    COLORS = {
        'DEBUG': '\033[36m',    # Cyan
        'INFO': '\033[32m',     # Green
        'WARNING': '\033[33m',  # Yellow
        'ERROR': '\033[31m',    # Red
        'CRITICAL': '\033[35m', # Magenta
    }
    RESET = '\033[0m'

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        """Format a record as ``time level [identity] message``.

        Retries of a provider call are marked with the attempt number.
        """
        level = f"{record.levelname:8}"
        if self.use_color:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"

        message = record.getMessage()
        if getattr(record, 'attempt', 1) > 1:
            message = f"{message} (attempt {record.attempt})"
        if hasattr(record, 'resource_id'):
            message = f"[{record.resource_id}] {message}"

        return f"{datetime.now(timezone.utc):%H:%M:%S} {level} {message}"


def setup_logging(log_level: str = 'info', log_dir: Optional[str] = '.reconciler/logs') -> None:
    """Install console and run-log handlers on the root logger.

    Args:
        log_level: Logging level (debug, info, warning, error)
        log_dir: Directory for the JSON-lines log file, or None to log to
            the console only
    """
    level = getattr(logging, log_level.upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(ConsoleFormatter(use_color=sys.stdout.isatty()))
    root_logger.addHandler(console_handler)

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        log_file = log_path / f"reconciler-{datetime.now(timezone.utc):%Y%m%d}.jsonl"
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)  # Always log debug to file
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LogContext:
    """Adds fields such as ``run_id`` to every record created inside the block.

    Applies to records from all threads, so the worker threads of a run
    are tagged too.
    """

    def __init__(self, **fields: Any):
        self.fields = fields
        self.previous_factory = None

    def __enter__(self):
        previous_factory = logging.getLogRecordFactory()
        fields = self.fields

        def record_factory(*args, **kwargs):
            record = previous_factory(*args, **kwargs)
            for key, value in fields.items():
                if not hasattr(record, key):
                    setattr(record, key, value)
            return record

        self.previous_factory = previous_factory
        logging.setLogRecordFactory(record_factory)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.previous_factory:
            logging.setLogRecordFactory(self.previous_factory)
