# util/logger.py
import logging
import os
import sys
import threading
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from typing import Iterator, Optional
from config.settings import settings

logging.captureWarnings(True)

_context = threading.local()


@contextmanager
def bind_task(task_id: Optional[str]) -> Iterator[None]:
    """Tag every record emitted by this thread with `task_id` while the block runs."""
    previous = getattr(_context, "task_id", None)
    _context.task_id = task_id
    try:
        yield
    finally:
        _context.task_id = previous


class TaskContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.task = getattr(_context, "task_id", None) or "-"
        return True


class ColoredFormatter(logging.Formatter):
    COLORS = {
        "DEBUG": "\033[37m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[41m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        # Color a copy; the file handler sees the same record afterwards.
        tinted = logging.makeLogRecord(record.__dict__)
        tinted.levelname = f"{self.COLORS.get(record.levelname, self.RESET)}{record.levelname}{self.RESET}"
        return super().format(tinted)


def init_logger() -> logging.Logger:
    """
    Idempotent logger init:
    - Always logs to stdout, colored.
    - Writes plain lines to LOG_DIR/LOG_FILE_NAME only when settings.LOG_TO_FILE is True,
      rotated by size (LOG_MAX_BYTES/LOG_BACKUP_COUNT).
    - Each line carries the thread and the task id it was emitted under, so
      worker output can be followed per task.
    """
    root = logging.getLogger()
    if getattr(root, "_docvault_inited", False):
        return logging.getLogger(settings.LOGGER_NAME)

    level = getattr(logging, (settings.LOG_LEVEL or "INFO").upper(), logging.INFO)
    root.setLevel(level)
    for h in list(root.handlers):
        root.removeHandler(h)

    text_fmt = "%(asctime)s %(levelname)s %(name)s [%(threadName)s task=%(task)s] - %(message)s"
    date_fmt = "%Y-%m-%dT%H:%M:%S%z"
    context = TaskContextFilter()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(ColoredFormatter(text_fmt, datefmt=date_fmt))
    console.addFilter(context)
    root.addHandler(console)

    if settings.LOG_TO_FILE:
        os.makedirs(settings.LOG_DIR, exist_ok=True)
        fh = RotatingFileHandler(
            os.path.join(settings.LOG_DIR, settings.LOG_FILE_NAME),
            maxBytes=settings.LOG_MAX_BYTES,
            backupCount=settings.LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(text_fmt, datefmt=date_fmt))
        fh.addFilter(context)
        root.addHandler(fh)

    # Multipart parsing logs every part at DEBUG.
    for name in ("multipart", "python_multipart"):
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.INFO)

    root._docvault_inited = True
    logger = logging.getLogger(settings.LOGGER_NAME)
    logger.debug("logger.init level=%s file=%s", logging.getLevelName(level), settings.LOG_TO_FILE)
    return logger
