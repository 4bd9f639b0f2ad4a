"""Logging setup: console and file output with elapsed-time prefixes."""

from __future__ import annotations

import contextlib
import logging
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path

from mcportscan import config

LOGGER_NAME = "mcportscan"
LOG_FILE_NAME = "log.txt"

_MARK = "_mcportscan_handler"
_LOCK = threading.Lock()
_LEVEL_NAMES = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
    logging.CRITICAL: "ERROR",
}


class ElapsedFormatter(logging.Formatter):
    """Formats records as ``[LEVEL] [HH:MM:SS] <thread>`` padded to 25 columns."""

    def __init__(self, epoch: float | None = None) -> None:
        super().__init__()
        self.epoch = config.EPOCH if epoch is None else epoch

    def format(self, record: logging.LogRecord) -> str:
        elapsed = max(0, int(record.created - self.epoch))
        hours, remainder = divmod(elapsed, 3600)
        minutes, seconds = divmod(remainder, 60)
        level = _LEVEL_NAMES.get(record.levelno, record.levelname)
        thread = record.threadName or "-"
        prefix = f"[{level}] [{hours:02}:{minutes:02}:{seconds:02}] <{thread}>"
        text = f"{prefix:<25}{record.getMessage()}"
        if record.exc_info:
            text = f"{text}\n{self.formatException(record.exc_info)}"
        return text


def init_logger(
    level: int = config.LOG_LEVEL_RELEASE, output_dir: str | Path = config.OUTPUT_DIR
) -> logging.Logger:
    """Configure the package logger once; later calls return it unchanged."""
    logger = logging.getLogger(LOGGER_NAME)
    with _LOCK:
        if any(getattr(handler, _MARK, False) for handler in logger.handlers):
            return logger
        log_path = Path(output_dir) / LOG_FILE_NAME
        with contextlib.suppress(OSError):
            log_path.unlink()
        formatter = ElapsedFormatter()
        handlers = [
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_path, encoding="utf-8"),
        ]
        for handler in handlers:
            handler.setFormatter(formatter)
            setattr(handler, _MARK, True)
            logger.addHandler(handler)
        logger.setLevel(level)
        logger.propagate = False
    logger.debug("[EPOCH]: %s", datetime.now(timezone.utc).isoformat())
    return logger


def setup_environment(
    debug: bool = False, output_dir: str | Path = config.OUTPUT_DIR
) -> logging.Logger:
    """Create the output directory and start logging at the matching level."""
    Path(output_dir).mkdir(parents=True, exist_ok=True)
    level = config.LOG_LEVEL_DEBUG if debug else config.LOG_LEVEL_RELEASE
    return init_logger(level, output_dir)