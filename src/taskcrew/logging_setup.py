# src/taskcrew/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path

LOG_FILE_NAME = "taskcrew.log"
SCHEDULER_LOGGER = "taskcrew.tasks.task_scheduler"


class _ConsoleNoiseFilter(logging.Filter):
    """
    Console filter for the REPL.

    The scheduler logs from its own thread while the prompt is waiting for
    input, so on the console it only shows WARNING+. Anything outside
    taskcrew (including captured py.warnings) only shows ERROR+.
    The file handler is unfiltered.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name
        if name.startswith(SCHEDULER_LOGGER):
            return record.levelno >= logging.WARNING
        if name.startswith("taskcrew."):
            return True
        return record.levelno >= logging.ERROR


def setup_logging(
    *,
    log_dir: str | Path = ".local/taskcrew",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Console handler on stderr (filtered) plus a debug log in log_dir.

    Replaces any handlers already on the root logger. Returns the log file path.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s [%(threadName)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(fmt)
    console.addFilter(_ConsoleNoiseFilter())
    root.addHandler(console)

    file_handler = logging.FileHandler(str(log_file), encoding="utf-8")
    file_handler.setLevel(file_level)
    file_handler.setFormatter(fmt)
    root.addHandler(file_handler)

    logging.captureWarnings(True)
    return log_file
