# tests/test_logging_setup.py

from __future__ import annotations

import logging

import pytest

from taskcrew.logging_setup import _ConsoleNoiseFilter


def _record(name: str, level: int) -> logging.LogRecord:
    return logging.LogRecord(name, level, __file__, 1, "msg", None, None)


@pytest.mark.parametrize(
    ("name", "level", "shown"),
    [
        ("taskcrew.tasks.task_store", logging.INFO, True),
        ("taskcrew.tasks.task_scheduler", logging.INFO, False),
        ("taskcrew.tasks.task_scheduler", logging.WARNING, True),
        ("py.warnings", logging.WARNING, False),
        ("asyncio", logging.WARNING, False),
        ("asyncio", logging.ERROR, True),
    ],
)
def test_console_filter(name: str, level: int, shown: bool) -> None:
    assert _ConsoleNoiseFilter().filter(_record(name, level)) is shown
