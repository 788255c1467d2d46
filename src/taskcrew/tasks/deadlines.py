# src/taskcrew/tasks/deadlines.py

"""
Deadline helpers for the command layer.

Task text may end with a relative deadline: an integer followed by
h (hours), d (days) or w (weeks), e.g. "Review code 2d".
"""

from __future__ import annotations

import math
import re
from datetime import datetime, timedelta

DEADLINE_SUFFIX_RE = re.compile(r"\s+(\d+)([hdw])$", re.IGNORECASE)
QUOTED_RE = re.compile(r"""^(["'])(.*)\1$""", re.DOTALL)

_UNIT_HOURS = {"h": 1, "d": 24, "w": 24 * 7}


def parse_deadline_suffix(text: str, now: datetime) -> tuple[str, datetime | None]:
    """
    Split "description [N(h|d|w)]" into (description, absolute deadline or None).

    Matching surrounding quotes are stripped from the description.
    """
    text = (text or "").strip()
    deadline: datetime | None = None

    m = DEADLINE_SUFFIX_RE.search(text)
    if m:
        value = int(m.group(1))
        unit = m.group(2).lower()
        deadline = now + timedelta(hours=value * _UNIT_HOURS[unit])
        text = text[: m.start()].strip()

    q = QUOTED_RE.match(text)
    if q:
        text = q.group(2).strip()

    return text, deadline


def hours_until(deadline: datetime, now: datetime) -> float:
    """Signed hours from now to deadline (negative = overdue)."""
    return (deadline - now).total_seconds() / 3600.0


def describe_remaining(hours: float) -> str:
    if hours < 0:
        return f"overdue by {abs(math.floor(hours))}h"
    if hours < 24:
        return f"{math.floor(hours)}h remaining"
    return f"{math.floor(hours / 24)}d remaining"
