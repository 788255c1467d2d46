# src/taskcrew/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the storage sink and TaskStore into AppState,
- seeds the stored group settings from configuration on first run.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.state import AppState
from ..tasks.task_models import GroupSettings
from ..tasks.task_sinks import build_sink
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.state_path.parent.mkdir(parents=True, exist_ok=True)


def seed_group_settings(store: TaskStore, settings) -> bool:
    """
    Copy configured group defaults into a freshly created store.

    Once a record exists, its settings block belongs to the commands
    (!setgroup, !reminders) and configuration no longer touches it.
    Returns True when anything was seeded.
    """
    if not store.fresh:
        return False

    defaults = GroupSettings()
    seeded = False

    target_group = getattr(settings, "target_group", None)
    if target_group:
        store.set_target_group(target_group)
        seeded = True

    admins = list(getattr(settings, "admins", []) or [])
    if admins:
        store.set_admins(admins)
        seeded = True

    interval = int(getattr(settings, "reminder_interval_minutes", defaults.reminder_interval))
    if interval != defaults.reminder_interval:
        store.set_reminder_interval(interval)
        seeded = True

    if not bool(getattr(settings, "reminder_enabled", True)):
        store.set_reminder_enabled(False)
        seeded = True

    if seeded:
        logger.info("Seeded group settings from configuration.")
    return seeded


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    points = settings.points_table() if hasattr(settings, "points_table") else None
    store = TaskStore(build_sink(settings), points=points)
    seed_group_settings(store, settings)

    if not store.healthy:
        logger.warning("Task store could not write to %s; changes may not persist.", settings.state_path)

    return AppState(settings=settings, task_store=store)
