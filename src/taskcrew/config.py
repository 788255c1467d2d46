# src/taskcrew/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time.
- Everything else takes the settings object by injection; get_settings() is only
  read by the composition root.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

ENV_PREFIX = "TASKCREW"

load_dotenv(override=False)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_optional(name: str) -> Optional[str]:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return None
    return v.strip()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    parts = [p.strip() for p in raw.replace(",", " ").split() if p.strip()]
    return parts


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


STORAGE_BACKENDS = ("json", "sqlite", "memory")


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Storage ----
    data_dir: Path
    storage_backend: str
    state_path: Path

    # ---- Commands / console ----
    command_prefix: str
    console_enabled: bool
    console_user_id: str
    console_room_id: str

    # ---- Scheduler ----
    scheduler_enabled: bool
    scheduler_tick_seconds: float
    deadline_check_minutes: int
    deadline_alert_hours: float
    morning_hour: int

    # ---- Group defaults (seed the stored settings block) ----
    target_group: Optional[str]
    admins: List[str]
    reminder_enabled: bool
    reminder_interval_minutes: int

    # ---- Points ----
    points_task_created: int
    points_task_completed: int
    points_vote_given: int

    def points_table(self) -> dict[str, int]:
        return {
            "tasksCreated": self.points_task_created,
            "tasksCompleted": self.points_task_completed,
            "votesGiven": self.points_vote_given,
        }

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "taskcrew") or "taskcrew"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/taskcrew"))

        storage_backend = _env(_k("STORAGE"), "json").strip().lower()
        if storage_backend not in STORAGE_BACKENDS:
            raise ValueError(
                f"{_k('STORAGE')} must be one of {', '.join(STORAGE_BACKENDS)}; got {storage_backend!r}"
            )
        default_state = data_dir / ("tasks.sqlite3" if storage_backend == "sqlite" else "tasks.json")
        state_path = _env_path(_k("STATE_PATH"), default_state)

        command_prefix = _env(_k("COMMAND_PREFIX"), "!") or "!"
        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)
        console_user_id = _env(_k("CONSOLE_USER_ID"), "me").strip() or "me"
        console_room_id = _env(_k("CONSOLE_ROOM_ID"), "console").strip() or "console"

        scheduler_enabled = _env_bool(_k("SCHEDULER_ENABLED"), True)
        scheduler_tick_seconds = _env_float(_k("SCHEDULER_TICK_SECONDS"), 30.0)
        deadline_check_minutes = _env_int(_k("DEADLINE_CHECK_MINUTES"), 60)
        deadline_alert_hours = _env_float(_k("DEADLINE_ALERT_HOURS"), 24.0)
        morning_hour = _env_int(_k("MORNING_HOUR"), 9)

        target_group = _env_optional(_k("TARGET_GROUP"))
        admins = _env_list(_k("ADMINS"), [])
        reminder_enabled = _env_bool(_k("REMINDER_ENABLED"), True)
        reminder_interval_minutes = max(1, _env_int(_k("REMINDER_INTERVAL_MINUTES"), 90))

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            storage_backend=storage_backend,
            state_path=state_path,
            command_prefix=command_prefix,
            console_enabled=console_enabled,
            console_user_id=console_user_id,
            console_room_id=console_room_id,
            scheduler_enabled=scheduler_enabled,
            scheduler_tick_seconds=scheduler_tick_seconds,
            deadline_check_minutes=deadline_check_minutes,
            deadline_alert_hours=deadline_alert_hours,
            morning_hour=morning_hour,
            target_group=target_group,
            admins=admins,
            reminder_enabled=reminder_enabled,
            reminder_interval_minutes=reminder_interval_minutes,
            points_task_created=_env_int(_k("POINTS_TASK_CREATED"), 5),
            points_task_completed=_env_int(_k("POINTS_TASK_COMPLETED"), 10),
            points_vote_given=_env_int(_k("POINTS_VOTE_GIVEN"), 2),
        )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    """Process-wide settings, read from the environment on first use."""
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings.from_env()
    return _SETTINGS
