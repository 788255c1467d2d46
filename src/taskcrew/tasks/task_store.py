# src/taskcrew/tasks/task_store.py

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

from ..core.ports import StateSink
from .task_models import (
    DEFAULT_POINTS,
    CompleteResult,
    DeadlineEntry,
    GroupSettings,
    HistoryEntry,
    OwnedTask,
    PersistenceError,
    RankedTask,
    StreakRecord,
    Task,
    TaskFailure,
    TaskStatus,
    UserAction,
    UserStats,
    VoteRecord,
    VoteResult,
    normalize_tag,
)

logger = logging.getLogger(__name__)

TASK_ID_PREFIX = "T"
SECONDS_PER_DAY = 24 * 60 * 60


def _utcnow() -> datetime:
    return datetime.now(UTC)


# What a structurally bad stored record raises from the from_dict constructors.
_MALFORMED = (AttributeError, KeyError, TypeError, ValueError)


def _copy_task(task: Task) -> Task:
    return replace(task, tags=list(task.tags))


def _section(raw: dict[str, Any], key: str) -> dict[str, Any]:
    value = raw.get(key) or {}
    if not isinstance(value, dict):
        logger.warning("Ignoring malformed %r section: %r", key, value)
        return {}
    return value


class TaskStore:
    """
    In-process task store: tasks, votes, user stats, streaks, history, group settings.

    State lives in memory and the complete record is written through the injected
    sink after every mutating call. A failed write is logged, the in-memory update
    is kept, and `healthy` turns False until a later write succeeds.

    Thread-safety:
    - every public method holds one coarse RLock (operations are cheap)

    Returned records are copies; mutate state only through the store methods.
    """

    def __init__(
        self,
        sink: StateSink,
        *,
        points: Mapping[str, int] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._sink = sink
        self._points: dict[str, int] = {str(k): int(v) for k, v in DEFAULT_POINTS.items()}
        if points:
            self._points.update({str(k): int(v) for k, v in points.items()})
        self._clock = clock or _utcnow
        self._lock = threading.RLock()

        self._tasks: dict[str, list[Task]] = {}
        self._votes: dict[str, VoteRecord] = {}
        self._user_stats: dict[str, UserStats] = {}
        self._history: list[HistoryEntry] = []
        self._streaks: dict[str, StreakRecord] = {}
        self._settings = GroupSettings()

        self._last_id_ms = 0
        self._healthy = True
        self._fresh = False

        self._load()
        logger.info(
            "TaskStore ready sink=%r users=%d tasks=%d",
            self._sink,
            len(self._tasks),
            sum(len(v) for v in self._tasks.values()),
        )

    # ---- persistence ----

    def _load(self) -> None:
        try:
            raw = self._sink.load()
        except PersistenceError:
            logger.exception("Failed to load task store from %r; starting empty", self._sink)
            return

        if raw is None:
            logger.info("No stored state in %r; creating a new task store", self._sink)
            self._fresh = True
            self._persist()
            return

        try:
            self._apply(raw)
        except _MALFORMED:
            logger.exception("Stored state in %r is malformed; starting empty", self._sink)
            self._reset()

    def _reset(self) -> None:
        self._tasks = {}
        self._votes = {}
        self._user_stats = {}
        self._history = []
        self._streaks = {}
        self._settings = GroupSettings()
        self._last_id_ms = 0

    def _apply(self, raw: dict[str, Any]) -> None:
        for user_id, items in _section(raw, "tasks").items():
            if not isinstance(items, list):
                logger.warning("Skipping malformed task list for user=%s: %r", user_id, items)
                continue
            tasks: list[Task] = []
            for item in items:
                try:
                    task = Task.from_dict(item, owner=str(user_id))
                except _MALFORMED:
                    logger.warning("Skipping malformed task for user=%s: %r", user_id, item)
                    continue
                # The owning list decides the assignee.
                task.assignee = str(user_id)
                tasks.append(task)
                self._note_id(task.id)
            self._tasks[str(user_id)] = tasks

        known = {t.id for tasks in self._tasks.values() for t in tasks}
        for task_id, rec in _section(raw, "votes").items():
            if task_id not in known:
                logger.debug("Dropping vote record for unknown task_id=%s", task_id)
                continue
            try:
                self._votes[task_id] = VoteRecord.from_dict(rec or {})
            except _MALFORMED:
                logger.warning("Skipping malformed vote record task_id=%s: %r", task_id, rec)
        for task_id in known:
            self._votes.setdefault(task_id, VoteRecord())

        for user_id, rec in _section(raw, "userStats").items():
            try:
                self._user_stats[str(user_id)] = UserStats.from_dict(rec or {})
            except _MALFORMED:
                logger.warning("Skipping malformed stats for user=%s: %r", user_id, rec)

        for user_id, rec in _section(raw, "streaks").items():
            try:
                self._streaks[str(user_id)] = StreakRecord.from_dict(rec or {})
            except _MALFORMED:
                logger.warning("Skipping malformed streak for user=%s: %r", user_id, rec)

        history = raw.get("taskHistory") or []
        if not isinstance(history, list):
            logger.warning("Ignoring malformed task history: %r", history)
            history = []
        for item in history:
            try:
                self._history.append(HistoryEntry.from_dict(item))
            except _MALFORMED:
                logger.warning("Skipping malformed history entry: %r", item)

        try:
            self._settings = GroupSettings.from_dict(_section(raw, "settings"))
        except _MALFORMED:
            logger.warning("Ignoring malformed settings block: %r", raw.get("settings"))

    def _note_id(self, task_id: str) -> None:
        digits = task_id[len(TASK_ID_PREFIX):] if task_id.startswith(TASK_ID_PREFIX) else ""
        if digits.isdigit():
            self._last_id_ms = max(self._last_id_ms, int(digits))

    def to_dict(self) -> dict[str, Any]:
        """The full persisted record."""
        with self._lock:
            return {
                "tasks": {
                    user_id: [t.to_dict() for t in tasks] for user_id, tasks in self._tasks.items()
                },
                "votes": {task_id: rec.to_dict() for task_id, rec in self._votes.items()},
                "userStats": {user_id: s.to_dict() for user_id, s in self._user_stats.items()},
                "taskHistory": [h.to_dict() for h in self._history],
                "streaks": {user_id: s.to_dict() for user_id, s in self._streaks.items()},
                "settings": self._settings.to_dict(),
            }

    def _persist(self) -> bool:
        try:
            self._sink.save(self.to_dict())
        except PersistenceError:
            logger.exception("Task store flush failed sink=%r; keeping in-memory state", self._sink)
            self._healthy = False
            return False
        self._healthy = True
        return True

    def flush(self) -> bool:
        """Force a write of the whole record. Returns False if it failed."""
        with self._lock:
            return self._persist()

    @property
    def healthy(self) -> bool:
        """False after a failed flush, until the next successful one."""
        return self._healthy

    @property
    def fresh(self) -> bool:
        """True when the sink held no state and this store wrote the initial record."""
        return self._fresh

    # ---- low-level helpers ----

    def _next_id(self, now: datetime) -> str:
        ms = int(now.timestamp() * 1000)
        if ms <= self._last_id_ms:
            ms = self._last_id_ms + 1
        self._last_id_ms = ms
        return f"{TASK_ID_PREFIX}{ms}"

    def _find(self, task_id: str) -> tuple[str, Task] | None:
        for user_id, tasks in self._tasks.items():
            for task in tasks:
                if task.id == task_id:
                    return user_id, task
        return None

    def _record(self, user_id: str, action: UserAction, now: datetime, points: Mapping[str, int]) -> UserStats:
        stats = self._user_stats.get(user_id)
        if stats is None:
            stats = UserStats(last_active=now)
            self._user_stats[user_id] = stats
        stats.bump(action)
        stats.last_active = now
        stats.total_points += int(points.get(action.value, 0))
        return stats

    def _update_streak(self, user_id: str, now: datetime) -> StreakRecord:
        streak = self._streaks.get(user_id)
        if streak is None:
            streak = StreakRecord()
            self._streaks[user_id] = streak

        last = streak.last_completion
        if last is None:
            streak.current = 1
        else:
            days = math.floor((now - last).total_seconds() / SECONDS_PER_DAY)
            if days == 1:
                streak.current += 1
            elif days > 1:
                streak.current = 1
            # same day (or clock went backwards): unchanged

        streak.longest = max(streak.longest, streak.current)
        streak.last_completion = now
        return streak

    # ---- tasks ----

    def create_task(
        self,
        assignee: str,
        description: str,
        created_by: str,
        deadline: datetime | None = None,
    ) -> Task:
        """Create a pending task in the assignee's list, with an empty vote record."""
        with self._lock:
            now = self._clock()
            task = Task(
                id=self._next_id(now),
                description=description,
                assignee=assignee,
                created_by=created_by,
                created_at=now,
                deadline=deadline,
            )
            self._tasks.setdefault(assignee, []).append(task)
            self._votes[task.id] = VoteRecord()
            self._persist()
            logger.debug("Task added id=%s assignee=%s deadline=%s", task.id, assignee, deadline)
            return _copy_task(task)

    def find_task(self, task_id: str) -> OwnedTask | None:
        with self._lock:
            found = self._find(task_id)
            if found is None:
                return None
            user_id, task = found
            return OwnedTask(user_id=user_id, task=_copy_task(task))

    def list_tasks(self, user_id: str) -> list[Task]:
        """All of the user's tasks (any status) in creation order."""
        with self._lock:
            return [_copy_task(t) for t in self._tasks.get(user_id, [])]

    def list_all_tasks(self) -> dict[str, list[Task]]:
        with self._lock:
            return {
                user_id: [_copy_task(t) for t in tasks] for user_id, tasks in self._tasks.items()
            }

    def pending_count(self) -> int:
        with self._lock:
            return sum(1 for tasks in self._tasks.values() for t in tasks if t.is_pending)

    def complete_task(self, task_id: str) -> CompleteResult:
        """
        Mark a task completed.

        Side effects: history snapshot (with the owner id), owner's streak update,
        owner's tasksCompleted counter and points.
        """
        with self._lock:
            found = self._find(task_id)
            if found is None:
                return CompleteResult(success=False, failure=TaskFailure.TASK_NOT_FOUND)

            user_id, task = found
            now = self._clock()
            task.status = TaskStatus.COMPLETED
            task.completed_at = now

            self._history.append(HistoryEntry.snapshot(task, user_id))
            streak = self._update_streak(user_id, now)
            self._record(user_id, UserAction.TASKS_COMPLETED, now, self._points)
            self._persist()
            logger.info(
                "Task %s completed user=%s streak=%d/%d",
                task_id,
                user_id,
                streak.current,
                streak.longest,
            )
            return CompleteResult(success=True, task=_copy_task(task))

    def delete_task(self, task_id: str) -> bool:
        """Remove a live task and its votes. History is left alone."""
        with self._lock:
            found = self._find(task_id)
            if found is None:
                return False
            user_id, task = found
            self._tasks[user_id].remove(task)
            self._votes.pop(task_id, None)
            self._persist()
            logger.info("Task %s deleted user=%s", task_id, user_id)
            return True

    def increment_reminder(self, task_id: str) -> int:
        """Bump the task's reminder counter; 0 (and no write) for unknown ids."""
        with self._lock:
            found = self._find(task_id)
            if found is None:
                return 0
            _, task = found
            task.reminders += 1
            self._persist()
            return task.reminders

    # ---- votes ----

    def get_votes(self, task_id: str) -> VoteRecord:
        with self._lock:
            rec = self._votes.get(task_id)
            if rec is None:
                return VoteRecord()
            return VoteRecord(count=rec.count, voters=list(rec.voters))

    def vote(self, task_id: str, voter_id: str) -> VoteResult:
        with self._lock:
            if self._find(task_id) is None:
                return VoteResult(success=False, failure=TaskFailure.TASK_NOT_FOUND)

            rec = self._votes.setdefault(task_id, VoteRecord())
            if voter_id in rec.voters:
                return VoteResult(success=False, count=rec.count, failure=TaskFailure.ALREADY_VOTED)

            rec.voters.append(voter_id)
            rec.count = len(rec.voters)
            self._persist()
            return VoteResult(success=True, count=rec.count)

    def remove_vote(self, task_id: str, voter_id: str) -> VoteResult:
        with self._lock:
            if self._find(task_id) is None:
                return VoteResult(success=False, failure=TaskFailure.TASK_NOT_FOUND)

            rec = self._votes.setdefault(task_id, VoteRecord())
            if voter_id not in rec.voters:
                return VoteResult(success=False, count=rec.count, failure=TaskFailure.VOTE_NOT_FOUND)

            rec.voters.remove(voter_id)
            rec.count = len(rec.voters)
            self._persist()
            return VoteResult(success=True, count=rec.count)

    def tasks_by_votes(self) -> list[RankedTask]:
        """Pending tasks across all users, most votes first."""
        with self._lock:
            ranked = [
                RankedTask(user_id=user_id, task=_copy_task(t), votes=self._votes.get(t.id, VoteRecord()).count)
                for user_id, tasks in self._tasks.items()
                for t in tasks
                if t.is_pending
            ]
        ranked.sort(key=lambda r: r.votes, reverse=True)
        return ranked

    # ---- stats / streaks / history ----

    def record_user_action(
        self,
        user_id: str,
        action: UserAction | str,
        points: Mapping[str, int] | None = None,
    ) -> UserStats:
        """
        Count one action for the user and award its points.

        `points` overrides the store's points table for this call.
        Raises ValueError for an unknown action name.
        """
        act = UserAction(action)
        with self._lock:
            table = self._points if points is None else {str(k): int(v) for k, v in points.items()}
            stats = self._record(user_id, act, self._clock(), table)
            self._persist()
            return replace(stats)

    def get_user_stats(self, user_id: str) -> UserStats:
        with self._lock:
            stats = self._user_stats.get(user_id)
            return replace(stats) if stats is not None else UserStats()

    def leaderboard(self, limit: int = 10) -> list[tuple[str, UserStats]]:
        """Users with stats, highest total points first."""
        with self._lock:
            rows = [(user_id, replace(s)) for user_id, s in self._user_stats.items()]
        rows.sort(key=lambda r: r[1].total_points, reverse=True)
        return rows[: max(0, int(limit))]

    def get_streak(self, user_id: str) -> StreakRecord:
        with self._lock:
            streak = self._streaks.get(user_id)
            return replace(streak) if streak is not None else StreakRecord()

    def get_history(self) -> list[HistoryEntry]:
        with self._lock:
            return list(self._history)

    def recent_history(self, limit: int = 10) -> list[HistoryEntry]:
        """Last `limit` completions, newest first."""
        if limit <= 0:
            return []
        with self._lock:
            return list(reversed(self._history[-limit:]))

    # ---- deadlines / tags ----

    def tasks_by_deadline(self, now: datetime | None = None) -> list[DeadlineEntry]:
        """
        Pending tasks that carry a deadline, soonest (or most overdue) first.

        hours_until is signed: negative means overdue.
        """
        with self._lock:
            now = now or self._clock()
            out = [
                DeadlineEntry(
                    user_id=user_id,
                    task=_copy_task(t),
                    hours_until=(t.deadline - now).total_seconds() / 3600.0,
                )
                for user_id, tasks in self._tasks.items()
                for t in tasks
                if t.is_pending and t.deadline is not None
            ]
        out.sort(key=lambda e: e.hours_until)
        return out

    def add_tag(self, task_id: str, tag: str) -> bool:
        """Attach a lower-cased tag. False if the task is unknown or already has it."""
        norm = normalize_tag(tag)
        if not norm:
            return False
        with self._lock:
            found = self._find(task_id)
            if found is None:
                return False
            _, task = found
            if norm in task.tags:
                return False
            task.tags.append(norm)
            self._persist()
            return True

    def tasks_by_tag(self, tag: str) -> list[OwnedTask]:
        norm = normalize_tag(tag)
        with self._lock:
            return [
                OwnedTask(user_id=user_id, task=_copy_task(t))
                for user_id, tasks in self._tasks.items()
                for t in tasks
                if t.is_pending and t.has_tag(norm)
            ]

    # ---- group settings ----

    @property
    def settings(self) -> GroupSettings:
        with self._lock:
            return replace(self._settings, admins=list(self._settings.admins))

    def get_target_group(self) -> str | None:
        with self._lock:
            return self._settings.target_group

    def set_target_group(self, group_id: str | None) -> None:
        with self._lock:
            self._settings.target_group = group_id
            self._persist()
            logger.info("Target group set to %s", group_id)

    def set_admins(self, admins: Iterable[str]) -> None:
        with self._lock:
            clean: list[str] = []
            for a in admins:
                a = str(a).strip()
                if a and a not in clean:
                    clean.append(a)
            self._settings.admins = clean
            self._persist()

    def is_admin(self, user_id: str | None) -> bool:
        """Everyone is an admin until an admin list is configured."""
        with self._lock:
            if not self._settings.admins:
                return True
            return user_id is not None and user_id in self._settings.admins

    def set_reminder_enabled(self, enabled: bool) -> None:
        with self._lock:
            self._settings.reminder_enabled = bool(enabled)
            self._persist()

    def set_reminder_interval(self, minutes: int) -> None:
        minutes = int(minutes)
        if minutes < 1:
            raise ValueError("reminder interval must be at least 1 minute")
        with self._lock:
            self._settings.reminder_interval = minutes
            self._persist()
