# src/taskcrew/tasks/task_models.py

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class TaskStatus(StrEnum):
    """Task lifecycle status: pending -> completed (or deleted)."""

    PENDING = "pending"
    COMPLETED = "completed"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.PENDING
        try:
            return cls(raw)
        except ValueError:
            logger.warning("Unknown task status %r; treating as pending", raw)
            return cls.PENDING


class TaskFailure(StrEnum):
    """Why a mutating store call did not apply."""

    TASK_NOT_FOUND = "task_not_found"
    ALREADY_VOTED = "already_voted"
    VOTE_NOT_FOUND = "vote_not_found"


class UserAction(StrEnum):
    """Counters tracked per user. Values are the persisted key names."""

    TASKS_CREATED = "tasksCreated"
    TASKS_COMPLETED = "tasksCompleted"
    VOTES_GIVEN = "votesGiven"


DEFAULT_POINTS: dict[UserAction, int] = {
    UserAction.TASKS_CREATED: 5,
    UserAction.TASKS_COMPLETED: 10,
    UserAction.VOTES_GIVEN: 2,
}


class PersistenceError(RuntimeError):
    """The durable flush (or load) of the store state failed."""


def normalize_tag(tag: str) -> str:
    return (tag or "").strip().lower()


def dt_to_str(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def parse_dt(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    raw = str(value)
    # JavaScript toISOString() writes a trailing "Z".
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        logger.warning("Unparseable timestamp %r; ignoring", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass(slots=True)
class Task:
    id: str
    description: str
    assignee: str
    created_by: str
    created_at: datetime

    deadline: datetime | None = None
    status: TaskStatus = TaskStatus.PENDING
    tags: list[str] = field(default_factory=list)
    reminders: int = 0
    completed_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == TaskStatus.PENDING

    def has_tag(self, tag: str) -> bool:
        return normalize_tag(tag) in self.tags

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "assignee": self.assignee,
            "createdBy": self.created_by,
            "createdAt": dt_to_str(self.created_at),
            "deadline": dt_to_str(self.deadline),
            "status": self.status.value,
            "tags": list(self.tags),
            "reminders": self.reminders,
            "completedAt": dt_to_str(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, owner: str | None = None) -> Task:
        """
        Build a Task from its persisted form.

        Older files carry no "assignee" (the owning list key is the assignee)
        and may lack "tags"/"reminders"; extra keys such as "priority" are ignored.
        """
        tags: list[str] = []
        for raw in data.get("tags") or []:
            tag = normalize_tag(str(raw))
            if tag and tag not in tags:
                tags.append(tag)

        assignee = data.get("assignee") or owner or ""
        return cls(
            id=str(data["id"]),
            description=str(data.get("description", "")),
            assignee=str(assignee),
            created_by=str(data.get("createdBy") or assignee),
            created_at=parse_dt(data.get("createdAt")) or datetime.fromtimestamp(0, UTC),
            deadline=parse_dt(data.get("deadline")),
            status=TaskStatus.from_db(data.get("status")),
            tags=tags,
            reminders=int(data.get("reminders") or 0),
            completed_at=parse_dt(data.get("completedAt")),
        )


@dataclass(slots=True)
class VoteRecord:
    count: int = 0
    voters: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"count": self.count, "voters": list(self.voters)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VoteRecord:
        voters: list[str] = []
        for v in data.get("voters") or []:
            if str(v) not in voters:
                voters.append(str(v))
        # count is always derived from voters so the two can never disagree.
        return cls(count=len(voters), voters=voters)


@dataclass(slots=True)
class UserStats:
    tasks_created: int = 0
    tasks_completed: int = 0
    votes_given: int = 0
    total_points: int = 0
    last_active: datetime | None = None

    def bump(self, action: UserAction) -> None:
        if action == UserAction.TASKS_CREATED:
            self.tasks_created += 1
        elif action == UserAction.TASKS_COMPLETED:
            self.tasks_completed += 1
        elif action == UserAction.VOTES_GIVEN:
            self.votes_given += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "tasksCreated": self.tasks_created,
            "tasksCompleted": self.tasks_completed,
            "votesGiven": self.votes_given,
            "totalPoints": self.total_points,
            "lastActive": dt_to_str(self.last_active),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserStats:
        return cls(
            tasks_created=int(data.get("tasksCreated") or 0),
            tasks_completed=int(data.get("tasksCompleted") or 0),
            votes_given=int(data.get("votesGiven") or 0),
            total_points=int(data.get("totalPoints") or 0),
            last_active=parse_dt(data.get("lastActive")),
        )


@dataclass(slots=True)
class StreakRecord:
    current: int = 0
    longest: int = 0
    last_completion: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "current": self.current,
            "longest": self.longest,
            "lastCompletion": dt_to_str(self.last_completion),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StreakRecord:
        current = int(data.get("current") or 0)
        return cls(
            current=current,
            longest=max(current, int(data.get("longest") or 0)),
            last_completion=parse_dt(data.get("lastCompletion")),
        )


@dataclass(slots=True, frozen=True)
class HistoryEntry:
    """Snapshot of a task at completion time. Never mutated."""

    user_id: str
    task_id: str
    description: str
    created_by: str
    created_at: datetime
    completed_at: datetime
    deadline: datetime | None = None
    tags: tuple[str, ...] = ()
    reminders: int = 0

    @classmethod
    def snapshot(cls, task: Task, user_id: str) -> HistoryEntry:
        return cls(
            user_id=user_id,
            task_id=task.id,
            description=task.description,
            created_by=task.created_by,
            created_at=task.created_at,
            completed_at=task.completed_at or task.created_at,
            deadline=task.deadline,
            tags=tuple(task.tags),
            reminders=task.reminders,
        )

    def to_dict(self) -> dict[str, Any]:
        # Same shape as a task dict plus userId, as older files store it.
        return {
            "id": self.task_id,
            "userId": self.user_id,
            "description": self.description,
            "createdBy": self.created_by,
            "createdAt": dt_to_str(self.created_at),
            "deadline": dt_to_str(self.deadline),
            "status": TaskStatus.COMPLETED.value,
            "tags": list(self.tags),
            "reminders": self.reminders,
            "completedAt": dt_to_str(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HistoryEntry:
        created_at = parse_dt(data.get("createdAt")) or datetime.fromtimestamp(0, UTC)
        return cls(
            user_id=str(data.get("userId") or data.get("assignee") or ""),
            task_id=str(data.get("id", "")),
            description=str(data.get("description", "")),
            created_by=str(data.get("createdBy") or ""),
            created_at=created_at,
            completed_at=parse_dt(data.get("completedAt")) or created_at,
            deadline=parse_dt(data.get("deadline")),
            tags=tuple(normalize_tag(str(t)) for t in data.get("tags") or []),
            reminders=int(data.get("reminders") or 0),
        )


@dataclass(slots=True)
class GroupSettings:
    target_group: str | None = None
    admins: list[str] = field(default_factory=list)
    reminder_enabled: bool = True
    reminder_interval: int = 90  # minutes

    def to_dict(self) -> dict[str, Any]:
        return {
            "targetGroup": self.target_group,
            "admins": list(self.admins),
            "reminderEnabled": self.reminder_enabled,
            "reminderInterval": self.reminder_interval,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GroupSettings:
        enabled = data.get("reminderEnabled")
        return cls(
            target_group=data.get("targetGroup"),
            admins=[str(a) for a in data.get("admins") or []],
            reminder_enabled=True if enabled is None else bool(enabled),
            reminder_interval=max(1, int(data.get("reminderInterval") or 90)),
        )


# ---- query / mutation results ----


@dataclass(slots=True, frozen=True)
class VoteResult:
    success: bool
    count: int = 0
    failure: TaskFailure | None = None


@dataclass(slots=True, frozen=True)
class CompleteResult:
    success: bool
    task: Task | None = None
    failure: TaskFailure | None = None


@dataclass(slots=True, frozen=True)
class OwnedTask:
    """A task annotated with the id of the user whose list holds it."""

    user_id: str
    task: Task


@dataclass(slots=True, frozen=True)
class DeadlineEntry:
    user_id: str
    task: Task
    hours_until: float

    @property
    def overdue(self) -> bool:
        return self.hours_until < 0


@dataclass(slots=True, frozen=True)
class RankedTask:
    user_id: str
    task: Task
    votes: int
