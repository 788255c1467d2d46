# src/taskcrew/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

Commands, the scheduler and the store depend on Protocols instead of concrete
implementations. This keeps connectors and storage swappable and makes testing easier.
"""

from datetime import datetime
from typing import Any, Awaitable, Protocol


class OutboundMessenger(Protocol):
    """
    Connector-side port: how services (the reminder scheduler) send text outward.

    The connector decides how to interpret:
    - room_id (can be None, e.g. no target group configured yet)
    - to_user_id (can be None)
    """

    def send_text(
            self,
            *,
            text: str,
            room_id: str | None = None,
            to_user_id: str | None = None,
    ) -> Awaitable[None]: ...


class StateSink(Protocol):
    """
    Durable storage for the whole store record.

    load() returns None when nothing has been stored yet.
    Both methods raise PersistenceError on failure.
    """

    def load(self) -> dict[str, Any] | None: ...
    def save(self, data: dict[str, Any]) -> None: ...


class TaskRepo(Protocol):
    """The slice of TaskStore the scheduler needs."""

    @property
    def settings(self) -> Any: ...

    def list_all_tasks(self) -> dict[str, list[Any]]: ...
    def tasks_by_deadline(self, now: datetime | None = None) -> list[Any]: ...
    def get_votes(self, task_id: str) -> Any: ...
    def increment_reminder(self, task_id: str) -> int: ...
    def pending_count(self) -> int: ...
