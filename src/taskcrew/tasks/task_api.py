# src/taskcrew/tasks/task_api.py

from __future__ import annotations

import logging
from datetime import UTC, datetime

from ..core.state import AppState
from .deadlines import parse_deadline_suffix
from .task_models import Task, UserAction, VoteResult

logger = logging.getLogger(__name__)


def create_task_from_text(
    state: AppState,
    *,
    text: str,
    created_by: str,
    assignee: str | None = None,
    now: datetime | None = None,
) -> Task:
    """
    Create a task from free text with an optional deadline suffix ("... 2d").

    The task goes to `assignee` (defaults to the creator) and the creator gets
    credit for a created task.
    """
    now = now or datetime.now(UTC)
    description, deadline = parse_deadline_suffix(text, now)

    task = state.task_store.create_task(
        assignee or created_by,
        description,
        created_by,
        deadline=deadline,
    )
    state.task_store.record_user_action(created_by, UserAction.TASKS_CREATED)
    logger.info("Task %s created by=%s for=%s", task.id, created_by, task.assignee)
    return task


def cast_vote(state: AppState, *, task_id: str, voter_id: str) -> VoteResult:
    """Vote on a task and credit the voter when the vote counts."""
    result = state.task_store.vote(task_id, voter_id)
    if result.success:
        state.task_store.record_user_action(voter_id, UserAction.VOTES_GIVEN)
    return result
