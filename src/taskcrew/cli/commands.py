# src/taskcrew/cli/commands.py

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from datetime import UTC, datetime

from ..core.state import AppState
from ..tasks.deadlines import describe_remaining, hours_until
from ..tasks.task_api import cast_vote, create_task_from_text
from ..tasks.task_models import Task, TaskFailure

CommandHandler = Callable[[AppState, list[str], str | None, str | None], str]

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "!"


class CommandRegistry:
    """Command registry used by connectors (!help, !addtask, ...)."""

    def __init__(self, prefix: str = DEFAULT_PREFIX) -> None:
        self.prefix = prefix
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        user_id: str | None = None,
        room_id: str | None = None,
    ) -> str | None:
        """
        Handle a string like "!command args".
        Returns a reply string or None if not a command.

        The prefix comes from state.settings.command_prefix when present.
        """
        prefix = str(getattr(state.settings, "command_prefix", None) or self.prefix)
        line = line.strip()
        if not line.startswith(prefix):
            return None

        parts = line[len(prefix):].split()
        if not parts:
            return f"Empty command. Use {prefix}help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: {prefix}{name}. Use {prefix}help to list available commands."

        logger.debug("Command %s%s from user=%s room=%s", prefix, name, user_id, room_id)
        return handler(state, args, user_id, room_id)

    def build_help(self, prefix: str | None = None) -> str:
        prefix = prefix or self.prefix
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  {prefix}{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()

MOTIVATION_QUOTES = (
    "Keep pushing! Every task completed is a step towards success.",
    "You got this! Small progress is still progress.",
    "Stay focused! Great things take time and effort.",
    "Stay on target! Consistency beats perfection.",
    "Champion mindset! Every completed task is a win.",
)


def _now() -> datetime:
    return datetime.now(UTC)


def _prefix(state: AppState) -> str:
    return str(getattr(state.settings, "command_prefix", None) or DEFAULT_PREFIX)


def _plural(n: int, word: str) -> str:
    return f"{n} {word}" if n == 1 else f"{n} {word}s"


def _split_mention(args: list[str]) -> tuple[str | None, list[str]]:
    """First "@name" token selects the target user; all mention tokens are dropped."""
    target: str | None = None
    rest: list[str] = []
    for a in args:
        if a.startswith("@") and len(a) > 1:
            if target is None:
                target = a[1:]
            continue
        rest.append(a)
    return target, rest


def _task_lines(state: AppState, task: Task, now: datetime) -> list[str]:
    votes = state.task_store.get_votes(task.id).count
    lines = [f"   id {task.id} | votes {votes}"]
    if task.deadline is not None:
        lines.append(f"   {describe_remaining(hours_until(task.deadline, now))}")
    if task.tags:
        lines.append(f"   tags: {', '.join(task.tags)}")
    return lines


def cmd_help(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    return registry.build_help(_prefix(state))


def cmd_ping(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    return "Pong! Bot is active."


def cmd_addtask(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    """
    !addtask Buy groceries        -> task for yourself
    !addtask @john Review code 1d -> task for john, due in one day
    """
    p = _prefix(state)
    if not user_id:
        return "No user_id in this context."

    target, rest = _split_mention(args)
    text = " ".join(rest).strip()
    if not text:
        return f"Usage: {p}addtask [@user] description [2h|3d|1w]\nExample: {p}addtask Buy groceries 2d"

    task = create_task_from_text(state, text=text, created_by=user_id, assignee=target)
    lines = [
        "Task added.",
        f"  Assigned to: {task.assignee}",
        f"  Task ID: {task.id}",
        f"  Description: {task.description}",
        f"  Created by: {task.created_by}",
    ]
    if task.deadline is not None:
        lines.append(f"  Deadline: {task.deadline.astimezone().strftime('%Y-%m-%d %H:%M')}")
    lines.append(f"Use {p}vote {task.id} to increase priority.")
    return "\n".join(lines)


def cmd_vote(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    p = _prefix(state)
    if not args:
        return f"Usage: {p}vote <TaskID>"
    if not user_id:
        return "No user_id in this context."

    result = cast_vote(state, task_id=args[0], voter_id=user_id)
    if not result.success:
        if result.failure == TaskFailure.TASK_NOT_FOUND:
            return f"Task not found! Use {p}alltasks to see available tasks."
        return "You have already voted for this task!"
    return f"Vote recorded! Total votes: {result.count}"


def cmd_unvote(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    if not args:
        return f"Usage: {_prefix(state)}unvote <TaskID>"
    if not user_id:
        return "No user_id in this context."

    result = state.task_store.remove_vote(args[0], user_id)
    if not result.success:
        if result.failure == TaskFailure.TASK_NOT_FOUND:
            return "Task not found!"
        return "You have not voted for this task."
    return f"Vote removed! Current votes: {result.count}"


def cmd_mytasks(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    if not user_id:
        return "No user_id in this context."

    pending = [t for t in state.task_store.list_tasks(user_id) if t.is_pending]
    if not pending:
        return f"You have no pending tasks! Use {_prefix(state)}addtask to create one."

    now = _now()
    lines = [f"Tasks for {user_id}:"]
    for i, task in enumerate(pending, start=1):
        lines.append(f"{i}. {task.description}")
        lines.extend(_task_lines(state, task, now))
    return "\n".join(lines)


def cmd_alltasks(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    now = _now()
    lines = ["All active tasks:"]
    total = 0
    for owner, tasks in state.task_store.list_all_tasks().items():
        pending = [t for t in tasks if t.is_pending]
        if not pending:
            continue
        lines.append(f"{owner}:")
        for task in pending:
            lines.append(f" - {task.description}")
            lines.extend(_task_lines(state, task, now))
            total += 1

    if total == 0:
        return "No active tasks! Everyone is free!"
    lines.append(f"Total: {_plural(total, 'task')}")
    return "\n".join(lines)


def cmd_priority(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    ranked = state.task_store.tasks_by_votes()
    if not ranked:
        return "No active tasks!"
    lines = ["Tasks by priority (votes):"]
    for i, r in enumerate(ranked, start=1):
        lines.append(f"{i}. {r.user_id} - {r.task.description}")
        lines.append(f"   id {r.task.id} | votes {r.votes}")
    return "\n".join(lines)


def cmd_complete(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    if not args:
        return f"Usage: {_prefix(state)}complete <TaskID>"

    result = state.task_store.complete_task(args[0])
    if not result.success or result.task is None:
        return "Task not found!"

    owner = result.task.assignee
    streak = state.task_store.get_streak(owner)
    points = int(getattr(state.settings, "points_task_completed", 10))
    lines = ["Task completed!", f"  {result.task.description}"]
    if streak.current > 1:
        lines.append(f"  {streak.current}-day streak! Keep it up!")
    lines.append(f"+{points} points for {owner}")
    return "\n".join(lines)


def cmd_delete(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    if not args:
        return f"Usage: {_prefix(state)}delete <TaskID>"
    if not state.task_store.delete_task(args[0]):
        return "Task not found!"
    return "Task deleted."


def cmd_stats(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    target, _ = _split_mention(args)
    target = target or user_id
    if not target:
        return "No user_id in this context."

    stats = state.task_store.get_user_stats(target)
    streak = state.task_store.get_streak(target)
    return "\n".join(
        [
            f"Statistics for {target}:",
            f"  Tasks created: {stats.tasks_created}",
            f"  Tasks completed: {stats.tasks_completed}",
            f"  Votes given: {stats.votes_given}",
            f"  Total points: {stats.total_points}",
            f"  Current streak: {_plural(streak.current, 'day')}",
            f"  Longest streak: {_plural(streak.longest, 'day')}",
        ]
    )


def cmd_leaderboard(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    rows = state.task_store.leaderboard(limit=10)
    if not rows:
        return "No activity yet."
    lines = ["Leaderboard - top contributors:"]
    for i, (uid, stats) in enumerate(rows, start=1):
        lines.append(f"{i}. {uid} - {stats.total_points} pts")
        lines.append(f"   {stats.tasks_completed} completed | {stats.tasks_created} created")
    return "\n".join(lines)


def cmd_streak(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    target, _ = _split_mention(args)
    target = target or user_id
    if not target:
        return "No user_id in this context."

    streak = state.task_store.get_streak(target)
    if streak.current >= 7:
        note = "Legendary! Keep it up!"
    elif streak.current >= 3:
        note = "On fire! Don't break it!"
    elif streak.current >= 1:
        note = "Good start! Keep going!"
    else:
        note = "Complete a task to start your streak!"
    return "\n".join(
        [
            f"Completion streak for {target}:",
            f"  Current: {_plural(streak.current, 'day')}",
            f"  Longest: {_plural(streak.longest, 'day')}",
            note,
        ]
    )


def cmd_deadlines(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    entries = state.task_store.tasks_by_deadline()
    if not entries:
        return "No tasks with deadlines!"
    lines = ["Tasks by deadline:"]
    for e in entries:
        marker = "OVERDUE" if e.overdue else ("soon" if e.hours_until < 24 else "ok")
        lines.append(f"[{marker}] {e.user_id} - {e.task.description}")
        lines.append(f"   id {e.task.id} | {describe_remaining(e.hours_until)}")
    return "\n".join(lines)


def cmd_tag(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    if len(args) < 2:
        return f"Usage: {_prefix(state)}tag <TaskID> <tag>"
    task_id, tag = args[0], args[1].lower()
    if state.task_store.add_tag(task_id, tag):
        return f'Tag "{tag}" added to task.'
    return "Task not found or tag already exists!"


def cmd_filter(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    if not args:
        return f"Usage: {_prefix(state)}filter <tag>"
    tag = args[0].lower()
    found = state.task_store.tasks_by_tag(tag)
    if not found:
        return f'No tasks found with tag "{tag}"'
    lines = [f'Tasks tagged "{tag}":']
    for item in found:
        votes = state.task_store.get_votes(item.task.id).count
        lines.append(f" - {item.user_id} - {item.task.description}")
        lines.append(f"   id {item.task.id} | votes {votes}")
    return "\n".join(lines)


def cmd_history(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    entries = state.task_store.recent_history(limit=10)
    if not entries:
        return "No completed tasks yet!"
    lines = ["Recently completed tasks:"]
    for h in entries:
        lines.append(f" - {h.user_id} - {h.description}")
        lines.append(f"   {h.completed_at.astimezone().strftime('%Y-%m-%d')}")
    return "\n".join(lines)


def cmd_motivate(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    return random.choice(MOTIVATION_QUOTES)


def cmd_setgroup(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    """
    !setgroup       -> send reminders to the current room
    !setgroup <id>  -> send reminders to the given room
    """
    if not state.task_store.is_admin(user_id):
        return "Only admins can change the target group."
    group = args[0] if args else room_id
    if not group:
        return f"Usage: {_prefix(state)}setgroup <group id>"
    state.task_store.set_target_group(group)
    return f"Reminders will be sent to {group}."


def cmd_reminders(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    """
    !reminders          -> show status
    !reminders on|off   -> toggle
    !reminders <mins>   -> set the interval
    """
    p = _prefix(state)
    store = state.task_store
    if not args:
        s = store.settings
        status = "ON" if s.reminder_enabled else "OFF"
        return f"Reminders are {status}, every {s.reminder_interval} minutes."

    if not store.is_admin(user_id):
        return "Only admins can change reminder settings."

    arg = args[0].lower()
    if arg in ("on", "1", "true", "yes"):
        store.set_reminder_enabled(True)
        return "Reminders enabled."
    if arg in ("off", "0", "false", "no"):
        store.set_reminder_enabled(False)
        return "Reminders disabled."
    if arg.isdigit() and int(arg) >= 1:
        store.set_reminder_interval(int(arg))
        return f"Reminder interval set to {int(arg)} minutes."
    return f"Usage: {p}reminders on | {p}reminders off | {p}reminders <minutes>"


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["commands"])
registry.register("addtask", cmd_addtask, help_text="Create a task: addtask [@user] description [2h|3d|1w].")
registry.register("vote", cmd_vote, help_text="Vote for a task (boost priority): vote <TaskID>.")
registry.register("unvote", cmd_unvote, help_text="Remove your vote: unvote <TaskID>.")
registry.register("mytasks", cmd_mytasks, help_text="Your pending tasks.")
registry.register("alltasks", cmd_alltasks, help_text="All pending tasks.")
registry.register("priority", cmd_priority, help_text="Pending tasks by votes.")
registry.register("complete", cmd_complete, help_text="Mark a task completed: complete <TaskID>.")
registry.register("delete", cmd_delete, help_text="Delete a task: delete <TaskID>.")
registry.register("tag", cmd_tag, help_text="Tag a task: tag <TaskID> <tag>.")
registry.register("filter", cmd_filter, help_text="Pending tasks with a tag: filter <tag>.")
registry.register("deadlines", cmd_deadlines, help_text="Pending tasks by deadline.")
registry.register("history", cmd_history, help_text="Recently completed tasks.")
registry.register("stats", cmd_stats, help_text="Statistics: stats [@user].")
registry.register("streak", cmd_streak, help_text="Completion streak: streak [@user].")
registry.register("leaderboard", cmd_leaderboard, help_text="Top contributors by points.")
registry.register("setgroup", cmd_setgroup, help_text="Admin: where reminders go: setgroup [id].")
registry.register("reminders", cmd_reminders, help_text="Reminders: reminders [on|off|<minutes>].")
registry.register("motivate", cmd_motivate, help_text="Get motivated!")
registry.register("ping", cmd_ping, help_text="Check the bot is alive.")
