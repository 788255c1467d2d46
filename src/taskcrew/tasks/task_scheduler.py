# src/taskcrew/tasks/task_scheduler.py

from __future__ import annotations

"""
Reminder scheduler.

A small polling loop that, on each tick, runs whichever jobs are due:
- reminder digest: one message per user with pending tasks (every reminder_interval minutes),
- deadline alert: tasks due within the alert window (every deadline_check_minutes),
- morning digest: pending-task count once a day at morning_hour (local time).

Messages go to the store's target group through an injected messenger port.
Formatting beyond plain text and transport routing belong to the connector.
"""

import asyncio
import contextlib
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from enum import Enum

from ..core.ports import OutboundMessenger, TaskRepo
from ..core.state import AppState
from .deadlines import describe_remaining, hours_until

logger = logging.getLogger(__name__)


class DispatchPhase(str, Enum):
    REMINDER = "reminder"
    DEADLINE_ALERT = "deadline_alert"
    MORNING_DIGEST = "morning_digest"


@dataclass(slots=True, frozen=True)
class TaskDispatch:
    """
    What the scheduler wants to send.

    task_ids lists the tasks whose reminder counters advance once the
    message is actually sent (reminder digests only).
    """

    phase: DispatchPhase
    text: str
    room_id: str | None
    to_user_id: str | None = None
    task_ids: tuple[str, ...] = ()


def _utcnow() -> datetime:
    return datetime.now(UTC)


def build_reminder_dispatches(
    task_store: TaskRepo,
    *,
    room_id: str | None,
    now: datetime,
) -> list[TaskDispatch]:
    """One reminder per user that has pending tasks."""
    out: list[TaskDispatch] = []
    interval = task_store.settings.reminder_interval

    for user_id, tasks in task_store.list_all_tasks().items():
        pending = [t for t in tasks if t.is_pending]
        if not pending:
            continue

        plural = "s" if len(pending) > 1 else ""
        lines = [f"Task reminder for {user_id}", f"You have {len(pending)} pending task{plural}:", ""]
        for i, task in enumerate(pending, start=1):
            votes = task_store.get_votes(task.id).count
            lines.append(f"{i}. {task.description}")
            lines.append(f"   id {task.id} | votes {votes}")
            if task.deadline is not None:
                hours = hours_until(task.deadline, now)
                if hours < 0:
                    lines.append("   OVERDUE")
                elif hours < 24:
                    lines.append(f"   {describe_remaining(hours)}")
        lines.append("")
        lines.append("Use !complete <TaskID> when done.")
        lines.append(f"Next reminder in {interval} minutes.")

        out.append(
            TaskDispatch(
                phase=DispatchPhase.REMINDER,
                text="\n".join(lines),
                room_id=room_id,
                to_user_id=user_id,
                task_ids=tuple(t.id for t in pending),
            )
        )
    return out


def build_deadline_alert(
    task_store: TaskRepo,
    *,
    room_id: str | None,
    now: datetime,
    alert_hours: float = 24.0,
) -> TaskDispatch | None:
    """Alert for pending tasks that are not overdue yet but due within alert_hours."""
    urgent = [e for e in task_store.tasks_by_deadline(now) if 0 < e.hours_until < alert_hours]
    if not urgent:
        return None

    plural = "s" if len(urgent) > 1 else ""
    lines = ["Deadline alert!", f"{len(urgent)} task{plural} due within {alert_hours:g} hours:", ""]
    for e in urgent:
        lines.append(f"- {e.user_id}: {e.task.description}")
        lines.append(f"   {describe_remaining(e.hours_until)}")
    return TaskDispatch(phase=DispatchPhase.DEADLINE_ALERT, text="\n".join(lines), room_id=room_id)


def build_morning_digest(task_store: TaskRepo, *, room_id: str | None) -> TaskDispatch:
    total = task_store.pending_count()
    if total > 0:
        body = f"There are {total} pending tasks today. Use !alltasks to view them."
    else:
        body = "No pending tasks. Great job!"
    text = f"Good morning, team!\n\n{body}"
    return TaskDispatch(phase=DispatchPhase.MORNING_DIGEST, text=text, room_id=room_id)


@dataclass(slots=True)
class SchedulerClock:
    """When each job runs next. Mutated by run_due_jobs."""

    next_reminder_at: datetime
    next_deadline_check_at: datetime
    last_morning_date: date | None = None
    sent: int = 0


async def _send(messenger: OutboundMessenger, dispatch: TaskDispatch) -> bool:
    try:
        await messenger.send_text(
            text=dispatch.text,
            room_id=dispatch.room_id,
            to_user_id=dispatch.to_user_id,
        )
    except Exception:
        logger.exception(
            "dispatch send failed phase=%s room=%s user=%s",
            dispatch.phase.value,
            dispatch.room_id,
            dispatch.to_user_id,
        )
        return False
    return True


async def run_due_jobs(
    task_store: TaskRepo,
    messenger: OutboundMessenger,
    sched: SchedulerClock,
    *,
    now: datetime,
    deadline_check_minutes: float = 60.0,
    deadline_alert_hours: float = 24.0,
    morning_hour: int | None = 9,
    retry_delay_seconds: float = 60.0,
) -> None:
    """
    Run every job whose time has come, then move its next run forward.

    morning_hour=None disables the morning digest.
    """
    settings = task_store.settings
    room_id = settings.target_group
    retry = timedelta(seconds=max(1.0, float(retry_delay_seconds)))

    # ---- reminder digest ----
    if now >= sched.next_reminder_at:
        interval = timedelta(minutes=max(1, int(settings.reminder_interval)))
        if not settings.reminder_enabled:
            sched.next_reminder_at = now + interval
        else:
            failed = False
            dispatches = build_reminder_dispatches(task_store, room_id=room_id, now=now)
            logger.info("Sending task reminders users=%d", len(dispatches))
            for dispatch in dispatches:
                if not await _send(messenger, dispatch):
                    failed = True
                    continue
                sched.sent += 1
                for task_id in dispatch.task_ids:
                    task_store.increment_reminder(task_id)
            sched.next_reminder_at = now + (retry if failed else interval)

    # ---- deadline alert ----
    if now >= sched.next_deadline_check_at:
        alert = build_deadline_alert(
            task_store, room_id=room_id, now=now, alert_hours=deadline_alert_hours
        )
        ok = True
        if alert is not None:
            ok = await _send(messenger, alert)
            if ok:
                sched.sent += 1
        sched.next_deadline_check_at = now + (
            timedelta(minutes=max(1.0, float(deadline_check_minutes))) if ok else retry
        )

    # ---- morning digest ----
    local = now.astimezone()
    if morning_hour is not None and local.hour == int(morning_hour) and sched.last_morning_date != local.date():
        if await _send(messenger, build_morning_digest(task_store, room_id=room_id)):
            sched.sent += 1
            sched.last_morning_date = local.date()


async def run_task_scheduler(
        task_store: TaskRepo,
        messenger: OutboundMessenger,
        *,
        tick_seconds: float = 30.0,
        deadline_check_minutes: float = 60.0,
        deadline_alert_hours: float = 24.0,
        morning_hour: int | None = 9,
        retry_delay_seconds: float = 60.0,
        run_immediately: bool = False,
        clock: Callable[[], datetime] | None = None,
) -> None:
    """
    Simple polling scheduler.

    Every tick_seconds:
    - run whichever jobs are due (see run_due_jobs)
    - a failed send pushes that job forward by retry_delay_seconds instead of its interval

    Jobs first fire one interval after start unless run_immediately is set.
    To stop the scheduler, cancel the coroutine/task.
    """
    clock = clock or _utcnow
    sleep_s = max(0.01, float(tick_seconds))

    start = clock()
    if run_immediately:
        sched = SchedulerClock(next_reminder_at=start, next_deadline_check_at=start)
    else:
        sched = SchedulerClock(
            next_reminder_at=start + timedelta(minutes=task_store.settings.reminder_interval),
            next_deadline_check_at=start + timedelta(minutes=float(deadline_check_minutes)),
        )
    logger.info(
        "Task scheduler started next_reminder=%s next_deadline_check=%s",
        sched.next_reminder_at.isoformat(),
        sched.next_deadline_check_at.isoformat(),
    )

    while True:
        try:
            await run_due_jobs(
                task_store,
                messenger,
                sched,
                now=clock(),
                deadline_check_minutes=deadline_check_minutes,
                deadline_alert_hours=deadline_alert_hours,
                morning_hour=morning_hour,
                retry_delay_seconds=retry_delay_seconds,
            )
        except Exception:
            logger.exception("scheduler tick failed")

        await asyncio.sleep(sleep_s)


@dataclass(slots=True)
class SchedulerBackgroundRunner:
    thread: threading.Thread
    loop: asyncio.AbstractEventLoop
    stop_event: asyncio.Event

    def stop(self) -> None:
        try:
            self.loop.call_soon_threadsafe(self.stop_event.set)
        except RuntimeError:
            logger.debug("Scheduler loop already closed.", exc_info=True)

    def join(self, timeout: float | None = None) -> None:
        self.thread.join(timeout=timeout)


async def _run_until_stopped(
    state: AppState, messenger: OutboundMessenger, stop_event: asyncio.Event
) -> None:
    s = state.settings
    # A negative hour switches the morning digest off.
    morning_hour: int | None = int(getattr(s, "morning_hour", 9))
    if morning_hour is not None and morning_hour < 0:
        morning_hour = None

    runner = asyncio.create_task(
        run_task_scheduler(
            state.task_store,
            messenger,
            tick_seconds=float(getattr(s, "scheduler_tick_seconds", 30.0)),
            deadline_check_minutes=float(getattr(s, "deadline_check_minutes", 60)),
            deadline_alert_hours=float(getattr(s, "deadline_alert_hours", 24)),
            morning_hour=morning_hour,
        )
    )
    await stop_event.wait()
    runner.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await runner
    logger.info("Task scheduler stopped.")


def start_scheduler_in_background(
    state: AppState, messenger: OutboundMessenger
) -> SchedulerBackgroundRunner | None:
    """
    Start the scheduler on its own event loop in a daemon thread,
    so the blocking console REPL can run in the main thread.
    """
    ready = threading.Event()
    holder: dict[str, object] = {}

    def runner() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        stop_event = asyncio.Event()

        holder["loop"] = loop
        holder["stop_event"] = stop_event
        ready.set()

        try:
            loop.run_until_complete(_run_until_stopped(state, messenger, stop_event))
        finally:
            loop.close()

    t = threading.Thread(target=runner, name="task-scheduler", daemon=True)
    t.start()

    ready.wait(timeout=5.0)
    loop = holder.get("loop")
    stop_event = holder.get("stop_event")

    if not isinstance(loop, asyncio.AbstractEventLoop) or not isinstance(stop_event, asyncio.Event):
        logger.error("Scheduler thread did not initialize properly.")
        return None

    logger.info("Scheduler background thread started.")
    return SchedulerBackgroundRunner(thread=t, loop=loop, stop_event=stop_event)
