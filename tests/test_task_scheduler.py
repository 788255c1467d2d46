# tests/test_task_scheduler.py

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from taskcrew.tasks.task_scheduler import (
    DispatchPhase,
    SchedulerClock,
    build_deadline_alert,
    build_morning_digest,
    build_reminder_dispatches,
    run_due_jobs,
    run_task_scheduler,
)
from taskcrew.tasks.task_store import TaskStore

from .fakes import FakeClock, FakeMessenger


def _due_now(clock: FakeClock) -> SchedulerClock:
    return SchedulerClock(next_reminder_at=clock.now, next_deadline_check_at=clock.now)


def test_reminder_dispatch_per_user_with_pending(store: TaskStore, clock: FakeClock) -> None:
    a = store.create_task("u1", "Buy milk", "u1", deadline=clock.now + timedelta(hours=3))
    b = store.create_task("u1", "Late one", "u1", deadline=clock.now - timedelta(hours=1))
    done = store.create_task("u2", "Done", "u2")
    store.complete_task(done.id)

    dispatches = build_reminder_dispatches(store, room_id="g1", now=clock.now)

    assert len(dispatches) == 1
    d = dispatches[0]
    assert d.phase == DispatchPhase.REMINDER
    assert d.to_user_id == "u1"
    assert d.room_id == "g1"
    assert d.task_ids == (a.id, b.id)
    assert "You have 2 pending tasks" in d.text
    assert "3h remaining" in d.text
    assert "OVERDUE" in d.text


def test_deadline_alert_window(store: TaskStore, clock: FakeClock) -> None:
    assert build_deadline_alert(store, room_id=None, now=clock.now) is None

    store.create_task("u1", "soon", "u1", deadline=clock.now + timedelta(hours=5))
    store.create_task("u1", "far", "u1", deadline=clock.now + timedelta(hours=30))
    store.create_task("u2", "overdue", "u2", deadline=clock.now - timedelta(hours=1))

    alert = build_deadline_alert(store, room_id="g1", now=clock.now)
    assert alert is not None
    assert "soon" in alert.text
    assert "far" not in alert.text
    assert "overdue" not in alert.text
    assert "1 task due within 24 hours" in alert.text


def test_morning_digest_text(store: TaskStore) -> None:
    assert "No pending tasks" in build_morning_digest(store, room_id=None).text
    store.create_task("u1", "a", "u1")
    store.create_task("u2", "b", "u2")
    assert "There are 2 pending tasks today" in build_morning_digest(store, room_id=None).text


@pytest.mark.asyncio
async def test_run_due_jobs_sends_reminders_and_counts(store: TaskStore, clock: FakeClock) -> None:
    store.set_target_group("g1")
    task = store.create_task("u1", "nag", "u1")
    messenger = FakeMessenger()
    sched = _due_now(clock)

    await run_due_jobs(store, messenger, sched, now=clock.now, morning_hour=None)

    assert [m.room_id for m in messenger.sent] == ["g1"]
    assert store.list_tasks("u1")[0].reminders == 1
    assert sched.next_reminder_at == clock.now + timedelta(minutes=90)
    assert sched.next_deadline_check_at == clock.now + timedelta(minutes=60)

    # Not due again until the interval passes.
    clock.advance(minutes=30)
    await run_due_jobs(store, messenger, sched, now=clock.now, morning_hour=None)
    assert len(messenger.sent) == 1

    clock.advance(minutes=60)
    await run_due_jobs(store, messenger, sched, now=clock.now, morning_hour=None)
    assert len(messenger.sent) == 2
    assert store.list_tasks("u1")[0].reminders == 2
    assert task.reminders == 0


@pytest.mark.asyncio
async def test_disabled_reminders_skip_but_reschedule(store: TaskStore, clock: FakeClock) -> None:
    store.create_task("u1", "quiet", "u1")
    store.set_reminder_enabled(False)
    messenger = FakeMessenger()
    sched = _due_now(clock)

    await run_due_jobs(store, messenger, sched, now=clock.now, morning_hour=None)

    assert messenger.sent == []
    assert store.list_tasks("u1")[0].reminders == 0
    assert sched.next_reminder_at == clock.now + timedelta(minutes=90)


@pytest.mark.asyncio
async def test_send_failure_retries_without_counting(store: TaskStore, clock: FakeClock) -> None:
    store.create_task("u1", "flaky", "u1", deadline=clock.now + timedelta(hours=2))
    messenger = FakeMessenger(fail_times=2)
    sched = _due_now(clock)

    await run_due_jobs(store, messenger, sched, now=clock.now, morning_hour=None, retry_delay_seconds=30)

    assert messenger.sent == []
    assert store.list_tasks("u1")[0].reminders == 0
    assert sched.next_reminder_at == clock.now + timedelta(seconds=30)
    assert sched.next_deadline_check_at == clock.now + timedelta(seconds=30)

    clock.advance(seconds=30)
    await run_due_jobs(store, messenger, sched, now=clock.now, morning_hour=None, retry_delay_seconds=30)

    phases = [m.text.splitlines()[0] for m in messenger.sent]
    assert phases == ["Task reminder for u1", "Deadline alert!"]
    assert store.list_tasks("u1")[0].reminders == 1


@pytest.mark.asyncio
async def test_morning_digest_once_per_day(store: TaskStore, clock: FakeClock) -> None:
    messenger = FakeMessenger()
    far = clock.now + timedelta(days=1)
    sched = SchedulerClock(next_reminder_at=far, next_deadline_check_at=far)
    hour = clock.now.astimezone().hour

    await run_due_jobs(store, messenger, sched, now=clock.now, morning_hour=hour)
    await run_due_jobs(store, messenger, sched, now=clock.now, morning_hour=hour)

    assert len(messenger.sent) == 1
    assert messenger.sent[0].text.startswith("Good morning")
    assert sched.last_morning_date == clock.now.astimezone().date()


@pytest.mark.asyncio
async def test_scheduler_loop_runs_immediately(store: TaskStore, clock: FakeClock) -> None:
    store.create_task("u1", "ping", "u1")
    messenger = FakeMessenger()

    runner = asyncio.create_task(
        run_task_scheduler(
            store,
            messenger,
            tick_seconds=0.01,
            morning_hour=None,
            run_immediately=True,
            clock=clock,
        )
    )

    await asyncio.sleep(0.05)
    runner.cancel()
    with pytest.raises(asyncio.CancelledError):
        await runner

    assert len(messenger.sent) == 1, "Frozen clock should send the reminder exactly once"
    assert messenger.sent[0].to_user_id == "u1"
