# tests/test_task_sinks.py

from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path
from types import SimpleNamespace

import pytest

from taskcrew.tasks.task_models import PersistenceError, TaskStatus
from taskcrew.tasks.task_sinks import JsonFileSink, MemorySink, SqliteSink, build_sink
from taskcrew.tasks.task_store import TaskStore

from .fakes import FakeClock


def _populate(store: TaskStore, clock: FakeClock) -> tuple[str, str]:
    a = store.create_task("u1", "Buy milk", "u2", deadline=clock.now + timedelta(hours=2))
    b = store.create_task("u1", "Walk dog", "u1")
    store.vote(a.id, "v1")
    store.add_tag(a.id, "home")
    store.complete_task(b.id)
    store.set_target_group("group-9")
    return a.id, b.id


@pytest.mark.parametrize("kind", ["json", "sqlite"])
def test_store_survives_reload(tmp_path: Path, clock: FakeClock, kind: str) -> None:
    path = tmp_path / ("state.json" if kind == "json" else "state.sqlite3")
    make = JsonFileSink if kind == "json" else SqliteSink

    store = TaskStore(make(path), clock=clock)
    a_id, b_id = _populate(store, clock)

    reloaded = TaskStore(make(path), clock=clock)

    tasks = {t.id: t for t in reloaded.list_tasks("u1")}
    assert tasks[a_id].deadline == clock.now + timedelta(hours=2)
    assert tasks[a_id].tags == ["home"]
    assert tasks[b_id].status == TaskStatus.COMPLETED
    assert reloaded.get_votes(a_id).voters == ["v1"]
    assert reloaded.get_streak("u1").current == 1
    assert reloaded.get_user_stats("u1").tasks_completed == 1
    assert [h.task_id for h in reloaded.get_history()] == [b_id]
    assert reloaded.get_target_group() == "group-9"

    # New ids keep increasing past the stored ones.
    newer = reloaded.create_task("u1", "next", "u1")
    assert int(newer.id[1:]) > max(int(a_id[1:]), int(b_id[1:]))


def test_json_sink_writes_expected_layout(tmp_path: Path, clock: FakeClock) -> None:
    path = tmp_path / "tasks.json"
    store = TaskStore(JsonFileSink(path), clock=clock)
    _populate(store, clock)

    data = json.loads(path.read_text("utf-8"))
    assert set(data) == {"tasks", "votes", "userStats", "taskHistory", "streaks", "settings"}
    assert set(data["settings"]) == {"targetGroup", "admins", "reminderEnabled", "reminderInterval"}
    assert data["taskHistory"][0]["userId"] == "u1"
    assert not path.with_suffix(".json.tmp").exists()


def test_new_store_writes_defaults(tmp_path: Path) -> None:
    path = tmp_path / "fresh.json"
    TaskStore(JsonFileSink(path))

    data = json.loads(path.read_text("utf-8"))
    assert data["tasks"] == {}
    assert data["settings"]["reminderInterval"] == 90


def test_loads_legacy_format_file(tmp_path: Path) -> None:
    path = tmp_path / "tasks.json"
    legacy = {
        "tasks": {
            "123@c.us": [
                {
                    "id": "T1729012345678",
                    "description": "Legacy task",
                    "createdBy": "456@c.us",
                    "createdAt": "2024-10-15T17:12:25.678Z",
                    "deadline": None,
                    "status": "pending",
                    "priority": "normal",
                    "tags": ["Urgent"],
                    "reminders": 3,
                },
                {"id": "T1729012345999", "description": "No extras", "status": "pending"},
            ]
        },
        "votes": {"T1729012345678": {"count": 5, "voters": ["a", "b"]}, "T999": {"count": 1, "voters": ["x"]}},
        "userStats": {},
        "taskHistory": [],
        "streaks": {},
        "settings": {"targetGroup": None, "admins": [], "reminderEnabled": True, "reminderInterval": 90},
    }
    path.write_text(json.dumps(legacy), "utf-8")

    store = TaskStore(JsonFileSink(path))
    tasks = store.list_tasks("123@c.us")

    assert [t.id for t in tasks] == ["T1729012345678", "T1729012345999"]
    assert tasks[0].assignee == "123@c.us"
    assert tasks[0].tags == ["urgent"]
    assert tasks[0].reminders == 3
    assert tasks[0].created_at.year == 2024
    assert tasks[1].tags == [] and tasks[1].reminders == 0
    # count is rebuilt from the voter list; orphan records are dropped.
    assert store.get_votes("T1729012345678").count == 2
    assert store.get_votes("T1729012345999").count == 0
    assert store.get_votes("T999").count == 0


def test_corrupt_file_starts_empty(tmp_path: Path) -> None:
    path = tmp_path / "tasks.json"
    path.write_text("{not json", "utf-8")

    with pytest.raises(PersistenceError):
        JsonFileSink(path).load()

    store = TaskStore(JsonFileSink(path))
    assert store.list_all_tasks() == {}


@pytest.mark.parametrize(
    "payload",
    [
        {"streaks": {"u": {"current": "abc"}}},
        {"userStats": {"u": {"tasksCreated": "x"}}},
        {"userStats": {"u": 7}, "streaks": ["not", "a", "mapping"]},
        {"votes": {"T1": {"voters": 5}}, "tasks": {"u": [{"id": "T1"}]}},
        {"tasks": {"u": "not a list"}},
        {"taskHistory": [3, {"id": "T9", "createdAt": "nope"}]},
        {"settings": {"reminderInterval": "soon"}},
        {"tasks": ["u"], "settings": 42},
    ],
)
def test_malformed_records_do_not_abort_startup(tmp_path: Path, payload: dict) -> None:
    path = tmp_path / "tasks.json"
    path.write_text(json.dumps(payload), "utf-8")

    store = TaskStore(JsonFileSink(path))

    assert store.settings.reminder_interval == 90
    assert store.pending_count() <= 1
    # The store stays usable after skipping the bad records.
    task = store.create_task("u", "after load", "u")
    assert store.vote(task.id, "v").count == 1


def test_malformed_entries_are_skipped_individually(tmp_path: Path) -> None:
    path = tmp_path / "tasks.json"
    payload = {
        "tasks": {"u": [1, {"id": "T5", "description": "good"}]},
        "userStats": {"bad": {"tasksCreated": "x"}, "good": {"tasksCreated": 2, "totalPoints": 10}},
        "streaks": {"bad": {"current": "abc"}, "good": {"current": 3, "longest": 4}},
    }
    path.write_text(json.dumps(payload), "utf-8")

    store = TaskStore(JsonFileSink(path))

    assert [t.id for t in store.list_tasks("u")] == ["T5"]
    assert store.get_user_stats("good").tasks_created == 2
    assert store.get_user_stats("bad").tasks_created == 0
    assert (store.get_streak("good").current, store.get_streak("good").longest) == (3, 4)
    assert store.get_streak("bad").current == 0


def test_json_sink_save_failure_raises(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("", "utf-8")
    sink = JsonFileSink(blocker / "tasks.json")

    with pytest.raises(PersistenceError):
        sink.save({"tasks": {}})


def test_memory_sink_isolates_copies() -> None:
    sink = MemorySink()
    payload = {"tasks": {"u1": []}}
    sink.save(payload)
    payload["tasks"]["u2"] = []

    loaded = sink.load()
    assert loaded == {"tasks": {"u1": []}}
    assert sink.saves == 1


def test_build_sink(tmp_path: Path) -> None:
    assert isinstance(build_sink(SimpleNamespace(storage_backend="memory")), MemorySink)
    assert isinstance(
        build_sink(SimpleNamespace(storage_backend="json", state_path=tmp_path / "a.json")), JsonFileSink
    )
    assert isinstance(
        build_sink(SimpleNamespace(storage_backend="sqlite", state_path=tmp_path / "a.db")), SqliteSink
    )
    with pytest.raises(ValueError):
        build_sink(SimpleNamespace(storage_backend="redis"))
