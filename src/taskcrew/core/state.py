# src/taskcrew/core/state.py

from __future__ import annotations

from dataclasses import dataclass

from ..tasks.task_store import TaskStore


@dataclass
class AppState:
    # Settings live on the state so commands and connectors read one object.
    settings: object

    task_store: TaskStore
