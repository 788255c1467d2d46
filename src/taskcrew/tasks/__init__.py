"""
Task subsystem.

Components:
- task_models.py: record types (Task, VoteRecord, UserStats, StreakRecord, HistoryEntry, ...)
- task_store.py: in-memory store with flush-on-every-mutation persistence
- task_sinks.py: JSON / SQLite / in-memory persistence sinks
- deadlines.py: deadline-suffix parsing and hours-until arithmetic
- task_scheduler.py: polling scheduler for reminders, deadline alerts and the morning digest
- task_api.py: small high-level helpers used by the command layer
"""
