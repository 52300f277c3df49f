"""
Task subsystem.

Components:
- task_models.py: data structures (Task, Notification, stage variants, SentStages)
- task_store.py: SQLite-backed storage + the engine's atomic stage/notification write
- task_api.py: small high-level helpers used by commands (create, complete, snooze, notifications)
"""
