"""
Task subsystem.

Components:
- task_models.py: data structures (Task, TaskStatus, TaskKind, TaskEvent)
- task_store.py: in-memory storage + query/update helpers + change notifications
- task_store_sqlite.py: SQLite-backed store with the same contract
- task_registry.py: kind -> handler mapping
- task_scheduler.py: concurrency-bounded dispatcher that runs pending tasks
- task_api.py: status projection, subject lookup, cleanup and submission helpers
"""
