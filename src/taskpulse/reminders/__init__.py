"""
Reminder subsystem.

Components:
- stage_planner.py: which reminder stages a task has and which one is due now
- anti_flood.py: minimum spacing between two notifications of one task
- engine.py: one tick over all pending tasks
- scheduler.py: fixed-cadence, single-flight driver with health metrics
"""
