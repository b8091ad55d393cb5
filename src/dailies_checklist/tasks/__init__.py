"""
Task subsystem.

Components:
- task_models.py: data structures (ChecklistTask, ChecklistState, enums)
- task_catalog.py: immutable catalog of known activities and their cadences
- reset_scheduler.py: boundary rules and the reset pass run on host ticks
- task_store.py: JSON document store with debounced atomic saves
- task_api.py: small high-level mutations used by the presentation layer
"""
