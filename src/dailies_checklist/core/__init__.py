"""
Core wiring.

Components:
- ports.py: Protocols for the host event feed, session state and detectors
- events.py: event kinds, SessionEvent, in-process EventBus
- session.py: ChecklistSession tying state, store, scheduler and detectors together
"""
