"""
Scheduler package: timetable polling and change detection.

This package contains:
- Lesson identity and cancellation status model
- Impact classifier for cancellations
- Week diff engine
- Poll orchestrator and fixed-delay polling service
- Alerting system (Pushover, ntfy)
"""

__version__ = "1.0.0"
