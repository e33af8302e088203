"""
Timetable package: the portal-facing side of the watcher.

This package contains:
- Lesson and week snapshot models
- Portal client for fetching a week's lessons
- On-disk snapshot store (cache)
"""
