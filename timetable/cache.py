"""
On-disk snapshot store for fetched timetable weeks.

File layout (kept stable so existing cache files stay readable):

    {
      "lastUpdate": "2024-10-14T07:00:00.000Z",
      "timetable": {
        "weeks": {
          "7": {"weekNumber": 7, "lastFetch": "...", "classes": [...]}
        }
      }
    }

The store is owned by the poller; it is never mutated concurrently.
"""

import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import structlog
from pydantic import ValidationError

from scheduler.exceptions import CacheCorruptError
from .models import WeekSnapshot, lesson_from_record, lesson_to_record, to_iso_timestamp

logger = structlog.get_logger(__name__)


def _empty_cache() -> Dict[str, Any]:
    return {"lastUpdate": None, "timetable": {"weeks": {}}}


class SnapshotStore:
    """
    JSON-file backed store of week snapshots.
    """

    def __init__(self, path: Union[str, Path]):
        """
        Initialize the store.

        Args:
            path: Location of the cache file
        """
        self.path = Path(path)
        self._cache: Dict[str, Any] = _empty_cache()
        self.logger = logger.bind(component="snapshot_store", path=str(self.path))

    async def init(self) -> None:
        """Load the cache file, creating or re-initializing it when needed."""
        self.path.parent.mkdir(parents=True, exist_ok=True)

        if not self.path.exists():
            self._cache = _empty_cache()
            await self._write()
            self.logger.info("Initialized new timetable cache")
            return

        try:
            self._cache = self._read()
            self.logger.debug("Loaded timetable cache", weeks=self.cached_weeks())
        except CacheCorruptError as e:
            self.logger.warning("Timetable cache unreadable, starting from an empty cache", error=str(e))
            self._cache = _empty_cache()
            await self._write()

    def _read(self) -> Dict[str, Any]:
        """Read and sanity-check the cache file."""
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise CacheCorruptError(f"Cannot read cache file: {e}", path=self.path) from e

        if not isinstance(data, dict):
            raise CacheCorruptError("Cache root is not an object", path=self.path)

        timetable = data.get("timetable")
        if not isinstance(timetable, dict):
            data["timetable"] = timetable = {"weeks": {}}
        if not isinstance(timetable.get("weeks"), dict):
            timetable["weeks"] = {}
        data.setdefault("lastUpdate", None)

        return data

    @property
    def last_update(self) -> Optional[str]:
        return self._cache.get("lastUpdate")

    def _weeks(self) -> Dict[str, Any]:
        return self._cache["timetable"]["weeks"]

    def cached_weeks(self) -> List[int]:
        """Week numbers currently stored, ascending."""
        weeks = []
        for key in self._weeks():
            try:
                weeks.append(int(key))
            except ValueError:
                self.logger.warning("Ignoring non-numeric week key", key=key)
        return sorted(weeks)

    def load_snapshot(self, week_number: int) -> Optional[WeekSnapshot]:
        """
        Get the stored snapshot for a week.

        Returns:
            WeekSnapshot, or None when the week was never stored or its
            entry cannot be parsed
        """
        entry = self._weeks().get(str(week_number))
        if entry is None:
            return None

        try:
            return WeekSnapshot(
                week_number=entry.get("weekNumber", week_number),
                fetched_at=entry.get("lastFetch") or datetime.now(timezone.utc),
                lessons=[lesson_from_record(record) for record in entry.get("classes") or []]
            )
        except (AttributeError, TypeError, ValidationError) as e:
            self.logger.warning(
                "Discarding unreadable week snapshot",
                week=week_number,
                error=str(e)
            )
            return None

    def save_snapshot(self, week_number: int, snapshot: WeekSnapshot) -> None:
        """Replace the stored snapshot for a week (in memory until persisted)."""
        self._weeks()[str(week_number)] = {
            "weekNumber": week_number,
            "lastFetch": to_iso_timestamp(snapshot.fetched_at),
            "classes": [lesson_to_record(lesson) for lesson in snapshot.lessons],
        }

    def evict(self, week_number: int) -> bool:
        """Drop a week from the store. Returns whether it was present."""
        return self._weeks().pop(str(week_number), None) is not None

    async def persist(self, last_update: Optional[datetime] = None) -> None:
        """Write the cache to disk, stamping ``lastUpdate``."""
        self._cache["lastUpdate"] = to_iso_timestamp(last_update or datetime.now(timezone.utc))
        await self._write()

    async def _write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # write beside the cache, then swap it in
        fd, tmp_name = tempfile.mkstemp(prefix=self.path.name + ".", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._cache, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        self.logger.debug("Saved timetable cache", weeks=self.cached_weeks())
