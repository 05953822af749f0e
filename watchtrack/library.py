"""Manage registered media timelines."""

from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import asdict
from pathlib import Path
from typing import Dict, List, Optional

from .errors import NotFound, StorageUnavailable
from .grid import MediaTimeline

logger = logging.getLogger(__name__)


class TimelineLibrary:
    """JSON-backed repository for media timelines.

    When ``path`` is ``None`` the library lives in memory only.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path) if path is not None else None
        self._lock = threading.Lock()
        self._data = self._load()

    # Internal helpers -------------------------------------------------
    def _load(self) -> Dict[str, List[Dict]]:
        if self.path is None or not self.path.exists():
            return {"timelines": []}
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except json.JSONDecodeError:
            logger.warning("Timeline file %s is corrupted; starting empty.", self.path)
            data = {"timelines": []}
        except OSError as exc:
            raise StorageUnavailable(f"Cannot read timelines from {self.path}: {exc}") from exc
        data.setdefault("timelines", [])
        return data

    def _save(self, data: Dict[str, List[Dict]]) -> None:
        if self.path is None:
            return
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            logger.error("Failed to write timelines to %s", self.path, exc_info=exc)
            raise StorageUnavailable(f"Cannot write timelines to {self.path}: {exc}") from exc

    # Public API -------------------------------------------------------
    def list_timelines(self) -> List[MediaTimeline]:
        with self._lock:
            entries = list(self._data["timelines"])
        return [MediaTimeline(**entry) for entry in entries]

    def get_timeline(self, media_id: str) -> Optional[MediaTimeline]:
        for timeline in self.list_timelines():
            if timeline.media_id == media_id:
                return timeline
        return None

    def require_timeline(self, media_id: str) -> MediaTimeline:
        """Return the timeline for ``media_id`` or raise ``NotFound``."""
        timeline = self.get_timeline(media_id)
        if timeline is None:
            raise NotFound(f"No timeline registered for media {media_id!r}.")
        return timeline

    def upsert_timeline(self, timeline: MediaTimeline) -> None:
        with self._lock:
            timelines = list(self._data["timelines"])
            for idx, existing in enumerate(timelines):
                if existing["media_id"] == timeline.media_id:
                    timelines[idx] = asdict(timeline)
                    break
            else:
                timelines.append(asdict(timeline))
            data = {**self._data, "timelines": timelines}
            self._save(data)
            self._data = data

    def remove_timeline(self, media_id: str) -> None:
        with self._lock:
            timelines = [t for t in self._data["timelines"] if t["media_id"] != media_id]
            data = {**self._data, "timelines": timelines}
            self._save(data)
            self._data = data
