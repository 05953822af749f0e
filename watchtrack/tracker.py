"""High-level wiring of the tracking workflow."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

from .engine import (
    DEFAULT_LOCK_TIMEOUT,
    DEFAULT_MAX_BATCH_SIZE,
    DEFAULT_MAX_MERGE_RETRIES,
    SegmentUpdateEngine,
    WatchResult,
)
from .errors import InvalidInput
from .grid import DEFAULT_SEGMENT_WIDTH, MediaTimeline
from .history import InMemoryWatchStateStore, JsonWatchStateStore, WatchStateStore
from .library import TimelineLibrary
from .reporter import ProgressReport, ProgressReporter

logger = logging.getLogger(__name__)

STORAGE_BACKENDS = ("json", "memory")


def _env_number(name: str, default: float, cast=float):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw)
    except ValueError as exc:
        raise InvalidInput(f"{name} must be a number, got {raw!r}.") from exc


@dataclass
class TrackerConfig:
    """Runtime configuration for the tracker."""

    data_dir: Path = Path("data")
    segment_width: float = DEFAULT_SEGMENT_WIDTH
    max_batch_size: int = DEFAULT_MAX_BATCH_SIZE
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT
    max_merge_retries: int = DEFAULT_MAX_MERGE_RETRIES
    storage: str = "json"

    @classmethod
    def from_env(cls) -> "TrackerConfig":
        """Build a config from ``WATCHTRACK_*`` environment variables."""
        storage = os.getenv("WATCHTRACK_STORAGE", "json").strip().lower()
        if storage not in STORAGE_BACKENDS:
            raise InvalidInput(f"WATCHTRACK_STORAGE must be one of {STORAGE_BACKENDS}, got {storage!r}.")
        return cls(
            data_dir=Path(os.getenv("WATCHTRACK_DATA_DIR", "data")),
            segment_width=_env_number("WATCHTRACK_SEGMENT_WIDTH", DEFAULT_SEGMENT_WIDTH),
            max_batch_size=_env_number("WATCHTRACK_MAX_BATCH_SIZE", DEFAULT_MAX_BATCH_SIZE, int),
            lock_timeout=_env_number("WATCHTRACK_LOCK_TIMEOUT", DEFAULT_LOCK_TIMEOUT),
            max_merge_retries=_env_number(
                "WATCHTRACK_MAX_MERGE_RETRIES", DEFAULT_MAX_MERGE_RETRIES, int
            ),
            storage=storage,
        )


class WatchTracker:
    """User-facing orchestration class."""

    def __init__(
        self,
        config: Optional[TrackerConfig] = None,
        *,
        library: Optional[TimelineLibrary] = None,
        store: Optional[WatchStateStore] = None,
    ) -> None:
        self.config = config or TrackerConfig()
        if self.config.storage not in STORAGE_BACKENDS:
            raise InvalidInput(f"Unsupported storage backend: {self.config.storage}")
        if self.config.segment_width <= 0:
            raise InvalidInput("segment_width must be positive.")

        if self.config.storage == "json":
            data_dir = Path(self.config.data_dir)
            self.library = library or TimelineLibrary(data_dir / "timelines.json")
            self.store = store or JsonWatchStateStore(
                data_dir / "watch_states.json", lock_timeout=self.config.lock_timeout
            )
        else:
            self.library = library or TimelineLibrary()
            self.store = store or InMemoryWatchStateStore()

        self.engine = SegmentUpdateEngine(
            self.library,
            self.store,
            max_batch_size=self.config.max_batch_size,
            lock_timeout=self.config.lock_timeout,
            max_merge_retries=self.config.max_merge_retries,
        )
        self.reporter = ProgressReporter(self.library, self.store)

    # Timelines --------------------------------------------------------
    def register_timeline(
        self,
        media_id: str,
        duration: float,
        *,
        segment_width: Optional[float] = None,
        title: Optional[str] = None,
    ) -> MediaTimeline:
        """Create or update a timeline.

        The grid is frozen once any viewer has a watch state for the media;
        only edits that keep the same segments are accepted then.
        """

        with self.engine.grid_guard(media_id):
            existing = self.library.get_timeline(media_id)
            if segment_width is None:
                segment_width = existing.segment_width if existing else self.config.segment_width
            if title is None and existing is not None:
                title = existing.title
            timeline = MediaTimeline(
                media_id=media_id, duration=duration, segment_width=segment_width, title=title
            )
            if (
                existing is not None
                and not existing.same_grid(timeline)
                and self.store.has_states_for_media(media_id)
            ):
                raise InvalidInput(
                    f"Timeline {media_id!r} already has watch progress; its segment grid cannot change."
                )
            self.library.upsert_timeline(timeline)
        logger.info(
            "Registered timeline %s (%d segments of %ss)",
            media_id,
            timeline.segment_count,
            timeline.segment_width,
        )
        return timeline

    def remove_timeline(self, media_id: str) -> None:
        self.library.require_timeline(media_id)
        with self.engine.grid_guard(media_id):
            if self.store.has_states_for_media(media_id):
                raise InvalidInput(f"Timeline {media_id!r} still has watch progress recorded.")
            self.library.remove_timeline(media_id)

    # Updates ----------------------------------------------------------
    def record_segments(self, viewer_id: str, media_id: str, segments: Iterable[int]) -> WatchResult:
        """Primary entry point for a playback report."""
        return self.engine.apply_watched_segments(viewer_id, media_id, segments)

    def record_positions(
        self,
        viewer_id: str,
        media_id: str,
        positions: Sequence[Union[str, int, float]],
    ) -> WatchResult:
        return self.engine.apply_watched_positions(viewer_id, media_id, positions)

    def reset_progress(self, viewer_id: str, media_id: str) -> bool:
        """Administrative reset; the only path that ever removes segments."""
        return self.store.reset(viewer_id, media_id)

    # Reads ------------------------------------------------------------
    def progress(self, viewer_id: str, media_id: str) -> ProgressReport:
        return self.reporter.get_progress(viewer_id, media_id)

    def continue_watching(self, viewer_id: str) -> List[ProgressReport]:
        return self.reporter.list_viewer_progress(viewer_id)
