"""Read-only projections of watch state for progress bars and resume prompts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from .engine import completion_percentage
from .grid import MediaTimeline
from .history import WatchState, WatchStateStore
from .library import TimelineLibrary
from .time_utils import format_seconds


@dataclass(frozen=True)
class SegmentPresence:
    index: int
    watched: bool


@dataclass(frozen=True)
class ProgressReport:
    """Everything a consumer needs to draw progress for one viewer and media."""

    viewer_id: str
    media_id: str
    segment_count: int
    segment_width: float
    presence_snapshot: List[int]
    watched_segments: int
    resume_position: float
    resume_timestamp: str
    completion_percentage: float
    updated_at: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "viewer_id": self.viewer_id,
            "media_id": self.media_id,
            "segment_count": self.segment_count,
            "segment_width": self.segment_width,
            "presence_snapshot": list(self.presence_snapshot),
            "watched_segments": self.watched_segments,
            "resume_position": self.resume_position,
            "resume_timestamp": self.resume_timestamp,
            "completion_percentage": self.completion_percentage,
            "updated_at": self.updated_at,
        }


class ProgressReporter:
    """Serialize committed watch state; never writes and never creates state.

    Reads may observe the state from just before a concurrent update.
    """

    def __init__(self, library: TimelineLibrary, store: WatchStateStore) -> None:
        self.library = library
        self.store = store

    def _lookup(self, viewer_id: str, media_id: str) -> tuple[MediaTimeline, Optional[WatchState]]:
        timeline = self.library.require_timeline(media_id)
        return timeline, self.store.load(viewer_id, media_id)

    def get_presence_snapshot(self, viewer_id: str, media_id: str) -> List[SegmentPresence]:
        timeline, state = self._lookup(viewer_id, media_id)
        return [
            SegmentPresence(index=index, watched=state is not None and state.is_watched(index))
            for index in range(timeline.segment_count)
        ]

    def get_resume_position(self, viewer_id: str, media_id: str) -> float:
        _, state = self._lookup(viewer_id, media_id)
        return state.resume_position if state is not None else 0.0

    def get_completion_percentage(self, viewer_id: str, media_id: str) -> float:
        timeline, state = self._lookup(viewer_id, media_id)
        if state is None:
            return 0.0
        return completion_percentage(state.watched_count, timeline.segment_count)

    def get_progress(self, viewer_id: str, media_id: str) -> ProgressReport:
        timeline, state = self._lookup(viewer_id, media_id)
        return self._report(timeline, viewer_id, state)

    def list_viewer_progress(self, viewer_id: str) -> List[ProgressReport]:
        """Reports for every media the viewer has started, most recent first.

        States whose timeline has since been removed are skipped.
        """

        reports = []
        states = sorted(
            self.store.list_for_viewer(viewer_id),
            key=lambda state: state.updated_at or 0.0,
            reverse=True,
        )
        for state in states:
            timeline = self.library.get_timeline(state.media_id)
            if timeline is None:
                continue
            reports.append(self._report(timeline, viewer_id, state))
        return reports

    @staticmethod
    def _report(
        timeline: MediaTimeline, viewer_id: str, state: Optional[WatchState]
    ) -> ProgressReport:
        count = timeline.segment_count
        if state is None:
            snapshot = [0] * count
            watched = 0
            resume = 0.0
            updated_at = None
        else:
            snapshot = [1 if state.is_watched(index) else 0 for index in range(count)]
            watched = state.watched_count
            resume = state.resume_position
            updated_at = state.updated_at
        return ProgressReport(
            viewer_id=viewer_id,
            media_id=timeline.media_id,
            segment_count=count,
            segment_width=timeline.segment_width,
            presence_snapshot=snapshot,
            watched_segments=watched,
            resume_position=resume,
            resume_timestamp=format_seconds(resume),
            completion_percentage=completion_percentage(watched, count),
            updated_at=updated_at,
        )
