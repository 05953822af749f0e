"""Track how much of a media timeline a viewer has genuinely watched.

Playback reports arrive as segment indices on a fixed-width grid; each
segment counts once no matter how often it is replayed, and the resume
position never moves backwards.
"""

import logging

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

from .engine import SegmentUpdateEngine, WatchResult, merge_segments
from .errors import Conflict, InvalidInput, NotFound, StorageUnavailable, WatchTrackError
from .grid import MediaTimeline, segment_count, segment_index, segment_start_time
from .history import InMemoryWatchStateStore, JsonWatchStateStore, WatchState, WatchStateStore
from .library import TimelineLibrary
from .reporter import ProgressReport, ProgressReporter, SegmentPresence
from .tracker import TrackerConfig, WatchTracker

__all__ = [
    "__version__",
    "Conflict",
    "InvalidInput",
    "InMemoryWatchStateStore",
    "JsonWatchStateStore",
    "MediaTimeline",
    "NotFound",
    "ProgressReport",
    "ProgressReporter",
    "SegmentPresence",
    "SegmentUpdateEngine",
    "StorageUnavailable",
    "TimelineLibrary",
    "TrackerConfig",
    "WatchResult",
    "WatchState",
    "WatchStateStore",
    "WatchTracker",
    "WatchTrackError",
    "merge_segments",
    "segment_count",
    "segment_index",
    "segment_start_time",
]
