import pytest

from watchtrack.engine import SegmentUpdateEngine
from watchtrack.grid import MediaTimeline
from watchtrack.history import InMemoryWatchStateStore
from watchtrack.library import TimelineLibrary
from watchtrack.reporter import ProgressReporter


@pytest.fixture
def library():
    lib = TimelineLibrary()
    # 60 seconds at the default 5 second width: 12 segments.
    lib.upsert_timeline(MediaTimeline(media_id="m1", duration=60, title="Pilot"))
    lib.upsert_timeline(MediaTimeline(media_id="m2", duration=58, segment_width=10))
    return lib


@pytest.fixture
def store():
    return InMemoryWatchStateStore()


@pytest.fixture
def engine(library, store):
    return SegmentUpdateEngine(library, store, max_batch_size=50, lock_timeout=1.0)


@pytest.fixture
def reporter(library, store):
    return ProgressReporter(library, store)
