import pytest

from watchtrack.engine import SegmentUpdateEngine
from watchtrack.errors import NotFound
from watchtrack.reporter import SegmentPresence


def test_empty_state_reads_return_zero_without_creating_state(reporter, store):
    assert reporter.get_resume_position("v1", "m1") == 0
    assert reporter.get_completion_percentage("v1", "m1") == 0
    assert store.load("v1", "m1") is None


def test_snapshot_has_one_entry_per_segment(engine, reporter):
    engine.apply_watched_segments("v1", "m1", [0, 11])
    snapshot = reporter.get_presence_snapshot("v1", "m1")

    assert len(snapshot) == 12
    assert snapshot[0] == SegmentPresence(index=0, watched=True)
    assert snapshot[5] == SegmentPresence(index=5, watched=False)
    assert [entry.index for entry in snapshot if entry.watched] == [0, 11]


def test_snapshot_without_state_is_all_unwatched(reporter, store):
    snapshot = reporter.get_presence_snapshot("v1", "m2")
    assert [entry.watched for entry in snapshot] == [False] * 6
    assert store.load("v1", "m2") is None


def test_percentage_for_two_of_twelve_segments(engine, reporter):
    engine.apply_watched_segments("v1", "m1", [3, 4])
    assert reporter.get_completion_percentage("v1", "m1") == pytest.approx(16.6666667)


def test_resume_reflects_highest_segment(engine, reporter):
    engine.apply_watched_segments("v1", "m1", [10])
    engine.apply_watched_segments("v1", "m1", [2])
    assert reporter.get_resume_position("v1", "m1") == 50


def test_progress_report_bundles_everything(engine, reporter):
    engine.apply_watched_segments("v1", "m1", [3, 7])
    report = reporter.get_progress("v1", "m1")

    assert report.presence_snapshot == [0, 0, 0, 1, 0, 0, 0, 1, 0, 0, 0, 0]
    assert report.watched_segments == 2
    assert report.resume_position == 35
    assert report.resume_timestamp == "00:00:35"
    assert report.to_dict()["segment_width"] == 5.0


def test_unknown_media_raises_not_found(reporter):
    with pytest.raises(NotFound):
        reporter.get_resume_position("v1", "missing")
    with pytest.raises(NotFound):
        reporter.get_presence_snapshot("v1", "missing")


def test_continue_watching_orders_by_recency(library, store, reporter):
    ticks = iter([100.0, 200.0])
    engine = SegmentUpdateEngine(library, store, clock=lambda: next(ticks))
    engine.apply_watched_segments("v1", "m1", [1])
    engine.apply_watched_segments("v1", "m2", [1])

    assert [report.media_id for report in reporter.list_viewer_progress("v1")] == ["m2", "m1"]
    assert reporter.list_viewer_progress("v2") == []


def test_continue_watching_skips_removed_timelines(engine, reporter, library):
    engine.apply_watched_segments("v1", "m1", [1])
    library.remove_timeline("m1")
    assert reporter.list_viewer_progress("v1") == []
