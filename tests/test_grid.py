import pytest

from watchtrack.errors import InvalidInput
from watchtrack.grid import MediaTimeline, segment_count, segment_index, segment_start_time


def test_segment_index_floors_timestamp():
    assert segment_index(0) == 0
    assert segment_index(4.99) == 0
    assert segment_index(5) == 1
    assert segment_index(37.2, 5) == 7
    assert segment_index(59, 10) == 5


def test_segment_index_rejects_negative_timestamp():
    with pytest.raises(InvalidInput):
        segment_index(-0.1, 5)


def test_segment_count_rounds_up_partial_segment():
    assert segment_count(60, 5) == 12
    assert segment_count(61, 5) == 13
    assert segment_count(58, 10) == 6


def test_segment_count_has_minimum_of_one():
    assert segment_count(0.5, 5) == 1


@pytest.mark.parametrize("duration, width", [(0, 5), (-3, 5), (60, 0), (60, -5)])
def test_segment_count_rejects_non_positive_values(duration, width):
    with pytest.raises(InvalidInput):
        segment_count(duration, width)


def test_segment_start_time():
    assert segment_start_time(7, 5) == 35
    assert segment_start_time(0, 5) == 0


def test_media_timeline_derives_segment_count():
    timeline = MediaTimeline(media_id="m1", duration=61)
    assert timeline.segment_width == 5.0
    assert timeline.segment_count == 13


def test_media_timeline_validates_fields():
    with pytest.raises(InvalidInput):
        MediaTimeline(media_id=" ", duration=10)
    with pytest.raises(InvalidInput):
        MediaTimeline(media_id="m1", duration=0)
    with pytest.raises(InvalidInput):
        MediaTimeline(media_id="m1", duration=10, segment_width=0)


def test_same_grid_ignores_title_and_equivalent_duration():
    base = MediaTimeline(media_id="m1", duration=60)
    assert base.same_grid(MediaTimeline(media_id="m1", duration=58, title="Renamed"))
    assert not base.same_grid(MediaTimeline(media_id="m1", duration=90))
    assert not base.same_grid(MediaTimeline(media_id="m1", duration=60, segment_width=10))
