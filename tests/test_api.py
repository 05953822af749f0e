import threading

import pytest
from fastapi.testclient import TestClient

from watchtrack.server import create_app
from watchtrack.tracker import TrackerConfig, WatchTracker


@pytest.fixture
def client():
    tracker = WatchTracker(TrackerConfig(storage="memory", max_batch_size=20))
    app = create_app(tracker=tracker)
    with TestClient(app) as test_client:
        test_client.put("/timelines/m1", json={"duration": 60, "title": "Pilot"})
        yield test_client


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_timeline_endpoints(client):
    timeline = client.get("/timelines/m1").json()
    assert timeline["segment_count"] == 12
    assert timeline["segment_width"] == 5.0
    assert [entry["media_id"] for entry in client.get("/timelines").json()] == ["m1"]
    assert client.get("/timelines/missing").status_code == 404


def test_timeline_requires_positive_duration(client):
    assert client.put("/timelines/m2", json={"duration": 0}).status_code == 422


def test_report_segments(client):
    response = client.post("/progress", json={"viewer_id": "v1", "media_id": "m1", "segments": [3, 7, 12]})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["presence_snapshot"] == [0, 0, 0, 1, 0, 0, 0, 1, 0, 0, 0, 0]
    assert body["resume_position"] == 35
    assert body["dropped"] == [12]


def test_report_positions(client):
    response = client.post("/progress", json={"viewer_id": "v1", "media_id": "m1", "positions": ["00:00:12", 50]})
    assert response.status_code == 200
    assert response.json()["resume_position"] == 50


def test_report_requires_exactly_one_payload_kind(client):
    assert client.post("/progress", json={"viewer_id": "v1", "media_id": "m1"}).status_code == 400
    both = {"viewer_id": "v1", "media_id": "m1", "segments": [1], "positions": [5]}
    assert client.post("/progress", json=both).status_code == 400


def test_error_mapping(client):
    unknown = client.post("/progress", json={"viewer_id": "v1", "media_id": "nope", "segments": [1]})
    assert unknown.status_code == 404
    empty = client.post("/progress", json={"viewer_id": "v1", "media_id": "m1", "segments": []})
    assert empty.status_code == 400
    oversized = client.post("/progress", json={"viewer_id": "v1", "media_id": "m1", "segments": list(range(21))})
    assert oversized.status_code == 400


def test_progress_reads(client):
    assert client.get("/progress/v1/m1/resume").json() == {"resume_position": 0.0}
    client.post("/progress", json={"viewer_id": "v1", "media_id": "m1", "segments": [3, 4]})

    report = client.get("/progress/v1/m1").json()
    assert report["watched_segments"] == 2
    assert report["resume_timestamp"] == "00:00:20"
    assert client.get("/progress/v1/m1/completion").json()["completion_percentage"] == pytest.approx(16.6666667)
    assert [entry["media_id"] for entry in client.get("/progress/v1").json()] == ["m1"]


def test_reset_progress(client):
    assert client.delete("/progress/v1/m1").status_code == 404
    client.post("/progress", json={"viewer_id": "v1", "media_id": "m1", "segments": [1]})
    assert client.delete("/progress/v1/m1").status_code == 204
    assert client.get("/progress/v1/m1").json()["watched_segments"] == 0


def test_grid_change_after_progress_is_rejected(client):
    client.post("/progress", json={"viewer_id": "v1", "media_id": "m1", "segments": [1]})
    response = client.put("/timelines/m1", json={"duration": 60, "segment_width": 10})
    assert response.status_code == 400
    assert client.delete("/timelines/m1").status_code == 400


@pytest.mark.parametrize("segments", [["3"], [True], [1.5], [3, "4"], [{"index": 1}]])
def test_non_integer_segments_are_rejected(client, segments):
    response = client.post("/progress", json={"viewer_id": "v1", "media_id": "m1", "segments": segments})
    assert response.status_code == 400
    assert client.get("/progress/v1").json() == []


@pytest.mark.parametrize("positions", [[True], ["soon"], [-5], [None]])
def test_bad_positions_are_rejected(client, positions):
    response = client.post("/progress", json={"viewer_id": "v1", "media_id": "m1", "positions": positions})
    assert response.status_code == 400
    assert client.get("/progress/v1").json() == []


def test_integral_float_segments_are_accepted(client):
    response = client.post("/progress", json={"viewer_id": "v1", "media_id": "m1", "segments": [3.0]})
    assert response.status_code == 200
    assert response.json()["presence_snapshot"][3] == 1


def test_put_without_title_keeps_title(client):
    assert client.put("/timelines/m1", json={"duration": 58}).json()["title"] == "Pilot"
    assert client.get("/timelines/m1").json()["title"] == "Pilot"


def test_reads_run_off_the_event_loop_thread():
    tracker = WatchTracker(TrackerConfig(storage="memory"))
    tracker.register_timeline("m1", 60)
    app = create_app(tracker=tracker)
    calls = {}

    def record(name, func):
        def wrapper(*args):
            calls[name] = threading.get_ident()
            return func(*args)

        return wrapper

    tracker.progress = record("progress", tracker.progress)
    tracker.continue_watching = record("continue_watching", tracker.continue_watching)
    tracker.reporter.get_resume_position = record("resume", tracker.reporter.get_resume_position)
    tracker.reporter.get_completion_percentage = record(
        "completion", tracker.reporter.get_completion_percentage
    )
    tracker.library.list_timelines = record("timelines", tracker.library.list_timelines)
    tracker.library.get_timeline = record("timeline", tracker.library.get_timeline)

    @app.get("/loop-thread")
    async def loop_thread() -> dict:
        return {"ident": threading.get_ident()}

    with TestClient(app) as test_client:
        loop_ident = test_client.get("/loop-thread").json()["ident"]
        for url in (
            "/progress/v1",
            "/progress/v1/m1",
            "/progress/v1/m1/resume",
            "/progress/v1/m1/completion",
            "/timelines",
            "/timelines/m1",
        ):
            assert test_client.get(url).status_code == 200

    assert set(calls) == {"progress", "continue_watching", "resume", "completion", "timelines", "timeline"}
    assert loop_ident not in calls.values()
