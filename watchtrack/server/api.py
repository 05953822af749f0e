"""FastAPI application exposing watch progress tracking over HTTP."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from watchtrack.errors import Conflict, InvalidInput, NotFound, StorageUnavailable, WatchTrackError
from watchtrack.grid import MediaTimeline
from watchtrack.tracker import TrackerConfig, WatchTracker

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = (
    (InvalidInput, 400),
    (NotFound, 404),
    (Conflict, 409),
    (StorageUnavailable, 503),
)


class TimelineRequest(BaseModel):
    duration: float = Field(..., gt=0, description="Total media duration in seconds.")
    segment_width: Optional[float] = Field(
        None, gt=0, description="Segment width in seconds; defaults to the deployment setting."
    )
    title: Optional[str] = Field(None, description="Display title.")


class ProgressRequest(BaseModel):
    viewer_id: str = Field(..., min_length=1, description="Resolved viewer identity.")
    media_id: str = Field(..., min_length=1, description="Identifier of the media timeline.")
    segments: Optional[list[Any]] = Field(None, description="Segment indices crossed since the last report.")
    positions: Optional[list[Any]] = Field(
        None, description="Playback positions (seconds or HH:MM:SS) crossed since the last report."
    )


def _timeline_payload(timeline: MediaTimeline) -> dict:
    return {
        "media_id": timeline.media_id,
        "title": timeline.title,
        "duration": timeline.duration,
        "segment_width": timeline.segment_width,
        "segment_count": timeline.segment_count,
    }


def create_app(config: Optional[TrackerConfig] = None, tracker: Optional[WatchTracker] = None) -> FastAPI:
    """Create and configure the FastAPI application."""

    tracker = tracker or WatchTracker(config or TrackerConfig.from_env())

    app = FastAPI(title="Watch Progress Tracker", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(WatchTrackError)
    async def handle_tracking_error(request: Request, exc: WatchTrackError) -> JSONResponse:
        for error_type, status_code in _STATUS_BY_ERROR:
            if isinstance(exc, error_type):
                break
        else:
            status_code = 500
        if status_code >= 500:
            logger.error("Request to %s failed", request.url.path, exc_info=exc)
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    # Dependency to access the tracker within endpoints ---------------
    def get_tracker() -> WatchTracker:
        return tracker

    async def _in_executor(func, *args):
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, lambda: func(*args))

    # Routes ---------------------------------------------------------
    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/timelines")
    async def list_timelines(trk: WatchTracker = Depends(get_tracker)) -> list[dict]:
        timelines = await _in_executor(trk.library.list_timelines)
        return [_timeline_payload(timeline) for timeline in timelines]

    @app.get("/timelines/{media_id}")
    async def get_timeline(media_id: str, trk: WatchTracker = Depends(get_tracker)) -> dict:
        timeline = await _in_executor(trk.library.get_timeline, media_id)
        if not timeline:
            raise HTTPException(status_code=404, detail="Timeline not found.")
        return _timeline_payload(timeline)

    @app.put("/timelines/{media_id}")
    async def put_timeline(
        media_id: str,
        payload: TimelineRequest = Body(...),
        trk: WatchTracker = Depends(get_tracker),
    ) -> dict:
        timeline = await _in_executor(
            lambda: trk.register_timeline(
                media_id,
                payload.duration,
                segment_width=payload.segment_width,
                title=payload.title,
            )
        )
        return _timeline_payload(timeline)

    @app.delete("/timelines/{media_id}", status_code=204)
    async def delete_timeline(media_id: str, trk: WatchTracker = Depends(get_tracker)) -> Response:
        await _in_executor(trk.remove_timeline, media_id)
        return Response(status_code=204)

    @app.post("/progress")
    async def report_progress(
        payload: ProgressRequest = Body(...),
        trk: WatchTracker = Depends(get_tracker),
    ) -> dict:
        if (payload.segments is None) == (payload.positions is None):
            raise HTTPException(status_code=400, detail="Provide exactly one of segments or positions.")

        if payload.segments is not None:
            result = await _in_executor(
                trk.record_segments, payload.viewer_id, payload.media_id, payload.segments
            )
        else:
            result = await _in_executor(
                trk.record_positions, payload.viewer_id, payload.media_id, payload.positions
            )

        return {
            "success": True,
            "presence_snapshot": result.presence_snapshot,
            "resume_position": result.resume_position,
            "completion_percentage": result.completion_percentage,
            "segment_count": result.segment_count,
            "version": result.version,
            "dropped": list(result.dropped),
        }

    @app.get("/progress/{viewer_id}")
    async def continue_watching(viewer_id: str, trk: WatchTracker = Depends(get_tracker)) -> list[dict]:
        reports = await _in_executor(trk.continue_watching, viewer_id)
        return [report.to_dict() for report in reports]

    @app.get("/progress/{viewer_id}/{media_id}")
    async def get_progress(viewer_id: str, media_id: str, trk: WatchTracker = Depends(get_tracker)) -> dict:
        report = await _in_executor(trk.progress, viewer_id, media_id)
        return report.to_dict()

    @app.get("/progress/{viewer_id}/{media_id}/resume")
    async def get_resume(viewer_id: str, media_id: str, trk: WatchTracker = Depends(get_tracker)) -> dict:
        position = await _in_executor(trk.reporter.get_resume_position, viewer_id, media_id)
        return {"resume_position": position}

    @app.get("/progress/{viewer_id}/{media_id}/completion")
    async def get_completion(viewer_id: str, media_id: str, trk: WatchTracker = Depends(get_tracker)) -> dict:
        percentage = await _in_executor(trk.reporter.get_completion_percentage, viewer_id, media_id)
        return {"completion_percentage": percentage}

    @app.delete("/progress/{viewer_id}/{media_id}", status_code=204)
    async def reset_progress(viewer_id: str, media_id: str, trk: WatchTracker = Depends(get_tracker)) -> Response:
        if not await _in_executor(trk.reset_progress, viewer_id, media_id):
            raise HTTPException(status_code=404, detail="No progress recorded.")
        return Response(status_code=204)

    return app
