"""Merge reported segment batches into watch states without double counting."""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Callable, Dict, FrozenSet, Hashable, Iterable, Iterator, List, Sequence, Tuple, Union

from .errors import Conflict, InvalidInput
from .grid import segment_index, segment_start_time
from .history import WatchState, WatchStateStore
from .library import TimelineLibrary
from .time_utils import parse_timestamp

logger = logging.getLogger(__name__)

DEFAULT_MAX_BATCH_SIZE = 720
DEFAULT_LOCK_TIMEOUT = 5.0
DEFAULT_MAX_MERGE_RETRIES = 3


@dataclass(frozen=True)
class WatchResult:
    """Outcome of one successful update."""

    viewer_id: str
    media_id: str
    presence: FrozenSet[int]
    resume_position: float
    completion_percentage: float
    segment_count: int
    version: int
    accepted: Tuple[int, ...] = ()
    dropped: Tuple[int, ...] = ()

    @property
    def presence_snapshot(self) -> List[int]:
        return [1 if index in self.presence else 0 for index in range(self.segment_count)]


def completion_percentage(watched: int, segment_count: int) -> float:
    """Share of unique watched segments, as a percentage in ``[0, 100]``."""
    if segment_count <= 0:
        return 0.0
    return min(100.0, watched / segment_count * 100)


def _validate_candidates(candidates: Iterable[int], max_batch_size: int) -> List[int]:
    if isinstance(candidates, (str, bytes)):
        raise InvalidInput("Segment indices must be a collection of integers.")
    try:
        batch = list(candidates)
    except TypeError as exc:
        raise InvalidInput("Segment indices must be a collection of integers.") from exc
    if not batch:
        raise InvalidInput("At least one segment index is required.")
    if len(batch) > max_batch_size:
        raise InvalidInput(
            f"Batch of {len(batch)} segments exceeds the limit of {max_batch_size}."
        )

    indices = []
    for value in batch:
        if isinstance(value, bool):
            raise InvalidInput(f"Segment index must be an integer, got {value!r}.")
        if isinstance(value, float):
            if not value.is_integer():
                raise InvalidInput(f"Segment index must be an integer, got {value!r}.")
            value = int(value)
        if not isinstance(value, int):
            raise InvalidInput(f"Segment index must be an integer, got {value!r}.")
        indices.append(value)
    return indices


def merge_segments(
    state: WatchState,
    candidates: Iterable[int],
    segment_width: float,
    *,
    updated_at: float | None = None,
) -> Tuple[WatchState, Tuple[int, ...], Tuple[int, ...]]:
    """Union in-range candidates into ``state``.

    Returns the merged state together with the accepted and dropped indices.
    Out-of-range candidates are dropped and never influence the resume
    position. The input state is left untouched.
    """

    candidates = list(candidates)
    segment_count = state.segment_count
    accepted = sorted({index for index in candidates if 0 <= index < segment_count})
    dropped = tuple(index for index in candidates if not 0 <= index < segment_count)

    presence = state.presence.union(accepted)
    if presence == state.presence:
        return state, tuple(accepted), dropped

    resume_position = max(
        state.resume_position, segment_start_time(max(presence), segment_width)
    )
    merged = state.with_presence(
        presence,
        resume_position=resume_position,
        updated_at=time.time() if updated_at is None else updated_at,
    )
    return merged, tuple(accepted), dropped


class KeyedLockPool:
    """Hands out one lock per key; locks are discarded once nobody holds them."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, Tuple[threading.Lock, int]] = {}

    @contextmanager
    def hold(self, key: Hashable, timeout: float) -> Iterator[None]:
        with self._guard:
            lock, users = self._locks.get(key, (None, 0))
            if lock is None:
                lock = threading.Lock()
            self._locks[key] = (lock, users + 1)
        try:
            if not lock.acquire(timeout=timeout):
                logger.warning("Timed out after %.2fs waiting for %s", timeout, key)
                raise Conflict(f"Another update for {key} is still running; retry later.")
            try:
                yield
            finally:
                lock.release()
        finally:
            with self._guard:
                _, users = self._locks[key]
                if users <= 1:
                    del self._locks[key]
                else:
                    self._locks[key] = (lock, users - 1)


class SegmentUpdateEngine:
    """Validate and apply watched-segment batches, one atomic merge per call.

    Updates for the same viewer and media are serialized through a per-key
    lock, and every write is a compare-and-swap on the state's version so a
    writer outside this process cannot cause a lost update either. Commits
    re-check the timeline's grid under a per-media guard that timeline edits
    also take, so a state is never stored against a stale grid.
    """

    def __init__(
        self,
        library: TimelineLibrary,
        store: WatchStateStore,
        *,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
        max_merge_retries: int = DEFAULT_MAX_MERGE_RETRIES,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_batch_size < 1:
            raise InvalidInput("max_batch_size must be at least 1.")
        if max_merge_retries < 0:
            raise InvalidInput("max_merge_retries cannot be negative.")
        self.library = library
        self.store = store
        self.max_batch_size = max_batch_size
        self.lock_timeout = lock_timeout
        self.max_merge_retries = max_merge_retries
        self._clock = clock
        self._locks = KeyedLockPool()
        self._grid_locks = KeyedLockPool()

    def grid_guard(self, media_id: str):
        """Hold off commits for ``media_id`` while its timeline is being changed."""
        return self._grid_locks.hold(("grid", media_id), self.lock_timeout)

    def apply_watched_segments(
        self,
        viewer_id: str,
        media_id: str,
        candidate_indices: Iterable[int],
    ) -> WatchResult:
        """Merge ``candidate_indices`` into the viewer's state for ``media_id``.

        Raises:
            InvalidInput: Empty, oversized or malformed batch, or empty viewer id.
            NotFound: ``media_id`` has no registered timeline.
            Conflict: The lock or the version check kept failing.
            StorageUnavailable: The store could not be read or written.
        """

        if not isinstance(viewer_id, str) or not viewer_id.strip():
            raise InvalidInput("viewer_id cannot be empty.")
        indices = _validate_candidates(candidate_indices, self.max_batch_size)
        key = (viewer_id, media_id)

        for attempt in range(self.max_merge_retries + 1):
            timeline = self.library.require_timeline(media_id)
            segment_count = timeline.segment_count
            with self._locks.hold(key, self.lock_timeout):
                current = self.store.load_or_create(viewer_id, media_id, segment_count)
                if current.segment_count != segment_count:
                    raise InvalidInput(
                        f"Stored state for {viewer_id}/{media_id} uses {current.segment_count} "
                        f"segments but the timeline now has {segment_count}."
                    )
                merged, accepted, dropped = merge_segments(
                    current, indices, timeline.segment_width, updated_at=self._clock()
                )
                if dropped:
                    logger.debug(
                        "Dropped out-of-range segments %s for %s/%s", dropped, viewer_id, media_id
                    )

                if merged is current and current.version > 0:
                    return self._result(current, accepted, dropped)
                if merged is current:
                    # First report for this pair; persist the empty state.
                    merged = replace(current, updated_at=self._clock())

                expected_version = current.version
                with self.grid_guard(media_id):
                    latest = self.library.require_timeline(media_id)
                    if latest.same_grid(timeline):
                        saved = self.store.save(merged, expected_version)
                    else:
                        logger.warning("Grid of %s changed during a merge; re-reading", media_id)
                        saved = False
                if saved:
                    committed = replace(merged, version=expected_version + 1)
                    logger.debug(
                        "Committed %s/%s v%d: %d/%d segments",
                        viewer_id,
                        media_id,
                        committed.version,
                        committed.watched_count,
                        segment_count,
                    )
                    return self._result(committed, accepted, dropped)

            logger.warning(
                "Merge for %s/%s was not committed (attempt %d of %d)",
                viewer_id,
                media_id,
                attempt + 1,
                self.max_merge_retries + 1,
            )

        raise Conflict(
            f"Could not merge segments for {viewer_id}/{media_id} after "
            f"{self.max_merge_retries + 1} attempts."
        )

    def apply_watched_positions(
        self,
        viewer_id: str,
        media_id: str,
        timestamps: Sequence[Union[str, int, float]],
    ) -> WatchResult:
        """Convert playback timestamps through the grid and merge the segments."""

        if isinstance(timestamps, (str, bytes)) or not timestamps:
            raise InvalidInput("At least one playback position is required.")
        if len(timestamps) > self.max_batch_size:
            raise InvalidInput(
                f"Batch of {len(timestamps)} positions exceeds the limit of {self.max_batch_size}."
            )
        timeline = self.library.require_timeline(media_id)
        indices = [
            segment_index(parse_timestamp(value), timeline.segment_width) for value in timestamps
        ]
        return self.apply_watched_segments(viewer_id, media_id, indices)

    @staticmethod
    def _result(
        state: WatchState, accepted: Tuple[int, ...], dropped: Tuple[int, ...]
    ) -> WatchResult:
        return WatchResult(
            viewer_id=state.viewer_id,
            media_id=state.media_id,
            presence=state.presence,
            resume_position=state.resume_position,
            completion_percentage=completion_percentage(state.watched_count, state.segment_count),
            segment_count=state.segment_count,
            version=state.version,
            accepted=accepted,
            dropped=dropped,
        )
