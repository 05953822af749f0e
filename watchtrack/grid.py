"""Fixed-width segment grid laid over a media timeline.

Every conversion between playback time and segment indices goes through this
module so the engine and the reporter always agree on the discretization.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from .errors import InvalidInput

DEFAULT_SEGMENT_WIDTH = 5.0


def _require_positive(value: float, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidInput(f"{name} must be a number, got {value!r}.")
    if not math.isfinite(value) or value <= 0:
        raise InvalidInput(f"{name} must be a positive number, got {value!r}.")


def segment_index(timestamp: float, segment_width: float = DEFAULT_SEGMENT_WIDTH) -> int:
    """Return the index of the segment containing ``timestamp``.

    Raises:
        InvalidInput: If the timestamp is negative or the width is not positive.
    """

    _require_positive(segment_width, "segment_width")
    if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
        raise InvalidInput(f"timestamp must be a number, got {timestamp!r}.")
    if not math.isfinite(timestamp) or timestamp < 0:
        raise InvalidInput(f"timestamp cannot be negative, got {timestamp!r}.")
    return int(math.floor(timestamp / segment_width))


def segment_count(duration: float, segment_width: float = DEFAULT_SEGMENT_WIDTH) -> int:
    """Return how many segments cover ``duration`` seconds (at least one).

    Raises:
        InvalidInput: If the duration or the width is not positive.
    """

    _require_positive(duration, "duration")
    _require_positive(segment_width, "segment_width")
    return max(1, int(math.ceil(duration / segment_width)))


def segment_start_time(index: int, segment_width: float = DEFAULT_SEGMENT_WIDTH) -> float:
    """Return the playback time at which segment ``index`` begins."""

    return index * segment_width


@dataclass(frozen=True)
class MediaTimeline:
    """One piece of trackable media and the grid laid over it."""

    media_id: str
    duration: float
    segment_width: float = DEFAULT_SEGMENT_WIDTH
    title: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.media_id, str) or not self.media_id.strip():
            raise InvalidInput("media_id cannot be empty.")
        _require_positive(self.duration, "duration")
        _require_positive(self.segment_width, "segment_width")

    @property
    def segment_count(self) -> int:
        return segment_count(self.duration, self.segment_width)

    def same_grid(self, other: "MediaTimeline") -> bool:
        """True when both timelines discretize into identical segments."""
        return (
            self.segment_width == other.segment_width
            and self.segment_count == other.segment_count
        )
