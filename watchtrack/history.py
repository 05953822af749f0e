"""Per-viewer watch-state records and the stores that persist them."""

from __future__ import annotations

import abc
import base64
import json
import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Tuple

from filelock import FileLock, Timeout

from .errors import Conflict, InvalidInput, StorageUnavailable

logger = logging.getLogger(__name__)

StateKey = Tuple[str, str]


# Presence bitmap ------------------------------------------------------
def encode_bitmap(indices: Iterable[int], segment_count: int) -> bytes:
    """Pack segment indices into a little-endian bitset of ``segment_count`` bits."""
    buffer = bytearray((segment_count + 7) // 8)
    for index in indices:
        if not 0 <= index < segment_count:
            raise InvalidInput(f"Segment {index} is outside [0, {segment_count}).")
        buffer[index >> 3] |= 1 << (index & 7)
    return bytes(buffer)


def decode_bitmap(bitmap: bytes) -> FrozenSet[int]:
    """Return the set of indices whose bit is set."""
    return frozenset(
        (byte_index << 3) + bit
        for byte_index, byte in enumerate(bitmap)
        if byte
        for bit in range(8)
        if byte & (1 << bit)
    )


@dataclass(frozen=True)
class WatchState:
    """One viewer's watched segments for one media timeline.

    ``version`` is 0 until the state has been saved once; every successful
    save increments it by one.
    """

    viewer_id: str
    media_id: str
    segment_count: int
    bitmap: bytes = b""
    resume_position: float = 0.0
    updated_at: Optional[float] = None
    version: int = 0

    def __post_init__(self) -> None:
        expected = (self.segment_count + 7) // 8
        if not self.bitmap:
            object.__setattr__(self, "bitmap", bytes(expected))
        elif len(self.bitmap) != expected:
            raise InvalidInput(
                f"Bitmap holds {len(self.bitmap)} bytes, expected {expected} "
                f"for {self.segment_count} segments."
            )
        elif max(self.presence, default=-1) >= self.segment_count:
            raise InvalidInput("Bitmap marks segments beyond the timeline.")

    @property
    def key(self) -> StateKey:
        return (self.viewer_id, self.media_id)

    @property
    def presence(self) -> FrozenSet[int]:
        return decode_bitmap(self.bitmap)

    @property
    def watched_count(self) -> int:
        return sum(bin(byte).count("1") for byte in self.bitmap)

    def is_watched(self, index: int) -> bool:
        if not 0 <= index < self.segment_count:
            return False
        return bool(self.bitmap[index >> 3] & (1 << (index & 7)))

    def with_presence(self, indices: Iterable[int], **changes) -> "WatchState":
        """Return a copy whose presence set is exactly ``indices``."""
        return replace(self, bitmap=encode_bitmap(indices, self.segment_count), **changes)

    # Serialization ----------------------------------------------------
    def to_dict(self) -> Dict:
        return {
            "viewer_id": self.viewer_id,
            "media_id": self.media_id,
            "segment_count": self.segment_count,
            "bitmap": base64.b64encode(self.bitmap).decode("ascii"),
            "resume_position": self.resume_position,
            "updated_at": self.updated_at,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, payload: Dict) -> "WatchState":
        return cls(
            viewer_id=payload["viewer_id"],
            media_id=payload["media_id"],
            segment_count=int(payload["segment_count"]),
            bitmap=base64.b64decode(payload.get("bitmap") or ""),
            resume_position=float(payload.get("resume_position", 0.0)),
            updated_at=payload.get("updated_at"),
            version=int(payload.get("version", 0)),
        )


class WatchStateStore(abc.ABC):
    """Persistence contract consumed by the update engine and the reporter."""

    @abc.abstractmethod
    def load(self, viewer_id: str, media_id: str) -> Optional[WatchState]:
        """Return the committed state, or ``None`` when nothing was recorded."""

    def load_or_create(self, viewer_id: str, media_id: str, segment_count: int) -> WatchState:
        """Return the committed state or a fresh, unsaved empty one."""
        state = self.load(viewer_id, media_id)
        if state is None:
            return WatchState(viewer_id=viewer_id, media_id=media_id, segment_count=segment_count)
        return state

    @abc.abstractmethod
    def save(self, state: WatchState, expected_version: int) -> bool:
        """Commit ``state`` if the stored version still equals ``expected_version``.

        Returns ``False`` on a version conflict, leaving storage untouched.
        """

    @abc.abstractmethod
    def reset(self, viewer_id: str, media_id: str) -> bool:
        """Remove a state outright. Administrative; the engine never calls it."""

    @abc.abstractmethod
    def list_for_viewer(self, viewer_id: str) -> List[WatchState]:
        """Return every committed state belonging to ``viewer_id``."""

    @abc.abstractmethod
    def has_states_for_media(self, media_id: str) -> bool:
        """True when at least one viewer has a committed state for ``media_id``."""


class InMemoryWatchStateStore(WatchStateStore):
    """Process-local store guarded by a single lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._states: Dict[StateKey, WatchState] = {}

    # Internal helpers -------------------------------------------------
    def _snapshot(self, fresh: bool = False) -> Dict[StateKey, WatchState]:
        """Committed states; called with ``self._lock`` held."""
        return self._states

    @contextmanager
    def _write_guard(self) -> Iterator[None]:
        yield

    def _commit(self, key: StateKey, state: Optional[WatchState]) -> None:
        if state is None:
            self._states.pop(key, None)
        else:
            self._states[key] = state

    # Public API -------------------------------------------------------
    def load(self, viewer_id: str, media_id: str) -> Optional[WatchState]:
        with self._lock:
            return self._snapshot().get((viewer_id, media_id))

    def save(self, state: WatchState, expected_version: int) -> bool:
        with self._lock, self._write_guard():
            current = self._snapshot(fresh=True).get(state.key)
            current_version = current.version if current is not None else 0
            if current_version != expected_version:
                logger.warning(
                    "Version conflict for %s/%s: expected %d, found %d",
                    state.viewer_id,
                    state.media_id,
                    expected_version,
                    current_version,
                )
                return False
            self._commit(state.key, replace(state, version=expected_version + 1))
        return True

    def reset(self, viewer_id: str, media_id: str) -> bool:
        key = (viewer_id, media_id)
        with self._lock, self._write_guard():
            if key not in self._snapshot(fresh=True):
                return False
            self._commit(key, None)
        logger.info("Reset watch state for %s/%s", viewer_id, media_id)
        return True

    def list_for_viewer(self, viewer_id: str) -> List[WatchState]:
        with self._lock:
            return [state for key, state in self._snapshot().items() if key[0] == viewer_id]

    def has_states_for_media(self, media_id: str) -> bool:
        with self._lock:
            return any(key[1] == media_id for key in self._snapshot())


class JsonWatchStateStore(InMemoryWatchStateStore):
    """Watch states kept in a JSON file that several processes may share.

    Reads pick up the file again whenever it was replaced since the last
    read. Commits hold an OS-level lock on ``<path>.lock``, re-read the file
    and check the version against what is on disk before replacing it.
    """

    def __init__(self, path: str | Path, *, lock_timeout: float = 5.0) -> None:
        super().__init__()
        self.path = Path(path)
        self._file_lock = FileLock(str(self.path) + ".lock", timeout=lock_timeout)
        self._signature: Optional[Tuple[int, int, int]] = None
        with self._lock:
            self._snapshot(fresh=True)

    # Internal helpers -------------------------------------------------
    def _stat(self) -> Optional[Tuple[int, int, int]]:
        try:
            info = self.path.stat()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageUnavailable(f"Cannot stat watch states at {self.path}: {exc}") from exc
        return (info.st_ino, info.st_mtime_ns, info.st_size)

    def _read(self) -> Dict[StateKey, WatchState]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except json.JSONDecodeError:
            # Start clean when the file is corrupted.
            logger.warning("Watch-state file %s is corrupted; starting empty.", self.path)
            return {}
        except OSError as exc:
            raise StorageUnavailable(f"Cannot read watch states from {self.path}: {exc}") from exc
        try:
            states = [WatchState.from_dict(entry) for entry in data.get("states", [])]
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.error("Watch-state file %s holds malformed entries", self.path, exc_info=exc)
            raise StorageUnavailable(f"Malformed watch states in {self.path}: {exc}") from exc
        return {state.key: state for state in states}

    def _snapshot(self, fresh: bool = False) -> Dict[StateKey, WatchState]:
        signature = self._stat()
        if fresh or signature != self._signature:
            self._states = self._read()
            self._signature = signature
        return self._states

    @contextmanager
    def _write_guard(self) -> Iterator[None]:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file_lock.acquire()
        except Timeout as exc:
            logger.warning("Timed out waiting for the lock on %s", self.path)
            raise Conflict(f"Watch states at {self.path} are locked by another writer.") from exc
        except OSError as exc:
            raise StorageUnavailable(f"Cannot lock watch states at {self.path}: {exc}") from exc
        try:
            yield
        finally:
            self._file_lock.release()

    def _write(self, states: Dict[StateKey, WatchState]) -> None:
        payload = {"states": [state.to_dict() for state in states.values()]}
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            with tmp_path.open("w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            logger.error("Failed to write watch states to %s", self.path, exc_info=exc)
            raise StorageUnavailable(f"Cannot write watch states to {self.path}: {exc}") from exc

    def _commit(self, key: StateKey, state: Optional[WatchState]) -> None:
        pending = dict(self._states)
        if state is None:
            pending.pop(key, None)
        else:
            pending[key] = state
        self._write(pending)
        self._states = pending
        self._signature = self._stat()
