"""Per-codebase indexing state and its durable snapshot.

Exactly one CodebaseState exists per codebase path. Transitions are
validated here; the orchestrator is the only caller that drives them.
"""

import json
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

from context_mcp.errors import InvalidTransitionError

logger = logging.getLogger(__name__)

SNAPSHOT_FORMAT_VERSION = 1

INTERRUPTED_MESSAGE = "Indexing was interrupted before it completed"


class IndexStatus(str, Enum):
    NOT_FOUND = "not_found"
    INDEXING = "indexing"
    INDEXED = "indexed"
    INDEXFAILED = "indexfailed"


class StatusNote(str, Enum):
    OK = "ok"
    LIMIT_REACHED = "limit_reached"


# Allowed transitions. indexed -> indexing needs the entry removed first.
TRANSITIONS: dict[IndexStatus, frozenset[IndexStatus]] = {
    IndexStatus.NOT_FOUND: frozenset({IndexStatus.INDEXING}),
    IndexStatus.INDEXING: frozenset({IndexStatus.INDEXED, IndexStatus.INDEXFAILED}),
    IndexStatus.INDEXFAILED: frozenset({IndexStatus.INDEXING}),
    IndexStatus.INDEXED: frozenset(),
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class IndexStats:
    indexed_files: int = 0
    total_chunks: int = 0
    status_note: StatusNote | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "indexed_files": self.indexed_files,
            "total_chunks": self.total_chunks,
            "status_note": self.status_note.value if self.status_note else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IndexStats":
        note = data.get("status_note")
        return cls(
            indexed_files=int(data.get("indexed_files", 0)),
            total_chunks=int(data.get("total_chunks", 0)),
            status_note=StatusNote(note) if note else None,
        )


@dataclass
class CodebaseState:
    """Indexing state of one codebase."""

    path: str
    status: IndexStatus = IndexStatus.NOT_FOUND
    progress_percentage: float = 0.0
    stats: IndexStats | None = None
    error_message: str | None = None
    last_attempted_percentage: float | None = None
    last_updated: datetime = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "status": self.status.value,
            "progress_percentage": self.progress_percentage,
            "stats": self.stats.to_dict() if self.stats else None,
            "error_message": self.error_message,
            "last_attempted_percentage": self.last_attempted_percentage,
            "last_updated": self.last_updated.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CodebaseState":
        last_updated = data.get("last_updated")
        return cls(
            path=data["path"],
            status=IndexStatus(data.get("status", IndexStatus.NOT_FOUND.value)),
            progress_percentage=float(data.get("progress_percentage", 0.0)),
            stats=IndexStats.from_dict(data["stats"]) if data.get("stats") else None,
            error_message=data.get("error_message"),
            last_attempted_percentage=data.get("last_attempted_percentage"),
            last_updated=datetime.fromisoformat(last_updated) if last_updated else _now(),
        )


class SnapshotPersistence(Protocol):
    """Durable storage for the state snapshot."""

    def load(self) -> dict[str, Any]: ...

    def save(self, data: dict[str, Any]) -> None: ...


class MemorySnapshot:
    """In-process snapshot storage."""

    def __init__(self, data: dict[str, Any] | None = None):
        self.data: dict[str, Any] = data or {}
        self.save_count = 0

    def load(self) -> dict[str, Any]:
        return json.loads(json.dumps(self.data))

    def save(self, data: dict[str, Any]) -> None:
        self.data = json.loads(json.dumps(data))
        self.save_count += 1


class JsonSnapshotFile:
    """Snapshot stored as a JSON file, replaced atomically on every save."""

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable snapshot %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def save(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        os.replace(tmp_path, self.path)


class StateStore:
    """
    Registry of CodebaseState keyed by absolute path.

    Thread Safety:
        All access goes through one lock. Returned states are copies, so
        callers never observe a half-applied transition.
    """

    def __init__(self, persistence: SnapshotPersistence | None = None):
        self.persistence = persistence or MemorySnapshot()
        self._states: dict[str, CodebaseState] = {}
        self._lock = threading.RLock()

    def _transition(self, path: str, target: IndexStatus) -> CodebaseState:
        current = self._states.get(path)
        status = current.status if current else IndexStatus.NOT_FOUND
        if target not in TRANSITIONS[status]:
            raise InvalidTransitionError(
                f"Cannot move {path} from {status.value} to {target.value}"
            )
        if current is None:
            current = CodebaseState(path=path)
            self._states[path] = current
        current.status = target
        current.last_updated = _now()
        return current

    def get(self, path: str) -> CodebaseState:
        """Get a copy of the state for path (not_found if unknown)."""
        with self._lock:
            state = self._states.get(path)
            if state is None:
                return CodebaseState(path=path)
            return CodebaseState.from_dict(state.to_dict())

    def status(self, path: str) -> IndexStatus:
        with self._lock:
            state = self._states.get(path)
            return state.status if state else IndexStatus.NOT_FOUND

    def set_indexing(self, path: str, percentage: float = 0.0) -> None:
        with self._lock:
            state = self._transition(path, IndexStatus.INDEXING)
            state.progress_percentage = percentage
            state.stats = None
            state.error_message = None

    def update_progress(self, path: str, percentage: float) -> None:
        """Record progress of an indexing codebase."""
        with self._lock:
            state = self._states.get(path)
            if state is None or state.status != IndexStatus.INDEXING:
                raise InvalidTransitionError(f"Cannot record progress: {path} is not indexing")
            state.progress_percentage = max(0.0, min(100.0, percentage))
            state.last_updated = _now()

    def set_indexed(self, path: str, stats: IndexStats) -> None:
        with self._lock:
            state = self._transition(path, IndexStatus.INDEXED)
            state.progress_percentage = 100.0
            state.stats = stats
            state.error_message = None
            state.last_attempted_percentage = None

    def update_stats(self, path: str, stats: IndexStats) -> None:
        """Replace the stats of an indexed codebase after an incremental sync."""
        with self._lock:
            state = self._states.get(path)
            if state is None or state.status != IndexStatus.INDEXED:
                raise InvalidTransitionError(f"Cannot update stats: {path} is not indexed")
            state.stats = stats
            state.last_updated = _now()

    def set_failed(self, path: str, message: str, last_percentage: float | None = None) -> None:
        with self._lock:
            state = self._transition(path, IndexStatus.INDEXFAILED)
            if last_percentage is None:
                last_percentage = state.progress_percentage
            state.error_message = message
            state.last_attempted_percentage = last_percentage
            state.progress_percentage = last_percentage

    def remove(self, path: str) -> bool:
        """Forget a codebase. Returns True if it was known."""
        with self._lock:
            return self._states.pop(path, None) is not None

    def paths_with(self, *statuses: IndexStatus) -> list[str]:
        """Paths whose status is one of statuses, sorted."""
        with self._lock:
            return sorted(path for path, state in self._states.items() if state.status in statuses)

    def all(self) -> list[CodebaseState]:
        with self._lock:
            return [CodebaseState.from_dict(s.to_dict()) for _, s in sorted(self._states.items())]

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "format_version": SNAPSHOT_FORMAT_VERSION,
                "codebases": {path: state.to_dict() for path, state in self._states.items()},
                "last_updated": _now().isoformat(),
            }

    def save(self) -> None:
        """Write the snapshot through the persistence backend."""
        data = self.to_dict()
        self.persistence.save(data)

    def load(self) -> None:
        """
        Replace in-memory state with the persisted snapshot.

        Entries left in indexing by a previous process cannot still be
        running; they become indexfailed with their last percentage kept.
        """
        data = self.persistence.load()
        codebases = data.get("codebases", {}) if isinstance(data, dict) else {}

        states: dict[str, CodebaseState] = {}
        for path, entry in codebases.items():
            try:
                state = CodebaseState.from_dict({**entry, "path": path})
            except (KeyError, ValueError, TypeError) as e:
                logger.warning("Skipping malformed snapshot entry for %s: %s", path, e)
                continue
            if state.status == IndexStatus.NOT_FOUND:
                continue
            if state.status == IndexStatus.INDEXING:
                state.status = IndexStatus.INDEXFAILED
                state.error_message = INTERRUPTED_MESSAGE
                state.last_attempted_percentage = state.progress_percentage
                state.last_updated = _now()
                logger.warning(
                    "Codebase %s was interrupted at %.1f%%",
                    path,
                    state.progress_percentage,
                )
            states[path] = state

        with self._lock:
            self._states = states
        logger.info("Loaded indexing state for %d codebases", len(states))
