"""Background indexing jobs and the per-codebase state machine.

Starting an index returns immediately with a job handle; the work runs on
a thread pool and reports progress into the StateStore, which is
checkpointed to the snapshot at most every checkpoint_interval seconds and
always on terminal transitions.

Every start or clear of a path bumps that path's generation. A job whose
generation is no longer current stops writing state, and its cancel event
ends the file loop at the next file boundary.
"""

import logging
import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from context_mcp.errors import (
    AlreadyIndexedError,
    AlreadyIndexingError,
    CollectionLimitError,
    IndexingCancelled,
    ValidationError,
)
from context_mcp.indexer.chunker import SPLITTER_TYPES
from context_mcp.indexer.indexer import CodebaseIndexer
from context_mcp.indexer.synchronizer import ChangeSet, FileSynchronizer
from context_mcp.state import CodebaseState, IndexStats, IndexStatus, StateStore

logger = logging.getLogger(__name__)

# Minimum seconds between snapshot writes during progress
CHECKPOINT_INTERVAL = 2.0

# Concurrent indexing jobs (different paths)
MAX_WORKERS = 2


@dataclass
class IndexingJob:
    """Handle for a background indexing run."""

    path: str
    generation: int
    cancel_event: threading.Event = field(default_factory=threading.Event)
    future: Future | None = None

    def cancel(self) -> None:
        self.cancel_event.set()

    def done(self) -> bool:
        return self.future is not None and self.future.done()


def validate_extensions(extensions: Iterable[str]) -> list[str]:
    """Check file extensions such as ".vue".

    Raises:
        ValidationError: If any extension does not start with a dot, is only
            a dot, or contains whitespace.
    """
    cleaned = [ext.strip() for ext in extensions if isinstance(ext, str) and ext.strip()]
    invalid = [
        ext
        for ext in cleaned
        if not ext.startswith(".") or len(ext) < 2 or any(c.isspace() for c in ext)
    ]
    if invalid:
        raise ValidationError(
            f"Invalid file extensions: {invalid}. Use proper extensions like '.ts', '.py'."
        )
    return cleaned


def canonical_path(path: str | Path) -> str:
    """Absolute, resolved form of a path, used as the state key."""
    return str(Path(path).expanduser().resolve())


def resolve_directory(path: str | Path) -> str:
    """Resolve a codebase path and check that it is an existing directory."""
    if not path or not str(path).strip():
        raise ValidationError("Path is required")
    resolved = Path(path).expanduser().resolve()
    if not resolved.exists():
        raise ValidationError(f"Path '{resolved}' does not exist")
    if not resolved.is_dir():
        raise ValidationError(f"Path '{resolved}' is not a directory")
    return str(resolved)


class IndexingOrchestrator:
    """Owns every codebase state transition."""

    def __init__(
        self,
        indexer: CodebaseIndexer,
        states: StateStore,
        snapshot_dir: Path,
        executor: ThreadPoolExecutor | None = None,
        checkpoint_interval: float = CHECKPOINT_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the orchestrator.

        Args:
            indexer: Codebase indexer doing the actual work
            states: State registry, loaded by the caller
            snapshot_dir: Directory for per-codebase file hash snapshots
            executor: Thread pool for jobs (created if not given)
            checkpoint_interval: Minimum seconds between progress snapshots
            clock: Monotonic clock, injectable for tests
        """
        self.indexer = indexer
        self.states = states
        self.snapshot_dir = snapshot_dir
        self.checkpoint_interval = checkpoint_interval
        self._clock = clock
        self._executor = executor or ThreadPoolExecutor(
            max_workers=MAX_WORKERS, thread_name_prefix="context-index"
        )
        self._lock = threading.RLock()
        self._generations: dict[str, int] = {}
        self._jobs: dict[str, IndexingJob] = {}
        self._synchronizers: dict[str, FileSynchronizer] = {}

    def _bump(self, path: str) -> int:
        generation = self._generations.get(path, 0) + 1
        self._generations[path] = generation
        return generation

    def _is_current(self, job: IndexingJob) -> bool:
        return self._generations.get(job.path) == job.generation

    def _save(self) -> None:
        try:
            self.states.save()
        except OSError:
            logger.exception("Failed to write indexing snapshot")

    # Public API

    def start_indexing(
        self,
        path: str | Path,
        force: bool = False,
        splitter: str = "ast",
        custom_extensions: Iterable[str] | None = None,
        ignore_patterns: Iterable[str] | None = None,
    ) -> IndexingJob:
        """
        Start indexing a codebase in the background.

        Raises:
            ValidationError: Bad splitter, extension or path.
            AlreadyIndexingError: The path is already being indexed.
            AlreadyIndexedError: The path is indexed and force is False.
            CollectionLimitError: No new collection can be created.
        """
        if splitter not in SPLITTER_TYPES:
            raise ValidationError(
                f"Invalid splitter type '{splitter}'. Must be one of: {', '.join(SPLITTER_TYPES)}"
            )
        extensions = validate_extensions(custom_extensions or [])
        patterns = [p.strip() for p in ignore_patterns or [] if p and p.strip()]
        resolved = resolve_directory(path)

        with self._lock:
            status = self.states.status(resolved)
            if status == IndexStatus.INDEXING:
                raise AlreadyIndexingError(f"Codebase '{resolved}' is already being indexed")
            if status == IndexStatus.INDEXED and not force:
                raise AlreadyIndexedError(
                    f"Codebase '{resolved}' is already indexed. Use force=true to re-index."
                )

            needs_collection = not self.indexer.has_index(resolved)
            if needs_collection and not self.indexer.store.check_collection_limit():
                raise CollectionLimitError()

            if force:
                logger.info("Force re-index of %s: clearing previous index", resolved)
                self.indexer.clear_index(resolved)
                self.states.remove(resolved)
                self._synchronizers.pop(resolved, None)

            self.states.set_indexing(resolved, 0.0)
            job = IndexingJob(path=resolved, generation=self._bump(resolved))
            self._save()
            self._jobs[resolved] = job
            job.future = self._executor.submit(self._run, job, splitter, extensions, patterns)

        logger.info("Started background indexing of %s (%s splitter)", resolved, splitter)
        return job

    def clear_index(self, path: str | Path) -> bool:
        """
        Cancel any running job, drop the collection and forget the state.

        Returns:
            True if there was anything to clear.
        """
        resolved = canonical_path(path)
        with self._lock:
            job = self._jobs.pop(resolved, None)
            if job is not None:
                job.cancel()
            self._bump(resolved)
            dropped = self.indexer.clear_index(resolved)
            removed = self.states.remove(resolved)
            self._synchronizers.pop(resolved, None)
            FileSynchronizer(Path(resolved), self.snapshot_dir).delete_snapshot()
            self._save()
        return dropped or removed

    def get_status(self, path: str | Path) -> CodebaseState:
        return self.states.get(canonical_path(path))

    def searchable_paths(self) -> list[str]:
        """Codebases worth searching: indexed ones and ones still indexing."""
        return self.states.paths_with(IndexStatus.INDEXED, IndexStatus.INDEXING)

    def sync_codebase(self, path: str) -> ChangeSet | None:
        """Re-index files that changed on disk. Only indexed codebases are synced."""
        with self._lock:
            if self.states.status(path) != IndexStatus.INDEXED:
                return None
            synchronizer = self._synchronizers.get(path)
            generation = self._generations.get(path, 0)

        if synchronizer is None:
            synchronizer = self.indexer.make_synchronizer(path, self.snapshot_dir)
            synchronizer.initialize()
            with self._lock:
                if self._generations.get(path, 0) != generation:
                    return None
                self._synchronizers.setdefault(path, synchronizer)

        changes = self.indexer.reindex_changed(path, synchronizer)
        if changes.has_changes():
            self._refresh_stats(path, generation, changes)
        return changes

    def _refresh_stats(self, path: str, generation: int, changes: ChangeSet) -> None:
        total_chunks = self.indexer.chunk_count(path)
        with self._lock:
            if self._generations.get(path, 0) != generation:
                return
            if self.states.status(path) != IndexStatus.INDEXED:
                return
            previous = self.states.get(path).stats or IndexStats()
            indexed_files = previous.indexed_files + len(changes.added) - len(changes.removed)
            self.states.update_stats(
                path, IndexStats(max(0, indexed_files), total_chunks, previous.status_note)
            )
        self._save()

    def shutdown(self, wait: bool = True) -> None:
        """Cancel running jobs and stop the thread pool."""
        with self._lock:
            for job in self._jobs.values():
                job.cancel()
        self._executor.shutdown(wait=wait)
        logger.info("Indexing orchestrator stopped")

    # Background job

    def _run(
        self,
        job: IndexingJob,
        splitter: str,
        extensions: list[str],
        ignore_patterns: list[str],
    ) -> None:
        """Run one indexing job. Failures are recorded in state, never raised."""
        path = job.path
        last_save = self._clock()
        last_percentage = 0.0

        def on_progress(progress: dict[str, Any]) -> None:
            nonlocal last_save, last_percentage
            last_percentage = float(progress.get("percentage", last_percentage))
            with self._lock:
                if not self._is_current(job):
                    return
                self.states.update_progress(path, last_percentage)
                now = self._clock()
                if now - last_save >= self.checkpoint_interval:
                    self._save()
                    last_save = now
            logger.debug(
                "Indexing %s: %s %d/%d (%.1f%%)",
                path,
                progress.get("phase"),
                progress.get("current", 0),
                progress.get("total", 0),
                last_percentage,
            )

        try:
            synchronizer = self.indexer.make_synchronizer(
                path, self.snapshot_dir, extensions, ignore_patterns
            )
            # A full run makes the current tree the change-detection baseline
            synchronizer.delete_snapshot()
            synchronizer.initialize()
            self.indexer.prepare_collection(path)
            stats = self.indexer.index_codebase(
                path,
                progress=on_progress,
                cancel_event=job.cancel_event,
                splitter=splitter,
                extra_extensions=extensions,
                extra_ignore_patterns=ignore_patterns,
            )
        except IndexingCancelled as e:
            logger.info("Indexing of %s cancelled at %.1f%%", path, last_percentage)
            self._finish_failed(job, str(e), last_percentage)
            return
        except Exception as e:
            logger.exception("Indexing failed for %s", path)
            self._finish_failed(job, str(e) or type(e).__name__, last_percentage)
            return

        with self._lock:
            if not self._is_current(job):
                logger.info("Discarding result of superseded indexing job for %s", path)
                return
            self.states.set_indexed(path, stats)
            self._synchronizers[path] = synchronizer
            self._jobs.pop(path, None)
            self._save()

    def _finish_failed(self, job: IndexingJob, message: str, percentage: float) -> None:
        with self._lock:
            if not self._is_current(job):
                return
            self.states.set_failed(job.path, message, percentage)
            self._jobs.pop(job.path, None)
            self._save()
