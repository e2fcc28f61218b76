"""Tests for background indexing and state transitions."""

import threading
from pathlib import Path

import pytest

from context_mcp.errors import (
    AlreadyIndexedError,
    AlreadyIndexingError,
    CollectionLimitError,
    ValidationError,
)
from context_mcp.indexer.database import CollectionStore
from context_mcp.indexer.indexer import CodebaseIndexer
from context_mcp.orchestrator import (
    IndexingOrchestrator,
    canonical_path,
    resolve_directory,
    validate_extensions,
)
from context_mcp.state import IndexStats, IndexStatus, MemorySnapshot, StateStore

WAIT = 10  # seconds


@pytest.fixture
def codebase(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    (root / "app.py").write_text("def run():\n    return 'running'\n")
    (root / "README.md").write_text("# App\n\nRuns things.\n")
    return root


@pytest.fixture
def snapshot() -> MemorySnapshot:
    return MemorySnapshot()


@pytest.fixture
def indexer(store: CollectionStore, fake_embedding) -> CodebaseIndexer:
    return CodebaseIndexer(store, fake_embedding)


@pytest.fixture
def orchestrator(indexer: CodebaseIndexer, snapshot: MemorySnapshot, tmp_path: Path):
    orch = IndexingOrchestrator(indexer, StateStore(snapshot), tmp_path / "file-snapshots")
    yield orch
    orch.shutdown()


def blocking_index(release: threading.Event, started: threading.Event):
    """Replacement for index_codebase that waits until released."""

    def index_codebase(path, progress=None, cancel_event=None, **kwargs):
        started.set()
        release.wait(WAIT)
        return IndexStats(indexed_files=1, total_chunks=1)

    return index_codebase


class TestValidation:
    def test_validate_extensions(self):
        assert validate_extensions([" .vue ", "", ".svelte"]) == [".vue", ".svelte"]
        with pytest.raises(ValidationError, match="Invalid file extensions"):
            validate_extensions(["vue"])
        with pytest.raises(ValidationError):
            validate_extensions(["."])
        with pytest.raises(ValidationError):
            validate_extensions([".a b"])

    def test_resolve_directory(self, codebase: Path):
        assert resolve_directory(str(codebase / ".")) == str(codebase)
        with pytest.raises(ValidationError, match="does not exist"):
            resolve_directory(codebase / "missing")
        with pytest.raises(ValidationError, match="not a directory"):
            resolve_directory(codebase / "app.py")
        with pytest.raises(ValidationError, match="required"):
            resolve_directory("  ")

    def test_canonical_path(self, codebase: Path):
        assert canonical_path(codebase / "sub" / "..") == str(codebase)

    def test_invalid_splitter(self, orchestrator: IndexingOrchestrator, codebase: Path):
        with pytest.raises(ValidationError, match="Invalid splitter type"):
            orchestrator.start_indexing(codebase, splitter="semantic")

    def test_invalid_request_leaves_no_state(
        self, orchestrator: IndexingOrchestrator, codebase: Path
    ):
        with pytest.raises(ValidationError):
            orchestrator.start_indexing(codebase, custom_extensions=["vue"])
        assert orchestrator.get_status(codebase).status == IndexStatus.NOT_FOUND


class TestStartIndexing:
    def test_runs_to_indexed(
        self, orchestrator: IndexingOrchestrator, codebase: Path, store: CollectionStore
    ):
        job = orchestrator.start_indexing(codebase)
        job.future.result(WAIT)

        state = orchestrator.get_status(codebase)
        assert state.status == IndexStatus.INDEXED
        assert state.progress_percentage == 100.0
        assert state.stats.indexed_files == 2
        assert state.stats.total_chunks == store.count(
            orchestrator.indexer.collection_name(codebase)
        )

    def test_returns_before_indexing_finishes(
        self, orchestrator: IndexingOrchestrator, indexer: CodebaseIndexer, codebase: Path
    ):
        release, started = threading.Event(), threading.Event()
        indexer.index_codebase = blocking_index(release, started)

        job = orchestrator.start_indexing(codebase)
        assert started.wait(WAIT)
        assert orchestrator.get_status(codebase).status == IndexStatus.INDEXING
        assert not job.done()

        release.set()
        job.future.result(WAIT)
        assert orchestrator.get_status(codebase).status == IndexStatus.INDEXED

    def test_rejects_concurrent_start(
        self, orchestrator: IndexingOrchestrator, indexer: CodebaseIndexer, codebase: Path
    ):
        release, started = threading.Event(), threading.Event()
        indexer.index_codebase = blocking_index(release, started)
        job = orchestrator.start_indexing(codebase)
        started.wait(WAIT)

        with pytest.raises(AlreadyIndexingError):
            orchestrator.start_indexing(codebase)
        with pytest.raises(AlreadyIndexingError):
            orchestrator.start_indexing(codebase, force=True)

        release.set()
        job.future.result(WAIT)

    def test_indexed_requires_force(self, orchestrator: IndexingOrchestrator, codebase: Path):
        orchestrator.start_indexing(codebase).future.result(WAIT)

        with pytest.raises(AlreadyIndexedError, match="force"):
            orchestrator.start_indexing(codebase)

    def test_force_rebuilds(
        self, orchestrator: IndexingOrchestrator, codebase: Path, store: CollectionStore
    ):
        orchestrator.start_indexing(codebase).future.result(WAIT)
        (codebase / "extra.py").write_text("def extra():\n    return 1\n")

        orchestrator.start_indexing(codebase, force=True).future.result(WAIT)

        state = orchestrator.get_status(codebase)
        assert state.status == IndexStatus.INDEXED
        assert state.stats.indexed_files == 3

    def test_failure_is_recorded(
        self, orchestrator: IndexingOrchestrator, indexer: CodebaseIndexer, codebase: Path
    ):
        def failing(path, progress=None, **kwargs):
            progress({"phase": "processing", "current": 1, "total": 2, "percentage": 55.0})
            raise RuntimeError("embedding service unavailable")

        indexer.index_codebase = failing

        job = orchestrator.start_indexing(codebase)
        assert job.future.result(WAIT) is None

        state = orchestrator.get_status(codebase)
        assert state.status == IndexStatus.INDEXFAILED
        assert state.error_message == "embedding service unavailable"
        assert state.last_attempted_percentage == 55.0

    def test_retry_after_failure(
        self, orchestrator: IndexingOrchestrator, indexer: CodebaseIndexer, codebase: Path
    ):
        original = indexer.index_codebase

        def failing(path, **kwargs):
            raise RuntimeError("boom")

        indexer.index_codebase = failing
        orchestrator.start_indexing(codebase).future.result(WAIT)
        assert orchestrator.get_status(codebase).status == IndexStatus.INDEXFAILED

        indexer.index_codebase = original
        orchestrator.start_indexing(codebase).future.result(WAIT)
        assert orchestrator.get_status(codebase).status == IndexStatus.INDEXED

    def test_collection_limit(self, tmp_path: Path, fake_embedding, codebase: Path):
        limited = CollectionStore(tmp_path / "limited.db", max_collections=1)
        limited.initialize()
        limited.create_collection("other", fake_embedding.get_dimension())
        orch = IndexingOrchestrator(
            CodebaseIndexer(limited, fake_embedding), StateStore(), tmp_path / "snapshots"
        )

        with pytest.raises(CollectionLimitError):
            orch.start_indexing(codebase)
        assert orch.get_status(codebase).status == IndexStatus.NOT_FOUND

        orch.shutdown()
        limited.close()

    def test_existing_collection_not_limited(self, tmp_path: Path, fake_embedding, codebase: Path):
        limited = CollectionStore(tmp_path / "limited.db", max_collections=1)
        limited.initialize()
        orch = IndexingOrchestrator(
            CodebaseIndexer(limited, fake_embedding), StateStore(), tmp_path / "snapshots"
        )

        orch.start_indexing(codebase).future.result(WAIT)
        orch.start_indexing(codebase, force=True).future.result(WAIT)

        assert orch.get_status(codebase).status == IndexStatus.INDEXED
        orch.shutdown()
        limited.close()


class TestCheckpoints:
    def test_progress_saved_at_most_every_interval(
        self, indexer: CodebaseIndexer, snapshot: MemorySnapshot, codebase: Path, tmp_path: Path
    ):
        times = [0.0, 0.5, 1.0, 2.5, 3.0]
        orch = IndexingOrchestrator(
            indexer,
            StateStore(snapshot),
            tmp_path / "file-snapshots",
            checkpoint_interval=2.0,
            clock=lambda: times.pop(0),
        )

        def reporting(path, progress=None, **kwargs):
            for percentage in (20.0, 40.0, 60.0, 80.0):
                progress({"phase": "processing", "percentage": percentage})
            return IndexStats(indexed_files=1, total_chunks=4)

        indexer.index_codebase = reporting

        orch.start_indexing(codebase).future.result(WAIT)
        orch.shutdown()

        # Start, one progress checkpoint at t=2.5, completion
        assert snapshot.save_count == 3
        assert snapshot.data["codebases"][str(codebase)]["status"] == "indexed"

    def test_terminal_state_always_saved(
        self, orchestrator: IndexingOrchestrator, snapshot: MemorySnapshot, codebase: Path
    ):
        orchestrator.start_indexing(codebase).future.result(WAIT)
        assert snapshot.data["codebases"][str(codebase)]["status"] == "indexed"


class TestClearIndex:
    def test_clear_indexed(self, orchestrator: IndexingOrchestrator, codebase: Path):
        orchestrator.start_indexing(codebase).future.result(WAIT)

        assert orchestrator.clear_index(codebase)
        assert orchestrator.get_status(codebase).status == IndexStatus.NOT_FOUND
        assert not orchestrator.indexer.has_index(codebase)
        assert not orchestrator.clear_index(codebase)

    def test_clear_while_indexing_discards_job(
        self,
        orchestrator: IndexingOrchestrator,
        indexer: CodebaseIndexer,
        snapshot: MemorySnapshot,
        codebase: Path,
    ):
        release, started = threading.Event(), threading.Event()
        indexer.index_codebase = blocking_index(release, started)
        job = orchestrator.start_indexing(codebase)
        started.wait(WAIT)

        orchestrator.clear_index(codebase)
        assert job.cancel_event.is_set()

        release.set()
        job.future.result(WAIT)

        assert orchestrator.get_status(codebase).status == IndexStatus.NOT_FOUND
        assert str(codebase) not in snapshot.data["codebases"]

    def test_restart_after_clear_ignores_old_job(
        self, orchestrator: IndexingOrchestrator, indexer: CodebaseIndexer, codebase: Path
    ):
        release, started = threading.Event(), threading.Event()
        indexer.index_codebase = blocking_index(release, started)
        old_job = orchestrator.start_indexing(codebase)
        started.wait(WAIT)
        orchestrator.clear_index(codebase)

        def failing(path, **kwargs):
            raise RuntimeError("second run failed")

        indexer.index_codebase = failing
        orchestrator.start_indexing(codebase).future.result(WAIT)
        assert orchestrator.get_status(codebase).status == IndexStatus.INDEXFAILED

        # The superseded job finishing late must not overwrite the new state
        release.set()
        old_job.future.result(WAIT)
        state = orchestrator.get_status(codebase)
        assert state.status == IndexStatus.INDEXFAILED
        assert state.error_message == "second run failed"


class TestSync:
    def test_sync_indexed_codebase(self, orchestrator: IndexingOrchestrator, codebase: Path):
        orchestrator.start_indexing(codebase).future.result(WAIT)
        (codebase / "new.py").write_text("def new():\n    return 2\n")

        changes = orchestrator.sync_codebase(str(codebase))

        assert changes.added == ["new.py"]
        results = orchestrator.indexer.semantic_search(codebase, "def new return")
        assert "new.py" in {r.relative_path for r in results}

    def test_sync_refreshes_stats(
        self, orchestrator: IndexingOrchestrator, codebase: Path, snapshot: MemorySnapshot
    ):
        orchestrator.start_indexing(codebase).future.result(WAIT)
        before = orchestrator.get_status(codebase).stats
        (codebase / "new.py").write_text("def new():\n    return 2\n")

        orchestrator.sync_codebase(str(codebase))

        stats = orchestrator.get_status(codebase).stats
        assert stats.indexed_files == before.indexed_files + 1
        assert stats.total_chunks > before.total_chunks
        assert stats.total_chunks == orchestrator.indexer.chunk_count(codebase)

        (codebase / "README.md").unlink()
        orchestrator.sync_codebase(str(codebase))

        stats = orchestrator.get_status(codebase).stats
        assert stats.indexed_files == before.indexed_files
        assert stats.total_chunks == orchestrator.indexer.chunk_count(codebase)
        saved = snapshot.load()["codebases"][str(codebase)]["stats"]
        assert saved["total_chunks"] == stats.total_chunks

    def test_sync_skips_unindexed(self, orchestrator: IndexingOrchestrator, codebase: Path):
        assert orchestrator.sync_codebase(str(codebase)) is None

    def test_searchable_paths(self, orchestrator: IndexingOrchestrator, codebase: Path):
        orchestrator.start_indexing(codebase).future.result(WAIT)
        assert orchestrator.searchable_paths() == [str(codebase)]
