"""Codebase indexer: walks files, chunks them, embeds and stores the chunks."""

import hashlib
import logging
import threading
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from context_mcp.embedding import Embedding
from context_mcp.errors import IndexingCancelled
from context_mcp.indexer.chunker import make_splitter
from context_mcp.indexer.database import CollectionStore
from context_mcp.indexer.languages import language_for_extension
from context_mcp.indexer.models import Chunk, Document, SearchResult
from context_mcp.indexer.ranker import HybridRanker
from context_mcp.indexer.refiner import DEFAULT_CHUNK_OVERLAP, DEFAULT_CHUNK_SIZE
from context_mcp.indexer.synchronizer import ChangeSet, FileSynchronizer
from context_mcp.indexer.walker import (
    DEFAULT_EXTENSIONS,
    DEFAULT_IGNORE_PATTERNS,
    FileInfo,
    normalize_extension,
    walk_codebase,
)
from context_mcp.state import IndexStats, StatusNote

logger = logging.getLogger(__name__)

# Hard ceiling on chunks per codebase
CHUNK_LIMIT = 450_000

# Chunks embedded and inserted together
DEFAULT_BATCH_SIZE = 100

# Ignore files read from the codebase root besides .gitignore
IGNORE_FILES = (".gitignore", ".contextignore")

# Rows fetched per round when deleting a file's chunks
_DELETE_PAGE = 1000

ProgressCallback = Callable[[dict[str, Any]], None]


def collection_name(path: str | Path) -> str:
    """Collection name for a codebase: code_chunks_ + 8 hex chars of md5(path)."""
    resolved = str(Path(path).expanduser().resolve())
    return "code_chunks_" + hashlib.md5(resolved.encode("utf-8")).hexdigest()[:8]


def document_id(relative_path: str, start_line: int, end_line: int, content: str) -> str:
    """Stable id for a chunk of a file."""
    key = f"{relative_path}:{start_line}:{end_line}:{content}"
    return "chunk_" + hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]


def read_ignore_file(path: Path) -> list[str]:
    """Read patterns from an ignore file, skipping blanks and comments."""
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Cannot read ignore file %s: %s", path, e)
        return []
    return [
        line.strip()
        for line in text.splitlines()
        if line.strip() and not line.strip().startswith("#")
    ]


def _quote(value: str) -> str:
    return f'"{value}"' if "'" in value else f"'{value}'"


class CodebaseIndexer:
    """
    Turns a directory into a searchable collection.

    The filesystem is the source of truth; a collection can always be
    dropped and rebuilt from it.
    """

    def __init__(
        self,
        store: CollectionStore,
        embedding: Embedding,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
        batch_size: int = DEFAULT_BATCH_SIZE,
        chunk_limit: int = CHUNK_LIMIT,
        supported_extensions: Iterable[str] = DEFAULT_EXTENSIONS,
        ignore_patterns: Iterable[str] = DEFAULT_IGNORE_PATTERNS,
    ):
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.store = store
        self.embedding = embedding
        self.ranker = HybridRanker(store)
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.batch_size = batch_size
        self.chunk_limit = chunk_limit
        self.supported_extensions = tuple(supported_extensions)
        self.ignore_patterns = tuple(ignore_patterns)

    collection_name = staticmethod(collection_name)

    # Collection lifecycle

    def has_index(self, path: str | Path) -> bool:
        return self.store.has_collection(collection_name(path))

    def chunk_count(self, path: str | Path) -> int:
        """Chunks stored for the codebase, 0 when it has no collection."""
        name = collection_name(path)
        if not self.store.has_collection(name):
            return 0
        return self.store.count(name)

    def prepare_collection(self, path: str | Path) -> str:
        """Create the codebase's collection if it does not exist yet."""
        name = collection_name(path)
        if not self.store.has_collection(name):
            self.store.create_collection(
                name,
                self.embedding.get_dimension(),
                description=f"Code chunks for {Path(path).resolve()}",
            )
        return name

    def clear_index(self, path: str | Path) -> bool:
        """Drop the codebase's collection. Returns False if there was none."""
        name = collection_name(path)
        if not self.store.has_collection(name):
            return False
        self.store.drop_collection(name)
        logger.info("Cleared index for %s", path)
        return True

    # Configuration for a run

    def extensions_for(self, extra_extensions: Iterable[str] = ()) -> list[str]:
        extensions = list(self.supported_extensions)
        for ext in extra_extensions:
            normalized = normalize_extension(ext)
            if normalized not in extensions:
                extensions.append(normalized)
        return extensions

    def load_ignore_patterns(
        self, path: str | Path, extra_patterns: Iterable[str] = ()
    ) -> list[str]:
        """
        Default patterns, then extra patterns, then patterns from ignore files.

        Ignore files are .gitignore, .contextignore and any other .*ignore
        file at the codebase root. Order is kept because a later "!pattern"
        overrides earlier ones.
        """
        root = Path(path)
        patterns = list(self.ignore_patterns)
        patterns.extend(p for p in extra_patterns if p and p.strip())

        ignore_files = [root / name for name in IGNORE_FILES]
        ignore_files.extend(
            candidate
            for candidate in sorted(root.glob(".*ignore"))
            if candidate.name not in IGNORE_FILES
        )
        for ignore_file in ignore_files:
            if ignore_file.is_file():
                found = read_ignore_file(ignore_file)
                if found:
                    logger.debug("Loaded %d patterns from %s", len(found), ignore_file)
                patterns.extend(found)

        return patterns

    def make_synchronizer(
        self,
        path: str | Path,
        snapshot_dir: Path,
        extra_extensions: Iterable[str] = (),
        extra_ignore_patterns: Iterable[str] = (),
    ) -> FileSynchronizer:
        """Create a change detector that sees the same files as indexing."""
        root = Path(path)
        return FileSynchronizer(
            root,
            snapshot_dir,
            extensions=self.extensions_for(extra_extensions),
            ignore_patterns=self.load_ignore_patterns(root, extra_ignore_patterns),
        )

    # Indexing

    def index_codebase(
        self,
        path: str | Path,
        progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
        splitter: str = "ast",
        extra_extensions: Iterable[str] = (),
        extra_ignore_patterns: Iterable[str] = (),
    ) -> IndexStats:
        """
        Index every supported file under path.

        Progress is reported as {phase, current, total, percentage} once per
        inserted batch. Indexing stops early at the chunk ceiling, which is
        reported as StatusNote.LIMIT_REACHED rather than an error.

        Raises:
            IndexingCancelled: If cancel_event is set between files.
        """
        root = Path(path)
        report = progress or (lambda _: None)

        report({"phase": "preparing", "current": 0, "total": 0, "percentage": 0.0})
        name = self.prepare_collection(root)
        text_splitter = make_splitter(splitter, self.chunk_size, self.chunk_overlap)

        report({"phase": "scanning", "current": 0, "total": 0, "percentage": 5.0})
        files = list(
            walk_codebase(
                root,
                self.extensions_for(extra_extensions),
                self.load_ignore_patterns(root, extra_ignore_patterns),
            )
        )
        total_files = len(files)
        logger.info("Indexing %s: %d files", root, total_files)

        indexed_files = 0
        total_chunks = 0
        note = StatusNote.OK
        buffer: list[tuple[Chunk, FileInfo, int]] = []

        for position, info in enumerate(files, start=1):
            if cancel_event is not None and cancel_event.is_set():
                raise IndexingCancelled(f"Indexing of {root} was cancelled")

            chunks = self._split_file(info, text_splitter)
            if chunks is None:
                continue
            indexed_files += 1

            for chunk_index, chunk in enumerate(chunks):
                if total_chunks + len(buffer) >= self.chunk_limit:
                    note = StatusNote.LIMIT_REACHED
                    break
                buffer.append((chunk, info, chunk_index))
                if len(buffer) >= self.batch_size:
                    total_chunks += self._flush(name, root, buffer)
                    buffer = []
                    report(
                        {
                            "phase": "processing",
                            "current": position,
                            "total": total_files,
                            "percentage": 10.0 + 90.0 * position / total_files,
                        }
                    )

            if note == StatusNote.LIMIT_REACHED:
                logger.warning(
                    "Chunk limit of %d reached for %s, stopping early",
                    self.chunk_limit,
                    root,
                )
                break

        if buffer:
            total_chunks += self._flush(name, root, buffer)

        report(
            {
                "phase": "completed",
                "current": total_files,
                "total": total_files,
                "percentage": 100.0,
            }
        )
        logger.info(
            "Indexed %s: %d files, %d chunks (%s)",
            root,
            indexed_files,
            total_chunks,
            note.value,
        )
        return IndexStats(indexed_files=indexed_files, total_chunks=total_chunks, status_note=note)

    def reindex_changed(self, path: str | Path, synchronizer: FileSynchronizer) -> ChangeSet:
        """Bring a collection up to date with the files that changed on disk."""
        root = Path(path)
        changes = synchronizer.check_for_changes()
        if not changes.has_changes():
            return changes

        name = self.prepare_collection(root)
        for relative_path in [*changes.removed, *changes.modified]:
            self._delete_file_documents(name, relative_path)

        wanted = set(changes.added) | set(changes.modified)
        text_splitter = make_splitter("ast", self.chunk_size, self.chunk_overlap)
        buffer: list[tuple[Chunk, FileInfo, int]] = []
        for info in walk_codebase(root, synchronizer.extensions, synchronizer.ignore_spec):
            if info.relative_path not in wanted:
                continue
            chunks = self._split_file(info, text_splitter)
            for chunk_index, chunk in enumerate(chunks or []):
                buffer.append((chunk, info, chunk_index))
                if len(buffer) >= self.batch_size:
                    self._flush(name, root, buffer)
                    buffer = []
        if buffer:
            self._flush(name, root, buffer)

        return changes

    def _split_file(self, info: FileInfo, text_splitter) -> list[Chunk] | None:
        """Chunk one file. Returns None if the file cannot be read as UTF-8."""
        try:
            code = info.path.read_bytes().decode("utf-8")
        except UnicodeDecodeError:
            logger.warning("Skipping file with invalid UTF-8 encoding: %s", info.relative_path)
            return None
        except OSError as e:
            logger.warning("Cannot read %s: %s", info.relative_path, e)
            return None

        if not code.strip():
            return []
        language = language_for_extension(info.extension)
        return text_splitter.split(code, language, info.relative_path)

    def _flush(self, name: str, root: Path, batch: list[tuple[Chunk, FileInfo, int]]) -> int:
        """Embed and insert a batch of chunks. Returns the number inserted."""
        vectors = self.embedding.embed_batch([chunk.content for chunk, _, _ in batch])
        documents = [
            Document(
                id=document_id(info.relative_path, chunk.start_line, chunk.end_line, chunk.content),
                vector=vector.vector,
                content=chunk.content,
                relative_path=info.relative_path,
                start_line=chunk.start_line,
                end_line=chunk.end_line,
                file_extension=info.extension,
                is_definition=chunk.is_definition,
                metadata={
                    "language": chunk.language,
                    "codebasePath": str(root),
                    "chunkIndex": chunk_index,
                },
            )
            for (chunk, info, chunk_index), vector in zip(batch, vectors)
        ]
        self.store.insert(name, documents)
        return len(documents)

    def _delete_file_documents(self, name: str, relative_path: str) -> int:
        deleted = 0
        filter_expr = f"relativePath == {_quote(relative_path)}"
        while True:
            rows = self.store.query(name, filter_expr, ["id"], limit=_DELETE_PAGE)
            if not rows:
                return deleted
            self.store.delete(name, [row["id"] for row in rows])
            deleted += len(rows)

    # Search

    def semantic_search(
        self,
        path: str | Path,
        query: str,
        top_k: int = 10,
        filter_expr: str | None = None,
    ) -> list[SearchResult]:
        """Hybrid search over one codebase's collection."""
        name = collection_name(path)
        if not self.store.has_collection(name):
            logger.debug("No collection for %s", path)
            return []
        query_vector = self.embedding.embed(query).vector
        return self.ranker.hybrid_search(
            name,
            query_vector,
            query_text=query,
            limit=top_k,
            filter_expr=filter_expr,
        )
