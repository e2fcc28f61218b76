"""File walker for discovering source files in a codebase."""

import hashlib
import logging
import os
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path

import pathspec

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS: tuple[str, ...] = (
    # Programming languages
    ".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs",
    ".py", ".java", ".cpp", ".cc", ".cxx", ".hpp", ".c", ".h",
    ".cs", ".go", ".rs", ".php", ".rb", ".swift", ".kt",
    ".scala", ".dart", ".m", ".mm",
    # Documentation
    ".md", ".markdown", ".ipynb",
)

DEFAULT_IGNORE_PATTERNS: tuple[str, ...] = (
    # Dependencies and build output
    "node_modules/", "dist/", "build/", "out/", "target/",
    "coverage/", ".nyc_output/", "__pycache__/", "*.pyc",
    ".venv/", "venv/",
    # Tooling
    ".git/", ".svn/", ".hg/", ".vscode/", ".idea/",
    ".cache/", ".pytest_cache/", ".mypy_cache/",
    # Generated or binary-like
    "*.min.js", "*.min.css", "*.map", "*.bundle.js", "*.chunk.js",
    "*.log", "logs/", "tmp/", "temp/",
    # Environment files
    ".env", ".env.*", "*.local",
)


@dataclass
class FileInfo:
    """Information about a discovered file."""

    path: Path  # Absolute path
    relative_path: str  # Relative to the codebase root, forward slashes
    extension: str
    mtime: float
    content_hash: str


def compute_hash(content: bytes) -> str:
    """Compute SHA-256 hash of content."""
    return hashlib.sha256(content).hexdigest()


def normalize_extension(extension: str) -> str:
    """Lower-case an extension and make sure it starts with a dot."""
    extension = extension.strip().lower()
    return extension if extension.startswith(".") else f".{extension}"


def build_ignore_spec(patterns: Iterable[str] | pathspec.PathSpec) -> pathspec.PathSpec:
    """
    Compile gitignore-style patterns into one PathSpec.

    Later patterns win, so "!name" re-includes a file an earlier pattern
    excluded. A leading "/" anchors a pattern to the codebase root.
    """
    if isinstance(patterns, pathspec.PathSpec):
        return patterns
    return pathspec.PathSpec.from_lines("gitwildmatch", [p.strip() for p in patterns])


def is_ignored(
    relative_path: str,
    patterns: Iterable[str] | pathspec.PathSpec,
    is_dir: bool = False,
) -> bool:
    """Check a forward-slash path relative to the codebase root."""
    spec = build_ignore_spec(patterns)
    return spec.match_file(relative_path + "/" if is_dir else relative_path)


def walk_codebase(
    root: Path,
    extensions: Iterable[str] = DEFAULT_EXTENSIONS,
    ignore_patterns: Iterable[str] | pathspec.PathSpec = DEFAULT_IGNORE_PATTERNS,
) -> Iterator[FileInfo]:
    """
    Walk a codebase and yield FileInfo for each file with a supported extension.

    Ignored directories are pruned without being descended into. Files are
    yielded in sorted order so runs are reproducible.
    """
    if not root.is_dir():
        return

    allowed = {normalize_extension(ext) for ext in extensions}
    spec = build_ignore_spec(ignore_patterns)

    for dirpath, dirnames, filenames in os.walk(root):
        current = Path(dirpath)
        rel_dir = current.relative_to(root).as_posix()
        rel_dir = "" if rel_dir == "." else rel_dir

        kept = []
        for name in sorted(dirnames):
            rel = f"{rel_dir}/{name}" if rel_dir else name
            if not is_ignored(rel, spec, is_dir=True):
                kept.append(name)
        dirnames[:] = kept

        for name in sorted(filenames):
            extension = os.path.splitext(name)[1].lower()
            if extension not in allowed:
                continue
            relative_path = f"{rel_dir}/{name}" if rel_dir else name
            if is_ignored(relative_path, spec):
                continue

            file_path = current / name
            if not file_path.is_file():
                continue

            try:
                stat = file_path.stat()
                content = file_path.read_bytes()
            except OSError as e:
                logger.warning("Cannot read %s: %s", relative_path, e)
                continue

            yield FileInfo(
                path=file_path,
                relative_path=relative_path,
                extension=extension,
                mtime=stat.st_mtime,
                content_hash=compute_hash(content),
            )
