"""Change detection between indexing runs using per-file content hashes."""

import hashlib
import json
import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

import pathspec

from context_mcp.indexer.walker import (
    DEFAULT_EXTENSIONS,
    DEFAULT_IGNORE_PATTERNS,
    build_ignore_spec,
    walk_codebase,
)

logger = logging.getLogger(__name__)


@dataclass
class ChangeSet:
    """Relative paths that changed since the previous check."""

    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)

    def has_changes(self) -> bool:
        return bool(self.added or self.removed or self.modified)


class FileSynchronizer:
    """
    Tracks file hashes for one codebase.

    The hash map is persisted as JSON under snapshot_dir, one file per
    codebase, so changes made while the server was down are detected on
    the next check.
    """

    def __init__(
        self,
        root: Path,
        snapshot_dir: Path,
        extensions: Iterable[str] = DEFAULT_EXTENSIONS,
        ignore_patterns: Iterable[str] | pathspec.PathSpec = DEFAULT_IGNORE_PATTERNS,
    ):
        self.root = root
        self.extensions = tuple(extensions)
        self.ignore_spec = build_ignore_spec(ignore_patterns)
        digest = hashlib.md5(str(root).encode("utf-8")).hexdigest()
        self.snapshot_path = snapshot_dir / f"{digest}.json"
        self._hashes: dict[str, str] | None = None

    def _scan(self) -> dict[str, str]:
        return {
            info.relative_path: info.content_hash
            for info in walk_codebase(self.root, self.extensions, self.ignore_spec)
        }

    def _load(self) -> dict[str, str] | None:
        if not self.snapshot_path.exists():
            return None
        try:
            data = json.loads(self.snapshot_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable file snapshot %s: %s", self.snapshot_path, e)
            return None
        hashes = data.get("hashes") if isinstance(data, dict) else None
        return hashes if isinstance(hashes, dict) else None

    def _save(self, hashes: dict[str, str]) -> None:
        self.snapshot_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.snapshot_path.with_suffix(".tmp")
        tmp_path.write_text(
            json.dumps({"root": str(self.root), "hashes": hashes}, indent=2),
            encoding="utf-8",
        )
        os.replace(tmp_path, self.snapshot_path)

    def initialize(self) -> None:
        """Load the previous snapshot, or record the current tree as the baseline."""
        hashes = self._load()
        if hashes is None:
            hashes = self._scan()
            self._save(hashes)
            logger.debug("File snapshot created for %s (%d files)", self.root, len(hashes))
        self._hashes = hashes

    def check_for_changes(self) -> ChangeSet:
        """Compare the tree with the last snapshot and persist the new state."""
        if self._hashes is None:
            self.initialize()
        previous = self._hashes or {}
        current = self._scan()

        changes = ChangeSet(
            added=sorted(path for path in current if path not in previous),
            removed=sorted(path for path in previous if path not in current),
            modified=sorted(
                path for path in current if path in previous and previous[path] != current[path]
            ),
        )

        self._save(current)
        self._hashes = current
        if changes.has_changes():
            logger.info(
                "Changes in %s: %d added, %d removed, %d modified",
                self.root,
                len(changes.added),
                len(changes.removed),
                len(changes.modified),
            )
        return changes

    def delete_snapshot(self) -> None:
        """Forget the stored hashes for this codebase."""
        self.snapshot_path.unlink(missing_ok=True)
        self._hashes = None
