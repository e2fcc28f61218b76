"""Background sync manager for automatic index updates.

Runs a daemon thread that periodically re-indexes files that changed on
disk in every indexed codebase, so edits made outside of MCP tools reach
the search index.
"""

import logging
import threading

from context_mcp.orchestrator import IndexingOrchestrator
from context_mcp.state import IndexStatus

logger = logging.getLogger(__name__)


class SyncManager:
    """Manages periodic background sync of indexed codebases.

    The sync thread is a daemon, so it automatically terminates when the
    main process exits.
    """

    def __init__(self, orchestrator: IndexingOrchestrator, interval: int):
        """Initialize the sync manager.

        Args:
            orchestrator: The orchestrator owning codebase state.
            interval: Sync interval in seconds. Must be > 0.
        """
        if interval <= 0:
            raise ValueError(f"Sync interval must be positive, got {interval}")

        self._orchestrator = orchestrator
        self._interval = interval
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Start the background sync thread."""
        if self._thread is not None and self._thread.is_alive():
            logger.warning("Sync thread already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._sync_loop,
            name="context-sync",
            daemon=True,
        )
        self._thread.start()
        logger.info("Sync manager started (interval: %ds)", self._interval)

    def stop(self) -> None:
        """Stop the background sync thread.

        Blocks until the thread terminates (up to one interval).
        """
        if self._thread is None or not self._thread.is_alive():
            return

        self._stop_event.set()
        self._thread.join(timeout=self._interval + 1)
        if self._thread.is_alive():
            logger.warning("Sync thread did not stop cleanly")
        else:
            logger.info("Sync manager stopped")
        self._thread = None

    def sync_once(self) -> int:
        """Sync every indexed codebase once.

        Returns:
            Number of codebases that had changes.
        """
        changed = 0
        for path in self._orchestrator.states.paths_with(IndexStatus.INDEXED):
            if self._stop_event.is_set():
                break
            try:
                changes = self._orchestrator.sync_codebase(path)
            except Exception:
                logger.exception("Error during auto-sync of %s", path)
                continue
            if changes is not None and changes.has_changes():
                changed += 1
                logger.info(
                    "Auto-sync %s: %d added, %d modified, %d removed",
                    path,
                    len(changes.added),
                    len(changes.modified),
                    len(changes.removed),
                )
        if not changed:
            logger.debug("Auto-sync: no changes detected")
        return changed

    def _sync_loop(self) -> None:
        """Main sync loop - runs in background thread."""
        logger.debug("Sync loop started")

        while not self._stop_event.is_set():
            # Sleep first, then sync (allows immediate shutdown on start)
            if self._stop_event.wait(timeout=self._interval):
                break  # Stop event was set

            try:
                self.sync_once()
            except Exception:
                logger.exception("Error during auto-sync")

        logger.debug("Sync loop stopped")
