"""Exception types shared by the indexer, the orchestrator and the tool layer."""

COLLECTION_LIMIT_MESSAGE = (
    "Collection limit reached: no more codebases can be indexed in this store. "
    "Clear an existing codebase index with the clear_index tool before indexing "
    "a new one. Do not retry this request."
)


class ContextError(Exception):
    """Base class for all context-mcp errors."""

    pass


class ValidationError(ContextError):
    """Raised when a request argument is invalid. No state is mutated."""

    pass


class AlreadyIndexingError(ValidationError):
    """Raised when indexing is requested for a path that is already indexing."""

    pass


class AlreadyIndexedError(ValidationError):
    """Raised when indexing is requested for an indexed path without force."""

    pass


class CollectionLimitError(ContextError):
    """Raised when the store cannot hold another collection.

    This is a terminal, informational condition: callers must not retry.
    """

    def __init__(self, message: str = COLLECTION_LIMIT_MESSAGE):
        super().__init__(message)


class StoreError(ContextError):
    """Raised when the persistence backend fails."""

    pass


class IndexingFailure(ContextError):
    """Raised inside a background indexing job; recorded in state, never re-raised."""

    pass


class IndexingCancelled(IndexingFailure):
    """Raised when an indexing job observes its cancellation token."""

    pass


class InvalidTransitionError(ContextError):
    """Raised when a codebase state transition is not allowed."""

    pass


class EmbeddingError(ContextError):
    """Raised when the embedding provider fails or returns malformed data."""

    pass
