"""MCP tools for the context-mcp server.

This module defines the tools exposed by the MCP server:
- index_codebase: Start background indexing of a codebase
- reindex_codebase: Clear and rebuild the index of a codebase
- search_code: Hybrid semantic search in one or all codebases
- clear_index: Remove a codebase's index
- get_indexing_status: Report indexing progress and results

Every tool returns a dict and never raises. Errors are reported with
is_error set; the collection limit is reported with is_error unset so the
agent treats it as a final answer.
"""

import logging
from pathlib import Path

from fastmcp import FastMCP

from context_mcp.errors import COLLECTION_LIMIT_MESSAGE, CollectionLimitError, ContextError
from context_mcp.indexer import CodebaseIndexer
from context_mcp.indexer import filters
from context_mcp.indexer.models import SearchResult
from context_mcp.orchestrator import IndexingOrchestrator, resolve_directory, validate_extensions
from context_mcp.state import CodebaseState, IndexStatus

logger = logging.getLogger(__name__)

# Largest number of results a single search may return
MAX_SEARCH_LIMIT = 50

# Characters of chunk content included per result
MAX_RESULT_CONTENT = 5000


def _error(message: str) -> dict:
    return {"is_error": True, "message": f"Error: {message}"}


def _collection_limit() -> dict:
    return {"is_error": False, "collection_limit": True, "message": COLLECTION_LIMIT_MESSAGE}


def _truncate(content: str, max_length: int = MAX_RESULT_CONTENT) -> str:
    if len(content) <= max_length:
        return content
    return content[:max_length] + "..."


def _format_result(rank: int, codebase: str, result: SearchResult, indexing: bool) -> dict:
    return {
        "rank": rank,
        "codebase": codebase,
        "relative_path": result.relative_path,
        "start_line": result.start_line,
        "end_line": result.end_line,
        "location": f"{result.relative_path}:{result.start_line}-{result.end_line}",
        "language": result.language,
        "is_definition": result.is_definition,
        "score": round(result.score, 4),
        "content": _truncate(result.content),
        "indexing": indexing,
    }


def describe_status(state: CodebaseState) -> str:
    """Human readable summary of a codebase's indexing state."""
    path = state.path
    updated = state.last_updated.strftime("%Y-%m-%d %H:%M:%S UTC")

    if state.status == IndexStatus.INDEXED:
        message = f"Codebase '{path}' is fully indexed and ready for search."
        if state.stats is not None:
            message += (
                f"\nStatistics: {state.stats.indexed_files} files, "
                f"{state.stats.total_chunks} chunks"
            )
            if state.stats.status_note is not None:
                message += f"\nStatus: {state.stats.status_note.value}"
        return message + f"\nLast updated: {updated}"

    if state.status == IndexStatus.INDEXING:
        percentage = state.progress_percentage
        message = f"Codebase '{path}' is currently being indexed. Progress: {percentage:.1f}%"
        if percentage < 10:
            message += " (Preparing and scanning files...)"
        elif percentage < 100:
            message += " (Processing files and generating embeddings...)"
        return message + f"\nLast updated: {updated}"

    if state.status == IndexStatus.INDEXFAILED:
        message = f"Codebase '{path}' indexing failed."
        if state.error_message:
            message += f"\nError: {state.error_message}"
        if state.last_attempted_percentage is not None:
            message += f"\nFailed at: {state.last_attempted_percentage:.1f}% progress"
        return message + (
            f"\nLast updated: {updated}"
            "\nYou can retry indexing by running the index_codebase tool again."
        )

    return (
        f"Codebase '{path}' is not indexed. "
        "Please use the index_codebase tool to index it first."
    )


def register_tools(
    mcp: FastMCP,
    orchestrator: IndexingOrchestrator,
    indexer: CodebaseIndexer,
) -> None:
    """Register all tools with the FastMCP server.

    Args:
        mcp: FastMCP server instance
        orchestrator: Orchestrator owning indexing jobs and state
        indexer: Codebase indexer used for searches
    """

    def start(
        path: str,
        force: bool,
        splitter: str,
        custom_extensions: list[str] | None,
        ignore_patterns: list[str] | None,
    ) -> dict:
        try:
            job = orchestrator.start_indexing(
                path,
                force=force,
                splitter=splitter,
                custom_extensions=custom_extensions,
                ignore_patterns=ignore_patterns,
            )
        except CollectionLimitError:
            return _collection_limit()
        except ContextError as e:
            return _error(str(e))
        except Exception as e:
            logger.exception("Failed to start indexing %s", path)
            return _error(f"Failed to start indexing: {e}")

        message = (
            f"Started background indexing for codebase '{job.path}' "
            f"using {splitter.upper()} splitter."
        )
        if path != job.path:
            message += f"\nNote: Input path '{path}' was resolved to absolute path '{job.path}'"
        if custom_extensions:
            message += f"\nUsing custom extensions: {', '.join(custom_extensions)}"
        if ignore_patterns:
            message += f"\nUsing custom ignore patterns: {', '.join(ignore_patterns)}"
        message += (
            "\n\nIndexing is running in the background. You can search the codebase while "
            "indexing is in progress, but results may be incomplete until indexing completes."
        )
        return {
            "is_error": False,
            "message": message,
            "path": job.path,
            "status": IndexStatus.INDEXING.value,
            "splitter": splitter,
        }

    @mcp.tool()
    def index_codebase(
        path: str,
        force: bool = False,
        splitter: str = "ast",
        custom_extensions: list[str] | None = None,
        ignore_patterns: list[str] | None = None,
    ) -> dict:
        """Index a codebase directory for semantic search.

        Indexing runs in the background; poll get_indexing_status for progress.

        Args:
            path: Absolute path to the codebase directory
            force: Re-index even if the codebase is already indexed
            splitter: "ast" for syntax-aware chunks or "text" for plain text chunks
            custom_extensions: Extra file extensions to include (e.g. [".vue", ".svelte"])
            ignore_patterns: Extra ignore patterns (e.g. ["static/**", "*.tmp"])

        Returns:
            Result with is_error, message, and on success path/status/splitter.
        """
        return start(path, force, splitter, custom_extensions, ignore_patterns)

    @mcp.tool()
    def reindex_codebase(
        path: str,
        splitter: str = "ast",
        custom_extensions: list[str] | None = None,
        ignore_patterns: list[str] | None = None,
    ) -> dict:
        """Clear a codebase's index and rebuild it from scratch.

        Args:
            path: Absolute path to the codebase directory
            splitter: "ast" or "text"
            custom_extensions: Extra file extensions to include
            ignore_patterns: Extra ignore patterns

        Returns:
            Same shape as index_codebase.
        """
        return start(path, True, splitter, custom_extensions, ignore_patterns)

    @mcp.tool()
    def search_code(
        query: str,
        path: str | None = None,
        limit: int = 10,
        extension_filter: list[str] | None = None,
    ) -> dict:
        """Search indexed code with natural language.

        Combines vector similarity with keyword relevance; definitions such
        as functions and classes are ranked slightly higher.

        Args:
            query: Natural language or keyword query
            path: Codebase to search; all indexed codebases when omitted
            limit: Maximum number of results (default: 10, max: 50)
            extension_filter: Only return results from these extensions (e.g. [".ts", ".py"])

        Returns:
            Result with:
            - is_error: Whether the search failed
            - message: Summary
            - results: Ranked snippets with codebase, location, language,
              score, content and an indexing flag when the codebase is
              still being indexed (results may be partial)
        """
        if not query or not query.strip():
            return _error("Query must not be empty")

        result_limit = max(1, min(limit or 10, MAX_SEARCH_LIMIT))
        try:
            extensions = validate_extensions(extension_filter or [])
        except ContextError as e:
            return _error(str(e))
        filter_expr = filters.extension_filter(extensions)

        if path is None:
            return _search_all(query, result_limit, filter_expr)

        try:
            resolved = resolve_directory(path)
        except ContextError as e:
            return _error(str(e))

        status = orchestrator.get_status(resolved).status
        if status not in (IndexStatus.INDEXED, IndexStatus.INDEXING):
            return _error(
                f"Codebase '{resolved}' is not indexed. "
                "Please index it first using the index_codebase tool."
            )
        indexing = status == IndexStatus.INDEXING

        try:
            results = indexer.semantic_search(resolved, query, result_limit, filter_expr)
        except CollectionLimitError:
            return _collection_limit()
        except Exception as e:
            logger.exception("Search failed in %s", resolved)
            return _error(f"Search failed: {e}")

        codebase = Path(resolved).name
        formatted = [
            _format_result(rank, codebase, result, indexing)
            for rank, result in enumerate(results, start=1)
        ]
        if formatted:
            message = f"Found {len(formatted)} results for \"{query}\" in codebase '{resolved}'"
        else:
            message = f"No results found for query: \"{query}\" in codebase '{resolved}'"
        if indexing:
            message += (
                "\nThis codebase is still being indexed. "
                "Results may be incomplete until indexing completes."
            )
        return {"is_error": False, "message": message, "results": formatted}

    def _search_all(query: str, limit: int, filter_expr: str | None) -> dict:
        paths = orchestrator.searchable_paths()
        if not paths:
            return _error("No codebases are indexed. Please index a codebase first.")

        # Over-fetch per codebase so the merged ranking has candidates to choose from
        per_codebase = min(limit * 2, MAX_SEARCH_LIMIT)
        collected: list[tuple[str, SearchResult, bool]] = []
        searched = 0
        for codebase_path in paths:
            indexing = orchestrator.get_status(codebase_path).status == IndexStatus.INDEXING
            try:
                results = indexer.semantic_search(codebase_path, query, per_codebase, filter_expr)
            except CollectionLimitError:
                return _collection_limit()
            except Exception:
                logger.exception("Search failed in %s, skipping", codebase_path)
                continue
            searched += 1
            collected.extend((codebase_path, result, indexing) for result in results)

        collected.sort(key=lambda item: item[1].score, reverse=True)
        formatted = [
            _format_result(rank, Path(codebase_path).name, result, indexing)
            for rank, (codebase_path, result, indexing) in enumerate(collected[:limit], start=1)
        ]
        if formatted:
            message = f"Found {len(formatted)} results for \"{query}\" across {searched} codebases"
        else:
            message = f"No results found for query: \"{query}\" across {searched} codebases"
        if any(indexing for _, _, indexing in collected):
            message += "\nSome codebases are still being indexed. Results may be incomplete."
        return {"is_error": False, "message": message, "results": formatted}

    @mcp.tool()
    def clear_index(path: str) -> dict:
        """Remove the index of a codebase and stop any indexing in progress.

        Args:
            path: Absolute path to the codebase directory

        Returns:
            Result with is_error and message.
        """
        try:
            cleared = orchestrator.clear_index(path)
        except ContextError as e:
            return _error(str(e))
        except Exception as e:
            logger.exception("Failed to clear index for %s", path)
            return _error(f"Failed to clear index: {e}")

        resolved = str(Path(path).expanduser().resolve())
        if not cleared:
            message = f"Codebase '{resolved}' was not indexed."
        else:
            message = f"Cleared index for codebase '{resolved}'."
        return {"is_error": False, "message": message, "path": resolved}

    @mcp.tool()
    def get_indexing_status(path: str) -> dict:
        """Get the indexing status of a codebase.

        Args:
            path: Absolute path to the codebase directory

        Returns:
            Result with is_error, message, and the state fields: status,
            progress_percentage, indexed_files, total_chunks, status_note,
            error_message and last_updated.
        """
        try:
            resolved = resolve_directory(path)
        except ContextError as e:
            return _error(str(e))

        state = orchestrator.get_status(resolved)
        stats = state.stats
        return {
            "is_error": False,
            "message": describe_status(state),
            "path": resolved,
            "status": state.status.value,
            "progress_percentage": round(state.progress_percentage, 1),
            "indexed_files": stats.indexed_files if stats else None,
            "total_chunks": stats.total_chunks if stats else None,
            "status_note": stats.status_note.value if stats and stats.status_note else None,
            "error_message": state.error_message,
            "last_attempted_percentage": state.last_attempted_percentage,
            "last_updated": state.last_updated.isoformat(),
        }
