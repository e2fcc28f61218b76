"""Main entry point for the context-mcp MCP server."""

import argparse
import logging
import sys
from dataclasses import dataclass

from fastmcp import FastMCP

from context_mcp.config import TRANSPORTS, Config
from context_mcp.embedding import OllamaEmbedding, create_embedding
from context_mcp.indexer import CodebaseIndexer, CollectionStore
from context_mcp.indexer.languages import validate_languages
from context_mcp.orchestrator import IndexingOrchestrator
from context_mcp.state import JsonSnapshotFile, StateStore
from context_mcp.sync import SyncManager
from context_mcp.tools import register_tools

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Long-lived components shared by the server and the CLI."""

    store: CollectionStore
    embedding: OllamaEmbedding
    indexer: CodebaseIndexer
    states: StateStore
    orchestrator: IndexingOrchestrator
    sync_manager: SyncManager | None

    def shutdown(self) -> None:
        if self.sync_manager is not None:
            self.sync_manager.stop()
        self.orchestrator.shutdown(wait=False)
        self.embedding.close()
        self.store.close()


def create_services(config: Config) -> Services:
    """Build the store, embedding client, indexer and orchestrator.

    Args:
        config: Configuration instance with all settings.
    """
    enabled = [name for name, grammar in validate_languages().items() if grammar]
    logger.info("AST splitting available for: %s", ", ".join(enabled) or "none")

    logger.info("Initializing collection store at %s", config.db_path)
    store = CollectionStore(config.db_path, max_collections=config.max_collections)
    store.initialize()

    embedding = create_embedding(
        config.embedding_provider,
        config.embedding_model,
        config.ollama_host,
        config.embedding_dimension,
    )
    logger.info("Embedding provider: %s (%s)", embedding.get_provider(), config.embedding_model)

    indexer = CodebaseIndexer(
        store,
        embedding,
        chunk_size=config.chunk_size,
        chunk_overlap=config.chunk_overlap,
    )

    states = StateStore(JsonSnapshotFile(config.snapshot_path))
    states.load()

    orchestrator = IndexingOrchestrator(indexer, states, config.file_snapshot_dir)

    sync_manager: SyncManager | None = None
    if config.sync_interval > 0:
        sync_manager = SyncManager(orchestrator, config.sync_interval)
    else:
        logger.info("Periodic sync disabled")

    return Services(
        store=store,
        embedding=embedding,
        indexer=indexer,
        states=states,
        orchestrator=orchestrator,
        sync_manager=sync_manager,
    )


def create_server(config: Config, services: Services | None = None) -> FastMCP:
    """Create and configure the MCP server with all components.

    Args:
        config: Configuration instance with all settings.
        services: Prebuilt components; created from config when omitted.
    """
    if services is None:
        services = create_services(config)

    mcp = FastMCP(
        name="context-mcp",
        instructions=(
            "context-mcp indexes local codebases for semantic code search. "
            "Index a directory with index_codebase, poll get_indexing_status until it "
            "is indexed, then use search_code to find relevant code by meaning."
        ),
    )

    logger.info("Registering tools...")
    register_tools(mcp, services.orchestrator, services.indexer)

    logger.info("Server configured successfully")
    return mcp


def main() -> None:
    """Main function - starts the MCP server."""
    # Configure logging here to avoid side effects on import.
    # stderr keeps the stdio transport's stdout clean.
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    parser = argparse.ArgumentParser(
        description="context-mcp - MCP server for semantic code search"
    )
    parser.add_argument(
        "--reindex",
        metavar="PATH",
        help="Force a full re-index of PATH before starting",
    )
    parser.add_argument(
        "--transport",
        choices=TRANSPORTS,
        help="Transport to serve (default: CONTEXT_TRANSPORT or stdio)",
    )
    args = parser.parse_args()

    # Create config once - CLI flag overrides env var
    config = Config.from_env(transport_override=args.transport)

    logger.info("=" * 50)
    logger.info("context-mcp starting...")
    logger.info("  CONTEXT_DB:       %s", config.db_path)
    logger.info("  CONTEXT_SNAPSHOT: %s", config.snapshot_path)
    logger.info("  TRANSPORT:        %s", config.transport)
    logger.info("  EMBEDDING:        %s @ %s", config.embedding_model, config.ollama_host)
    logger.info("  SYNC_INTERVAL:    %ss", config.sync_interval)
    logger.info("=" * 50)

    services: Services | None = None
    try:
        services = create_services(config)

        # Force reindex if requested (before server starts)
        if args.reindex:
            logger.info("Force reindex of %s requested...", args.reindex)
            job = services.orchestrator.start_indexing(args.reindex, force=True)
            if job.future is not None:
                job.future.result()
            state = services.orchestrator.get_status(job.path)
            logger.info("Reindex finished: %s", state.status.value)

        mcp = create_server(config, services)
        if services.sync_manager is not None:
            services.sync_manager.start()

        if config.transport == "sse":
            logger.info("Starting MCP server on port %s...", config.port)
            mcp.run(transport="sse", host="127.0.0.1", port=config.port)
        else:
            logger.info("Starting MCP server on stdio...")
            mcp.run(transport="stdio")
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
        sys.exit(0)
    except Exception:
        logger.exception("Server error")
        sys.exit(1)
    finally:
        if services is not None:
            services.shutdown()


if __name__ == "__main__":
    main()
