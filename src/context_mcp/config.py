"""Configuration module for context-mcp.

Loads configuration from environment variables with sensible defaults.
"""

import os
from dataclasses import dataclass
from pathlib import Path

TRANSPORTS = ("stdio", "sse")


def _int_env(name: str, default: str, minimum: int = 0) -> int:
    value = os.getenv(name, default)
    try:
        number = int(value)
        if number < minimum:
            raise ValueError(f"must be >= {minimum}, got {number}")
    except ValueError as e:
        raise ValueError(f"Invalid {name} value '{value}': {e}") from e
    return number


def _optional_int_env(name: str, minimum: int = 1) -> int | None:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return _int_env(name, value, minimum)


@dataclass
class Config:
    """Application configuration."""

    db_path: Path
    snapshot_path: Path
    port: int
    transport: str
    sync_interval: int
    chunk_size: int
    chunk_overlap: int
    max_collections: int | None
    embedding_provider: str
    embedding_model: str
    ollama_host: str
    embedding_dimension: int | None

    @property
    def file_snapshot_dir(self) -> Path:
        """Directory for per-codebase file hash snapshots."""
        return self.snapshot_path.parent / "file-snapshots"

    @classmethod
    def from_env(cls, transport_override: str | None = None) -> "Config":
        """Load configuration from environment variables.

        Args:
            transport_override: If provided, overrides the CONTEXT_TRANSPORT env var.
        """
        base_dir = Path.home() / ".context"
        db_path = Path(os.getenv("CONTEXT_DB", str(base_dir / "index.db"))).expanduser()
        snapshot_path = Path(
            os.getenv("CONTEXT_SNAPSHOT", str(base_dir / "mcp-codebase-snapshot.json"))
        ).expanduser()

        port_str = os.getenv("CONTEXT_PORT", "8080")
        try:
            port = int(port_str)
            if not 1 <= port <= 65535:
                raise ValueError(f"Port must be between 1 and 65535, got {port}")
        except ValueError as e:
            raise ValueError(f"Invalid CONTEXT_PORT value '{port_str}': {e}") from e

        # CLI flag takes precedence over env var
        transport = transport_override or os.getenv("CONTEXT_TRANSPORT", "stdio")
        transport = transport.strip().lower()
        if transport not in TRANSPORTS:
            raise ValueError(
                f"Invalid CONTEXT_TRANSPORT value '{transport}': "
                f"must be one of {', '.join(TRANSPORTS)}"
            )

        sync_interval = _int_env("CONTEXT_SYNC_INTERVAL", "300")
        chunk_size = _int_env("CONTEXT_CHUNK_SIZE", "2500", minimum=1)
        chunk_overlap = _int_env("CONTEXT_CHUNK_OVERLAP", "300")
        if chunk_overlap >= chunk_size:
            raise ValueError(
                f"Invalid CONTEXT_CHUNK_OVERLAP value '{chunk_overlap}': "
                f"must be smaller than CONTEXT_CHUNK_SIZE ({chunk_size})"
            )

        max_collections = _optional_int_env("CONTEXT_MAX_COLLECTIONS")
        embedding_dimension = _optional_int_env("EMBEDDING_DIMENSION")

        embedding_provider = os.getenv("EMBEDDING_PROVIDER", "ollama").strip().lower()
        if embedding_provider != "ollama":
            raise ValueError(
                f"Invalid EMBEDDING_PROVIDER value '{embedding_provider}': "
                "only 'ollama' is supported"
            )

        return cls(
            db_path=db_path,
            snapshot_path=snapshot_path,
            port=port,
            transport=transport,
            sync_interval=sync_interval,
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            max_collections=max_collections,
            embedding_provider=embedding_provider,
            embedding_model=os.getenv("EMBEDDING_MODEL", "nomic-embed-text"),
            ollama_host=os.getenv("OLLAMA_HOST", "http://127.0.0.1:11434"),
            embedding_dimension=embedding_dimension,
        )

