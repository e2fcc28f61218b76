"""Tests for main module."""

import logging

import pytest

from context_mcp.config import Config
from context_mcp.main import create_server, create_services
from context_mcp.state import IndexStatus


@pytest.fixture
def config(tmp_path, monkeypatch) -> Config:
    monkeypatch.setenv("CONTEXT_DB", str(tmp_path / "index.db"))
    monkeypatch.setenv("CONTEXT_SNAPSHOT", str(tmp_path / "snapshot.json"))
    monkeypatch.setenv("CONTEXT_TRANSPORT", "stdio")
    monkeypatch.setenv("CONTEXT_SYNC_INTERVAL", "300")
    monkeypatch.setenv("EMBEDDING_PROVIDER", "ollama")
    # A fixed dimension means no request is made to Ollama at startup
    monkeypatch.setenv("EMBEDDING_DIMENSION", "32")
    return Config.from_env()


def tool_names(mcp) -> set[str]:
    return {tool.fn.__name__ for tool in mcp._tool_manager._tools.values()}


def test_create_server(config, caplog):
    """Test create_server initializes all components."""
    with caplog.at_level(logging.INFO):
        mcp = create_server(config)

    assert mcp is not None
    assert mcp.name == "context-mcp"
    assert tool_names(mcp) == {
        "index_codebase",
        "reindex_codebase",
        "search_code",
        "clear_index",
        "get_indexing_status",
    }

    log_messages = [record.message for record in caplog.records]
    assert any("Initializing collection store" in msg for msg in log_messages)
    assert any("Registering tools" in msg for msg in log_messages)
    assert any("Server configured successfully" in msg for msg in log_messages)


def test_create_services(config):
    """Test services are wired from config."""
    services = create_services(config)
    try:
        assert config.db_path.exists()
        assert services.embedding.get_dimension() == 32
        assert services.indexer.chunk_size == config.chunk_size
        assert services.sync_manager is not None
        assert services.orchestrator.snapshot_dir == config.file_snapshot_dir
    finally:
        services.shutdown()


def test_sync_disabled(config, monkeypatch):
    """Test a zero interval disables periodic sync."""
    monkeypatch.setenv("CONTEXT_SYNC_INTERVAL", "0")
    services = create_services(Config.from_env())
    try:
        assert services.sync_manager is None
    finally:
        services.shutdown()


def test_interrupted_indexing_recovered_on_startup(config, tmp_path, caplog):
    """Test a codebase left indexing by a previous process is marked failed."""
    config.snapshot_path.write_text(
        '{"format_version": 1, "codebases": {"/work/app": '
        '{"status": "indexing", "progress_percentage": 42.0}}}'
    )

    with caplog.at_level(logging.WARNING):
        services = create_services(config)
    try:
        state = services.states.get("/work/app")
        assert state.status == IndexStatus.INDEXFAILED
        assert state.last_attempted_percentage == 42.0
        assert any("interrupted" in record.message for record in caplog.records)
    finally:
        services.shutdown()
