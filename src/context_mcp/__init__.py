"""
context-mcp - MCP server for semantic search over local codebases.

Indexes source repositories into a local store and answers natural
language queries about them for any MCP-capable AI agent.

Stack:
- Python + FastMCP
- tree-sitter (syntax-aware chunking)
- SQLite with sqlite-vec (similarity) and FTS5 (lexical) indexes
- Ollama (embeddings)
"""

__version__ = "0.1.0"
