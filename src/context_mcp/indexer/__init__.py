"""
Indexer package for context-mcp.

Splits source files into chunks, stores them with vector and lexical
indexes, and ranks them for queries.
"""

from context_mcp.indexer.chunker import AstSplitter, TextSplitter, make_splitter
from context_mcp.indexer.database import CollectionStore
from context_mcp.indexer.indexer import CodebaseIndexer, collection_name
from context_mcp.indexer.models import Chunk, Collection, Document, SearchResult
from context_mcp.indexer.ranker import HybridRanker
from context_mcp.indexer.refiner import refine
from context_mcp.indexer.synchronizer import ChangeSet, FileSynchronizer
from context_mcp.indexer.walker import FileInfo, walk_codebase

__all__ = [
    "AstSplitter",
    "ChangeSet",
    "Chunk",
    "CodebaseIndexer",
    "Collection",
    "CollectionStore",
    "Document",
    "FileInfo",
    "FileSynchronizer",
    "HybridRanker",
    "SearchResult",
    "TextSplitter",
    "collection_name",
    "make_splitter",
    "refine",
    "walk_codebase",
]
