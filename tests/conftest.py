"""Shared fixtures."""

import hashlib
import math
import re

import pytest

from context_mcp.embedding import EmbeddingVector
from context_mcp.indexer.database import CollectionStore


class FakeEmbedding:
    """Deterministic bag-of-words embedding, no network needed."""

    def __init__(self, dimension: int = 32):
        self.dimension = dimension
        self.calls = 0

    def get_provider(self) -> str:
        return "Fake"

    def get_dimension(self) -> int:
        return self.dimension

    def _vector(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        for token in re.findall(r"\w+", text.lower()):
            index = int(hashlib.md5(token.encode()).hexdigest(), 16) % self.dimension
            vector[index] += 1.0
        norm = math.sqrt(sum(v * v for v in vector))
        if norm == 0:
            vector[0] = 1.0
            return vector
        return [v / norm for v in vector]

    def embed(self, text: str) -> EmbeddingVector:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: list[str]) -> list[EmbeddingVector]:
        self.calls += 1
        return [EmbeddingVector(vector=self._vector(t), dimension=self.dimension) for t in texts]


@pytest.fixture
def fake_embedding():
    return FakeEmbedding()


@pytest.fixture
def store(tmp_path):
    """Create a temporary collection store."""
    collection_store = CollectionStore(tmp_path / "index.db")
    collection_store.initialize()
    yield collection_store
    collection_store.close()
