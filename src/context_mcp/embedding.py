"""Embedding providers.

The indexer only depends on the Embedding protocol. OllamaEmbedding talks
to a local Ollama server over HTTP.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Protocol

import httpx

from context_mcp.errors import EmbeddingError

logger = logging.getLogger(__name__)

# Timeout for a single embedding request
REQUEST_TIMEOUT = 60.0  # seconds


@dataclass
class EmbeddingVector:
    """A dense vector and its width."""

    vector: list[float]
    dimension: int


class Embedding(Protocol):
    """Turns text into vectors."""

    def embed(self, text: str) -> EmbeddingVector: ...

    def embed_batch(self, texts: list[str]) -> list[EmbeddingVector]: ...

    def get_provider(self) -> str: ...

    def get_dimension(self) -> int: ...


class OllamaEmbedding:
    """Embedding provider backed by Ollama's /api/embed endpoint.

    When no dimension is configured it is probed with a one-word request
    the first time it is needed.
    """

    def __init__(
        self,
        model: str,
        host: str = "http://127.0.0.1:11434",
        dimension: int | None = None,
        timeout: float = REQUEST_TIMEOUT,
        client: httpx.Client | None = None,
    ):
        self.model = model
        self.host = host.rstrip("/")
        self._dimension = dimension
        self._client = client or httpx.Client(timeout=timeout)
        self._lock = threading.Lock()

    def get_provider(self) -> str:
        return "Ollama"

    def get_dimension(self) -> int:
        if self._dimension is None:
            with self._lock:
                if self._dimension is None:
                    self._dimension = len(self._request(["dimension probe"])[0])
                    logger.info(
                        "Detected embedding dimension %d for model %s",
                        self._dimension,
                        self.model,
                    )
        return self._dimension

    def embed(self, text: str) -> EmbeddingVector:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: list[str]) -> list[EmbeddingVector]:
        if not texts:
            return []
        vectors = self._request(texts)
        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Ollama returned {len(vectors)} embeddings for {len(texts)} inputs"
            )
        return [EmbeddingVector(vector=vector, dimension=len(vector)) for vector in vectors]

    def _request(self, texts: list[str]) -> list[list[float]]:
        url = f"{self.host}/api/embed"
        try:
            response = self._client.post(url, json={"model": self.model, "input": texts})
        except httpx.TimeoutException as e:
            raise EmbeddingError(f"Embedding request to {url} timed out") from e
        except httpx.RequestError as e:
            raise EmbeddingError(f"Embedding request to {url} failed: {e}") from e

        if response.status_code != 200:
            raise EmbeddingError(f"HTTP {response.status_code}: {response.text[:200]}")

        try:
            embeddings = response.json()["embeddings"]
        except (ValueError, KeyError, TypeError) as e:
            raise EmbeddingError(f"Malformed embedding response from {url}") from e

        if not isinstance(embeddings, list) or not all(
            isinstance(vector, list) and vector for vector in embeddings
        ):
            raise EmbeddingError(f"Malformed embedding response from {url}")
        return [[float(value) for value in vector] for vector in embeddings]

    def close(self) -> None:
        self._client.close()


def create_embedding(
    provider: str,
    model: str,
    host: str,
    dimension: int | None = None,
) -> OllamaEmbedding:
    """Create the configured embedding provider."""
    if provider.lower() != "ollama":
        raise ValueError(f"Unsupported embedding provider '{provider}'")
    return OllamaEmbedding(model=model, host=host, dimension=dimension)
