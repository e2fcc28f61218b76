"""Vector, lexical and hybrid ranking over a collection."""

import logging

from context_mcp.errors import ValidationError
from context_mcp.indexer.database import CollectionStore, build_match_query
from context_mcp.indexer.models import Document, SearchResult

logger = logging.getLogger(__name__)

# Fusion weights
VECTOR_WEIGHT = 0.7
LEXICAL_WEIGHT = 0.3
DEFINITION_BONUS = 0.1


def fuse(
    vector_scores: list[tuple[str, float]],
    lexical_scores: list[tuple[str, float]] | None,
    definitions: dict[str, bool],
    limit: int,
) -> list[tuple[str, float, float, float]]:
    """
    Combine candidate scores into a final ranking.

    With lexical scores the candidate sets are outer-joined and
    final = vector * 0.7 + lexical * 0.3 + bonus, a missing score counting
    as 0. Without them, final = vector + bonus over the vector candidates.
    The bonus is 0.1 for definition chunks.

    Exact ties keep first-seen order (vector rank, then lexical rank);
    callers should not rely on it.

    Returns:
        (id, final, vector_score, lexical_score) tuples, best first.
    """
    vector_map = dict(vector_scores)
    order = [doc_id for doc_id, _ in vector_scores]

    if lexical_scores is None:
        scored = [
            (
                doc_id,
                vector_map[doc_id] + (DEFINITION_BONUS if definitions.get(doc_id) else 0.0),
                vector_map[doc_id],
                0.0,
            )
            for doc_id in order
        ]
    else:
        lexical_map = dict(lexical_scores)
        seen = set(order)
        for doc_id, _ in lexical_scores:
            if doc_id not in seen:
                seen.add(doc_id)
                order.append(doc_id)

        scored = []
        for doc_id in order:
            vector = vector_map.get(doc_id, 0.0)
            lexical = lexical_map.get(doc_id, 0.0)
            bonus = DEFINITION_BONUS if definitions.get(doc_id) else 0.0
            final = vector * VECTOR_WEIGHT + lexical * LEXICAL_WEIGHT + bonus
            scored.append((doc_id, final, vector, lexical))

    # sorted() is stable, so equal scores keep candidate order
    scored = sorted(scored, key=lambda item: item[1], reverse=True)
    return scored[:limit]


def _to_result(
    doc: Document, score: float, vector_score: float = 0.0, lexical_score: float = 0.0
) -> SearchResult:
    return SearchResult(
        id=doc.id,
        content=doc.content,
        relative_path=doc.relative_path,
        start_line=doc.start_line,
        end_line=doc.end_line,
        file_extension=doc.file_extension,
        is_definition=doc.is_definition,
        metadata=doc.metadata,
        score=score,
        vector_score=vector_score,
        lexical_score=lexical_score,
    )


class HybridRanker:
    """Ranks documents in a collection store."""

    def __init__(self, store: CollectionStore):
        self.store = store

    def search(
        self,
        collection: str,
        query_vector: list[float],
        top_k: int = 10,
        threshold: float = 0.0,
        filter_expr: str | None = None,
    ) -> list[SearchResult]:
        """
        Plain similarity search.

        Similarity is 1 - cosine distance. Results below threshold are
        dropped; the rest are ordered by similarity and capped at top_k.
        """
        if not query_vector:
            raise ValidationError("Query vector must not be empty")
        if top_k <= 0:
            return []

        candidates = self.store.vector_candidates(collection, query_vector, top_k, filter_expr)
        candidates = [(doc_id, score) for doc_id, score in candidates if score >= threshold]
        documents = self.store.fetch_documents(collection, [doc_id for doc_id, _ in candidates])

        return [
            _to_result(documents[doc_id], score, vector_score=score)
            for doc_id, score in candidates
            if doc_id in documents
        ]

    def hybrid_search(
        self,
        collection: str,
        query_vector: list[float],
        query_text: str | None = None,
        limit: int = 10,
        filter_expr: str | None = None,
    ) -> list[SearchResult]:
        """
        Fuse vector similarity with lexical relevance.

        Args:
            collection: Collection name
            query_vector: Dense query vector (required)
            query_text: Optional text for the lexical index
            limit: Candidate count per index and maximum result count
            filter_expr: Optional filter expression applied to both indexes

        Returns:
            List of SearchResult ordered by fused score. Stored vectors are
            never included.
        """
        if not query_vector:
            raise ValidationError("Query vector must not be empty")
        if limit <= 0:
            return []

        vector_scores = self.store.vector_candidates(collection, query_vector, limit, filter_expr)
        lexical_scores = None
        # Text without searchable terms scores as a pure vector query
        if query_text and build_match_query(query_text) is not None:
            lexical_scores = self.store.lexical_candidates(
                collection, query_text, limit, filter_expr
            )

        candidate_ids = [doc_id for doc_id, _ in vector_scores]
        for doc_id, _ in lexical_scores or []:
            if doc_id not in candidate_ids:
                candidate_ids.append(doc_id)
        documents = self.store.fetch_documents(collection, candidate_ids)
        definitions = {doc_id: doc.is_definition for doc_id, doc in documents.items()}

        ranked = fuse(vector_scores, lexical_scores, definitions, limit)
        logger.debug(
            "Hybrid search on %s: %d vector, %d lexical candidates, %d results",
            collection,
            len(vector_scores),
            len(lexical_scores or []),
            len(ranked),
        )
        return [
            _to_result(documents[doc_id], final, vector, lexical)
            for doc_id, final, vector, lexical in ranked
            if doc_id in documents
        ]
