"""Tests for score fusion and the hybrid ranker."""

import pytest

from context_mcp.errors import ValidationError
from context_mcp.indexer.database import CollectionStore
from context_mcp.indexer.models import Document
from context_mcp.indexer.ranker import HybridRanker, fuse


class TestFuse:
    def test_weighted_sum_with_lexical(self):
        ranked = fuse([("a", 0.8)], [("a", 0.5)], {"a": False}, 10)
        assert ranked == [("a", pytest.approx(0.8 * 0.7 + 0.5 * 0.3), 0.8, 0.5)]

    def test_definition_bonus(self):
        ranked = fuse([("a", 0.8)], [("a", 0.5)], {"a": True}, 10)
        assert ranked[0][1] == pytest.approx(0.8 * 0.7 + 0.5 * 0.3 + 0.1)

    def test_outer_join_keeps_lexical_only_candidates(self):
        ranked = fuse([("a", 0.2)], [("b", 0.9)], {}, 10)
        scores = {doc_id: final for doc_id, final, _, _ in ranked}

        assert scores["a"] == pytest.approx(0.2 * 0.7)
        assert scores["b"] == pytest.approx(0.9 * 0.3)
        assert [doc_id for doc_id, *_ in ranked] == ["b", "a"]

    def test_without_text_uses_vector_candidates_only(self):
        ranked = fuse([("a", 0.6), ("b", 0.55)], None, {"b": True}, 10)
        assert [(doc_id, final) for doc_id, final, _, _ in ranked] == [
            ("b", pytest.approx(0.65)),
            ("a", pytest.approx(0.6)),
        ]

    def test_capped_at_limit(self):
        vector = [(f"d{i}", 1.0 - i / 10) for i in range(5)]
        assert len(fuse(vector, None, {}, 3)) == 3

    def test_ties_keep_candidate_order(self):
        ranked = fuse([("x", 0.5), ("y", 0.5)], [("z", 0.5 * 0.7 / 0.3)], {}, 10)
        assert [doc_id for doc_id, *_ in ranked][:2] == ["x", "y"]

    def test_deterministic(self):
        args = ([("a", 0.3), ("b", 0.4)], [("b", 0.2), ("c", 0.9)], {"a": True}, 10)
        assert fuse(*args) == fuse(*args)


@pytest.fixture
def ranker(store: CollectionStore) -> HybridRanker:
    store.create_collection("code", 4)
    store.insert(
        "code",
        [
            Document(
                id="load",
                vector=[1, 0, 0, 0],
                content="def load_settings(path): open the settings file",
                relative_path="settings.py",
                start_line=1,
                end_line=2,
                file_extension=".py",
                is_definition=True,
                metadata={"language": "python"},
            ),
            Document(
                id="notes",
                vector=[0.9, 0.1, 0, 0],
                content="notes about settings",
                relative_path="NOTES.md",
                start_line=1,
                end_line=1,
                file_extension=".md",
            ),
            Document(
                id="server",
                vector=[0, 0, 1, 0],
                content="start the http server",
                relative_path="server.ts",
                start_line=4,
                end_line=9,
                file_extension=".ts",
                is_definition=True,
            ),
        ],
    )
    return HybridRanker(store)


class TestHybridRanker:
    def test_search_threshold_and_order(self, ranker: HybridRanker):
        results = ranker.search("code", [1, 0, 0, 0], top_k=10, threshold=0.5)

        assert [r.id for r in results] == ["load", "notes"]
        assert results[0].score == pytest.approx(1.0, abs=1e-5)
        assert results[0].score >= results[1].score

    def test_search_top_k(self, ranker: HybridRanker):
        assert len(ranker.search("code", [1, 0, 0, 0], top_k=1)) == 1

    def test_search_filter(self, ranker: HybridRanker):
        results = ranker.search("code", [1, 0, 0, 0], filter_expr="fileExtension == '.ts'")
        assert [r.id for r in results] == ["server"]

    def test_hybrid_without_text(self, ranker: HybridRanker):
        results = ranker.hybrid_search("code", [1, 0, 0, 0], limit=2)

        assert [r.id for r in results] == ["load", "notes"]
        assert results[0].score == pytest.approx(1.0 + 0.1, abs=1e-5)
        assert results[0].lexical_score == 0.0

    def test_hybrid_text_without_terms_scores_like_no_text(self, ranker: HybridRanker):
        results = ranker.hybrid_search("code", [1, 0, 0, 0], "???", limit=2)

        assert [r.id for r in results] == ["load", "notes"]
        assert results[0].score == pytest.approx(1.0 + 0.1, abs=1e-5)
        assert [r.score for r in results] == [
            r.score for r in ranker.hybrid_search("code", [1, 0, 0, 0], limit=2)
        ]

    def test_hybrid_with_text_rescues_lexical_match(self, ranker: HybridRanker):
        results = ranker.hybrid_search("code", [1, 0, 0, 0], "http server", limit=1)
        assert [r.id for r in results] == ["load"]

        results = ranker.hybrid_search("code", [0, 1, 0, 0], "http server", limit=3)
        ids = [r.id for r in results]
        assert "server" in ids
        server = next(r for r in results if r.id == "server")
        assert server.lexical_score > 0

    def test_hybrid_filter_applies_to_both_indexes(self, ranker: HybridRanker):
        results = ranker.hybrid_search(
            "code", [1, 0, 0, 0], "settings", limit=5, filter_expr="fileExtension == '.md'"
        )
        assert [r.id for r in results] == ["notes"]

    def test_results_never_contain_vectors(self, ranker: HybridRanker):
        result = ranker.hybrid_search("code", [1, 0, 0, 0], "settings", limit=1)[0]
        assert not hasattr(result, "vector")
        assert result.language == "python"
        assert (result.relative_path, result.start_line, result.end_line) == ("settings.py", 1, 2)

    def test_empty_query_vector(self, ranker: HybridRanker):
        with pytest.raises(ValidationError):
            ranker.hybrid_search("code", [], "settings")
        with pytest.raises(ValidationError):
            ranker.search("code", [])
