# tests/test_retriever.py

from unittest.mock import MagicMock

import numpy as np
import pytest
from ragflow.application.retriever import Retriever
from ragflow.domain.errors import SearchError
from ragflow.domain.models import SearchResult
from ragflow.infrastructure.vector_store import VectorIndex


def _unit(angle: float) -> np.ndarray:
    return np.array([np.cos(angle), np.sin(angle)], dtype=np.float32)


@pytest.fixture
def index(tmp_path):
    index = VectorIndex(tmp_path / "index", 2)
    # cos(0)=1.0, cos(0.5)=0.878, cos(1.0)=0.540, cos(1.3)=0.268
    index.upsert("a", 1, _unit(0.0), {"document_id": 1})
    index.upsert("a", 2, _unit(1.0), {"document_id": 1})
    index.upsert("b", 3, _unit(0.5), {"document_id": 2})
    index.upsert("b", 4, _unit(1.3), {"document_id": 2})
    return index


QUERY = np.array([1.0, 0.0], dtype=np.float32)


def test_results_are_merged_across_collections(index):
    results = Retriever(index, 0.0).retrieve(["a", "b"], QUERY, top_k=10, score_threshold=None)
    assert [r.fragment_id for r in results] == [1, 3, 2, 4]


def test_global_top_k_after_merge(index):
    results = Retriever(index, 0.0).retrieve(["a", "b"], QUERY, top_k=2)
    assert [r.fragment_id for r in results] == [1, 3]


def test_threshold_filters_results(index):
    results = Retriever(index, 0.5).retrieve(["a", "b"], QUERY, top_k=10, score_threshold=0.6)
    assert [r.fragment_id for r in results] == [1, 3]
    assert all(r.score >= 0.6 for r in results)


def test_non_positive_threshold_uses_default(index):
    retriever = Retriever(index, 0.5)
    assert retriever.resolve_threshold(0.0) == 0.5
    assert retriever.resolve_threshold(None) == 0.5
    assert retriever.resolve_threshold(-1.0) == 0.5
    assert retriever.resolve_threshold(0.8) == 0.8

    results = retriever.retrieve(["a", "b"], QUERY, top_k=10, score_threshold=0.0)
    assert [r.fragment_id for r in results] == [1, 3, 2]


def test_result_at_exact_threshold_is_kept(index):
    [first] = Retriever(index, 0.5).retrieve(["a"], QUERY, top_k=1)
    results = Retriever(index, first.score).retrieve(["a"], QUERY, top_k=1)
    assert [r.fragment_id for r in results] == [1]


def test_raising_threshold_never_adds_results(index):
    retriever = Retriever(index, 0.1)
    previous = None
    for threshold in (0.1, 0.3, 0.5, 0.7, 0.9, 1.0):
        ids = {r.fragment_id for r in retriever.retrieve(["a", "b"], QUERY, top_k=10, score_threshold=threshold)}
        if previous is not None:
            assert ids <= previous
        previous = ids


def test_unknown_collection_contributes_nothing(index):
    results = Retriever(index, 0.0).retrieve(["a", "missing"], QUERY, top_k=10)
    assert [r.fragment_id for r in results] == [1, 2]


def test_failing_collection_does_not_hide_others():
    vector_index = MagicMock()

    def search(collection, query_vector, top_k):
        if collection == "broken":
            raise SearchError("disk on fire")
        return [SearchResult(fragment_id=5, score=0.9, metadata={"document_id": 1})]

    vector_index.search.side_effect = search
    results = Retriever(vector_index, 0.5).retrieve(["broken", "ok"], QUERY, top_k=5)

    assert [r.fragment_id for r in results] == [5]
    assert vector_index.search.call_count == 2


def test_merge_breaks_ties_by_fragment_id():
    vector_index = MagicMock()
    vector_index.search.side_effect = lambda collection, q, k: {
        "x": [SearchResult(fragment_id=9, score=0.8)],
        "y": [SearchResult(fragment_id=2, score=0.8)],
    }[collection]

    results = Retriever(vector_index, 0.5).search_all(["x", "y"], QUERY, top_k=5)
    assert [r.fragment_id for r in results] == [2, 9]
