# ragflow/application/retriever.py

from typing import List, Optional, Sequence

import numpy as np

from ragflow.domain.models import SearchResult
from ragflow.infrastructure.vector_store import VectorIndex
from ragflow.logger import get_logger

logger = get_logger(__name__)


class Retriever:
    """
    Multi-collection retrieval: per-collection top-k, global re-rank,
    global top-k, then score threshold.

    top_k is applied per collection before the merge, so a collection with
    many strong fragments can crowd a sparser one out of the final list.
    """

    def __init__(self, vector_index: VectorIndex, default_score_threshold: float = 0.5):
        self._vector_index = vector_index
        self._default_score_threshold = default_score_threshold

    def resolve_threshold(self, score_threshold: Optional[float]) -> float:
        """Caller-supplied threshold when positive, else the configured default."""
        if score_threshold is not None and score_threshold > 0:
            return score_threshold
        return self._default_score_threshold

    def retrieve(
        self,
        collections: Sequence[str],
        query_vector: np.ndarray,
        top_k: int,
        score_threshold: Optional[float] = None,
    ) -> List[SearchResult]:
        merged = self.search_all(collections, query_vector, top_k)

        threshold = self.resolve_threshold(score_threshold)
        filtered = [r for r in merged if r.score >= threshold]

        logger.info(
            f"[Retriever] {len(filtered)}/{len(merged)} results kept "
            f"(threshold {threshold:.2f}, collections {list(collections)})"
        )
        for result in filtered:
            logger.debug(f"[Retriever]  - {result!r}")
        return filtered

    def search_all(
        self,
        collections: Sequence[str],
        query_vector: np.ndarray,
        top_k: int,
    ) -> List[SearchResult]:
        """Merged, globally ranked results with no threshold applied."""
        candidates: List[SearchResult] = []
        for collection in collections:
            try:
                candidates.extend(self._vector_index.search(collection, query_vector, top_k))
            except Exception as error:
                # One broken collection must not take the others down.
                logger.warning(f"[Retriever] Search failed in '{collection}': {error}")

        # Stable sort keeps per-collection order (score desc, id asc) across ties.
        candidates.sort(key=lambda r: (-r.score, r.fragment_id))
        return candidates[:top_k]
