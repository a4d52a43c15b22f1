# ragflow/infrastructure/embedding_engine.py
# model_name is a concrete property, not part of EmbeddingPort

import hashlib
from typing import List

import numpy as np
from sentence_transformers import SentenceTransformer

from ragflow.domain.errors import ConfigError, EmbeddingError
from ragflow.domain.interfaces import EmbeddingPort
from ragflow.logger import get_logger

logger = get_logger(__name__)


DEFAULT_MODEL_NAME = "all-MiniLM-L6-v2"


class SentenceTransformerEngine(EmbeddingPort):

    def __init__(self, model_name: str = DEFAULT_MODEL_NAME, expected_dimension: int = 384, batch_size: int = 32):
        logger.info(f"[EmbeddingEngine] Loading model: {model_name} ...")
        self._model_name = model_name
        self._batch_size = batch_size
        self._model = SentenceTransformer(model_name)

        dimension = self._model.get_sentence_embedding_dimension()
        if dimension != expected_dimension:
            raise ConfigError(
                f"Model '{model_name}' produces {dimension}-dimensional vectors, "
                f"but embedding_dimension is configured as {expected_dimension}"
            )
        self._dimension = dimension
        logger.info("[EmbeddingEngine] Model ready.")

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def dimension(self) -> int:
        return self._dimension

    def embed(self, text: str) -> np.ndarray:
        try:
            vector = self._model.encode(
                text,
                convert_to_numpy=True,
                normalize_embeddings=True,
            )
        except Exception as error:
            raise EmbeddingError(f"Failed to embed text: {error}") from error
        return vector.astype(np.float32)

    def embed_batch(self, texts: List[str]) -> List[np.ndarray]:
        if not texts:
            return []
        try:
            matrix = self._model.encode(
                texts,
                convert_to_numpy=True,
                show_progress_bar=False,
                batch_size=self._batch_size,
                normalize_embeddings=True,
            )
        except Exception as error:
            raise EmbeddingError(f"Failed to embed {len(texts)} texts: {error}") from error
        return [row.astype(np.float32) for row in matrix]


class HashEmbeddingEngine(EmbeddingPort):
    """
    Deterministic stand-in: a normalized random vector seeded by the text.
    Identical texts map to identical vectors; nothing is semantic about it.
    Used for offline runs and tests.
    """

    def __init__(self, dimension: int = 384):
        if dimension <= 0:
            raise ConfigError("dimension must be positive")
        self._dimension = dimension

    @property
    def model_name(self) -> str:
        return f"hash-{self._dimension}"

    @property
    def dimension(self) -> int:
        return self._dimension

    def embed(self, text: str) -> np.ndarray:
        seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "big")
        rng = np.random.default_rng(seed)
        vector = rng.random(self._dimension, dtype=np.float32) - 0.5
        norm = np.linalg.norm(vector)
        if norm > 0:
            vector /= norm
        return vector.astype(np.float32)

    def embed_batch(self, texts: List[str]) -> List[np.ndarray]:
        return [self.embed(text) for text in texts]
