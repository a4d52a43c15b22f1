# ragflow/domain/interfaces.py

from abc import ABC, abstractmethod
from typing import AsyncIterator, Dict, Iterable, List
import numpy as np

from .models import WebSearchHit


class EmbeddingPort(ABC):
    """
    Port for any embedding engine.
    Every vector it returns has exactly `dimension` float32 components.
    """

    @property
    @abstractmethod
    def dimension(self) -> int: ...

    @abstractmethod
    def embed(self, text: str) -> np.ndarray: ...

    @abstractmethod
    def embed_batch(self, texts: List[str]) -> List[np.ndarray]: ...


class GenerationPort(ABC):

    @abstractmethod
    def generate(self, prompt: str) -> str: ...

    @abstractmethod
    def generate_stream(self, prompt: str) -> AsyncIterator[str]:
        """
        Yield incremental text deltas for `prompt`.
        Closing the iterator must release the underlying connection.
        """
        ...


class WebSearchPort(ABC):

    @abstractmethod
    def is_enabled(self) -> bool: ...

    @abstractmethod
    def search(self, query: str, max_results: int) -> List[WebSearchHit]: ...


class FragmentLookupPort(ABC):

    @abstractmethod
    def get_fragments_by_ids(self, fragment_ids: Iterable[int]) -> Dict[int, str]:
        """
        Return { fragment_id: content } for the ids that exist.
        Unknown ids are simply absent from the mapping.
        """
        ...
