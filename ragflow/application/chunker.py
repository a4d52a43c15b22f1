# ragflow/application/chunker.py

from typing import List, Optional

from ragflow.config import ChunkingConfig


class Chunker:
    """
    Splits extracted text into overlapping fixed-size character windows.

    Windows advance by chunk_size - chunk_overlap characters and the last
    window may be shorter than chunk_size. Lengths are counted in Unicode
    code points (Python str semantics), never in encoded bytes.
    """

    def __init__(self, config: Optional[ChunkingConfig] = None):
        # ChunkingConfig validates overlap < size, so the step is always positive.
        self._config = config or ChunkingConfig()

    @property
    def chunk_size(self) -> int:
        return self._config.chunk_size

    @property
    def chunk_overlap(self) -> int:
        return self._config.chunk_overlap

    def chunk(self, text: Optional[str]) -> List[str]:
        if not text:
            return []

        size = self._config.chunk_size
        step = self._config.step
        length = len(text)

        chunks: List[str] = []
        start = 0
        while start < length:
            end = min(start + size, length)
            chunks.append(text[start:end])
            if end == length:
                break
            start += step

        return chunks
