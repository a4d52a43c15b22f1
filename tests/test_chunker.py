# tests/test_chunker.py

import math

import pytest
from ragflow.application.chunker import Chunker
from ragflow.config import ChunkingConfig
from ragflow.domain.errors import ConfigError


def _chunker(size: int, overlap: int) -> Chunker:
    return Chunker(ChunkingConfig(chunk_size=size, chunk_overlap=overlap))


def _reassemble(chunks, overlap: int) -> str:
    return chunks[0] + "".join(chunk[overlap:] for chunk in chunks[1:])


def test_windows_overlap_by_configured_amount():
    chunks = _chunker(10, 2).chunk("1234567890abcdefghij")
    assert chunks == ["1234567890", "90abcdefgh", "ghij"]


def test_empty_text_yields_no_chunks():
    assert _chunker(10, 2).chunk("") == []
    assert _chunker(10, 2).chunk(None) == []


def test_short_text_is_a_single_chunk():
    assert _chunker(10, 2).chunk("short") == ["short"]
    assert _chunker(10, 2).chunk("1234567890") == ["1234567890"]


@pytest.mark.parametrize("length", [11, 17, 18, 19, 50, 123])
def test_chunk_count_matches_step(length):
    size, overlap = 10, 3
    text = "x" * length
    expected = 1 + math.ceil((length - size) / (size - overlap))
    assert len(_chunker(size, overlap).chunk(text)) == expected


def test_chunks_cover_the_whole_text():
    text = "The quick brown fox jumps over the lazy dog. " * 7
    chunks = _chunker(32, 5).chunk(text)

    assert all(len(c) <= 32 for c in chunks)
    assert all(len(c) == 32 for c in chunks[:-1])
    assert _reassemble(chunks, 5) == text


def test_zero_overlap_partitions_text():
    chunks = _chunker(4, 0).chunk("abcdefghij")
    assert chunks == ["abcd", "efgh", "ij"]


def test_lengths_are_counted_in_characters_not_bytes():
    text = "日本語のテキスト" * 5  # 40 characters, 120 bytes in UTF-8
    chunks = _chunker(10, 0).chunk(text)

    assert len(chunks) == 4
    assert all(len(c) == 10 for c in chunks)
    assert "".join(chunks) == text


def test_overlap_must_be_smaller_than_size():
    with pytest.raises(ConfigError):
        ChunkingConfig(chunk_size=10, chunk_overlap=10)
    with pytest.raises(ConfigError):
        ChunkingConfig(chunk_size=0, chunk_overlap=0)
    with pytest.raises(ConfigError):
        ChunkingConfig(chunk_size=10, chunk_overlap=-1)
