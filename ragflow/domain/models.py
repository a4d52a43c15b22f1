# ragflow/domain/models.py

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
import numpy as np


Metadata = Dict[str, Any]

DOCUMENT_ID_KEY = "document_id"
DOCUMENT_NAME_KEY = "document_name"
FRAGMENT_INDEX_KEY = "fragment_index"


@dataclass
class Fragment:
    """
    One indexed unit of text: a chunk of a source document plus its embedding.
    The text itself lives in the document repository; the index only keeps
    the vector and the metadata.
    """
    fragment_id: int
    collection: str
    vector: np.ndarray = field(repr=False)
    metadata: Metadata = field(default_factory=dict)

    @property
    def document_id(self) -> Optional[int]:
        return self.metadata.get(DOCUMENT_ID_KEY)


@dataclass
class SearchResult:
    """
    Represents a ranked hit returned by a vector search.
    """
    fragment_id: int
    score: float
    metadata: Metadata = field(default_factory=dict)

    @property
    def document_name(self) -> str:
        return str(self.metadata.get(DOCUMENT_NAME_KEY, "unknown"))

    def __repr__(self) -> str:
        return (
            f"SearchResult(score={self.score:.4f}, "
            f"fragment_id={self.fragment_id}, "
            f"source='{self.document_name}')"
        )


@dataclass
class Citation:
    document_id: Optional[int]
    document_name: str
    fragment_id: Optional[int]
    score: float
    snippet: str


@dataclass
class WebSearchHit:
    title: str
    url: str
    snippet: str


class Provenance(str, Enum):
    """Which source produced an answer."""
    KNOWLEDGE_BASE = "knowledge_base"
    WEB_SEARCH = "web_search"
    LLM_KNOWLEDGE = "llm_knowledge"


@dataclass
class QueryAnswer:
    """
    Final, answer-shaped response. Internal failures show up only as a
    downgraded provenance, or as `error` when generation itself failed.
    """
    answer: str
    citations: List[Citation]
    provenance: Provenance
    error: Optional[str] = None


class StreamEventType(str, Enum):
    START = "start"
    SOURCE = "source"
    MESSAGE = "message"
    DONE = "done"
    ERROR = "error"


TERMINAL_EVENTS = frozenset({StreamEventType.DONE, StreamEventType.ERROR})


@dataclass
class StreamEvent:
    event: StreamEventType
    data: Any = ""

    @property
    def is_terminal(self) -> bool:
        return self.event in TERMINAL_EVENTS


class DocumentStatus(str, Enum):
    UPLOADED = "UPLOADED"
    INDEXED = "INDEXED"
    FAILED = "FAILED"


@dataclass
class DocumentRecord:
    document_id: int
    collection: str
    name: str
    path: str
    content_hash: str = ""
    status: DocumentStatus = DocumentStatus.UPLOADED
    fragment_count: int = 0


@dataclass
class FragmentRecord:
    fragment_id: int
    document_id: int
    collection: str
    fragment_index: int
    content: str


@dataclass
class IndexReport:
    document_id: int
    fragment_count: int
    status: DocumentStatus
    error: Optional[str] = None
