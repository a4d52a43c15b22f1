"""
Composition root shared by the CLI (main.py) and the HTTP API (api.py).
"""

from dataclasses import dataclass
from typing import Optional

from ragflow.application.chunker import Chunker
from ragflow.application.context_assembler import ContextAssembler
from ragflow.application.ingestion_service import IngestionService
from ragflow.application.orchestrator import FallbackOrchestrator
from ragflow.application.retriever import Retriever
from ragflow.config import Settings
from ragflow.domain.interfaces import EmbeddingPort, GenerationPort, WebSearchPort
from ragflow.infrastructure.document_repository import DocumentRepository
from ragflow.infrastructure.embedding_engine import HashEmbeddingEngine, SentenceTransformerEngine
from ragflow.infrastructure.llm_client import build_generator
from ragflow.infrastructure.vector_store import VectorIndex
from ragflow.infrastructure.web_search import WebSearchClient


@dataclass
class Services:
    settings: Settings
    embedding_engine: EmbeddingPort
    vector_index: VectorIndex
    repository: DocumentRepository
    ingestion: IngestionService
    orchestrator: FallbackOrchestrator


def build_embedding_engine(settings: Settings) -> EmbeddingPort:
    if settings.embedding.provider == "hash":
        return HashEmbeddingEngine(settings.index.embedding_dimension)
    return SentenceTransformerEngine(
        model_name=settings.embedding.model_name,
        expected_dimension=settings.index.embedding_dimension,
        batch_size=settings.embedding.batch_size,
    )


def build_services(
    settings: Settings,
    embedding_engine: Optional[EmbeddingPort] = None,
    generator: Optional[GenerationPort] = None,
    web_search: Optional[WebSearchPort] = None,
    load: bool = True,
) -> Services:
    """
    Wire every component. Collaborators can be injected (tests, demos);
    otherwise they are built from `settings`. With `load`, the persisted
    index and document records are restored before returning.
    """
    embedding_engine = embedding_engine or build_embedding_engine(settings)
    vector_index = VectorIndex(settings.index.storage_dir, settings.index.embedding_dimension)
    repository = DocumentRepository(settings.index.storage_dir)

    ingestion = IngestionService(
        chunker=Chunker(settings.chunking),
        embedding_engine=embedding_engine,
        vector_index=vector_index,
        repository=repository,
    )
    orchestrator = FallbackOrchestrator(
        embedding_engine=embedding_engine,
        retriever=Retriever(vector_index, settings.retrieval.score_threshold),
        fragment_lookup=repository,
        context_assembler=ContextAssembler(settings.retrieval.max_context_chars),
        generator=generator or build_generator(settings.llm),
        web_search=web_search or WebSearchClient(settings.web_search),
        config=settings.retrieval,
    )

    if load:
        ingestion.load()

    return Services(
        settings=settings,
        embedding_engine=embedding_engine,
        vector_index=vector_index,
        repository=repository,
        ingestion=ingestion,
        orchestrator=orchestrator,
    )
