# ragflow/application/orchestrator.py

import asyncio
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, List, Optional, Sequence, Tuple

from ragflow.application.context_assembler import ContextAssembler
from ragflow.application.prompts import (
    build_knowledge_base_prompt,
    build_plain_prompt,
    build_web_search_prompt,
)
from ragflow.application.retriever import Retriever
from ragflow.config import RetrievalConfig
from ragflow.domain.interfaces import EmbeddingPort, FragmentLookupPort, GenerationPort, WebSearchPort
from ragflow.domain.models import (
    Citation,
    Provenance,
    QueryAnswer,
    SearchResult,
    StreamEvent,
    StreamEventType,
    WebSearchHit,
)
from ragflow.logger import get_logger

logger = get_logger(__name__)


WEB_CITATION_SCORE = 1.0


def decide_provenance(
    kb_results: Sequence[SearchResult],
    web_enabled: bool,
    web_results: Sequence[WebSearchHit],
) -> Provenance:
    """
    The fallback decision shared by the blocking and streaming paths.
    Knowledge base first, then web search, then the bare model.
    """
    if kb_results:
        return Provenance.KNOWLEDGE_BASE
    if web_enabled and web_results:
        return Provenance.WEB_SEARCH
    return Provenance.LLM_KNOWLEDGE


@dataclass
class Resolution:
    """Outcome of the retrieval stages: what to ask the model, and why."""
    provenance: Provenance
    prompt: str
    citations: List[Citation] = field(default_factory=list)


class FallbackOrchestrator:
    """
    Answers a question from the knowledge base, falling back to web search
    and then to unaided generation.

    Embedding and search failures never reach the caller: they are logged
    and push the question to the next tier. Generation failures are reported
    in QueryAnswer.error (blocking) or as a terminal `error` event (streaming).
    """

    def __init__(
        self,
        embedding_engine: EmbeddingPort,
        retriever: Retriever,
        fragment_lookup: FragmentLookupPort,
        context_assembler: ContextAssembler,
        generator: GenerationPort,
        web_search: Optional[WebSearchPort] = None,
        config: Optional[RetrievalConfig] = None,
    ):
        self._embedding_engine = embedding_engine
        self._retriever = retriever
        self._fragment_lookup = fragment_lookup
        self._context_assembler = context_assembler
        self._generator = generator
        self._web_search = web_search
        self._config = config or RetrievalConfig()

    # ─── Entry points ─────────────────────────────────────────────────────────

    def answer(
        self,
        question: str,
        collections: Optional[Sequence[str]] = None,
        top_k: Optional[int] = None,
        score_threshold: Optional[float] = None,
    ) -> QueryAnswer:
        question = self._validate(question)
        resolution = self.resolve(question, collections, top_k, score_threshold)

        try:
            answer = self._generator.generate(resolution.prompt)
        except Exception as error:
            logger.error(f"[Orchestrator] Generation failed: {error}")
            return QueryAnswer(
                answer=f"Error calling LLM: {error}",
                citations=resolution.citations,
                provenance=resolution.provenance,
                error=str(error),
            )

        return QueryAnswer(
            answer=answer,
            citations=resolution.citations,
            provenance=resolution.provenance,
        )

    async def stream(
        self,
        question: str,
        collections: Optional[Sequence[str]] = None,
        top_k: Optional[int] = None,
        score_threshold: Optional[float] = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Yield `start`, `source`, zero or more `message` tokens, then `done`
        or `error`. Provenance is settled before the first token. Closing
        this iterator cancels the producer and closes the model stream.
        """
        question = self._validate(question)
        channel: asyncio.Queue = asyncio.Queue(maxsize=self._config.stream_buffer_size)
        producer = asyncio.create_task(
            self._produce(channel, question, collections, top_k, score_threshold)
        )

        try:
            while True:
                event = await channel.get()
                yield event
                if event.is_terminal:
                    break
        finally:
            if not producer.done():
                producer.cancel()
            try:
                await producer
            except asyncio.CancelledError:
                pass

    def search_only(
        self,
        question: str,
        collections: Optional[Sequence[str]] = None,
        top_k: Optional[int] = None,
    ) -> List[Tuple[SearchResult, str]]:
        """Raw ranked fragments with their content; no threshold, no fallback."""
        question = self._validate(question)
        query_vector = self._embedding_engine.embed(question)
        results = self._retriever.search_all(
            self.target_collections(collections), query_vector, top_k or self._config.top_k
        )
        contents = self._fragment_lookup.get_fragments_by_ids([r.fragment_id for r in results])
        return [(r, contents[r.fragment_id]) for r in results if r.fragment_id in contents]

    # ─── State determination ──────────────────────────────────────────────────

    def resolve(
        self,
        question: str,
        collections: Optional[Sequence[str]] = None,
        top_k: Optional[int] = None,
        score_threshold: Optional[float] = None,
    ) -> Resolution:
        kb_results, contents = self._search_knowledge_base(question, collections, top_k, score_threshold)

        web_enabled = self._web_fallback_enabled()
        web_results: List[WebSearchHit] = []
        if not kb_results and web_enabled:
            web_results = self._search_web(question)

        provenance = decide_provenance(kb_results, web_enabled, web_results)
        logger.info(f"[Orchestrator] Provenance: {provenance.value}")

        if provenance is Provenance.KNOWLEDGE_BASE:
            context = self._context_assembler.build_context(kb_results, contents)
            return Resolution(
                provenance=provenance,
                prompt=build_knowledge_base_prompt(context, question),
                citations=self._context_assembler.build_citations(kb_results, contents),
            )

        if provenance is Provenance.WEB_SEARCH:
            return Resolution(
                provenance=provenance,
                prompt=build_web_search_prompt(web_results, question),
                citations=[
                    Citation(
                        document_id=None,
                        document_name=hit.title,
                        fragment_id=None,
                        score=WEB_CITATION_SCORE,
                        snippet=f"source: {hit.url}",
                    )
                    for hit in web_results
                ],
            )

        return Resolution(provenance=provenance, prompt=build_plain_prompt(question))

    def target_collections(self, collections: Optional[Sequence[str]]) -> List[str]:
        if collections:
            return list(collections)
        return [self._config.default_collection]

    def _search_knowledge_base(
        self,
        question: str,
        collections: Optional[Sequence[str]],
        top_k: Optional[int],
        score_threshold: Optional[float],
    ) -> Tuple[List[SearchResult], Dict[int, str]]:
        try:
            query_vector = self._embedding_engine.embed(question)
            results = self._retriever.retrieve(
                self.target_collections(collections),
                query_vector,
                top_k or self._config.top_k,
                score_threshold,
            )
            if not results:
                return [], {}
            contents = self._fragment_lookup.get_fragments_by_ids([r.fragment_id for r in results])
            return results, contents
        except Exception as error:
            logger.warning(f"[Orchestrator] Knowledge base retrieval failed, falling back: {error}")
            return [], {}

    def _web_fallback_enabled(self) -> bool:
        if not self._config.web_search_fallback_enabled or self._web_search is None:
            return False
        try:
            return self._web_search.is_enabled()
        except Exception as error:
            logger.warning(f"[Orchestrator] Web search availability check failed: {error}")
            return False

    def _search_web(self, question: str) -> List[WebSearchHit]:
        try:
            hits = self._web_search.search(question, self._config.web_search_max_results)
        except Exception as error:
            logger.warning(f"[Orchestrator] Web search failed, falling back: {error}")
            return []
        return list(hits)[: self._config.web_search_max_results]

    # ─── Streaming producer ───────────────────────────────────────────────────

    async def _produce(
        self,
        channel: asyncio.Queue,
        question: str,
        collections: Optional[Sequence[str]],
        top_k: Optional[int],
        score_threshold: Optional[float],
    ) -> None:
        await channel.put(StreamEvent(StreamEventType.START))

        try:
            resolution = await asyncio.to_thread(
                self.resolve, question, collections, top_k, score_threshold
            )
        except Exception as error:
            logger.error(f"[Orchestrator] Could not prepare answer: {error}")
            await channel.put(StreamEvent(StreamEventType.ERROR, f"Error: {error}"))
            return

        await channel.put(StreamEvent(
            StreamEventType.SOURCE,
            {"provenance": resolution.provenance, "citations": resolution.citations},
        ))

        try:
            async with aclosing(self._generator.generate_stream(resolution.prompt)) as tokens:
                async for token in tokens:
                    if token:
                        await channel.put(StreamEvent(StreamEventType.MESSAGE, token))
        except asyncio.CancelledError:
            logger.info("[Orchestrator] Stream cancelled by consumer")
            raise
        except Exception as error:
            logger.error(f"[Orchestrator] Streaming generation failed: {error}")
            await channel.put(StreamEvent(StreamEventType.ERROR, f"Error: {error}"))
            return

        await channel.put(StreamEvent(StreamEventType.DONE))

    @staticmethod
    def _validate(question: str) -> str:
        question = (question or "").strip()
        if not question:
            raise ValueError("Question cannot be empty.")
        return question
