# ragflow/application/context_assembler.py

from typing import List, Mapping, Sequence

from ragflow.domain.models import DOCUMENT_ID_KEY, Citation, SearchResult

SEPARATOR = "\n\n"
SNIPPET_LENGTH = 100
ELLIPSIS = "..."


class ContextAssembler:
    """
    Renders ranked results into a bounded prompt context and citation records.
    `fragment_lookup` maps fragment_id -> fragment content.
    """

    def __init__(self, max_context_chars: int = 4000):
        self._max_context_chars = max_context_chars

    def build_context(self, results: Sequence[SearchResult], fragment_lookup: Mapping[int, str]) -> str:
        """
        Concatenate fragment contents in result order, blank-line separated.
        Stops before the first fragment that would overflow the budget;
        fragments are never cut.
        """
        parts: List[str] = []
        length = 0

        for result in results:
            content = fragment_lookup.get(result.fragment_id)
            if content is None:
                continue

            added = len(content) + (len(SEPARATOR) if parts else 0)
            if length + added > self._max_context_chars:
                break

            parts.append(content)
            length += added

        return SEPARATOR.join(parts)

    def build_citations(self, results: Sequence[SearchResult], fragment_lookup: Mapping[int, str]) -> List[Citation]:
        citations = []
        for result in results:
            content = fragment_lookup.get(result.fragment_id)
            if content is None:
                continue
            citations.append(Citation(
                document_id=result.metadata.get(DOCUMENT_ID_KEY),
                document_name=result.document_name,
                fragment_id=result.fragment_id,
                score=result.score,
                snippet=content[:SNIPPET_LENGTH] + ELLIPSIS,
            ))
        return citations
