# tests/test_context_assembler.py

from ragflow.application.context_assembler import ContextAssembler
from ragflow.domain.models import SearchResult


def _result(fragment_id: int, score: float = 0.9) -> SearchResult:
    return SearchResult(
        fragment_id=fragment_id,
        score=score,
        metadata={"document_id": 7, "document_name": "guide.md"},
    )


def test_context_joins_fragments_in_result_order():
    lookup = {1: "first", 2: "second", 3: "third"}
    context = ContextAssembler(4000).build_context([_result(2), _result(1), _result(3)], lookup)
    assert context == "second\n\nfirst\n\nthird"


def test_context_stops_before_overflowing_budget():
    lookup = {1: "a" * 10, 2: "b" * 10, 3: "c"}
    # 10 + 2 + 10 = 22 > 21: the second fragment does not fit, and nothing after it is tried
    context = ContextAssembler(21).build_context([_result(1), _result(2), _result(3)], lookup)
    assert context == "a" * 10


def test_context_fills_budget_exactly():
    lookup = {1: "a" * 10, 2: "b" * 10}
    context = ContextAssembler(22).build_context([_result(1), _result(2)], lookup)
    assert len(context) == 22


def test_first_fragment_larger_than_budget_gives_empty_context():
    context = ContextAssembler(5).build_context([_result(1)], {1: "too long for the budget"})
    assert context == ""


def test_results_without_content_are_skipped():
    lookup = {2: "present"}
    assembler = ContextAssembler(4000)

    assert assembler.build_context([_result(1), _result(2)], lookup) == "present"
    citations = assembler.build_citations([_result(1), _result(2)], lookup)
    assert [c.fragment_id for c in citations] == [2]


def test_citation_fields():
    [citation] = ContextAssembler().build_citations([_result(4, 0.77)], {4: "short text"})

    assert citation.document_id == 7
    assert citation.document_name == "guide.md"
    assert citation.fragment_id == 4
    assert citation.score == 0.77
    assert citation.snippet == "short text..."


def test_citation_snippet_is_truncated_to_100_chars():
    content = "x" * 250
    [citation] = ContextAssembler().build_citations([_result(1)], {1: content})
    assert citation.snippet == "x" * 100 + "..."


def test_unknown_document_name_defaults():
    result = SearchResult(fragment_id=1, score=0.6, metadata={})
    [citation] = ContextAssembler().build_citations([result], {1: "text"})
    assert citation.document_name == "unknown"
    assert citation.document_id is None
