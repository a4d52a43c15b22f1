# ragflow/application/prompts.py

from typing import Sequence

from ragflow.domain.models import WebSearchHit


KNOWLEDGE_BASE_TEMPLATE = """You are a helpful assistant. Use the following pieces of context to answer the question at the end.
If you don't know the answer, just say that you don't know, don't try to make up an answer.

Context:
{context}

Question: {question}

Answer:
"""

WEB_SEARCH_TEMPLATE = """You are a helpful assistant. The knowledge base had nothing relevant, so the following web search results were retrieved instead.
Answer the question using these results and cite them by their number, e.g. [1].
If the results do not answer the question, say so.

Web search results:
{results}

Question: {question}

Answer:
"""

PLAIN_TEMPLATE = """You are a helpful assistant. No relevant documents were found for this question.
Answer from your general knowledge, and say clearly when you are unsure.

Question: {question}

Answer:
"""


def build_knowledge_base_prompt(context: str, question: str) -> str:
    return KNOWLEDGE_BASE_TEMPLATE.format(context=context, question=question)


def build_web_search_prompt(hits: Sequence[WebSearchHit], question: str) -> str:
    blocks = [
        f"[{i}] {hit.title}\nURL: {hit.url}\n{hit.snippet}"
        for i, hit in enumerate(hits, start=1)
    ]
    return WEB_SEARCH_TEMPLATE.format(results="\n\n".join(blocks), question=question)


def build_plain_prompt(question: str) -> str:
    return PLAIN_TEMPLATE.format(question=question)
