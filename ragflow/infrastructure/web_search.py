"""
Web search client used as the second retrieval tier.

Speaks three provider dialects:
- brave:   GET  {api_url}?q=..&count=..  with X-Subscription-Token
- serpapi: GET  {api_url}?q=..&api_key=..&num=..
- generic: POST {api_url} {"query": .., "max_results": ..} with bearer auth
"""

from typing import Any, Dict, List, Optional

import httpx

from ragflow.config import WebSearchConfig
from ragflow.domain.interfaces import WebSearchPort
from ragflow.domain.models import WebSearchHit
from ragflow.logger import get_logger

logger = get_logger(__name__)


def _text(item: Dict[str, Any], key: str) -> str:
    value = item.get(key)
    return str(value) if value is not None else ""


class WebSearchClient(WebSearchPort):

    def __init__(self, config: WebSearchConfig, http_client: Optional[httpx.Client] = None):
        self._config = config
        self._provider = config.provider.lower()
        self._client = http_client or httpx.Client(timeout=config.timeout_seconds)

    def is_enabled(self) -> bool:
        return bool(self._config.enabled and self._config.api_url)

    def search(self, query: str, max_results: int) -> List[WebSearchHit]:
        if not self.is_enabled():
            logger.warning("[WebSearch] Web search is not enabled or not configured")
            return []

        logger.info(f"[WebSearch] Searching ({self._provider}) for: {query}")
        try:
            if self._provider == "brave":
                hits = self._search_brave(query, max_results)
            elif self._provider == "serpapi":
                hits = self._search_serpapi(query, max_results)
            else:
                hits = self._search_generic(query, max_results)
        except (httpx.HTTPError, ValueError) as error:
            logger.error(f"[WebSearch] {self._provider} search failed: {error}")
            return []

        return hits[:max_results]

    def close(self) -> None:
        self._client.close()

    def _search_brave(self, query: str, max_results: int) -> List[WebSearchHit]:
        response = self._client.get(
            self._config.api_url,
            params={"q": query, "count": max_results},
            headers={"Accept": "application/json", "X-Subscription-Token": self._config.api_key},
        )
        response.raise_for_status()
        body = response.json()

        web = body.get("web") if isinstance(body, dict) else None
        items = web.get("results") if isinstance(web, dict) else None
        return [
            WebSearchHit(title=_text(item, "title"), url=_text(item, "url"), snippet=_text(item, "description"))
            for item in (items or [])
            if isinstance(item, dict)
        ]

    def _search_serpapi(self, query: str, max_results: int) -> List[WebSearchHit]:
        response = self._client.get(
            self._config.api_url,
            params={"q": query, "api_key": self._config.api_key, "num": max_results},
        )
        response.raise_for_status()
        body = response.json()

        items = body.get("organic_results") if isinstance(body, dict) else None
        return [
            WebSearchHit(title=_text(item, "title"), url=_text(item, "link"), snippet=_text(item, "snippet"))
            for item in (items or [])
            if isinstance(item, dict)
        ]

    def _search_generic(self, query: str, max_results: int) -> List[WebSearchHit]:
        headers = {"Content-Type": "application/json"}
        if self._config.api_key:
            headers["Authorization"] = f"Bearer {self._config.api_key}"

        response = self._client.post(
            self._config.api_url,
            json={"query": query, "max_results": max_results},
            headers=headers,
        )
        response.raise_for_status()
        body = response.json()

        items = body.get("results") if isinstance(body, dict) else None
        hits = []
        for item in items or []:
            if not isinstance(item, dict):
                continue
            snippet = _text(item, "snippet") or _text(item, "content")
            hits.append(WebSearchHit(title=_text(item, "title"), url=_text(item, "url"), snippet=snippet))
        return hits
