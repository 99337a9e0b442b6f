"""Knowledge-base lookups through an external retrieval service."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

import httpx

from ...services.config_manager import ConfigManager
from ...services.settings import KnowledgeBaseConfig
from ..types import ExtractResults, KnowledgeReference

__all__ = [
    "KnowledgeBackend",
    "KnowledgeSearchResult",
    "HttpKnowledgeBackend",
    "KnowledgeService",
    "DEFAULT_DOCUMENT_COUNT",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_DOCUMENT_COUNT = 6
_NOT_NEEDED = "not_needed"


@dataclass(slots=True, frozen=True)
class KnowledgeSearchResult:
    content: str
    score: float
    source_url: str = ""
    type: str = "file"


@runtime_checkable
class KnowledgeBackend(Protocol):
    """Retrieval engine holding the user's knowledge bases."""

    async def search(self, base: KnowledgeBaseConfig, query: str) -> Sequence[KnowledgeSearchResult]:
        ...

    async def rerank(
        self, base: KnowledgeBaseConfig, query: str, results: Sequence[KnowledgeSearchResult]
    ) -> Sequence[KnowledgeSearchResult]:
        ...


class HttpKnowledgeBackend:
    """:class:`KnowledgeBackend` speaking JSON to a knowledge service.

    Endpoints: ``POST {base_url}/bases/{id}/search`` and
    ``POST {base_url}/bases/{id}/rerank``.
    """

    def __init__(self, base_url: str, *, http: httpx.AsyncClient | None = None, timeout: float = 30.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._http = http or httpx.AsyncClient(timeout=timeout)

    async def search(self, base: KnowledgeBaseConfig, query: str) -> list[KnowledgeSearchResult]:
        payload = await self._post(f"/bases/{base.id}/search", {"query": query})
        return _parse_results(payload)

    async def rerank(
        self, base: KnowledgeBaseConfig, query: str, results: Sequence[KnowledgeSearchResult]
    ) -> list[KnowledgeSearchResult]:
        body = {
            "query": query,
            "model": base.rerank_model,
            "results": [
                {"content": item.content, "score": item.score, "source_url": item.source_url, "type": item.type}
                for item in results
            ],
        }
        return _parse_results(await self._post(f"/bases/{base.id}/rerank", body))

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _post(self, path: str, body: Mapping[str, Any]) -> Any:
        response = await self._http.post(f"{self._base_url}{path}", json=body)
        response.raise_for_status()
        return response.json()


class KnowledgeService:
    def __init__(self, config: ConfigManager, backend: KnowledgeBackend) -> None:
        self._config = config
        self._backend = backend

    def get_base(self, base_id: str) -> KnowledgeBaseConfig | None:
        for base in self._config.settings.knowledge_bases:
            if base.id == base_id:
                return base
        return None

    async def process_knowledge_search(
        self,
        extract_results: ExtractResults,
        knowledge_base_ids: Sequence[str] | None,
    ) -> list[KnowledgeReference]:
        """Search the selected bases and number the passages from 1 across all of them."""

        knowledge = extract_results.knowledge
        if knowledge is None or not knowledge.question or knowledge.question[0] == _NOT_NEEDED:
            return []
        bases = [base for base in (self.get_base(base_id) for base_id in knowledge_base_ids or ()) if base]
        if not bases:
            return []

        rewrite = knowledge.rewrite or knowledge.question[0]
        per_base = await asyncio.gather(
            *(self._search_base(base, knowledge.question, rewrite) for base in bases)
        )
        references: list[KnowledgeReference] = []
        for results in per_base:
            for item in results:
                references.append(
                    KnowledgeReference(
                        id=len(references) + 1,
                        content=item.content,
                        source_url=item.source_url,
                        type=item.type if item.type in ("file", "url", "note") else "file",
                    )
                )
        LOGGER.debug("Knowledge search returned %d reference(s) from %d base(s)", len(references), len(bases))
        return references

    async def _search_base(
        self, base: KnowledgeBaseConfig, questions: Sequence[str], rewrite: str
    ) -> list[KnowledgeSearchResult]:
        batches = await asyncio.gather(*(self._backend.search(base, question) for question in questions))

        best: dict[str, KnowledgeSearchResult] = {}
        for batch in batches:
            for item in batch:
                current = best.get(item.content)
                if current is None or item.score > current.score:
                    best[item.content] = item

        threshold = base.threshold or 0.0
        results = sorted(
            (item for item in best.values() if item.score >= threshold),
            key=lambda item: item.score,
            reverse=True,
        )
        if base.rerank_model and results:
            results = list(await self._backend.rerank(base, rewrite, results))
        limit = base.document_count or DEFAULT_DOCUMENT_COUNT
        return results[:limit]


def _parse_results(payload: Any) -> list[KnowledgeSearchResult]:
    items = payload.get("results") if isinstance(payload, Mapping) else payload
    results: list[KnowledgeSearchResult] = []
    for item in items or ():
        if not isinstance(item, Mapping):
            continue
        metadata = item.get("metadata") if isinstance(item.get("metadata"), Mapping) else {}
        results.append(
            KnowledgeSearchResult(
                content=str(item.get("content") or item.get("pageContent") or ""),
                score=float(item.get("score") or 0.0),
                source_url=str(item.get("source_url") or metadata.get("source") or ""),
                type=str(item.get("type") or metadata.get("type") or "file"),
            )
        )
    return results
