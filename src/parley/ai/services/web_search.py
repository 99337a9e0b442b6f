"""Web search through user-configured engines."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Awaitable, Callable, Dict, Mapping, Sequence, TypeVar
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup

from ...services.config_manager import ConfigManager
from ...services.settings import WebSearchOptions, WebSearchProviderConfig
from ..errors import AbortedError
from ..types import ExtractResults, WebSearchProviderResponse, WebSearchResult

__all__ = [
    "WebSearchService",
    "SearchEngine",
    "TavilyEngine",
    "SearxngEngine",
    "create_engine",
]

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

_TAVILY_API_HOST = "https://api.tavily.com"
_SUMMARIZE_QUESTION = "summarize"
_MAX_PAGE_CHARS = 20_000
_USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122 Safari/537.36"


class SearchEngine(ABC):
    """One search backend; ``search`` returns at most ``max_results`` hits."""

    def __init__(self, config: WebSearchProviderConfig, http: httpx.AsyncClient) -> None:
        self.config = config
        self._http = http

    @abstractmethod
    async def search(self, query: str, *, max_results: int, exclude_domains: Sequence[str]) -> WebSearchProviderResponse:
        ...


class TavilyEngine(SearchEngine):
    async def search(self, query: str, *, max_results: int, exclude_domains: Sequence[str]) -> WebSearchProviderResponse:
        host = (self.config.api_host or _TAVILY_API_HOST).rstrip("/")
        body: Dict[str, Any] = {
            "api_key": self.config.api_key,
            "query": query,
            "max_results": max_results,
        }
        if exclude_domains:
            body["exclude_domains"] = list(exclude_domains)
        response = await self._http.post(f"{host}/search", json=body)
        response.raise_for_status()
        payload = response.json()
        results = [
            WebSearchResult(
                title=str(item.get("title") or ""),
                content=str(item.get("content") or ""),
                url=str(item.get("url") or ""),
            )
            for item in payload.get("results") or ()
            if isinstance(item, Mapping)
        ]
        return WebSearchProviderResponse(query=str(payload.get("query") or query), results=results)


class SearxngEngine(SearchEngine):
    async def search(self, query: str, *, max_results: int, exclude_domains: Sequence[str]) -> WebSearchProviderResponse:
        params: Dict[str, Any] = {"q": query, "format": "json"}
        if self.config.engines:
            params["engines"] = ",".join(self.config.engines)
        auth = None
        if self.config.basic_auth_username:
            auth = httpx.BasicAuth(self.config.basic_auth_username, self.config.basic_auth_password)
        response = await self._http.get(
            f"{self.config.api_host.rstrip('/')}/search", params=params, auth=auth or httpx.USE_CLIENT_DEFAULT
        )
        response.raise_for_status()
        results: list[WebSearchResult] = []
        for item in response.json().get("results") or ():
            if not isinstance(item, Mapping):
                continue
            url = str(item.get("url") or "")
            if _is_excluded(url, exclude_domains):
                continue
            results.append(
                WebSearchResult(title=str(item.get("title") or ""), content=str(item.get("content") or ""), url=url)
            )
            if len(results) >= max_results:
                break
        return WebSearchProviderResponse(query=query, results=results)


_ENGINES: Mapping[str, type[SearchEngine]] = {
    "tavily": TavilyEngine,
    "searxng": SearxngEngine,
}


def create_engine(config: WebSearchProviderConfig, http: httpx.AsyncClient) -> SearchEngine:
    try:
        engine_cls = _ENGINES[config.id]
    except KeyError:
        raise ValueError(f"Unsupported web search provider: {config.id}") from None
    return engine_cls(config, http)


class WebSearchService:
    """Runs the searches requested by the extraction model.

    Each chat message may own an abort signal; aborting it cancels the
    in-flight searches of that message with :class:`AbortedError`.
    """

    def __init__(
        self,
        config: ConfigManager,
        *,
        http: httpx.AsyncClient | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._config = config
        self._http = http or httpx.AsyncClient(
            timeout=config.settings.request_timeout,
            follow_redirects=True,
            headers={"User-Agent": _USER_AGENT},
        )
        self._today = today
        self._signals: Dict[str, asyncio.Event] = {}

    @property
    def options(self) -> WebSearchOptions:
        return self._config.settings.web_search

    def get_web_search_provider(self, provider_id: str | None) -> WebSearchProviderConfig | None:
        """Return the configured provider, or ``None`` when it is unknown or lacks credentials."""

        if not provider_id:
            return None
        for provider in self._config.settings.web_search_providers:
            if provider.id != provider_id:
                continue
            if provider.id == "tavily" and not provider.api_key:
                return None
            if provider.id == "searxng" and not provider.api_host:
                return None
            if provider.id not in _ENGINES:
                return None
            return provider
        return None

    def create_abort_signal(self, message_id: str) -> asyncio.Event:
        signal = asyncio.Event()
        self._signals[message_id] = signal
        return signal

    def abort(self, message_id: str) -> bool:
        """Signal the searches of ``message_id`` to stop; returns ``False`` if none are running."""

        signal = self._signals.get(message_id)
        if signal is None:
            return False
        LOGGER.debug("Aborting web search for message %s", message_id)
        signal.set()
        return True

    async def process_websearch(
        self,
        provider: WebSearchProviderConfig,
        extract_results: ExtractResults,
        message_id: str | None = None,
    ) -> WebSearchProviderResponse:
        websearch = extract_results.websearch
        if websearch is None or not websearch.question:
            return WebSearchProviderResponse()
        signal = self._signals.get(message_id) if message_id else None
        try:
            if websearch.question[0] == _SUMMARIZE_QUESTION and websearch.links:
                results = await self._guarded(self._fetch_links(websearch.links), signal, message_id)
                return WebSearchProviderResponse(query="summaries", results=results)

            engine = create_engine(provider, self._http)
            options = self.options
            outcomes = await self._guarded(
                asyncio.gather(
                    *(
                        engine.search(
                            self._decorate_query(question),
                            max_results=options.max_results,
                            exclude_domains=options.exclude_domains,
                        )
                        for question in websearch.question
                    ),
                    return_exceptions=True,
                ),
                signal,
                message_id,
            )
        finally:
            if message_id:
                self._signals.pop(message_id, None)

        results: list[WebSearchResult] = []
        for question, outcome in zip(websearch.question, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                LOGGER.warning("Web search for %r via %s failed: %s", question, provider.id, outcome)
                continue
            results.extend(outcome.results)
        return WebSearchProviderResponse(query=" | ".join(websearch.question), results=results)

    async def aclose(self) -> None:
        await self._http.aclose()

    def _decorate_query(self, question: str) -> str:
        if not self.options.search_with_time:
            return question
        return f"today is {self._today().isoformat()} \r\n {question}"

    async def _fetch_links(self, links: Sequence[str]) -> list[WebSearchResult]:
        outcomes = await asyncio.gather(*(self._fetch_page(link) for link in links), return_exceptions=True)
        results: list[WebSearchResult] = []
        for link, outcome in zip(links, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                LOGGER.warning("Unable to fetch %s: %s", link, outcome)
                continue
            results.append(outcome)
        return results

    async def _fetch_page(self, url: str) -> WebSearchResult:
        response = await self._http.get(url)
        response.raise_for_status()
        soup = BeautifulSoup(response.text, "html.parser")
        for tag in soup(["script", "style", "noscript"]):
            tag.decompose()
        title = soup.title.get_text(strip=True) if soup.title else url
        text = " ".join(soup.get_text(" ", strip=True).split())
        return WebSearchResult(title=title, content=text[:_MAX_PAGE_CHARS], url=url)

    async def _guarded(self, work: Awaitable[T], signal: asyncio.Event | None, message_id: str | None) -> T:
        """Await ``work`` unless ``signal`` fires first."""

        if signal is None:
            return await work
        if signal.is_set():
            if asyncio.isfuture(work):
                work.cancel()
            else:
                work.close()  # type: ignore[union-attr]
            raise AbortedError(message_id=message_id)
        task = asyncio.ensure_future(work)
        waiter = asyncio.ensure_future(signal.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
        if task.cancelled() or not task.done():
            raise AbortedError(message_id=message_id)
        return task.result()


def _is_excluded(url: str, exclude_domains: Sequence[str]) -> bool:
    if not exclude_domains:
        return False
    host = (urlparse(url).hostname or "").lower()
    for domain in exclude_domains:
        domain = domain.strip().lower()
        if domain and (host == domain or host.endswith("." + domain)):
            return True
    return False
