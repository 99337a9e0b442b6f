"""Chat orchestration: external tools first, then the provider completion.

:class:`ApiService` is the single entry point the chat windows call. It
decides whether the latest user message needs a web search or a
knowledge-base lookup, runs them, and hands the conversation to the
assistant's provider. Search results are kept in the :class:`ResultStore`
for citation rendering rather than injected into the prompt.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Callable, Sequence

from ...events import EventBus, NotificationLevel, NotificationPosted
from ..chunks import Chunk, ChunkCallback, ChunkType
from ..errors import MissingApiKeyError, ProviderConfigError, ProviderDisabledError, is_abort_error
from ..extract import extract_info_from_xml
from ..models import get_openai_web_search_params, is_openai_web_search
from ..prompts import select_search_summary_prompt
from ..providers import BaseProvider, create_provider
from ..providers.base import ResponseCallback
from ..types import (
    Assistant,
    CheckResult,
    ExternalToolResult,
    ExtractResults,
    KnowledgeExtract,
    KnowledgeReference,
    Message,
    MCPTool,
    Model,
    Provider,
    Suggestion,
    WebsearchExtract,
    WebSearchResponse,
)
from .assistants import AssistantService
from .knowledge import KnowledgeService
from .mcp import MCPClient, list_enabled_tools
from .messages import (
    filter_context_messages,
    filter_messages,
    filter_useful_messages,
    get_knowledge_base_ids,
    get_main_text_content,
)
from .result_store import ResultStore
from .web_search import WebSearchService

__all__ = [
    "ApiService",
    "has_api_key",
    "format_api_keys",
    "check_api_provider",
    "check_api",
]

LOGGER = logging.getLogger(__name__)

ProviderFactory = Callable[[Provider], BaseProvider]

_NOT_NEEDED = "not_needed"
_FALLBACK_QUESTION = "search"
_API_CHECK_KEY = "api-check"
_QUOTES = re.compile(r"[\"']")


class ApiService:
    """Runs chat completions and the auxiliary model calls for the UI."""

    def __init__(
        self,
        assistants: AssistantService,
        web_search: WebSearchService,
        knowledge: KnowledgeService,
        *,
        result_store: ResultStore | None = None,
        mcp_client: MCPClient | None = None,
        provider_factory: ProviderFactory | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._assistants = assistants
        self._web_search = web_search
        self._knowledge = knowledge
        self._results = result_store or ResultStore()
        self._mcp_client = mcp_client
        self._provider_factory = provider_factory or self._create_provider
        self._event_bus = event_bus

    @property
    def result_store(self) -> ResultStore:
        return self._results

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------
    async def fetch_chat_completion(
        self,
        messages: Sequence[Message],
        assistant: Assistant,
        on_chunk: ChunkCallback,
    ) -> None:
        provider = self._assistants.get_assistant_provider(assistant)
        if provider is None:
            raise ProviderDisabledError("No enabled provider for the assistant's model")

        context = filter_context_messages(messages)
        last_user_message = _find_last(context, "user")
        last_answer = _find_last(context, "assistant")
        if last_user_message is None:
            LOGGER.error("fetch_chat_completion returning early: no user message in context")
            return

        tools = await self.fetch_external_tool(last_user_message, assistant, on_chunk, last_answer)

        ai = self._provider_factory(provider)
        try:
            await ai.completions(
                messages=filter_useful_messages(context),
                assistant=assistant,
                on_chunk=on_chunk,
                mcp_tools=tools.mcp_tools,
                on_filter_messages=lambda _messages: None,
            )
        finally:
            await ai.aclose()

    async def fetch_external_tool(
        self,
        last_user_message: Message,
        assistant: Assistant,
        on_chunk: ChunkCallback,
        last_answer: Message | None = None,
    ) -> ExternalToolResult:
        """Run the web and knowledge searches the message calls for and list its MCP tools."""

        knowledge_base_ids = get_knowledge_base_ids(last_user_message)
        has_knowledge_base = bool(knowledge_base_ids)
        recognition = assistant.knowledge_recognition or "on"
        search_provider = self._web_search.get_web_search_provider(assistant.web_search_provider_id)

        should_web_search = bool(assistant.web_search_provider_id) and search_provider is not None
        should_knowledge_search = has_knowledge_base
        will_use_tools = should_web_search or should_knowledge_search
        need_web_extract = should_web_search
        need_knowledge_extract = has_knowledge_base and recognition == "on"
        user_text = get_main_text_content(last_user_message)

        def fallback() -> ExtractResults:
            question = (user_text or _FALLBACK_QUESTION,)
            return ExtractResults(
                websearch=WebsearchExtract(question=question) if should_web_search else None,
                knowledge=KnowledgeExtract(question=question, rewrite=user_text) if should_knowledge_search else None,
            )

        async def extract() -> ExtractResults | None:
            if not need_web_extract and not need_knowledge_extract:
                return None
            summary_assistant = self._assistants.get_default_assistant()
            summary_assistant.model = assistant.model or self._assistants.get_default_model()
            summary_assistant.prompt = select_search_summary_prompt(
                web=need_web_extract, knowledge=need_knowledge_extract
            )
            conversation = [last_answer, last_user_message] if last_answer else [last_user_message]
            try:
                reply = await self.fetch_search_summary(conversation, summary_assistant)
            except Exception as exc:
                if is_abort_error(exc):
                    raise
                LOGGER.warning("Search intent extraction failed: %s", exc)
                return fallback()
            if not reply:
                return fallback()
            extracted = extract_info_from_xml(reply)
            return ExtractResults(
                websearch=extracted.websearch if extracted and need_web_extract else None,
                knowledge=extracted.knowledge if extracted and need_knowledge_extract else None,
            )

        async def search_the_web(results: ExtractResults | None) -> WebSearchResponse | None:
            if not should_web_search or search_provider is None:
                return None
            if results is None or results.websearch is None:
                LOGGER.warning("Web search skipped: extraction produced no websearch block")
                return None
            if not results.websearch.question:
                LOGGER.warning("Web search skipped: websearch block has no question")
                return None
            if results.websearch.question[0] == _NOT_NEEDED:
                return None
            model = assistant.model
            if model is None:
                LOGGER.warning("Web search skipped: assistant has no model")
                return None
            if get_openai_web_search_params(assistant, model) or is_openai_web_search(model):
                return None
            try:
                self._web_search.create_abort_signal(last_user_message.id)
                response = await self._web_search.process_websearch(
                    search_provider, results, message_id=last_user_message.id
                )
            except Exception as exc:
                if is_abort_error(exc):
                    raise
                LOGGER.warning("Web search failed: %s", exc)
                return None
            return WebSearchResponse(results=response, source="websearch")

        async def search_knowledge_base(results: ExtractResults | None) -> list[KnowledgeReference] | None:
            if not has_knowledge_base:
                return None
            if recognition == "off":
                criteria = KnowledgeExtract(question=(user_text or _FALLBACK_QUESTION,), rewrite=user_text)
            else:
                if results is None or results.knowledge is None:
                    LOGGER.warning("Knowledge search skipped: no search criteria in recognition mode")
                    return None
                criteria = results.knowledge
            if not criteria.question:
                LOGGER.warning("Knowledge search skipped: knowledge block has no question")
                return None
            if criteria.question[0] == _NOT_NEEDED:
                return None
            try:
                return await self._knowledge.process_knowledge_search(
                    ExtractResults(knowledge=criteria), knowledge_base_ids
                )
            except Exception as exc:
                if is_abort_error(exc):
                    raise
                LOGGER.warning("Knowledge base search failed: %s", exc)
                return None

        if will_use_tools:
            on_chunk(Chunk(type=ChunkType.EXTERNAL_TOOL_IN_PROGRESS))

        try:
            extract_results = await extract() if will_use_tools else None
            LOGGER.debug("Extraction results: %s", extract_results)

            web_response: WebSearchResponse | None = None
            references: list[KnowledgeReference] | None = None
            if will_use_tools:
                web_response, references = await asyncio.gather(
                    search_the_web(extract_results),
                    search_knowledge_base(extract_results),
                )

            if web_response is not None:
                self._results.set(f"web-search-{last_user_message.id}", web_response)
            if references is not None:
                self._results.set(f"knowledge-search-{last_user_message.id}", references)

            knowledge = tuple(references) if references is not None else None
            if will_use_tools:
                on_chunk(
                    Chunk(
                        type=ChunkType.EXTERNAL_TOOL_COMPLETE,
                        external_tool=ExternalToolResult(web_search=web_response, knowledge=knowledge),
                    )
                )

            tools = await self._list_mcp_tools(last_user_message)
            return ExternalToolResult(mcp_tools=tuple(tools))
        except Exception as exc:
            if is_abort_error(exc):
                raise
            LOGGER.exception("External tool execution failed")
            if will_use_tools:
                on_chunk(Chunk(type=ChunkType.EXTERNAL_TOOL_COMPLETE, external_tool=ExternalToolResult()))
            return ExternalToolResult()

    # ------------------------------------------------------------------
    # Auxiliary model calls
    # ------------------------------------------------------------------
    async def fetch_translate(
        self,
        content: str,
        assistant: Assistant,
        on_response: ResponseCallback | None = None,
    ) -> str:
        model = self._assistants.get_translate_model()
        if model is None:
            raise ProviderDisabledError("Provider disabled")
        provider = self._assistants.get_provider_by_model(model)
        if not has_api_key(provider):
            raise MissingApiKeyError("No API key configured")
        ai = self._provider_factory(provider)
        try:
            return await ai.translate(content, assistant, on_response)
        except Exception as exc:
            if is_abort_error(exc):
                raise
            LOGGER.warning("Translation failed: %s", exc)
            return ""
        finally:
            await ai.aclose()

    async def fetch_messages_summary(self, messages: Sequence[Message], assistant: Assistant) -> str | None:
        """Name a topic; prefers the topic naming model, then the assistant's, then the default."""

        model = self._assistants.get_top_naming_model() or assistant.model or self._assistants.get_default_model()
        provider = self._assistants.get_provider_by_model(model)
        if not has_api_key(provider):
            self._notify("warning", "The topic naming model has no API key configured")
            return None
        ai = self._provider_factory(provider)
        try:
            text = await ai.summaries(filter_messages(messages), assistant)
        except Exception as exc:
            if is_abort_error(exc):
                raise
            LOGGER.warning("Topic naming failed: %s", exc)
            self._notify("error", "Failed to name the topic")
            return None
        finally:
            await ai.aclose()
        return _QUOTES.sub("", text) if text else None

    async def fetch_search_summary(self, messages: Sequence[Message], assistant: Assistant) -> str | None:
        model = assistant.model or self._assistants.get_default_model()
        provider = self._assistants.get_provider_by_model(model)
        if not has_api_key(provider):
            return None
        ai = self._provider_factory(provider)
        try:
            return await ai.summary_for_search(messages, assistant)
        finally:
            await ai.aclose()

    async def fetch_generate(self, prompt: str, content: str) -> str:
        provider = self._assistants.get_provider_by_model(self._assistants.get_default_model())
        if not has_api_key(provider):
            return ""
        ai = self._provider_factory(provider)
        try:
            return await ai.generate_text(prompt=prompt, content=content)
        except Exception as exc:
            if is_abort_error(exc):
                raise
            LOGGER.warning("Text generation failed: %s", exc)
            return ""
        finally:
            await ai.aclose()

    async def fetch_suggestions(self, messages: Sequence[Message], assistant: Assistant) -> list[Suggestion]:
        model = assistant.model
        if model is None or model.id.endswith("global"):
            return []
        provider = self._assistants.get_assistant_provider(assistant)
        if provider is None:
            return []
        ai = self._provider_factory(provider)
        try:
            return await ai.suggestions(filter_messages(messages), assistant)
        except Exception as exc:
            if is_abort_error(exc):
                raise
            LOGGER.warning("Suggestions failed: %s", exc)
            return []
        finally:
            await ai.aclose()

    async def fetch_models(self, provider: Provider) -> list[Model]:
        ai = self._provider_factory(provider)
        try:
            return await ai.models()
        except Exception as exc:
            if is_abort_error(exc):
                raise
            LOGGER.warning("Listing models of %s failed: %s", provider.id, exc)
            return []
        finally:
            await ai.aclose()

    def check_api_provider(self, provider: Provider) -> CheckResult:
        return check_api_provider(provider, event_bus=self._event_bus)

    async def check_api(self, provider: Provider, model: Model) -> CheckResult:
        return await check_api(provider, model, provider_factory=self._provider_factory, event_bus=self._event_bus)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _create_provider(self, provider: Provider) -> BaseProvider:
        options = self._assistants.get_provider_options()
        return create_provider(provider, mcp_client=self._mcp_client, **options)

    async def _list_mcp_tools(self, message: Message) -> list[MCPTool]:
        servers = list(message.enabled_mcps or ())
        if not servers or self._mcp_client is None:
            return []
        try:
            return await list_enabled_tools(self._mcp_client, servers)
        except Exception as exc:
            if is_abort_error(exc):
                raise
            LOGGER.warning("Error fetching MCP tools: %s", exc)
            return []

    def _notify(self, level: NotificationLevel, text: str, key: str | None = None) -> None:
        _post(self._event_bus, level, text, key)


def has_api_key(provider: Provider | None) -> bool:
    """Local providers need no key; everything else needs a non-empty one."""

    if provider is None:
        return False
    if provider.is_local:
        return True
    return bool(provider.api_key)


def format_api_keys(value: str) -> str:
    """Normalise separators in a pasted list of API keys to plain commas."""

    return value.replace("，", ",").replace(" ", ",").replace(" ", "").replace("\n", ",")


def check_api_provider(provider: Provider, *, event_bus: EventBus | None = None) -> CheckResult:
    """Validate the fields a provider needs before a request can be attempted."""

    error: ProviderConfigError | None = None
    if not provider.is_local and not provider.api_key:
        error = ProviderConfigError("Please enter your API key", field="api_key")
    elif not provider.api_host:
        error = ProviderConfigError("Please enter the API host", field="api_host")
    elif not provider.models:
        error = ProviderConfigError("Please add at least one model", field="models")
    if error is None:
        return CheckResult.ok()
    _post(event_bus, "error", str(error), _API_CHECK_KEY)
    return CheckResult.failed(error)


async def check_api(
    provider: Provider,
    model: Model,
    *,
    provider_factory: ProviderFactory | None = None,
    event_bus: EventBus | None = None,
) -> CheckResult:
    """Validate ``provider`` and send a probe, retrying without streaming on stream errors."""

    validation = check_api_provider(provider, event_bus=event_bus)
    if not validation.valid:
        return validation

    ai = (provider_factory or create_provider)(provider)
    try:
        result = await ai.check(model, stream=True)
        if result.valid and result.error is None:
            return result
        if result.error is not None and "stream" in str(result.error):
            return await ai.check(model, stream=False)
        return result
    finally:
        await ai.aclose()


def _post(bus: EventBus | None, level: NotificationLevel, text: str, key: str | None) -> None:
    if bus is None:
        LOGGER.info("Notification (%s): %s", level, text)
        return
    bus.publish(NotificationPosted(level=level, text=text, key=key))


def _find_last(messages: Sequence[Message], role: str) -> Message | None:
    for message in reversed(messages):
        if message.role == role:
            return message
    return None
