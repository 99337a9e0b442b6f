"""Async client for OpenAI-compatible chat endpoints."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Mapping

import httpx
from openai import APIConnectionError, AsyncOpenAI, InternalServerError, RateLimitError
from openai.types.chat import ChatCompletionMessageParam, ChatCompletionToolParam
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .errors import ProviderError

__all__ = ["AIClient", "AIStreamEvent", "ClientSettings", "ChatCompletionResult"]

LOGGER = logging.getLogger(__name__)

# Failures worth another attempt: the request never produced a usable answer.
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    APIConnectionError,
    RateLimitError,
    InternalServerError,
    httpx.TimeoutException,
)

_USAGE_FIELDS = ("prompt_tokens", "completion_tokens", "total_tokens")

# Keyword arguments the SDK names on `chat.completions.create`. Anything else
# (`enable_search`, `plugins`, ...) is provider-specific and goes in the body.
_SDK_REQUEST_PARAMS = frozenset(
    {
        "frequency_penalty",
        "logit_bias",
        "logprobs",
        "metadata",
        "n",
        "parallel_tool_calls",
        "presence_penalty",
        "reasoning_effort",
        "response_format",
        "seed",
        "stop",
        "store",
        "stream_options",
        "tool_choice",
        "top_logprobs",
        "top_p",
        "user",
        "web_search_options",
        "extra_headers",
        "extra_query",
        "extra_body",
        "timeout",
    }
)


@dataclass(slots=True)
class ClientSettings:
    """Connection and retry settings for one provider endpoint."""

    base_url: str
    api_key: str
    model: str
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0


@dataclass(slots=True)
class AIStreamEvent:
    """Normalized representation of a streaming delta."""

    type: str
    content: str | None = None
    tool_name: str | None = None
    tool_index: int | None = None
    tool_arguments: str | None = None
    tool_call_id: str | None = None


@dataclass(slots=True)
class ChatCompletionResult:
    """Text and usage of a non-streamed completion."""

    text: str
    finish_reason: str | None = None
    usage: Dict[str, int] | None = None


def _text_event(attribute: str) -> Callable[[str, Any], AIStreamEvent | None]:
    def convert(event_type: str, event: Any) -> AIStreamEvent | None:
        value = getattr(event, attribute, None)
        if event_type.endswith(".delta") and not value:
            return None
        return AIStreamEvent(type=event_type, content=None if value is None else str(value))

    return convert


def _tool_call_event(event_type: str, event: Any) -> AIStreamEvent:
    return AIStreamEvent(
        type=event_type,
        tool_name=getattr(event, "name", None),
        tool_index=getattr(event, "index", None),
        tool_arguments=getattr(event, "arguments", None),
        tool_call_id=getattr(event, "id", None) or getattr(event, "tool_call_id", None),
    )


# SDK stream event type -> converter. Anything else (raw chunks, argument
# deltas, logprobs) is dropped.
_EVENT_CONVERTERS: Dict[str, Callable[[str, Any], AIStreamEvent | None]] = {
    "content.delta": _text_event("delta"),
    "content.done": _text_event("content"),
    "refusal.delta": _text_event("delta"),
    "refusal.done": _text_event("refusal"),
    "tool_calls.function.arguments.done": _tool_call_event,
}


class AIClient:
    """Chat completions with retry semantics around :class:`openai.AsyncOpenAI`.

    One instance talks to one endpoint. The SDK's own retries are disabled;
    tenacity retries :data:`TRANSIENT_ERRORS` with exponential backoff.
    """

    def __init__(self, settings: ClientSettings, *, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._client = client or AsyncOpenAI(
            # Local servers accept any key but the SDK insists on one.
            api_key=settings.api_key or "not-needed",
            base_url=settings.base_url or None,
            timeout=settings.request_timeout,
            max_retries=0,
        )
        self._models: List[str] | None = None
        self._models_lock = asyncio.Lock()

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def stream_chat(
        self,
        messages: Iterable[Mapping[str, Any]],
        *,
        model: str | None = None,
        tools: Iterable[ChatCompletionToolParam] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **extra_params: Any,
    ) -> AsyncIterator[AIStreamEvent]:
        """Stream a chat completion, yielding normalized events.

        Retries only cover establishing the stream; once events were yielded a
        failure surfaces as :class:`ProviderError`.
        """

        request = self._request(messages, model, temperature, max_tokens, extra_params)
        tool_list = list(tools or ())
        if tool_list:
            request["tools"] = tool_list
        LOGGER.debug("Streaming %s with %d message(s)", request["model"], len(request["messages"]))

        yielded = False
        async for attempt in self._retrying():
            with attempt:
                try:
                    async with self._client.chat.completions.stream(**request) as stream:
                        async for raw in stream:
                            event = _normalize(raw)
                            if event is None:
                                continue
                            yielded = True
                            yield event
                except TRANSIENT_ERRORS as exc:
                    if yielded:
                        raise ProviderError("Stream interrupted after partial output") from exc
                    LOGGER.debug("Stream attempt %d failed: %s", attempt.retry_state.attempt_number, exc)
                    raise

    async def complete_chat(
        self,
        messages: Iterable[Mapping[str, Any]],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **extra_params: Any,
    ) -> ChatCompletionResult:
        request = self._request(messages, model, temperature, max_tokens, extra_params)
        LOGGER.debug("Requesting completion from %s", request["model"])

        async for attempt in self._retrying():
            with attempt:
                response = await self._client.chat.completions.create(**request)

        if not response.choices:
            return ChatCompletionResult(text="")
        choice = response.choices[0]
        raw_usage = getattr(response, "usage", None)
        usage = None
        if raw_usage is not None:
            usage = {name: int(getattr(raw_usage, name, 0) or 0) for name in _USAGE_FIELDS}
        return ChatCompletionResult(
            text=getattr(choice.message, "content", None) or "",
            finish_reason=getattr(choice, "finish_reason", None),
            usage=usage,
        )

    async def list_models(self, *, force_refresh: bool = False) -> List[str]:
        """Return the model identifiers the endpoint advertises (cached)."""

        async with self._models_lock:
            if self._models is None or force_refresh:
                page = await self._client.models.list()
                self._models = [item.id for item in page.data if getattr(item, "id", None)]
            return list(self._models)

    async def aclose(self) -> None:
        close = getattr(self._client, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result

    def _request(
        self,
        messages: Iterable[Mapping[str, Any]],
        model: str | None,
        temperature: float | None,
        max_tokens: int | None,
        extra_params: Mapping[str, Any],
    ) -> Dict[str, Any]:
        chat: List[ChatCompletionMessageParam] = [dict(message) for message in messages]  # type: ignore[misc]
        if not chat:
            raise ValueError("At least one message is required to start a chat")
        request: Dict[str, Any] = {"model": model or self._settings.model, "messages": chat}
        if temperature is not None:
            request["temperature"] = temperature
        if max_tokens is not None:
            request["max_tokens"] = max_tokens
        body: Dict[str, Any] = {}
        for name, value in extra_params.items():
            if name in _SDK_REQUEST_PARAMS:
                request[name] = value
            else:
                body[name] = value
        if body:
            request["extra_body"] = {**request.get("extra_body", {}), **body}
        return request

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(multiplier=self._settings.retry_min_seconds, max=self._settings.retry_max_seconds),
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
        )


def _normalize(event: Any) -> AIStreamEvent | None:
    event_type = getattr(event, "type", None)
    converter = _EVENT_CONVERTERS.get(event_type) if event_type else None
    return converter(event_type, event) if converter else None
