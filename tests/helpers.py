"""Shared test fakes.

Import from here instead of redefining provider, client and MCP stubs in
individual test files.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

from parley.ai.chunks import Chunk, ChunkType
from parley.ai.client import AIStreamEvent, ChatCompletionResult
from parley.ai.providers.base import BaseProvider
from parley.ai.types import Assistant, CheckResult, MCPServer, MCPTool, Message, Model, Provider, Suggestion


class ChunkRecorder:
    """Callable ``on_chunk`` target that keeps every chunk it receives."""

    def __init__(self) -> None:
        self.chunks: list[Chunk] = []

    def __call__(self, chunk: Chunk) -> None:
        self.chunks.append(chunk)

    @property
    def types(self) -> list[ChunkType]:
        return [chunk.type for chunk in self.chunks]

    def text(self) -> str:
        return "".join(chunk.text or "" for chunk in self.chunks if chunk.type == ChunkType.TEXT_DELTA)


class FakeAIClient:
    """Scripted stand-in for :class:`parley.ai.client.AIClient`.

    ``streams`` is consumed one list of events per ``stream_chat`` call and
    ``replies`` one result per ``complete_chat`` call.
    """

    def __init__(
        self,
        *,
        streams: Iterable[Sequence[AIStreamEvent]] = (),
        replies: Iterable[str | ChatCompletionResult | Exception] = (),
        models: Sequence[str] = (),
    ) -> None:
        self._streams = list(streams)
        self._replies = list(replies)
        self._models = list(models)
        self.stream_calls: list[dict[str, Any]] = []
        self.complete_calls: list[dict[str, Any]] = []
        self.closed = False
        self.finished_streams = 0

    async def stream_chat(self, messages: Iterable[Mapping[str, Any]], **kwargs: Any):
        self.stream_calls.append({"messages": [dict(message) for message in messages], **kwargs})
        events = self._streams.pop(0) if self._streams else []
        try:
            for event in events:
                if isinstance(event, Exception):
                    raise event
                yield event
        finally:
            self.finished_streams += 1

    async def complete_chat(self, messages: Iterable[Mapping[str, Any]], **kwargs: Any) -> ChatCompletionResult:
        self.complete_calls.append({"messages": [dict(message) for message in messages], **kwargs})
        reply = self._replies.pop(0) if self._replies else ""
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, ChatCompletionResult):
            return reply
        return ChatCompletionResult(text=reply)

    async def list_models(self, *, force_refresh: bool = False) -> list[str]:
        return list(self._models)

    async def aclose(self) -> None:
        self.closed = True


class FakeProvider(BaseProvider):
    """Provider whose replies are configured per method."""

    def __init__(
        self,
        provider: Provider,
        *,
        summary_for_search: str | Exception | None = None,
        summaries: str | Exception | None = None,
        translate: str | Exception = "",
        check_results: Sequence[CheckResult] = (),
        completion_text: str = "answer",
    ) -> None:
        super().__init__(provider)
        self.summary_for_search_reply = summary_for_search
        self.summaries_reply = summaries
        self.translate_reply = translate
        self.check_results = list(check_results)
        self.completion_text = completion_text
        self.calls: list[tuple[str, Any]] = []
        self.closed = False

    async def completions(self, *, messages, assistant, on_chunk, mcp_tools=(), on_filter_messages=None) -> None:
        self.calls.append(("completions", {"messages": list(messages), "mcp_tools": tuple(mcp_tools)}))
        on_chunk(Chunk(type=ChunkType.LLM_RESPONSE_CREATED))
        on_chunk(Chunk(type=ChunkType.TEXT_DELTA, text=self.completion_text))
        on_chunk(Chunk(type=ChunkType.LLM_RESPONSE_COMPLETE))

    async def translate(self, content, assistant, on_response=None) -> str:
        self.calls.append(("translate", content))
        return _reply(self.translate_reply)

    async def summaries(self, messages, assistant):
        self.calls.append(("summaries", list(messages)))
        return _reply(self.summaries_reply)

    async def summary_for_search(self, messages, assistant):
        self.calls.append(("summary_for_search", {"messages": list(messages), "prompt": assistant.prompt}))
        return _reply(self.summary_for_search_reply)

    async def suggestions(self, messages, assistant) -> list[Suggestion]:
        self.calls.append(("suggestions", list(messages)))
        return [Suggestion(content="Tell me more")]

    async def generate_text(self, *, prompt: str, content: str) -> str:
        self.calls.append(("generate_text", (prompt, content)))
        return f"{prompt}:{content}"

    async def models(self) -> list[Model]:
        return list(self.provider.models)

    async def check(self, model: Model, stream: bool = False) -> CheckResult:
        self.calls.append(("check", stream))
        return self.check_results.pop(0) if self.check_results else CheckResult.ok()

    async def aclose(self) -> None:
        self.closed = True

    def called(self, name: str) -> list[Any]:
        return [payload for call, payload in self.calls if call == name]


class FakeMCPClient:
    def __init__(self, tools: Mapping[str, Sequence[MCPTool]] | None = None, *, fail: bool = False) -> None:
        self._tools = dict(tools or {})
        self._fail = fail
        self.invocations: list[tuple[MCPTool, Mapping[str, Any]]] = []

    async def list_tools(self, server: MCPServer) -> Sequence[MCPTool]:
        if self._fail:
            raise ConnectionError(f"{server.id} unreachable")
        return list(self._tools.get(server.id, ()))

    async def call_tool(self, tool: MCPTool, arguments: Mapping[str, Any]) -> Any:
        self.invocations.append((tool, dict(arguments)))
        if tool.name == "explode":
            raise RuntimeError("tool crashed")
        return {"tool": tool.name, "echo": dict(arguments)}


def make_provider(provider_id: str = "openai", *, api_key: str = "sk-test", models: Sequence[str] = ("gpt-4o-mini",)) -> Provider:
    return Provider(
        id=provider_id,
        name=provider_id.title(),
        api_key=api_key,
        api_host="https://api.example.com/v1",
        models=[Model(id=model_id, provider=provider_id) for model_id in models],
    )


def make_assistant(model: Model | None = None, **kwargs: Any) -> Assistant:
    return Assistant(name="Test", model=model, **kwargs)


def conversation(*turns: str) -> list[Message]:
    """Alternate user/assistant messages; each assistant reply answers the previous question."""

    messages: list[Message] = []
    for index, text in enumerate(turns):
        if index % 2 == 0:
            messages.append(Message.user(text))
        else:
            messages.append(Message.assistant(text, ask_id=messages[-1].id))
    return messages


def _reply(value: Any) -> Any:
    if isinstance(value, Exception):
        raise value
    return value
