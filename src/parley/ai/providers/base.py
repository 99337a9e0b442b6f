"""Provider abstraction the chat services talk to."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Sequence

from ..chunks import ChunkCallback
from ..types import Assistant, CheckResult, Message, MCPTool, Model, Provider, Suggestion

__all__ = ["BaseProvider", "FilterMessagesCallback", "ResponseCallback"]

FilterMessagesCallback = Callable[[Sequence[Message]], None]
ResponseCallback = Callable[[str, bool], None]


class BaseProvider(ABC):
    """One configured model provider.

    Implementations own the transport; callers only deal in :class:`Message`,
    :class:`Assistant` and :class:`~parley.ai.chunks.Chunk` objects.
    """

    def __init__(self, provider: Provider) -> None:
        self._provider = provider

    @property
    def provider(self) -> Provider:
        return self._provider

    @abstractmethod
    async def completions(
        self,
        *,
        messages: Sequence[Message],
        assistant: Assistant,
        on_chunk: ChunkCallback,
        mcp_tools: Sequence[MCPTool] = (),
        on_filter_messages: FilterMessagesCallback | None = None,
    ) -> None:
        """Produce the assistant's reply to ``messages``, streaming chunks to ``on_chunk``."""

    @abstractmethod
    async def translate(
        self,
        content: str,
        assistant: Assistant,
        on_response: ResponseCallback | None = None,
    ) -> str:
        """Translate ``content``; ``on_response`` receives partial text and a completion flag."""

    @abstractmethod
    async def summaries(self, messages: Sequence[Message], assistant: Assistant) -> str | None:
        """Return a short topic title for the conversation."""

    @abstractmethod
    async def summary_for_search(self, messages: Sequence[Message], assistant: Assistant) -> str | None:
        """Run the search-intent extraction prompt held in ``assistant.prompt``."""

    @abstractmethod
    async def suggestions(self, messages: Sequence[Message], assistant: Assistant) -> list[Suggestion]:
        ...

    @abstractmethod
    async def generate_text(self, *, prompt: str, content: str) -> str:
        ...

    @abstractmethod
    async def models(self) -> list[Model]:
        ...

    @abstractmethod
    async def check(self, model: Model, stream: bool = False) -> CheckResult:
        """Send a tiny request to verify the credentials and model."""

    async def aclose(self) -> None:
        """Release network resources held by the provider."""

    def default_model(self) -> Model | None:
        return self._provider.models[0] if self._provider.models else None

    @staticmethod
    def context_window(messages: Sequence[Message], context_count: int) -> list[Message]:
        """Return the last ``context_count`` exchanges plus the pending user message."""

        if context_count <= 0:
            return list(messages[-1:])
        return list(messages[-(context_count + 1):])
