"""Domain types shared by the chat orchestration services.

Mutable dataclasses are used for configuration objects (providers,
assistants) that the settings UI edits in place; the search payloads that
flow through a single chat turn are frozen.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal, Mapping

__all__ = [
    "Model",
    "Provider",
    "AssistantSettings",
    "Assistant",
    "Message",
    "MessageRole",
    "KnowledgeRecognition",
    "WebsearchExtract",
    "KnowledgeExtract",
    "ExtractResults",
    "WebSearchResult",
    "WebSearchProviderResponse",
    "WebSearchSource",
    "WebSearchResponse",
    "KnowledgeReference",
    "MCPServer",
    "MCPTool",
    "ExternalToolResult",
    "Suggestion",
    "CheckResult",
    "LOCAL_PROVIDER_IDS",
]

MessageRole = Literal["system", "user", "assistant"]
KnowledgeRecognition = Literal["on", "off"]

LOCAL_PROVIDER_IDS: frozenset[str] = frozenset({"ollama", "lmstudio"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


# -----------------------------------------------------------------------------
# Providers and models
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class Model:
    """A model offered by a provider."""

    id: str
    provider: str
    name: str = ""
    group: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            self.name = self.id

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> Model:
        return cls(
            id=str(payload.get("id", "")),
            provider=str(payload.get("provider", "")),
            name=str(payload.get("name") or ""),
            group=str(payload.get("group") or ""),
        )


@dataclass(slots=True)
class Provider:
    """Connection details for an OpenAI-compatible model provider."""

    id: str
    type: str = "openai"
    name: str = ""
    api_key: str = ""
    api_host: str = ""
    models: list[Model] = field(default_factory=list)
    enabled: bool = True

    @property
    def is_local(self) -> bool:
        return self.id in LOCAL_PROVIDER_IDS

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> Provider:
        models = [
            item if isinstance(item, Model) else Model.from_mapping(item)
            for item in payload.get("models") or ()
            if isinstance(item, (Model, Mapping))
        ]
        return cls(
            id=str(payload.get("id", "")),
            type=str(payload.get("type") or "openai"),
            name=str(payload.get("name") or ""),
            api_key=str(payload.get("api_key") or ""),
            api_host=str(payload.get("api_host") or ""),
            models=models,
            enabled=bool(payload.get("enabled", True)),
        )


# -----------------------------------------------------------------------------
# Assistants and messages
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class AssistantSettings:
    """Per-assistant generation settings."""

    temperature: float = 0.7
    context_count: int = 6
    max_tokens: int | None = None
    stream_output: bool = True


@dataclass(slots=True)
class Assistant:
    """A configured persona: system prompt, model and tool preferences.

    Attributes:
        knowledge_recognition: ``"on"`` lets the extraction model decide the
            knowledge-base query; ``"off"`` searches with the user's text.
        web_search_provider_id: Search provider used for this assistant, if any.
        enable_web_search: Request the model's built-in search where supported.
    """

    id: str = field(default_factory=_new_id)
    name: str = "Default Assistant"
    prompt: str = ""
    model: Model | None = None
    knowledge_recognition: KnowledgeRecognition | None = None
    web_search_provider_id: str | None = None
    enable_web_search: bool = False
    settings: AssistantSettings = field(default_factory=AssistantSettings)


@dataclass(slots=True)
class Message:
    """A chat message as stored in a topic.

    ``type="clear"`` marks a context divider inserted by "Clear Context"; the
    marker itself carries no content and is never sent to a model.
    """

    role: MessageRole
    content: str = ""
    id: str = field(default_factory=_new_id)
    type: Literal["text", "clear"] = "text"
    ask_id: str | None = None
    useful: bool | None = None
    knowledge_base_ids: list[str] | None = None
    enabled_mcps: list[MCPServer] | None = None
    created_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def user(cls, content: str, **kwargs: Any) -> Message:
        return cls(role="user", content=content, **kwargs)

    @classmethod
    def assistant(cls, content: str, **kwargs: Any) -> Message:
        return cls(role="assistant", content=content, **kwargs)

    @classmethod
    def clear_marker(cls) -> Message:
        return cls(role="user", type="clear")


# -----------------------------------------------------------------------------
# Extraction and search payloads
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class WebsearchExtract:
    question: tuple[str, ...]
    links: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.question, tuple):
            object.__setattr__(self, "question", tuple(self.question))
        if not isinstance(self.links, tuple):
            object.__setattr__(self, "links", tuple(self.links))


@dataclass(slots=True, frozen=True)
class KnowledgeExtract:
    question: tuple[str, ...]
    rewrite: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.question, tuple):
            object.__setattr__(self, "question", tuple(self.question))


@dataclass(slots=True, frozen=True)
class ExtractResults:
    """Search intents extracted from the latest user turn."""

    websearch: WebsearchExtract | None = None
    knowledge: KnowledgeExtract | None = None


@dataclass(slots=True, frozen=True)
class WebSearchResult:
    title: str
    content: str
    url: str


@dataclass(slots=True, frozen=True)
class WebSearchProviderResponse:
    query: str = ""
    results: tuple[WebSearchResult, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.results, tuple):
            object.__setattr__(self, "results", tuple(self.results))


WebSearchSource = Literal["websearch", "openai", "hunyuan", "dashscope", "openrouter"]


@dataclass(slots=True, frozen=True)
class WebSearchResponse:
    results: WebSearchProviderResponse
    source: WebSearchSource = "websearch"


@dataclass(slots=True, frozen=True)
class KnowledgeReference:
    """A knowledge-base passage cited by a reply; ``id`` is 1-based."""

    id: int
    content: str
    source_url: str = ""
    type: Literal["file", "url", "note"] = "file"


# -----------------------------------------------------------------------------
# MCP tools
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class MCPServer:
    """An MCP server the user enabled for a message."""

    id: str
    name: str = ""
    command: str | None = None
    args: list[str] = field(default_factory=list)
    base_url: str | None = None
    disabled_tools: list[str] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class MCPTool:
    name: str
    server_id: str
    server_name: str = ""
    description: str = ""
    input_schema: Mapping[str, Any] = field(default_factory=dict)

    @property
    def function_name(self) -> str:
        """Name exposed to the model; unique across servers."""

        return f"{self.server_id}__{self.name}"


@dataclass(slots=True, frozen=True)
class ExternalToolResult:
    web_search: WebSearchResponse | None = None
    knowledge: tuple[KnowledgeReference, ...] | None = None
    mcp_tools: tuple[MCPTool, ...] = ()


# -----------------------------------------------------------------------------
# Misc results
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class Suggestion:
    content: str


@dataclass(slots=True, frozen=True)
class CheckResult:
    valid: bool
    error: Exception | None = None

    @classmethod
    def ok(cls) -> CheckResult:
        return cls(valid=True, error=None)

    @classmethod
    def failed(cls, error: Exception) -> CheckResult:
        return cls(valid=False, error=error)
