"""Streaming chunk types delivered to ``on_chunk`` callbacks."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping

from .types import ExternalToolResult, MCPTool

__all__ = ["ChunkType", "Chunk", "ChunkCallback", "ToolResponse"]


class ChunkType(str, Enum):
    EXTERNAL_TOOL_IN_PROGRESS = "external_tool_in_progress"
    EXTERNAL_TOOL_COMPLETE = "external_tool_complete"
    LLM_RESPONSE_CREATED = "llm_response_created"
    TEXT_DELTA = "text_delta"
    TEXT_COMPLETE = "text_complete"
    MCP_TOOL_IN_PROGRESS = "mcp_tool_in_progress"
    MCP_TOOL_COMPLETE = "mcp_tool_complete"
    LLM_RESPONSE_COMPLETE = "llm_response_complete"
    ERROR = "error"


@dataclass(slots=True, frozen=True)
class ToolResponse:
    """Status of one MCP tool invocation requested by the model."""

    call_id: str
    tool: MCPTool
    arguments: Mapping[str, Any]
    status: str = "invoking"
    response: Any = None


@dataclass(slots=True, frozen=True)
class Chunk:
    """One unit of progress while a reply is produced.

    Only the attributes relevant to ``type`` are populated: ``text`` for text
    chunks, ``external_tool`` for external tool completion, ``tool_responses``
    for MCP chunks and ``error`` for :attr:`ChunkType.ERROR`.
    """

    type: ChunkType
    text: str | None = None
    external_tool: ExternalToolResult | None = None
    tool_responses: tuple[ToolResponse, ...] = ()
    usage: Mapping[str, int] | None = None
    error: Exception | None = None


ChunkCallback = Callable[[Chunk], None]
