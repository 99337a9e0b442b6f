"""Chat services: message filtering, search, knowledge and orchestration.

The orchestration entry point lives in :mod:`parley.ai.services.api`; it is
not re-exported here because it depends on :mod:`parley.ai.providers`, which
in turn uses the MCP helpers of this package.
"""

from .mcp import MCPClient, list_enabled_tools, tool_to_param
from .messages import (
    filter_context_messages,
    filter_messages,
    filter_useful_messages,
    get_knowledge_base_ids,
    get_main_text_content,
)
from .result_store import ResultStore

__all__ = [
    "MCPClient",
    "list_enabled_tools",
    "tool_to_param",
    "filter_context_messages",
    "filter_messages",
    "filter_useful_messages",
    "get_knowledge_base_ids",
    "get_main_text_content",
    "ResultStore",
]
