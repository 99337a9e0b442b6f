"""Model capability lookups."""

from __future__ import annotations

import re
from typing import Any, Dict

from .types import Assistant, Model

__all__ = [
    "is_openai_web_search",
    "is_web_search_model",
    "get_openai_web_search_params",
]

_OPENAI_SEARCH_MODEL = re.compile(r"-search-preview(?:-\d{4}-\d{2}-\d{2})?$")
_HUNYUAN_SEARCH_MODELS = frozenset({"hunyuan-pro", "hunyuan-standard", "hunyuan-turbo", "hunyuan-turbos-latest"})
_DASHSCOPE_SEARCH_MODEL = re.compile(r"^qwen-(?:max|plus|turbo)")


def is_openai_web_search(model: Model | None) -> bool:
    """Return ``True`` for OpenAI models that browse the web on their own."""

    if model is None:
        return False
    return bool(_OPENAI_SEARCH_MODEL.search(model.id.lower()))


def is_web_search_model(model: Model | None) -> bool:
    if model is None:
        return False
    model_id = model.id.lower()
    if is_openai_web_search(model):
        return True
    if model.provider == "hunyuan":
        return model_id in _HUNYUAN_SEARCH_MODELS
    if model.provider == "dashscope":
        return bool(_DASHSCOPE_SEARCH_MODEL.match(model_id))
    if model.provider == "openrouter":
        return True
    return False


def get_openai_web_search_params(assistant: Assistant, model: Model) -> Dict[str, Any]:
    """Request parameters that turn on a provider's built-in web search.

    Empty unless the assistant asked for web search and the model supports it.
    """

    if not assistant.enable_web_search or not is_web_search_model(model):
        return {}
    if model.provider == "hunyuan":
        return {"enable_enhancement": True, "citation": True, "search_info": True}
    if model.provider == "dashscope":
        return {"enable_search": True, "search_options": {"forced_search": True}}
    if model.provider == "openrouter":
        return {"plugins": [{"id": "web", "search_prompts": ["Search the web for relevant results."]}]}
    if is_openai_web_search(model):
        return {"web_search_options": {}}
    return {}
