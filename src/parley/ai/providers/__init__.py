"""Model provider implementations."""

from __future__ import annotations

from typing import Any

from ..errors import ProviderConfigError
from ..types import Provider
from .base import BaseProvider
from .openai_provider import OpenAIProvider

__all__ = ["BaseProvider", "OpenAIProvider", "create_provider"]

# Provider types that speak the OpenAI chat completions protocol.
_OPENAI_COMPATIBLE_TYPES = frozenset({"openai", "openai-compatible", "ollama", "lmstudio", "azure-openai"})


def create_provider(provider: Provider, **options: Any) -> BaseProvider:
    """Instantiate the provider implementation matching ``provider.type``."""

    provider_type = (provider.type or "openai").lower()
    if provider_type in _OPENAI_COMPATIBLE_TYPES:
        return OpenAIProvider(provider, **options)
    raise ProviderConfigError(f"Unsupported provider type: {provider.type}", field="type")
