"""Resolves assistants, models and providers from the current settings."""

from __future__ import annotations

import copy
import logging
from typing import Any

from ...services.config_manager import ConfigManager
from ..types import Assistant, Model, Provider

__all__ = ["AssistantService"]

LOGGER = logging.getLogger(__name__)


class AssistantService:
    """Answers "which model and provider" for every chat operation."""

    def __init__(self, config: ConfigManager) -> None:
        self._config = config

    def get_default_assistant(self) -> Assistant:
        """Return a fresh copy of the default assistant; callers may mutate it."""

        assistant = copy.deepcopy(self._config.settings.default_assistant)
        if assistant.model is None:
            assistant.model = self.get_default_model()
        return assistant

    def get_default_model(self) -> Model | None:
        settings = self._config.settings
        if settings.default_model is not None:
            return settings.default_model
        for provider in settings.providers:
            if provider.enabled and provider.models:
                return provider.models[0]
        return None

    def get_top_naming_model(self) -> Model | None:
        return self._config.settings.topic_naming_model

    def get_translate_model(self) -> Model | None:
        return self._config.settings.translate_model

    def get_provider_by_model(self, model: Model | None) -> Provider | None:
        """Return the enabled provider serving ``model``, else the default model's provider."""

        providers = [provider for provider in self._config.settings.providers if provider.enabled]
        if model is not None:
            for provider in providers:
                if provider.id == model.provider:
                    return provider
            LOGGER.debug("No enabled provider %s for model %s", model.provider, model.id)
        default = self._config.settings.default_model
        if default is not None:
            for provider in providers:
                if provider.id == default.provider:
                    return provider
        return providers[0] if providers else None

    def get_assistant_provider(self, assistant: Assistant) -> Provider | None:
        return self.get_provider_by_model(assistant.model or self.get_default_model())

    def get_provider_options(self) -> dict[str, Any]:
        return self._config.get_provider_options()
