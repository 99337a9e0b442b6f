"""Runtime view over the persisted settings."""

from __future__ import annotations

import logging
from dataclasses import fields, replace
from typing import Any

from ..ai.types import Provider
from ..events import EventBus, SettingsChanged
from .settings import Settings, SettingsStore, ShortcutSetting

__all__ = ["ConfigManager"]

LOGGER = logging.getLogger(__name__)


class ConfigManager:
    """Reads and updates :class:`Settings`, persisting every change.

    Services hold a reference to the manager rather than a settings snapshot
    so they always observe the latest values.
    """

    def __init__(
        self,
        store: SettingsStore,
        settings: Settings | None = None,
        *,
        event_bus: EventBus | None = None,
    ) -> None:
        self._store = store
        self._settings = settings if settings is not None else store.load()
        self._event_bus = event_bus

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def store(self) -> SettingsStore:
        return self._store

    def get_shortcuts(self) -> list[ShortcutSetting]:
        return list(self._settings.shortcuts)

    def get_zoom_factor(self) -> float:
        return self._settings.zoom_factor

    def set_zoom_factor(self, factor: float) -> None:
        self.update(zoom_factor=float(factor))

    def get_launch_to_tray(self) -> bool:
        return self._settings.launch_to_tray

    def get_enable_quick_assistant(self) -> bool:
        return self._settings.enable_quick_assistant

    def get_providers(self) -> list[Provider]:
        return list(self._settings.providers)

    def get_provider_options(self) -> dict[str, Any]:
        """Keyword options every provider instance is created with."""

        return {
            "request_timeout": self._settings.request_timeout,
            "max_retries": self._settings.max_retries,
            "max_tool_iterations": self._settings.max_tool_iterations,
        }

    def update(self, **changes: Any) -> Settings:
        """Apply ``changes``, save, and announce the changed field names."""

        allowed = {item.name for item in fields(Settings)}
        unknown = sorted(set(changes) - allowed)
        if unknown:
            raise KeyError(f"Unknown settings field(s): {', '.join(unknown)}")
        changed = tuple(
            name for name, value in changes.items() if getattr(self._settings, name) != value
        )
        if not changed:
            return self._settings
        self._settings = replace(self._settings, **{name: changes[name] for name in changed})
        try:
            self._store.save(self._settings)
        except OSError as exc:
            LOGGER.warning("Unable to persist settings change %s: %s", changed, exc)
        if self._event_bus is not None:
            self._event_bus.publish(SettingsChanged(fields=changed))
        return self._settings
