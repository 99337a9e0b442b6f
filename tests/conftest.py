"""Shared pytest fixtures."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from parley.events import EventBus
from parley.services.config_manager import ConfigManager
from parley.services.settings import SecretVault, Settings, SettingsStore


@pytest.fixture
def settings_store(tmp_path: Path) -> SettingsStore:
    return SettingsStore(tmp_path / "settings.json", vault=SecretVault(key_path=tmp_path / "settings.key"))


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def make_config(settings_store: SettingsStore, event_bus: EventBus):
    """Build a :class:`ConfigManager` around ``Settings(**overrides)``."""

    def factory(**overrides) -> ConfigManager:
        return ConfigManager(settings_store, Settings(**overrides), event_bus=event_bus)

    return factory


@pytest.fixture(autouse=True)
def _clear_parley_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("PARLEY_"):
            monkeypatch.delenv(name, raising=False)
