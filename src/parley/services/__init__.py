"""Service layer helpers (settings, configuration)."""

from .config_manager import ConfigManager
from .settings import (
    KnowledgeBaseConfig,
    SecretVault,
    Settings,
    SettingsStore,
    ShortcutSetting,
    WebSearchOptions,
    WebSearchProviderConfig,
)

__all__ = [
    "ConfigManager",
    "KnowledgeBaseConfig",
    "SecretVault",
    "Settings",
    "SettingsStore",
    "ShortcutSetting",
    "WebSearchOptions",
    "WebSearchProviderConfig",
]
