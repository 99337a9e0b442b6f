"""Global keyboard shortcuts bound to application windows."""

from .accelerators import format_shortcut_key, to_accelerator, to_hotkey
from .backend import KeyboardShortcutBackend, ShortcutBackend
from .service import ShortcutService
from .windows import QtShortcutWindow, ShortcutWindow, WindowService

__all__ = [
    "format_shortcut_key",
    "to_accelerator",
    "to_hotkey",
    "KeyboardShortcutBackend",
    "ShortcutBackend",
    "ShortcutService",
    "QtShortcutWindow",
    "ShortcutWindow",
    "WindowService",
]
