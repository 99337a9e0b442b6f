"""Global shortcuts bound to the application's windows.

Window-specific shortcuts (zoom) are registered while a window has focus and
released when it loses focus. The universal ``show_app`` and ``mini_window``
shortcuts stay registered so the app can be summoned from the background.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional, Tuple

from ..services.config_manager import ConfigManager
from ..services.settings import ShortcutSetting
from .accelerators import format_shortcut_key, to_accelerator
from .backend import ShortcutBackend
from .windows import ShortcutWindow, WindowService

__all__ = ["ShortcutService", "UNIVERSAL_SHORTCUTS", "ZOOM_STEP", "MIN_ZOOM", "MAX_ZOOM"]

LOGGER = logging.getLogger(__name__)

UNIVERSAL_SHORTCUTS = frozenset({"show_app", "mini_window"})
ZOOM_STEP = 0.1
MIN_ZOOM = 0.1
MAX_ZOOM = 5.0

ShortcutHandler = Callable[[ShortcutWindow], None]

_FIXED_ACCELERATORS: Dict[str, Tuple[str, ...]] = {
    "zoom_in": ("CommandOrControl+=", "CommandOrControl+numadd"),
    "zoom_out": ("CommandOrControl+-", "CommandOrControl+numsub"),
    "zoom_reset": ("CommandOrControl+0",),
}


class ShortcutService:
    def __init__(
        self,
        config: ConfigManager,
        windows: WindowService,
        backend: ShortcutBackend,
    ) -> None:
        self._config = config
        self._windows = windows
        self._backend = backend
        self._show_app_accelerator: Optional[str] = None
        self._mini_window_accelerator: Optional[str] = None
        self._window_handlers: Dict[ShortcutWindow, Tuple[Callable[[], None], Callable[[], None]]] = {}

    @property
    def show_app_accelerator(self) -> str | None:
        return self._show_app_accelerator

    @property
    def mini_window_accelerator(self) -> str | None:
        return self._mini_window_accelerator

    def get_shortcut_handler(self, key: str) -> ShortcutHandler | None:
        if key == "zoom_in":
            return lambda window: self._zoom(window, ZOOM_STEP)
        if key == "zoom_out":
            return lambda window: self._zoom(window, -ZOOM_STEP)
        if key == "zoom_reset":
            return self._reset_zoom
        if key == "show_app":
            return lambda _window: self._windows.toggle_main_window()
        if key == "mini_window":
            return lambda _window: self._windows.toggle_mini_window()
        return None

    def register_shortcuts(self, window: ShortcutWindow) -> None:
        """Wire ``window`` so its shortcuts follow its focus."""

        def register(only_universal: bool = False) -> None:
            if window.is_destroyed():
                return
            shortcuts = self._config.get_shortcuts()
            if not shortcuts:
                return
            for shortcut in shortcuts:
                try:
                    self._register_one(window, shortcut, only_universal)
                except Exception:
                    LOGGER.exception("Failed to register shortcut %s", shortcut.key)

        def unregister() -> None:
            if window.is_destroyed():
                return
            try:
                self._backend.unregister_all()
                for key, remembered in (
                    ("show_app", self._show_app_accelerator),
                    ("mini_window", self._mini_window_accelerator),
                ):
                    if remembered:
                        self._bind(window, key, to_accelerator(remembered))
            except Exception:
                LOGGER.exception("Failed to unregister shortcuts")

        def on_ready_to_show() -> None:
            if self._config.get_launch_to_tray():
                register(only_universal=True)

        def on_focus() -> None:
            register()

        window.once("ready-to-show", on_ready_to_show)

        if window not in self._window_handlers:
            window.on("focus", on_focus)
            window.on("blur", unregister)
            self._window_handlers[window] = (on_focus, unregister)

        if not window.is_destroyed() and window.is_focused():
            register()

    def unregister_all_shortcuts(self) -> None:
        try:
            self._show_app_accelerator = None
            self._mini_window_accelerator = None
            for window, (on_focus, on_blur) in self._window_handlers.items():
                window.off("focus", on_focus)
                window.off("blur", on_blur)
            self._window_handlers.clear()
            self._backend.unregister_all()
        except Exception:
            LOGGER.exception("Failed to unregister all shortcuts")

    def _register_one(self, window: ShortcutWindow, shortcut: ShortcutSetting, only_universal: bool) -> None:
        if not shortcut.shortcut or not shortcut.enabled:
            return
        if only_universal and shortcut.key not in UNIVERSAL_SHORTCUTS:
            return
        if self.get_shortcut_handler(shortcut.key) is None:
            return

        if shortcut.key == "show_app":
            self._show_app_accelerator = format_shortcut_key(shortcut.shortcut)
        elif shortcut.key == "mini_window":
            if not self._config.get_enable_quick_assistant():
                return
            self._mini_window_accelerator = format_shortcut_key(shortcut.shortcut)
        elif shortcut.key in _FIXED_ACCELERATORS:
            for accelerator in _FIXED_ACCELERATORS[shortcut.key]:
                self._bind(window, shortcut.key, accelerator)
            return

        self._bind(window, shortcut.key, to_accelerator(shortcut.shortcut))

    def _bind(self, window: ShortcutWindow, key: str, accelerator: str) -> None:
        handler = self.get_shortcut_handler(key)
        if handler is None:
            return

        if not self._backend.register(accelerator, lambda: handler(window)):
            LOGGER.warning("Failed to register shortcut %s", key)

    def _zoom(self, window: ShortcutWindow, delta: float) -> None:
        new_zoom = round(self._config.get_zoom_factor() + delta, 1)
        if MIN_ZOOM <= new_zoom <= MAX_ZOOM:
            window.set_zoom_factor(new_zoom)
            self._config.set_zoom_factor(new_zoom)

    def _reset_zoom(self, window: ShortcutWindow) -> None:
        window.set_zoom_factor(1.0)
        self._config.set_zoom_factor(1.0)
