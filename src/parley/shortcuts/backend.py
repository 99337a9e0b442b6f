"""Global accelerator registration."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Protocol, runtime_checkable

import keyboard
from PySide6.QtCore import QCoreApplication, QObject, Qt, Signal, Slot

from .accelerators import to_hotkey

__all__ = ["ShortcutBackend", "KeyboardShortcutBackend", "MainThreadDispatcher"]

LOGGER = logging.getLogger(__name__)

ShortcutCallback = Callable[[], None]


@runtime_checkable
class ShortcutBackend(Protocol):
    """System-wide accelerator registry."""

    def register(self, accelerator: str, callback: ShortcutCallback) -> bool:
        """Bind ``callback`` to ``accelerator``; ``False`` when the OS refused it."""

    def unregister_all(self) -> None:
        ...

    def is_registered(self, accelerator: str) -> bool:
        ...


class MainThreadDispatcher(QObject):
    """Runs callables on the thread that owns the dispatcher.

    Create it on the Qt main thread; :meth:`post` may be called from any
    thread.
    """

    _invoke = Signal(object)

    def __init__(self, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._invoke.connect(self._run, Qt.ConnectionType.QueuedConnection)

    def post(self, callback: ShortcutCallback) -> None:
        self._invoke.emit(callback)

    @Slot(object)
    def _run(self, callback: ShortcutCallback) -> None:
        callback()


class KeyboardShortcutBackend:
    """:class:`ShortcutBackend` over the ``keyboard`` library.

    ``keyboard`` fires hotkeys on its own listener thread. When a Qt
    application exists the callbacks are re-posted to the main thread so they
    can touch widgets.
    """

    def __init__(self, *, keyboard_module: Any = None, dispatcher: MainThreadDispatcher | None = None) -> None:
        self._keyboard = keyboard_module or keyboard
        self._dispatcher = dispatcher
        self._handles: Dict[str, Any] = {}

    def register(self, accelerator: str, callback: ShortcutCallback) -> bool:
        if accelerator in self._handles:
            self._remove(accelerator)
        hotkey = to_hotkey(accelerator)
        dispatcher = self._ensure_dispatcher()

        def _fire() -> None:
            if dispatcher is not None:
                dispatcher.post(lambda: _invoke(accelerator, callback))
            else:
                _invoke(accelerator, callback)

        try:
            handle = self._keyboard.add_hotkey(hotkey, _fire)
        except (ValueError, ImportError, OSError) as exc:
            LOGGER.warning("Unable to register accelerator %s (%s): %s", accelerator, hotkey, exc)
            return False
        self._handles[accelerator] = handle
        LOGGER.debug("Registered accelerator %s as %s", accelerator, hotkey)
        return True

    def unregister_all(self) -> None:
        for accelerator in list(self._handles):
            self._remove(accelerator)

    def is_registered(self, accelerator: str) -> bool:
        return accelerator in self._handles

    def _remove(self, accelerator: str) -> None:
        handle = self._handles.pop(accelerator, None)
        if handle is None:
            return
        try:
            self._keyboard.remove_hotkey(handle)
        except (KeyError, ValueError) as exc:
            LOGGER.debug("Accelerator %s was already removed: %s", accelerator, exc)

    def _ensure_dispatcher(self) -> MainThreadDispatcher | None:
        if self._dispatcher is None and QCoreApplication.instance() is not None:
            self._dispatcher = MainThreadDispatcher()
        return self._dispatcher


def _invoke(accelerator: str, callback: ShortcutCallback) -> None:
    try:
        callback()
    except Exception:
        LOGGER.exception("Shortcut handler for %s raised", accelerator)
