"""Window adapters used by the shortcut service."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable, DefaultDict, Literal, Protocol, runtime_checkable

from PySide6.QtCore import QEvent, QObject, QTimer
from PySide6.QtWidgets import QWidget

__all__ = ["ShortcutWindow", "WindowEvent", "QtShortcutWindow", "WindowService"]

LOGGER = logging.getLogger(__name__)

WindowEvent = Literal["focus", "blur", "ready-to-show"]
WindowHandler = Callable[[], None]


@runtime_checkable
class ShortcutWindow(Protocol):
    """The part of a top-level window the shortcut service relies on."""

    def is_destroyed(self) -> bool:
        ...

    def is_focused(self) -> bool:
        ...

    def on(self, event: WindowEvent, handler: WindowHandler) -> None:
        ...

    def off(self, event: WindowEvent, handler: WindowHandler) -> None:
        ...

    def once(self, event: WindowEvent, handler: WindowHandler) -> None:
        ...

    def set_zoom_factor(self, factor: float) -> None:
        ...


class QtShortcutWindow(QObject):
    """Adapts a :class:`QWidget` to :class:`ShortcutWindow`.

    An event filter on the widget translates activation changes into
    ``focus``/``blur``. ``ready-to-show`` fires once, on the first event loop
    pass after construction or the first show, whichever comes first. Windows
    that start hidden in the tray therefore still announce themselves.
    """

    def __init__(self, widget: QWidget) -> None:
        # Unparented: QWidget deletes its children before emitting ``destroyed``.
        super().__init__()
        self._widget = widget
        self._destroyed = False
        self._ready = False
        self._handlers: DefaultDict[str, list[WindowHandler]] = defaultdict(list)
        self._once: DefaultDict[str, list[WindowHandler]] = defaultdict(list)
        self._base_point_size = widget.font().pointSizeF()
        widget.destroyed.connect(self._mark_destroyed)
        widget.installEventFilter(self)
        QTimer.singleShot(0, self._announce_ready)

    @property
    def widget(self) -> QWidget:
        return self._widget

    def is_destroyed(self) -> bool:
        return self._destroyed

    def is_focused(self) -> bool:
        if self._destroyed:
            return False
        return self._widget.isActiveWindow()

    def on(self, event: WindowEvent, handler: WindowHandler) -> None:
        self._handlers[event].append(handler)

    def off(self, event: WindowEvent, handler: WindowHandler) -> None:
        for registry in (self._handlers, self._once):
            handlers = registry.get(event)
            if handlers and handler in handlers:
                handlers.remove(handler)

    def once(self, event: WindowEvent, handler: WindowHandler) -> None:
        self._once[event].append(handler)

    def set_zoom_factor(self, factor: float) -> None:
        if self._destroyed:
            return
        set_zoom = getattr(self._widget, "setZoomFactor", None)
        if callable(set_zoom):
            set_zoom(factor)
            return
        if self._base_point_size > 0:
            font = self._widget.font()
            font.setPointSizeF(self._base_point_size * factor)
            self._widget.setFont(font)

    def emit(self, event: WindowEvent) -> None:
        handlers = list(self._handlers.get(event, ()))
        once_handlers = self._once.pop(event, [])
        for handler in handlers + once_handlers:
            try:
                handler()
            except Exception:
                LOGGER.exception("Window %s handler raised", event)

    def eventFilter(self, obj: Any, event: Any) -> bool:  # type: ignore[override]
        if obj is self._widget:
            event_type = event.type()
            if event_type == QEvent.Type.WindowActivate:
                self.emit("focus")
            elif event_type == QEvent.Type.WindowDeactivate:
                self.emit("blur")
            elif event_type == QEvent.Type.Show:
                self._announce_ready()
        return False

    def _announce_ready(self) -> None:
        if self._ready or self._destroyed:
            return
        self._ready = True
        self.emit("ready-to-show")

    def _mark_destroyed(self, *_args: Any) -> None:
        self._destroyed = True
        self._handlers.clear()
        self._once.clear()


class WindowService:
    """Owns the main and quick assistant windows and toggles their visibility."""

    def __init__(self, main_window: QWidget | None = None, mini_window: QWidget | None = None) -> None:
        self.main_window = main_window
        self.mini_window = mini_window

    def toggle_main_window(self) -> None:
        self._toggle(self.main_window, "main")

    def toggle_mini_window(self) -> None:
        self._toggle(self.mini_window, "mini")

    def show_main_window(self) -> None:
        if self.main_window is not None:
            _present(self.main_window)

    @staticmethod
    def _toggle(window: QWidget | None, label: str) -> None:
        if window is None:
            LOGGER.debug("No %s window to toggle", label)
            return
        if window.isVisible() and window.isActiveWindow():
            window.hide()
            return
        _present(window)


def _present(window: QWidget) -> None:
    if window.isMinimized():
        window.showNormal()
    else:
        window.show()
    window.raise_()
    window.activateWindow()
