"""Tests for accelerator conversion, the keyboard backend and the shortcut service."""

from __future__ import annotations

import os
from collections import defaultdict
from typing import Any, Callable

import pytest

from parley.services.settings import ShortcutSetting
from parley.shortcuts.accelerators import format_shortcut_key, to_accelerator, to_hotkey
from parley.shortcuts.backend import KeyboardShortcutBackend
from parley.shortcuts.service import ShortcutService
from parley.shortcuts.windows import QtShortcutWindow, WindowService


# ---------------------------------------------------------------------------
# Accelerators
# ---------------------------------------------------------------------------


def test_to_accelerator_maps_recorded_names() -> None:
    assert to_accelerator(["Command", "Shift", "Slash"]) == "CommandOrControl+Shift+/"
    assert to_accelerator(["Ctrl", "ArrowUp"]) == "Control+Up"
    assert to_accelerator("Command+Equal") == "CommandOrControl+="


def test_to_accelerator_passes_unknown_keys_through() -> None:
    assert to_accelerator(["Alt", "F5"]) == "Alt+F5"


def test_format_shortcut_key_joins_parts() -> None:
    assert format_shortcut_key(["CommandOrControl", "E"]) == "CommandOrControl+E"


@pytest.mark.parametrize(
    ("accelerator", "platform", "expected"),
    [
        ("CommandOrControl+E", "linux", "ctrl+e"),
        ("CommandOrControl+E", "darwin", "command+e"),
        ("CommandOrControl+numadd", "win32", "ctrl+plus"),
        ("Control+Shift+Escape", "linux", "ctrl+shift+esc"),
        ("CommandOrControl++", "linux", "ctrl+plus"),
        ("Alt+Return", "linux", "alt+enter"),
    ],
)
def test_to_hotkey(accelerator: str, platform: str, expected: str) -> None:
    assert to_hotkey(accelerator, platform=platform) == expected


# ---------------------------------------------------------------------------
# Keyboard backend
# ---------------------------------------------------------------------------


class _FakeKeyboard:
    def __init__(self, *, reject: set[str] | None = None) -> None:
        self.hotkeys: dict[int, tuple[str, Callable[[], None]]] = {}
        self._reject = reject or set()
        self._next = 0

    def add_hotkey(self, hotkey: str, callback: Callable[[], None]) -> int:
        if hotkey in self._reject:
            raise ValueError(f"cannot map {hotkey}")
        self._next += 1
        self.hotkeys[self._next] = (hotkey, callback)
        return self._next

    def remove_hotkey(self, handle: int) -> None:
        del self.hotkeys[handle]


@pytest.fixture
def no_dispatcher(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(KeyboardShortcutBackend, "_ensure_dispatcher", lambda self: None)


def test_backend_registers_and_fires(no_dispatcher: None) -> None:
    fake = _FakeKeyboard()
    backend = KeyboardShortcutBackend(keyboard_module=fake)
    fired: list[str] = []

    assert backend.register("CommandOrControl+E", lambda: fired.append("mini")) is True
    assert backend.is_registered("CommandOrControl+E")
    hotkey, callback = next(iter(fake.hotkeys.values()))
    callback()

    assert hotkey in {"ctrl+e", "command+e"}
    assert fired == ["mini"]


def test_backend_replaces_existing_binding(no_dispatcher: None) -> None:
    fake = _FakeKeyboard()
    backend = KeyboardShortcutBackend(keyboard_module=fake)

    backend.register("Alt+F1", lambda: None)
    backend.register("Alt+F1", lambda: None)

    assert len(fake.hotkeys) == 1


def test_backend_reports_rejected_accelerators(no_dispatcher: None) -> None:
    backend = KeyboardShortcutBackend(keyboard_module=_FakeKeyboard(reject={"alt+f2"}))

    assert backend.register("Alt+F2", lambda: None) is False
    assert not backend.is_registered("Alt+F2")


def test_backend_unregister_all(no_dispatcher: None) -> None:
    fake = _FakeKeyboard()
    backend = KeyboardShortcutBackend(keyboard_module=fake)
    backend.register("Alt+F1", lambda: None)
    backend.register("Alt+F3", lambda: None)

    backend.unregister_all()

    assert fake.hotkeys == {}
    assert not backend.is_registered("Alt+F1")


def test_backend_logs_handler_errors(no_dispatcher: None, caplog: pytest.LogCaptureFixture) -> None:
    fake = _FakeKeyboard()
    backend = KeyboardShortcutBackend(keyboard_module=fake)

    def explode() -> None:
        raise RuntimeError("handler failed")

    backend.register("Alt+F4", explode)
    _, callback = next(iter(fake.hotkeys.values()))
    with caplog.at_level("ERROR"):
        callback()

    assert "Shortcut handler for Alt+F4 raised" in caplog.text


# ---------------------------------------------------------------------------
# Shortcut service
# ---------------------------------------------------------------------------


class _FakeBackend:
    def __init__(self, *, refuse: set[str] | None = None) -> None:
        self.bindings: dict[str, Callable[[], None]] = {}
        self._refuse = refuse or set()
        self.unregister_calls = 0

    def register(self, accelerator: str, callback: Callable[[], None]) -> bool:
        if accelerator in self._refuse:
            return False
        self.bindings[accelerator] = callback
        return True

    def unregister_all(self) -> None:
        self.unregister_calls += 1
        self.bindings.clear()

    def is_registered(self, accelerator: str) -> bool:
        return accelerator in self.bindings


class _FakeWindow:
    def __init__(self, *, focused: bool = False) -> None:
        self.focused = focused
        self.destroyed = False
        self.zoom: float | None = None
        self.handlers: dict[str, list[Callable[[], None]]] = defaultdict(list)
        self.once_handlers: dict[str, list[Callable[[], None]]] = defaultdict(list)

    def is_destroyed(self) -> bool:
        return self.destroyed

    def is_focused(self) -> bool:
        return self.focused

    def on(self, event: str, handler: Callable[[], None]) -> None:
        self.handlers[event].append(handler)

    def off(self, event: str, handler: Callable[[], None]) -> None:
        if handler in self.handlers[event]:
            self.handlers[event].remove(handler)

    def once(self, event: str, handler: Callable[[], None]) -> None:
        self.once_handlers[event].append(handler)

    def emit(self, event: str) -> None:
        for handler in list(self.handlers[event]) + self.once_handlers.pop(event, []):
            handler()

    def set_zoom_factor(self, factor: float) -> None:
        self.zoom = factor


class _FakeWindows:
    def __init__(self) -> None:
        self.toggled: list[str] = []

    def toggle_main_window(self) -> None:
        self.toggled.append("main")

    def toggle_mini_window(self) -> None:
        self.toggled.append("mini")


def _service(make_config: Any, backend: _FakeBackend, **settings: Any) -> tuple[ShortcutService, Any, _FakeWindows]:
    config = make_config(**settings)
    windows = _FakeWindows()
    return ShortcutService(config, windows, backend), config, windows  # type: ignore[arg-type]


def test_focused_window_registers_zoom_shortcuts(make_config: Any) -> None:
    backend = _FakeBackend()
    service, _, _ = _service(make_config, backend)

    service.register_shortcuts(_FakeWindow(focused=True))

    assert set(backend.bindings) == {
        "CommandOrControl+=",
        "CommandOrControl+numadd",
        "CommandOrControl+-",
        "CommandOrControl+numsub",
        "CommandOrControl+0",
    }


def test_focus_and_blur_follow_window(make_config: Any) -> None:
    backend = _FakeBackend()
    service, _, _ = _service(make_config, backend)
    window = _FakeWindow()

    service.register_shortcuts(window)
    assert backend.bindings == {}

    window.emit("focus")
    assert "CommandOrControl+0" in backend.bindings

    window.emit("blur")
    assert backend.bindings == {}


def test_zoom_handlers_update_window_and_config(make_config: Any) -> None:
    backend = _FakeBackend()
    service, config, _ = _service(make_config, backend, zoom_factor=1.0)
    window = _FakeWindow(focused=True)
    service.register_shortcuts(window)

    backend.bindings["CommandOrControl+="]()
    backend.bindings["CommandOrControl+numadd"]()
    assert window.zoom == pytest.approx(1.2)
    assert config.get_zoom_factor() == pytest.approx(1.2)

    backend.bindings["CommandOrControl+-"]()
    assert config.get_zoom_factor() == pytest.approx(1.1)

    backend.bindings["CommandOrControl+0"]()
    assert window.zoom == 1.0
    assert config.get_zoom_factor() == 1.0


def test_zoom_stays_within_bounds(make_config: Any) -> None:
    backend = _FakeBackend()
    service, config, _ = _service(make_config, backend, zoom_factor=5.0)
    window = _FakeWindow(focused=True)
    service.register_shortcuts(window)

    backend.bindings["CommandOrControl+="]()

    assert window.zoom is None
    assert config.get_zoom_factor() == 5.0


def test_universal_shortcuts_survive_blur(make_config: Any) -> None:
    backend = _FakeBackend()
    shortcuts = [
        ShortcutSetting("show_app", ["Command", "Shift", "P"]),
        ShortcutSetting("mini_window", ["Command", "E"]),
        ShortcutSetting("zoom_in", ["CommandOrControl", "="]),
    ]
    service, _, windows = _service(make_config, backend, shortcuts=shortcuts, enable_quick_assistant=True)
    window = _FakeWindow(focused=True)
    service.register_shortcuts(window)

    window.emit("blur")

    assert set(backend.bindings) == {"CommandOrControl+Shift+P", "CommandOrControl+E"}
    assert service.show_app_accelerator == "Command+Shift+P"
    backend.bindings["CommandOrControl+Shift+P"]()
    backend.bindings["CommandOrControl+E"]()
    assert windows.toggled == ["main", "mini"]


def test_mini_window_requires_quick_assistant(make_config: Any) -> None:
    backend = _FakeBackend()
    shortcuts = [ShortcutSetting("mini_window", ["Command", "E"])]
    service, _, _ = _service(make_config, backend, shortcuts=shortcuts, enable_quick_assistant=False)

    service.register_shortcuts(_FakeWindow(focused=True))

    assert backend.bindings == {}
    assert service.mini_window_accelerator is None


def test_disabled_and_empty_shortcuts_are_skipped(make_config: Any) -> None:
    backend = _FakeBackend()
    shortcuts = [
        ShortcutSetting("show_app", []),
        ShortcutSetting("zoom_in", ["CommandOrControl", "="], enabled=False),
        ShortcutSetting("unknown_action", ["Alt", "X"]),
    ]
    service, _, _ = _service(make_config, backend, shortcuts=shortcuts)

    service.register_shortcuts(_FakeWindow(focused=True))

    assert backend.bindings == {}


def test_ready_to_show_registers_universal_only_in_tray_mode(make_config: Any) -> None:
    backend = _FakeBackend()
    shortcuts = [
        ShortcutSetting("show_app", ["Alt", "Space"]),
        ShortcutSetting("zoom_reset", ["CommandOrControl", "0"]),
    ]
    service, _, _ = _service(make_config, backend, shortcuts=shortcuts, launch_to_tray=True)
    window = _FakeWindow()
    service.register_shortcuts(window)

    window.emit("ready-to-show")

    assert set(backend.bindings) == {"Alt+Space"}


def test_ready_to_show_without_tray_registers_nothing(make_config: Any) -> None:
    backend = _FakeBackend()
    service, _, _ = _service(make_config, backend, shortcuts=[ShortcutSetting("show_app", ["Alt", "Space"])])
    window = _FakeWindow()
    service.register_shortcuts(window)

    window.emit("ready-to-show")

    assert backend.bindings == {}


def test_destroyed_window_is_ignored(make_config: Any) -> None:
    backend = _FakeBackend()
    service, _, _ = _service(make_config, backend)
    window = _FakeWindow()
    service.register_shortcuts(window)
    window.destroyed = True

    window.emit("focus")

    assert backend.bindings == {}


def test_refused_accelerator_is_logged(make_config: Any, caplog: pytest.LogCaptureFixture) -> None:
    backend = _FakeBackend(refuse={"CommandOrControl+0"})
    service, _, _ = _service(make_config, backend, shortcuts=[ShortcutSetting("zoom_reset", ["CommandOrControl", "0"])])

    with caplog.at_level("WARNING"):
        service.register_shortcuts(_FakeWindow(focused=True))

    assert "Failed to register shortcut zoom_reset" in caplog.text


def test_trigger_runs_handler_for_bound_window(make_config: Any) -> None:
    backend = _FakeBackend()
    service, config, _ = _service(make_config, backend)
    service.register_shortcuts(_FakeWindow(focused=True))
    config.set_zoom_factor(2.0)

    backend.bindings["CommandOrControl+0"]()

    assert config.get_zoom_factor() == 1.0


def test_unregister_all_detaches_windows(make_config: Any) -> None:
    backend = _FakeBackend()
    shortcuts = [ShortcutSetting("show_app", ["Alt", "Space"])]
    service, _, _ = _service(make_config, backend, shortcuts=shortcuts)
    window = _FakeWindow(focused=True)
    service.register_shortcuts(window)

    service.unregister_all_shortcuts()
    window.emit("focus")

    assert backend.bindings == {}
    assert service.show_app_accelerator is None
    assert window.handlers["focus"] == []


def test_handlers_attached_once_per_window(make_config: Any) -> None:
    backend = _FakeBackend()
    service, _, _ = _service(make_config, backend)
    window = _FakeWindow()

    service.register_shortcuts(window)
    service.register_shortcuts(window)

    assert len(window.handlers["focus"]) == 1
    assert len(window.handlers["blur"]) == 1


# ---------------------------------------------------------------------------
# Window service
# ---------------------------------------------------------------------------


class _FakeWidget:
    def __init__(self, *, visible: bool = False, active: bool = False, minimized: bool = False) -> None:
        self.visible = visible
        self.active = active
        self.minimized = minimized
        self.calls: list[str] = []

    def isVisible(self) -> bool:
        return self.visible

    def isActiveWindow(self) -> bool:
        return self.active

    def isMinimized(self) -> bool:
        return self.minimized

    def hide(self) -> None:
        self.calls.append("hide")

    def show(self) -> None:
        self.calls.append("show")

    def showNormal(self) -> None:
        self.calls.append("showNormal")

    def raise_(self) -> None:
        self.calls.append("raise")

    def activateWindow(self) -> None:
        self.calls.append("activate")


def test_toggle_hides_visible_active_window() -> None:
    main = _FakeWidget(visible=True, active=True)

    WindowService(main).toggle_main_window()  # type: ignore[arg-type]

    assert main.calls == ["hide"]


def test_toggle_presents_background_window() -> None:
    mini = _FakeWidget(visible=True, active=False)
    minimized = _FakeWidget(minimized=True)
    windows = WindowService(minimized, mini)  # type: ignore[arg-type]

    windows.toggle_mini_window()
    windows.toggle_main_window()

    assert mini.calls == ["show", "raise", "activate"]
    assert minimized.calls == ["showNormal", "raise", "activate"]


def test_toggle_without_window_is_noop() -> None:
    WindowService().toggle_mini_window()


# ---------------------------------------------------------------------------
# Qt window adapter
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def qapp() -> Any:
    os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")
    from PySide6.QtWidgets import QApplication

    return QApplication.instance() or QApplication([])


def test_ready_to_show_fires_once_for_hidden_window(qapp: Any) -> None:
    from PySide6.QtWidgets import QWidget

    widget = QWidget()
    window = QtShortcutWindow(widget)
    seen: list[str] = []
    window.on("ready-to-show", lambda: seen.append("on"))
    window.once("ready-to-show", lambda: seen.append("once"))

    qapp.processEvents()
    assert seen == ["on", "once"]
    assert not widget.isVisible()

    widget.show()
    qapp.processEvents()
    widget.hide()

    assert seen == ["on", "once"]


def test_activation_events_map_to_focus_and_blur(qapp: Any) -> None:
    from PySide6.QtCore import QEvent
    from PySide6.QtWidgets import QApplication, QWidget

    widget = QWidget()
    window = QtShortcutWindow(widget)
    seen: list[str] = []
    window.on("focus", lambda: seen.append("focus"))
    window.on("blur", lambda: seen.append("blur"))

    QApplication.sendEvent(widget, QEvent(QEvent.Type.WindowActivate))
    QApplication.sendEvent(widget, QEvent(QEvent.Type.WindowDeactivate))

    assert seen == ["focus", "blur"]


def test_destroyed_widget_drops_handlers(qapp: Any) -> None:
    from PySide6.QtWidgets import QWidget
    from shiboken6 import delete

    widget = QWidget()
    window = QtShortcutWindow(widget)
    seen: list[str] = []
    window.on("focus", lambda: seen.append("focus"))
    window.once("ready-to-show", lambda: seen.append("ready"))

    delete(widget)
    window.emit("focus")
    qapp.processEvents()
    window.set_zoom_factor(2.0)

    assert window.is_destroyed() is True
    assert window.is_focused() is False
    assert seen == []


def test_zoom_scales_font_without_native_zoom(qapp: Any) -> None:
    from PySide6.QtWidgets import QWidget

    widget = QWidget()
    font = widget.font()
    font.setPointSizeF(10.0)
    widget.setFont(font)
    window = QtShortcutWindow(widget)

    window.set_zoom_factor(1.5)
    assert widget.font().pointSizeF() == pytest.approx(15.0)

    window.set_zoom_factor(1.0)
    assert widget.font().pointSizeF() == pytest.approx(10.0)


def test_zoom_prefers_native_zoom_factor(qapp: Any) -> None:
    from PySide6.QtWidgets import QWidget

    class _ZoomableWidget(QWidget):
        def __init__(self) -> None:
            super().__init__()
            self.zoom_factors: list[float] = []

        def setZoomFactor(self, factor: float) -> None:  # noqa: N802 - Qt naming
            self.zoom_factors.append(factor)

    widget = _ZoomableWidget()
    QtShortcutWindow(widget).set_zoom_factor(2.0)

    assert widget.zoom_factors == [2.0]


def test_tray_launch_registers_universal_shortcuts_for_hidden_window(qapp: Any, make_config: Any) -> None:
    from PySide6.QtWidgets import QWidget

    backend = _FakeBackend()
    service, _, _ = _service(
        make_config,
        backend,
        launch_to_tray=True,
        shortcuts=[
            ShortcutSetting("show_app", ["Command", "Shift", "P"]),
            ShortcutSetting("zoom_reset", ["CommandOrControl", "0"]),
        ],
    )
    widget = QWidget()
    service.register_shortcuts(QtShortcutWindow(widget))
    assert backend.bindings == {}

    qapp.processEvents()

    assert set(backend.bindings) == {"CommandOrControl+Shift+P"}
    assert service.show_app_accelerator is not None
