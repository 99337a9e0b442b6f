"""Application entry point: CLI parsing, logging, settings and the Qt runtime."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Mapping, Sequence, TextIO

from .ai.services.api import ApiService
from .ai.services.assistants import AssistantService
from .ai.services.knowledge import HttpKnowledgeBackend, KnowledgeService
from .ai.services.web_search import WebSearchService
from .events import EventBus
from .services.config_manager import ConfigManager
from .services.settings import Settings, SettingsStore, env_override_names, parse_setting_value, redact_secret
from .utils import logging as logging_utils

LOGGER = logging.getLogger(__name__)

_FLAG_WORDS = frozenset({"1", "true", "yes", "on", "debug"})
_SECRET_SECTIONS = ("providers", "web_search_providers")


@dataclass(slots=True)
class QtRuntime:
    """The QApplication and the qasync loop driving it."""

    app: Any
    loop: asyncio.AbstractEventLoop


@dataclass(slots=True)
class AppServices:
    """Long-lived services wired together at startup."""

    config: ConfigManager
    event_bus: EventBus
    assistants: AssistantService
    web_search: WebSearchService
    knowledge: KnowledgeService
    api: ApiService
    closers: list[Callable[[], Awaitable[None]]] = field(default_factory=list)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="parley", description="Parley desktop chat assistant.")
    parser.add_argument(
        "--settings",
        "--settings-path",
        dest="settings_path",
        type=lambda value: Path(value).expanduser(),
        metavar="PATH",
        help="Settings file to use instead of ~/.parley/settings.json.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        action="append",
        default=[],
        metavar="FIELD=VALUE",
        help="Override one setting for this run; repeat as needed.",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings with API keys masked, then exit.",
    )
    return parser


def parse_overrides(items: Sequence[str]) -> Dict[str, Any]:
    """Turn ``FIELD=VALUE`` strings into typed settings overrides."""

    overrides: Dict[str, Any] = {}
    for item in items:
        name, separator, raw = item.partition("=")
        name = name.strip()
        if not separator or not name:
            raise ValueError(f"'{item}' is not of the form FIELD=VALUE")
        overrides[name] = parse_setting_value(name, raw)
    return overrides


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    path = logging_utils.setup_logging(logging.DEBUG if debug else logging.INFO, force=force)
    LOGGER.debug("Writing logs to %s", path)
    _route_qt_messages()


def load_settings(
    path: Path | None = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load settings, falling back to defaults when the store cannot be read."""

    store = store or SettingsStore(path)
    try:
        return store.load(overrides=overrides)
    except (OSError, ValueError, TypeError) as exc:
        LOGGER.warning("Using default settings; %s could not be loaded: %s", store.path, exc)
        return Settings()


def build_services(config: ConfigManager, event_bus: EventBus) -> AppServices:
    settings = config.settings
    assistants = AssistantService(config)
    web_search = WebSearchService(config)
    backend = HttpKnowledgeBackend(settings.knowledge_service_url, timeout=settings.request_timeout)
    knowledge = KnowledgeService(config, backend)
    api = ApiService(assistants, web_search, knowledge, event_bus=event_bus)
    return AppServices(
        config=config,
        event_bus=event_bus,
        assistants=assistants,
        web_search=web_search,
        knowledge=knowledge,
        api=api,
        closers=[web_search.aclose, backend.aclose],
    )


def create_qapp(settings: Settings) -> QtRuntime:
    """Create (or reuse) the QApplication and install a qasync event loop."""

    from PySide6.QtWidgets import QApplication
    from qasync import QEventLoop

    app: Any = QApplication.instance() or QApplication(sys.argv)
    app.setApplicationName("Parley")
    app.setApplicationDisplayName("Parley")
    # In tray mode closing the last window must leave the tray icon alive.
    app.setQuitOnLastWindowClosed(not settings.launch_to_tray)

    loop = QEventLoop(app)
    asyncio.set_event_loop(loop)
    app.aboutToQuit.connect(loop.stop)
    return QtRuntime(app=app, loop=loop)


def dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    """Write the effective settings as JSON with API keys masked."""

    document = asdict(settings)
    for section in _SECRET_SECTIONS:
        for entry in document[section]:
            entry["api_key"] = redact_secret(entry.get("api_key", ""))
    report = {
        "settings": document,
        "meta": {
            "path": str(store.path),
            "secret_backend": store.vault.strategy,
            "cli_overrides": sorted(overrides),
            "environment_variables": [name for name in env_override_names() if name in os.environ],
        },
    }
    out = stream or sys.stdout
    out.write(json.dumps(report, indent=2, default=str) + "\n")


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point invoked by the ``parley`` console script."""

    parser = build_arg_parser()
    args, qt_args = parser.parse_known_args(argv)
    # Qt parses its own options (-platform, -style ...) from sys.argv.
    sys.argv = [sys.argv[0] if sys.argv else "parley", *qt_args]

    debug = _env_flag("PARLEY_DEBUG")
    configure_logging(debug)
    try:
        overrides = parse_overrides(args.overrides)
    except ValueError as exc:
        parser.error(f"invalid --set: {exc}")

    settings_path = args.settings_path or _env_path("PARLEY_SETTINGS_PATH")
    store = SettingsStore(settings_path)
    settings = load_settings(store=store, overrides=overrides)
    if args.dump_settings:
        dump_settings(settings, store, overrides=overrides)
        return
    if settings.debug_logging and not debug:
        configure_logging(True, force=True)
    _run(settings, store)


def _run(settings: Settings, store: SettingsStore) -> None:
    runtime = create_qapp(settings)
    event_bus: EventBus = EventBus()
    services = build_services(ConfigManager(store, settings, event_bus=event_bus), event_bus)
    shortcuts = _launch_windows(services, runtime)

    try:
        runtime.loop.run_forever()
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown path
        LOGGER.info("Interrupted, shutting down")
    finally:
        shortcuts.unregister_all_shortcuts()
        _shutdown(runtime.loop, services)


def _launch_windows(services: AppServices, runtime: QtRuntime) -> Any:
    from PySide6.QtGui import QAction
    from PySide6.QtWidgets import QMenu, QStyle, QSystemTrayIcon

    from .shortcuts import KeyboardShortcutBackend, QtShortcutWindow, ShortcutService, WindowService
    from .ui import ChatContext, ChatWindow

    settings = services.config.settings
    context = ChatContext(api=services.api, assistants=services.assistants, event_bus=services.event_bus)
    main_window = ChatWindow(context)
    mini_window = ChatWindow(context, title="Parley Quick Assistant", compact=True)
    windows = WindowService(main_window, mini_window)

    shortcuts = ShortcutService(services.config, windows, KeyboardShortcutBackend())
    for window in (main_window, mini_window):
        adapter = QtShortcutWindow(window)
        adapter.set_zoom_factor(settings.zoom_factor)
        shortcuts.register_shortcuts(adapter)

    if not (settings.launch_to_tray and QSystemTrayIcon.isSystemTrayAvailable()):
        main_window.show()
        return shortcuts

    main_window.set_quit_on_close(False)
    icon = runtime.app.style().standardIcon(QStyle.StandardPixmap.SP_ComputerIcon)
    tray = QSystemTrayIcon(icon, runtime.app)
    menu = QMenu()
    show_action = QAction("Show Parley", menu)
    show_action.triggered.connect(windows.show_main_window)
    quit_action = QAction("Quit", menu)
    quit_action.triggered.connect(runtime.app.quit)
    menu.addAction(show_action)
    menu.addAction(quit_action)
    tray.setContextMenu(menu)
    tray.activated.connect(lambda _reason: windows.toggle_main_window())
    tray.show()
    # Keep the tray and its menu referenced for the lifetime of the app.
    runtime.app.setProperty("parleyTray", tray)
    runtime.app.setProperty("parleyTrayMenu", menu)
    LOGGER.info("Started in the system tray")
    return shortcuts


def _shutdown(loop: asyncio.AbstractEventLoop, services: AppServices) -> None:
    """Close service clients, cancel leftover tasks and close ``loop``."""

    if loop.is_closed():
        return
    try:
        loop.run_until_complete(_close_services(services))
        _cancel_pending(loop)
    except RuntimeError as exc:
        LOGGER.debug("Event loop could not be drained: %s", exc)
    finally:
        loop.close()


async def _close_services(services: AppServices) -> None:
    for close in services.closers:
        try:
            await close()
        except (OSError, RuntimeError) as exc:
            LOGGER.debug("Closing %s failed: %s", getattr(close, "__qualname__", close), exc)


def _cancel_pending(loop: asyncio.AbstractEventLoop) -> None:
    pending = [task for task in asyncio.all_tasks(loop) if not task.done()]
    if pending:
        LOGGER.debug("Cancelling %d pending task(s)", len(pending))
        for task in pending:
            task.cancel()
        loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
    loop.run_until_complete(loop.shutdown_asyncgens())


def _route_qt_messages() -> None:
    """Send Qt's own diagnostics through the ``qt`` logger."""

    from PySide6.QtCore import QtMsgType, qInstallMessageHandler

    levels = {
        QtMsgType.QtDebugMsg: logging.DEBUG,
        QtMsgType.QtInfoMsg: logging.INFO,
        QtMsgType.QtWarningMsg: logging.WARNING,
        QtMsgType.QtCriticalMsg: logging.ERROR,
        QtMsgType.QtFatalMsg: logging.CRITICAL,
    }
    qt_logger = logging.getLogger("qt")

    def forward(kind: Any, _context: Any, message: str) -> None:
        qt_logger.log(levels.get(kind, logging.WARNING), message)

    qInstallMessageHandler(forward)


def _env_flag(name: str, *, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in _FLAG_WORDS


def _env_path(name: str) -> Path | None:
    raw = os.environ.get(name, "").strip()
    return Path(raw).expanduser() if raw else None
