"""User settings: the dataclasses, their JSON file and the override layers.

Settings live in ``~/.parley/settings.json``. Provider and web search API
keys are stored Fernet-encrypted under ``api_key_ciphertext``; plaintext keys
found in older files are re-encrypted on load. Overrides apply in the order
file, then ``--set`` on the command line, then ``PARLEY_<FIELD>`` variables.
"""

from __future__ import annotations

import functools
import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, is_dataclass, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, get_args, get_origin, get_type_hints

from cryptography.fernet import Fernet, InvalidToken

from ..ai.types import Assistant, AssistantSettings, Model, Provider

__all__ = [
    "Settings",
    "SettingsStore",
    "SecretVault",
    "ShortcutSetting",
    "WebSearchProviderConfig",
    "WebSearchOptions",
    "KnowledgeBaseConfig",
    "apply_overrides",
    "default_shortcuts",
    "env_override_names",
    "env_overrides",
    "parse_setting_value",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_SETTINGS_DIR = Path.home() / ".parley"
SETTINGS_VERSION = 1
ENV_PREFIX = "PARLEY_"

# Scalar fields that may be overridden as PARLEY_<FIELD NAME IN UPPER CASE>.
ENV_OVERRIDABLE: tuple[str, ...] = (
    "knowledge_service_url",
    "request_timeout",
    "max_retries",
    "max_tool_iterations",
    "zoom_factor",
    "launch_to_tray",
    "enable_quick_assistant",
    "debug_logging",
)

_CIPHERTEXT_FIELD = "api_key_ciphertext"
_SECRET_SECTIONS = ("providers", "web_search_providers")
_TRUE_WORDS = frozenset({"1", "true", "yes", "on"})
_FALSE_WORDS = frozenset({"0", "false", "no", "off"})
_NULL_WORDS = frozenset({"", "none", "null"})


@dataclass(slots=True)
class ShortcutSetting:
    """A user-configurable shortcut.

    Attributes:
        key: Action name (``zoom_in``, ``show_app``, ``mini_window`` ...).
        shortcut: Key names as recorded from keyboard events.
        enabled: Disabled shortcuts are never registered.
    """

    key: str
    shortcut: list[str] = field(default_factory=list)
    enabled: bool = True


def default_shortcuts() -> list[ShortcutSetting]:
    return [
        ShortcutSetting("zoom_in", ["CommandOrControl", "="]),
        ShortcutSetting("zoom_out", ["CommandOrControl", "-"]),
        ShortcutSetting("zoom_reset", ["CommandOrControl", "0"]),
        ShortcutSetting("show_app", []),
        ShortcutSetting("mini_window", ["CommandOrControl", "E"], enabled=False),
    ]


@dataclass(slots=True)
class WebSearchProviderConfig:
    """A configured web search engine (``tavily`` or ``searxng``)."""

    id: str
    name: str = ""
    api_key: str = ""
    api_host: str = ""
    engines: list[str] = field(default_factory=list)
    basic_auth_username: str = ""
    basic_auth_password: str = ""


@dataclass(slots=True)
class WebSearchOptions:
    max_results: int = 5
    exclude_domains: list[str] = field(default_factory=list)
    search_with_time: bool = True


@dataclass(slots=True)
class KnowledgeBaseConfig:
    """A knowledge base hosted by the external knowledge service.

    Attributes:
        threshold: Minimum relevance score; lower-scored passages are dropped.
        document_count: Passages kept per base after ranking.
        rerank_model: When set, results are reranked against the rewritten query.
    """

    id: str
    name: str = ""
    threshold: float | None = None
    document_count: int | None = None
    rerank_model: str | None = None


@dataclass(slots=True)
class Settings:
    """User-configurable settings persisted between sessions."""

    providers: list[Provider] = field(default_factory=list)
    default_model: Model | None = None
    topic_naming_model: Model | None = None
    translate_model: Model | None = None
    default_assistant: Assistant = field(default_factory=Assistant)
    shortcuts: list[ShortcutSetting] = field(default_factory=default_shortcuts)
    zoom_factor: float = 1.0
    launch_to_tray: bool = False
    enable_quick_assistant: bool = False
    web_search_providers: list[WebSearchProviderConfig] = field(default_factory=list)
    web_search: WebSearchOptions = field(default_factory=WebSearchOptions)
    knowledge_bases: list[KnowledgeBaseConfig] = field(default_factory=list)
    knowledge_service_url: str = ""
    request_timeout: float = 90.0
    max_retries: int = 3
    max_tool_iterations: int = 8
    debug_logging: bool = False


class SecretVault:
    """Fernet encryption for stored API keys.

    The key file is generated on first use and kept next to the settings
    (mode 0600 on POSIX). Tokens are written as ``fernet:<token>``.
    """

    scheme = "fernet"

    def __init__(self, *, key_path: Path | None = None) -> None:
        self.key_path = key_path or DEFAULT_SETTINGS_DIR / "settings.key"
        self._cipher: Fernet | None = None

    @property
    def strategy(self) -> str:
        return self.scheme

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        token = self._fernet().encrypt(secret.encode("utf-8"))
        return f"{self.scheme}:{token.decode('ascii')}"

    def decrypt(self, token: str | None) -> str:
        """Return the plaintext for ``token``; raises ``ValueError`` when it cannot be read."""

        if not token:
            return ""
        scheme, separator, body = token.partition(":")
        if not separator:
            scheme, body = self.scheme, token
        if scheme != self.scheme:
            raise ValueError(f"Unsupported secret scheme {scheme!r}")
        try:
            return self._fernet().decrypt(body.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Secret was encrypted with a different key") from exc

    def _fernet(self) -> Fernet:
        if self._cipher is None:
            try:
                key = self.key_path.read_bytes().strip()
            except FileNotFoundError:
                key = Fernet.generate_key()
                _write_atomically(self.key_path, key, private=True)
                LOGGER.info("Generated settings encryption key at %s", self.key_path)
            self._cipher = Fernet(key)
        return self._cipher


class SettingsStore:
    """Reads and writes :class:`Settings` as JSON, sealing API keys on the way out."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or DEFAULT_SETTINGS_DIR / "settings.json"
        self._vault = vault or SecretVault(key_path=self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        return self._path

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Return the stored settings with CLI ``overrides`` and environment overrides applied.

        A missing or unreadable file yields defaults. Files written by an older
        version, or holding plaintext keys, are rewritten in the current format.
        """

        payload = self._read()
        settings = Settings()
        if payload:
            settings, has_plaintext = self._decode(payload)
            if has_plaintext or payload.get("version") != SETTINGS_VERSION:
                LOGGER.info("Upgrading settings file %s", self._path)
                try:
                    self.save(settings)
                except OSError as exc:
                    LOGGER.warning("Could not upgrade settings file: %s", exc)

        if overrides:
            settings = apply_overrides(settings, overrides, source="CLI")
        return apply_overrides(settings, env_overrides(), source="environment")

    def save(self, settings: Settings) -> Path:
        document = asdict(settings)
        for section in _SECRET_SECTIONS:
            document[section] = [self._seal(entry) for entry in document[section]]
        document["version"] = SETTINGS_VERSION
        document["secret_backend"] = self._vault.strategy
        _write_atomically(self._path, json.dumps(document, indent=2, sort_keys=True).encode("utf-8"))
        LOGGER.debug("Saved settings to %s", self._path)
        return self._path

    def _read(self) -> Dict[str, Any]:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            LOGGER.warning("Ignoring unreadable settings file %s: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Ignoring settings file %s: top level is not an object", self._path)
            return {}
        return payload

    def _decode(self, payload: Mapping[str, Any]) -> tuple[Settings, bool]:
        known = {item.name for item in fields(Settings)}
        data = {name: value for name, value in payload.items() if name in known}

        has_plaintext = False
        unsealed: Dict[str, list[Dict[str, Any]]] = {}
        for section in _SECRET_SECTIONS:
            entries = []
            for entry in _records(data.pop(section, None)):
                entry, plaintext = self._unseal(entry, section)
                has_plaintext = has_plaintext or plaintext
                entries.append(entry)
            unsealed[section] = entries

        providers = [Provider.from_mapping(entry) for entry in unsealed["providers"]]
        search_providers = _build_all(WebSearchProviderConfig, unsealed["web_search_providers"])
        for name, decode in _FIELD_DECODERS.items():
            if name in data:
                data[name] = decode(data[name])
        try:
            settings = Settings(providers=providers, web_search_providers=search_providers, **data)
        except TypeError as exc:
            LOGGER.warning("Dropping malformed settings fields: %s", exc)
            settings = Settings(providers=providers, web_search_providers=search_providers)
        return settings, has_plaintext

    def _seal(self, entry: Dict[str, Any]) -> Dict[str, Any]:
        secret = entry.pop("api_key", "")
        if secret:
            try:
                entry[_CIPHERTEXT_FIELD] = self._vault.encrypt(secret)
            except (OSError, ValueError) as exc:
                LOGGER.warning("API key for %s was not saved: %s", entry.get("id"), exc)
        return entry

    def _unseal(self, entry: Mapping[str, Any], section: str) -> tuple[Dict[str, Any], bool]:
        data = dict(entry)
        token = data.pop(_CIPHERTEXT_FIELD, None)
        if not token:
            return data, bool(data.get("api_key"))
        try:
            data["api_key"] = self._vault.decrypt(token)
        except ValueError as exc:
            LOGGER.warning("Cannot decrypt API key of %s entry %s: %s", section, data.get("id"), exc)
            data["api_key"] = ""
        return data, False


def parse_setting_value(name: str, raw: str) -> Any:
    """Convert the text form of an override into the type of ``Settings.<name>``.

    Optional fields accept ``none``/``null``. Lists and nested dataclasses are
    given as JSON. Raises ``ValueError`` for unknown fields and bad values.
    """

    hints = _settings_hints()
    if name not in hints:
        raise ValueError(f"Unknown setting '{name}'.")
    annotation = hints[name]
    text = raw.strip()

    members = get_args(annotation)
    if type(None) in members:
        if text.lower() in _NULL_WORDS:
            return None
        annotation = next(member for member in members if member is not type(None))

    if annotation is bool:
        lowered = text.lower()
        if lowered not in _TRUE_WORDS | _FALSE_WORDS:
            raise ValueError(f"{name} expects a boolean, got '{raw}'.")
        return lowered in _TRUE_WORDS
    if annotation in (int, float, str):
        return annotation(text)

    try:
        value = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"{name} expects a JSON value") from exc
    if get_origin(annotation) is list:
        (item_type,) = get_args(annotation) or (Any,)
        if not isinstance(value, list):
            raise ValueError(f"{name} expects a JSON array")
        return _build_all(item_type, value) if is_dataclass(item_type) else value
    if is_dataclass(annotation):
        built = _build(annotation, value)
        if built is None:
            raise ValueError(f"{name} expects a JSON object matching {annotation.__name__}")
        return built
    return value


def env_override_names() -> list[str]:
    return [ENV_PREFIX + name.upper() for name in ENV_OVERRIDABLE]


def env_overrides(environ: Mapping[str, str] | None = None) -> Dict[str, Any]:
    """Collect ``PARLEY_<FIELD>`` overrides; malformed values are logged and skipped."""

    source = os.environ if environ is None else environ
    overrides: Dict[str, Any] = {}
    for name in ENV_OVERRIDABLE:
        variable = ENV_PREFIX + name.upper()
        raw = source.get(variable)
        if raw is None:
            continue
        try:
            overrides[name] = parse_setting_value(name, raw)
        except ValueError as exc:
            LOGGER.warning("Ignoring %s=%r: %s", variable, raw, exc)
    return overrides


def apply_overrides(settings: Settings, overrides: Mapping[str, Any], *, source: str = "runtime") -> Settings:
    known = {item.name for item in fields(Settings)}
    unknown = sorted(set(overrides) - known)
    if unknown:
        LOGGER.warning("Ignoring unknown %s overrides: %s", source, ", ".join(unknown))
    changes = {name: value for name, value in overrides.items() if name in known}
    if not changes:
        return settings
    LOGGER.debug("Applying %s overrides: %s", source, ", ".join(sorted(changes)))
    return replace(settings, **changes)


def redact_secret(value: str) -> str:
    """Mask all but the first and last two characters of ``value``."""

    secret = (value or "").strip()
    if len(secret) <= 4:
        return "*" * len(secret)
    return secret[:2] + "*" * (len(secret) - 4) + secret[-2:]


@functools.lru_cache(maxsize=None)
def _settings_hints() -> Dict[str, Any]:
    return get_type_hints(Settings)


def _write_atomically(path: Path, data: bytes, *, private: bool = False) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    staging = path.with_name(f".{path.name}.tmp")
    staging.write_bytes(data)
    if private and os.name != "nt":  # pragma: no cover - depends on OS
        os.chmod(staging, 0o600)
    os.replace(staging, path)


def _records(value: Any) -> list[Mapping[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, Mapping)]


def _build(cls: Any, payload: Any) -> Any:
    if not isinstance(payload, Mapping):
        return None
    known = {item.name for item in fields(cls)}
    try:
        return cls(**{name: value for name, value in payload.items() if name in known})
    except TypeError as exc:
        LOGGER.warning("Ignoring malformed %s entry: %s", cls.__name__, exc)
        return None


def _build_all(cls: Any, payload: Any) -> list[Any]:
    built = (_build(cls, entry) for entry in _records(payload))
    return [item for item in built if item is not None]


def _model_or_none(payload: Any) -> Model | None:
    return Model.from_mapping(payload) if isinstance(payload, Mapping) else None


def _assistant(payload: Any) -> Assistant:
    if not isinstance(payload, Mapping):
        return Assistant()
    data = dict(payload)
    data["model"] = _model_or_none(data.get("model"))
    data["settings"] = _build(AssistantSettings, data.get("settings")) or AssistantSettings()
    return _build(Assistant, data) or Assistant()


_FIELD_DECODERS: Dict[str, Callable[[Any], Any]] = {
    "default_model": _model_or_none,
    "topic_naming_model": _model_or_none,
    "translate_model": _model_or_none,
    "default_assistant": _assistant,
    "shortcuts": lambda value: _build_all(ShortcutSetting, value),
    "web_search": lambda value: _build(WebSearchOptions, value) or WebSearchOptions(),
    "knowledge_bases": lambda value: _build_all(KnowledgeBaseConfig, value),
}
