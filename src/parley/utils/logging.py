"""Logging setup for Parley.

Records go to ``~/.parley/logs/parley.log`` (or ``$PARLEY_LOG_DIR``) and,
optionally, to stderr. Provider credentials that end up in exception text are
masked before any handler formats them.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
from pathlib import Path

__all__ = ["SecretMaskingFilter", "mask_secrets", "setup_logging", "log_path"]

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_NAME = "parley.log"

# Libraries that log every request or loop iteration at INFO/DEBUG.
_CHATTY_LIBRARIES = ("asyncio", "qasync", "httpx", "httpcore", "openai", "keyboard")

_SECRET_PATTERNS = (
    re.compile(r"\b(sk-[A-Za-z0-9_-]{4})[A-Za-z0-9_-]+"),
    re.compile(r"\b(tvly-[A-Za-z0-9]{2})[A-Za-z0-9_-]+"),
    re.compile(r"(Bearer\s+\S{2})\S+", re.IGNORECASE),
)

_active_log_path: Path | None = None


class SecretMaskingFilter(logging.Filter):
    """Replaces API-key-looking tokens in the rendered message."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = mask_secrets(message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def mask_secrets(text: str) -> str:
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(lambda match: f"{match.group(1)}***", text)
    return text


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    force: bool = False,
) -> Path:
    """Install the file and console handlers on the root logger.

    Calling again is a no-op unless ``force`` is set, which lets the app raise
    the level once persisted settings asked for debug logging.
    """

    global _active_log_path
    if _active_log_path is not None and not force:
        return _active_log_path

    directory = Path(log_dir or os.environ.get("PARLEY_LOG_DIR") or Path.home() / ".parley" / "logs").expanduser()
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / LOG_FILE_NAME

    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(path, maxBytes=2_000_000, backupCount=5, encoding="utf-8")
    ]
    if console:
        handlers.append(logging.StreamHandler())

    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)
    masking = SecretMaskingFilter()
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(masking)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    for name in _CHATTY_LIBRARIES:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    _active_log_path = path
    return path


def log_path() -> Path | None:
    return _active_log_path
