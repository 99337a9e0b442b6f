"""Conversions between recorded key names, accelerators and hotkey strings.

Shortcuts are recorded from Qt key events as key names (``Command``,
``ArrowUp``, ``Slash``). Accelerators are the ``+``-joined portable form
(``CommandOrControl+Shift+/``) stored in settings and logged. The global
backend needs the ``keyboard`` library's own hotkey syntax.
"""

from __future__ import annotations

import sys
from typing import Iterable, Mapping, Sequence

__all__ = ["format_shortcut_key", "to_accelerator", "to_hotkey"]

_RECORDED_TO_ACCELERATOR: Mapping[str, str] = {
    "Command": "CommandOrControl",
    "Control": "Control",
    "Ctrl": "Control",
    "ArrowUp": "Up",
    "ArrowDown": "Down",
    "ArrowLeft": "Left",
    "ArrowRight": "Right",
    "AltGraph": "Alt",
    "Slash": "/",
    "Semicolon": ";",
    "BracketLeft": "[",
    "BracketRight": "]",
    "Backslash": "\\",
    "Quote": "'",
    "Comma": ",",
    "Minus": "-",
    "Equal": "=",
}

_ACCELERATOR_TO_HOTKEY: Mapping[str, str] = {
    "control": "ctrl",
    "cmd": "command",
    "meta": "windows" if sys.platform.startswith("win") else "command",
    "super": "windows",
    "option": "alt",
    "return": "enter",
    "escape": "esc",
    "numadd": "plus",
    "numsub": "minus",
    "plus": "plus",
}


def format_shortcut_key(parts: Iterable[str]) -> str:
    return "+".join(parts)


def to_accelerator(shortcut: str | Sequence[str]) -> str:
    """Convert recorded key names to an accelerator string; unknown keys pass through."""

    if isinstance(shortcut, str):
        keys = [key.strip() for key in shortcut.split("+")]
    else:
        keys = list(shortcut)
    return "+".join(_RECORDED_TO_ACCELERATOR.get(key, key) for key in keys)


def to_hotkey(accelerator: str, *, platform: str | None = None) -> str:
    """Translate an accelerator into a ``keyboard.add_hotkey`` expression."""

    platform = platform or sys.platform
    primary = "command" if platform == "darwin" else "ctrl"
    parts = _split_accelerator(accelerator)
    converted: list[str] = []
    for part in parts:
        lowered = part.lower()
        if lowered in ("commandorcontrol", "cmdorctrl"):
            converted.append(primary)
        elif part == "+":
            converted.append("plus")
        else:
            converted.append(_ACCELERATOR_TO_HOTKEY.get(lowered, lowered))
    return "+".join(converted)


def _split_accelerator(accelerator: str) -> list[str]:
    accelerator = accelerator.strip()
    # A literal "+" key is written as a trailing "++" ("Ctrl++").
    if accelerator == "+" or accelerator.endswith("++"):
        head = accelerator[:-1].rstrip("+")
        return [part.strip() for part in head.split("+") if part.strip()] + ["+"]
    return [part.strip() for part in accelerator.split("+") if part.strip()]
