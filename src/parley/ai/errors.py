"""Error types raised by the chat services."""

from __future__ import annotations

import asyncio

__all__ = [
    "ParleyError",
    "AbortedError",
    "ProviderError",
    "ProviderDisabledError",
    "MissingApiKeyError",
    "ProviderConfigError",
    "is_abort_error",
]


class ParleyError(Exception):
    """Base class for errors raised by Parley services."""


class AbortedError(ParleyError):
    """Raised when the user cancelled the request a service was working on."""

    def __init__(self, message: str = "Request aborted", *, message_id: str | None = None) -> None:
        super().__init__(message)
        self.message_id = message_id


class ProviderError(ParleyError):
    """Raised when a model provider call failed."""


class ProviderDisabledError(ProviderError):
    """Raised when no enabled provider/model is configured for an operation."""


class MissingApiKeyError(ProviderError):
    """Raised when the provider requires an API key and none is configured."""


class ProviderConfigError(ProviderError):
    """Raised by provider validation; carries the settings field at fault."""

    def __init__(self, message: str, *, field: str) -> None:
        super().__init__(message)
        self.field = field


def is_abort_error(error: BaseException | None) -> bool:
    """Return ``True`` when ``error`` means the user cancelled the request."""

    if error is None:
        return False
    if isinstance(error, (AbortedError, asyncio.CancelledError)):
        return True
    cause = error.__cause__
    return isinstance(cause, (AbortedError, asyncio.CancelledError))
