"""Event bus used to decouple services from the Qt presentation layer.

Services publish plain dataclass events; windows subscribe to the ones they
render. Nothing in this module imports Qt.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Literal, TypeVar
from weakref import WeakMethod

__all__ = [
    "Event",
    "EventBus",
    "Handler",
    "NotificationLevel",
    "NotificationPosted",
    "SettingsChanged",
]

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")

Handler = Callable[[E], None]

NotificationLevel = Literal["info", "success", "warning", "error"]


@dataclass(slots=True)
class Event:
    """Base class for all events published on the bus."""


@dataclass(slots=True)
class NotificationPosted(Event):
    """Emitted when a service wants a transient message shown to the user.

    Attributes:
        level: Severity used to pick the toast style.
        text: Human-readable message.
        key: Optional de-duplication key; a newer notification with the same
            key replaces the visible one.
    """

    level: NotificationLevel
    text: str
    key: str | None = None


@dataclass(slots=True)
class SettingsChanged(Event):
    """Emitted after the runtime configuration was updated and persisted.

    Attributes:
        fields: Names of the settings fields that changed.
    """

    fields: tuple[str, ...] = ()


# A subscription is a zero-argument callable returning the live handler, or
# ``None`` once a weakly held owner has been collected.
_Subscription = Callable[[], "Handler[Any] | None"]


def _subscription_for(handler: Handler[Any]) -> _Subscription:
    owner = getattr(handler, "__self__", None)
    if owner is not None and hasattr(handler, "__func__"):
        try:
            return WeakMethod(handler)  # type: ignore[arg-type,return-value]
        except TypeError:
            pass
    return lambda: handler


class EventBus(Generic[E]):
    """Typed publish/subscribe bus.

    Handlers are keyed by the exact event class. Bound methods are held
    weakly so a closed window does not keep receiving events. Publish from
    the Qt main thread; the bus does no locking.
    """

    __slots__ = ("_subscriptions",)

    def __init__(self) -> None:
        self._subscriptions: Dict[type[Event], list[_Subscription]] = {}

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        self._subscriptions.setdefault(event_type, []).append(_subscription_for(handler))
        logger.debug("%s subscribed to %s", _describe(handler), event_type.__name__)

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Drop the oldest registration of ``handler``; unknown handlers are ignored."""

        subscriptions = self._subscriptions.get(event_type, [])
        for position, subscription in enumerate(subscriptions):
            if subscription() == handler:
                del subscriptions[position]
                logger.debug("%s unsubscribed from %s", _describe(handler), event_type.__name__)
                return

    def publish(self, event: E) -> None:
        """Deliver ``event`` to its subscribers in registration order.

        A handler that raises is logged and the remaining handlers still run.
        Subscriptions whose owner was garbage collected are pruned.
        """

        event_type = type(event)
        subscriptions = self._subscriptions.get(event_type)
        if not subscriptions:
            return
        logger.debug("Publishing %s to %d handler(s)", event_type.__name__, len(subscriptions))

        alive: list[_Subscription] = []
        for subscription in list(subscriptions):
            handler = subscription()
            if handler is None:
                continue
            alive.append(subscription)
            try:
                handler(event)
            except Exception:
                logger.exception("Handler %s raised exception for %s", _describe(handler), event_type.__name__)
        if len(alive) != len(subscriptions):
            subscriptions[:] = [item for item in subscriptions if item() is not None]

    def clear(self) -> None:
        self._subscriptions.clear()

    def handler_count(self, event_type: type[E] | None = None) -> int:
        if event_type is None:
            return sum(len(items) for items in self._subscriptions.values())
        return len(self._subscriptions.get(event_type, ()))


def _describe(handler: Handler[Any]) -> str:
    owner = getattr(handler, "__self__", None)
    if owner is not None and hasattr(handler, "__func__"):
        return f"{type(owner).__name__}.{handler.__func__.__name__}"  # type: ignore[attr-defined]
    return getattr(handler, "__name__", repr(handler))
