"""Captured environment listeners.

Host code that wants to react to navigation (``hashchange`` and
``popstate``) registers through ``CapturedListeners`` instead of
listening directly. Their calls are held back while a reroute pass
unmounts the applications that no longer match, then replayed, so a
listener never observes a half-torn-down surface.
"""

import logging
from dataclasses import dataclass
from typing import Any

from mosaic._internal.invoke import invoke
from mosaic._internal.types import EnvironmentListener, EventArgs

logger = logging.getLogger("mosaic.navigation")

ROUTING_EVENTS = ("hashchange", "popstate")


@dataclass(frozen=True, slots=True)
class NavigationEvent:
    """An environment change that triggered a reroute."""

    type: str
    url: str
    state: Any = None


class CapturedListeners:
    """Listeners waiting to be replayed after each pass."""

    __slots__ = ("_listeners",)

    def __init__(self) -> None:
        self._listeners: dict[str, list[EnvironmentListener]] = {name: [] for name in ROUTING_EVENTS}

    def add(self, event_type: str, listener: EnvironmentListener) -> None:
        if event_type not in self._listeners:
            msg = f"Only {', '.join(ROUTING_EVENTS)} listeners are captured, got {event_type!r}"
            raise ValueError(msg)
        if listener not in self._listeners[event_type]:
            self._listeners[event_type].append(listener)

    def remove(self, event_type: str, listener: EnvironmentListener) -> bool:
        """Remove *listener*. Returns False if it was not captured."""
        try:
            self._listeners[event_type].remove(listener)
        except (KeyError, ValueError):
            return False
        return True

    def __len__(self) -> int:
        return sum(len(listeners) for listeners in self._listeners.values())

    async def replay(self, event_args: EventArgs | None) -> None:
        """Call every listener captured for the event in *event_args*.

        ``event_args`` is the argument tuple the reroute was triggered
        with; its first element is the event. ``None`` (a reroute not
        caused by the environment) replays nothing. Every listener runs
        even if an earlier one raises; the first exception is re-raised
        afterwards.
        """
        if not event_args:
            return
        event = event_args[0]
        event_type = getattr(event, "type", None)
        if event_type not in self._listeners:
            return

        first_error: Exception | None = None
        for listener in list(self._listeners[event_type]):
            try:
                await invoke(listener, event)
            except Exception as exc:
                logger.debug("Captured %s listener %r raised", event_type, listener)
                if first_error is None:
                    first_error = exc
        if first_error is not None:
            raise first_error
