"""Lifecycle notifications — the fixed event set and its payload.

Every full reroute pass emits, in order::

    before-app-change | before-no-app-change
    before-routing-event
    before-mount-routing-event      (once unmounting/unloading is done)
    app-change | no-app-change
    routing-event

Listeners registered with ``NotificationBus.on()`` are called
synchronously in registration order, like DOM event listeners.
``subscribe()`` gives an async iterator of ``(event_name, detail)``
pairs for consumers that prefer to pull.

``ChangeDetail`` is a frozen dataclass built once per notification by
``DetailBuilder``; listeners can share it freely.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from mosaic._internal.types import NotificationListener
from mosaic.applications.status import AppStatus

logger = logging.getLogger("mosaic.notifications")

BEFORE_APP_CHANGE = "before-app-change"
BEFORE_NO_APP_CHANGE = "before-no-app-change"
BEFORE_ROUTING_EVENT = "before-routing-event"
BEFORE_MOUNT_ROUTING_EVENT = "before-mount-routing-event"
APP_CHANGE = "app-change"
NO_APP_CHANGE = "no-app-change"
ROUTING_EVENT = "routing-event"

EVENT_NAMES: frozenset[str] = frozenset({
    BEFORE_APP_CHANGE,
    BEFORE_NO_APP_CHANGE,
    BEFORE_ROUTING_EVENT,
    BEFORE_MOUNT_ROUTING_EVENT,
    APP_CHANGE,
    NO_APP_CHANGE,
    ROUTING_EVENT,
})

# Buckets present in every detail, even when empty
REPORTED_STATUSES: tuple[AppStatus, ...] = (
    AppStatus.MOUNTED,
    AppStatus.NOT_MOUNTED,
    AppStatus.NOT_LOADED,
    AppStatus.SKIP_BECAUSE_BROKEN,
)


@dataclass(frozen=True, slots=True)
class ChangeDetail:
    """Payload carried by every lifecycle notification."""

    new_app_statuses: Mapping[str, AppStatus]
    apps_by_new_status: Mapping[AppStatus, tuple[str, ...]]
    total_app_changes: int
    original_event: Any = None


@dataclass(frozen=True, slots=True)
class DetailBuilder:
    """Immutable builder for ``ChangeDetail``.

    Usage::

        builder = DetailBuilder()
        for app in changes.to_unmount:
            builder = builder.with_app(app.name, AppStatus.NOT_MOUNTED)
        detail = builder.build(total_app_changes=3, original_event=event)
    """

    entries: tuple[tuple[str, AppStatus], ...] = ()

    def with_app(self, name: str, status: AppStatus) -> DetailBuilder:
        return DetailBuilder((*self.entries, (name, status)))

    def build(self, total_app_changes: int, original_event: Any = None) -> ChangeDetail:
        statuses: dict[str, AppStatus] = {}
        by_status: dict[AppStatus, list[str]] = {status: [] for status in REPORTED_STATUSES}
        for name, status in self.entries:
            statuses[name] = status
            by_status.setdefault(status, []).append(name)
        return ChangeDetail(
            new_app_statuses=MappingProxyType(statuses),
            apps_by_new_status=MappingProxyType(
                {status: tuple(names) for status, names in by_status.items()}
            ),
            total_app_changes=total_app_changes,
            original_event=original_event,
        )


class NotificationBus:
    """Ordered delivery of lifecycle notifications.

    ``emit()`` calls every listener even if one raises, then re-raises the
    first exception. Async listeners are scheduled as tasks; their
    failures go to the event loop's exception handler.
    """

    __slots__ = ("_listeners", "_subscribers", "_tasks")

    def __init__(self) -> None:
        self._listeners: dict[str, list[NotificationListener]] = {name: [] for name in EVENT_NAMES}
        self._subscribers: set[asyncio.Queue[tuple[str, ChangeDetail] | None]] = set()
        # Async listeners still running; held here so they are not collected mid-flight
        self._tasks: set[asyncio.Task[Any]] = set()

    def _check(self, event_name: str) -> None:
        if event_name not in EVENT_NAMES:
            msg = f"Unknown notification {event_name!r}; expected one of {sorted(EVENT_NAMES)}"
            raise ValueError(msg)

    def on(self, event_name: str, listener: NotificationListener) -> None:
        self._check(event_name)
        self._listeners[event_name].append(listener)

    def off(self, event_name: str, listener: NotificationListener) -> bool:
        """Remove *listener*. Returns False if it was not registered."""
        self._check(event_name)
        try:
            self._listeners[event_name].remove(listener)
        except ValueError:
            return False
        return True

    def emit(self, event_name: str, detail: ChangeDetail) -> None:
        self._check(event_name)
        logger.debug("Emitting %s (%d changes)", event_name, detail.total_app_changes)

        first_error: Exception | None = None
        for listener in list(self._listeners[event_name]):
            try:
                result = listener(event_name, detail)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._tasks.add(task)
                    task.add_done_callback(self._listener_done)
            except Exception as exc:
                if first_error is None:
                    first_error = exc

        for queue in set(self._subscribers):
            try:
                queue.put_nowait((event_name, detail))
            except asyncio.QueueFull:
                # Drop for slow consumers rather than blocking the pass
                logger.warning("Dropping %s for a slow subscriber", event_name)

        if first_error is not None:
            raise first_error

    def _listener_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            task.get_loop().call_exception_handler({
                "message": "An async notification listener raised",
                "exception": error,
                "task": task,
            })

    async def subscribe(self) -> AsyncIterator[tuple[str, ChangeDetail]]:
        """Subscribe to every notification.

        Returns an async iterator that yields ``(event_name, detail)`` as
        they are emitted. The subscription is cleaned up when the iterator
        exits.
        """
        queue: asyncio.Queue[tuple[str, ChangeDetail] | None] = asyncio.Queue(maxsize=256)
        self._subscribers.add(queue)
        try:
            while True:
                item = await queue.get()
                if item is None:
                    break
                yield item
        finally:
            self._subscribers.discard(queue)

    def close(self) -> None:
        """Signal all subscribers to stop."""
        for queue in self._subscribers:
            try:
                queue.put_nowait(None)
            except asyncio.QueueFull:
                pass
        self._subscribers.clear()
