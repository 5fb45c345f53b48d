"""Reroute scheduler — one orchestration pass at a time.

Every environment change ends up in ``Scheduler.enter()``. A pass
classifies the registered applications, tears down the ones that no
longer match, and brings up the ones that do::

    enter()
      ├─ pass in flight? ──> queue a PendingRequest, return its future
      ├─ classify() into to_unload / to_unmount / to_load / to_mount
      ├─ not started? ──> load to_load only, replay listeners, resolve []
      └─ full pass:
           before-(no-)app-change, before-routing-event
           deactivation: unload + (unmount -> unload), all concurrent
           activation:   (load ->) bootstrap -> [wait deactivation] -> mount
           before-mount-routing-event once deactivation is done
           replay captured listeners
           (no-)app-change, routing-event
           clear the flag, start one new pass for everything queued

Requests that arrive mid-pass are never run on their own: when the pass
finishes, the whole queue is swapped out and handed to exactly one new
pass, so a burst of calls costs one extra pass rather than one each.

Nothing here writes an application's status; all moves go through the
lifecycle runner. A pass that arrives late cannot cancel an in-flight
hook. Instead, ``attempt_activate()`` re-checks the activity predicate
before bootstrapping and again before mounting.
"""

import asyncio
import logging
from collections.abc import Awaitable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from mosaic._internal.types import EventArgs
from mosaic.applications.application import Application
from mosaic.applications.registry import AppChanges, Registry
from mosaic.applications.status import AppStatus
from mosaic.lifecycles.runner import LifecycleRunner
from mosaic.navigation.events import CapturedListeners
from mosaic.navigation.notifications import (
    APP_CHANGE,
    BEFORE_APP_CHANGE,
    BEFORE_MOUNT_ROUTING_EVENT,
    BEFORE_NO_APP_CHANGE,
    BEFORE_ROUTING_EVENT,
    NO_APP_CHANGE,
    ROUTING_EVENT,
    ChangeDetail,
    DetailBuilder,
    NotificationBus,
)

logger = logging.getLogger("mosaic.reroute")


@dataclass(slots=True)
class PendingRequest:
    """A reroute that arrived while a pass was in flight."""

    future: asyncio.Future[list[str]]
    event_args: EventArgs | None = None

    def resolve(self, mounted: Sequence[str]) -> None:
        if not self.future.done():
            self.future.set_result(list(mounted))

    def reject(self, error: BaseException) -> None:
        if not self.future.done():
            self.future.set_exception(error)


async def join(tasks: Sequence[asyncio.Future[Any]]) -> list[Any]:
    """Wait for every task, then raise the first failure.

    Unlike ``asyncio.gather()`` this never returns early: a failing task
    does not stop the wait for the others. The error raised is the first
    one in completion order.
    """
    if not tasks:
        return []
    errors: list[BaseException] = []

    def record(task: asyncio.Future[Any]) -> None:
        if not task.cancelled() and task.exception() is not None:
            errors.append(task.exception())

    for task in tasks:
        task.add_done_callback(record)
    await asyncio.wait(tasks)
    if errors:
        raise errors[0]
    return [task.result() for task in tasks]


def _retrieve(task: asyncio.Future[Any]) -> None:
    # Drain passes have no caller; their errors already reached the queued requests
    if not task.cancelled():
        task.exception()


class Scheduler:
    """Reentrant reroute entry point.

    Owns the in-flight flag and the queue of pending requests. Use
    ``enter()`` (or ``trigger_change()``) from synchronous or
    asynchronous code running on the event loop; await the returned
    future for the names of the applications mounted once the pass that
    served the request completes.
    """

    __slots__ = (
        "_in_flight",
        "_lifecycle_logging",
        "_listeners",
        "_notifications",
        "_queue",
        "_registry",
        "_runner",
        "_started",
        "passes",
    )

    def __init__(
        self,
        registry: Registry,
        runner: LifecycleRunner,
        notifications: NotificationBus,
        listeners: CapturedListeners,
        *,
        lifecycle_logging: bool = True,
    ) -> None:
        self._registry = registry
        self._runner = runner
        self._notifications = notifications
        self._listeners = listeners
        self._lifecycle_logging = lifecycle_logging
        self._in_flight = False
        self._started = False
        self._queue: list[PendingRequest] = []
        # Full passes executed so far
        self.passes = 0

    @property
    def started(self) -> bool:
        return self._started

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def start(self) -> None:
        """Allow full passes. Before this, passes only load applications."""
        self._started = True

    # -- Entry points --

    def trigger_change(self) -> asyncio.Future[list[str]]:
        """Reroute with no triggering event."""
        return self.enter()

    def enter(
        self,
        event_args: EventArgs | None = None,
        pending: Iterable[PendingRequest] = (),
    ) -> asyncio.Future[list[str]]:
        """Request a reroute.

        Must be called from a running event loop. The transition groups
        are computed before this returns; the pass itself runs as a task.

        Args:
            event_args: Arguments of the environment event that caused the
                reroute; the first element is reported as ``original_event``
                and the captured listeners for it are replayed.
            pending: Requests this pass also answers. Used when draining
                the queue.
        """
        loop = asyncio.get_running_loop()
        if self._in_flight:
            future: asyncio.Future[list[str]] = loop.create_future()
            self._queue.append(PendingRequest(future, event_args))
            logger.debug("Reroute queued behind the pass in flight (%d waiting)", len(self._queue))
            return future

        changes = self._registry.classify()
        requests = list(pending)
        if not self._started:
            return loop.create_task(self._load_only(changes, requests, event_args))

        self._in_flight = True
        return loop.create_task(self._perform(changes, requests, event_args))

    # -- Load-only pass (before start) --

    async def _load_only(
        self,
        changes: AppChanges,
        pending: list[PendingRequest],
        event_args: EventArgs | None,
    ) -> list[str]:
        loads = [asyncio.ensure_future(self._runner.load(app)) for app in changes.to_load]
        try:
            await join(loads)
        except Exception as exc:
            await self._replay_listeners(pending, event_args)
            for request in pending:
                request.reject(exc)
            raise
        await self._replay_listeners(pending, event_args)
        # Nothing is mounted before start()
        for request in pending:
            request.resolve([])
        return []

    # -- Full pass --

    async def _perform(
        self,
        changes: AppChanges,
        pending: list[PendingRequest],
        event_args: EventArgs | None,
    ) -> list[str]:
        self.passes += 1
        original_event = event_args[0] if event_args else None
        if self._lifecycle_logging:
            logger.info(
                "Reroute pass %d: unload=%d unmount=%d load=%d mount=%d waiting=%d",
                self.passes,
                len(changes.to_unload),
                len(changes.to_unmount),
                len(changes.to_load),
                len(changes.to_mount),
                len(pending),
            )

        before = self._provisional_detail(changes, original_event)
        self._notify(BEFORE_APP_CHANGE if changes else BEFORE_NO_APP_CHANGE, before)
        self._notify(BEFORE_ROUTING_EVENT, before)

        deactivation = asyncio.ensure_future(self._deactivate(changes, before))
        activations = [
            asyncio.ensure_future(self._load_then_activate(app, deactivation))
            for app in changes.to_load
        ]
        activations.extend(
            asyncio.ensure_future(self.attempt_activate(app, deactivation))
            for app in changes.to_mount
            if app not in changes.to_load
        )

        deactivation_error: Exception | None = None
        try:
            await deactivation
        except Exception as exc:
            deactivation_error = exc
        # Unmounted applications have released the surface; replay regardless of what follows
        await self._replay_listeners(pending, event_args)

        try:
            if deactivation_error is not None:
                # Activations fail at the mount gate with the same error
                if activations:
                    await asyncio.wait(activations)
                for task in activations:
                    _retrieve(task)
                raise deactivation_error
            await join(activations)
        except Exception as exc:
            await self._fail_pass(pending, exc)
            raise

        return self._finish(changes, pending, original_event)

    async def _deactivate(self, changes: AppChanges, before: ChangeDetail) -> None:
        unloads = [asyncio.ensure_future(self._runner.unload(app)) for app in changes.to_unload]
        unmounts = [
            asyncio.ensure_future(self._unmount_then_unload(app)) for app in changes.to_unmount
        ]
        await join(unmounts + unloads)
        self._notify(BEFORE_MOUNT_ROUTING_EVENT, before)

    async def _unmount_then_unload(self, app: Application) -> Application:
        app = await self._runner.unmount(app)
        return await self._runner.unload(app)

    async def _load_then_activate(self, app: Application, deactivation: Awaitable[None]) -> Application:
        app = await self._runner.load(app)
        return await self.attempt_activate(app, deactivation)

    async def attempt_activate(self, app: Application, deactivation: Awaitable[None]) -> Application:
        """Bootstrap and mount *app* unless it stopped being wanted.

        The activity predicate is checked before bootstrapping and again
        after *deactivation* completes, right before mounting. Loading can
        take long enough for the location to change in between; an
        application must not be mounted on the strength of a stale check.
        """
        if not self._registry.desired_active(app):
            await deactivation
            return app

        app = await self._runner.bootstrap(app)
        await deactivation
        if self._registry.desired_active(app):
            return await self._runner.mount(app)
        return app

    def _finish(
        self,
        changes: AppChanges,
        pending: list[PendingRequest],
        original_event: Any,
    ) -> list[str]:
        mounted = self._registry.mounted_names()
        for request in pending:
            request.resolve(mounted)

        after = self._actual_detail(changes, original_event)
        self._notify(APP_CHANGE if changes else NO_APP_CHANGE, after)
        self._notify(ROUTING_EVENT, after)

        if self._lifecycle_logging:
            logger.info("Reroute pass %d finished; mounted: %s", self.passes, ", ".join(mounted) or "-")
        self._in_flight = False
        self._drain()
        return mounted

    async def _fail_pass(self, pending: list[PendingRequest], error: Exception) -> None:
        """Reject everyone waiting on a failed pass and release the flag."""
        logger.error("Reroute pass %d failed: %s", self.passes, error)
        for request in pending:
            request.reject(error)

        # Requests queued during this pass waited on its outcome too
        queued, self._queue = self._queue, []
        for request in queued:
            await self._replay(request.event_args)
            request.reject(error)

        self._in_flight = False
        self._drain()

    def _drain(self) -> None:
        if not self._queue:
            return
        drained, self._queue = self._queue, []
        logger.debug("Draining %d queued reroute(s) into a new pass", len(drained))
        self.enter(pending=drained).add_done_callback(_retrieve)

    # -- Listener replay and notifications --

    async def _replay_listeners(
        self,
        pending: list[PendingRequest],
        event_args: EventArgs | None,
    ) -> None:
        # Queued events first, in arrival order, then the one that started this pass
        for request in pending:
            await self._replay(request.event_args)
        await self._replay(event_args)

    async def _replay(self, event_args: EventArgs | None) -> None:
        try:
            await self._listeners.replay(event_args)
        except Exception as exc:
            self._defer(exc, "A captured navigation listener raised")

    def _notify(self, event_name: str, detail: ChangeDetail) -> None:
        try:
            self._notifications.emit(event_name, detail)
        except Exception as exc:
            self._defer(exc, f"A {event_name} listener raised")

    def _defer(self, error: Exception, message: str) -> None:
        """Surface *error* through the loop's exception handler, outside this pass."""
        loop = asyncio.get_running_loop()
        loop.call_soon(loop.call_exception_handler, {"message": message, "exception": error})

    # -- Details --

    def _provisional_detail(self, changes: AppChanges, original_event: Any) -> ChangeDetail:
        builder = DetailBuilder()
        for app in changes.to_load + changes.to_mount:
            builder = builder.with_app(self._registry.name(app), AppStatus.MOUNTED)
        for app in changes.to_unload:
            builder = builder.with_app(self._registry.name(app), AppStatus.NOT_LOADED)
        for app in changes.to_unmount:
            builder = builder.with_app(self._registry.name(app), AppStatus.NOT_MOUNTED)
        return builder.build(len(changes.changed), original_event)

    def _actual_detail(self, changes: AppChanges, original_event: Any) -> ChangeDetail:
        builder = DetailBuilder()
        for app in changes.changed:
            builder = builder.with_app(self._registry.name(app), app.status)
        return builder.build(len(changes.changed), original_event)
