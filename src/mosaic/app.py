"""Mosaic — the orchestrator facade.

Wires the registry, the lifecycle runner, the notification bus, the
captured listeners and the reroute scheduler together, and exposes the
operations host code uses: register, start, navigate, unload.

Every method that reroutes must be called from code running on an
asyncio event loop.
"""

import asyncio
import logging
from collections.abc import Callable, Mapping
from typing import Any

from mosaic._internal.types import EnvironmentListener, LoadFunction, NotificationListener
from mosaic.applications.activity import Location, compile_activity
from mosaic.applications.application import Application
from mosaic.applications.registry import Registry
from mosaic.applications.status import AppStatus
from mosaic.config import MosaicConfig, PhaseTimeouts
from mosaic.errors import ConfigurationError, LifecycleError
from mosaic.lifecycles.runner import LifecycleRunner
from mosaic.navigation.events import CapturedListeners, NavigationEvent
from mosaic.navigation.notifications import NotificationBus
from mosaic.navigation.reroute import Scheduler

logger = logging.getLogger("mosaic")


class Mosaic:
    """The orchestrator.

    Usage::

        mosaic = Mosaic()
        mosaic.register_application("nav", load_nav, "/")
        mosaic.register_application("settings", load_settings, "/settings")

        @mosaic.on("app-change")
        def changed(event_name, detail):
            print(detail.new_app_statuses)

        mosaic.start()
        await mosaic.navigate("/settings")

    Before ``start()`` reroutes only load the applications that match the
    current location; nothing is bootstrapped or mounted.
    """

    __slots__ = (
        "_listeners",
        "_location",
        "_notifications",
        "_registry",
        "_runner",
        "_scheduler",
        "config",
    )

    def __init__(self, config: MosaicConfig | None = None) -> None:
        self.config: MosaicConfig = config or MosaicConfig()
        self._location = Location.parse(self.config.initial_url)
        self._registry = Registry(
            lambda: self._location, load_error_retry=self.config.load_error_retry,
        )
        self._runner = LifecycleRunner(self._registry, self.config)
        self._notifications = NotificationBus()
        self._listeners = CapturedListeners()
        self._scheduler = Scheduler(
            self._registry,
            self._runner,
            self._notifications,
            self._listeners,
            lifecycle_logging=self.config.lifecycle_logging,
        )

    # -- Properties --

    @property
    def location(self) -> Location:
        return self._location

    @property
    def started(self) -> bool:
        return self._scheduler.started

    @property
    def registry(self) -> Registry:
        return self._registry

    @property
    def notifications(self) -> NotificationBus:
        return self._notifications

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    # -- Registration --

    def register_application(
        self,
        name: str,
        load: LoadFunction,
        active_when: Any,
        custom_props: Mapping[str, Any] | None = None,
        *,
        timeouts: PhaseTimeouts | None = None,
    ) -> Application:
        """Register a sub-application.

        Args:
            name: Unique name.
            load: Called with the application's props; returns (an awaitable
                of) an object exposing ``bootstrap``, ``mount``, ``unmount``
                and optionally ``unload``.
            active_when: Path pattern, ``Location -> bool`` callable, or a
                list of either.
            custom_props: Extra props passed to every lifecycle hook.
            timeouts: Per-application phase limits.

        If an event loop is running, a reroute is triggered so the new
        application is picked up right away.
        """
        if not isinstance(name, str) or not name:
            msg = f"Application name must be a non-empty string, got {name!r}"
            raise ConfigurationError(msg)
        if not callable(load):
            msg = f"load for {name!r} must be callable, got {load!r}"
            raise ConfigurationError(msg)
        if custom_props is not None and not isinstance(custom_props, Mapping):
            msg = f"custom_props for {name!r} must be a mapping, got {custom_props!r}"
            raise ConfigurationError(msg)

        app = Application(
            name, load, compile_activity(active_when), custom_props, timeouts=timeouts,
        )
        self._registry.register(app)
        if _loop_running():
            self._reroute_in_background()
        return app

    async def unregister_application(self, name: str) -> None:
        """Unmount and unload *name*, then forget it."""
        self._registry.require(name)
        await self.unload_application(name)
        self._registry.remove(name)
        logger.info("Unregistered application %r", name)

    async def unload_application(self, name: str, *, wait_for_unmount: bool = False) -> None:
        """Unload *name* so its next activation loads it from scratch.

        With ``wait_for_unmount=False`` a mounted application is unmounted
        immediately, and the call returns once both phases have run. An
        application caught mid-phase (or broken) is left as it is. With
        ``True`` the unload happens the next time a reroute unmounts it;
        this coroutine returns once it has.
        """
        app = self._registry.require(name)
        request = self._registry.request_unload(app)
        if wait_for_unmount:
            await request
            return

        try:
            app = await self._runner.unmount(app)
            await self._runner.unload(app)
        except LifecycleError as exc:
            self._registry.finish_unload(name, exc)
            # The error reaches the caller here; other waiters see it on the future
            request.exception()
            raise
        finally:
            # Reroute on the next loop iteration so unregister can remove the app first
            asyncio.get_running_loop().call_soon(self._reroute_in_background)
        # Statuses that cannot be unloaded right now settle the request unchanged
        self._registry.finish_unload(name)

    def _reroute_in_background(self) -> None:
        self._scheduler.trigger_change().add_done_callback(_log_failure)

    # -- Running --

    def start(self) -> asyncio.Future[list[str]]:
        """Enable mounting and run the first full pass."""
        self._scheduler.start()
        logger.info("Mosaic started with %d application(s)", len(self._registry))
        return self._scheduler.trigger_change()

    def trigger_app_change(self) -> asyncio.Future[list[str]]:
        """Reroute without an environment event."""
        return self._scheduler.trigger_change()

    def on_environment_change(self, *event_args: Any) -> asyncio.Future[list[str]]:
        """Inbound port for environment events. The first argument is the event."""
        return self._scheduler.enter(event_args or None)

    def navigate(self, url: str, *, state: Any = None) -> asyncio.Future[list[str]]:
        """Move to *url* and reroute.

        Captured listeners receive a ``NavigationEvent`` of type
        ``hashchange`` when only the fragment changed, ``popstate``
        otherwise.
        """
        previous = self._location
        self._location = Location.parse(url)
        only_fragment = (
            previous.path == self._location.path
            and previous.query == self._location.query
            and previous.fragment != self._location.fragment
        )
        event = NavigationEvent(
            type="hashchange" if only_fragment else "popstate",
            url=self._location.href,
            state=state,
        )
        return self.on_environment_change(event)

    # -- Queries --

    def get_mounted_apps(self) -> list[str]:
        return self._registry.mounted_names()

    def get_app_names(self) -> list[str]:
        return self._registry.names()

    def get_app_status(self, name: str) -> AppStatus | None:
        app = self._registry.get(name)
        return app.status if app is not None else None

    def check_activity_functions(self, location: Location | str | None = None) -> list[str]:
        """Names of the applications whose predicate matches *location*."""
        if location is None:
            location = self._location
        elif isinstance(location, str):
            location = Location.parse(location)
        return [app.name for app in self._registry if app.should_be_active(location)]

    # -- Listeners --

    def on(self, event_name: str) -> Callable[[NotificationListener], NotificationListener]:
        """Register a notification listener via decorator."""

        def decorator(func: NotificationListener) -> NotificationListener:
            self._notifications.on(event_name, func)
            return func

        return decorator

    def add_event_listener(self, event_type: str, listener: EnvironmentListener) -> None:
        """Capture a ``hashchange``/``popstate`` listener, replayed after each pass."""
        self._listeners.add(event_type, listener)

    def remove_event_listener(self, event_type: str, listener: EnvironmentListener) -> bool:
        return self._listeners.remove(event_type, listener)

    def add_error_handler(self, handler: Callable[[LifecycleError], Any]) -> None:
        self._runner.add_error_handler(handler)

    def remove_error_handler(self, handler: Callable[[LifecycleError], Any]) -> bool:
        return self._runner.remove_error_handler(handler)


def _loop_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


def _log_failure(task: asyncio.Future[Any]) -> None:
    # Background reroutes have no caller; make their failures visible
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.warning("Background reroute failed: %s", error)
