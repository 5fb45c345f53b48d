"""Application registry — owns every handle and every status change.

The registry answers the orchestrator's questions (which applications
change this pass, which are mounted, is this one still wanted) and is
the only writer of ``Application.status``. Writes are validated against
the transition table in ``mosaic.applications.status``.
"""

import asyncio
import logging
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass

from mosaic.applications.activity import Location
from mosaic.applications.application import Application
from mosaic.applications.status import AppStatus, can_transition, is_active
from mosaic.errors import ApplicationNotFound, DuplicateApplicationError, InvalidTransitionError

logger = logging.getLogger("mosaic.registry")


@dataclass(frozen=True, slots=True)
class AppChanges:
    """The four transition groups of one reroute pass.

    Computed fresh by ``Registry.classify()`` on every pass and never
    mutated afterwards.
    """

    to_unload: tuple[Application, ...] = ()
    to_unmount: tuple[Application, ...] = ()
    to_load: tuple[Application, ...] = ()
    to_mount: tuple[Application, ...] = ()

    @property
    def changed(self) -> tuple[Application, ...]:
        """Every application this pass touches, in notification order."""
        return self.to_unload + self.to_load + self.to_unmount + self.to_mount

    def __bool__(self) -> bool:
        return bool(self.changed)


class Registry:
    """Registered applications, in registration order.

    Args:
        location: Zero-argument callable returning the current ``Location``.
        load_error_retry: Seconds an application stays out of the load
            group after a failed load.
    """

    __slots__ = ("_apps", "_load_error_retry", "_location", "_unload_requests")

    def __init__(
        self,
        location: Callable[[], Location],
        *,
        load_error_retry: float = 0.2,
    ) -> None:
        self._apps: dict[str, Application] = {}
        self._location = location
        self._load_error_retry = load_error_retry
        self._unload_requests: dict[str, asyncio.Future[None]] = {}

    # -- Membership --

    def register(self, app: Application) -> None:
        if app.name in self._apps:
            raise DuplicateApplicationError(app.name)
        self._apps[app.name] = app
        logger.debug("Registered application %r", app.name)

    def remove(self, name: str) -> Application:
        app = self.require(name)
        del self._apps[name]
        # Anyone still waiting on an unload is done waiting: the app is gone
        self.finish_unload(name)
        logger.debug("Removed application %r", name)
        return app

    def get(self, name: str) -> Application | None:
        return self._apps.get(name)

    def require(self, name: str) -> Application:
        """Look up an application, raising ``ApplicationNotFound`` if absent."""
        app = self._apps.get(name)
        if app is None:
            raise ApplicationNotFound(name)
        return app

    def names(self) -> list[str]:
        return list(self._apps)

    def __iter__(self) -> Iterator[Application]:
        return iter(list(self._apps.values()))

    def __len__(self) -> int:
        return len(self._apps)

    def __contains__(self, name: object) -> bool:
        return name in self._apps

    # -- Queries used by the orchestrator --

    def name(self, app: Application) -> str:
        return app.name

    def status(self, name: str) -> AppStatus:
        return self.require(name).status

    def mounted_names(self) -> list[str]:
        return [app.name for app in self._apps.values() if is_active(app.status)]

    def desired_active(self, app: Application) -> bool:
        """Should *app* be mounted for the current location?

        A predicate that raises marks the application broken and counts
        as not active.
        """
        try:
            return app.should_be_active(self._location())
        except Exception:
            logger.exception("Activity function of %r raised; marking it broken", app.name)
            self.set_status(app, AppStatus.SKIP_BECAUSE_BROKEN)
            return False

    def classify(self) -> AppChanges:
        """Sort every application into the four transition groups."""
        to_unload: list[Application] = []
        to_unmount: list[Application] = []
        to_load: list[Application] = []
        to_mount: list[Application] = []
        now = time.monotonic()

        for app in self:
            if app.status is AppStatus.SKIP_BECAUSE_BROKEN:
                continue
            active = self.desired_active(app)
            match app.status:
                case AppStatus.LOAD_ERROR:
                    retry_at = (app.load_error_time or 0.0) + self._load_error_retry
                    if active and now >= retry_at:
                        to_load.append(app)
                case AppStatus.NOT_LOADED | AppStatus.LOADING_SOURCE_CODE:
                    if active:
                        to_load.append(app)
                case AppStatus.NOT_BOOTSTRAPPED | AppStatus.NOT_MOUNTED:
                    if not active and app.name in self._unload_requests:
                        to_unload.append(app)
                    elif active:
                        to_mount.append(app)
                case AppStatus.MOUNTED:
                    if not active:
                        to_unmount.append(app)

        return AppChanges(
            to_unload=tuple(to_unload),
            to_unmount=tuple(to_unmount),
            to_load=tuple(to_load),
            to_mount=tuple(to_mount),
        )

    # -- Status writes (lifecycle runner only) --

    def set_status(self, app: Application, status: AppStatus) -> None:
        """Move *app* to *status*, enforcing the transition table."""
        source = app.status
        if source is status:
            return
        if not can_transition(source, status):
            raise InvalidTransitionError(app.name, source, status)
        app._status = status  # noqa: SLF001
        logger.debug("%s: %s -> %s", app.name, source, status)

    # -- Unload requests --

    def request_unload(self, app: Application) -> asyncio.Future[None]:
        """Mark *app* for unloading. Repeated requests share one future."""
        future = self._unload_requests.get(app.name)
        if future is None:
            future = asyncio.get_running_loop().create_future()
            self._unload_requests[app.name] = future
        return future

    def unload_request(self, name: str) -> asyncio.Future[None] | None:
        return self._unload_requests.get(name)

    def finish_unload(self, name: str, error: BaseException | None = None) -> None:
        """Settle and forget the unload request for *name*, if any."""
        future = self._unload_requests.pop(name, None)
        if future is None or future.done():
            return
        if error is None:
            future.set_result(None)
        else:
            future.set_exception(error)
