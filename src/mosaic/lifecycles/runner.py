"""Lifecycle phase runner — load, bootstrap, mount, unmount, unload.

Each phase takes an ``Application`` and returns it once the phase has
settled. A phase whose precondition does not hold (wrong status, no
unload requested) is a no-op that returns the application unchanged.

A failing phase marks the application broken (``LOAD_ERROR`` for a
failed load), notifies the registered error handlers, and raises
``LifecycleError`` with the original exception as ``__cause__``. The
runner never retries; the registry makes a ``LOAD_ERROR`` application
eligible for another load after ``load_error_retry`` seconds.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

from mosaic._internal.invoke import invoke
from mosaic.applications.application import Application
from mosaic.applications.registry import Registry
from mosaic.applications.status import AppStatus
from mosaic.config import MosaicConfig, PhaseTimeout
from mosaic.errors import LifecycleError
from mosaic.lifecycles.hooks import InvalidLifecycleError, extract_hooks
from mosaic.lifecycles.timeouts import reasonable_time

logger = logging.getLogger("mosaic.lifecycles")

ErrorHandler = Callable[[LifecycleError], Any]


class LifecycleRunner:
    """Drives applications through their lifecycle hooks.

    Status writes go through ``Registry.set_status()`` so every move is
    checked against the transition table.
    """

    __slots__ = ("_config", "_error_handlers", "_loads", "_registry")

    def __init__(self, registry: Registry, config: MosaicConfig | None = None) -> None:
        self._registry = registry
        self._config = config or MosaicConfig()
        self._error_handlers: list[ErrorHandler] = []
        # In-flight loads, so concurrent passes share one load per application
        self._loads: dict[str, asyncio.Task[Application]] = {}

    # -- Error handlers --

    def add_error_handler(self, handler: ErrorHandler) -> None:
        self._error_handlers.append(handler)

    def remove_error_handler(self, handler: ErrorHandler) -> bool:
        """Remove *handler*. Returns False if it was not registered."""
        try:
            self._error_handlers.remove(handler)
        except ValueError:
            return False
        return True

    def _fail(
        self,
        app: Application,
        phase: str,
        exc: Exception,
        status: AppStatus = AppStatus.SKIP_BECAUSE_BROKEN,
    ) -> LifecycleError:
        """Record a phase failure and build the error to raise."""
        self._registry.set_status(app, status)
        if isinstance(exc, LifecycleError):
            error = type(exc)(app_name=app.name, phase=phase, status=status, detail=exc.detail)
        else:
            error = LifecycleError(
                app_name=app.name, phase=phase, status=status, detail=f"{type(exc).__name__}: {exc}",
            )
        logger.error("%s", error, exc_info=exc)
        for handler in list(self._error_handlers):
            try:
                handler(error)
            except Exception:
                logger.exception("Error handler %r raised while handling %s", handler, error)
        return error

    def _timeout(self, app: Application, phase: str) -> PhaseTimeout:
        timeouts = app.timeouts or self._config.timeouts
        return timeouts.for_phase(phase)

    async def _run_hook(self, app: Application, phase: str) -> None:
        if app.hooks is None:
            msg = f"{app.name!r} has no lifecycle hooks; was it loaded?"
            raise InvalidLifecycleError(msg)
        hook = getattr(app.hooks, phase)
        if hook is None:
            return
        props = app.props()
        await reasonable_time(app.name, phase, self._timeout(app, phase), lambda: hook(props))

    # -- Phases --

    async def load(self, app: Application) -> Application:
        """Fetch the application's lifecycle hooks.

        Only ``NOT_LOADED`` and ``LOAD_ERROR`` applications are loaded.
        Concurrent calls for the same application await one shared load.
        """
        task = self._loads.get(app.name)
        if task is None:
            if app.status not in (AppStatus.NOT_LOADED, AppStatus.LOAD_ERROR):
                return app
            task = asyncio.ensure_future(self._load(app))
            self._loads[app.name] = task
            task.add_done_callback(lambda _: self._loads.pop(app.name, None))
        return await asyncio.shield(task)

    async def _load(self, app: Application) -> Application:
        self._registry.set_status(app, AppStatus.LOADING_SOURCE_CODE)
        try:
            lifecycle = await invoke(app.load, app.props())
        except Exception as exc:
            app.load_error_time = time.monotonic()
            raise self._fail(app, "load", exc, AppStatus.LOAD_ERROR) from exc

        try:
            hooks = extract_hooks(app.name, lifecycle)
        except InvalidLifecycleError as exc:
            raise self._fail(app, "load", exc) from exc

        app.hooks = hooks
        app.load_error_time = None
        self._registry.set_status(app, AppStatus.NOT_BOOTSTRAPPED)
        return app

    async def bootstrap(self, app: Application) -> Application:
        if app.status is not AppStatus.NOT_BOOTSTRAPPED:
            return app
        self._registry.set_status(app, AppStatus.BOOTSTRAPPING)
        try:
            await self._run_hook(app, "bootstrap")
        except Exception as exc:
            raise self._fail(app, "bootstrap", exc) from exc
        self._registry.set_status(app, AppStatus.NOT_MOUNTED)
        return app

    async def mount(self, app: Application) -> Application:
        """Mount a bootstrapped application.

        If the mount hook fails, the unmount hook is given a chance to
        clean up whatever was partially mounted before the application is
        marked broken.
        """
        if app.status is not AppStatus.NOT_MOUNTED:
            return app
        self._registry.set_status(app, AppStatus.MOUNTING)
        try:
            await self._run_hook(app, "mount")
        except Exception as exc:
            self._registry.set_status(app, AppStatus.UNMOUNTING)
            try:
                await self._run_hook(app, "unmount")
            except Exception:
                logger.exception("Cleanup unmount of %r failed after a failed mount", app.name)
            raise self._fail(app, "mount", exc) from exc
        self._registry.set_status(app, AppStatus.MOUNTED)
        return app

    async def unmount(self, app: Application) -> Application:
        if app.status is not AppStatus.MOUNTED:
            return app
        self._registry.set_status(app, AppStatus.UNMOUNTING)
        try:
            await self._run_hook(app, "unmount")
        except Exception as exc:
            raise self._fail(app, "unmount", exc) from exc
        self._registry.set_status(app, AppStatus.NOT_MOUNTED)
        return app

    async def unload(self, app: Application) -> Application:
        """Unload an application that has a pending unload request.

        Releases the lifecycle hooks so the next load starts from scratch,
        then settles the request future.
        """
        request = self._registry.unload_request(app.name)
        if request is None:
            return app

        match app.status:
            case AppStatus.NOT_LOADED:
                self._registry.finish_unload(app.name)
                return app
            case AppStatus.UNLOADING:
                await asyncio.shield(request)
                return app
            case AppStatus.NOT_BOOTSTRAPPED | AppStatus.NOT_MOUNTED | AppStatus.LOAD_ERROR:
                pass
            case _:
                return app

        skip_hook = app.status is AppStatus.LOAD_ERROR
        self._registry.set_status(app, AppStatus.UNLOADING)
        try:
            if not skip_hook:
                await self._run_hook(app, "unload")
        except Exception as exc:
            app.hooks = None
            error = self._fail(app, "unload", exc)
            self._registry.finish_unload(app.name, error)
            raise error from exc

        app.hooks = None
        self._registry.set_status(app, AppStatus.NOT_LOADED)
        self._registry.finish_unload(app.name)
        return app
