"""Application handle.

One ``Application`` per registered sub-application. The handle is
mutable, but ``status`` is read-only from the outside: only the
``Registry`` writes it, and only on behalf of the lifecycle runner.
"""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from mosaic._internal.types import LoadFunction
from mosaic.applications.activity import ActivityPredicate, Location
from mosaic.applications.status import AppStatus

if TYPE_CHECKING:
    from mosaic.config import PhaseTimeouts
    from mosaic.lifecycles.hooks import LifecycleHooks


class Application:
    """A registered sub-application.

    Attributes:
        name: Unique registration name.
        load: Callable returning (an awaitable of) the lifecycle object.
        active_when: Compiled ``Location -> bool`` predicate.
        custom_props: Extra props merged into what every hook receives.
        hooks: Flattened lifecycle hooks once loaded, ``None`` otherwise.
        timeouts: Per-application override of the configured limits.
        load_error_time: ``time.monotonic()`` of the last failed load.
    """

    __slots__ = (
        "_status",
        "active_when",
        "custom_props",
        "hooks",
        "load",
        "load_error_time",
        "name",
        "timeouts",
    )

    def __init__(
        self,
        name: str,
        load: LoadFunction,
        active_when: ActivityPredicate,
        custom_props: Mapping[str, Any] | None = None,
        *,
        timeouts: PhaseTimeouts | None = None,
    ) -> None:
        self.name = name
        self.load = load
        self.active_when = active_when
        self.custom_props: Mapping[str, Any] = MappingProxyType(dict(custom_props or {}))
        self.hooks: LifecycleHooks | None = None
        self.timeouts = timeouts
        self.load_error_time: float | None = None
        self._status = AppStatus.NOT_LOADED

    @property
    def status(self) -> AppStatus:
        return self._status

    def should_be_active(self, location: Location) -> bool:
        """Evaluate the activity predicate. Broken applications never are."""
        if self._status is AppStatus.SKIP_BECAUSE_BROKEN:
            return False
        return bool(self.active_when(location))

    def props(self) -> dict[str, Any]:
        """Props passed to every lifecycle hook."""
        return {**self.custom_props, "name": self.name}

    def __repr__(self) -> str:
        return f"Application({self.name!r}, status={self._status})"
