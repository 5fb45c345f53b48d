"""Mosaic exception hierarchy.

Shared across the registry, the lifecycle runner, and the reroute
scheduler so every module raises and catches the same types.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mosaic.applications.status import AppStatus


class MosaicError(Exception):
    """Base for all mosaic-specific errors."""


class ConfigurationError(MosaicError):
    """Raised when an application registration or config value is invalid.

    Typically raised by ``Mosaic.register_application()`` before the
    application ever reaches the registry.
    """


class ApplicationNotFound(MosaicError, LookupError):  # noqa: N818
    """No application is registered under the requested name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"No application registered as {name!r}")
        self.name = name


class DuplicateApplicationError(MosaicError):
    """An application with the same name is already registered."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Application {name!r} is already registered")
        self.name = name


class InvalidTransitionError(MosaicError):
    """A status change was requested that the transition table forbids.

    Raised by ``Registry.set_status()``. Seeing one means a phase runner
    tried to move an application out of order, which is a bug in the
    runner rather than in the application.
    """

    def __init__(self, name: str, source: str, target: str) -> None:
        super().__init__(f"Application {name!r} cannot move from {source} to {target}")
        self.name = name
        self.source = source
        self.target = target


# Not frozen: contextlib assigns __traceback__ on exceptions passing through
@dataclass(eq=False, slots=True)
class LifecycleError(MosaicError):
    """A lifecycle phase failed for one application.

    The original exception is attached as ``__cause__``. ``status`` is the
    status the application was left in (usually ``SKIP_BECAUSE_BROKEN``).
    """

    app_name: str
    phase: str
    status: AppStatus
    detail: str = ""

    def __str__(self) -> str:
        msg = f"Application {self.app_name!r} died in {self.phase} (status {self.status})"
        if self.detail:
            return f"{msg}: {self.detail}"
        return msg


class PhaseTimeoutError(LifecycleError):
    """A lifecycle hook exceeded its ``dies_on_timeout`` limit."""
