"""Orchestrator configuration.

MosaicConfig is a frozen dataclass — immutable after creation, IDE-autocompletable,
no string-key dict lookups.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class PhaseTimeout:
    """Time limits for one lifecycle phase.

    ``millis`` is the hard limit. When ``dies_on_timeout`` is False the hook
    keeps running past it and only a warning is logged; when True the hook is
    cancelled and the application is marked broken.
    """

    millis: int
    dies_on_timeout: bool = False
    warning_millis: int = 1000

    @property
    def seconds(self) -> float:
        return self.millis / 1000

    @property
    def warning_seconds(self) -> float:
        return self.warning_millis / 1000


@dataclass(frozen=True, slots=True)
class PhaseTimeouts:
    """Per-phase limits. Applications may carry their own override."""

    bootstrap: PhaseTimeout = field(default_factory=lambda: PhaseTimeout(4000))
    mount: PhaseTimeout = field(default_factory=lambda: PhaseTimeout(3000))
    unmount: PhaseTimeout = field(default_factory=lambda: PhaseTimeout(3000))
    unload: PhaseTimeout = field(default_factory=lambda: PhaseTimeout(3000))

    def for_phase(self, phase: str) -> PhaseTimeout:
        return getattr(self, phase)


@dataclass(frozen=True, slots=True)
class MosaicConfig:
    """Orchestrator configuration. Immutable after creation.

    All fields have sensible defaults. Override what you need::

        config = MosaicConfig(
            initial_url="/dashboard",
            timeouts=PhaseTimeouts(mount=PhaseTimeout(500, dies_on_timeout=True)),
        )
    """

    # Lifecycle limits
    timeouts: PhaseTimeouts = field(default_factory=PhaseTimeouts)

    # Seconds before an application in LOAD_ERROR is eligible for another load
    load_error_retry: float = 0.2

    # Location the orchestrator starts from before any navigate()
    initial_url: str = "/"

    # INFO-level logging of every reroute pass
    lifecycle_logging: bool = True
