"""Mosaic — lifecycle orchestration for independently deployed sub-applications.

Many sub-applications share one runtime surface; mosaic loads, bootstraps,
mounts, unmounts and unloads each of them as the location changes, one
reroute pass at a time.

Basic usage::

    from mosaic import Mosaic

    mosaic = Mosaic()
    mosaic.register_application("nav", load_nav, "/")
    mosaic.register_application("settings", load_settings, "/settings")

    mosaic.start()
    mounted = await mosaic.navigate("/settings")
"""

__version__ = "0.1.0.dev0"
__all__ = [
    "AppStatus",
    "Application",
    "ApplicationNotFound",
    "ChangeDetail",
    "ConfigurationError",
    "LifecycleError",
    "Location",
    "Mosaic",
    "MosaicConfig",
    "MosaicError",
    "NavigationEvent",
    "PhaseTimeout",
    "PhaseTimeoutError",
    "PhaseTimeouts",
    "path_to_active_when",
]

_LAZY_IMPORTS: dict[str, str] = {
    "Mosaic": "mosaic.app",
    "MosaicConfig": "mosaic.config",
    "PhaseTimeout": "mosaic.config",
    "PhaseTimeouts": "mosaic.config",
    "AppStatus": "mosaic.applications.status",
    "Application": "mosaic.applications.application",
    "Location": "mosaic.applications.activity",
    "path_to_active_when": "mosaic.applications.activity",
    "ChangeDetail": "mosaic.navigation.notifications",
    "NavigationEvent": "mosaic.navigation.events",
    "MosaicError": "mosaic.errors",
    "ConfigurationError": "mosaic.errors",
    "ApplicationNotFound": "mosaic.errors",
    "LifecycleError": "mosaic.errors",
    "PhaseTimeoutError": "mosaic.errors",
}


def __getattr__(name: str) -> object:
    """Lazy imports for public API.

    Keeps ``import mosaic`` fast while providing a clean top-level API.
    """
    module_name = _LAZY_IMPORTS.get(name)
    if module_name is None:
        msg = f"module {__name__!r} has no attribute {name!r}"
        raise AttributeError(msg)

    from importlib import import_module

    return getattr(import_module(module_name), name)
