"""Lifecycles — the phase runner and the hooks it drives.

Applications expose ``bootstrap``, ``mount``, ``unmount`` and optionally
``unload``. The runner calls them under per-phase time limits and moves
the application's status through the registry.
"""

from mosaic.lifecycles.hooks import InvalidLifecycleError, LifecycleHooks, extract_hooks
from mosaic.lifecycles.runner import LifecycleRunner
from mosaic.lifecycles.timeouts import reasonable_time

__all__ = [
    "InvalidLifecycleError",
    "LifecycleHooks",
    "LifecycleRunner",
    "extract_hooks",
    "reasonable_time",
]
