"""Lifecycle hook extraction and flattening.

A load function returns a *lifecycle object*: a module, an object, or a
mapping exposing ``bootstrap``, ``mount`` and ``unmount`` (``unload`` is
optional). Each entry is a callable or a list of callables; lists are
flattened into one hook that runs its members in order.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from mosaic._internal.invoke import invoke
from mosaic._internal.types import Hook

REQUIRED_HOOKS = ("bootstrap", "mount", "unmount")


class InvalidLifecycleError(ValueError):
    """The object returned by a load function is not a usable lifecycle."""


@dataclass(frozen=True, slots=True)
class LifecycleHooks:
    """Flattened hooks of a loaded application."""

    bootstrap: Hook
    mount: Hook
    unmount: Hook
    unload: Hook | None = None


def _lookup(lifecycle: Any, name: str) -> Any:
    if isinstance(lifecycle, Mapping):
        return lifecycle.get(name)
    return getattr(lifecycle, name, None)


def flatten_hooks(app_name: str, phase: str, hooks: Hook | Sequence[Hook]) -> Hook:
    """Combine one hook or a list of hooks into a single async hook.

    Raises ``InvalidLifecycleError`` if any member is not callable.
    """
    if callable(hooks):
        members: tuple[Hook, ...] = (hooks,)
    elif isinstance(hooks, Sequence) and not isinstance(hooks, str):
        members = tuple(hooks)
    else:
        msg = f"{app_name!r} {phase} must be a callable or a list of callables, got {hooks!r}"
        raise InvalidLifecycleError(msg)

    for index, member in enumerate(members):
        if not callable(member):
            msg = f"{app_name!r} {phase} hook at index {index} is not callable: {member!r}"
            raise InvalidLifecycleError(msg)

    async def run(props: Mapping[str, Any]) -> None:
        for member in members:
            await invoke(member, props)

    run.__qualname__ = f"{app_name}.{phase}"
    return run


def extract_hooks(app_name: str, lifecycle: Any) -> LifecycleHooks:
    """Validate a lifecycle object and flatten its hooks."""
    if lifecycle is None:
        msg = f"Load function of {app_name!r} returned nothing"
        raise InvalidLifecycleError(msg)

    missing = [name for name in REQUIRED_HOOKS if _lookup(lifecycle, name) is None]
    if missing:
        msg = f"{app_name!r} does not export {', '.join(missing)}"
        raise InvalidLifecycleError(msg)

    unload = _lookup(lifecycle, "unload")
    return LifecycleHooks(
        bootstrap=flatten_hooks(app_name, "bootstrap", _lookup(lifecycle, "bootstrap")),
        mount=flatten_hooks(app_name, "mount", _lookup(lifecycle, "mount")),
        unmount=flatten_hooks(app_name, "unmount", _lookup(lifecycle, "unmount")),
        unload=flatten_hooks(app_name, "unload", unload) if unload is not None else None,
    )
