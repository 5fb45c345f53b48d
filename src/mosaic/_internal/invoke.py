"""Call user code that may or may not be a coroutine function.

Three kinds of user callables reach mosaic: load functions, lifecycle
hooks, and captured ``hashchange``/``popstate`` listeners. Each may be
written as ``def`` or ``async def``, and a load function may also return
a future or task it created itself. ``invoke()`` is the one place that
tells the cases apart.
"""

import inspect
from typing import Any


async def invoke(func: Any, *args: Any, **kwargs: Any) -> Any:
    """Call *func* with the given arguments; await what it returns if awaitable.

    Both of these load functions work::

        def load_nav(props):
            return nav_module

        async def load_nav(props):
            return await fetch_bundle(props["name"])
    """
    result = func(*args, **kwargs)
    if inspect.isawaitable(result):
        return await result
    return result
