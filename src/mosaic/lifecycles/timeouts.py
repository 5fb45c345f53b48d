"""Phase time limits — warn on slow hooks, optionally cancel them.

Every bootstrap/mount/unmount/unload hook runs under
``reasonable_time()``. A watchdog task logs a warning each
``warning_millis`` while the hook is pending and once more when the hard
limit passes. With ``dies_on_timeout`` the hook is cancelled at the
limit instead and ``PhaseTimeoutError`` is raised.

Pipeline::

    1. Start the watchdog in an anyio task group
    2. Await the hook (inside anyio.move_on_after when it dies on timeout)
    3. Cancel the watchdog
    4. Re-raise whatever the hook raised, outside the task group
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

import anyio

from mosaic.applications.status import AppStatus
from mosaic.config import PhaseTimeout
from mosaic.errors import PhaseTimeoutError

logger = logging.getLogger("mosaic.lifecycles")


async def _watch(app_name: str, phase: str, timeout: PhaseTimeout) -> None:
    """Log while a hook is pending. Cancelled as soon as the hook settles."""
    elapsed = 0.0
    step = timeout.warning_seconds
    if step > 0:
        while elapsed + step < timeout.seconds:
            await anyio.sleep(step)
            elapsed += step
            logger.warning(
                "%s of %r has not resolved after %d ms", phase, app_name, round(elapsed * 1000),
            )
    await anyio.sleep(timeout.seconds - elapsed)
    if timeout.dies_on_timeout:
        return
    logger.warning(
        "%s of %r did not resolve within %d ms; still waiting because "
        "dies_on_timeout is False",
        phase, app_name, timeout.millis,
    )


async def reasonable_time(
    app_name: str,
    phase: str,
    timeout: PhaseTimeout,
    call: Callable[[], Awaitable[Any]],
) -> Any:
    """Await ``call()`` under *timeout*.

    Raises ``PhaseTimeoutError`` when the hook is cancelled for exceeding
    a ``dies_on_timeout`` limit. Any other exception from the hook
    propagates unchanged.
    """
    result: Any = None
    error: Exception | None = None

    # A bare CancelScope never fires; it keeps the two cases on one code path
    scope = anyio.move_on_after(timeout.seconds) if timeout.dies_on_timeout else anyio.CancelScope()
    async with anyio.create_task_group() as tg:
        tg.start_soon(_watch, app_name, phase, timeout)
        try:
            with scope:
                result = await call()
        except Exception as exc:
            error = exc
        tg.cancel_scope.cancel()

    if scope.cancelled_caught:
        raise PhaseTimeoutError(
            app_name=app_name,
            phase=phase,
            status=AppStatus.SKIP_BECAUSE_BROKEN,
            detail=f"did not resolve within {timeout.millis} ms",
        )
    if error is not None:
        raise error
    return result
