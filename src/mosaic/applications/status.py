"""Application status enum and transition table.

Every status change goes through ``Registry.set_status()``, which checks
``can_transition()`` against ``ALLOWED_PREDECESSORS``. The table is the
single source of truth for which lifecycle moves are legal.
"""

from enum import StrEnum


class AppStatus(StrEnum):
    NOT_LOADED = "NOT_LOADED"
    LOADING_SOURCE_CODE = "LOADING_SOURCE_CODE"
    LOAD_ERROR = "LOAD_ERROR"
    NOT_BOOTSTRAPPED = "NOT_BOOTSTRAPPED"
    BOOTSTRAPPING = "BOOTSTRAPPING"
    BOOTSTRAP_ERROR = "BOOTSTRAP_ERROR"
    NOT_MOUNTED = "NOT_MOUNTED"
    MOUNTING = "MOUNTING"
    MOUNTED = "MOUNTED"
    UPDATING = "UPDATING"
    UNMOUNTING = "UNMOUNTING"
    UNMOUNT_ERROR = "UNMOUNT_ERROR"
    UNLOADING = "UNLOADING"
    SKIP_BECAUSE_BROKEN = "SKIP_BECAUSE_BROKEN"


# target status -> statuses it may be entered from
ALLOWED_PREDECESSORS: dict[AppStatus, frozenset[AppStatus]] = {
    AppStatus.LOADING_SOURCE_CODE: frozenset({AppStatus.NOT_LOADED, AppStatus.LOAD_ERROR}),
    AppStatus.NOT_BOOTSTRAPPED: frozenset({AppStatus.LOADING_SOURCE_CODE}),
    AppStatus.LOAD_ERROR: frozenset({AppStatus.LOADING_SOURCE_CODE}),
    AppStatus.BOOTSTRAPPING: frozenset({AppStatus.NOT_BOOTSTRAPPED}),
    AppStatus.BOOTSTRAP_ERROR: frozenset({AppStatus.BOOTSTRAPPING}),
    AppStatus.NOT_MOUNTED: frozenset({AppStatus.BOOTSTRAPPING, AppStatus.UNMOUNTING}),
    AppStatus.MOUNTING: frozenset({AppStatus.NOT_MOUNTED}),
    AppStatus.MOUNTED: frozenset({AppStatus.MOUNTING, AppStatus.UPDATING}),
    AppStatus.UPDATING: frozenset({AppStatus.MOUNTED}),
    AppStatus.UNMOUNTING: frozenset({AppStatus.MOUNTED, AppStatus.MOUNTING}),
    AppStatus.UNMOUNT_ERROR: frozenset({AppStatus.UNMOUNTING}),
    AppStatus.UNLOADING: frozenset(
        {AppStatus.NOT_BOOTSTRAPPED, AppStatus.NOT_MOUNTED, AppStatus.LOAD_ERROR}
    ),
    AppStatus.NOT_LOADED: frozenset({AppStatus.UNLOADING}),
    AppStatus.SKIP_BECAUSE_BROKEN: frozenset(AppStatus),
}


def can_transition(source: AppStatus, target: AppStatus) -> bool:
    """Return True if an application in *source* may move to *target*."""
    return source in ALLOWED_PREDECESSORS[target]


def is_active(status: AppStatus) -> bool:
    """True while the application occupies the shared surface."""
    return status is AppStatus.MOUNTED

