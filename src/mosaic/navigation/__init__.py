"""Navigation — the reroute scheduler and the environment around it.

``Scheduler`` is the single entry point every environment change goes
through. ``CapturedListeners`` holds host listeners back until each pass
has torn down what no longer matches; ``NotificationBus`` reports the
pass to anyone interested.
"""

from mosaic.navigation.events import CapturedListeners, NavigationEvent
from mosaic.navigation.notifications import (
    EVENT_NAMES,
    ChangeDetail,
    DetailBuilder,
    NotificationBus,
)
from mosaic.navigation.reroute import PendingRequest, Scheduler, join

__all__ = [
    "EVENT_NAMES",
    "CapturedListeners",
    "ChangeDetail",
    "DetailBuilder",
    "NavigationEvent",
    "NotificationBus",
    "PendingRequest",
    "Scheduler",
    "join",
]
