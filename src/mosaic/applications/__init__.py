"""Applications — handles, statuses, activity predicates, and the registry.

The registry is the orchestrator's view of the world: it classifies
applications into transition groups and owns every status write.
"""

from mosaic.applications.activity import Location, compile_activity, path_to_active_when
from mosaic.applications.application import Application
from mosaic.applications.registry import AppChanges, Registry
from mosaic.applications.status import AppStatus, can_transition

__all__ = [
    "AppChanges",
    "AppStatus",
    "Application",
    "Location",
    "Registry",
    "can_transition",
    "compile_activity",
    "path_to_active_when",
]
