"""Shared type aliases used across mosaic modules."""

from collections.abc import Callable, Mapping
from typing import Any, TypeAlias

# Lifecycle hook — receives the application's props, may be sync or async
Hook: TypeAlias = Callable[[Mapping[str, Any]], Any]

# Load function — receives props, returns (an awaitable of) a lifecycle object
LoadFunction: TypeAlias = Callable[..., Any]

# Captured environment listener — receives the navigation event object
EnvironmentListener: TypeAlias = Callable[[Any], Any]

# Notification listener — receives (event_name, detail)
NotificationListener: TypeAlias = Callable[[str, Any], Any]

# Arguments of the environment event that triggered a reroute
EventArgs: TypeAlias = tuple[Any, ...]
