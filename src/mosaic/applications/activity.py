"""Activity predicates — decide whether an application should be mounted.

An application's ``active_when`` is compiled once at registration into a
single ``Location -> bool`` callable. Accepted forms:

- ``"/settings"`` — path prefix, matched segment by segment
- ``"/users/{id}/profile"`` — ``{param}`` matches exactly one segment
- ``lambda location: location.fragment.startswith("#/admin")``
- a list or tuple mixing the above (any match activates)
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from urllib.parse import urlsplit

from mosaic.errors import ConfigurationError

ActivityPredicate = Callable[["Location"], bool]


@dataclass(frozen=True, slots=True)
class Location:
    """A parsed location the activity predicates are evaluated against."""

    path: str = "/"
    query: str = ""
    fragment: str = ""

    @classmethod
    def parse(cls, url: str) -> Location:
        """Parse a URL or bare path into a Location.

        Scheme and host are ignored; an empty path becomes ``/``.
        """
        parts = urlsplit(url)
        return cls(path=parts.path or "/", query=parts.query, fragment=parts.fragment)

    @property
    def href(self) -> str:
        href = self.path
        if self.query:
            href += f"?{self.query}"
        if self.fragment:
            href += f"#{self.fragment}"
        return href


@dataclass(frozen=True, slots=True)
class PathSegment:
    """A parsed segment of an activity pattern.

    Static:  ``/users``  (is_param=False)
    Param:   ``/{id}``   (is_param=True, param_name="id")
    """

    value: str
    is_param: bool = False
    param_name: str | None = None


def parse_pattern(pattern: str) -> list[PathSegment]:
    """Parse an activity pattern string into segments.

    Examples::

        "/users"           -> [PathSegment("users")]
        "/users/{id}"      -> [PathSegment("users"), PathSegment("{id}", is_param=True, ...)]
        "/"                -> []
    """
    segments: list[PathSegment] = []
    for part in pattern.strip("/").split("/"):
        if not part:
            continue
        if part.startswith("{") and part.endswith("}"):
            name = part[1:-1]
            if not name:
                msg = f"Empty parameter name in activity pattern {pattern!r}"
                raise ConfigurationError(msg)
            segments.append(PathSegment(value=part, is_param=True, param_name=name))
        else:
            segments.append(PathSegment(value=part))
    return segments


def path_to_active_when(pattern: str, *, exact: bool = False) -> ActivityPredicate:
    """Compile a path pattern into a predicate.

    Prefix matching is segment-aware: ``/app`` matches ``/app`` and
    ``/app/page`` but not ``/apple``. With ``exact=True`` the path must
    have no extra segments. Trailing slashes are ignored either way.
    """
    body = "".join(
        r"/[^/]+" if seg.is_param else "/" + re.escape(seg.value)
        for seg in parse_pattern(pattern)
    )
    tail = r"/?$" if exact else r"(?:/.*)?$"
    regex = re.compile("^" + body + tail)

    def predicate(location: Location) -> bool:
        return regex.match(location.path) is not None

    predicate.__qualname__ = f"path_to_active_when({pattern!r})"
    return predicate


def compile_activity(active_when: object) -> ActivityPredicate:
    """Normalise a registration's ``active_when`` into one predicate.

    Raises ``ConfigurationError`` for anything that is not a string,
    a callable, or a non-empty sequence of those.
    """
    if isinstance(active_when, str):
        return path_to_active_when(active_when)
    if callable(active_when):
        return active_when  # type: ignore[return-value]
    if isinstance(active_when, Sequence) and active_when:
        predicates = tuple(compile_activity(item) for item in active_when)

        def any_active(location: Location) -> bool:
            return any(predicate(location) for predicate in predicates)

        return any_active
    msg = (
        "active_when must be a path pattern, a callable taking a Location, "
        f"or a non-empty list of those, got {active_when!r}"
    )
    raise ConfigurationError(msg)
