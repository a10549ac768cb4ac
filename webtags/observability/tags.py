"""Tag values for HTTP server request metrics.

Each function derives a single tag from whatever request context is available.
None of them raise: missing context maps to a placeholder value so the tag key
set stays stable across every request.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from starlette.requests import HTTPConnection


# ASGI scope key holding the route template the request was matched against.
MATCHED_PATTERN_KEY = "matched_route_pattern"

_TRAILING_SLASH = re.compile(r"/$")
_MULTIPLE_SLASHES = re.compile(r"//+")


@dataclass(frozen=True)
class Tag:
    key: str
    value: str

    @classmethod
    def of(cls, key: str, value: str) -> Tag:
        return cls(key=key, value=value)


class Outcome(Enum):
    INFORMATIONAL = "INFORMATIONAL"
    SUCCESS = "SUCCESS"
    REDIRECTION = "REDIRECTION"
    CLIENT_ERROR = "CLIENT_ERROR"
    SERVER_ERROR = "SERVER_ERROR"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def for_status(cls, code: int) -> Outcome:
        if 100 <= code < 200:
            return cls.INFORMATIONAL
        if 200 <= code < 300:
            return cls.SUCCESS
        if 300 <= code < 400:
            return cls.REDIRECTION
        if 400 <= code < 500:
            return cls.CLIENT_ERROR
        if 500 <= code < 600:
            return cls.SERVER_ERROR
        return cls.UNKNOWN

    def as_tag(self) -> Tag:
        return Tag.of("outcome", self.name)


METHOD_UNKNOWN = Tag.of("method", "UNKNOWN")
STATUS_UNKNOWN = Tag.of("status", "UNKNOWN")
URI_NOT_FOUND = Tag.of("uri", "NOT_FOUND")
URI_REDIRECTION = Tag.of("uri", "REDIRECTION")
URI_ROOT = Tag.of("uri", "root")
URI_UNKNOWN = Tag.of("uri", "UNKNOWN")
EXCEPTION_NONE = Tag.of("exception", "None")


def _status_code(response: Any) -> int | None:
    # Anything exposing `status_code` works: starlette Responses, httpx
    # responses, or the middleware's own completed-response record.
    code = getattr(response, "status_code", None)
    if isinstance(code, int):
        return code
    return None


def method(request: HTTPConnection | None) -> Tag:
    if request is None:
        return METHOD_UNKNOWN
    value = request.scope.get("method")
    return Tag.of("method", value) if value else METHOD_UNKNOWN


def status(response: Any) -> Tag:
    code = _status_code(response)
    if code is None:
        return STATUS_UNKNOWN
    return Tag.of("status", str(code))


def outcome(response: Any) -> Tag:
    code = _status_code(response)
    if code is None:
        return Outcome.UNKNOWN.as_tag()
    return Outcome.for_status(code).as_tag()


def get_matching_pattern(request: HTTPConnection) -> str | None:
    """Return the route template the request was matched against, if any."""
    pattern = request.scope.get(MATCHED_PATTERN_KEY)
    if isinstance(pattern, str):
        return pattern

    # FastAPI's APIRoute puts itself into the scope once it matches.
    route = request.scope.get("route")
    if route is None:
        return None
    for attr in ("path_format", "path"):
        value = getattr(route, attr, None)
        if isinstance(value, str):
            return value
    return None


def uri(request: HTTPConnection | None, response: Any, ignore_trailing_slash: bool = False) -> Tag:
    """Derive the `uri` tag.

    Prefers the matched route pattern. Unmatched requests never expose their
    raw path: they collapse into REDIRECTION, NOT_FOUND, root or UNKNOWN to
    keep tag cardinality bounded.
    """
    if request is None:
        return URI_UNKNOWN

    pattern = get_matching_pattern(request)
    if pattern is not None:
        if ignore_trailing_slash and len(pattern) > 1:
            pattern = _TRAILING_SLASH.sub("", pattern)
        if not pattern:
            return URI_ROOT
        return Tag.of("uri", pattern)

    code = _status_code(response)
    if code is not None:
        if 300 <= code < 400:
            return URI_REDIRECTION
        if code == 404:
            return URI_NOT_FOUND

    if not _path_info(request):
        return URI_ROOT
    return URI_UNKNOWN


def _path_info(request: HTTPConnection) -> str:
    path = request.scope.get("path") or "/"
    path = _MULTIPLE_SLASHES.sub("/", path)
    return _TRAILING_SLASH.sub("", path)


def exception(exc: BaseException | None) -> Tag:
    if exc is None:
        return EXCEPTION_NONE
    name = type(exc).__name__
    if not name.strip():
        name = f"{type(exc).__module__}.{type(exc).__qualname__}"
    return Tag.of("exception", name)
