from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from typing import Any

from starlette.requests import HTTPConnection

from webtags.observability import tags


class TagsProvider(ABC):
    """Supplies the tags recorded for HTTP server requests."""

    @abstractmethod
    def get_tags(
        self,
        request: HTTPConnection | None,
        response: Any,
        handler: Any,
        exception: BaseException | None,
    ) -> Iterable[tags.Tag]:
        """Tags for a request that has completed, successfully or not."""

    @abstractmethod
    def get_long_request_tags(self, request: HTTPConnection | None, handler: Any) -> Iterable[tags.Tag]:
        """Tags for a request that is still being handled."""


class TagsContributor(ABC):
    """Adds tags on top of the ones a provider computes."""

    @abstractmethod
    def get_tags(
        self,
        request: HTTPConnection | None,
        response: Any,
        handler: Any,
        exception: BaseException | None,
    ) -> Iterable[tags.Tag]:
        ...

    @abstractmethod
    def get_long_request_tags(self, request: HTTPConnection | None, handler: Any) -> Iterable[tags.Tag]:
        ...


def _merge(*groups: Iterable[tags.Tag]) -> list[tags.Tag]:
    # Keys are unique; a later tag with an existing key replaces the earlier value.
    merged: dict[str, tags.Tag] = {}
    for group in groups:
        for tag in group:
            merged[tag.key] = tag
    return list(merged.values())


class DefaultTagsProvider(TagsProvider):
    """Tags requests with method, status, outcome, uri and exception.

    Long requests only get method and uri since they have no response yet.
    Contributors are consulted in the order given and their tags are merged in.
    """

    def __init__(
        self,
        contributors: Sequence[TagsContributor] | None = None,
        *,
        ignore_trailing_slash: bool = False,
    ) -> None:
        self.contributors: tuple[TagsContributor, ...] = tuple(contributors or ())
        self.ignore_trailing_slash = ignore_trailing_slash

    def get_tags(
        self,
        request: HTTPConnection | None,
        response: Any,
        handler: Any,
        exception: BaseException | None,
    ) -> list[tags.Tag]:
        defaults = [
            tags.exception(exception),
            tags.method(request),
            tags.outcome(response),
            tags.status(response),
            tags.uri(request, response, self.ignore_trailing_slash),
        ]
        contributed = (c.get_tags(request, response, handler, exception) for c in self.contributors)
        return _merge(defaults, *contributed)

    def get_long_request_tags(self, request: HTTPConnection | None, handler: Any) -> list[tags.Tag]:
        defaults = [
            tags.method(request),
            tags.uri(request, None, self.ignore_trailing_slash),
        ]
        contributed = (c.get_long_request_tags(request, handler) for c in self.contributors)
        return _merge(defaults, *contributed)
