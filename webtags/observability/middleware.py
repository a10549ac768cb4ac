from __future__ import annotations

import uuid
from dataclasses import dataclass
from time import perf_counter
from typing import Any, Callable

import structlog
from starlette.datastructures import MutableHeaders
from starlette.requests import HTTPConnection
from starlette.routing import Match

from webtags.config import get_settings
from webtags.observability.metrics import InMemoryMetrics, get_metrics
from webtags.observability.provider import DefaultTagsProvider, TagsProvider
from webtags.observability.tags import MATCHED_PATTERN_KEY, Tag


DEFAULT_EXCLUDED_PATHS = frozenset({"/api/metrics", "/metrics"})


@dataclass(frozen=True)
class CompletedResponse:
    """What the middleware knows about a response once the app is done with it."""

    status_code: int


def _resolve_route(scope: dict[str, Any]) -> Any:
    app = scope.get("app")
    for route in getattr(app, "routes", None) or ():
        match, _ = route.matches(scope)
        if match == Match.FULL:
            return route
    return None


class RequestMetricsMiddleware:
    """Adds request_id context, access logs, and tagged HTTP request timings."""

    def __init__(
        self,
        app: Callable[..., Any],
        *,
        tags_provider: TagsProvider | None = None,
        metrics: InMemoryMetrics | None = None,
        metric_name: str | None = None,
        excluded_paths: frozenset[str] | None = None,
    ) -> None:
        self.app = app
        self._tags_provider = tags_provider
        self._metrics = metrics
        self._metric_name = metric_name
        # Avoid self-observing the observability endpoints.
        self._excluded_metric_paths = excluded_paths if excluded_paths is not None else DEFAULT_EXCLUDED_PATHS
        self._default_providers: dict[bool, DefaultTagsProvider] = {}

    def _default_provider(self, ignore_trailing_slash: bool) -> DefaultTagsProvider:
        provider = self._default_providers.get(ignore_trailing_slash)
        if provider is None:
            provider = DefaultTagsProvider(ignore_trailing_slash=ignore_trailing_slash)
            self._default_providers[ignore_trailing_slash] = provider
        return provider

    def _provider(self) -> TagsProvider:
        if self._tags_provider is not None:
            return self._tags_provider
        return self._default_provider(get_settings().metrics_ignore_trailing_slash)

    def _tags(self, provider: TagsProvider, operation: str, *args: Any) -> list[Tag]:
        # A failing contributor must not mask the app's outcome or drop the measurement.
        try:
            return list(getattr(provider, operation)(*args))
        except Exception:
            structlog.get_logger("access").exception("tags_provider_failed", operation=operation)
            fallback = self._default_provider(getattr(provider, "ignore_trailing_slash", False))
            return list(getattr(fallback, operation)(*args))

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id = str(uuid.uuid4())
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            path=scope.get("path"),
            method=scope.get("method"),
        )
        try:
            await self._observe(scope, receive, send, request_id)
        finally:
            structlog.contextvars.clear_contextvars()

    async def _observe(
        self,
        scope: dict[str, Any],
        receive: Callable[..., Any],
        send: Callable[..., Any],
        request_id: str,
    ) -> None:
        settings = get_settings()
        metrics = self._metrics or get_metrics()
        metric_name = self._metric_name or settings.metrics_request_name
        provider = self._provider()

        route = _resolve_route(scope)
        if route is not None:
            pattern = getattr(route, "path_format", None) or getattr(route, "path", None)
            if isinstance(pattern, str):
                scope[MATCHED_PATTERN_KEY] = pattern

        request = HTTPConnection(scope)
        handler = getattr(route, "endpoint", None)
        observed = scope.get("path") not in self._excluded_metric_paths

        long_task = None
        if observed and settings.metrics_long_requests_enabled:
            long_task = metrics.start_long_task(
                f"{metric_name}.active",
                self._tags(provider, "get_long_request_tags", request, handler),
            )

        start = perf_counter()
        status_code: int | None = None
        error: BaseException | None = None

        async def send_wrapper(message: dict[str, Any]) -> None:
            nonlocal status_code

            if message.get("type") == "http.response.start":
                status_code = int(message.get("status", 500))
                headers = MutableHeaders(scope=message)
                headers["X-Request-ID"] = request_id

            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as exc:
            error = exc
            raise
        finally:
            elapsed_ms = (perf_counter() - start) * 1000.0
            if long_task is not None:
                long_task.stop()

            if status_code is None:
                status_code = 500
            response = CompletedResponse(status_code=status_code)
            tags = self._tags(provider, "get_tags", request, response, scope.get("endpoint") or handler, error)

            # Update metrics first so they update even if logging misbehaves.
            if observed:
                metrics.record(metric_name, tags, elapsed_ms)

            tag_values = {tag.key: tag.value for tag in tags}
            structlog.get_logger("access").info(
                "http_request",
                status_code=status_code,
                elapsed_ms=round(elapsed_ms, 2),
                uri=tag_values.get("uri"),
                outcome=tag_values.get("outcome"),
            )
