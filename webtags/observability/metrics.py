from __future__ import annotations

from collections.abc import Iterable
from dataclasses import asdict, dataclass
from threading import Lock
from time import perf_counter
from typing import Any

from webtags.observability.tags import Tag


TagKey = tuple[tuple[str, str], ...]


def _tag_key(tags: Iterable[Tag]) -> TagKey:
    return tuple(sorted((tag.key, tag.value) for tag in tags))


@dataclass
class _LatencyAgg:
    count: int = 0
    sum_ms: float = 0.0
    max_ms: float = 0.0

    def observe(self, elapsed_ms: float) -> None:
        self.count += 1
        self.sum_ms += float(elapsed_ms)
        if elapsed_ms > self.max_ms:
            self.max_ms = float(elapsed_ms)


class LongTask:
    """Handle for an in-flight measurement; call stop() exactly once."""

    def __init__(self, metrics: InMemoryMetrics, name: str, key: TagKey) -> None:
        self._metrics = metrics
        self.name = name
        self.key = key
        self._start = perf_counter()
        self._stopped = False

    def duration_ms(self) -> float:
        return (perf_counter() - self._start) * 1000.0

    def stop(self) -> float:
        elapsed_ms = self.duration_ms()
        if not self._stopped:
            self._stopped = True
            self._metrics._finish_long_task(self)
        return elapsed_ms


class InMemoryMetrics:
    """Thread-safe, process-local timers keyed by name and tag set (resets on restart)."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._timers: dict[tuple[str, TagKey], _LatencyAgg] = {}
        self._active: dict[tuple[str, TagKey], int] = {}

    def record(self, name: str, tags: Iterable[Tag], elapsed_ms: float) -> None:
        key = (name, _tag_key(tags))
        with self._lock:
            agg = self._timers.get(key)
            if agg is None:
                agg = self._timers[key] = _LatencyAgg()
            agg.observe(elapsed_ms)

    def start_long_task(self, name: str, tags: Iterable[Tag]) -> LongTask:
        task = LongTask(self, name, _tag_key(tags))
        with self._lock:
            slot = (name, task.key)
            self._active[slot] = self._active.get(slot, 0) + 1
        return task

    def _finish_long_task(self, task: LongTask) -> None:
        slot = (task.name, task.key)
        with self._lock:
            remaining = self._active.get(slot, 0) - 1
            if remaining > 0:
                self._active[slot] = remaining
            else:
                self._active.pop(slot, None)

    def timer(self, name: str, tags: Iterable[Tag]) -> dict[str, Any] | None:
        with self._lock:
            agg = self._timers.get((name, _tag_key(tags)))
            return asdict(agg) if agg is not None else None

    def active_tasks(self, name: str, tags: Iterable[Tag]) -> int:
        with self._lock:
            return self._active.get((name, _tag_key(tags)), 0)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "timers": [
                    {"name": name, "tags": dict(key), **asdict(agg)}
                    for (name, key), agg in sorted(self._timers.items())
                ],
                "long_tasks": [
                    {"name": name, "tags": dict(key), "active": active}
                    for (name, key), active in sorted(self._active.items())
                ],
            }

    def reset(self) -> None:
        with self._lock:
            self._timers = {}
            self._active = {}


_METRICS: InMemoryMetrics | None = None


def get_metrics() -> InMemoryMetrics:
    global _METRICS
    if _METRICS is None:
        _METRICS = InMemoryMetrics()
    return _METRICS


def reset_metrics() -> None:
    """Reset timers and long tasks (used by tests)."""

    get_metrics().reset()
