from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from datetime import datetime, timezone
from functools import wraps
from typing import Callable, TypeVar

from app.config import settings


logger = logging.getLogger('app.metrics')

T = TypeVar('T')


class _MinuteCounter:
    """Counts cache events and logs one summary line per wall-clock minute."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._minute: int | None = None
        self._counts: Counter[str] = Counter()

    def _emit_locked(self) -> None:
        if not self._counts or self._minute is None:
            return
        logger.info(
            'cache_metrics minute=%s cache_hit=%s cache_miss=%s cache_invalidate=%s',
            datetime.fromtimestamp(self._minute, tz=timezone.utc).isoformat(),
            self._counts['cache_hit'],
            self._counts['cache_miss'],
            self._counts['cache_invalidate'],
        )
        self._counts.clear()

    def record(self, event: str) -> None:
        minute = int(time.time() // 60) * 60
        with self._lock:
            if self._minute is not None and minute != self._minute:
                self._emit_locked()
            self._minute = minute
            self._counts[event] += 1

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def flush(self) -> None:
        with self._lock:
            self._emit_locked()


_cache_counter = _MinuteCounter()


def record_cache_event(event: str) -> None:
    _cache_counter.record(event)


def cache_event_counts() -> dict[str, int]:
    return _cache_counter.snapshot()


def flush_cache_metrics() -> None:
    _cache_counter.flush()


def timed_service(label: str, *, threshold_ms: int | None = None) -> Callable[[Callable[..., T]], Callable[..., T]]:
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            started = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                duration_ms = (time.perf_counter() - started) * 1000.0
                limit = threshold_ms if threshold_ms is not None else settings.metrics_slow_ms
                if duration_ms >= limit:
                    logger.info('service_timer label=%s duration_ms=%.2f', label, duration_ms)

        return wrapper

    return decorator


def run_timed_job(label: str, fn: Callable[[], T]) -> T:
    start = time.perf_counter()
    logger.info('job_start name=%s', label)
    status = 'ok'
    try:
        return fn()
    except Exception:
        status = 'failed'
        logger.exception('job_failed name=%s', label)
        raise
    finally:
        duration_ms = (time.perf_counter() - start) * 1000.0
        logger.info('job_end name=%s status=%s duration_ms=%.2f', label, status, duration_ms)
