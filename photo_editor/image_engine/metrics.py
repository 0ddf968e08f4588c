"""In-process counters and timings for the decode path.

Components record how often backoff kicks in and how long loads take;
tests read the numbers back through :meth:`Metrics.snapshot`.

Usage:
    from photo_editor.image_engine.metrics import metrics
    metrics.inc("decoder.backoff_retries")
    with metrics.timed("image_loader.load_bitmap"):
        ...
    metrics.count("decoder.backoff_retries")
"""

from __future__ import annotations

import time
from collections import defaultdict
from collections.abc import Iterator
from contextlib import contextmanager
from threading import Lock
from typing import Any


class Metrics:
    def __init__(self) -> None:
        self._counters: defaultdict[str, int] = defaultdict(int)
        self._timings: defaultdict[str, list[float]] = defaultdict(list)
        self._lock = Lock()

    def inc(self, key: str, amount: int = 1) -> None:
        with self._lock:
            self._counters[key] += int(amount)

    def count(self, key: str) -> int:
        with self._lock:
            return self._counters.get(key, 0)

    @contextmanager
    def timed(self, key: str) -> Iterator[None]:
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed = time.perf_counter() - start
            with self._lock:
                self._timings[key].append(elapsed)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "timings": {k: list(v) for k, v in self._timings.items()},
            }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._timings.clear()


metrics = Metrics()
