"""In-memory object store and the rate-limited work queue used by the scheduler."""

from __future__ import annotations

import heapq
import itertools
import threading
import time
from typing import Any, Callable, Dict, Hashable, List, Mapping, Optional, Set, Tuple

DEFAULT_BASE_DELAY = 0.005
DEFAULT_MAX_DELAY = 1000.0
DEFAULT_QPS = 10.0
DEFAULT_BURST = 100


class NotFoundError(LookupError):
    """Raised when an object is not present in a store."""

    def __init__(self, namespace: str, name: str) -> None:
        self.namespace = namespace
        self.name = name
        key = f"{namespace}/{name}" if namespace else name
        super().__init__(f'object "{key}" not found')


def _labels_match(labels: Optional[Mapping[str, str]], selector: Mapping[str, str]) -> bool:
    labels = labels or {}
    return all(labels.get(key) == value for key, value in selector.items())


class ObjectStore:
    """Thread-safe store of objects keyed by namespace and name.

    Objects need ``namespace``, ``name`` and ``labels`` attributes; cluster-scoped
    objects use an empty namespace.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._objects: Dict[Tuple[str, str], Any] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._objects)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._objects

    def put(self, obj: Any) -> None:
        """Add ``obj``, replacing any object with the same namespace and name."""
        with self._lock:
            self._objects[(obj.namespace or "", obj.name)] = obj

    def get(self, namespace: str, name: str) -> Any:
        """Return the object, or raise NotFoundError."""
        with self._lock:
            try:
                return self._objects[(namespace or "", name)]
            except KeyError:
                raise NotFoundError(namespace or "", name) from None

    def remove(self, namespace: str, name: str) -> Any:
        """Remove and return the object, or raise NotFoundError."""
        with self._lock:
            try:
                return self._objects.pop((namespace or "", name))
            except KeyError:
                raise NotFoundError(namespace or "", name) from None

    def list(self, selector: Optional[Mapping[str, str]] = None) -> List[Any]:
        """Return the objects whose labels hold every pair of ``selector``.

        A missing or empty selector matches everything. Objects come ordered
        by namespace and name.
        """
        with self._lock:
            items = sorted(self._objects.items(), key=lambda item: item[0])
        if not selector:
            return [obj for _, obj in items]
        return [obj for _, obj in items if _labels_match(getattr(obj, "labels", None), selector)]


class RateLimitingQueue:
    """A de-duplicating work queue with per-item exponential back-off.

    An item is handed out to one worker at a time: adding an item that is
    being processed marks it to be queued again once ``done`` is called.
    The delay for ``add_rate_limited`` is the larger of a per-item
    exponential back-off and an overall token bucket.
    """

    def __init__(
        self,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        qps: float = DEFAULT_QPS,
        burst: int = DEFAULT_BURST,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._qps = qps
        self._burst = burst
        self._clock = clock

        self._cond = threading.Condition()
        self._queue: List[Hashable] = []
        self._dirty: Set[Hashable] = set()
        self._processing: Set[Hashable] = set()
        self._shutting_down = False

        self._waiting: List[Tuple[float, int, Hashable]] = []
        self._seq = itertools.count()

        self._failures: Dict[Hashable, int] = {}
        self._tokens = float(burst)
        self._last = clock()

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        """Whether ``shut_down`` has been called."""
        with self._cond:
            return self._shutting_down

    def _add_locked(self, key: Hashable) -> None:
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._cond.notify()

    def _promote_ready_locked(self) -> None:
        now = self._clock()
        while self._waiting and self._waiting[0][0] <= now:
            _, _, key = heapq.heappop(self._waiting)
            self._add_locked(key)

    def add(self, key: Hashable) -> None:
        """Queue ``key`` unless it is already queued or the queue is shut down."""
        with self._cond:
            self._add_locked(key)

    def add_after(self, key: Hashable, delay: float) -> None:
        """Queue ``key`` once ``delay`` seconds have passed."""
        with self._cond:
            if self._shutting_down:
                return
            if delay <= 0:
                self._add_locked(key)
                return
            heapq.heappush(self._waiting, (self._clock() + delay, next(self._seq), key))
            self._cond.notify()

    def get(self, timeout: Optional[float] = None) -> Tuple[Optional[Hashable], bool]:
        """Take the next item, blocking until one is ready.

        Returns ``(key, False)``, or ``(None, True)`` once the queue is shut
        down and empty. Raises TimeoutError when ``timeout`` seconds pass
        without an item.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                self._promote_ready_locked()
                if self._queue:
                    key = self._queue.pop(0)
                    self._processing.add(key)
                    self._dirty.discard(key)
                    return key, False
                if self._shutting_down:
                    return None, True

                wait: Optional[float] = None
                if self._waiting:
                    wait = max(self._waiting[0][0] - self._clock(), 0.0)
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise TimeoutError("no item became ready in time")
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(wait)

    def done(self, key: Hashable) -> None:
        """Mark ``key`` as processed, queueing it again if it was re-added meanwhile."""
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def forget(self, key: Hashable) -> None:
        """Stop tracking the failures of ``key``."""
        with self._cond:
            self._failures.pop(key, None)

    def num_requeues(self, key: Hashable) -> int:
        """Return how many times ``key`` has been rate-limited since last forgotten."""
        with self._cond:
            return self._failures.get(key, 0)

    def when(self, key: Hashable) -> float:
        """Record a failure of ``key`` and return the delay before it is retried."""
        with self._cond:
            exp = self._failures.get(key, 0)
            self._failures[key] = exp + 1
            exponential = self._base_delay * (2 ** min(exp, 64))
            exponential = min(exponential, self._max_delay)

            now = self._clock()
            elapsed = max(now - self._last, 0.0)
            self._last = now
            self._tokens = min(float(self._burst), self._tokens + elapsed * self._qps)
            self._tokens -= 1.0
            bucket = 0.0 if self._tokens >= 0 else -self._tokens / self._qps
            return max(exponential, bucket)

    def add_rate_limited(self, key: Hashable) -> None:
        """Queue ``key`` after the delay given by ``when``."""
        self.add_after(key, self.when(key))

    def shut_down(self) -> None:
        """Stop accepting items and wake every waiting worker."""
        with self._cond:
            self._shutting_down = True
            self._waiting.clear()
            self._cond.notify_all()