import threading

import pytest

from fleetsched.models import ClusterResourceBinding, ResourceBinding
from fleetsched.store import NotFoundError, ObjectStore, RateLimitingQueue


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_store_put_get_round_trip():
    store = ObjectStore()
    binding = ResourceBinding(name="web", namespace="default")
    store.put(binding)
    assert store.get("default", "web") is binding
    assert len(store) == 1


def test_store_put_replaces():
    store = ObjectStore()
    store.put(ResourceBinding(name="web", namespace="default"))
    newer = ResourceBinding(name="web", namespace="default", labels={"a": "b"})
    store.put(newer)
    assert store.get("default", "web") is newer
    assert len(store) == 1


def test_store_cluster_scoped_objects():
    store = ObjectStore()
    crb = ClusterResourceBinding(name="crd")
    store.put(crb)
    assert store.get("", "crd") is crb


def test_store_get_missing_raises():
    store = ObjectStore()
    with pytest.raises(NotFoundError) as info:
        store.get("default", "missing")
    assert info.value.name == "missing"
    assert info.value.namespace == "default"


def test_store_remove():
    store = ObjectStore()
    binding = ResourceBinding(name="web", namespace="default")
    store.put(binding)
    assert store.remove("default", "web") is binding
    with pytest.raises(NotFoundError):
        store.get("default", "web")
    with pytest.raises(NotFoundError):
        store.remove("default", "web")


def test_store_list_with_selector():
    store = ObjectStore()
    a = ResourceBinding(name="a", namespace="ns", labels={"p": "1", "q": "x"})
    b = ResourceBinding(name="b", namespace="ns", labels={"p": "2"})
    c = ResourceBinding(name="c", namespace="ns", labels={"p": "1"})
    for obj in (b, c, a):
        store.put(obj)
    assert store.list({"p": "1"}) == [a, c]
    assert store.list({"p": "1", "q": "x"}) == [a]
    assert store.list({"p": "3"}) == []
    assert store.list() == [a, b, c]
    assert store.list({}) == [a, b, c]


def test_queue_deduplicates():
    queue = RateLimitingQueue()
    queue.add("k")
    queue.add("k")
    assert len(queue) == 1
    assert queue.get(timeout=1) == ("k", False)
    assert len(queue) == 0


def test_queue_fifo_order():
    queue = RateLimitingQueue()
    for key in ("a", "b", "c"):
        queue.add(key)
    got = [queue.get(timeout=1)[0] for _ in range(3)]
    assert got == ["a", "b", "c"]


def test_queue_readd_while_processing_requeued_on_done():
    queue = RateLimitingQueue()
    queue.add("k")
    key, _ = queue.get(timeout=1)
    queue.add("k")
    assert len(queue) == 0
    queue.done(key)
    assert len(queue) == 1
    assert queue.get(timeout=1) == ("k", False)


def test_queue_done_without_readd_leaves_empty():
    queue = RateLimitingQueue()
    queue.add("k")
    key, _ = queue.get(timeout=1)
    queue.done(key)
    assert len(queue) == 0


def test_queue_get_timeout():
    queue = RateLimitingQueue()
    with pytest.raises(TimeoutError):
        queue.get(timeout=0.01)


def test_queue_shut_down_returns_shutdown_and_ignores_adds():
    queue = RateLimitingQueue()
    queue.shut_down()
    queue.add("k")
    assert queue.get(timeout=1) == (None, True)
    assert queue.shutting_down is True


def test_queue_shut_down_drains_pending_first():
    queue = RateLimitingQueue()
    queue.add("k")
    queue.shut_down()
    assert queue.get(timeout=1) == ("k", False)
    assert queue.get(timeout=1) == (None, True)


def test_queue_shut_down_wakes_blocked_worker():
    queue = RateLimitingQueue()
    timer = threading.Timer(0.05, queue.shut_down)
    timer.start()
    try:
        got = queue.get(timeout=5)
    finally:
        timer.join(timeout=5)
    assert got == (None, True)
    assert queue.shutting_down is True


def test_when_exponential_backoff():
    queue = RateLimitingQueue(clock=FakeClock())
    delays = [queue.when("k") for _ in range(3)]
    assert delays == pytest.approx([0.005, 0.01, 0.02])
    assert queue.num_requeues("k") == 3


def test_when_is_capped_by_max_delay():
    queue = RateLimitingQueue(max_delay=1000.0, clock=FakeClock())
    delays = [queue.when("k") for _ in range(40)]
    assert max(delays) <= 1000.0
    assert delays == sorted(delays)


def test_forget_resets_requeues():
    queue = RateLimitingQueue(clock=FakeClock())
    queue.when("k")
    queue.when("k")
    queue.forget("k")
    assert queue.num_requeues("k") == 0
    assert queue.when("k") == pytest.approx(0.005)


def test_failures_are_tracked_per_key():
    queue = RateLimitingQueue(clock=FakeClock())
    queue.when("a")
    queue.when("a")
    queue.when("b")
    assert queue.num_requeues("a") == 2
    assert queue.num_requeues("b") == 1


def test_add_rate_limited_delays_item():
    clock = FakeClock()
    queue = RateLimitingQueue(clock=clock)
    queue.add_rate_limited("k")
    assert queue.num_requeues("k") == 1
    with pytest.raises(TimeoutError):
        queue.get(timeout=0.02)
    clock.now += 1.0
    assert queue.get(timeout=1) == ("k", False)


def test_add_after_non_positive_delay_is_immediate():
    queue = RateLimitingQueue(clock=FakeClock())
    queue.add_after("k", 0)
    assert queue.get(timeout=1) == ("k", False)


def test_bucket_limits_after_burst():
    clock = FakeClock()
    queue = RateLimitingQueue(base_delay=0.0, qps=10.0, burst=2, clock=clock)
    assert queue.when("a") == 0.0
    assert queue.when("b") == 0.0
    assert queue.when("c") > 0.0
    clock.now += 10.0
    assert queue.when("d") == 0.0