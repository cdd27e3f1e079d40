"""The scheduler: watches bindings, policies and clusters and places bindings."""

from __future__ import annotations

import copy
import dataclasses
import enum
import json
import logging
import threading
from typing import Any, Iterable, Optional, Sequence, Set, Tuple

from .cache import SchedulerCache
from .constants import (
    CLUSTER_PROPAGATION_POLICY_LABEL,
    POLICY_PLACEMENT_ANNOTATION,
    PROPAGATION_POLICY_NAME_LABEL,
    PROPAGATION_POLICY_NAMESPACE_LABEL,
    get_label_value,
)
from .generic_scheduler import GenericScheduler
from .models import (
    CONDITION_FALSE,
    CONDITION_READY,
    Cluster,
    ClusterResourceBinding,
    Placement,
    ResourceBinding,
    TargetCluster,
)
from .plugins import APIInstalled, ClusterAffinity, TaintToleration
from .store import NotFoundError, ObjectStore, RateLimitingQueue

logger = logging.getLogger(__name__)

#: Number of times a key is retried before it is dropped out of the queue.
MAX_RETRIES = 15

DEFAULT_PLUGINS = (ClusterAffinity.name, TaintToleration.name, APIInstalled.name)


class ScheduleType(str, enum.Enum):
    """What kind of scheduling a binding needs."""

    FIRST_SCHEDULE = "FirstSchedule"
    RECONCILE_SCHEDULE = "ReconcileSchedule"
    FAILOVER_SCHEDULE = "FailoverSchedule"
    AVOID_SCHEDULE = "AvoidSchedule"
    UNKNOWN = "Unknown"


def split_key(key: str) -> Tuple[str, str]:
    """Split ``namespace/name`` (or a bare ``name``) into namespace and name."""
    parts = key.split("/")
    if len(parts) == 1:
        return "", parts[0]
    if len(parts) == 2:
        return parts[0], parts[1]
    raise ValueError(f"unexpected key format: {key!r}")


def object_key(obj: Any) -> str:
    """Return the queue key of ``obj``: ``namespace/name``, or ``name`` if cluster-scoped."""
    namespace = getattr(obj, "namespace", "") or ""
    return f"{namespace}/{obj.name}" if namespace else obj.name


def _callable_token(fn: Any) -> str:
    module = getattr(fn, "__module__", "") or ""
    qualname = getattr(fn, "__qualname__", None) or type(fn).__qualname__
    return f"{module}.{qualname}#{id(fn):x}"


def _to_jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: _to_jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {str(k): _to_jsonable(v) for k, v in value.items()}
    if isinstance(value, enum.Enum):
        return value.value
    if callable(value):
        return _callable_token(value)
    return value


def _placement_str(placement: Placement) -> str:
    """Serialize a placement for recording in an annotation.

    Cluster selectors are callables; they are recorded by identity, so a
    placement given a new selector object counts as changed.
    """
    return json.dumps(_to_jsonable(placement), sort_keys=True, separators=(",", ":"))


class Scheduler:
    """Schedules resource bindings and cluster resource bindings onto clusters.

    The object stores act both as the source of truth and as the place the
    scheduling results are written back to.
    """

    def __init__(
        self,
        *,
        bindings: Optional[ObjectStore] = None,
        cluster_bindings: Optional[ObjectStore] = None,
        policies: Optional[ObjectStore] = None,
        cluster_policies: Optional[ObjectStore] = None,
        cache: Optional[SchedulerCache] = None,
        algorithm: Optional[Any] = None,
        queue: Optional[RateLimitingQueue] = None,
        failover: bool = False,
        plugin_names: Iterable[str] = DEFAULT_PLUGINS,
    ) -> None:
        self.bindings = ObjectStore() if bindings is None else bindings
        self.cluster_bindings = ObjectStore() if cluster_bindings is None else cluster_bindings
        self.policies = ObjectStore() if policies is None else policies
        self.cluster_policies = ObjectStore() if cluster_policies is None else cluster_policies
        self.cache = SchedulerCache() if cache is None else cache
        self.algorithm = (
            GenericScheduler(self.cache, plugin_names) if algorithm is None else algorithm
        )
        self.queue = RateLimitingQueue() if queue is None else queue
        self.failover = failover

    # ------------------------------------------------------------------ running

    def run(self, stop_event: threading.Event) -> None:
        """Process the queue in a worker thread until ``stop_event`` is set."""
        logger.info("Starting karmada scheduler")
        worker = threading.Thread(target=self._worker, name="scheduler-worker", daemon=True)
        worker.start()
        try:
            stop_event.wait()
        finally:
            self.queue.shut_down()
            worker.join()
            logger.info("Shutting down karmada scheduler")

    def _worker(self) -> None:
        while self.schedule_next():
            pass

    # ------------------------------------------------------------------ events

    def on_resource_binding_add(self, obj: Any) -> None:
        """Queue a binding that was added."""
        self.queue.add(object_key(obj))

    def on_resource_binding_update(self, old: Any, cur: Any) -> None:
        """Queue a binding that was updated."""
        self.on_resource_binding_add(cur)

    def on_propagation_policy_update(self, old: Any, cur: Any) -> None:
        """Requeue the bindings of a policy whose placement changed."""
        if old.placement == cur.placement:
            logger.debug(
                "Ignore PropagationPolicy(%s/%s) which placement unchanged.",
                old.namespace,
                old.name,
            )
            return
        selector = {
            PROPAGATION_POLICY_NAMESPACE_LABEL: old.namespace,
            PROPAGATION_POLICY_NAME_LABEL: old.name,
        }
        self._requeue(self.bindings, selector, "ResourceBinding")

    def on_cluster_propagation_policy_update(self, old: Any, cur: Any) -> None:
        """Requeue the bindings of a cluster policy whose placement changed."""
        if old.placement == cur.placement:
            logger.debug(
                "Ignore ClusterPropagationPolicy(%s) which placement unchanged.", old.name
            )
            return
        selector = {CLUSTER_PROPAGATION_POLICY_LABEL: old.name}
        self._requeue(self.cluster_bindings, selector, "ClusterResourceBinding")
        self._requeue(self.bindings, selector, "ResourceBinding")

    def _requeue(self, store: ObjectStore, selector: dict, kind: str) -> None:
        for binding in store.list(selector):
            key = object_key(binding)
            logger.info("Requeue %s(%s) as placement changed.", kind, key)
            self.queue.add(key)

    def add_cluster(self, cluster: Any) -> None:
        """Record a new cluster."""
        if not isinstance(cluster, Cluster):
            logger.error("cannot convert to Cluster: %r", cluster)
            return
        logger.debug("add event for cluster %s", cluster.name)
        self.cache.add_cluster(cluster)

    def update_cluster(self, old: Any, new: Any) -> None:
        """Record a changed cluster; on failure, requeue affected bindings if failover is on."""
        if not isinstance(new, Cluster):
            logger.error("cannot convert newObj to Cluster: %r", new)
            return
        logger.debug("update event for cluster %s", new.name)
        self.cache.update_cluster(new)

        if new.condition_is(CONDITION_READY, CONDITION_FALSE):
            logger.info(
                "Found cluster(%s) failure and failover flag is %s", new.name, self.failover
            )
            if self.failover:
                self._enqueue_affected(self.bindings, new.name)
                self._enqueue_affected(self.cluster_bindings, new.name)

    def delete_cluster(self, cluster: Any) -> None:
        """Forget a cluster; accepts the cluster or a tombstone holding it in ``obj``."""
        if not isinstance(cluster, Cluster):
            inner = getattr(cluster, "obj", None)
            if not isinstance(inner, Cluster):
                logger.error("cannot convert to Cluster: %r", cluster)
                return
            cluster = inner
        logger.debug("delete event for cluster %s", cluster.name)
        self.cache.delete_cluster(cluster)

    def _enqueue_affected(self, store: ObjectStore, not_ready_cluster: str) -> None:
        for binding in store.list():
            if any(target.name == not_ready_cluster for target in binding.clusters):
                self.queue.add(object_key(binding))
                logger.info("Add expired binding %s in queue", object_key(binding))

    # ------------------------------------------------------------------ decisions

    def get_placement(self, binding: Any) -> Tuple[Placement, str]:
        """Return the placement of the policy a binding belongs to, and its serialized form.

        Raises NotFoundError when the referenced policy does not exist.
        """
        placement = Placement()
        cluster_policy_name = get_label_value(binding.labels, CLUSTER_PROPAGATION_POLICY_LABEL)
        policy_name = get_label_value(binding.labels, PROPAGATION_POLICY_NAME_LABEL)
        policy_namespace = get_label_value(binding.labels, PROPAGATION_POLICY_NAMESPACE_LABEL)
        try:
            if cluster_policy_name:
                placement = self.cluster_policies.get("", cluster_policy_name).placement
            if policy_name:
                placement = self.policies.get(policy_namespace, policy_name).placement
        except NotFoundError as exc:
            if cluster_policy_name:
                logger.error(
                    "Failed to get placement of clusterPropagationPolicy %s, error: %s",
                    cluster_policy_name,
                    exc,
                )
            else:
                logger.error(
                    "Failed to get placement of propagationPolicy %s/%s, error: %s",
                    policy_namespace,
                    policy_name,
                    exc,
                )
            raise
        return placement, _placement_str(placement)

    def _has_failed_cluster(self, targets: Sequence[TargetCluster]) -> bool:
        failed = {
            info.cluster.name
            for info in self.cache.snapshot().get_clusters()
            if info.cluster.condition_is(CONDITION_READY, CONDITION_FALSE)
        }
        return any(target.name in failed for target in targets)

    def get_schedule_type(self, key: str) -> ScheduleType:
        """Decide what kind of scheduling the binding behind ``key`` needs."""
        try:
            namespace, name = split_key(key)
        except ValueError:
            return ScheduleType.UNKNOWN

        try:
            if namespace:
                binding = self.bindings.get(namespace, name)
                if not binding.clusters:
                    return ScheduleType.FIRST_SCHEDULE
                _, placement_str = self.get_placement(binding)
            else:
                binding = self.cluster_bindings.get("", name)
                if not binding.clusters:
                    return ScheduleType.FIRST_SCHEDULE
                policy_name = get_label_value(binding.labels, CLUSTER_PROPAGATION_POLICY_LABEL)
                policy = self.cluster_policies.get("", policy_name)
                placement_str = _placement_str(policy.placement)
        except NotFoundError:
            return ScheduleType.UNKNOWN

        applied = get_label_value(binding.annotations, POLICY_PLACEMENT_ANNOTATION)
        if placement_str != applied:
            return ScheduleType.RECONCILE_SCHEDULE
        if self._has_failed_cluster(binding.clusters):
            return ScheduleType.FAILOVER_SCHEDULE
        return ScheduleType.AVOID_SCHEDULE

    # ------------------------------------------------------------------ processing

    def schedule_next(self) -> bool:
        """Process one key from the queue; return False once the queue is shut down."""
        key, shutdown = self.queue.get()
        if shutdown:
            logger.error("Fail to pop item from queue")
            return False

        err: Optional[BaseException] = None
        try:
            schedule_type = self.get_schedule_type(key)
            if schedule_type in (
                ScheduleType.FIRST_SCHEDULE,
                ScheduleType.RECONCILE_SCHEDULE,
            ):
                logger.info("Start scheduling binding(%s): %s", key, schedule_type.value)
                self.schedule_one(key)
            elif schedule_type is ScheduleType.FAILOVER_SCHEDULE:
                if self.failover:
                    logger.info("Reschedule binding(%s) as cluster failure", key)
                    self.reschedule_one(key)
            elif schedule_type is ScheduleType.AVOID_SCHEDULE:
                logger.info("Don't need to schedule binding(%s)", key)
            else:
                logger.warning("Failed to identify scheduler type for binding(%s)", key)
                raise ValueError("unknown schedule type")
        except Exception as exc:  # every failure is retried through the queue
            err = exc
        finally:
            self.queue.done(key)

        self._handle_err(err, key)
        return True

    def _handle_err(self, err: Optional[BaseException], key: str) -> None:
        if err is None:
            self.queue.forget(key)
            return
        if self.queue.num_requeues(key) < MAX_RETRIES:
            self.queue.add_rate_limited(key)
            return
        logger.error("Dropping ResourceBinding %r out of the queue: %s", key, err)
        self.queue.forget(key)

    def schedule_one(self, key: str) -> None:
        """Schedule the binding behind ``key``; a binding that is gone is ignored."""
        namespace, name = split_key(key)
        if not namespace:
            try:
                binding = self.cluster_bindings.get("", name)
            except NotFoundError:
                return
            policy_name = get_label_value(binding.labels, CLUSTER_PROPAGATION_POLICY_LABEL)
            policy = self.cluster_policies.get("", policy_name)
            self._schedule_binding(
                binding, policy.placement, _placement_str(policy.placement), self.cluster_bindings
            )
            return

        try:
            binding = self.bindings.get(namespace, name)
        except NotFoundError:
            return
        placement, placement_str = self.get_placement(binding)
        self._schedule_binding(binding, placement, placement_str, self.bindings)

    def _schedule_binding(
        self, binding: Any, placement: Placement, placement_str: str, store: ObjectStore
    ) -> None:
        result = self.algorithm.schedule(placement, binding.resource)
        logger.debug(
            "binding %s scheduled to clusters %s",
            object_key(binding),
            result.suggested_clusters,
        )
        updated = copy.deepcopy(binding)
        updated.clusters = list(result.suggested_clusters)
        if updated.annotations is None:
            updated.annotations = {}
        updated.annotations[POLICY_PLACEMENT_ANNOTATION] = placement_str
        store.put(updated)

    def get_reserved_and_candidates(
        self, clusters: Iterable[TargetCluster]
    ) -> Tuple[Set[str], Set[str]]:
        """Split bound clusters into those still ready, and ready clusters not yet bound."""
        bound = {cluster.name for cluster in clusters}
        available = {
            info.cluster.name for info in self.cache.snapshot().get_ready_clusters()
        }
        return bound & available, available - bound

    def reschedule_one(self, key: str) -> None:
        """Move the binding behind ``key`` off failed clusters onto ready ones."""
        namespace, name = split_key(key)
        if not namespace:
            try:
                binding = copy.deepcopy(self.cluster_bindings.get("", name))
            except NotFoundError:
                return
            logger.info("begin rescheduling ClusterResourceBinding %s", name)

            def placement_of() -> Placement:
                policy_name = get_label_value(binding.labels, CLUSTER_PROPAGATION_POLICY_LABEL)
                return self.cluster_policies.get("", policy_name).placement

            self._reschedule(binding, placement_of, self.cluster_bindings)
            logger.info("end rescheduling ClusterResourceBinding %s", name)
            return

        try:
            binding = copy.deepcopy(self.bindings.get(namespace, name))
        except NotFoundError:
            return
        logger.info("begin rescheduling ResourceBinding %s/%s", namespace, name)
        self._reschedule(binding, lambda: self.get_placement(binding)[0], self.bindings)
        logger.info("end rescheduling ResourceBinding %s/%s", namespace, name)

    def _reschedule(self, binding: Any, placement_of: Any, store: ObjectStore) -> None:
        reserved, candidates = self.get_reserved_and_candidates(binding.clusters)
        delta = len(binding.clusters) - len(reserved)
        logger.info(
            "binding(%s) has %d failure clusters, and got %d candidates",
            object_key(binding),
            delta,
            len(candidates),
        )
        if len(candidates) < delta:
            logger.warning(
                "ignore reschedule binding(%s) as insufficient available cluster",
                object_key(binding),
            )
            return

        targets = set(reserved)
        if delta > 0 and candidates:
            placement = placement_of()
            known = {info.cluster.name: info.cluster for info in self.cache.snapshot().get_clusters()}
            for _ in range(delta):
                for cluster_name in sorted(candidates):
                    cluster = known.get(cluster_name)
                    affinity = placement.cluster_affinity
                    if cluster is None or (affinity is not None and not affinity(cluster)):
                        continue
                    logger.info("Rescheduling %s to member cluster %s", object_key(binding), cluster_name)
                    targets.add(cluster_name)
                    candidates.discard(cluster_name)
                    break

        binding.clusters = [TargetCluster(name) for name in sorted(targets)]
        logger.info("The final binding clusters are: %s", binding.clusters)
        store.put(binding)


__all__ = [
    "MAX_RETRIES",
    "ScheduleType",
    "Scheduler",
    "split_key",
    "object_key",
    "ResourceBinding",
    "ClusterResourceBinding",
]