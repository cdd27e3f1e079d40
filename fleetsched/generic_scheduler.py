"""The generic scheduling algorithm: filter, score, spread and divide replicas."""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from decimal import ROUND_CEILING, Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from .cache import SchedulerCache, Snapshot
from .framework import ClusterScore, PluginError, merge_results
from .models import (
    REPLICA_DIVISION_AGGREGATED,
    REPLICA_DIVISION_WEIGHTED,
    REPLICA_SCHEDULING_DIVIDED,
    REPLICA_SCHEDULING_DUPLICATED,
    SPREAD_BY_FIELD_CLUSTER,
    Cluster,
    ObjectReference,
    Placement,
    ReplicaSchedulingStrategy,
    SpreadConstraint,
    StaticClusterWeight,
    TargetCluster,
)
from .runtime import Framework

logger = logging.getLogger(__name__)

MAX_INT32 = 2**31 - 1
RESOURCE_CPU = "cpu"


class ScheduleError(Exception):
    """Raised when a resource cannot be scheduled."""


@dataclass
class ScheduleResult:
    """The clusters suggested for a resource."""

    suggested_clusters: List[TargetCluster] = field(default_factory=list)


class GenericScheduler:
    """Schedules resources onto the clusters held by a scheduler cache."""

    def __init__(self, cache: SchedulerCache, plugin_names: Iterable[str]) -> None:
        self.cache = cache
        self.framework = Framework(plugin_names)

    def schedule(self, placement: Placement, resource: ObjectReference) -> ScheduleResult:
        """Choose target clusters for ``resource`` according to ``placement``."""
        snapshot = self.cache.snapshot()
        if snapshot.num_of_clusters() == 0:
            raise ScheduleError("no clusters available to schedule")

        feasible = self._find_clusters_that_fit(placement, resource, snapshot)
        if not feasible:
            raise ScheduleError("no clusters fit")
        logger.debug("feasible clusters found: %s", [c.name for c in feasible])

        try:
            scores = self._prioritize_clusters(placement, feasible)
        except PluginError as exc:
            raise ScheduleError(f"failed to prioritizeClusters: {exc}") from exc
        logger.debug("feasible clusters scores: %s", scores)

        clusters = select_clusters(placement.spread_constraints, feasible)

        try:
            targets = assign_replicas(clusters, placement.replica_scheduling, resource)
        except ScheduleError as exc:
            raise ScheduleError(f"failed to assignReplicas: {exc}") from exc
        return ScheduleResult(suggested_clusters=targets)

    def _find_clusters_that_fit(
        self, placement: Placement, resource: ObjectReference, snapshot: Snapshot
    ) -> List[Cluster]:
        fit = []
        for info in snapshot.get_ready_clusters():
            cluster = info.cluster
            merged = merge_results(
                self.framework.run_filter_plugins(placement, resource, cluster)
            )
            if merged is None or merged.is_success():
                fit.append(cluster)
            else:
                logger.debug("cluster %r is not fit", cluster.name)
        return fit

    def _prioritize_clusters(
        self, placement: Placement, clusters: Sequence[Cluster]
    ) -> List[ClusterScore]:
        scores_map = self.framework.run_score_plugins(placement, clusters)
        return [
            ClusterScore(
                name=cluster.name,
                score=sum(scores[i].score for scores in scores_map.values()),
            )
            for i, cluster in enumerate(clusters)
        ]


def select_clusters(
    spread_constraints: Sequence[SpreadConstraint], clusters: Sequence[Cluster]
) -> List[Cluster]:
    """Apply the spread constraints, if any, to the feasible clusters.

    Only spreading by cluster is supported, and only a single constraint:
    more than one distinct constraint selects nothing.
    """
    if not spread_constraints:
        return list(clusters)

    group_record: Dict[SpreadConstraint, Dict[str, List[Cluster]]] = {}
    for constraint in spread_constraints:
        groups = group_record.setdefault(constraint, {})
        if constraint.spread_by_field == SPREAD_BY_FIELD_CLUSTER:
            for cluster in clusters:
                groups.setdefault(cluster.name, []).append(cluster)

    if len(group_record) > 1:
        return []
    return _choose_spread_group(group_record)


def _choose_spread_group(
    group_record: Mapping[SpreadConstraint, Mapping[str, List[Cluster]]]
) -> List[Cluster]:
    feasible: List[Cluster] = []
    for constraint, groups in group_record.items():
        if constraint.spread_by_field != SPREAD_BY_FIELD_CLUSTER:
            continue
        if len(groups) < constraint.min_groups:
            return []
        if len(groups) <= constraint.max_groups:
            for members in groups.values():
                feasible.extend(members)
            break
        if constraint.max_groups > 0:
            for members in itertools.islice(groups.values(), constraint.max_groups):
                feasible.extend(members)
    return feasible


def assign_replicas(
    clusters: Sequence[Cluster],
    strategy: Optional[ReplicaSchedulingStrategy],
    resource: ObjectReference,
) -> List[TargetCluster]:
    """Give each selected cluster its share of the resource's replicas."""
    if not clusters:
        raise ScheduleError("no clusters available to schedule")

    if resource.replicas > 0 and strategy is not None:
        if strategy.replica_scheduling_type == REPLICA_SCHEDULING_DUPLICATED:
            return [TargetCluster(c.name, resource.replicas) for c in clusters]
        if strategy.replica_scheduling_type == REPLICA_SCHEDULING_DIVIDED:
            if strategy.replica_division_preference == REPLICA_DIVISION_WEIGHTED:
                if strategy.weight_preference is None:
                    raise ScheduleError("no WeightPreference find to divide replicas")
                return divide_replicas_by_static_weight(
                    clusters, strategy.weight_preference, resource.replicas
                )
            # Aggregated is both the explicit choice and the default for Divided.
            if strategy.replica_division_preference in ("", REPLICA_DIVISION_AGGREGATED):
                return _divide_replicas_aggregated(clusters, resource)
            return _divide_replicas_aggregated(clusters, resource)

    return [TargetCluster(c.name) for c in clusters]


def divide_replicas_by_static_weight(
    clusters: Sequence[Cluster],
    static_weights: Iterable[StaticClusterWeight],
    replicas: int,
) -> List[TargetCluster]:
    """Divide ``replicas`` among ``clusters`` in proportion to static weights.

    Each cluster takes the weight of the first rule that matches it; when no
    cluster is matched every cluster weighs 1. Remaining replicas go one each
    to the heaviest clusters first. Unmatched clusters get no replicas.
    """
    static_weights = list(static_weights)
    weights: Dict[str, int] = {}
    weight_sum = 0
    for cluster in clusters:
        for rule in static_weights:
            if rule.target_cluster(cluster):
                weight_sum += rule.weight
                weights[cluster.name] = rule.weight
                break

    if weight_sum == 0:
        for cluster in clusters:
            weight_sum += 1
            weights[cluster.name] = 1

    desired = {name: weight * replicas // weight_sum for name, weight in weights.items()}
    remain = replicas - sum(desired.values())
    if remain > 0:
        by_weight = sorted(weights, key=lambda name: -weights[name])
        for name in itertools.islice(itertools.cycle(by_weight), remain):
            desired[name] += 1

    ordered: Dict[str, int] = {}
    for cluster in clusters:
        ordered.setdefault(cluster.name, desired.get(cluster.name, 0))
    return [TargetCluster(name, count) for name, count in ordered.items()]


def _divide_replicas_aggregated(
    clusters: Sequence[Cluster], resource: ObjectReference
) -> List[TargetCluster]:
    requirements = resource.replica_resource_requirements
    if any(_ceil(value) > 0 for value in requirements.values()):
        available = sorted(
            (
                TargetCluster(c.name, cal_cluster_available_replicas(c, requirements))
                for c in clusters
            ),
            key=lambda target: -target.replicas,
        )
        return divide_replicas_aggregated_with_cluster_replicas(
            available, resource.replicas
        )

    targets = [TargetCluster(c.name, 0) for c in clusters]
    targets[0] = TargetCluster(clusters[0].name, resource.replicas)
    return targets


def _ceil(quantity, scale: int = 1) -> int:
    """Round a quantity (times ``scale``) up to a whole number."""
    value = Decimal(str(quantity)) * scale
    return int(value.to_integral_value(rounding=ROUND_CEILING))


def cal_cluster_available_replicas(
    cluster: Cluster, resource_per_replica: Mapping[str, float]
) -> int:
    """Return how many replicas with the given requests fit on ``cluster``.

    Available is allocatable minus allocated minus allocating; CPU is counted
    in thousandths. A requested resource the cluster does not report, or has
    none of left, means no replica fits.
    """
    maximum = MAX_INT32
    summary = cluster.resource_summary
    for key, value in resource_per_replica.items():
        requested = _ceil(value)
        if requested <= 0:
            continue
        if key not in summary.allocatable:
            return 0
        available = Decimal(str(summary.allocatable[key]))
        if key in summary.allocated:
            available -= Decimal(str(summary.allocated[key]))
        if key in summary.allocating:
            available -= Decimal(str(summary.allocating[key]))
        available_quantity = _ceil(available)
        if available_quantity <= 0:
            return 0
        if key == RESOURCE_CPU:
            requested = _ceil(value, 1000)
            available_quantity = _ceil(available, 1000)
        maximum = min(maximum, available_quantity // requested)
    return maximum


def divide_replicas_aggregated_with_cluster_replicas(
    available: Sequence[TargetCluster], replicas: int
) -> List[TargetCluster]:
    """Divide ``replicas`` over as few clusters as can hold them.

    ``available`` lists clusters with the replicas each can hold, largest
    first. Raises ScheduleError when all of them together cannot hold
    ``replicas``.
    """
    clusters_num = 0
    clusters_max = 0
    for target in available:
        clusters_num += 1
        clusters_max += target.replicas
        if clusters_max >= replicas:
            break
    if clusters_max < replicas:
        raise ScheduleError(
            "clusters resources are not enough to schedule, "
            f"max {clusters_max} replicas are support"
        )

    desired: Dict[str, int] = {}
    for i, target in enumerate(available):
        if i >= clusters_num or clusters_max == 0:
            desired[target.name] = 0
        else:
            desired[target.name] = target.replicas * replicas // clusters_max

    remain = replicas - sum(desired.values())
    if remain > 0:
        chosen = [target.name for target in available[:clusters_num]]
        for name in itertools.islice(itertools.cycle(chosen), remain):
            desired[name] += 1

    return [TargetCluster(name, count) for name, count in desired.items()]