import pytest

from fleetsched.cache import SchedulerCache
from fleetsched.generic_scheduler import (
    GenericScheduler,
    ScheduleError,
    assign_replicas,
    cal_cluster_available_replicas,
    divide_replicas_aggregated_with_cluster_replicas,
    divide_replicas_by_static_weight,
    select_clusters,
)
from fleetsched.models import (
    REPLICA_DIVISION_AGGREGATED,
    REPLICA_DIVISION_WEIGHTED,
    REPLICA_SCHEDULING_DIVIDED,
    REPLICA_SCHEDULING_DUPLICATED,
    SPREAD_BY_FIELD_CLUSTER,
    Cluster,
    Condition,
    ObjectReference,
    Placement,
    ReplicaSchedulingStrategy,
    ResourceSummary,
    SpreadConstraint,
    StaticClusterWeight,
    Taint,
    TargetCluster,
)

PLUGINS = ["ClusterAffinity", "TaintToleration", "APIInstalled"]


def _cluster(name, ready=True, taints=(), cpu=None):
    summary = ResourceSummary(allocatable={"cpu": cpu} if cpu is not None else {})
    return Cluster(
        name=name,
        conditions=[Condition("Ready", "True" if ready else "False")],
        api_enablements={"apps/v1": ["Deployment"]},
        taints=list(taints),
        resource_summary=summary,
    )


def _scheduler(*clusters):
    cache = SchedulerCache()
    for c in clusters:
        cache.add_cluster(c)
    return GenericScheduler(cache, PLUGINS)


def _deployment(replicas=0, requirements=None):
    return ObjectReference(
        api_version="apps/v1",
        kind="Deployment",
        name="web",
        replicas=replicas,
        replica_resource_requirements=requirements or {},
    )


def test_schedule_without_clusters():
    with pytest.raises(ScheduleError, match="no clusters available to schedule"):
        _scheduler().schedule(Placement(), _deployment())


def test_schedule_selects_all_fitting_clusters():
    result = _scheduler(_cluster("a"), _cluster("b")).schedule(Placement(), _deployment())
    assert sorted(t.name for t in result.suggested_clusters) == ["a", "b"]
    assert all(t.replicas == 0 for t in result.suggested_clusters)


def test_schedule_skips_not_ready_and_tainted():
    sched = _scheduler(
        _cluster("a"), _cluster("b", ready=False), _cluster("c", taints=[Taint("k", "v")])
    )
    result = sched.schedule(Placement(), _deployment())
    assert [t.name for t in result.suggested_clusters] == ["a"]


def test_schedule_no_fit():
    placement = Placement(cluster_affinity=lambda c: False)
    with pytest.raises(ScheduleError, match="no clusters fit"):
        _scheduler(_cluster("a")).schedule(placement, _deployment())


def test_schedule_empty_spread_result_fails_assignment():
    placement = Placement(
        spread_constraints=[SpreadConstraint(SPREAD_BY_FIELD_CLUSTER, min_groups=5, max_groups=5)]
    )
    with pytest.raises(ScheduleError, match="failed to assignReplicas"):
        _scheduler(_cluster("a")).schedule(placement, _deployment())


def test_schedule_weighted_division_sums_to_replicas():
    strategy = ReplicaSchedulingStrategy(
        REPLICA_SCHEDULING_DIVIDED,
        REPLICA_DIVISION_WEIGHTED,
        (
            StaticClusterWeight(lambda c: c.name == "a", 1),
            StaticClusterWeight(lambda c: c.name == "b", 2),
        ),
    )
    result = _scheduler(_cluster("a"), _cluster("b")).schedule(
        Placement(replica_scheduling=strategy), _deployment(7)
    )
    assert sum(t.replicas for t in result.suggested_clusters) == 7


def test_select_clusters_without_constraints_keeps_all():
    clusters = [_cluster("a"), _cluster("b")]
    assert select_clusters([], clusters) == clusters


def test_select_clusters_limits_to_max_groups():
    clusters = [_cluster("a"), _cluster("b"), _cluster("c")]
    chosen = select_clusters(
        [SpreadConstraint(SPREAD_BY_FIELD_CLUSTER, max_groups=1, min_groups=1)], clusters
    )
    assert len(chosen) == 1
    assert chosen[0] in clusters


def test_select_clusters_below_min_groups():
    clusters = [_cluster("a"), _cluster("b")]
    chosen = select_clusters(
        [SpreadConstraint(SPREAD_BY_FIELD_CLUSTER, max_groups=3, min_groups=3)], clusters
    )
    assert chosen == []


def test_select_clusters_multiple_constraints_unsupported():
    clusters = [_cluster("a"), _cluster("b")]
    constraints = [
        SpreadConstraint(SPREAD_BY_FIELD_CLUSTER, max_groups=1, min_groups=1),
        SpreadConstraint(SPREAD_BY_FIELD_CLUSTER, max_groups=2, min_groups=1),
    ]
    assert select_clusters(constraints, clusters) == []


def test_assign_replicas_empty():
    with pytest.raises(ScheduleError, match="no clusters available to schedule"):
        assign_replicas([], None, _deployment(3))


def test_assign_replicas_duplicated():
    strategy = ReplicaSchedulingStrategy(REPLICA_SCHEDULING_DUPLICATED)
    targets = assign_replicas([_cluster("a"), _cluster("b")], strategy, _deployment(3))
    assert targets == [TargetCluster("a", 3), TargetCluster("b", 3)]


def test_assign_replicas_weighted_without_preference():
    strategy = ReplicaSchedulingStrategy(REPLICA_SCHEDULING_DIVIDED, REPLICA_DIVISION_WEIGHTED)
    with pytest.raises(ScheduleError, match="no WeightPreference find to divide replicas"):
        assign_replicas([_cluster("a")], strategy, _deployment(3))


def test_assign_replicas_aggregated_without_requirements_gives_first_all():
    strategy = ReplicaSchedulingStrategy(REPLICA_SCHEDULING_DIVIDED, REPLICA_DIVISION_AGGREGATED)
    targets = assign_replicas([_cluster("a"), _cluster("b")], strategy, _deployment(5))
    assert targets == [TargetCluster("a", 5), TargetCluster("b", 0)]


def test_assign_replicas_aggregated_with_requirements_sums():
    strategy = ReplicaSchedulingStrategy(REPLICA_SCHEDULING_DIVIDED, REPLICA_DIVISION_AGGREGATED)
    clusters = [_cluster("a", cpu=2), _cluster("b", cpu=8)]
    targets = assign_replicas(clusters, strategy, _deployment(4, {"cpu": 1}))
    assert sum(t.replicas for t in targets) == 4
    assert {t.name for t in targets} == {"a", "b"}


def test_assign_replicas_zero_replicas_ignores_strategy():
    strategy = ReplicaSchedulingStrategy(REPLICA_SCHEDULING_DUPLICATED)
    targets = assign_replicas([_cluster("a")], strategy, _deployment(0))
    assert targets == [TargetCluster("a", 0)]


def test_static_weight_proportions():
    clusters = [_cluster("a"), _cluster("b")]
    weights = [
        StaticClusterWeight(lambda c: c.name == "a", 1),
        StaticClusterWeight(lambda c: c.name == "b", 2),
    ]
    targets = divide_replicas_by_static_weight(clusters, weights, 3)
    assert targets == [TargetCluster("a", 1), TargetCluster("b", 2)]


def test_static_weight_no_match_spreads_evenly():
    clusters = [_cluster("a"), _cluster("b")]
    weights = [StaticClusterWeight(lambda c: c.name == "z", 5)]
    targets = divide_replicas_by_static_weight(clusters, weights, 4)
    assert targets[0].replicas == targets[1].replicas
    assert sum(t.replicas for t in targets) == 4


def test_static_weight_unmatched_cluster_gets_none():
    clusters = [_cluster("a"), _cluster("b")]
    weights = [StaticClusterWeight(lambda c: c.name == "a", 1)]
    targets = divide_replicas_by_static_weight(clusters, weights, 5)
    assert targets == [TargetCluster("a", 5), TargetCluster("b", 0)]


def test_available_replicas_cpu_in_millis():
    cluster = _cluster("a")
    cluster.resource_summary = ResourceSummary(allocatable={"cpu": 4}, allocated={"cpu": 1})
    assert cal_cluster_available_replicas(cluster, {"cpu": 0.5}) == 6


def test_available_replicas_missing_resource():
    cluster = _cluster("a", cpu=4)
    assert cal_cluster_available_replicas(cluster, {"memory": 1}) == 0


def test_available_replicas_exhausted():
    cluster = _cluster("a")
    cluster.resource_summary = ResourceSummary(
        allocatable={"cpu": 2}, allocated={"cpu": 1}, allocating={"cpu": 1}
    )
    assert cal_cluster_available_replicas(cluster, {"cpu": 1}) == 0


def test_available_replicas_without_requests_is_unbounded():
    assert cal_cluster_available_replicas(_cluster("a"), {}) == 2**31 - 1


def test_aggregated_division_not_enough():
    available = [TargetCluster("a", 2), TargetCluster("b", 1)]
    with pytest.raises(ScheduleError, match="max 3 replicas are support"):
        divide_replicas_aggregated_with_cluster_replicas(available, 10)


def test_aggregated_division_uses_fewest_clusters():
    available = [TargetCluster("a", 10), TargetCluster("b", 5)]
    targets = divide_replicas_aggregated_with_cluster_replicas(available, 4)
    assert targets == [TargetCluster("a", 4), TargetCluster("b", 0)]


def test_aggregated_division_sums_to_replicas():
    available = [TargetCluster("a", 3), TargetCluster("b", 3), TargetCluster("c", 3)]
    targets = divide_replicas_aggregated_with_cluster_replicas(available, 5)
    assert sum(t.replicas for t in targets) == 5
    assert all(t.replicas <= 3 for t in targets)
    assert [t.name for t in targets] == ["a", "b", "c"]