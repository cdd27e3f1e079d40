# fleetsched

`fleetsched` decides which member clusters of a fleet a workload should be
placed on, and how many replicas each of them should run.

It is a library with no third-party runtime dependencies. You give it
clusters, propagation policies and bindings as plain Python objects; it
writes its decisions back into in-memory stores.

## Modules

| Module | Contents |
| --- | --- |
| `fleetsched.constants` | Label, annotation, finalizer and field names; `merge_annotation`, `get_label_value` |
| `fleetsched.models` | Dataclasses: `Cluster`, `Condition`, `Taint`, `Toleration`, `ResourceSummary`, `ObjectReference`, `TargetCluster`, `SpreadConstraint`, `StaticClusterWeight`, `ReplicaSchedulingStrategy`, `Placement`, `ResourceBinding`, `ClusterResourceBinding`, `PropagationPolicy`, `ClusterPropagationPolicy`, `ClusterInfo`; `is_cluster_ready` |
| `fleetsched.apigroup` | `SkippedResourceConfig`, `GroupVersion`, `GroupVersionKind` |
| `fleetsched.framework` | `Code`, `Result`, `merge_results`, `ClusterScore`, `PluginError` |
| `fleetsched.plugins` | `ClusterAffinity`, `TaintToleration`, `APIInstalled`, `find_matching_untolerated_taint`, `new_plugins` |
| `fleetsched.cache` | `SchedulerCache` and the `Snapshot` it hands out |
| `fleetsched.runtime` | `Framework`, which runs the configured filter and score plugins |
| `fleetsched.generic_scheduler` | `GenericScheduler`, `ScheduleResult`, `ScheduleError`, `select_clusters`, `assign_replicas`, `divide_replicas_by_static_weight`, `cal_cluster_available_replicas`, `divide_replicas_aggregated_with_cluster_replicas` |
| `fleetsched.store` | `ObjectStore`, `RateLimitingQueue`, `NotFoundError` |
| `fleetsched.scheduler` | `Scheduler`, `ScheduleType`, `split_key`, `object_key` |

## How a resource is scheduled

`GenericScheduler.schedule(placement, resource)` works on a snapshot of the
`SchedulerCache` and raises `ScheduleError` when nothing can be chosen.

1. **Filter.** Each cluster whose `Ready` condition is `True` is passed
   through the filter plugins; it survives only if the merged result is a
   success.
   * `ClusterAffinity` – `placement.cluster_affinity`, a callable taking a
     `Cluster`, must return true (no affinity matches everything).
   * `TaintToleration` – every `NoSchedule` taint on the cluster must be
     tolerated by one of `placement.cluster_tolerations`.
   * `APIInstalled` – `cluster.api_enablements[resource.api_version]` must
     list `resource.kind`.
2. **Score.** Score plugins, if any are configured, are run over the
   surviving clusters. The scores are computed but do not change which
   clusters are selected.
3. **Spread.** `select_clusters` applies `placement.spread_constraints`.
   Only spreading by cluster is handled, and only one distinct constraint:
   fewer groups than `min_groups` selects nothing, and at most `max_groups`
   clusters are kept.
4. **Replicas.** `assign_replicas` uses `placement.replica_scheduling`:
   * no strategy, or zero replicas – every cluster gets a target with 0 replicas;
   * `Duplicated` – every cluster gets the full replica count;
   * `Divided` with `Weighted` – `divide_replicas_by_static_weight` splits
     the replicas by the `weight_preference` rules (each a callable
     `target_cluster` and a `weight`); left-over replicas go to the
     heaviest clusters first;
   * `Divided` with any other preference – aggregated: if the resource has
     positive `replica_resource_requirements`, each cluster's room is worked
     out by `cal_cluster_available_replicas` (allocatable minus allocated
     minus allocating, CPU counted in thousandths) and
     `divide_replicas_aggregated_with_cluster_replicas` fills as few
     clusters as possible; otherwise the first cluster gets every replica.

## The scheduler loop

`Scheduler` ties the pieces together. Its stores (`bindings`,
`cluster_bindings`, `policies`, `cluster_policies`) are `ObjectStore`s;
event methods (`on_resource_binding_add`, `on_propagation_policy_update`,
`add_cluster`, `update_cluster`, `delete_cluster`, …) put keys of the form
`namespace/name` (or `name` for cluster-scoped bindings) on a
`RateLimitingQueue`. `schedule_next()` takes one key and decides, through
`get_schedule_type`, whether the binding needs its first schedule, a
reschedule because its policy's placement changed, a failover, or nothing.
A successful schedule writes the chosen clusters and the applied placement
(annotation `policy.karmada.io/applied-placement`) into the store.

Failed keys are retried with exponential back-off starting at 5 ms, up to
15 times, after which they are dropped. `run(stop_event)` processes the
queue in a worker thread until the event is set.

With `failover=True`, a cluster turning not-ready requeues every binding
placed on it; `reschedule_one` keeps the bound clusters that are still
ready and replaces the others with ready, unbound clusters (taken in name
order) that satisfy the policy's cluster affinity.

```python
from fleetsched.constants import PROPAGATION_POLICY_NAME_LABEL, PROPAGATION_POLICY_NAMESPACE_LABEL
from fleetsched.models import (
    Cluster, Condition, ObjectReference, Placement, PropagationPolicy,
    ReplicaSchedulingStrategy, ResourceBinding,
)
from fleetsched.scheduler import Scheduler

scheduler = Scheduler()
scheduler.add_cluster(
    Cluster(
        name="member1",
        conditions=[Condition("Ready", "True")],
        api_enablements={"apps/v1": ["Deployment"]},
    )
)
scheduler.policies.put(
    PropagationPolicy(
        name="web",
        namespace="default",
        placement=Placement(replica_scheduling=ReplicaSchedulingStrategy("Duplicated")),
    )
)
binding = ResourceBinding(
    name="web-deployment",
    namespace="default",
    resource=ObjectReference(api_version="apps/v1", kind="Deployment",
                             namespace="default", name="web", replicas=3),
    labels={PROPAGATION_POLICY_NAMESPACE_LABEL: "default",
            PROPAGATION_POLICY_NAME_LABEL: "web"},
)
scheduler.bindings.put(binding)
scheduler.on_resource_binding_add(binding)
scheduler.schedule_next()

scheduler.bindings.get("default", "web-deployment").clusters
# [TargetCluster(name='member1', replicas=3)]
```

## Skipping API resources

`SkippedResourceConfig.parse` reads a semicolon separated list:

* `networking.k8s.io` – a whole API group;
* `networking.k8s.io/v1` – one group-version;
* `networking.k8s.io/v1beta1/Ingress,IngressClass` – kinds of a group-version;
* `v1/Node,Pod` – kinds of the core group.

```python
from fleetsched.apigroup import GroupVersion, GroupVersionKind, SkippedResourceConfig

config = SkippedResourceConfig()
config.parse("v1/Node,Pod;networking.k8s.io/v1beta1/Ingress;test.com/v1")

config.group_version_kind_disabled(GroupVersionKind("", "v1", "Pod"))   # True
config.group_version_disabled(GroupVersion("test.com", "v1"))           # True
config.group_disabled("policy.karmada.io")                              # True
```

The groups `cluster.karmada.io`, `policy.karmada.io` and `work.karmada.io`
are disabled from the start. Entries with more than two slashes are logged
and ignored.

## What the package does not do

* It does not connect to any cluster or API server, and does not watch
  anything: events reach the `Scheduler` only when your code calls its
  event methods.
* It keeps no state on disk; `ObjectStore` and `SchedulerCache` live in
  memory.
* It has no command-line program or server; it is used as a library.
* Cluster affinity and static weight targets are Python callables, not
  declarative selectors. When a placement is recorded in the applied
  placement annotation, such callables are recorded by identity, so giving
  a policy a new callable counts as a placement change.

## Requirements

Python 3.10 or later. The tests use pytest (`pip install fleetsched[test]`).