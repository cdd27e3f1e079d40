"""Data model for clusters, policies, bindings and scheduling inputs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Tuple

CONDITION_READY = "Ready"
CONDITION_TRUE = "True"
CONDITION_FALSE = "False"
CONDITION_UNKNOWN = "Unknown"

TAINT_EFFECT_NO_SCHEDULE = "NoSchedule"
TAINT_EFFECT_PREFER_NO_SCHEDULE = "PreferNoSchedule"
TAINT_EFFECT_NO_EXECUTE = "NoExecute"

TOLERATION_OP_EXISTS = "Exists"
TOLERATION_OP_EQUAL = "Equal"

SPREAD_BY_FIELD_CLUSTER = "cluster"

REPLICA_SCHEDULING_DUPLICATED = "Duplicated"
REPLICA_SCHEDULING_DIVIDED = "Divided"
REPLICA_DIVISION_AGGREGATED = "Aggregated"
REPLICA_DIVISION_WEIGHTED = "Weighted"

#: A cluster selector: a callable deciding whether a cluster is matched.
ClusterPredicate = Callable[["Cluster"], bool]


@dataclass
class Condition:
    """A status condition of a cluster."""

    type: str
    status: str
    reason: str = ""
    message: str = ""


@dataclass(frozen=True)
class Taint:
    """A taint that repels resources not tolerating it."""

    key: str
    value: str = ""
    effect: str = TAINT_EFFECT_NO_SCHEDULE


@dataclass(frozen=True)
class Toleration:
    """A toleration declared by a placement."""

    key: str = ""
    operator: str = ""
    value: str = ""
    effect: str = ""

    def tolerates(self, taint: Taint) -> bool:
        """Return whether this toleration tolerates ``taint``."""
        if self.effect and self.effect != taint.effect:
            return False
        if self.key and self.key != taint.key:
            return False
        if self.operator in ("", TOLERATION_OP_EQUAL):
            return self.value == taint.value
        return self.operator == TOLERATION_OP_EXISTS


@dataclass
class ResourceSummary:
    """Resource quantities of a cluster, keyed by resource name."""

    allocatable: Dict[str, float] = field(default_factory=dict)
    allocated: Dict[str, float] = field(default_factory=dict)
    allocating: Dict[str, float] = field(default_factory=dict)


@dataclass
class Cluster:
    """A member cluster known to the scheduler."""

    name: str
    labels: Dict[str, str] = field(default_factory=dict)
    provider: str = ""
    region: str = ""
    zone: str = ""
    taints: List[Taint] = field(default_factory=list)
    conditions: List[Condition] = field(default_factory=list)
    # Maps an API group-version to the kinds served under it.
    api_enablements: Dict[str, List[str]] = field(default_factory=dict)
    resource_summary: ResourceSummary = field(default_factory=ResourceSummary)

    def condition_is(self, condition_type: str, status: str) -> bool:
        """Return whether the condition of this type is present with ``status``."""
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition.status == status
        return False


def is_cluster_ready(cluster: Cluster) -> bool:
    """Return whether the cluster's Ready condition is True."""
    return cluster.condition_is(CONDITION_READY, CONDITION_TRUE)


@dataclass
class ObjectReference:
    """Reference to the resource template a binding propagates."""

    api_version: str = ""
    kind: str = ""
    namespace: str = ""
    name: str = ""
    resource_version: str = ""
    replicas: int = 0
    replica_resource_requirements: Dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class TargetCluster:
    """A cluster chosen by the scheduler, with its share of replicas."""

    name: str
    replicas: int = 0


@dataclass(frozen=True)
class SpreadConstraint:
    """Limits on how many groups the selected clusters are spread over."""

    spread_by_field: str = ""
    spread_by_label: str = ""
    max_groups: int = 0
    min_groups: int = 0


@dataclass(frozen=True)
class StaticClusterWeight:
    """A weight given to the clusters matched by ``target_cluster``."""

    target_cluster: ClusterPredicate
    weight: int


@dataclass
class ReplicaSchedulingStrategy:
    """How replicas are spread across the selected clusters."""

    replica_scheduling_type: str = REPLICA_SCHEDULING_DUPLICATED
    replica_division_preference: str = ""
    weight_preference: Optional[Tuple[StaticClusterWeight, ...]] = None


@dataclass
class Placement:
    """Where a resource should be placed."""

    cluster_affinity: Optional[ClusterPredicate] = None
    cluster_tolerations: List[Toleration] = field(default_factory=list)
    spread_constraints: List[SpreadConstraint] = field(default_factory=list)
    replica_scheduling: Optional[ReplicaSchedulingStrategy] = None


@dataclass
class ResourceBinding:
    """Binding of a namespaced resource to target clusters."""

    name: str
    namespace: str
    resource: ObjectReference = field(default_factory=ObjectReference)
    clusters: List[TargetCluster] = field(default_factory=list)
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Optional[Dict[str, str]] = None


@dataclass
class ClusterResourceBinding:
    """Binding of a cluster-scoped resource to target clusters."""

    name: str
    resource: ObjectReference = field(default_factory=ObjectReference)
    clusters: List[TargetCluster] = field(default_factory=list)
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Optional[Dict[str, str]] = None
    namespace: str = field(default="", init=False)


@dataclass
class PropagationPolicy:
    """Namespaced policy declaring how resources are propagated."""

    name: str
    namespace: str
    placement: Placement = field(default_factory=Placement)
    labels: Mapping[str, str] = field(default_factory=dict)


@dataclass
class ClusterPropagationPolicy:
    """Cluster-wide policy declaring how resources are propagated."""

    name: str
    placement: Placement = field(default_factory=Placement)
    labels: Mapping[str, str] = field(default_factory=dict)
    namespace: str = field(default="", init=False)


@dataclass
class ClusterInfo:
    """Cluster-level information aggregated for one scheduling cycle."""

    cluster: Cluster