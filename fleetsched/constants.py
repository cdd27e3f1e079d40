"""Well-known label, annotation and field names, plus annotation helpers."""

from __future__ import annotations

from typing import Any, Mapping, Optional

# Labels added to objects to record which policy or binding they belong to.
PROPAGATION_POLICY_NAMESPACE_LABEL = "propagationpolicy.karmada.io/namespace"
PROPAGATION_POLICY_NAME_LABEL = "propagationpolicy.karmada.io/name"
CLUSTER_PROPAGATION_POLICY_LABEL = "clusterpropagationpolicy.karmada.io/name"
RESOURCE_BINDING_NAMESPACE_LABEL = "resourcebinding.karmada.io/namespace"
RESOURCE_BINDING_NAME_LABEL = "resourcebinding.karmada.io/name"
CLUSTER_RESOURCE_BINDING_LABEL = "clusterresourcebinding.karmada.io/name"
WORK_NAMESPACE_LABEL = "work.karmada.io/namespace"
WORK_NAME_LABEL = "work.karmada.io/name"
SERVICE_NAMESPACE_LABEL = "endpointslice.karmada.io/namespace"
SERVICE_NAME_LABEL = "endpointslice.karmada.io/name"
PROPAGATION_INSTRUCTION = "propagation.karmada.io/instruction"

# Annotations.
POLICY_PLACEMENT_ANNOTATION = "policy.karmada.io/applied-placement"
APPLIED_OVERRIDES = "policy.karmada.io/applied-overrides"
APPLIED_CLUSTER_OVERRIDES = "policy.karmada.io/applied-cluster-overrides"

# Finalizers.
CLUSTER_CONTROLLER_FINALIZER = "karmada.io/cluster-controller"
EXECUTION_CONTROLLER_FINALIZER = "karmada.io/execution-controller"

# Cluster fields.
PROVIDER_FIELD = "provider"
REGION_FIELD = "region"
ZONE_FIELD = "zone"

# Resource kinds.
DEPLOYMENT_KIND = "Deployment"
SERVICE_KIND = "Service"
POD_KIND = "Pod"
SERVICE_ACCOUNT_KIND = "ServiceAccount"
REPLICA_SET_KIND = "ReplicaSet"
STATEFUL_SET_KIND = "StatefulSet"
ENDPOINT_SLICE_KIND = "EndpointSlice"
SERVICE_EXPORT_KIND = "ServiceExport"
SERVICE_IMPORT_KIND = "ServiceImport"

# Resource fields.
SPEC_FIELD = "spec"
REPLICAS_FIELD = "replicas"
TEMPLATE_FIELD = "template"

PROPAGATION_INSTRUCTION_SUPPRESSED = "suppressed"

# Namespace in which cluster leases are stored.
NAMESPACE_CLUSTER_LEASE = "karmada-cluster"


def merge_annotation(obj: Any, key: str, value: str) -> None:
    """Set annotation ``key`` to ``value`` on ``obj``, creating the map if absent."""
    annotations = getattr(obj, "annotations", None)
    if annotations is None:
        annotations = {}
    annotations[key] = value
    obj.annotations = annotations


def get_label_value(labels: Optional[Mapping[str, str]], key: str) -> str:
    """Return the value stored under ``key``, or an empty string."""
    if not labels:
        return ""
    return labels.get(key, "")