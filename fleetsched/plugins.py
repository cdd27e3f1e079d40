"""Built-in scheduling plugins and their registry."""

from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, Optional, Tuple

from .framework import Code, Result
from .models import (
    TAINT_EFFECT_NO_SCHEDULE,
    Cluster,
    ObjectReference,
    Placement,
    Taint,
    Toleration,
)

logger = logging.getLogger(__name__)


def _is_api_enabled(cluster: Cluster, api_version: str, kind: str) -> bool:
    return kind in cluster.api_enablements.get(api_version, ())


class APIInstalled:
    """Checks that the resource's API is installed in the target cluster."""

    name = "APIInstalled"

    def filter(
        self, placement: Placement, resource: ObjectReference, cluster: Cluster
    ) -> Result:
        """Reject clusters that do not serve the resource's API."""
        if not _is_api_enabled(cluster, resource.api_version, resource.kind):
            logger.debug(
                "cluster(%s) not fit as missing API(%s, kind=%s)",
                cluster.name,
                resource.api_version,
                resource.kind,
            )
            return Result(Code.UNSCHEDULABLE, "no such API resource")
        return Result(Code.SUCCESS)

    def score(self, placement: Placement, cluster: Cluster) -> Tuple[float, Result]:
        """Give every cluster the same score."""
        return 0.0, Result(Code.SUCCESS)


class ClusterAffinity:
    """Checks that the cluster matches the placement's cluster affinity."""

    name = "ClusterAffinity"

    def filter(
        self, placement: Placement, resource: ObjectReference, cluster: Cluster
    ) -> Result:
        """Reject clusters not matched by the placement's affinity, if any."""
        affinity = placement.cluster_affinity
        if affinity is not None and not affinity(cluster):
            return Result(
                Code.UNSCHEDULABLE,
                "cluster is not matched the placement cluster affinity constraint",
            )
        return Result(Code.SUCCESS)

    def score(self, placement: Placement, cluster: Cluster) -> Tuple[float, Result]:
        """Give every cluster the same score."""
        return 0.0, Result(Code.SUCCESS)


def find_matching_untolerated_taint(
    taints: Iterable[Taint],
    tolerations: Iterable[Toleration],
    predicate: Optional[Callable[[Taint], bool]],
) -> Optional[Taint]:
    """Return the first taint passing ``predicate`` that no toleration tolerates."""
    tolerations = list(tolerations)
    for taint in taints:
        if predicate is not None and not predicate(taint):
            continue
        if not any(toleration.tolerates(taint) for toleration in tolerations):
            return taint
    return None


class TaintToleration:
    """Checks that the placement tolerates the cluster's NoSchedule taints."""

    name = "TaintToleration"

    def filter(
        self, placement: Placement, resource: ObjectReference, cluster: Cluster
    ) -> Result:
        """Reject clusters carrying an untolerated NoSchedule taint."""
        taint = find_matching_untolerated_taint(
            cluster.taints,
            placement.cluster_tolerations,
            lambda t: t.effect == TAINT_EFFECT_NO_SCHEDULE,
        )
        if taint is None:
            return Result(Code.SUCCESS)
        return Result(
            Code.UNSCHEDULABLE,
            f"cluster had taint {{{taint.key}: {taint.value}}}, "
            "that the propagation policy didn't tolerate",
        )

    def score(self, placement: Placement, cluster: Cluster) -> Tuple[float, Result]:
        """Give every cluster the same score."""
        return 0.0, Result(Code.SUCCESS)


def new_plugins() -> Dict[str, object]:
    """Build every built-in plugin, keyed by plugin name."""
    plugins = (ClusterAffinity(), TaintToleration(), APIInstalled())
    return {plugin.name: plugin for plugin in plugins}