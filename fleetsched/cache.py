"""Scheduler-internal cache of clusters and its snapshots."""

from __future__ import annotations

import copy
import threading
from typing import Dict, Iterable, List

from .models import Cluster, ClusterInfo, is_cluster_ready


class Snapshot:
    """Cluster information frozen at the start of a scheduling cycle."""

    def __init__(self, cluster_infos: Iterable[ClusterInfo] = ()) -> None:
        self._cluster_infos: List[ClusterInfo] = list(cluster_infos)

    def num_of_clusters(self) -> int:
        """Return the number of clusters."""
        return len(self._cluster_infos)

    def get_clusters(self) -> List[ClusterInfo]:
        """Return every cluster."""
        return list(self._cluster_infos)

    def get_ready_clusters(self) -> List[ClusterInfo]:
        """Return the clusters whose Ready condition is True."""
        return [info for info in self._cluster_infos if is_cluster_ready(info.cluster)]


class SchedulerCache:
    """Thread-safe store of the clusters known to the scheduler."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._clusters: Dict[str, Cluster] = {}

    def add_cluster(self, cluster: Cluster) -> None:
        """Add or replace a cluster."""
        with self._lock:
            self._clusters[cluster.name] = cluster

    def update_cluster(self, cluster: Cluster) -> None:
        """Replace a cluster."""
        with self._lock:
            self._clusters[cluster.name] = cluster

    def delete_cluster(self, cluster: Cluster) -> None:
        """Remove a cluster; unknown clusters are ignored."""
        with self._lock:
            self._clusters.pop(cluster.name, None)

    def snapshot(self) -> Snapshot:
        """Return a snapshot holding deep copies of the current clusters."""
        with self._lock:
            return Snapshot(
                ClusterInfo(copy.deepcopy(cluster)) for cluster in self._clusters.values()
            )