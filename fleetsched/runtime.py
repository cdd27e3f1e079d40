"""The scheduling framework that runs the configured plugins."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from .framework import ClusterScore, PluginError, Result
from .models import Cluster, ObjectReference, Placement
from .plugins import new_plugins

logger = logging.getLogger(__name__)


class Framework:
    """Holds the filter and score plugins in use and runs them.

    ``plugin_names`` picks plugins out of ``registry`` (the built-in plugins
    when not given). A plugin with a ``filter`` method is used as a filter
    plugin; otherwise a plugin with a ``score`` method is used as a score
    plugin. Unknown names are skipped with a warning.
    """

    def __init__(
        self,
        plugin_names: Iterable[str],
        registry: Optional[Mapping[str, object]] = None,
    ) -> None:
        plugins = new_plugins() if registry is None else dict(registry)
        self.filter_plugins: List[object] = []
        self.score_plugins: List[object] = []
        for name in plugin_names:
            plugin = plugins.get(name)
            if plugin is None:
                logger.warning("scheduling plugin %s not exists", name)
                continue
            if callable(getattr(plugin, "filter", None)):
                self.filter_plugins.append(plugin)
            elif callable(getattr(plugin, "score", None)):
                self.score_plugins.append(plugin)

    def run_filter_plugins(
        self, placement: Placement, resource: ObjectReference, cluster: Cluster
    ) -> Dict[str, Result]:
        """Run every filter plugin on ``cluster``, keyed by plugin name."""
        return {
            plugin.name: plugin.filter(placement, resource, cluster)
            for plugin in self.filter_plugins
        }

    def run_score_plugins(
        self, placement: Placement, clusters: Sequence[Cluster]
    ) -> Dict[str, List[ClusterScore]]:
        """Score every cluster with every score plugin.

        Returns, per plugin name, the scores in the order of ``clusters``.
        Raises PluginError when a plugin does not succeed.
        """
        result: Dict[str, List[ClusterScore]] = {}
        for plugin in self.score_plugins:
            scores = []
            for cluster in clusters:
                score, outcome = plugin.score(placement, cluster)
                if outcome is not None and not outcome.is_success():
                    cause = outcome.as_error()
                    raise PluginError(
                        f'plugin "{plugin.name}" failed with: {cause}'
                    ) from cause
                scores.append(ClusterScore(name=cluster.name, score=score))
            result[plugin.name] = scores
        return result