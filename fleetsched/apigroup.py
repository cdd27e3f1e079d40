"""Configuration of API groups, versions and kinds skipped from propagation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Set

logger = logging.getLogger(__name__)

_DEFAULT_DISABLED_GROUPS = ("cluster.karmada.io", "policy.karmada.io", "work.karmada.io")


@dataclass(frozen=True)
class GroupVersion:
    """An API group and version."""

    group: str = ""
    version: str = ""


@dataclass(frozen=True)
class GroupVersionKind:
    """An API group, version and kind."""

    group: str = ""
    version: str = ""
    kind: str = ""


class SkippedResourceConfig:
    """Identifies the API resources that should not be propagated.

    The system's own API groups are disabled from the start.
    """

    def __init__(self) -> None:
        self.groups: Set[str] = set()
        self.group_versions: Set[GroupVersion] = set()
        self.group_version_kinds: Set[GroupVersionKind] = set()
        for group in _DEFAULT_DISABLED_GROUPS:
            self.disable_group(group)

    def parse(self, config: str) -> None:
        """Add the entries of a ``;``-separated configuration string.

        Each entry is a group (``networking.k8s.io``), a group-version
        (``networking.k8s.io/v1``) or a group-version with kinds
        (``networking.k8s.io/v1beta1/Ingress,IngressClass``); core kinds are
        written as ``v1/Node,Pod``.
        """
        if not config:
            return
        for token in config.split(";"):
            self._parse_single(token)

    def _parse_single(self, token: str) -> None:
        slashes = token.count("/")
        if slashes == 0:
            self.groups.add(token)
        elif slashes == 1:
            if token.startswith("v1"):
                kinds = [k.split("/")[1] if "/" in k else k for k in token.split(",")]
                self.group_version_kinds.update(
                    GroupVersionKind(version="v1", kind=kind) for kind in kinds
                )
            else:
                group, _, version = token.partition("/")
                self.group_versions.add(GroupVersion(group=group, version=version))
        elif slashes == 2:
            group = version = ""
            kinds = []
            for item in token.split(","):
                if "/" in item:
                    parts = item.split("/")
                    group, version = parts[0], parts[1]
                    kinds.append(parts[2])
                else:
                    kinds.append(item)
            self.group_version_kinds.update(
                GroupVersionKind(group=group, version=version, kind=kind) for kind in kinds
            )
        else:
            logger.error("Unsupported SkippedPropagatingAPIs: %s", token)

    def group_version_disabled(self, gv: GroupVersion) -> bool:
        """Return whether the group-version is disabled."""
        return gv in self.group_versions

    def group_version_kind_disabled(self, gvk: GroupVersionKind) -> bool:
        """Return whether the group-version-kind is disabled."""
        return gvk in self.group_version_kinds

    def group_disabled(self, group: str) -> bool:
        """Return whether the whole group is disabled."""
        return group in self.groups

    def disable_group(self, group: str) -> None:
        """Disable every resource of ``group``."""
        self.groups.add(group)