"""Plugin results and scores shared by the scheduling framework."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import List, Mapping, Optional


class Code(enum.IntEnum):
    """Outcome of running a plugin."""

    SUCCESS = 0
    UNSCHEDULABLE = 1
    ERROR = 2


class PluginError(Exception):
    """Raised or returned when a plugin result is not a success."""


class Result:
    """The result of running a plugin: a code, reasons and an optional error."""

    __slots__ = ("code", "reasons", "err")

    def __init__(self, code: Code, *reasons: str) -> None:
        self.code = Code(code)
        self.reasons: List[str] = list(reasons)
        self.err: Optional[PluginError] = (
            PluginError(",".join(reasons)) if self.code is Code.ERROR else None
        )

    def __repr__(self) -> str:
        return f"Result(code={self.code.name}, reasons={self.reasons!r})"

    def is_success(self) -> bool:
        """Return whether the code is SUCCESS."""
        return self.code is Code.SUCCESS

    def as_error(self) -> Optional[PluginError]:
        """Return None on success, otherwise an error describing the reasons."""
        if self.is_success():
            return None
        if self.err is not None:
            return self.err
        return PluginError(", ".join(self.reasons))


def merge_results(results: Mapping[str, Optional[Result]]) -> Optional[Result]:
    """Merge per-plugin results into one.

    Returns None when there is nothing to merge, which counts as success.
    ERROR takes precedence over UNSCHEDULABLE, which takes precedence over
    SUCCESS. Reasons of all results are collected.
    """
    if not results:
        return None

    final = Result(Code.SUCCESS)
    has_unschedulable = False
    for result in results.values():
        if result is None:
            continue
        if result.code is Code.ERROR:
            final.err = result.err
        elif result.code is Code.UNSCHEDULABLE:
            has_unschedulable = True
        final.code = result.code
        final.reasons.extend(result.reasons)

    if final.err is not None:
        final.code = Code.ERROR
    elif has_unschedulable:
        final.code = Code.UNSCHEDULABLE
    else:
        final.code = Code.SUCCESS
    return final


@dataclass
class ClusterScore:
    """The score given to a cluster."""

    name: str
    score: float = 0.0