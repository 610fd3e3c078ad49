"""
Vault Invariant Guard (VIG) - Affected-Set Builder
Version: 1.0.0

Collapses unwrapped leaves into the deduplicated validation worklist and
expands every principal to its controller resources, which is what lets an
operation on one resource be checked from the point of view of another.
"""

from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Set

from vig_enforcement_v1 import (
    AffectedEntry,
    OracleUnavailable,
    is_null,
    logger
)
from vig_metrics import affected_entries_histogram

@dataclass(frozen=True)
class AffectedSet:
    entries: FrozenSet[AffectedEntry]
    resources: FrozenSet[str]

    @property
    def principals(self) -> FrozenSet[str]:
        return frozenset(e.principal for e in self.entries if e.principal is not None)

    def sorted_entries(self) -> List[AffectedEntry]:
        return sorted(self.entries)

    def resource_entries(self) -> List[AffectedEntry]:
        return [AffectedEntry(resource) for resource in sorted(self.resources)]

    def __contains__(self, entry: AffectedEntry) -> bool:
        return entry in self.entries

    def __len__(self) -> int:
        return len(self.entries)

class AffectedSetBuilder:
    """Builds the AffectedSet for one rule run."""

    def __init__(self, oracle, expand_controllers: bool = True):
        self.oracle = oracle
        self.expand_controllers = expand_controllers

    def build(self, leaves: Iterable) -> AffectedSet:
        leaves = list(leaves)
        touched = {leaf.target for leaf in leaves}
        entries: Set[AffectedEntry] = set()

        for leaf in leaves:
            candidates = (leaf.principal,) + leaf.operation.extracted_principals()
            for principal in candidates:
                if is_null(principal) or principal in touched:
                    # resources are never validated as if they were accounts
                    continue
                entries.add(AffectedEntry(leaf.target, principal))

        if self.expand_controllers:
            entries |= self._controller_entries({e.principal for e in entries})

        resources = frozenset(touched | {e.resource for e in entries})
        affected_entries_histogram.observe(len(entries))
        logger.info(f"AFFECTED: {len(entries)} entr(ies) across {len(resources)} resource(s)")
        return AffectedSet(entries=frozenset(entries), resources=resources)

    def _controller_entries(self, principals: Set[str]) -> Set[AffectedEntry]:
        post = self.oracle.snapshot_post()
        expanded = set()
        for principal in sorted(principals):
            try:
                controllers = self.oracle.controllers_of(principal, post)
            except OracleUnavailable as e:
                logger.warning(f"AFFECTED: Controllers of {principal} unavailable, not expanded: {e}")
                continue
            for controller in controllers:
                expanded.add(AffectedEntry(controller, principal))
        return expanded
