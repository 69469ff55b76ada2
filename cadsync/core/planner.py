"""
Sync Planner

Turns the snapshots of the reachable locations and the state store contents
into a SyncPlan with one item per path seen anywhere.

Author: CADSync Project
License: MIT
"""

from dataclasses import replace
from typing import Dict, Iterable, List, Mapping, Optional

from ..providers.base import FileEntry, Location
from ..utils.logger import get_logger
from .conflict_detector import Resolution, Verdict, classify
from .models import (
    LocationObservation,
    SyncAction,
    SyncPlan,
    SyncPlanItem,
    SyncState,
    ordered_locations,
)

logger = get_logger(__name__)


class SyncPlanner:
    """
    Computes per-file actions.

    Only locations present in ``snapshots`` are considered. A configured
    location missing from ``snapshots`` (unreachable this run) is never a
    target and never counts as deletion evidence.
    """

    def __init__(self, scope: Iterable[Location]):
        """
        Initialize planner.

        Args:
            scope: Locations configured for synchronization
        """
        self.scope = frozenset(scope)

    def plan(
        self,
        snapshots: Mapping[Location, List[FileEntry]],
        states: Mapping[str, SyncState],
        held_paths: Iterable[str] = ()
    ) -> SyncPlan:
        """
        Build the plan for one run.

        Args:
            snapshots: Listing per reachable location, all taken before planning
            states: Last synced state per path
            held_paths: Paths with a pending conflict; while a location is
                unreachable they stay conflicts instead of being propagated

        Returns:
            SyncPlan covering the union of snapshot paths and known paths
        """
        active = ordered_locations(loc for loc in snapshots if loc in self.scope)
        complete = frozenset(active) == self.scope
        held = set(held_paths)
        indexed: Dict[Location, Dict[str, FileEntry]] = {
            loc: {entry.path: entry for entry in snapshots[loc]} for loc in active
        }

        paths = set(states)
        for entries in indexed.values():
            paths.update(entries)

        items = []
        for path in sorted(paths):
            item = self._plan_path(path, active, indexed, states.get(path))
            if not complete and path in held and item.action not in (SyncAction.NO_OP, SyncAction.CONFLICT):
                item = replace(
                    item,
                    action=SyncAction.CONFLICT,
                    reason="pending conflict awaiting resolution",
                    sources=(),
                    targets=(),
                    source_hash=None
                )
            items.append(item)

        plan = SyncPlan(
            items=items,
            known_files=len(states),
            active_locations=frozenset(active),
            scope=self.scope
        )
        logger.info(
            f"Planned {plan.total_files} paths across {len(active)}/{len(self.scope)} locations: "
            + ", ".join(f"{k}={v}" for k, v in plan.summary().items() if v)
        )
        return plan

    def _plan_path(
        self,
        path: str,
        active: Iterable[Location],
        indexed: Mapping[Location, Mapping[str, FileEntry]],
        state: Optional[SyncState]
    ) -> SyncPlanItem:
        observations = []
        hashes: Dict[Location, Optional[str]] = {}
        for loc in active:
            entry = indexed[loc].get(path)
            hashes[loc] = entry.content_hash if entry else None
            observations.append(LocationObservation(
                location=loc,
                content_hash=entry.content_hash if entry else None,
                size=entry.size if entry else None,
                modified_time=entry.modified_time if entry else None
            ))

        if state is None:
            resolution = classify(None, hashes)
        else:
            resolution = classify(state.last_synced_hash, hashes, state.presence)

        return SyncPlanItem(
            path=path,
            action=self._action_for(resolution),
            reason=resolution.reason,
            sources=resolution.sources,
            targets=resolution.targets,
            source_hash=resolution.content_hash,
            observations=tuple(observations),
            record_state=resolution.record_state,
            previous=state
        )

    @staticmethod
    def _action_for(resolution: Resolution) -> SyncAction:
        if resolution.verdict == Verdict.NO_OP:
            return SyncAction.NO_OP
        if resolution.verdict == Verdict.CONFLICT:
            return SyncAction.CONFLICT
        if resolution.deletes:
            return SyncAction.DELETE
        if Location.LOCAL in resolution.sources:
            return SyncAction.PUSH
        return SyncAction.PULL
