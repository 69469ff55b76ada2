"""
Conflict Detector

Pure classification of one path's observations against its last synced
state. The planner calls ``classify`` for every path; nothing here performs
I/O.

Author: CADSync Project
License: MIT
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Mapping, Optional, Tuple

from ..providers.base import Location
from .models import ordered_locations


class Verdict(Enum):
    """Outcome of classifying one path."""
    NO_OP = "no-op"
    PROPAGATE = "propagate"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class Resolution:
    """
    Classification result.

    For a content propagation ``content_hash`` is the winning hash, ``sources``
    hold it and ``targets`` need it. For a deletion propagation
    ``content_hash`` is None, ``sources`` are where the file disappeared and
    ``targets`` still hold it.
    """
    verdict: Verdict
    reason: str
    sources: Tuple[Location, ...] = ()
    targets: Tuple[Location, ...] = ()
    content_hash: Optional[str] = None
    record_state: bool = False

    @property
    def deletes(self) -> bool:
        return self.verdict == Verdict.PROPAGATE and self.content_hash is None


def _names(locations: Iterable[Location]) -> str:
    return ", ".join(loc.value for loc in ordered_locations(locations))


def _short(digest: Optional[str]) -> str:
    return digest[:12] if digest else "absent"


def classify(
    last_synced_hash: Optional[str],
    observations: Mapping[Location, Optional[str]],
    synced_locations: Optional[Iterable[Location]] = None
) -> Resolution:
    """
    Classify a path given what each reachable location holds now.

    Each location's baseline is ``last_synced_hash`` if it held the file at
    the last sync (all locations when ``synced_locations`` is None), else
    absence. A location "changed" when its observation differs from its
    baseline. Locations missing from ``observations`` are unreachable and
    take no part in the decision.

    Args:
        last_synced_hash: Hash recorded at the last sync, None if first seen
        observations: Current hash per reachable location (None = absent)
        synced_locations: Locations that held the file at the last sync

    Returns:
        Resolution (no-op, propagate content or deletion, or conflict)
    """
    held = set(synced_locations) if synced_locations is not None else None
    baseline = {}
    for loc in observations:
        if last_synced_hash is not None and (held is None or loc in held):
            baseline[loc] = last_synced_hash
        else:
            baseline[loc] = None

    changed = {loc: h for loc, h in observations.items() if h != baseline[loc]}
    if not changed:
        return Resolution(Verdict.NO_OP, "unchanged since last sync")

    new_hashes = {h for h in changed.values() if h is not None}
    vanished = [loc for loc, h in changed.items() if h is None]

    if vanished and new_hashes:
        modified = [loc for loc, h in changed.items() if h is not None]
        return Resolution(
            Verdict.CONFLICT,
            f"deleted at {_names(vanished)} but modified at {_names(modified)}"
        )

    if len(new_hashes) > 1:
        detail = ", ".join(
            f"{loc.value}={_short(changed[loc])}" for loc in ordered_locations(changed)
        )
        if last_synced_hash is None:
            return Resolution(Verdict.CONFLICT, f"first seen with differing content ({detail})")
        return Resolution(Verdict.CONFLICT, f"modified differently ({detail})")

    if vanished:
        holders = ordered_locations(loc for loc, h in observations.items() if h is not None)
        if not holders:
            return Resolution(
                Verdict.NO_OP,
                "deleted everywhere",
                sources=ordered_locations(vanished),
                record_state=True
            )
        return Resolution(
            Verdict.PROPAGATE,
            f"deleted at {_names(vanished)}",
            sources=ordered_locations(vanished),
            targets=holders
        )

    new_hash = next(iter(new_hashes))
    targets = ordered_locations(loc for loc, h in observations.items() if h != new_hash)
    # Originators first, then locations that already agree
    originators = ordered_locations(changed)
    others = tuple(
        loc for loc in ordered_locations(observations)
        if observations[loc] == new_hash and loc not in originators
    )

    if not targets:
        reason = "first seen, identical everywhere" if last_synced_hash is None else "converged on same content"
        return Resolution(
            Verdict.NO_OP,
            reason,
            sources=originators + others,
            content_hash=new_hash,
            record_state=True
        )

    if last_synced_hash is None:
        reason = f"new at {_names(originators)}"
    else:
        reason = f"modified at {_names(originators)}"
    return Resolution(
        Verdict.PROPAGATE,
        reason,
        sources=originators + others,
        targets=targets,
        content_hash=new_hash
    )
