"""
Sync Data Model

Records exchanged between the planner, safety guard, executor and the outer
surfaces: last-synced state, plan items, the aggregate plan, run results and
progress events.

Author: CADSync Project
License: MIT
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

from ..providers.base import ALL_LOCATIONS, Location


class SyncAction(Enum):
    """Per-file action decided by the planner."""
    NO_OP = "no-op"
    PUSH = "push"          # local filesystem is the source
    PULL = "pull"          # content comes from cloud or share
    DELETE = "delete"
    CONFLICT = "conflict"


class ConflictResolution(str, Enum):
    """Resolution directive accepted for a pending conflict."""
    KEEP_LOCAL = "keep-local"
    KEEP_CLOUD = "keep-cloud"
    KEEP_SHARE = "keep-share"
    KEEP_ALL_RENAMED = "keep-all-renamed"

    @property
    def location(self) -> Optional[Location]:
        """Location whose version wins, or None for keep-all-renamed."""
        return {
            ConflictResolution.KEEP_LOCAL: Location.LOCAL,
            ConflictResolution.KEEP_CLOUD: Location.CLOUD,
            ConflictResolution.KEEP_SHARE: Location.SHARE,
        }.get(self)


class ProgressOperation(str, Enum):
    """Operation label carried by progress events."""
    SCANNING = "scanning"
    TRANSFERRING = "transferring"
    VERIFYING = "verifying"
    COMPLETED = "completed"


def ordered_locations(locations) -> Tuple[Location, ...]:
    """Return locations in canonical order."""
    wanted = set(locations)
    return tuple(loc for loc in ALL_LOCATIONS if loc in wanted)


@dataclass(frozen=True)
class LocationObservation:
    """What one location held for a path at snapshot time."""
    location: Location
    content_hash: Optional[str] = None
    size: Optional[int] = None
    modified_time: Optional[datetime] = None

    @property
    def present(self) -> bool:
        return self.content_hash is not None

    def to_dict(self) -> dict:
        return {
            'location': self.location.value,
            'present': self.present,
            'content_hash': self.content_hash,
            'size': self.size,
            'modified_time': self.modified_time.isoformat() if self.modified_time else None
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'LocationObservation':
        modified = data.get('modified_time')
        return cls(
            location=Location(data['location']),
            content_hash=data.get('content_hash'),
            size=data.get('size'),
            modified_time=datetime.fromisoformat(modified) if modified else None
        )


@dataclass(frozen=True)
class SyncState:
    """Last successfully synchronized state of one path."""
    path: str
    last_synced_hash: str
    last_synced_at: datetime
    presence: FrozenSet[Location]
    size: Optional[int] = None
    modified_time: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            'path': self.path,
            'last_synced_hash': self.last_synced_hash,
            'last_synced_at': self.last_synced_at.isoformat(),
            'presence': [loc.value for loc in ordered_locations(self.presence)],
            'size': self.size,
            'modified_time': self.modified_time.isoformat() if self.modified_time else None
        }


@dataclass(frozen=True)
class PendingConflict:
    """A conflict awaiting a resolution directive."""
    path: str
    observations: Tuple[LocationObservation, ...]
    detected_at: datetime
    last_synced_hash: Optional[str] = None
    reason: str = ""

    def observation_for(self, location: Location) -> Optional[LocationObservation]:
        for observation in self.observations:
            if observation.location == location:
                return observation
        return None

    def to_dict(self) -> dict:
        return {
            'path': self.path,
            'reason': self.reason,
            'last_synced_hash': self.last_synced_hash,
            'detected_at': self.detected_at.isoformat(),
            'observations': [o.to_dict() for o in self.observations]
        }


@dataclass(frozen=True)
class SyncPlanItem:
    """
    Planned action for one path.

    ``sources`` hold the content to distribute (or, for deletions, the
    locations where the file went missing); ``targets`` are the locations the
    executor mutates. ``record_state`` asks the executor to write the agreed
    state even when nothing needs transferring.
    """
    path: str
    action: SyncAction
    reason: str = ""
    sources: Tuple[Location, ...] = ()
    targets: Tuple[Location, ...] = ()
    source_hash: Optional[str] = None
    observations: Tuple[LocationObservation, ...] = ()
    record_state: bool = False
    previous: Optional[SyncState] = None

    @property
    def is_deletion(self) -> bool:
        return self.action == SyncAction.DELETE and bool(self.targets)

    @property
    def affected_locations(self) -> Tuple[Location, ...]:
        if self.action == SyncAction.CONFLICT:
            return ordered_locations(o.location for o in self.observations)
        return self.targets

    def observation_for(self, location: Location) -> Optional[LocationObservation]:
        for observation in self.observations:
            if observation.location == location:
                return observation
        return None

    def to_dict(self) -> dict:
        return {
            'path': self.path,
            'action': self.action.value,
            'reason': self.reason,
            'sources': [loc.value for loc in self.sources],
            'targets': [loc.value for loc in self.targets],
            'source_hash': self.source_hash,
            'observations': [o.to_dict() for o in self.observations]
        }


@dataclass
class SyncPlan:
    """
    Plan for one run.

    Counters are computed once at construction. ``known_files`` is the size
    of the state store before the run and is the deletion ratio denominator.
    """
    items: List[SyncPlanItem]
    known_files: int
    active_locations: FrozenSet[Location]
    scope: FrozenSet[Location]
    total_files: int = field(init=False)
    deletion_count: int = field(init=False)
    deletion_ratio: float = field(init=False)

    def __post_init__(self):
        self.total_files = len(self.items)
        self.deletion_count = sum(1 for item in self.items if item.is_deletion)
        self.deletion_ratio = (
            self.deletion_count / self.known_files if self.known_files else 0.0
        )

    @property
    def complete(self) -> bool:
        """True if every configured location took part in this run."""
        return self.active_locations == self.scope

    @property
    def conflicts(self) -> List[SyncPlanItem]:
        return [item for item in self.items if item.action == SyncAction.CONFLICT]

    @property
    def actionable(self) -> List[SyncPlanItem]:
        """Items the executor has to process."""
        return [
            item for item in self.items
            if item.action not in (SyncAction.NO_OP, SyncAction.CONFLICT) or item.record_state
        ]

    def deletions_by_location(self) -> Dict[Location, int]:
        counts = {loc: 0 for loc in ordered_locations(self.active_locations)}
        for item in self.items:
            if item.is_deletion:
                for loc in item.targets:
                    counts[loc] = counts.get(loc, 0) + 1
        return counts

    def summary(self) -> Dict[str, int]:
        counts = {action.value: 0 for action in SyncAction}
        for item in self.items:
            counts[item.action.value] += 1
        return counts


@dataclass
class SyncResult:
    """Outcome of a sync run."""
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    synced: int = 0
    skipped: int = 0
    conflicted: int = 0
    failed: int = 0
    failures: Dict[str, str] = field(default_factory=dict)
    conflicts: List[dict] = field(default_factory=list)
    excluded_locations: Dict[str, str] = field(default_factory=dict)
    blocked_reasons: List[str] = field(default_factory=list)
    cancelled: bool = False
    complete: bool = True

    @property
    def blocked(self) -> bool:
        return bool(self.blocked_reasons)

    @property
    def succeeded(self) -> bool:
        return not self.blocked and not self.cancelled and self.failed == 0

    def to_dict(self) -> dict:
        return {
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'synced': self.synced,
            'skipped': self.skipped,
            'conflicted': self.conflicted,
            'failed': self.failed,
            'failures': dict(self.failures),
            'conflicts': list(self.conflicts),
            'excluded_locations': dict(self.excluded_locations),
            'blocked': self.blocked,
            'blocked_reasons': list(self.blocked_reasons),
            'cancelled': self.cancelled,
            'complete': self.complete
        }


@dataclass(frozen=True)
class ProgressEvent:
    """One entry on the live progress channel."""
    current_file: Optional[str]
    files_processed: int
    total_files: int
    operation: ProgressOperation
    percentage: float

    def to_dict(self) -> dict:
        return {
            'current_file': self.current_file,
            'files_processed': self.files_processed,
            'total_files': self.total_files,
            'operation': self.operation.value,
            'percentage': self.percentage
        }
