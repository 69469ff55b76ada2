"""
Sync Engine

One sync run end to end: snapshot every configured location, plan against
the state store, gate the plan through the deletion safety guard, execute
it, and record pending conflicts. Also applies conflict resolution
directives.

Author: CADSync Project
License: MIT
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Dict, List, Mapping, Optional, Set, Tuple

from ..providers.base import (
    FileEntry,
    Location,
    StorageError,
    StorageProvider,
)
from ..utils.file_ops import normalize_relative_path
from ..utils.logger import get_logger
from .exceptions import (
    ConflictNotFoundError,
    DeletionBlockedError,
    ResolutionError,
    SyncInProgressError,
)
from .executor import SyncExecutor, TransferError
from .models import (
    ConflictResolution,
    PendingConflict,
    ProgressOperation,
    SyncPlan,
    SyncResult,
    SyncState,
    ordered_locations,
)
from .planner import SyncPlanner
from .progress import ProgressChannel
from .safety_guard import DeletionSafetyGuard
from .state_store import FileStateStore

logger = get_logger(__name__)

DEFAULT_RENAME_PATTERN = "{stem}.{location}{suffix}"


def renamed_path(path: str, location: Location, pattern: str = DEFAULT_RENAME_PATTERN) -> str:
    """
    Build the disambiguated path for one location's copy of a conflict.

    ``pattern`` may use ``{stem}``, ``{suffix}`` and ``{location}``; the result
    stays in the original directory.

    >>> renamed_path("parts/bracket.sldprt", Location.CLOUD)
    'parts/bracket.cloud.sldprt'
    """
    original = PurePosixPath(path)
    name = pattern.format(stem=original.stem, suffix=original.suffix, location=location.value)
    return normalize_relative_path(str(original.with_name(name)))


def free_renamed_path(
    path: str,
    location: Location,
    taken: Set[str],
    pattern: str = DEFAULT_RENAME_PATTERN
) -> str:
    """
    Like ``renamed_path``, but adds a counter while the name is in ``taken``.

    >>> free_renamed_path("part.sldprt", Location.LOCAL, {"part.local.sldprt"})
    'part.local-2.sldprt'
    """
    candidate = renamed_path(path, location, pattern)
    base = PurePosixPath(candidate)
    counter = 2
    while candidate in taken:
        candidate = str(base.with_name(f"{base.stem}-{counter}{base.suffix}"))
        counter += 1
    return candidate


class SyncEngine:
    """
    Runs synchronization between the configured locations.

    Not reentrant: a run or a resolution directive holds the run lock, and a
    second caller gets ``SyncInProgressError`` instead of waiting.
    """

    def __init__(
        self,
        providers: Mapping[Location, StorageProvider],
        state_store: FileStateStore,
        guard: Optional[DeletionSafetyGuard] = None,
        progress: Optional[ProgressChannel] = None,
        max_workers: int = 4,
        rename_pattern: str = DEFAULT_RENAME_PATTERN
    ):
        """
        Initialize sync engine.

        Args:
            providers: Provider per configured location
            state_store: Durable last-synced state
            guard: Deletion safety guard (defaults: 50 files, 30%)
            progress: Channel receiving progress events
            max_workers: Parallel file operations during execution
            rename_pattern: Name pattern for keep-all-renamed resolutions
        """
        self.providers = dict(providers)
        self.state_store = state_store
        self.guard = guard or DeletionSafetyGuard()
        self.progress = progress or ProgressChannel()
        self.max_workers = max_workers
        self.rename_pattern = rename_pattern

        self._run_lock = threading.Lock()
        self._cancel_event = threading.Event()
        self.last_plan: Optional[SyncPlan] = None

        logger.info(
            f"SyncEngine initialized for locations: "
            f"{', '.join(loc.value for loc in ordered_locations(self.providers))}"
        )

    @property
    def scope(self) -> frozenset:
        return frozenset(self.providers)

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    def cancel(self):
        """Request cancellation; files already started finish cleanly."""
        if self.is_running:
            logger.info("Cancellation requested")
            self._cancel_event.set()

    def _acquire(self):
        if not self._run_lock.acquire(blocking=False):
            raise SyncInProgressError("A sync run is already in progress")
        self._cancel_event.clear()

    # ------------------------------------------------------------------
    # Sync run
    # ------------------------------------------------------------------

    def snapshot(self) -> Tuple[Dict[Location, List[FileEntry]], Dict[str, str]]:
        """
        List every configured location concurrently.

        All listings complete before this returns, so planning sees one
        logical point in time.

        Returns:
            Tuple of (listing per reachable location, reason per excluded location)
        """
        snapshots: Dict[Location, List[FileEntry]] = {}
        excluded: Dict[str, str] = {}
        if not self.providers:
            return snapshots, excluded

        with ThreadPoolExecutor(max_workers=len(self.providers), thread_name_prefix="cadsync-scan") as pool:
            futures = {loc: pool.submit(provider.list) for loc, provider in self.providers.items()}

        for loc in ordered_locations(futures):
            try:
                snapshots[loc] = futures[loc].result()
                logger.info(f"Snapshot {loc.value}: {len(snapshots[loc])} files")
            except StorageError as e:
                excluded[loc.value] = str(e)
                logger.warning(f"Excluding {loc.value} from this run: {e}")
            except Exception as e:
                excluded[loc.value] = f"unexpected error: {e}"
                logger.error(f"Excluding {loc.value} from this run: {e}", exc_info=True)

        return snapshots, excluded

    def run(self) -> SyncResult:
        """
        Execute one sync run.

        Returns:
            SyncResult (``blocked_reasons`` set if the safety guard aborted it)

        Raises:
            SyncInProgressError: If another run or resolution holds the lock
            StateStoreError: If the state store cannot be read or written
        """
        self._acquire()
        try:
            return self._run()
        finally:
            self._run_lock.release()

    def _run(self) -> SyncResult:
        result = SyncResult()
        logger.info("Starting sync run")
        self.progress.start_run(0)

        states = self.state_store.load_all()
        previous_conflicts = self.state_store.list_conflicts()
        snapshots, excluded = self.snapshot()
        result.excluded_locations = excluded

        planner = SyncPlanner(self.scope)
        plan = planner.plan(snapshots, states, held_paths={c.path for c in previous_conflicts})
        self.last_plan = plan
        result.complete = plan.complete

        try:
            self.guard.enforce(plan)
        except DeletionBlockedError as e:
            result.blocked_reasons = list(e.reasons)
            result.finished_at = datetime.now(timezone.utc)
            self.progress.emit(None, 0, 0, ProgressOperation.COMPLETED)
            logger.warning(f"Sync run aborted by deletion safety guard: {e}")
            return result

        conflicts = self._pending_conflicts(plan)
        result.conflicted = len(conflicts)
        result.conflicts = [c.to_dict() for c in conflicts]

        executor = SyncExecutor(self.providers, self.state_store, self.progress, self.max_workers)
        executor.execute(plan, self._cancel_event, result)

        # Conflict rows mirror the latest plan that could see every location;
        # a partial run only adds to them.
        if plan.complete:
            self.state_store.replace_conflicts(conflicts)
        else:
            merged = {c.path: c for c in conflicts}
            merged.update({c.path: c for c in previous_conflicts})
            self.state_store.replace_conflicts(merged.values())

        result.finished_at = datetime.now(timezone.utc)
        logger.info(
            f"Sync run finished: {result.synced} synced, {result.skipped} skipped, "
            f"{result.conflicted} conflicted, {result.failed} failed"
            + (f", excluded: {', '.join(excluded)}" if excluded else "")
        )
        return result

    @staticmethod
    def _pending_conflicts(plan: SyncPlan) -> List[PendingConflict]:
        detected = datetime.now(timezone.utc)
        return [
            PendingConflict(
                path=item.path,
                observations=item.observations,
                detected_at=detected,
                last_synced_hash=item.previous.last_synced_hash if item.previous else None,
                reason=item.reason
            )
            for item in plan.conflicts
        ]

    # ------------------------------------------------------------------
    # Conflict resolution
    # ------------------------------------------------------------------

    def list_conflicts(self) -> List[PendingConflict]:
        return self.state_store.list_conflicts()

    def resolve_conflict(self, path: str, resolution) -> SyncResult:
        """
        Apply a resolution directive to one pending conflict.

        Args:
            path: Conflicting path
            resolution: ConflictResolution or its string value

        Returns:
            SyncResult describing the files written

        Raises:
            SyncInProgressError: If a run is executing
            ConflictNotFoundError: If ``path`` has no pending conflict
            ResolutionError: If the chosen version cannot be applied
        """
        resolution = ConflictResolution(resolution)
        path = normalize_relative_path(path)

        self._acquire()
        try:
            conflict = self.state_store.get_conflict(path)
            if conflict is None:
                raise ConflictNotFoundError(path)

            logger.info(f"Resolving conflict on {path}: {resolution.value}")
            result = SyncResult()
            snapshots, excluded = self.snapshot()
            result.excluded_locations = excluded
            active = ordered_locations(snapshots)
            current = {
                loc: {entry.path: entry for entry in snapshots[loc]}.get(path)
                for loc in active
            }

            try:
                if resolution == ConflictResolution.KEEP_ALL_RENAMED:
                    taken = set(self.state_store.load_all())
                    for entries in snapshots.values():
                        taken.update(entry.path for entry in entries)
                    self._keep_all_renamed(path, active, current, taken, result)
                else:
                    self._keep_one(path, resolution.location, active, current, result)
            except (TransferError, StorageError) as e:
                raise ResolutionError(f"Could not resolve {path}: {e}") from e

            self.state_store.remove_conflict(path)
            result.finished_at = datetime.now(timezone.utc)
            return result
        finally:
            self._run_lock.release()

    def _keep_one(
        self,
        path: str,
        winner: Location,
        active: Tuple[Location, ...],
        current: Dict[Location, Optional[FileEntry]],
        result: SyncResult
    ):
        if winner not in active:
            raise ResolutionError(f"Cannot keep {winner.value} version of {path}: location unavailable")

        executor = SyncExecutor(self.providers, self.state_store, self.progress, self.max_workers)
        complete = frozenset(active) == self.scope

        if not self.providers[winner].exists(path):
            holders = [loc for loc in active if current.get(loc) is not None]
            executor.delete(path, holders)
            if complete:
                self.state_store.remove(path)
            result.synced += 1
            logger.info(f"Kept deletion of {path} from {winner.value}")
            return

        entry = current.get(winner)
        if entry is None:
            raise ResolutionError(f"{path} appeared at {winner.value} after the snapshot; sync again")

        targets = [
            loc for loc in active
            if loc != winner and (current.get(loc) is None or current[loc].content_hash != entry.content_hash)
        ]
        if targets:
            executor.transfer(path, [winner], targets, entry.content_hash)
        if complete:
            self.state_store.upsert(SyncState(
                path=path,
                last_synced_hash=entry.content_hash,
                last_synced_at=datetime.now(timezone.utc),
                presence=frozenset(active),
                size=entry.size,
                modified_time=entry.modified_time
            ))
        result.synced += 1
        logger.info(f"Kept {winner.value} version of {path} at {len(targets)} other location(s)")

    def _keep_all_renamed(
        self,
        path: str,
        active: Tuple[Location, ...],
        current: Dict[Location, Optional[FileEntry]],
        taken: Set[str],
        result: SyncResult
    ):
        executor = SyncExecutor(self.providers, self.state_store, self.progress, self.max_workers)
        complete = frozenset(active) == self.scope

        # One renamed copy per distinct version, named after its first holder
        versions: Dict[str, List[Location]] = {}
        for loc in active:
            entry = current.get(loc)
            if entry is not None:
                versions.setdefault(entry.content_hash, []).append(loc)

        for digest, holders in versions.items():
            if renamed_path(path, holders[0], self.rename_pattern) == path:
                raise ResolutionError(f"Rename pattern '{self.rename_pattern}' does not change {path}")
            # Never write over a file that already exists under the new name
            new_path = free_renamed_path(path, holders[0], taken, self.rename_pattern)
            taken.add(new_path)
            entry = current[holders[0]]
            self._copy_renamed(executor, path, new_path, holders, active, digest)
            if complete:
                self.state_store.upsert(SyncState(
                    path=new_path,
                    last_synced_hash=digest,
                    last_synced_at=datetime.now(timezone.utc),
                    presence=frozenset(active),
                    size=entry.size,
                    modified_time=entry.modified_time
                ))
            result.synced += 1
            logger.info(f"Kept {holders[0].value} version of {path} as {new_path}")

        executor.delete(path, [loc for loc in active if current.get(loc) is not None])
        if complete:
            self.state_store.remove(path)

    def _copy_renamed(
        self,
        executor: SyncExecutor,
        path: str,
        new_path: str,
        holders: List[Location],
        active: Tuple[Location, ...],
        digest: str
    ):
        spool = executor.fetch_verified(path, holders, digest)
        try:
            for loc in active:
                spool.seek(0)
                try:
                    committed = self.providers[loc].store(new_path, spool)
                except StorageError as e:
                    raise TransferError(new_path, f"store at {loc.value} failed: {e}") from e
                if committed != digest:
                    raise TransferError(new_path, f"hash mismatch at {loc.value}")
        finally:
            spool.close()
