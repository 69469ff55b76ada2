"""
Sync Executor

Applies an allowed SyncPlan: fetches each winning version once, writes it to
every target, verifies the committed hash, and records the new state per
file. Independent paths run in parallel on a bounded thread pool.

Author: CADSync Project
License: MIT
"""

import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import IO, Iterable, List, Mapping, Optional, Tuple

from ..providers.base import FileNotFoundInProvider, Location, StorageError, StorageProvider
from ..utils.file_ops import copy_and_hash
from ..utils.logger import get_logger
from .exceptions import StateStoreError
from .models import (
    ProgressOperation,
    SyncAction,
    SyncPlan,
    SyncPlanItem,
    SyncResult,
    SyncState,
    ordered_locations,
)
from .progress import ProgressChannel
from .state_store import FileStateStore

logger = get_logger(__name__)

SPOOL_MAX_MEMORY = 8 * 1024 * 1024

OUTCOME_SYNCED = "synced"
OUTCOME_SKIPPED = "skipped"
OUTCOME_FAILED = "failed"
OUTCOME_CANCELLED = "cancelled"


class TransferError(Exception):
    """A single path could not be transferred or deleted."""

    def __init__(self, path: str, message: str):
        super().__init__(message)
        self.path = path


class SyncExecutor:
    """
    Executes plan items with bounded concurrency.

    Per path, fetch then store then verify then state update happen in order
    inside one worker. Failures are isolated per path and leave that path's
    state untouched. State is only written when every configured location
    took part in the run; otherwise transfers still happen among the
    reachable locations and the next complete run re-evaluates the rest.
    """

    def __init__(
        self,
        providers: Mapping[Location, StorageProvider],
        state_store: FileStateStore,
        progress: Optional[ProgressChannel] = None,
        max_workers: int = 4
    ):
        """
        Initialize executor.

        Args:
            providers: Provider per reachable location
            state_store: State store to update after each file
            progress: Channel receiving progress events
            max_workers: Maximum parallel file operations
        """
        self.providers = providers
        self.state_store = state_store
        self.progress = progress or ProgressChannel()
        self.max_workers = max(1, max_workers)

        self._counter_lock = threading.Lock()
        self._processed = 0
        self._fatal: Optional[StateStoreError] = None
        self._abort = threading.Event()

    def execute(
        self,
        plan: SyncPlan,
        cancel_event: Optional[threading.Event] = None,
        result: Optional[SyncResult] = None
    ) -> SyncResult:
        """
        Apply every non-conflict item of ``plan``.

        Args:
            plan: Plan allowed by the safety guard
            cancel_event: Checked before each file starts
            result: Result to fill in (a new one if omitted)

        Returns:
            SyncResult with synced/skipped/failed counts

        Raises:
            StateStoreError: If recording state fails; remaining files are not started
        """
        result = result or SyncResult()
        cancel_event = cancel_event or threading.Event()
        work = plan.actionable
        total = len(work)

        result.skipped += sum(
            1 for item in plan.items
            if item.action == SyncAction.NO_OP and not item.record_state
        )

        self._processed = 0
        self._fatal = None
        self._abort.clear()

        if not plan.complete:
            logger.warning("Run is incomplete; state will not be advanced for this run")

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="cadsync-sync") as pool:
            futures = {
                pool.submit(self._run_item, item, plan, total, cancel_event): item
                for item in work
            }
            for future in as_completed(futures):
                item = futures[future]
                outcome, message = future.result()
                if outcome == OUTCOME_SYNCED:
                    result.synced += 1
                elif outcome == OUTCOME_SKIPPED:
                    result.skipped += 1
                elif outcome == OUTCOME_CANCELLED:
                    result.cancelled = True
                else:
                    result.failed += 1
                    result.failures[item.path] = message

        self.progress.emit(None, self._processed, total, ProgressOperation.COMPLETED)

        if self._fatal is not None:
            raise self._fatal

        logger.info(
            f"Execution finished: {result.synced} synced, {result.skipped} skipped, "
            f"{result.failed} failed{' (cancelled)' if result.cancelled else ''}"
        )
        return result

    def _advance(self, path: str, total: int, operation: ProgressOperation):
        with self._counter_lock:
            self._processed += 1
            processed = self._processed
        self.progress.emit(path, processed, total, operation)

    def _run_item(
        self,
        item: SyncPlanItem,
        plan: SyncPlan,
        total: int,
        cancel_event: threading.Event
    ) -> Tuple[str, str]:
        if cancel_event.is_set() or self._abort.is_set():
            return OUTCOME_CANCELLED, ""

        operation = (
            ProgressOperation.VERIFYING if item.action == SyncAction.NO_OP
            else ProgressOperation.TRANSFERRING
        )
        self.progress.emit(item.path, self._processed, total, operation)
        try:
            if item.action == SyncAction.NO_OP:
                if plan.complete:
                    self._record(item, plan.active_locations)
                outcome = OUTCOME_SKIPPED
            elif item.action == SyncAction.DELETE:
                self.delete(item.path, item.targets)
                if plan.complete:
                    self.state_store.remove(item.path)
                outcome = OUTCOME_SYNCED
            else:
                self.transfer(item.path, item.sources, item.targets, item.source_hash)
                self.progress.emit(item.path, self._processed, total, ProgressOperation.VERIFYING)
                if plan.complete:
                    self._record(item, plan.active_locations)
                outcome = OUTCOME_SYNCED
        except TransferError as e:
            logger.error(f"Failed to sync {item.path}: {e}")
            self._advance(item.path, total, operation)
            return OUTCOME_FAILED, str(e)
        except StateStoreError as e:
            logger.error(f"State store failure while recording {item.path}: {e}")
            self._fatal = self._fatal or e
            self._abort.set()
            return OUTCOME_FAILED, str(e)
        except Exception as e:
            logger.error(f"Unexpected error syncing {item.path}: {e}", exc_info=True)
            self._advance(item.path, total, operation)
            return OUTCOME_FAILED, f"unexpected error: {e}"

        self._advance(item.path, total, operation)
        return outcome, ""

    def _record(self, item: SyncPlanItem, active: Iterable[Location]):
        if item.source_hash is None:
            # Confirmed deleted everywhere
            self.state_store.remove(item.path)
            return

        source = item.observation_for(item.sources[0]) if item.sources else None
        self.state_store.upsert(SyncState(
            path=item.path,
            last_synced_hash=item.source_hash,
            last_synced_at=datetime.now(timezone.utc),
            presence=frozenset(active),
            size=source.size if source else None,
            modified_time=source.modified_time if source else None
        ))

    # ------------------------------------------------------------------
    # Provider I/O, also used by conflict resolution
    # ------------------------------------------------------------------

    def fetch_verified(self, path: str, sources: Iterable[Location], expected_hash: str) -> IO[bytes]:
        """
        Fetch ``path`` from the first source that yields ``expected_hash``.

        Content is spooled to a temporary file while hashing, so each source
        is read once and the bytes distributed are the bytes verified.

        Raises:
            TransferError: If no source produced the expected content
        """
        errors: List[str] = []
        for location in sources:
            provider = self.providers.get(location)
            if provider is None:
                continue

            spool = tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_MEMORY)
            try:
                stream = provider.fetch(path)
                try:
                    digest, _ = copy_and_hash(stream, spool)
                finally:
                    stream.close()
            except (StorageError, OSError) as e:
                spool.close()
                errors.append(f"{location.value}: {e}")
                logger.warning(f"Fetching {path} from {location.value} failed: {e}")
                continue

            if digest != expected_hash:
                spool.close()
                errors.append(f"{location.value}: content changed since snapshot")
                logger.warning(f"{path} at {location.value} changed since snapshot")
                continue

            spool.seek(0)
            return spool

        raise TransferError(path, "no source produced the planned content (" + "; ".join(errors) + ")")

    def transfer(
        self,
        path: str,
        sources: Iterable[Location],
        targets: Iterable[Location],
        expected_hash: str
    ):
        """
        Copy the verified content of ``path`` to every target.

        Every target is attempted; the path fails if any target fails or
        commits content whose hash differs from ``expected_hash``.

        Raises:
            TransferError: On fetch failure, store failure or hash mismatch
        """
        errors: List[str] = []
        spool = self.fetch_verified(path, sources, expected_hash)
        try:
            for location in ordered_locations(targets):
                spool.seek(0)
                try:
                    committed = self.providers[location].store(path, spool)
                except (StorageError, OSError) as e:
                    errors.append(f"store at {location.value} failed: {e}")
                    continue
                if committed != expected_hash:
                    errors.append(
                        f"hash mismatch at {location.value}: expected {expected_hash}, got {committed}"
                    )
                    continue
                logger.debug(f"Copied {path} to {location.value}")
        finally:
            spool.close()

        if errors:
            raise TransferError(path, "; ".join(errors))

    def delete(self, path: str, targets: Iterable[Location]):
        """
        Remove ``path`` at every target. Already-missing files count as deleted.

        Raises:
            TransferError: If any removal failed
        """
        errors: List[str] = []
        for location in ordered_locations(targets):
            try:
                self.providers[location].remove(path)
                logger.debug(f"Deleted {path} at {location.value}")
            except FileNotFoundInProvider:
                logger.debug(f"{path} already absent at {location.value}")
            except (StorageError, OSError) as e:
                errors.append(f"remove at {location.value} failed: {e}")

        if errors:
            raise TransferError(path, "; ".join(errors))
