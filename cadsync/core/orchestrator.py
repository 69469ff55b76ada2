"""
Orchestrator

Builds providers, the state store and the sync engine from configuration,
runs syncs in the foreground or on a background thread, and keeps the status
and last result for the scheduler and the web API.

Author: CADSync Project
License: MIT
"""

import os
from datetime import datetime, timezone
from threading import Lock, Thread
from typing import Dict, List, Mapping, Optional

import requests

from ..config.schema import Config
from ..providers.base import Location, StorageProvider
from ..providers.cloud_drive import CloudDriveProvider
from ..providers.local_fs import LocalFilesystemProvider
from ..providers.network_share import NetworkShareProvider
from ..utils.file_ops import HashCache
from ..utils.logger import get_logger
from .exceptions import SyncError, SyncInProgressError
from .models import PendingConflict, SyncResult, ordered_locations
from .progress import ProgressChannel
from .safety_guard import DeletionSafetyGuard
from .state_store import FileStateStore
from .sync_engine import SyncEngine

logger = get_logger(__name__)


class Orchestrator:
    """
    Main orchestrator for CADSync.

    Owns the long-lived objects of one process and serializes access to the
    engine for the scheduler and the web API.
    """

    def __init__(
        self,
        config: Config,
        cloud_session: Optional[requests.Session] = None,
        providers: Optional[Mapping[Location, StorageProvider]] = None,
        state_store: Optional[FileStateStore] = None
    ):
        """
        Initialize orchestrator.

        Args:
            config: Application configuration
            cloud_session: Authorized session for the cloud drive, if any
            providers: Explicit providers (overrides the configured ones)
            state_store: Explicit state store (overrides ``sync.state_db``)
        """
        self.config = config
        self.cloud_session = cloud_session
        self.progress = ProgressChannel()

        cache_file = config.sync.hash_cache_file
        self.hash_cache = HashCache(os.path.expanduser(cache_file) if cache_file else None)
        self.state_store = state_store or FileStateStore(config.sync.state_db)

        self._explicit_providers = dict(providers) if providers is not None else None
        self.engine = self._build_engine()

        self.last_result: Optional[SyncResult] = None
        self.last_error: Optional[str] = None
        self._worker: Optional[Thread] = None
        self._worker_lock = Lock()

        logger.info("Orchestrator initialized")

    def _build_providers(self) -> Dict[Location, StorageProvider]:
        """Create a provider for each configured location."""
        if self._explicit_providers is not None:
            return dict(self._explicit_providers)

        locations = self.config.locations
        providers: Dict[Location, StorageProvider] = {}

        if locations.local_root:
            providers[Location.LOCAL] = LocalFilesystemProvider(
                locations.local_root, hash_cache=self.hash_cache
            )
        if locations.cloud.folder_id:
            if self.cloud_session is None:
                logger.warning("Cloud folder configured but no authorized session; cloud will be unavailable")
            providers[Location.CLOUD] = CloudDriveProvider(
                locations.cloud.folder_id,
                self.cloud_session,
                timeout=locations.cloud.timeout,
                page_size=locations.cloud.page_size
            )
        if locations.share.path:
            providers[Location.SHARE] = NetworkShareProvider(
                locations.share.path,
                verify_mount=locations.share.verify_mount,
                hash_cache=self.hash_cache
            )

        if not providers:
            logger.warning("No locations configured")
        return providers

    def _build_engine(self) -> SyncEngine:
        return SyncEngine(
            providers=self._build_providers(),
            state_store=self.state_store,
            guard=DeletionSafetyGuard(
                max_deletions=self.config.safety.max_deletions,
                max_deletion_ratio=self.config.safety.max_deletion_ratio
            ),
            progress=self.progress,
            max_workers=self.config.sync.max_workers,
            rename_pattern=self.config.sync.rename_pattern
        )

    def reconfigure(self, config: Config):
        """
        Apply a new configuration.

        Raises:
            SyncInProgressError: If a run is executing
        """
        if self.is_running:
            raise SyncInProgressError("Cannot reconfigure while a sync is running")
        self.config = config
        self.engine = self._build_engine()
        logger.info("Orchestrator reconfigured")

    # ------------------------------------------------------------------
    # Running syncs
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        worker_alive = self._worker is not None and self._worker.is_alive()
        return worker_alive or self.engine.is_running

    def sync_now(self) -> SyncResult:
        """
        Run one sync in the calling thread.

        Raises:
            SyncInProgressError: If a run is already executing
            StateStoreError: If the state store is unavailable
        """
        try:
            result = self.engine.run()
        except SyncInProgressError:
            raise
        except SyncError as e:
            self.last_error = str(e)
            logger.error(f"Sync run failed: {e}")
            raise

        self.last_result = result
        self.last_error = None
        self.hash_cache.save()
        return result

    def trigger_sync(self) -> bool:
        """
        Start a sync on a background thread.

        Returns:
            True if a run was started

        Raises:
            SyncInProgressError: If a run is already executing
        """
        with self._worker_lock:
            if self.is_running:
                raise SyncInProgressError("A sync run is already in progress")
            self._worker = Thread(target=self._background_sync, name="cadsync-run", daemon=True)
            self._worker.start()
        logger.info("Background sync started")
        return True

    def _background_sync(self):
        try:
            self.sync_now()
        except SyncError as e:
            logger.error(f"Background sync did not complete: {e}")
        except Exception as e:
            self.last_error = str(e)
            logger.error(f"Unexpected error in background sync: {e}", exc_info=True)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait for a background run; True if none is running afterwards."""
        worker = self._worker
        if worker is not None:
            worker.join(timeout)
        return not self.is_running

    def cancel(self) -> bool:
        """Request cancellation of the current run."""
        if not self.is_running:
            return False
        self.engine.cancel()
        return True

    # ------------------------------------------------------------------
    # Conflicts and state
    # ------------------------------------------------------------------

    def list_conflicts(self) -> List[PendingConflict]:
        return self.engine.list_conflicts()

    def resolve_conflict(self, path: str, resolution: str) -> SyncResult:
        """Apply a resolution directive (see ``SyncEngine.resolve_conflict``)."""
        result = self.engine.resolve_conflict(path, resolution)
        self.hash_cache.save()
        return result

    def list_files(self) -> List[dict]:
        """Known paths with their last synced state and pending-conflict flag."""
        conflicts = {c.path for c in self.state_store.list_conflicts()}
        files = []
        for path, state in sorted(self.state_store.load_all().items()):
            entry = state.to_dict()
            entry['conflict'] = path in conflicts
            files.append(entry)
        for path in sorted(conflicts - {f['path'] for f in files}):
            files.append({'path': path, 'conflict': True})
        return files

    def get_status(self) -> dict:
        """
        Get current orchestrator status.

        Returns:
            Dictionary with status information
        """
        latest = self.progress.latest
        return {
            "running": self.is_running,
            "locations": [loc.value for loc in ordered_locations(self.engine.providers)],
            "last_result": self.last_result.to_dict() if self.last_result else None,
            "last_error": self.last_error,
            "progress": latest.to_dict() if latest else None,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    def close(self):
        """Cancel any run, wait for it, and release resources."""
        self.cancel()
        self.wait(timeout=30)
        self.hash_cache.save()
        self.state_store.close()
        logger.info("Orchestrator stopped")
