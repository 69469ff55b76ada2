"""
CADSync Core Module

Planning, conflict detection, deletion safety, execution and orchestration
of sync runs.

Author: CADSync Project
License: MIT
"""

from .models import (
    ConflictResolution,
    PendingConflict,
    ProgressEvent,
    SyncAction,
    SyncPlan,
    SyncPlanItem,
    SyncResult,
    SyncState,
)
from .exceptions import (
    ConflictNotFoundError,
    DeletionBlockedError,
    ResolutionError,
    StateStoreError,
    SyncError,
    SyncInProgressError,
)
from .orchestrator import Orchestrator
from .progress import ProgressChannel
from .sync_engine import SyncEngine

__version__ = "0.1.0"
__all__ = [
    'Orchestrator', 'SyncEngine', 'ProgressChannel',
    'SyncAction', 'SyncPlan', 'SyncPlanItem', 'SyncResult', 'SyncState',
    'PendingConflict', 'ProgressEvent', 'ConflictResolution',
    'SyncError', 'SyncInProgressError', 'StateStoreError', 'ConflictNotFoundError',
    'ResolutionError', 'DeletionBlockedError',
]
