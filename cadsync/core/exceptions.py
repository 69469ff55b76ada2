"""
Sync Engine Exceptions

Author: CADSync Project
License: MIT
"""

from typing import List


class SyncError(Exception):
    """Base class for run-level sync failures."""


class SyncInProgressError(SyncError):
    """A sync run or conflict resolution is already executing."""


class StateStoreError(SyncError):
    """The state store cannot be read or written; baselines are unknown."""


class ConflictNotFoundError(SyncError):
    """A resolution directive named a path with no pending conflict."""

    def __init__(self, path: str):
        super().__init__(f"No pending conflict for path: {path}")
        self.path = path


class ResolutionError(SyncError):
    """A resolution directive could not be applied."""


class DeletionBlockedError(SyncError):
    """The deletion safety guard blocked the run."""

    def __init__(self, reasons: List[str]):
        super().__init__("; ".join(reasons))
        self.reasons = reasons
