"""
Test Doubles

In-memory storage provider used across the engine tests.

Author: CADSync Project
License: MIT
"""

import hashlib
import io
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set

from cadsync.providers.base import (
    FileEntry,
    FileNotFoundInProvider,
    Location,
    ProviderUnavailable,
    StorageError,
    StorageProvider,
)


def sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class InMemoryProvider(StorageProvider):
    """Provider keeping files in a dict, with switches for failure injection."""

    def __init__(self, location: Location, files: Optional[Dict[str, bytes]] = None):
        super().__init__(location)
        self.files: Dict[str, bytes] = dict(files or {})
        self.mtimes: Dict[str, datetime] = {}
        self.available = True
        self.fail_store: Set[str] = set()
        self.fail_fetch: Set[str] = set()
        self.fail_remove: Set[str] = set()
        self.corrupt_store: Set[str] = set()
        self.mutations: List[tuple] = []

    def put(self, path: str, data: bytes, modified: Optional[datetime] = None):
        """Write directly, bypassing mutation tracking."""
        self.files[path] = data
        self.mtimes[path] = modified or datetime.now(timezone.utc)

    def hash_of(self, path: str) -> Optional[str]:
        data = self.files.get(path)
        return sha256(data) if data is not None else None

    def _check(self):
        if not self.available:
            raise ProviderUnavailable(f"{self.name} offline")

    def list(self) -> List[FileEntry]:
        self._check()
        return [
            FileEntry(
                path=path,
                size=len(data),
                modified_time=self.mtimes.get(path, datetime(2024, 1, 1, tzinfo=timezone.utc)),
                content_hash=sha256(data)
            )
            for path, data in sorted(self.files.items())
        ]

    def fetch(self, path: str):
        self._check()
        if path in self.fail_fetch:
            raise StorageError(f"fetch failed for {path}", path)
        if path not in self.files:
            raise FileNotFoundInProvider(f"missing {path}", path)
        return io.BytesIO(self.files[path])

    def store(self, path: str, stream) -> str:
        self._check()
        data = stream.read()
        if path in self.fail_store:
            raise StorageError(f"store failed for {path}", path)
        if path in self.corrupt_store:
            data = data + b"\x00corrupted"
        self.files[path] = data
        self.mtimes[path] = datetime.now(timezone.utc)
        self.mutations.append(("store", path))
        return sha256(data)

    def remove(self, path: str):
        self._check()
        if path in self.fail_remove:
            raise StorageError(f"remove failed for {path}", path)
        if path not in self.files:
            raise FileNotFoundInProvider(f"missing {path}", path)
        del self.files[path]
        self.mutations.append(("remove", path))

    def exists(self, path: str) -> bool:
        self._check()
        return path in self.files
