"""
Storage Provider Contract

Capability interface every storage backend implements, the listing record it
returns, and the provider error taxonomy the sync engine reacts to.

Author: CADSync Project
License: MIT
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import BinaryIO, List


class Location(str, Enum):
    """The three storage locations kept in sync."""
    LOCAL = "local"
    CLOUD = "cloud"
    SHARE = "share"


# Canonical ordering used wherever locations are iterated.
ALL_LOCATIONS = (Location.LOCAL, Location.CLOUD, Location.SHARE)


class StorageError(Exception):
    """Base class for provider failures."""

    def __init__(self, message: str, path: str = None):
        super().__init__(message)
        self.path = path


class ProviderUnavailable(StorageError):
    """The backend cannot be reached (network down, share unmounted, timeout)."""


class FileNotFoundInProvider(StorageError):
    """The requested path does not exist at this location."""


class ProviderPermissionDenied(StorageError):
    """The backend refused access to the path."""


@dataclass(frozen=True)
class FileEntry:
    """One file as listed by a provider."""
    path: str
    size: int
    modified_time: datetime
    content_hash: str


class StorageProvider(ABC):
    """
    Storage backend keyed by normalized relative path.

    Implementations hide their transport entirely; the engine never branches
    on which backend it talks to.
    """

    def __init__(self, location: Location):
        self.location = location

    @property
    def name(self) -> str:
        return self.location.value

    @abstractmethod
    def list(self) -> List[FileEntry]:
        """
        List every file at this location in one finite pass.

        Provider-internal objects (folder markers, temp files) are excluded.

        Raises:
            ProviderUnavailable: If the location cannot be read at all
        """

    @abstractmethod
    def fetch(self, path: str) -> BinaryIO:
        """Open the file's content as a binary stream (caller closes it)."""

    @abstractmethod
    def store(self, path: str, stream: BinaryIO) -> str:
        """
        Write ``stream`` to ``path`` atomically.

        Either the full content is visible under ``path`` afterwards or the
        call fails leaving no partial file reachable there.

        Returns:
            SHA-256 of the committed content
        """

    @abstractmethod
    def remove(self, path: str):
        """Delete the file at ``path``."""

    @abstractmethod
    def exists(self, path: str) -> bool:
        """Check whether ``path`` exists at this location."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(location={self.location.value})"
