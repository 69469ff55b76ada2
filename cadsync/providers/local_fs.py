"""
Local Filesystem Provider

Storage provider over a directory tree on a local disk.

Author: CADSync Project
License: MIT
"""

import errno
import os
import unicodedata
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional

from .base import (
    FileEntry,
    FileNotFoundInProvider,
    Location,
    ProviderPermissionDenied,
    ProviderUnavailable,
    StorageError,
    StorageProvider,
)
from ..utils.file_ops import (
    HashCache,
    atomic_write,
    is_ignored_name,
    normalize_relative_path,
    prune_empty_parents,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)

# errno values meaning "the backing storage went away", not "no such file".
UNAVAILABLE_ERRNOS = {
    errno.ENOTCONN,
    errno.EHOSTDOWN,
    errno.EHOSTUNREACH,
    errno.ENETDOWN,
    errno.ENETUNREACH,
    errno.ESTALE,
    errno.ETIMEDOUT,
    errno.EIO,
}


class LocalFilesystemProvider(StorageProvider):
    """
    Provider for a directory on the local filesystem.

    Listing hashes every file (through a ``HashCache``), stores go through a
    temp-file-then-rename write, and empty directories left behind by a
    removal are pruned.
    """

    def __init__(
        self,
        root_path: str,
        location: Location = Location.LOCAL,
        hash_cache: Optional[HashCache] = None
    ):
        """
        Initialize provider.

        Args:
            root_path: Absolute path of the sync root
            location: Location this provider represents
            hash_cache: Optional shared hash cache
        """
        super().__init__(location)
        self.root_path = Path(root_path)
        self.hash_cache = hash_cache or HashCache()

    def _check_available(self):
        """Raise ProviderUnavailable if the root cannot be used."""
        if not self.root_path.is_dir():
            raise ProviderUnavailable(
                f"{self.name} root is not an accessible directory: {self.root_path}"
            )

    def _absolute(self, path: str) -> Path:
        """
        Map a normalized key to the file's real location on disk.

        Keys are NFC, but names written by other systems (macOS in
        particular) may be stored decomposed. Each segment that does not
        exist as spelled is matched against its directory's entries by
        normalized name; segments with no match keep the key's spelling.
        """
        current = self.root_path
        for part in normalize_relative_path(path).split("/"):
            candidate = current / part
            if not os.path.lexists(candidate):
                candidate = current / self._match_entry(current, part)
            current = candidate
        return current

    @staticmethod
    def _match_entry(directory: Path, name: str) -> str:
        try:
            entries = os.listdir(directory)
        except OSError:
            return name
        for entry in entries:
            if unicodedata.normalize("NFC", entry) == name:
                return entry
        return name

    def _translate_error(self, error: OSError, path: str) -> StorageError:
        """Map an OSError to the provider error taxonomy."""
        if isinstance(error, FileNotFoundError):
            return FileNotFoundInProvider(f"Not found at {self.name}: {path}", path)
        if isinstance(error, PermissionError):
            return ProviderPermissionDenied(f"Permission denied at {self.name}: {path}", path)
        if error.errno in UNAVAILABLE_ERRNOS:
            return ProviderUnavailable(f"{self.name} became unavailable on {path}: {error}", path)
        return StorageError(f"{self.name} I/O error on {path}: {error}", path)

    def list(self) -> List[FileEntry]:
        self._check_available()

        entries: Dict[str, FileEntry] = {}
        walk_errors: List[OSError] = []

        for dirpath, dirnames, filenames in os.walk(self.root_path, onerror=walk_errors.append):
            dirnames[:] = [d for d in dirnames if not is_ignored_name(d)]

            for filename in filenames:
                if is_ignored_name(filename):
                    continue

                absolute = os.path.join(dirpath, filename)
                relative = os.path.relpath(absolute, self.root_path)

                try:
                    st = os.stat(absolute)
                    digest = self.hash_cache.get_hash(absolute, st)
                except FileNotFoundError:
                    # Removed between walk and stat
                    continue
                except OSError as e:
                    # Skipping an unreadable file would read as a deletion
                    raise ProviderUnavailable(
                        f"{self.name} listing incomplete, cannot read {relative}: {e}"
                    ) from e

                key = normalize_relative_path(relative)
                if key in entries:
                    # Keep the spelling _absolute() resolves to first
                    logger.warning(f"{self.name} has two spellings of {key}")
                    if relative.replace(os.sep, "/") != key:
                        continue

                entries[key] = FileEntry(
                    path=key,
                    size=st.st_size,
                    modified_time=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
                    content_hash=digest
                )

        for error in walk_errors:
            # A subdirectory we cannot read would look like deleted files
            raise ProviderUnavailable(f"{self.name} listing incomplete: {error}") from error

        logger.debug(f"Listed {len(entries)} files at {self.name} ({self.root_path})")
        return list(entries.values())

    def fetch(self, path: str) -> BinaryIO:
        self._check_available()
        try:
            return open(self._absolute(path), 'rb')
        except OSError as e:
            raise self._translate_error(e, path) from e

    def store(self, path: str, stream: BinaryIO) -> str:
        self._check_available()
        target = self._absolute(path)
        try:
            digest = atomic_write(target, stream)
            self.hash_cache.record(str(target), digest)
        except OSError as e:
            raise self._translate_error(e, path) from e

        logger.debug(f"Stored {path} at {self.name}")
        return digest

    def remove(self, path: str):
        self._check_available()
        target = self._absolute(path)
        try:
            os.remove(target)
        except OSError as e:
            raise self._translate_error(e, path) from e

        self.hash_cache.forget(str(target))
        prune_empty_parents(target, self.root_path)
        logger.debug(f"Removed {path} at {self.name}")

    def exists(self, path: str) -> bool:
        self._check_available()
        return self._absolute(path).is_file()
