"""
File Operation Utilities

Content hashing, relative path normalization, the per-provider hash cache,
and atomic write helpers shared by the filesystem-backed providers.

Author: CADSync Project
License: MIT
"""

import hashlib
import json
import os
import posixpath
import tempfile
import threading
import unicodedata
from pathlib import Path
from typing import BinaryIO, Dict, Iterable, Optional, Tuple

from .logger import get_logger

logger = get_logger(__name__)

HASH_ALGORITHM = "sha256"
CHUNK_SIZE = 65536  # 64KB chunks for hashing

# Prefix of in-flight files written by store(); never listed by providers.
TEMP_PREFIX = ".cadsync-tmp-"


def hash_stream(stream: BinaryIO, chunk_size: int = CHUNK_SIZE) -> str:
    """
    Calculate the SHA-256 digest of a byte stream.

    Reads in chunks so large CAD files never have to fit in memory.
    I/O errors raised by the stream propagate unchanged.

    Args:
        stream: Binary file-like object positioned at the start of the content
        chunk_size: Size of chunks to read (bytes)

    Returns:
        Hexadecimal hash string
    """
    hasher = hashlib.new(HASH_ALGORITHM)
    while chunk := stream.read(chunk_size):
        hasher.update(chunk)
    return hasher.hexdigest()


def calculate_file_hash(file_path: str, chunk_size: int = CHUNK_SIZE) -> str:
    """
    Calculate SHA-256 hash of a file on disk.

    Raises:
        FileNotFoundError: If file doesn't exist
    """
    with open(file_path, 'rb') as f:
        return hash_stream(f, chunk_size)


def copy_and_hash(source: BinaryIO, destination: BinaryIO, chunk_size: int = CHUNK_SIZE) -> Tuple[str, int]:
    """
    Copy a stream into another while hashing it.

    Returns:
        Tuple of (hex digest, bytes copied)
    """
    digests, size = copy_with_digests(source, destination, (HASH_ALGORITHM,), chunk_size)
    return digests[HASH_ALGORITHM], size


def copy_with_digests(
    source: BinaryIO,
    destination: BinaryIO,
    algorithms: Iterable[str],
    chunk_size: int = CHUNK_SIZE
) -> Tuple[Dict[str, str], int]:
    """
    Copy a stream while computing several digests in the same pass.

    Returns:
        Tuple of ({algorithm: hex digest}, bytes copied)
    """
    hashers = {name: hashlib.new(name) for name in algorithms}
    size = 0
    while chunk := source.read(chunk_size):
        for hasher in hashers.values():
            hasher.update(chunk)
        destination.write(chunk)
        size += len(chunk)
    return {name: hasher.hexdigest() for name, hasher in hashers.items()}, size


def normalize_relative_path(path: str) -> str:
    """
    Normalize a relative path into the key used across all locations.

    Backslashes become forward slashes, redundant separators and ``.``
    segments are collapsed, and Unicode is NFC-normalized so that the same
    name listed by different backends compares equal.

    Raises:
        ValueError: If the path is empty, absolute, or escapes the root
    """
    if not path:
        raise ValueError("Empty path")

    candidate = unicodedata.normalize("NFC", path.replace("\\", "/"))
    if candidate.startswith("/") or (len(candidate) > 1 and candidate[1] == ":"):
        raise ValueError(f"Path must be relative: {path}")

    normalized = posixpath.normpath(candidate)
    if normalized in (".", "") or normalized == ".." or normalized.startswith("../"):
        raise ValueError(f"Path escapes the sync root: {path}")

    return normalized


def is_ignored_name(name: str) -> bool:
    """
    Check whether a file or folder name is excluded from synchronization.

    Covers in-flight atomic writes, dot-files, and the "~$" owner lock files
    CAD applications keep next to an open document.
    """
    base = Path(name).name
    return base.startswith(TEMP_PREFIX) or base.startswith(".") or base.startswith("~$")


def atomic_write(target: Path, stream: BinaryIO, chunk_size: int = CHUNK_SIZE) -> str:
    """
    Write a stream to ``target`` atomically.

    Content goes to a temp file in the target directory, is flushed and
    fsynced, re-hashed from disk, and only then renamed over the final path.
    On any failure the temp file is removed and nothing is visible under
    ``target``.

    Returns:
        SHA-256 of the content committed at ``target``
    """
    target.parent.mkdir(parents=True, exist_ok=True)

    fd, temp_name = tempfile.mkstemp(prefix=TEMP_PREFIX, dir=str(target.parent))
    try:
        with os.fdopen(fd, 'wb') as tmp:
            copy_and_hash(stream, tmp, chunk_size)
            tmp.flush()
            os.fsync(tmp.fileno())

        committed_hash = calculate_file_hash(temp_name, chunk_size)
        os.replace(temp_name, target)
    except BaseException:
        try:
            os.remove(temp_name)
        except FileNotFoundError:
            pass
        raise

    return committed_hash


def prune_empty_parents(path: Path, root: Path):
    """Remove empty directories between ``path``'s parent and ``root``."""
    current = path.parent
    root = root.resolve()
    while True:
        try:
            resolved = current.resolve()
        except OSError:
            return
        if resolved == root or root not in resolved.parents:
            return
        try:
            current.rmdir()
        except OSError:
            return
        logger.debug(f"Removed empty directory: {current}")
        current = current.parent


class HashCache:
    """
    Cache of content hashes keyed by path, size and modification time.

    Re-hashing every CAD file on every run is expensive, so filesystem
    providers reuse a digest while the file's (size, mtime_ns) pair is
    unchanged. The cache can be persisted as JSON between runs.
    """

    def __init__(self, cache_file: Optional[str] = None):
        """
        Initialize hash cache.

        Args:
            cache_file: Path to hash cache file (JSON)
        """
        self.cache_file = cache_file
        self._entries: Dict[str, Tuple[int, int, str]] = {}  # path -> (size, mtime_ns, hash)
        self._lock = threading.Lock()

        if cache_file and os.path.exists(cache_file):
            self._load()

    def get_hash(self, file_path: str, stat_result: Optional[os.stat_result] = None) -> str:
        """
        Return the hash for ``file_path``, hashing only if it changed.

        Args:
            file_path: Absolute path of the file
            stat_result: Pre-fetched ``os.stat`` result, if available
        """
        st = stat_result or os.stat(file_path)
        with self._lock:
            cached = self._entries.get(file_path)
        if cached and cached[0] == st.st_size and cached[1] == st.st_mtime_ns:
            return cached[2]

        digest = calculate_file_hash(file_path)
        with self._lock:
            self._entries[file_path] = (st.st_size, st.st_mtime_ns, digest)
        return digest

    def record(self, file_path: str, digest: str):
        """Record a digest computed elsewhere (e.g. during an atomic write)."""
        st = os.stat(file_path)
        with self._lock:
            self._entries[file_path] = (st.st_size, st.st_mtime_ns, digest)

    def forget(self, file_path: str):
        """Drop a cached entry."""
        with self._lock:
            self._entries.pop(file_path, None)

    def __len__(self) -> int:
        return len(self._entries)

    def _load(self):
        """Load hash cache from file."""
        try:
            with open(self.cache_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
            self._entries = {
                path: (int(size), int(mtime_ns), digest)
                for path, (size, mtime_ns, digest) in data.items()
            }
            logger.info(f"Loaded hash cache with {len(self._entries)} entries")
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"Could not load hash cache: {e}")
            self._entries = {}

    def save(self):
        """Save hash cache to file."""
        if not self.cache_file:
            return

        try:
            os.makedirs(os.path.dirname(self.cache_file) or ".", exist_ok=True)
            with self._lock:
                data = {path: list(entry) for path, entry in self._entries.items()}
            with open(self.cache_file, 'w', encoding='utf-8') as f:
                json.dump(data, f)
            logger.info(f"Saved hash cache with {len(data)} entries")
        except OSError as e:
            logger.error(f"Error saving hash cache: {e}")
