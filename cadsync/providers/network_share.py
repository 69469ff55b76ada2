"""
Network Share Provider

Storage provider over an SMB/NFS share mounted into the local filesystem.

Author: CADSync Project
License: MIT
"""

import os
from typing import Optional

from .base import Location, ProviderUnavailable
from .local_fs import LocalFilesystemProvider
from ..utils.file_ops import HashCache
from ..utils.logger import get_logger

logger = get_logger(__name__)


class NetworkShareProvider(LocalFilesystemProvider):
    """
    Provider for a mounted network share.

    An unmounted mount point is an ordinary empty directory, which would read
    as "every file deleted". With ``verify_mount`` enabled the provider
    refuses to operate unless the share path is an active mount point.
    """

    def __init__(
        self,
        share_path: str,
        verify_mount: bool = True,
        hash_cache: Optional[HashCache] = None
    ):
        """
        Initialize provider.

        Args:
            share_path: Absolute path where the share is mounted
            verify_mount: Require ``share_path`` to be a mount point
            hash_cache: Optional shared hash cache
        """
        super().__init__(share_path, location=Location.SHARE, hash_cache=hash_cache)
        self.verify_mount = verify_mount

    def _check_available(self):
        if not self.root_path.exists():
            raise ProviderUnavailable(f"Network share not reachable: {self.root_path}")

        if self.verify_mount and not os.path.ismount(self.root_path):
            logger.warning(f"Network share path is not mounted: {self.root_path}")
            raise ProviderUnavailable(f"Network share not mounted: {self.root_path}")

        super()._check_available()
