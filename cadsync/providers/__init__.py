"""
CADSync Storage Providers

Uniform storage interface over the local disk, the cloud drive, and the
network share.

Author: CADSync Project
License: MIT
"""

from .base import (
    ALL_LOCATIONS,
    FileEntry,
    FileNotFoundInProvider,
    Location,
    ProviderPermissionDenied,
    ProviderUnavailable,
    StorageError,
    StorageProvider,
)
from .cloud_drive import CloudDriveProvider
from .local_fs import LocalFilesystemProvider
from .network_share import NetworkShareProvider

__all__ = [
    'ALL_LOCATIONS', 'Location', 'FileEntry', 'StorageProvider',
    'StorageError', 'ProviderUnavailable', 'FileNotFoundInProvider', 'ProviderPermissionDenied',
    'LocalFilesystemProvider', 'NetworkShareProvider', 'CloudDriveProvider',
]
