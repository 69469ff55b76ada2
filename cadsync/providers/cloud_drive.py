"""
Cloud Drive Provider

Storage provider for a Google Drive folder, spoken to over the Drive v3 REST
API with an already-authorized ``requests.Session``. Obtaining and refreshing
credentials is the caller's business (e.g. ``google.auth.transport.requests.
AuthorizedSession``); this module never touches tokens.

Author: CADSync Project
License: MIT
"""

import tempfile
import unicodedata
from datetime import datetime, timezone
from typing import BinaryIO, Dict, Iterator, List, Optional, Tuple

import requests

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
    HASH_ALGORITHM,
    copy_with_digests,
    hash_stream,
    is_ignored_name,
    normalize_relative_path,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)

DRIVE_API_BASE = "https://www.googleapis.com/drive/v3"
DRIVE_UPLOAD_API = "https://www.googleapis.com/upload/drive/v3"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"

# appProperties key holding the SHA-256 of the content we uploaded
HASH_PROPERTY = "cadsyncSha256"

ITEM_FIELDS = "id,name,mimeType,size,modifiedTime,md5Checksum,appProperties"
COMMITTED_FIELDS = "id,md5Checksum,size"
SPOOL_MAX_MEMORY = 8 * 1024 * 1024


def escape_query_value(value: str) -> str:
    """Escape a string for use inside a quoted Drive query literal."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def name_forms(name: str) -> List[str]:
    """
    Spellings a name may have on Drive.

    Drive matches ``name='...'`` byte for byte, so a file uploaded with a
    decomposed (NFD) name is only found under that form.
    """
    forms = []
    for form in (name, unicodedata.normalize("NFC", name), unicodedata.normalize("NFD", name)):
        if form not in forms:
            forms.append(form)
    return forms


def parse_drive_time(value: Optional[str]) -> datetime:
    """Parse Drive's RFC 3339 timestamps (``2024-05-01T10:00:00.000Z``)."""
    if not value:
        return datetime.fromtimestamp(0, tz=timezone.utc)
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class CloudDriveProvider(StorageProvider):
    """
    Provider for a Google Drive folder.

    Drive only exposes MD5 checksums, so the SHA-256 of every file this
    provider uploads is stored in the file's ``appProperties``. Files that
    lack it (uploaded by other clients) are downloaded and hashed once per
    Drive revision; the result is memoized by (file id, md5Checksum).
    """

    def __init__(
        self,
        folder_id: str,
        session: Optional[requests.Session],
        api_base: str = DRIVE_API_BASE,
        upload_base: str = DRIVE_UPLOAD_API,
        timeout: float = 60.0,
        page_size: int = 1000
    ):
        """
        Initialize provider.

        Args:
            folder_id: Drive ID of the sync root folder
            session: Authorized HTTP session, or None if not authenticated
            api_base: Drive metadata API base URL
            upload_base: Drive upload API base URL
            timeout: Per-request timeout in seconds
            page_size: Listing page size
        """
        super().__init__(Location.CLOUD)
        self.folder_id = folder_id
        self.session = session
        self.api_base = api_base.rstrip("/")
        self.upload_base = upload_base.rstrip("/")
        self.timeout = timeout
        self.page_size = page_size
        self._computed_hashes: Dict[Tuple[str, str], str] = {}

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _request(self, method: str, url: str, path: Optional[str] = None, **kwargs) -> requests.Response:
        """Issue a request and map failures to the provider error taxonomy."""
        if self.session is None:
            raise ProviderUnavailable("Cloud drive is configured but not authenticated", path)

        kwargs.setdefault("timeout", self.timeout)
        try:
            response = self.session.request(method, url, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise ProviderUnavailable(f"Cloud drive unreachable: {e}", path) from e
        except requests.RequestException as e:
            raise StorageError(f"Cloud drive request failed: {e}", path) from e

        if response.status_code < 400:
            return response

        detail = response.text[:200]
        response.close()
        if response.status_code == 404:
            raise FileNotFoundInProvider(f"Not found in cloud drive: {path or url}", path)
        if response.status_code in (401, 403):
            raise ProviderPermissionDenied(
                f"Cloud drive refused access ({response.status_code}): {detail}", path
            )
        if response.status_code == 429 or response.status_code >= 500:
            raise ProviderUnavailable(
                f"Cloud drive temporarily unavailable ({response.status_code}): {detail}", path
            )
        raise StorageError(f"Cloud drive error ({response.status_code}): {detail}", path)

    def _iter_children(self, folder_id: str, name: Optional[str] = None) -> Iterator[dict]:
        """Yield non-trashed children of a folder, following pagination."""
        query = f"'{escape_query_value(folder_id)}' in parents and trashed=false"
        if name is not None:
            query += f" and name='{escape_query_value(name)}'"

        page_token = None
        while True:
            params = {
                "q": query,
                "fields": f"nextPageToken,files({ITEM_FIELDS})",
                "pageSize": self.page_size,
            }
            if page_token:
                params["pageToken"] = page_token

            data = self._request("GET", f"{self.api_base}/files", params=params).json()
            yield from data.get("files", [])

            page_token = data.get("nextPageToken")
            if not page_token:
                return

    def _find_child(self, folder_id: str, name: str) -> Optional[dict]:
        matches: List[dict] = []
        for form in name_forms(name):
            matches = list(self._iter_children(folder_id, form))
            if matches:
                break
        if len(matches) > 1:
            logger.warning(f"Cloud drive has {len(matches)} items named '{name}' in one folder; using the first")
        return matches[0] if matches else None

    def _resolve(self, path: str) -> Optional[dict]:
        """Walk the folder hierarchy to the item at ``path``."""
        parts = normalize_relative_path(path).split("/")
        parent_id = self.folder_id
        for part in parts[:-1]:
            folder = self._find_child(parent_id, part)
            if folder is None or folder.get("mimeType") != FOLDER_MIME_TYPE:
                return None
            parent_id = folder["id"]

        item = self._find_child(parent_id, parts[-1])
        if item is None or item.get("mimeType") == FOLDER_MIME_TYPE:
            return None
        return item

    def _ensure_parent(self, path: str) -> str:
        """Return the folder id holding ``path``, creating folders as needed."""
        parts = normalize_relative_path(path).split("/")
        parent_id = self.folder_id
        for part in parts[:-1]:
            folder = self._find_child(parent_id, part)
            if folder is None:
                created = self._request(
                    "POST",
                    f"{self.api_base}/files",
                    path=path,
                    params={"fields": "id"},
                    json={"name": part, "mimeType": FOLDER_MIME_TYPE, "parents": [parent_id]},
                ).json()
                logger.info(f"Created cloud folder '{part}' (ID: {created['id']})")
                parent_id = created["id"]
            elif folder.get("mimeType") != FOLDER_MIME_TYPE:
                raise StorageError(f"'{part}' exists in cloud drive and is not a folder", path)
            else:
                parent_id = folder["id"]
        return parent_id

    def _content_hash(self, item: dict) -> str:
        recorded = (item.get("appProperties") or {}).get(HASH_PROPERTY)
        if recorded:
            return recorded

        key = (item["id"], item.get("md5Checksum") or item.get("modifiedTime") or "")
        if key not in self._computed_hashes:
            logger.debug(f"Hashing cloud file without recorded digest: {item.get('name')}")
            stream = self._download(item["id"], item.get("name"))
            try:
                self._computed_hashes[key] = hash_stream(stream)
            finally:
                stream.close()
        return self._computed_hashes[key]

    def _download(self, file_id: str, path: Optional[str]) -> BinaryIO:
        response = self._request(
            "GET",
            f"{self.api_base}/files/{file_id}",
            path=path,
            params={"alt": "media"},
            stream=True,
        )
        response.raw.decode_content = True
        return response.raw

    # ------------------------------------------------------------------
    # StorageProvider operations
    # ------------------------------------------------------------------

    def list(self) -> List[FileEntry]:
        entries: List[FileEntry] = []
        pending = [(self.folder_id, "")]

        while pending:
            folder_id, prefix = pending.pop()
            for item in self._iter_children(folder_id):
                name = item.get("name", "")
                if not name or is_ignored_name(name):
                    continue

                relative = f"{prefix}{name}"
                if item.get("mimeType") == FOLDER_MIME_TYPE:
                    pending.append((item["id"], f"{relative}/"))
                    continue
                if item.get("mimeType", "").startswith("application/vnd.google-apps."):
                    # Native Docs/Sheets have no binary content to sync
                    continue

                entries.append(FileEntry(
                    path=normalize_relative_path(relative),
                    size=int(item.get("size") or 0),
                    modified_time=parse_drive_time(item.get("modifiedTime")),
                    content_hash=self._content_hash(item)
                ))

        logger.debug(f"Listed {len(entries)} files in cloud folder {self.folder_id}")
        return entries

    def fetch(self, path: str) -> BinaryIO:
        item = self._resolve(path)
        if item is None:
            raise FileNotFoundInProvider(f"Not found in cloud drive: {path}", path)
        return self._download(item["id"], path)

    def store(self, path: str, stream: BinaryIO) -> str:
        with tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_MEMORY) as spool:
            digests, size = copy_with_digests(stream, spool, (HASH_ALGORITHM, "md5"))
            digest = digests[HASH_ALGORITHM]
            spool.seek(0)

            existing = self._resolve(path)
            metadata = {"appProperties": {HASH_PROPERTY: digest}}
            if existing is not None:
                method = "PATCH"
                url = f"{self.upload_base}/files/{existing['id']}"
            else:
                method = "POST"
                url = f"{self.upload_base}/files"
                metadata["name"] = normalize_relative_path(path).split("/")[-1]
                metadata["parents"] = [self._ensure_parent(path)]

            # Resumable upload: the new content only becomes visible once
            # the final PUT completes.
            session_response = self._request(
                method,
                url,
                path=path,
                params={"uploadType": "resumable"},
                json=metadata,
                headers={"X-Upload-Content-Length": str(size)},
            )
            upload_url = session_response.headers.get("Location")
            if not upload_url:
                raise StorageError("Cloud drive did not return an upload session", path)

            committed = self._request(
                "PUT",
                upload_url,
                path=path,
                params={"fields": COMMITTED_FIELDS},
                data=spool,
                headers={"Content-Length": str(size)},
            ).json()

        # Drive reports the MD5 of what it stored; it must match what we sent
        if committed.get("md5Checksum") != digests["md5"] or int(committed.get("size", -1)) != size:
            if committed.get("id"):
                # The recorded digest describes the intended bytes, not the stored ones
                self._request(
                    "PATCH",
                    f"{self.api_base}/files/{committed['id']}",
                    path=path,
                    json={"appProperties": {HASH_PROPERTY: None}},
                )
            raise StorageError(
                f"Cloud drive committed different content for {path}: "
                f"md5 {committed.get('md5Checksum')} size {committed.get('size')}, "
                f"expected md5 {digests['md5']} size {size}",
                path
            )

        logger.debug(f"Uploaded {path} to cloud drive")
        return digest

    def remove(self, path: str):
        item = self._resolve(path)
        if item is None:
            raise FileNotFoundInProvider(f"Not found in cloud drive: {path}", path)

        # Moved to the Drive trash, not deleted permanently
        self._request(
            "PATCH",
            f"{self.api_base}/files/{item['id']}",
            path=path,
            json={"trashed": True},
        )
        logger.debug(f"Trashed {path} in cloud drive")

    def exists(self, path: str) -> bool:
        return self._resolve(path) is not None
