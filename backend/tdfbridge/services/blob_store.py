"""
Blob store for uploaded tournament files.

Files are addressed by a relative key such as
``tournaments/3/uploads/20260301-101500_event.tdf``. The record store only
keeps the key (TournamentFile.file_path); bytes live here.
"""

import logging
import os
import re
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional

from tdfbridge.config import TDF_BLOB_DIR
from tdfbridge.exceptions import BlobNotFoundError

logger = logging.getLogger(__name__)

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def build_upload_key(tournament_id: int, file_name: str, uploaded_at: Optional[datetime] = None) -> str:
    """Key for a new upload; the timestamp prefix keeps re-uploads distinct."""
    uploaded_at = uploaded_at or datetime.now(timezone.utc)
    safe_name = _UNSAFE_NAME_CHARS.sub("_", os.path.basename(file_name)).strip("._") or "upload"
    return f"tournaments/{tournament_id}/uploads/{uploaded_at.strftime('%Y%m%d-%H%M%S-%f')}_{safe_name}"


class BlobStore(ABC):
    @abstractmethod
    def upload(self, key: str, data: bytes) -> str:
        """Store bytes under key and return the key."""

    @abstractmethod
    def read(self, key: str) -> bytes:
        """Raises BlobNotFoundError when the key is absent."""

    @abstractmethod
    def list(self, prefix: str = "") -> List[str]:
        """Keys starting with prefix, sorted."""

    @abstractmethod
    def exists(self, key: str) -> bool:
        pass


class LocalBlobStore(BlobStore):
    """Filesystem-backed store rooted at a single directory."""

    def __init__(self, root_dir: str):
        self.root_dir = os.path.abspath(root_dir)

    def _path(self, key: str) -> str:
        path = os.path.abspath(os.path.join(self.root_dir, key))
        if os.path.commonpath([path, self.root_dir]) != self.root_dir:
            raise ValueError(f"Blob key escapes the store root: {key!r}")
        return path

    def upload(self, key: str, data: bytes) -> str:
        path = self._path(key)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)
        logger.info("Stored blob %s (%d bytes)", key, len(data))
        return key

    def read(self, key: str) -> bytes:
        path = self._path(key)
        if not os.path.isfile(path):
            raise BlobNotFoundError(key)
        with open(path, "rb") as f:
            return f.read()

    def list(self, prefix: str = "") -> List[str]:
        keys = []
        for dirpath, _dirnames, filenames in os.walk(self.root_dir):
            for filename in filenames:
                key = os.path.relpath(os.path.join(dirpath, filename), self.root_dir).replace(os.sep, "/")
                if key.startswith(prefix):
                    keys.append(key)
        return sorted(keys)

    def exists(self, key: str) -> bool:
        return os.path.isfile(self._path(key))


class InMemoryBlobStore(BlobStore):
    """Process-local store, used by tests and single-process deployments."""

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def upload(self, key: str, data: bytes) -> str:
        with self._lock:
            self._blobs[key] = bytes(data)
        return key

    def read(self, key: str) -> bytes:
        with self._lock:
            try:
                return self._blobs[key]
            except KeyError:
                raise BlobNotFoundError(key)

    def list(self, prefix: str = "") -> List[str]:
        with self._lock:
            return sorted(key for key in self._blobs if key.startswith(prefix))

    def exists(self, key: str) -> bool:
        with self._lock:
            return key in self._blobs


# Singleton instance
_blob_store: Optional[BlobStore] = None


def get_blob_store() -> BlobStore:
    """Get or create the blob store singleton"""
    global _blob_store
    if _blob_store is None:
        _blob_store = LocalBlobStore(TDF_BLOB_DIR)
    return _blob_store
