"""
Blob storage collaborator for documents.

    backend = get_storage()
    url = backend.put(path, content, "application/pdf")
    backend.delete(path)

Object keys follow ``{tenant}/{user}/{entity_type}/{entity_id}/{timestamp}.{ext}``
(see ``build_object_path``). LocalFileStorage keeps objects under
``STORAGE_ROOT/STORAGE_BUCKET``; the bucket directory must already exist.
"""

import logging
import mimetypes
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath

from flask import current_app

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Base class for blob storage failures."""


class StorageBucketNotFoundError(StorageError):
    """The configured bucket does not exist."""


class StoragePermissionError(StorageError):
    """The store refused the operation."""


def build_object_path(tenant_id, user_id, entity_type, entity_id, file_name, now=None) -> str:
    ext = PurePosixPath(file_name or "").suffix.lstrip(".").lower() or "bin"
    stamp = int((now or datetime.now(timezone.utc)).timestamp() * 1000)
    return f"{tenant_id}/{user_id or 'system'}/{entity_type}/{entity_id}/{stamp}.{ext}"


def guess_mime_type(file_name: str) -> str:
    return mimetypes.guess_type(file_name or "")[0] or "application/octet-stream"


class StorageBackend(ABC):
    """Contract for blob stores."""

    @abstractmethod
    def put(self, path: str, content: bytes, mime_type: str | None = None) -> str:
        """Store ``content`` at ``path`` and return its URL."""

    @abstractmethod
    def url_for(self, path: str) -> str:
        ...

    @abstractmethod
    def delete(self, path: str) -> None:
        ...


class LocalFileStorage(StorageBackend):
    def __init__(self, root, bucket: str):
        self.root = Path(root)
        self.bucket = bucket

    @property
    def bucket_dir(self) -> Path:
        return self.root / self.bucket

    def _resolve(self, path: str) -> Path:
        if not self.bucket_dir.is_dir():
            raise StorageBucketNotFoundError(f"Storage bucket '{self.bucket}' not found")
        target = (self.bucket_dir / path).resolve()
        if self.bucket_dir.resolve() not in target.parents:
            raise StoragePermissionError(f"Path escapes bucket: {path}")
        return target

    def put(self, path: str, content: bytes, mime_type: str | None = None) -> str:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
        except PermissionError as exc:
            raise StoragePermissionError(f"Permission denied writing {path}") from exc
        logger.info("Stored %d bytes at %s/%s (%s)", len(content), self.bucket, path, mime_type)
        return self.url_for(path)

    def url_for(self, path: str) -> str:
        return f"/storage/{self.bucket}/{path}"

    def delete(self, path: str) -> None:
        target = self._resolve(path)
        try:
            target.unlink(missing_ok=True)
        except PermissionError as exc:
            raise StoragePermissionError(f"Permission denied deleting {path}") from exc


def get_storage() -> StorageBackend:
    """Backend configured on the current app (overridable via ``app.extensions['storage']``)."""
    backend = current_app.extensions.get("storage")
    if backend is None:
        backend = LocalFileStorage(
            current_app.config["STORAGE_ROOT"], current_app.config["STORAGE_BUCKET"],
        )
        current_app.extensions["storage"] = backend
    return backend
