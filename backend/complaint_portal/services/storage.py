"""
Blob Store

Filesystem-backed object storage for complaint attachments.

Objects live under <STORAGE_ROOT>/<bucket>/<path>. The first segment of
every path is the id of the account that uploaded it; only that account
may delete the object. Any authenticated actor may upload and read.
"""
import logging
import os
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Optional

from fastapi import status

from ..exceptions import AuthenticationRequired, AuthorizationDenied, NotFound, StorageError
from .access import Actor

logger = logging.getLogger(__name__)

BUCKET = "complaint-attachments"
STORAGE_ROOT = os.getenv("STORAGE_ROOT", "storage")
MAX_ATTACHMENT_BYTES = int(os.getenv("ATTACHMENT_MAX_BYTES", str(10 * 1024 * 1024)))  # 10MB/file
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8001")

# Images, PDF, DOC
ALLOWED_DOCUMENT_TYPES = {
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}


@dataclass
class UploadedFile:
    """A file as received from the client, fully read into memory."""
    file_name: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        suffix = PurePosixPath(self.file_name or "").suffix
        return suffix.lstrip(".").lower() or "bin"


def is_allowed_type(content_type: Optional[str]) -> bool:
    if not content_type:
        return False
    return content_type.startswith("image/") or content_type in ALLOWED_DOCUMENT_TYPES


class BlobStore:
    """One bucket on the local filesystem."""

    def __init__(
        self,
        root: str = STORAGE_ROOT,
        bucket: str = BUCKET,
        max_bytes: int = MAX_ATTACHMENT_BYTES,
        public_base_url: str = PUBLIC_BASE_URL,
    ):
        self.root = root
        self.bucket = bucket
        self.max_bytes = max_bytes
        self.public_base_url = public_base_url.rstrip("/")

    def owner_path(self, actor: Actor, name: str) -> str:
        """Namespace `name` under the actor's id."""
        return f"{actor.id}/{name.lstrip('/')}"

    def upload(self, actor: Optional[Actor], path: str, data: bytes, content_type: str) -> str:
        """
        Store `data` at `path`. The path must already start with the actor's id.
        Existing objects are never overwritten.
        """
        if actor is None:
            raise AuthenticationRequired()
        parts = self._split(path)
        if parts[0] != actor.id:
            raise AuthorizationDenied("Uploads must be stored under your own folder")
        if len(data) > self.max_bytes:
            raise StorageError(
                f"File exceeds the {self.max_bytes // (1024 * 1024)}MB limit",
                code="PAYLOAD_TOO_LARGE",
                status_code=413,
            )
        if not is_allowed_type(content_type):
            raise StorageError(
                f"Invalid file type: {content_type}. Only images, PDF and DOC files are allowed.",
                code="UNSUPPORTED_MEDIA_TYPE",
                status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            )

        file_path = self._filesystem_path(parts)
        os.makedirs(os.path.dirname(file_path), exist_ok=True)
        try:
            # "x" refuses to open an existing object
            with open(file_path, "xb") as buffer:
                buffer.write(data)
        except FileExistsError:
            raise StorageError("The resource already exists", code="DUPLICATE", status_code=status.HTTP_409_CONFLICT)
        except OSError as e:
            logger.error(f"Failed to write object {path}: {e}")
            raise StorageError("Failed to save file", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

        stored = "/".join(parts)
        logger.info(f"Stored object {self.bucket}/{stored} ({len(data)} bytes)")
        return stored

    def public_url(self, path: str) -> str:
        return f"{self.public_base_url}/storage/{self.bucket}/{'/'.join(self._split(path))}"

    def path_from_url(self, url: str) -> str:
        """Inverse of public_url."""
        prefix = f"{self.public_base_url}/storage/{self.bucket}/"
        if not url or not url.startswith(prefix):
            raise NotFound("Object not found")
        return "/".join(self._split(url[len(prefix):]))

    def read(self, actor: Optional[Actor], path: str) -> bytes:
        if actor is None:
            raise AuthenticationRequired()
        file_path = self._filesystem_path(self._split(path))
        if not os.path.isfile(file_path):
            raise NotFound("Object not found")
        with open(file_path, "rb") as f:
            return f.read()

    def delete(self, actor: Optional[Actor], path: str) -> None:
        """Delete an object. Only the account named by the first path segment may do so."""
        if actor is None:
            raise AuthenticationRequired()
        parts = self._split(path)
        if parts[0] != actor.id:
            raise AuthorizationDenied()
        file_path = self._filesystem_path(parts)
        if not os.path.isfile(file_path):
            raise NotFound("Object not found")
        os.remove(file_path)
        logger.info(f"Deleted object {self.bucket}/{'/'.join(parts)}")

    def _split(self, path: str):
        parts = [p for p in (path or "").split("/") if p]
        if not parts or any(p in (".", "..") for p in parts):
            raise StorageError("Invalid object path")
        return parts

    def _filesystem_path(self, parts) -> str:
        return os.path.join(self.root, self.bucket, *parts)


_default_store: Optional[BlobStore] = None


def get_blob_store() -> BlobStore:
    """Dependency for FastAPI - the process-wide attachment bucket."""
    global _default_store
    if _default_store is None:
        _default_store = BlobStore()
    return _default_store
