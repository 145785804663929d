"""Object store: opaque blobs keyed by `{user_id}/{timestamp}_{sanitized_name}` paths."""
import logging
import re
import time
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath

logger = logging.getLogger(__name__)

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


class StorageError(Exception):
    """Object store call failed (upload, download or delete)."""


def sanitize_filename(name: str) -> str:
    return _UNSAFE_NAME_CHARS.sub("_", name)


def build_object_path(user_id: str, filename: str, timestamp_ms: int | None = None) -> str:
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"{user_id}/{timestamp_ms}_{sanitize_filename(filename)}"


class ObjectStore(ABC):
    @abstractmethod
    async def upload(self, path: str, content: bytes, content_type: str | None = None) -> str:
        """Stores the blob and returns its path."""

    @abstractmethod
    async def download(self, path: str) -> bytes: ...

    @abstractmethod
    async def delete(self, path: str) -> None: ...

    @abstractmethod
    def get_public_url(self, path: str) -> str: ...


class LocalObjectStore(ObjectStore):
    """Blobs as files under `root`; retrieval URLs are `public_url/path` (served by the app's /files mount)."""

    def __init__(self, root: str | Path, public_url: str = "/files"):
        self.root = Path(root)
        self.public_url = public_url.rstrip("/")

    def _resolve(self, path: str) -> Path:
        parts = PurePosixPath(path).parts
        if not parts or path.startswith("/") or ".." in parts:
            raise StorageError(f"Invalid object path: {path!r}")
        return self.root.joinpath(*parts)

    async def upload(self, path: str, content: bytes, content_type: str | None = None) -> str:
        target = self._resolve(path)
        if target.exists():
            raise StorageError(f"Object already exists: {path}")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
        except OSError as e:
            raise StorageError(f"Upload failed for {path}: {e}") from e
        logger.debug("Stored %s (%s bytes, %s)", path, len(content), content_type)
        return path

    async def download(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return target.read_bytes()
        except OSError as e:
            raise StorageError(f"Download failed for {path}: {e}") from e

    async def delete(self, path: str) -> None:
        target = self._resolve(path)
        try:
            target.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Delete failed for {path}: {e}") from e

    def get_public_url(self, path: str) -> str:
        return f"{self.public_url}/{path}"
