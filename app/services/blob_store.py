"""Object storage for generated card images."""

import hashlib
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Protocol

from app.config import settings
from app.schemas.pipeline import StoredBlob

logger = logging.getLogger(__name__)

META_SUFFIX = ".meta.json"


class InvalidBlobKeyError(ValueError):
    """Raised for keys that are empty or escape the storage root."""


class BlobStore(Protocol):
    def put(self, key: str, data: bytes, mime_type: str) -> StoredBlob: ...

    def get(self, key: str) -> Optional[StoredBlob]: ...

    def delete(self, key: str) -> bool: ...


class LocalBlobStore:
    """Filesystem blob store: one file per key plus a JSON metadata sidecar."""

    def __init__(self, root: Optional[str] = None):
        self.root = Path(root or settings.BLOB_ROOT).resolve()

    def _path(self, key: str) -> Path:
        if not key or key.startswith("/") or "\\" in key or key.endswith(META_SUFFIX):
            raise InvalidBlobKeyError(f"Invalid blob key: {key!r}")
        parts = key.split("/")
        if any(part in ("", ".", "..") for part in parts):
            raise InvalidBlobKeyError(f"Invalid blob key: {key!r}")
        return self.root.joinpath(*parts)

    @staticmethod
    def _write_atomic(path: Path, data: bytes) -> None:
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def put(self, key: str, data: bytes, mime_type: str) -> StoredBlob:
        """Write (or overwrite) an object."""
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)

        etag = hashlib.md5(data).hexdigest()
        meta = {"mime_type": mime_type, "size": len(data), "etag": etag}
        self._write_atomic(path, data)
        self._write_atomic(path.with_name(path.name + META_SUFFIX), json.dumps(meta).encode())

        logger.info(f"Stored blob {key} ({len(data)} bytes, {mime_type})")
        return StoredBlob(key=key, data=data, mime_type=mime_type, size=len(data), etag=etag)

    def get(self, key: str) -> Optional[StoredBlob]:
        """Read an object, or None when it does not exist."""
        path = self._path(key)
        if not path.is_file():
            return None

        data = path.read_bytes()
        meta_path = path.with_name(path.name + META_SUFFIX)
        if meta_path.is_file():
            meta = json.loads(meta_path.read_text())
        else:
            meta = {}
        return StoredBlob(
            key=key,
            data=data,
            mime_type=meta.get("mime_type", "application/octet-stream"),
            size=len(data),
            etag=meta.get("etag") or hashlib.md5(data).hexdigest(),
        )

    def delete(self, key: str) -> bool:
        path = self._path(key)
        if not path.is_file():
            return False
        path.unlink()
        path.with_name(path.name + META_SUFFIX).unlink(missing_ok=True)
        logger.info(f"Deleted blob {key}")
        return True
