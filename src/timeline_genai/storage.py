from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import os
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol
from urllib.parse import parse_qs, urlsplit

from timeline_genai.config import settings

logger = logging.getLogger(__name__)

_EXTENSIONS = {"png": "png", "jpg": "jpg", "jpeg": "jpg", "webp": "webp", "gif": "gif"}

MIME_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "webp": "image/webp",
    "gif": "image/gif",
}


class BlobStorageError(RuntimeError):
    pass


class BlobNotFoundError(BlobStorageError):
    pass


@dataclass(frozen=True)
class StoredBlob:
    name: str
    url: str
    size: int
    last_modified: float


class BlobStorage(Protocol):
    def upload(self, base64_image: str, fmt: str, prefix: str = "") -> str: ...

    def list(self, prefix: str = "", limit: int | None = None) -> list[StoredBlob]: ...

    def delete(self, locator: str) -> None: ...

    def refresh(self, locator: str) -> str: ...

    def owns(self, locator: str) -> bool: ...


def _safe_filename(name: str) -> str:
    # Prevent path traversal.
    return os.path.basename(name).replace("..", "_")


def _strip_data_uri(base64_image: str) -> str:
    if "base64," in base64_image:
        return base64_image.split("base64,", 1)[1]
    return base64_image


class LocalBlobStorage:
    """
    Filesystem-backed image storage handing out expiring, signed locators.

    A locator looks like `<base_url>/<name>?se=<epoch>&sig=<hex>`; the query
    part expires after `ttl_minutes` and `refresh` issues a fresh one.
    """

    def __init__(
        self,
        root_dir: Path | None = None,
        base_url: str | None = None,
        signing_key: str | None = None,
        ttl_minutes: int | None = None,
    ) -> None:
        self.root_dir = Path(root_dir or settings.blob_dir).resolve()
        self.root_dir.mkdir(parents=True, exist_ok=True)
        self.base_url = (base_url if base_url is not None else settings.blob_base_url).rstrip("/")
        self._key = (signing_key or settings.blob_signing_key).encode("utf-8")
        self.ttl_minutes = ttl_minutes if ttl_minutes is not None else settings.blob_url_ttl_minutes

    def upload(self, base64_image: str, fmt: str, prefix: str = "") -> str:
        ext = _EXTENSIONS.get((fmt or "png").lower())
        if ext is None:
            raise BlobStorageError(f"unsupported image format '{fmt}'")
        try:
            content = base64.b64decode(_strip_data_uri(base64_image), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise BlobStorageError("image payload is not valid base64") from exc
        if not content:
            raise BlobStorageError("image payload is empty")

        name = _safe_filename(f"{prefix}{int(time.time() * 1000)}-{uuid.uuid4().hex[:12]}.{ext}")
        path = self.root_dir / name
        path.write_bytes(content)
        logger.debug("Stored blob %s (%d bytes, sha256=%s)", name, len(content), hashlib.sha256(content).hexdigest())
        return self._sign(name)

    def list(self, prefix: str = "", limit: int | None = None) -> list[StoredBlob]:
        """Newest first; each entry carries a freshly signed url."""
        entries: list[StoredBlob] = []
        for path in self.root_dir.iterdir():
            if not path.is_file() or not path.name.startswith(prefix):
                continue
            if path.suffix.lstrip(".") not in MIME_TYPES:
                continue
            stat = path.stat()
            entries.append(
                StoredBlob(name=path.name, url=self._sign(path.name), size=stat.st_size, last_modified=stat.st_mtime)
            )
        entries.sort(key=lambda e: (e.last_modified, e.name), reverse=True)
        return entries[:limit] if limit is not None else entries

    def delete(self, locator: str) -> None:
        name = self.name_of(locator)
        if name is None:
            raise BlobStorageError(f"locator is not managed by this storage: {locator}")
        path = self.path_for(name)
        if not path.exists():
            raise BlobNotFoundError(name)
        path.unlink()
        logger.info("Deleted blob %s", name)

    def refresh(self, locator: str) -> str:
        name = self.name_of(locator)
        if name is None:
            return locator
        if not self.path_for(name).exists():
            raise BlobNotFoundError(name)
        return self._sign(name)

    def owns(self, locator: str) -> bool:
        return self.name_of(locator) is not None

    def name_of(self, locator: str) -> str | None:
        if not locator:
            return None
        parts = urlsplit(locator)
        base = urlsplit(self.base_url)
        # Absolute base urls also pin scheme and host.
        if base.netloc and (parts.scheme, parts.netloc) != (base.scheme, base.netloc):
            return None
        path = parts.path
        prefix = base.path.rstrip("/") + "/"
        if not path.startswith(prefix):
            return None
        name = path[len(prefix):]
        if not name or name != _safe_filename(name):
            return None
        return name

    def path_for(self, name: str) -> Path:
        return self.root_dir / _safe_filename(name)

    def verify(self, name: str, expires: str | None, signature: str | None, now: float | None = None) -> bool:
        if not expires or not signature:
            return False
        try:
            expires_at = int(expires)
        except ValueError:
            return False
        if expires_at < (now if now is not None else time.time()):
            return False
        return hmac.compare_digest(self._signature(name, expires_at), signature)

    def verify_locator(self, locator: str, now: float | None = None) -> bool:
        name = self.name_of(locator)
        if name is None:
            return False
        query = parse_qs(urlsplit(locator).query)
        return self.verify(name, (query.get("se") or [None])[0], (query.get("sig") or [None])[0], now=now)

    def _sign(self, name: str) -> str:
        expires_at = int(time.time()) + self.ttl_minutes * 60
        return f"{self.base_url}/{name}?se={expires_at}&sig={self._signature(name, expires_at)}"

    def _signature(self, name: str, expires_at: int) -> str:
        return hmac.new(self._key, f"{name}:{expires_at}".encode("utf-8"), hashlib.sha256).hexdigest()
