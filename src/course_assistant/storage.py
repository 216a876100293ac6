"""Content-addressed-by-name blob storage for raw upload bytes."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Final
from urllib.parse import unquote, urlparse
from uuid import uuid4

LOGGER = logging.getLogger(__name__)

_FILENAME_SAFE_CHARS_RE: Final[re.Pattern[str]] = re.compile(r"[^A-Za-z0-9._-]+")


class BlobNotFoundError(LookupError):
    """Raised when a storage URL no longer resolves to stored bytes."""


def _sanitize_filename(filename: str) -> str:
    """Return a filesystem-safe filename preserving the extension when possible."""
    if not filename:
        filename = "upload"
    sanitized = Path(filename).name
    sanitized = _FILENAME_SAFE_CHARS_RE.sub("_", sanitized)
    return sanitized.strip("._") or "upload"


class LocalBlobStorage:
    """Stores blobs below ``root`` and addresses them with ``file://`` URLs."""

    def __init__(self, root: str | Path = "data") -> None:
        self.root = Path(root).resolve()

    def put(self, filename: str, data: bytes, *, namespace: str = "uploads") -> str:
        directory = self.root / _sanitize_filename(namespace)
        directory.mkdir(parents=True, exist_ok=True)

        sanitized_name = _sanitize_filename(filename)
        base = Path(sanitized_name).stem or "upload"
        suffix = Path(sanitized_name).suffix
        destination = directory / f"{base}-{uuid4().hex}{suffix}"
        destination.write_bytes(data)
        LOGGER.debug("Stored %d bytes at %s", len(data), destination)
        return destination.as_uri()

    def get(self, url: str) -> bytes:
        path = self._resolve(url)
        try:
            return path.read_bytes()
        except FileNotFoundError as error:
            raise BlobNotFoundError(f"No stored object at {url}") from error

    def delete(self, url: str) -> bool:
        path = self._resolve(url)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def _resolve(self, url: str) -> Path:
        parsed = urlparse(url)
        if parsed.scheme != "file":
            raise BlobNotFoundError(f"Unsupported storage URL {url!r}")
        path = Path(unquote(parsed.path)).resolve()
        if self.root not in path.parents:
            raise BlobNotFoundError(f"Storage URL {url!r} is outside the storage root")
        return path
