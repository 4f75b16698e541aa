"""
Blob storage for uploaded file content.
"""
import logging
import os
import re
from abc import ABC, abstractmethod
from pathlib import Path

import aiofiles

logger = logging.getLogger(__name__)

_SAFE_EXTENSION = re.compile(r"^[a-z0-9]{1,10}$")


def safe_extension(filename: str) -> str:
    """Lower-cased extension of a client filename, or "" if it is not plain alphanumerics."""
    suffix = Path(filename or "").suffix.lower().lstrip(".")
    return suffix if _SAFE_EXTENSION.match(suffix) else ""


class BlobStore(ABC):
    """Durable byte storage addressed by a locator string."""

    @abstractmethod
    async def save(self, blob_id: str, filename: str, content: bytes) -> str:
        """Store bytes and return the locator."""

    @abstractmethod
    async def read(self, locator: str) -> bytes:
        ...

    @abstractmethod
    def exists(self, locator: str) -> bool:
        ...

    @abstractmethod
    async def delete(self, locator: str) -> None:
        ...


class LocalBlobStore(BlobStore):
    """Stores blobs as files under a single root directory.

    Files are named ``{blob_id}.{ext}``; the client filename only contributes
    a sanitized extension, so it can never steer the write path.
    """

    def __init__(self, root: str):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, locator: str) -> Path:
        path = (self.root / locator).resolve()
        if path.parent != self.root:
            raise ValueError(f"Blob locator escapes storage root: {locator!r}")
        return path

    async def save(self, blob_id: str, filename: str, content: bytes) -> str:
        """
        Save uploaded content and return its locator.

        Args:
            blob_id: Generated identifier (the document id)
            filename: Original client filename, used for the extension only
            content: Raw file content

        Returns:
            str: Locator relative to the storage root
        """
        if not re.match(r"^[A-Za-z0-9_-]+$", blob_id):
            raise ValueError(f"Invalid blob id: {blob_id!r}")
        extension = safe_extension(filename)
        locator = f"{blob_id}.{extension}" if extension else blob_id
        path = self._resolve(locator)

        tmp_path = path.with_name(path.name + ".part")
        async with aiofiles.open(tmp_path, "wb") as f:
            await f.write(content)
        os.replace(tmp_path, path)

        logger.info(f"Blob saved: {path} ({len(content)} bytes)")
        return locator

    async def read(self, locator: str) -> bytes:
        async with aiofiles.open(self._resolve(locator), "rb") as f:
            return await f.read()

    def exists(self, locator: str) -> bool:
        try:
            return self._resolve(locator).is_file()
        except ValueError:
            return False

    async def delete(self, locator: str) -> None:
        """Remove a blob; missing files are ignored."""
        path = self._resolve(locator)
        try:
            path.unlink()
            logger.info(f"Blob removed: {path}")
        except FileNotFoundError:
            pass
