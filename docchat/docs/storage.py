"""Local-disk blob storage for uploaded files."""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredFile:
    """Reference to a stored upload."""

    key: str
    path: Path


class LocalFileStorage:
    """Stores uploads under a single directory, one file per key.

    Keys are ``<uuid4 hex><original extension>`` so they never collide and
    never carry user-controlled path segments.
    """

    def __init__(self, upload_dir: str | Path) -> None:
        self._root = Path(upload_dir)

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, key: str) -> Path:
        """Resolve a key to its file path.

        Raises:
            ValueError: If the key would escape the upload directory
        """
        if not key or Path(key).name != key:
            raise ValueError(f"Invalid storage key: {key!r}")
        return self._root / key

    async def save(self, filename: str, data: bytes) -> StoredFile:
        """Write bytes and return the stable reference key."""
        suffix = Path(filename).suffix.lower()
        key = f"{uuid.uuid4().hex}{suffix}"
        path = self.path_for(key)

        def _write() -> None:
            self._root.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        await asyncio.to_thread(_write)
        logger.info(f"Stored upload {filename!r} as {key} ({len(data)} bytes)")
        return StoredFile(key=key, path=path)

    async def delete(self, key: str) -> None:
        """Remove a stored file; a missing file is not an error."""
        path = self.path_for(key)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            logger.warning(f"Stored file {key} already absent")
            return
        logger.info(f"Deleted stored file {key}")
