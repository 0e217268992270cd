"""
JSON File Storage Implementation

DESIGN DECISION: The ledger is stored as a single JSON document in a
private data directory because:
1. The user can read (and, carefully, edit) their own data
2. No database setup required
3. Export/import is just the same bytes

Writes are atomic: the document is written to a temporary file in the same
directory, fsynced, then moved over the old one with os.replace. A crash
mid-write leaves the previous document in place.

TRADEOFFS:
- Every save rewrites the whole document (fine for one person's ledger)
- No concurrent writers (the engine serializes all operations)
"""

import os
import tempfile
from pathlib import Path
from typing import Optional

import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from budget_ledger.config import StorageSettings, get_settings
from budget_ledger.services.storage.interface import (
    LedgerStorageInterface,
    StorageReadError,
    StorageWriteError,
)


logger = structlog.get_logger(__name__)


class JsonFileLedgerStorage(LedgerStorageInterface):
    """
    Durable storage of the ledger state document on the local filesystem.
    """

    def __init__(
        self,
        settings: Optional[StorageSettings] = None,
        path: Optional[Path] = None,
    ):
        """
        Initialize file storage.

        Args:
            settings: Storage settings. Defaults to the application settings.
            path: Explicit document path, overriding the settings location.
        """
        self._settings = settings or get_settings().storage
        self._path = Path(path) if path is not None else self._settings.state_path

    @property
    def path(self) -> Path:
        return self._path

    async def load_document(self) -> Optional[bytes]:
        if not self._path.exists():
            logger.info("state_document_missing", path=str(self._path))
            return None
        try:
            return self._path.read_bytes()
        except OSError as e:
            raise StorageReadError(f"Failed to read ledger state from {self._path}: {e}") from e

    async def save_document(self, data: bytes) -> bool:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._settings.write_retry_attempts),
            wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
            retry=retry_if_exception_type(OSError),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    self._write_atomic(data)
        except OSError as e:
            raise StorageWriteError(f"Failed to write ledger state to {self._path}: {e}") from e

        logger.debug("state_document_saved", path=str(self._path), size_bytes=len(data))
        return True

    def _write_atomic(self, data: bytes) -> None:
        """Write to a sibling temp file, fsync, then rename over the target."""
        directory = self._path.parent
        directory.mkdir(parents=True, exist_ok=True)

        fd, temp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.",
            suffix=".tmp",
            dir=directory,
        )
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(temp_name, self._path)
        except OSError:
            try:
                os.unlink(temp_name)
            except FileNotFoundError:
                pass
            raise
