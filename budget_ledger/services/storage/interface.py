"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Keep the engine unaware of where the state document lives
2. Use in-memory storage for testing
3. Add other backends later without touching ledger logic

The interface is intentionally small. The whole ledger is one document,
so storage only needs to load and save that document as bytes. Encoding
and decoding belong to LedgerState.
"""

from abc import ABC, abstractmethod
from typing import Optional


class LedgerStorageInterface(ABC):
    """
    Abstract interface for ledger state storage.

    Any storage implementation (JSON file, in-memory, ...)
    must implement these methods.
    """

    @abstractmethod
    async def load_document(self) -> Optional[bytes]:
        """
        Load the stored state document.

        Returns:
            The raw document bytes, or None if nothing has been saved yet

        Raises:
            StorageError: If the document exists but cannot be read
        """
        pass

    @abstractmethod
    async def save_document(self, data: bytes) -> bool:
        """
        Replace the stored state document.

        The write must be atomic: after a failure the previous document
        is still intact.

        Args:
            data: The complete encoded state document

        Returns:
            True if saved successfully

        Raises:
            StorageError: If the write fails
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class StorageReadError(StorageError):
    """The stored document could not be read."""
    pass


class StorageWriteError(StorageError):
    """The document could not be written durably."""
    pass
