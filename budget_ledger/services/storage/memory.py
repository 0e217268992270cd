"""
In-Memory Storage Implementation

Keeps the state document in memory only. Used by tests and for throwaway
ledgers. Behaves like the file backend: a save replaces the whole document.
"""

from typing import Optional

from budget_ledger.services.storage.interface import LedgerStorageInterface, StorageWriteError


class InMemoryLedgerStorage(LedgerStorageInterface):

    def __init__(self, initial: Optional[bytes] = None):
        self._document = initial
        self.save_count = 0
        self.fail_writes = False

    @property
    def document(self) -> Optional[bytes]:
        return self._document

    async def load_document(self) -> Optional[bytes]:
        return self._document

    async def save_document(self, data: bytes) -> bool:
        if self.fail_writes:
            raise StorageWriteError("In-memory storage is set to fail writes")
        self._document = bytes(data)
        self.save_count += 1
        return True
