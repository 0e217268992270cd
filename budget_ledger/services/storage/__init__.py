"""
Storage Services Package

Provides the abstract storage interface and its implementations.
The JSON file backend is the durable store; the in-memory backend serves
tests and throwaway ledgers.
"""

from budget_ledger.services.storage.interface import (
    LedgerStorageInterface,
    StorageError,
    StorageReadError,
    StorageWriteError,
)
from budget_ledger.services.storage.json_file import JsonFileLedgerStorage
from budget_ledger.services.storage.memory import InMemoryLedgerStorage

__all__ = [
    # Interface
    "LedgerStorageInterface",
    # Exceptions
    "StorageError",
    "StorageReadError",
    "StorageWriteError",
    # Implementations
    "InMemoryLedgerStorage",
    "JsonFileLedgerStorage",
]
