"""Tests for the storage backends."""

import os
import time

import pytest

from budget_ledger.config import StorageSettings
from budget_ledger.services.storage import (
    InMemoryLedgerStorage,
    JsonFileLedgerStorage,
    StorageReadError,
    StorageWriteError,
)


@pytest.fixture
def storage_settings(tmp_path) -> StorageSettings:
    return StorageSettings(data_dir=tmp_path / "ledger", write_retry_attempts=2)


class TestStorageSettings:
    """Tests for storage configuration."""

    def test_state_path(self, storage_settings, tmp_path):
        """Test the document path is data_dir / state_filename."""
        assert storage_settings.state_path == tmp_path / "ledger" / "budget_state.json"

    def test_state_filename_must_be_bare(self, tmp_path):
        """Test a filename with directories is rejected."""
        with pytest.raises(ValueError):
            StorageSettings(data_dir=tmp_path, state_filename="../elsewhere.json")


class TestJsonFileStorage:
    """Tests for JsonFileLedgerStorage."""

    @pytest.mark.asyncio
    async def test_missing_document_is_none(self, storage_settings):
        """Test a ledger that was never saved loads as None."""
        storage = JsonFileLedgerStorage(storage_settings)
        assert await storage.load_document() is None

    @pytest.mark.asyncio
    async def test_save_creates_directory_and_file(self, storage_settings):
        """Test saving creates the data directory and writes the bytes."""
        storage = JsonFileLedgerStorage(storage_settings)
        assert await storage.save_document(b'{"accounts": []}')
        assert storage.path.read_bytes() == b'{"accounts": []}'
        assert await storage.load_document() == b'{"accounts": []}'

    @pytest.mark.asyncio
    async def test_save_replaces_and_leaves_no_temp_files(self, storage_settings):
        """Test a second save replaces the document without leftovers."""
        storage = JsonFileLedgerStorage(storage_settings)
        await storage.save_document(b"first")
        await storage.save_document(b"second")
        assert storage.path.read_bytes() == b"second"
        assert sorted(p.name for p in storage.path.parent.iterdir()) == ["budget_state.json"]

    @pytest.mark.asyncio
    async def test_explicit_path_overrides_settings(self, storage_settings, tmp_path):
        """Test an explicit path wins over the settings location."""
        target = tmp_path / "custom" / "ledger.json"
        storage = JsonFileLedgerStorage(storage_settings, path=target)
        await storage.save_document(b"{}")
        assert target.read_bytes() == b"{}"

    @pytest.mark.asyncio
    async def test_failed_write_keeps_previous_document(self, storage_settings, monkeypatch):
        """Test a failing rename leaves the old document and raises after retrying."""
        storage = JsonFileLedgerStorage(storage_settings)
        await storage.save_document(b"original")

        attempts = []

        def failing_replace(src, dst):
            attempts.append(src)
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", failing_replace)

        with pytest.raises(StorageWriteError) as exc_info:
            await storage.save_document(b"replacement")

        assert isinstance(exc_info.value.__cause__, OSError)
        assert len(attempts) == storage_settings.write_retry_attempts
        assert storage.path.read_bytes() == b"original"
        assert sorted(p.name for p in storage.path.parent.iterdir()) == ["budget_state.json"]

    @pytest.mark.asyncio
    async def test_retry_wait_does_not_block_event_loop(self, storage_settings, monkeypatch):
        """Test the wait between write attempts never calls the blocking time.sleep."""
        storage = JsonFileLedgerStorage(storage_settings)
        blocking_sleeps = []
        monkeypatch.setattr(time, "sleep", blocking_sleeps.append)

        def failing_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", failing_replace)

        with pytest.raises(StorageWriteError):
            await storage.save_document(b"{}")

        assert blocking_sleeps == []

    @pytest.mark.asyncio
    async def test_unreadable_document(self, storage_settings):
        """Test a path that cannot be read raises StorageReadError."""
        storage_settings.data_dir.mkdir(parents=True)
        storage_settings.state_path.mkdir()
        storage = JsonFileLedgerStorage(storage_settings)
        with pytest.raises(StorageReadError):
            await storage.load_document()


class TestInMemoryStorage:
    """Tests for InMemoryLedgerStorage."""

    @pytest.mark.asyncio
    async def test_round_trip(self):
        """Test saved bytes come back on load."""
        storage = InMemoryLedgerStorage()
        assert await storage.load_document() is None
        await storage.save_document(b"{}")
        assert await storage.load_document() == b"{}"
        assert storage.save_count == 1

    @pytest.mark.asyncio
    async def test_fail_writes(self):
        """Test write failures can be simulated."""
        storage = InMemoryLedgerStorage(initial=b"kept")
        storage.fail_writes = True
        with pytest.raises(StorageWriteError):
            await storage.save_document(b"lost")
        assert storage.document == b"kept"
