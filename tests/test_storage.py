"""Tests for the local storage adapter."""
import threading

import pytest

from optimizer.storage import LocalStorageAdapter, get_storage_adapter


async def test_save_get_delete(storage):
    url = await storage.save("optimized/abc/balanced/primary.webp", b"payload")

    assert url == "optimized/abc/balanced/primary.webp"
    assert await storage.get(url) == b"payload"
    assert await storage.delete(url) is True
    assert await storage.delete(url) is False


async def test_missing_key_raises_os_error(storage):
    with pytest.raises(FileNotFoundError):
        await storage.get("nope.png")


async def test_leading_slash_stays_inside_root(storage):
    await storage.save("/nested/file.bin", b"x")
    assert await storage.get("nested/file.bin") == b"x"


async def test_traversal_is_rejected(storage):
    with pytest.raises(PermissionError):
        await storage.save("../escape.bin", b"x")


def test_factory_returns_local_adapter(tmp_path):
    adapter = get_storage_adapter(str(tmp_path / "store"))
    assert isinstance(adapter, LocalStorageAdapter)
    assert (tmp_path / "store").is_dir()


async def test_file_io_runs_off_the_event_loop_thread(tmp_path):
    threads = []

    class RecordingStorage(LocalStorageAdapter):
        def _write(self, path, data):
            threads.append(threading.get_ident())
            super()._write(path, data)

    await RecordingStorage(str(tmp_path)).save("a/b.bin", b"x")

    assert threads and threads[0] != threading.get_ident()
