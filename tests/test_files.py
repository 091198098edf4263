#!/usr/bin/env python3
"""
Tests for the ephemeral file store: storage, listing, TTL and the reaper.
"""
import asyncio
import uuid

import pytest

from trackpad_relay.exceptions import NotFound, StorageError, UploadTooLarge
from trackpad_relay.files import FileStore


async def chunks(*parts: bytes):
    for part in parts:
        yield part


async def test_store_and_fetch(store) -> None:
    record = await store.store("notes.txt", chunks(b"hello ", b"world!"))

    assert record.size == 12
    assert record.filename == "notes.txt"
    with store.fetch(record.id) as (fetched, f):
        assert fetched is record
        assert f.read() == b"hello world!"


async def test_store_strips_directories_from_filename(store) -> None:
    record = await store.store("../../etc/passwd", chunks(b"x"))
    assert record.filename == "passwd"
    assert record.path.parent == store.upload_dir


async def test_list_is_newest_first(store, clock) -> None:
    first = await store.store("a.txt", chunks(b"a"))
    clock.advance(5)
    second = await store.store("b.txt", chunks(b"bb"))

    listing = store.list()
    assert [f["id"] for f in listing] == [second.id, first.id]
    assert listing[0] == {
        "id": second.id,
        "filename": "b.txt",
        "size": 2,
        "uploaded_at": int(clock.now),
    }


async def test_ids_are_unique(store) -> None:
    records = [await store.store("same.txt", chunks(b"x")) for _ in range(5)]
    assert len({r.id for r in records}) == 5


async def test_fetch_unknown_id(store) -> None:
    with pytest.raises(NotFound):
        with store.fetch("missing"):
            pass


async def test_file_lifecycle_around_ttl(store, clock) -> None:
    record = await store.store("notes.txt", chunks(b"x" * 12))

    clock.advance(3599)
    with store.fetch(record.id) as (_, f):
        assert len(f.read()) == 12

    clock.advance(1)
    with pytest.raises(NotFound):
        with store.fetch(record.id):
            pass
    assert store.list() == []

    assert store.reap() == [record.id]
    assert not record.path.exists()
    assert len(store) == 0


async def test_reap_keeps_fresh_records(store, clock) -> None:
    old = await store.store("old.txt", chunks(b"o"))
    clock.advance(3000)
    fresh = await store.store("fresh.txt", chunks(b"f"))
    clock.advance(700)

    assert store.reap() == [old.id]
    assert fresh.id in store


async def test_download_in_flight_survives_reap(store, clock) -> None:
    record = await store.store("big.bin", chunks(b"a" * 1000))
    clock.advance(3599)

    with store.fetch(record.id) as (_, f):
        first = f.read(500)
        clock.advance(120)
        assert store.reap() == []
        rest = f.read()

    assert first + rest == b"a" * 1000
    # finished download on an expired record removes it right away
    assert len(store) == 0
    assert not record.path.exists()


async def test_grace_ceiling_forces_removal(store, clock) -> None:
    record = await store.store("stalled.bin", chunks(b"data"))
    clock.advance(3599)

    with store.fetch(record.id) as (_, f):
        clock.advance(3600 + 600)
        assert store.reap() == [record.id]
        # the open handle still reads on POSIX
        assert f.read() == b"data"

    assert len(store) == 0


async def test_upload_too_large_leaves_nothing(tmp_path, clock) -> None:
    store = FileStore(tmp_path, max_size=10, clock=clock)

    with pytest.raises(UploadTooLarge):
        await store.store("big.bin", chunks(b"12345", b"678901"))

    assert len(store) == 0
    assert list(tmp_path.iterdir()) == []


async def test_write_failure_rolls_back(store) -> None:
    async def broken():
        yield b"partial"
        raise OSError("disk full")

    with pytest.raises(StorageError):
        await store.store("broken.bin", broken())

    assert store.list() == []
    assert list(store.upload_dir.iterdir()) == []


async def test_cancelled_upload_rolls_back(store) -> None:
    async def aborted():
        yield b"partial"
        raise asyncio.CancelledError()

    with pytest.raises(asyncio.CancelledError):
        await store.store("aborted.bin", aborted())

    assert list(store.upload_dir.iterdir()) == []


async def test_purge_orphans(store) -> None:
    kept = await store.store("kept.txt", chunks(b"k"))
    stale = str(uuid.uuid4())
    (store.upload_dir / stale).write_bytes(b"old run")
    (store.upload_dir / (stale + ".part")).write_bytes(b"half")
    (store.upload_dir / "README").write_bytes(b"not ours")

    assert store.purge_orphans() == 2
    assert sorted(p.name for p in store.upload_dir.iterdir()) == sorted([kept.id, "README"])


async def test_reap_forever_runs_periodically(store, clock) -> None:
    record = await store.store("a.txt", chunks(b"a"))
    clock.advance(4000)

    task = asyncio.create_task(store.reap_forever(0.01))
    try:
        for _ in range(100):
            if len(store) == 0:
                break
            await asyncio.sleep(0.01)
    finally:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    assert record.id not in store
    assert len(store) == 0
