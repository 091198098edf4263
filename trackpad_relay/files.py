"""
Ephemeral file exchange store.

Uploads are written to disk under a fresh id and indexed in memory. Records
expire after a TTL and are removed by a periodic reaper. A record that is
being downloaded is kept past its TTL until the download finishes, but never
longer than TTL + grace.
"""

import asyncio
import logging
import os
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterable, BinaryIO, Callable, Dict, Iterator, List, Optional, Tuple

from .exceptions import NotFound, StorageError, UploadTooLarge


logger = logging.getLogger(__name__)


DEFAULT_TTL = 3600.0
DEFAULT_GRACE = 600.0
PARTIAL_SUFFIX = ".part"


@dataclass
class FileRecord:
    id: str
    filename: str
    size: int
    path: Path
    uploaded_at: float
    in_flight: int = 0
    announced: bool = False

    def info(self) -> dict:
        return {
            "id": self.id,
            "filename": self.filename,
            "size": self.size,
            "uploaded_at": int(self.uploaded_at),
        }


class FileStore:
    """Time-bounded file storage keyed by upload id."""

    def __init__(
        self,
        upload_dir: Path,
        ttl: float = DEFAULT_TTL,
        grace: float = DEFAULT_GRACE,
        max_size: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.upload_dir = Path(upload_dir)
        self.ttl = ttl
        self.grace = grace
        self.max_size = max_size
        self._clock = clock
        self._records: Dict[str, FileRecord] = {}
        self._lock = threading.Lock()

        self.upload_dir.mkdir(parents=True, exist_ok=True)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, file_id: str) -> bool:
        with self._lock:
            record = self._records.get(file_id)
            return record is not None and not self._expired(record, self._clock())

    async def store(self, filename: str, chunks: AsyncIterable[bytes]) -> FileRecord:
        """
        Persist an upload.

        The payload goes to a temporary file that is renamed into place only
        after the last chunk is written. Nothing is indexed on failure.

        Args:
            filename: Client supplied file name (kept for the download header).
            chunks: Async iterable of payload chunks.

        Returns:
            The new FileRecord.

        Raises:
            UploadTooLarge: The payload exceeded ``max_size``.
            StorageError: The payload could not be written.
        """
        file_id = str(uuid.uuid4())
        final_path = self.upload_dir / file_id
        partial_path = self.upload_dir / (file_id + PARTIAL_SUFFIX)
        size = 0

        try:
            with open(partial_path, "wb") as f:
                async for chunk in chunks:
                    size += len(chunk)
                    if self.max_size is not None and size > self.max_size:
                        raise UploadTooLarge(f"upload exceeds {self.max_size} bytes")
                    f.write(chunk)
            os.replace(partial_path, final_path)
        except OSError as e:
            _unlink(partial_path)
            raise StorageError(f"failed to store {filename!r}: {e}") from e
        except BaseException:
            _unlink(partial_path)
            raise

        record = FileRecord(
            id=file_id,
            filename=os.path.basename(filename) or "unnamed",
            size=size,
            path=final_path,
            uploaded_at=self._clock(),
        )
        with self._lock:
            self._records[file_id] = record

        logger.info("Stored %s (%d bytes) as %s", record.filename, size, file_id)
        return record

    def list(self) -> List[dict]:
        """Live records, newest first."""
        now = self._clock()
        with self._lock:
            records = [r for r in self._records.values() if not self._expired(r, now)]
        records.sort(key=lambda r: (-r.uploaded_at, r.id))
        return [r.info() for r in records]

    def get(self, file_id: str) -> FileRecord:
        with self._lock:
            record = self._records.get(file_id)
            if record is None or self._expired(record, self._clock()):
                raise NotFound(file_id)
            return record

    @contextmanager
    def fetch(self, file_id: str) -> Iterator[Tuple[FileRecord, BinaryIO]]:
        """
        Open a stored payload for reading.

        The record counts as in flight for the whole ``with`` block, which
        keeps the reaper from deleting it until the grace ceiling.

        Raises:
            NotFound: Unknown or expired id.
        """
        with self._lock:
            record = self._records.get(file_id)
            if record is None or self._expired(record, self._clock()):
                raise NotFound(file_id)
            record.in_flight += 1

        try:
            try:
                f = open(record.path, "rb")
            except FileNotFoundError as e:
                raise NotFound(file_id) from e
            with f:
                yield record, f
        finally:
            self._finish_download(record)

    def reap(self, now: Optional[float] = None) -> List[str]:
        """
        Remove expired records.

        Records with downloads in flight are skipped until TTL + grace.

        Returns:
            Ids of the removed records.
        """
        if now is None:
            now = self._clock()

        removed: List[FileRecord] = []
        with self._lock:
            for record in list(self._records.values()):
                age = now - record.uploaded_at
                if age < self.ttl:
                    continue
                if record.in_flight and age < self.ttl + self.grace:
                    logger.debug("Deferring removal of %s, %d download(s) in flight",
                                 record.id, record.in_flight)
                    continue
                del self._records[record.id]
                removed.append(record)

        for record in removed:
            _unlink(record.path)
            logger.info("Expired %s (%s)", record.id, record.filename)

        return [r.id for r in removed]

    async def reap_forever(self, interval: float = 60.0) -> None:
        """Run reap() every ``interval`` seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            self.reap()

    def purge_orphans(self) -> int:
        """
        Delete uploads in the upload directory that are not indexed.

        Only files named like an upload id (or its partial file) are touched.
        """
        with self._lock:
            known = {r.path.name for r in self._records.values()}

        count = 0
        for path in self.upload_dir.iterdir():
            if path.is_file() and path.name not in known and _is_upload_name(path.name):
                _unlink(path)
                count += 1

        if count:
            logger.info("Removed %d leftover file(s) from %s", count, self.upload_dir)
        return count

    def _expired(self, record: FileRecord, now: float) -> bool:
        return now - record.uploaded_at >= self.ttl

    def _finish_download(self, record: FileRecord) -> None:
        with self._lock:
            record.in_flight -= 1
            # reaped-late records are still indexed; drop them once idle
            if record.in_flight or not self._expired(record, self._clock()):
                return
            if self._records.get(record.id) is not record:
                return
            del self._records[record.id]

        _unlink(record.path)
        logger.info("Expired %s (%s) after download", record.id, record.filename)


def _is_upload_name(name: str) -> bool:
    if name.endswith(PARTIAL_SUFFIX):
        name = name[: -len(PARTIAL_SUFFIX)]
    try:
        return str(uuid.UUID(name)) == name
    except ValueError:
        return False


def _unlink(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Failed to remove %s: %s", path, e)
