"""Append-only file Progress Store.

Persisted format: ASCII, one decimal task ID per line, newline-terminated.
A record is acknowledged only after it has been flushed and fsync'd. A crash
mid-append can at worst leave one unterminated final line; it is never
trusted (a torn "1" may be the front of "12"). The owner cuts it off on
open; read-only views just skip it.

The owner holds an OS-level lock on ``<path>.lock`` while open, so exactly
one scheduler writes a given log. The kernel drops the lock when the owning
process dies, so a crashed run never blocks its own resume.
"""

import logging
import os
import threading
from pathlib import Path

from filelock import FileLock, Timeout
from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from relay.errors import ProgressStoreError, StoreLockedError
from relay.models.task import TaskID
from relay.store.base import ProgressStore

logger = logging.getLogger(__name__)


class FileProgressStore(ProgressStore):
    """Durable completion log backed by a single append-only text file."""

    def __init__(
        self,
        path: str | os.PathLike,
        write_retries: int = 3,
        retry_delay: float = 0.05,
        lock: bool = True,
    ):
        """
        Args:
            path: Log file location. Parent directories are created.
            write_retries: Extra attempts for a failed append before giving up.
            retry_delay: Base back-off in seconds, doubled per retry.
            lock: Take the single-owner lock. Readers that only inspect a log
                  (e.g. status tooling) pass False and get a read-only view
                  that never modifies the file.
        """
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self.write_retries = write_retries
        self.retry_delay = retry_delay

        self._mutex = threading.Lock()
        self._done: set[TaskID] = set()
        self._size = 0
        self._lock: FileLock | None = None
        self._closed = False

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ProgressStoreError(f"cannot create directory for {self.path}: {exc}") from exc

        if lock:
            self._acquire_lock()
        try:
            self._load()
        except ProgressStoreError:
            self._release_lock()
            raise

    @property
    def read_only(self) -> bool:
        return self._lock is None

    # ── Contract ──────────────────────────────────────────────────────

    def is_complete(self, task_id: TaskID) -> bool:
        with self._mutex:
            self._ensure_open()
            return task_id in self._done

    def mark_complete(self, task_id: TaskID) -> bool:
        if task_id < 0:
            raise ValueError(f"task id must be non-negative, got {task_id}")
        with self._mutex:
            self._ensure_writable()
            if task_id in self._done:
                return False
            self._append(task_id)
            self._done.add(task_id)
            return True

    def completed(self) -> frozenset[TaskID]:
        with self._mutex:
            self._ensure_open()
            return frozenset(self._done)

    def reset(self) -> None:
        with self._mutex:
            self._ensure_writable()
            try:
                with open(self.path, "wb") as fh:
                    fh.flush()
                    os.fsync(fh.fileno())
            except OSError as exc:
                raise ProgressStoreError(f"cannot reset {self.path}: {exc}") from exc
            self._done.clear()
            self._size = 0
        logger.info("Progress log %s reset", self.path)

    def refresh(self) -> None:
        """Re-read the log from disk. Read-only views use this to see the owner's new records."""
        with self._mutex:
            self._ensure_open()
            self._load()

    def close(self) -> None:
        with self._mutex:
            if self._closed:
                return
            self._closed = True
        self._release_lock()

    # ── Reading ───────────────────────────────────────────────────────

    def _load(self) -> None:
        try:
            data = self.path.read_bytes()
        except FileNotFoundError:
            self._done = set()
            self._size = 0
            return
        except OSError as exc:
            raise ProgressStoreError(f"cannot read progress log {self.path}: {exc}") from exc

        *lines, torn = data.split(b"\n")
        done: set[TaskID] = set()
        for lineno, raw in enumerate(lines, start=1):
            line = raw.strip()
            if not line:
                continue
            if not line.isdigit():
                raise ProgressStoreError(
                    f"{self.path}:{lineno}: unreadable completion record {raw!r}"
                )
            done.add(int(line))

        size = len(data)
        if torn:
            size -= len(torn)
            if self.read_only:
                # May be the owner's append still in progress; skip it, never cut it.
                logger.debug("Skipping unterminated final record %r in %s", torn, self.path)
            else:
                logger.warning(
                    "Discarding unterminated final record %r in %s (interrupted write)",
                    torn, self.path,
                )
                try:
                    os.truncate(self.path, size)
                except OSError as exc:
                    raise ProgressStoreError(f"cannot repair torn record in {self.path}: {exc}") from exc

        self._done = done
        self._size = size
        logger.debug("Loaded %d completion records from %s", len(done), self.path)

    # ── Writing ───────────────────────────────────────────────────────

    def _append(self, task_id: TaskID) -> None:
        """Append one record with bounded retries. Caller holds the mutex."""
        record = f"{task_id}\n".encode("ascii")
        retrying = Retrying(
            stop=stop_after_attempt(self.write_retries + 1),
            wait=wait_exponential(multiplier=self.retry_delay, min=0),
            retry=retry_if_exception_type(OSError),
        )
        try:
            for attempt in retrying:
                with attempt:
                    try:
                        self._write_record(record)
                    except OSError as exc:
                        logger.warning(
                            "Append of task %d to %s failed (attempt %d/%d): %s",
                            task_id, self.path, attempt.retry_state.attempt_number,
                            self.write_retries + 1, exc,
                        )
                        self._truncate_partial()
                        raise
        except RetryError as exc:
            last_error = exc.last_attempt.exception()
            raise ProgressStoreError(
                f"could not record completion of task {task_id} in {self.path}: {last_error}"
            ) from last_error
        self._size += len(record)

    def _write_record(self, record: bytes) -> None:
        with open(self.path, "ab") as fh:
            fh.write(record)
            fh.flush()
            os.fsync(fh.fileno())

    def _truncate_partial(self) -> None:
        """Cut any bytes a failed append left past the last good record."""
        try:
            if self.path.exists() and self.path.stat().st_size > self._size:
                os.truncate(self.path, self._size)
        except OSError as exc:
            logger.warning("Could not trim partial append in %s: %s", self.path, exc)

    # ── Ownership ─────────────────────────────────────────────────────

    def _acquire_lock(self) -> None:
        lock = FileLock(str(self.lock_path), timeout=0)
        try:
            lock.acquire()
        except Timeout as exc:
            raise StoreLockedError(str(self.path), str(self.lock_path)) from exc
        except OSError as exc:
            raise ProgressStoreError(f"cannot create lock {self.lock_path}: {exc}") from exc
        self._lock = lock

    def _release_lock(self) -> None:
        if self._lock is None:
            return
        self._lock.release()

    def _ensure_open(self) -> None:
        if self._closed:
            raise ProgressStoreError(f"progress store {self.path} is closed")

    def _ensure_writable(self) -> None:
        self._ensure_open()
        if self.read_only:
            raise ProgressStoreError(f"progress store {self.path} is open read-only")

    def __repr__(self) -> str:
        return f"FileProgressStore(path={str(self.path)!r}, completed={len(self._done)})"
