from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any, TypeVar

from xtrade.errors import LockTimeoutError, PersistenceError
from xtrade.persistence import StateFile
from xtrade.store import Store
from xtrade.transport import StoreBackedTransport

logger = logging.getLogger("xtrade.online")

T = TypeVar("T")

_DEFAULT_LOCK_TIMEOUT_SECONDS = 5.0


class ReadWriteLock:
    """
    Many readers or one writer, with a bounded wait on every acquire.

    A waiting writer blocks new readers, so a steady stream of reads cannot
    starve writes. The lock is not reentrant.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    def acquire_read(self, *, timeout_seconds: float) -> None:
        with self._cond:
            ok = self._cond.wait_for(
                lambda: not self._writer and self._waiting_writers == 0,
                timeout=timeout_seconds,
            )
            if not ok:
                logger.warning("read_lock_timeout")
                raise LockTimeoutError(f"read lock not acquired within {timeout_seconds}s")
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self, *, timeout_seconds: float) -> None:
        with self._cond:
            self._waiting_writers += 1
            try:
                ok = self._cond.wait_for(
                    lambda: not self._writer and self._readers == 0,
                    timeout=timeout_seconds,
                )
            finally:
                self._waiting_writers -= 1
            if not ok:
                # Readers held back by this writer may go ahead now.
                self._cond.notify_all()
                logger.warning("write_lock_timeout")
                raise LockTimeoutError(f"write lock not acquired within {timeout_seconds}s")
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def reading(self, *, timeout_seconds: float) -> Iterator[None]:
        self.acquire_read(timeout_seconds=timeout_seconds)
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def writing(self, *, timeout_seconds: float) -> Iterator[None]:
        self.acquire_write(timeout_seconds=timeout_seconds)
        try:
            yield
        finally:
            self.release_write()


class SharedStore:
    """
    The server's single ``Store`` behind a readers-writer lock.

    Mutations are written through to the state file before ``write`` returns.
    If the save fails the in-memory store is rolled back to its state before
    the mutation and ``PersistenceError`` is raised, so memory and disk never
    disagree silently.
    """

    def __init__(
        self,
        *,
        store: Store,
        state_file: StateFile | None = None,
        lock_timeout_seconds: float = _DEFAULT_LOCK_TIMEOUT_SECONDS,
    ) -> None:
        self._store = store
        self._state_file = state_file
        self._lock = ReadWriteLock()
        self._lock_timeout_seconds = lock_timeout_seconds

    @classmethod
    def open(
        cls,
        state_file: StateFile,
        *,
        config: dict[str, Any] | None = None,
        lock_timeout_seconds: float = _DEFAULT_LOCK_TIMEOUT_SECONDS,
    ) -> SharedStore:
        with state_file.locked(timeout_seconds=lock_timeout_seconds):
            store = state_file.load(config=config)
        logger.info("shared_store_opened", extra={"path": str(state_file.path)})
        return cls(store=store, state_file=state_file, lock_timeout_seconds=lock_timeout_seconds)

    @property
    def state_file(self) -> StateFile | None:
        return self._state_file

    def read(self, fn: Callable[[Store], T]) -> T:
        with self._lock.reading(timeout_seconds=self._lock_timeout_seconds):
            return fn(self._store)

    def write(self, fn: Callable[[Store], T]) -> T:
        with self._lock.writing(timeout_seconds=self._lock_timeout_seconds):
            snapshot = self._store.snapshot()
            try:
                result = fn(self._store)
                if self._store.dirty:
                    self._persist()
            except Exception:
                self._store.restore(snapshot)
                raise
            return result

    def save(self) -> None:
        with self._lock.writing(timeout_seconds=self._lock_timeout_seconds):
            self._persist()

    def _persist(self) -> None:
        if self._state_file is None:
            self._store.mark_clean()
            return
        try:
            with self._state_file.locked(timeout_seconds=self._lock_timeout_seconds):
                self._state_file.save(self._store)
        except PersistenceError:
            logger.error("shared_store_save_failed", extra={"path": str(self._state_file.path)})
            raise


class LocalClient(StoreBackedTransport):
    """In-process transport over a server-held ``SharedStore``."""

    mode = "local"

    def __init__(self, shared: SharedStore) -> None:
        self._shared = shared

    def _read(self, fn: Callable[[Store], T]) -> T:
        return self._shared.read(fn)

    def _write(self, fn: Callable[[Store], T]) -> T:
        return self._shared.write(fn)
