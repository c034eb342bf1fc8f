from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar

from xtrade.persistence import StateFile
from xtrade.store import Store
from xtrade.transport import StoreBackedTransport

T = TypeVar("T")

_DEFAULT_LOCK_TIMEOUT_SECONDS = 10.0


class OfflineClient(StoreBackedTransport):
    """
    Runs each operation against a private snapshot of the state file.

    Every call holds the state file lock for the whole load, apply, save
    cycle, so two processes working on the same file cannot overwrite each
    other's changes.
    """

    mode = "offline"

    def __init__(
        self,
        *,
        state_file: StateFile,
        config: dict[str, Any] | None = None,
        lock_timeout_seconds: float = _DEFAULT_LOCK_TIMEOUT_SECONDS,
    ) -> None:
        self._state_file = state_file
        self._config = config
        self._lock_timeout_seconds = lock_timeout_seconds

    @property
    def state_file(self) -> StateFile:
        return self._state_file

    def _read(self, fn: Callable[[Store], T]) -> T:
        with self._state_file.locked(timeout_seconds=self._lock_timeout_seconds):
            store = self._state_file.load(config=self._config)
            return fn(store)

    def _write(self, fn: Callable[[Store], T]) -> T:
        with self._state_file.locked(timeout_seconds=self._lock_timeout_seconds):
            store = self._state_file.load(config=self._config)
            result = fn(store)
            if store.dirty:
                self._state_file.save(store)
            return result
