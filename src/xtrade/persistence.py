from __future__ import annotations

import fcntl
import json
import logging
import os
import tempfile
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Optional

import pydantic
from pydantic import BaseModel, Field, field_validator

from xtrade.errors import LockTimeoutError, PersistenceError
from xtrade.models import BOT_OPTIONAL_FIELDS, Bot, Listener
from xtrade.store import Store

logger = logging.getLogger("xtrade.persistence")

_LOCK_POLL_SECONDS = 0.05


def _non_blank(value: str) -> str:
    text = value.strip()
    if not text:
        raise ValueError("must not be blank")
    return text


class ListenerRecord(BaseModel):
    service: str = Field(min_length=1)
    secret: str = ""
    msg: str = ""

    @field_validator("service")
    @classmethod
    def service_not_blank(cls, value: str) -> str:
        return _non_blank(value)


class BotRecord(BaseModel):
    name: str = Field(min_length=1)
    exchange: str = Field(min_length=1)
    trading_fee: float = Field(default=0.0, ge=0, allow_inf_nan=False)
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    rest_endpoint: Optional[str] = None
    rpc_endpoint: Optional[str] = None
    webhook_secret: Optional[str] = None
    private_key: Optional[str] = None
    contract_address: Optional[str] = None
    listeners: dict[int, ListenerRecord] = Field(default_factory=dict)

    @field_validator("name", "exchange")
    @classmethod
    def text_not_blank(cls, value: str) -> str:
        return _non_blank(value)


class StateDocument(BaseModel):
    bots: dict[int, BotRecord] = Field(default_factory=dict)
    config: dict[str, Any] = Field(default_factory=dict)
    next_bot_id: int = Field(default=1, ge=1)
    next_listener_id: int = Field(default=1, ge=1)


def store_to_document(store: Store) -> dict[str, Any]:
    bots: dict[str, Any] = {}
    for bot in store.bots():
        record: dict[str, Any] = {
            "name": bot.name,
            "exchange": bot.exchange,
            "trading_fee": bot.trading_fee,
        }
        for key in BOT_OPTIONAL_FIELDS:
            record[key] = getattr(bot, key)
        record["listeners"] = {
            str(lid): {
                "service": bot.listeners[lid].service,
                "secret": bot.listeners[lid].secret,
                "msg": bot.listeners[lid].msg,
            }
            for lid in sorted(bot.listeners)
        }
        bots[str(bot.id)] = record
    return {
        "bots": bots,
        "config": store.config,
        "next_bot_id": store.next_bot_id,
        "next_listener_id": store.next_listener_id,
    }


def store_from_document(doc: StateDocument, *, config: dict[str, Any] | None = None) -> Store:
    bots: dict[int, Bot] = {}
    for bot_id, record in doc.bots.items():
        bot = Bot(
            id=bot_id,
            name=record.name,
            exchange=record.exchange,
            trading_fee=record.trading_fee,
        )
        for key in BOT_OPTIONAL_FIELDS:
            setattr(bot, key, getattr(record, key))
        bot.listeners = {
            lid: Listener(id=lid, bot_id=bot_id, service=lr.service, secret=lr.secret, msg=lr.msg)
            for lid, lr in record.listeners.items()
        }
        bots[bot_id] = bot
    return Store(
        bots=bots,
        next_bot_id=doc.next_bot_id,
        next_listener_id=doc.next_listener_id,
        config=doc.config if config is None else config,
    )


class StateFile:
    """
    JSON file holding the application state.

    A missing file is created with an empty state. A file that exists but
    cannot be read or parsed raises ``PersistenceError``; it is never reset.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def lock_path(self) -> Path:
        return self._path.with_name(self._path.name + ".lock")

    def load(self, *, config: dict[str, Any] | None = None) -> Store:
        if not self._path.exists():
            store = Store(config=config)
            logger.info("state_file_created", extra={"path": str(self._path)})
            self.save(store)
            return store

        try:
            raw = self._path.read_text(encoding="utf-8")
        except OSError as e:
            raise PersistenceError(f"failed to read state file {self._path}: {e}") from e
        try:
            data = json.loads(raw) if raw.strip() else {}
            doc = StateDocument.model_validate(data)
        except (json.JSONDecodeError, pydantic.ValidationError) as e:
            logger.error("state_file_invalid", extra={"path": str(self._path)})
            raise PersistenceError(f"failed to parse state file {self._path}: {e}") from e

        store = store_from_document(doc, config=config)
        logger.info("state_loaded", extra={"path": str(self._path)})
        return store

    def save(self, store: Store) -> None:
        payload = json.dumps(store_to_document(store), indent=2, ensure_ascii=False)
        directory = self._path.parent
        tmp_name = ""
        try:
            directory.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=directory,
                prefix=f".{self._path.name}.",
                suffix=".tmp",
                delete=False,
            ) as f:
                tmp_name = f.name
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self._path)
        except OSError as e:
            if tmp_name:
                Path(tmp_name).unlink(missing_ok=True)
            logger.error("state_save_failed", extra={"path": str(self._path)})
            raise PersistenceError(f"failed to save state file {self._path}: {e}") from e
        store.mark_clean()
        logger.info("state_saved", extra={"path": str(self._path)})

    @contextmanager
    def locked(self, *, timeout_seconds: float = 10.0) -> Iterator[None]:
        """Hold an exclusive lock on the sidecar ``<state>.lock`` file."""
        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            handle = open(self.lock_path, "a+", encoding="utf-8")
        except OSError as e:
            raise PersistenceError(f"failed to open lock file {self.lock_path}: {e}") from e

        deadline = time.monotonic() + max(0.0, timeout_seconds)
        try:
            while True:
                try:
                    fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() >= deadline:
                        logger.warning("state_lock_timeout", extra={"path": str(self.lock_path)})
                        raise LockTimeoutError(
                            f"could not lock {self.lock_path} within {timeout_seconds}s"
                        ) from None
                    time.sleep(_LOCK_POLL_SECONDS)
            try:
                yield
            finally:
                fcntl.flock(handle, fcntl.LOCK_UN)
        finally:
            handle.close()
