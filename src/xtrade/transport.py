from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, TypeVar

import pydantic

from xtrade.errors import ValidationError
from xtrade.models import BotView, ListenerView
from xtrade.schemas import (
    BotCreate,
    BotFilter,
    BotUpdate,
    ListenerCreate,
    ListenerFilter,
    ListenerUpdate,
)
from xtrade.store import Store

T = TypeVar("T")


class BotTransport(ABC):
    """
    The bot/listener CRUD contract shared by every access mode.

    Methods return views (or lists/counts of them) and raise ``XTradeError``
    subclasses on failure. Command handlers are written against this class
    only, so they behave the same offline, in-process, over REST or over IPC.
    """

    mode: str

    @abstractmethod
    def add_bot(self, payload: BotCreate) -> BotView:
        raise NotImplementedError

    @abstractmethod
    def get_bot(self, bot_id: int) -> BotView:
        raise NotImplementedError

    @abstractmethod
    def list_bots(self, flt: BotFilter | None = None) -> list[BotView]:
        raise NotImplementedError

    @abstractmethod
    def update_bot(self, bot_id: int, payload: BotUpdate) -> BotView:
        raise NotImplementedError

    @abstractmethod
    def delete_bot(self, bot_id: int) -> BotView:
        raise NotImplementedError

    @abstractmethod
    def clear_bots(self) -> int:
        raise NotImplementedError

    @abstractmethod
    def add_listener(self, bot_id: int, payload: ListenerCreate) -> ListenerView:
        raise NotImplementedError

    @abstractmethod
    def get_listener(self, bot_id: int, listener_id: int) -> ListenerView:
        raise NotImplementedError

    @abstractmethod
    def list_listeners(self, bot_id: int, flt: ListenerFilter | None = None) -> list[ListenerView]:
        raise NotImplementedError

    @abstractmethod
    def update_listener(
        self, bot_id: int, listener_id: int, payload: ListenerUpdate
    ) -> ListenerView:
        raise NotImplementedError

    @abstractmethod
    def delete_listener(self, bot_id: int, listener_id: int) -> ListenerView:
        raise NotImplementedError

    @abstractmethod
    def delete_listeners(self, bot_id: int, flt: ListenerFilter | None = None) -> int:
        raise NotImplementedError

    @abstractmethod
    def clear_listeners(self) -> int:
        raise NotImplementedError

    def close(self) -> None:
        return


class StoreBackedTransport(BotTransport):
    """A transport that applies each operation to a ``Store`` it can reach directly."""

    @abstractmethod
    def _read(self, fn: Callable[[Store], T]) -> T:
        raise NotImplementedError

    @abstractmethod
    def _write(self, fn: Callable[[Store], T]) -> T:
        raise NotImplementedError

    def add_bot(self, payload: BotCreate) -> BotView:
        return self._write(lambda s: s.add_bot(payload))

    def get_bot(self, bot_id: int) -> BotView:
        return self._read(lambda s: s.get_bot(bot_id))

    def list_bots(self, flt: BotFilter | None = None) -> list[BotView]:
        return self._read(lambda s: s.list_bots(flt))

    def update_bot(self, bot_id: int, payload: BotUpdate) -> BotView:
        return self._write(lambda s: s.update_bot(bot_id, payload))

    def delete_bot(self, bot_id: int) -> BotView:
        return self._write(lambda s: s.delete_bot(bot_id))

    def clear_bots(self) -> int:
        return self._write(lambda s: s.clear_bots())

    def add_listener(self, bot_id: int, payload: ListenerCreate) -> ListenerView:
        return self._write(lambda s: s.add_listener(bot_id, payload))

    def get_listener(self, bot_id: int, listener_id: int) -> ListenerView:
        return self._read(lambda s: s.get_listener(bot_id, listener_id))

    def list_listeners(self, bot_id: int, flt: ListenerFilter | None = None) -> list[ListenerView]:
        return self._read(lambda s: s.list_listeners(bot_id, flt))

    def update_listener(
        self, bot_id: int, listener_id: int, payload: ListenerUpdate
    ) -> ListenerView:
        return self._write(lambda s: s.update_listener(bot_id, listener_id, payload))

    def delete_listener(self, bot_id: int, listener_id: int) -> ListenerView:
        return self._write(lambda s: s.delete_listener(bot_id, listener_id))

    def delete_listeners(self, bot_id: int, flt: ListenerFilter | None = None) -> int:
        return self._write(lambda s: s.delete_listeners(bot_id, flt))

    def clear_listeners(self) -> int:
        return self._write(lambda s: s.clear_listeners())


def encode_result(result: Any) -> Any:
    if isinstance(result, (BotView, ListenerView)):
        return result.to_dict()
    if isinstance(result, list):
        return [encode_result(item) for item in result]
    return result


def _int_arg(args: dict[str, Any], key: str) -> int:
    try:
        return int(args[key])
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError(f"{key} must be an integer") from e


def _model_arg(args: dict[str, Any], key: str, model: Any, *, required: bool) -> Any:
    raw = args.get(key)
    if raw is None:
        if required:
            raise ValidationError(f"{key} is required")
        return None
    try:
        return model.model_validate(raw)
    except pydantic.ValidationError as e:
        raise ValidationError(f"invalid {key}: {e}") from e


_Handler = Callable[[BotTransport, dict[str, Any]], Any]

OPERATIONS: dict[str, _Handler] = {
    "add_bot": lambda t, a: t.add_bot(_model_arg(a, "payload", BotCreate, required=True)),
    "get_bot": lambda t, a: t.get_bot(_int_arg(a, "bot_id")),
    "list_bots": lambda t, a: t.list_bots(_model_arg(a, "filter", BotFilter, required=False)),
    "update_bot": lambda t, a: t.update_bot(
        _int_arg(a, "bot_id"), _model_arg(a, "payload", BotUpdate, required=True)
    ),
    "delete_bot": lambda t, a: t.delete_bot(_int_arg(a, "bot_id")),
    "clear_bots": lambda t, a: t.clear_bots(),
    "add_listener": lambda t, a: t.add_listener(
        _int_arg(a, "bot_id"), _model_arg(a, "payload", ListenerCreate, required=True)
    ),
    "get_listener": lambda t, a: t.get_listener(
        _int_arg(a, "bot_id"), _int_arg(a, "listener_id")
    ),
    "list_listeners": lambda t, a: t.list_listeners(
        _int_arg(a, "bot_id"), _model_arg(a, "filter", ListenerFilter, required=False)
    ),
    "update_listener": lambda t, a: t.update_listener(
        _int_arg(a, "bot_id"),
        _int_arg(a, "listener_id"),
        _model_arg(a, "payload", ListenerUpdate, required=True),
    ),
    "delete_listener": lambda t, a: t.delete_listener(
        _int_arg(a, "bot_id"), _int_arg(a, "listener_id")
    ),
    "delete_listeners": lambda t, a: t.delete_listeners(
        _int_arg(a, "bot_id"), _model_arg(a, "filter", ListenerFilter, required=False)
    ),
    "clear_listeners": lambda t, a: t.clear_listeners(),
}


def dispatch(transport: BotTransport, op: str, args: dict[str, Any] | None = None) -> Any:
    """Run the operation named ``op`` and return a JSON-ready result."""
    handler = OPERATIONS.get(op)
    if handler is None:
        raise ValidationError(f"unknown operation: {op}")
    return encode_result(handler(transport, dict(args or {})))
