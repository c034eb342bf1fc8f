from __future__ import annotations

import copy
import logging
import math
from dataclasses import dataclass
from typing import Any, Optional

from xtrade.errors import ConflictError, NotFoundError, ValidationError
from xtrade.models import (
    BOT_OPTIONAL_FIELDS,
    Bot,
    BotView,
    Listener,
    ListenerView,
    default_listener_message,
)
from xtrade.schemas import (
    BotCreate,
    BotFilter,
    BotUpdate,
    ListenerCreate,
    ListenerFilter,
    ListenerUpdate,
)

logger = logging.getLogger("xtrade.store")


@dataclass(frozen=True)
class StoreSnapshot:
    bots: dict[int, Bot]
    next_bot_id: int
    next_listener_id: int
    dirty: bool


def _require_text(value: Optional[str], field_name: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{field_name} cannot be empty")
    return text


def _check_fee(value: float) -> float:
    fee = float(value)
    if not math.isfinite(fee) or fee < 0:
        raise ValidationError("trading_fee must be a finite number >= 0")
    return fee


def _optional_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    text = value.strip()
    return text or None


def _contains(haystack: str, needle: Optional[str]) -> bool:
    if not needle:
        return True
    return needle.strip().lower() in haystack.lower()


class Store:
    """
    In-memory catalog of bots and their listeners.

    Every read and mutation goes through this class. Ids come from two
    monotonic counters that are never rewound, so a deleted id is never
    handed out again. Successful mutations set ``dirty`` until the
    persistence layer writes the store out and calls ``mark_clean``.
    """

    def __init__(
        self,
        *,
        bots: dict[int, Bot] | None = None,
        next_bot_id: int = 1,
        next_listener_id: int = 1,
        config: dict[str, Any] | None = None,
    ) -> None:
        self._bots: dict[int, Bot] = dict(bots or {})
        highest_bot = max(self._bots, default=0)
        highest_listener = max(
            (lid for bot in self._bots.values() for lid in bot.listeners),
            default=0,
        )
        self._next_bot_id = max(int(next_bot_id), highest_bot + 1, 1)
        self._next_listener_id = max(int(next_listener_id), highest_listener + 1, 1)
        self.config: dict[str, Any] = dict(config or {})
        self._dirty = False

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def next_bot_id(self) -> int:
        return self._next_bot_id

    @property
    def next_listener_id(self) -> int:
        return self._next_listener_id

    def mark_clean(self) -> None:
        self._dirty = False

    def bots(self) -> list[Bot]:
        return [self._bots[k] for k in sorted(self._bots)]

    def snapshot(self) -> StoreSnapshot:
        return StoreSnapshot(
            bots=copy.deepcopy(self._bots),
            next_bot_id=self._next_bot_id,
            next_listener_id=self._next_listener_id,
            dirty=self._dirty,
        )

    def restore(self, snapshot: StoreSnapshot) -> None:
        self._bots = copy.deepcopy(snapshot.bots)
        self._next_bot_id = snapshot.next_bot_id
        self._next_listener_id = snapshot.next_listener_id
        self._dirty = snapshot.dirty

    # Bots

    def add_bot(self, payload: BotCreate) -> BotView:
        name = _require_text(payload.name, "name")
        exchange = _require_text(payload.exchange, "exchange")
        fee = _check_fee(payload.trading_fee)

        bot_id = self._next_bot_id
        if bot_id in self._bots:
            raise ConflictError(f"bot id {bot_id} already exists")
        bot = Bot(id=bot_id, name=name, exchange=exchange, trading_fee=fee)
        for key in BOT_OPTIONAL_FIELDS:
            setattr(bot, key, _optional_text(getattr(payload, key)))

        self._bots[bot_id] = bot
        self._next_bot_id += 1
        self._dirty = True
        logger.info("bot_added", extra={"bot_id": bot_id})
        return BotView.of(bot)

    def get_bot(self, bot_id: int) -> BotView:
        return BotView.of(self._bot(bot_id))

    def list_bots(self, flt: BotFilter | None = None) -> list[BotView]:
        flt = flt or BotFilter()
        return [
            BotView.of(bot)
            for bot in self.bots()
            if _contains(bot.name, flt.name) and _contains(bot.exchange, flt.exchange)
        ]

    def update_bot(self, bot_id: int, payload: BotUpdate) -> BotView:
        bot = self._bot(bot_id)

        # Validate everything before touching the record.
        name = bot.name if payload.name is None else _require_text(payload.name, "name")
        exchange = (
            bot.exchange
            if payload.exchange is None
            else _require_text(payload.exchange, "exchange")
        )
        fee = bot.trading_fee if payload.trading_fee is None else _check_fee(payload.trading_fee)

        bot.name = name
        bot.exchange = exchange
        bot.trading_fee = fee
        for key in BOT_OPTIONAL_FIELDS:
            value = getattr(payload, key)
            if value is not None:
                setattr(bot, key, _optional_text(value))
        self._dirty = True
        logger.info("bot_updated", extra={"bot_id": bot_id})
        return BotView.of(bot)

    def delete_bot(self, bot_id: int) -> BotView:
        bot = self._bot(bot_id)
        del self._bots[bot.id]
        self._dirty = True
        logger.info("bot_deleted", extra={"bot_id": bot_id})
        return BotView.of(bot)

    def clear_bots(self) -> int:
        count = len(self._bots)
        self._bots.clear()
        self._dirty = True
        logger.info("bots_cleared", extra={"count": count})
        return count

    # Listeners

    def add_listener(self, bot_id: int, payload: ListenerCreate) -> ListenerView:
        bot = self._bot(bot_id)
        service = _require_text(payload.service, "service")

        listener_id = self._next_listener_id
        if listener_id in bot.listeners:
            raise ConflictError(f"listener id {listener_id} already exists in bot {bot_id}")
        msg = payload.msg if payload.msg else default_listener_message(service, bot.id)
        listener = Listener(
            id=listener_id,
            bot_id=bot.id,
            service=service,
            secret=payload.secret or "",
            msg=msg,
        )
        bot.listeners[listener_id] = listener
        self._next_listener_id += 1
        self._dirty = True
        logger.info("listener_added", extra={"bot_id": bot_id, "listener_id": listener_id})
        return ListenerView.of(listener)

    def get_listener(self, bot_id: int, listener_id: int) -> ListenerView:
        return ListenerView.of(self._listener(bot_id, listener_id))

    def list_listeners(
        self, bot_id: int, flt: ListenerFilter | None = None
    ) -> list[ListenerView]:
        bot = self._bot(bot_id)
        flt = flt or ListenerFilter()
        return [
            ListenerView.of(bot.listeners[k])
            for k in sorted(bot.listeners)
            if _contains(bot.listeners[k].service, flt.service)
        ]

    def update_listener(
        self, bot_id: int, listener_id: int, payload: ListenerUpdate
    ) -> ListenerView:
        listener = self._listener(bot_id, listener_id)
        service = (
            listener.service
            if payload.service is None
            else _require_text(payload.service, "service")
        )

        listener.service = service
        if payload.secret is not None:
            listener.secret = payload.secret
        if payload.msg is not None:
            listener.msg = payload.msg
        self._dirty = True
        logger.info("listener_updated", extra={"bot_id": bot_id, "listener_id": listener_id})
        return ListenerView.of(listener)

    def delete_listener(self, bot_id: int, listener_id: int) -> ListenerView:
        listener = self._listener(bot_id, listener_id)
        del self._bots[bot_id].listeners[listener_id]
        self._dirty = True
        logger.info("listener_deleted", extra={"bot_id": bot_id, "listener_id": listener_id})
        return ListenerView.of(listener)

    def delete_listeners(self, bot_id: int, flt: ListenerFilter | None = None) -> int:
        bot = self._bot(bot_id)
        flt = flt or ListenerFilter()
        doomed = [lid for lid, item in bot.listeners.items() if _contains(item.service, flt.service)]
        for lid in doomed:
            del bot.listeners[lid]
        if doomed:
            self._dirty = True
            logger.info("listeners_deleted", extra={"bot_id": bot_id, "count": len(doomed)})
        return len(doomed)

    def clear_listeners(self) -> int:
        count = 0
        for bot in self._bots.values():
            count += len(bot.listeners)
            bot.listeners.clear()
        self._dirty = True
        logger.info("listeners_cleared", extra={"count": count})
        return count

    def _bot(self, bot_id: int) -> Bot:
        bot = self._bots.get(int(bot_id))
        if bot is None:
            raise NotFoundError(f"bot {bot_id} not found")
        return bot

    def _listener(self, bot_id: int, listener_id: int) -> Listener:
        listener = self._bot(bot_id).listeners.get(int(listener_id))
        if listener is None:
            raise NotFoundError(f"listener {listener_id} not found in bot {bot_id}")
        return listener
