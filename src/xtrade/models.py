from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Optional

# Connection fields a bot may carry besides name/exchange/fee.
BOT_OPTIONAL_FIELDS = (
    "api_key",
    "api_secret",
    "rest_endpoint",
    "rpc_endpoint",
    "webhook_secret",
    "private_key",
    "contract_address",
)


@dataclass
class Listener:
    id: int
    bot_id: int
    service: str
    secret: str = ""
    msg: str = ""


@dataclass
class Bot:
    id: int
    name: str
    exchange: str
    trading_fee: float = 0.0
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    rest_endpoint: Optional[str] = None
    rpc_endpoint: Optional[str] = None
    webhook_secret: Optional[str] = None
    private_key: Optional[str] = None
    contract_address: Optional[str] = None
    listeners: dict[int, Listener] = field(default_factory=dict)


@dataclass(frozen=True)
class ListenerView:
    id: int
    bot_id: int
    service: str
    msg: str
    has_secret: bool

    @classmethod
    def of(cls, listener: Listener) -> ListenerView:
        return cls(
            id=listener.id,
            bot_id=listener.bot_id,
            service=listener.service,
            msg=listener.msg,
            has_secret=bool(listener.secret),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ListenerView:
        return cls(
            id=int(data["id"]),
            bot_id=int(data["bot_id"]),
            service=str(data["service"]),
            msg=str(data.get("msg", "")),
            has_secret=bool(data.get("has_secret", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "bot_id": self.bot_id,
            "service": self.service,
            "msg": self.msg,
            "has_secret": self.has_secret,
        }


@dataclass(frozen=True)
class BotView:
    id: int
    name: str
    exchange: str
    trading_fee: float
    api_key: Optional[str]
    rest_endpoint: Optional[str]
    rpc_endpoint: Optional[str]
    contract_address: Optional[str]
    has_api_secret: bool
    has_webhook_secret: bool
    has_private_key: bool
    listeners: tuple[ListenerView, ...] = ()

    @classmethod
    def of(cls, bot: Bot) -> BotView:
        return cls(
            id=bot.id,
            name=bot.name,
            exchange=bot.exchange,
            trading_fee=bot.trading_fee,
            api_key=bot.api_key,
            rest_endpoint=bot.rest_endpoint,
            rpc_endpoint=bot.rpc_endpoint,
            contract_address=bot.contract_address,
            has_api_secret=bool(bot.api_secret),
            has_webhook_secret=bool(bot.webhook_secret),
            has_private_key=bool(bot.private_key),
            listeners=tuple(ListenerView.of(bot.listeners[k]) for k in sorted(bot.listeners)),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BotView:
        return cls(
            id=int(data["id"]),
            name=str(data["name"]),
            exchange=str(data["exchange"]),
            trading_fee=float(data.get("trading_fee", 0.0)),
            api_key=data.get("api_key"),
            rest_endpoint=data.get("rest_endpoint"),
            rpc_endpoint=data.get("rpc_endpoint"),
            contract_address=data.get("contract_address"),
            has_api_secret=bool(data.get("has_api_secret", False)),
            has_webhook_secret=bool(data.get("has_webhook_secret", False)),
            has_private_key=bool(data.get("has_private_key", False)),
            listeners=tuple(ListenerView.from_dict(item) for item in data.get("listeners", [])),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "exchange": self.exchange,
            "trading_fee": self.trading_fee,
            "api_key": self.api_key,
            "rest_endpoint": self.rest_endpoint,
            "rpc_endpoint": self.rpc_endpoint,
            "contract_address": self.contract_address,
            "has_api_secret": self.has_api_secret,
            "has_webhook_secret": self.has_webhook_secret,
            "has_private_key": self.has_private_key,
            "listeners": [listener.to_dict() for listener in self.listeners],
        }


def default_listener_message(service: str, bot_id: int) -> str:
    if service == "TradingView":
        return json.dumps(
            {
                "bot_id": str(bot_id),
                "ticker": "{{ticker}}",
                "action": "{{strategy.order.action}}",
                "order_size": "100%",
                "position_size": "{{strategy.position_size}}",
                "schema": "2",
                "timestamp": "{{time}}",
            }
        )
    if service == "Telegram":
        return "🚨 *{{ticker}}* is *{{action}}* at `{{close}}`"
    if service == "Discord":
        return "**{{ticker}}** is **{{action}}** at `{{close}}`"
    if service == "Slack":
        return ":rotating_light: *{{ticker}}* is *{{action}}* at `{{close}}`"
    return "Alert: {{ticker}} is {{action}}"
