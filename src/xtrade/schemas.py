from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class BotCreate(BaseModel):
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


class BotUpdate(BaseModel):
    name: Optional[str] = None
    exchange: Optional[str] = None
    trading_fee: Optional[float] = None
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    rest_endpoint: Optional[str] = None
    rpc_endpoint: Optional[str] = None
    webhook_secret: Optional[str] = None
    private_key: Optional[str] = None
    contract_address: Optional[str] = None


class BotFilter(BaseModel):
    name: Optional[str] = None
    exchange: Optional[str] = None


class ListenerCreate(BaseModel):
    service: str
    secret: str = ""
    msg: Optional[str] = None


class ListenerUpdate(BaseModel):
    service: Optional[str] = None
    secret: Optional[str] = None
    msg: Optional[str] = None


class ListenerFilter(BaseModel):
    service: Optional[str] = None
