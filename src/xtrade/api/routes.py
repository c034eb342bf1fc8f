from typing import Any, Optional

from fastapi import APIRouter, Depends, Request

from xtrade.schemas import (
    BotCreate,
    BotFilter,
    BotUpdate,
    ListenerCreate,
    ListenerFilter,
    ListenerUpdate,
)
from xtrade.transport import BotTransport, encode_result

router = APIRouter()


# Handlers are plain `def` so FastAPI runs them in its thread pool; the
# shared store lock may block for up to its timeout.


def get_transport(request: Request) -> BotTransport:
    return request.app.state.transport


def _ok(result: Any) -> dict[str, Any]:
    return {"data": encode_result(result)}


@router.get("/health")
def health(transport: BotTransport = Depends(get_transport)):
    return {"data": {"ok": True, "mode": transport.mode}}


@router.post("/bots")
def add_bot(payload: BotCreate, transport: BotTransport = Depends(get_transport)):
    return _ok(transport.add_bot(payload))


@router.get("/bots")
def list_bots(
    name: Optional[str] = None,
    exchange: Optional[str] = None,
    transport: BotTransport = Depends(get_transport),
):
    return _ok(transport.list_bots(BotFilter(name=name, exchange=exchange)))


@router.delete("/bots")
def clear_bots(transport: BotTransport = Depends(get_transport)):
    return {"data": {"deleted": transport.clear_bots()}}


@router.get("/bots/{bot_id}")
def get_bot(bot_id: int, transport: BotTransport = Depends(get_transport)):
    return _ok(transport.get_bot(bot_id))


@router.put("/bots/{bot_id}")
def update_bot(bot_id: int, payload: BotUpdate, transport: BotTransport = Depends(get_transport)):
    return _ok(transport.update_bot(bot_id, payload))


@router.delete("/bots/{bot_id}")
def delete_bot(bot_id: int, transport: BotTransport = Depends(get_transport)):
    return _ok(transport.delete_bot(bot_id))


@router.post("/bots/{bot_id}/listeners")
def add_listener(
    bot_id: int,
    payload: ListenerCreate,
    transport: BotTransport = Depends(get_transport),
):
    return _ok(transport.add_listener(bot_id, payload))


@router.get("/bots/{bot_id}/listeners")
def list_listeners(
    bot_id: int,
    service: Optional[str] = None,
    transport: BotTransport = Depends(get_transport),
):
    return _ok(transport.list_listeners(bot_id, ListenerFilter(service=service)))


@router.delete("/bots/{bot_id}/listeners")
def delete_listeners(
    bot_id: int,
    service: Optional[str] = None,
    transport: BotTransport = Depends(get_transport),
):
    deleted = transport.delete_listeners(bot_id, ListenerFilter(service=service))
    return {"data": {"deleted": deleted}}


@router.get("/bots/{bot_id}/listeners/{listener_id}")
def get_listener(bot_id: int, listener_id: int, transport: BotTransport = Depends(get_transport)):
    return _ok(transport.get_listener(bot_id, listener_id))


@router.put("/bots/{bot_id}/listeners/{listener_id}")
def update_listener(
    bot_id: int,
    listener_id: int,
    payload: ListenerUpdate,
    transport: BotTransport = Depends(get_transport),
):
    return _ok(transport.update_listener(bot_id, listener_id, payload))


@router.delete("/bots/{bot_id}/listeners/{listener_id}")
def delete_listener(
    bot_id: int,
    listener_id: int,
    transport: BotTransport = Depends(get_transport),
):
    return _ok(transport.delete_listener(bot_id, listener_id))


@router.delete("/listeners")
def clear_listeners(transport: BotTransport = Depends(get_transport)):
    return {"data": {"deleted": transport.clear_listeners()}}
