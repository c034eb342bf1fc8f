from __future__ import annotations

import json
import logging
import stat
import threading
from multiprocessing.connection import Client, Connection, Listener
from pathlib import Path
from typing import Any

from xtrade.errors import (
    ConflictError,
    RemoteError,
    ValidationError,
    XTradeError,
    error_from_kind,
)
from xtrade.models import BotView, ListenerView
from xtrade.schemas import (
    BotCreate,
    BotFilter,
    BotUpdate,
    ListenerCreate,
    ListenerFilter,
    ListenerUpdate,
)
from xtrade.transport import BotTransport, dispatch

logger = logging.getLogger("xtrade.ipc")

_FAMILY = "AF_UNIX"


def _dump(model: Any) -> dict[str, Any] | None:
    if model is None:
        return None
    return model.model_dump(exclude_none=True)


class IpcServer:
    """
    Serves the transport operations on a Unix socket.

    Each request is one JSON document ``{"op": ..., "args": {...}}``; each
    response is ``{"ok": true, "data": ...}`` or
    ``{"ok": false, "kind": ..., "error": ...}``.
    """

    def __init__(self, *, transport: BotTransport, socket_path: Path | str) -> None:
        self._transport = transport
        self._socket_path = Path(socket_path)
        self._listener: Listener | None = None
        self._thread: threading.Thread | None = None
        self._stopped = threading.Event()

    @property
    def socket_path(self) -> Path:
        return self._socket_path

    def ensure_available(self) -> None:
        """
        Make sure the socket path can be bound.

        Only a stale socket left behind by a dead server is removed. Any other
        file, or a socket some server still accepts on, is left alone.
        """
        try:
            mode = self._socket_path.stat().st_mode
        except FileNotFoundError:
            return
        if not stat.S_ISSOCK(mode):
            raise ValidationError(f"{self._socket_path} exists and is not a socket")
        try:
            Client(address=str(self._socket_path), family=_FAMILY).close()
        except OSError:
            logger.info("ipc_stale_socket_removed", extra={"path": str(self._socket_path)})
            self._socket_path.unlink(missing_ok=True)
            return
        raise ConflictError(f"another server is listening on {self._socket_path}")

    def start(self) -> None:
        self.ensure_available()
        self._socket_path.parent.mkdir(parents=True, exist_ok=True)
        self._listener = Listener(address=str(self._socket_path), family=_FAMILY)
        self._thread = threading.Thread(target=self._serve, name="xtrade-ipc", daemon=True)
        self._thread.start()
        logger.info("ipc_server_started", extra={"path": str(self._socket_path)})

    def stop(self) -> None:
        if self._listener is None:
            return
        self._stopped.set()
        # Wake the accept() call so the serving thread sees the stop flag.
        try:
            Client(address=str(self._socket_path), family=_FAMILY).close()
        except OSError as e:
            logger.debug("ipc_wakeup_failed", extra={"reason": str(e)})
        if self._thread is not None:
            self._thread.join(timeout=5.0)
        self._listener.close()
        self._listener = None
        self._socket_path.unlink(missing_ok=True)
        logger.info("ipc_server_stopped", extra={"path": str(self._socket_path)})

    def _serve(self) -> None:
        assert self._listener is not None
        while not self._stopped.is_set():
            try:
                conn = self._listener.accept()
            except OSError:
                if self._stopped.is_set():
                    return
                raise
            if self._stopped.is_set():
                conn.close()
                return
            threading.Thread(target=self._handle, args=(conn,), daemon=True).start()

    def _handle(self, conn: Connection) -> None:
        with conn:
            while True:
                try:
                    raw = conn.recv_bytes()
                except (EOFError, OSError):
                    return
                conn.send_bytes(json.dumps(self.handle_request(raw)).encode("utf-8"))

    def handle_request(self, raw: bytes) -> dict[str, Any]:
        try:
            request = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return {"ok": False, "kind": "validation", "error": "request is not valid JSON"}
        if not isinstance(request, dict) or not isinstance(request.get("op"), str):
            return {"ok": False, "kind": "validation", "error": "request must name an op"}
        args = request.get("args") or {}
        if not isinstance(args, dict):
            return {"ok": False, "kind": "validation", "error": "args must be an object"}
        try:
            data = dispatch(self._transport, request["op"], args)
        except XTradeError as e:
            return {"ok": False, **e.to_dict()}
        return {"ok": True, "data": data}


class IpcClient(BotTransport):
    """Transport that talks to a running server over its Unix socket."""

    mode = "ipc"

    def __init__(self, *, socket_path: Path | str, timeout_seconds: float = 10.0) -> None:
        self._socket_path = Path(socket_path)
        self._timeout_seconds = timeout_seconds
        self._conn: Connection | None = None

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def add_bot(self, payload: BotCreate) -> BotView:
        return BotView.from_dict(self._call("add_bot", payload=_dump(payload)))

    def get_bot(self, bot_id: int) -> BotView:
        return BotView.from_dict(self._call("get_bot", bot_id=bot_id))

    def list_bots(self, flt: BotFilter | None = None) -> list[BotView]:
        return [BotView.from_dict(item) for item in self._call("list_bots", filter=_dump(flt))]

    def update_bot(self, bot_id: int, payload: BotUpdate) -> BotView:
        return BotView.from_dict(self._call("update_bot", bot_id=bot_id, payload=_dump(payload)))

    def delete_bot(self, bot_id: int) -> BotView:
        return BotView.from_dict(self._call("delete_bot", bot_id=bot_id))

    def clear_bots(self) -> int:
        return int(self._call("clear_bots"))

    def add_listener(self, bot_id: int, payload: ListenerCreate) -> ListenerView:
        data = self._call("add_listener", bot_id=bot_id, payload=_dump(payload))
        return ListenerView.from_dict(data)

    def get_listener(self, bot_id: int, listener_id: int) -> ListenerView:
        data = self._call("get_listener", bot_id=bot_id, listener_id=listener_id)
        return ListenerView.from_dict(data)

    def list_listeners(self, bot_id: int, flt: ListenerFilter | None = None) -> list[ListenerView]:
        data = self._call("list_listeners", bot_id=bot_id, filter=_dump(flt))
        return [ListenerView.from_dict(item) for item in data]

    def update_listener(
        self, bot_id: int, listener_id: int, payload: ListenerUpdate
    ) -> ListenerView:
        data = self._call(
            "update_listener",
            bot_id=bot_id,
            listener_id=listener_id,
            payload=_dump(payload),
        )
        return ListenerView.from_dict(data)

    def delete_listener(self, bot_id: int, listener_id: int) -> ListenerView:
        data = self._call("delete_listener", bot_id=bot_id, listener_id=listener_id)
        return ListenerView.from_dict(data)

    def delete_listeners(self, bot_id: int, flt: ListenerFilter | None = None) -> int:
        return int(self._call("delete_listeners", bot_id=bot_id, filter=_dump(flt)))

    def clear_listeners(self) -> int:
        return int(self._call("clear_listeners"))

    def _connection(self) -> Connection:
        if self._conn is None:
            try:
                self._conn = Client(address=str(self._socket_path), family=_FAMILY)
            except OSError as e:
                raise RemoteError(f"cannot connect to {self._socket_path}: {e}") from e
        return self._conn

    def _call(self, op: str, **args: Any) -> Any:
        conn = self._connection()
        request = {"op": op, "args": {k: v for k, v in args.items() if v is not None}}
        try:
            conn.send_bytes(json.dumps(request).encode("utf-8"))
            if not conn.poll(self._timeout_seconds):
                self.close()
                raise RemoteError(f"{op}: no response within {self._timeout_seconds}s")
            response = json.loads(conn.recv_bytes().decode("utf-8"))
        except (EOFError, OSError) as e:
            self.close()
            raise RemoteError(f"{op}: connection to {self._socket_path} lost: {e}") from e
        if not isinstance(response, dict):
            raise RemoteError(f"{op}: unexpected response {response!r}")
        if response.get("ok"):
            return response.get("data")
        raise error_from_kind(str(response.get("kind", "")), str(response.get("error", "")))
