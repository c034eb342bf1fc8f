from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from xtrade.errors import RemoteError, error_from_kind, error_from_status
from xtrade.models import BotView, ListenerView
from xtrade.schemas import (
    BotCreate,
    BotFilter,
    BotUpdate,
    ListenerCreate,
    ListenerFilter,
    ListenerUpdate,
)
from xtrade.transport import BotTransport

logger = logging.getLogger("xtrade.remote")

_DEFAULT_MAX_RETRIES = 2
_DEFAULT_RETRY_BASE_SECONDS = 0.25
_DEFAULT_RETRY_MAX_SECONDS = 4.0


def _query(model: Any) -> dict[str, Any]:
    if model is None:
        return {}
    return model.model_dump(exclude_none=True)


def _body(model: Any) -> dict[str, Any]:
    return model.model_dump(exclude_none=True)


class RemoteClient(BotTransport):
    """
    REST client for a running xtrade server.

    Reads that fail at the transport level are retried with exponential
    backoff; writes are never retried, since the server may already have
    applied them. Error responses are mapped back onto the ``XTradeError``
    classes they came from.
    """

    mode = "remote"

    def __init__(
        self,
        *,
        base_url: str = "http://localhost:7762",
        timeout_seconds: float = 10.0,
        max_retries: int = _DEFAULT_MAX_RETRIES,
        retry_base_seconds: float = _DEFAULT_RETRY_BASE_SECONDS,
        retry_max_seconds: float = _DEFAULT_RETRY_MAX_SECONDS,
        transport: httpx.BaseTransport | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self._max_retries = int(max(0, max_retries))
        self._retry_base_seconds = float(max(0.0, retry_base_seconds))
        self._retry_max_seconds = float(max(self._retry_base_seconds, retry_max_seconds))
        self._owns_client = client is None
        self._client = client or httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def add_bot(self, payload: BotCreate) -> BotView:
        return BotView.from_dict(self._request("POST", "/bots", json=_body(payload)))

    def get_bot(self, bot_id: int) -> BotView:
        return BotView.from_dict(self._request("GET", f"/bots/{bot_id}"))

    def list_bots(self, flt: BotFilter | None = None) -> list[BotView]:
        data = self._request("GET", "/bots", params=_query(flt))
        return [BotView.from_dict(item) for item in data]

    def update_bot(self, bot_id: int, payload: BotUpdate) -> BotView:
        return BotView.from_dict(self._request("PUT", f"/bots/{bot_id}", json=_body(payload)))

    def delete_bot(self, bot_id: int) -> BotView:
        return BotView.from_dict(self._request("DELETE", f"/bots/{bot_id}"))

    def clear_bots(self) -> int:
        return int(self._request("DELETE", "/bots")["deleted"])

    def add_listener(self, bot_id: int, payload: ListenerCreate) -> ListenerView:
        data = self._request("POST", f"/bots/{bot_id}/listeners", json=_body(payload))
        return ListenerView.from_dict(data)

    def get_listener(self, bot_id: int, listener_id: int) -> ListenerView:
        data = self._request("GET", f"/bots/{bot_id}/listeners/{listener_id}")
        return ListenerView.from_dict(data)

    def list_listeners(self, bot_id: int, flt: ListenerFilter | None = None) -> list[ListenerView]:
        data = self._request("GET", f"/bots/{bot_id}/listeners", params=_query(flt))
        return [ListenerView.from_dict(item) for item in data]

    def update_listener(
        self, bot_id: int, listener_id: int, payload: ListenerUpdate
    ) -> ListenerView:
        data = self._request(
            "PUT",
            f"/bots/{bot_id}/listeners/{listener_id}",
            json=_body(payload),
        )
        return ListenerView.from_dict(data)

    def delete_listener(self, bot_id: int, listener_id: int) -> ListenerView:
        data = self._request("DELETE", f"/bots/{bot_id}/listeners/{listener_id}")
        return ListenerView.from_dict(data)

    def delete_listeners(self, bot_id: int, flt: ListenerFilter | None = None) -> int:
        data = self._request("DELETE", f"/bots/{bot_id}/listeners", params=_query(flt))
        return int(data["deleted"])

    def clear_listeners(self) -> int:
        return int(self._request("DELETE", "/listeners")["deleted"])

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        attempt = 0
        while True:
            try:
                response = self._client.request(method, path, params=params, json=json)
            except (httpx.TimeoutException, httpx.TransportError) as e:
                if method != "GET" or attempt >= self._max_retries:
                    logger.warning("remote_request_failed", extra={"op": f"{method} {path}"})
                    raise RemoteError(f"{method} {path} failed: {e}") from e
                time.sleep(self._retry_delay_seconds(attempt=attempt))
                attempt += 1
                continue

            if response.status_code >= 400:
                raise _error_from_response(response)

            try:
                payload = response.json()
            except ValueError as e:
                raise RemoteError(f"{method} {path} returned a non-JSON body") from e
            if not isinstance(payload, dict) or "data" not in payload:
                raise RemoteError(f"{method} {path} returned an unexpected body: {payload!r}")
            return payload["data"]

    def _retry_delay_seconds(self, *, attempt: int) -> float:
        delay = self._retry_base_seconds * (2**attempt)
        return float(min(delay, self._retry_max_seconds))


def _error_from_response(response: httpx.Response) -> Exception:
    payload: Any
    try:
        payload = response.json()
    except ValueError:
        payload = response.text
    if isinstance(payload, dict) and isinstance(payload.get("kind"), str):
        return error_from_kind(payload["kind"], str(payload.get("error", "")))
    return error_from_status(response.status_code, str(payload))
