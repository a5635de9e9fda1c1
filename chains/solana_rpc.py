from __future__ import annotations

import asyncio
import itertools
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Set, Tuple

import requests
import websockets
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from websockets.exceptions import ConnectionClosed, WebSocketException

from core.errors import TransportError
from core.models import RawLogNotification

logger = logging.getLogger(__name__)

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGbPFXCWuBvf9Ss623VQ5DA"

WS_PING_INTERVAL = 20
WS_REQUEST_TIMEOUT = 15.0
SUB_QUEUE_MAX = 5000


def _make_session() -> requests.Session:
    session = requests.Session()
    retries = Retry(
        total=3,
        connect=3,
        read=3,
        backoff_factor=0.5,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["POST"],
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retries)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def parse_logs_notification(msg: Dict[str, Any]) -> Tuple[Optional[int], Optional[RawLogNotification]]:
    """
    {"method":"logsNotification","params":{"subscription":N,
      "result":{"context":{"slot":S},"value":{"signature":..,"err":..,"logs":[..]}}}}
    """
    params = msg.get("params") or {}
    sub = params.get("subscription")
    result = params.get("result") or {}
    value = result.get("value") or {}
    sig = value.get("signature")
    if sub is None or not sig:
        return sub, None
    slot = (result.get("context") or {}).get("slot")
    logs = value.get("logs") or []
    return sub, RawLogNotification(
        signature=sig,
        lines=tuple(str(x) for x in logs),
        err=value.get("err"),
        slot=slot,
    )


class SolanaRpcClient:
    """
    Solana JSON-RPC transport.

    HTTP calls go through a requests session (with retries) on a worker thread.
    Log subscriptions share one websocket; a reader task routes responses to
    waiting requests by id and notifications to per-subscription queues.
    """

    def __init__(
        self,
        http_url: str,
        ws_url: str,
        timeout: float = 30,
        session: Optional[requests.Session] = None,
        queue_max: int = SUB_QUEUE_MAX,
    ):
        self.http_url = http_url
        self.ws_url = ws_url
        self.timeout = timeout
        self.session = session or _make_session()
        # per-subscription buffer; notifications beyond it are dropped with a warning
        self.queue_max = max(1, int(queue_max))

        self._ws = None
        self._reader_task: Optional[asyncio.Task] = None
        self._connect_lock = asyncio.Lock()
        self._ids = itertools.count(1)
        self._pending: Dict[int, asyncio.Future] = {}
        self._subs: Dict[int, asyncio.Queue] = {}
        self._subscribe_ids: Set[int] = set()

    # -----------------------------
    # HTTP
    # -----------------------------
    def _rpc(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        try:
            r = self.session.post(self.http_url, json=payload, timeout=self.timeout)
            r.raise_for_status()
            data = r.json()
        except requests.RequestException as e:
            raise TransportError(f"{method} failed: {e}") from e
        except ValueError as e:
            raise TransportError(f"{method} returned invalid JSON") from e

        if not isinstance(data, dict):
            raise TransportError(f"{method} returned unexpected payload")
        if data.get("error"):
            raise TransportError(f"{method} error: {data['error']}")
        return data.get("result")

    async def _call(self, method: str, params: List[Any]) -> Any:
        # requests is sync; keep it off the event loop
        return await asyncio.to_thread(self._rpc, method, params)

    async def get_transaction(
        self,
        signature: str,
        commitment: str = "confirmed",
        max_supported_transaction_version: int = 0,
    ) -> Optional[Dict[str, Any]]:
        return await self._call(
            "getTransaction",
            [
                signature,
                {
                    "commitment": commitment,
                    "encoding": "json",
                    "maxSupportedTransactionVersion": max_supported_transaction_version,
                },
            ],
        )

    async def get_balance(self, address: str, commitment: str = "confirmed") -> int:
        result = await self._call("getBalance", [address, {"commitment": commitment}])
        if isinstance(result, dict):
            result = result.get("value")
        try:
            return int(result or 0)
        except (TypeError, ValueError) as e:
            raise TransportError(f"getBalance returned {result!r}") from e

    async def get_token_accounts_by_owner(
        self,
        owner: str,
        program_id: str = TOKEN_PROGRAM_ID,
        commitment: str = "confirmed",
    ) -> List[Dict[str, Any]]:
        result = await self._call(
            "getTokenAccountsByOwner",
            [owner, {"programId": program_id}, {"encoding": "jsonParsed", "commitment": commitment}],
        )
        if isinstance(result, dict):
            result = result.get("value")
        return [x for x in (result or []) if isinstance(x, dict)]

    # -----------------------------
    # WEBSOCKET
    # -----------------------------
    async def _ensure_ws(self):
        async with self._connect_lock:
            if self._ws is not None:
                return self._ws
            try:
                self._ws = await websockets.connect(self.ws_url, ping_interval=WS_PING_INTERVAL)
            except (OSError, WebSocketException, asyncio.TimeoutError) as e:
                raise TransportError(f"websocket connect to {self.ws_url} failed: {e!r}") from e
            self._reader_task = asyncio.create_task(self._reader(self._ws))
            logger.info("websocket connected: %s", self.ws_url)
            return self._ws

    async def _reader(self, ws) -> None:
        try:
            async for raw in ws:
                try:
                    msg = json.loads(raw)
                except ValueError:
                    logger.warning("dropping non-JSON websocket frame")
                    continue
                if not isinstance(msg, dict):
                    continue
                self._route(msg)
        except ConnectionClosed as e:
            logger.warning("websocket closed: %s", e)
        finally:
            if self._ws is ws:
                self._ws = None
            self._fail_all(TransportError("websocket connection closed"))

    def _new_queue(self) -> asyncio.Queue:
        return asyncio.Queue(maxsize=self.queue_max)

    @staticmethod
    def _close_queue(q: asyncio.Queue) -> None:
        # the end-of-stream marker must fit even into a full buffer
        while True:
            try:
                q.put_nowait(None)
                return
            except asyncio.QueueFull:
                q.get_nowait()

    def _route(self, msg: Dict[str, Any]) -> None:
        req_id = msg.get("id")
        if req_id is not None:
            fut = self._pending.pop(req_id, None)
            if req_id in self._subscribe_ids:
                self._subscribe_ids.discard(req_id)
                # register before the next frame is read; notifications can follow the reply immediately
                if isinstance(msg.get("result"), int):
                    self._subs.setdefault(msg["result"], self._new_queue())
            if fut is not None and not fut.done():
                fut.set_result(msg)
            return

        if msg.get("method") != "logsNotification":
            return

        sub, notification = parse_logs_notification(msg)
        if sub is None or notification is None:
            return
        q = self._subs.get(sub)
        if q is None:
            logger.debug("notification %s for unknown subscription %s", notification.signature, sub)
            return
        try:
            q.put_nowait(notification)
        except asyncio.QueueFull:
            logger.warning(
                "subscription %s buffer full (%s), dropping %s", sub, q.maxsize, notification.signature
            )

    def _fail_all(self, exc: Exception) -> None:
        for fut in self._pending.values():
            if not fut.done():
                fut.set_exception(exc)
        self._pending.clear()
        self._subscribe_ids.clear()
        for q in self._subs.values():
            self._close_queue(q)
        self._subs.clear()

    async def _ws_request(self, method: str, params: List[Any]) -> Any:
        ws = await self._ensure_ws()
        req_id = next(self._ids)
        fut = asyncio.get_running_loop().create_future()
        self._pending[req_id] = fut
        if method == "logsSubscribe":
            self._subscribe_ids.add(req_id)
        try:
            await ws.send(json.dumps({"jsonrpc": "2.0", "id": req_id, "method": method, "params": params}))
            msg = await asyncio.wait_for(fut, WS_REQUEST_TIMEOUT)
        except asyncio.TimeoutError as e:
            raise TransportError(f"{method} timed out") from e
        except (ConnectionClosed, OSError) as e:
            raise TransportError(f"{method} failed: {e}") from e
        finally:
            self._pending.pop(req_id, None)
            self._subscribe_ids.discard(req_id)

        if msg.get("error"):
            raise TransportError(f"{method} error: {msg['error']}")
        return msg.get("result")

    async def _stream(self, q: asyncio.Queue) -> AsyncIterator[RawLogNotification]:
        while True:
            item = await q.get()
            if item is None:
                return
            yield item

    async def subscribe_logs(
        self, mentions: str, commitment: str = "confirmed"
    ) -> Tuple[int, AsyncIterator[RawLogNotification]]:
        result = await self._ws_request(
            "logsSubscribe", [{"mentions": [mentions]}, {"commitment": commitment}]
        )
        if not isinstance(result, int):
            raise TransportError(f"logsSubscribe returned {result!r}")
        q = self._subs.setdefault(result, self._new_queue())
        return result, self._stream(q)

    async def unsubscribe_logs(self, handle: int) -> bool:
        # end the stream now; anything the node still sends for this id is dropped in _route
        q = self._subs.pop(handle, None)
        if q is not None:
            self._close_queue(q)
        result = await self._ws_request("logsUnsubscribe", [handle])
        return bool(result)

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None
        self.session.close()
