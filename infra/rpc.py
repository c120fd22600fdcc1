# infra/rpc.py

from __future__ import annotations

import asyncio
import random
import time
from typing import Any, Dict, List, Optional

import aiohttp

from generator import config
from infra.metrics import METRICS, Metrics

# JSON-RPC methods that are unsafe to blindly repeat after an ambiguous failure.
NON_IDEMPOTENT = {"eth_sendRawTransaction"}


class RPCError(Exception):
    """Node answered with a JSON-RPC error, or the transport gave up.

    ``str(exc)`` keeps the node's message ("nonce too low", "insufficient
    funds for gas * price + value", ...) so callers can classify it. The method
    name lives on ``.method`` only; "eth_gasPrice" in the text would read as a
    gas failure.
    """

    def __init__(self, message: str, *, code: Optional[int] = None, method: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code
        self.method = method


def _normalize_url(url: str) -> str:
    u = str(url).strip()
    if not u:
        return u
    if "://" not in u:
        u = "https://" + u
    return u


def _normalize_rpc_error(msg: Optional[str]) -> str:
    text = str(msg or "").lower()
    if "timeout" in text:
        return "timeout"
    if "http_429" in text or "rate limit" in text:
        return "rate_limited"
    if "http_5" in text:
        return "http_5xx"
    if "connection" in text:
        return "connection"
    if "rpc_error" in text:
        return "rpc_error"
    return "internal_error"


class AsyncRPC:
    """Async JSON-RPC client with:
    - persistent aiohttp session
    - per-call timeouts
    - retries + exponential backoff for transport errors / rate limits
      (never for node-side errors, never for eth_sendRawTransaction)
    """

    def __init__(
        self,
        url: str,
        *,
        default_timeout_s: float = config.RPC_DEFAULT_TIMEOUT_S,
        max_retries: int = config.RPC_RETRY_COUNT,
        backoff_base_s: float = config.RPC_BACKOFF_BASE_S,
        metrics: Optional[Metrics] = None,
    ):
        self.url = _normalize_url(url)
        self.default_timeout_s = float(default_timeout_s)
        self.max_retries = int(max_retries)
        self.backoff_base_s = float(backoff_base_s)
        self.metrics = metrics or METRICS
        self._id = 0
        self._session: Optional[aiohttp.ClientSession] = None
        self._ok = 0
        self._fail = 0

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session and not self._session.closed:
            return self._session
        connector = aiohttp.TCPConnector(limit=20, ttl_dns_cache=300)
        self._session = aiohttp.ClientSession(connector=connector)
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _post(self, session: aiohttp.ClientSession, payload: Dict[str, Any]) -> Any:
        async with session.post(self.url, json=payload) as resp:
            if resp.status >= 400:
                text = await resp.text()
                raise aiohttp.ClientResponseError(
                    request_info=resp.request_info,
                    history=resp.history,
                    status=resp.status,
                    message=text,
                    headers=resp.headers,
                )
            return await resp.json(content_type=None)

    async def call(self, method: str, params: list, *, timeout_s: Optional[float] = None) -> Any:
        self._id += 1
        payload = {"jsonrpc": "2.0", "id": self._id, "method": method, "params": params}
        session = await self._get_session()
        to_s = float(timeout_s) if timeout_s is not None else self.default_timeout_s
        retries = 0 if method in NON_IDEMPOTENT else self.max_retries
        last_err: Optional[str] = None

        for attempt in range(retries + 1):
            t0 = time.perf_counter()
            try:
                data = await asyncio.wait_for(self._post(session, payload), timeout=to_s)
            except asyncio.TimeoutError:
                last_err = f"timeout after {to_s}s"
            except aiohttp.ClientResponseError as e:
                last_err = f"http_{e.status}: {e.message}"
                if e.status not in (429, 500, 502, 503, 504):
                    self._record(method, t0, ok=False, reason=last_err)
                    break
            except aiohttp.ClientConnectionError as e:
                last_err = f"connection error: {e}"
            except aiohttp.ClientError as e:
                last_err = f"network error: {type(e).__name__}: {e}"
            else:
                if isinstance(data, dict) and data.get("error") is not None:
                    err = data["error"]
                    msg = err.get("message") if isinstance(err, dict) else str(err)
                    code = err.get("code") if isinstance(err, dict) else None
                    self._record(method, t0, ok=False, reason="rpc_error")
                    raise RPCError(str(msg or "rpc_error"), code=code, method=method)
                if not isinstance(data, dict) or "result" not in data:
                    self._record(method, t0, ok=False, reason="decode_error")
                    raise RPCError("malformed response", method=method)
                self._record(method, t0, ok=True)
                return data["result"]

            self._record(method, t0, ok=False, reason=last_err)
            if attempt < retries:
                sleep_s = (self.backoff_base_s * (2 ** attempt)) + random.random() * 0.25
                await asyncio.sleep(sleep_s)

        raise RPCError(f"RPC call failed: {last_err}", method=method)

    def _record(self, method: str, t0: float, *, ok: bool, reason: Optional[str] = None) -> None:
        dt_ms = (time.perf_counter() - t0) * 1000.0
        if ok:
            self._ok += 1
        else:
            self._fail += 1
        self.metrics.record_rpc(method, ok, dt_ms, "ok" if ok else _normalize_rpc_error(reason))

    def stats(self) -> List[Dict[str, Any]]:
        return [{"url": self.url, "ok": self._ok, "fail": self._fail}]
