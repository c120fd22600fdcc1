"""Optional bridge from the generator -> dashboard websocket server.

The dashboard server exposes:
  - POST /push      broadcasts JSON to all websocket clients

Python side posts ``{"type": <event>, ...}`` to http://UI_HOST:UI_PORT/push.
If the dashboard isn't running, errors are ignored.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional

import aiohttp

log = logging.getLogger("txgen.ui")


def _ui_url(host: Optional[str] = None, port: Optional[int] = None) -> str:
    host = (host or os.getenv("UI_HOST", "localhost")).strip() or "localhost"
    port_s = str(port or os.getenv("UI_PORT", "8080")).strip() or "8080"
    return f"http://{host}:{port_s}/push"


async def ui_push(payload: dict, url: Optional[str] = None, timeout: float = 1.0) -> None:
    if url is None:
        url = _ui_url()
    try:
        async with aiohttp.ClientSession() as session:
            async with session.post(url, json=payload, timeout=aiohttp.ClientTimeout(total=timeout)):
                return
    except Exception as exc:
        # Dashboard is optional: do nothing if it's not running.
        log.debug("ui push to %s dropped: %s", url, exc)
        return


class UiNotifier:
    """Event sink used by the core. Every method is fire-and-forget."""

    def __init__(self, url: Optional[str] = None, *, enabled: bool = True) -> None:
        self.url = url or _ui_url()
        self.enabled = bool(enabled)

    async def push(self, event: str, data: Any) -> None:
        if not self.enabled:
            return
        await ui_push({"type": event, "data": data}, url=self.url)

    async def funding_progress(self, funded: int, failed: int, total: int, current: Optional[str] = None) -> None:
        await self.push("funding-progress", {"funded": funded, "failed": failed, "total": total, "current": current})

    async def instance_stats(self, stats: List[Dict[str, Any]]) -> None:
        await self.push("instance-stats", stats)

    async def transaction(self, tx: Dict[str, Any]) -> None:
        await self.push("new-transaction", tx)

    async def wallets_changed(self) -> None:
        await self.push("wallets-updated", {})

    async def clear_transactions(self) -> None:
        await self.push("clear-transactions", {})

    async def live_stats(self, stats: Dict[str, Any]) -> None:
        await self.push("live-stats", stats)
