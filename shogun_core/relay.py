"""
HTTP relay transport for the graph store.

Endpoints
---------
PUT  /graph/{path}     Body: {"value": <json>}  -> {"ok": 1} or {"err": "..."}
GET  /graph/{path}     -> {"value": <json or null>}
GET  /health           -> {"ok": true}

:class:`HttpGraphStore` is the client side and implements
:class:`~shogun_core.store.GraphStore`; :func:`create_relay_app` builds the
server side on top of any other ``GraphStore`` (a :class:`MemoryGraphStore`
by default), which is enough for development and integration tests.

Usage:
    store = HttpGraphStore("http://127.0.0.1:8765")
    ack = await store.put("~pub/public/shogun/stealth", {"epub": "..."})
    await store.close()
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable

import aiohttp
from aiohttp import web

from shogun_core.store import GraphStore, Handler, MemoryGraphStore, split_path

logger = logging.getLogger("shogun_relay")

STORE_KEY = web.AppKey("store", GraphStore)


class HttpGraphStore(GraphStore):
    """Graph store client speaking to a relay over HTTP."""

    def __init__(
        self,
        base_url: str,
        request_timeout: float = 10.0,
        poll_interval: float = 1.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.request_timeout = request_timeout
        self.poll_interval = poll_interval
        self._http_session: aiohttp.ClientSession | None = None
        self._pollers: set[asyncio.Task] = set()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._http_session is None or self._http_session.closed:
            timeout = aiohttp.ClientTimeout(total=self.request_timeout)
            self._http_session = aiohttp.ClientSession(timeout=timeout)
        return self._http_session

    def _url(self, path: str) -> str:
        return f"{self.base_url}/graph/{'/'.join(split_path(path))}"

    # ── GraphStore API ───────────────────────────────────────────

    async def put(self, path: str, value: Any) -> dict[str, Any]:
        session = await self._get_session()
        try:
            async with session.put(self._url(path), json={"value": value}) as resp:
                body = await resp.json(content_type=None)
        except (aiohttp.ClientError, json.JSONDecodeError) as exc:
            logger.debug(f"PUT {path} failed: {type(exc).__name__}")
            return {"err": f"Relay unreachable: {exc}"}
        if not isinstance(body, dict):
            return {"err": f"Unexpected relay reply (HTTP {resp.status})"}
        return body

    async def once(self, path: str) -> Any:
        session = await self._get_session()
        async with session.get(self._url(path)) as resp:
            if resp.status == 404:
                return None
            resp.raise_for_status()
            body = await resp.json(content_type=None)
        return body.get("value") if isinstance(body, dict) else None

    def on(self, path: str, handler: Handler) -> Callable[[], None]:
        task = asyncio.get_running_loop().create_task(self._poll(path, handler))
        self._pollers.add(task)
        task.add_done_callback(self._pollers.discard)
        return task.cancel

    async def close(self) -> None:
        for task in list(self._pollers):
            task.cancel()
        if self._pollers:
            await asyncio.gather(*self._pollers, return_exceptions=True)
        if self._http_session is not None and not self._http_session.closed:
            await self._http_session.close()

    async def _poll(self, path: str, handler: Handler) -> None:
        last: Any = object()
        while True:
            try:
                current = await self.once(path)
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                logger.debug(f"Poll of {path} failed: {type(exc).__name__}")
            else:
                if current != last:
                    last = current
                    handler(current)
            await asyncio.sleep(self.poll_interval)


# ═══════════════════════════════════════════════════════════════════
#  Relay server
# ═══════════════════════════════════════════════════════════════════

def create_relay_app(store: GraphStore | None = None) -> web.Application:
    """Build an aiohttp application exposing *store* under ``/graph``."""
    backing = store if store is not None else MemoryGraphStore()
    app = web.Application(client_max_size=1_048_576)
    app[STORE_KEY] = backing

    async def _health(_request: web.Request) -> web.Response:
        return web.json_response({"ok": True})

    async def _get(request: web.Request) -> web.Response:
        path = request.match_info["path"]
        value = await request.app[STORE_KEY].once(path)
        return web.json_response({"value": value})

    async def _put(request: web.Request) -> web.Response:
        path = request.match_info["path"]
        try:
            body = await request.json()
        except Exception as exc:
            raise web.HTTPBadRequest(text="Invalid JSON body") from exc
        if not isinstance(body, dict) or "value" not in body:
            raise web.HTTPBadRequest(text="Body must be an object with a 'value' field")
        try:
            ack = await request.app[STORE_KEY].put(path, body["value"])
        except ValueError as exc:
            ack = {"err": str(exc)}
        if ack.get("err"):
            logger.info(f"Rejected write to {path}: {ack['err']}")
        return web.json_response(ack)

    app.router.add_get("/health", _health)
    app.router.add_get("/graph/{path:.+}", _get)
    app.router.add_put("/graph/{path:.+}", _put)
    return app
