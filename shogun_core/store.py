"""
Graph store port and an in-memory eventually-consistent implementation.

:class:`GraphStore` is the only surface Shogun consumes from the external
graph database: fire-and-forget ``put`` returning an acknowledgement,
single-shot ``once`` reads and ``on`` subscriptions.  Replication, merge
and transport belong to the store itself.

:class:`MemoryGraphStore` mimics the behaviour of a GUN peer closely enough
for local use and tests:

  - object puts merge field-by-field into the existing node
  - ``None`` is a tombstone
  - arrays are rejected (``{"err": "Invalid data: Array ..."}``)
  - every node read back carries ``_`` bookkeeping metadata
  - an optional ``lag`` delays visibility of acknowledged writes
"""

from __future__ import annotations

import abc
import asyncio
import copy
import logging
import time
from typing import Any, Callable

logger = logging.getLogger("shogun_store")

Handler = Callable[[Any], None]

META_KEY = "_"
SOUL_KEY = "#"
STATE_KEY = ">"


def split_path(path: str) -> list[str]:
    return [p for p in path.split("/") if p]


def join_path(*parts: str) -> str:
    return "/".join(p.strip("/") for p in parts if p and p.strip("/"))


class GraphStore(abc.ABC):
    """Fire-and-forget primitives of an external graph store."""

    @abc.abstractmethod
    async def put(self, path: str, value: Any) -> dict[str, Any]:
        """Write *value* at *path*; returns an ack (``{"err": ...}`` on failure)."""

    @abc.abstractmethod
    async def once(self, path: str) -> Any:
        """Read the current value at *path* (``None`` when absent)."""

    @abc.abstractmethod
    def on(self, path: str, handler: Handler) -> Callable[[], None]:
        """Subscribe to changes at *path*; returns an unsubscribe callable."""

    async def close(self) -> None:
        return None


class MemoryGraphStore(GraphStore):
    """In-process graph store with GUN-like merge semantics."""

    def __init__(self, lag: float = 0.0, latency: float = 0.0):
        self.lag = lag
        self.latency = latency
        self.drop_writes = 0      # ack the next N writes but never apply them
        self.fail_writes = 0      # reject the next N writes with an error ack
        self.put_count = 0
        self._root: dict[str, Any] = {}
        self._pending: list[tuple[float, str, Any]] = []
        self._subscribers: dict[int, tuple[str, Handler]] = {}
        self._next_sub = 0

    # ── GraphStore API ───────────────────────────────────────────

    async def put(self, path: str, value: Any) -> dict[str, Any]:
        if self.latency:
            await asyncio.sleep(self.latency)
        self.put_count += 1
        if _contains_list(value):
            return {"err": f"Invalid data: Array at {path}"}
        if self.fail_writes > 0:
            self.fail_writes -= 1
            return {"err": "Write rejected by peer"}
        if self.drop_writes > 0:
            self.drop_writes -= 1
            logger.debug(f"Dropping write to {path}")
            return {"ok": 1}
        value = copy.deepcopy(value)
        if self.lag > 0:
            self._pending.append((time.monotonic() + self.lag, path, value))
        else:
            self._apply(path, value)
        return {"ok": 1}

    async def once(self, path: str) -> Any:
        if self.latency:
            await asyncio.sleep(self.latency)
        self._flush()
        return self._read(path)

    def on(self, path: str, handler: Handler) -> Callable[[], None]:
        sub_id = self._next_sub
        self._next_sub += 1
        self._subscribers[sub_id] = (path, handler)

        def unsubscribe() -> None:
            self._subscribers.pop(sub_id, None)

        return unsubscribe

    # ── helpers ──────────────────────────────────────────────────

    def write_now(self, path: str, value: Any) -> None:
        """Apply a write immediately, bypassing lag and failure injection."""
        self._apply(path, copy.deepcopy(value))

    def dump(self) -> dict[str, Any]:
        self._flush()
        return copy.deepcopy(self._root)

    def _flush(self) -> None:
        now = time.monotonic()
        due = [p for p in self._pending if p[0] <= now]
        self._pending = [p for p in self._pending if p[0] > now]
        for _, path, value in due:
            self._apply(path, value)

    def _apply(self, path: str, value: Any) -> None:
        parts = split_path(path)
        if not parts:
            raise ValueError("Cannot write to the graph root")
        parent = self._root
        for i, part in enumerate(parts[:-1]):
            child = parent.get(part)
            if not isinstance(child, dict):
                child = self._new_node(join_path(*parts[: i + 1]))
                parent[part] = child
                _stamp(parent, part)
            parent = child
        key = parts[-1]
        if isinstance(value, dict):
            existing = parent.get(key)
            if not isinstance(existing, dict):
                existing = self._new_node(path)
                parent[key] = existing
            _merge_node(existing, value, path)
        else:
            parent[key] = value
        _stamp(parent, key)
        self._notify(path)

    @staticmethod
    def _new_node(soul: str) -> dict[str, Any]:
        return {META_KEY: {SOUL_KEY: soul, STATE_KEY: {}}}

    def _read(self, path: str) -> Any:
        node: Any = self._root
        for part in split_path(path):
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return copy.deepcopy(node)

    def _notify(self, written: str) -> None:
        for sub_path, handler in list(self._subscribers.values()):
            a, b = split_path(sub_path), split_path(written)
            if a[: len(b)] == b or b[: len(a)] == a:
                try:
                    handler(self._read(sub_path))
                except Exception:
                    logger.exception(f"Subscriber for {sub_path} failed")


def _contains_list(value: Any) -> bool:
    if isinstance(value, (list, tuple)):
        return True
    if isinstance(value, dict):
        return any(_contains_list(v) for v in value.values())
    return False


def _stamp(node: dict[str, Any], key: str) -> None:
    meta = node.get(META_KEY)
    if isinstance(meta, dict):
        meta.setdefault(STATE_KEY, {})[key] = time.time() * 1000


def _merge_node(node: dict[str, Any], value: dict[str, Any], soul: str) -> None:
    for key, item in value.items():
        if key == META_KEY:
            continue
        if isinstance(item, dict):
            child = node.get(key)
            if not isinstance(child, dict):
                child = MemoryGraphStore._new_node(join_path(soul, key))
                node[key] = child
            _merge_node(child, item, join_path(soul, key))
        else:
            node[key] = item
        _stamp(node, key)
