"""
Eventually-consistent persistence adapter.

Turns the graph store's fire-and-forget ``put``/``once`` primitives into
operations with a well-defined outcome:

  - every write is read back and compared until the stored value is
    equivalent to the intended one (write-then-verify)
  - a failed attempt is retried end-to-end with exponential backoff,
    re-authenticating the session before each retry
  - sequences are stored as index-keyed objects tagged ``_isArray``
    because the store rejects arrays
  - store bookkeeping keys (``_`` and ``#``) never reach callers

Usage:
    adapter = PersistenceAdapter(session, store, cfg.storage)
    await adapter.put("~pub/private/app/wallets/0xabc", {"index": 0})
    record = await adapter.get("~pub/private/app/wallets/0xabc")
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from shogun_core.config import StorageConfig
from shogun_core.errors import (
    ShogunError,
    StorageError,
    StorageTimeout,
    VerificationFailed,
)
from shogun_core.session import Session
from shogun_core.store import META_KEY, SOUL_KEY, GraphStore

logger = logging.getLogger("shogun_storage")

ARRAY_TAG = "_isArray"
LENGTH_KEY = "length"
_METADATA_KEYS = (META_KEY, SOUL_KEY)


# ===================================================================
#  Envelope helpers
# ===================================================================

def encode_value(value: Any) -> Any:
    """Recursively replace sequences with tagged index-keyed objects."""
    if isinstance(value, (list, tuple)):
        encoded: dict[str, Any] = {ARRAY_TAG: True, LENGTH_KEY: len(value)}
        for i, item in enumerate(value):
            encoded[str(i)] = encode_value(item)
        return encoded
    if isinstance(value, dict):
        return {k: encode_value(v) for k, v in value.items()}
    return value


def strip_metadata(value: Any) -> Any:
    """Drop store bookkeeping keys at every level."""
    if isinstance(value, dict):
        return {
            k: strip_metadata(v) for k, v in value.items()
            if k not in _METADATA_KEYS
        }
    return value


def decode_value(value: Any) -> Any:
    """Strip metadata and rebuild tagged sequences.

    Indices missing from a tagged object are skipped, so a partially
    replicated sequence decodes to the elements seen so far.  A ``None``
    element reads back the same as a missing one: it is dropped and later
    elements shift down.
    """
    value = strip_metadata(value)
    if not isinstance(value, dict):
        return value
    if value.get(ARRAY_TAG) is True:
        length = value.get(LENGTH_KEY)
        if not isinstance(length, int) or isinstance(length, bool) or length < 0:
            length = 0
        return [
            decode_value(value[str(i)])
            for i in range(length)
            if value.get(str(i)) is not None
        ]
    return {k: decode_value(v) for k, v in value.items()}


def is_empty(value: Any) -> bool:
    """``None``, ``{}`` and objects holding only tombstoned fields are absent."""
    value = strip_metadata(value)
    if value is None:
        return True
    if isinstance(value, dict):
        return all(v is None for v in value.values())
    return False


def values_equivalent(actual: Any, expected: Any) -> bool:
    """Structural equality with absent, ``None`` and ``{}`` treated alike."""
    actual = strip_metadata(actual)
    expected = strip_metadata(expected)
    if is_empty(actual) and is_empty(expected):
        return True
    if isinstance(actual, dict) and isinstance(expected, dict):
        keys = set(actual) | set(expected)
        return all(values_equivalent(actual.get(k), expected.get(k)) for k in keys)
    if isinstance(actual, (list, tuple)) and isinstance(expected, (list, tuple)):
        return len(actual) == len(expected) and all(
            values_equivalent(a, e) for a, e in zip(actual, expected)
        )
    if isinstance(actual, bool) or isinstance(expected, bool):
        return actual is expected
    return actual == expected


# ===================================================================
#  Adapter
# ===================================================================

class PersistenceAdapter:
    """Write-verify-retry wrapper around a :class:`GraphStore`.

    Every operation first requires an authenticated session and raises
    :class:`NotAuthenticated` without touching the store otherwise.
    """

    def __init__(
        self,
        session: Session,
        store: GraphStore,
        config: StorageConfig | None = None,
        encode_arrays: bool = True,
    ):
        self.session = session
        self.store = store
        self.config = config or StorageConfig()
        self.encode_arrays = encode_arrays

    # ── public API ───────────────────────────────────────────────

    async def put(self, path: str, value: Any) -> None:
        """Write *value* at *path* and return once it reads back equivalent.

        Raises :class:`VerificationFailed`, :class:`StorageTimeout` or
        :class:`StorageError` when every retry is exhausted.  After a
        failure the stored state at *path* is unknown.
        """
        self.session.require()
        payload = encode_value(value) if self.encode_arrays else value

        async def attempt() -> None:
            if self.config.clear_before_write and isinstance(payload, dict):
                await self._write(path, None)
            await self._write(path, payload)
            await self._verify(path, payload)

        await self._bounded("put", path, self._with_retries("put", path, attempt))
        logger.debug(f"Stored {path}")

    async def get(self, path: str) -> Any:
        """Read *path*; returns ``None`` once read retries find nothing."""
        self.session.require()
        return await self._bounded("get", path, self._read_with_retries(path))

    async def delete(self, path: str) -> None:
        """Tombstone *path* and verify the tombstone is observed."""
        self.session.require()

        async def attempt() -> None:
            await self._write(path, None)
            await self._verify(path, None)

        await self._bounded("delete", path, self._with_retries("delete", path, attempt))
        logger.debug(f"Deleted {path}")

    # ── retry machinery ──────────────────────────────────────────

    async def _bounded(self, op: str, path: str, coro: Awaitable[Any]) -> Any:
        timeout = self.config.op_timeout
        if timeout is None:
            return await coro
        try:
            return await asyncio.wait_for(coro, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise StorageTimeout(
                f"{op} {path} did not finish within {timeout}s; stored state is unknown"
            ) from exc

    def _backoff(self, attempt: int) -> float:
        return min(self.config.backoff_base * (2 ** (attempt - 1)), self.config.backoff_max)

    async def _with_retries(
        self, op: str, path: str, attempt_fn: Callable[[], Awaitable[None]],
    ) -> None:
        attempts = max(1, self.config.max_retries)
        last_exc = StorageError(f"{op} {path} was not attempted")
        for attempt in range(1, attempts + 1):
            if attempt > 1:
                delay = self._backoff(attempt - 1)
                logger.warning(
                    f"{op} {path} failed ({last_exc}); retry {attempt}/{attempts} in {delay:.2f}s"
                )
                await asyncio.sleep(delay)
                await self.session.reauthenticate()
            try:
                await attempt_fn()
                return
            except StorageError as exc:
                last_exc = exc
        logger.error(f"{op} {path} failed after {attempts} attempts: {last_exc}")
        raise type(last_exc)(
            f"{op} {path} failed after {attempts} attempts: {last_exc}"
        ) from last_exc

    async def _read_with_retries(self, path: str) -> Any:
        attempts = 1 + max(0, self.config.read_retries)
        last_exc: Exception | None = None
        saw_reply = False
        for attempt in range(1, attempts + 1):
            try:
                data = await self._read(path)
                saw_reply = True
            except StorageError as exc:
                last_exc = exc
                data = None
            if not is_empty(data):
                return decode_value(data)
            if attempt < attempts:
                logger.debug(f"No data at {path}; read retry {attempt}/{attempts - 1}")
                await asyncio.sleep(self.config.read_retry_interval)
        if not saw_reply and last_exc is not None:
            raise StorageError(f"get {path} failed: {last_exc}") from last_exc
        return None

    # ── store calls ──────────────────────────────────────────────

    async def _write(self, path: str, value: Any) -> None:
        try:
            ack = await asyncio.wait_for(
                self.store.put(path, value), timeout=self.config.write_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise StorageTimeout(
                f"No acknowledgement for write to {path} within {self.config.write_timeout}s"
            ) from exc
        except ShogunError:
            raise
        except Exception as exc:
            raise StorageError(f"Write to {path} failed: {exc}") from exc
        if isinstance(ack, dict) and ack.get("err"):
            raise StorageError(f"Write to {path} rejected: {ack['err']}")

    async def _read(self, path: str) -> Any:
        try:
            return await asyncio.wait_for(
                self.store.once(path), timeout=self.config.read_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise StorageTimeout(
                f"Read of {path} timed out after {self.config.read_timeout}s"
            ) from exc
        except ShogunError:
            raise
        except Exception as exc:
            raise StorageError(f"Read of {path} failed: {exc}") from exc

    async def _verify(self, path: str, expected: Any) -> None:
        attempts = max(1, self.config.verify_attempts)
        current: Any = None
        for attempt in range(1, attempts + 1):
            try:
                current = await self._read(path)
            except StorageError as exc:
                logger.debug(f"Verify read {attempt}/{attempts} of {path} failed: {exc}")
            else:
                if values_equivalent(current, expected):
                    return
            if attempt < attempts:
                await asyncio.sleep(self.config.verify_interval)
        raise VerificationFailed(
            f"Value at {path} did not match the written value after {attempts} checks"
        )
