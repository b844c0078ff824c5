"""
Identity facade for Shogun.

Single entry point for an authenticated session.  Composes the wallet and
stealth engines with the persistence adapter and owns the mapping from the
session's master public key to its storage namespaces:

    ~{pub}/private/{prefix}/wallets/{address}            wallet record
    ~{pub}/private/{prefix}/wallets/addresses/{address}  {index, timestamp, claim}
    ~{pub}/private/{prefix}/stealth                      stealth keypair
    ~{pub}/public/{prefix}/stealth                       {epub}

Collections are always read fresh from the store: several facades (or
several processes) may act for the same identity at once.

Usage:
    identity = Identity(session, MemoryGraphStore())
    wallet = await identity.create_wallet()
    keys = await identity.create_stealth_account()
"""

from __future__ import annotations

import asyncio
import functools
import logging
import os
import weakref
from typing import Any

from shogun_core.config import ShogunConfig
from shogun_core.crypto_utils import addresses_equal, is_valid_address, to_checksum_address
from shogun_core.errors import (
    InvalidDerivedKey,
    KeysNotFound,
    MissingParameters,
    ShogunError,
    UnknownError,
    ValidationError,
    VerificationFailed,
)
from shogun_core.persistence import PersistenceAdapter
from shogun_core.relay import HttpGraphStore
from shogun_core.sea import KeyPair, SeaCrypto, SeaPort, is_sea_ciphertext
from shogun_core.session import Session
from shogun_core.stealth import StealthAddressResult, StealthEngine
from shogun_core.store import GraphStore, MemoryGraphStore
from shogun_core.wallet import DerivedWallet, WalletDeriver, hd_path, make_salt, next_index

logger = logging.getLogger("shogun_identity")

# Process-wide, keyed by master pub, so every facade of one identity shares it.
_LOCKS: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()


def _identity_lock(key: str) -> asyncio.Lock:
    lock = _LOCKS.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _LOCKS[key] = lock
    return lock


def _typed_errors(op: str):
    """Re-raise collaborator exceptions as :class:`UnknownError`."""

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except ShogunError:
                raise
            except Exception as exc:
                logger.error(f"{op} failed with unexpected {type(exc).__name__}: {exc}")
                raise UnknownError(f"{op} failed: {exc}") from exc
        return wrapper

    return decorator


def _user_root(pub: str) -> str:
    return f"~{pub.lstrip('~')}"


class Identity:
    """Wallets and stealth keys of one authenticated identity."""

    def __init__(
        self,
        session: Session,
        store: GraphStore,
        sea: SeaPort | None = None,
        config: ShogunConfig | None = None,
    ):
        self.session = session
        self.store = store
        self.config = config or ShogunConfig()
        self.sea = sea or SeaCrypto(self.config.sea.pbkdf2_iterations)
        self.adapter = PersistenceAdapter(session, store, self.config.storage)
        self.wallets = WalletDeriver(self.sea, self.config.wallet.hd_base_path)
        self.stealth = StealthEngine(self.sea)

    @classmethod
    def from_config(
        cls, session: Session, config: ShogunConfig, sea: SeaPort | None = None,
    ) -> Identity:
        """Build a facade on the relay from ``config`` (in-memory when unset)."""
        if config.relay.url:
            store: GraphStore = HttpGraphStore(
                config.relay.url, request_timeout=config.relay.request_timeout,
            )
        else:
            store = MemoryGraphStore()
        return cls(session, store, sea=sea, config=config)

    async def close(self) -> None:
        await self.store.close()

    # ── paths ────────────────────────────────────────────────────

    @property
    def _prefix(self) -> str:
        return self.config.app.app_prefix

    def _private(self, pub: str, *parts: str) -> str:
        return "/".join([_user_root(pub), "private", self._prefix, *parts])

    def _public(self, pub: str, *parts: str) -> str:
        return "/".join([_user_root(pub), "public", self._prefix, *parts])

    def _wallet_path(self, pub: str, address: str) -> str:
        return self._private(pub, "wallets", address.lower())

    def _index_path(self, pub: str, address: str | None = None) -> str:
        if address is None:
            return self._private(pub, "wallets", "addresses")
        return self._private(pub, "wallets", "addresses", address.lower())

    # ── key material at rest ─────────────────────────────────────

    async def _seal(self, pair: KeyPair, secret: str) -> str:
        if not self.config.wallet.encrypt_private_keys:
            return secret
        return await self.sea.encrypt(secret, pair)

    async def _unseal(self, pair: KeyPair, stored: Any) -> Any:
        if not is_sea_ciphertext(stored):
            return stored
        plain = await self.sea.decrypt(stored, pair)
        if plain is None:
            raise KeysNotFound("Unable to decrypt stored key material")
        return plain

    # ===================================================================
    #  Wallets
    # ===================================================================

    @_typed_errors("create_wallet")
    async def create_wallet(self, index: int | None = None, name: str | None = None) -> DerivedWallet:
        """Derive and persist the wallet at *index* (next free index by default)."""
        pair = self.session.require()
        if index is not None:
            hd_path(index)
        async with _identity_lock(f"{pair.pub}/wallets"):
            if index is not None:
                wallet = await self.wallets.derive_at_index(pair, index)
                wallet.name = name
                await self._store_wallet(pair, wallet, os.urandom(8).hex())
                return wallet
            return await self._create_next_wallet(pair, name)

    async def _create_next_wallet(self, pair: KeyPair, name: str | None) -> DerivedWallet:
        limit = max(0, self.config.wallet.max_index_collisions)
        for collision in range(limit + 1):
            entries = await self._read_index(pair)
            index = next_index(
                e["index"] for e in entries.values() if isinstance(e.get("index"), int)
            )
            wallet = await self.wallets.derive_at_index(pair, index)
            wallet.name = name
            claim = os.urandom(8).hex()
            try:
                await self._store_wallet(pair, wallet, claim)
            except VerificationFailed as exc:
                # Another writer kept overwriting the same index.
                logger.warning(f"Could not confirm index {index}: {exc}")
            else:
                # The claim that survives racing writes owns the index.
                await asyncio.sleep(self.config.wallet.claim_settle_interval)
                stored = (await self._read_index(pair)).get(wallet.address.lower(), {})
                if stored.get("claim") == claim:
                    logger.info(f"Created wallet {wallet.address} at index {index}")
                    return wallet
            logger.warning(
                f"Index {index} was claimed concurrently by another writer; "
                f"retrying ({collision + 1}/{limit})"
            )
        raise VerificationFailed(
            f"Could not claim a unique wallet index after {limit} collisions"
        )

    @_typed_errors("create_wallet_from_salt")
    async def create_wallet_from_salt(
        self, salt: str | None = None, name: str | None = None,
    ) -> DerivedWallet:
        """Derive and persist a salt-mode wallet (fresh ``{pub}_{hex}`` salt by default)."""
        pair = self.session.require()
        wallet = await self.wallets.derive_from_salt(pair, salt if salt is not None else make_salt(pair.pub))
        wallet.name = name
        await self._store_wallet(pair, wallet, os.urandom(8).hex())
        logger.info(f"Created salt-derived wallet {wallet.address}")
        return wallet

    async def _store_wallet(self, pair: KeyPair, wallet: DerivedWallet, claim: str) -> None:
        record = wallet.to_dict()
        record["private_key"] = await self._seal(pair, wallet.private_key)
        await self.adapter.put(self._wallet_path(pair.pub, wallet.address), record)

        entry: dict[str, Any] = {"timestamp": wallet.timestamp, "claim": claim}
        if wallet.index is not None:
            entry["index"] = wallet.index
        await self.adapter.put(self._index_path(pair.pub, wallet.address), entry)

    async def _read_index(self, pair: KeyPair) -> dict[str, dict[str, Any]]:
        data = await self.adapter.get(self._index_path(pair.pub))
        if not isinstance(data, dict):
            return {}
        return {
            address: entry for address, entry in data.items()
            if isinstance(entry, dict) and any(v is not None for v in entry.values())
        }

    async def _load_wallet(self, pair: KeyPair, address: str) -> DerivedWallet | None:
        data = await self.adapter.get(self._wallet_path(pair.pub, address))
        if not isinstance(data, dict):
            return None
        data = dict(data)
        data["private_key"] = await self._unseal(pair, data.get("private_key"))
        return DerivedWallet.from_dict(data)

    @_typed_errors("list_wallets")
    async def list_wallets(self) -> list[DerivedWallet]:
        """All wallets of the identity, index-mode first in index order."""
        pair = self.session.require()
        result = []
        for address in await self._read_index(pair):
            wallet = await self._load_wallet(pair, address)
            if wallet is None:
                logger.debug(f"Index lists {address} but its record is not visible yet")
                continue
            result.append(wallet)
        result.sort(key=lambda w: (w.index is None, w.index or 0, w.timestamp))
        return result

    @_typed_errors("get_wallet")
    async def get_wallet(self, address: str) -> DerivedWallet | None:
        """Load a wallet and check it still re-derives from its entropy."""
        pair = self.session.require()
        if not is_valid_address(address):
            raise ValidationError(f"Invalid Ethereum address: {address!r}")
        wallet = await self._load_wallet(pair, address)
        if wallet is None:
            return None
        check = await self.wallets.rederive(pair, wallet.entropy)
        if not addresses_equal(check.address, wallet.address) or check.private_key != wallet.private_key:
            raise InvalidDerivedKey(f"Stored wallet {address} does not match its derivation")
        wallet.address = to_checksum_address(wallet.address)
        return wallet

    @_typed_errors("get_wallet_by_index")
    async def get_wallet_by_index(self, index: int) -> DerivedWallet:
        """Derive the wallet at *index* without storing it."""
        pair = self.session.require()
        hd_path(index)
        return await self.wallets.derive_at_index(pair, index)

    @_typed_errors("get_main_wallet")
    async def get_main_wallet(self) -> DerivedWallet:
        """The stored HD wallet with the lowest index."""
        for wallet in await self.list_wallets():
            if wallet.index is not None:
                return wallet
        raise KeysNotFound("No HD wallet has been created for this identity")

    @_typed_errors("delete_wallet")
    async def delete_wallet(self, address: str) -> None:
        pair = self.session.require()
        if not is_valid_address(address):
            raise ValidationError(f"Invalid Ethereum address: {address!r}")
        await self.adapter.delete(self._index_path(pair.pub, address))
        await self.adapter.delete(self._wallet_path(pair.pub, address))
        logger.info(f"Deleted wallet {address}")

    @_typed_errors("get_legacy_wallet")
    async def get_legacy_wallet(self) -> DerivedWallet:
        """The wallet whose key is the master ``priv``; never persisted."""
        pair = self.session.require()
        return self.wallets.legacy_wallet(pair, self.config.wallet.legacy_key_field)

    @_typed_errors("sign_message")
    async def sign_message(self, address: str, message: bytes | str) -> str:
        wallet = await self.get_wallet(address)
        if wallet is None:
            raise KeysNotFound(f"No wallet stored for {address}")
        return wallet.sign_message(message)

    # ===================================================================
    #  Stealth
    # ===================================================================

    async def _load_stealth_keys(self, pair: KeyPair) -> KeyPair | None:
        data = await self.adapter.get(self._private(pair.pub, "stealth"))
        if not isinstance(data, dict):
            return None
        data = dict(data)
        for key in ("priv", "epriv"):
            data[key] = await self._unseal(pair, data.get(key))
        return KeyPair.from_dict(data)

    @_typed_errors("create_stealth_account")
    async def create_stealth_account(self) -> KeyPair:
        """Return the identity's stealth keypair, creating it on first use."""
        pair = self.session.require()
        async with _identity_lock(f"{pair.pub}/stealth"):
            keys = await self._load_stealth_keys(pair)
            if keys is None:
                keys = await self.stealth.create_keypair()
                record = keys.to_dict()
                record["priv"] = await self._seal(pair, keys.priv)
                record["epriv"] = await self._seal(pair, keys.epriv)
                await self.adapter.put(self._private(pair.pub, "stealth"), record)
                logger.info(f"Created stealth keys for {pair.pub[:12]}...")

            if await self.get_public_stealth_key(pair.pub) != keys.epub:
                await self.adapter.put(self._public(pair.pub, "stealth"), {"epub": keys.epub})
            return keys

    @_typed_errors("get_stealth_keys")
    async def get_stealth_keys(self) -> KeyPair:
        keys = await self._load_stealth_keys(self.session.require())
        if keys is None:
            raise KeysNotFound("Stealth keys not found")
        return keys

    @_typed_errors("get_public_stealth_key")
    async def get_public_stealth_key(self, pub: str) -> str | None:
        """Published stealth ``epub`` of any identity (``~`` prefix optional)."""
        if not pub:
            raise MissingParameters("Public key is required")
        data = await self.adapter.get(self._public(pub, "stealth"))
        if isinstance(data, dict) and data.get("epub"):
            return data["epub"]
        return None

    @_typed_errors("generate_stealth_address")
    async def generate_stealth_address(self, recipient_pub: str) -> StealthAddressResult:
        """Sender side: a one-time address for *recipient_pub*."""
        if not recipient_pub:
            raise MissingParameters("Recipient public key is required")
        self.session.require()
        epub = await self.get_public_stealth_key(recipient_pub)
        if not epub:
            raise KeysNotFound(f"Recipient {recipient_pub[:12]}... has no published stealth key")
        return await self.stealth.generate_stealth_address(epub, recipient_pub)

    @_typed_errors("open_stealth_address")
    async def open_stealth_address(self, stealth_address: str, ephemeral_public_key: str) -> DerivedWallet:
        """Recipient side: recover the wallet behind a stealth address."""
        if not stealth_address or not ephemeral_public_key:
            raise MissingParameters("Both stealth address and ephemeral public key are required")
        keys = await self.get_stealth_keys()
        return await self.stealth.open_stealth_address(keys, stealth_address, ephemeral_public_key)
