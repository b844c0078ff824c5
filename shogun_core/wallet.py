"""
Wallet derivation for Shogun.

Turns a master keypair plus an entropy string into an Ethereum-compatible
secp256k1 wallet:

  - Salt mode: ``private_key = sha256(work(salt, master))``
  - Index mode: the same pipeline with ``m/44'/60'/0'/0/{index}`` as salt
  - Legacy mode: the master ``priv`` (or ``epriv``) reinterpreted directly
    as the Ethereum private key

Derivation is deterministic: the same ``(master, entropy)`` always gives
the same address and private key.  Only the choice of salt or index may
involve freshness.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from shogun_core.crypto_utils import (
    base64url_to_hex,
    private_key_to_address,
    sha256,
    sign_message,
    to_bytes,
)
from shogun_core.errors import (
    InvalidSalt,
    KdfFailure,
    KeysNotFound,
    MissingParameters,
    ShogunError,
    ValidationError,
)
from shogun_core.sea import PairLike, SeaPort, pair_field

logger = logging.getLogger("shogun_wallet")

DEFAULT_HD_BASE_PATH = "m/44'/60'/0'/0"
LEGACY_KEY_FIELDS = ("priv", "epriv")


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class DerivedWallet:
    """A derived Ethereum wallet and the entropy it was derived from."""
    address: str
    private_key: str
    entropy: str
    index: int | None = None
    name: str | None = None
    timestamp: int = field(default_factory=_now_ms)

    # ---- signing ----

    def sign_message(self, message: bytes | str) -> str:
        return sign_message(self.private_key, message)

    # ---- serialisation ----

    def to_dict(self) -> dict[str, Any]:
        """Record shape; ``None`` fields are omitted."""
        data: dict[str, Any] = {
            "address": self.address,
            "private_key": self.private_key,
            "entropy": self.entropy,
            "timestamp": self.timestamp,
        }
        if self.index is not None:
            data["index"] = self.index
        if self.name is not None:
            data["name"] = self.name
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DerivedWallet:
        missing = [k for k in ("address", "private_key", "entropy") if not data.get(k)]
        if missing:
            raise MissingParameters(f"Wallet record is missing fields: {', '.join(missing)}")
        index = data.get("index")
        return cls(
            address=data["address"],
            private_key=data["private_key"],
            entropy=data["entropy"],
            index=int(index) if index is not None else None,
            name=data.get("name"),
            timestamp=int(data.get("timestamp") or 0),
        )

    def __repr__(self) -> str:
        return f"DerivedWallet(address={self.address}, index={self.index}, entropy={self.entropy!r})"


# ===================================================================
#  Entropy helpers
# ===================================================================

def hd_path(index: int, base_path: str = DEFAULT_HD_BASE_PATH) -> str:
    """``m/44'/60'/0'/0`` + ``/{index}``."""
    if not isinstance(index, int) or isinstance(index, bool) or index < 0:
        raise ValidationError(f"Wallet index must be a non-negative integer, got {index!r}")
    return f"{base_path.rstrip('/')}/{index}"


def next_index(indices: Iterable[int]) -> int:
    """``max(indices) + 1``, or 0 when there are none."""
    return max(indices, default=-1) + 1


def make_salt(pub: str) -> str:
    """Fresh salt of the form ``{pub}_{random hex}``."""
    return f"{pub}_{os.urandom(16).hex()}"


# ===================================================================
#  Deriver
# ===================================================================

class WalletDeriver:
    """Runs the KDF -> SHA-256 -> secp256k1 -> address pipeline."""

    def __init__(self, sea: SeaPort, hd_base_path: str = DEFAULT_HD_BASE_PATH):
        self.sea = sea
        self.hd_base_path = hd_base_path

    async def derive_from_salt(self, pair: PairLike, salt: str) -> DerivedWallet:
        """Derive the wallet for *salt* under the master *pair*.

        Raises :class:`InvalidSalt`, :class:`KdfFailure`,
        :class:`InvalidDerivedKey` or :class:`AddressFormatError`.
        """
        if not isinstance(salt, str) or not salt:
            raise InvalidSalt("Salt must be a non-empty string")
        try:
            derived = await self.sea.work(salt, pair)
        except ShogunError:
            raise
        except Exception as exc:
            raise KdfFailure(f"Key derivation failed: {exc}") from exc
        if not derived:
            raise KdfFailure("Key derivation returned no output")

        private_key = "0x" + sha256(to_bytes(derived)).hex()
        address = private_key_to_address(private_key)
        return DerivedWallet(address=address, private_key=private_key, entropy=salt)

    async def derive_at_index(self, pair: PairLike, index: int) -> DerivedWallet:
        wallet = await self.derive_from_salt(pair, hd_path(index, self.hd_base_path))
        wallet.index = index
        logger.debug(f"Derived wallet {wallet.address} at index {index}")
        return wallet

    async def rederive(self, pair: PairLike, entropy: str) -> DerivedWallet:
        """Re-run derivation for a stored ``entropy`` value."""
        return await self.derive_from_salt(pair, entropy)

    def legacy_wallet(self, pair: PairLike, key_field: str = "priv") -> DerivedWallet:
        """The single wallet whose private key *is* the master ``priv``/``epriv``."""
        if key_field not in LEGACY_KEY_FIELDS:
            raise ValidationError(f"Legacy key field must be one of {LEGACY_KEY_FIELDS}")
        encoded = pair_field(pair, key_field)
        if not encoded:
            raise KeysNotFound(f"Master keypair has no {key_field}")
        private_key = base64url_to_hex(encoded, 32)
        address = private_key_to_address(private_key)
        return DerivedWallet(address=address, private_key=private_key, entropy=key_field)
