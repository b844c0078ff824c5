"""
Stealth addresses for Shogun.

A recipient publishes the ``epub`` of a dedicated stealth keypair.  For
every payment the sender:

  1. generates a fresh ephemeral keypair
  2. computes ``secret = ECDH(recipient_epub, ephemeral_epriv)``
  3. uses ``keccak256(utf8(secret))`` as the one-time private key

and publishes only the resulting address plus the ephemeral ``epub``.  The
recipient recomputes the same secret with ``ECDH(ephemeral_epub,
own_epriv)`` and must arrive at exactly the published address.

Only the ECDH half of a keypair (``epub``/``epriv``) is ever used for the
shared secret.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any

from shogun_core.crypto_utils import (
    addresses_equal,
    is_valid_address,
    keccak256,
    private_key_to_address,
    to_bytes,
)
from shogun_core.errors import (
    AddressMismatch,
    KeysNotFound,
    MissingParameters,
    SharedSecretFailure,
    ShogunError,
    ValidationError,
)
from shogun_core.sea import KeyPair, PairLike, SeaPort, pair_field
from shogun_core.wallet import DerivedWallet

logger = logging.getLogger("shogun_stealth")


@dataclass(frozen=True)
class StealthAddressResult:
    """What a sender publishes; carries no private material."""
    stealth_address: str
    ephemeral_public_key: str
    recipient_public_key: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def derive_stealth_wallet(shared_secret: str | bytes, entropy: str = "") -> DerivedWallet:
    """``keccak256(secret)`` as private key -> wallet."""
    private_key = "0x" + keccak256(to_bytes(shared_secret)).hex()
    address = private_key_to_address(private_key)
    return DerivedWallet(address=address, private_key=private_key, entropy=entropy)


class StealthEngine:
    """Sender and recipient halves of the stealth-address protocol."""

    def __init__(self, sea: SeaPort):
        self.sea = sea

    async def create_keypair(self) -> KeyPair:
        """Fresh stealth keypair, distinct from the master identity."""
        pair = await self.sea.pair()
        if not isinstance(pair, KeyPair):
            pair = KeyPair.from_dict(pair)
        return pair

    # ---- sender ----

    async def generate_stealth_address(
        self, recipient_epub: str, recipient_pub: str | None = None,
    ) -> StealthAddressResult:
        if not recipient_epub:
            raise MissingParameters("Recipient stealth public key is required")
        ephemeral = await self.sea.pair()
        eph_epub = pair_field(ephemeral, "epub")
        eph_epriv = pair_field(ephemeral, "epriv")
        if not eph_epub or not eph_epriv:
            raise SharedSecretFailure("Ephemeral keypair is incomplete")

        secret = await self._shared_secret(
            recipient_epub, {"epub": eph_epub, "epriv": eph_epriv},
        )
        wallet = derive_stealth_wallet(secret, entropy=eph_epub)
        logger.debug(f"Generated stealth address {wallet.address}")
        return StealthAddressResult(
            stealth_address=wallet.address,
            ephemeral_public_key=eph_epub,
            recipient_public_key=recipient_pub or recipient_epub,
        )

    # ---- recipient ----

    async def open_stealth_address(
        self,
        keys: PairLike | None,
        stealth_address: str,
        ephemeral_public_key: str,
    ) -> DerivedWallet:
        """Recover the one-time wallet, or raise :class:`AddressMismatch`."""
        if not stealth_address or not ephemeral_public_key:
            raise MissingParameters("Both stealth address and ephemeral public key are required")
        if not is_valid_address(stealth_address):
            raise ValidationError(f"Invalid stealth address: {stealth_address!r}")
        epub = pair_field(keys, "epub") if keys is not None else None
        epriv = pair_field(keys, "epriv") if keys is not None else None
        if not epriv:
            raise KeysNotFound("Stealth keys not found")

        secret = await self._shared_secret(
            ephemeral_public_key, {"epub": epub, "epriv": epriv},
        )
        wallet = derive_stealth_wallet(secret, entropy=ephemeral_public_key)
        if not addresses_equal(wallet.address, stealth_address):
            logger.warning(f"Stealth address {stealth_address} does not match derived {wallet.address}")
            raise AddressMismatch("Derived address does not match the provided stealth address")
        return wallet

    async def _shared_secret(self, peer_epub: str, pair: dict[str, Any]) -> str | bytes:
        try:
            secret = await self.sea.secret(peer_epub, pair)
        except ShogunError:
            raise
        except Exception as exc:
            raise SharedSecretFailure(f"Shared secret computation failed: {exc}") from exc
        if not secret:
            raise SharedSecretFailure("Shared secret computation returned nothing")
        return secret
