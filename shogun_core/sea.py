"""
SEA collaborator port for Shogun.

Key generation, password hardening ("work"), ECDH shared secrets and
symmetric encryption are owned by the SEA collaborator; Shogun only calls
them through :class:`SeaPort`.  :class:`SeaCrypto` is the default adapter
and follows the GUN SEA wire formats:

  - keys are NIST P-256; public keys are ``base64url(x).base64url(y)`` and
    private keys are ``base64url(d)``
  - ``work(data, pair)`` is PBKDF2-HMAC-SHA256 salted with ``pair.epub``,
    returned as standard base64
  - ``secret(epub, pair)`` is the ECDH x-coordinate, returned as base64url
  - ``encrypt`` is AES-256-GCM, serialised as ``SEA{"ct", "iv", "s"}``

Usage:
    sea = SeaCrypto()
    pair = await sea.pair()
    derived = await sea.work("salt", pair)
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import json
import os
from dataclasses import asdict, dataclass
from typing import Any, Mapping, Protocol, Union

from Crypto.Cipher import AES
from ecdsa import ECDH, NIST256p, SigningKey
from ecdsa.errors import MalformedPointError

from shogun_core.crypto_utils import base64url_decode, base64url_encode, sha256
from shogun_core.errors import MissingParameters, ValidationError

DEFAULT_PBKDF2_ITERATIONS = 100_000


@dataclass(frozen=True)
class KeyPair:
    """An SEA keypair: signing pair (pub/priv) plus ECDH pair (epub/epriv)."""
    pub: str
    priv: str
    epub: str
    epriv: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> KeyPair:
        missing = [k for k in ("pub", "priv", "epub", "epriv") if not data.get(k)]
        if missing:
            raise MissingParameters(f"Keypair is missing fields: {', '.join(missing)}")
        return cls(data["pub"], data["priv"], data["epub"], data["epriv"])

    def to_dict(self) -> dict[str, str]:
        return asdict(self)

    def __repr__(self) -> str:
        return f"KeyPair(pub={self.pub[:12]}..., epub={self.epub[:12]}...)"


PairLike = Union[KeyPair, Mapping[str, Any]]


def pair_field(pair: PairLike, name: str) -> str | None:
    if isinstance(pair, KeyPair):
        return getattr(pair, name)
    if isinstance(pair, Mapping):
        return pair.get(name)
    return None


class SeaPort(Protocol):
    """The SEA primitives Shogun depends on."""

    async def pair(self) -> KeyPair: ...

    async def work(self, data: str, pair: PairLike | str) -> str | bytes | None: ...

    async def secret(self, peer_epub: str, pair: PairLike) -> str | bytes | None: ...

    async def encrypt(self, data: Any, pair: PairLike) -> str: ...

    async def decrypt(self, data: str, pair: PairLike) -> Any: ...


# ===================================================================
#  Key encoding helpers
# ===================================================================

def encode_public_key(raw_xy: bytes) -> str:
    return f"{base64url_encode(raw_xy[:32])}.{base64url_encode(raw_xy[32:])}"


def decode_public_key(text: str) -> bytes:
    """``x.y`` base64url -> 64 raw bytes."""
    if not text or not isinstance(text, str):
        raise ValidationError("Public key must be a non-empty string")
    if text.startswith("~"):
        text = text[1:]
    parts = text.split(".")
    if len(parts) != 2:
        raise ValidationError("Public key must have the form x.y")
    x, y = (base64url_decode(p) for p in parts)
    if len(x) != 32 or len(y) != 32:
        raise ValidationError("Public key coordinates must be 32 bytes each")
    return x + y


class SeaCrypto:
    """Default :class:`SeaPort` adapter built on ``ecdsa`` and ``pycryptodome``."""

    def __init__(self, iterations: int = DEFAULT_PBKDF2_ITERATIONS):
        self.iterations = iterations

    # ---- keys ----

    @staticmethod
    def _new_key() -> tuple[str, str]:
        sk = SigningKey.generate(curve=NIST256p)
        return (
            encode_public_key(sk.get_verifying_key().to_string()),
            base64url_encode(sk.to_string()),
        )

    async def pair(self) -> KeyPair:
        pub, priv = self._new_key()
        epub, epriv = self._new_key()
        return KeyPair(pub=pub, priv=priv, epub=epub, epriv=epriv)

    # ---- work (PBKDF2) ----

    async def work(self, data: str, pair: PairLike | str) -> str | None:
        salt = pair_field(pair, "epub") if not isinstance(pair, str) else pair
        if not data or not salt:
            return None
        derived = await asyncio.to_thread(
            hashlib.pbkdf2_hmac,
            "sha256", data.encode("utf-8"), salt.encode("utf-8"), self.iterations, 32,
        )
        return base64.b64encode(derived).decode("ascii")

    # ---- ECDH ----

    async def secret(self, peer_epub: str, pair: PairLike) -> str | None:
        epriv = pair_field(pair, "epriv")
        if not peer_epub or not epriv:
            return None
        try:
            ecdh = ECDH(curve=NIST256p)
            ecdh.load_private_key_bytes(base64url_decode(epriv))
            ecdh.load_received_public_key_bytes(decode_public_key(peer_epub))
            shared = ecdh.generate_sharedsecret_bytes()
        except (ValidationError, MalformedPointError, ValueError):
            return None
        return base64url_encode(shared)

    # ---- AES-GCM ----

    @staticmethod
    def _aes_key(pair: PairLike, salt: bytes) -> bytes:
        epriv = pair_field(pair, "epriv")
        if not epriv:
            raise MissingParameters("Encryption requires a pair with epriv")
        return sha256(epriv.encode("utf-8") + salt)

    async def encrypt(self, data: Any, pair: PairLike) -> str:
        salt = os.urandom(9)
        iv = os.urandom(15)
        cipher = AES.new(self._aes_key(pair, salt), AES.MODE_GCM, nonce=iv)
        ct, tag = cipher.encrypt_and_digest(json.dumps(data).encode("utf-8"))
        payload = {
            "ct": base64.b64encode(ct + tag).decode("ascii"),
            "iv": base64.b64encode(iv).decode("ascii"),
            "s": base64.b64encode(salt).decode("ascii"),
        }
        return "SEA" + json.dumps(payload, separators=(",", ":"))

    async def decrypt(self, data: str, pair: PairLike) -> Any:
        """Returns ``None`` when *data* is not SEA ciphertext for *pair*."""
        if not isinstance(data, str) or not data.startswith("SEA{"):
            return None
        try:
            payload = json.loads(data[3:])
            blob = base64.b64decode(payload["ct"])
            iv = base64.b64decode(payload["iv"])
            salt = base64.b64decode(payload["s"])
            cipher = AES.new(self._aes_key(pair, salt), AES.MODE_GCM, nonce=iv)
            plain = cipher.decrypt_and_verify(blob[:-16], blob[-16:])
            return json.loads(plain.decode("utf-8"))
        except (KeyError, ValueError, TypeError):
            return None


def is_sea_ciphertext(value: object) -> bool:
    return isinstance(value, str) and value.startswith("SEA{")
