"""
Hashing, encoding and Ethereum address primitives for Shogun.

Provides:
  - SHA-256 and Keccak-256 digests
  - base64url <-> bytes / hex helpers (GUN SEA key encoding)
  - secp256k1 private key -> Ethereum address derivation (EIP-55 checksum)
  - EIP-191 ``personal_sign`` style message signing and signer recovery
"""

from __future__ import annotations

import base64
import hashlib
import re

from Crypto.Hash import keccak
from ecdsa import SECP256k1, SigningKey, VerifyingKey
from ecdsa.errors import MalformedPointError
from ecdsa.util import sigencode_strings_canonize

from shogun_core.errors import (
    AddressFormatError,
    InvalidDerivedKey,
    InvalidKeyLength,
    ValidationError,
)

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_PRIVATE_KEY_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


# ===================================================================
#  Digests
# ===================================================================

def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def keccak256(data: bytes) -> bytes:
    """Ethereum Keccak-256 (pre-standard SHA-3 padding)."""
    h = keccak.new(digest_bits=256)
    h.update(data)
    return h.digest()


def to_bytes(data: bytes | str) -> bytes:
    """Text is UTF-8 encoded; bytes pass through."""
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)


# ===================================================================
#  base64url (SEA key encoding)
# ===================================================================

def base64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def base64url_decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    try:
        return base64.urlsafe_b64decode(text + padding)
    except (ValueError, TypeError) as exc:
        raise ValidationError(f"Invalid base64url string: {exc}") from exc


def base64url_to_hex(text: str, expected_length: int = 32) -> str:
    """
    Convert a base64url encoded key into a ``0x`` prefixed hex string.

    Raises :class:`InvalidKeyLength` unless exactly *expected_length*
    bytes are decoded.
    """
    if not text or not isinstance(text, str):
        raise ValidationError("Cannot convert private key: invalid input")
    raw = base64url_decode(text)
    if len(raw) != expected_length:
        raise InvalidKeyLength(
            f"Cannot convert private key: expected {expected_length} bytes, got {len(raw)}"
        )
    return "0x" + raw.hex()


# ===================================================================
#  Private keys and addresses
# ===================================================================

def normalize_private_key(private_key: bytes | str) -> bytes:
    """Return the 32-byte scalar for a ``0x`` hex string or raw bytes."""
    if isinstance(private_key, (bytes, bytearray)):
        raw = bytes(private_key)
        if len(raw) != 32:
            raise InvalidDerivedKey(f"Private key must be 32 bytes, got {len(raw)}")
        return raw
    if not isinstance(private_key, str) or not _PRIVATE_KEY_RE.match(private_key):
        raise InvalidDerivedKey("Private key must be 0x followed by 64 hex characters")
    return bytes.fromhex(private_key[2:])


def private_key_to_hex(private_key: bytes | str) -> str:
    return "0x" + normalize_private_key(private_key).hex()


def _signing_key(private_key: bytes | str) -> SigningKey:
    raw = normalize_private_key(private_key)
    try:
        return SigningKey.from_string(raw, curve=SECP256k1)
    except (MalformedPointError, ValueError) as exc:
        raise InvalidDerivedKey(f"Private key is not a valid secp256k1 scalar: {exc}") from exc


def private_key_to_public_key(private_key: bytes | str) -> bytes:
    """Return the 64-byte uncompressed public key (x || y, no prefix)."""
    return _signing_key(private_key).get_verifying_key().to_string()


def public_key_to_address(public_key: bytes) -> str:
    if len(public_key) == 65 and public_key[0] == 0x04:
        public_key = public_key[1:]
    if len(public_key) != 64:
        raise InvalidDerivedKey(f"Public key must be 64 bytes, got {len(public_key)}")
    return to_checksum_address("0x" + keccak256(public_key)[-20:].hex())


def private_key_to_address(private_key: bytes | str) -> str:
    address = public_key_to_address(private_key_to_public_key(private_key))
    validate_address(address)
    return address


def is_valid_address(address: object) -> bool:
    return isinstance(address, str) and bool(_ADDRESS_RE.match(address))


def validate_address(address: object) -> str:
    if not is_valid_address(address):
        raise AddressFormatError(f"Invalid Ethereum address: {address!r}")
    return address  # type: ignore[return-value]


def to_checksum_address(address: str) -> str:
    """EIP-55 mixed-case checksum encoding."""
    if not is_valid_address(address):
        raise AddressFormatError(f"Invalid Ethereum address: {address!r}")
    lower = address[2:].lower()
    digest = keccak256(lower.encode("ascii")).hex()
    return "0x" + "".join(
        c.upper() if int(digest[i], 16) >= 8 else c
        for i, c in enumerate(lower)
    )


def addresses_equal(a: str, b: str) -> bool:
    return a.lower() == b.lower()


# ===================================================================
#  EIP-191 message signing
# ===================================================================

def hash_personal_message(message: bytes | str) -> bytes:
    data = to_bytes(message)
    prefix = f"\x19Ethereum Signed Message:\n{len(data)}".encode("utf-8")
    return keccak256(prefix + data)


def sign_message(private_key: bytes | str, message: bytes | str) -> str:
    """
    Sign *message* the way ``personal_sign`` does.

    Returns the 65-byte ``r || s || v`` signature as ``0x`` hex, with
    low-s normalisation and ``v`` in {27, 28}.
    """
    sk = _signing_key(private_key)
    digest = hash_personal_message(message)
    r, s = sk.sign_digest_deterministic(
        digest, hashfunc=hashlib.sha256, sigencode=sigencode_strings_canonize,
    )
    rs = r + s
    own = sk.get_verifying_key().to_string()
    candidates = VerifyingKey.from_public_key_recovery_with_digest(
        rs, digest, curve=SECP256k1, hashfunc=hashlib.sha256,
    )
    for recid, vk in enumerate(candidates):
        if vk.to_string() == own:
            return "0x" + (rs + bytes([27 + recid])).hex()
    raise InvalidDerivedKey("Unable to compute signature recovery id")


def recover_message_signer(message: bytes | str, signature: str) -> str:
    """Return the checksummed address that produced *signature*."""
    if not isinstance(signature, str) or not re.match(r"^0x[0-9a-fA-F]{130}$", signature):
        raise ValidationError("Signature must be 0x followed by 130 hex characters")
    raw = bytes.fromhex(signature[2:])
    rs, v = raw[:64], raw[64]
    recid = v - 27 if v >= 27 else v
    if recid not in (0, 1):
        raise ValidationError(f"Invalid recovery id: {v}")
    digest = hash_personal_message(message)
    try:
        candidates = VerifyingKey.from_public_key_recovery_with_digest(
            rs, digest, curve=SECP256k1, hashfunc=hashlib.sha256,
        )
    except (MalformedPointError, ValueError) as exc:
        raise ValidationError(f"Signature cannot be recovered: {exc}") from exc
    if recid >= len(candidates):
        raise ValidationError("Signature cannot be recovered")
    return public_key_to_address(candidates[recid].to_string())
