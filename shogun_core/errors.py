"""
Exception hierarchy for Shogun.

Every error surfaced by the identity facade derives from
:class:`ShogunError` so callers can catch one base class, while still
being able to distinguish validation problems (never retried), storage
problems (retried internally, then surfaced) and protocol-integrity
failures (never retried).
"""

from __future__ import annotations


class ShogunError(Exception):
    """Base class for all Shogun errors."""


class NotAuthenticated(ShogunError):
    """The session has no authenticated master keypair."""

    def __init__(self, message: str = "User not authenticated"):
        super().__init__(message)


# ── validation ───────────────────────────────────────────────────

class ValidationError(ShogunError, ValueError):
    """Malformed input (bad salt, bad address, bad username...)."""


class InvalidSalt(ValidationError):
    pass


class MissingParameters(ValidationError):
    pass


# ── key material ─────────────────────────────────────────────────

class KeysNotFound(ShogunError):
    """Required private key material is absent."""


# ── derivation ───────────────────────────────────────────────────

class DerivationError(ShogunError):
    """The KDF -> hash -> private key -> address pipeline failed."""


class KdfFailure(DerivationError):
    pass


class InvalidDerivedKey(DerivationError):
    pass


class InvalidKeyLength(DerivationError):
    pass


class AddressFormatError(DerivationError):
    pass


# ── stealth protocol ─────────────────────────────────────────────

class StealthError(ShogunError):
    """Stealth-address protocol integrity failure."""


class SharedSecretFailure(StealthError):
    pass


class AddressMismatch(StealthError):
    pass


# ── storage ──────────────────────────────────────────────────────

class StorageError(ShogunError):
    """Base class for persistence failures."""


class StorageTimeout(StorageError):
    """A store call did not complete in time; remote state is unknown."""


class VerificationFailed(StorageError):
    """A write could not be confirmed by read-back after all retries."""


class UnknownError(ShogunError):
    """Wraps an unexpected collaborator exception (see ``__cause__``)."""
