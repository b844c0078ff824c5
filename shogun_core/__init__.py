"""
Shogun - deterministic wallet and stealth-address derivation on top of an
eventually-consistent graph store.

Key features:
- Salt, HD-index and legacy wallet derivation from a SEA master keypair
- ECDH stealth addresses (generate on the sender side, open on the recipient side)
- Write-verify-retry persistence over a lossy, eventually-consistent store
- Encrypted-at-rest private key material
- EIP-55 addresses and EIP-191 message signing
"""

__version__ = "1.0.0"
__all__ = [
    "config",
    "crypto_utils",
    "errors",
    "identity",
    "logging_config",
    "persistence",
    "relay",
    "sea",
    "session",
    "stealth",
    "store",
    "wallet",
]
