"""
TOML-based configuration for Shogun.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.

Usage:
    from shogun_core.config import load_config
    cfg = load_config("shogun.toml")
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomllib  # type: ignore[import]
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[import,no-redef]


@dataclass
class AppConfig:
    """Application namespace settings."""
    app_prefix: str = "shogun"


@dataclass
class StorageConfig:
    """Write-verify-retry discipline for the eventually-consistent store.

    All durations are in seconds.  ``op_timeout`` bounds a whole put/get/
    delete including every retry; ``None`` disables the outer bound.
    """
    write_timeout: float = 10.0
    read_timeout: float = 5.0
    op_timeout: float | None = 60.0
    verify_interval: float = 2.5
    verify_attempts: int = 5
    max_retries: int = 3
    read_retries: int = 3
    read_retry_interval: float = 1.0
    backoff_base: float = 1.0
    backoff_max: float = 8.0
    # Tombstone the path before writing an object, so stale fields from a
    # previous value cannot survive the store's field-level merge.
    clear_before_write: bool = True


@dataclass
class WalletConfig:
    """Wallet derivation and persistence settings."""
    hd_base_path: str = "m/44'/60'/0'/0"
    encrypt_private_keys: bool = True
    max_index_collisions: int = 3
    # Seconds to wait after claiming an index before checking the claim held.
    claim_settle_interval: float = 2.5
    legacy_key_field: str = "priv"   # "priv" or "epriv"


@dataclass
class SeaConfig:
    """Default SEA adapter settings."""
    pbkdf2_iterations: int = 100_000


@dataclass
class RelayConfig:
    """Remote relay settings (empty ``url`` = in-memory store)."""
    url: str = ""
    request_timeout: float = 10.0


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class ShogunConfig:
    """Top-level configuration container."""
    app: AppConfig = field(default_factory=AppConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    wallet: WalletConfig = field(default_factory=WalletConfig)
    sea: SeaConfig = field(default_factory=SeaConfig)
    relay: RelayConfig = field(default_factory=RelayConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def load_config(path: str | None = None) -> ShogunConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        SHOGUN_APP_PREFIX        -> app.app_prefix
        SHOGUN_RELAY_URL         -> relay.url
        SHOGUN_LOG_LEVEL         -> logging.level
        SHOGUN_LOG_FMT           -> logging.format
        SHOGUN_VERIFY_ATTEMPTS   -> storage.verify_attempts
        SHOGUN_MAX_RETRIES       -> storage.max_retries
        SHOGUN_WRITE_TIMEOUT     -> storage.write_timeout
        SHOGUN_PBKDF2_ITERATIONS -> sea.pbkdf2_iterations
    """
    cfg = ShogunConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            for section_name, section_dc in [
                ("app", cfg.app),
                ("storage", cfg.storage),
                ("wallet", cfg.wallet),
                ("sea", cfg.sea),
                ("relay", cfg.relay),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("SHOGUN_APP_PREFIX"):
        cfg.app.app_prefix = v
    if v := os.environ.get("SHOGUN_RELAY_URL"):
        cfg.relay.url = v
    if v := os.environ.get("SHOGUN_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("SHOGUN_LOG_FMT"):
        cfg.logging.format = v
    if v := os.environ.get("SHOGUN_VERIFY_ATTEMPTS"):
        cfg.storage.verify_attempts = int(v)
    if v := os.environ.get("SHOGUN_MAX_RETRIES"):
        cfg.storage.max_retries = int(v)
    if v := os.environ.get("SHOGUN_WRITE_TIMEOUT"):
        cfg.storage.write_timeout = float(v)
    if v := os.environ.get("SHOGUN_PBKDF2_ITERATIONS"):
        cfg.sea.pbkdf2_iterations = int(v)

    return cfg
