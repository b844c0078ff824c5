"""
Shared pytest fixtures for the Shogun test suite.
"""

import pytest

from shogun_core.config import SeaConfig, ShogunConfig, StorageConfig, WalletConfig
from shogun_core.identity import Identity
from shogun_core.sea import KeyPair, SeaCrypto
from shogun_core.session import Session
from shogun_core.store import MemoryGraphStore

FAST_ITERATIONS = 1_000


def make_pair() -> KeyPair:
    """Fresh master keypair without going through the event loop."""
    pub, priv = SeaCrypto._new_key()
    epub, epriv = SeaCrypto._new_key()
    return KeyPair(pub=pub, priv=priv, epub=epub, epriv=epriv)


def fast_storage(**overrides) -> StorageConfig:
    """Millisecond-scale verify/retry timings."""
    values = dict(
        write_timeout=1.0,
        read_timeout=1.0,
        op_timeout=5.0,
        verify_interval=0.001,
        verify_attempts=5,
        max_retries=3,
        read_retries=1,
        read_retry_interval=0.001,
        backoff_base=0.001,
        backoff_max=0.01,
    )
    values.update(overrides)
    return StorageConfig(**values)


@pytest.fixture
def sea():
    """SEA adapter with a cheap PBKDF2 work factor."""
    return SeaCrypto(iterations=FAST_ITERATIONS)


@pytest.fixture
def master_pair():
    return make_pair()


@pytest.fixture
def session(master_pair):
    """Authenticated session for a fresh identity."""
    return Session(pair=master_pair, alias="alice")


@pytest.fixture
def store():
    return MemoryGraphStore()


@pytest.fixture
def storage_config():
    return fast_storage()


@pytest.fixture
def config(storage_config):
    return ShogunConfig(
        storage=storage_config,
        wallet=WalletConfig(claim_settle_interval=0.05),
        sea=SeaConfig(pbkdf2_iterations=FAST_ITERATIONS),
    )


@pytest.fixture
def identity(session, store, sea, config):
    """Identity facade over an in-memory store."""
    return Identity(session, store, sea=sea, config=config)
