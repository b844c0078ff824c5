"""
Tests for shogun_core.wallet — deterministic wallet derivation.

Covers:
  - Golden vectors with a fixed KDF output
  - Determinism with the real SEA work function
  - HD-index entropy and next-index computation
  - Legacy single-wallet mode
  - Failure modes (bad salt, KDF failures, bad key length)
"""

from __future__ import annotations

import pytest

from shogun_core.crypto_utils import base64url_encode, recover_message_signer
from shogun_core.errors import (
    InvalidKeyLength,
    InvalidSalt,
    KdfFailure,
    KeysNotFound,
    MissingParameters,
    ValidationError,
)
from shogun_core.wallet import (
    DerivedWallet,
    WalletDeriver,
    hd_path,
    make_salt,
    next_index,
)

GOLDEN_PAIR = {"pub": "AbC123", "priv": "p", "epub": "e", "epriv": "q"}

# sha256(b"\x11" * 32)
GOLDEN_BYTES_KEY = "0x02d449a31fbb267c8f352e9968a79e3e5fc95c1bbeaa502fd6454ebde5a4bedc"
GOLDEN_BYTES_ADDRESS = "0x45b6669DF6294Aa6F920a2a94b21C462c2423674"

# sha256(utf8("0x1111...11"))
GOLDEN_TEXT_KEY = "0xdc70486ba63e5111f3e401f6c83814074f2b34f44cd652e34aecce72ed18fb71"
GOLDEN_TEXT_ADDRESS = "0xB85bBD97233746ee8B1a957aC6e92CC886767b1C"


class _FixedKdf:
    """SEA stand-in whose work() always returns the same output."""

    def __init__(self, output):
        self.output = output
        self.calls = []

    async def work(self, data, pair):
        self.calls.append(data)
        return self.output


class _FailingKdf:
    async def work(self, data, pair):
        raise RuntimeError("worker crashed")


# ═══════════════════════════════════════════════════════════════════
#  Helpers
# ═══════════════════════════════════════════════════════════════════

class TestHelpers:
    def test_hd_path(self):
        assert hd_path(0) == "m/44'/60'/0'/0/0"
        assert hd_path(7, "m/44'/60'/1'/0/") == "m/44'/60'/1'/0/7"

    @pytest.mark.parametrize("bad", [-1, 1.5, "3", True, None])
    def test_hd_path_rejects_bad_index(self, bad):
        with pytest.raises(ValidationError):
            hd_path(bad)

    def test_next_index(self):
        assert next_index([]) == 0
        assert next_index([0]) == 1
        assert next_index([0, 1, 5]) == 6

    def test_make_salt(self):
        s1, s2 = make_salt("AbC123"), make_salt("AbC123")
        assert s1.startswith("AbC123_")
        assert s1 != s2

    def test_record_roundtrip(self):
        wallet = DerivedWallet("0xabc", "0x01", "salt", index=2, name="main", timestamp=5)
        assert DerivedWallet.from_dict(wallet.to_dict()) == wallet

    def test_record_omits_none(self):
        data = DerivedWallet("0xabc", "0x01", "salt", timestamp=5).to_dict()
        assert "index" not in data and "name" not in data

    def test_record_missing_fields(self):
        with pytest.raises(MissingParameters):
            DerivedWallet.from_dict({"address": "0xabc"})

    def test_repr_hides_private_key(self):
        wallet = DerivedWallet("0xabc", GOLDEN_BYTES_KEY, "salt")
        assert GOLDEN_BYTES_KEY not in repr(wallet)


# ═══════════════════════════════════════════════════════════════════
#  Salt / index derivation
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
class TestDerivation:
    async def test_golden_vector_bytes(self):
        kdf = _FixedKdf(b"\x11" * 32)
        wallet = await WalletDeriver(kdf).derive_from_salt(GOLDEN_PAIR, "AbC123_0")
        assert wallet.private_key == GOLDEN_BYTES_KEY
        assert wallet.address == GOLDEN_BYTES_ADDRESS
        assert wallet.entropy == "AbC123_0"
        assert kdf.calls == ["AbC123_0"]

    async def test_golden_vector_text(self):
        kdf = _FixedKdf("0x" + "11" * 32)
        wallet = await WalletDeriver(kdf).derive_from_salt(GOLDEN_PAIR, "AbC123_0")
        assert wallet.private_key == GOLDEN_TEXT_KEY
        assert wallet.address == GOLDEN_TEXT_ADDRESS

    async def test_deterministic(self, sea, master_pair):
        deriver = WalletDeriver(sea)
        w1 = await deriver.derive_from_salt(master_pair, "salt-a")
        w2 = await deriver.derive_from_salt(master_pair, "salt-a")
        w3 = await deriver.derive_from_salt(master_pair, "salt-b")
        assert (w1.address, w1.private_key) == (w2.address, w2.private_key)
        assert w1.address != w3.address

    async def test_different_identities_differ(self, sea, master_pair):
        from conftest import make_pair
        deriver = WalletDeriver(sea)
        w1 = await deriver.derive_from_salt(master_pair, "same")
        w2 = await deriver.derive_from_salt(make_pair(), "same")
        assert w1.address != w2.address

    async def test_index_mode_uses_hd_path(self):
        kdf = _FixedKdf(b"\x11" * 32)
        wallet = await WalletDeriver(kdf).derive_at_index(GOLDEN_PAIR, 3)
        assert kdf.calls == ["m/44'/60'/0'/0/3"]
        assert wallet.entropy == "m/44'/60'/0'/0/3"
        assert wallet.index == 3

    async def test_rederive_matches(self, sea, master_pair):
        deriver = WalletDeriver(sea)
        wallet = await deriver.derive_at_index(master_pair, 1)
        again = await deriver.rederive(master_pair, wallet.entropy)
        assert again.private_key == wallet.private_key

    @pytest.mark.parametrize("salt", ["", None, 42])
    async def test_invalid_salt(self, salt):
        with pytest.raises(InvalidSalt):
            await WalletDeriver(_FixedKdf(b"\x11" * 32)).derive_from_salt(GOLDEN_PAIR, salt)

    async def test_kdf_returns_nothing(self):
        with pytest.raises(KdfFailure):
            await WalletDeriver(_FixedKdf(None)).derive_from_salt(GOLDEN_PAIR, "s")
        with pytest.raises(KdfFailure):
            await WalletDeriver(_FixedKdf("")).derive_from_salt(GOLDEN_PAIR, "s")

    async def test_kdf_raises(self):
        with pytest.raises(KdfFailure) as info:
            await WalletDeriver(_FailingKdf()).derive_from_salt(GOLDEN_PAIR, "s")
        assert isinstance(info.value.__cause__, RuntimeError)

    async def test_sign_message(self):
        wallet = await WalletDeriver(_FixedKdf(b"\x11" * 32)).derive_from_salt(GOLDEN_PAIR, "s")
        signature = wallet.sign_message("gm")
        assert recover_message_signer("gm", signature) == GOLDEN_BYTES_ADDRESS


# ═══════════════════════════════════════════════════════════════════
#  Legacy mode
# ═══════════════════════════════════════════════════════════════════

class TestLegacyWallet:
    KEY = "4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"

    def _pair(self, priv=None, epriv=None):
        return {
            "pub": "pub", "epub": "epub",
            "priv": priv or base64url_encode(bytes.fromhex(self.KEY)),
            "epriv": epriv or base64url_encode(b"\x01" * 32),
        }

    def test_priv_becomes_private_key(self):
        wallet = WalletDeriver(_FixedKdf(None)).legacy_wallet(self._pair())
        assert wallet.private_key == "0x" + self.KEY
        assert wallet.address == "0x2c7536E3605D9C16a7a3D7b1898e529396a65c23"
        assert wallet.index is None

    def test_epriv_field(self):
        wallet = WalletDeriver(_FixedKdf(None)).legacy_wallet(self._pair(), "epriv")
        assert wallet.private_key == "0x" + "01" * 32

    def test_legacy_is_deterministic(self, master_pair):
        deriver = WalletDeriver(_FixedKdf(None))
        w1, w2 = deriver.legacy_wallet(master_pair), deriver.legacy_wallet(master_pair)
        assert (w1.address, w1.private_key) == (w2.address, w2.private_key)

    def test_wrong_length(self):
        pair = self._pair(priv=base64url_encode(b"\x01" * 31))
        with pytest.raises(InvalidKeyLength):
            WalletDeriver(_FixedKdf(None)).legacy_wallet(pair)

    def test_missing_key(self):
        pair = {"pub": "pub", "priv": "", "epub": "e", "epriv": ""}
        with pytest.raises(KeysNotFound):
            WalletDeriver(_FixedKdf(None)).legacy_wallet(pair)

    def test_unknown_field(self):
        with pytest.raises(ValidationError):
            WalletDeriver(_FixedKdf(None)).legacy_wallet(self._pair(), "pub")
