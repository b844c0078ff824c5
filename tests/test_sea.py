"""
Tests for shogun_core.sea — the default SEA adapter.
"""

from __future__ import annotations

import pytest

from shogun_core.errors import MissingParameters, ValidationError
from shogun_core.sea import (
    KeyPair,
    SeaCrypto,
    decode_public_key,
    encode_public_key,
    is_sea_ciphertext,
)


class TestKeyPair:
    def test_from_dict_requires_all_fields(self):
        with pytest.raises(MissingParameters):
            KeyPair.from_dict({"pub": "a", "priv": "b", "epub": "c"})

    def test_dict_roundtrip(self):
        pair = KeyPair("a", "b", "c", "d")
        assert KeyPair.from_dict(pair.to_dict()) == pair

    def test_repr_hides_private_keys(self):
        pair = KeyPair("pub-value", "PRIVATE", "epub-value", "EPRIVATE")
        assert "PRIVATE" not in repr(pair)


class TestPublicKeyEncoding:
    def test_roundtrip(self):
        raw = bytes(range(64))
        assert decode_public_key(encode_public_key(raw)) == raw

    def test_leading_tilde_ignored(self):
        raw = bytes(range(64))
        assert decode_public_key("~" + encode_public_key(raw)) == raw

    @pytest.mark.parametrize("bad", ["", "onlyonepart", "a.b.c", "AAAA.AAAA"])
    def test_malformed(self, bad):
        with pytest.raises(ValidationError):
            decode_public_key(bad)


@pytest.mark.asyncio
class TestSeaCrypto:
    async def test_pair_shape(self, sea):
        pair = await sea.pair()
        assert len(decode_public_key(pair.pub)) == 64
        assert len(decode_public_key(pair.epub)) == 64
        assert pair.pub != pair.epub

    async def test_secret_is_symmetric(self, sea):
        alice = await sea.pair()
        bob = await sea.pair()
        s1 = await sea.secret(bob.epub, alice)
        s2 = await sea.secret(alice.epub, bob)
        assert s1 and s1 == s2

    async def test_secret_accepts_mapping(self, sea):
        alice = await sea.pair()
        bob = await sea.pair()
        s1 = await sea.secret(bob.epub, {"epub": alice.epub, "epriv": alice.epriv})
        assert s1 == await sea.secret(alice.epub, bob)

    async def test_secret_bad_key_returns_none(self, sea):
        alice = await sea.pair()
        assert await sea.secret("not-a-key", alice) is None
        assert await sea.secret("", alice) is None

    async def test_work_is_deterministic(self, sea):
        pair = await sea.pair()
        a = await sea.work("salt-1", pair)
        b = await sea.work("salt-1", pair)
        c = await sea.work("salt-2", pair)
        assert a == b
        assert a != c

    async def test_work_depends_on_pair(self, sea):
        p1 = await sea.pair()
        p2 = await sea.pair()
        assert await sea.work("salt", p1) != await sea.work("salt", p2)

    async def test_work_with_string_salt(self, sea):
        assert await sea.work("data", "salt") == await sea.work("data", "salt")

    async def test_work_empty_input(self, sea):
        pair = await sea.pair()
        assert await sea.work("", pair) is None

    async def test_encrypt_decrypt(self, sea):
        pair = await sea.pair()
        ct = await sea.encrypt("0x" + "ab" * 32, pair)
        assert is_sea_ciphertext(ct)
        assert "ab" * 32 not in ct
        assert await sea.decrypt(ct, pair) == "0x" + "ab" * 32

    async def test_encrypt_is_randomised(self, sea):
        pair = await sea.pair()
        assert await sea.encrypt("x", pair) != await sea.encrypt("x", pair)

    async def test_decrypt_with_wrong_pair(self, sea):
        pair = await sea.pair()
        other = await sea.pair()
        ct = await sea.encrypt({"k": 1}, pair)
        assert await sea.decrypt(ct, other) is None

    async def test_decrypt_non_ciphertext(self, sea):
        pair = await sea.pair()
        assert await sea.decrypt("plain", pair) is None
        assert await sea.decrypt("SEA{broken", pair) is None
