"""Unit tests for addresses, hashing and the signing contract."""

import re

import pytest

from injector.crypto import (
    Identity,
    canonical_json,
    hash_hex,
    hash_object,
    is_valid_shardus_address,
    recover_address,
    sign_object,
    to_shardus_address,
    verify_signature,
)


class TestShardusAddress:
    """Canonical address form."""

    @pytest.mark.parametrize("raw", [
        "0xAbCdEf0123456789abcdef0123456789ABCDEF01",
        "abcdef0123456789abcdef0123456789abcdef01",
        "0x" + "f" * 64,
        "",
    ])
    def test_canonical_form_is_64_lowercase_hex_and_idempotent(self, raw: str) -> None:
        addr = to_shardus_address(raw)
        assert re.fullmatch(r"[0-9a-f]{64}", addr)
        assert to_shardus_address(addr) == addr

    def test_pads_on_the_right(self) -> None:
        assert to_shardus_address("0xAB") == "ab" + "0" * 62

    @pytest.mark.parametrize("raw", ["0x" + "a" * 65, "0xzz", "hello"])
    def test_rejects_non_hex_or_too_long(self, raw: str) -> None:
        with pytest.raises(ValueError):
            to_shardus_address(raw)

    def test_validity_check(self) -> None:
        assert is_valid_shardus_address("a" * 64)
        assert is_valid_shardus_address("0x" + "A" * 64)
        assert not is_valid_shardus_address("a" * 40)
        assert not is_valid_shardus_address("g" * 64)


class TestHashing:
    def test_canonical_json_is_compact_and_sorted(self) -> None:
        assert canonical_json({"b": 1, "a": {"d": [1, 2], "c": "é"}}) == '{"a":{"c":"é","d":[1,2]},"b":1}'

    def test_hash_is_keyed_blake2b_256(self) -> None:
        digest = hash_hex("hello")
        assert len(digest) == 64
        assert digest != hash_hex("hello", key="00" * 32)
        assert hash_hex(b"hello") == digest

    def test_object_hash_ignores_key_order(self) -> None:
        assert hash_object({"a": 1, "b": 2}) == hash_object({"b": 2, "a": 1})


class TestSigning:
    """Sign and verify against the signer's canonical address."""

    def test_signature_encoding(self) -> None:
        sign = sign_object(Identity.create(), {"type": "transfer", "amount": 1})
        assert re.fullmatch(r"0x[0-9a-f]{128}(1b|1c)", sign["sig"])

    def test_verifies_for_signer_only(self) -> None:
        signer, other = Identity.create(), Identity.create()
        body = {"from": signer.address, "to": other.address, "timestamp": 1}
        sign = sign_object(signer, body)

        assert sign["owner"] == signer.address
        assert verify_signature(body, sign["sig"], signer.address)
        assert not verify_signature(body, sign["sig"], other.address)

    def test_tampered_body_fails(self) -> None:
        signer = Identity.create()
        body = {"from": signer.address, "value": "1"}
        sig = sign_object(signer, body)["sig"]
        assert not verify_signature({**body, "value": "2"}, sig, signer.address)

    def test_malformed_signature_is_rejected_not_raised(self) -> None:
        assert not verify_signature({"a": 1}, "0x1234", "a" * 64)

    def test_recover_matches_eth_address(self) -> None:
        signer = Identity.create()
        sig = sign_object(signer, {"x": 1})["sig"]
        assert recover_address(hash_object({"x": 1}), sig) == to_shardus_address(signer.eth_address)


class TestIdentity:
    def test_private_key_round_trip(self) -> None:
        identity = Identity.create(alias="alice")
        restored = Identity.from_private_key(identity.private_key, alias="alice")
        assert restored.address == identity.address
        assert restored.alias == "alice"

    def test_public_key_is_uncompressed_uppercase_hex(self) -> None:
        pk = Identity.create().public_key
        assert pk.startswith("04")
        assert len(pk) == 130
        assert pk == pk.upper()

    def test_is_immutable(self) -> None:
        identity = Identity.create()
        with pytest.raises(AttributeError):
            identity.alias = "bob"
