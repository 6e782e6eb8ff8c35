"""Unit tests for transaction building."""

import json

import pytest

from injector.crypto import Identity, hash_hex
from injector.transactions import (
    BigInt,
    ChangeConfigTx,
    MessageTx,
    TransferTx,
    build_change_config,
    build_deposit_stake,
    build_message,
    build_register,
    build_transfer,
    build_txn,
    chat_id,
    parse_transaction,
    random_string,
    verify_transaction,
)


@pytest.fixture
def alice() -> Identity:
    return Identity.create(alias="alice")


@pytest.fixture
def bob() -> Identity:
    return Identity.create(alias="bob")


class TestTransfer:
    def test_fields(self, alice, bob, settings) -> None:
        tx = build_transfer(alice, bob.address, 255, settings)
        body = tx.to_json()

        assert body["type"] == "transfer"
        assert body["from"] == alice.address
        assert body["to"] == bob.address
        assert body["amount"] == {"dataType": "bi", "value": "ff"}
        assert body["networkId"] == settings.network_id
        assert body["sign"]["owner"] == alice.address
        assert isinstance(body["timestamp"], int)

    def test_signature_verifies(self, alice, bob, settings) -> None:
        tx = build_transfer(alice, bob.address, 1, settings)
        assert verify_transaction(tx, settings.hash_key)

    def test_wire_form_parses_back(self, alice, bob, settings) -> None:
        tx = build_transfer(alice, bob.address, 1, settings)
        parsed = parse_transaction(tx.to_wire())
        assert isinstance(parsed, TransferTx)
        assert parsed == tx
        assert json.loads(tx.to_wire()) == tx.to_json()


class TestMessage:
    def test_chat_id_is_symmetric(self, alice, bob) -> None:
        assert chat_id(alice.address, bob.address) == chat_id(bob.address, alice.address)
        assert chat_id(alice.address, bob.address) != chat_id(alice.address, Identity.create().address)

    def test_fields(self, alice, bob, settings) -> None:
        tx = build_message(alice, bob.address, settings)
        assert isinstance(tx, MessageTx)
        assert tx.amount == BigInt(value="1")
        assert len(tx.message) == 30
        assert tx.chat_id == chat_id(alice.address, bob.address, settings.hash_key)
        assert tx.sender == alice.address
        assert tx.recipient == bob.address
        assert verify_transaction(tx, settings.hash_key)


class TestOtherKinds:
    def test_register(self, alice, settings) -> None:
        tx = build_register(alice, settings)
        body = tx.to_json()
        assert body["alias"] == "alice"
        assert body["aliasHash"] == hash_hex("alice", settings.hash_key)
        assert body["publicKey"] == alice.public_key
        assert verify_transaction(tx, settings.hash_key)

    def test_deposit_stake(self, alice, settings) -> None:
        tx = build_deposit_stake(alice, "ab" * 32, 10, settings)
        body = tx.to_json()
        assert body["nominator"] == alice.address
        assert body["nominee"] == "ab" * 32
        assert body["stake"] == {"dataType": "bi", "value": "a"}
        assert int(tx.stake) == 10

    def test_change_config_serializes_change(self, alice, settings) -> None:
        tx = build_change_config(alice, {"p2p": {"minNodes": 5}}, settings)
        assert isinstance(tx, ChangeConfigTx)
        assert tx.cycle == -1
        assert tx.config == '{"p2p":{"minNodes":5}}'

    def test_unknown_kind(self, alice, settings) -> None:
        with pytest.raises(ValueError, match="Unsupported"):
            build_txn("mint", alice, settings)


def test_negative_amount_rejected() -> None:
    with pytest.raises(ValueError):
        BigInt.of(-1)


def test_random_string_alphabet() -> None:
    s = random_string(200)
    assert len(s) == 200
    assert s.isalnum()
