"""Hashing, signing and identities.

The network signs transactions like this:

  1. serialize the transaction without its ``sign`` member as compact JSON with
     sorted keys,
  2. hash it with keyed BLAKE2b-256 (the network hash key) to a hex digest,
  3. sign the hex digest as an EIP-191 personal message with secp256k1,
  4. encode ``0x`` + r + s (64 hex chars each) + ``1b``/``1c`` for the
     recovery parity.

Verification rebuilds the same bytes, so the serialization here must stay
byte-identical to what the nodes produce.
"""
import hashlib
import json
import re
from dataclasses import dataclass
from typing import Any

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError

import injector.constants as C

_HEX = re.compile(r"[0-9a-f]*")
_SIGNATURE = re.compile(r"0x[0-9a-f]{128}(1b|1c)")


def to_shardus_address(address: str) -> str:
    """Canonical address form: lowercase hex, no ``0x``, right-padded with zeros to 64 chars."""
    addr = address.lower().removeprefix("0x")
    if len(addr) > C.ADDRESS_LENGTH or not _HEX.fullmatch(addr):
        raise ValueError(f"Not a hex address: {address!r}")
    return addr.ljust(C.ADDRESS_LENGTH, "0")


def is_valid_shardus_address(address: str) -> bool:
    """True for a 32 byte hex string, ``0x`` prefix optional."""
    addr = address.removeprefix("0x")
    return len(addr) == C.ADDRESS_LENGTH and all(c in "0123456789abcdefABCDEF" for c in addr)


def canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def hash_hex(data: str | bytes, key: str = C.HASH_KEY) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.blake2b(data, digest_size=32, key=bytes.fromhex(key)).hexdigest()


def hash_object(obj: Any, key: str = C.HASH_KEY) -> str:
    return hash_hex(canonical_json(obj), key)


@dataclass(frozen=True, slots=True)
class Identity:
    """A signing keypair plus its derived network address and an optional alias."""

    account: LocalAccount
    alias: str | None = None
    registration_tx_id: str | None = None
    registered_at: int | None = None

    @classmethod
    def create(cls, alias: str | None = None) -> "Identity":
        return cls(account=Account.create(), alias=alias)

    @classmethod
    def from_private_key(cls, private_key: str, alias: str | None = None, **provenance: Any) -> "Identity":
        return cls(account=Account.from_key(private_key), alias=alias, **provenance)

    @property
    def address(self) -> str:
        return to_shardus_address(self.account.address)

    @property
    def eth_address(self) -> str:
        return self.account.address

    @property
    def private_key(self) -> str:
        return bytes(self.account.key).hex()

    @property
    def public_key(self) -> str:
        # Uncompressed SEC1 point, the form the network stores for an alias owner
        pk = keys.PrivateKey(bytes(self.account.key)).public_key
        return ("04" + pk.to_bytes().hex()).upper()

    def __repr__(self) -> str:
        return f"Identity(address={self.address}, alias={self.alias!r})"


def sign_digest(account: LocalAccount, digest: str) -> str:
    signed = account.sign_message(encode_defunct(text=digest))
    parity = "1b" if signed.v == 27 else "1c"
    return f"0x{signed.r:064x}{signed.s:064x}{parity}"


def sign_object(identity: Identity, obj: dict, key: str = C.HASH_KEY) -> dict:
    """Sign an unsigned transaction body. Returns the ``sign`` member to attach."""
    return {"owner": identity.address, "sig": sign_digest(identity.account, hash_object(obj, key))}


def recover_address(digest: str, sig: str) -> str:
    """Canonical address of whoever produced ``sig`` over ``digest``."""
    if not _SIGNATURE.fullmatch(sig):
        raise ValueError(f"Malformed signature: {sig!r}")
    r = int(sig[2:66], 16)
    s = int(sig[66:130], 16)
    v = 27 if sig[130:] == "1b" else 28
    return to_shardus_address(Account.recover_message(encode_defunct(text=digest), vrs=(v, r, s)))


def verify_signature(obj: dict, sig: str, address: str, key: str = C.HASH_KEY) -> bool:
    try:
        return recover_address(hash_object(obj, key), sig) == to_shardus_address(address)
    except (ValueError, BadSignature, ValidationError):
        return False
