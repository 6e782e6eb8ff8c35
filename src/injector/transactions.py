import logging
import random
import time
from collections.abc import Callable
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

import injector.constants as C
from injector.config import Settings
from injector.crypto import Identity, canonical_json, hash_hex, sign_object, to_shardus_address, verify_signature

log = logging.getLogger("injector.txn")


# Transaction kinds are registered in _BUILDERS (single source of truth)


def now_ms() -> int:
    return int(time.time() * 1000)


def random_string(length: int, rng: random.Random | None = None) -> str:
    return "".join((rng or random).choices(C.ALPHANUMERIC, k=length))


def chat_id(a: str, b: str, key: str = C.HASH_KEY) -> str:
    """Conversation id for two parties. Order of the arguments does not matter."""
    return hash_hex("".join(sorted((to_shardus_address(a), to_shardus_address(b)))), key)


class BigInt(BaseModel):
    """Amount encoded the way the network's JSON reviver expects big integers."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    data_type: Literal["bi"] = Field(default="bi", alias="dataType")
    value: str

    @classmethod
    def of(cls, n: int) -> "BigInt":
        if n < 0:
            raise ValueError(f"Negative amount: {n}")
        return cls(value=format(n, "x"))

    def __int__(self) -> int:
        return int(self.value, 16)


class Signature(BaseModel):
    model_config = ConfigDict(frozen=True)

    owner: str
    sig: str


class _SignedTx(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    timestamp: int
    network_id: str = Field(alias="networkId")
    sign: Signature

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")

    def unsigned(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude={"sign"})

    def to_wire(self) -> str:
        return canonical_json(self.to_json())

    @property
    def sender(self) -> str:
        return self.sign.owner

    @property
    def recipient(self) -> str | None:
        return None


class RegisterTx(_SignedTx):
    type: Literal["register"] = "register"
    alias_hash: str = Field(alias="aliasHash")
    from_: str = Field(alias="from")
    alias: str
    public_key: str = Field(alias="publicKey")


class TransferTx(_SignedTx):
    type: Literal["transfer"] = "transfer"
    from_: str = Field(alias="from")
    to: str
    amount: BigInt

    @property
    def recipient(self) -> str:
        return self.to


class MessageTx(_SignedTx):
    type: Literal["message"] = "message"
    from_: str = Field(alias="from")
    to: str
    amount: BigInt
    chat_id: str = Field(alias="chatId")
    message: str

    @property
    def recipient(self) -> str:
        return self.to


class DepositStakeTx(_SignedTx):
    type: Literal["deposit_stake"] = "deposit_stake"
    nominator: str
    nominee: str
    stake: BigInt

    @property
    def recipient(self) -> str:
        return self.nominee


class ChangeConfigTx(_SignedTx):
    type: Literal["change_config"] = "change_config"
    from_: str = Field(alias="from")
    cycle: int
    config: str


Transaction = Annotated[
    RegisterTx | TransferTx | MessageTx | DepositStakeTx | ChangeConfigTx,
    Field(discriminator="type"),
]
TransactionAdapter: TypeAdapter[Transaction] = TypeAdapter(Transaction)


def parse_transaction(data: dict[str, Any] | str) -> Transaction:
    if isinstance(data, str):
        return TransactionAdapter.validate_json(data)
    return TransactionAdapter.validate_python(data)


def verify_transaction(tx: Transaction, key: str = C.HASH_KEY) -> bool:
    """Check the signature against the owner the transaction claims."""
    return verify_signature(tx.unsigned(), tx.sign.sig, tx.sign.owner, key)


# =============================================================================
# Body builders: each returns the kind-specific members, unsigned
# =============================================================================


def _build_register(signer: Identity, settings: Settings, *, alias: str | None = None) -> dict:
    alias = alias or signer.alias or random_string(C.ALIAS_LENGTH)
    return {
        "aliasHash": hash_hex(alias, settings.hash_key),
        "from": signer.address,
        "alias": alias,
        "publicKey": signer.public_key,
    }


def _build_transfer(signer: Identity, settings: Settings, *, to: str, amount: int) -> dict:
    return {
        "from": signer.address,
        "to": to_shardus_address(to),
        "amount": BigInt.of(amount).model_dump(by_alias=True),
    }


def _build_message(signer: Identity, settings: Settings, *, to: str, message: str | None = None) -> dict:
    to = to_shardus_address(to)
    return {
        "from": signer.address,
        "to": to,
        "amount": BigInt.of(1).model_dump(by_alias=True),
        "chatId": chat_id(signer.address, to, settings.hash_key),
        "message": message if message is not None else random_string(C.MESSAGE_LENGTH),
    }


def _build_deposit_stake(signer: Identity, settings: Settings, *, nominee: str, amount: int) -> dict:
    return {
        "nominator": signer.address,
        "nominee": nominee,
        "stake": BigInt.of(amount).model_dump(by_alias=True),
    }


def _build_change_config(signer: Identity, settings: Settings, *, config: dict | str, cycle: int = -1) -> dict:
    return {
        "from": signer.address,
        "cycle": cycle,
        "config": config if isinstance(config, str) else canonical_json(config),
    }


_BUILDERS: dict[C.TxKind, tuple[Callable[..., dict], type[_SignedTx]]] = {
    C.TxKind.REGISTER: (_build_register, RegisterTx),
    C.TxKind.TRANSFER: (_build_transfer, TransferTx),
    C.TxKind.MESSAGE: (_build_message, MessageTx),
    C.TxKind.DEPOSIT_STAKE: (_build_deposit_stake, DepositStakeTx),
    C.TxKind.CHANGE_CONFIG: (_build_change_config, ChangeConfigTx),
}


# =============================================================================
# Public API
# =============================================================================


def build_txn(kind: C.TxKind | str, signer: Identity, settings: Settings, **fields: Any) -> Transaction:
    """Build and sign a transaction of ``kind``.

    Args:
        kind: Transaction kind, see ``TxKind``.
        signer: Identity whose key signs the transaction.
        settings: Supplies the network id and hash key.
        **fields: Kind-specific inputs (``to``, ``amount``, ``nominee``, ...).

    Raises:
        ValueError: If ``kind`` is not supported.
    """
    try:
        builder, model = _BUILDERS[C.TxKind(kind)]
    except (KeyError, ValueError):
        raise ValueError(f"Unsupported transaction kind: {kind!r}") from None

    body = builder(signer, settings, **fields)
    body.update(type=str(kind), timestamp=now_ms(), networkId=settings.network_id)
    body["sign"] = sign_object(signer, body, settings.hash_key)
    return model.model_validate(body)


def build_register(signer: Identity, settings: Settings, alias: str | None = None) -> RegisterTx:
    return build_txn(C.TxKind.REGISTER, signer, settings, alias=alias)


def build_transfer(signer: Identity, to: str, amount: int, settings: Settings) -> TransferTx:
    return build_txn(C.TxKind.TRANSFER, signer, settings, to=to, amount=amount)


def build_message(signer: Identity, to: str, settings: Settings, message: str | None = None) -> MessageTx:
    return build_txn(C.TxKind.MESSAGE, signer, settings, to=to, message=message)


def build_deposit_stake(signer: Identity, nominee: str, amount: int, settings: Settings) -> DepositStakeTx:
    return build_txn(C.TxKind.DEPOSIT_STAKE, signer, settings, nominee=nominee, amount=amount)


def build_change_config(signer: Identity, config: dict | str, settings: Settings, cycle: int = -1) -> ChangeConfigTx:
    return build_txn(C.TxKind.CHANGE_CONFIG, signer, settings, config=config, cycle=cycle)
