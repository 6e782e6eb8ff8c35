from typing import Final
from enum import StrEnum

# Key for the network's keyed BLAKE2b hash. Every node and client shares it.
HASH_KEY: Final = "69fa4195670576c0160d660c3be36556ff8d504725be8a59b5a96509e0c994bc"

ADDRESS_LENGTH: Final = 64
ALPHANUMERIC: Final = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"


class TxKind(StrEnum):
    REGISTER      = "register"
    TRANSFER      = "transfer"
    MESSAGE       = "message"
    DEPOSIT_STAKE = "deposit_stake"
    CHANGE_CONFIG = "change_config"


class GatewayType(StrEnum):
    RPC   = "rpc"
    PROXY = "proxy"


# Kinds a sustained load run can inject
LOAD_KINDS: Final = (TxKind.TRANSFER, TxKind.MESSAGE)

DEFAULT_GATEWAY_URLS: Final = {
    GatewayType.RPC: "http://0.0.0.0:8545",
    GatewayType.PROXY: "http://0.0.0.0:3030",
}

FAILURE_STATUS = 500  # status stamped on results synthesized from transport/parse errors
ALIAS_LENGTH = 10
MESSAGE_LENGTH = 30
MIN_POOL_SIZE = 2
REQUEST_TIMEOUT = 10.0
GRACE_PERIOD = 30.0
DRAIN_TIMEOUT = 10.0
PROVISION_ROUNDS = 3
DEFAULT_STAKE_AMOUNT = 10
DEFAULT_EOA_TPS = 4.0

__all__ = [
    "ADDRESS_LENGTH",
    "ALIAS_LENGTH",
    "ALPHANUMERIC",
    "DEFAULT_GATEWAY_URLS",
    "DEFAULT_EOA_TPS",
    "DEFAULT_STAKE_AMOUNT",
    "DRAIN_TIMEOUT",
    "FAILURE_STATUS",
    "GRACE_PERIOD",
    "HASH_KEY",
    "LOAD_KINDS",
    "MESSAGE_LENGTH",
    "MIN_POOL_SIZE",
    "PROVISION_ROUNDS",
    "REQUEST_TIMEOUT",

    ######
    "GatewayType",
    "TxKind",
]
