import math
import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, PositiveFloat, PositiveInt, field_validator, model_validator

import injector.constants as C

pkg_root = Path(__file__).parent
config_file = pkg_root / "config.toml"

cfg = tomllib.loads(config_file.read_text())

# Environment wins over config.toml for the things that change per deployment
ENV_OVERRIDES = {
    "GATEWAY_URL": "gateway_url",
    "GATEWAY_TYPE": "gateway_type",
    "NETWORK_ID": "network_id",
    "ACCOUNTS_FILE": "accounts_file",
    "ARTIFACTS_DIR": "artifacts_dir",
    "DRAIN_TIMEOUT": "drain_timeout",
}


class Settings(BaseModel):
    """Process-wide settings. Built once at startup and passed to every workflow."""

    model_config = ConfigDict(frozen=True)

    gateway_url: str
    gateway_type: C.GatewayType = C.GatewayType.RPC
    network_id: str
    hash_key: str = C.HASH_KEY
    request_timeout: PositiveFloat = C.REQUEST_TIMEOUT
    grace_period: float = Field(default=C.GRACE_PERIOD, ge=0)
    drain_timeout: float | None = C.DRAIN_TIMEOUT
    max_rounds: PositiveInt = C.PROVISION_ROUNDS
    accounts_file: Path = Path("artifacts/accounts.json")
    artifacts_dir: Path = Path("artifacts")
    stake_amount: PositiveInt = C.DEFAULT_STAKE_AMOUNT

    @field_validator("gateway_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("drain_timeout")
    @classmethod
    def _unbounded_drain(cls, v: float | None) -> float | None:
        # TOML has no null, a negative drain means wait for every in-flight injection
        return None if v is not None and v < 0 else v


class LoadParams(BaseModel):
    """Parameters of a single sustained load run."""

    model_config = ConfigDict(frozen=True)

    tx_type: C.TxKind = C.TxKind(cfg["load"]["tx_type"])
    tps: PositiveFloat = cfg["load"]["tps"]
    duration: PositiveFloat = cfg["load"]["duration"]
    eoa: NonNegativeInt
    eoa_tps: PositiveFloat = cfg["load"]["eoa_tps"]
    transfer_amount: PositiveInt = cfg["load"]["transfer_amount"]
    verbosity: bool = cfg["load"]["verbosity"]
    reuse_accounts: bool = cfg["load"]["reuse_accounts"]

    @model_validator(mode="before")
    @classmethod
    def _auto_eoa(cls, data: Any) -> Any:
        # No explicit count: enough identities for half the planned transactions, halves round up
        if isinstance(data, dict) and data.get("eoa") is None:
            tps = float(data.get("tps", cfg["load"]["tps"]))
            duration = float(data.get("duration", cfg["load"]["duration"]))
            data = {**data, "eoa": max(C.MIN_POOL_SIZE, math.floor(tps * duration / 2 + 0.5))}
        return data

    @field_validator("tx_type")
    @classmethod
    def _load_kind(cls, v: C.TxKind) -> C.TxKind:
        if v not in C.LOAD_KINDS:
            raise ValueError(f"{v} is not a load transaction type, use one of {[str(k) for k in C.LOAD_KINDS]}")
        return v


def load_settings(**overrides: Any) -> Settings:
    """Merge config.toml, environment and explicit overrides into a Settings value."""
    values: dict[str, Any] = {
        "gateway_type": cfg["gateway"]["type"],
        "gateway_url": cfg["gateway"].get("url", ""),
        "request_timeout": cfg["gateway"]["request_timeout"],
        "network_id": cfg["network"]["id"],
        "hash_key": cfg["network"].get("hash_key", C.HASH_KEY),
        "grace_period": cfg["timeout"]["grace_period"],
        "drain_timeout": cfg["timeout"]["drain"],
        "max_rounds": cfg["provisioning"]["max_rounds"],
        "accounts_file": cfg["paths"]["accounts_file"],
        "artifacts_dir": cfg["paths"]["artifacts_dir"],
        "stake_amount": cfg["stake"]["amount"],
    }
    for env, key in ENV_OVERRIDES.items():
        if v := os.getenv(env):
            values[key] = v
    values.update({k: v for k, v in overrides.items() if v is not None})

    if not values.get("gateway_url"):
        values["gateway_url"] = C.DEFAULT_GATEWAY_URLS.get(values["gateway_type"], "")
    return Settings(**values)
