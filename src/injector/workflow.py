import asyncio
import json
import logging
import random
import sys
from collections.abc import Awaitable
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any, TextIO

from pydantic import BaseModel, ConfigDict, Field, ValidationError

import injector.constants as C
from injector.accounts import AccountStore
from injector.aggregator import InjectionStats, ResultAggregator
from injector.config import LoadParams, Settings
from injector.crypto import Identity
from injector.dispatcher import DispatchReport, PacedDispatcher, pick_pair
from injector.errors import GatewayError, InjectorError, InsufficientWalletsError
from injector.gateway import GatewayClient, InjectedTxResp
from injector.provisioning import IdentityProvisioner, validate_registrations
from injector.transactions import Transaction, build_change_config, build_deposit_stake, build_message, build_transfer

log = logging.getLogger("injector.workflow")


class RunState(StrEnum):
    IDLE        = "idle"
    ACQUIRING   = "acquiring"
    WAITING     = "waiting"
    VALIDATING  = "validating"
    DISPATCHING = "dispatching"
    DONE        = "done"
    ABORTED     = "aborted"


@dataclass
class RunOutcome:
    kind: C.TxKind
    state: RunState
    pool_size: int
    stats: InjectionStats = field(default_factory=InjectionStats)
    report: DispatchReport | None = None
    log_path: Path | None = None
    message: str = ""

    @property
    def aborted(self) -> bool:
        return self.state is RunState.ABORTED

    def as_dict(self) -> dict[str, Any]:
        return {
            "kind": str(self.kind),
            "state": str(self.state),
            "pool_size": self.pool_size,
            "stats": self.stats.as_dict(),
            "log_path": str(self.log_path) if self.log_path else None,
            "message": self.message,
        }


@dataclass(frozen=True, slots=True)
class StakeResult:
    nominee: str
    nominator: str
    result: InjectedTxResp


class Nominee(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str | None = None
    ip: str | None = None
    port: int | None = None
    public_key: str = Field(alias="publicKey")


def load_nominees(path: str | Path) -> list[str]:
    """Public keys from a nominee file (``[{id, ip, port, publicKey}, ...]``)."""
    try:
        raw = json.loads(Path(path).read_text())
        return [Nominee.model_validate(n).public_key for n in raw]
    except (OSError, ValueError, TypeError, ValidationError) as e:
        raise InjectorError(f"Cannot read nominee file {path}: {e}") from e


class LoadInjector:
    """Runs load, staking and config-change workflows against one gateway.

    A load run is linear: acquire wallets, optionally wait out the grace period
    and validate, guard the pool size, dispatch at the requested rate, drain and
    report. One run at a time per instance.
    """

    def __init__(
        self,
        settings: Settings,
        gateway: GatewayClient,
        *,
        store: AccountStore | None = None,
        out: TextIO | None = None,
        rng: random.Random | None = None,
    ):
        self.settings = settings
        self.gateway = gateway
        self.store = store if store is not None else AccountStore(settings.accounts_file)
        self.out = out or sys.stdout
        self.rng = rng or random.Random()
        self.state = RunState.IDLE
        self.pool: tuple[Identity, ...] = ()
        self.aggregator: ResultAggregator | None = None
        self.last_outcome: RunOutcome | None = None
        self._dispatcher: PacedDispatcher | None = None
        self._stop_requested = False

    def _print(self, msg: str) -> None:
        self.out.write(msg + "\n")
        self.out.flush()

    def _provisioner(self, verbosity: bool) -> IdentityProvisioner:
        return IdentityProvisioner(self.gateway, self.settings, verbosity=verbosity, out=self.out)

    @property
    def running(self) -> bool:
        return self.state not in (RunState.IDLE, RunState.DONE, RunState.ABORTED)

    def status(self) -> dict[str, Any]:
        return {
            "state": str(self.state),
            "pool_size": len(self.pool),
            "stats": self.aggregator.stats.as_dict() if self.aggregator else None,
            "inflight": self._dispatcher.inflight if self._dispatcher else 0,
            "last_outcome": self.last_outcome.as_dict() if self.last_outcome else None,
        }

    def stop(self) -> None:
        self._stop_requested = True
        if self._dispatcher is not None:
            self._dispatcher.stop()

    async def _grace_and_validate(self, identities: list[Identity]) -> list[Identity]:
        if not identities:
            return []
        self.state = RunState.WAITING
        self._print(f"Waiting for {self.settings.grace_period:g} seconds before injecting transactions")
        await asyncio.sleep(self.settings.grace_period)
        self.state = RunState.VALIDATING
        return await validate_registrations(self.gateway, identities)

    async def acquire_wallets(self, params: LoadParams) -> tuple[Identity, ...]:
        """Build the run's wallet pool, from the store (reuse mode) or by registering fresh."""
        self.state = RunState.ACQUIRING
        provisioner = self._provisioner(params.verbosity)
        if not params.reuse_accounts:
            fresh = await provisioner.provision(params.eoa, params.eoa_tps)
            return tuple(await self._grace_and_validate(fresh))

        loaded = self.store.load(params.eoa)
        self._print(f"Loaded {len(loaded)} wallets from {self.store.path}")
        shortfall = params.eoa - len(loaded)
        fresh: list[Identity] = []
        if shortfall > 0:
            log.info("Store holds %d of %d wallets, registering %d more", len(loaded), params.eoa, shortfall)
            fresh = await self._grace_and_validate(await provisioner.provision(shortfall, params.eoa_tps))
        pool = (*loaded, *fresh)
        self.store.save(pool)
        return pool

    def _build(self, kind: C.TxKind, sender: Identity, recipient: Identity, params: LoadParams) -> Transaction:
        if kind is C.TxKind.TRANSFER:
            return build_transfer(sender, recipient.address, params.transfer_amount, self.settings)
        if kind is C.TxKind.MESSAGE:
            return build_message(sender, recipient.address, self.settings)
        raise ValueError(f"{kind} is not a load transaction type")

    @staticmethod
    def guard_pool(pool: tuple[Identity, ...]) -> None:
        if len(pool) < C.MIN_POOL_SIZE:
            raise InsufficientWalletsError(len(pool), C.MIN_POOL_SIZE)

    async def run(self, params: LoadParams) -> RunOutcome:
        """One sustained load run of ``params.tx_type``. Pool shortfalls end in an aborted outcome, not an exception."""
        kind = params.tx_type
        self._stop_requested = False
        self.aggregator = None
        try:
            self.pool = await self.acquire_wallets(params)
            self._print(f"Usable wallets: {len(self.pool)}")
            self.guard_pool(self.pool)
        except InsufficientWalletsError as e:
            log.error("Aborting %s run: %s", kind, e)
            self._print(f"Aborting: {e}")
            self.state = RunState.ABORTED
            self.last_outcome = RunOutcome(kind, self.state, len(self.pool), message=str(e))
            return self.last_outcome
        except BaseException:
            self.state = RunState.ABORTED
            raise

        if self._stop_requested:
            self.state = RunState.DONE
            self.last_outcome = RunOutcome(kind, self.state, len(self.pool), message="stopped before dispatch")
            return self.last_outcome

        pool = self.pool

        def work(index: int) -> tuple[Transaction, Awaitable[InjectedTxResp | GatewayError]]:
            s, r = pick_pair(len(pool), self.rng)
            tx = self._build(kind, pool[s], pool[r], params)
            return tx, self.gateway.try_inject(tx)

        self._print("Injecting transactions")
        aggregator = ResultAggregator(kind, self.settings.artifacts_dir, verbosity=params.verbosity, out=self.out)
        dispatcher = PacedDispatcher(
            params.tps, duration=params.duration, drain_timeout=self.settings.drain_timeout, name=str(kind),
        )
        self.aggregator, self._dispatcher = aggregator, dispatcher
        self.state = RunState.DISPATCHING
        try:
            async with asyncio.TaskGroup() as tg:
                tg.create_task(aggregator.consume(dispatcher.results))
                report = await dispatcher.run(work)
        except BaseException:
            self.state = RunState.ABORTED
            raise
        finally:
            self._dispatcher = None

        self.state = RunState.DONE
        self.last_outcome = RunOutcome(kind, self.state, len(pool), aggregator.stats, report, aggregator.log_path)
        return self.last_outcome

    async def transfer(self, params: LoadParams) -> RunOutcome:
        return await self.run(params.model_copy(update={"tx_type": C.TxKind.TRANSFER}))

    async def message(self, params: LoadParams) -> RunOutcome:
        return await self.run(params.model_copy(update={"tx_type": C.TxKind.MESSAGE}))

    async def stake(
        self,
        nominees: list[str],
        amount: int | None = None,
        *,
        eoa_tps: float = C.DEFAULT_EOA_TPS,
        verbosity: bool = False,
    ) -> list[StakeResult]:
        """Register one nominator per nominee and submit a deposit_stake for each."""
        amount = amount or self.settings.stake_amount
        wallets = await self._provisioner(verbosity).provision_until(
            len(nominees), eoa_tps, max_rounds=self.settings.max_rounds,
        )
        self._print(f"Sleeping for {self.settings.grace_period:g} seconds to let register transactions propagate...")
        await asyncio.sleep(self.settings.grace_period)

        results = []
        for nominee in nominees:
            if not wallets:
                log.error("Ran out of nominator wallets, %d nominees left unstaked", len(nominees) - len(results))
                break
            nominator = wallets.pop()
            tx = build_deposit_stake(nominator, nominee, amount, self.settings)
            outcome = await self.gateway.try_inject(tx)
            result = outcome if isinstance(outcome, InjectedTxResp) else InjectedTxResp.from_error(outcome)
            if result.success:
                self._print(f"Staked node: {nominee} by {nominator.address}")
            else:
                log.error("Failed to stake node %s: %s", nominee, result.reason)
            results.append(StakeResult(nominee, nominator.address, result))
        return results

    async def network_config(self) -> dict[str, Any]:
        return await self.gateway.get_network_config()

    async def change_config(self, change: dict[str, Any] | str, cycle: int = -1) -> InjectedTxResp:
        """Submit a change_config transaction signed by a throwaway identity."""
        signer = Identity.create()
        tx = build_change_config(signer, change, self.settings, cycle=cycle)
        log.info("Submitting change_config for cycle %d: %s", cycle, tx.config)
        return await self.gateway.inject(tx)
