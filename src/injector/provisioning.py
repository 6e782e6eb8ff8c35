import asyncio
import logging
import sys
from collections.abc import Awaitable
from dataclasses import replace
from typing import TextIO

import injector.constants as C
from injector.config import Settings
from injector.crypto import Identity
from injector.dispatcher import CLOSED, PacedDispatcher
from injector.errors import GatewayError
from injector.gateway import GatewayClient, InjectedTxResp
from injector.transactions import RegisterTx, build_register, random_string

log = logging.getLogger("injector.provisioning")


def register_progress(done: int, count: int) -> str:
    pct = done / count * 100 if count else 100.0
    return f"\rRegistering {done} / {count} Wallets. ({pct:.2f}%)"


class IdentityProvisioner:
    """Registers fresh identities on the network at a paced rate.

    An identity whose registration is rejected or errors out is dropped, never
    retried. Callers top up with ``provision_until``.
    """

    def __init__(self, gateway: GatewayClient, settings: Settings, *, verbosity: bool = False, out: TextIO | None = None):
        self.gateway = gateway
        self.settings = settings
        self.verbosity = verbosity
        self.out = out or sys.stdout

    def _register(self, index: int) -> tuple[tuple[Identity, RegisterTx], Awaitable[InjectedTxResp | GatewayError]]:
        identity = Identity.create(alias=random_string(C.ALIAS_LENGTH))
        tx = build_register(identity, self.settings)
        return (identity, tx), self.gateway.try_inject(tx)

    async def provision(self, count: int, rate: float) -> list[Identity]:
        """Register ``count`` identities at ``rate`` per second. Returns the ones the gateway accepted."""
        if count <= 0:
            return []
        dispatcher = PacedDispatcher(rate, limit=count, drain_timeout=None, name="register")
        usable: list[Identity] = []

        async def collect() -> None:
            while (item := await dispatcher.results.get()) is not CLOSED:
                request, outcome = item
                identity, tx = request or (None, None)
                if identity is not None and isinstance(outcome, InjectedTxResp) and outcome.success:
                    usable.append(replace(identity, registration_tx_id=outcome.tx_id, registered_at=tx.timestamp))
                    self.out.write(register_progress(len(usable), count))
                else:
                    reason = outcome.reason if isinstance(outcome, InjectedTxResp) else outcome
                    log.debug("Registration of %s failed: %s", identity, reason)
                    if self.verbosity:
                        self.out.write(f"\nRegistration failed for {identity.address if identity else '?'}: {reason}\n")
                self.out.flush()

        async with asyncio.TaskGroup() as tg:
            tg.create_task(collect())
            await dispatcher.run(self._register)

        self.out.write(f"\nRegistered {len(usable)} successful wallets\n")
        log.info("Registered %d of %d identities", len(usable), count)
        return usable

    async def provision_until(self, target: int, rate: float, *, max_rounds: int = C.PROVISION_ROUNDS) -> list[Identity]:
        """Keep registering until ``target`` identities are usable or ``max_rounds`` is spent."""
        usable: list[Identity] = []
        for round_no in range(1, max_rounds + 1):
            shortfall = target - len(usable)
            if shortfall <= 0:
                break
            log.info("Provisioning round %d: %d identities needed", round_no, shortfall)
            usable.extend(await self.provision(shortfall, rate))
        if len(usable) < target:
            log.warning("Only %d of %d identities registered after %d rounds", len(usable), target, max_rounds)
        return usable


async def validate_registrations(gateway: GatewayClient, identities: list[Identity]) -> list[Identity]:
    """Identities whose account is visible on the network. Output order is completion order."""

    async def landed(identity: Identity) -> tuple[Identity, bool]:
        try:
            return identity, await gateway.get_account(identity.address) is not None
        except GatewayError as e:
            log.debug("Account lookup for %s failed: %s", identity.address, e)
            return identity, False

    valid = []
    for fut in asyncio.as_completed([landed(i) for i in identities]):
        identity, ok = await fut
        if ok:
            valid.append(identity)
    log.info("%d of %d registrations found on the network", len(valid), len(identities))
    return valid
