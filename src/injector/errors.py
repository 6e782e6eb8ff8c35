"""Exception hierarchy for the injector.

Transport and protocol errors never abort a run: the aggregator turns them into
failure records. The store and pool-size errors are fatal for the operation that
raised them.
"""


class InjectorError(Exception):
    """Base class for everything the injector raises on purpose."""


class GatewayError(InjectorError):
    """A gateway call did not produce a usable result."""


class TransportError(GatewayError):
    """Connect, timeout or I/O failure talking to the gateway."""


class ProtocolError(GatewayError):
    """The gateway answered with a body we could not interpret."""


class AccountStoreError(InjectorError):
    """The persisted account store is unreadable or holds a malformed key."""


class InsufficientWalletsError(InjectorError):
    """Fewer usable identities than a run needs."""

    def __init__(self, available: int, required: int = 2):
        self.available = available
        self.required = required
        super().__init__(f"Need at least {required} usable wallets, have {available}")
