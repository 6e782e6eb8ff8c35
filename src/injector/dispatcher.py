"""Rate-paced concurrent dispatch.

``PacedDispatcher`` fires a work item every ``1/rate`` seconds on an absolute
schedule (``start + k/rate``), so slow requests never push later ticks back.
Each item runs as its own task and reports ``(request, outcome)`` on
``results``. A work factory returns the request together with the awaitable
that sends it, so an item cancelled at the drain deadline still reports the
request it was sending. The queue ends with ``CLOSED`` once the run and its
drain are over.
"""
import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import injector.constants as C
from injector.errors import InsufficientWalletsError

log = logging.getLogger("injector.dispatcher")

CLOSED: Any = object()

WorkFactory = Callable[[int], tuple[Any, Awaitable[Any]]]


class DrainTimeout(TimeoutError):
    """Outcome reported for a task cancelled after the drain deadline."""


@dataclass(slots=True)
class DispatchReport:
    dispatched: int = 0
    completed: int = 0
    cancelled: int = 0
    elapsed: float = 0.0


def pick_pair(n: int, rng: random.Random | None = None) -> tuple[int, int]:
    """Two distinct indices into a pool of ``n``. ``from`` first, ``to`` redrawn until different."""
    if n < C.MIN_POOL_SIZE:
        raise InsufficientWalletsError(n, C.MIN_POOL_SIZE)
    rng = rng or random
    sender = rng.randrange(n)
    recipient = rng.randrange(n)
    while recipient == sender:
        recipient = rng.randrange(n)
    return sender, recipient


class PacedDispatcher:
    def __init__(
        self,
        rate: float,
        *,
        duration: float | None = None,
        limit: int | None = None,
        drain_timeout: float | None = C.DRAIN_TIMEOUT,
        name: str = "dispatch",
    ):
        if rate <= 0:
            raise ValueError(f"rate must be positive, got {rate}")
        if duration is None and limit is None:
            raise ValueError("Need a duration or a tick limit")
        self.rate = rate
        self.interval = 1.0 / rate
        self.duration = duration
        self.limit = limit
        self.drain_timeout = drain_timeout
        self.name = name
        self.results: asyncio.Queue = asyncio.Queue()
        self.report = DispatchReport()
        self._inflight: set[asyncio.Task] = set()
        self._stopping = False

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    def stop(self) -> None:
        """Stop spawning. In-flight work still drains normally."""
        self._stopping = True

    def _done(self, index: int) -> bool:
        if self._stopping:
            return True
        if self.limit is not None and index >= self.limit:
            return True
        return False

    async def run(self, factory: WorkFactory) -> DispatchReport:
        loop = asyncio.get_running_loop()
        start = loop.time()
        index = 0
        log.info("%s: dispatching at %.2f/s (duration=%s, limit=%s)", self.name, self.rate, self.duration, self.limit)
        try:
            while not self._done(index):
                if self.duration is not None and loop.time() - start >= self.duration:
                    break
                self._spawn(factory, index)
                index += 1
                delay = start + index * self.interval - loop.time()
                if delay > 0:
                    await asyncio.sleep(delay)
            self.report.dispatched = index
            self.report.cancelled = await self._drain()
            self.report.completed = index - self.report.cancelled
        finally:
            for task in list(self._inflight):
                task.cancel()
            self.report.elapsed = loop.time() - start
            self.results.put_nowait(CLOSED)
        log.info(
            "%s: %d dispatched, %d completed, %d cancelled in %.1fs",
            self.name, self.report.dispatched, self.report.completed, self.report.cancelled, self.report.elapsed,
        )
        return self.report

    def _spawn(self, factory: WorkFactory, index: int) -> None:
        task = asyncio.create_task(self._work(factory, index), name=f"{self.name}-{index}")
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _work(self, factory: WorkFactory, index: int) -> None:
        request = None
        try:
            request, pending = factory(index)
            outcome = await pending
        except asyncio.CancelledError:
            self.results.put_nowait((request, DrainTimeout(f"{self.name}-{index} still in flight at drain deadline")))
            raise
        except Exception as e:
            log.exception("%s-%d: work item failed", self.name, index)
            outcome = e
        self.results.put_nowait((request, outcome))

    async def _drain(self) -> int:
        """Wait for in-flight work up to the drain timeout. Returns how many were cancelled."""
        if not self._inflight:
            return 0
        _, pending = await asyncio.wait(set(self._inflight), timeout=self.drain_timeout)
        if not pending:
            return 0
        log.warning("%s: cancelling %d injections still in flight after %.1fs", self.name, len(pending), self.drain_timeout)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        return len(pending)
