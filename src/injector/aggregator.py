import asyncio
import json
import logging
import sys
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, TextIO

from injector.dispatcher import CLOSED
from injector.gateway import InjectedTxResp

log = logging.getLogger("injector.aggregator")


@dataclass(slots=True)
class InjectionStats:
    total: int = 0
    success: int = 0
    failed: int = 0

    def record(self, ok: bool) -> None:
        self.total += 1
        if ok:
            self.success += 1
        else:
            self.failed += 1

    @property
    def failure_rate(self) -> float:
        """Failed share of all attempts, in percent."""
        return self.failed / self.total * 100 if self.total else 0.0

    def as_dict(self) -> dict[str, Any]:
        return {**asdict(self), "failure_rate": round(self.failure_rate, 2)}


def progress_line(stats: InjectionStats) -> str:
    return (
        f"\rTotal: {stats.total:<10} Success: {stats.success:<10} "
        f"Failed: {stats.failed:<10} Failure: {stats.failure_rate:<10.2f}%"
    )


class ResultAggregator:
    """Single consumer of dispatch results.

    Owns the run's ``InjectionStats`` and its NDJSON log file
    ``{artifacts_dir}/test_{kind}_{started_ms}.txt``. Nothing else writes either.
    """

    def __init__(
        self,
        kind: str,
        artifacts_dir: str | Path,
        *,
        verbosity: bool = False,
        started_ms: int | None = None,
        out: TextIO | None = None,
    ):
        self.kind = str(kind)
        self.verbosity = verbosity
        self.started_ms = started_ms or int(time.time() * 1000)
        self.log_path = Path(artifacts_dir) / f"test_{self.kind}_{self.started_ms}.txt"
        self.stats = InjectionStats()
        self.out = out or sys.stdout
        self._fh: TextIO | None = None

    def open(self) -> None:
        if self._fh is None:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = self.log_path.open("a", encoding="utf-8")

    def _append(self, record: dict[str, Any]) -> None:
        self.open()
        self._fh.write(json.dumps(record) + "\n")
        self._fh.flush()

    def record(self, tx: Any, outcome: InjectedTxResp | BaseException) -> InjectedTxResp:
        if isinstance(outcome, InjectedTxResp):
            result = outcome
        else:
            result = InjectedTxResp.from_error(outcome)
        self.stats.record(result.success)
        self._append({"tx": tx.to_json() if tx is not None else None, "result": result.to_json()})
        self._report(tx, result)
        return result

    def _report(self, tx: Any, result: InjectedTxResp) -> None:
        if not self.verbosity:
            self.out.write(progress_line(self.stats))
        else:
            label = self.kind.replace("_", " ").capitalize()
            sender = tx.sender if tx is not None else "?"
            recipient = tx.recipient if tx is not None else "?"
            if result.success:
                self.out.write(f"{label} success from {sender}, to {recipient}\n")
            else:
                self.out.write(f"{label} failed from {sender}, to {recipient}: {result.reason}\n")
        self.out.flush()

    async def consume(self, queue: asyncio.Queue) -> InjectionStats:
        """Record results until the dispatcher closes the queue. The log exists even if nothing arrives."""
        self.open()
        try:
            while (item := await queue.get()) is not CLOSED:
                tx, outcome = item
                self.record(tx, outcome)
        finally:
            self.close()
        self.summary()
        return self.stats

    def summary(self) -> str:
        line = progress_line(self.stats).lstrip("\r")
        self.out.write(f"\r{line}\n")
        self.out.flush()
        log.info("%s run finished: %s (log: %s)", self.kind, self.stats.as_dict(), self.log_path)
        return line

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None
