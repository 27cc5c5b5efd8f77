from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional

import structlog

from poller.data.aggregator import CandleAggregator
from poller.data.rotator import SymbolRotator
from poller.exchanges.base import ExchangeAdapter
from poller.utils.backoff import random_delay_ms
from poller.utils.types import TickerSnapshot
from storage.sink import CandleSink

BlacklistSaver = Callable[[Iterable[str]], None]


@dataclass(slots=True)
class SchedulerConfig:
    """
    interval_s:    time between cycle starts
    jitter_max_ms: each cycle first sleeps a random [0, jitter_max_ms) ms; 0 disables
    instance:      tag handed to the sink with every batch
    """
    interval_s: float
    jitter_max_ms: int = 500
    instance: str = "default"


@dataclass(slots=True)
class CycleReport:
    batch: int = 0
    fetched: int = 0
    matched: int = 0
    blacklisted: int = 0
    parse_errors: int = 0
    candles: int = 0
    fetch_failed: bool = False
    save_failed: bool = False


class PollingScheduler:
    """
    Fetch → filter → aggregate → flush, once per timer tick.

    Lifecycle:
      - start() waits for either the next tick or stop(); one cycle runs at a
        time and ticks missed during a long cycle collapse into one
      - stop() lets an in-flight cycle finish, then start() returns

    A cycle never raises: fetch, parse and storage failures are logged and the
    loop carries on with the next tick.
    """

    def __init__(
        self,
        cfg: SchedulerConfig,
        *,
        rotator: SymbolRotator,
        adapter: ExchangeAdapter,
        aggregator: CandleAggregator,
        sink: CandleSink,
        blacklist: Iterable[str] = (),
        save_blacklist: Optional[BlacklistSaver] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.cfg = cfg
        self.rotator = rotator
        self.adapter = adapter
        self.aggregator = aggregator
        self.sink = sink
        self.blacklist: set[str] = {s.upper() for s in blacklist}
        self._save_blacklist = save_blacklist
        self._sleep = sleep

        self._log = structlog.get_logger("scheduler")
        self._stop = asyncio.Event()
        self.cycles = 0
        self.last_report: Optional[CycleReport] = None

    # ---------------------------- public API ---------------------------- #

    async def start(self) -> None:
        loop = asyncio.get_running_loop()
        next_at = loop.time() + self.cfg.interval_s
        self._log.info(
            "scheduler_started",
            exchange=self.adapter.name,
            interval_s=self.cfg.interval_s,
            batches_per_rotation=self.rotator.batches_per_cycle(),
        )
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=max(0.0, next_at - loop.time()))
                break
            except asyncio.TimeoutError:
                pass

            self.last_report = await self.run_cycle()

            next_at += self.cfg.interval_s
            now = loop.time()
            if next_at < now:
                # overran one or more ticks; fire once right away
                next_at = now
        self._log.info("scheduler_stopped", cycles=self.cycles)

    def stop(self) -> None:
        self._stop.set()

    def flush_intervals(self) -> list[str]:
        # always the finest configured interval
        return [self.aggregator.smallest_interval()]

    async def run_cycle(self) -> CycleReport:
        self.cycles += 1
        report = CycleReport()
        log = self._log.bind(cycle=self.cycles)
        log.info("cycle_started")

        if self.cfg.jitter_max_ms > 0:
            await self._sleep(random_delay_ms(self.cfg.jitter_max_ms) / 1000.0)

        batch = [s for s in self.rotator.next_batch() if s.upper() not in self.blacklist]
        report.batch = len(batch)
        if not batch:
            log.warning("batch_empty")
            return report

        try:
            tickers = await self.adapter.fetch_all_tickers()
        except Exception as e:
            log.error("fetch_failed", exchange=self.adapter.name, err=str(e), err_type=type(e).__name__)
            report.fetch_failed = True
            return report
        report.fetched = len(tickers)

        wanted = {s.upper() for s in batch}
        matched = [t for t in tickers if t.symbol.upper() in wanted]
        report.matched = len(matched)

        report.blacklisted = await self._reconcile_blacklist(batch, matched)
        report.parse_errors = self._feed(matched)

        await self._flush(report)
        log.info(
            "cycle_done",
            batch=report.batch,
            matched=report.matched,
            blacklisted=report.blacklisted,
            candles=report.candles,
        )
        return report

    # --------------------------- cycle steps ---------------------------- #

    async def _reconcile_blacklist(self, batch: list[str], matched: list[TickerSnapshot]) -> int:
        """Blacklist every requested symbol the exchange did not return."""
        found = {t.symbol.upper() for t in matched}
        added = 0
        for sym in batch:
            up = sym.upper()
            if up in found or up in self.blacklist:
                continue
            self.blacklist.add(up)
            added += 1
            self._log.warning("symbol_blacklisted", symbol=up)

        if added and self._save_blacklist is not None:
            try:
                await asyncio.to_thread(self._save_blacklist, sorted(self.blacklist))
            except Exception as e:
                self._log.error("blacklist_save_failed", err=str(e))
        return added

    def _feed(self, matched: list[TickerSnapshot]) -> int:
        errors = 0
        for t in matched:
            try:
                price = float(t.last_price)
                if t.volume_24h is None:
                    raise ValueError("missing 24h volume")
                volume = float(t.volume_24h)
                if not (math.isfinite(price) and math.isfinite(volume)):
                    raise ValueError("non-finite value")
            except (TypeError, ValueError) as e:
                self._log.warning("ticker_parse_failed", symbol=t.symbol, err=str(e))
                errors += 1
                continue
            self.aggregator.add_price(t.symbol, price, volume)
        return errors

    async def _flush(self, report: CycleReport) -> None:
        candles = self.aggregator.extract_ohlc(self.flush_intervals())
        report.candles = len(candles)
        if not candles:
            self._log.debug("no_candles_this_cycle")
            return
        try:
            await self.sink.save_candles(candles, self.cfg.instance)
        except Exception as e:
            report.save_failed = True
            self._log.error("candles_save_failed", count=len(candles), err=str(e))
