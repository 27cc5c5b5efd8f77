# src/poller/main.py
import asyncio
import signal

import structlog
from dotenv import load_dotenv

from poller.config import SettingsStore, config_path_from_env, load_settings
from poller.data.aggregator import CandleAggregator
from poller.data.rotator import SymbolRotator
from poller.errors import PollerError
from poller.exchanges.registry import create_adapter
from poller.scheduler import PollingScheduler, SchedulerConfig
from poller.utils.logs import configure_logging
from storage.redis_candles import RedisCandleSink
from storage.sink import MemoryCandleSink

log = structlog.get_logger()


async def main() -> None:
    load_dotenv()
    configure_logging()

    path = config_path_from_env()
    settings = load_settings(path)
    if settings.debug:
        configure_logging(debug=True)
    log.info("app_started", exchange=settings.exchange, instance=settings.instance)

    adapter = create_adapter(settings.exchange)

    # Storage (fatal if unreachable)
    if settings.redis.url:
        sink = RedisCandleSink(
            settings.redis.url,
            retention_ms=settings.redis.retention_ms,
            key_prefix=settings.redis.key_prefix,
        )
        await sink.connect()
    else:
        log.warning("redis_disabled_dry_run")
        sink = MemoryCandleSink()

    scheduler = PollingScheduler(
        SchedulerConfig(
            interval_s=float(settings.refresh_seconds),
            jitter_max_ms=settings.jitter.max_millis if settings.jitter.enabled else 0,
            instance=settings.instance,
        ),
        rotator=SymbolRotator(settings.symbols, settings.batch_size),
        adapter=adapter,
        aggregator=CandleAggregator(settings.interval_map(), debug=settings.debug),
        sink=sink,
        blacklist=settings.blacklisted_symbols,
        save_blacklist=SettingsStore(path).save_blacklist,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda s=sig: _request_stop(scheduler, s))
        except NotImplementedError:
            # Windows event loops: KeyboardInterrupt still ends asyncio.run
            pass

    try:
        await scheduler.start()
    finally:
        # graceful shutdown to avoid unclosed sessions
        await adapter.client.close()
        await sink.close()
        log.info("app_shutdown_complete")


def _request_stop(scheduler: PollingScheduler, sig: signal.Signals) -> None:
    log.info("shutdown_signal_received", signal=sig.name)
    scheduler.stop()


def run() -> None:
    try:
        asyncio.run(main())
    except PollerError as e:
        log.error("startup_failed", err=str(e))
        raise SystemExit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
