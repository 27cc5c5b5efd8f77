"""Maps exchange names to adapter factories."""

from __future__ import annotations

from typing import Callable, Mapping, MutableMapping, Optional

import aiohttp

from poller.errors import UnsupportedExchangeError
from poller.exchanges.adapters import BinanceAdapter, BitgetAdapter, BybitAdapter, OkxAdapter
from poller.exchanges.base import ExchangeAdapter
from poller.net.client import ResilientClient
from poller.net.limit_headers import HeaderReader, binance_usage, ratelimit_usage

AdapterFactory = Callable[[ResilientClient], ExchangeAdapter]


class ExchangeRegistry:
    """In-memory registry of venue adapters and the usage headers each venue sends."""

    def __init__(self) -> None:
        self._factories: MutableMapping[str, tuple[AdapterFactory, HeaderReader]] = {}

    def register(
        self,
        name: str,
        factory: AdapterFactory,
        read_usage: HeaderReader = ratelimit_usage,
        *,
        replace: bool = False,
    ) -> None:
        key = name.lower()
        if not replace and key in self._factories:
            raise ValueError(f"exchange {key} already registered")
        self._factories[key] = (factory, read_usage)

    def create(self, name: str, session: Optional[aiohttp.ClientSession] = None) -> ExchangeAdapter:
        """Build the adapter for `name` with its own ResilientClient."""
        try:
            factory, read_usage = self._factories[name.lower()]
        except KeyError as exc:
            raise UnsupportedExchangeError(f"unsupported exchange: {name}") from exc
        return factory(ResilientClient(session, read_usage=read_usage))

    def snapshot(self) -> Mapping[str, tuple[AdapterFactory, HeaderReader]]:
        return dict(self._factories)


registry = ExchangeRegistry()
registry.register("binance", BinanceAdapter, binance_usage)
registry.register("okx", OkxAdapter)
registry.register("bybit", BybitAdapter)
registry.register("bitget", BitgetAdapter)


def create_adapter(name: str, session: Optional[aiohttp.ClientSession] = None) -> ExchangeAdapter:
    return registry.create(name, session)
