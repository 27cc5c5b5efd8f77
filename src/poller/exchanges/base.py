from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, ClassVar, Optional

import structlog

from poller.errors import FetchError
from poller.net.client import Request, ResilientClient
from poller.utils.types import TickerSnapshot

DEFAULT_TIMEOUT_S = 10.0


class ExchangeAdapter(ABC):
    """
    One venue's "all tickers" endpoint, normalized to TickerSnapshot rows.

    Subclasses set `name`, `tickers_url`, `params` and implement
    parse_tickers(); the shared fetch path handles throttling, status and
    JSON decoding.
    """

    name: ClassVar[str] = ""
    tickers_url: ClassVar[str] = ""
    params: ClassVar[Optional[dict[str, str]]] = None
    limit_key: ClassVar[Optional[str]] = None
    weight: ClassVar[int] = 1

    def __init__(self, client: ResilientClient, *, timeout_s: float = DEFAULT_TIMEOUT_S):
        self.client = client
        self.timeout_s = timeout_s
        self._log = structlog.get_logger(f"exchange.{self.name}")

    async def fetch_all_tickers(self) -> list[TickerSnapshot]:
        payload = await self._get_json()
        tickers = self.parse_tickers(payload)
        self._log.debug("tickers_fetched", count=len(tickers))
        return tickers

    @abstractmethod
    def parse_tickers(self, payload: Any) -> list[TickerSnapshot]:
        """Venue payload -> snapshots; FetchError on an error envelope or bad shape."""

    async def _get_json(self) -> Any:
        req = Request(
            method="GET",
            url=self.tickers_url,
            params=self.params,
            timeout_s=self.timeout_s,
            limit_key=self.limit_key,
        )
        resp = await self.client.send_with_retry(req, weight=self.weight)
        if not resp.ok:
            raise FetchError(
                f"{self.name} returned HTTP {resp.status}: {resp.text()[:200]}",
                status=resp.status,
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise FetchError(f"{self.name} returned a non-JSON payload", status=resp.status) from exc
