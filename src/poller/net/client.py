from __future__ import annotations

import asyncio
import errno
import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Optional
from urllib.parse import urlsplit

import aiohttp
import structlog

from poller.net.limit_headers import HeaderReader, ratelimit_usage
from poller.net.rate_budget import RateBudgetTracker
from poller.utils.backoff import parse_retry_after, retry_delay_s

RETRY_STATUSES = (418, 429)  # temporarily banned, too many requests
TRANSIENT_ERRNOS = (errno.ECONNRESET, errno.ECONNABORTED, errno.ETIMEDOUT, errno.EPIPE)


@dataclass(slots=True)
class Request:
    method: str
    url: str
    params: Optional[dict[str, str]] = None
    timeout_s: float = 10.0
    # budget key; defaults to the URL path
    limit_key: Optional[str] = None

    def key(self) -> str:
        return self.limit_key or urlsplit(self.url).path


@dataclass(slots=True)
class Response:
    status: int
    headers: Mapping[str, str] = field(default_factory=dict)  # lower-cased names
    body: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.body)


@dataclass(slots=True)
class RetryConfig:
    max_retries: int = 5
    jitter_ratio: float = 0.25  # backoff multiplied by [0.75, 1.25]


def is_transient(exc: BaseException) -> bool:
    """Timeouts and dropped connections are worth retrying; anything else is not."""
    if isinstance(exc, (asyncio.TimeoutError, aiohttp.ServerDisconnectedError, ConnectionResetError)):
        return True
    if isinstance(exc, OSError) and exc.errno in TRANSIENT_ERRNOS:
        return True
    if isinstance(exc, (aiohttp.ClientError, OSError)):
        text = str(exc).lower()
        return "timeout" in text or "connection reset" in text
    return False


class ResilientClient:
    """
    aiohttp wrapper with pre-emptive throttling and reactive retry.

    Per call:
      - consult the RateBudgetTracker for the request's key and sleep if the
        budget is nearly spent (the tracker lock is not held while sleeping)
      - execute, then feed provider usage headers back into the tracker
      - 429/418 → sleep Retry-After (or 2**n s ± 25%) and retry, up to max_retries;
        after that the throttled response is returned to the caller unchanged
      - transient transport errors follow the same backoff; after the last
        retry, or for any non-transient error, the exception propagates as-is
    """

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        *,
        tracker: Optional[RateBudgetTracker] = None,
        read_usage: HeaderReader = ratelimit_usage,
        cfg: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._session = session
        self._owns_session = session is None
        self.tracker = tracker or RateBudgetTracker()
        self._read_usage = read_usage
        self.cfg = cfg or RetryConfig()
        self._sleep = sleep
        self._log = structlog.get_logger("http")

    # ---------------------------- lifecycle ----------------------------- #

    async def start(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession()

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    # ---------------------------- public API ---------------------------- #

    async def send_with_retry(self, req: Request, weight: int = 1) -> Response:
        if self._session is None:
            await self.start()
        key = req.key()
        retry = 0
        while True:
            await self._throttle(key, weight)

            try:
                resp = await self._execute(req)
            except Exception as e:
                if not is_transient(e):
                    raise
                if retry >= self.cfg.max_retries:
                    self._log.error("transient_error_max_retries", url=req.url, retries=retry, err=str(e))
                    raise
                delay = self._retry_delay(None, retry)
                self._log.warning("transient_error_retry", url=req.url, err=str(e), delay_s=round(delay, 3))
                await self._sleep(delay)
                retry += 1
                continue

            self._record_usage(key, resp)

            if resp.status in RETRY_STATUSES:
                if retry >= self.cfg.max_retries:
                    self._log.error("rate_limited_max_retries", url=req.url, status=resp.status, retries=retry)
                    return resp
                delay = self._retry_delay(resp, retry)
                self._log.warning("rate_limited_retry", url=req.url, status=resp.status, delay_s=round(delay, 3))
                await self._sleep(delay)
                retry += 1
                continue

            return resp

    # --------------------------- internals ------------------------------ #

    async def _execute(self, req: Request) -> Response:
        assert self._session is not None
        timeout = aiohttp.ClientTimeout(total=req.timeout_s)
        async with self._session.request(req.method, req.url, params=req.params, timeout=timeout) as resp:
            body = await resp.read()
            headers = {k.lower(): v for k, v in resp.headers.items()}
            return Response(status=resp.status, headers=headers, body=body)

    async def _throttle(self, key: str, weight: int) -> None:
        if not self.tracker.should_delay(key, weight):
            return
        delay = self.tracker.delay_for(key, weight)
        if delay > 0:
            self._log.warning("rate_budget_delay", key=key, delay_s=round(delay, 3))
            await self._sleep(delay)

    def _record_usage(self, key: str, resp: Response) -> None:
        for reading in self._read_usage(resp.headers, key):
            self.tracker.update(reading.key, reading.used, reading.limit, reading.window_s)

    def _retry_delay(self, resp: Optional[Response], retry: int) -> float:
        if resp is not None:
            explicit = parse_retry_after(resp.headers.get("retry-after"))
            if explicit is not None:
                return explicit
        return retry_delay_s(retry, ratio=self.cfg.jitter_ratio)
