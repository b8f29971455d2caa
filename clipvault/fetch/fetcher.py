from __future__ import annotations

import asyncio
import random
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, AsyncIterator, Awaitable, Callable
from urllib.parse import urlparse

import httpx

from clipvault.core.config import Settings
from clipvault.core.errors import FetchError, RateLimitedError
from clipvault.core.logging import get_logger

from .headers import polite_headers
from .limiter import HostLimiter

RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})

Sleep = Callable[[float], Awaitable[Any]]


def parse_retry_after(value: str | None, *, now: datetime | None = None) -> float | None:
    """Return the delay in seconds requested by a ``Retry-After`` header, if any."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    current = now or datetime.now(timezone.utc)
    return max(0.0, (when - current).total_seconds())


class RateLimitedFetcher:
    """HTTP access with per-host concurrency caps, backoff and ``Retry-After`` support."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        limiter: HostLimiter,
        *,
        max_retries: int = 3,
        backoff_base_s: float = 1.0,
        max_jitter_s: float = 0.5,
        sleep: Sleep = asyncio.sleep,
    ):
        self.client = client
        self.limiter = limiter
        self.max_retries = max_retries
        self.backoff_base_s = backoff_base_s
        self.max_jitter_s = max_jitter_s
        self._sleep = sleep
        self.logger = get_logger(component="fetcher")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "RateLimitedFetcher":
        client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.fetch_timeout_s),
            follow_redirects=True,
            transport=transport,
        )
        limiter = HostLimiter(settings.fetch_default_host_limit, settings.fetch_host_limits)
        return cls(
            client,
            limiter,
            max_retries=settings.fetch_max_retries,
            backoff_base_s=settings.fetch_backoff_base_s,
            max_jitter_s=settings.fetch_max_jitter_s,
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    def backoff_delay(self, attempt: int) -> float:
        return self.backoff_base_s * (2**attempt) + random.uniform(0, self.max_jitter_s)

    async def _open(
        self,
        url: str,
        *,
        method: str,
        headers: dict[str, str] | None,
        max_retries: int | None,
        timeout: float | None,
        budget_s: float | None,
    ) -> httpx.Response:
        """Send the request and return a streaming response while holding the host slot.

        With ``budget_s`` set, a retry whose delay would end past the budget is
        not attempted and the last error surfaces immediately.
        """
        host = (urlparse(url).hostname or "").lower()
        retries = self.max_retries if max_retries is None else max_retries
        request_headers = polite_headers(url, headers)
        request_timeout: Any = httpx.Timeout(timeout) if timeout is not None else httpx.USE_CLIENT_DEFAULT
        loop = asyncio.get_running_loop()
        give_up_at = loop.time() + budget_s if budget_s is not None else None

        def out_of_budget(delay: float) -> bool:
            return give_up_at is not None and loop.time() + delay >= give_up_at

        attempt = 0
        while True:
            await self.limiter.acquire(host)
            try:
                request = self.client.build_request(method, url, headers=request_headers, timeout=request_timeout)
                response = await self.client.send(request, stream=True)
            except httpx.TransportError as exc:
                self.limiter.release(host)
                delay = self.backoff_delay(attempt)
                if attempt >= retries or out_of_budget(delay):
                    raise FetchError(f"{method} {url} failed after {attempt + 1} attempts: {exc!r}", url=url) from exc
                self.logger.warning("fetch_transport_retry", url=url, attempt=attempt, delay_s=round(delay, 3), error=repr(exc))
                await self._sleep(delay)
                attempt += 1
                continue
            except BaseException:
                self.limiter.release(host)
                raise

            status = response.status_code
            if status in RETRYABLE_STATUSES:
                retry_after = parse_retry_after(response.headers.get("Retry-After")) if status == 429 else None
                await response.aclose()
                self.limiter.release(host)
                delay = retry_after if retry_after is not None else self.backoff_delay(attempt)
                if attempt >= retries or out_of_budget(delay):
                    error_cls = RateLimitedError if status == 429 else FetchError
                    raise error_cls(
                        f"HTTP {status} from {host} after {attempt + 1} attempts",
                        url=url,
                        status_code=status,
                    )
                self.logger.warning("fetch_status_retry", url=url, status=status, attempt=attempt, delay_s=round(delay, 3))
                await self._sleep(delay)
                attempt += 1
                continue

            if status >= 400:
                await response.aclose()
                self.limiter.release(host)
                raise FetchError(f"HTTP {status} from {host}", url=url, status_code=status)
            return response

    @asynccontextmanager
    async def stream(
        self,
        url: str,
        *,
        method: str = "GET",
        headers: dict[str, str] | None = None,
        max_retries: int | None = None,
        timeout: float | None = None,
        budget_s: float | None = None,
    ) -> AsyncIterator[httpx.Response]:
        host = (urlparse(url).hostname or "").lower()
        response = await self._open(
            url,
            method=method,
            headers=headers,
            max_retries=max_retries,
            timeout=timeout,
            budget_s=budget_s,
        )
        try:
            yield response
        finally:
            await response.aclose()
            self.limiter.release(host)

    async def get_text(self, url: str, **kwargs: Any) -> tuple[str, str]:
        """Fetch a page body; returns ``(text, final_url)`` after redirects."""
        async with self.stream(url, **kwargs) as response:
            await response.aread()
            return response.text, str(response.url)

    async def get_json(self, url: str, **kwargs: Any) -> Any:
        headers = {"Accept": "application/json", **(kwargs.pop("headers", None) or {})}
        async with self.stream(url, headers=headers, **kwargs) as response:
            await response.aread()
            return response.json()

    async def probe(self, url: str, *, timeout: float | None = None, headers: dict[str, str] | None = None) -> bool:
        """HEAD ``url`` once; True when it answers in the 2xx-3xx range."""
        try:
            async with self.stream(url, method="HEAD", headers=headers, max_retries=0, timeout=timeout) as response:
                return 200 <= response.status_code < 400
        except FetchError:
            return False


__all__ = ["RateLimitedFetcher", "parse_retry_after", "RETRYABLE_STATUSES"]
