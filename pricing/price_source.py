"""Reference price feed client with a fixed-delay bounded retry."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import aiohttp

from trading.errors import SourceUnavailable
from trading.models import PricePair, Quote, RebalanceSettings

logger = logging.getLogger(__name__)


class QuoteFetchError(RuntimeError):
    """One failed attempt; never escapes `PriceSource.fetch`."""


class PriceSource:
    """Fetches `{base: {quote: price}}` quotes from a CoinGecko-style `simple/price` endpoint.

    One initial attempt plus `retry_attempts` retries, each retry preceded by
    the same `retry_delay_ms` pause. There is no jitter and no backoff growth so
    the time to exhaustion is deterministic.
    """

    def __init__(self, settings: RebalanceSettings, session: aiohttp.ClientSession | None = None) -> None:
        self._settings = settings
        self._url = settings.price_api_url
        self._timeout = aiohttp.ClientTimeout(total=max(0.1, settings.request_timeout_ms / 1000.0))
        self._headers = {"accept": "application/json"}
        if settings.price_api_key:
            self._headers[settings.price_api_key_header] = settings.price_api_key
        self._session = session
        self._owns_session = session is None

    async def close(self) -> None:
        session = self._session
        self._session = None
        if self._owns_session and session is not None and not session.closed:
            await session.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def _request_once(self, pair: PricePair) -> Any:
        session = await self._get_session()
        params = {"ids": pair.base, "vs_currencies": pair.quote}
        async with session.get(self._url, params=params, headers=self._headers, timeout=self._timeout) as response:
            status = int(response.status or 0)
            if status != 200:
                raise QuoteFetchError(f"http_status_{status}")
            text = await response.text()
        try:
            return json.loads(text, parse_float=Decimal)
        except ValueError as exc:
            raise QuoteFetchError(f"invalid_json:{exc}") from exc

    @staticmethod
    def parse_quote(pair: PricePair, payload: Any) -> Quote:
        if not isinstance(payload, dict):
            raise QuoteFetchError("payload_not_object")
        row = payload.get(pair.base)
        if not isinstance(row, dict) or pair.quote not in row:
            raise QuoteFetchError(f"missing_pair:{pair}")
        raw = row[pair.quote]
        if isinstance(raw, bool) or not isinstance(raw, (int, Decimal, str)):
            raise QuoteFetchError(f"non_numeric_price:{raw!r}")
        try:
            value = Decimal(str(raw))
        except ArithmeticError as exc:
            raise QuoteFetchError(f"non_numeric_price:{raw!r}") from exc
        if not value.is_finite() or value <= 0:
            raise QuoteFetchError(f"non_positive_price:{raw!r}")
        return Quote(
            base_symbol=pair.base,
            quote_symbol=pair.quote,
            raw_value=value,
            fetched_at=datetime.now(timezone.utc),
        )

    async def fetch(self, pair: PricePair) -> Quote:
        retries = max(0, int(self._settings.retry_attempts))
        attempts = retries + 1
        delay = max(0.0, self._settings.retry_delay_ms / 1000.0)
        per_attempt = max(0.1, self._settings.request_timeout_ms / 1000.0)
        last_error = ""
        for attempt in range(1, attempts + 1):
            started = time.perf_counter()
            try:
                payload = await asyncio.wait_for(self._request_once(pair), timeout=per_attempt)
                quote = self.parse_quote(pair, payload)
                logger.info(
                    "PRICE_FETCHED pair=%s price=%s attempt=%s/%s latency_ms=%.1f",
                    pair,
                    quote.raw_value,
                    attempt,
                    attempts,
                    (time.perf_counter() - started) * 1000.0,
                )
                return quote
            except asyncio.TimeoutError:
                last_error = f"timeout_after_{per_attempt:.1f}s"
            except (aiohttp.ClientError, QuoteFetchError) as exc:
                last_error = str(exc) or type(exc).__name__
            if attempt < attempts:
                logger.warning(
                    "PRICE_RETRY pair=%s attempt=%s/%s delay=%.2fs error=%s",
                    pair,
                    attempt,
                    attempts,
                    delay,
                    last_error,
                )
                await asyncio.sleep(delay)
        raise SourceUnavailable(str(pair), attempts, last_error)
