"""
Exchange Rate Service
USD to NGN conversion for provider transfers. Live sources are tried in order, then the
USD_TO_NGN_RATE environment override, then a fixed default; live rates are cached for an hour.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import aiohttp

from config import Config

logger = logging.getLogger(__name__)

EXCHANGERATE_HOST_URL = "https://api.exchangerate.host/latest?base=USD&symbols=NGN"
FRANKFURTER_URL = "https://api.frankfurter.app/latest?from=USD&to=NGN"
EXCHANGERATE_API_URL = "https://v6.exchangerate-api.com/v6/{api_key}/latest/USD"


class ExchangeRateService:
    """Cached USD/NGN rate with a fallback chain"""

    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        api_key: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = Config.EXCHANGE_RATE_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self.api_key = api_key if api_key is not None else Config.EXCHANGE_RATE_API_KEY
        self._clock = clock
        self._cached_rate: Optional[Decimal] = None
        self._cached_at: Optional[float] = None
        self._lock = asyncio.Lock()

    def _is_cache_valid(self) -> bool:
        if self._cached_rate is None or self._cached_at is None:
            return False
        return self._clock() - self._cached_at < self.ttl_seconds

    async def get_usd_to_ngn_rate(self) -> Decimal:
        if self._is_cache_valid():
            return self._cached_rate

        async with self._lock:
            # Another coroutine may have refreshed while we waited
            if self._is_cache_valid():
                return self._cached_rate

            try:
                live_rate = await self._fetch_live_rate()
            except Exception as e:
                logger.warning(f"⚠️ EXCHANGE_RATE_FETCH_FAILED: {e}")
                live_rate = None

            if live_rate is not None:
                self._cached_rate = live_rate
                self._cached_at = self._clock()
                logger.info(f"💱 EXCHANGE_RATE_UPDATED: USD/NGN {live_rate}")
                return live_rate

        env_rate = self._env_rate()
        if env_rate is not None:
            logger.debug(f"Using environment exchange rate: {env_rate}")
            return env_rate

        logger.warning(f"⚠️ EXCHANGE_RATE_DEFAULT: using {Config.DEFAULT_USD_TO_NGN_RATE}")
        return Config.DEFAULT_USD_TO_NGN_RATE

    async def usd_to_ngn(self, amount_usd: Union[Decimal, float, str]) -> Decimal:
        rate = await self.get_usd_to_ngn_rate()
        return Decimal(str(amount_usd)) * rate

    async def usd_to_minor_units(self, amount_usd: Union[Decimal, float, str]) -> int:
        """USD amount in kobo, rounded half up to a whole kobo"""
        ngn = await self.usd_to_ngn(amount_usd)
        return int((ngn * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    async def minor_units_to_usd(self, amount_minor_units: int) -> Decimal:
        rate = await self.get_usd_to_ngn_rate()
        return Decimal(amount_minor_units) / 100 / rate

    async def refresh_rate(self) -> Decimal:
        """Drop the cached rate and resolve it again"""
        self._cached_rate = None
        self._cached_at = None
        return await self.get_usd_to_ngn_rate()

    def get_rate_info(self) -> Dict[str, Any]:
        cached_at = (
            datetime.fromtimestamp(self._cached_at, tz=timezone.utc).isoformat()
            if self._cached_at is not None else None
        )
        return {
            "rate": str(self._cached_rate) if self._cached_rate is not None else None,
            "cachedAt": cached_at,
            "source": "cache" if self._cached_rate is not None else "not loaded",
        }

    @staticmethod
    def _env_rate() -> Optional[Decimal]:
        raw = Config.USD_TO_NGN_RATE
        if not raw:
            return None
        try:
            rate = Decimal(str(raw))
        except ArithmeticError:
            logger.error(f"❌ EXCHANGE_RATE_ENV_INVALID: USD_TO_NGN_RATE={raw!r}")
            return None
        return rate if rate > 0 else None

    async def _fetch_live_rate(self) -> Optional[Decimal]:
        """First positive rate from the configured sources, or None"""
        sources: List[Callable[[aiohttp.ClientSession], Awaitable[Optional[Any]]]] = [
            self._from_exchangerate_host,
            self._from_frankfurter,
        ]
        if self.api_key:
            sources.append(self._from_exchangerate_api)

        timeout = aiohttp.ClientTimeout(total=Config.EXCHANGE_RATE_TIMEOUT_SECONDS)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            for source in sources:
                try:
                    value = await source(session)
                except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                    logger.debug(f"Exchange rate source failed: {e}")
                    continue
                if value:
                    rate = Decimal(str(value))
                    if rate > 0:
                        return rate
        return None

    @staticmethod
    async def _get_json(session: aiohttp.ClientSession, url: str) -> Dict[str, Any]:
        async with session.get(url) as response:
            return await response.json(content_type=None)

    async def _from_exchangerate_host(self, session: aiohttp.ClientSession) -> Optional[Any]:
        data = await self._get_json(session, EXCHANGERATE_HOST_URL)
        if data.get("success"):
            return (data.get("rates") or {}).get("NGN")
        return None

    async def _from_frankfurter(self, session: aiohttp.ClientSession) -> Optional[Any]:
        data = await self._get_json(session, FRANKFURTER_URL)
        return (data.get("rates") or {}).get("NGN")

    async def _from_exchangerate_api(self, session: aiohttp.ClientSession) -> Optional[Any]:
        data = await self._get_json(session, EXCHANGERATE_API_URL.format(api_key=self.api_key))
        if data.get("result") == "success":
            return (data.get("conversion_rates") or {}).get("NGN")
        return None
