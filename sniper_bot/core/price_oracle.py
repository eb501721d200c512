from __future__ import annotations

import logging
import time
from typing import Callable

import httpx

from sniper_bot.constants import SOL_MINT

# Detector hints older than this are never served as a price
HINT_TTL_SEC = 60.0


class JupiterPriceOracle:
    """
    SOL-denominated prices from the Jupiter Price API v3.

    v3 answers in USD, so every query asks for the asset and wrapped SOL
    together and divides. Brand new bonding-curve tokens are often not
    indexed yet; for those a fresh detector hint (price seen in the create
    event) is served until it expires.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 10.0,
        clock: Callable[[], float] = time.time,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.logger = logging.getLogger("sniper_bot.jupiter_price")
        self._clock = clock
        headers = {"x-api-key": api_key} if api_key else {}
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=5.0),
            limits=httpx.Limits(max_keepalive_connections=5),
            headers=headers,
        )
        self._hints: dict[str, tuple[float, float]] = {}
        self._consecutive_failures = 0
        self._max_failures_before_warn = 3

    def seed_price(self, asset_id: str, price: float) -> None:
        """Remember a price observed outside the API (e.g. in a create event)."""
        if price > 0:
            self._hints[asset_id] = (price, self._clock())

    async def get_price(self, asset_id: str, venue: str) -> float | None:
        price = await self._fetch(asset_id)
        if price is not None:
            self._hints.pop(asset_id, None)
            return price

        hint = self._hints.get(asset_id)
        if hint is not None:
            hinted_price, seen_at = hint
            if self._clock() - seen_at <= HINT_TTL_SEC:
                return hinted_price
            del self._hints[asset_id]
        return None

    async def _fetch(self, asset_id: str) -> float | None:
        try:
            response = await self._client.get(self.base_url, params={"ids": f"{asset_id},{SOL_MINT}"})
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            self._consecutive_failures += 1
            if self._consecutive_failures <= self._max_failures_before_warn:
                self.logger.warning("Jupiter price query failed: %s", e)
            return None

        if self._consecutive_failures > 0:
            self.logger.info("Jupiter price query recovered after %d failures", self._consecutive_failures)
            self._consecutive_failures = 0

        # Response format: {"mint": {"usdPrice": 0.123, "decimals": 6, ...}, ...}
        asset_usd = _usd_price(data.get(asset_id))
        sol_usd = _usd_price(data.get(SOL_MINT))
        if asset_usd is None or not sol_usd:
            return None
        return asset_usd / sol_usd

    async def close(self) -> None:
        await self._client.aclose()


def _usd_price(entry: object) -> float | None:
    if not isinstance(entry, dict):
        return None
    try:
        price = float(entry.get("usdPrice"))
    except (TypeError, ValueError):
        return None
    return price if price > 0 else None
