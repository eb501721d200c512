from __future__ import annotations

import logging

import aiohttp

from sniper_bot.utils.retry import async_retry

logger = logging.getLogger(__name__)


class RpcBalanceProvider:
    """Wallet token balances over Solana JSON-RPC (getTokenAccountsByOwner)."""

    def __init__(self, rpc_url: str, wallet_address: str, timeout: float = 10.0) -> None:
        self.rpc_url = rpc_url
        self.wallet_address = wallet_address
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: aiohttp.ClientSession | None = None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def get_balance(self, asset_id: str) -> float | None:
        """UI amount held across all token accounts for `asset_id`, None if unknown."""
        if not self.rpc_url or not self.wallet_address:
            return None
        try:
            result = await self._get_token_accounts(asset_id.strip())
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            logger.error("Failed to fetch token balance for %s: %s", asset_id[:8], e)
            return None

        if "error" in result:
            logger.warning("RPC error for %s: %s", asset_id[:8], result["error"])
            return None

        total = 0.0
        for acc in result.get("result", {}).get("value", []):
            try:
                token_amount = acc["account"]["data"]["parsed"]["info"]["tokenAmount"]
            except (KeyError, TypeError):
                continue
            total += float(token_amount.get("uiAmount") or 0.0)
        logger.debug("Balance for %s: %.6f", asset_id[:8], total)
        return total

    @async_retry(max_attempts=3, delay=0.5, exceptions=(aiohttp.ClientError, TimeoutError))
    async def _get_token_accounts(self, mint: str) -> dict:
        session = await self._ensure_session()
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "getTokenAccountsByOwner",
            "params": [
                self.wallet_address,
                {"mint": mint},
                {"encoding": "jsonParsed"},
            ],
        }
        async with session.post(self.rpc_url, json=payload) as resp:
            resp.raise_for_status()
            return await resp.json()

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
