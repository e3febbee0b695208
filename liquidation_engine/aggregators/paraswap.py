"""ParaSwap swap-route quotes for seized collateral."""
from __future__ import annotations

import logging
import ssl
from typing import Any

import aiohttp
import certifi

from ..chains.evm.abi import normalize_address
from ..config import AggregatorConfig
from ..errors import QuoteUnavailable
from ..models import SwapQuote

logger = logging.getLogger(__name__)


class ParaswapAggregator:
    """Fetch a sell-side price route, then build its transaction calldata."""

    def __init__(self, config: AggregatorConfig, chain_id: int) -> None:
        self.base_url = config.base_url.rstrip("/")
        self.timeout = config.timeout
        self.chain_id = chain_id

    async def quote(
        self,
        sell_token: str,
        buy_token: str,
        amount: int,
        recipient: str,
        slippage_bps: int,
        sell_decimals: int = 18,
        buy_decimals: int = 18,
    ) -> SwapQuote:
        """Quote selling ``amount`` of ``sell_token`` for ``buy_token``.

        Raises:
            QuoteUnavailable: on HTTP errors or a response without a route.
        """
        sell_token = normalize_address(sell_token)
        buy_token = normalize_address(buy_token)
        if sell_token == buy_token:
            return SwapQuote(
                sell_token=sell_token,
                buy_token=buy_token,
                sell_amount=amount,
                expected_return=amount,
                source="identity",
            )

        params = {
            "srcToken": sell_token,
            "destToken": buy_token,
            "amount": str(amount),
            "srcDecimals": str(sell_decimals),
            "destDecimals": str(buy_decimals),
            "side": "SELL",
            "network": str(self.chain_id),
        }

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        try:
            async with aiohttp.ClientSession(connector=connector, timeout=timeout) as session:
                async with session.get(f"{self.base_url}/prices", params=params) as response:
                    if response.status != 200:
                        raise QuoteUnavailable(
                            f"ParaSwap /prices HTTP {response.status} "
                            f"for {sell_token} -> {buy_token}"
                        )
                    prices = await response.json()

                price_route = prices.get("priceRoute")
                if not price_route or "destAmount" not in price_route:
                    raise QuoteUnavailable(
                        f"ParaSwap returned no route for {sell_token} -> {buy_token}: "
                        f"{prices.get('error', 'empty response')}"
                    )

                body = {
                    "srcToken": sell_token,
                    "destToken": buy_token,
                    "srcAmount": str(amount),
                    "slippage": slippage_bps,
                    "priceRoute": price_route,
                    "userAddress": recipient,
                    "receiver": recipient,
                    "srcDecimals": sell_decimals,
                    "destDecimals": buy_decimals,
                }
                async with session.post(
                    f"{self.base_url}/transactions/{self.chain_id}",
                    params={"ignoreChecks": "true"},
                    json=body,
                ) as response:
                    if response.status != 200:
                        raise QuoteUnavailable(
                            f"ParaSwap /transactions HTTP {response.status} "
                            f"for {sell_token} -> {buy_token}"
                        )
                    tx: dict[str, Any] = await response.json()
        except QuoteUnavailable:
            raise
        except Exception as e:
            raise QuoteUnavailable(f"ParaSwap request failed: {e}") from e

        expected = int(price_route["destAmount"])
        logger.debug(
            "ParaSwap quote %s %s -> %s %s", amount, sell_token, expected, buy_token
        )
        return SwapQuote(
            sell_token=sell_token,
            buy_token=buy_token,
            sell_amount=amount,
            expected_return=expected,
            call_data=tx.get("data", "0x"),
            to=tx.get("to", ""),
            source="paraswap",
        )
