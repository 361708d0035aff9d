"""
Jupiter swap aggregator client
Quote SOL -> token and fetch the serialized swap transaction
"""

import base64
from dataclasses import dataclass
from typing import Any, Dict, Optional

import aiohttp

from volking.core.config import SwapConfig
from volking.core.errors import JupiterError
from volking.core.logger import get_logger
from volking.core.metrics import get_metrics, LatencyTimer


logger = get_logger(__name__)
metrics = get_metrics()

WSOL_MINT = "So11111111111111111111111111111111111111112"


@dataclass
class SwapQuote:
    """Quote for spending `in_amount` lamports"""
    in_amount: int
    out_amount: int
    raw: Dict[str, Any]


class JupiterClient:
    """
    Jupiter v6 quote + swap API

    Usage:
        quote = await jupiter.get_quote(mint, lamports)
        tx_bytes = await jupiter.get_swap_transaction(quote, wallet)
    """

    def __init__(self, config: Optional[SwapConfig] = None):
        self.config = config or SwapConfig()
        self.session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout_s)
            self.session = aiohttp.ClientSession(timeout=timeout)
        return self.session

    async def get_quote(self, output_mint: str, amount_lamports: int) -> SwapQuote:
        """
        Quote a SOL -> token swap

        Raises:
            JupiterError: Non-200 status, API error or transport failure
        """
        session = await self._get_session()
        params = {
            "inputMint": WSOL_MINT,
            "outputMint": output_mint,
            "amount": str(amount_lamports),
            "slippageBps": str(self.config.slippage_bps),
        }
        try:
            with LatencyTimer(metrics, "jupiter_quote"):
                async with session.get(f"{self.config.api_base}/quote", params=params) as response:
                    if response.status != 200:
                        text = await response.text()
                        raise JupiterError(f"Jupiter quote failed: HTTP {response.status}: {text[:200]}")
                    quote = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise JupiterError(f"Jupiter quote request failed: {e}") from e

        if not isinstance(quote, dict) or "error" in quote or "outAmount" not in quote:
            raise JupiterError(f"Invalid Jupiter quote: {quote}")

        return SwapQuote(
            in_amount=int(quote.get("inAmount", amount_lamports)),
            out_amount=int(quote["outAmount"]),
            raw=quote
        )

    async def get_swap_transaction(self, quote: SwapQuote, user_public_key: str) -> bytes:
        """
        Serialized (unsigned) versioned swap transaction for a quote

        Raises:
            JupiterError: Non-200 status, missing transaction or transport failure
        """
        session = await self._get_session()
        body = {
            "quoteResponse": quote.raw,
            "userPublicKey": user_public_key,
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
            "prioritizationFeeLamports": "auto",
        }
        try:
            with LatencyTimer(metrics, "jupiter_swap_build"):
                async with session.post(f"{self.config.api_base}/swap", json=body) as response:
                    if response.status != 200:
                        text = await response.text()
                        raise JupiterError(f"Jupiter swap failed: HTTP {response.status}: {text[:200]}")
                    result = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise JupiterError(f"Jupiter swap request failed: {e}") from e

        swap_tx = result.get("swapTransaction") if isinstance(result, dict) else None
        if not swap_tx:
            raise JupiterError("Jupiter returned no swapTransaction")

        return base64.b64decode(swap_tx)

    async def close(self) -> None:
        if self.session:
            await self.session.close()
            self.session = None
