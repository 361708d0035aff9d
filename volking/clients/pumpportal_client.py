"""
PumpPortal Local Transaction API client
Builds the creator-fee collection transaction for a wallet
"""

from typing import Any, Dict, Optional

import aiohttp

from volking.core.config import FeeClaimConfig
from volking.core.errors import PumpPortalError
from volking.core.logger import get_logger
from volking.core.metrics import get_metrics, LatencyTimer


logger = get_logger(__name__)
metrics = get_metrics()


class PumpPortalClient:
    """
    Thin client for https://pumpportal.fun/api/trade-local

    The local API answers with the raw serialized transaction; the caller
    signs and submits it.
    """

    def __init__(self, config: Optional[FeeClaimConfig] = None):
        self.config = config or FeeClaimConfig()
        self.session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout_s)
            self.session = aiohttp.ClientSession(timeout=timeout)
        return self.session

    async def _make_local_request(self, body: Dict[str, Any]) -> bytes:
        """
        POST a request to the local transaction API

        Returns:
            Raw transaction bytes

        Raises:
            PumpPortalError: Non-200 status, empty body or transport failure
        """
        session = await self._get_session()
        try:
            with LatencyTimer(metrics, "pumpportal_request"):
                async with session.post(
                    self.config.api_url,
                    json=body,
                    headers={"Content-Type": "application/json"}
                ) as response:
                    if response.status != 200:
                        text = await response.text()
                        metrics.increment_counter("pumpportal_errors")
                        raise PumpPortalError(f"HTTP {response.status}: {text[:200]}")

                    tx_bytes = await response.read()
        except aiohttp.ClientError as e:
            metrics.increment_counter("pumpportal_errors")
            raise PumpPortalError(f"PumpPortal request failed: {e}") from e

        if not tx_bytes:
            raise PumpPortalError("Empty response from PumpPortal")

        logger.debug("pumpportal_transaction_received", action=body.get("action"), size=len(tx_bytes))
        return tx_bytes

    async def build_collect_creator_fee(self, public_key: str) -> bytes:
        """Serialized (unsigned) fee collection transaction for the creator wallet"""
        return await self._make_local_request({
            "publicKey": public_key,
            "action": "collectCreatorFee",
            "priorityFee": self.config.priority_fee,
        })

    async def close(self) -> None:
        if self.session:
            await self.session.close()
            self.session = None
