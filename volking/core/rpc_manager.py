"""
HTTP JSON-RPC Manager for Solana
Sends requests to the configured endpoints in priority order with failover
"""

import asyncio
import itertools
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import aiohttp

from volking.core.config import RPCConfig, RPCEndpoint
from volking.core.errors import RPCError
from volking.core.logger import get_logger
from volking.core.metrics import get_metrics, LatencyTimer


logger = get_logger(__name__)
metrics = get_metrics()

LAMPORTS_PER_SOL = 1_000_000_000


@dataclass
class EndpointState:
    """Failure bookkeeping for one endpoint"""
    endpoint: RPCEndpoint
    consecutive_failures: int = 0
    total_requests: int = 0
    total_errors: int = 0

    @property
    def is_healthy(self) -> bool:
        return self.consecutive_failures == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.endpoint.label,
            "priority": self.endpoint.priority,
            "consecutive_failures": self.consecutive_failures,
            "total_requests": self.total_requests,
            "total_errors": self.total_errors,
        }


class RPCManager:
    """
    Manages HTTP RPC access with automatic failover

    Endpoints are tried in priority order on every call. An endpoint that
    has crossed the failover threshold is moved behind the healthy ones
    until it answers again.

    Usage:
        rpc = RPCManager(config.rpc_config)
        await rpc.start()
        balance = await rpc.get_balance_lamports(address)
    """

    def __init__(self, config: RPCConfig):
        self.config = config
        self.endpoints: Dict[str, EndpointState] = {
            ep.label: EndpointState(endpoint=ep) for ep in config.endpoints
        }
        self._http_session: Optional[aiohttp.ClientSession] = None
        self._request_ids = itertools.count(1)

        logger.info(
            "rpc_manager_initialized",
            endpoint_count=len(self.endpoints),
            endpoints=[ep.label for ep in config.endpoints]
        )

    async def start(self) -> None:
        """Open the shared HTTP session"""
        if self._http_session is not None:
            logger.warning("rpc_manager_already_running")
            return

        # No default timeout; set per request
        self._http_session = aiohttp.ClientSession()
        logger.info("rpc_manager_started")

    async def stop(self) -> None:
        """Close the shared HTTP session"""
        if self._http_session is None:
            return

        await self._http_session.close()
        self._http_session = None
        logger.info("rpc_manager_stopped")

    def _ordered_endpoints(self) -> List[EndpointState]:
        threshold = self.config.failover_threshold_errors
        return sorted(
            self.endpoints.values(),
            key=lambda s: (s.consecutive_failures >= threshold, s.endpoint.priority)
        )

    async def call_http_rpc(
        self,
        method: str,
        params: List[Any],
        timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        """
        Make an HTTP RPC call with automatic failover

        Args:
            method: JSON-RPC method name
            params: Method parameters
            timeout: Request timeout in seconds (defaults to the endpoint's timeout_ms)

        Returns:
            Full JSON-RPC response dict (caller reads "result")

        Raises:
            RPCError: If every endpoint fails
        """
        if self._http_session is None:
            raise RPCError("HTTP session not initialized. Call start() first.")

        last_error: Optional[Exception] = None

        for state in self._ordered_endpoints():
            endpoint = state.endpoint
            state.total_requests += 1
            payload = {
                "jsonrpc": "2.0",
                "id": next(self._request_ids),
                "method": method,
                "params": params
            }
            request_timeout = timeout if timeout is not None else endpoint.timeout_ms / 1000

            try:
                with LatencyTimer(metrics, "http_rpc_call"):
                    result = await asyncio.wait_for(
                        self._post(endpoint.url, payload),
                        timeout=request_timeout
                    )

                if "error" in result:
                    error = result["error"]
                    message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
                    raise RPCError(f"RPC error: {message}")

                state.consecutive_failures = 0
                metrics.increment_counter("http_rpc_success")
                return result

            except (RPCError, aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                logger.warning(
                    "http_rpc_call_failed",
                    endpoint=endpoint.label,
                    method=method,
                    error=str(e) or type(e).__name__
                )
                state.consecutive_failures += 1
                state.total_errors += 1
                metrics.increment_counter("http_rpc_errors")
                last_error = e

                if state.consecutive_failures == self.config.failover_threshold_errors:
                    logger.error(
                        "http_rpc_endpoint_failing_over",
                        endpoint=endpoint.label,
                        failures=state.consecutive_failures
                    )

        raise RPCError(f"All HTTP RPC endpoints failed for {method}. Last error: {last_error}")

    async def _post(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        async with self._http_session.post(url, json=payload) as response:
            return await response.json(content_type=None)

    # ============================================================================
    # READ HELPERS
    # ============================================================================

    async def get_balance_lamports(self, address: str) -> int:
        """Native balance of an address in lamports"""
        response = await self.call_http_rpc("getBalance", [address, {"commitment": "confirmed"}])
        return int(response["result"]["value"])

    async def get_balance_sol(self, address: str) -> float:
        return await self.get_balance_lamports(address) / LAMPORTS_PER_SOL

    async def get_account_info(self, address: str) -> Optional[Dict[str, Any]]:
        """
        Account info for an address

        Returns:
            The account dict (owner, executable, lamports, ...) or None when
            the address has no on-chain account
        """
        response = await self.call_http_rpc(
            "getAccountInfo",
            [address, {"encoding": "base64", "commitment": "confirmed"}]
        )
        return response["result"]["value"]

    async def get_latest_blockhash(self) -> str:
        response = await self.call_http_rpc("getLatestBlockhash", [{"commitment": "finalized"}])
        return response["result"]["value"]["blockhash"]

    async def get_token_account_balance(self, token_account: str) -> int:
        """Raw (base-unit) token amount held by a token account"""
        response = await self.call_http_rpc(
            "getTokenAccountBalance",
            [token_account, {"commitment": "confirmed"}]
        )
        return int(response["result"]["value"]["amount"])

    async def get_balance_change(self, signature: str, address: str) -> Optional[int]:
        """
        Lamport change a landed transaction applied to one of its accounts

        Returns:
            postBalance - preBalance for the address, or None when the
            transaction is not found or does not touch the address
        """
        response = await self.call_http_rpc(
            "getTransaction",
            [signature, {"encoding": "json", "commitment": "confirmed", "maxSupportedTransactionVersion": 0}]
        )
        tx = response.get("result")
        if not tx or not tx.get("meta"):
            return None

        account_keys = tx["transaction"]["message"]["accountKeys"]
        if address not in account_keys:
            return None

        index = account_keys.index(address)
        meta = tx["meta"]
        return int(meta["postBalances"][index]) - int(meta["preBalances"][index])

    def get_health_stats(self) -> Dict[str, Dict[str, Any]]:
        return {label: state.to_dict() for label, state in self.endpoints.items()}
