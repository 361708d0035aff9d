"""
Wallet Classifier
Decides whether an address is a human-controlled wallet or a program/pool account
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from volking.core.logger import get_logger
from volking.core.metrics import get_metrics
from volking.core.rpc_manager import RPCManager


logger = get_logger(__name__)
metrics = get_metrics()

SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"


@dataclass
class WalletClassification:
    """Cached classification result"""
    address: str
    is_user_wallet: bool
    checked_at: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "is_user_wallet": self.is_user_wallet,
            "checked_at": self.checked_at,
        }


def is_user_account(account: Optional[Dict[str, Any]]) -> bool:
    """
    Classification rule

    No account yet, or a plain system-owned account -> user wallet.
    Executable, or owned by any other program -> excluded.
    """
    if account is None:
        return True
    if account.get("executable"):
        return False
    return account.get("owner") == SYSTEM_PROGRAM_ID


class WalletClassifier:
    """
    Classifies addresses with a TTL cache

    Entries older than the TTL are never served; they are re-checked.
    The periodic sweep drops entries older than 2x TTL to bound memory.
    Lookup errors fail closed (not a user wallet) and are not cached.
    """

    def __init__(
        self,
        rpc_manager: RPCManager,
        ttl_s: float = 900.0,
        clock: Callable[[], float] = time.time
    ):
        self.rpc_manager = rpc_manager
        self.ttl_s = ttl_s
        self._clock = clock
        self._cache: Dict[str, WalletClassification] = {}

    async def classify(self, address: str) -> bool:
        """
        Returns:
            True if the address should be credited with volume
        """
        now = self._clock()
        cached = self._cache.get(address)
        if cached is not None and now - cached.checked_at <= self.ttl_s:
            metrics.increment_counter("wallet_classification_cache_hits")
            return cached.is_user_wallet

        metrics.increment_counter("wallet_classification_lookups")
        try:
            account = await self.rpc_manager.get_account_info(address)
        except Exception as e:
            metrics.increment_counter("wallet_classification_errors")
            logger.warning("wallet_classification_failed", address=address, error=str(e))
            return False

        is_user = is_user_account(account)
        self._cache[address] = WalletClassification(
            address=address,
            is_user_wallet=is_user,
            checked_at=self._clock()
        )

        if not is_user:
            logger.debug(
                "wallet_classified_as_program",
                address=address,
                owner=account.get("owner") if account else None
            )
        return is_user

    def evict_stale(self) -> int:
        """
        Drop entries older than 2x TTL

        Returns:
            Number of entries removed
        """
        cutoff = self._clock() - 2 * self.ttl_s
        stale = [addr for addr, entry in self._cache.items() if entry.checked_at < cutoff]
        for addr in stale:
            del self._cache[addr]

        if stale:
            logger.info("wallet_cache_evicted", removed=len(stale), remaining=len(self._cache))
        metrics.set_gauge("wallet_cache_size", len(self._cache))
        return len(stale)

    def cached(self, address: str) -> Optional[WalletClassification]:
        return self._cache.get(address)

    def __len__(self) -> int:
        return len(self._cache)
