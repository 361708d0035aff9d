"""
Volume Ledger
Per-round wallet -> volume aggregation, winner lookup and reset
"""

import itertools
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

from volking.core.logger import get_logger
from volking.core.metrics import get_metrics


logger = get_logger(__name__)
metrics = get_metrics()


class TradeOutcome(Enum):
    """What record_trade did with a trade"""
    RECORDED = "recorded"
    DUPLICATE = "duplicate"
    BUFFERED = "buffered"
    IGNORED = "ignored"


@dataclass
class VolumeEntry:
    """Volume accrued by one wallet this round"""
    wallet: str
    volume: float
    trades: int
    last_trade: float
    first_seen: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "wallet": self.wallet,
            "volume": self.volume,
            "trades": self.trades,
            "lastTrade": self.last_trade,
        }


@dataclass
class _PendingTrade:
    wallet: str
    sol_amount: float
    timestamp: float
    signature: Optional[str]


def _rank(entry: VolumeEntry) -> Tuple[float, float, int]:
    # Highest volume, then earliest to reach it, then first seen
    return (-entry.volume, entry.last_trade, entry.first_seen)


class VolumeLedger:
    """
    In-memory volume map for the current round

    Volume only grows within a round; reset() is the only way down.
    While frozen (winner determined, ledger about to be reset) new trades
    are buffered and replayed by unfreeze().
    """

    def __init__(self, dedupe_signatures: bool = True):
        self.dedupe_signatures = dedupe_signatures
        self._entries: Dict[str, VolumeEntry] = {}
        self._seen_signatures: Set[str] = set()
        self._pending: List[_PendingTrade] = []
        self._frozen = False
        self._seq = itertools.count()

        # Round-scoped counters
        self.round_volume = 0.0
        self.round_trades = 0

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def record_trade(
        self,
        wallet: str,
        sol_amount: float,
        timestamp: float,
        signature: Optional[str] = None
    ) -> TradeOutcome:
        """
        Additive upsert of one trade

        Raises:
            ValueError: If sol_amount is not a positive finite number
        """
        if not (sol_amount > 0 and math.isfinite(sol_amount)):
            raise ValueError(f"Trade amount must be positive, got {sol_amount}")

        if signature and self.dedupe_signatures:
            if signature in self._seen_signatures:
                metrics.increment_counter("trades_duplicate")
                return TradeOutcome.DUPLICATE
            self._seen_signatures.add(signature)

        if self._frozen:
            self._pending.append(_PendingTrade(wallet, sol_amount, timestamp, signature))
            metrics.increment_counter("trades_buffered")
            return TradeOutcome.BUFFERED

        self._apply(wallet, sol_amount, timestamp)
        return TradeOutcome.RECORDED

    def _apply(self, wallet: str, sol_amount: float, timestamp: float) -> None:
        entry = self._entries.get(wallet)
        if entry is None:
            entry = VolumeEntry(
                wallet=wallet,
                volume=0.0,
                trades=0,
                last_trade=timestamp,
                first_seen=next(self._seq)
            )
            self._entries[wallet] = entry

        entry.volume += sol_amount
        entry.trades += 1
        entry.last_trade = max(entry.last_trade, timestamp)

        self.round_volume += sol_amount
        self.round_trades += 1
        metrics.increment_counter("trades_recorded")

    def get(self, wallet: str) -> Optional[VolumeEntry]:
        return self._entries.get(wallet)

    def winner(self) -> Optional[VolumeEntry]:
        """Highest-volume entry, ties broken deterministically"""
        if not self._entries:
            return None
        return min(self._entries.values(), key=_rank)

    def leaderboard(self, limit: int = 10) -> List[VolumeEntry]:
        return sorted(self._entries.values(), key=_rank)[:limit]

    def freeze(self) -> None:
        """Stop applying trades; later trades are buffered"""
        self._frozen = True

    def unfreeze(self) -> int:
        """
        Resume applying trades and replay the buffer

        Returns:
            Number of trades replayed
        """
        self._frozen = False
        pending, self._pending = self._pending, []
        for trade in pending:
            if trade.signature and self.dedupe_signatures:
                self._seen_signatures.add(trade.signature)
            self._apply(trade.wallet, trade.sol_amount, trade.timestamp)

        if pending:
            logger.info("buffered_trades_replayed", count=len(pending))
        return len(pending)

    def reset(self, clear_volume: bool = True) -> None:
        """
        Prepare for the next round

        Args:
            clear_volume: Drop all entries; when False entries are kept and only
                the round-scoped counters and seen signatures are cleared
        """
        if clear_volume:
            self._entries = {}
        self._seen_signatures = set()
        self.round_volume = 0.0
        self.round_trades = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, wallet: str) -> bool:
        return wallet in self._entries
