"""
Trade Processor - turns raw trade notifications into ledger volume

Pipeline per notification:
1. Discard unless a token transfer touches the tracked mint
2. Estimate (wallet, SOL value) with a TradeValueEstimator
3. Classify the wallet; user wallets are recorded, others counted as excluded
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from volking.core.logger import get_logger
from volking.core.metrics import get_metrics
from volking.core.rpc_manager import LAMPORTS_PER_SOL
from volking.core.volume_ledger import TradeOutcome


logger = get_logger(__name__)
metrics = get_metrics()


@dataclass
class NativeTransfer:
    from_account: Optional[str]
    to_account: Optional[str]
    amount_sol: float


@dataclass
class SwapLeg:
    account: Optional[str]
    amount_sol: float


@dataclass
class TradeEvent:
    """One enhanced transaction as delivered by the webhook provider"""
    signature: Optional[str]
    fee_payer: Optional[str]
    timestamp: float
    native_transfers: List[NativeTransfer] = field(default_factory=list)
    token_mints: List[str] = field(default_factory=list)
    swap_native_input: Optional[SwapLeg] = None
    swap_native_output: Optional[SwapLeg] = None

    @classmethod
    def from_webhook(cls, tx: Dict[str, Any], now: Optional[float] = None) -> "TradeEvent":
        """Parse the provider's enhanced-transaction JSON; lamports become SOL"""
        native = [
            NativeTransfer(
                from_account=t.get("fromUserAccount"),
                to_account=t.get("toUserAccount"),
                amount_sol=_lamports_to_sol(t.get("amount"))
            )
            for t in tx.get("nativeTransfers") or []
        ]
        mints = [t.get("mint") for t in tx.get("tokenTransfers") or [] if t.get("mint")]

        swap = (tx.get("events") or {}).get("swap") or {}

        timestamp = tx.get("timestamp")
        if not timestamp:
            timestamp = now if now is not None else time.time()

        return cls(
            signature=tx.get("signature"),
            fee_payer=tx.get("feePayer"),
            timestamp=float(timestamp),
            native_transfers=native,
            token_mints=mints,
            swap_native_input=_swap_leg(swap.get("nativeInput")),
            swap_native_output=_swap_leg(swap.get("nativeOutput"))
        )

    def involves_mint(self, mint: str) -> bool:
        return mint in self.token_mints


def _lamports_to_sol(value: Any) -> float:
    # Provider sends lamports as int or numeric string
    try:
        return int(value or 0) / LAMPORTS_PER_SOL
    except (TypeError, ValueError):
        return 0.0


def _swap_leg(leg: Optional[Dict[str, Any]]) -> Optional[SwapLeg]:
    if not leg or not leg.get("amount"):
        return None
    return SwapLeg(account=leg.get("account"), amount_sol=_lamports_to_sol(leg.get("amount")))


class TradeValueEstimator:
    """Strategy: (wallet, SOL value) of a trade, or None when nothing qualifies"""

    def estimate(self, event: TradeEvent) -> Optional[Tuple[str, float]]:
        raise NotImplementedError


class LargestTransferEstimator(TradeValueEstimator):
    """
    Heuristic value: the largest SOL movement tied to the trade

    Native transfers count only when the fee payer sends or receives them and
    they clear the dust threshold. A swap event's SOL legs override the running
    maximum when larger, and attribute the trade to the swap's account.
    This is an approximation of trade value, not exact parsing.
    """

    def __init__(self, dust_threshold_sol: float = 0.001):
        self.dust_threshold_sol = dust_threshold_sol

    def estimate(self, event: TradeEvent) -> Optional[Tuple[str, float]]:
        value = 0.0
        wallet = event.fee_payer

        for transfer in event.native_transfers:
            if transfer.amount_sol < self.dust_threshold_sol:
                continue
            if event.fee_payer not in (transfer.from_account, transfer.to_account):
                continue
            if transfer.amount_sol > value:
                value = transfer.amount_sol
                wallet = event.fee_payer

        for leg in (event.swap_native_input, event.swap_native_output):
            if leg is not None and leg.amount_sol > value:
                value = leg.amount_sol
                wallet = leg.account or event.fee_payer

        if value <= 0 or not wallet:
            return None
        return wallet, value


@dataclass
class ProcessResult:
    processed: int = 0
    excluded: int = 0
    duplicates: int = 0
    skipped: int = 0

    def merge(self, other: "ProcessResult") -> None:
        self.processed += other.processed
        self.excluded += other.excluded
        self.duplicates += other.duplicates
        self.skipped += other.skipped

    def to_dict(self) -> Dict[str, int]:
        return {
            "processed": self.processed,
            "excluded": self.excluded,
            "duplicates": self.duplicates,
            "skipped": self.skipped,
        }


class TradeProcessor:
    """
    Usage:
        processor = TradeProcessor(token_mint, classifier, orchestrator)
        result = await processor.process_batch(payload)
    """

    def __init__(
        self,
        token_mint: str,
        classifier,
        orchestrator,
        estimator: Optional[TradeValueEstimator] = None
    ):
        self.token_mint = token_mint
        self.classifier = classifier
        self.orchestrator = orchestrator
        self.estimator = estimator or LargestTransferEstimator()

    async def process(self, tx: Dict[str, Any]) -> ProcessResult:
        result = ProcessResult()
        event = TradeEvent.from_webhook(tx)

        if not event.involves_mint(self.token_mint):
            result.skipped = 1
            return result

        estimate = self.estimator.estimate(event)
        if estimate is None:
            result.skipped = 1
            return result

        wallet, sol_value = estimate
        if not await self.classifier.classify(wallet):
            self.orchestrator.record_excluded()
            result.excluded = 1
            logger.debug("trade_excluded", wallet=wallet, sol=sol_value, signature=event.signature)
            return result

        outcome = self.orchestrator.record_trade(wallet, sol_value, event.timestamp, event.signature)
        if outcome in (TradeOutcome.RECORDED, TradeOutcome.BUFFERED):
            result.processed = 1
            logger.debug(
                "trade_recorded",
                wallet=wallet,
                sol=sol_value,
                outcome=outcome.value,
                signature=event.signature
            )
        elif outcome == TradeOutcome.DUPLICATE:
            result.duplicates = 1
        else:
            result.skipped = 1
        return result

    async def process_batch(self, payload: Any) -> ProcessResult:
        """Process an object or a list of transactions; one bad entry never stops the rest"""
        transactions = payload if isinstance(payload, list) else [payload]
        total = ProcessResult()

        for tx in transactions:
            if not isinstance(tx, dict):
                total.skipped += 1
                continue
            try:
                total.merge(await self.process(tx))
            except Exception as e:
                total.skipped += 1
                metrics.increment_counter("webhook_processing_errors")
                logger.error("trade_processing_failed", signature=tx.get("signature"), error=str(e))

        if total.processed or total.excluded:
            logger.info(
                "webhook_batch_processed",
                transactions=len(transactions),
                participants=len(self.orchestrator.ledger),
                **total.to_dict()
            )
        return total
