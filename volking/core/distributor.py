"""
Fee Distributor
Splits claimed creator fees and sends the treasury and next-round seed shares
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from solders.keypair import Keypair

from volking.core.config import DistributionConfig, ThresholdConfig
from volking.core.errors import ConfirmationTimeout
from volking.core.logger import get_logger
from volking.core.metrics import get_metrics
from volking.core.sol_transfer import SolTransferer


logger = get_logger(__name__)
metrics = get_metrics()


@dataclass
class Distribution:
    """
    Result of splitting one fee total

    The winner share is informational; the winner is paid from the reward
    wallet by RewardPayer. The buyback share stays in the creator wallet
    until BuybackBurner spends it. A purpose listed in unconfirmed has its
    signature in signatures but may or may not have landed.
    """
    total_fees: float
    treasury_amount: float
    next_round_seed_amount: float
    buyback_amount: float
    winner_amount: float
    signatures: Dict[str, str] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)
    unconfirmed: List[str] = field(default_factory=list)
    success: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalFees": self.total_fees,
            "treasury": self.treasury_amount,
            "nextRoundBase": self.next_round_seed_amount,
            "buybackBurn": self.buyback_amount,
            "winnerAmount": self.winner_amount,
            "signatures": dict(self.signatures),
            "skipped": list(self.skipped),
            "unconfirmed": list(self.unconfirmed),
            "success": self.success,
            "error": self.error,
        }


def compute_shares(
    total_fees: float,
    percentages: DistributionConfig,
    tx_fee_reserve: float
) -> Distribution:
    """
    Pure split of a fee total

    buyback = max(0, total * buyback_pct - tx_fee_reserve)
    """
    total_fees = max(0.0, total_fees)
    return Distribution(
        total_fees=total_fees,
        treasury_amount=total_fees * percentages.treasury_pct,
        next_round_seed_amount=total_fees * percentages.next_round_seed_pct,
        buyback_amount=max(0.0, total_fees * percentages.buyback_pct - tx_fee_reserve),
        winner_amount=total_fees * percentages.winner_pct,
    )


class Distributor:
    """
    Executes the fee split from the creator fee wallet

    Transfers run in order (treasury, then reward-wallet seed). A share below
    the minimum transfer is skipped, not failed. The first failed transfer
    stops the rest; signatures already obtained are kept on the result.
    """

    def __init__(
        self,
        percentages: DistributionConfig,
        thresholds: ThresholdConfig,
        transferer: SolTransferer,
        creator_keypair: Optional[Keypair],
        treasury_wallet: str,
        reward_wallet: str
    ):
        self.percentages = percentages
        self.thresholds = thresholds
        self.transferer = transferer
        self.creator_keypair = creator_keypair
        self.treasury_wallet = treasury_wallet
        self.reward_wallet = reward_wallet

    def compute(self, total_fees: float) -> Distribution:
        return compute_shares(total_fees, self.percentages, self.thresholds.tx_fee_reserve_sol)

    def _config_error(self) -> Optional[str]:
        if self.creator_keypair is None:
            return "Creator fee wallet keypair not configured"
        if not self.treasury_wallet:
            return "Treasury wallet not configured"
        if not self.reward_wallet:
            return "Reward wallet not configured"
        return None

    async def distribute(self, total_fees: float) -> Distribution:
        distribution = self.compute(total_fees)

        if distribution.total_fees <= 0:
            logger.info("distribution_nothing_to_distribute")
            distribution.success = True
            return distribution

        logger.info(
            "distribution_started",
            total_fees_sol=distribution.total_fees,
            treasury_sol=distribution.treasury_amount,
            next_round_seed_sol=distribution.next_round_seed_amount,
            buyback_sol=distribution.buyback_amount,
            winner_share_sol=distribution.winner_amount
        )

        error = self._config_error()
        if error:
            logger.error("distribution_not_configured", error=error)
            distribution.error = error
            metrics.increment_counter("distributions_failed")
            return distribution

        transfers = [
            ("treasury", self.treasury_wallet, distribution.treasury_amount),
            ("rewardWallet", self.reward_wallet, distribution.next_round_seed_amount),
        ]

        for purpose, destination, amount in transfers:
            if amount < self.thresholds.min_transfer_sol:
                logger.info("distribution_transfer_skipped", purpose=purpose, amount_sol=amount)
                distribution.skipped.append(purpose)
                continue

            try:
                distribution.signatures[purpose] = await self.transferer.transfer(
                    self.creator_keypair, destination, amount
                )
            except ConfirmationTimeout as e:
                distribution.signatures[purpose] = e.signature
                distribution.unconfirmed.append(purpose)
                distribution.error = f"{purpose} transfer unconfirmed: {e}"
                metrics.increment_counter("distributions_unconfirmed")
                logger.error(
                    "distribution_transfer_unconfirmed",
                    purpose=purpose,
                    amount_sol=amount,
                    signature=e.signature,
                    completed_signatures=dict(distribution.signatures)
                )
                return distribution
            except Exception as e:
                distribution.error = f"{purpose} transfer failed: {e}"
                metrics.increment_counter("distributions_failed")
                logger.error(
                    "distribution_transfer_failed",
                    purpose=purpose,
                    amount_sol=amount,
                    error=str(e),
                    completed_signatures=dict(distribution.signatures)
                )
                return distribution

        if distribution.buyback_amount > 0:
            logger.info("buyback_share_reserved", amount_sol=distribution.buyback_amount)

        distribution.success = True
        metrics.increment_counter("distributions_succeeded")
        logger.info("distribution_complete", signatures=dict(distribution.signatures))
        return distribution
