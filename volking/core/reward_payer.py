"""
Reward Payer
Pays the round winner from the reward wallet
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from solders.keypair import Keypair

from volking.core.config import DistributionConfig
from volking.core.errors import ConfirmationTimeout
from volking.core.logger import get_logger
from volking.core.metrics import get_metrics
from volking.core.sol_transfer import SolTransferer


logger = get_logger(__name__)
metrics = get_metrics()


def calculate_reward(base_reward: float, claimed_fees: float, winner_pct: float = 0.15) -> float:
    """winnerReward = baseReward + winner_pct * claimedFees"""
    return base_reward + claimed_fees * winner_pct


@dataclass
class PaymentResult:
    """
    Outcome of one reward payment

    unconfirmed: the transfer was submitted but confirmation timed out. The
    signature is kept and the transfer may still land.
    """
    success: bool
    signature: Optional[str] = None
    error: Optional[str] = None
    unconfirmed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "signature": self.signature,
            "error": self.error,
            "unconfirmed": self.unconfirmed,
        }


class RewardPayer:
    """Single transfer from the reward wallet to the winner; no logical retry"""

    def __init__(
        self,
        enabled: bool,
        min_reward_sol: float,
        transferer: SolTransferer,
        reward_keypair: Optional[Keypair],
        percentages: Optional[DistributionConfig] = None
    ):
        self.enabled = enabled
        self.min_reward_sol = min_reward_sol
        self.transferer = transferer
        self.reward_keypair = reward_keypair
        self.percentages = percentages or DistributionConfig()

    def reward_for(self, base_reward: float, claimed_fees: float) -> float:
        return calculate_reward(base_reward, claimed_fees, self.percentages.winner_pct)

    async def pay(self, winner_address: str, amount: float) -> PaymentResult:
        if not self.enabled:
            logger.warning("reward_payment_skipped", reason="Reward distribution disabled")
            return PaymentResult(success=False, error="Reward distribution disabled")

        if amount < self.min_reward_sol:
            logger.warning("reward_payment_skipped", reason="Reward amount too small", amount_sol=amount)
            return PaymentResult(success=False, error="Reward amount too small")

        if self.reward_keypair is None:
            logger.error("reward_payment_not_configured")
            return PaymentResult(success=False, error="Reward wallet keypair not configured")

        logger.info("reward_payment_started", winner=winner_address, amount_sol=amount)
        try:
            signature = await self.transferer.transfer(self.reward_keypair, winner_address, amount)
        except ConfirmationTimeout as e:
            metrics.increment_counter("reward_payments_unconfirmed")
            logger.error(
                "reward_payment_unconfirmed",
                winner=winner_address,
                amount_sol=amount,
                signature=e.signature,
                error=str(e)
            )
            return PaymentResult(success=False, signature=e.signature, error=str(e), unconfirmed=True)
        except Exception as e:
            metrics.increment_counter("reward_payments_failed")
            logger.error("reward_payment_failed", winner=winner_address, amount_sol=amount, error=str(e))
            return PaymentResult(success=False, error=str(e))

        metrics.increment_counter("reward_payments_succeeded")
        logger.info("reward_payment_succeeded", winner=winner_address, amount_sol=amount, signature=signature)
        return PaymentResult(success=True, signature=signature)
