"""
Round state owned by the orchestrator
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class RoundPhase(Enum):
    """Orchestrator state machine phases"""
    INACTIVE = "inactive"
    ACTIVE = "active"
    ENDING = "ending"
    PAUSED = "paused"


@dataclass
class RoundStats:
    """Per-round ingestion counters"""
    processed: int = 0
    excluded: int = 0
    duplicates: int = 0
    total_sol_volume: float = 0.0
    fees_claimed_count: int = 0

    def reset(self) -> None:
        self.total_sol_volume = 0.0
        self.fees_claimed_count = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "excluded": self.excluded,
            "duplicates": self.duplicates,
            "totalSolVolume": self.total_sol_volume,
            "feesClaimedCount": self.fees_claimed_count,
        }


@dataclass
class GlobalStats:
    """Singleton row of lifetime totals"""
    total_rounds_completed: int = 0
    total_rewards_paid: float = 0.0
    total_supply_burned: float = 0.0
    current_round_number: int = 1
    reward_wallet_balance: float = 0.0
    start_reward: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalRoundsCompleted": self.total_rounds_completed,
            "totalRewardsPaid": self.total_rewards_paid,
            "totalSupplyBurned": self.total_supply_burned,
            "currentRoundNumber": self.current_round_number,
            "rewardWalletBalance": self.reward_wallet_balance,
            "startReward": self.start_reward,
        }


@dataclass
class RoundState:
    """Live round state; mutated only by the RoundOrchestrator"""
    base_reward: float
    round_number: int = 1
    current_round_start: float = 0.0
    claimed_fees: float = 0.0
    round_in_progress: bool = True
    phase: RoundPhase = RoundPhase.INACTIVE
    total_rounds_completed: int = 0
    total_rewards_paid: float = 0.0
    total_supply_burned: float = 0.0
    last_error: Optional[str] = None
    stats: RoundStats = field(default_factory=RoundStats)

    def reset_for_new_round(self, round_start: float) -> None:
        self.claimed_fees = 0.0
        self.current_round_start = round_start
        self.stats.reset()

    def load_global_stats(self, stats: Optional[GlobalStats]) -> None:
        """Restore lifetime totals after a restart"""
        if stats is None:
            return
        self.total_rounds_completed = stats.total_rounds_completed
        self.total_rewards_paid = stats.total_rewards_paid
        self.total_supply_burned = stats.total_supply_burned
        self.round_number = max(1, stats.current_round_number)
        if stats.start_reward > 0:
            self.base_reward = stats.start_reward

    def to_global_stats(self) -> GlobalStats:
        return GlobalStats(
            total_rounds_completed=self.total_rounds_completed,
            total_rewards_paid=self.total_rewards_paid,
            total_supply_burned=self.total_supply_burned,
            current_round_number=self.round_number,
            reward_wallet_balance=self.base_reward,
            start_reward=self.base_reward,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "roundNumber": self.round_number,
            "currentRoundStart": self.current_round_start,
            "claimedFees": self.claimed_fees,
            "baseReward": self.base_reward,
            "roundInProgress": self.round_in_progress,
            "totalRoundsCompleted": self.total_rounds_completed,
            "totalRewardsPaid": self.total_rewards_paid,
            "totalSupplyBurned": self.total_supply_burned,
            "lastError": self.last_error,
            "stats": self.stats.to_dict(),
        }
