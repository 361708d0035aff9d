"""
Round Orchestrator - the round lifecycle state machine

INACTIVE -> ACTIVE -> ENDING -> ACTIVE (next round)
                             -> PAUSED (pipeline failure, operator must resume)

Drives fee claiming, round rotation and cache eviction on timers, and runs
the end-of-round pipeline:
claim -> distribute -> pay winner -> buyback & burn -> persist -> advance
"""

import asyncio
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from volking.core.buyback_burner import BuybackBurner, BuybackResult
from volking.core.config import DistributionConfig, FeatureFlags, RoundPolicyConfig, TimingConfig
from volking.core.distributor import Distribution, Distributor
from volking.core.errors import InvalidTransition
from volking.core.fee_claimer import ClaimResult, FeeClaimer
from volking.core.logger import get_logger
from volking.core.metrics import get_metrics, LatencyTimer
from volking.core.persistence import BurnRecord, PersistenceGateway, RewardTransferRecord, WinnerRecord
from volking.core.reward_payer import PaymentResult, RewardPayer, calculate_reward
from volking.core.round_state import RoundPhase, RoundState
from volking.core.scheduler import RecurringTask
from volking.core.volume_ledger import TradeOutcome, VolumeLedger
from volking.core.wallet_classifier import WalletClassifier


logger = get_logger(__name__)
metrics = get_metrics()


class RoundOutcome(Enum):
    """How a round-end attempt finished"""
    COMPLETED = "completed"  # Winner paid (or no winner) and round advanced
    DEGRADED = "degraded"  # Round advanced but the winner payment is not confirmed
    PAUSED = "paused"  # Pipeline aborted; round left in place for the operator
    SKIPPED = "skipped"  # Another round end was already running


@dataclass
class RoundEndResult:
    """Record of one round-end attempt"""
    round_number: int
    outcome: RoundOutcome
    claimed_fees: float = 0.0
    winner: Optional[str] = None
    winner_volume: float = 0.0
    winner_reward: float = 0.0
    reward_signature: Optional[str] = None
    distribution: Optional[Distribution] = None
    payment: Optional[PaymentResult] = None
    buyback: Optional[BuybackResult] = None
    next_base_reward: Optional[float] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "roundNumber": self.round_number,
            "outcome": self.outcome.value,
            "claimedFees": self.claimed_fees,
            "winner": self.winner,
            "winnerVolume": self.winner_volume,
            "winnerReward": self.winner_reward,
            "rewardSignature": self.reward_signature,
            "distribution": self.distribution.to_dict() if self.distribution else None,
            "payment": self.payment.to_dict() if self.payment else None,
            "buyback": self.buyback.to_dict() if self.buyback else None,
            "nextBaseReward": self.next_base_reward,
            "error": self.error,
        }


class RoundOrchestrator:
    """
    Owns RoundState and the VolumeLedger; every mutation goes through here

    Guards:
    - one round end at a time (overlapping triggers are skipped)
    - one fee claim at a time (timer ticks skip, the final claim waits)
    - the ledger is frozen from winner read until reset, so trades that land
      in between are buffered for the next round

    Usage:
        orchestrator = RoundOrchestrator(...)
        await orchestrator.initialize()
        await orchestrator.start()
    """

    def __init__(
        self,
        timing: TimingConfig,
        policy: RoundPolicyConfig,
        percentages: DistributionConfig,
        features: FeatureFlags,
        ledger: VolumeLedger,
        classifier: WalletClassifier,
        fee_claimer: FeeClaimer,
        distributor: Distributor,
        reward_payer: RewardPayer,
        buyback_burner: BuybackBurner,
        persistence: PersistenceGateway,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.timing = timing
        self.policy = policy
        self.percentages = percentages
        self.features = features
        self.ledger = ledger
        self.classifier = classifier
        self.fee_claimer = fee_claimer
        self.distributor = distributor
        self.reward_payer = reward_payer
        self.buyback_burner = buyback_burner
        self.persistence = persistence
        self._clock = clock
        self._sleep = sleep

        self.state = RoundState(base_reward=policy.initial_base_reward)
        self.last_round_result: Optional[RoundEndResult] = None

        self._round_end_lock = asyncio.Lock()
        self._claim_lock = asyncio.Lock()
        self._shutting_down = False

        self.fee_timer = RecurringTask("fee_claim", timing.fee_claim_interval_s, self._fee_claim_tick)
        self.round_timer = RecurringTask("round_check", timing.round_check_interval_s, self._round_check_tick)
        self.sweep_timer = RecurringTask("cache_sweep", timing.cache_sweep_interval_s, self._cache_sweep_tick)

    # ============================================================================
    # LIFECYCLE
    # ============================================================================

    @property
    def phase(self) -> RoundPhase:
        return self.state.phase

    @property
    def round_ending(self) -> bool:
        return self._round_end_lock.locked()

    def boundary(self, t: float) -> float:
        """Start of the wall-clock aligned round containing t"""
        d = self.timing.round_duration_s
        return math.floor(t / d) * d

    async def initialize(self) -> None:
        """Restore lifetime totals and, in auto mode, start the first round"""
        stats = await self.persistence.get_global_stats()
        self.state.load_global_stats(stats)
        logger.info(
            "round_state_restored" if stats else "round_state_fresh",
            round_number=self.state.round_number,
            base_reward=self.state.base_reward,
            total_rounds_completed=self.state.total_rounds_completed
        )

        if self.policy.start_mode == "auto":
            await self.start()

    async def start(self) -> Dict[str, Any]:
        """INACTIVE -> ACTIVE"""
        if self._shutting_down:
            raise InvalidTransition("Engine is shutting down")
        if self.state.phase == RoundPhase.PAUSED:
            raise InvalidTransition("Round is paused; use resume after reconciling")
        if self.state.phase != RoundPhase.INACTIVE:
            raise InvalidTransition("System is already running")

        self.state.current_round_start = self.boundary(self._clock())
        self.state.round_in_progress = True
        self.state.phase = RoundPhase.ACTIVE
        if self.ledger.frozen:
            self.ledger.unfreeze()

        self.fee_timer.start()
        self.round_timer.start()
        self.sweep_timer.start()

        metrics.set_gauge("round_number", self.state.round_number)
        logger.info(
            "system_started",
            round_number=self.state.round_number,
            base_reward=self.state.base_reward,
            round_start=self.state.current_round_start
        )
        return {"roundNumber": self.state.round_number, "baseReward": self.state.base_reward}

    async def stop(self) -> None:
        """
        Emergency stop: halt every timer

        Refused while a round is settling, and while PAUSED: a pause is only
        cleared through resume, which carries the reconciliation decision.
        """
        if self.state.phase == RoundPhase.ENDING or self.round_ending:
            raise InvalidTransition("Round end in progress; wait for it to finish")
        if self.state.phase == RoundPhase.PAUSED:
            raise InvalidTransition("Round is paused; reconcile funds and use resume")
        if self.state.phase == RoundPhase.INACTIVE:
            raise InvalidTransition("System is already stopped")

        await self.fee_timer.stop()
        await self.round_timer.stop()
        await self.sweep_timer.stop()
        self.state.phase = RoundPhase.INACTIVE
        logger.warning("system_stopped", round_number=self.state.round_number)

    async def shutdown(self) -> None:
        """
        Process shutdown: stop timers and let in-flight work finish

        Nothing restarts a timer once this has begun, including a round end
        that advances while it waits.
        """
        self._shutting_down = True
        await self.fee_timer.stop()
        await self.round_timer.stop()
        await self.sweep_timer.stop()
        await self.round_timer.wait_idle()
        await self.fee_timer.wait_idle()

        # Manual end-round and claim calls run outside the timers
        async with self._round_end_lock:
            pass
        async with self._claim_lock:
            pass
        await self.fee_timer.stop()
        logger.info("orchestrator_shutdown", phase=self.state.phase.value, round_number=self.state.round_number)

    async def resume(self, reset_claimed_fees: bool = False) -> Dict[str, Any]:
        """
        PAUSED -> ACTIVE

        The round boundary is still due, so the next round check retries
        settlement. reset_claimed_fees zeroes the claimed total after the
        operator has reconciled funds by hand.
        """
        if self._shutting_down:
            raise InvalidTransition("Engine is shutting down")
        if self.state.phase != RoundPhase.PAUSED:
            raise InvalidTransition("Round is not paused")

        if reset_claimed_fees:
            logger.warning("claimed_fees_reset_by_operator", previous=self.state.claimed_fees)
            self.state.claimed_fees = 0.0

        self.state.phase = RoundPhase.ACTIVE
        self.state.round_in_progress = True
        self.state.last_error = None
        self.ledger.unfreeze()

        self.fee_timer.start()
        self.round_timer.start()
        self.sweep_timer.start()

        logger.info("system_resumed", round_number=self.state.round_number, claimed_fees=self.state.claimed_fees)
        return {"roundNumber": self.state.round_number, "claimedFees": self.state.claimed_fees}

    # ============================================================================
    # TRADE INGESTION
    # ============================================================================

    def record_trade(
        self,
        wallet: str,
        sol_amount: float,
        timestamp: float,
        signature: Optional[str] = None
    ) -> TradeOutcome:
        """Single entry point for volume; ignored while INACTIVE"""
        if self.state.phase == RoundPhase.INACTIVE:
            metrics.increment_counter("trades_ignored_inactive")
            return TradeOutcome.IGNORED

        outcome = self.ledger.record_trade(wallet, sol_amount, timestamp, signature)
        if outcome == TradeOutcome.RECORDED:
            self.state.stats.processed += 1
            self.state.stats.total_sol_volume += sol_amount
        elif outcome == TradeOutcome.DUPLICATE:
            self.state.stats.duplicates += 1
        return outcome

    def record_excluded(self) -> None:
        self.state.stats.excluded += 1
        metrics.increment_counter("trades_excluded")

    # ============================================================================
    # FEE CLAIMING
    # ============================================================================

    async def _claim(self) -> ClaimResult:
        """Claim and accrue; caller holds the claim lock"""
        result = await self.fee_claimer.claim()
        # A failed claim can still carry fees from an earlier claim that landed late
        if result.amount > 0:
            self.state.claimed_fees += result.amount
            if result.success:
                self.state.stats.fees_claimed_count += 1
            metrics.set_gauge("claimed_fees_sol", self.state.claimed_fees)
            logger.info(
                "claimed_fees_accrued",
                amount_sol=result.amount,
                claimed_fees_sol=self.state.claimed_fees,
                reward_pool_sol=self.current_reward()
            )
        return result

    async def _fee_claim_tick(self) -> None:
        if self.state.phase != RoundPhase.ACTIVE:
            return
        if self._claim_lock.locked():
            logger.debug("fee_claim_tick_skipped", reason="claim in progress")
            return

        async with self._claim_lock:
            await self._claim()

    async def claim_fees(self) -> ClaimResult:
        """Manual claim (admin); waits for any running claim"""
        if self.state.phase == RoundPhase.ENDING:
            raise InvalidTransition("Round end in progress")

        async with self._claim_lock:
            return await self._claim()

    def current_reward(self) -> float:
        return calculate_reward(self.state.base_reward, self.state.claimed_fees, self.percentages.winner_pct)

    # ============================================================================
    # TIMERS
    # ============================================================================

    async def _round_check_tick(self) -> None:
        if self.state.phase != RoundPhase.ACTIVE:
            return
        if self.boundary(self._clock()) > self.state.current_round_start:
            logger.info("round_boundary_reached", round_number=self.state.round_number)
            await self.end_round(trigger="timer")

    async def _cache_sweep_tick(self) -> None:
        self.classifier.evict_stale()

    # ============================================================================
    # ROUND END
    # ============================================================================

    async def end_round(self, trigger: str = "manual") -> RoundEndResult:
        """
        Close the current round

        Overlapping calls are skipped while one is running.

        Raises:
            InvalidTransition: If no round is active
        """
        if self._round_end_lock.locked():
            logger.warning("round_end_skipped", trigger=trigger, reason="round end already in progress")
            return RoundEndResult(
                round_number=self.state.round_number,
                outcome=RoundOutcome.SKIPPED,
                error="Round end already in progress"
            )
        if self.state.phase != RoundPhase.ACTIVE:
            raise InvalidTransition(f"Cannot end round while {self.state.phase.value}")

        async with self._round_end_lock:
            with LatencyTimer(metrics, "round_end"):
                result = await self._run_round_end(trigger)

        self.last_round_result = result
        return result

    async def _run_round_end(self, trigger: str) -> RoundEndResult:
        state = self.state
        round_number = state.round_number
        round_start = state.current_round_start

        logger.info("round_end_started", round_number=round_number, trigger=trigger)
        state.phase = RoundPhase.ENDING
        state.round_in_progress = False
        await self.fee_timer.stop()

        result: Optional[RoundEndResult] = None
        seed_share = 0.0
        try:
            # Let in-flight trade notifications land
            await self._sleep(self.timing.settlement_window_s)

            async with self._claim_lock:
                await self._claim()

            claimed = state.claimed_fees
            winner_share = claimed * self.percentages.winner_pct
            seed_share = claimed * self.percentages.next_round_seed_pct
            winner_reward = state.base_reward + winner_share

            # Winner read and reset form one section: later trades are buffered
            self.ledger.freeze()
            leader = self.ledger.winner()

            result = RoundEndResult(
                round_number=round_number,
                outcome=RoundOutcome.COMPLETED,
                claimed_fees=claimed,
                winner=leader.wallet if leader else None,
                winner_volume=leader.volume if leader else 0.0,
                winner_reward=winner_reward if leader else 0.0,
                next_base_reward=seed_share
            )

            logger.info(
                "round_summary",
                round_number=round_number,
                claimed_fees_sol=claimed,
                base_reward_sol=state.base_reward,
                winner_reward_sol=winner_reward,
                next_base_reward_sol=seed_share,
                winner=result.winner,
                winner_volume_sol=result.winner_volume,
                participants=len(self.ledger)
            )

            if self.features.fee_collection and claimed > 0:
                result.distribution = await self.distributor.distribute(claimed)

                if not result.distribution.success:
                    error = f"Fee distribution failed: {result.distribution.error}"
                    if self.policy.failure_mode == "pause":
                        return await self._pause(result, error)
                    logger.error("distribution_failed_continuing", round_number=round_number, error=error)
                    result.error = error
                else:
                    await self._sleep(self.timing.distribution_settle_s)

            if leader is not None:
                result.payment = await self.reward_payer.pay(leader.wallet, winner_reward)
                if result.payment.success and result.payment.signature:
                    result.reward_signature = result.payment.signature
                    await self._sleep(self.timing.reward_settle_s)
                elif result.payment.unconfirmed:
                    # Recorded under the pending signature; may still land
                    result.outcome = RoundOutcome.DEGRADED
                    result.reward_signature = result.payment.signature
                    result.error = f"Reward unconfirmed: {result.payment.error}"
                    metrics.increment_counter("rounds_reward_unconfirmed")
                    logger.critical(
                        "winner_payment_unconfirmed",
                        round_number=round_number,
                        winner=leader.wallet,
                        reward_sol=winner_reward,
                        signature=result.payment.signature,
                        action="check the signature on-chain; only if it never landed, "
                               "send the reward manually and record it with update-signature"
                    )
                else:
                    result.outcome = RoundOutcome.DEGRADED
                    result.error = f"Reward not sent: {result.payment.error}"
                    metrics.increment_counter("rounds_reward_unpaid")
                    logger.critical(
                        "winner_not_paid",
                        round_number=round_number,
                        winner=leader.wallet,
                        reward_sol=winner_reward,
                        error=result.payment.error,
                        action="send the reward manually and record its signature"
                    )

                if (
                    self.features.buyback_burn
                    and result.distribution is not None
                    and result.distribution.success
                    and result.distribution.buyback_amount > 0
                ):
                    result.buyback = await self.buyback_burner.execute(result.distribution.buyback_amount)
                    await self._record_burn(result.buyback, round_number)

                if result.reward_signature:
                    await self._record_winner(result, round_start)

        except Exception as e:
            logger.error("round_end_unexpected_error", round_number=round_number, error=str(e), exc_info=True)
            # Once a payment was attempted the round must advance, never re-run
            payment_attempted = result is not None and result.payment is not None
            if self.policy.failure_mode == "pause" and not payment_attempted:
                return await self._pause(
                    result or RoundEndResult(
                        round_number=round_number,
                        outcome=RoundOutcome.PAUSED,
                        claimed_fees=state.claimed_fees
                    ),
                    f"Unexpected error during round end: {e}"
                )
            seed_share = state.claimed_fees * self.percentages.next_round_seed_pct
            if result is None:
                result = RoundEndResult(round_number=round_number, outcome=RoundOutcome.DEGRADED)
            result.outcome = RoundOutcome.DEGRADED
            result.claimed_fees = state.claimed_fees
            result.next_base_reward = seed_share
            result.error = str(e)

        await self._advance(seed_share)

        if result.outcome == RoundOutcome.COMPLETED:
            metrics.increment_counter("rounds_completed")
        else:
            metrics.increment_counter("rounds_degraded")
        logger.info(
            "round_end_finished",
            round_number=round_number,
            outcome=result.outcome.value,
            next_round_number=state.round_number,
            next_base_reward=state.base_reward
        )
        return result

    async def _record_burn(self, buyback: BuybackResult, round_number: int) -> None:
        if buyback.needs_manual_intervention:
            logger.critical(
                "buyback_needs_manual_intervention",
                round_number=round_number,
                swap_signature=buyback.swap_signature,
                error=buyback.error
            )
            return
        if not (buyback.success and buyback.tokens_burned > 0):
            return

        self.state.total_supply_burned += buyback.tokens_burned
        await self._persist(
            "burn",
            self.persistence.save_burn(BurnRecord(
                amount_sol=buyback.amount_sol,
                tokens_burned=buyback.tokens_burned,
                signature=buyback.burn_signature or buyback.swap_signature or "",
                round_number=round_number,
                timestamp=self._clock()
            ))
        )

    async def _record_winner(self, result: RoundEndResult, round_start: float) -> None:
        now = self._clock()
        self.state.total_rewards_paid += result.winner_reward
        await self._persist("winner", self.persistence.save_winner(WinnerRecord(
            wallet=result.winner,
            volume=result.winner_volume,
            reward=result.winner_reward,
            signature=result.reward_signature,
            round_number=result.round_number,
            round_start=round_start,
            timestamp=now
        )))
        await self._persist("reward_transfer", self.persistence.save_reward_transfer(RewardTransferRecord(
            wallet=result.winner,
            amount=result.winner_reward,
            signature=result.reward_signature,
            round_number=result.round_number,
            round_start=round_start,
            timestamp=now
        )))
        logger.info(
            "winner_recorded",
            round_number=result.round_number,
            winner=result.winner,
            reward_sol=result.winner_reward,
            signature=result.reward_signature,
            total_rewards_paid_sol=self.state.total_rewards_paid
        )

    async def _persist(self, what: str, operation: Awaitable[None]) -> bool:
        """
        Run a storage write after funds have moved

        A failed write is logged with CRITICAL and never re-runs the pipeline,
        which would pay twice.
        """
        try:
            await operation
            return True
        except Exception as e:
            metrics.increment_counter("persistence_errors")
            logger.critical("persistence_write_failed", record=what, error=str(e))
            return False

    async def _advance(self, seed_share: float) -> None:
        state = self.state
        state.base_reward = seed_share
        state.total_rounds_completed += 1
        state.round_number += 1
        await self._persist("global_stats", self.persistence.update_global_stats(state.to_global_stats()))

        self.ledger.reset(clear_volume=True)
        state.reset_for_new_round(self.boundary(self._clock()))
        state.phase = RoundPhase.ACTIVE
        state.round_in_progress = True
        self.ledger.unfreeze()
        if not self._shutting_down:
            self.fee_timer.start()

        metrics.set_gauge("round_number", state.round_number)
        metrics.set_gauge("claimed_fees_sol", 0.0)

    async def _pause(self, result: RoundEndResult, error: str) -> RoundEndResult:
        """Leave the round un-advanced and the ledger frozen for the operator"""
        self.state.phase = RoundPhase.PAUSED
        self.state.last_error = error
        result.outcome = RoundOutcome.PAUSED
        result.error = error
        result.next_base_reward = None

        signatures = result.distribution.signatures if result.distribution else {}
        unconfirmed = result.distribution.unconfirmed if result.distribution else []
        metrics.increment_counter("rounds_paused")
        logger.critical(
            "round_paused",
            round_number=result.round_number,
            error=error,
            claimed_fees_sol=self.state.claimed_fees,
            completed_signatures=signatures,
            unconfirmed_transfers=unconfirmed,
            action="verify transfers on-chain, then resume"
        )
        return result

    # ============================================================================
    # ADMIN
    # ============================================================================

    async def set_base_reward(self, reward: float) -> float:
        if not (reward >= 0 and math.isfinite(reward)):
            raise ValueError(f"Base reward must be a non-negative number, got {reward}")

        self.state.base_reward = float(reward)
        await self.persistence.update_global_stats(self.state.to_global_stats())
        logger.info("base_reward_set", base_reward=self.state.base_reward)
        return self.state.base_reward

    async def update_burn(self, round_number: int, tokens_burned: float, signature: str) -> float:
        """Record a burn completed by hand and refresh the lifetime total"""
        self.state.total_supply_burned = await self.persistence.update_burn_signature(
            round_number, tokens_burned, signature
        )
        return self.state.total_supply_burned

    # ============================================================================
    # VIEWS
    # ============================================================================

    def leaderboard(self, limit: int = 10) -> List[Dict[str, Any]]:
        return [entry.to_dict() for entry in self.ledger.leaderboard(limit)]

    def reward_pool(self) -> Dict[str, Any]:
        claimed = self.state.claimed_fees
        return {
            "roundNumber": self.state.round_number,
            "baseReward": self.state.base_reward,
            "claimedFees": claimed,
            "winnerShareOfFees": claimed * self.percentages.winner_pct,
            "nextRoundBase": claimed * self.percentages.next_round_seed_pct,
            "currentRewardPool": self.current_reward(),
            "roundStart": self.state.current_round_start,
            "roundEndsAt": self.state.current_round_start + self.timing.round_duration_s,
        }

    def status(self) -> Dict[str, Any]:
        return {
            "active": self.state.phase in (RoundPhase.ACTIVE, RoundPhase.ENDING),
            "phase": self.state.phase.value,
            "feeClaimingActive": self.fee_timer.running,
            "roundTimerActive": self.round_timer.running,
            "cacheCleanupActive": self.sweep_timer.running,
            "roundEndInProgress": self.round_ending,
            "currentRound": self.state.round_number,
            "baseReward": self.state.base_reward,
            "roundInProgress": self.state.round_in_progress,
            "participants": len(self.ledger),
            "bufferedTrades": self.ledger.pending_count,
            "walletCacheSize": len(self.classifier),
            "state": self.state.to_dict(),
            "lastRound": self.last_round_result.to_dict() if self.last_round_result else None,
        }
