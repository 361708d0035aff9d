"""
Fee Claimer
Collects accrued creator fees and measures the claimed amount as a balance delta
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from solders.keypair import Keypair

from volking.clients.pumpportal_client import PumpPortalClient
from volking.core.config import FeatureFlags
from volking.core.errors import ConfirmationTimeout, RPCError
from volking.core.logger import get_logger
from volking.core.metrics import get_metrics, LatencyTimer
from volking.core.rpc_manager import LAMPORTS_PER_SOL, RPCManager
from volking.core.tx_signer import TransactionSigner
from volking.core.tx_submitter import ConfirmationStatus, TransactionSubmitter


logger = get_logger(__name__)
metrics = get_metrics()


@dataclass
class ClaimResult:
    """
    Outcome of one fee claim

    amount can be positive on an unsuccessful claim when an earlier
    unconfirmed claim was found to have landed. unconfirmed means the
    claim's own signature is still pending.
    """
    success: bool
    amount: float = 0.0
    signature: Optional[str] = None
    error: Optional[str] = None
    unconfirmed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "amount": self.amount,
            "signature": self.signature,
            "error": self.error,
            "unconfirmed": self.unconfirmed,
        }


@dataclass
class PendingClaim:
    """Claim transaction whose confirmation timed out"""
    signature: str
    submitted_at: float = field(default_factory=time.monotonic)


class FeeClaimer:
    """
    Claims creator fees for the creator fee wallet

    Procedure: balance before -> build claim tx -> sign -> submit + confirm
    -> settle -> balance after; amount = max(0, after - before).
    Never raises; failures come back as ClaimResult(success=False).

    A claim that times out in confirmation is kept as pending. Every later
    claim looks it up again and credits the lamports it moved into the
    creator wallet once it lands. A pending claim the cluster still has no
    record of after pending_expiry_s has an expired blockhash and is dropped.
    No new claim is submitted while one is pending.
    """

    def __init__(
        self,
        features: FeatureFlags,
        creator_wallet: str,
        creator_keypair: Optional[Keypair],
        rpc_manager: RPCManager,
        signer: TransactionSigner,
        submitter: TransactionSubmitter,
        pumpportal: PumpPortalClient,
        balance_settle_s: float = 2.0,
        pending_expiry_s: float = 150.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.features = features
        self.creator_wallet = creator_wallet
        self.creator_keypair = creator_keypair
        self.rpc_manager = rpc_manager
        self.signer = signer
        self.submitter = submitter
        self.pumpportal = pumpportal
        self.balance_settle_s = balance_settle_s
        self.pending_expiry_s = pending_expiry_s
        self._clock = clock
        self._pending: List[PendingClaim] = []

    @property
    def pending_signatures(self) -> List[str]:
        return [pending.signature for pending in self._pending]

    def disabled_reason(self) -> Optional[str]:
        if not (self.features.fee_collection and self.features.auto_claim):
            return "Fee collection or auto-claim disabled"
        if not self.creator_wallet or self.creator_keypair is None:
            return "Creator fee wallet not configured"
        return None

    async def resolve_pending(self) -> float:
        """Look up timed-out claims again; returns SOL credited from those that landed"""
        recovered = 0
        still_pending = []

        for pending in self._pending:
            status = await self.submitter.get_signature_status(pending.signature)

            if status is None or status.confirmation_status in (
                ConfirmationStatus.PENDING,
                ConfirmationStatus.PROCESSED
            ):
                if self._clock() - pending.submitted_at > self.pending_expiry_s:
                    metrics.increment_counter("fee_claims_pending_expired")
                    logger.warning("fee_claim_pending_expired", signature=pending.signature)
                    continue
                still_pending.append(pending)
                continue

            if status.confirmation_status == ConfirmationStatus.FAILED:
                logger.warning("fee_claim_pending_failed", signature=pending.signature, error=status.error)
                continue

            try:
                change = await self.rpc_manager.get_balance_change(pending.signature, self.creator_wallet)
            except RPCError as e:
                logger.warning("fee_claim_pending_lookup_failed", signature=pending.signature, error=str(e))
                still_pending.append(pending)
                continue

            lamports = max(0, change or 0)
            recovered += lamports
            metrics.increment_counter("fee_claims_pending_landed")
            logger.info(
                "fee_claim_pending_landed",
                signature=pending.signature,
                amount_sol=lamports / LAMPORTS_PER_SOL
            )

        self._pending = still_pending
        return recovered / LAMPORTS_PER_SOL

    async def claim(self) -> ClaimResult:
        reason = self.disabled_reason()
        if reason:
            logger.info("fee_claim_skipped", reason=reason)
            return ClaimResult(success=False, error=reason)

        recovered = await self.resolve_pending() if self._pending else 0.0

        # A landing pending claim would also show up in a new balance delta
        if self._pending:
            logger.warning("fee_claim_deferred", pending=self.pending_signatures, recovered_sol=recovered)
            return ClaimResult(
                success=False,
                amount=recovered,
                error="Earlier claim still unconfirmed",
                unconfirmed=True
            )

        logger.info("fee_claim_started", wallet=self.creator_wallet)
        metrics.increment_counter("fee_claims_attempted")

        try:
            with LatencyTimer(metrics, "fee_claim"):
                before = await self.rpc_manager.get_balance_lamports(self.creator_wallet)

                raw_tx = await self.pumpportal.build_collect_creator_fee(self.creator_wallet)
                signed = self.signer.sign_versioned(raw_tx, [self.creator_keypair.pubkey()])
                signature = await self.submitter.submit_and_confirm(signed)

                # Let the balance reflect the claim before re-reading
                await asyncio.sleep(self.balance_settle_s)

                after = await self.rpc_manager.get_balance_lamports(self.creator_wallet)

        except ConfirmationTimeout as e:
            metrics.increment_counter("fee_claims_unconfirmed")
            logger.warning("fee_claim_unconfirmed", signature=e.signature, error=str(e))
            self._pending.append(PendingClaim(signature=e.signature, submitted_at=self._clock()))

            # It may have landed just past the deadline
            await asyncio.sleep(self.balance_settle_s)
            recovered += await self.resolve_pending()
            return ClaimResult(
                success=False,
                amount=recovered,
                signature=e.signature,
                error=str(e),
                unconfirmed=e.signature in self.pending_signatures
            )

        except Exception as e:
            metrics.increment_counter("fee_claims_failed")
            logger.error("fee_claim_failed", error=str(e), error_type=type(e).__name__)
            return ClaimResult(success=False, amount=recovered, error=str(e))

        amount = max(0, after - before) / LAMPORTS_PER_SOL + recovered
        metrics.increment_counter("fee_claims_succeeded")
        logger.info(
            "fee_claim_succeeded",
            signature=signature,
            balance_before_sol=before / LAMPORTS_PER_SOL,
            balance_after_sol=after / LAMPORTS_PER_SOL,
            amount_sol=amount
        )
        return ClaimResult(success=True, amount=amount, signature=signature)
