"""
Buyback & Burn
Swaps SOL for the project token via Jupiter, then burns the whole token balance
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Optional

from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from volking.clients.jupiter_client import JupiterClient
from volking.core.logger import get_logger
from volking.core.metrics import get_metrics, LatencyTimer
from volking.core.rpc_manager import RPCManager
from volking.core.tx_builder import TransactionBuilder, associated_token_address, sol_to_lamports
from volking.core.tx_signer import TransactionSigner
from volking.core.tx_submitter import TransactionSubmitter


logger = get_logger(__name__)
metrics = get_metrics()


@dataclass
class BuybackResult:
    """
    Outcome of a buyback

    needs_manual_intervention is set when the swap confirmed but the burn did
    not: the tokens sit in the creator wallet unburned. Never retry blindly.
    """
    success: bool
    tokens_burned: float = 0.0
    amount_sol: float = 0.0
    swap_signature: Optional[str] = None
    burn_signature: Optional[str] = None
    error: Optional[str] = None
    note: Optional[str] = None
    needs_manual_intervention: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "tokensBurned": self.tokens_burned,
            "amountSOL": self.amount_sol,
            "swapSignature": self.swap_signature,
            "burnSignature": self.burn_signature,
            "error": self.error,
            "note": self.note,
            "needsManualIntervention": self.needs_manual_intervention,
        }


class BuybackBurner:
    """
    quote -> swap (sign, submit, confirm) -> read balance -> burn (confirm)

    Quote or swap failure aborts cleanly with nothing burned.
    """

    def __init__(
        self,
        enabled: bool,
        min_buyback_sol: float,
        token_mint: str,
        creator_keypair: Optional[Keypair],
        jupiter: JupiterClient,
        rpc_manager: RPCManager,
        builder: TransactionBuilder,
        signer: TransactionSigner,
        submitter: TransactionSubmitter,
        token_decimals: int = 6,
        balance_settle_s: float = 2.0
    ):
        self.enabled = enabled
        self.min_buyback_sol = min_buyback_sol
        self.token_mint = token_mint
        self.creator_keypair = creator_keypair
        self.jupiter = jupiter
        self.rpc_manager = rpc_manager
        self.builder = builder
        self.signer = signer
        self.submitter = submitter
        self.token_decimals = token_decimals
        self.balance_settle_s = balance_settle_s

    def _precondition_error(self, amount_sol: float) -> Optional[str]:
        if not self.enabled:
            return "Buyback & burn disabled"
        if amount_sol < self.min_buyback_sol:
            return "Amount too small for buyback"
        if self.creator_keypair is None:
            return "Creator fee wallet keypair not configured"
        if not self.token_mint:
            return "Token mint not configured"
        return None

    async def execute(self, amount_sol: float) -> BuybackResult:
        error = self._precondition_error(amount_sol)
        if error:
            logger.info("buyback_skipped", reason=error, amount_sol=amount_sol)
            return BuybackResult(success=False, amount_sol=amount_sol, error=error)

        owner = self.creator_keypair.pubkey()
        logger.info("buyback_started", amount_sol=amount_sol, token_mint=self.token_mint)

        # Phases 1-2: quote and swap. Failure here leaves nothing stranded.
        try:
            with LatencyTimer(metrics, "buyback_swap"):
                quote = await self.jupiter.get_quote(self.token_mint, sol_to_lamports(amount_sol))
                logger.info(
                    "buyback_quote_received",
                    expected_tokens=quote.out_amount / 10 ** self.token_decimals
                )

                raw_tx = await self.jupiter.get_swap_transaction(quote, str(owner))
                signed = self.signer.sign_versioned(raw_tx, [owner])
                swap_signature = await self.submitter.submit_and_confirm(signed)
        except Exception as e:
            metrics.increment_counter("buybacks_failed")
            logger.error("buyback_swap_failed", amount_sol=amount_sol, error=str(e))
            return BuybackResult(success=False, amount_sol=amount_sol, error=str(e))

        logger.info("buyback_swap_confirmed", swap_signature=swap_signature)

        # Phase 3: burn the full balance
        try:
            await asyncio.sleep(self.balance_settle_s)
            token_account = associated_token_address(str(owner), self.token_mint)
            raw_balance = await self._token_balance(token_account, quote.out_amount)

            if raw_balance <= 0:
                logger.warning("buyback_nothing_to_burn", swap_signature=swap_signature)
                return BuybackResult(
                    success=True,
                    amount_sol=amount_sol,
                    swap_signature=swap_signature,
                    note="Swap succeeded but no tokens available to burn"
                )

            blockhash = Hash.from_string(await self.rpc_manager.get_latest_blockhash())
            burn_tx = self.builder.build_burn(
                owner,
                Pubkey.from_string(self.token_mint),
                raw_balance,
                blockhash,
                token_account=token_account
            )
            signed_burn = self.signer.sign_transaction(burn_tx, [owner])
            burn_signature = await self.submitter.submit_and_confirm(signed_burn)

        except Exception as e:
            metrics.increment_counter("buybacks_burn_failed")
            logger.critical(
                "buyback_burn_failed_after_swap",
                swap_signature=swap_signature,
                error=str(e),
                action="tokens are in the creator wallet and must be burned manually"
            )
            return BuybackResult(
                success=False,
                amount_sol=amount_sol,
                swap_signature=swap_signature,
                error=str(e),
                note="Swap succeeded, burn failed - manual intervention needed",
                needs_manual_intervention=True
            )

        tokens_burned = raw_balance / 10 ** self.token_decimals
        metrics.increment_counter("buybacks_succeeded")
        logger.info(
            "buyback_burn_complete",
            tokens_burned=tokens_burned,
            swap_signature=swap_signature,
            burn_signature=burn_signature
        )
        return BuybackResult(
            success=True,
            tokens_burned=tokens_burned,
            amount_sol=amount_sol,
            swap_signature=swap_signature,
            burn_signature=burn_signature
        )

    async def _token_balance(self, token_account: Pubkey, expected: int) -> int:
        """Raw token balance; falls back to the quoted output if the read fails"""
        try:
            return await self.rpc_manager.get_token_account_balance(str(token_account))
        except Exception as e:
            logger.warning("buyback_token_balance_unavailable", error=str(e), fallback=expected)
            return expected
