"""
Transaction Submitter for the round engine
Submits signed transactions with bounded retries and waits for confirmation
"""

import asyncio
import base64
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union

from solders.transaction import Transaction, VersionedTransaction

from volking.core.config import TransactionConfig
from volking.core.errors import ConfirmationTimeout, RPCError, TransactionError
from volking.core.logger import get_logger
from volking.core.metrics import get_metrics, LatencyTimer
from volking.core.rpc_manager import RPCManager


logger = get_logger(__name__)
metrics = get_metrics()

SignedTransaction = Union[Transaction, VersionedTransaction]


class ConfirmationStatus(Enum):
    """Transaction confirmation status"""
    PENDING = "pending"
    PROCESSED = "processed"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"
    FAILED = "failed"


@dataclass
class ConfirmedTransaction:
    """Confirmed transaction details"""
    signature: str
    slot: int
    confirmation_status: ConfirmationStatus
    error: Optional[str] = None
    confirmed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signature": self.signature,
            "slot": self.slot,
            "confirmation_status": self.confirmation_status.value,
            "error": self.error,
            "confirmed_at": self.confirmed_at.isoformat() if self.confirmed_at else None
        }


def _parse_status(signature: str, status_data: Dict[str, Any]) -> ConfirmedTransaction:
    level = status_data.get("confirmationStatus", "processed")
    try:
        status = ConfirmationStatus(level)
    except ValueError:
        status = ConfirmationStatus.PENDING

    error = None
    if status_data.get("err"):
        status = ConfirmationStatus.FAILED
        error = str(status_data["err"])

    return ConfirmedTransaction(
        signature=signature,
        slot=status_data.get("slot", 0),
        confirmation_status=status,
        error=error,
        confirmed_at=datetime.now(timezone.utc)
    )


class TransactionSubmitter:
    """
    Submits transactions to Solana and tracks them to confirmation

    - sendTransaction retried up to max_retries with exponential backoff
    - getSignatureStatuses polled until confirmed, failed or timed out

    Usage:
        submitter = TransactionSubmitter(rpc_manager, config.transaction_config)
        signature = await submitter.submit_and_confirm(signed_tx)
    """

    def __init__(self, rpc_manager: RPCManager, config: Optional[TransactionConfig] = None):
        self.rpc_manager = rpc_manager
        self.config = config or TransactionConfig()

        logger.info(
            "transaction_submitter_initialized",
            skip_preflight=self.config.skip_preflight,
            max_retries=self.config.max_retries,
            confirmation_timeout_s=self.config.confirmation_timeout_s
        )

    async def submit_transaction(self, signed_tx: SignedTransaction) -> str:
        """
        Send a signed transaction

        Returns:
            Transaction signature

        Raises:
            TransactionError: If every attempt fails
        """
        signature = str(signed_tx.signatures[0])
        tx_base64 = base64.b64encode(bytes(signed_tx)).decode("utf-8")
        params = [
            tx_base64,
            {
                "skipPreflight": self.config.skip_preflight,
                "encoding": "base64",
                "preflightCommitment": "confirmed",
                "maxRetries": 0  # We handle retries ourselves
            }
        ]
        max_retries = max(1, self.config.max_retries)
        last_error: Optional[Exception] = None

        with LatencyTimer(metrics, "tx_submit"):
            for attempt in range(max_retries):
                try:
                    await self.rpc_manager.call_http_rpc("sendTransaction", params)
                    metrics.increment_counter("transactions_submitted_success")
                    logger.info("transaction_submitted", signature=signature, attempt=attempt + 1)
                    return signature

                except RPCError as e:
                    last_error = e
                    logger.warning(
                        "transaction_submission_error",
                        signature=signature,
                        error=str(e),
                        attempt=attempt + 1,
                        max_retries=max_retries
                    )

                if attempt < max_retries - 1:
                    delay = self.config.retry_delay_ms * (2 ** attempt) / 1000
                    await asyncio.sleep(delay)

        metrics.increment_counter("transactions_submitted_failed")
        raise TransactionError(
            f"Transaction submission failed after {max_retries} attempts: {last_error}",
            signature=signature
        )

    async def submit_and_confirm(self, signed_tx: SignedTransaction) -> str:
        """
        Submit a transaction and wait until it is confirmed

        Returns:
            Confirmed transaction signature

        Raises:
            TransactionError: If submission fails or the transaction fails on-chain
            ConfirmationTimeout: If confirmation does not arrive in time
        """
        with LatencyTimer(metrics, "tx_submit_and_confirm"):
            signature = await self.submit_transaction(signed_tx)
            confirmed = await self.wait_for_confirmation(signature)

        if confirmed.confirmation_status == ConfirmationStatus.FAILED:
            metrics.increment_counter("transactions_failed_onchain")
            raise TransactionError(
                f"Transaction {signature} failed on-chain: {confirmed.error}",
                signature=signature
            )

        return signature

    async def wait_for_confirmation(self, signature: str) -> ConfirmedTransaction:
        """
        Poll until the signature is confirmed, finalized or failed

        Raises:
            ConfirmationTimeout: If the configured timeout elapses
        """
        loop = asyncio.get_running_loop()
        start_time = loop.time()
        timeout = self.config.confirmation_timeout_s

        while True:
            status = await self._get_transaction_status(signature)

            if status and status.confirmation_status in (
                ConfirmationStatus.CONFIRMED,
                ConfirmationStatus.FINALIZED,
                ConfirmationStatus.FAILED
            ):
                metrics.increment_counter(f"transaction_confirmations_{status.confirmation_status.value}")
                logger.info(
                    "transaction_confirmation_reached",
                    signature=signature,
                    status=status.confirmation_status.value,
                    slot=status.slot
                )
                return status

            if loop.time() - start_time > timeout:
                metrics.increment_counter("transaction_confirmations_timeout")
                raise ConfirmationTimeout(
                    f"Transaction confirmation timed out after {timeout}s",
                    signature=signature
                )

            await asyncio.sleep(self.config.confirmation_poll_interval_s)

    async def get_signature_status(self, signature: str) -> Optional[ConfirmedTransaction]:
        """One status lookup; None while the cluster has no record of the signature"""
        return await self._get_transaction_status(signature)

    async def _get_transaction_status(self, signature: str) -> Optional[ConfirmedTransaction]:
        """Current status via getSignatureStatuses; None when unknown or unreachable"""
        try:
            response = await self.rpc_manager.call_http_rpc(
                "getSignatureStatuses",
                [[signature], {"searchTransactionHistory": True}]
            )
        except RPCError as e:
            logger.warning("get_signature_status_error", signature=signature, error=str(e))
            return None

        value = (response.get("result") or {}).get("value") or []
        if not value or value[0] is None:
            return None

        return _parse_status(signature, value[0])
