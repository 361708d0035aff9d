"""
Transaction Signer for the round engine
Holds the creator-fee and reward wallet keypairs and signs transactions with them
"""

import json
from typing import Dict, List, Optional, Union

import base58
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction, VersionedTransaction

from volking.core.logger import get_logger
from volking.core.metrics import get_metrics, LatencyTimer


logger = get_logger(__name__)
metrics = get_metrics()


def load_keypair(secret: Optional[str], name: str = "keypair") -> Optional[Keypair]:
    """
    Parse a secret key given as base58 text or a JSON byte array

    Args:
        secret: Secret key text (may be empty)
        name: Label used in logs

    Returns:
        Keypair, or None if the secret is missing or unparsable
    """
    if not secret or not secret.strip():
        logger.warning("keypair_not_configured", name=name)
        return None

    secret = secret.strip()
    try:
        if secret.startswith("[") and secret.endswith("]"):
            return Keypair.from_bytes(bytes(json.loads(secret)))
        return Keypair.from_bytes(base58.b58decode(secret))
    except (ValueError, TypeError) as e:
        # Never log the secret itself
        logger.error("keypair_parse_failed", name=name, error_type=type(e).__name__)
        return None


class TransactionSigner:
    """
    Signs Solana transactions with in-memory keypairs

    Keypairs are never persisted. Legacy transactions (our own transfers and
    burns) and versioned transactions (built by PumpPortal / Jupiter) are both
    supported.

    Usage:
        signer = TransactionSigner([creator_keypair, reward_keypair])
        signed = signer.sign_transaction(tx, [creator_keypair.pubkey()])
    """

    def __init__(self, keypairs: Optional[List[Keypair]] = None):
        self._keypairs: Dict[Pubkey, Keypair] = {}

        for keypair in keypairs or []:
            self.add_keypair(keypair)

        logger.info("transaction_signer_initialized", keypair_count=len(self._keypairs))

    def add_keypair(self, keypair: Keypair) -> None:
        pubkey = keypair.pubkey()
        if pubkey in self._keypairs:
            logger.warning("keypair_already_exists", pubkey=str(pubkey))
            return

        self._keypairs[pubkey] = keypair
        logger.info("keypair_added", pubkey=str(pubkey), total_keypairs=len(self._keypairs))

    def has_keypair(self, pubkey: Pubkey) -> bool:
        return pubkey in self._keypairs

    def get_keypair(self, pubkey: Pubkey) -> Optional[Keypair]:
        return self._keypairs.get(pubkey)

    def _require(self, signers: List[Pubkey]) -> List[Keypair]:
        missing = [str(pk) for pk in signers if pk not in self._keypairs]
        if missing:
            raise KeyError(f"Keypair not found for {', '.join(missing)}")
        return [self._keypairs[pk] for pk in signers]

    def sign_transaction(self, transaction: Transaction, signers: List[Pubkey]) -> Transaction:
        """
        Sign a legacy transaction

        Raises:
            KeyError: If a signer keypair is not held
        """
        keypairs = self._require(signers)
        with LatencyTimer(metrics, "tx_sign"):
            signed = Transaction(keypairs, transaction.message, transaction.message.recent_blockhash)

        metrics.increment_counter("transactions_signed")
        logger.debug("transaction_signed", signers=[str(s) for s in signers])
        return signed

    def sign_versioned(
        self,
        transaction: Union[VersionedTransaction, bytes],
        signers: List[Pubkey]
    ) -> VersionedTransaction:
        """
        Sign a versioned transaction, or its serialized bytes as returned by an API

        Raises:
            KeyError: If a signer keypair is not held
            ValueError: If the bytes are not a valid versioned transaction
        """
        keypairs = self._require(signers)
        if isinstance(transaction, (bytes, bytearray)):
            transaction = VersionedTransaction.from_bytes(bytes(transaction))

        with LatencyTimer(metrics, "tx_sign"):
            signed = VersionedTransaction(transaction.message, keypairs)

        metrics.increment_counter("transactions_signed")
        logger.debug("versioned_transaction_signed", signers=[str(s) for s in signers])
        return signed

    def get_all_pubkeys(self) -> List[Pubkey]:
        return list(self._keypairs.keys())
