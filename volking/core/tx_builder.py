"""
Transaction Builder for the round engine
Builds SOL transfer and SPL token burn transactions
"""

from typing import List, Optional

from solders.hash import Hash
from solders.instruction import Instruction
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import burn, get_associated_token_address
from spl.token.models import BurnParams

from volking.core.logger import get_logger
from volking.core.metrics import get_metrics


logger = get_logger(__name__)
metrics = get_metrics()


# Solana transaction size limit in bytes
MAX_TRANSACTION_SIZE = 1232

LAMPORTS_PER_SOL = 1_000_000_000


def sol_to_lamports(amount_sol: float) -> int:
    """Convert SOL to lamports, rounding down"""
    return int(amount_sol * LAMPORTS_PER_SOL)


def associated_token_address(owner: str, mint: str) -> Pubkey:
    return get_associated_token_address(Pubkey.from_string(owner), Pubkey.from_string(mint))


class TransactionBuilder:
    """
    Builds unsigned legacy transactions

    Usage:
        builder = TransactionBuilder()
        tx = builder.build_transfer(payer, to, lamports, blockhash)
    """

    def __init__(self, max_tx_size_bytes: int = MAX_TRANSACTION_SIZE):
        self.max_tx_size_bytes = max_tx_size_bytes

    def build_transaction(
        self,
        instructions: List[Instruction],
        payer: Pubkey,
        recent_blockhash: Hash
    ) -> Transaction:
        """
        Build an unsigned transaction

        Raises:
            ValueError: If the transaction exceeds the size limit
        """
        message = Message.new_with_blockhash(instructions, payer, recent_blockhash)
        tx = Transaction.new_unsigned(message)

        tx_size = len(bytes(tx))
        if tx_size > self.max_tx_size_bytes:
            raise ValueError(
                f"Transaction size {tx_size} exceeds limit {self.max_tx_size_bytes}"
            )

        metrics.increment_counter("transactions_built")
        logger.debug("transaction_built", instruction_count=len(instructions), tx_size_bytes=tx_size)
        return tx

    def build_transfer(
        self,
        from_pubkey: Pubkey,
        to_pubkey: Pubkey,
        lamports: int,
        recent_blockhash: Hash
    ) -> Transaction:
        """Single system-program transfer paid by the sender"""
        if lamports <= 0:
            raise ValueError(f"Transfer amount must be positive, got {lamports} lamports")

        ix = transfer(TransferParams(from_pubkey=from_pubkey, to_pubkey=to_pubkey, lamports=lamports))
        return self.build_transaction([ix], from_pubkey, recent_blockhash)

    def build_burn(
        self,
        owner: Pubkey,
        mint: Pubkey,
        amount: int,
        recent_blockhash: Hash,
        token_account: Optional[Pubkey] = None
    ) -> Transaction:
        """Burn `amount` base units from the owner's associated token account"""
        if amount <= 0:
            raise ValueError(f"Burn amount must be positive, got {amount}")

        account = token_account or get_associated_token_address(owner, mint)
        ix = burn(BurnParams(
            program_id=TOKEN_PROGRAM_ID,
            account=account,
            mint=mint,
            owner=owner,
            amount=amount,
        ))
        return self.build_transaction([ix], owner, recent_blockhash)
