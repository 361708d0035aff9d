"""
Native SOL transfers: build, sign, submit, confirm
"""

from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from volking.core.logger import get_logger
from volking.core.metrics import get_metrics
from volking.core.rpc_manager import RPCManager
from volking.core.tx_builder import TransactionBuilder, sol_to_lamports
from volking.core.tx_signer import TransactionSigner
from volking.core.tx_submitter import TransactionSubmitter


logger = get_logger(__name__)
metrics = get_metrics()


class SolTransferer:
    """Sends SOL from a held keypair and returns the confirmed signature"""

    def __init__(
        self,
        rpc_manager: RPCManager,
        builder: TransactionBuilder,
        signer: TransactionSigner,
        submitter: TransactionSubmitter
    ):
        self.rpc_manager = rpc_manager
        self.builder = builder
        self.signer = signer
        self.submitter = submitter

    async def transfer(self, keypair: Keypair, to_address: str, amount_sol: float) -> str:
        """
        Transfer SOL and wait for confirmation

        Args:
            keypair: Sending wallet (must be held by the signer)
            to_address: Recipient address (base58)
            amount_sol: Amount in SOL, converted to lamports rounding down

        Returns:
            Confirmed signature

        Raises:
            ValueError: Non-positive amount or bad address
            RPCError / TransactionError: Transport or on-chain failure
        """
        lamports = sol_to_lamports(amount_sol)
        if lamports <= 0:
            raise ValueError(f"Transfer amount must be positive, got {amount_sol} SOL")

        recipient = Pubkey.from_string(to_address)
        sender = keypair.pubkey()

        blockhash = Hash.from_string(await self.rpc_manager.get_latest_blockhash())
        tx = self.builder.build_transfer(sender, recipient, lamports, blockhash)
        signed = self.signer.sign_transaction(tx, [sender])

        logger.info(
            "sol_transfer_submitting",
            sender=str(sender),
            recipient=to_address,
            amount_sol=amount_sol,
            lamports=lamports
        )
        signature = await self.submitter.submit_and_confirm(signed)

        metrics.increment_counter("sol_transfers_confirmed")
        logger.info("sol_transfer_confirmed", recipient=to_address, amount_sol=amount_sol, signature=signature)
        return signature
