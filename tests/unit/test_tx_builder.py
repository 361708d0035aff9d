"""
Unit tests for Transaction Builder and SOL transfers

Tests:
- Lamport conversion
- Transfer and burn construction
- SolTransferer build -> sign -> submit flow
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from spl.token.constants import TOKEN_PROGRAM_ID

from volking.core.sol_transfer import SolTransferer
from volking.core.tx_builder import (
    TransactionBuilder,
    associated_token_address,
    sol_to_lamports,
)
from volking.core.tx_signer import TransactionSigner


class TestConversions:
    """Test unit helpers"""

    @pytest.mark.parametrize("sol,lamports", [(1.0, 1_000_000_000), (0.5, 500_000_000), (0.0, 0)])
    def test_sol_to_lamports(self, sol, lamports):
        assert sol_to_lamports(sol) == lamports

    def test_associated_token_address_is_deterministic(self, keypair):
        mint = str(Pubkey.new_unique())

        first = associated_token_address(str(keypair.pubkey()), mint)
        second = associated_token_address(str(keypair.pubkey()), mint)

        assert first == second
        assert first != keypair.pubkey()


class TestTransactionBuilder:
    """Test transaction construction"""

    def test_build_transfer(self, keypair):
        recipient = Keypair().pubkey()

        tx = TransactionBuilder().build_transfer(keypair.pubkey(), recipient, 1_000, Hash.default())

        assert tx.message.account_keys[0] == keypair.pubkey()
        assert recipient in tx.message.account_keys
        assert len(tx.message.instructions) == 1

    def test_transfer_requires_positive_amount(self, keypair):
        with pytest.raises(ValueError):
            TransactionBuilder().build_transfer(keypair.pubkey(), Keypair().pubkey(), 0, Hash.default())

    def test_build_burn_targets_token_program(self, keypair):
        mint = Pubkey.new_unique()

        tx = TransactionBuilder().build_burn(keypair.pubkey(), mint, 4_900_000_000, Hash.default())

        ix = tx.message.instructions[0]
        assert tx.message.account_keys[ix.program_id_index] == TOKEN_PROGRAM_ID
        assert mint in tx.message.account_keys

    def test_burn_requires_positive_amount(self, keypair):
        with pytest.raises(ValueError):
            TransactionBuilder().build_burn(keypair.pubkey(), Pubkey.new_unique(), 0, Hash.default())

    def test_size_limit(self, keypair):
        builder = TransactionBuilder(max_tx_size_bytes=50)

        with pytest.raises(ValueError, match="exceeds limit"):
            builder.build_transfer(keypair.pubkey(), Keypair().pubkey(), 1_000, Hash.default())


class TestSolTransferer:
    """Test the transfer flow"""

    @pytest.fixture
    def rpc_manager(self):
        mock = MagicMock()
        mock.get_latest_blockhash = AsyncMock(return_value=str(Hash.default()))
        return mock

    @pytest.fixture
    def submitter(self):
        mock = MagicMock()
        mock.submit_and_confirm = AsyncMock(return_value="transfer_sig")
        return mock

    @pytest.mark.asyncio
    async def test_transfer_confirmed(self, keypair, rpc_manager, submitter):
        transferer = SolTransferer(rpc_manager, TransactionBuilder(), TransactionSigner([keypair]), submitter)
        recipient = str(Keypair().pubkey())

        signature = await transferer.transfer(keypair, recipient, 1.7)

        assert signature == "transfer_sig"
        signed = submitter.submit_and_confirm.call_args[0][0]
        assert str(signed.message.account_keys[1]) == recipient

    @pytest.mark.asyncio
    async def test_zero_amount_rejected(self, keypair, rpc_manager, submitter):
        transferer = SolTransferer(rpc_manager, TransactionBuilder(), TransactionSigner([keypair]), submitter)

        with pytest.raises(ValueError):
            await transferer.transfer(keypair, str(Keypair().pubkey()), 0.0000000001)

        submitter.submit_and_confirm.assert_not_called()

    @pytest.mark.asyncio
    async def test_bad_address_rejected(self, keypair, rpc_manager, submitter):
        transferer = SolTransferer(rpc_manager, TransactionBuilder(), TransactionSigner([keypair]), submitter)

        with pytest.raises(ValueError):
            await transferer.transfer(keypair, "not-an-address", 1.0)
