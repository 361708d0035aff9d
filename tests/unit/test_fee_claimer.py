"""
Unit tests for Fee Claimer (volking/core/fee_claimer.py)
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from volking.core.config import FeatureFlags
from volking.core.errors import ConfirmationTimeout, PumpPortalError, TransactionError
from volking.core.fee_claimer import FeeClaimer
from volking.core.tx_submitter import ConfirmationStatus, ConfirmedTransaction


@pytest.fixture
def rpc_manager():
    mock = MagicMock()
    mock.get_balance_lamports = AsyncMock(side_effect=[1_000_000_000, 3_500_000_000])
    mock.get_balance_change = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def pumpportal():
    mock = MagicMock()
    mock.build_collect_creator_fee = AsyncMock(return_value=b"raw-claim-tx")
    return mock


@pytest.fixture
def signer():
    mock = MagicMock()
    mock.sign_versioned = MagicMock(return_value="signed_claim")
    return mock


@pytest.fixture
def submitter():
    mock = MagicMock()
    mock.submit_and_confirm = AsyncMock(return_value="claim_sig")
    mock.get_signature_status = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def make_claimer(keypair, rpc_manager, pumpportal, signer, submitter):
    def _make(features=None, creator_keypair=keypair, creator_wallet="creator_wallet", **kwargs):
        return FeeClaimer(
            features=features or FeatureFlags(),
            creator_wallet=creator_wallet,
            creator_keypair=creator_keypair,
            rpc_manager=rpc_manager,
            signer=signer,
            submitter=submitter,
            pumpportal=pumpportal,
            balance_settle_s=0,
            **kwargs
        )
    return _make


def confirmed(signature: str) -> ConfirmedTransaction:
    return ConfirmedTransaction(signature=signature, slot=1, confirmation_status=ConfirmationStatus.CONFIRMED)


def claim_timeout(signature: str = "claim_pending_sig") -> ConfirmationTimeout:
    return ConfirmationTimeout("Transaction confirmation timed out after 60s", signature=signature)


class TestClaim:
    """Test claim procedure"""

    @pytest.mark.asyncio
    async def test_amount_is_balance_delta(self, make_claimer, pumpportal, signer, keypair):
        result = await make_claimer().claim()

        assert result.success
        assert result.amount == pytest.approx(2.5)
        assert result.signature == "claim_sig"
        pumpportal.build_collect_creator_fee.assert_awaited_once_with("creator_wallet")
        signer.sign_versioned.assert_called_once_with(b"raw-claim-tx", [keypair.pubkey()])

    @pytest.mark.asyncio
    async def test_balance_drop_reports_zero(self, make_claimer, rpc_manager):
        """Transaction fee can exceed the claimed amount"""
        rpc_manager.get_balance_lamports.side_effect = [1_000_000_000, 999_995_000]

        result = await make_claimer().claim()

        assert result.success
        assert result.amount == 0.0

    @pytest.mark.asyncio
    async def test_disabled_without_side_effects(self, make_claimer, rpc_manager):
        result = await make_claimer(features=FeatureFlags(fee_collection=False)).claim()

        assert not result.success
        assert "disabled" in result.error
        rpc_manager.get_balance_lamports.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_keypair_without_side_effects(self, make_claimer, rpc_manager):
        claimer = make_claimer(creator_keypair=None)

        result = await claimer.claim()

        assert not result.success
        assert claimer.disabled_reason() is not None
        rpc_manager.get_balance_lamports.assert_not_called()

    @pytest.mark.asyncio
    async def test_api_error_surfaces(self, make_claimer, pumpportal):
        pumpportal.build_collect_creator_fee.side_effect = PumpPortalError("HTTP 400: no fees to claim")

        result = await make_claimer().claim()

        assert not result.success
        assert "no fees" in result.error
        assert result.amount == 0.0

    @pytest.mark.asyncio
    async def test_submission_error_surfaces(self, make_claimer, submitter):
        submitter.submit_and_confirm.side_effect = TransactionError("failed after 3 attempts")

        result = await make_claimer().claim()

        assert not result.success
        assert "3 attempts" in result.error


class TestUnconfirmedClaims:
    """Test claims whose confirmation timed out"""

    @pytest.mark.asyncio
    async def test_timeout_keeps_claim_pending(self, make_claimer, submitter):
        submitter.submit_and_confirm.side_effect = claim_timeout()
        claimer = make_claimer()

        result = await claimer.claim()

        assert not result.success
        assert result.unconfirmed
        assert result.signature == "claim_pending_sig"
        assert result.amount == 0.0
        assert claimer.pending_signatures == ["claim_pending_sig"]

    @pytest.mark.asyncio
    async def test_claim_landing_just_after_timeout_is_credited(self, make_claimer, rpc_manager, submitter):
        submitter.submit_and_confirm.side_effect = claim_timeout()
        submitter.get_signature_status.return_value = confirmed("claim_pending_sig")
        rpc_manager.get_balance_change.return_value = 2_000_000_000
        claimer = make_claimer()

        result = await claimer.claim()

        assert result.amount == pytest.approx(2.0)
        assert not result.unconfirmed
        assert claimer.pending_signatures == []
        rpc_manager.get_balance_change.assert_awaited_once_with("claim_pending_sig", "creator_wallet")

    @pytest.mark.asyncio
    async def test_pending_claim_defers_new_claims_until_it_lands(
        self, make_claimer, rpc_manager, submitter, pumpportal
    ):
        """Landed fees are credited once and the next claim measures only its own delta"""
        rpc_manager.get_balance_lamports.side_effect = [1_000_000_000, 2_500_000_000, 5_000_000_000]
        submitter.submit_and_confirm.side_effect = [claim_timeout(), "claim_sig"]
        claimer = make_claimer()

        first = await claimer.claim()
        deferred = await claimer.claim()

        assert first.unconfirmed
        assert deferred.unconfirmed
        assert deferred.amount == 0.0
        assert pumpportal.build_collect_creator_fee.await_count == 1

        submitter.get_signature_status.return_value = confirmed("claim_pending_sig")
        rpc_manager.get_balance_change.return_value = 1_500_000_000

        landed = await claimer.claim()

        assert landed.success
        assert landed.amount == pytest.approx(1.5 + 2.5)
        assert claimer.pending_signatures == []
        assert pumpportal.build_collect_creator_fee.await_count == 2

    @pytest.mark.asyncio
    async def test_expired_pending_claim_dropped(self, make_claimer, rpc_manager, submitter):
        """No record of the signature after its blockhash expired means it never landed"""
        now = [1000.0]
        submitter.submit_and_confirm.side_effect = [claim_timeout(), "claim_sig"]
        rpc_manager.get_balance_lamports.side_effect = [1_000_000_000, 1_000_000_000, 3_500_000_000]
        claimer = make_claimer(pending_expiry_s=150.0, clock=lambda: now[0])

        await claimer.claim()
        now[0] += 200.0
        result = await claimer.claim()

        assert result.success
        assert result.amount == pytest.approx(2.5)
        assert claimer.pending_signatures == []
        rpc_manager.get_balance_change.assert_not_called()

    @pytest.mark.asyncio
    async def test_pending_claim_failed_onchain_dropped(self, make_claimer, rpc_manager, submitter):
        submitter.submit_and_confirm.side_effect = [claim_timeout(), "claim_sig"]
        rpc_manager.get_balance_lamports.side_effect = [1_000_000_000, 1_000_000_000, 3_500_000_000]
        claimer = make_claimer()
        await claimer.claim()

        submitter.get_signature_status.return_value = ConfirmedTransaction(
            signature="claim_pending_sig",
            slot=1,
            confirmation_status=ConfirmationStatus.FAILED,
            error="InstructionError"
        )
        result = await claimer.claim()

        assert result.amount == pytest.approx(2.5)
        assert claimer.pending_signatures == []
        rpc_manager.get_balance_change.assert_not_called()
