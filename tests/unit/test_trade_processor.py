"""
Unit tests for Trade Processor (volking/services/trade_processor.py)

Tests:
- Webhook payload parsing
- Largest-transfer value estimation
- Classification routing
- Batch handling
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from volking.core.volume_ledger import TradeOutcome
from volking.services.trade_processor import (
    LargestTransferEstimator,
    TradeEvent,
    TradeProcessor,
)


TOKEN_MINT = "VoLKingMint1111111111111111111111111111111"
TRADER = "Trader11111111111111111111111111111111111111"
POOL = "Pool1111111111111111111111111111111111111111"


def make_tx(native=None, swap=None, mint=TOKEN_MINT, signature="sig1", timestamp=1_700_000_123):
    tx = {
        "signature": signature,
        "feePayer": TRADER,
        "timestamp": timestamp,
        "nativeTransfers": native or [],
        "tokenTransfers": [{"mint": mint, "tokenAmount": 1000}],
    }
    if swap is not None:
        tx["events"] = {"swap": swap}
    return tx


@pytest.fixture
def orchestrator():
    mock = MagicMock()
    mock.record_trade = MagicMock(return_value=TradeOutcome.RECORDED)
    mock.record_excluded = MagicMock()
    mock.ledger = []
    return mock


@pytest.fixture
def classifier():
    mock = MagicMock()
    mock.classify = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def processor(classifier, orchestrator):
    return TradeProcessor(TOKEN_MINT, classifier, orchestrator)


class TestTradeEvent:
    """Test payload parsing"""

    def test_lamports_converted(self):
        event = TradeEvent.from_webhook(make_tx(native=[
            {"fromUserAccount": TRADER, "toUserAccount": POOL, "amount": 1_500_000_000}
        ]))

        assert event.native_transfers[0].amount_sol == 1.5
        assert event.fee_payer == TRADER
        assert event.timestamp == 1_700_000_123
        assert event.involves_mint(TOKEN_MINT)

    def test_string_amounts_accepted(self):
        event = TradeEvent.from_webhook(make_tx(swap={
            "nativeInput": {"account": TRADER, "amount": "2000000000"}
        }))

        assert event.swap_native_input.amount_sol == 2.0
        assert event.swap_native_output is None

    def test_missing_timestamp_uses_now(self):
        tx = make_tx()
        del tx["timestamp"]

        event = TradeEvent.from_webhook(tx, now=42.0)

        assert event.timestamp == 42.0

    def test_empty_payload(self):
        event = TradeEvent.from_webhook({})

        assert event.native_transfers == []
        assert event.token_mints == []
        assert event.fee_payer is None


class TestLargestTransferEstimator:
    """Test the value heuristic"""

    def test_largest_fee_payer_transfer(self):
        event = TradeEvent.from_webhook(make_tx(native=[
            {"fromUserAccount": TRADER, "toUserAccount": POOL, "amount": 500_000_000},
            {"fromUserAccount": TRADER, "toUserAccount": POOL, "amount": 1_200_000_000},
            {"fromUserAccount": POOL, "toUserAccount": TRADER, "amount": 800_000_000},
        ]))

        assert LargestTransferEstimator().estimate(event) == (TRADER, 1.2)

    def test_dust_ignored(self):
        event = TradeEvent.from_webhook(make_tx(native=[
            {"fromUserAccount": TRADER, "toUserAccount": POOL, "amount": 900_000},
        ]))

        assert LargestTransferEstimator(dust_threshold_sol=0.001).estimate(event) is None

    def test_unrelated_transfers_ignored(self):
        event = TradeEvent.from_webhook(make_tx(native=[
            {"fromUserAccount": POOL, "toUserAccount": "Other111", "amount": 9_000_000_000},
        ]))

        assert LargestTransferEstimator().estimate(event) is None

    def test_larger_swap_leg_wins_and_attributes_account(self):
        event = TradeEvent.from_webhook(make_tx(
            native=[{"fromUserAccount": TRADER, "toUserAccount": POOL, "amount": 1_000_000_000}],
            swap={"nativeOutput": {"account": "SwapUser111", "amount": 3_000_000_000}}
        ))

        assert LargestTransferEstimator().estimate(event) == ("SwapUser111", 3.0)

    def test_smaller_swap_leg_ignored(self):
        event = TradeEvent.from_webhook(make_tx(
            native=[{"fromUserAccount": TRADER, "toUserAccount": POOL, "amount": 4_000_000_000}],
            swap={"nativeInput": {"account": "SwapUser111", "amount": 3_000_000_000}}
        ))

        assert LargestTransferEstimator().estimate(event) == (TRADER, 4.0)

    def test_swap_leg_without_account_uses_fee_payer(self):
        event = TradeEvent.from_webhook(make_tx(swap={"nativeInput": {"amount": 2_000_000_000}}))

        assert LargestTransferEstimator().estimate(event) == (TRADER, 2.0)


class TestTradeProcessor:
    """Test routing into the orchestrator"""

    @pytest.mark.asyncio
    async def test_user_trade_recorded(self, processor, orchestrator):
        tx = make_tx(native=[{"fromUserAccount": TRADER, "toUserAccount": POOL, "amount": 1_500_000_000}])

        result = await processor.process(tx)

        assert result.processed == 1
        orchestrator.record_trade.assert_called_once_with(TRADER, 1.5, 1_700_000_123, "sig1")

    @pytest.mark.asyncio
    async def test_other_token_discarded(self, processor, classifier, orchestrator):
        tx = make_tx(
            native=[{"fromUserAccount": TRADER, "toUserAccount": POOL, "amount": 1_500_000_000}],
            mint="OtherMint111"
        )

        result = await processor.process(tx)

        assert result.skipped == 1
        classifier.classify.assert_not_called()
        orchestrator.record_trade.assert_not_called()

    @pytest.mark.asyncio
    async def test_program_wallet_excluded(self, processor, classifier, orchestrator):
        classifier.classify.return_value = False
        tx = make_tx(native=[{"fromUserAccount": TRADER, "toUserAccount": POOL, "amount": 1_500_000_000}])

        result = await processor.process(tx)

        assert result.excluded == 1
        orchestrator.record_excluded.assert_called_once()
        orchestrator.record_trade.assert_not_called()

    @pytest.mark.asyncio
    async def test_duplicate_counted(self, processor, orchestrator):
        orchestrator.record_trade.return_value = TradeOutcome.DUPLICATE
        tx = make_tx(native=[{"fromUserAccount": TRADER, "toUserAccount": POOL, "amount": 1_500_000_000}])

        result = await processor.process(tx)

        assert result.duplicates == 1
        assert result.processed == 0

    @pytest.mark.asyncio
    async def test_batch_accepts_object_or_list(self, processor):
        tx = make_tx(native=[{"fromUserAccount": TRADER, "toUserAccount": POOL, "amount": 1_500_000_000}])

        single = await processor.process_batch(tx)
        batch = await processor.process_batch([tx, make_tx(mint="OtherMint111"), "garbage"])

        assert single.processed == 1
        assert batch.processed == 1
        assert batch.skipped == 2

    @pytest.mark.asyncio
    async def test_batch_continues_after_error(self, processor, classifier):
        classifier.classify.side_effect = [RuntimeError("boom"), True]
        tx = make_tx(native=[{"fromUserAccount": TRADER, "toUserAccount": POOL, "amount": 1_500_000_000}])

        result = await processor.process_batch([tx, dict(tx, signature="sig2")])

        assert result.processed == 1
        assert result.skipped == 1
