"""
Unit tests for SQLite Persistence
Tests record storage, manual signature updates and lifetime totals
"""

import pytest
import pytest_asyncio

from volking.core.persistence import (
    REWARD_TRANSFER_RETENTION,
    BurnRecord,
    RewardTransferRecord,
    SQLitePersistence,
    WinnerRecord,
)
from volking.core.round_state import GlobalStats


# =============================================================================
# FIXTURES
# =============================================================================

@pytest_asyncio.fixture
async def store(tmp_path):
    """SQLite store in a temporary directory"""
    persistence = SQLitePersistence(db_path=str(tmp_path / "data" / "volking.db"))
    await persistence.connect()
    yield persistence
    await persistence.close()


def winner(wallet="winner_1", signature="reward_sig", round_number=1, timestamp=1000.0, reward=1.7):
    return WinnerRecord(
        wallet=wallet,
        volume=12.5,
        reward=reward,
        signature=signature,
        round_number=round_number,
        round_start=timestamp - 300,
        timestamp=timestamp
    )


# =============================================================================
# WINNERS
# =============================================================================

@pytest.mark.asyncio
async def test_save_and_read_winner(store):
    """Winners come back newest first"""
    await store.save_winner(winner(round_number=1, timestamp=1000.0))
    await store.save_winner(winner(wallet="winner_2", round_number=2, timestamp=1300.0))

    winners = await store.get_winners()

    assert [w.round_number for w in winners] == [2, 1]
    assert winners[1].signature == "reward_sig"
    assert winners[1].reward == pytest.approx(1.7)


@pytest.mark.asyncio
async def test_winner_requires_signature(store):
    """An unpaid winner is never written"""
    with pytest.raises(ValueError):
        await store.save_winner(winner(signature=""))

    assert await store.get_winners() == []


@pytest.mark.asyncio
async def test_update_winner_signature(store):
    record = winner(timestamp=1000.0)
    await store.save_winner(record)
    await store.save_reward_transfer(RewardTransferRecord(
        wallet=record.wallet,
        amount=record.reward,
        signature=record.signature,
        round_number=1,
        round_start=record.round_start,
        timestamp=record.timestamp
    ))

    updated = await store.update_winner_signature(record.wallet, record.round_start, "manual_sig")
    missing = await store.update_winner_signature("nobody", record.round_start, "manual_sig")

    assert updated == 1
    assert missing == 0
    assert (await store.get_winners())[0].signature == "manual_sig"
    assert (await store.get_reward_transfers())[0].signature == "manual_sig"


@pytest.mark.asyncio
async def test_hall_of_degens_aggregates_by_wallet(store):
    await store.save_winner(winner(wallet="alice", timestamp=1000.0, reward=1.0))
    await store.save_winner(winner(wallet="alice", timestamp=1300.0, reward=2.0))
    await store.save_winner(winner(wallet="bob", timestamp=1600.0, reward=5.0))

    hall = await store.get_hall_of_degens()

    assert hall[0]["wallet"] == "alice"
    assert hall[0]["total_wins"] == 2
    assert hall[0]["total_rewards"] == pytest.approx(3.0)
    assert hall[0]["total_volume"] == pytest.approx(25.0)
    assert hall[0]["last_win"] == 1300.0
    assert hall[1]["wallet"] == "bob"


# =============================================================================
# REWARD TRANSFERS
# =============================================================================

@pytest.mark.asyncio
async def test_reward_transfers_are_capped(store):
    for i in range(REWARD_TRANSFER_RETENTION + 5):
        await store.save_reward_transfer(RewardTransferRecord(
            wallet=f"wallet_{i}",
            amount=0.5,
            signature=f"sig_{i}",
            round_number=i + 1,
            round_start=float(i * 300),
            timestamp=float(i * 300 + 300)
        ))

    transfers = await store.get_reward_transfers(limit=1000)

    assert len(transfers) == REWARD_TRANSFER_RETENTION
    assert transfers[0].signature == f"sig_{REWARD_TRANSFER_RETENTION + 4}"
    assert all(t.signature != "sig_0" for t in transfers)


# =============================================================================
# BURNS
# =============================================================================

@pytest.mark.asyncio
async def test_update_burn_signature_recomputes_total(store):
    await store.save_burn(BurnRecord(
        amount_sol=0.98, tokens_burned=1000.0, signature="burn_1", round_number=1, timestamp=1000.0
    ))
    await store.save_burn(BurnRecord(
        amount_sol=0.5, tokens_burned=0.0, signature="swap_2", round_number=2, timestamp=1300.0
    ))

    total = await store.update_burn_signature(2, 250.0, "manual_burn")

    assert total == pytest.approx(1250.0)
    burns = await store.get_burns()
    assert burns[0].round_number == 2
    assert burns[0].signature == "manual_burn"
    stats = await store.get_global_stats()
    assert stats.total_supply_burned == pytest.approx(1250.0)


@pytest.mark.asyncio
async def test_update_burn_signature_inserts_missing_round(store):
    total = await store.update_burn_signature(7, 400.0, "manual_burn")

    assert total == pytest.approx(400.0)
    burns = await store.get_burns()
    assert len(burns) == 1
    assert burns[0].round_number == 7


# =============================================================================
# GLOBAL STATS
# =============================================================================

@pytest.mark.asyncio
async def test_global_stats_absent_until_written(store):
    assert await store.get_global_stats() is None


@pytest.mark.asyncio
async def test_global_stats_upsert(store):
    await store.update_global_stats(GlobalStats(total_rounds_completed=1, current_round_number=2, start_reward=0.7))
    await store.update_global_stats(GlobalStats(
        total_rounds_completed=2,
        total_rewards_paid=3.4,
        total_supply_burned=99.0,
        current_round_number=3,
        start_reward=0.5
    ))

    stats = await store.get_global_stats()

    assert stats.total_rounds_completed == 2
    assert stats.current_round_number == 3
    assert stats.total_rewards_paid == pytest.approx(3.4)
    assert stats.start_reward == pytest.approx(0.5)


# =============================================================================
# HEALTH
# =============================================================================

@pytest.mark.asyncio
async def test_health_check(store):
    health = await store.check_health()

    assert health["healthy"]
    assert health["version"]


@pytest.mark.asyncio
async def test_health_check_when_closed(tmp_path):
    persistence = SQLitePersistence(db_path=str(tmp_path / "closed.db"))

    health = await persistence.check_health()

    assert not health["healthy"]
