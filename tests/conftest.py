"""
Pytest configuration and shared fixtures
These fixtures are available to all test files
"""

import pytest
from typing import Any, Dict
from unittest.mock import AsyncMock, MagicMock

from solders.keypair import Keypair

from volking.core.buyback_burner import BuybackResult
from volking.core.config import (
    DistributionConfig,
    FeatureFlags,
    RoundPolicyConfig,
    ThresholdConfig,
    TimingConfig,
)
from volking.core.distributor import compute_shares
from volking.core.fee_claimer import ClaimResult
from volking.core.metrics import MetricsCollector, get_metrics
from volking.core.reward_payer import PaymentResult
from volking.core.round_orchestrator import RoundOrchestrator
from volking.core.volume_ledger import VolumeLedger


class FakeClock:
    """Settable time source"""

    def __init__(self, now: float = 1_700_000_100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def no_sleep(seconds: float) -> None:
    return None


@pytest.fixture(autouse=True)
def reset_global_metrics():
    """Module-level collectors are shared; start every test clean"""
    get_metrics().reset()
    yield
    get_metrics().reset()


@pytest.fixture
def test_config_dict() -> Dict[str, Any]:
    """
    Sample configuration dictionary for testing

    Returns valid config that can be modified per test
    """
    return {
        "rpc": {
            "endpoints": [
                {
                    "url": "https://api.devnet.solana.com",
                    "priority": 0,
                    "label": "devnet_primary",
                    "timeout_ms": 5000
                },
                {
                    "url": "https://api.testnet.solana.com",
                    "priority": 1,
                    "label": "devnet_fallback",
                    "timeout_ms": 5000
                }
            ],
            "failover_threshold_errors": 3
        },
        "logging": {
            "level": "DEBUG",
            "format": "json",
            "output_file": None
        },
        "wallets": {
            "token_mint": "Mint111111111111111111111111111111111111111",
            "creator_fee_wallet": "Creator11111111111111111111111111111111111",
            "treasury_wallet": "Treasury1111111111111111111111111111111111",
            "reward_wallet": "Reward111111111111111111111111111111111111"
        },
        "timing": {
            "round_duration_s": 300,
            "settlement_window_s": 0,
            "distribution_settle_s": 0,
            "reward_settle_s": 0,
            "claim_balance_settle_s": 0
        },
        "rounds": {
            "initial_base_reward": 0.2,
            "start_mode": "manual",
            "failure_mode": "pause"
        },
        "webhook": {
            "port": 3001,
            "admin_key": "test-admin-key"
        }
    }


@pytest.fixture
def test_config_file(test_config_dict, tmp_path):
    """
    Create a temporary config file for testing

    Returns path to temporary YAML config file
    """
    import yaml

    config_file = tmp_path / "test_config.yml"
    with open(config_file, 'w') as f:
        yaml.dump(test_config_dict, f)

    return str(config_file)


@pytest.fixture
def metrics_collector() -> MetricsCollector:
    """Fresh metrics collector for each test"""
    collector = MetricsCollector(enable_histogram=True)
    yield collector
    collector.reset()


@pytest.fixture
def keypair() -> Keypair:
    return Keypair()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def timing() -> TimingConfig:
    """Zero waits; timers slow enough that they never fire during a test"""
    return TimingConfig(
        round_duration_s=300.0,
        fee_claim_interval_s=3600.0,
        round_check_interval_s=3600.0,
        classification_ttl_s=900.0,
        cache_sweep_interval_s=3600.0,
        settlement_window_s=0.0,
        distribution_settle_s=0.0,
        reward_settle_s=0.0,
        claim_balance_settle_s=0.0
    )


@pytest.fixture
def pipeline_mocks() -> Dict[str, Any]:
    """
    Mocked round-end collaborators

    Defaults describe a healthy round: 10 SOL claimed, every transfer succeeds,
    buyback burns 1234.5 tokens.
    """
    pct = DistributionConfig()

    fee_claimer = MagicMock()
    fee_claimer.claim = AsyncMock(return_value=ClaimResult(success=True, amount=10.0, signature="claim_sig"))

    async def distribute(total_fees: float):
        distribution = compute_shares(total_fees, pct, 0.02)
        distribution.signatures = {"treasury": "treasury_sig", "rewardWallet": "seed_sig"}
        distribution.success = True
        return distribution

    distributor = MagicMock()
    distributor.distribute = AsyncMock(side_effect=distribute)

    reward_payer = MagicMock()
    reward_payer.pay = AsyncMock(return_value=PaymentResult(success=True, signature="reward_sig"))

    buyback_burner = MagicMock()
    buyback_burner.execute = AsyncMock(side_effect=lambda amount: BuybackResult(
        success=True,
        tokens_burned=1234.5,
        amount_sol=amount,
        swap_signature="swap_sig",
        burn_signature="burn_sig"
    ))

    persistence = MagicMock()
    persistence.get_global_stats = AsyncMock(return_value=None)
    persistence.update_global_stats = AsyncMock()
    persistence.save_winner = AsyncMock()
    persistence.save_burn = AsyncMock()
    persistence.save_reward_transfer = AsyncMock()
    persistence.update_burn_signature = AsyncMock(return_value=0.0)

    classifier = MagicMock()
    classifier.classify = AsyncMock(return_value=True)
    classifier.evict_stale = MagicMock(return_value=0)
    classifier.__len__ = MagicMock(return_value=0)

    return {
        "fee_claimer": fee_claimer,
        "distributor": distributor,
        "reward_payer": reward_payer,
        "buyback_burner": buyback_burner,
        "persistence": persistence,
        "classifier": classifier,
    }


@pytest.fixture
def make_orchestrator(timing, clock, pipeline_mocks):
    """Factory for an orchestrator over the mocked pipeline"""

    def _make(**overrides) -> RoundOrchestrator:
        kwargs = dict(
            timing=timing,
            policy=RoundPolicyConfig(initial_base_reward=0.2),
            percentages=DistributionConfig(),
            features=FeatureFlags(),
            ledger=VolumeLedger(),
            clock=clock,
            sleep=no_sleep,
            **pipeline_mocks
        )
        kwargs.update(overrides)
        return RoundOrchestrator(**kwargs)

    return _make


@pytest.fixture
def thresholds() -> ThresholdConfig:
    return ThresholdConfig()


# Test markers
def pytest_configure(config):
    """Register custom pytest markers"""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (requires network)"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running (>5 seconds)"
    )
