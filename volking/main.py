"""
Volume King engine entry point

Usage:
    python -m volking --config config/config.yml
"""

import argparse
import asyncio
import signal
from typing import Optional

from volking.clients.jupiter_client import JupiterClient
from volking.clients.pumpportal_client import PumpPortalClient
from volking.core.buyback_burner import BuybackBurner
from volking.core.config import ConfigurationManager, EngineConfig
from volking.core.distributor import Distributor
from volking.core.fee_claimer import FeeClaimer
from volking.core.logger import get_logger, setup_logging
from volking.core.metrics import init_metrics
from volking.core.persistence import SQLitePersistence
from volking.core.reward_payer import RewardPayer
from volking.core.round_orchestrator import RoundOrchestrator
from volking.core.rpc_manager import RPCManager
from volking.core.sol_transfer import SolTransferer
from volking.core.tx_builder import TransactionBuilder
from volking.core.tx_signer import TransactionSigner, load_keypair
from volking.core.tx_submitter import TransactionSubmitter
from volking.core.volume_ledger import VolumeLedger
from volking.core.wallet_classifier import WalletClassifier
from volking.services.trade_processor import LargestTransferEstimator, TradeProcessor
from volking.services.webhook_server import WebhookServer


logger = get_logger(__name__)


class VolumeKingEngine:
    """Builds every component from config and owns their lifetimes"""

    def __init__(self, config: EngineConfig):
        self.config = config
        wallets = config.wallets
        timing = config.timing

        self.creator_keypair = load_keypair(wallets.creator_fee_wallet_secret, "creator_fee_wallet")
        self.reward_keypair = load_keypair(wallets.reward_wallet_secret, "reward_wallet")

        self.rpc_manager = RPCManager(config.rpc_config)
        self.signer = TransactionSigner([k for k in (self.creator_keypair, self.reward_keypair) if k])
        self.builder = TransactionBuilder()
        self.submitter = TransactionSubmitter(self.rpc_manager, config.transaction_config)
        self.transferer = SolTransferer(self.rpc_manager, self.builder, self.signer, self.submitter)

        self.pumpportal = PumpPortalClient(config.fee_claim)
        self.jupiter = JupiterClient(config.swap)
        self.persistence = SQLitePersistence(config.persistence.db_path)

        self.classifier = WalletClassifier(self.rpc_manager, ttl_s=timing.classification_ttl_s)
        self.ledger = VolumeLedger(dedupe_signatures=config.rounds.dedupe_signatures)

        self.fee_claimer = FeeClaimer(
            features=config.features,
            creator_wallet=wallets.creator_fee_wallet,
            creator_keypair=self.creator_keypair,
            rpc_manager=self.rpc_manager,
            signer=self.signer,
            submitter=self.submitter,
            pumpportal=self.pumpportal,
            balance_settle_s=timing.claim_balance_settle_s
        )
        self.distributor = Distributor(
            percentages=config.distribution,
            thresholds=config.thresholds,
            transferer=self.transferer,
            creator_keypair=self.creator_keypair,
            treasury_wallet=wallets.treasury_wallet,
            reward_wallet=wallets.reward_wallet
        )
        self.reward_payer = RewardPayer(
            enabled=config.features.reward_distribution,
            min_reward_sol=config.thresholds.min_reward_sol,
            transferer=self.transferer,
            reward_keypair=self.reward_keypair,
            percentages=config.distribution
        )
        self.buyback_burner = BuybackBurner(
            enabled=config.features.buyback_burn,
            min_buyback_sol=config.thresholds.min_buyback_sol,
            token_mint=wallets.token_mint,
            creator_keypair=self.creator_keypair,
            jupiter=self.jupiter,
            rpc_manager=self.rpc_manager,
            builder=self.builder,
            signer=self.signer,
            submitter=self.submitter,
            token_decimals=config.swap.token_decimals,
            balance_settle_s=timing.claim_balance_settle_s
        )

        self.orchestrator = RoundOrchestrator(
            timing=timing,
            policy=config.rounds,
            percentages=config.distribution,
            features=config.features,
            ledger=self.ledger,
            classifier=self.classifier,
            fee_claimer=self.fee_claimer,
            distributor=self.distributor,
            reward_payer=self.reward_payer,
            buyback_burner=self.buyback_burner,
            persistence=self.persistence
        )
        self.processor = TradeProcessor(
            token_mint=wallets.token_mint,
            classifier=self.classifier,
            orchestrator=self.orchestrator,
            estimator=LargestTransferEstimator(config.thresholds.dust_threshold_sol)
        )
        self.server = WebhookServer(
            config,
            self.orchestrator,
            self.processor,
            self.persistence,
            rpc_manager=self.rpc_manager
        )

    async def start(self) -> None:
        await self.rpc_manager.start()
        await self.persistence.connect()
        await self.orchestrator.initialize()
        await self.server.start()

        logger.info(
            "engine_started",
            phase=self.orchestrator.phase.value,
            round_number=self.orchestrator.state.round_number,
            fee_claiming=self.fee_claimer.disabled_reason() or "enabled",
            reward_wallet_loaded=self.reward_keypair is not None
        )

    async def stop(self) -> None:
        logger.info("engine_stopping")
        await self.server.stop()
        await self.orchestrator.shutdown()
        await self.pumpportal.close()
        await self.jupiter.close()
        await self.persistence.close()
        await self.rpc_manager.stop()
        logger.info("engine_stopped")


async def run(config_path: str, log_level: Optional[str] = None) -> None:
    config = ConfigurationManager(config_path).load_config()

    setup_logging(
        level=log_level or config.log_config.level,
        format=config.log_config.format,
        output_file=config.log_config.output_file
    )
    init_metrics(config.metrics_config.enable_histogram, config.metrics_config.max_samples)
    logger.info("volking_starting", config=config_path, start_mode=config.rounds.start_mode)

    engine = VolumeKingEngine(config)
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Not available on Windows event loops
            pass

    await engine.start()
    try:
        await stop_event.wait()
    finally:
        await engine.stop()


def main() -> None:
    parser = argparse.ArgumentParser(description="Volume King round engine")
    parser.add_argument(
        "--config",
        default="config/config.yml",
        help="Path to config.yml"
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override logging.level from the config file"
    )
    args = parser.parse_args()

    try:
        asyncio.run(run(args.config, args.log_level))
    except KeyboardInterrupt:
        logger.info("interrupted_by_user")
    except Exception as e:
        logger.error("volking_failed", error=str(e), error_type=type(e).__name__)
        raise


if __name__ == "__main__":
    main()
