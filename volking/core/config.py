"""
Configuration Manager for the round engine
Loads configuration from YAML files with environment variable support
"""

import os
import re
import yaml
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field
from pathlib import Path


START_MODES = ("manual", "auto")
FAILURE_MODES = ("pause", "continue")

# ${VAR} or ${VAR:-default}
_ENV_PATTERN = re.compile(r'\$\{([^}:]+)(?::-([^}]*))?\}')


@dataclass
class RPCEndpoint:
    """RPC endpoint configuration"""
    url: str
    label: str
    priority: int = 0
    timeout_ms: int = 10000


@dataclass
class RPCConfig:
    """RPC manager configuration"""
    endpoints: List[RPCEndpoint]
    failover_threshold_errors: int = 3


@dataclass
class LogConfig:
    """Logging configuration"""
    level: str = "INFO"
    format: str = "json"
    output_file: Optional[str] = None


@dataclass
class MetricsConfig:
    """Metrics configuration"""
    enable_histogram: bool = True
    max_samples: int = 10000


@dataclass
class TransactionConfig:
    """Transaction submission configuration"""
    skip_preflight: bool = False
    max_retries: int = 3
    retry_delay_ms: int = 200
    confirmation_timeout_s: int = 60
    confirmation_poll_interval_s: float = 1.0


@dataclass
class WalletConfig:
    """Token and wallet addresses plus signing secrets"""
    token_mint: str = ""
    creator_fee_wallet: str = ""
    creator_fee_wallet_secret: str = ""
    treasury_wallet: str = ""
    reward_wallet: str = ""
    reward_wallet_secret: str = ""


@dataclass
class FeatureFlags:
    """Feature switches"""
    fee_collection: bool = True
    reward_distribution: bool = True
    buyback_burn: bool = True
    auto_claim: bool = True


@dataclass
class DistributionConfig:
    """Fee split percentages (fractions of claimed fees)"""
    treasury_pct: float = 0.70
    winner_pct: float = 0.15
    next_round_seed_pct: float = 0.05
    buyback_pct: float = 0.10

    @property
    def total_pct(self) -> float:
        return self.treasury_pct + self.winner_pct + self.next_round_seed_pct + self.buyback_pct


@dataclass
class ThresholdConfig:
    """Minimum amounts in SOL"""
    min_transfer_sol: float = 0.001
    min_reward_sol: float = 0.001
    min_buyback_sol: float = 0.01
    tx_fee_reserve_sol: float = 0.02
    dust_threshold_sol: float = 0.001


@dataclass
class TimingConfig:
    """Timer intervals and settling waits in seconds"""
    round_duration_s: float = 300.0
    fee_claim_interval_s: float = 60.0
    round_check_interval_s: float = 60.0
    classification_ttl_s: float = 900.0
    cache_sweep_interval_s: float = 300.0
    settlement_window_s: float = 5.0
    distribution_settle_s: float = 5.0
    reward_settle_s: float = 3.0
    claim_balance_settle_s: float = 2.0


@dataclass
class RoundPolicyConfig:
    """Round lifecycle policy"""
    initial_base_reward: float = 0.2
    start_mode: str = "manual"
    failure_mode: str = "pause"
    dedupe_signatures: bool = True


@dataclass
class SwapConfig:
    """Jupiter swap aggregator settings"""
    api_base: str = "https://quote-api.jup.ag/v6"
    slippage_bps: int = 100
    token_decimals: int = 6
    timeout_s: float = 15.0


@dataclass
class FeeClaimConfig:
    """PumpPortal fee collection settings"""
    api_url: str = "https://pumpportal.fun/api/trade-local"
    priority_fee: float = 0.000001
    timeout_s: float = 15.0


@dataclass
class PersistenceConfig:
    """Durable storage settings"""
    db_path: str = "data/volking.db"


@dataclass
class WebhookConfig:
    """Inbound HTTP surface settings"""
    host: str = "0.0.0.0"
    port: int = 3001
    admin_key: str = ""


@dataclass
class EngineConfig:
    """Complete engine configuration"""
    rpc_config: RPCConfig
    log_config: LogConfig = field(default_factory=LogConfig)
    metrics_config: MetricsConfig = field(default_factory=MetricsConfig)
    transaction_config: TransactionConfig = field(default_factory=TransactionConfig)
    wallets: WalletConfig = field(default_factory=WalletConfig)
    features: FeatureFlags = field(default_factory=FeatureFlags)
    distribution: DistributionConfig = field(default_factory=DistributionConfig)
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    timing: TimingConfig = field(default_factory=TimingConfig)
    rounds: RoundPolicyConfig = field(default_factory=RoundPolicyConfig)
    swap: SwapConfig = field(default_factory=SwapConfig)
    fee_claim: FeeClaimConfig = field(default_factory=FeeClaimConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)


class ConfigurationManager:
    """Manages engine configuration from YAML files and environment variables"""

    def __init__(self, config_path: str):
        """
        Initialize configuration manager

        Args:
            config_path: Path to YAML configuration file
        """
        self.config_path = Path(config_path)
        self._config_data: Optional[Dict[str, Any]] = None
        self._engine_config: Optional[EngineConfig] = None

    def load_config(self) -> EngineConfig:
        """
        Load and validate configuration from file

        Returns:
            EngineConfig: Validated configuration object

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not self.config_path.exists():
            raise FileNotFoundError(
                f"Configuration file not found: {self.config_path}"
            )

        with open(self.config_path, 'r') as f:
            raw_config = yaml.safe_load(f) or {}

        self._config_data = self._substitute_env_vars(raw_config)
        self._engine_config = parse_config(self._config_data)

        return self._engine_config

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation key

        Args:
            key: Dot-notation key (e.g., "timing.round_duration_s")
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        if self._config_data is None:
            raise RuntimeError("Configuration not loaded. Call load_config() first.")

        value = self._config_data
        for k in key.split('.'):
            if not isinstance(value, dict):
                return default
            value = value.get(k)
            if value is None:
                return default

        return value

    def _substitute_env_vars(self, config: Any) -> Any:
        """
        Recursively substitute environment variables in config

        - "${API_KEY}" fails if API_KEY is unset
        - "${API_KEY:-}" falls back to the text after ":-" (may be empty)
        - Embedded references are replaced in place
        """
        if isinstance(config, dict):
            return {k: self._substitute_env_vars(v) for k, v in config.items()}
        if isinstance(config, list):
            return [self._substitute_env_vars(item) for item in config]
        if isinstance(config, str):
            def replace_var(match):
                var_name, default = match.group(1), match.group(2)
                value = os.getenv(var_name)
                if value is None:
                    if default is None:
                        raise ValueError(
                            f"Environment variable {var_name} not found"
                        )
                    return default
                return value

            return _ENV_PATTERN.sub(replace_var, config)
        return config


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() not in ("false", "0", "no", "off", "")


def parse_config(config: Dict[str, Any]) -> EngineConfig:
    """
    Parse raw configuration into typed objects

    Args:
        config: Raw configuration dictionary (env vars already substituted)

    Returns:
        EngineConfig: Typed configuration object

    Raises:
        ValueError: If configuration is invalid
    """
    rpc_data = config.get('rpc', {})
    endpoints_data = rpc_data.get('endpoints', [])

    if not endpoints_data:
        raise ValueError("No RPC endpoints configured")

    endpoints = [
        RPCEndpoint(
            url=ep['url'],
            label=ep.get('label', f"rpc_{i}"),
            priority=ep.get('priority', i),
            timeout_ms=ep.get('timeout_ms', 10000)
        )
        for i, ep in enumerate(endpoints_data)
    ]
    # Sort by priority (0 = highest)
    endpoints.sort(key=lambda x: x.priority)

    rpc_config = RPCConfig(
        endpoints=endpoints,
        failover_threshold_errors=rpc_data.get('failover_threshold_errors', 3)
    )

    log_data = config.get('logging', {})
    log_config = LogConfig(
        level=log_data.get('level', 'INFO'),
        format=log_data.get('format', 'json'),
        output_file=log_data.get('output_file')
    )

    metrics_data = config.get('metrics', {})
    metrics_config = MetricsConfig(
        enable_histogram=_as_bool(metrics_data.get('enable_histogram'), True),
        max_samples=metrics_data.get('max_samples', 10000)
    )

    tx_data = config.get('transactions', {})
    transaction_config = TransactionConfig(
        skip_preflight=_as_bool(tx_data.get('skip_preflight'), False),
        max_retries=tx_data.get('max_retries', 3),
        retry_delay_ms=tx_data.get('retry_delay_ms', 200),
        confirmation_timeout_s=tx_data.get('confirmation_timeout_s', 60),
        confirmation_poll_interval_s=tx_data.get('confirmation_poll_interval_s', 1.0)
    )

    wallet_data = config.get('wallets', {})
    wallets = WalletConfig(
        token_mint=wallet_data.get('token_mint') or "",
        creator_fee_wallet=wallet_data.get('creator_fee_wallet') or "",
        creator_fee_wallet_secret=wallet_data.get('creator_fee_wallet_secret') or "",
        treasury_wallet=wallet_data.get('treasury_wallet') or "",
        reward_wallet=wallet_data.get('reward_wallet') or "",
        reward_wallet_secret=wallet_data.get('reward_wallet_secret') or ""
    )

    feature_data = config.get('features', {})
    features = FeatureFlags(
        fee_collection=_as_bool(feature_data.get('fee_collection'), True),
        reward_distribution=_as_bool(feature_data.get('reward_distribution'), True),
        buyback_burn=_as_bool(feature_data.get('buyback_burn'), True),
        auto_claim=_as_bool(feature_data.get('auto_claim'), True)
    )

    dist_data = config.get('distribution', {})
    distribution = DistributionConfig(
        treasury_pct=float(dist_data.get('treasury_pct', 0.70)),
        winner_pct=float(dist_data.get('winner_pct', 0.15)),
        next_round_seed_pct=float(dist_data.get('next_round_seed_pct', 0.05)),
        buyback_pct=float(dist_data.get('buyback_pct', 0.10))
    )
    if abs(distribution.total_pct - 1.0) > 1e-9:
        raise ValueError(
            f"Distribution percentages must sum to 1.0, got {distribution.total_pct:.6f}"
        )

    threshold_data = config.get('thresholds', {})
    thresholds = ThresholdConfig(
        min_transfer_sol=float(threshold_data.get('min_transfer_sol', 0.001)),
        min_reward_sol=float(threshold_data.get('min_reward_sol', 0.001)),
        min_buyback_sol=float(threshold_data.get('min_buyback_sol', 0.01)),
        tx_fee_reserve_sol=float(threshold_data.get('tx_fee_reserve_sol', 0.02)),
        dust_threshold_sol=float(threshold_data.get('dust_threshold_sol', 0.001))
    )

    timing_data = config.get('timing', {})
    timing = TimingConfig(**{
        name: float(timing_data.get(name, default))
        for name, default in TimingConfig().__dict__.items()
    })
    if timing.round_duration_s <= 0:
        raise ValueError("timing.round_duration_s must be positive")

    round_data = config.get('rounds', {})
    rounds = RoundPolicyConfig(
        initial_base_reward=float(round_data.get('initial_base_reward', 0.2)),
        start_mode=str(round_data.get('start_mode', 'manual')).lower(),
        failure_mode=str(round_data.get('failure_mode', 'pause')).lower(),
        dedupe_signatures=_as_bool(round_data.get('dedupe_signatures'), True)
    )
    if rounds.start_mode not in START_MODES:
        raise ValueError(f"rounds.start_mode must be one of {START_MODES}")
    if rounds.failure_mode not in FAILURE_MODES:
        raise ValueError(f"rounds.failure_mode must be one of {FAILURE_MODES}")

    swap_data = config.get('swap', {})
    swap = SwapConfig(
        api_base=swap_data.get('api_base', SwapConfig.api_base),
        slippage_bps=int(swap_data.get('slippage_bps', 100)),
        token_decimals=int(swap_data.get('token_decimals', 6)),
        timeout_s=float(swap_data.get('timeout_s', 15.0))
    )

    claim_data = config.get('fee_claim', {})
    fee_claim = FeeClaimConfig(
        api_url=claim_data.get('api_url', FeeClaimConfig.api_url),
        priority_fee=float(claim_data.get('priority_fee', 0.000001)),
        timeout_s=float(claim_data.get('timeout_s', 15.0))
    )

    persistence = PersistenceConfig(
        db_path=config.get('persistence', {}).get('db_path', PersistenceConfig.db_path)
    )

    webhook_data = config.get('webhook', {})
    webhook = WebhookConfig(
        host=webhook_data.get('host', '0.0.0.0'),
        port=int(webhook_data.get('port', 3001)),
        admin_key=webhook_data.get('admin_key') or ""
    )

    return EngineConfig(
        rpc_config=rpc_config,
        log_config=log_config,
        metrics_config=metrics_config,
        transaction_config=transaction_config,
        wallets=wallets,
        features=features,
        distribution=distribution,
        thresholds=thresholds,
        timing=timing,
        rounds=rounds,
        swap=swap,
        fee_claim=fee_claim,
        persistence=persistence,
        webhook=webhook
    )
