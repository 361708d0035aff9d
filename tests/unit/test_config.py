"""
Unit tests for Configuration Manager (volking/core/config.py)
"""

import pytest
import yaml

from volking.core.config import ConfigurationManager, parse_config


def write_config(tmp_path, data):
    path = tmp_path / "config.yml"
    with open(path, 'w') as f:
        yaml.dump(data, f)
    return str(path)


class TestLoadConfig:
    """Test loading from YAML"""

    def test_load_valid_config(self, test_config_file):
        config = ConfigurationManager(test_config_file).load_config()

        assert config.rpc_config.endpoints[0].label == "devnet_primary"
        assert config.timing.round_duration_s == 300.0
        assert config.timing.settlement_window_s == 0.0
        assert config.rounds.start_mode == "manual"
        assert config.webhook.admin_key == "test-admin-key"
        assert config.distribution.winner_pct == 0.15

    def test_defaults(self, test_config_file):
        config = ConfigurationManager(test_config_file).load_config()

        assert config.features.fee_collection
        assert config.features.auto_claim
        assert config.thresholds.min_buyback_sol == 0.01
        assert config.thresholds.tx_fee_reserve_sol == 0.02
        assert config.transaction_config.confirmation_timeout_s == 60
        assert config.timing.fee_claim_interval_s == 60.0

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ConfigurationManager(str(tmp_path / "missing.yml")).load_config()

    def test_dot_notation_get(self, test_config_file):
        manager = ConfigurationManager(test_config_file)
        manager.load_config()

        assert manager.get("rounds.failure_mode") == "pause"
        assert manager.get("rounds.nonexistent", "fallback") == "fallback"
        assert manager.get("webhook.port.deeper", 1) == 1

    def test_get_before_load(self, test_config_file):
        with pytest.raises(RuntimeError):
            ConfigurationManager(test_config_file).get("rounds")


class TestEnvSubstitution:
    """Test ${VAR} and ${VAR:-default} placeholders"""

    def test_env_value_used(self, tmp_path, test_config_dict, monkeypatch):
        monkeypatch.setenv("TEST_ADMIN_KEY", "from-env")
        test_config_dict["webhook"]["admin_key"] = "${TEST_ADMIN_KEY}"

        config = ConfigurationManager(write_config(tmp_path, test_config_dict)).load_config()

        assert config.webhook.admin_key == "from-env"

    def test_default_used_when_unset(self, tmp_path, test_config_dict, monkeypatch):
        monkeypatch.delenv("TEST_FEATURE_BURN", raising=False)
        test_config_dict["features"] = {"buyback_burn": "${TEST_FEATURE_BURN:-false}"}

        config = ConfigurationManager(write_config(tmp_path, test_config_dict)).load_config()

        assert config.features.buyback_burn is False

    def test_empty_default(self, tmp_path, test_config_dict, monkeypatch):
        monkeypatch.delenv("TEST_SECRET", raising=False)
        test_config_dict["wallets"]["reward_wallet_secret"] = "${TEST_SECRET:-}"

        config = ConfigurationManager(write_config(tmp_path, test_config_dict)).load_config()

        assert config.wallets.reward_wallet_secret == ""

    def test_required_variable_missing(self, tmp_path, test_config_dict, monkeypatch):
        monkeypatch.delenv("TEST_REQUIRED_URL", raising=False)
        test_config_dict["rpc"]["endpoints"][0]["url"] = "${TEST_REQUIRED_URL}"

        with pytest.raises(ValueError, match="TEST_REQUIRED_URL"):
            ConfigurationManager(write_config(tmp_path, test_config_dict)).load_config()


class TestValidation:
    """Test rejected configurations"""

    def test_no_endpoints(self, test_config_dict):
        test_config_dict["rpc"]["endpoints"] = []

        with pytest.raises(ValueError, match="endpoints"):
            parse_config(test_config_dict)

    def test_percentages_must_sum_to_one(self, test_config_dict):
        test_config_dict["distribution"] = {"treasury_pct": 0.80}

        with pytest.raises(ValueError, match="sum to 1.0"):
            parse_config(test_config_dict)

    def test_custom_split_accepted(self, test_config_dict):
        test_config_dict["distribution"] = {
            "treasury_pct": 0.60,
            "winner_pct": 0.25,
            "next_round_seed_pct": 0.05,
            "buyback_pct": 0.10
        }

        config = parse_config(test_config_dict)

        assert config.distribution.winner_pct == 0.25

    @pytest.mark.parametrize("section,key,value", [
        ("rounds", "start_mode", "sometimes"),
        ("rounds", "failure_mode", "explode"),
        ("timing", "round_duration_s", 0),
    ])
    def test_invalid_values(self, test_config_dict, section, key, value):
        test_config_dict[section][key] = value

        with pytest.raises(ValueError):
            parse_config(test_config_dict)

    def test_endpoints_sorted_by_priority(self, test_config_dict):
        test_config_dict["rpc"]["endpoints"][0]["priority"] = 5

        config = parse_config(test_config_dict)

        assert config.rpc_config.endpoints[0].label == "devnet_fallback"
