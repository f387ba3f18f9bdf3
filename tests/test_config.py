"""Environment loading and validation."""

import pytest

from depositscan import config as config_module
from depositscan.config import load_config

ENV = {
    "ETHERSCAN_API_KEY": "ABCDEF1234567890",
    "EVM_ACCOUNT": "0x1111111111111111111111111111111111111111",
    "LEDGER_GRAPHQL_URL": "https://ledger.example/graphql",
    "SUPABASE_URL": "https://project.supabase.co",
    "SUPABASE_KEY": "service-key",
}

OPTIONAL = (
    "ETHERSCAN_API_URL", "NETWORK", "NATIVE_ASSET", "NATIVE_METHOD_ID", "LEDGER_API_TOKEN",
    "REDIS_URL", "QUEUE_NAME", "QUEUE_VISIBILITY_TIMEOUT", "QUEUE_MAX_ATTEMPTS", "QUEUE_RETRY_DELAY",
    "MAX_SCAN_CANDIDATES", "SCAN_CONCURRENCY", "CANDIDATE_TIMEOUT", "FEED_TIMEOUT", "LEDGER_TIMEOUT",
    "SETTLEMENT_GAS_POLICY", "FAIL_TASK_ON_CREDIT_ERROR", "LOG_LEVEL",
)


@pytest.fixture
def env(monkeypatch, tmp_path):
    # keep a developer's .env out of the picture
    monkeypatch.setattr(config_module, "_env_path", tmp_path / ".env")
    for name in OPTIONAL:
        monkeypatch.delenv(name, raising=False)
    for name, value in ENV.items():
        monkeypatch.setenv(name, value)
    return monkeypatch


def test_defaults(env):
    cfg = load_config()
    assert cfg.evm_account == ENV["EVM_ACCOUNT"]
    assert cfg.etherscan_api_url == "https://api.etherscan.io/api"
    assert cfg.queue_name == "evm-native-confirm:ethereum"
    assert (cfg.queue_max_attempts, cfg.queue_retry_delay) == (5, 30)
    assert cfg.native_method_id == "eth"
    assert cfg.max_scan_candidates == 10
    assert cfg.settlement_gas_policy == "gas_limit"
    assert cfg.fail_task_on_credit_error is True
    assert cfg.log_level == "INFO"
    assert cfg.warnings == ()


def test_queue_name_follows_network(env):
    env.setenv("NETWORK", "base")
    assert load_config().queue_name == "evm-native-confirm:base"


@pytest.mark.parametrize("name", ["EVM_ACCOUNT", "LEDGER_GRAPHQL_URL", "SUPABASE_URL", "SUPABASE_KEY"])
def test_missing_required_exits(env, name):
    env.delenv(name)
    with pytest.raises(SystemExit):
        load_config()


def test_missing_etherscan_key_is_left_to_caller(env):
    env.delenv("ETHERSCAN_API_KEY")
    assert load_config().etherscan_api_key == ""


@pytest.mark.parametrize("account", ["0x1234", "1111111111111111111111111111111111111111xx",
                                     "0xZZ11111111111111111111111111111111111111"])
def test_bad_account_exits(env, account):
    env.setenv("EVM_ACCOUNT", account)
    with pytest.raises(SystemExit):
        load_config()


def test_bad_url_exits(env):
    env.setenv("LEDGER_GRAPHQL_URL", "ledger.example/graphql")
    with pytest.raises(SystemExit):
        load_config()


def test_out_of_range_values_are_clamped_with_warning(env):
    env.setenv("SCAN_CONCURRENCY", "500")
    cfg = load_config()
    assert cfg.scan_concurrency == 16
    assert any("SCAN_CONCURRENCY" in w for w in cfg.warnings)


def test_unknown_enums_fall_back_with_warning(env):
    env.setenv("LOG_LEVEL", "chatty")
    env.setenv("SETTLEMENT_GAS_POLICY", "max_fee")
    cfg = load_config()
    assert cfg.log_level == "INFO"
    assert cfg.settlement_gas_policy == "gas_limit"
    assert len(cfg.warnings) == 2


def test_gas_used_policy_is_flagged(env):
    env.setenv("SETTLEMENT_GAS_POLICY", "GAS_USED")
    cfg = load_config()
    assert cfg.settlement_gas_policy == "gas_used"
    assert any("gas_used" in w for w in cfg.warnings)


def test_queue_retry_settings_are_clamped(env):
    env.setenv("QUEUE_MAX_ATTEMPTS", "0")
    env.setenv("QUEUE_RETRY_DELAY", "120")
    cfg = load_config()
    assert cfg.queue_max_attempts == 1
    assert cfg.queue_retry_delay == 120
    assert any("QUEUE_MAX_ATTEMPTS" in w for w in cfg.warnings)


def test_credit_error_flag(env):
    env.setenv("FAIL_TASK_ON_CREDIT_ERROR", "false")
    assert load_config().fail_task_on_credit_error is False


def test_config_is_frozen(env):
    cfg = load_config()
    with pytest.raises(AttributeError):
        cfg.evm_account = "0x0"
