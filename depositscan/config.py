"""
Deposit scanner configuration — loads env vars, validates, fails fast.

load_config() is called once at startup and returns a frozen ScanConfig
that is passed into every component. Nothing reads os.environ after that.

Validated:
  - Address format for the consolidation account (0x, 42 chars, hex)
  - URL scheme for every endpoint
  - Range validation for numeric params (clamped with a warning)
  - Known values for LOG_LEVEL and SETTLEMENT_GAS_POLICY
"""

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from dotenv import load_dotenv

# Load .env from project root
_env_path = Path(__file__).resolve().parent.parent / ".env"

DEFAULT_ETHERSCAN_API_URL = "https://api.etherscan.io/api"
DEFAULT_REDIS_URL = "redis://localhost:6379/0"

GAS_POLICIES = ("gas_limit", "gas_used")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _require(name: str) -> str:
    """Get a required env var or exit with a clear error."""
    val = os.getenv(name)
    if not val or not val.strip():
        print(f"FATAL: missing required env var: {name}", file=sys.stderr)
        print(f"  Copy .env.example to .env and fill in the values.", file=sys.stderr)
        sys.exit(1)
    return val.strip()


def _optional(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _validate_address(addr: str, label: str) -> str:
    """Validate an Ethereum address: 0x-prefixed, 42 chars, valid hex."""
    if not addr.startswith("0x") or len(addr) != 42:
        print(f"FATAL: {label} is not a valid address: {addr}", file=sys.stderr)
        sys.exit(1)
    try:
        int(addr, 16)
    except ValueError:
        print(f"FATAL: {label} contains invalid hex: {addr}", file=sys.stderr)
        sys.exit(1)
    return addr


def _validate_url(url: str, label: str, schemes=("http://", "https://")) -> str:
    if not url.startswith(schemes):
        print(f"FATAL: {label} must start with {' or '.join(schemes)}: {url}", file=sys.stderr)
        sys.exit(1)
    return url


def _int_range(name: str, raw: str, low: int, high: int, warnings: List[str]) -> int:
    """Parse an int and clamp to [low, high] with a warning."""
    try:
        val = int(raw)
    except ValueError:
        print(f"FATAL: {name} must be an integer, got: {raw}", file=sys.stderr)
        sys.exit(1)
    if val < low or val > high:
        clamped = max(low, min(val, high))
        warnings.append(f"{name}={val} out of range [{low},{high}], clamped to {clamped}")
        return clamped
    return val


def _float_range(name: str, raw: str, low: float, high: float, warnings: List[str]) -> float:
    try:
        val = float(raw)
    except ValueError:
        print(f"FATAL: {name} must be a number, got: {raw}", file=sys.stderr)
        sys.exit(1)
    if val < low or val > high:
        clamped = max(low, min(val, high))
        warnings.append(f"{name}={val} out of range [{low},{high}], clamped to {clamped}")
        return clamped
    return val


def _flag(name: str, raw: str, warnings: List[str]) -> bool:
    lowered = raw.lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    warnings.append(f"Unknown {name} '{raw}', defaulting to true")
    return True


@dataclass(frozen=True)
class ScanConfig:
    """Read-only settings shared by the feed, ledger, store and scanner."""
    etherscan_api_key: str
    evm_account: str
    ledger_graphql_url: str
    supabase_url: str
    supabase_key: str

    etherscan_api_url: str = DEFAULT_ETHERSCAN_API_URL
    network: str = "ethereum"
    native_asset: str = "ETH"
    native_method_id: str = "eth"
    ledger_api_token: str = ""

    redis_url: str = DEFAULT_REDIS_URL
    queue_name: str = "evm-native-confirm:ethereum"
    queue_visibility_timeout: int = 300
    queue_max_attempts: int = 5
    queue_retry_delay: int = 30

    max_scan_candidates: int = 10
    scan_concurrency: int = 4
    candidate_timeout: float = 30.0
    feed_timeout: float = 15.0
    ledger_timeout: float = 15.0

    settlement_gas_policy: str = "gas_limit"
    fail_task_on_credit_error: bool = True
    log_level: str = "INFO"

    warnings: tuple = field(default=(), compare=False)


def load_config() -> ScanConfig:
    """Build the ScanConfig from the environment (and .env if present)."""
    load_dotenv(_env_path)
    warnings: List[str] = []

    # Etherscan key is checked by the caller so it can log "not configured"
    etherscan_api_key = _optional("ETHERSCAN_API_KEY")
    etherscan_api_url = _validate_url(
        _optional("ETHERSCAN_API_URL", DEFAULT_ETHERSCAN_API_URL), "ETHERSCAN_API_URL",
    )

    # === Chain / asset ===
    evm_account = _validate_address(_require("EVM_ACCOUNT"), "EVM_ACCOUNT")
    network = _optional("NETWORK", "ethereum") or "ethereum"
    native_asset = _optional("NATIVE_ASSET", "ETH") or "ETH"
    native_method_id = _optional("NATIVE_METHOD_ID", "eth") or "eth"

    # === Ledger ===
    ledger_graphql_url = _validate_url(_require("LEDGER_GRAPHQL_URL"), "LEDGER_GRAPHQL_URL")
    ledger_api_token = _optional("LEDGER_API_TOKEN")

    # === Supabase (orders + deposit addresses) ===
    supabase_url = _validate_url(_require("SUPABASE_URL"), "SUPABASE_URL")
    supabase_key = _require("SUPABASE_KEY")

    # === Queue ===
    redis_url = _validate_url(
        _optional("REDIS_URL", DEFAULT_REDIS_URL), "REDIS_URL",
        schemes=("redis://", "rediss://", "unix://"),
    )
    queue_name = _optional("QUEUE_NAME") or f"evm-native-confirm:{network}"
    queue_visibility_timeout = _int_range(
        "QUEUE_VISIBILITY_TIMEOUT", _optional("QUEUE_VISIBILITY_TIMEOUT", "300"), 30, 86400, warnings,
    )
    queue_max_attempts = _int_range(
        "QUEUE_MAX_ATTEMPTS", _optional("QUEUE_MAX_ATTEMPTS", "5"), 1, 100, warnings,
    )
    queue_retry_delay = _int_range(
        "QUEUE_RETRY_DELAY", _optional("QUEUE_RETRY_DELAY", "30"), 0, 3600, warnings,
    )

    # === Tuning ===
    max_scan_candidates = _int_range(
        "MAX_SCAN_CANDIDATES", _optional("MAX_SCAN_CANDIDATES", "10"), 1, 100, warnings,
    )
    scan_concurrency = _int_range("SCAN_CONCURRENCY", _optional("SCAN_CONCURRENCY", "4"), 1, 16, warnings)
    candidate_timeout = _float_range(
        "CANDIDATE_TIMEOUT", _optional("CANDIDATE_TIMEOUT", "30"), 1.0, 600.0, warnings,
    )
    feed_timeout = _float_range("FEED_TIMEOUT", _optional("FEED_TIMEOUT", "15"), 1.0, 120.0, warnings)
    ledger_timeout = _float_range("LEDGER_TIMEOUT", _optional("LEDGER_TIMEOUT", "15"), 1.0, 120.0, warnings)

    settlement_gas_policy = _optional("SETTLEMENT_GAS_POLICY", "gas_limit").lower()
    if settlement_gas_policy not in GAS_POLICIES:
        warnings.append(f"Unknown SETTLEMENT_GAS_POLICY '{settlement_gas_policy}', defaulting to gas_limit")
        settlement_gas_policy = "gas_limit"
    elif settlement_gas_policy == "gas_used":
        warnings.append("SETTLEMENT_GAS_POLICY=gas_used — credits will differ from gas-limit history")

    fail_task_on_credit_error = _flag(
        "FAIL_TASK_ON_CREDIT_ERROR", _optional("FAIL_TASK_ON_CREDIT_ERROR", "true"), warnings,
    )

    log_level = _optional("LOG_LEVEL", "INFO").upper()
    if log_level not in LOG_LEVELS:
        warnings.append(f"Unknown LOG_LEVEL '{log_level}', defaulting to INFO")
        log_level = "INFO"

    if max_scan_candidates != 10:
        warnings.append(f"MAX_SCAN_CANDIDATES={max_scan_candidates} (default 10)")

    return ScanConfig(
        etherscan_api_key=etherscan_api_key,
        etherscan_api_url=etherscan_api_url,
        evm_account=evm_account,
        network=network,
        native_asset=native_asset,
        native_method_id=native_method_id,
        ledger_graphql_url=ledger_graphql_url,
        ledger_api_token=ledger_api_token,
        supabase_url=supabase_url,
        supabase_key=supabase_key,
        redis_url=redis_url,
        queue_name=queue_name,
        queue_visibility_timeout=queue_visibility_timeout,
        queue_max_attempts=queue_max_attempts,
        queue_retry_delay=queue_retry_delay,
        max_scan_candidates=max_scan_candidates,
        scan_concurrency=scan_concurrency,
        candidate_timeout=candidate_timeout,
        feed_timeout=feed_timeout,
        ledger_timeout=ledger_timeout,
        settlement_gas_policy=settlement_gas_policy,
        fail_task_on_credit_error=fail_task_on_credit_error,
        log_level=log_level,
        warnings=tuple(warnings),
    )


def _mask(secret: str) -> str:
    if not secret:
        return "(not set)"
    if len(secret) <= 10:
        return "***"
    return secret[:4] + "..." + secret[-4:]


def print_config_summary(config: ScanConfig) -> None:
    """Print a non-sensitive config summary for startup verification."""
    print("--- Deposit Scanner Config ---")
    print(f"  Network:        {config.network} ({config.native_asset}, method={config.native_method_id})")
    print(f"  Account:        {config.evm_account}")
    print(f"  Etherscan:      {config.etherscan_api_url[:40]} key={_mask(config.etherscan_api_key)}")
    print(f"  Ledger:         {config.ledger_graphql_url[:40]}...")
    print(f"  Supabase:       {config.supabase_url[:40]}...")
    print(f"  Queue:          {config.queue_name} @ {config.redis_url.split('@')[-1][:40]}")
    print(f"  Retries:        {config.queue_max_attempts} attempts, {config.queue_retry_delay}s base delay")
    print(f"  Candidates:     {config.max_scan_candidates} max, concurrency {config.scan_concurrency}")
    print(f"  Timeouts:       candidate={config.candidate_timeout}s feed={config.feed_timeout}s "
          f"ledger={config.ledger_timeout}s")
    print(f"  Gas policy:     {config.settlement_gas_policy}")
    print(f"  Credit errors:  {'fail task' if config.fail_task_on_credit_error else 'complete task'}")
    print(f"  Log level:      {config.log_level}")
    if config.warnings:
        print(f"  ⚠️  {len(config.warnings)} config warning(s):")
        for w in config.warnings:
            print(f"    - {w}")
    print("-" * 30)
