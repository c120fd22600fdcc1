# generator/config.py
# NOTE:
# Do not hardcode private keys in the repo. The master wallet key and the
# wallet encryption passphrase come from env vars (MASTER_PRIVATE_KEY,
# WALLET_ENCRYPTION_KEY) and must stay out of git.

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional

log = logging.getLogger("txgen.config")

# Chain
RPC_URL = "https://rpc.vanarchain.com"
CHAIN_ID = 2040
CHAIN_NAME = "Vanar Mainnet"
SYMBOL = "VANRY"
EXPLORER = "https://explorer.vanarchain.com"
TOKEN_DECIMALS = 18

# Plain value transfer
TRANSFER_GAS_LIMIT = 21000

# RPC timeouts (seconds)
RPC_DEFAULT_TIMEOUT_S = 10.0
RPC_RETRY_COUNT = 2
RPC_BACKOFF_BASE_S = 0.35

# Storage / logs
DB_PATH = "data/txgen.db"
LOG_DIR = "logs"

# Dev-only fallback, never use it against a real chain.
DEFAULT_ENCRYPTION_KEY = "default-32-char-key-for-dev-only"
KEY_SALT = b"txgen-wallet-keys"
KEY_KDF_ITERATIONS = 200_000

CONFIG_ENV = "TXGEN_CONFIG"
CONFIG_FILE = "txgen_config.json"


@dataclass
class Settings:
    # Chain
    rpc_url: str = RPC_URL
    chain_id: int = CHAIN_ID
    symbol: str = SYMBOL
    rpc_timeout_s: float = RPC_DEFAULT_TIMEOUT_S
    receipt_timeout_s: float = 120.0
    receipt_poll_s: float = 1.5

    # Secrets (env only, never read from the JSON file)
    master_private_key: str = ""
    encryption_key: str = DEFAULT_ENCRYPTION_KEY

    # Storage / logs
    db_path: str = DB_PATH
    log_dir: str = LOG_DIR
    tx_retention_days: int = 7

    # Transfers (token units, converted to wei at use)
    min_wallet_balance: str = "8"
    min_tx_amount: str = "0.01"
    max_tx_amount: str = "2"
    tx_delay_min_s: float = 3.0
    tx_delay_max_s: float = 5.0

    # Distribution
    random_min_per_wallet: str = "5"
    random_step: str = "1"
    two_hop_retention_min_pct: float = 1.0
    two_hop_retention_max_pct: float = 5.0

    # Auto-fund
    auto_fund_threshold: float = 0.3
    auto_fund_low_balance: str = "5"
    auto_fund_target: str = "8"
    auto_fund_interval_s: float = 60.0

    # Instances
    max_instances: int = 10
    stop_grace_s: float = 5.0
    monitor_interval_s: float = 0.5
    status_every: int = 10

    # Dashboard bridge
    ui_host: str = "localhost"
    ui_port: int = 8080

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out.pop("master_private_key", None)
        out.pop("encryption_key", None)
        return out


_SECRET_FIELDS = ("master_private_key", "encryption_key")

_ENV_OVERRIDES = {
    "RPC_URL": "rpc_url",
    "CHAIN_ID": "chain_id",
    "MASTER_PRIVATE_KEY": "master_private_key",
    "WALLET_ENCRYPTION_KEY": "encryption_key",
    "TXGEN_DB_PATH": "db_path",
    "TXGEN_LOG_DIR": "log_dir",
    "MAX_INSTANCES": "max_instances",
    "UI_HOST": "ui_host",
    "UI_PORT": "ui_port",
}


def _coerce(current: Any, value: Any) -> Any:
    if isinstance(current, bool):
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    return str(value)


def _read_json(path: str) -> Dict[str, Any]:
    if not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, ValueError) as exc:
        log.warning("config file %s unreadable: %s", path, exc)
        return {}
    return raw if isinstance(raw, dict) else {}


def load_settings(path: Optional[str] = None, env: Optional[Dict[str, str]] = None) -> Settings:
    """Build settings from defaults, then the JSON file, then env vars."""
    env = os.environ if env is None else env
    path = path or env.get(CONFIG_ENV) or CONFIG_FILE

    s = Settings()
    names = {f.name for f in fields(Settings)}
    for k, v in _read_json(path).items():
        if k not in names or k in _SECRET_FIELDS:
            continue
        try:
            setattr(s, k, _coerce(getattr(s, k), v))
        except (TypeError, ValueError):
            log.warning("ignoring bad config value %s=%r", k, v)

    for env_name, attr in _ENV_OVERRIDES.items():
        raw = env.get(env_name)
        if raw is None or not str(raw).strip():
            continue
        try:
            setattr(s, attr, _coerce(getattr(s, attr), raw.strip()))
        except (TypeError, ValueError):
            log.warning("ignoring bad env value %s=%r", env_name, raw)

    if s.tx_delay_max_s < s.tx_delay_min_s:
        s.tx_delay_max_s = s.tx_delay_min_s
    s.max_instances = max(0, int(s.max_instances))
    return s
