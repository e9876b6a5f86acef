# config.py
"""
Environment configuration for the settlement bridge.

Values come from the process environment, with a `.env` file in the working
directory loaded first for local runs. In production the variables are
usually exported by systemd, so the .env load is a no-op.

Required:
    BRIDGE_API_KEY            shared secret expected in the X-API-KEY header
    CHAIN_RPC_URL             RPC endpoint of the settlement chain
    SETTLEMENT_TOKEN_ADDRESS  ERC20 token paid out to orders
    PAIR_ADDRESS              Uniswap-V2 style pair (settlement/reference token)
    SIGNER_PRIVATE_KEY        treasury key that signs transfers (never in files)

Optional:
    CHAIN_ID                  56 (BSC mainnet, default) or 97 (testnet), any int
    SIGNER_ADDRESS            if set, must match the private key's address
    ORACLE_RPC_URL            RPC of the chain hosting the rate oracle
    ORACLE_ADDRESS            latestRoundData() feed, 8 decimals
    BRIDGE_DB                 sqlite ledger path (default bridge.db)
    SETTLEMENT_TOKEN_DECIMALS default 18, decimals of the paid-out token
    REFERENCE_TOKEN_DECIMALS  default 18, decimals of the pair's other token
    PAYOUT_GAS_MULT           gas estimate multiplier (default 1.15)
    RPC_TIMEOUT_SEC           HTTP provider timeout (default 20)
    LOG_LEVEL                 loguru level (default INFO)
"""
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

from .errors import ConfigError

BSC_MAINNET_CHAIN_ID = 56


@dataclass(frozen=True)
class BridgeConfig:
    api_key: str
    rpc_url: str
    settlement_token: str
    pair_address: str
    signer_private_key: str
    chain_id: int = BSC_MAINNET_CHAIN_ID
    signer_address: Optional[str] = None
    oracle_rpc_url: Optional[str] = None
    oracle_address: Optional[str] = None
    db_path: str = "bridge.db"
    settlement_decimals: int = 18
    reference_decimals: int = 18
    gas_mult: float = 1.15
    rpc_timeout_sec: int = 20
    log_level: str = "INFO"

    @property
    def oracle_enabled(self) -> bool:
        return bool(self.oracle_address)


def _get(env: Mapping[str, str], name: str) -> str:
    return (env.get(name) or "").strip()


def _require(env: Mapping[str, str], name: str) -> str:
    v = _get(env, name)
    if not v:
        raise ConfigError(f"missing required env var {name}")
    return v


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = _get(env, name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer (got {raw!r})")


def _decimals(env: Mapping[str, str], name: str) -> int:
    v = _int(env, name, 18)
    if not 0 <= v <= 36:
        raise ConfigError(f"{name} out of range: {v}")
    return v


def load_config(env: Optional[Mapping[str, str]] = None) -> BridgeConfig:
    """Build a BridgeConfig from `env` (defaults to os.environ after .env load)."""
    if env is None:
        load_dotenv()
        env = os.environ

    oracle_rpc = _get(env, "ORACLE_RPC_URL") or None
    oracle_addr = _get(env, "ORACLE_ADDRESS") or None
    if bool(oracle_rpc) != bool(oracle_addr):
        raise ConfigError("ORACLE_RPC_URL and ORACLE_ADDRESS must be set together")

    gas_raw = _get(env, "PAYOUT_GAS_MULT") or "1.15"
    try:
        gas_mult = float(gas_raw)
    except ValueError:
        raise ConfigError(f"PAYOUT_GAS_MULT must be a number (got {gas_raw!r})")
    if gas_mult < 1.0:
        raise ConfigError("PAYOUT_GAS_MULT must be >= 1.0")

    settlement_decimals = _decimals(env, "SETTLEMENT_TOKEN_DECIMALS")
    reference_decimals = _decimals(env, "REFERENCE_TOKEN_DECIMALS")

    return BridgeConfig(
        api_key=_require(env, "BRIDGE_API_KEY"),
        rpc_url=_require(env, "CHAIN_RPC_URL"),
        settlement_token=_require(env, "SETTLEMENT_TOKEN_ADDRESS"),
        pair_address=_require(env, "PAIR_ADDRESS"),
        signer_private_key=_require(env, "SIGNER_PRIVATE_KEY"),
        chain_id=_int(env, "CHAIN_ID", BSC_MAINNET_CHAIN_ID),
        signer_address=_get(env, "SIGNER_ADDRESS") or None,
        oracle_rpc_url=oracle_rpc,
        oracle_address=oracle_addr,
        db_path=_get(env, "BRIDGE_DB") or "bridge.db",
        settlement_decimals=settlement_decimals,
        reference_decimals=reference_decimals,
        gas_mult=gas_mult,
        rpc_timeout_sec=max(1, _int(env, "RPC_TIMEOUT_SEC", 20)),
        log_level=(_get(env, "LOG_LEVEL") or "INFO").upper(),
    )
