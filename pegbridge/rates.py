# rates.py
"""
Read-only price inputs: the DEX pair reserves and the optional rate oracle.

Both are plain contract calls. The pair's getReserves()/token0() and the
oracle's latestRoundData() are independent, so fetch() issues them in
parallel and waits for all of them.
"""
import json
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from loguru import logger
from web3 import Web3

from .config import BridgeConfig
from .errors import BridgeError, MalformedOracleReading, RpcUnavailable

# Uniswap-V2 / PancakeSwap pair: getReserves + token0
PAIR_ABI = json.loads("""
[
  {
    "constant": true,
    "inputs": [],
    "name": "getReserves",
    "outputs": [
      {"name": "reserve0", "type": "uint112"},
      {"name": "reserve1", "type": "uint112"},
      {"name": "blockTimestampLast", "type": "uint32"}
    ],
    "type": "function"
  },
  {
    "constant": true,
    "inputs": [],
    "name": "token0",
    "outputs": [{"name": "", "type": "address"}],
    "type": "function"
  }
]
""")

# Chainlink AggregatorV3Interface: latestRoundData
ORACLE_ABI = json.loads("""
[
  {
    "inputs": [],
    "name": "latestRoundData",
    "outputs": [
      {"name": "roundId", "type": "uint80"},
      {"name": "answer", "type": "int256"},
      {"name": "startedAt", "type": "uint256"},
      {"name": "updatedAt", "type": "uint256"},
      {"name": "answeredInRound", "type": "uint80"}
    ],
    "stateMutability": "view",
    "type": "function"
  }
]
""")


@dataclass(frozen=True)
class OracleRound:
    round_id: int
    answer: int
    started_at: int
    updated_at: int
    answered_in_round: int


@dataclass(frozen=True)
class RateSnapshot:
    reserve0: int
    reserve1: int
    token0: str
    block_timestamp_last: int
    oracle_answer: Optional[int] = None


def make_web3(rpc_url: str, timeout_sec: int = 20) -> Web3:
    return Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout_sec}))


def read_pool_reserves(pair_contract: Any) -> Tuple[int, int, int]:
    reserve0, reserve1, ts_last = pair_contract.functions.getReserves().call()
    return int(reserve0), int(reserve1), int(ts_last)


def read_token0(pair_contract: Any) -> str:
    return str(pair_contract.functions.token0().call())


def read_oracle_round(oracle_contract: Any) -> OracleRound:
    """Read and sanity-check the latest oracle round.

    A non-positive answer or a round with updatedAt == 0 (never completed)
    is not a usable rate.
    """
    raw = oracle_contract.functions.latestRoundData().call()
    try:
        round_id, answer, started_at, updated_at, answered_in_round = (int(x) for x in raw)
    except (TypeError, ValueError):
        raise MalformedOracleReading(f"unexpected latestRoundData result: {raw!r}")

    if answer <= 0:
        raise MalformedOracleReading(f"oracle answer must be positive (round={round_id} answer={answer})")
    if updated_at == 0:
        raise MalformedOracleReading(f"oracle round {round_id} incomplete (updatedAt=0)")

    return OracleRound(
        round_id=round_id,
        answer=answer,
        started_at=started_at,
        updated_at=updated_at,
        answered_in_round=answered_in_round,
    )


class RateSource:
    """Fan-out reader for one pair and an optional oracle."""

    def __init__(self, pair_contract: Any, oracle_contract: Optional[Any] = None):
        self.pair = pair_contract
        self.oracle = oracle_contract

    @classmethod
    def from_config(cls, cfg: BridgeConfig, w3: Optional[Web3] = None) -> "RateSource":
        w3 = w3 or make_web3(cfg.rpc_url, cfg.rpc_timeout_sec)
        pair = w3.eth.contract(address=Web3.to_checksum_address(cfg.pair_address), abi=PAIR_ABI)

        oracle = None
        if cfg.oracle_enabled:
            ow3 = make_web3(cfg.oracle_rpc_url, cfg.rpc_timeout_sec)
            oracle = ow3.eth.contract(address=Web3.to_checksum_address(cfg.oracle_address), abi=ORACLE_ABI)
        return cls(pair, oracle)

    def fetch(self) -> RateSnapshot:
        calls: Dict[str, Callable[[], Any]] = {
            "getReserves": lambda: read_pool_reserves(self.pair),
            "token0": lambda: read_token0(self.pair),
        }
        if self.oracle is not None:
            calls["latestRoundData"] = lambda: read_oracle_round(self.oracle)

        with ThreadPoolExecutor(max_workers=len(calls)) as pool:
            futures = {name: pool.submit(fn) for name, fn in calls.items()}
            results: Dict[str, Any] = {}
            for name, fut in futures.items():
                try:
                    results[name] = fut.result()
                except BridgeError:
                    raise
                except Exception as e:
                    raise RpcUnavailable(f"{name} call failed: {e!r}") from e

        reserve0, reserve1, ts_last = results["getReserves"]
        oracle_round = results.get("latestRoundData")
        snapshot = RateSnapshot(
            reserve0=reserve0,
            reserve1=reserve1,
            token0=results["token0"],
            block_timestamp_last=ts_last,
            oracle_answer=oracle_round.answer if oracle_round else None,
        )
        logger.debug(
            f"[rates] reserve0={reserve0} reserve1={reserve1} token0={snapshot.token0} "
            f"ts={ts_last} oracle={snapshot.oracle_answer}"
        )
        return snapshot
