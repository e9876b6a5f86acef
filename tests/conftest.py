"""Shared fixtures: a temp ledger and in-process fakes for the chain side."""
import threading
import time
from typing import List, Optional, Tuple

import pytest

from pegbridge.config import BridgeConfig
from pegbridge.errors import SubmissionRejected
from pegbridge.ledger_store import db, ensure_tables
from pegbridge.rates import RateSnapshot
from pegbridge.settlement import SettlementPipeline

E18 = 10 ** 18

SETTLEMENT_TOKEN = "0xAbCdEf0123456789aBcDeF0123456789AbCdEf01"
REFERENCE_TOKEN = "0x55d398326f99059ff775485246999027b3197955"
DEST = "0x" + "12" * 20
API_KEY = "test-api-key"


class FakeRateSource:
    """Returns a fixed snapshot; counts calls."""

    def __init__(self, snapshot: RateSnapshot, error: Optional[Exception] = None):
        self.snapshot = snapshot
        self.error = error
        self.calls = 0

    def fetch(self) -> RateSnapshot:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.snapshot


class FakeSubmitter:
    def __init__(self, tx_hash: str = "0x" + "ee" * 32, error: Optional[Exception] = None, delay: float = 0.0):
        self.tx_hash = tx_hash
        self.error = error
        self.delay = delay
        self.sent: List[Tuple[str, int]] = []
        self._lock = threading.Lock()

    def submit(self, to_address: str, amount: int) -> str:
        if self.delay:
            time.sleep(self.delay)
        with self._lock:
            self.sent.append((to_address, amount))
        if self.error is not None:
            raise self.error
        return self.tx_hash


def pool_snapshot(
    settlement_reserve: int = 2_000_000 * E18,
    reference_reserve: int = 1_000_000 * E18,
    oracle_answer: Optional[int] = None,
) -> RateSnapshot:
    # settlement token is token0
    return RateSnapshot(
        reserve0=settlement_reserve,
        reserve1=reference_reserve,
        token0=SETTLEMENT_TOKEN.lower(),
        block_timestamp_last=1_700_000_000,
        oracle_answer=oracle_answer,
    )


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "ledger.db")
    con = db(path)
    ensure_tables(con)
    con.close()
    return path


@pytest.fixture
def db_func(db_path):
    return lambda: db(db_path)


@pytest.fixture
def rate_source():
    return FakeRateSource(pool_snapshot())


@pytest.fixture
def submitter():
    return FakeSubmitter()


@pytest.fixture
def pipeline(db_func, rate_source, submitter):
    return SettlementPipeline(
        db_func=db_func,
        rate_source=rate_source,
        submitter=submitter,
        settlement_token=SETTLEMENT_TOKEN,
    )


@pytest.fixture
def bridge_config(db_path):
    return BridgeConfig(
        api_key=API_KEY,
        rpc_url="http://127.0.0.1:8545",
        settlement_token=SETTLEMENT_TOKEN,
        pair_address="0x" + "34" * 20,
        signer_private_key="0x" + "11" * 32,
        chain_id=97,
        db_path=db_path,
    )
