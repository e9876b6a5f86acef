import threading
from unittest.mock import MagicMock

import pytest

from pegbridge.errors import MalformedOracleReading, RpcUnavailable
from pegbridge.rates import RateSource, read_oracle_round

E18 = 10 ** 18
TOKEN0 = "0xAbCdEf0123456789aBcDeF0123456789AbCdEf01"


def make_pair(reserves=(2_000_000 * E18, 1_000_000 * E18, 1_700_000_000), token0=TOKEN0):
    pair = MagicMock()
    pair.functions.getReserves.return_value.call.return_value = reserves
    pair.functions.token0.return_value.call.return_value = token0
    return pair


def make_oracle(round_data=(110, 14_000_000, 1_700_000_000, 1_700_000_100, 110)):
    oracle = MagicMock()
    oracle.functions.latestRoundData.return_value.call.return_value = round_data
    return oracle


def test_fetch_pool_only():
    snap = RateSource(make_pair()).fetch()
    assert snap.reserve0 == 2_000_000 * E18
    assert snap.reserve1 == 1_000_000 * E18
    assert snap.token0 == TOKEN0
    assert snap.block_timestamp_last == 1_700_000_000
    assert snap.oracle_answer is None


def test_fetch_with_oracle():
    snap = RateSource(make_pair(), make_oracle()).fetch()
    assert snap.oracle_answer == 14_000_000


def test_reads_are_issued_concurrently():
    # each call blocks until all three are in flight; sequential reads would time out
    barrier = threading.Barrier(3, timeout=5)

    def wait_then(value):
        def _call():
            barrier.wait()
            return value
        return _call

    pair = MagicMock()
    pair.functions.getReserves.return_value.call.side_effect = wait_then((1, 2, 3))
    pair.functions.token0.return_value.call.side_effect = wait_then(TOKEN0)
    oracle = MagicMock()
    oracle.functions.latestRoundData.return_value.call.side_effect = wait_then((1, 5, 1, 1, 1))

    snap = RateSource(pair, oracle).fetch()
    assert (snap.reserve0, snap.reserve1, snap.oracle_answer) == (1, 2, 5)


def test_rpc_failure_becomes_rpc_unavailable():
    pair = make_pair()
    pair.functions.getReserves.return_value.call.side_effect = ConnectionError("node down")
    with pytest.raises(RpcUnavailable) as exc:
        RateSource(pair).fetch()
    assert "getReserves" in str(exc.value)


def test_malformed_oracle_propagates_as_pricing_fault():
    oracle = make_oracle((7, 0, 1, 1, 7))
    with pytest.raises(MalformedOracleReading):
        RateSource(make_pair(), oracle).fetch()


@pytest.mark.parametrize("round_data", [
    (7, -1, 1, 1, 7),       # negative answer
    (7, 14_000_000, 1, 0, 7),  # incomplete round
    (7, 14_000_000),        # wrong shape
])
def test_read_oracle_round_rejects(round_data):
    with pytest.raises(MalformedOracleReading):
        read_oracle_round(make_oracle(round_data))


def test_read_oracle_round_fields():
    r = read_oracle_round(make_oracle())
    assert r.round_id == 110
    assert r.answer == 14_000_000
    assert r.updated_at == 1_700_000_100
