# settlement.py
"""
The payment pipeline: ledger gate -> rates -> conversion -> transfer -> ledger.

Each order_id is claimed with an insert-if-absent before any chain call, so
two concurrent requests for the same new order cannot both reach the
submitter. A pipeline failure releases the claim; the identical request can
then be retried safely.
"""
import sqlite3
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from loguru import logger

from .config import BridgeConfig
from .errors import InvalidAddress, OrderInProgress, ZeroSettlementAmount
from .ledger_store import STATE_PENDING, claim, claim_state, db, ensure_tables, lookup, record, release
from .payout import TokenTransferSubmitter, is_evm_address
from .pricing import convert_to_token_amount, format_units, parse_offset, resolve_reserves, to_base_units
from .rates import RateSource, make_web3


@dataclass(frozen=True)
class PayOrder:
    order_id: str
    address: str
    rwa_amount: Any      # echoed back verbatim in the outcome
    offset: Any          # number or string such as "+10.00"


@dataclass(frozen=True)
class PayResult:
    duplicate: bool
    outcome: Dict[str, Any]


def now_ms() -> int:
    return int(time.time() * 1000)


class SettlementPipeline:
    def __init__(
        self,
        db_func: Callable[[], sqlite3.Connection],
        rate_source: RateSource,
        submitter: TokenTransferSubmitter,
        settlement_token: str,
        settlement_decimals: int = 18,
        reference_decimals: int = 18,
    ):
        self.db_func = db_func
        self.rate_source = rate_source
        self.submitter = submitter
        self.settlement_token = settlement_token
        self.settlement_decimals = int(settlement_decimals)
        self.reference_decimals = int(reference_decimals)

    @classmethod
    def from_config(cls, cfg: BridgeConfig) -> "SettlementPipeline":
        w3 = make_web3(cfg.rpc_url, cfg.rpc_timeout_sec)
        pipeline = cls(
            db_func=lambda: db(cfg.db_path),
            rate_source=RateSource.from_config(cfg, w3),
            submitter=TokenTransferSubmitter.from_config(cfg, w3),
            settlement_token=cfg.settlement_token,
            settlement_decimals=cfg.settlement_decimals,
            reference_decimals=cfg.reference_decimals,
        )
        pipeline.init_db()
        return pipeline

    def init_db(self) -> None:
        con = self.db_func()
        try:
            ensure_tables(con)
        finally:
            con.close()

    def status(self, order_id: str) -> Tuple[Optional[str], Optional[Dict[str, Any]]]:
        """Return (state, outcome). state is None for an unknown order."""
        con = self.db_func()
        try:
            outcome = lookup(con, order_id)
            if outcome is not None:
                return "success", outcome
            return claim_state(con, order_id), None
        finally:
            con.close()

    def quote(self, rwa_amount: Any, offset: Any) -> int:
        """Token base units owed for rwa_amount at the current pool price."""
        requested = to_base_units(rwa_amount, self.reference_decimals)
        offset_percent = parse_offset(offset)

        snap = self.rate_source.fetch()
        settlement_reserve, reference_reserve = resolve_reserves(
            snap.reserve0, snap.reserve1, snap.token0, self.settlement_token
        )
        amount = convert_to_token_amount(
            requested,
            settlement_reserve,
            reference_reserve,
            offset_percent,
            external_rate=snap.oracle_answer,
        )
        if amount <= 0:
            raise ZeroSettlementAmount(f"amount={amount} for rwa={rwa_amount} offset={offset}")
        return amount

    def pay(self, order: PayOrder) -> PayResult:
        con = self.db_func()
        try:
            existing = lookup(con, order.order_id)
            if existing is not None:
                logger.info(f"[pay] duplicate order={order.order_id}")
                return PayResult(duplicate=True, outcome=existing)

            # Validate cheap inputs before taking the claim
            to_base_units(order.rwa_amount, self.reference_decimals)
            parse_offset(order.offset)
            if not is_evm_address(order.address):
                raise InvalidAddress(f"invalid destination: {order.address!r}")

            if not claim(con, order.order_id):
                existing = lookup(con, order.order_id)
                if existing is not None:
                    logger.info(f"[pay] duplicate order={order.order_id} (lost claim race)")
                    return PayResult(duplicate=True, outcome=existing)
                raise OrderInProgress(f"order {order.order_id} is {claim_state(con, order.order_id) or STATE_PENDING}")

            try:
                amount = self.quote(order.rwa_amount, order.offset)
                tx_hash = self.submitter.submit(order.address, amount)
            except Exception:
                release(con, order.order_id)
                raise

            outcome = {
                "status": "success",
                "tx_hash": tx_hash,
                "token_sent": format_units(amount, self.settlement_decimals),
                "rwa_value": order.rwa_amount,
                "timestamp": now_ms(),
            }
            try:
                record(con, order.order_id, outcome)
            except Exception:
                # Transfer is already broadcast; the pending claim stays so the
                # order cannot be paid again. Needs manual reconciliation.
                logger.critical(f"[pay] order={order.order_id} tx={tx_hash} sent but not recorded")
                raise

            logger.info(
                f"[pay] order={order.order_id} to={order.address} rwa={order.rwa_amount} "
                f"offset={order.offset} sent={outcome['token_sent']} tx={tx_hash}"
            )
            return PayResult(duplicate=False, outcome=outcome)
        finally:
            con.close()
