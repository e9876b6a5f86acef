# errors.py
from typing import Optional


class BridgeError(Exception):
    """Base for every fault raised inside the settlement pipeline.

    `code` is a stable machine-readable identifier, `public_message` is safe
    to return to API callers. The exception text itself may carry internal
    detail (RPC errors, addresses) and only goes to the server log.
    """

    status_code = 500
    code = "internal_error"
    public_message = "internal error"

    def __init__(self, message: str = "", public_message: Optional[str] = None):
        super().__init__(message or self.public_message)
        if public_message is not None:
            self.public_message = public_message


class ConfigError(BridgeError):
    code = "config_error"
    public_message = "service misconfigured"


# 4xx
class ValidationFault(BridgeError):
    status_code = 400
    code = "invalid_request"
    public_message = "invalid request"


class InvalidOffset(ValidationFault):
    code = "invalid_offset"
    public_message = "offset must be a number >= -100"


class InvalidAmount(ValidationFault):
    code = "invalid_amount"
    public_message = "rwa_amount must be a positive number"


class InvalidAddress(ValidationFault):
    code = "invalid_address"
    public_message = "address must be a 40 hex character EVM address"


class OrderInProgress(BridgeError):
    status_code = 409
    code = "order_in_progress"
    public_message = "order is already being settled"


# pricing
class PricingFault(BridgeError):
    code = "pricing_fault"
    public_message = "unable to price order"


class EmptyPool(PricingFault):
    code = "empty_pool"
    public_message = "liquidity pool is empty"


class MalformedOracleReading(PricingFault):
    code = "oracle_fault"
    public_message = "exchange rate oracle returned an invalid reading"


class ZeroSettlementAmount(PricingFault):
    code = "zero_amount"
    public_message = "computed settlement amount is zero"


# chain
class ChainFault(BridgeError):
    code = "chain_fault"
    public_message = "blockchain request failed"


class RpcUnavailable(ChainFault):
    code = "rpc_unavailable"
    public_message = "blockchain node unreachable"


class SubmissionRejected(ChainFault):
    code = "submission_rejected"
    public_message = "token transfer was rejected"


# ledger
class AlreadyExists(BridgeError):
    status_code = 409
    code = "already_settled"
    public_message = "order already settled"
