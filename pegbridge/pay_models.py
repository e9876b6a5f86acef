# pay_models.py
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict


# Input models
class PayIn(BaseModel):
    address: Optional[str] = None     # destination, 0x + 40 hex chars
    rwa_amount: Any = None            # pegged value, number or decimal string
    offset: Any = None                # percent, e.g. 10, -5 or "+10.00"
    order: Optional[Union[str, int]] = None   # idempotency key

    def missing_fields(self) -> bool:
        return (
            not (self.address or "").strip()
            or not self.rwa_amount
            or not str(self.order or "").strip()
            or self.offset is None
        )


# Output models
class SettlementOutcome(BaseModel):
    status: str
    tx_hash: str
    token_sent: str
    rwa_value: Any
    timestamp: int


class PayOut(BaseModel):
    model_config = ConfigDict(extra="forbid")

    code: int = 200
    data: SettlementOutcome


class DuplicateOut(BaseModel):
    model_config = ConfigDict(extra="forbid")

    msg: str = "Duplicate request"
    data: SettlementOutcome
