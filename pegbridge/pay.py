# pay.py
from typing import Callable, Optional, Union

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse

from .pay_models import DuplicateOut, PayIn, PayOut, SettlementOutcome
from .settlement import PayOrder, SettlementPipeline


def create_pay_router(pipeline_func: Callable[[], SettlementPipeline]) -> APIRouter:
    """Order status and payment endpoints.

    Authentication happens in the app's middleware before these run.
    """
    router = APIRouter()

    @router.get("/status", response_model=SettlementOutcome)
    def order_status(order: Optional[str] = None):
        order = (order or "").strip()
        if not order:
            raise HTTPException(status_code=400, detail="Missing order")

        state, outcome = pipeline_func().status(order)
        if outcome is not None:
            return outcome
        if state is not None:
            return JSONResponse({"status": state}, status_code=202)
        return JSONResponse({"status": "not_found"}, status_code=404)

    @router.post("/pay", response_model=Union[PayOut, DuplicateOut])
    def pay(data: PayIn):
        if data.missing_fields():
            raise HTTPException(status_code=400, detail="Missing parameters")

        result = pipeline_func().pay(
            PayOrder(
                order_id=str(data.order).strip(),
                address=data.address.strip(),
                rwa_amount=data.rwa_amount,
                offset=data.offset,
            )
        )
        outcome = SettlementOutcome(**result.outcome)
        if result.duplicate:
            return DuplicateOut(data=outcome)
        return PayOut(data=outcome)

    return router
