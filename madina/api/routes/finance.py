"""
madina.api.routes.finance — Finance desk (cash payouts)
=======================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from madina.api.deps import get_engine, get_finance_user, maintenance_guard, service_errors
from madina.services import withdrawal_service

router = APIRouter(
    prefix="/finance", tags=["finance"], dependencies=[Depends(maintenance_guard)],
)


@router.get("/withdrawals")
def pending_withdrawals(
    user: dict = Depends(get_finance_user),
    engine=Depends(get_engine),
):
    return {"withdrawals": withdrawal_service.get_all_pending_withdrawals(engine)}


@router.get("/withdrawals/{ref}")
def lookup_withdrawal(
    ref: str,
    user: dict = Depends(get_finance_user),
    engine=Depends(get_engine),
):
    found = withdrawal_service.get_pending_withdrawal_by_ref(engine, ref)
    if found is None:
        raise HTTPException(404, "Pending withdrawal not found")
    return found


@router.post("/withdrawals/{ref}/payout")
def payout(
    ref: str,
    user: dict = Depends(get_finance_user),
    engine=Depends(get_engine),
):
    with service_errors():
        return withdrawal_service.process_cash_payout(engine, user["id"], ref)


@router.get("/pool")
def pool(user: dict = Depends(get_finance_user), engine=Depends(get_engine)):
    return withdrawal_service.get_pool_details(engine)


@router.get("/payouts")
def payouts(user: dict = Depends(get_finance_user), engine=Depends(get_engine)):
    return withdrawal_service.get_cash_payout_details(engine)
