"""
madina.api.routes.kyc — KYC submission and review
=================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from madina.api.deps import (
    get_current_user,
    get_engine,
    get_kyc_reviewer,
    maintenance_guard,
    service_errors,
)
from madina.services import kyc_service

router = APIRouter(prefix="/kyc", tags=["kyc"], dependencies=[Depends(maintenance_guard)])


class KycSubmit(BaseModel):
    first_name: str
    last_name: str
    phone: str
    address: str
    id_front_url: str
    id_back_url: str


class KycReject(BaseModel):
    reason: str


@router.post("", status_code=201)
def submit(body: KycSubmit, user: dict = Depends(get_current_user), engine=Depends(get_engine)):
    with service_errors():
        app = kyc_service.submit_kyc_application(engine, user["id"], **body.model_dump())
    return kyc_service.kyc_to_dict(app, user["email"])


@router.get("/status")
def status(user: dict = Depends(get_current_user), engine=Depends(get_engine)):
    found = kyc_service.get_kyc_status(engine, user["id"])
    return found or {"status": None}


@router.get("/me")
def my_info(user: dict = Depends(get_current_user), engine=Depends(get_engine)):
    found = kyc_service.get_kyc_user_info(engine, user["id"])
    if found is None:
        raise HTTPException(404, "No KYC application")
    return found


# ---------------------------------------------------------------------------
# Review
# ---------------------------------------------------------------------------
@router.get("/applications")
def applications(user: dict = Depends(get_kyc_reviewer), engine=Depends(get_engine)):
    return {"applications": kyc_service.get_all_kyc_applications(engine)}


@router.post("/applications/{application_id}/approve")
def approve(
    application_id: int,
    user: dict = Depends(get_kyc_reviewer),
    engine=Depends(get_engine),
):
    with service_errors():
        return kyc_service.approve_kyc(engine, user["id"], application_id)


@router.post("/applications/{application_id}/reject")
def reject(
    application_id: int,
    body: KycReject,
    user: dict = Depends(get_kyc_reviewer),
    engine=Depends(get_engine),
):
    with service_errors():
        return kyc_service.reject_kyc(engine, user["id"], application_id, body.reason)
