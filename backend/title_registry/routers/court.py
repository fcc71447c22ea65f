"""
Court API Routes

Case registration, orders, hearings and closure.
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..auth import require_roles
from ..database import get_db
from ..models.db_models import ActorRole, CaseStatus
from ..models.domain import Actor
from ..services.disputes import DisputeService


router = APIRouter(prefix="/court", tags=["court"])

require_court = require_roles(ActorRole.COURT, ActorRole.ADMIN)


# =============================================================================
# REQUEST MODELS
# =============================================================================

class RegisterCaseRequest(BaseModel):
    property_id: str
    reason: str = Field(..., description="Grounds recorded on the dispute")


class IssueOrderRequest(BaseModel):
    text: str


class ScheduleHearingRequest(BaseModel):
    date: datetime = Field(..., description="Hearing date and time (ISO 8601)")
    venue: Optional[str] = None


class CloseCaseRequest(BaseModel):
    resolution: str


# =============================================================================
# CASES
# =============================================================================

@router.post("/cases/register", response_model=dict, status_code=201)
async def register_case(
    request: RegisterCaseRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_court),
):
    service = DisputeService(db)
    case = service.register_case(request.property_id, actor, request.reason)
    return service.case_detail(case.case_id)


@router.get("/cases", response_model=dict)
async def list_cases(
    status: Optional[CaseStatus] = Query(None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_court),
):
    service = DisputeService(db)
    cases = service.list_cases(status=status)
    return {"cases": [service.case_to_dict(c) for c in cases], "total": len(cases)}


@router.get("/cases/{case_id}", response_model=dict)
async def get_case(
    case_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_court),
):
    return DisputeService(db).case_detail(case_id)


@router.post("/cases/{case_id}/orders", response_model=dict)
async def issue_order(
    case_id: str,
    request: IssueOrderRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_court),
):
    service = DisputeService(db)
    return service.case_to_dict(service.issue_order(case_id, actor, request.text))


@router.post("/cases/{case_id}/hearings", response_model=dict)
async def schedule_hearing(
    case_id: str,
    request: ScheduleHearingRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_court),
):
    service = DisputeService(db)
    case = service.schedule_hearing(case_id, actor, request.date, venue=request.venue)
    return service.case_to_dict(case)


@router.post("/cases/{case_id}/close", response_model=dict)
async def close_case(
    case_id: str,
    request: CloseCaseRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_court),
):
    service = DisputeService(db)
    return service.case_to_dict(service.close_case(case_id, actor, request.resolution))


# =============================================================================
# HEARINGS
# =============================================================================

@router.get("/hearings", response_model=dict)
async def upcoming_hearings(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_court),
):
    hearings = DisputeService(db).upcoming_hearings()
    return {"hearings": hearings, "total": len(hearings)}
