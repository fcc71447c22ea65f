"""
Dispute API Routes

Raising, listing, referring and dismissing disputes against titles.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..auth import get_current_actor, require_roles
from ..database import get_db
from ..exceptions import PermissionDeniedError
from ..models.db_models import ActorRole, DisputeStatus
from ..models.domain import Actor
from ..services.disputes import DisputeService


router = APIRouter(prefix="/disputes", tags=["disputes"])


# =============================================================================
# REQUEST MODELS
# =============================================================================

class RaiseDisputeRequest(BaseModel):
    property_id: str = Field(..., description="Disputed title")
    reason: str = Field(..., description="Grounds for the dispute")


class DismissDisputeRequest(BaseModel):
    reason: str = Field(..., description="Why the dispute is dismissed")


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("", response_model=dict, status_code=201)
async def raise_dispute(
    request: RaiseDisputeRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(ActorRole.CITIZEN, ActorRole.REGISTRAR)),
):
    service = DisputeService(db)
    dispute = service.raise_dispute(request.property_id, actor, request.reason)
    return service.dispute_to_dict(dispute)


@router.get("", response_model=dict)
async def list_disputes(
    status: Optional[DisputeStatus] = Query(None),
    property_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(ActorRole.REGISTRAR, ActorRole.COURT, ActorRole.ADMIN)),
):
    service = DisputeService(db)
    disputes = service.list_disputes(status=status, property_id=property_id)
    return {"disputes": [service.dispute_to_dict(d) for d in disputes], "total": len(disputes)}


@router.get("/{dispute_id}", response_model=dict)
async def get_dispute(
    dispute_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    service = DisputeService(db)
    dispute = service.get_dispute(dispute_id)
    if actor.role == ActorRole.CITIZEN and dispute.raised_by != actor.ref:
        raise PermissionDeniedError("Citizens may only view disputes they raised")
    return service.dispute_to_dict(dispute)


@router.post("/{dispute_id}/refer", response_model=dict)
async def refer_to_court(
    dispute_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(ActorRole.REGISTRAR, ActorRole.ADMIN)),
):
    service = DisputeService(db)
    case = service.refer_to_court(dispute_id, actor)
    return service.case_to_dict(case)


@router.post("/{dispute_id}/dismiss", response_model=dict)
async def dismiss_dispute(
    dispute_id: str,
    request: DismissDisputeRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(ActorRole.REGISTRAR, ActorRole.COURT, ActorRole.ADMIN)),
):
    service = DisputeService(db)
    dispute = service.dismiss(dispute_id, actor, request.reason)
    return service.dispute_to_dict(dispute)
