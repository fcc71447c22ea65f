"""
Application API Routes

Citizen filings, registrar inbox and decisions, certification retry.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..auth import get_current_actor, require_roles
from ..database import get_db
from ..dependencies import get_ledger_gateway
from ..exceptions import PermissionDeniedError
from ..models.db_models import ActorRole, ApplicationKind, ApplicationStatus, Decision
from ..models.domain import Actor
from ..services.approvals import ApplicationService
from ..services.certification import CertificationService
from ..services.ledger import LedgerGateway


router = APIRouter(prefix="/applications", tags=["applications"])


# =============================================================================
# REQUEST MODELS
# =============================================================================

class DraftRequest(BaseModel):
    """Property fields. Transfer/correction may omit fields to keep current values."""
    owner_name: Optional[str] = Field(None, description="Owner's full name")
    owner_ref: Optional[str] = Field(None, description="Owner's identity reference")
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    district: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    area_sqft: Optional[float] = Field(None, description="Area in square feet")
    value: Optional[float] = Field(None, description="Declared value")


class SubmitApplicationRequest(BaseModel):
    kind: ApplicationKind = Field(default=ApplicationKind.ISSUE)
    draft: DraftRequest = Field(default_factory=DraftRequest)
    target_property_id: Optional[str] = Field(None, description="Existing title for transfer/correction")
    document_refs: List[str] = Field(default_factory=list, description="Content refs from the document store")
    notes: Optional[str] = None


class DecisionRequest(BaseModel):
    decision: Decision
    comment: Optional[str] = Field(None, description="Required (3+ chars) for a rejection")


# =============================================================================
# CITIZEN
# =============================================================================

@router.post("", response_model=dict, status_code=201)
async def submit_application(
    request: SubmitApplicationRequest,
    db: Session = Depends(get_db),
    gateway: LedgerGateway = Depends(get_ledger_gateway),
    actor: Actor = Depends(require_roles(ActorRole.CITIZEN)),
):
    service = ApplicationService(db, gateway)
    app = service.submit(
        actor,
        kind=request.kind,
        draft=request.draft.model_dump(exclude_none=True),
        target_property_id=request.target_property_id,
        document_refs=request.document_refs,
        notes=request.notes,
    )
    return service.to_dict(app)


@router.get("/mine", response_model=dict)
async def my_applications(
    status: Optional[ApplicationStatus] = Query(None),
    db: Session = Depends(get_db),
    gateway: LedgerGateway = Depends(get_ledger_gateway),
    actor: Actor = Depends(require_roles(ActorRole.CITIZEN)),
):
    service = ApplicationService(db, gateway)
    apps = service.list_for_applicant(actor.ref, status=status)
    return {"applications": [service.to_dict(a) for a in apps], "total": len(apps)}


# =============================================================================
# REGISTRAR
# =============================================================================

@router.get("/inbox", response_model=dict)
async def registrar_inbox(
    status: Optional[ApplicationStatus] = Query(None),
    kind: Optional[ApplicationKind] = Query(None),
    db: Session = Depends(get_db),
    gateway: LedgerGateway = Depends(get_ledger_gateway),
    actor: Actor = Depends(require_roles(ActorRole.REGISTRAR, ActorRole.ADMIN)),
):
    service = ApplicationService(db, gateway)
    apps = service.inbox(actor.ref, status=status, kind=kind)
    return {"applications": [service.to_dict(a) for a in apps], "total": len(apps)}


@router.get("/{app_id}", response_model=dict)
async def get_application(
    app_id: str,
    db: Session = Depends(get_db),
    gateway: LedgerGateway = Depends(get_ledger_gateway),
    actor: Actor = Depends(get_current_actor),
):
    service = ApplicationService(db, gateway)
    app = service.get(app_id)
    if actor.role == ActorRole.CITIZEN and app.applicant_ref != actor.ref:
        raise PermissionDeniedError("Citizens may only view their own applications")
    return service.to_dict(app)


@router.get("/{app_id}/approvals", response_model=dict)
async def approval_history(
    app_id: str,
    db: Session = Depends(get_db),
    gateway: LedgerGateway = Depends(get_ledger_gateway),
    actor: Actor = Depends(require_roles(ActorRole.REGISTRAR, ActorRole.ADMIN)),
):
    return ApplicationService(db, gateway).approval_history(app_id)


# Sync handlers: certification polls the ledger and runs in the threadpool

@router.post("/{app_id}/decision", response_model=dict)
def record_decision(
    app_id: str,
    request: DecisionRequest,
    db: Session = Depends(get_db),
    gateway: LedgerGateway = Depends(get_ledger_gateway),
    actor: Actor = Depends(require_roles(ActorRole.REGISTRAR, ActorRole.ADMIN)),
):
    service = ApplicationService(db, gateway)
    app = service.record_decision(app_id, actor, request.decision, request.comment)
    return service.to_dict(app)


@router.post("/{app_id}/certify", response_model=dict)
def certify_application(
    app_id: str,
    db: Session = Depends(get_db),
    gateway: LedgerGateway = Depends(get_ledger_gateway),
    actor: Actor = Depends(require_roles(ActorRole.REGISTRAR, ActorRole.ADMIN)),
):
    """Retry certification after a ledger outage or timeout."""
    service = CertificationService(db, gateway)
    prop = service.certify(app_id, actor)
    return service.public_property(prop.property_id)
