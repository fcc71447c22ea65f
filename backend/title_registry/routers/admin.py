"""
Admin API Routes

Approval policy and audit log access. Admin role required on every route.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..auth import require_roles
from ..database import get_db
from ..models.db_models import ActorRole, ApprovalType, AuditAction
from ..models.domain import Actor
from ..services.approvals import ApprovalSettingsService
from ..services.audit import AuditLogService


router = APIRouter(prefix="/admin", tags=["admin"])

require_admin = require_roles(ActorRole.ADMIN)


# =============================================================================
# REQUEST MODELS
# =============================================================================

class ApprovalSettingsUpdate(BaseModel):
    """Partial update; omitted fields keep their current value."""
    enabled: Optional[bool] = None
    required_approvals: Optional[int] = Field(None, description="1 to 5")
    approval_type: Optional[ApprovalType] = None
    approval_sequence: Optional[List[str]] = Field(
        None, description="Registrar roles in the order sequential approval expects them"
    )


# =============================================================================
# APPROVAL SETTINGS
# =============================================================================

@router.get("/approval-settings", response_model=dict)
async def get_approval_settings(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin),
):
    return ApprovalSettingsService(db).load().to_dict()


@router.put("/approval-settings", response_model=dict)
async def update_approval_settings(
    request: ApprovalSettingsUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin),
):
    settings = ApprovalSettingsService(db).update(actor, **request.model_dump(exclude_none=True))
    return settings.to_dict()


# =============================================================================
# AUDIT LOG
# =============================================================================

@router.get("/audit", response_model=dict)
async def query_audit_log(
    subject_ref: Optional[str] = Query(None),
    actor_ref: Optional[str] = Query(None),
    action: Optional[AuditAction] = Query(None),
    since: Optional[datetime] = Query(None),
    until: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=AuditLogService.MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin),
):
    result = AuditLogService(db).query(
        subject_ref=subject_ref,
        actor_ref=actor_ref,
        action=action,
        since=since,
        until=until,
        page=page,
        limit=limit,
    )
    return {
        "entries": [AuditLogService.to_dict(e) for e in result.items],
        "total": result.total,
        "page": result.page,
        "limit": result.limit,
        "has_more": result.has_more,
    }


@router.get("/audit/{subject_ref}", response_model=dict)
async def audit_trail(
    subject_ref: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin),
):
    entries = AuditLogService(db).trail(subject_ref)
    return {"subject_ref": subject_ref, "entries": [AuditLogService.to_dict(e) for e in entries]}
