"""
Registrar API Routes

Registered-title lookup for the registrar desk.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import require_roles
from ..database import get_db
from ..dependencies import get_ledger_gateway
from ..models.db_models import ActorRole
from ..models.domain import Actor
from ..services.certification import CertificationService
from ..services.ledger import LedgerGateway


router = APIRouter(prefix="/registrar", tags=["registrar"])

require_registry_staff = require_roles(ActorRole.REGISTRAR, ActorRole.COURT, ActorRole.ADMIN)

QUICK_SEARCH_MIN_LENGTH = 2
QUICK_SEARCH_LIMIT = 20


@router.get("/properties", response_model=dict)
async def list_properties(
    search: Optional[str] = Query(None, description="Matches id, owner name and address"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=CertificationService.MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
    gateway: LedgerGateway = Depends(get_ledger_gateway),
    actor: Actor = Depends(require_registry_staff),
):
    service = CertificationService(db, gateway)
    result = service.list_properties(search=search, page=page, limit=limit)
    return {
        "properties": [service.property_to_dict(p) for p in result.items],
        "total": result.total,
        "page": result.page,
        "limit": result.limit,
        "has_more": result.has_more,
    }


@router.get("/search", response_model=dict)
async def search_properties(
    q: str = Query("", description="Search text"),
    db: Session = Depends(get_db),
    gateway: LedgerGateway = Depends(get_ledger_gateway),
    actor: Actor = Depends(require_registry_staff),
):
    """Typeahead lookup; queries shorter than two characters return nothing."""
    if len(q.strip()) < QUICK_SEARCH_MIN_LENGTH:
        return {"properties": []}
    service = CertificationService(db, gateway)
    result = service.list_properties(search=q, limit=QUICK_SEARCH_LIMIT)
    return {"properties": [service.property_to_dict(p) for p in result.items]}
