"""
Citizen API Routes

A citizen's own titles and the disputes that concern them.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import require_roles
from ..database import get_db
from ..dependencies import get_ledger_gateway
from ..models.db_models import ActorRole
from ..models.domain import Actor
from ..services.certification import CertificationService
from ..services.disputes import DisputeService
from ..services.ledger import LedgerGateway


router = APIRouter(prefix="/citizen", tags=["citizen"])

require_citizen = require_roles(ActorRole.CITIZEN)


@router.get("/properties", response_model=dict)
async def my_properties(
    db: Session = Depends(get_db),
    gateway: LedgerGateway = Depends(get_ledger_gateway),
    actor: Actor = Depends(require_citizen),
):
    service = CertificationService(db, gateway)
    properties = service.properties_for_owner(actor.ref)
    return {"properties": [service.property_to_dict(p) for p in properties], "total": len(properties)}


@router.get("/disputes", response_model=dict)
async def my_disputes(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_citizen),
):
    service = DisputeService(db)
    disputes = service.disputes_for_citizen(actor.ref)
    return {"disputes": [service.dispute_to_dict(d) for d in disputes], "total": len(disputes)}
