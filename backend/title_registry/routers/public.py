"""
Public API Routes

Unauthenticated title verification and lookup.
"""
from typing import Any, Dict, Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import get_ledger_gateway
from ..services.certification import CertificationService, VerificationService
from ..services.ledger import LedgerGateway


router = APIRouter(prefix="/public", tags=["public"])


class VerifyRequest(BaseModel):
    """Either a property id or the QR payload (JSON string or object)."""
    property_id: Optional[str] = Field(None, description="Property id to verify")
    qr_data: Optional[Union[str, Dict[str, Any]]] = Field(None, description="Certificate QR payload")


@router.post("/verify", response_model=dict)
async def verify(
    request: VerifyRequest,
    db: Session = Depends(get_db),
    gateway: LedgerGateway = Depends(get_ledger_gateway),
):
    """Always 200: the outcome is carried by `valid` and `reason`."""
    query = request.qr_data if request.qr_data is not None else request.property_id
    return VerificationService(db, gateway).verify(query).to_dict()


@router.get("/properties/{property_id}", response_model=dict)
async def get_property(
    property_id: str,
    db: Session = Depends(get_db),
    gateway: LedgerGateway = Depends(get_ledger_gateway),
):
    return CertificationService(db, gateway).public_property(property_id)
