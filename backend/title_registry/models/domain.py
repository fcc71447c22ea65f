"""
Title Registry - Domain Values

Plain immutable values passed between services. ORM rows never leave the
service layer as configuration; these do.
"""
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Tuple

from .db_models import ActorRole, ApprovalType


@dataclass(frozen=True)
class Actor:
    """Already-authenticated caller, as asserted by the identity provider."""
    ref: str
    role: ActorRole
    registrar_role: Optional[str] = None

    @property
    def role_value(self) -> str:
        return self.role.value if isinstance(self.role, ActorRole) else str(self.role)


SYSTEM_ACTOR = Actor(ref="system", role=ActorRole.ADMIN)


@dataclass(frozen=True)
class ApprovalSettings:
    """Snapshot of the approval policy, fetched once per operation."""
    enabled: bool = True
    required_approvals: int = 2
    approval_type: ApprovalType = ApprovalType.PARALLEL
    approval_sequence: Tuple[str, ...] = ()
    version: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "required_approvals": self.required_approvals,
            "approval_type": self.approval_type.value,
            "approval_sequence": list(self.approval_sequence),
            "version": self.version,
        }


@dataclass(frozen=True)
class PropertyDraft:
    """Fields a citizen files for a title."""
    owner_name: str
    address_line1: str
    district: str
    state: str
    pincode: str
    area_sqft: float
    value: float
    address_line2: str = ""
    owner_ref: Optional[str] = None


@dataclass
class VerificationResult:
    """Public verification answer. Never an exception."""
    valid: bool
    reason: str
    property_id: Optional[str] = None
    property: Optional[Dict[str, Any]] = None
    on_chain: Optional[Dict[str, Any]] = None
    certificate_no: Optional[str] = None
    matches: Dict[str, bool] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ApprovalProgress:
    approved: int
    counted: int
    required: int

    @property
    def remaining(self) -> int:
        return max(self.required - self.counted, 0)

    def to_dict(self) -> Dict[str, int]:
        return {
            "approved": self.approved,
            "counted": self.counted,
            "required": self.required,
            "remaining": self.remaining,
        }


@dataclass
class Page:
    items: List[Any]
    total: int
    page: int
    limit: int

    @property
    def has_more(self) -> bool:
        return self.page * self.limit < self.total
