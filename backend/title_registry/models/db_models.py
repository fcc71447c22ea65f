"""
Title Registry - SQLAlchemy ORM Models

One table per entity, keyed by natural id. Mutable entities carry a
`version` column wired as the mapper's version_id_col: a write that observes
a stale version raises StaleDataError instead of overwriting.
"""
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    Column, String, Integer, Float, DateTime, Text, JSON, ForeignKey,
    Enum as SQLEnum, Boolean, Index, UniqueConstraint, event, text,
)
from sqlalchemy.orm import relationship

from ..database import Base
from ..exceptions import AuditLogImmutableError


def utcnow() -> datetime:
    """Naive UTC timestamp (stored the same way on every backend)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to the naive UTC form stored in the tables."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# =============================================================================
# ENUMS
# =============================================================================

class ActorRole(str, Enum):
    """Roles asserted by the identity provider."""
    CITIZEN = "citizen"
    REGISTRAR = "registrar"
    COURT = "court"
    ADMIN = "admin"


class ApplicationKind(str, Enum):
    ISSUE = "issue"
    TRANSFER = "transfer"
    CORRECTION = "correction"


class ApplicationStatus(str, Enum):
    PENDING = "pending"
    UNDER_REVIEW = "under-review"
    APPROVED = "approved"
    REJECTED = "rejected"


class CertificationState(str, Enum):
    """Saga progress for an application's ledger certification."""
    NONE = "none"
    RESERVED = "reserved"
    SUBMITTED = "submitted"
    CERTIFIED = "certified"


class Decision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class PropertyStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    DISPUTED = "disputed"


class DisputeStatus(str, Enum):
    OPEN = "open"
    IN_COURT = "in-court"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class CaseStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"


class ApprovalType(str, Enum):
    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"


class CertificateStatus(str, Enum):
    ACTIVE = "active"
    REVOKED = "revoked"


class AuditAction(str, Enum):
    """Every state transition the core performs."""
    APPLICATION_SUBMITTED = "APPLICATION_SUBMITTED"
    APPROVAL_RECORDED = "APPROVAL_RECORDED"
    APPLICATION_REJECTED = "APPLICATION_REJECTED"
    APPLICATION_APPROVED = "APPLICATION_APPROVED"
    CERTIFICATION_FAILED = "CERTIFICATION_FAILED"
    CERTIFICATE_GENERATED = "CERTIFICATE_GENERATED"
    CERTIFICATE_REVOKED = "CERTIFICATE_REVOKED"
    PROPERTY_TRANSFERRED = "PROPERTY_TRANSFERRED"
    PROPERTY_CORRECTED = "PROPERTY_CORRECTED"
    DISPUTE_RAISED = "DISPUTE_RAISED"
    DISPUTE_REFERRED = "DISPUTE_REFERRED"
    DISPUTE_DISMISSED = "DISPUTE_DISMISSED"
    COURT_ORDER_ISSUED = "COURT_ORDER_ISSUED"
    HEARING_SCHEDULED = "HEARING_SCHEDULED"
    CASE_CLOSED = "CASE_CLOSED"
    PROPERTY_FROZEN = "PROPERTY_FROZEN"
    PROPERTY_UNFROZEN = "PROPERTY_UNFROZEN"
    SETTINGS_UPDATED = "SETTINGS_UPDATED"


ACTIVE_DISPUTE_STATUSES = (DisputeStatus.OPEN, DisputeStatus.IN_COURT)


# =============================================================================
# APPLICATIONS
# =============================================================================

class ApplicationDB(Base):
    """A citizen filing: issue a new title, transfer it, or correct it."""
    __tablename__ = "applications"

    app_id = Column(String(32), primary_key=True)
    kind = Column(SQLEnum(ApplicationKind), nullable=False, index=True)
    status = Column(SQLEnum(ApplicationStatus), nullable=False, default=ApplicationStatus.PENDING, index=True)
    applicant_ref = Column(String(64), nullable=False, index=True)

    # Existing title for transfer / correction
    target_property_id = Column(String(48), nullable=True, index=True)

    # Property draft
    owner_name = Column(String(255), nullable=False)
    owner_ref = Column(String(64), nullable=True)
    address_line1 = Column(String(255), nullable=False)
    address_line2 = Column(String(255), nullable=True)
    district = Column(String(100), nullable=False)
    state = Column(String(100), nullable=False)
    pincode = Column(String(16), nullable=False)
    area_sqft = Column(Float, nullable=False)
    value = Column(Float, nullable=False)
    document_refs = Column(JSON, nullable=False, default=list)
    notes = Column(Text, nullable=True)

    rejection_reason = Column(Text, nullable=True)

    # Binding established by certification
    property_id = Column(String(48), nullable=True, index=True)
    ledger_tx_hash = Column(String(80), nullable=True)
    ledger_block_ref = Column(String(64), nullable=True)

    # Certification saga (idempotency key = app_id)
    certification_state = Column(SQLEnum(CertificationState), nullable=False, default=CertificationState.NONE)
    reserved_property_id = Column(String(48), nullable=True)
    submission_id = Column(String(80), nullable=True)
    reserved_at = Column(DateTime, nullable=True)
    last_certification_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    decided_at = Column(DateTime, nullable=True)

    version = Column(Integer, nullable=False)

    decisions = relationship(
        "ApplicationDecisionDB",
        back_populates="application",
        order_by="ApplicationDecisionDB.sequence",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def draft_dict(self) -> dict:
        return {
            "owner_name": self.owner_name,
            "owner_ref": self.owner_ref,
            "address": {
                "line1": self.address_line1,
                "line2": self.address_line2 or "",
                "district": self.district,
                "state": self.state,
                "pincode": self.pincode,
            },
            "area_sqft": self.area_sqft,
            "value": self.value,
        }


class ApplicationDecisionDB(Base):
    """One registrar vote. A registrar votes at most once per application."""
    __tablename__ = "application_decisions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    application_id = Column(String(32), ForeignKey("applications.app_id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    registrar_ref = Column(String(64), nullable=False)
    registrar_role = Column(String(64), nullable=True)
    decision = Column(SQLEnum(Decision), nullable=False)
    comment = Column(Text, nullable=True)
    decided_at = Column(DateTime, default=utcnow, nullable=False)

    application = relationship("ApplicationDB", back_populates="decisions")

    __table_args__ = (
        UniqueConstraint("application_id", "registrar_ref", name="uq_decision_per_registrar"),
    )


# =============================================================================
# PROPERTIES & CERTIFICATES
# =============================================================================

class PropertyDB(Base):
    """A ledger-certified title record."""
    __tablename__ = "properties"

    property_id = Column(String(48), primary_key=True)
    owner_ref = Column(String(64), nullable=True, index=True)
    owner_name = Column(String(255), nullable=False)
    address_line1 = Column(String(255), nullable=False)
    address_line2 = Column(String(255), nullable=True)
    district = Column(String(100), nullable=False)
    state = Column(String(100), nullable=False)
    pincode = Column(String(16), nullable=False)
    area_sqft = Column(Float, nullable=False)
    value = Column(Float, nullable=False)
    status = Column(SQLEnum(PropertyStatus), nullable=False, default=PropertyStatus.PENDING, index=True)

    ledger_tx_hash = Column(String(80), nullable=True, index=True)
    ledger_block_ref = Column(String(64), nullable=True)
    content_hash = Column(String(64), nullable=True)
    document_refs = Column(JSON, nullable=False, default=list)

    source_application_id = Column(String(32), nullable=True)
    last_application_id = Column(String(32), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def address_dict(self) -> dict:
        return {
            "line1": self.address_line1,
            "line2": self.address_line2 or "",
            "district": self.district,
            "state": self.state,
            "pincode": self.pincode,
        }


class CertificateDB(Base):
    """Certificate record bound to one ledger transaction."""
    __tablename__ = "certificates"

    certificate_no = Column(String(32), primary_key=True)
    property_id = Column(String(48), ForeignKey("properties.property_id"), nullable=False, index=True)
    application_id = Column(String(32), nullable=False, unique=True)
    ledger_tx_hash = Column(String(80), nullable=False)
    content_hash = Column(String(64), nullable=False)
    qr_payload = Column(Text, nullable=False)
    status = Column(SQLEnum(CertificateStatus), nullable=False, default=CertificateStatus.ACTIVE)
    issued_by = Column(String(64), nullable=True)
    issued_at = Column(DateTime, default=utcnow, nullable=False)
    revoked_at = Column(DateTime, nullable=True)


# =============================================================================
# DISPUTES & CASES
# =============================================================================

class DisputeDB(Base):
    """A challenge against a title. While active the property is frozen."""
    __tablename__ = "disputes"

    dispute_id = Column(String(32), primary_key=True)
    property_id = Column(String(48), ForeignKey("properties.property_id"), nullable=False, index=True)
    raised_by = Column(String(64), nullable=False)
    reason = Column(Text, nullable=False)
    status = Column(SQLEnum(DisputeStatus), nullable=False, default=DisputeStatus.OPEN, index=True)
    # Ordered list of {type, message, timestamp, tx_ref?}
    timeline = Column(JSON, nullable=False, default=list)
    case_id = Column(String(32), nullable=True)
    resolution = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        # At most one open / in-court dispute per property
        Index(
            "uq_disputes_active_property",
            "property_id",
            unique=True,
            postgresql_where=text("status IN ('OPEN', 'IN_COURT')"),
            sqlite_where=text("status IN ('OPEN', 'IN_COURT')"),
        ),
    )


class CaseDB(Base):
    """Court case, 1:1 with the dispute it was referred from."""
    __tablename__ = "court_cases"

    case_id = Column(String(32), primary_key=True)
    dispute_id = Column(String(32), ForeignKey("disputes.dispute_id"), nullable=False, unique=True)
    property_id = Column(String(48), nullable=False, index=True)
    status = Column(SQLEnum(CaseStatus), nullable=False, default=CaseStatus.ACTIVE, index=True)
    # Ordered list of {text, issued_by, timestamp}
    orders = Column(JSON, nullable=False, default=list)
    # Ordered list of {date, venue?, scheduled_by, timestamp}
    hearings = Column(JSON, nullable=False, default=list)
    resolution = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    closed_at = Column(DateTime, nullable=True)

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


# =============================================================================
# CONFIGURATION & AUDIT
# =============================================================================

class ApprovalSettingsDB(Base):
    """Singleton approval policy row (id=1)."""
    __tablename__ = "approval_settings"

    id = Column(Integer, primary_key=True)
    enabled = Column(Boolean, nullable=False, default=True)
    required_approvals = Column(Integer, nullable=False, default=2)
    approval_type = Column(SQLEnum(ApprovalType), nullable=False, default=ApprovalType.PARALLEL)
    # Registrar roles in the order sequential approval expects them
    approval_sequence = Column(JSON, nullable=False, default=list)
    updated_by = Column(String(64), nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class AuditEntryDB(Base):
    """Append-only record of a state transition."""
    __tablename__ = "audit_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    actor_ref = Column(String(64), nullable=False, index=True)
    actor_role = Column(String(32), nullable=True)
    action = Column(SQLEnum(AuditAction), nullable=False, index=True)
    subject_ref = Column(String(64), nullable=False, index=True)
    timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)
    ledger_tx_ref = Column(String(80), nullable=True)
    details = Column(JSON, nullable=True)


@event.listens_for(AuditEntryDB, "before_update")
def _reject_audit_update(mapper, connection, target):
    raise AuditLogImmutableError(f"Audit entry {target.id} cannot be modified")


@event.listens_for(AuditEntryDB, "before_delete")
def _reject_audit_delete(mapper, connection, target):
    raise AuditLogImmutableError(f"Audit entry {target.id} cannot be deleted")
