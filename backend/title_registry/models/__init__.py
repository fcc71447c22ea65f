"""Title Registry - Data Models"""
from .db_models import (
    # Enums
    ActorRole, ApplicationKind, ApplicationStatus, CertificationState, Decision,
    PropertyStatus, DisputeStatus, CaseStatus, ApprovalType, CertificateStatus,
    AuditAction,
    # Tables
    ApplicationDB, ApplicationDecisionDB, PropertyDB, CertificateDB,
    DisputeDB, CaseDB, ApprovalSettingsDB, AuditEntryDB,
    utcnow, as_naive_utc,
)
from .domain import (
    Actor, SYSTEM_ACTOR, ApprovalSettings, PropertyDraft, VerificationResult,
    ApprovalProgress, Page,
)

__all__ = [
    "ActorRole", "ApplicationKind", "ApplicationStatus", "CertificationState", "Decision",
    "PropertyStatus", "DisputeStatus", "CaseStatus", "ApprovalType", "CertificateStatus",
    "AuditAction",
    "ApplicationDB", "ApplicationDecisionDB", "PropertyDB", "CertificateDB",
    "DisputeDB", "CaseDB", "ApprovalSettingsDB", "AuditEntryDB",
    "utcnow", "as_naive_utc",
    "Actor", "SYSTEM_ACTOR", "ApprovalSettings", "PropertyDraft", "VerificationResult",
    "ApprovalProgress", "Page",
]
