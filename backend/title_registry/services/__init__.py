"""Title Registry - Services"""
from .approvals import ApplicationService, ApprovalCoordinator, ApprovalSettingsService
from .audit import AuditLogService
from .certification import CertificationService, VerificationService
from .disputes import DisputeService
from .ledger import InMemoryLedger, LedgerGateway

__all__ = [
    "ApplicationService",
    "ApprovalCoordinator",
    "ApprovalSettingsService",
    "AuditLogService",
    "CertificationService",
    "VerificationService",
    "DisputeService",
    "InMemoryLedger",
    "LedgerGateway",
]
