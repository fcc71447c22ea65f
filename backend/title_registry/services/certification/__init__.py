"""Certification saga, verification and content hashing."""
from .certification_service import CertificationService
from .hashing import certificate_number, content_hash, property_content_hash
from .verification_service import VerificationReason, VerificationService

__all__ = [
    "CertificationService",
    "VerificationService",
    "VerificationReason",
    "certificate_number",
    "content_hash",
    "property_content_hash",
]
