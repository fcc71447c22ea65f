"""
Verification Service

Public check of a title against the ledger. Accepts a property id or the
JSON payload printed in a certificate QR code:

    {"propertyId": "...", "contentHash": "...", "certificateNo": "..."}

Every outcome is a VerificationResult with a reason code; bad input and
ledger outages are answers, not exceptions.
"""
import json
import logging
from typing import Any, Dict, Optional, Union

from sqlalchemy.orm import Session

from ...exceptions import LedgerUnavailableError
from ...models.db_models import CertificateDB, CertificateStatus, PropertyDB
from ...models.domain import VerificationResult
from ..ledger import LedgerGateway
from .certification_service import CertificationService
from .hashing import property_content_hash

logger = logging.getLogger(__name__)


class VerificationReason:
    VERIFIED = "VERIFIED"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_QR_DATA = "INVALID_QR_DATA"
    PROPERTY_NOT_FOUND = "PROPERTY_NOT_FOUND"
    NOT_ON_CHAIN = "NOT_ON_CHAIN"
    LEDGER_RECORD_MISSING = "LEDGER_RECORD_MISSING"
    LEDGER_UNAVAILABLE = "LEDGER_UNAVAILABLE"
    PROPERTY_ID_MISMATCH = "PROPERTY_ID_MISMATCH"
    CONTENT_HASH_MISMATCH = "CONTENT_HASH_MISMATCH"
    QR_HASH_MISMATCH = "QR_HASH_MISMATCH"
    CERTIFICATE_REVOKED = "CERTIFICATE_REVOKED"


class VerificationService:

    def __init__(self, db: Session, gateway: LedgerGateway):
        self.db = db
        self.gateway = gateway

    def verify(self, query: Union[str, Dict[str, Any], None]) -> VerificationResult:
        parsed = self._parse(query)
        if isinstance(parsed, VerificationResult):
            return parsed
        property_id, qr_hash, certificate_no = parsed

        prop = self.db.get(PropertyDB, property_id)
        if prop is None:
            return VerificationResult(False, VerificationReason.PROPERTY_NOT_FOUND, property_id=property_id)

        public = CertificationService.property_to_dict(prop)
        if not prop.ledger_tx_hash:
            return VerificationResult(
                False, VerificationReason.NOT_ON_CHAIN, property_id=property_id, property=public,
            )

        try:
            record = self.gateway.lookup(prop.ledger_tx_hash)
        except LedgerUnavailableError as e:
            logger.warning(f"Verification of {property_id} could not reach the ledger: {e}")
            return VerificationResult(
                False, VerificationReason.LEDGER_UNAVAILABLE, property_id=property_id, property=public,
            )
        if record is None:
            return VerificationResult(
                False, VerificationReason.LEDGER_RECORD_MISSING, property_id=property_id, property=public,
            )

        on_chain = record.to_dict()
        current_hash = property_content_hash(prop)
        matches = {
            "property_id": record.payload.get("propertyId") == prop.property_id,
            "content_hash": record.payload.get("contentHash") == current_hash,
        }
        if qr_hash is not None:
            matches["qr_hash"] = qr_hash == current_hash

        def result(valid: bool, reason: str, cert_no: Optional[str] = None) -> VerificationResult:
            return VerificationResult(
                valid, reason,
                property_id=property_id,
                property=public,
                on_chain=on_chain,
                certificate_no=cert_no,
                matches=matches,
            )

        if not matches["property_id"]:
            return result(False, VerificationReason.PROPERTY_ID_MISMATCH)
        if not matches["content_hash"]:
            logger.warning(f"Content hash mismatch on {property_id}: stored record differs from ledger")
            return result(False, VerificationReason.CONTENT_HASH_MISMATCH)
        if qr_hash is not None and not matches["qr_hash"]:
            return result(False, VerificationReason.QR_HASH_MISMATCH)

        if certificate_no is not None:
            cert = self.db.get(CertificateDB, certificate_no)
            if cert is None or cert.property_id != property_id:
                return result(False, VerificationReason.INVALID_QR_DATA)
            if cert.status == CertificateStatus.REVOKED:
                return result(False, VerificationReason.CERTIFICATE_REVOKED, cert.certificate_no)
        else:
            cert = (
                self.db.query(CertificateDB)
                .filter(CertificateDB.property_id == property_id)
                .filter(CertificateDB.status == CertificateStatus.ACTIVE)
                .first()
            )

        return result(True, VerificationReason.VERIFIED, cert.certificate_no if cert else None)

    # =========================================================================
    # INPUT PARSING
    # =========================================================================

    @staticmethod
    def _parse(query):
        """Returns (property_id, qr_hash, certificate_no) or a failed result."""
        if isinstance(query, str):
            text = query.strip()
            if not text:
                return VerificationResult(False, VerificationReason.INVALID_INPUT)
            if not text.startswith("{"):
                return text, None, None
            try:
                query = json.loads(text)
            except (ValueError, RecursionError):
                return VerificationResult(False, VerificationReason.INVALID_QR_DATA)

        if not isinstance(query, dict):
            return VerificationResult(False, VerificationReason.INVALID_INPUT)

        property_id = query.get("propertyId")
        qr_hash = query.get("contentHash")
        certificate_no = query.get("certificateNo")
        if not isinstance(property_id, str) or not property_id.strip():
            return VerificationResult(False, VerificationReason.INVALID_QR_DATA)
        if qr_hash is not None and not isinstance(qr_hash, str):
            return VerificationResult(False, VerificationReason.INVALID_QR_DATA)
        if certificate_no is not None and not isinstance(certificate_no, str):
            return VerificationResult(False, VerificationReason.INVALID_QR_DATA)
        return property_id.strip(), qr_hash, certificate_no
