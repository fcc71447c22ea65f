"""
Certification Service

Binds an approved application to a ledger transaction and a property record.
The three stores (application, property, ledger) cannot share a transaction,
so certification runs as a saga keyed by the application id:

    1. reserve     CAS on the application row (certification_state=reserved)
    2. re-check    target property must not be disputed
    3. submit      ledger write, idempotency key = application id
    4. record      submission_id persisted (certification_state=submitted)
    5. confirm     bounded polling
    6. persist     property + certificate + application + audit, one commit

A timeout keeps the submission so the next certify() re-polls it and never
writes to the ledger twice. Any other failure before confirmation releases
the reservation; the ledger key stays the application id, so a retry reuses
the same submission. No property is ever approved without a confirmed ledger
transaction.
"""
import json
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ...config import CERTIFICATION_RESERVATION_TTL_SECONDS
from ...exceptions import (
    CertificationInProgressError,
    ConcurrentModificationError,
    InvalidStateError,
    LedgerTimeoutError,
    LedgerUnavailableError,
    NotFoundError,
    PropertyFrozenError,
    RegistryError,
)
from ...models.db_models import (
    ACTIVE_DISPUTE_STATUSES,
    ApplicationDB,
    ApplicationKind,
    ApplicationStatus,
    AuditAction,
    CertificateDB,
    CertificateStatus,
    CertificationState,
    DisputeDB,
    PropertyDB,
    PropertyStatus,
    utcnow,
)
from ...models.domain import Actor, Page
from ..approvals.coordinator import ApprovalCoordinator
from ..approvals.settings_service import ApprovalSettingsService
from ..approvals.state_machine import ApplicationStateMachine
from ..audit import AuditLogService
from ..ledger import LedgerGateway, LedgerReceipt
from ..persistence import commit_or_conflict, flush_or_conflict, new_id
from .hashing import certificate_number, content_hash

logger = logging.getLogger(__name__)

IN_FLIGHT_STATES = (CertificationState.RESERVED, CertificationState.SUBMITTED)

# Columns matched by the registrar property search
SEARCHABLE_PROPERTY_COLUMNS = (
    PropertyDB.property_id,
    PropertyDB.owner_name,
    PropertyDB.address_line1,
    PropertyDB.district,
    PropertyDB.state,
    PropertyDB.pincode,
)


class CertificationService:
    """Runs the certification saga and serves certified property records."""

    MAX_PAGE_SIZE = 200

    def __init__(
        self,
        db: Session,
        gateway: LedgerGateway,
        coordinator: Optional[ApprovalCoordinator] = None,
        reservation_ttl: float = CERTIFICATION_RESERVATION_TTL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.gateway = gateway
        self.coordinator = coordinator or ApprovalCoordinator()
        self.reservation_ttl = timedelta(seconds=reservation_ttl)
        self.clock = clock
        self.state_machine = ApplicationStateMachine()
        self.audit = AuditLogService(db)

    # =========================================================================
    # SAGA
    # =========================================================================

    def certify(self, application_id: str, actor: Actor) -> PropertyDB:
        """
        Certify an application whose approval quorum is met.

        Idempotent: an already certified application returns its property.

        Raises:
            NotFoundError, InvalidStateError, CertificationInProgressError,
            PropertyFrozenError, LedgerUnavailableError, LedgerTimeoutError,
            ConcurrentModificationError
        """
        app = self._load(application_id)

        if app.certification_state == CertificationState.CERTIFIED:
            logger.info(f"{application_id} already certified as {app.property_id}")
            return self.db.get(PropertyDB, app.property_id)

        if app.status == ApplicationStatus.REJECTED:
            raise InvalidStateError(f"Application {application_id} was rejected")

        settings = ApprovalSettingsService(self.db).load()
        if not self.coordinator.is_quorum_met(app, settings):
            progress = self.coordinator.progress(app, settings)
            raise InvalidStateError(
                f"Approval quorum not met for {application_id}",
                details=progress.to_dict(),
            )

        self._reserve(app)

        try:
            if app.submission_id is None:
                self._ensure_not_frozen(app)
                self._submit(app)
            receipt = self.gateway.await_confirmation(app.submission_id)
        except LedgerTimeoutError as e:
            self._hold_for_repoll(application_id, actor, e)
            raise
        except (
            PropertyFrozenError, LedgerUnavailableError, NotFoundError, ConcurrentModificationError,
        ) as e:
            self._release(application_id, actor, e)
            raise

        return self._persist(application_id, receipt, actor)

    # =========================================================================
    # SAGA STEPS
    # =========================================================================

    def _reserve(self, app: ApplicationDB) -> None:
        """Compare-and-set on the application version. One holder at a time."""
        now = self.clock()
        if app.reserved_at is not None and now - app.reserved_at < self.reservation_ttl:
            raise CertificationInProgressError(
                f"Certification of {app.app_id} is already in progress",
                details={"reserved_at": app.reserved_at.isoformat()},
            )
        if app.reserved_at is not None:
            logger.warning(f"Taking over expired certification reservation on {app.app_id}")

        if app.certification_state == CertificationState.NONE:
            app.certification_state = CertificationState.RESERVED
        if app.reserved_property_id is None:
            if app.kind == ApplicationKind.ISSUE:
                app.reserved_property_id = new_id("PROP")
            else:
                app.reserved_property_id = app.target_property_id
        app.reserved_at = now

        try:
            self.db.commit()
        except StaleDataError as e:
            self.db.rollback()
            raise CertificationInProgressError(
                f"Certification of {app.app_id} was claimed concurrently",
            ) from e
        logger.info(f"Reserved certification of {app.app_id} for {app.reserved_property_id}")

    def _ensure_not_frozen(self, app: ApplicationDB) -> None:
        if app.kind == ApplicationKind.ISSUE:
            return
        prop = self.db.get(PropertyDB, app.target_property_id)
        if prop is None:
            raise NotFoundError(f"Property {app.target_property_id} not found")
        if self._is_frozen(prop):
            raise PropertyFrozenError(
                f"Property {prop.property_id} is under dispute",
                details={"property_id": prop.property_id},
            )

    def _is_frozen(self, prop: PropertyDB) -> bool:
        if prop.status == PropertyStatus.DISPUTED:
            return True
        active = (
            self.db.query(DisputeDB.dispute_id)
            .filter(DisputeDB.property_id == prop.property_id)
            .filter(DisputeDB.status.in_(ACTIVE_DISPUTE_STATUSES))
            .first()
        )
        return active is not None

    def _submit(self, app: ApplicationDB) -> None:
        payload = self.ledger_payload(app)
        submission_id = self.gateway.submit(payload, idempotency_key=app.app_id)
        app.submission_id = submission_id
        app.certification_state = CertificationState.SUBMITTED
        commit_or_conflict(self.db, app.app_id)

    def _persist(self, application_id: str, receipt: LedgerReceipt, actor: Actor) -> PropertyDB:
        app = self._load(application_id)
        draft = app.draft_dict()
        digest = content_hash(draft["owner_name"], draft["address"], draft["area_sqft"], draft["value"])

        if app.kind == ApplicationKind.ISSUE:
            prop = PropertyDB(
                property_id=app.reserved_property_id,
                source_application_id=app.app_id,
            )
            self.db.add(prop)
        else:
            prop = self.db.get(PropertyDB, app.reserved_property_id)
            if prop is None:
                raise NotFoundError(f"Property {app.reserved_property_id} not found")
            if self._is_frozen(prop):
                # Ledger already holds the write; keep it and finish once unfrozen
                error = PropertyFrozenError(
                    f"Property {prop.property_id} was disputed before certification completed",
                    details={"property_id": prop.property_id, "tx_hash": receipt.tx_hash},
                )
                self._hold_for_repoll(application_id, actor, error)
                raise error

        prop.owner_name = app.owner_name
        prop.owner_ref = app.owner_ref or app.applicant_ref
        prop.address_line1 = app.address_line1
        prop.address_line2 = app.address_line2
        prop.district = app.district
        prop.state = app.state
        prop.pincode = app.pincode
        prop.area_sqft = app.area_sqft
        prop.value = app.value
        prop.document_refs = list(app.document_refs or [])
        prop.status = PropertyStatus.APPROVED
        prop.ledger_tx_hash = receipt.tx_hash
        prop.ledger_block_ref = receipt.block_ref
        prop.content_hash = digest
        prop.last_application_id = app.app_id
        prop.updated_at = utcnow()

        revoked = self._revoke_certificates(prop.property_id)
        certificate = self._issue_certificate(prop, app, actor)

        now = utcnow()
        app.status = self.state_machine.transition(app.status, "approve")
        app.certification_state = CertificationState.CERTIFIED
        app.property_id = prop.property_id
        app.ledger_tx_hash = receipt.tx_hash
        app.ledger_block_ref = receipt.block_ref
        app.decided_at = now
        app.reserved_at = None
        app.last_certification_error = None

        try:
            flush_or_conflict(self.db, app.app_id)
        except RegistryError:
            self._release_hold(application_id)
            raise

        self.audit.record(
            actor, AuditAction.APPLICATION_APPROVED, app.app_id,
            ledger_tx_ref=receipt.tx_hash,
            details={"property_id": prop.property_id},
        )
        for old in revoked:
            self.audit.record(
                actor, AuditAction.CERTIFICATE_REVOKED, prop.property_id,
                details={"certificate_no": old.certificate_no, "superseded_by": certificate.certificate_no},
            )
        self.audit.record(
            actor, AuditAction.CERTIFICATE_GENERATED, prop.property_id,
            ledger_tx_ref=receipt.tx_hash,
            details={
                "application_id": app.app_id,
                "certificate_no": certificate.certificate_no,
                "block_ref": receipt.block_ref,
                "content_hash": digest,
            },
        )
        if app.kind == ApplicationKind.TRANSFER:
            self.audit.record(
                actor, AuditAction.PROPERTY_TRANSFERRED, prop.property_id,
                ledger_tx_ref=receipt.tx_hash,
                details={"application_id": app.app_id, "new_owner": app.owner_name},
            )
        elif app.kind == ApplicationKind.CORRECTION:
            self.audit.record(
                actor, AuditAction.PROPERTY_CORRECTED, prop.property_id,
                ledger_tx_ref=receipt.tx_hash,
                details={"application_id": app.app_id},
            )

        try:
            commit_or_conflict(self.db, app.app_id)
        except RegistryError:
            self._release_hold(application_id)
            raise

        logger.info(
            f"Certified {app.app_id} ({app.kind.value}) -> {prop.property_id} "
            f"tx={receipt.tx_hash} cert={certificate.certificate_no}"
        )
        return prop

    # =========================================================================
    # FAILURE HANDLING
    # =========================================================================

    def _release(self, application_id: str, actor: Actor, error: RegistryError) -> None:
        """Drop the reservation entirely; the next certify starts over."""
        self.db.rollback()
        app = self._load(application_id)
        app.certification_state = CertificationState.NONE
        app.submission_id = None
        app.reserved_at = None
        app.last_certification_error = error.code
        self._record_failure(app, actor, error, released=True)

    def _hold_for_repoll(self, application_id: str, actor: Actor, error: RegistryError) -> None:
        """Keep the submission, drop the holder; the next certify re-polls."""
        self.db.rollback()
        app = self._load(application_id)
        app.reserved_at = None
        app.last_certification_error = error.code
        self._record_failure(app, actor, error, released=False)

    def _release_hold(self, application_id: str) -> None:
        self.db.rollback()
        app = self._load(application_id)
        app.reserved_at = None
        try:
            self.db.commit()
        except StaleDataError:
            self.db.rollback()
            logger.warning(f"Could not clear certification hold on {application_id}; it expires after the TTL")

    def _record_failure(self, app: ApplicationDB, actor: Actor, error: RegistryError, released: bool) -> None:
        self.audit.record(
            actor, AuditAction.CERTIFICATION_FAILED, app.app_id,
            details={
                "error": error.code,
                "message": error.message,
                "retryable": error.retryable,
                "reservation_released": released,
                "submission_id": app.submission_id,
            },
        )
        try:
            self.db.commit()
        except StaleDataError:
            self.db.rollback()
            logger.warning(f"Could not record certification failure on {app.app_id}; it expires after the TTL")
        logger.warning(f"Certification of {app.app_id} failed: {error.code} {error.message}")

    # =========================================================================
    # CERTIFICATES
    # =========================================================================

    def _revoke_certificates(self, property_id: str):
        active = (
            self.db.query(CertificateDB)
            .filter(CertificateDB.property_id == property_id)
            .filter(CertificateDB.status == CertificateStatus.ACTIVE)
            .all()
        )
        now = utcnow()
        for cert in active:
            cert.status = CertificateStatus.REVOKED
            cert.revoked_at = now
        return active

    def _issue_certificate(self, prop: PropertyDB, app: ApplicationDB, actor: Actor) -> CertificateDB:
        number = certificate_number(prop.property_id, prop.ledger_tx_hash)
        cert = CertificateDB(
            certificate_no=number,
            property_id=prop.property_id,
            application_id=app.app_id,
            ledger_tx_hash=prop.ledger_tx_hash,
            content_hash=prop.content_hash,
            qr_payload=self.qr_payload(prop.property_id, prop.content_hash, number),
            status=CertificateStatus.ACTIVE,
            issued_by=actor.ref,
        )
        self.db.add(cert)
        return cert

    @staticmethod
    def qr_payload(property_id: str, digest: str, certificate_no: str) -> str:
        return json.dumps(
            {"propertyId": property_id, "contentHash": digest, "certificateNo": certificate_no},
            sort_keys=True,
        )

    # =========================================================================
    # READ
    # =========================================================================

    def ledger_payload(self, app: ApplicationDB) -> Dict[str, Any]:
        draft = app.draft_dict()
        payload = {
            "type": app.kind.value.upper(),
            "applicationId": app.app_id,
            "propertyId": app.reserved_property_id,
            "owner": draft["owner_name"],
            "ownerRef": draft["owner_ref"] or app.applicant_ref,
            "contentHash": content_hash(
                draft["owner_name"], draft["address"], draft["area_sqft"], draft["value"]
            ),
            "documentRefs": list(app.document_refs or []),
        }
        if app.kind != ApplicationKind.ISSUE:
            prior = self.db.get(PropertyDB, app.target_property_id)
            payload["previousTxHash"] = prior.ledger_tx_hash if prior else None
        return payload

    def public_property(self, property_id: str) -> Dict[str, Any]:
        """Public view of a certified title."""
        prop = self.db.get(PropertyDB, property_id)
        if prop is None or prop.ledger_tx_hash is None:
            raise NotFoundError(f"Property {property_id} not found")
        data = self.property_to_dict(prop)
        cert = self.active_certificate(property_id)
        data["certificate"] = self.certificate_to_dict(cert) if cert else None
        return data

    def list_properties(self, search: Optional[str] = None, page: int = 1, limit: int = 50) -> Page:
        """
        Certified titles, newest first, for the registrar desk.

        `search` is a case-insensitive substring match on the property id,
        owner name and address fields. Disputed titles are included.
        """
        page = max(page, 1)
        limit = min(max(limit, 1), self.MAX_PAGE_SIZE)

        q = self.db.query(PropertyDB).filter(PropertyDB.ledger_tx_hash.isnot(None))
        term = (search or "").strip()
        if term:
            q = q.filter(or_(*[
                column.icontains(term, autoescape=True) for column in SEARCHABLE_PROPERTY_COLUMNS
            ]))

        total = q.count()
        items = (
            q.order_by(PropertyDB.created_at.desc(), PropertyDB.property_id)
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return Page(items=items, total=total, page=page, limit=limit)

    def properties_for_owner(self, owner_ref: str) -> List[PropertyDB]:
        """Certified titles currently held by `owner_ref`."""
        return (
            self.db.query(PropertyDB)
            .filter(PropertyDB.owner_ref == owner_ref)
            .filter(PropertyDB.ledger_tx_hash.isnot(None))
            .order_by(PropertyDB.created_at.desc(), PropertyDB.property_id)
            .all()
        )

    def active_certificate(self, property_id: str) -> Optional[CertificateDB]:
        return (
            self.db.query(CertificateDB)
            .filter(CertificateDB.property_id == property_id)
            .filter(CertificateDB.status == CertificateStatus.ACTIVE)
            .first()
        )

    def _load(self, application_id: str) -> ApplicationDB:
        app = self.db.get(ApplicationDB, application_id)
        if app is None:
            raise NotFoundError(f"Application {application_id} not found")
        return app

    @staticmethod
    def property_to_dict(prop: PropertyDB) -> Dict[str, Any]:
        return {
            "property_id": prop.property_id,
            "owner_name": prop.owner_name,
            "owner_ref": prop.owner_ref,
            "address": prop.address_dict(),
            "area_sqft": prop.area_sqft,
            "value": prop.value,
            "status": prop.status.value,
            "ledger_tx_hash": prop.ledger_tx_hash,
            "ledger_block_ref": prop.ledger_block_ref,
            "content_hash": prop.content_hash,
            "document_refs": list(prop.document_refs or []),
            "updated_at": prop.updated_at.isoformat() if prop.updated_at else None,
        }

    @staticmethod
    def certificate_to_dict(cert: CertificateDB) -> Dict[str, Any]:
        return {
            "certificate_no": cert.certificate_no,
            "property_id": cert.property_id,
            "application_id": cert.application_id,
            "ledger_tx_hash": cert.ledger_tx_hash,
            "content_hash": cert.content_hash,
            "qr_payload": cert.qr_payload,
            "status": cert.status.value,
            "issued_at": cert.issued_at.isoformat() if cert.issued_at else None,
            "revoked_at": cert.revoked_at.isoformat() if cert.revoked_at else None,
        }
