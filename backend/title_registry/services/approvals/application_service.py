"""
Application Service

Submission, registrar decisions and the registrar-facing queries.

AUTHORITY MODEL:
- CITIZEN: submits applications
- REGISTRAR: records one decision per application (never on their own filing)
- SYSTEM: decides quorum from the settings snapshot, then hands off to
  certification. An application becomes APPROVED only once its ledger
  transaction is confirmed.
"""
import logging
from dataclasses import asdict
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ...exceptions import (
    CertificationInProgressError,
    ConcurrentModificationError,
    DuplicateApprovalError,
    InvalidStateError,
    NotFoundError,
    PropertyFrozenError,
    SelfApprovalError,
    ValidationError,
)
from ...models.db_models import (
    ApplicationDB,
    ApplicationDecisionDB,
    ApplicationKind,
    ApplicationStatus,
    AuditAction,
    CertificationState,
    Decision,
    PropertyDB,
    PropertyStatus,
    utcnow,
)
from ...models.domain import Actor, PropertyDraft
from ..audit import AuditLogService
from ..certification.certification_service import CertificationService
from ..ledger import LedgerGateway
from ..persistence import commit_or_conflict, new_id
from .coordinator import ApprovalCoordinator
from .settings_service import ApprovalSettingsService
from .state_machine import ApplicationStateMachine

logger = logging.getLogger(__name__)

MIN_REJECTION_REASON_LENGTH = 3
OPEN_STATUSES = (ApplicationStatus.PENDING, ApplicationStatus.UNDER_REVIEW)

REQUIRED_TEXT_FIELDS = ("owner_name", "address_line1", "district", "state", "pincode")
DRAFT_FIELDS = REQUIRED_TEXT_FIELDS + ("address_line2", "owner_ref", "area_sqft", "value")


class ApplicationService:
    """Application lifecycle up to the certification hand-off."""

    def __init__(
        self,
        db: Session,
        gateway: LedgerGateway,
        coordinator: Optional[ApprovalCoordinator] = None,
        certification: Optional[CertificationService] = None,
    ):
        self.db = db
        self.coordinator = coordinator or ApprovalCoordinator()
        self.certification = certification or CertificationService(db, gateway, self.coordinator)
        self.state_machine = ApplicationStateMachine()
        self.audit = AuditLogService(db)

    # =========================================================================
    # SUBMIT
    # =========================================================================

    def submit(
        self,
        actor: Actor,
        kind: Union[ApplicationKind, str],
        draft: Union[PropertyDraft, Dict[str, Any], None] = None,
        target_property_id: Optional[str] = None,
        document_refs: Iterable[str] = (),
        notes: Optional[str] = None,
    ) -> ApplicationDB:
        """
        File a new application.

        Transfer and correction name an existing title; fields left out of
        the draft are taken from that title.

        Raises:
            ValidationError: missing or non-positive draft fields, unknown kind
            NotFoundError: transfer/correction target does not exist
            PropertyFrozenError: transfer/correction target is disputed
        """
        try:
            kind = ApplicationKind(kind)
        except ValueError as e:
            raise ValidationError(f"Unknown application kind: {kind}") from e

        fields = self._draft_fields(draft)

        if kind != ApplicationKind.ISSUE:
            if not target_property_id:
                raise ValidationError(f"{kind.value} requires target_property_id")
            target = self.db.get(PropertyDB, target_property_id)
            if target is None or target.ledger_tx_hash is None:
                raise NotFoundError(f"Property {target_property_id} not found")
            if target.status == PropertyStatus.DISPUTED:
                raise PropertyFrozenError(
                    f"Property {target_property_id} is under dispute",
                    details={"property_id": target_property_id},
                )
            fields = self._prefill(fields, target)
        else:
            target_property_id = None

        fields = self._validate(fields)

        app = ApplicationDB(
            app_id=new_id("APP"),
            kind=kind,
            status=ApplicationStatus.PENDING,
            applicant_ref=actor.ref,
            target_property_id=target_property_id,
            document_refs=[str(ref) for ref in document_refs],
            notes=notes,
            certification_state=CertificationState.NONE,
            **fields,
        )
        self.db.add(app)
        self.db.flush()

        self.audit.record(
            actor, AuditAction.APPLICATION_SUBMITTED, app.app_id,
            details={"kind": kind.value, "target_property_id": target_property_id},
        )
        self.db.commit()

        logger.info(f"Application {app.app_id} ({kind.value}) submitted by {actor.ref}")
        return app

    @staticmethod
    def _draft_fields(draft) -> Dict[str, Any]:
        if draft is None:
            return {}
        if isinstance(draft, PropertyDraft):
            draft = asdict(draft)
        unknown = set(draft) - set(DRAFT_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown draft fields: {sorted(unknown)}")
        return {k: v for k, v in draft.items() if v is not None and v != ""}

    @staticmethod
    def _prefill(fields: Dict[str, Any], target: PropertyDB) -> Dict[str, Any]:
        current = {
            "owner_name": target.owner_name,
            "owner_ref": target.owner_ref,
            "address_line1": target.address_line1,
            "address_line2": target.address_line2,
            "district": target.district,
            "state": target.state,
            "pincode": target.pincode,
            "area_sqft": target.area_sqft,
            "value": target.value,
        }
        merged = dict(current)
        merged.update(fields)
        return merged

    @staticmethod
    def _validate(fields: Dict[str, Any]) -> Dict[str, Any]:
        errors = {}
        clean = {}

        for name in REQUIRED_TEXT_FIELDS:
            value = fields.get(name)
            if not isinstance(value, str) or not value.strip():
                errors[name] = "required"
            else:
                clean[name] = value.strip()

        for name in ("area_sqft", "value"):
            value = fields.get(name)
            if isinstance(value, bool):
                errors[name] = "must be a number"
                continue
            try:
                number = float(value)
            except (TypeError, ValueError):
                errors[name] = "must be a number"
                continue
            if number <= 0:
                errors[name] = "must be positive"
            else:
                clean[name] = number

        if errors:
            raise ValidationError("Invalid property draft", details={"fields": errors})

        clean["address_line2"] = (fields.get("address_line2") or "").strip()
        clean["owner_ref"] = fields.get("owner_ref")
        return clean

    # =========================================================================
    # DECISIONS
    # =========================================================================

    def record_decision(
        self,
        application_id: str,
        actor: Actor,
        decision: Union[Decision, str],
        comment: Optional[str] = None,
    ) -> ApplicationDB:
        """
        Record one registrar's decision.

        A reject is final immediately. An approve that completes the quorum
        triggers certification; certification errors propagate with the
        decision already recorded.

        Raises:
            NotFoundError, InvalidStateError, SelfApprovalError,
            DuplicateApprovalError, ValidationError,
            ConcurrentModificationError, plus certification errors
        """
        try:
            decision = Decision(decision)
        except ValueError as e:
            raise ValidationError(f"Unknown decision: {decision}") from e

        app = self.get(application_id)

        if self.state_machine.is_terminal(app.status):
            raise InvalidStateError(
                f"Application {application_id} is already {app.status.value}",
                details={"status": app.status.value},
            )
        if app.certification_state in (CertificationState.RESERVED, CertificationState.SUBMITTED):
            raise InvalidStateError(
                f"Application {application_id} is being certified",
                details={"certification_state": app.certification_state.value},
            )
        if actor.ref == app.applicant_ref:
            raise SelfApprovalError("Applicants cannot decide on their own application")
        if any(d.registrar_ref == actor.ref for d in app.decisions):
            raise DuplicateApprovalError(
                f"{actor.ref} already decided on {application_id}",
                details={"registrar_ref": actor.ref},
            )

        reason = (comment or "").strip()
        if decision == Decision.REJECT and len(reason) < MIN_REJECTION_REASON_LENGTH:
            raise ValidationError(
                f"A rejection needs a reason of at least {MIN_REJECTION_REASON_LENGTH} characters"
            )

        now = utcnow()
        app.decisions.append(ApplicationDecisionDB(
            sequence=len(app.decisions) + 1,
            registrar_ref=actor.ref,
            registrar_role=actor.registrar_role,
            decision=decision,
            comment=reason or None,
            decided_at=now,
        ))
        # Bumps the application version so concurrent decisions serialize
        app.updated_at = now

        if app.status == ApplicationStatus.PENDING:
            app.status = self.state_machine.transition(app.status, "review")
        if decision == Decision.REJECT:
            app.status = self.state_machine.transition(app.status, "reject")
            app.rejection_reason = reason
            app.decided_at = now

        self._flush_decision(app, actor)

        if decision == Decision.REJECT:
            self.audit.record(
                actor, AuditAction.APPLICATION_REJECTED, app.app_id,
                details={"reason": reason},
            )
        else:
            self.audit.record(
                actor, AuditAction.APPROVAL_RECORDED, app.app_id,
                details={"registrar_role": actor.registrar_role, "comment": reason or None},
            )
        commit_or_conflict(self.db, app.app_id)
        logger.info(f"{decision.value} on {app.app_id} by {actor.ref}")

        if decision == Decision.APPROVE:
            settings = ApprovalSettingsService(self.db).load()
            if self.coordinator.is_quorum_met(app, settings):
                logger.info(f"Quorum met on {app.app_id}, certifying")
                try:
                    self.certification.certify(app.app_id, actor)
                except CertificationInProgressError:
                    logger.info(f"Certification of {app.app_id} already running elsewhere")
                self.db.refresh(app)

        return app

    def _flush_decision(self, app: ApplicationDB, actor: Actor) -> None:
        app_id = app.app_id
        try:
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateApprovalError(
                f"{actor.ref} already decided on {app_id}",
                details={"registrar_ref": actor.ref},
            ) from e
        except StaleDataError as e:
            self.db.rollback()
            already = (
                self.db.query(ApplicationDecisionDB.id)
                .filter(ApplicationDecisionDB.application_id == app_id)
                .filter(ApplicationDecisionDB.registrar_ref == actor.ref)
                .first()
            )
            if already is not None:
                raise DuplicateApprovalError(
                    f"{actor.ref} already decided on {app_id}",
                    details={"registrar_ref": actor.ref},
                ) from e
            raise ConcurrentModificationError(
                f"{app_id} was modified concurrently; re-read and retry",
                details={"subject_ref": app_id},
            ) from e

    def certify(self, application_id: str, actor: Actor) -> PropertyDB:
        """Retry certification of an application whose quorum is met."""
        return self.certification.certify(application_id, actor)

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get(self, application_id: str) -> ApplicationDB:
        app = self.db.get(ApplicationDB, application_id)
        if app is None:
            raise NotFoundError(f"Application {application_id} not found")
        return app

    def list_for_applicant(
        self,
        applicant_ref: str,
        status: Optional[ApplicationStatus] = None,
    ) -> List[ApplicationDB]:
        q = self.db.query(ApplicationDB).filter(ApplicationDB.applicant_ref == applicant_ref)
        if status:
            q = q.filter(ApplicationDB.status == status)
        return q.order_by(ApplicationDB.created_at.desc()).all()

    def inbox(
        self,
        registrar_ref: str,
        status: Optional[ApplicationStatus] = None,
        kind: Optional[ApplicationKind] = None,
    ) -> List[ApplicationDB]:
        """Open applications awaiting this registrar's decision, oldest first."""
        decided = (
            self.db.query(ApplicationDecisionDB.application_id)
            .filter(ApplicationDecisionDB.registrar_ref == registrar_ref)
        )
        q = (
            self.db.query(ApplicationDB)
            .filter(ApplicationDB.status.in_(OPEN_STATUSES))
            .filter(ApplicationDB.applicant_ref != registrar_ref)
            .filter(~ApplicationDB.app_id.in_(decided))
        )
        if status:
            q = q.filter(ApplicationDB.status == status)
        if kind:
            q = q.filter(ApplicationDB.kind == kind)
        return q.order_by(ApplicationDB.created_at.asc()).all()

    def approval_history(self, application_id: str) -> Dict[str, Any]:
        app = self.get(application_id)
        settings = ApprovalSettingsService(self.db).load()
        progress = self.coordinator.progress(app, settings)
        return {
            "application_id": app.app_id,
            "status": app.status.value,
            "approval_type": settings.approval_type.value,
            "approval_sequence": list(settings.approval_sequence),
            "steps": [
                {
                    "step": d.sequence,
                    "registrar_ref": d.registrar_ref,
                    "registrar_role": d.registrar_role,
                    "decision": d.decision.value,
                    "comment": d.comment,
                    "decided_at": d.decided_at.isoformat(),
                }
                for d in app.decisions
            ],
            "progress": progress.to_dict(),
        }

    @staticmethod
    def to_dict(app: ApplicationDB) -> Dict[str, Any]:
        return {
            "app_id": app.app_id,
            "kind": app.kind.value,
            "status": app.status.value,
            "applicant_ref": app.applicant_ref,
            "target_property_id": app.target_property_id,
            "draft": app.draft_dict(),
            "document_refs": list(app.document_refs or []),
            "notes": app.notes,
            "rejection_reason": app.rejection_reason,
            "property_id": app.property_id,
            "ledger_tx_hash": app.ledger_tx_hash,
            "ledger_block_ref": app.ledger_block_ref,
            "certification_state": app.certification_state.value,
            "last_certification_error": app.last_certification_error,
            "decisions": [
                {
                    "registrar_ref": d.registrar_ref,
                    "registrar_role": d.registrar_role,
                    "decision": d.decision.value,
                    "comment": d.comment,
                    "decided_at": d.decided_at.isoformat(),
                }
                for d in app.decisions
            ],
            "created_at": app.created_at.isoformat() if app.created_at else None,
            "updated_at": app.updated_at.isoformat() if app.updated_at else None,
            "decided_at": app.decided_at.isoformat() if app.decided_at else None,
        }
