"""
Dispute Service

Disputes freeze titles; court cases resolve them.

AUTHORITY MODEL:
- CITIZEN / REGISTRAR: raise_dispute
- REGISTRAR: refer_to_court, dismiss
- COURT: register_case, issue_order, schedule_hearing, close_case, dismiss

While a dispute is OPEN or IN_COURT its property is DISPUTED and no transfer
or correction can be certified. At most one active dispute per property,
enforced by a partial unique index; losing racers get DuplicateDisputeError.
Closing the case or dismissing the dispute returns the property to APPROVED.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from dateutil import parser as date_parser
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ...exceptions import (
    ConcurrentModificationError,
    DuplicateDisputeError,
    NotFoundError,
    ValidationError,
)
from ...models.db_models import (
    ACTIVE_DISPUTE_STATUSES,
    AuditAction,
    CaseDB,
    CaseStatus,
    DisputeDB,
    DisputeStatus,
    PropertyDB,
    PropertyStatus,
    as_naive_utc,
    utcnow,
)
from ...models.domain import Actor
from ..audit import AuditLogService
from ..persistence import commit_or_conflict, flush_or_conflict, new_id
from .state_machine import CaseStateMachine, DisputeStateMachine

logger = logging.getLogger(__name__)


def _timeline_event(event_type: str, message: str, actor: Actor, **extra) -> Dict[str, Any]:
    event = {
        "type": event_type,
        "message": message,
        "actor_ref": actor.ref,
        "timestamp": utcnow().isoformat(),
    }
    event.update({k: v for k, v in extra.items() if v is not None})
    return event


def _to_naive_utc(value: Union[datetime, str]) -> datetime:
    if isinstance(value, str):
        try:
            value = date_parser.isoparse(value)
        except ValueError as e:
            raise ValidationError(f"Invalid date: {value}") from e
    if not isinstance(value, datetime):
        raise ValidationError("Hearing date must be a datetime")
    return as_naive_utc(value)


class DisputeService:
    """Dispute and court case lifecycle."""

    def __init__(self, db: Session):
        self.db = db
        self.disputes = DisputeStateMachine()
        self.cases = CaseStateMachine()
        self.audit = AuditLogService(db)

    # =========================================================================
    # DISPUTES
    # =========================================================================

    def raise_dispute(self, property_id: str, actor: Actor, reason: str) -> DisputeDB:
        """
        Open a dispute and freeze the property.

        Raises:
            ValidationError: empty reason
            NotFoundError: unknown property
            DuplicateDisputeError: an open / in-court dispute already exists
        """
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A dispute needs a reason")

        prop = self.db.get(PropertyDB, property_id)
        if prop is None or prop.ledger_tx_hash is None:
            raise NotFoundError(f"Property {property_id} not found")

        existing = self._active_dispute(property_id)
        if existing is not None:
            raise DuplicateDisputeError(
                f"Property {property_id} already has an active dispute",
                details={"dispute_id": existing.dispute_id},
            )

        dispute = DisputeDB(
            dispute_id=new_id("DSP"),
            property_id=property_id,
            raised_by=actor.ref,
            reason=reason,
            status=DisputeStatus.OPEN,
            timeline=[_timeline_event("RAISED", reason, actor)],
        )
        self.db.add(dispute)

        froze = prop.status != PropertyStatus.DISPUTED
        if froze:
            prop.status = PropertyStatus.DISPUTED
            prop.updated_at = utcnow()

        self._flush_new_dispute(property_id)

        self.audit.record(
            actor, AuditAction.DISPUTE_RAISED, dispute.dispute_id,
            details={"property_id": property_id, "reason": reason},
        )
        if froze:
            self.audit.record(
                actor, AuditAction.PROPERTY_FROZEN, property_id,
                details={"dispute_id": dispute.dispute_id},
            )
        commit_or_conflict(self.db, dispute.dispute_id)

        logger.info(f"Dispute {dispute.dispute_id} raised on {property_id} by {actor.ref}")
        return dispute

    def _flush_new_dispute(self, property_id: str) -> None:
        try:
            self.db.flush()
        except (IntegrityError, StaleDataError) as e:
            self.db.rollback()
            winner = self._active_dispute(property_id)
            if winner is not None:
                raise DuplicateDisputeError(
                    f"Property {property_id} already has an active dispute",
                    details={"dispute_id": winner.dispute_id},
                ) from e
            raise ConcurrentModificationError(
                f"{property_id} was modified concurrently; re-read and retry",
                details={"subject_ref": property_id},
            ) from e

    def refer_to_court(self, dispute_id: str, actor: Actor) -> CaseDB:
        """Open a court case for an OPEN dispute."""
        dispute = self.get_dispute(dispute_id)
        dispute.status = self.disputes.transition(dispute.status, "refer")

        case = CaseDB(
            case_id=new_id("CASE"),
            dispute_id=dispute.dispute_id,
            property_id=dispute.property_id,
            status=CaseStatus.ACTIVE,
            orders=[],
            hearings=[],
        )
        self.db.add(case)

        dispute.case_id = case.case_id
        dispute.timeline = list(dispute.timeline or []) + [
            _timeline_event("REFERRED", f"Referred to court as {case.case_id}", actor, case_id=case.case_id)
        ]
        dispute.updated_at = utcnow()
        flush_or_conflict(self.db, dispute_id)

        self.audit.record(
            actor, AuditAction.DISPUTE_REFERRED, dispute_id,
            details={"case_id": case.case_id, "property_id": dispute.property_id},
        )
        commit_or_conflict(self.db, dispute_id)

        logger.info(f"Dispute {dispute_id} referred to court as {case.case_id}")
        return case

    def register_case(self, property_id: str, actor: Actor, reason: str) -> CaseDB:
        """Court files a case directly: raise the dispute and refer it."""
        dispute = self.raise_dispute(property_id, actor, reason)
        return self.refer_to_court(dispute.dispute_id, actor)

    def dismiss(self, dispute_id: str, actor: Actor, reason: str) -> DisputeDB:
        """Dismiss an OPEN dispute and unfreeze the property."""
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("Dismissal needs a reason")

        dispute = self.get_dispute(dispute_id)
        dispute.status = self.disputes.transition(dispute.status, "dismiss")
        dispute.resolution = reason
        dispute.timeline = list(dispute.timeline or []) + [_timeline_event("DISMISSED", reason, actor)]
        dispute.updated_at = utcnow()

        unfroze = self._unfreeze(dispute.property_id, exclude_dispute_id=dispute_id)
        flush_or_conflict(self.db, dispute_id)

        self.audit.record(
            actor, AuditAction.DISPUTE_DISMISSED, dispute_id,
            details={"property_id": dispute.property_id, "reason": reason},
        )
        if unfroze:
            self.audit.record(
                actor, AuditAction.PROPERTY_UNFROZEN, dispute.property_id,
                details={"dispute_id": dispute_id},
            )
        commit_or_conflict(self.db, dispute_id)

        logger.info(f"Dispute {dispute_id} dismissed by {actor.ref}")
        return dispute

    # =========================================================================
    # COURT CASES
    # =========================================================================

    def issue_order(self, case_id: str, actor: Actor, text: str) -> CaseDB:
        text = (text or "").strip()
        if not text:
            raise ValidationError("An order needs text")

        case = self.get_case(case_id)
        self.cases.ensure_active(case.status)

        now = utcnow()
        order = {"text": text, "issued_by": actor.ref, "timestamp": now.isoformat()}
        case.orders = list(case.orders or []) + [order]
        case.updated_at = now

        dispute = self.get_dispute(case.dispute_id)
        dispute.timeline = list(dispute.timeline or []) + [
            _timeline_event("ORDER", text, actor, case_id=case_id)
        ]
        dispute.updated_at = now
        flush_or_conflict(self.db, case_id)

        self.audit.record(
            actor, AuditAction.COURT_ORDER_ISSUED, case_id,
            details={"dispute_id": case.dispute_id, "text": text},
        )
        commit_or_conflict(self.db, case_id)

        logger.info(f"Order issued on {case_id} by {actor.ref}")
        return case

    def schedule_hearing(
        self,
        case_id: str,
        actor: Actor,
        date: Union[datetime, str],
        venue: Optional[str] = None,
    ) -> CaseDB:
        hearing_at = _to_naive_utc(date)

        case = self.get_case(case_id)
        self.cases.ensure_active(case.status)

        now = utcnow()
        hearing = {
            "date": hearing_at.isoformat(),
            "venue": (venue or "").strip() or None,
            "scheduled_by": actor.ref,
            "timestamp": now.isoformat(),
        }
        case.hearings = list(case.hearings or []) + [hearing]
        case.updated_at = now

        dispute = self.get_dispute(case.dispute_id)
        dispute.timeline = list(dispute.timeline or []) + [
            _timeline_event(
                "HEARING",
                f"Hearing scheduled for {hearing['date']}",
                actor,
                case_id=case_id,
                venue=hearing["venue"],
            )
        ]
        dispute.updated_at = now
        flush_or_conflict(self.db, case_id)

        self.audit.record(
            actor, AuditAction.HEARING_SCHEDULED, case_id,
            details={"date": hearing["date"], "venue": hearing["venue"]},
        )
        commit_or_conflict(self.db, case_id)

        logger.info(f"Hearing on {case_id} scheduled for {hearing['date']}")
        return case

    def close_case(self, case_id: str, actor: Actor, resolution: str) -> CaseDB:
        """Close the case, resolve its dispute, unfreeze the property. Irreversible."""
        resolution = (resolution or "").strip()
        if not resolution:
            raise ValidationError("Closing a case needs a resolution")

        case = self.get_case(case_id)
        case.status = self.cases.transition(case.status, "close")
        now = utcnow()
        case.resolution = resolution
        case.closed_at = now
        case.updated_at = now

        dispute = self.get_dispute(case.dispute_id)
        dispute.status = self.disputes.transition(dispute.status, "resolve")
        dispute.resolution = resolution
        dispute.timeline = list(dispute.timeline or []) + [
            _timeline_event("RESOLVED", resolution, actor, case_id=case_id)
        ]
        dispute.updated_at = now

        unfroze = self._unfreeze(case.property_id, exclude_dispute_id=dispute.dispute_id)
        flush_or_conflict(self.db, case_id)

        self.audit.record(
            actor, AuditAction.CASE_CLOSED, case_id,
            details={"dispute_id": dispute.dispute_id, "resolution": resolution},
        )
        if unfroze:
            self.audit.record(
                actor, AuditAction.PROPERTY_UNFROZEN, case.property_id,
                details={"dispute_id": dispute.dispute_id, "case_id": case_id},
            )
        commit_or_conflict(self.db, case_id)

        logger.info(f"Case {case_id} closed by {actor.ref}")
        return case

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_dispute(self, dispute_id: str) -> DisputeDB:
        dispute = self.db.get(DisputeDB, dispute_id)
        if dispute is None:
            raise NotFoundError(f"Dispute {dispute_id} not found")
        return dispute

    def get_case(self, case_id: str) -> CaseDB:
        case = self.db.get(CaseDB, case_id)
        if case is None:
            raise NotFoundError(f"Case {case_id} not found")
        return case

    def case_detail(self, case_id: str) -> Dict[str, Any]:
        """Case with its dispute and property."""
        case = self.get_case(case_id)
        dispute = self.get_dispute(case.dispute_id)
        prop = self.db.get(PropertyDB, case.property_id)
        data = self.case_to_dict(case)
        data["dispute"] = self.dispute_to_dict(dispute)
        data["property"] = {
            "property_id": prop.property_id,
            "owner_name": prop.owner_name,
            "status": prop.status.value,
            "address": prop.address_dict(),
        } if prop else None
        return data

    def list_disputes(
        self,
        status: Optional[DisputeStatus] = None,
        property_id: Optional[str] = None,
        raised_by: Optional[str] = None,
    ) -> List[DisputeDB]:
        q = self.db.query(DisputeDB)
        if status:
            q = q.filter(DisputeDB.status == status)
        if property_id:
            q = q.filter(DisputeDB.property_id == property_id)
        if raised_by:
            q = q.filter(DisputeDB.raised_by == raised_by)
        return q.order_by(DisputeDB.created_at.desc()).all()

    def disputes_for_citizen(self, citizen_ref: str) -> List[DisputeDB]:
        """Disputes the citizen raised or that were raised against a title they hold."""
        owned = select(PropertyDB.property_id).where(PropertyDB.owner_ref == citizen_ref)
        return (
            self.db.query(DisputeDB)
            .filter(or_(DisputeDB.raised_by == citizen_ref, DisputeDB.property_id.in_(owned)))
            .order_by(DisputeDB.created_at.desc())
            .all()
        )

    def list_cases(self, status: Optional[CaseStatus] = None) -> List[CaseDB]:
        q = self.db.query(CaseDB)
        if status:
            q = q.filter(CaseDB.status == status)
        return q.order_by(CaseDB.created_at.desc()).all()

    def upcoming_hearings(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Hearings on active cases from `now` on, soonest first."""
        cutoff = _to_naive_utc(now) if now is not None else utcnow()
        upcoming = []
        for case in self.list_cases(CaseStatus.ACTIVE):
            for hearing in case.hearings or []:
                if date_parser.isoparse(hearing["date"]) >= cutoff:
                    upcoming.append({
                        "case_id": case.case_id,
                        "dispute_id": case.dispute_id,
                        "property_id": case.property_id,
                        **hearing,
                    })
        return sorted(upcoming, key=lambda h: h["date"])

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _active_dispute(self, property_id: str) -> Optional[DisputeDB]:
        return (
            self.db.query(DisputeDB)
            .filter(DisputeDB.property_id == property_id)
            .filter(DisputeDB.status.in_(ACTIVE_DISPUTE_STATUSES))
            .first()
        )

    def _unfreeze(self, property_id: str, exclude_dispute_id: str) -> bool:
        """Return the property to APPROVED unless another dispute still holds it."""
        other = (
            self.db.query(DisputeDB.dispute_id)
            .filter(DisputeDB.property_id == property_id)
            .filter(DisputeDB.dispute_id != exclude_dispute_id)
            .filter(DisputeDB.status.in_(ACTIVE_DISPUTE_STATUSES))
            .first()
        )
        if other is not None:
            return False
        prop = self.db.get(PropertyDB, property_id)
        if prop is None or prop.status != PropertyStatus.DISPUTED:
            return False
        prop.status = PropertyStatus.APPROVED
        prop.updated_at = utcnow()
        return True

    def dispute_to_dict(self, dispute: DisputeDB) -> Dict[str, Any]:
        return {
            "dispute_id": dispute.dispute_id,
            "property_id": dispute.property_id,
            "raised_by": dispute.raised_by,
            "reason": dispute.reason,
            "status": dispute.status.value,
            "case_id": dispute.case_id,
            "resolution": dispute.resolution,
            "timeline": list(dispute.timeline or []),
            "freezes_property": self.disputes.freezes_property(dispute.status),
            "available_actions": self.disputes.get_available_actions(dispute.status),
            "created_at": dispute.created_at.isoformat() if dispute.created_at else None,
            "updated_at": dispute.updated_at.isoformat() if dispute.updated_at else None,
        }

    @staticmethod
    def case_to_dict(case: CaseDB) -> Dict[str, Any]:
        return {
            "case_id": case.case_id,
            "dispute_id": case.dispute_id,
            "property_id": case.property_id,
            "status": case.status.value,
            "orders": list(case.orders or []),
            "hearings": list(case.hearings or []),
            "resolution": case.resolution,
            "created_at": case.created_at.isoformat() if case.created_at else None,
            "closed_at": case.closed_at.isoformat() if case.closed_at else None,
        }
