"""
Audit Log Service

Append-only record of every state transition.

Core Principles:
1. The log records what happened. It never decides.
2. Entries are written inside the caller's transaction (flush, never commit),
   so a rolled-back transition leaves no audit entry behind.
3. No updates, no deletes. The ORM rejects both.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ...models.db_models import AuditAction, AuditEntryDB, as_naive_utc, utcnow
from ...models.domain import Actor, Page


class AuditLogService:
    """Writes and queries audit entries."""

    MAX_PAGE_SIZE = 200

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # WRITE
    # =========================================================================

    def record(
        self,
        actor: Actor,
        action: AuditAction,
        subject_ref: str,
        ledger_tx_ref: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditEntryDB:
        """
        Append an entry to the current transaction.

        The caller owns the commit.
        """
        entry = AuditEntryDB(
            actor_ref=actor.ref,
            actor_role=actor.role_value,
            action=action,
            subject_ref=subject_ref,
            timestamp=utcnow(),
            ledger_tx_ref=ledger_tx_ref,
            details=details or {},
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    # =========================================================================
    # READ
    # =========================================================================

    def query(
        self,
        subject_ref: Optional[str] = None,
        actor_ref: Optional[str] = None,
        action: Optional[AuditAction] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        page: int = 1,
        limit: int = 50,
    ) -> Page:
        """Filtered, newest-first, paginated entries."""
        page = max(page, 1)
        limit = min(max(limit, 1), self.MAX_PAGE_SIZE)

        q = self.db.query(AuditEntryDB)
        if subject_ref:
            q = q.filter(AuditEntryDB.subject_ref == subject_ref)
        if actor_ref:
            q = q.filter(AuditEntryDB.actor_ref == actor_ref)
        if action:
            q = q.filter(AuditEntryDB.action == action)
        if since:
            q = q.filter(AuditEntryDB.timestamp >= as_naive_utc(since))
        if until:
            q = q.filter(AuditEntryDB.timestamp <= as_naive_utc(until))

        total = q.count()
        items = (
            q.order_by(AuditEntryDB.timestamp.desc(), AuditEntryDB.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return Page(items=items, total=total, page=page, limit=limit)

    def trail(self, subject_ref: str) -> List[AuditEntryDB]:
        """Chronological history of one subject."""
        return (
            self.db.query(AuditEntryDB)
            .filter(AuditEntryDB.subject_ref == subject_ref)
            .order_by(AuditEntryDB.timestamp.asc(), AuditEntryDB.id.asc())
            .all()
        )

    @staticmethod
    def to_dict(entry: AuditEntryDB) -> Dict[str, Any]:
        return {
            "id": entry.id,
            "actor_ref": entry.actor_ref,
            "actor_role": entry.actor_role,
            "action": entry.action.value,
            "subject_ref": entry.subject_ref,
            "timestamp": entry.timestamp.isoformat(),
            "ledger_tx_ref": entry.ledger_tx_ref,
            "details": entry.details or {},
        }
