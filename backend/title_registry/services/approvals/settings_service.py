"""
Approval Settings Service

Single-row policy table. Callers load a frozen ApprovalSettings snapshot once
per operation and pass it down; nothing below the service reads the table.
Changing settings never rewrites decisions already recorded.
"""
import logging
from typing import Any, Iterable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...config import DEFAULT_APPROVAL_TYPE, DEFAULT_REQUIRED_APPROVALS
from ...exceptions import ValidationError
from ...models.db_models import ApprovalSettingsDB, ApprovalType, AuditAction, utcnow
from ...models.domain import Actor, ApprovalSettings
from ..audit import AuditLogService
from ..persistence import commit_or_conflict, flush_or_conflict

logger = logging.getLogger(__name__)

SETTINGS_ROW_ID = 1
MIN_REQUIRED_APPROVALS = 1
MAX_REQUIRED_APPROVALS = 5


class ApprovalSettingsService:

    def __init__(self, db: Session):
        self.db = db

    def load(self) -> ApprovalSettings:
        """Current policy, creating the default row on first use."""
        return self.snapshot(self._row())

    def update(
        self,
        actor: Actor,
        enabled: Optional[bool] = None,
        required_approvals: Optional[int] = None,
        approval_type: Optional[Any] = None,
        approval_sequence: Optional[Iterable[str]] = None,
    ) -> ApprovalSettings:
        """
        Apply the given changes and append SETTINGS_UPDATED.

        Raises:
            ValidationError: required_approvals outside 1..5, unknown approval type
        """
        row = self._row()
        before = self.snapshot(row).to_dict()

        if required_approvals is not None:
            if not isinstance(required_approvals, int) or isinstance(required_approvals, bool):
                raise ValidationError("required_approvals must be an integer")
            if not MIN_REQUIRED_APPROVALS <= required_approvals <= MAX_REQUIRED_APPROVALS:
                raise ValidationError(
                    f"required_approvals must be between {MIN_REQUIRED_APPROVALS} "
                    f"and {MAX_REQUIRED_APPROVALS}",
                    details={"required_approvals": required_approvals},
                )

        new_type = None
        if approval_type is not None:
            try:
                new_type = ApprovalType(approval_type)
            except ValueError as e:
                raise ValidationError(
                    "approval_type must be 'parallel' or 'sequential'",
                    details={"approval_type": str(approval_type)},
                ) from e

        sequence = None
        if approval_sequence is not None:
            sequence = [str(role).strip() for role in approval_sequence]
            if any(not role for role in sequence):
                raise ValidationError("approval_sequence entries must be non-empty role names")

        # Validated; apply
        if required_approvals is not None:
            row.required_approvals = required_approvals
        if new_type is not None:
            row.approval_type = new_type
        if sequence is not None:
            row.approval_sequence = sequence
        if enabled is not None:
            row.enabled = bool(enabled)

        row.updated_by = actor.ref
        row.updated_at = utcnow()
        flush_or_conflict(self.db, "approval-settings")

        after = self.snapshot(row).to_dict()
        after.pop("version")
        before.pop("version")
        AuditLogService(self.db).record(
            actor,
            AuditAction.SETTINGS_UPDATED,
            subject_ref="approval-settings",
            details={"before": before, "after": after},
        )
        commit_or_conflict(self.db, "approval-settings")
        self.db.refresh(row)

        logger.info(f"Approval settings updated by {actor.ref}: {after}")
        return self.snapshot(row)

    @staticmethod
    def snapshot(row: ApprovalSettingsDB) -> ApprovalSettings:
        return ApprovalSettings(
            enabled=bool(row.enabled),
            required_approvals=row.required_approvals,
            approval_type=row.approval_type,
            approval_sequence=tuple(row.approval_sequence or ()),
            version=row.version or 0,
        )

    def _row(self) -> ApprovalSettingsDB:
        row = self.db.get(ApprovalSettingsDB, SETTINGS_ROW_ID)
        if row is None:
            row = ApprovalSettingsDB(
                id=SETTINGS_ROW_ID,
                enabled=True,
                required_approvals=DEFAULT_REQUIRED_APPROVALS,
                approval_type=ApprovalType(DEFAULT_APPROVAL_TYPE),
                approval_sequence=[],
            )
            self.db.add(row)
            try:
                self.db.commit()
            except IntegrityError:
                # Another session created it first
                self.db.rollback()
                return self.db.get(ApprovalSettingsDB, SETTINGS_ROW_ID)
            logger.info("Created default approval settings")
        return row
