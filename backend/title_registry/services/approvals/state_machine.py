"""
Application State Machine

ApplicationStatus is the source of truth.
State transitions:
    PENDING → UNDER_REVIEW → APPROVED
                           → REJECTED
    PENDING → APPROVED | REJECTED

APPROVED and REJECTED are terminal. APPROVED is only entered by the
certification step, never by a vote on its own.
"""
from typing import Optional, Tuple

from ...exceptions import InvalidStateError
from ...models.db_models import ApplicationStatus


class ApplicationStateMachine:
    """Deterministic transitions keyed by (current_status, action)."""

    TRANSITIONS = {
        # First registrar vote moves the filing into review
        (ApplicationStatus.PENDING, "review"): ApplicationStatus.UNDER_REVIEW,

        # Certified once quorum reached
        (ApplicationStatus.PENDING, "approve"): ApplicationStatus.APPROVED,
        (ApplicationStatus.UNDER_REVIEW, "approve"): ApplicationStatus.APPROVED,

        # Any reject is authoritative
        (ApplicationStatus.PENDING, "reject"): ApplicationStatus.REJECTED,
        (ApplicationStatus.UNDER_REVIEW, "reject"): ApplicationStatus.REJECTED,
    }

    TERMINAL = {ApplicationStatus.APPROVED, ApplicationStatus.REJECTED}

    def can_transition(self, current: ApplicationStatus, action: str) -> Tuple[bool, Optional[str]]:
        if current in self.TERMINAL:
            return False, f"Application is already {current.value}"
        if (current, action) not in self.TRANSITIONS:
            return False, f"Invalid transition: {current.value} + {action}"
        return True, None

    def transition(self, current: ApplicationStatus, action: str) -> ApplicationStatus:
        """
        Returns:
            New status

        Raises:
            InvalidStateError: If the transition is not allowed
        """
        allowed, error = self.can_transition(current, action)
        if not allowed:
            raise InvalidStateError(error, details={"status": current.value, "action": action})
        return self.TRANSITIONS[(current, action)]

    def is_terminal(self, status: ApplicationStatus) -> bool:
        return status in self.TERMINAL
