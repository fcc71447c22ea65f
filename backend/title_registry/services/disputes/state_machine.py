"""
Dispute & Case State Machines

Dispute:
    OPEN → IN_COURT → RESOLVED
    OPEN → DISMISSED

Case:
    ACTIVE → CLOSED

RESOLVED, DISMISSED and CLOSED are terminal. A property is frozen while any
of its disputes is OPEN or IN_COURT.
"""
from typing import Dict, List, Optional, Tuple

from ...exceptions import InvalidStateError
from ...models.db_models import CaseStatus, DisputeStatus


# =============================================================================
# STATE CONFIGURATION
# =============================================================================
#
# AUTHORITY MODEL:
# - CITIZEN / REGISTRAR: raise a dispute
# - REGISTRAR: refer an open dispute to court
# - COURT: orders, hearings, closing the case
# - REGISTRAR / COURT: dismiss an open dispute
#
# =============================================================================

DISPUTE_STATE_CONFIG = {
    DisputeStatus.OPEN: {
        "description": "Dispute raised, property frozen",
        "allowed_transitions": [DisputeStatus.IN_COURT, DisputeStatus.DISMISSED],
        "freezes_property": True,
    },
    DisputeStatus.IN_COURT: {
        "description": "Referred to court, case active",
        "allowed_transitions": [DisputeStatus.RESOLVED],
        "freezes_property": True,
    },
    DisputeStatus.RESOLVED: {
        "description": "Case closed with a resolution",
        "allowed_transitions": [],
        "freezes_property": False,
    },
    DisputeStatus.DISMISSED: {
        "description": "Dismissed before referral",
        "allowed_transitions": [],
        "freezes_property": False,
    },
}


class DisputeStateMachine:

    TRANSITIONS: Dict[Tuple[DisputeStatus, str], DisputeStatus] = {
        (DisputeStatus.OPEN, "refer"): DisputeStatus.IN_COURT,
        (DisputeStatus.OPEN, "dismiss"): DisputeStatus.DISMISSED,
        (DisputeStatus.IN_COURT, "resolve"): DisputeStatus.RESOLVED,
    }

    def can_transition(self, current: DisputeStatus, action: str) -> Tuple[bool, Optional[str]]:
        if (current, action) not in self.TRANSITIONS:
            return False, f"Cannot {action} a dispute that is {current.value}"
        return True, None

    def transition(self, current: DisputeStatus, action: str) -> DisputeStatus:
        allowed, error = self.can_transition(current, action)
        if not allowed:
            raise InvalidStateError(error, details={"status": current.value, "action": action})
        return self.TRANSITIONS[(current, action)]

    def freezes_property(self, status: DisputeStatus) -> bool:
        return DISPUTE_STATE_CONFIG[status]["freezes_property"]

    def get_available_actions(self, current: DisputeStatus) -> List[str]:
        return [action for (state, action) in self.TRANSITIONS if state == current]


class CaseStateMachine:

    TRANSITIONS: Dict[Tuple[CaseStatus, str], CaseStatus] = {
        (CaseStatus.ACTIVE, "close"): CaseStatus.CLOSED,
    }

    def ensure_active(self, current: CaseStatus) -> None:
        """Orders and hearings are only accepted on an active case."""
        if current != CaseStatus.ACTIVE:
            raise InvalidStateError(f"Case is {current.value}", details={"status": current.value})

    def transition(self, current: CaseStatus, action: str) -> CaseStatus:
        if (current, action) not in self.TRANSITIONS:
            raise InvalidStateError(
                f"Cannot {action} a case that is {current.value}",
                details={"status": current.value, "action": action},
            )
        return self.TRANSITIONS[(current, action)]
