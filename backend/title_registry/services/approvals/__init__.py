"""Application lifecycle, approval policy and quorum evaluation."""
from .application_service import ApplicationService
from .coordinator import (
    ApprovalCoordinator,
    RoleSequencePolicy,
    SequencePolicy,
    counted_approvals,
    is_quorum_met,
)
from .settings_service import ApprovalSettingsService
from .state_machine import ApplicationStateMachine

__all__ = [
    "ApplicationService",
    "ApprovalCoordinator",
    "RoleSequencePolicy",
    "SequencePolicy",
    "counted_approvals",
    "is_quorum_met",
    "ApprovalSettingsService",
    "ApplicationStateMachine",
]
