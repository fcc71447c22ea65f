"""
Approval Coordinator

Decides whether an application's recorded decisions satisfy the approval
policy. Pure functions of (decisions, settings): no I/O, no clock.

Modes:
- disabled multi-step approval: a single approval is sufficient
- parallel: any `required_approvals` distinct approvals
- sequential: approvals count only in the order the SequencePolicy defines
"""
from typing import List, Optional, Protocol, Sequence

from ...models.db_models import ApplicationDB, ApplicationDecisionDB, ApprovalType, Decision
from ...models.domain import ApprovalProgress, ApprovalSettings


class SequencePolicy(Protocol):
    def counted(self, approvals: Sequence[ApplicationDecisionDB], settings: ApprovalSettings) -> int:
        """Number of approvals that count toward quorum, in policy order."""
        ...


class RoleSequencePolicy:
    """
    Fills approval slots 0..required-1 in order.

    Slot i expects registrar role approval_sequence[min(i, len - 1)] and takes
    the earliest unused approval carrying that role. Counting stops at the
    first unfilled slot, so an out-of-order approval is kept but only counts
    once every earlier slot is filled. With no sequence configured, approvals
    count in the order they were recorded.
    """

    def counted(self, approvals: Sequence[ApplicationDecisionDB], settings: ApprovalSettings) -> int:
        ordered = sorted(approvals, key=lambda d: d.sequence)
        roles = list(settings.approval_sequence)
        if not roles:
            return min(len(ordered), settings.required_approvals)

        used = set()
        filled = 0
        for slot in range(settings.required_approvals):
            expected = roles[min(slot, len(roles) - 1)]
            match = next(
                (i for i, d in enumerate(ordered) if i not in used and d.registrar_role == expected),
                None,
            )
            if match is None:
                break
            used.add(match)
            filled += 1
        return filled


class ApprovalCoordinator:
    """Quorum evaluation against a settings snapshot."""

    def __init__(self, sequence_policy: Optional[SequencePolicy] = None):
        self.sequence_policy = sequence_policy or RoleSequencePolicy()

    @staticmethod
    def approvals(application: ApplicationDB) -> List[ApplicationDecisionDB]:
        return [d for d in application.decisions if d.decision == Decision.APPROVE]

    def required(self, settings: ApprovalSettings) -> int:
        return settings.required_approvals if settings.enabled else 1

    def counted_approvals(self, application: ApplicationDB, settings: ApprovalSettings) -> int:
        approvals = self.approvals(application)
        if not settings.enabled:
            return min(len(approvals), 1)
        if settings.approval_type == ApprovalType.SEQUENTIAL:
            return self.sequence_policy.counted(approvals, settings)
        return len(approvals)

    def is_quorum_met(self, application: ApplicationDB, settings: ApprovalSettings) -> bool:
        return self.counted_approvals(application, settings) >= self.required(settings)

    def progress(self, application: ApplicationDB, settings: ApprovalSettings) -> ApprovalProgress:
        return ApprovalProgress(
            approved=len(self.approvals(application)),
            counted=self.counted_approvals(application, settings),
            required=self.required(settings),
        )


_default = ApprovalCoordinator()


def is_quorum_met(application: ApplicationDB, settings: ApprovalSettings) -> bool:
    return _default.is_quorum_met(application, settings)


def counted_approvals(application: ApplicationDB, settings: ApprovalSettings) -> int:
    return _default.counted_approvals(application, settings)
