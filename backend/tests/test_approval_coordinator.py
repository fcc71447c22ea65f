"""
Tests for the Approval Coordinator.

Quorum is a pure function of (recorded decisions, settings snapshot):
1. Multi-step approval disabled → one approval suffices
2. Parallel → any N approvals
3. Sequential → approvals count only in policy order
4. Progress reporting
"""
import pytest

from title_registry.models.db_models import (
    ApplicationDB,
    ApplicationDecisionDB,
    ApprovalType,
    Decision,
)
from title_registry.models.domain import ApprovalSettings
from title_registry.services.approvals import (
    ApprovalCoordinator,
    RoleSequencePolicy,
    counted_approvals,
    is_quorum_met,
)


def make_application(*votes):
    """votes: (registrar_ref, registrar_role[, decision]) in submission order."""
    app = ApplicationDB(app_id="APP-TEST")
    for i, vote in enumerate(votes, start=1):
        ref, role = vote[0], vote[1]
        decision = vote[2] if len(vote) > 2 else Decision.APPROVE
        app.decisions.append(ApplicationDecisionDB(
            sequence=i,
            registrar_ref=ref,
            registrar_role=role,
            decision=decision,
        ))
    return app


PARALLEL_2 = ApprovalSettings(enabled=True, required_approvals=2, approval_type=ApprovalType.PARALLEL)


# =============================================================================
# TEST: DISABLED / PARALLEL
# =============================================================================

class TestParallelQuorum:

    def test_disabled_needs_single_approval(self):
        settings = ApprovalSettings(enabled=False, required_approvals=3)
        assert is_quorum_met(make_application(("r1", None)), settings) is True
        assert is_quorum_met(make_application(), settings) is False

    def test_parallel_counts_distinct_approvals(self):
        assert is_quorum_met(make_application(("r1", None)), PARALLEL_2) is False
        assert is_quorum_met(make_application(("r1", None), ("r2", None)), PARALLEL_2) is True

    def test_parallel_ignores_roles(self):
        app = make_application(("r1", "senior"), ("r2", "senior"))
        assert counted_approvals(app, PARALLEL_2) == 2

    def test_rejections_do_not_count(self):
        app = make_application(("r1", None), ("r2", None, Decision.REJECT))
        assert counted_approvals(app, PARALLEL_2) == 1

    def test_same_application_different_snapshots(self):
        """Settings are an input, never read from shared state."""
        app = make_application(("r1", None))
        one = ApprovalSettings(enabled=True, required_approvals=1)
        assert is_quorum_met(app, one) is True
        assert is_quorum_met(app, PARALLEL_2) is False


# =============================================================================
# TEST: SEQUENTIAL
# =============================================================================

class TestSequentialQuorum:

    @pytest.fixture
    def sequential(self):
        return ApprovalSettings(
            enabled=True,
            required_approvals=2,
            approval_type=ApprovalType.SEQUENTIAL,
            approval_sequence=("junior", "senior"),
        )

    def test_in_order_approvals_meet_quorum(self, sequential):
        app = make_application(("r1", "junior"), ("r2", "senior"))
        assert is_quorum_met(app, sequential) is True

    def test_out_of_order_approval_waits_for_predecessor(self, sequential):
        """A senior approval alone fills nothing: slot 0 expects junior."""
        app = make_application(("r2", "senior"))
        assert counted_approvals(app, sequential) == 0
        assert is_quorum_met(app, sequential) is False

    def test_out_of_order_approval_counts_once_predecessor_fills(self, sequential):
        app = make_application(("r2", "senior"), ("r1", "junior"))
        assert counted_approvals(app, sequential) == 2

    def test_wrong_role_never_counts(self, sequential):
        app = make_application(("r1", "junior"), ("r3", "junior"))
        assert counted_approvals(app, sequential) == 1

    def test_last_role_repeats_for_extra_slots(self):
        settings = ApprovalSettings(
            enabled=True,
            required_approvals=3,
            approval_type=ApprovalType.SEQUENTIAL,
            approval_sequence=("junior", "senior"),
        )
        two_seniors = make_application(("r1", "junior"), ("r2", "senior"), ("r3", "senior"))
        junior_again = make_application(("r1", "junior"), ("r2", "senior"), ("r3", "junior"))

        assert is_quorum_met(two_seniors, settings) is True
        assert counted_approvals(junior_again, settings) == 2

    def test_empty_sequence_counts_in_submission_order(self):
        settings = ApprovalSettings(
            enabled=True,
            required_approvals=2,
            approval_type=ApprovalType.SEQUENTIAL,
        )
        assert counted_approvals(make_application(("r1", None)), settings) == 1
        assert is_quorum_met(make_application(("r1", None), ("r2", "x")), settings) is True


# =============================================================================
# TEST: POLICY SEAM & PROGRESS
# =============================================================================

class TestCoordinator:

    def test_custom_sequence_policy(self):
        class NothingCounts:
            def counted(self, approvals, settings):
                return 0

        settings = ApprovalSettings(enabled=True, required_approvals=1, approval_type=ApprovalType.SEQUENTIAL)
        coordinator = ApprovalCoordinator(sequence_policy=NothingCounts())
        assert coordinator.is_quorum_met(make_application(("r1", None)), settings) is False

    def test_default_policy_is_role_sequence(self):
        assert isinstance(ApprovalCoordinator().sequence_policy, RoleSequencePolicy)

    def test_progress(self):
        progress = ApprovalCoordinator().progress(make_application(("r1", None)), PARALLEL_2)
        assert progress.to_dict() == {"approved": 1, "counted": 1, "required": 2, "remaining": 1}

    def test_progress_when_disabled_requires_one(self):
        settings = ApprovalSettings(enabled=False, required_approvals=4)
        progress = ApprovalCoordinator().progress(make_application(), settings)
        assert progress.required == 1
        assert progress.remaining == 1
