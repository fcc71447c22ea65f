"""
Tests for the Application Service and state machine.

Covers:
1. Submission validation (issue, transfer, correction)
2. Decision rules: self-approval, duplicates, rejection reasons, terminal states
3. Quorum hand-off to certification
4. Registrar inbox and approval history
5. Optimistic concurrency on concurrent decisions
"""
import pytest

from title_registry.exceptions import (
    ConcurrentModificationError,
    DuplicateApprovalError,
    InvalidStateError,
    NotFoundError,
    PropertyFrozenError,
    SelfApprovalError,
    ValidationError,
)
from title_registry.models.db_models import (
    ActorRole,
    ApplicationKind,
    ApplicationStatus,
    AuditAction,
    AuditEntryDB,
    CertificationState,
)
from title_registry.models.domain import Actor
from title_registry.services.approvals import ApplicationService, ApplicationStateMachine


# =============================================================================
# TEST: STATE MACHINE
# =============================================================================

class TestApplicationStateMachine:

    def test_review_then_approve(self):
        sm = ApplicationStateMachine()
        status = sm.transition(ApplicationStatus.PENDING, "review")
        assert status == ApplicationStatus.UNDER_REVIEW
        assert sm.transition(status, "approve") == ApplicationStatus.APPROVED

    def test_pending_can_be_rejected_directly(self):
        assert ApplicationStateMachine().transition(
            ApplicationStatus.PENDING, "reject"
        ) == ApplicationStatus.REJECTED

    @pytest.mark.parametrize("terminal", [ApplicationStatus.APPROVED, ApplicationStatus.REJECTED])
    def test_terminal_states_reject_everything(self, terminal):
        sm = ApplicationStateMachine()
        assert sm.is_terminal(terminal)
        for action in ("review", "approve", "reject"):
            with pytest.raises(InvalidStateError):
                sm.transition(terminal, action)

    def test_review_is_not_repeatable(self):
        with pytest.raises(InvalidStateError):
            ApplicationStateMachine().transition(ApplicationStatus.UNDER_REVIEW, "review")


# =============================================================================
# TEST: SUBMIT
# =============================================================================

class TestSubmit:

    def test_issue_application_created_pending(self, applications, citizen, draft, db):
        app = applications.submit(citizen, "issue", draft, document_refs=["doc-1"])

        assert app.app_id.startswith("APP-")
        assert app.status == ApplicationStatus.PENDING
        assert app.kind == ApplicationKind.ISSUE
        assert app.applicant_ref == citizen.ref
        assert app.certification_state == CertificationState.NONE
        assert app.property_id is None
        assert app.document_refs == ["doc-1"]

        entry = db.query(AuditEntryDB).filter(AuditEntryDB.subject_ref == app.app_id).one()
        assert entry.action == AuditAction.APPLICATION_SUBMITTED
        assert entry.actor_ref == citizen.ref

    def test_dict_draft_accepted(self, applications, citizen):
        app = applications.submit(citizen, ApplicationKind.ISSUE, {
            "owner_name": "  Meera Das ",
            "address_line1": "4 Hill St",
            "district": "Shimla",
            "state": "HP",
            "pincode": "171001",
            "area_sqft": "800",
            "value": 1000,
        })
        assert app.owner_name == "Meera Das"
        assert app.area_sqft == 800.0

    @pytest.mark.parametrize("field,value,reason", [
        ("owner_name", "", "required"),
        ("address_line1", "   ", "required"),
        ("pincode", None, "required"),
        ("area_sqft", 0, "must be positive"),
        ("value", -5, "must be positive"),
        ("area_sqft", "big", "must be a number"),
    ])
    def test_invalid_draft_rejected(self, applications, citizen, draft, field, value, reason):
        fields = {
            "owner_name": draft.owner_name,
            "address_line1": draft.address_line1,
            "district": draft.district,
            "state": draft.state,
            "pincode": draft.pincode,
            "area_sqft": draft.area_sqft,
            "value": draft.value,
        }
        fields[field] = value

        with pytest.raises(ValidationError) as exc:
            applications.submit(citizen, "issue", fields)
        assert exc.value.details["fields"][field] == reason

    def test_unknown_kind(self, applications, citizen, draft):
        with pytest.raises(ValidationError):
            applications.submit(citizen, "mortgage", draft)

    def test_unknown_draft_field(self, applications, citizen):
        with pytest.raises(ValidationError):
            applications.submit(citizen, "issue", {"owner_name": "X", "colour": "blue"})

    def test_transfer_requires_target(self, applications, citizen):
        with pytest.raises(ValidationError):
            applications.submit(citizen, "transfer", {"owner_name": "Ravi Kumar"})

    def test_transfer_unknown_target(self, applications, citizen):
        with pytest.raises(NotFoundError):
            applications.submit(citizen, "transfer", {"owner_name": "Ravi"}, target_property_id="PROP-NOPE")

    def test_transfer_prefills_from_current_title(self, applications, citizen, certified_property, draft):
        app = applications.submit(
            citizen, "transfer",
            {"owner_name": "Ravi Kumar", "owner_ref": "citizen-2"},
            target_property_id=certified_property,
        )
        assert app.owner_name == "Ravi Kumar"
        assert app.owner_ref == "citizen-2"
        assert app.district == draft.district
        assert app.area_sqft == draft.area_sqft
        assert app.target_property_id == certified_property

    def test_transfer_of_disputed_property_blocked(
        self, applications, disputes, citizen, buyer, certified_property, db
    ):
        disputes.raise_dispute(certified_property, buyer, "Forged sale deed")

        with pytest.raises(PropertyFrozenError):
            applications.submit(citizen, "transfer", {"owner_name": "Ravi"}, target_property_id=certified_property)

    def test_issue_ignores_target_property(self, applications, citizen, draft):
        app = applications.submit(citizen, "issue", draft, target_property_id="PROP-X")
        assert app.target_property_id is None


# =============================================================================
# TEST: DECISIONS
# =============================================================================

class TestRecordDecision:

    @pytest.fixture
    def app_id(self, applications, citizen, draft):
        return applications.submit(citizen, "issue", draft).app_id

    def test_first_approval_moves_to_under_review(self, applications, app_id, registrar_a, db):
        app = applications.record_decision(app_id, registrar_a, "approve", "Docs in order")

        assert app.status == ApplicationStatus.UNDER_REVIEW
        assert len(app.decisions) == 1
        assert app.decisions[0].registrar_role == "junior"
        assert app.property_id is None

        actions = [e.action for e in db.query(AuditEntryDB).filter(AuditEntryDB.subject_ref == app_id)]
        assert AuditAction.APPROVAL_RECORDED in actions

    def test_quorum_certifies_and_approves(self, applications, app_id, registrar_a, registrar_b, ledger):
        applications.record_decision(app_id, registrar_a, "approve")
        app = applications.record_decision(app_id, registrar_b, "approve")

        assert app.status == ApplicationStatus.APPROVED
        assert app.certification_state == CertificationState.CERTIFIED
        assert app.property_id.startswith("PROP-")
        assert app.ledger_tx_hash.startswith("0x")
        assert ledger.submission_count == 1

    def test_self_approval_rejected(self, applications, app_id, citizen):
        as_registrar = Actor(ref=citizen.ref, role=ActorRole.REGISTRAR)
        with pytest.raises(SelfApprovalError):
            applications.record_decision(app_id, as_registrar, "approve")

    def test_duplicate_decision_rejected(self, applications, app_id, registrar_a):
        applications.record_decision(app_id, registrar_a, "approve")
        with pytest.raises(DuplicateApprovalError):
            applications.record_decision(app_id, registrar_a, "approve")

    def test_reject_requires_reason(self, applications, app_id, registrar_a):
        with pytest.raises(ValidationError):
            applications.record_decision(app_id, registrar_a, "reject")
        with pytest.raises(ValidationError):
            applications.record_decision(app_id, registrar_a, "reject", "no")

    def test_reject_is_immediate_and_final(self, applications, app_id, registrar_a, registrar_b, ledger):
        applications.record_decision(app_id, registrar_a, "approve")
        app = applications.record_decision(app_id, registrar_b, "reject", "Survey number mismatch")

        assert app.status == ApplicationStatus.REJECTED
        assert app.rejection_reason == "Survey number mismatch"
        assert app.decided_at is not None
        assert ledger.submission_count == 0

        late = Actor(ref="registrar-z", role=ActorRole.REGISTRAR)
        with pytest.raises(InvalidStateError):
            applications.record_decision(app_id, late, "approve")

    def test_decision_after_approval_rejected(self, applications, app_id, registrar_a, registrar_b, registrar_c):
        applications.record_decision(app_id, registrar_a, "approve")
        applications.record_decision(app_id, registrar_b, "approve")

        with pytest.raises(InvalidStateError):
            applications.record_decision(app_id, registrar_c, "reject", "Too late")

    def test_decision_while_certification_in_flight(self, applications, app_id, registrar_a, db):
        app = applications.get(app_id)
        app.certification_state = CertificationState.SUBMITTED
        db.commit()

        with pytest.raises(InvalidStateError):
            applications.record_decision(app_id, registrar_a, "approve")

    def test_unknown_application(self, applications, registrar_a):
        with pytest.raises(NotFoundError):
            applications.record_decision("APP-MISSING", registrar_a, "approve")

    def test_unknown_decision(self, applications, app_id, registrar_a):
        with pytest.raises(ValidationError):
            applications.record_decision(app_id, registrar_a, "maybe")


# =============================================================================
# TEST: CONCURRENCY
# =============================================================================

class TestConcurrentDecisions:

    def test_stale_decision_is_rejected(
        self, applications, session_factory, gateway, citizen, draft, registrar_a, registrar_b
    ):
        """Two registrars deciding from the same read: the second write loses."""
        app_id = applications.submit(citizen, "issue", draft).app_id
        app = applications.get(app_id)
        len(app.decisions), app.version  # session 1 now holds version 1 and its decisions

        other = session_factory()
        try:
            ApplicationService(other, gateway).record_decision(app_id, registrar_b, "approve")
        finally:
            other.close()

        with pytest.raises(ConcurrentModificationError) as exc:
            applications.record_decision(app_id, registrar_a, "approve")
        assert exc.value.retryable is True

        # Retrying after a fresh read succeeds
        app = applications.record_decision(app_id, registrar_a, "approve")
        assert app.status == ApplicationStatus.APPROVED
        assert len(app.decisions) == 2

    def test_version_increments_per_decision(self, applications, citizen, draft, registrar_a):
        app = applications.submit(citizen, "issue", draft)
        before = app.version
        app = applications.record_decision(app.app_id, registrar_a, "approve")
        assert app.version == before + 1


# =============================================================================
# TEST: QUERIES
# =============================================================================

class TestQueries:

    def test_list_for_applicant(self, applications, citizen, buyer, draft):
        mine = applications.submit(citizen, "issue", draft)
        applications.submit(buyer, "issue", draft)

        result = applications.list_for_applicant(citizen.ref)
        assert [a.app_id for a in result] == [mine.app_id]

    def test_inbox_excludes_decided_and_own(self, applications, citizen, draft, registrar_a):
        first = applications.submit(citizen, "issue", draft)
        second = applications.submit(citizen, "issue", draft)
        own = applications.submit(Actor(ref=registrar_a.ref, role=ActorRole.CITIZEN), "issue", draft)
        applications.record_decision(first.app_id, registrar_a, "approve")

        inbox = [a.app_id for a in applications.inbox(registrar_a.ref)]

        assert second.app_id in inbox
        assert first.app_id not in inbox
        assert own.app_id not in inbox

    def test_inbox_excludes_terminal(self, applications, citizen, draft, registrar_a, registrar_b):
        app = applications.submit(citizen, "issue", draft)
        applications.record_decision(app.app_id, registrar_b, "reject", "Incomplete deed")
        assert applications.inbox(registrar_a.ref) == []

    def test_inbox_filters_by_kind(self, applications, citizen, draft, registrar_c, certified_property):
        applications.submit(citizen, "correction", {"area_sqft": 1250}, target_property_id=certified_property)
        issues = applications.inbox(registrar_c.ref, kind=ApplicationKind.ISSUE)
        corrections = applications.inbox(registrar_c.ref, kind=ApplicationKind.CORRECTION)
        assert issues == []
        assert len(corrections) == 1

    def test_approval_history(self, applications, citizen, draft, registrar_a):
        app = applications.submit(citizen, "issue", draft)
        applications.record_decision(app.app_id, registrar_a, "approve", "Checked survey")

        history = applications.approval_history(app.app_id)

        assert history["approval_type"] == "parallel"
        assert history["steps"][0]["step"] == 1
        assert history["steps"][0]["registrar_ref"] == registrar_a.ref
        assert history["steps"][0]["comment"] == "Checked survey"
        assert history["progress"] == {"approved": 1, "counted": 1, "required": 2, "remaining": 1}

    def test_to_dict(self, applications, citizen, draft):
        data = ApplicationService.to_dict(applications.submit(citizen, "issue", draft))
        assert data["status"] == "pending"
        assert data["draft"]["address"]["district"] == draft.district
        assert data["decisions"] == []
