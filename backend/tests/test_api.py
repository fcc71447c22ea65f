"""
HTTP boundary tests: role checks, error mapping, end-to-end lifecycle.
"""
import pytest
from fastapi.testclient import TestClient

from title_registry.auth import create_access_token
from title_registry.database import get_db
from title_registry.dependencies import get_ledger_gateway
from title_registry.main import app


def auth(ref, role, registrar_role=None):
    token = create_access_token(ref, role, registrar_role=registrar_role)
    return {"Authorization": f"Bearer {token}"}


CITIZEN = auth("citizen-1", "citizen")
BUYER = auth("citizen-2", "citizen")
REGISTRAR_A = auth("registrar-a", "registrar", "junior")
REGISTRAR_B = auth("registrar-b", "registrar", "senior")
COURT = auth("court-1", "court")
ADMIN = auth("admin-1", "admin")

DRAFT = {
    "owner_name": "Asha Verma",
    "address_line1": "12 Lake Road",
    "district": "Pune",
    "state": "Maharashtra",
    "pincode": "411001",
    "area_sqft": 1200,
    "value": 4500000,
}


@pytest.fixture
def client(session_factory, gateway):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_ledger_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


def submit(client, draft=None, **extra):
    body = {"kind": "issue", "draft": draft or DRAFT}
    body.update(extra)
    response = client.post("/api/applications", json=body, headers=CITIZEN)
    assert response.status_code == 201, response.text
    return response.json()["app_id"]


def approve(client, app_id, headers):
    return client.post(f"/api/applications/{app_id}/decision", json={"decision": "approve"}, headers=headers)


@pytest.fixture
def property_id(client):
    app_id = submit(client)
    approve(client, app_id, REGISTRAR_A)
    response = approve(client, app_id, REGISTRAR_B)
    assert response.status_code == 200, response.text
    return response.json()["property_id"]


# =============================================================================
# TEST: AUTH BOUNDARY
# =============================================================================

class TestAuth:

    def test_missing_token(self, client):
        response = client.post("/api/applications", json={"draft": DRAFT})
        assert response.status_code in (401, 403)

    def test_bad_token(self, client):
        response = client.get("/api/applications/mine", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    def test_unknown_role_rejected(self, client):
        response = client.get("/api/applications/mine", headers=auth("x-1", "superuser"))
        assert response.status_code == 401

    def test_citizen_cannot_decide(self, client):
        app_id = submit(client)
        response = approve(client, app_id, BUYER)

        assert response.status_code == 403
        assert response.json()["error"] == "PERMISSION_DENIED"

    def test_registrar_cannot_submit(self, client):
        response = client.post("/api/applications", json={"draft": DRAFT}, headers=REGISTRAR_A)
        assert response.status_code == 403

    def test_citizen_sees_only_own_application(self, client):
        app_id = submit(client)
        assert client.get(f"/api/applications/{app_id}", headers=CITIZEN).status_code == 200
        assert client.get(f"/api/applications/{app_id}", headers=BUYER).status_code == 403

    def test_admin_routes_require_admin(self, client):
        assert client.get("/api/admin/approval-settings", headers=REGISTRAR_A).status_code == 403
        assert client.get("/api/admin/approval-settings", headers=ADMIN).status_code == 200


# =============================================================================
# TEST: ERROR MAPPING
# =============================================================================

class TestErrors:

    def test_invalid_draft_is_400(self, client):
        response = client.post(
            "/api/applications",
            json={"kind": "issue", "draft": {**DRAFT, "area_sqft": -5}},
            headers=CITIZEN,
        )
        body = response.json()

        assert response.status_code == 400
        assert body["error"] == "VALIDATION_ERROR"
        assert body["details"]["fields"]["area_sqft"] == "must be positive"

    def test_unknown_application_is_404(self, client):
        response = client.get("/api/applications/APP-NONE", headers=ADMIN)
        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"

    def test_duplicate_decision_is_409(self, client):
        app_id = submit(client)
        approve(client, app_id, REGISTRAR_A)
        response = approve(client, app_id, REGISTRAR_A)

        assert response.status_code == 409
        assert response.json()["error"] == "DUPLICATE_APPROVAL"

    def test_ledger_outage_is_503_with_retry_after(self, client, ledger):
        app_id = submit(client)
        approve(client, app_id, REGISTRAR_A)
        ledger.available = False

        response = approve(client, app_id, REGISTRAR_B)

        assert response.status_code == 503
        assert response.json()["error"] == "LEDGER_UNAVAILABLE"
        assert response.headers["Retry-After"] == "1"

        ledger.available = True
        retry = client.post(f"/api/applications/{app_id}/certify", headers=REGISTRAR_B)
        assert retry.status_code == 200
        assert retry.json()["status"] == "approved"

    def test_transfer_of_disputed_property_is_423(self, client, property_id):
        client.post("/api/disputes", json={"property_id": property_id, "reason": "Forged deed"}, headers=BUYER)

        response = client.post(
            "/api/applications",
            json={"kind": "transfer", "draft": {"owner_name": "Ravi Kumar"}, "target_property_id": property_id},
            headers=CITIZEN,
        )

        assert response.status_code == 423
        assert response.json()["error"] == "PROPERTY_FROZEN"


# =============================================================================
# TEST: LIFECYCLE
# =============================================================================

class TestLifecycle:

    def test_issue_to_verification(self, client):
        app_id = submit(client, document_refs=["doc-sale-deed"])

        inbox = client.get("/api/applications/inbox", headers=REGISTRAR_A).json()
        assert [a["app_id"] for a in inbox["applications"]] == [app_id]

        first = approve(client, app_id, REGISTRAR_A).json()
        assert first["status"] == "under-review"

        history = client.get(f"/api/applications/{app_id}/approvals", headers=REGISTRAR_B).json()
        assert history["progress"]["remaining"] == 1

        second = approve(client, app_id, REGISTRAR_B).json()
        assert second["status"] == "approved"
        assert second["ledger_tx_hash"].startswith("0x")
        property_id = second["property_id"]

        public = client.get(f"/api/public/properties/{property_id}").json()
        assert public["document_refs"] == ["doc-sale-deed"]

        by_id = client.post("/api/public/verify", json={"property_id": property_id}).json()
        assert by_id["valid"] is True
        assert by_id["reason"] == "VERIFIED"

        by_qr = client.post("/api/public/verify", json={"qr_data": public["certificate"]["qr_payload"]}).json()
        assert by_qr["valid"] is True

        mine = client.get("/api/applications/mine", headers=CITIZEN).json()
        assert mine["total"] == 1

    def test_rejection_needs_reason(self, client):
        app_id = submit(client)

        short = client.post(
            f"/api/applications/{app_id}/decision",
            json={"decision": "reject", "comment": "no"},
            headers=REGISTRAR_A,
        )
        assert short.status_code == 400

        rejected = client.post(
            f"/api/applications/{app_id}/decision",
            json={"decision": "reject", "comment": "Survey number mismatch"},
            headers=REGISTRAR_A,
        )
        assert rejected.json()["status"] == "rejected"

    def test_verify_unknown_property_is_still_200(self, client):
        response = client.post("/api/public/verify", json={"property_id": "PROP-NONE"})
        assert response.status_code == 200
        assert response.json()["reason"] == "PROPERTY_NOT_FOUND"

    def test_verify_deeply_nested_qr_is_still_200(self, client):
        nested = '{"a":' * 100000 + "1" + "}" * 100000
        response = client.post("/api/public/verify", json={"qr_data": nested})
        assert response.status_code == 200
        assert response.json()["reason"] == "INVALID_QR_DATA"

    def test_dispute_through_court(self, client, property_id):
        raised = client.post(
            "/api/disputes", json={"property_id": property_id, "reason": "Forged deed"}, headers=BUYER,
        )
        assert raised.status_code == 201
        dispute_id = raised.json()["dispute_id"]

        verify = client.post("/api/public/verify", json={"property_id": property_id}).json()
        assert verify["property"]["status"] == "disputed"

        case = client.post(f"/api/disputes/{dispute_id}/refer", headers=REGISTRAR_A).json()
        case_id = case["case_id"]

        assert client.post(
            f"/api/court/cases/{case_id}/orders", json={"text": "Maintain status quo"}, headers=COURT,
        ).status_code == 200
        assert client.post(
            f"/api/court/cases/{case_id}/hearings",
            json={"date": "2099-03-01T10:00:00+05:30", "venue": "Court Room 2"},
            headers=COURT,
        ).status_code == 200

        hearings = client.get("/api/court/hearings", headers=COURT).json()
        assert hearings["hearings"][0]["case_id"] == case_id

        closed = client.post(
            f"/api/court/cases/{case_id}/close", json={"resolution": "Title upheld"}, headers=COURT,
        )
        assert closed.json()["status"] == "closed"

        detail = client.get(f"/api/court/cases/{case_id}", headers=COURT).json()
        assert detail["dispute"]["status"] == "resolved"
        assert detail["property"]["status"] == "approved"

    def test_citizen_cannot_refer(self, client, property_id):
        dispute_id = client.post(
            "/api/disputes", json={"property_id": property_id, "reason": "Forged deed"}, headers=BUYER,
        ).json()["dispute_id"]
        assert client.post(f"/api/disputes/{dispute_id}/refer", headers=BUYER).status_code == 403


# =============================================================================
# TEST: ADMIN
# =============================================================================

class TestAdmin:

    def test_update_settings_and_audit(self, client):
        response = client.put(
            "/api/admin/approval-settings",
            json={"required_approvals": 1, "approval_type": "parallel"},
            headers=ADMIN,
        )
        assert response.status_code == 200
        assert response.json()["required_approvals"] == 1

        app_id = submit(client)
        assert approve(client, app_id, REGISTRAR_A).json()["status"] == "approved"

        audit = client.get("/api/admin/audit", params={"action": "SETTINGS_UPDATED"}, headers=ADMIN).json()
        assert audit["total"] == 1
        assert audit["entries"][0]["actor_ref"] == "admin-1"

        trail = client.get(f"/api/admin/audit/{app_id}", headers=ADMIN).json()
        assert trail["entries"][0]["action"] == "APPLICATION_SUBMITTED"

    def test_out_of_range_settings_rejected(self, client):
        response = client.put("/api/admin/approval-settings", json={"required_approvals": 9}, headers=ADMIN)
        assert response.status_code == 400


# =============================================================================
# TEST: PROPERTY LOOKUP
# =============================================================================

class TestPropertyLookup:

    def test_registrar_property_list(self, client, property_id):
        listing = client.get("/api/registrar/properties", headers=REGISTRAR_A).json()
        assert listing["total"] == 1
        assert listing["has_more"] is False
        assert listing["properties"][0]["property_id"] == property_id

        searched = client.get(
            "/api/registrar/properties", params={"search": "verma", "page": 1, "limit": 10}, headers=ADMIN,
        ).json()
        assert [p["property_id"] for p in searched["properties"]] == [property_id]

        missed = client.get("/api/registrar/properties", params={"search": "Nagpur"}, headers=REGISTRAR_A).json()
        assert missed["total"] == 0

    def test_registrar_quick_search(self, client, property_id):
        found = client.get("/api/registrar/search", params={"q": "Pune"}, headers=COURT).json()
        assert [p["property_id"] for p in found["properties"]] == [property_id]

        short = client.get("/api/registrar/search", params={"q": "P"}, headers=REGISTRAR_A).json()
        assert short == {"properties": []}

    def test_citizen_cannot_list_registry(self, client, property_id):
        assert client.get("/api/registrar/properties", headers=CITIZEN).status_code == 403
        assert client.get("/api/registrar/search", params={"q": "Pune"}, headers=CITIZEN).status_code == 403

    def test_citizen_properties_and_disputes(self, client, property_id):
        mine = client.get("/api/citizen/properties", headers=CITIZEN).json()
        assert [p["property_id"] for p in mine["properties"]] == [property_id]
        assert client.get("/api/citizen/properties", headers=BUYER).json()["total"] == 0

        dispute_id = client.post(
            "/api/disputes", json={"property_id": property_id, "reason": "Forged deed"}, headers=BUYER,
        ).json()["dispute_id"]

        for headers in (CITIZEN, BUYER):
            disputes = client.get("/api/citizen/disputes", headers=headers).json()["disputes"]
            assert [d["dispute_id"] for d in disputes] == [dispute_id]
            assert disputes[0]["available_actions"] == ["refer", "dismiss"]

        assert client.get("/api/citizen/disputes", headers=REGISTRAR_A).status_code == 403
