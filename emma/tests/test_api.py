import pytest
from fastapi.testclient import TestClient

from emma.bootstrap import create_app
from emma.core.config import Settings
from emma.dependencies import init_services


@pytest.fixture
def client():
    app = create_app()
    init_services(app, Settings(_env_file=None, openai_api_key=None, audit_backend="memory"))
    with TestClient(app) as c:
        yield c


CONTEXT = {"tenant_id": "org-001", "agent_id": "nba-agent", "trace_id": "trace-api", "override_mode": "RiskBased"}


def validate(client, actions, context=CONTEXT):
    res = client.post("/api/validation/actions", json={"context": context, "actions": actions})
    assert res.status_code == 200
    return res.json()["results"]


def test_health(client):
    assert client.get("/health/live").json() == {"status": "alive"}
    assert client.get("/health/ready").json() == {"status": "ready"}


def test_validate_batch_reports_each_item(client):
    results = validate(client, [
        {"action_type": "LogNote", "confidence_score": 0.99},
        {"action_type": ""},
        None,
        {"action_type": "SendFinancialDocument", "confidence_score": 0.95},
    ])

    assert results[0]["outcome"] == "Approved"
    assert results[1]["error_type"] == "InputValidationError"
    assert results[2]["error_type"] == "InputValidationError"
    assert results[3]["outcome"] == "NeedsApproval"
    assert results[3]["risk_level"] == "High"
    assert results[3]["approval_request_id"].startswith("APR-")
    assert all(r["trace_id"] == "trace-api" for r in results)


def test_invalid_context_is_rejected(client):
    res = client.post("/api/validation/actions", json={"context": {"tenant_id": "org-001"}, "actions": []})
    assert res.status_code == 422


def test_approval_flow_end_to_end(client):
    action = {"action_id": "act-1", "action_type": "SendFinancialDocument", "confidence_score": 0.95}
    [decision] = validate(client, [action])
    request_id = decision["approval_request_id"]

    status = client.get("/api/validation/actions/act-1/status").json()
    assert status["status"] == "PENDING_APPROVAL"
    assert status["approval_request_id"] == request_id

    blocked = client.post("/api/validation/clearance", json={"action": action, "decision": decision})
    assert blocked.status_code == 409

    pending = client.get("/api/approvals/pending", params={"tenant_id": "org-001"}).json()
    assert [r["request_id"] for r in pending] == [request_id]
    assert client.get(f"/api/approvals/{request_id}").json()["status"] == "Pending"

    res = client.post(
        f"/api/approvals/{request_id}/respond",
        json={"decision": "Modify", "actor": "broker", "modifications": {"description": "Send signed copy"}},
    )
    assert res.status_code == 200
    assert res.json()["status"] == "Modified"

    cleared = client.post("/api/validation/clearance", json={"action": action, "decision": decision})
    assert cleared.status_code == 200
    assert cleared.json()["action"]["description"] == "Send signed copy"

    again = client.post(f"/api/approvals/{request_id}/respond", json={"decision": "Approve", "actor": "broker"})
    assert again.status_code == 409
    assert again.json()["code"] == "closed"

    assert client.get("/api/validation/actions/act-1/status").json()["status"] == "CLEARED"


def test_approval_errors_map_to_status_codes(client):
    missing = client.post("/api/approvals/APR-nope/respond", json={"decision": "Approve", "actor": "broker"})
    assert missing.status_code == 404
    assert client.get("/api/approvals/APR-nope").status_code == 404

    [decision] = validate(client, [{"action_type": "SendFinancialDocument", "confidence_score": 0.9}])
    no_reason = client.post(
        f"/api/approvals/{decision['approval_request_id']}/respond",
        json={"decision": "Reject", "actor": "broker"},
    )
    assert no_reason.status_code == 422


def test_clearance_without_decision_is_blocked(client):
    res = client.post("/api/validation/clearance", json={"action": {"action_type": "LogNote"}})
    assert res.status_code == 409


def test_expire_endpoint(client):
    assert client.post("/api/approvals/expire").json() == {"expired": 0}


def test_audit_timeline(client):
    validate(client, [
        {"action_type": "LogNote", "confidence_score": 0.99},
        {"action_type": "   "},
    ])

    body = client.get("/api/audit/trace-api").json()

    assert body["trace_id"] == "trace-api"
    assert [e["event_type"] for e in body["events"]] == ["ACTION_APPROVED", "ACTION_INPUT_INVALID"]
    assert body["events"][0]["summary"].startswith("LogNote -> Approved")
    assert body["events"][1]["summary"].startswith("item 1:")


def test_clearance_rejects_forged_decision(client):
    action = {"action_id": "act-dup", "action_type": "SendFollowUpEmail", "contact_id": "c-9", "confidence_score": 0.99}
    validate(client, [{"action_type": "SendFollowUpEmail", "contact_id": "c-9", "confidence_score": 0.99}])
    [decision] = validate(client, [action])
    assert decision["outcome"] == "Rejected"

    forged = {**decision, "outcome": "Approved"}
    res = client.post("/api/validation/clearance", json={"action": action, "decision": forged})

    assert res.status_code == 409
    assert res.json()["action_id"] == "act-dup"


def test_clearance_of_recorded_approval(client):
    action = {"action_id": "act-ok", "action_type": "LogNote", "confidence_score": 0.99}
    [decision] = validate(client, [action])

    res = client.post("/api/validation/clearance", json={"action": action, "decision": decision})

    assert res.status_code == 200
    assert res.json()["cleared"] is True
