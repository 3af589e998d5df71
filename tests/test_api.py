"""
HTTP-level tests against the assembled application
"""
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from bankguard.main import create_app
from bankguard.services.embedding_service import HashEmbeddingProvider
from bankguard.services.pipeline_orchestrator import PERMISSION_DENIED_MESSAGE

from tests.conftest import TEST_DIMENSION, llm_answer


@pytest.fixture
def client(settings, fake_llm):
    app = create_app(settings, llm=fake_llm, embedding_provider=HashEmbeddingProvider(TEST_DIMENSION))
    with TestClient(app) as test_client:
        yield test_client


def flush_audit(client):
    client.app.state.registry.audit.flush(timeout=5)


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["components"]["database"]["status"] == "healthy"
    assert body["components"]["llm_circuit"]["state"] == "closed"


def test_metrics(client):
    client.get("/health")
    response = client.get("/metrics")

    assert response.status_code == 200
    assert "http_requests_total" in response.text


def test_default_roles_are_seeded(client):
    names = [r["name"] for r in client.get("/api/rbac/roles").json()]
    assert "ADMIN" in names
    assert "CUSTOMER" in names


def test_query_flow(client, fake_llm):
    fake_llm.chat.return_value = llm_answer(
        {"score": 0.1, "explanation": "Your card is active.", "recommended_action": "None"}
    )

    response = client.post("/api/banking-ai/query", json={
        "user_id": "cust-1", "user_role": "CUSTOMER", "query": "Is my card active?",
    })

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["response"] == "Your card is active."

    session = client.get(f"/api/memory/session/{body['session_id']}").json()
    assert session["data"]["last_query"] == "Is my card active?"

    flush_audit(client)
    records = client.get("/api/audit/user/cust-1").json()
    assert [r["action"] for r in records] == ["AI_QUERY_SUCCESS"]
    assert records[0]["ip_address"] == "testclient"


def test_query_denied_is_not_an_http_error(client):
    response = client.post("/api/banking-ai/query", json={
        "user_id": "u-1", "user_role": "NOBODY", "query": "Hi",
    })

    assert response.status_code == 200
    assert response.json() == {"success": False, "response": PERMISSION_DENIED_MESSAGE, "session_id": None}

    flush_audit(client)
    failed = client.get("/api/audit/failed").json()
    assert [r["action"] for r in failed] == ["AI_QUERY_PERMISSION_DENIED"]


def test_query_validation(client):
    response = client.post("/api/banking-ai/query", json={"user_id": "u-1", "user_role": "CUSTOMER"})
    assert response.status_code == 422


def test_fraud_endpoints(client, fake_llm):
    fake_llm.chat.return_value = llm_answer(
        {"score": 0.9, "explanation": "Card testing pattern", "recommended_action": "Block card"}
    )

    response = client.post("/api/fraud/process", json={
        "account_id": "ACC-1", "customer_id": "C-1", "amount": "1.00",
        "currency": "EUR", "type": "DEBIT", "merchant_name": "Unknown Web Shop",
    })

    assert response.status_code == 200
    tx = response.json()
    assert tx["flagged_for_review"] is True
    assert tx["fraud_score"] == 0.9
    assert Decimal(tx["amount"]) == Decimal("1")

    assert [t["id"] for t in client.get("/api/fraud/flagged").json()] == [tx["id"]]
    assert [t["id"] for t in client.get("/api/fraud/transactions/C-1").json()] == [tx["id"]]

    bad = client.post("/api/fraud/process", json={
        "account_id": "ACC-1", "customer_id": "C-1", "amount": "1.00", "currency": "EUR", "type": "BARTER",
    })
    assert bad.status_code == 422


def test_fraud_timestamp_with_offset_is_stored_as_utc(client, fake_llm):
    fake_llm.chat.return_value = llm_answer(
        {"score": 0.1, "explanation": "Routine", "recommended_action": "Approve"}
    )

    response = client.post("/api/fraud/process", json={
        "account_id": "ACC-1", "customer_id": "C-9", "amount": "10.00", "currency": "EUR",
        "type": "DEBIT", "timestamp": "2030-01-01T12:00:00+02:00",
    })

    assert response.status_code == 200
    assert response.json()["timestamp"] == "2030-01-01T10:00:00"


def test_advice_endpoint(client, fake_llm):
    fake_llm.chat.return_value = llm_answer(
        {"score": 0.2, "explanation": "Diversify.", "recommended_action": "Open an index fund"}
    )

    response = client.post("/api/financial-advice/C-1", json={"query": "Where should I invest?"})

    assert response.status_code == 200
    assert response.json() == {"advice": "Diversify.\n\nNext step: Open an index fund"}


def test_compliance_rules_and_validation(client, fake_llm):
    created = client.post("/api/compliance/rules", json={
        "name": "gdpr-third-party", "category": "GDPR",
        "rule_definition": "Do not disclose third-party personal data", "priority": 3,
    })
    assert created.status_code == 201
    rule_id = created.json()["id"]

    assert [r["id"] for r in client.get("/api/compliance/rules/active").json()] == [rule_id]
    assert client.get("/api/compliance/rules/category/AML").json() == []

    updated = client.put(f"/api/compliance/rules/{rule_id}", json={"priority": 9})
    assert updated.json()["priority"] == 9
    assert updated.json()["name"] == "gdpr-third-party"

    fake_llm.chat.return_value = llm_answer({"compliant": True})
    verdict = client.post("/api/compliance/validate", json={"text": "What is my balance?"}).json()
    assert verdict["compliant"] is True

    assert client.delete(f"/api/compliance/rules/{rule_id}").status_code == 204
    assert client.put(f"/api/compliance/rules/{rule_id}", json={"priority": 1}).status_code == 404


def test_rbac_endpoints(client):
    created = client.post("/api/rbac/roles", json={
        "name": "TELLER", "permissions": ["AI_QUERY"], "user_id": "admin-1",
    })
    assert created.status_code == 201
    role_id = created.json()["id"]

    assert client.post("/api/rbac/roles", json={"name": "TELLER"}).status_code == 409
    assert client.get("/api/rbac/roles/TELLER/permissions").json() == ["AI_QUERY"]
    assert client.get(f"/api/rbac/roles/id/{role_id}").json()["name"] == "TELLER"

    check = client.post("/api/rbac/check-permission", json={
        "user_id": "u-1", "role_name": "TELLER", "permission": "VIEW_AUDIT",
    })
    assert check.json() == {"has_permission": False}

    client.put(f"/api/rbac/roles/{role_id}", json={"permissions": ["AI_QUERY", "VIEW_AUDIT"]})
    check = client.post("/api/rbac/check-permission", json={
        "user_id": "u-1", "role_name": "TELLER", "permission": "VIEW_AUDIT",
    })
    assert check.json() == {"has_permission": True}

    assert client.delete(f"/api/rbac/roles/{role_id}").status_code == 204
    assert client.get("/api/rbac/roles/name/TELLER").status_code == 404

    flush_audit(client)
    actions = [r["action"] for r in client.get("/api/audit/user/u-1").json()]
    assert actions == ["CHECK_PERMISSION", "CHECK_PERMISSION"]
    role_actions = [r["action"] for r in client.get(f"/api/audit/resource/ROLE/{role_id}").json()]
    assert sorted(role_actions) == ["CREATE_ROLE", "DELETE_ROLE", "UPDATE_ROLE"]


def test_session_endpoints(client):
    created = client.post("/api/memory/session", json={"user_id": "u-1", "session_type": "AI_CONVERSATION"})
    assert created.status_code == 201
    session_id = created.json()["id"]

    client.post(f"/api/memory/session/{session_id}/data", json={"key": "topic", "value": {"a": 1}})
    assert client.get(f"/api/memory/session/{session_id}/data/topic").json() == {"key": "topic",
                                                                                 "value": {"a": 1}}
    assert client.delete(f"/api/memory/session/{session_id}/data/topic").status_code == 204
    assert client.get(f"/api/memory/session/{session_id}/data/topic").status_code == 404

    assert len(client.get("/api/memory/session/user/u-1").json()) == 1
    assert client.delete(f"/api/memory/session/{session_id}").status_code == 204
    assert client.get(f"/api/memory/session/{session_id}").status_code == 404
    assert client.post(f"/api/memory/session/{session_id}/data", json={"key": "k"}).status_code == 404


def test_profile_endpoints(client):
    created = client.post("/api/memory/profile", json={
        "customer_id": "C-1", "first_name": "Ana", "preferences": {"risk": "low"},
    })
    assert created.status_code == 201
    profile = created.json()
    assert profile["indexed"] is True

    assert client.post("/api/memory/profile", json={"customer_id": "C-1"}).status_code == 409

    client.post("/api/memory/profile", json={"customer_id": "C-2", "first_name": "Ana",
                                             "preferences": {"risk": "low"}})
    similar = client.get("/api/memory/profile/customer/C-1/similar", params={"threshold": 2.0}).json()
    assert [p["customer_id"] for p in similar] == ["C-2"]

    updated = client.put("/api/memory/profile/customer/C-1/preferences", json={"risk": "high"})
    assert updated.json()["preferences"] == {"risk": "high"}

    extended = client.post("/api/memory/profile/customer/C-1/retention", params={"years": 2})
    assert extended.status_code == 200
    assert extended.json()["retention_until"] > profile["retention_until"]

    assert client.delete(f"/api/memory/profile/{profile['id']}").status_code == 204
    assert client.get(f"/api/memory/profile/{profile['id']}").status_code == 404


def test_audit_timerange_validation(client):
    response = client.get("/api/audit/timerange", params={
        "start": "2026-02-01T00:00:00Z", "end": "2026-01-01T00:00:00Z",
    })
    assert response.status_code == 400
