"""
HTTP surface: subscription, onboarding and Razorpay webhook routes.

Routes go through the module-level service singletons, which resolve the
database lazily, so the in-memory db from conftest backs every request.
"""
import json
import sys
from pathlib import Path

import pytest

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

from auth import create_access_token
from models import AdminAccount, to_document
from services.gateway_signature import RazorpaySignatureVerifier

WEBHOOK_SECRET = "whsec_route_secret"


@pytest.fixture
def account_id(fake_db):
    account = AdminAccount(email="owner@sunrise-pg.in", name="Sunrise Owner")
    fake_db.admin_accounts.docs.append(to_document(account))
    return account.account_id


@pytest.fixture
def headers(account_id):
    return {"Authorization": f"Bearer {create_access_token({'account_id': account_id, 'role': 'admin'})}"}


@pytest.fixture
def superadmin_headers():
    return {"Authorization": f"Bearer {create_access_token({'account_id': 'ops-1', 'role': 'superadmin'})}"}


class TestSubscriptionRoutes:
    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_requires_authentication(self, client, fake_db):
        assert client.get("/api/subscription/me").status_code == 401
        bad = {"Authorization": "Bearer not-a-jwt"}
        assert client.get("/api/subscription/me", headers=bad).status_code == 401

    def test_me_returns_derived_fields(self, client, headers):
        response = client.get("/api/subscription/me", headers=headers)
        assert response.status_code == 200, response.text
        data = response.json()
        assert data["success"] is True
        assert data["subscription"]["status"] == "free"
        assert data["subscription"]["effective_status"] == "free"

    def test_plans_are_public(self, client, fake_db):
        response = client.get("/api/subscription/plans")
        assert response.status_code == 200
        plan_ids = {p["plan_id"] for p in response.json()["plans"]}
        assert "plan_basic_monthly" in plan_ids
        assert "plan_retired" not in plan_ids

    def test_quote(self, client, fake_db):
        response = client.post("/api/subscription/quote", json={"plan_id": "plan_basic", "bed_count": 15})
        assert response.status_code == 200, response.text
        assert response.json()["top_up_cost"] == 250

        assert client.post("/api/subscription/quote", json={"plan_id": "nope", "bed_count": 15}).status_code == 404
        assert client.post("/api/subscription/quote", json={"plan_id": "plan_basic", "bed_count": 5}).status_code == 400

    def test_trial_then_subscribe(self, client, headers):
        response = client.post("/api/subscription/trial", headers=headers)
        assert response.status_code == 200, response.text
        assert response.json()["activated"] is True

        body = {"plan_id": "plan_basic", "billing_cycle": "monthly", "total_beds": 12}
        response = client.post("/api/subscription/subscribe", headers=headers, json=body)
        assert response.status_code == 200, response.text
        assert response.json()["subscription"]["status"] == "active"

        response = client.post("/api/subscription/subscribe", headers=headers, json=body)
        assert response.status_code == 409
        assert response.json()["detail"]["error_code"] == "CONFLICT"

    def test_beds_restrictions_and_history(self, client, headers):
        client.post(
            "/api/subscription/subscribe",
            headers=headers,
            json={"plan_id": "plan_basic", "billing_cycle": "monthly", "total_beds": 10},
        )
        response = client.post("/api/subscription/beds", headers=headers, json={"additional_beds": 5})
        assert response.status_code == 200, response.text
        assert response.json()["top_up_cost"] == 250

        response = client.post("/api/subscription/usage", headers=headers, json={"beds_delta": 14})
        assert response.status_code == 200
        response = client.get(
            "/api/subscription/restrictions", headers=headers, params={"resource_type": "beds", "count": 2}
        )
        assert response.status_code == 200
        assert response.json()["allowed"] is False
        assert response.json()["remaining"] == 1

        history = client.get("/api/subscription/history", headers=headers).json()["history"]
        assert {h["action"] for h in history} == {"SUBSCRIPTION_ACTIVATED", "CAPACITY_TOPUP"}

    def test_branches_rejected_on_single_branch_plan(self, client, headers):
        client.post(
            "/api/subscription/subscribe",
            headers=headers,
            json={"plan_id": "plan_basic", "billing_cycle": "monthly", "total_beds": 10},
        )
        response = client.post("/api/subscription/branches", headers=headers, json={"additional_branches": 1})
        assert response.status_code == 400

    def test_cancel(self, client, headers):
        client.post("/api/subscription/trial", headers=headers)
        response = client.post("/api/subscription/cancel", headers=headers, json={"reason": "closing"})
        assert response.status_code == 200
        assert response.json()["subscription"]["status"] == "cancelled"

    def test_admin_routes_require_superadmin(self, client, headers, superadmin_headers, account_id):
        client.post("/api/subscription/trial", headers=headers)

        url = f"/api/subscription/admin/{account_id}/extend"
        assert client.post(url, headers=headers, json={"days": 3}).status_code == 403
        response = client.post(url, headers=superadmin_headers, json={"days": 3})
        assert response.status_code == 200, response.text

        response = client.post("/api/subscription/admin/expiry-sweep", headers=superadmin_headers)
        assert response.status_code == 200
        assert response.json()["count"] == 0


class TestOnboardingRoutes:
    def test_wizard_flow(self, client, headers):
        response = client.post("/api/onboarding/branch", headers=headers, json={"name": "Main"})
        assert response.status_code == 409

        response = client.post("/api/onboarding/pg", headers=headers, json={"name": "Sunrise PG"})
        assert response.status_code == 200, response.text
        assert response.json()["current_onboarding_step"] == "branch_setup"

        client.post("/api/onboarding/branch", headers=headers, json={"name": "Main"})
        response = client.post(
            "/api/onboarding/configuration",
            headers=headers,
            json={"sharing_types": [{"type": "2-sharing", "name": "Double", "cost": 6500}]},
        )
        assert response.status_code == 200, response.text

        status = client.get("/api/onboarding/status", headers=headers).json()
        assert status["current_onboarding_step"] == "completed"
        assert status["is_complete"] is True


class TestRazorpayWebhookRoute:
    @pytest.fixture(autouse=True)
    def webhook_secret(self, monkeypatch):
        monkeypatch.setenv("RAZORPAY_WEBHOOK_SECRET", WEBHOOK_SECRET)

    def _post(self, client, event, signature=None):
        body = json.dumps(event).encode()
        if signature is None:
            signature = RazorpaySignatureVerifier(secret=WEBHOOK_SECRET).compute_signature(body)
        return client.post(
            "/api/webhooks/razorpay",
            content=body,
            headers={"X-Razorpay-Signature": signature, "Content-Type": "application/json"},
        )

    def _captured(self, account_id, payment_id="pay_route_1"):
        return {
            "event": "payment.captured",
            "payload": {"payment": {"entity": {
                "id": payment_id,
                "order_id": "order_route_1",
                "amount": 99900,
                "currency": "INR",
                "notes": {
                    "account_id": account_id,
                    "plan_id": "plan_basic_monthly",
                    "bed_count": 20,
                    "billing_cycle": "monthly",
                },
            }}},
        }

    def test_valid_delivery_then_duplicate(self, client, account_id, fake_db):
        first = self._post(client, self._captured(account_id))
        assert first.status_code == 200, first.text
        assert first.json()["status"] == "ok"
        assert first.json()["duplicate"] is False

        second = self._post(client, self._captured(account_id))
        assert second.status_code == 200
        assert second.json()["duplicate"] is True
        assert len(fake_db.admin_accounts.docs[0]["subscription"]["payment_history"]) == 1

    def test_bad_signature_rejected(self, client, account_id, fake_db):
        response = self._post(client, self._captured(account_id), signature="0" * 64)
        assert response.status_code == 400
        assert response.json()["detail"]["error_code"] == "AUTHENTICATION_FAILED"
        assert fake_db.admin_accounts.docs[0]["subscription"]["status"] == "free"

    def test_unknown_account_asks_for_redelivery(self, client, fake_db):
        response = self._post(client, self._captured("missing-account"))
        assert response.status_code == 500
        assert response.json()["detail"]["retryable"] is True
