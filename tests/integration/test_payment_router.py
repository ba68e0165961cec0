"""Integration tests for gateway webhooks and charge endpoints."""

import hashlib
import hmac
import json
from decimal import Decimal

import httpx
import pytest

from idcard_engine.common.config import get_settings
from idcard_engine.common.security import Actor
from idcard_engine.payments.client import GatewayClient

EFI_SECRET = "efi-webhook-secret"


def efi_notification(charge_id: str, status: str) -> bytes:
    return json.dumps({"data": [
        {"type": "charge", "identifiers": {"charge_id": charge_id}, "status": {"current": "new"}},
        {"type": "charge", "identifiers": {"charge_id": charge_id}, "status": {"current": status}},
    ]}).encode()


def sign(body: bytes, secret: str = EFI_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


@pytest.fixture
def staging(client, monkeypatch):
    """Run the app as a staging deployment with secrets for the default gateways only."""
    monkeypatch.setenv("IDCARD_ENVIRONMENT", "staging")
    monkeypatch.setenv(
        "IDCARD_GATEWAY_WEBHOOK_SECRETS",
        json.dumps({"efi": EFI_SECRET, "pagbank": "pagbank-token"}),
    )
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


class TestWebhookRouter:
    async def test_signed_efi_callback_confirms_payment(self, client, app_seed, service_headers):
        profile = await app_seed.profile(user_id="payer-1")
        await app_seed.payment(profile, status="pending", gateway="efi", charge_id="77")
        body = efi_notification("77", "paid")
        resp = await client.post(
            "/webhooks/efi", content=body,
            headers={"Content-Type": "application/json", "X-Webhook-Signature": sign(body)},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["action"]["action_type"] == "payment_status_synced"
        assert data["action"]["performed_by"] == "gateway:efi"

        state = await client.get("/students/payer-1/onboarding", headers=service_headers)
        assert state.json()["state"] == "upload_documents"

    async def test_invalid_signature(self, client, app_seed):
        profile = await app_seed.profile()
        await app_seed.payment(profile, status="pending", gateway="efi", charge_id="78")
        body = efi_notification("78", "paid")
        resp = await client.post(
            "/webhooks/efi", content=body, headers={"X-Webhook-Signature": sign(body, "wrong")},
        )
        assert resp.status_code == 200
        assert resp.json()["success"] is False
        assert resp.json()["error"]["code"] == "VALIDATION"

    async def test_missing_signature(self, client):
        resp = await client.post("/webhooks/efi", content=efi_notification("1", "paid"))
        assert resp.json()["success"] is False

    async def test_duplicate_delivery_is_refused(self, client, app_seed, headers_for):
        _, staff = await app_seed.admin()
        profile = await app_seed.profile()
        await app_seed.payment(profile, status="pending", gateway="pagbank", charge_id="ORDE_5")
        body = json.dumps({"id": "ORDE_5", "charges": [{"status": "PAID"}]})

        first = await client.post("/webhooks/pagbank", content=body)
        second = await client.post("/webhooks/pagbank", content=body)
        assert first.json()["success"] is True
        assert second.json()["success"] is False
        assert second.json()["error"]["code"] == "PRECONDITION"

        audit = await client.get(
            "/audit", params={"action_type": "payment_status_synced"}, headers=headers_for(staff),
        )
        assert len(audit.json()) == 1

    async def test_unknown_charge(self, client):
        body = json.dumps({"code": "NOPE", "status": 3})
        resp = await client.post("/webhooks/pagseguro", content=body)
        assert resp.json()["error"]["code"] == "NOT_FOUND"

    async def test_unknown_gateway(self, client):
        resp = await client.post("/webhooks/paypal", content=b"{}")
        assert resp.status_code == 404

    async def test_invalid_json(self, client):
        resp = await client.post("/webhooks/pagbank", content=b"not json")
        assert resp.status_code == 200
        assert resp.json()["error"]["message"] == "Invalid JSON"

    async def test_unhandled_notification(self, client):
        resp = await client.post("/webhooks/pagbank", content=b'{"id": "ORDE_1"}')
        assert resp.json()["success"] is False

    async def test_unsigned_callback_refused_outside_development(
        self, client, app_seed, service_headers, staging,
    ):
        profile = await app_seed.profile(user_id="payer-unsigned")
        await app_seed.payment(profile, status="pending", gateway="pagseguro", charge_id="CH-1")
        resp = await client.post("/webhooks/pagseguro", content=json.dumps({"code": "CH-1", "status": "3"}))
        assert resp.status_code == 200
        assert resp.json()["success"] is False
        assert resp.json()["error"]["code"] == "VALIDATION"

        state = await client.get(
            "/students/payer-unsigned/onboarding", headers=service_headers,
        )
        assert state.json()["state"] == "payment"

    async def test_signed_callback_accepted_outside_development(self, client, app_seed, staging):
        profile = await app_seed.profile()
        await app_seed.payment(profile, status="pending", gateway="efi", charge_id="79")
        body = efi_notification("79", "paid")
        resp = await client.post("/webhooks/efi", content=body, headers={"X-Webhook-Signature": sign(body)})
        assert resp.json()["success"] is True


def install_gateway(name: str, body: dict) -> None:
    from idcard_engine.deps import get_payment_service

    transport = httpx.MockTransport(lambda request: httpx.Response(201, json=body))
    get_payment_service().clients[name] = GatewayClient(name, f"https://{name}.test", transport=transport)


class TestChargeRouter:
    async def test_create_charge(self, client, app_seed, headers_for):
        await app_seed.gateways(active="pagbank")
        await app_seed.profile(user_id="buyer")
        install_gateway("pagbank", {"id": "ORDE_77", "charges": [{"status": "WAITING"}]})

        resp = await client.post(
            "/students/buyer/payments",
            json={"amount": "29.90", "method": "pix"},
            headers=headers_for(Actor("buyer", "applicant")),
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["gateway_name"] == "pagbank"
        assert data["gateway_charge_id"] == "ORDE_77"
        assert data["status"] == "pending"
        assert data["amount"] == "29.90"

    async def test_charge_for_someone_else(self, client, app_seed, headers_for):
        await app_seed.profile(user_id="buyer-2")
        resp = await client.post(
            "/students/buyer-2/payments",
            json={"amount": "29.90"},
            headers=headers_for(Actor("someone", "applicant")),
        )
        assert resp.status_code == 403

    async def test_invalid_amount(self, client, app_seed, headers_for):
        await app_seed.profile(user_id="buyer-3")
        resp = await client.post(
            "/students/buyer-3/payments",
            json={"amount": "0"},
            headers=headers_for(Actor("buyer-3", "applicant")),
        )
        assert resp.status_code == 422

    async def test_gateway_down(self, client, app_seed, headers_for):
        from idcard_engine.deps import get_payment_service

        await app_seed.gateways(active="efi")
        await app_seed.profile(user_id="buyer-4")
        get_payment_service().clients["efi"] = GatewayClient(
            "efi", "https://efi.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(503)),
        )
        resp = await client.post(
            "/students/buyer-4/payments",
            json={"amount": "29.90"},
            headers=headers_for(Actor("buyer-4", "applicant")),
        )
        assert resp.status_code == 502
        assert resp.json()["code"] == "EXTERNAL_DEPENDENCY"


class TestPlanFlow:
    async def test_list_plans(self, client, app_seed, headers_for):
        await app_seed.plan("geral_digital", Decimal("29.90"))
        await app_seed.plan("old_plan", active=False)
        resp = await client.get("/plans", headers=headers_for(Actor("anyone", "applicant")))
        assert resp.status_code == 200
        assert [p["code"] for p in resp.json()] == ["geral_digital"]

    async def test_law_student_chooses_plan_then_pays_its_price(
        self, client, app_seed, headers_for, service_headers
    ):
        await app_seed.gateways(active="pagbank")
        plan = await app_seed.plan("direito_digital", Decimal("39.90"), law=True)
        await app_seed.profile(user_id="law-buyer", law=True)
        buyer = headers_for(Actor("law-buyer", "applicant"))
        install_gateway("pagbank", {"id": "ORDE_LAW", "charges": [{"status": "WAITING"}]})

        early = await client.post("/students/law-buyer/payments", json={"amount": "39.90"}, headers=buyer)
        assert early.status_code == 409

        resp = await client.post(
            "/transitions/select_plan", json={"payload": {"plan_id": "direito_digital"}}, headers=buyer,
        )
        assert resp.status_code == 200
        assert resp.json()["action"]["action_type"] == "plan_selected"
        state = await client.get("/students/law-buyer/onboarding", headers=service_headers)
        assert state.json()["state"] == "payment"

        charge = await client.post("/students/law-buyer/payments", json={"method": "pix"}, headers=buyer)
        assert charge.status_code == 201
        assert charge.json()["amount"] == "39.90"
        assert charge.json()["plan_id"] == plan.id
        assert charge.json()["purpose"] == "card"

    async def test_physical_upgrade(self, client, app_seed, headers_for):
        _, staff = await app_seed.admin()
        await app_seed.gateways(active="pagbank")
        profile, payment = await app_seed.ready_for_card(user_id="upgrader")
        card = await app_seed.card(profile, payment, physical=False)
        owner = headers_for(Actor("upgrader", "applicant"))
        install_gateway("pagbank", {"id": "ORDE_UP", "charges": [{"status": "WAITING"}]})

        charge = await client.post(
            "/students/upgrader/payments", json={"purpose": "physical_upgrade"}, headers=owner,
        )
        assert charge.status_code == 201
        assert charge.json()["amount"] == "24.00"
        upgrade_id = charge.json()["id"]

        too_soon = await client.post(
            "/transitions/upgrade_card_to_physical",
            json={"payload": {"payment_id": upgrade_id}}, headers=owner,
        )
        assert too_soon.status_code == 409

        paid = await client.post(
            "/transitions/mark_payment_paid",
            json={"target": upgrade_id, "payload": {"justification": "pix conferido"}},
            headers=headers_for(staff),
        )
        assert paid.status_code == 200

        resp = await client.post(
            "/transitions/upgrade_card_to_physical",
            json={"payload": {"payment_id": upgrade_id}}, headers=owner,
        )
        assert resp.status_code == 200
        assert resp.json()["action"]["target_id"] == card.id

        batch = await client.post(
            "/print-batches", json={"card_ids": [card.id]}, headers=headers_for(staff),
        )
        assert batch.json()["items"][0]["success"] is True


class TestGatewayRouter:
    async def test_list_gateways(self, client, app_seed, service_headers):
        await app_seed.gateways(active="efi")
        resp = await client.get("/gateways", headers=service_headers)
        assert resp.status_code == 200
        assert {g["gateway_name"]: g["is_active"] for g in resp.json()} == {
            "efi": True, "pagbank": False, "pagseguro": False,
        }

    async def test_switch_then_list(self, client, app_seed, headers_for, service_headers):
        _, root = await app_seed.admin(role="super")
        await app_seed.gateways(active="pagbank")
        resp = await client.post(
            "/transitions/switch_active_gateway", json={"target": "pagseguro"}, headers=headers_for(root),
        )
        assert resp.status_code == 200
        assert resp.json()["action"]["extra"] == {"from": "pagbank", "to": "pagseguro"}

        listed = await client.get("/gateways", headers=service_headers)
        assert [g["gateway_name"] for g in listed.json() if g["is_active"]] == ["pagseguro"]
