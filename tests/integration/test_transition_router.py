"""Integration tests for transition endpoints."""

from idcard_engine.common.security import Actor


class TestTransitionRouter:
    async def test_list_transitions(self, client, app_seed, headers_for):
        _, staff = await app_seed.admin()
        resp = await client.get("/transitions", headers=headers_for(staff))
        assert resp.status_code == 200
        assert "approve_document" in resp.json()
        assert "issue_card" in resp.json()

    async def test_approve_document(self, client, app_seed, headers_for):
        _, staff = await app_seed.admin()
        profile = await app_seed.profile()
        doc = await app_seed.document(profile)
        resp = await client.post(
            "/transitions/approve_document",
            json={"target": doc.id, "payload": {"notes": "ok"}},
            headers=headers_for(staff),
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["action"]["action_type"] == "document_approved"
        assert data["action"]["performed_by"] == staff.id
        assert data["action"]["sequence"] == 1

    async def test_validation_error_status(self, client, app_seed, headers_for):
        _, staff = await app_seed.admin()
        profile = await app_seed.profile()
        reason = await app_seed.reason()
        doc = await app_seed.document(profile)
        resp = await client.post(
            "/transitions/reject_document",
            json={"target": doc.id, "payload": {"reason_id": reason.id, "notes": " "}},
            headers=headers_for(staff),
        )
        assert resp.status_code == 422
        assert resp.json()["success"] is False
        assert resp.json()["error"]["code"] == "VALIDATION"

    async def test_forbidden_status(self, client, app_seed, headers_for):
        profile = await app_seed.profile()
        doc = await app_seed.document(profile)
        resp = await client.post(
            "/transitions/approve_document",
            json={"target": doc.id},
            headers=headers_for(Actor("not-staff", "admin")),
        )
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "FORBIDDEN"

    async def test_not_found_status(self, client, app_seed, headers_for):
        _, staff = await app_seed.admin()
        resp = await client.post(
            "/transitions/approve_document", json={"target": "missing"}, headers=headers_for(staff),
        )
        assert resp.status_code == 404

    async def test_precondition_status(self, client, app_seed, headers_for):
        _, staff = await app_seed.admin()
        profile = await app_seed.profile()
        payment = await app_seed.payment(profile, status="refunded")
        resp = await client.post(
            "/transitions/mark_payment_paid",
            json={"target": payment.id, "payload": {"justification": "paid"}},
            headers=headers_for(staff),
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "PRECONDITION"

    async def test_unknown_transition(self, client, app_seed, headers_for):
        _, staff = await app_seed.admin()
        resp = await client.post("/transitions/drop_tables", json={}, headers=headers_for(staff))
        assert resp.status_code == 422

    async def test_applicant_completes_profile(self, client, headers_for, service_headers):
        user = Actor("auth-student-http", "applicant")
        resp = await client.post(
            "/transitions/complete_profile",
            json={"payload": {
                "full_name": "João Lima",
                "cpf": "52998224725",
                "birth_date": "1999-02-01",
                "institution": "USP",
                "course": "Direito",
                "education_level": "graduacao",
                "is_law_student": True,
            }},
            headers=headers_for(user),
        )
        assert resp.status_code == 200
        assert resp.json()["action"]["actor_role"] == "applicant"

        state = await client.get(f"/students/{user.id}/onboarding", headers=service_headers)
        assert state.json()["state"] == "choose_plan"


class TestPrintBatchRouter:
    async def test_print_batch(self, client, app_seed, headers_for):
        _, staff = await app_seed.admin()
        profile, payment = await app_seed.ready_for_card()
        card = await app_seed.card(profile, payment)
        resp = await client.post(
            "/print-batches",
            json={"card_ids": [card.id, "missing"]},
            headers=headers_for(staff),
        )
        assert resp.status_code == 200
        items = resp.json()["items"]
        assert items[0]["success"] is True
        assert items[0]["print_id"]
        assert items[1]["error"]["code"] == "NOT_FOUND"

    async def test_empty_selection_rejected(self, client, app_seed, headers_for):
        _, staff = await app_seed.admin()
        resp = await client.post("/print-batches", json={"card_ids": []}, headers=headers_for(staff))
        assert resp.status_code == 422

    async def test_unauthorized(self, client, headers_for):
        resp = await client.post(
            "/print-batches", json={"card_ids": ["x"]}, headers=headers_for(Actor("ghost", "admin")),
        )
        assert resp.status_code == 403
        assert resp.json()["success"] is False
        assert resp.json()["error"]["code"] == "FORBIDDEN"
        assert resp.json()["items"] == []

    async def test_blank_selection_refused_with_status(self, client, app_seed, headers_for):
        _, staff = await app_seed.admin()
        resp = await client.post("/print-batches", json={"card_ids": [" "]}, headers=headers_for(staff))
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "VALIDATION"
