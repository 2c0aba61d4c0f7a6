"""RFP creation, dashboard, dispatch and comparison endpoints."""

from datetime import datetime, timedelta, timezone

import pytest

from procureflow.api.endpoints import rfps as rfps_endpoint
from procureflow.api.endpoints.rfps import comparison_row
from procureflow.models import Proposal, RFP, RFPStatus, RFPVendor, Vendor
from procureflow.services import ai_service
from procureflow.services.ai_service import AIServiceError
from procureflow.services.email_service import EmailDeliveryError

NEED = (
    "I need 20 laptops with 16GB RAM and 15 monitors 27-inch. Budget $50,000. "
    "Delivery within 30 days. Payment Net 30. Warranty 12 months."
)


class TestCreateRfp:

    def test_structures_and_stores_draft(self, client, db_session):
        r = client.post("/rfps/create", json={"natural_language_input": NEED})
        assert r.status_code == 201
        body = r.json()
        assert body["status"] == "ok"
        assert body["rfp"]["status"] == "draft"
        assert body["rfp"]["budget"] == 50000
        assert body["rfp"]["deadline"] is not None

        data = body["structured_data"]
        items = {i["name"].lower(): i["quantity"] for i in data["required_items"]}
        assert items == {"laptops": 20, "monitors": 15}
        assert data["payment_terms"] == "Net 30"
        assert data["warranty"] == "12 months"

        stored = db_session.query(RFP).filter(RFP.id == body["rfp"]["id"]).one()
        assert stored.requirements["budget"] == 50000

    def test_missing_input_is_400(self, client):
        assert client.post("/rfps/create", json={}).status_code == 400

    def test_blank_input_is_400(self, client):
        assert client.post("/rfps/create", json={"natural_language_input": "   "}).status_code == 400

    def test_model_failure_is_500(self, client, db_session, monkeypatch):
        def boom(text):
            raise AIServiceError("AI structured output failed to parse into StructuredRFP")

        monkeypatch.setattr(ai_service, "structure_rfp", boom)
        r = client.post("/rfps/create", json={"natural_language_input": NEED})
        assert r.status_code == 500
        assert r.json()["status"] == "error"
        assert "StructuredRFP" in r.json()["details"]
        assert db_session.query(RFP).count() == 0

    def test_unparseable_deadline_is_dropped(self):
        assert rfps_endpoint._parse_deadline("TBD") is None
        assert rfps_endpoint._parse_deadline("next spring") is None
        assert rfps_endpoint._parse_deadline("2026-03-31").date().isoformat() == "2026-03-31"


class TestListAndDetail:

    def test_dashboard_counts(self, client, db_session, rfp, vendor, second_vendor, make_proposal):
        db_session.add_all([
            RFPVendor(rfp_id=rfp.id, vendor_id=vendor.id, status="responded"),
            RFPVendor(rfp_id=rfp.id, vendor_id=second_vendor.id, status="sent"),
        ])
        db_session.commit()
        make_proposal(rfp, vendor)

        rows = client.get("/rfps").json()
        assert len(rows) == 1
        assert rows[0]["id"] == rfp.id
        assert rows[0]["vendor_count"] == 2
        assert rows[0]["proposal_count"] == 1

    def test_detail_includes_vendors_and_proposals(self, client, db_session, rfp, vendor, make_proposal):
        db_session.add(RFPVendor(rfp_id=rfp.id, vendor_id=vendor.id, status="sent"))
        db_session.commit()
        make_proposal(rfp, vendor, pricing={"total_price": 1000})

        body = client.get(f"/rfps/{rfp.id}").json()
        assert body["title"] == rfp.title
        assert body["rfp_vendors"][0]["vendor"]["email"] == vendor.email
        assert body["proposals"][0]["vendor_name"] == vendor.name
        assert body["proposals"][0]["pricing"]["total_price"] == 1000

    def test_detail_unknown_is_404(self, client):
        assert client.get("/rfps/missing").status_code == 404


class TestSendRfp:

    def test_sends_and_records_state(self, client, db_session, vendor, second_vendor, monkeypatch):
        draft = RFP(title="Chairs", description="50 chairs", requirements={}, status=RFPStatus.DRAFT)
        db_session.add(draft)
        db_session.commit()
        sent = []
        monkeypatch.setattr(rfps_endpoint, "send_email", lambda to, subject, html: sent.append((to, subject, html)))

        r = client.post("/rfps/send", json={"rfp_id": draft.id, "vendor_ids": [vendor.id, second_vendor.id]})
        assert r.status_code == 200
        assert "2 vendor(s)" in r.json()["message"]

        assert {to for to, _, _ in sent} == {vendor.email, second_vendor.email}
        assert all(f"RFP-ID: {draft.id}" in html for _, _, html in sent)
        assert all(subject == "RFP: Chairs - Response Required" for _, subject, _ in sent)

        db_session.expire_all()
        assert db_session.get(RFP, draft.id).status == RFPStatus.SENT
        links = db_session.query(RFPVendor).filter(RFPVendor.rfp_id == draft.id).all()
        assert {(l.vendor_id, l.status) for l in links} == {(vendor.id, "sent"), (second_vendor.id, "sent")}

    def test_resend_does_not_duplicate_links(self, client, db_session, rfp, vendor):
        for _ in range(2):
            assert client.post("/rfps/send", json={"rfp_id": rfp.id, "vendor_ids": [vendor.id]}).status_code == 200
        assert db_session.query(RFPVendor).filter(RFPVendor.rfp_id == rfp.id).count() == 1

    def test_status_never_moves_back(self, client, db_session, rfp, vendor):
        rfp.status = RFPStatus.RESPONDED
        db_session.commit()
        client.post("/rfps/send", json={"rfp_id": rfp.id, "vendor_ids": [vendor.id]})
        db_session.expire_all()
        assert db_session.get(RFP, rfp.id).status == RFPStatus.RESPONDED

    @pytest.mark.parametrize("payload", [{}, {"rfp_id": "x"}, {"rfp_id": "x", "vendor_ids": []}])
    def test_missing_ids_is_400(self, client, payload):
        assert client.post("/rfps/send", json=payload).status_code == 400

    def test_unknown_rfp_is_404(self, client, vendor):
        assert client.post("/rfps/send", json={"rfp_id": "nope", "vendor_ids": [vendor.id]}).status_code == 404

    def test_no_vendors_found_is_404(self, client, rfp):
        r = client.post("/rfps/send", json={"rfp_id": rfp.id, "vendor_ids": ["ghost"]})
        assert r.status_code == 404
        assert r.json()["detail"] == "No vendors found"

    def test_delivery_failure_is_500(self, client, db_session, vendor, second_vendor, monkeypatch):
        draft = RFP(title="Desks", description="10 desks", requirements={}, status=RFPStatus.DRAFT)
        db_session.add(draft)
        db_session.commit()

        def flaky(to, subject, html):
            if to == second_vendor.email:
                raise EmailDeliveryError(f"Failed to send email to {to}")
            return "msg-1"

        monkeypatch.setattr(rfps_endpoint, "send_email", flaky)
        r = client.post("/rfps/send", json={"rfp_id": draft.id, "vendor_ids": [vendor.id, second_vendor.id]})
        assert r.status_code == 500
        assert second_vendor.email in r.json()["message"]

        db_session.expire_all()
        assert db_session.get(RFP, draft.id).status == RFPStatus.DRAFT
        links = db_session.query(RFPVendor).filter(RFPVendor.rfp_id == draft.id).all()
        assert [l.vendor_id for l in links] == [vendor.id]


class TestComparisonRow:

    def _proposal(self, pricing, terms, ai_score=70.0):
        p = Proposal(pricing=pricing, terms=terms, ai_score=ai_score)
        p.vendor = Vendor(name="Acme", email="acme@example.com")
        return p

    def test_prefers_attachment_figures(self):
        row = comparison_row(self._proposal(
            {"total_price": 1000, "ocr_total_amount": 1100, "ocr_confidence_score": 62},
            {"ocr_delivery_timeline": "3 weeks", "delivery_estimate_days": 10},
        ))
        assert row.final_price == 1100
        assert row.delivery_days == 21
        assert row.price_confidence == 62

    def test_falls_back_to_email_figures(self):
        row = comparison_row(self._proposal(
            {"total_price": "1000"},
            {"delivery_estimate_days": 10, "summary": "Ships in 2 months"},
        ))
        assert row.final_price == 1000
        assert row.delivery_days == 10
        assert row.price_confidence == 50

    def test_summary_is_last_resort_for_delivery(self):
        row = comparison_row(self._proposal({}, {"summary": "Ships in 2 months"}))
        assert row.final_price is None
        assert row.delivery_days == 60

    def test_non_finite_attachment_total_falls_back(self):
        row = comparison_row(self._proposal({"total_price": 1000, "ocr_total_amount": float("nan")}, {}))
        assert row.final_price == 1000


class TestCompare:

    def test_unknown_rfp_is_404(self, client):
        assert client.get("/rfps/missing/compare").status_code == 404

    def test_no_proposals_is_404(self, client, rfp):
        r = client.get(f"/rfps/{rfp.id}/compare")
        assert r.status_code == 404
        assert r.json()["detail"] == "No proposals received for this RFP"

    def test_ranks_and_completes(self, client, db_session, rfp, vendor, second_vendor, make_proposal):
        rfp.deadline = datetime.now(timezone.utc) + timedelta(days=20)
        db_session.commit()
        make_proposal(rfp, vendor, pricing={"total_price": 48000}, terms={"delivery_estimate_days": 14}, ai_score=90)
        make_proposal(rfp, second_vendor, pricing={"total_price": 52000}, terms={"summary": "3 weeks"}, ai_score=95)

        r = client.get(f"/rfps/{rfp.id}/compare")
        assert r.status_code == 200
        body = r.json()
        assert body["rfp_id"] == rfp.id
        assert body["recommendation"]["recommendation"] == vendor.name
        assert len(body["recommendation"]["comparison_summary"]) == 2
        assert body["recommendation"]["action_items"]
        by_vendor = {row["vendor_name"]: row for row in body["proposals"]}
        assert by_vendor[second_vendor.name]["delivery_days"] == 21

        db_session.expire_all()
        assert db_session.get(RFP, rfp.id).status == RFPStatus.COMPLETED

    def test_ranking_receives_normalized_dataset(self, client, rfp, vendor, make_proposal, monkeypatch):
        make_proposal(rfp, vendor, pricing={"total_price": 900, "ocr_total_amount": 950, "ocr_confidence_score": 77})
        seen = {}
        real_rank = ai_service.rank_proposals

        def spy(requirements, rows, budget, deadline_days):
            seen.update(requirements=requirements, rows=rows, budget=budget, deadline_days=deadline_days)
            return real_rank(requirements, rows, budget, deadline_days)

        monkeypatch.setattr(ai_service, "rank_proposals", spy)
        assert client.get(f"/rfps/{rfp.id}/compare").status_code == 200
        assert seen["budget"] == 50000
        assert seen["deadline_days"] is None
        assert seen["rows"] == [{
            "vendor_name": vendor.name,
            "final_price": 950.0,
            "delivery_days": None,
            "ai_score": 80.0,
            "price_confidence": 77,
        }]
