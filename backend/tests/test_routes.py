# Overview: HTTP-level tests for the JSON API (status codes, error kinds, idempotent convert).

"""
API route tests.

Routes run on the real clock, so these tests only assert on relationships
between values, never on absolute timestamps.
"""

from decimal import Decimal

import pytest


ITEMS = [
    {"type": "part", "description": "Screen", "quantity": 1, "unit_price": "180.00"},
    {"type": "labor", "description": "Install", "quantity": 1, "unit_price_cents": 3900},
]


def _post(client, url, body=None, actor="tech-1"):
    return client.post(url, json=body or {}, headers={"X-Performed-By": actor})


@pytest.fixture
def api_ticket(client, shop, customer):
    resp = _post(client, "/api/tickets", {
        "shop_id": shop.id,
        "customer_id": customer.id,
        "device": {"type": "Phone", "brand": "Apple", "model": "iPhone 13"},
        "repair_type": "screen",
        "issue_description": "Cracked screen",
    })
    assert resp.status_code == 201
    return resp.get_json()["ticket"]


@pytest.fixture
def api_estimate(client, shop, customer):
    resp = _post(client, "/api/estimates", {
        "shop_id": shop.id,
        "customer_id": customer.id,
        "device": {"type": "Phone", "brand": "Apple", "model": "iPhone 13"},
        "repair_type": "screen",
        "items": ITEMS,
    })
    assert resp.status_code == 201
    return resp.get_json()["estimate"]


class TestSystemRoutes:
    def test_health(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "healthy"

    def test_version(self, client):
        resp = client.get("/version")
        assert resp.status_code == 200
        assert resp.get_json()["api_version"] == "1.0.0"


class TestShopAndCustomerRoutes:
    def test_create_shop(self, client, db_session):
        resp = _post(client, "/api/shops", {"name": "Harbor Fix", "code": "HB", "default_tax_rate": "0.07"})
        assert resp.status_code == 201
        assert Decimal(resp.get_json()["shop"]["default_tax_rate"]) == Decimal("0.07")

    def test_create_shop_bad_rate(self, client, db_session):
        resp = _post(client, "/api/shops", {"name": "Harbor Fix", "default_tax_rate": "7"})
        assert resp.status_code == 400
        assert resp.get_json()["kind"] == "validation_error"

    def test_create_customer_and_balance(self, client, shop):
        resp = _post(client, "/api/customers", {"shop_id": shop.id, "first_name": "Grace", "phone": "555-0101"})
        assert resp.status_code == 201
        customer_id = resp.get_json()["customer"]["id"]

        resp = client.get(f"/api/customers/{customer_id}/balance")
        assert resp.get_json()["outstanding_balance_cents"] == 0

    def test_unknown_customer(self, client, db_session):
        resp = client.get("/api/customers/999")
        assert resp.status_code == 404
        assert resp.get_json()["kind"] == "not_found"


class TestTicketRoutes:
    def test_create_and_fetch(self, client, shop, api_ticket):
        assert api_ticket["ticket_number"] == "FIX-0001"
        assert api_ticket["status"] == "INTAKE"
        assert api_ticket["created_by"] == "tech-1"

        resp = client.get(f"/api/tickets/number/fix-0001?shop_id={shop.id}")
        assert resp.status_code == 200
        assert resp.get_json()["ticket"]["id"] == api_ticket["id"]

    def test_missing_customer_is_validation_error(self, client, shop):
        resp = _post(client, "/api/tickets", {"shop_id": shop.id, "device": {"type": "Phone", "brand": "X"}})
        assert resp.status_code == 400

    def test_advance_and_conflict(self, client, api_ticket):
        url = f"/api/tickets/{api_ticket['id']}/advance"
        resp = _post(client, url, {"status": "DIAGNOSED", "expected_status": "INTAKE"})
        assert resp.status_code == 200
        assert resp.get_json()["ticket"]["diagnosed_at"] is not None

        resp = _post(client, url, {"status": "DIAGNOSED", "expected_status": "INTAKE"})
        assert resp.status_code == 409
        body = resp.get_json()
        assert body["kind"] == "invalid_transition"
        assert body["details"]["current_status"] == "DIAGNOSED"

    def test_skip_forward_is_409(self, client, api_ticket):
        resp = _post(client, f"/api/tickets/{api_ticket['id']}/advance", {"status": "PICKED_UP"})
        assert resp.status_code == 409

    def test_list_with_status_filter(self, client, shop, api_ticket):
        resp = client.get(f"/api/tickets?shop_id={shop.id}&status=INTAKE")
        body = resp.get_json()
        assert body["total"] == 1
        assert body["tickets"][0]["id"] == api_ticket["id"]

    def test_list_requires_shop(self, client, db_session):
        resp = client.get("/api/tickets")
        assert resp.status_code == 400

    def test_patch_costs(self, client, api_ticket):
        resp = client.patch(f"/api/tickets/{api_ticket['id']}", json={"actual_cost_cents": 21900})
        assert resp.status_code == 200
        assert resp.get_json()["ticket"]["actual_cost_cents"] == 21900

    def test_history(self, client, api_ticket):
        _post(client, f"/api/tickets/{api_ticket['id']}/advance", {"status": "DIAGNOSED"})
        resp = client.get(f"/api/tickets/{api_ticket['id']}/history")
        events = resp.get_json()["events"]
        assert [e["event_type"] for e in events] == ["ticket.created", "ticket.advanced"]

    def test_assign_technician(self, client, shop, api_ticket):
        resp = client.patch(
            f"/api/tickets/{api_ticket['id']}/assign", json={"assigned_to": "Sam"}, headers={"X-Performed-By": "mgr"}
        )
        assert resp.status_code == 200
        assert resp.get_json()["ticket"]["assigned_to"] == "Sam"

        resp = client.get(f"/api/tickets?shop_id={shop.id}&assigned_to=Sam")
        assert [t["id"] for t in resp.get_json()["tickets"]] == [api_ticket["id"]]

        resp = client.get(f"/api/tickets/{api_ticket['id']}/history")
        last = resp.get_json()["events"][-1]
        assert last["event_type"] == "ticket.assigned"
        assert last["performed_by"] == "mgr"

        resp = client.patch(f"/api/tickets/{api_ticket['id']}/assign", json={"assigned_to": None})
        assert resp.get_json()["ticket"]["assigned_to"] is None

    def test_assign_unknown_ticket_is_404(self, client, db_session):
        assert client.patch("/api/tickets/999/assign", json={"assigned_to": "Sam"}).status_code == 404

    def test_delete(self, client, api_ticket):
        resp = client.delete(f"/api/tickets/{api_ticket['id']}")
        assert resp.status_code == 200
        assert client.get(f"/api/tickets/{api_ticket['id']}").status_code == 404


class TestEstimateRoutes:
    def test_totals_in_response(self, api_estimate):
        assert api_estimate["subtotal_cents"] == 21900
        assert api_estimate["tax_cents"] == 1807
        assert api_estimate["total_cents"] == 23707
        assert len(api_estimate["items"]) == 2

    def test_float_price_rejected(self, client, shop, customer):
        resp = _post(client, "/api/estimates", {
            "shop_id": shop.id,
            "customer_id": customer.id,
            "items": [{"type": "part", "description": "Screen", "quantity": 1, "unit_price": 180.1}],
        })
        assert resp.status_code == 400

    def test_convert_is_idempotent(self, client, api_estimate):
        base = f"/api/estimates/{api_estimate['id']}"
        assert _post(client, f"{base}/approve").status_code == 200

        first = _post(client, f"{base}/convert")
        assert first.status_code == 201
        assert first.get_json()["already_converted"] is False

        second = _post(client, f"{base}/convert")
        assert second.status_code == 200
        assert second.get_json()["already_converted"] is True
        assert second.get_json()["ticket"]["id"] == first.get_json()["ticket"]["id"]

        resp = client.get(f"{base}")
        assert resp.get_json()["estimate"]["status"] == "converted"

    def test_convert_draft_is_409(self, client, api_estimate):
        resp = _post(client, f"/api/estimates/{api_estimate['id']}/convert")
        assert resp.status_code == 409

    def test_decline_without_reason(self, client, api_estimate):
        resp = _post(client, f"/api/estimates/{api_estimate['id']}/decline", {})
        assert resp.status_code == 400

    def test_extend_and_duplicate(self, client, api_estimate):
        base = f"/api/estimates/{api_estimate['id']}"
        _post(client, f"{base}/send")
        resp = _post(client, f"{base}/extend", {"days": 3})
        assert resp.status_code == 200
        assert resp.get_json()["estimate"]["valid_until"] > api_estimate["valid_until"]

        resp = _post(client, f"{base}/duplicate")
        assert resp.status_code == 201
        assert resp.get_json()["estimate"]["duplicated_from_id"] == api_estimate["id"]

    def test_unknown_action(self, client, api_estimate):
        resp = _post(client, f"/api/estimates/{api_estimate['id']}/teleport")
        assert resp.status_code == 404


class TestInvoiceAndPaymentRoutes:
    @pytest.fixture
    def api_invoice(self, client, shop, customer, api_ticket):
        resp = _post(client, "/api/invoices", {
            "shop_id": shop.id,
            "customer_id": customer.id,
            "ticket_number": api_ticket["ticket_number"],
            "items": ITEMS,
        })
        assert resp.status_code == 201
        return resp.get_json()["invoice"]

    def test_invoice_created(self, api_invoice, api_ticket):
        assert api_invoice["status"] == "draft"
        assert api_invoice["display_status"] == "draft"
        assert api_invoice["is_overdue"] is False
        assert api_invoice["ticket_id"] == api_ticket["id"]
        assert api_invoice["amount_due_cents"] == 23707

    def test_payment_flow(self, client, api_invoice):
        _post(client, f"/api/invoices/{api_invoice['id']}/send")

        resp = _post(client, "/api/payments", {"invoice_id": api_invoice["id"], "method": "CASH", "amount": "100.00"})
        assert resp.status_code == 201
        summary = resp.get_json()["summary"]
        assert summary["amount_paid_cents"] == 10000
        assert summary["amount_due_cents"] == 13707
        assert summary["status"] == "partial"

        resp = _post(client, "/api/payments", {"invoice_id": api_invoice["id"], "method": "CARD", "amount_cents": 13708})
        assert resp.status_code == 422
        assert resp.get_json()["kind"] == "exceeds_balance"

        resp = _post(client, "/api/payments", {"invoice_id": api_invoice["id"], "method": "CARD", "amount_cents": 13707})
        payment_id = resp.get_json()["payment"]["id"]
        assert resp.get_json()["summary"]["status"] == "paid"

        resp = _post(client, f"/api/payments/{payment_id}/refund", {"amount_cents": 707, "reason": "Goodwill"})
        assert resp.status_code == 201
        assert resp.get_json()["summary"]["amount_due_cents"] == 707

        resp = client.get(f"/api/invoices/{api_invoice['id']}")
        body = resp.get_json()
        assert body["invoice"]["status"] == "partial"
        assert len(body["payments"]["payments"]) == 3

    def test_lookup_by_invoice_or_ticket_number(self, client, shop, api_invoice, api_ticket):
        resp = client.get(f"/api/invoices/lookup?shop_id={shop.id}&q={api_invoice['invoice_number']}")
        assert resp.status_code == 200
        assert resp.get_json()["match"] == "invoice"
        assert resp.get_json()["invoice"]["id"] == api_invoice["id"]

        resp = client.get(f"/api/invoices/lookup?shop_id={shop.id}&q={api_ticket['ticket_number'].lower()}")
        assert resp.status_code == 200
        assert resp.get_json()["match"] == "ticket"
        assert resp.get_json()["invoice"]["id"] == api_invoice["id"]

        assert client.get(f"/api/invoices/lookup?shop_id={shop.id}&q=INV-9999").status_code == 404
        resp = client.get(f"/api/invoices/lookup?shop_id={shop.id}")
        assert resp.status_code == 400
        assert resp.get_json()["kind"] == "validation_error"

    def test_two_phase_card(self, client, api_invoice):
        resp = _post(client, "/api/payments/start", {"invoice_id": api_invoice["id"], "method": "CARD", "amount_cents": 23707})
        assert resp.status_code == 201
        payment_id = resp.get_json()["payment"]["id"]

        resp = _post(client, f"/api/payments/{payment_id}/complete", {"reference": "AUTH-77"})
        assert resp.status_code == 200
        assert resp.get_json()["summary"]["status"] == "paid"

    def test_void_paid_invoice_is_409(self, client, api_invoice):
        _post(client, "/api/payments", {"invoice_id": api_invoice["id"], "method": "CASH", "amount_cents": 100})
        resp = _post(client, f"/api/invoices/{api_invoice['id']}/void", {"reason": "oops"})
        assert resp.status_code == 409

    def test_overdue_listing(self, client, shop, customer):
        resp = _post(client, "/api/invoices", {
            "shop_id": shop.id,
            "customer_id": customer.id,
            "items": ITEMS,
            "due_date": "2020-01-01T00:00:00Z",
        })
        invoice = resp.get_json()["invoice"]
        assert invoice["is_overdue"] is True
        assert invoice["display_status"] == "overdue"
        assert invoice["status"] == "draft"

        resp = client.get(f"/api/invoices/overdue?shop_id={shop.id}")
        assert [i["id"] for i in resp.get_json()["invoices"]] == [invoice["id"]]


class TestWarrantyRoutes:
    def _pick_up(self, client, ticket_id):
        for stage in ("DIAGNOSED", "IN_PROGRESS", "READY", "PICKED_UP"):
            resp = _post(client, f"/api/tickets/{ticket_id}/advance", {"status": stage})
            assert resp.status_code == 200

    def test_claim_lifecycle(self, client, shop, api_ticket):
        resp = _post(client, "/api/warranty/claims", {
            "shop_id": shop.id,
            "ticket_number": api_ticket["ticket_number"],
            "reason": "Screen flickers",
            "description": "Flickers after five minutes",
            "resolution_type": "redo",
        })
        assert resp.status_code == 422
        assert resp.get_json()["kind"] == "not_eligible"

        self._pick_up(client, api_ticket["id"])

        resp = client.get(f"/api/warranty/lookup?shop_id={shop.id}&q=4477")
        warranty = resp.get_json()["warranty"]
        assert warranty["is_active"] is True
        assert warranty["warranty_period_days"] == 90

        body = {
            "shop_id": shop.id,
            "ticket_number": api_ticket["ticket_number"],
            "reason": "Screen flickers",
            "description": "Flickers after five minutes",
            "resolution_type": "redo",
        }
        resp = _post(client, "/api/warranty/claims", body)
        assert resp.status_code == 201
        claim = resp.get_json()["claim"]
        assert claim["status"] == "pending"
        assert claim["days_remaining"] in (89, 90)
        assert resp.get_json()["claim_in_progress"] is False

        resp = _post(client, "/api/warranty/claims", body)
        assert resp.status_code == 200
        repeat = resp.get_json()
        assert repeat["claim_in_progress"] is True
        assert repeat["claim"]["id"] == claim["id"]
        assert repeat["claim"]["claim_number"] == claim["claim_number"]

        resp = _post(client, f"/api/warranty/claims/{claim['id']}/deny", {})
        assert resp.status_code == 400

        assert _post(client, f"/api/warranty/claims/{claim['id']}/approve").status_code == 200
        resp = _post(client, f"/api/warranty/claims/{claim['id']}/resolve")
        assert resp.status_code == 200
        resolved = resp.get_json()["claim"]
        assert resolved["status"] == "completed"

        redo = client.get(f"/api/tickets/{resolved['resolution_ticket_id']}").get_json()["ticket"]
        assert redo["priority"] == "HIGH"
        assert redo["status"] == "INTAKE"
