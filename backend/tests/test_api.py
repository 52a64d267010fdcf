"""
API Tests — smoke and integration tests for the session-authenticated routes.
"""

from datetime import timedelta

import pytest
from httpx import AsyncClient

from billing.reconciler import flag_overdue
from db.models import utcnow

INTAKE = {
    "tracking_number": "TBA300012345678",
    "user_code": "CD1001",
    "weight": 2.0,
    "length": 30,
    "width": 20,
    "height": 10,
    "shipper": "Amazon",
}


@pytest.mark.asyncio
class TestHealthCheck:
    async def test_health_check(self, client: AsyncClient):
        response = await client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == "1.0.0"


@pytest.mark.asyncio
class TestRoleGuards:
    async def test_customer_cannot_list_all_packages(self, client: AsyncClient, seeded_db, login):
        login(seeded_db["alice"])
        resp = await client.get("/api/admin/packages/")
        assert resp.status_code == 403
        assert resp.json() == {"error": "Admin access required"}

    async def test_warehouse_staff_cannot_use_admin_routes(self, client: AsyncClient, seeded_db, login):
        login(role="warehouse")
        assert (await client.get("/api/admin/invoices/")).status_code == 403
        assert (await client.get("/api/admin/inventory/")).status_code == 200

    async def test_customer_routes_need_an_account(self, client: AsyncClient, seeded_db, login):
        login(role="customer")
        resp = await client.get("/api/customer/packages/")
        assert resp.status_code == 401

    async def test_staff_cannot_use_customer_routes(self, client: AsyncClient, seeded_db):
        resp = await client.get("/api/customer/bills/")
        assert resp.status_code == 403
        assert resp.json()["error"] == "Customer access required"


@pytest.mark.asyncio
class TestPackagesAPI:
    async def test_list_packages_empty(self, client: AsyncClient, seeded_db):
        resp = await client.get("/api/admin/packages/")
        assert resp.status_code == 200
        assert resp.json() == {"packages": [], "total": 0, "page": 1, "per_page": 50}

    async def test_admin_lifecycle(self, client: AsyncClient, seeded_db):
        resp = await client.post("/api/admin/packages/", json=INTAKE)
        assert resp.status_code == 201
        data = resp.json()
        assert data["created"] is True
        assert data["invoice_number"] == "INV-TBA300012345678"
        assert data["package"]["history"][0]["actor"] == "ADMIN"

        resp = await client.patch(
            "/api/admin/packages/status",
            json={"tracking_number": INTAKE["tracking_number"], "status": "ready_to_ship", "note": "Packed"},
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "ready_to_ship"
        assert resp.json()["history"][-1]["note"] == "Packed"

        resp = await client.delete(f"/api/admin/packages/{INTAKE['tracking_number']}")
        assert resp.json()["status"] == "deleted"

        assert (await client.get("/api/admin/packages/")).json()["total"] == 0
        assert (await client.get("/api/admin/packages/", params={"include_deleted": "true"})).json()["total"] == 1
        assert (await client.get(f"/api/admin/packages/{INTAKE['tracking_number']}")).status_code == 200

    async def test_package_charges_include_storage(self, client: AsyncClient, test_db, seeded_db, make_package, make_invoice):
        package = await make_package(seeded_db["alice"], "TRK-ST1", weight=2.0)
        await make_invoice(package, 500.0)
        package.received_at = utcnow() - timedelta(days=10)
        await test_db.commit()

        resp = await client.get("/api/admin/packages/TRK-ST1/charges")
        assert resp.status_code == 200
        assert resp.json() == {
            "tracking_number": "TRK-ST1",
            "days_in_storage": 10,
            "shipping": 2100.0,
            "storage": 150.0,
            "customs_duty": 0.0,
            "total": 2250.0,
            "amount_paid": 0.0,
            "outstanding": 2250.0,
        }

    async def test_unknown_status_is_rejected(self, client: AsyncClient, seeded_db, make_package):
        await make_package(seeded_db["alice"], "TRK-S1")
        resp = await client.patch("/api/admin/packages/status", json={"tracking_number": "TRK-S1", "status": "lost"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Unknown package status 'lost'"

    async def test_filter_by_customer(self, client: AsyncClient, seeded_db, make_package):
        await make_package(seeded_db["alice"], "TRK-F1")
        await make_package(seeded_db["bob"], "TRK-F2")
        resp = await client.get("/api/admin/packages/", params={"user_code": "CD1002"})
        assert [p["tracking_number"] for p in resp.json()["packages"]] == ["TRK-F2"]
        assert (await client.get("/api/admin/packages/", params={"user_code": "NOPE"})).status_code == 404

    async def test_warehouse_staff_intake(self, client: AsyncClient, seeded_db, login):
        login(role="warehouse")
        resp = await client.post("/api/warehouse/packages/", json={**INTAKE, "received_by": "Jane"})
        assert resp.status_code == 201
        assert resp.json()["package"]["history"][0]["note"] == "Received at Main Warehouse by Jane"

        resp = await client.post(
            "/api/warehouse/packages/update-status",
            json={"tracking_number": INTAKE["tracking_number"], "status": "2"},
        )
        assert resp.json()["status"] == "in_transit"

    async def test_invalid_intake(self, client: AsyncClient, seeded_db):
        resp = await client.post("/api/admin/packages/", json={**INTAKE, "weight": -1, "service_mode": "rocket"})
        assert resp.status_code == 400
        body = resp.json()
        assert body["error"] == "Invalid input"
        assert {d["field"] for d in body["details"]} == {"weight", "service_mode"}

    async def test_customer_sees_only_own(self, client: AsyncClient, seeded_db, make_package, login):
        await make_package(seeded_db["alice"], "TRK-OWN")
        await make_package(seeded_db["bob"], "TRK-OTHER")
        login(seeded_db["alice"])

        resp = await client.get("/api/customer/packages/")
        assert [p["tracking_number"] for p in resp.json()["packages"]] == ["TRK-OWN"]
        assert (await client.get("/api/customer/packages/track/TRK-OWN")).json()["history"][0]["note"] == "Seeded"
        assert (await client.get("/api/customer/packages/track/TRK-OTHER")).status_code == 404


@pytest.mark.asyncio
class TestInvoicesAPI:
    async def test_create_invoice(self, client: AsyncClient, seeded_db):
        body = {
            "user_code": "CD1001",
            "items": [{"description": "Freight", "quantity": 2, "unit_price": 50, "tax_rate": 10}],
            "discount_type": "percentage",
            "discount_value": 10,
        }
        resp = await client.post("/api/admin/invoices/", json=body)
        assert resp.status_code == 201
        data = resp.json()
        assert data["invoice_number"] == f"INV-{utcnow().year}-0001"
        assert data["currency"] == "JMD"
        assert data["subtotal"] == 100.0
        assert data["tax_total"] == 10.0
        assert data["discount_amount"] == 10.0
        assert data["total"] == 100.0
        assert data["balance_due"] == 100.0
        assert data["status"] == "sent"
        assert data["items"][0]["total"] == 110.0

        listing = await client.get("/api/admin/invoices/", params={"user_code": "CD1001"})
        assert len(listing.json()) == 1

    async def test_invoice_needs_items(self, client: AsyncClient, seeded_db):
        resp = await client.post("/api/admin/invoices/", json={"user_code": "CD1001", "items": []})
        assert resp.status_code == 400
        assert resp.json()["details"][0]["field"] == "items"

    async def test_invoice_package_must_match_customer(self, client: AsyncClient, seeded_db, make_package):
        await make_package(seeded_db["bob"], "TRK-I1")
        body = {"user_code": "CD1001", "tracking_number": "TRK-I1", "items": [{"description": "X", "unit_price": 1}]}
        resp = await client.post("/api/admin/invoices/", json=body)
        assert resp.status_code == 400

    async def test_manual_payment_never_overpays(self, client: AsyncClient, seeded_db, make_package, make_invoice):
        package = await make_package(seeded_db["alice"], "TRK-M1")
        await make_invoice(package, 100.0)

        resp = await client.post("/api/admin/bills/pay", json={"tracking_number": "TRK-M1", "amount": 40, "method": "cash"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["invoice"]["status"] == "partially_paid"
        assert data["invoice"]["balance_due"] == 60.0
        assert data["payment_number"].startswith("PAY-")
        assert data["duplicate"] is False

        resp = await client.post(
            "/api/admin/bills/pay", json={"invoice_number": "INV-TRK-M1", "amount": 70, "method": "bank"}
        )
        assert resp.status_code == 400
        assert resp.json() == {
            "error": "Payment of 70.00 exceeds balance of 60.00",
            "details": {"balance_due": 60.0, "amount": 70.0},
        }

    async def test_manual_payment_duplicate_reference(self, client: AsyncClient, seeded_db, make_package, make_invoice):
        await make_invoice(await make_package(seeded_db["alice"], "TRK-M2"), 100.0)
        body = {"tracking_number": "TRK-M2", "amount": 25, "method": "bank", "reference": "WIRE-77"}

        first = await client.post("/api/admin/bills/pay", json=body)
        second = await client.post("/api/admin/bills/pay", json=body)
        assert first.json()["invoice"]["amount_paid"] == 25.0
        assert second.json()["duplicate"] is True
        assert second.json()["invoice"]["amount_paid"] == 25.0
        assert second.json()["payment_number"] is None

    async def test_manual_payment_needs_target(self, client: AsyncClient, seeded_db):
        resp = await client.post("/api/admin/bills/pay", json={"amount": 5, "method": "cash"})
        assert resp.status_code == 400

    async def test_customer_bills(self, client: AsyncClient, seeded_db, make_package, make_invoice, login):
        await make_invoice(await make_package(seeded_db["alice"], "TRK-CB1"), 80.0)
        await make_invoice(await make_package(seeded_db["bob"], "TRK-CB2"), 20.0)

        login(seeded_db["alice"])
        resp = await client.get("/api/customer/bills/")
        assert [b["invoice_number"] for b in resp.json()] == ["INV-TRK-CB1"]
        assert (await client.get("/api/customer/bills/INV-TRK-CB1")).status_code == 200
        assert (await client.get("/api/customer/bills/INV-TRK-CB2")).status_code == 404


@pytest.mark.asyncio
class TestCustomerPaymentsAPI:
    async def test_card_payment(self, client: AsyncClient, seeded_db, make_package, make_invoice, login):
        await make_invoice(await make_package(seeded_db["alice"], "TRK-P1"), 100.0)
        login(seeded_db["alice"])

        resp = await client.post(
            "/api/customer/payments/process",
            json={
                "tracking_number": "TRK-P1",
                "amount": 40,
                "method": "card",
                "card_details": {"card_number": "4111111111111234", "expiry": "12/29"},
            },
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["invoice_status"] == "partially_paid"
        assert data["balance_due"] == 60.0
        assert data["payment_id"] is not None

        ledger = (await client.get("/api/customer/payments/")).json()
        assert len(ledger) == 1
        assert ledger[0]["method"] == "card"
        assert ledger[0]["tracking_number"] == "TRK-P1"

    async def test_currency_mismatch(self, client: AsyncClient, seeded_db, make_package, make_invoice, login):
        await make_invoice(await make_package(seeded_db["alice"], "TRK-P2"), 100.0)
        login(seeded_db["alice"])
        resp = await client.post(
            "/api/customer/payments/process",
            json={"tracking_number": "TRK-P2", "amount": 10, "currency": "USD", "method": "wallet"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "Payment currency USD does not match invoice currency JMD"

    async def test_cannot_pay_someone_elses_package(self, client: AsyncClient, seeded_db, make_package, make_invoice, login):
        await make_invoice(await make_package(seeded_db["bob"], "TRK-P3"), 100.0)
        login(seeded_db["alice"])
        resp = await client.post(
            "/api/customer/payments/process", json={"tracking_number": "TRK-P3", "amount": 10, "method": "cash"}
        )
        assert resp.status_code == 403

    async def test_paypal_order_then_capture(
        self, client: AsyncClient, seeded_db, make_package, make_invoice, login, fake_paypal
    ):
        await make_invoice(await make_package(seeded_db["alice"], "TRK-PP"), 100.0)
        login(seeded_db["alice"])

        order = await client.post("/api/customer/payments/create-paypal-order", json={"tracking_numbers": ["TRK-PP"]})
        assert order.status_code == 200
        order_data = order.json()
        assert order_data["amount"] == 100.0
        assert order_data["currency"] == "JMD"
        assert order_data["approve_url"].endswith(order_data["order_id"])

        capture = await client.post(
            "/api/customer/payments/capture-paypal",
            json={"order_id": order_data["order_id"], "tracking_number": "TRK-PP"},
        )
        assert capture.status_code == 200
        data = capture.json()
        assert data["message"] == "PayPal payment captured"
        assert data["invoice_status"] == "paid"
        assert data["balance_due"] == 0.0

        login(role="admin")
        ledger = (await client.get("/api/admin/transactions/", params={"method": "paypal"})).json()
        assert ledger[0]["reference"] == f"CAP-{order_data['order_id']}"
        assert ledger[0]["gateway"] == "paypal"

        login(seeded_db["alice"])
        paid = await client.post("/api/customer/payments/create-paypal-order", json={"tracking_numbers": ["TRK-PP"]})
        assert paid.status_code == 400
        assert paid.json()["error"] == "Invoice INV-TRK-PP is already paid"

    async def test_failed_capture_leaves_invoice_untouched(
        self, client: AsyncClient, seeded_db, make_package, make_invoice, login, fake_paypal
    ):
        await make_invoice(await make_package(seeded_db["alice"], "TRK-PF"), 100.0)
        fake_paypal.add_order("ORDER-FAIL", 100.0)
        fake_paypal.fail_capture = True
        login(seeded_db["alice"])

        resp = await client.post(
            "/api/customer/payments/capture-paypal", json={"order_id": "ORDER-FAIL", "tracking_number": "TRK-PF"}
        )
        assert resp.status_code == 502
        assert resp.json()["error"] == "PayPal capture failed"
        bill = (await client.get("/api/customer/bills/INV-TRK-PF")).json()
        assert bill["amount_paid"] == 0.0

    async def test_paypal_amount_above_capture_is_rejected(
        self, client: AsyncClient, seeded_db, make_package, make_invoice, login, fake_paypal
    ):
        await make_invoice(await make_package(seeded_db["alice"], "TRK-PX"), 100.0)
        fake_paypal.add_order("ORDER-CHEAP", 1.00)
        login(seeded_db["alice"])

        resp = await client.post(
            "/api/customer/payments/process",
            json={"tracking_number": "TRK-PX", "amount": 100, "method": "paypal", "paypal_order_id": "ORDER-CHEAP"},
        )
        assert resp.status_code == 502
        assert resp.json()["error"] == "PayPal captured 1.00 but 100.00 was requested"
        assert resp.json()["details"] == {"captured": 1.0, "requested": 100.0}

        bill = (await client.get("/api/customer/bills/INV-TRK-PX")).json()
        assert bill["amount_paid"] == 0.0
        assert bill["status"] == "sent"

        # the captured money is still on the ledger, unapplied
        ledger = (await client.get("/api/customer/payments/")).json()
        assert len(ledger) == 1
        assert ledger[0]["amount"] == 1.0
        assert ledger[0]["reference"] == "CAP-ORDER-CHEAP"

    async def test_bulk_payment(self, client: AsyncClient, seeded_db, make_package, make_invoice, login):
        await make_invoice(await make_package(seeded_db["alice"], "TRK-BK1"), 50.0)
        await make_invoice(await make_package(seeded_db["alice"], "TRK-BK2"), 50.0)
        login(seeded_db["alice"])

        resp = await client.post(
            "/api/customer/payments/process-bulk",
            json={
                "method": "cash",
                "items": [
                    {"tracking_number": "TRK-BK1", "amount": 50},
                    {"tracking_number": "TRK-BK2", "amount": 0},
                ],
            },
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["processed_count"] == 1
        assert data["failed_count"] == 1
        assert data["results"][1] == {
            "tracking_number": "TRK-BK2",
            "success": False,
            "error": "Amount must be positive",
        }


@pytest.mark.asyncio
class TestPreAlertsAPI:
    async def test_pre_alert_flow(self, client: AsyncClient, seeded_db, login):
        login(seeded_db["alice"])
        resp = await client.post("/api/customer/prealerts/", json={"tracking_number": "TRK-PA", "carrier": "USPS"})
        assert resp.status_code == 201
        pre_alert_id = resp.json()["pre_alert_id"]
        assert resp.json()["status"] == "submitted"

        dup = await client.post("/api/customer/prealerts/", json={"tracking_number": "TRK-PA"})
        assert dup.status_code == 409

        login(role="admin")
        listing = (await client.get("/api/admin/prealerts/", params={"status": "submitted"})).json()
        assert listing[0]["user_code"] == "CD1001"

        resp = await client.put("/api/admin/prealerts/", json={"id": pre_alert_id, "action": "approve"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "approved"

        again = await client.post("/api/admin/prealerts/decide", json={"id": pre_alert_id, "action": "reject"})
        assert again.status_code == 409

        login(seeded_db["alice"])
        assert (await client.delete(f"/api/customer/prealerts/{pre_alert_id}")).status_code == 409

    async def test_withdraw(self, client: AsyncClient, seeded_db, login):
        login(seeded_db["alice"])
        created = await client.post("/api/customer/prealerts/", json={"tracking_number": "TRK-WD"})
        resp = await client.delete(f"/api/customer/prealerts/{created.json()['pre_alert_id']}")
        assert resp.status_code == 204
        assert (await client.get("/api/customer/prealerts/")).json() == []


@pytest.mark.asyncio
class TestPricingAPI:
    async def test_rule_crud(self, client: AsyncClient, seeded_db):
        rule = {
            "name": "US→JM ocean",
            "origin": "US",
            "destination": "JM",
            "weight_min": 50,
            "weight_max": 500,
            "base_rate": 40,
            "per_kg_rate": 0.8,
        }
        created = await client.post("/api/admin/pricing-rules", json=rule)
        assert created.status_code == 201
        rule_id = created.json()["rule_id"]

        updated = await client.put(f"/api/admin/pricing-rules/{rule_id}", json={**rule, "active": False})
        assert updated.json()["active"] is False
        assert len((await client.get("/api/admin/pricing-rules")).json()) == 2
        assert len((await client.get("/api/admin/pricing-rules", params={"include_inactive": "true"})).json()) == 3

        assert (await client.delete(f"/api/admin/pricing-rules/{rule_id}")).status_code == 204
        assert (await client.delete(f"/api/admin/pricing-rules/{rule_id}")).status_code == 404

        audit = (await client.get("/api/admin/reports/audit-logs", params={"entity": "pricing_rule"})).json()
        assert audit["total"] == 3
        assert [log["action"] for log in audit["logs"]] == [
            "pricing_rule.deleted",
            "pricing_rule.updated",
            "pricing_rule.created",
        ]

    async def test_rule_band_must_be_ordered(self, client: AsyncClient, seeded_db):
        rule = {"name": "bad", "origin": "US", "destination": "JM", "weight_min": 10, "weight_max": 10}
        resp = await client.post("/api/admin/pricing-rules", json=rule)
        assert resp.status_code == 400

    async def test_quotes(self, client: AsyncClient, seeded_db, login):
        login(role="warehouse")
        rate = await client.post("/api/admin/quotes/rate", json={"origin": "US", "destination": "JM", "weight": 5})
        assert rate.json()["rate"] == 27.5
        assert rate.json()["matched_rule"]["name"] == "US→JM heavy"

        insurance = await client.post("/api/admin/quotes/insurance", json={"declared_value": 1000, "is_fragile": True})
        assert insurance.json()["total_premium"] == 30.0

        delivery = await client.post(
            "/api/admin/quotes/delivery", json={"origin_country": "JM", "destination_country": "JM", "service_mode": "local"}
        )
        assert delivery.json()["days"] == 2

        missing = await client.post("/api/admin/quotes/rate", json={"origin": "CN", "destination": "JM", "weight": 5})
        assert missing.status_code == 404

    async def test_consolidation(self, client: AsyncClient, seeded_db, make_package):
        alice = seeded_db["alice"]
        dims = {"length": 10, "width": 10, "height": 10}
        await make_package(alice, "TRK-C1", weight=40, **dims)
        await make_package(alice, "TRK-C2", weight=43.5, **dims)
        body = {"tracking_numbers": ["TRK-C1", "TRK-C2"], "service_mode": "air"}

        quote = await client.post("/api/admin/consolidations/quote", json=body)
        assert quote.status_code == 200
        assert quote.json()["estimated_cost"] == 417.5
        assert quote.json()["recommended_load_type"] == "standard"

        created = await client.post("/api/admin/consolidations", json=body)
        assert created.status_code == 201
        consolidation_id = created.json()["consolidation_id"]

        package = (await client.get("/api/admin/packages/TRK-C1")).json()
        assert package["consolidation_id"] == consolidation_id
        assert package["history"][-1]["note"] == f"Added to consolidation {consolidation_id}"

        again = await client.post("/api/admin/consolidations", json=body)
        assert again.status_code == 400

    async def test_consolidation_needs_known_packages(self, client: AsyncClient, seeded_db, make_package):
        await make_package(seeded_db["alice"], "TRK-C3", weight=1)
        resp = await client.post("/api/admin/consolidations/quote", json={"tracking_numbers": ["TRK-C3", "TRK-C9"]})
        assert resp.status_code == 404
        assert resp.json()["error"] == "Packages not found: TRK-C9"

        single = await client.post("/api/admin/consolidations/quote", json={"tracking_numbers": ["TRK-C3"]})
        assert single.status_code == 400


@pytest.mark.asyncio
class TestInventoryAPI:
    async def test_list_and_summary(self, client: AsyncClient, seeded_db):
        items = (await client.get("/api/admin/inventory/")).json()
        assert {i["category"]: i["status"] for i in items}["bubble_wrap"] == "low_stock"

        summary = (await client.get("/api/admin/inventory/summary")).json()
        assert summary == {"total_items": 5, "in_stock": 4, "low_stock": 1, "out_of_stock": 0, "stock_value": 393.0}

    async def test_create_and_restock(self, client: AsyncClient, seeded_db):
        created = await client.post(
            "/api/admin/inventory/",
            json={"name": "Large Box", "category": "boxes", "current_stock": 0, "min_stock": 5},
        )
        assert created.status_code == 201
        assert created.json()["status"] == "out_of_stock"
        assert created.json()["location"] == "Main Warehouse"

        item_id = created.json()["item_id"]
        tx = await client.post(f"/api/admin/inventory/{item_id}/restock", json={"quantity": 20, "reason": "PO-17"})
        assert tx.status_code == 200
        assert tx.json()["previous_stock"] == 0
        assert tx.json()["new_stock"] == 20
        assert tx.json()["actor"] == "ADMIN"

        history = (await client.get("/api/admin/inventory/transactions", params={"item_id": item_id})).json()
        assert len(history) == 1

    async def test_unknown_category(self, client: AsyncClient, seeded_db):
        resp = await client.post("/api/admin/inventory/", json={"name": "Drone", "category": "vehicles"})
        assert resp.status_code == 400


@pytest.mark.asyncio
class TestReportsAPI:
    async def test_dashboard(self, client: AsyncClient, test_db, seeded_db, make_package, make_invoice):
        alice = seeded_db["alice"]
        await make_invoice(await make_package(alice, "TRK-D1"), 100.0)
        await make_invoice(await make_package(alice, "TRK-D2", status="shipped"), 50.0, due_in_days=-1)
        await make_package(alice, "TRK-D3", status="deleted")
        await flag_overdue(test_db)
        await test_db.commit()

        await client.post("/api/admin/bills/pay", json={"tracking_number": "TRK-D1", "amount": 40, "method": "cash"})

        resp = await client.get("/api/admin/reports/dashboard")
        assert resp.status_code == 200
        data = resp.json()
        assert data["packages_by_status"] == {"received": 1, "shipped": 1}
        assert data["active_packages"] == 2
        assert data["invoices"] == [
            {
                "currency": "JMD",
                "count": 2,
                "billed": 150.0,
                "collected": 40.0,
                "outstanding": 110.0,
                "overdue_count": 1,
            }
        ]
        assert data["payments_by_currency"] == {"JMD": 40.0}

    async def test_audit_log_paging(self, client: AsyncClient, seeded_db):
        for weight_max in (100, 200, 300):
            rule = {"name": f"r{weight_max}", "origin": "US", "destination": "TT", "weight_max": weight_max}
            await client.post("/api/admin/pricing-rules", json=rule)

        page = (await client.get("/api/admin/reports/audit-logs", params={"limit": 2, "page": 2})).json()
        assert page["total"] == 3
        assert len(page["logs"]) == 1
        assert page["logs"][0]["actor"] == "ADMIN"
