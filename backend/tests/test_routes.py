# Overview: Pytest coverage for the JSON API (status codes and error payloads).

from sqlalchemy.exc import OperationalError

from conftest import blend_line, context, product_line, variant_line
from shopledger.models import Product, ProductVariant, Sale
from shopledger.services import stock_service


def _sale_body(department, items, **overrides):
    body = context(department, **overrides)
    body["items"] = items
    return body


class TestSalesApi:
    def test_complete_sale(self, client, db_session, general, water):
        resp = client.post("/api/sales", json=_sale_body(general, [product_line(water, 2)]))

        assert resp.status_code == 201
        receipt = resp.get_json()["receipt"]
        assert receipt["receipt_number"] == "RCP-000001"
        assert receipt["total_cents"] == 2000
        assert receipt["department_name"] == "General Store"
        assert resp.get_json()["warnings"] == []
        assert db_session.get(Product, water.id, populate_existing=True).stock == 8

    def test_empty_cart(self, client, db_session, general):
        resp = client.post("/api/sales", json=_sale_body(general, []))

        assert resp.status_code == 400
        assert resp.get_json()["code"] == "empty_cart"

    def test_insufficient_stock_payload(self, client, db_session, general, water):
        resp = client.post("/api/sales", json=_sale_body(general, [product_line(water, 11)]))

        assert resp.status_code == 409
        data = resp.get_json()
        assert data["code"] == "insufficient_stock"
        assert data["details"]["available"] == 10
        assert data["retryable"] is False
        assert db_session.query(Sale).count() == 0

    def test_oversized_quantity_is_400(self, client, db_session, general, water):
        resp = client.post("/api/sales", json=_sale_body(general, [product_line(water, 10**19)]))

        assert resp.status_code == 400
        assert resp.get_json()["code"] == "validation_error"
        assert db_session.get(Product, water.id, populate_existing=True).stock == 10

    def test_unit_mismatch_is_422(self, client, db_session, general, water):
        resp = client.post("/api/sales", json=_sale_body(general, [product_line(water, 1, unit="ml")]))

        assert resp.status_code == 422
        assert resp.get_json()["code"] == "unit_mismatch"

    def test_blend_sale_and_receipt(self, client, db_session, perfume, rose, oud):
        resp = client.post("/api/sales", json=_sale_body(perfume, [blend_line([("Rose", 5), ("Oud", 10)])]))
        assert resp.status_code == 201
        sale_id = resp.get_json()["receipt"]["sale_id"]

        resp = client.get(f"/api/sales/{sale_id}/receipt")

        line = resp.get_json()["receipt"]["lines"][0]
        assert line["total_ml"] == 15
        assert [c["scent"] for c in line["scent_breakdown"]] == ["Rose", "Oud"]

    def test_void_twice(self, client, db_session, general, water):
        sale_id = client.post("/api/sales", json=_sale_body(general, [product_line(water, 4)])).get_json()["receipt"]["sale_id"]

        first = client.post(f"/api/sales/{sale_id}/void", json={"reason": "Mistake", "actor": "Manager"})
        second = client.post(f"/api/sales/{sale_id}/void", json={"reason": "Mistake", "actor": "Manager"})

        assert first.status_code == 200
        assert first.get_json()["sale"]["status"] == "voided"
        assert second.status_code == 409
        assert second.get_json()["code"] == "already_voided"
        assert db_session.get(Product, water.id, populate_existing=True).stock == 10

    def test_list_requires_department(self, client, db_session):
        assert client.get("/api/sales").status_code == 400

    def test_list_and_get(self, client, db_session, general, water):
        client.post("/api/sales", json=_sale_body(general, [product_line(water, 1)]))
        client.post("/api/sales", json=_sale_body(general, [product_line(water, 1)], payment_method="card"))

        listed = client.get(f"/api/sales?department_id={general.id}&payment_method=card").get_json()
        assert listed["count"] == 1

        sale = client.get(f"/api/sales/{listed['items'][0]['id']}").get_json()["sale"]
        assert sale["payment_method"] == "card"
        assert len(sale["items"]) == 1

    def test_unknown_sale(self, client, db_session):
        resp = client.get("/api/sales/999")

        assert resp.status_code == 404
        assert resp.get_json()["code"] == "not_found"


class TestStockApi:
    def test_receive_and_read_level(self, client, db_session, soap_pack):
        resp = client.post(f"/api/products/{soap_pack.id}/stock/receive", json={"amount": 1, "unit": "quantity"})

        assert resp.status_code == 200
        assert resp.get_json()["level"] == {"unit": "quantity", "count": 18}
        movements = client.get(f"/api/products/{soap_pack.id}/movements").get_json()
        assert movements["items"][0]["reason"] == "RECEIVE"

    def test_receive_storage_failure_is_503(self, client, db_session, water, monkeypatch):
        def broken(*args, **kwargs):
            raise OperationalError("UPDATE products", {}, Exception("database is locked"))

        monkeypatch.setattr(stock_service, "_apply_change", broken)

        resp = client.post(f"/api/products/{water.id}/stock/receive", json={"amount": 1, "unit": "quantity"})

        assert resp.status_code == 503
        assert resp.get_json()["code"] == "persistence_failure"
        assert resp.get_json()["retryable"] is True

    def test_variant_sale_and_receive(self, client, db_session, general, tshirt):
        medium = tshirt.variants[1]

        sold = client.post("/api/sales", json=_sale_body(general, [variant_line(medium, 1)]))
        assert sold.status_code == 201
        assert sold.get_json()["receipt"]["lines"][0]["variant_id"] == medium.id

        resp = client.post(f"/api/variants/{medium.id}/stock/receive", json={"amount": 2})
        assert resp.get_json()["level"] == {"unit": "quantity", "count": 2}
        assert client.get(f"/api/variants/{medium.id}").get_json()["variant"]["stock"] == 2

    def test_create_and_list_variants(self, client, db_session, water, rose):
        created = client.post(f"/api/products/{water.id}/variants", json={"name": "Sparkling", "stock": 4})
        assert created.status_code == 201
        assert db_session.query(ProductVariant).filter_by(product_id=water.id).count() == 1

        listed = client.get(f"/api/products/{water.id}/variants").get_json()
        assert [v["name"] for v in listed["items"]] == ["Sparkling"]

        scent_variant = client.post(f"/api/products/{rose.id}/variants", json={"name": "Travel"})
        assert scent_variant.status_code == 400

    def test_low_stock_report(self, client, db_session, general, water, tshirt):
        resp = client.get(f"/api/products/low-stock?department_id={general.id}")

        data = resp.get_json()
        assert resp.status_code == 200
        assert [a["name"] for a in data["items"]] == ["T-Shirt - Medium", "T-Shirt - Small"]
        assert data["out_of_stock"] == 0
        assert client.get("/api/products/low-stock").status_code == 400

    def test_ml_level(self, client, db_session, rose):
        level = client.get(f"/api/products/{rose.id}/stock").get_json()["level"]
        assert level == {"unit": "ml", "ml": 100.0}


class TestCreditsApi:
    def test_lifecycle(self, client, db_session, general, perfume):
        resp = client.post("/api/credits/", json={
            "from_department_id": general.id,
            "to_department_id": perfume.id,
            "amount_cents": 2500,
            "purpose": "Bottles",
        })
        assert resp.status_code == 201
        credit_id = resp.get_json()["credit"]["id"]

        early = client.post(f"/api/credits/{credit_id}/settle", json={})
        assert early.status_code == 409
        assert early.get_json()["code"] == "not_approved"

        assert client.post(f"/api/credits/{credit_id}/approve", json={"approver": "Admin"}).status_code == 200
        again = client.post(f"/api/credits/{credit_id}/reject", json={"approver": "Admin"})
        assert again.get_json()["code"] == "already_decided"

        settled = client.post(f"/api/credits/{credit_id}/settle", json={"settled_by": "Cashier"})
        assert settled.get_json()["credit"]["settlement_status"] == "settled"
        assert client.post(f"/api/credits/{credit_id}/settle", json={}).get_json()["code"] == "already_settled"

        totals = client.get(f"/api/credits/totals?department_id={perfume.id}").get_json()["totals"]
        assert totals == {"unsettled_in": 0, "unsettled_out": 0, "settled_in": 2500, "settled_out": 0}

    def test_missing_fields(self, client, db_session, general):
        resp = client.post("/api/credits/", json={"from_department_id": general.id})

        assert resp.status_code == 400
        assert resp.get_json()["code"] == "validation_error"

    def test_half_window_rejected(self, client, db_session, general):
        resp = client.get(f"/api/credits/?department_id={general.id}&start=2026-10-01")
        assert resp.status_code == 400


class TestCashApi:
    def test_reconcile_review_and_report(self, client, db_session, general, water):
        client.post("/api/sales", json=_sale_body(general, [product_line(water, 5)]))
        today = db_session.query(Sale).one().created_at.date().isoformat()

        resp = client.post("/api/reconciliations", json={
            "department_id": general.id,
            "date": today,
            "cashier_name": "Grace",
            "reported_cash_cents": 5500,
        })
        assert resp.status_code == 201
        data = resp.get_json()
        assert data["reconciliation"]["discrepancy_cents"] == 500
        assert data["suspended_revenue"]["amount_cents"] == 500

        duplicate = client.post("/api/reconciliations", json={
            "department_id": general.id,
            "date": today,
            "cashier_name": "Grace",
            "reported_cash_cents": 5000,
        })
        assert duplicate.status_code == 409
        assert duplicate.get_json()["code"] == "conflict"

        recon_id = data["reconciliation"]["id"]
        reviewed = client.post(f"/api/reconciliations/{recon_id}/review", json={"status": "approved", "actor": "Admin"})
        assert reviewed.get_json()["reconciliation"]["status"] == "approved"
        fetched = client.get(f"/api/reconciliations/{recon_id}").get_json()["reconciliation"]
        assert fetched["reviewed_by"] == "Admin"

        client.post("/api/expenses", json={"department_id": general.id, "amount_cents": 300, "expense_date": today})

        report = client.get(f"/api/reports/revenue?department_id={general.id}&start={today}&end={today}").get_json()
        summary = report["summary"]
        assert summary["gross_sales_cents"] == 5000
        assert summary["adjusted_total_sales_cents"] == 5000 - 300 + 500 - 500

    def test_suspended_revenue_investigation(self, client, db_session, general):
        created = client.post("/api/suspended-revenue", json={
            "department_id": general.id, "amount_cents": 800, "reason": "Found under till", "date": "2026-10-16",
        })
        assert created.status_code == 201
        entry_id = created.get_json()["suspended_revenue"]["id"]

        resp = client.patch(f"/api/suspended-revenue/{entry_id}", json={"status": "explained", "notes": "Tip jar"})
        assert resp.get_json()["suspended_revenue"]["resolved_at"] is not None

        listed = client.get(f"/api/suspended-revenue?department_id={general.id}&status=explained").get_json()
        assert listed["count"] == 1

    def test_report_requires_department(self, client, db_session):
        resp = client.get("/api/reports/revenue?start=2026-10-01&end=2026-10-02")
        assert resp.status_code == 400


class TestSystemApi:
    def test_health(self, client, db_session, general):
        resp = client.get("/health")

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["status"] == "healthy"
        assert data["checks"]["database"]["details"]["departments"] == 1

    def test_cors_header_for_known_origin(self, client, db_session):
        resp = client.get("/health", headers={"Origin": "http://localhost:5173"})
        assert resp.headers["Access-Control-Allow-Origin"] == "http://localhost:5173"

        resp = client.get("/health", headers={"Origin": "http://evil.example"})
        assert "Access-Control-Allow-Origin" not in resp.headers


class TestCatalogueApi:
    def test_create_product_rejects_unit_stock_on_scent(self, client, db_session, perfume):
        resp = client.post("/api/products", json={
            "department_id": perfume.id, "name": "Musk", "tracking_type": "ml", "stock": 3,
        })

        assert resp.status_code == 400
        assert resp.get_json()["code"] == "validation_error"

    def test_create_and_read_service(self, client, db_session, perfume):
        created = client.post("/api/services", json={
            "department_id": perfume.id, "name": "Gift Wrap", "price_cents": 300, "material_cost_cents": 50,
        })
        assert created.status_code == 201

        service_id = created.get_json()["service"]["id"]
        fetched = client.get(f"/api/services/{service_id}").get_json()["service"]
        assert fetched["material_cost_cents"] == 50

    def test_products_include_global_scents(self, client, db_session, perfume, rose, oud):
        names = [p["name"] for p in client.get(f"/api/products?department_id={perfume.id}").get_json()["items"]]
        assert names == ["Oud", "Rose"]

        local = client.get(f"/api/products?department_id={perfume.id}&include_global=false").get_json()
        assert [p["name"] for p in local["items"]] == ["Rose"]
