# Overview: Pytest coverage for the sales, tax and health HTTP endpoints.

"""
API Route Tests

Covers request scoping, status codes mapped from engine errors, and the
JSON shape of sale documents.
"""

from decimal import Decimal

from bizops.models import SaleTransaction
from bizops.services import sales_service

from conftest import business_headers


def _invoice_body(customer, **extra):
    body = {
        "customer_id": customer.id,
        "transaction_date": "2024-03-15T10:00:00Z",
        "line_items": [{"description": "Chairs", "quantity": 2, "unit_price": "50.00"}],
    }
    body.update(extra)
    return body


class TestSaleEndpoints:

    def test_create_invoice(self, client, headers, individual_customer, seeded_rates):
        response = client.post("/api/invoices", json=_invoice_body(individual_customer), headers=headers)

        assert response.status_code == 201
        sale = response.get_json()["sale"]
        assert sale["transaction_number"] == "INV-0001"
        assert sale["subtotal"] == "100.00"
        assert sale["tax_amount"] == "18.00"
        assert sale["final_amount"] == "118.00"
        assert sale["transaction_date"] == "2024-03-15T10:00:00Z"
        assert sale["created_by"] == 1
        assert sale["accounting_status"] == "processed"
        assert sale["items"][0]["tax_rate"] == "18.0000"
        assert sale["items"][0]["tax_code"] == "VAT_STD"

    def test_business_header_required(self, client, individual_customer):
        response = client.post("/api/invoices", json=_invoice_body(individual_customer))
        assert response.status_code == 400
        assert response.get_json()["code"] == "validation_error"

    def test_malformed_business_header(self, client, individual_customer):
        response = client.post("/api/invoices", json=_invoice_body(individual_customer),
                               headers={"X-Business-Id": "abc"})
        assert response.status_code == 400

    def test_invoice_without_items(self, client, headers, individual_customer, seeded_rates, db_session):
        response = client.post("/api/invoices", json=_invoice_body(individual_customer, line_items=[]),
                               headers=headers)
        assert response.status_code == 400
        assert response.get_json()["code"] == "validation_error"
        assert db_session.query(SaleTransaction).count() == 0

    def test_invoice_with_unknown_product(self, client, headers, individual_customer, seeded_rates):
        body = _invoice_body(individual_customer, line_items=[{"product_id": 777, "quantity": 1, "unit_price": "5"}])
        response = client.post("/api/invoices", json=body, headers=headers)

        assert response.status_code == 404
        payload = response.get_json()
        assert payload["code"] == "not_found"
        assert payload["details"]["resource_type"] == "product"

    def test_invoice_without_rate_is_unprocessable(self, client, headers, individual_customer):
        """No rate table seeded: the strict invoice path refuses the sale."""
        response = client.post("/api/invoices", json=_invoice_body(individual_customer), headers=headers)
        assert response.status_code == 422

    def test_pos_transaction_without_rate_is_recorded_untaxed(self, client, headers):
        response = client.post(
            "/api/pos/transactions",
            json={"line_items": [{"description": "Soda", "quantity": 3, "unit_price": "2.00"}]},
            headers=headers,
        )
        assert response.status_code == 201
        sale = response.get_json()["sale"]
        assert sale["transaction_number"] == "POS-000001"
        assert sale["tax_amount"] == "0.00"
        assert sale["items"][0]["tax_amount"] is None
        assert sale["payment_status"] == "paid"

    def test_sale_is_invisible_to_other_business(self, client, headers, other_business, individual_customer,
                                                  seeded_rates):
        created = client.post("/api/invoices", json=_invoice_body(individual_customer), headers=headers)
        sale_id = created.get_json()["sale"]["id"]

        assert client.get(f"/api/sales/{sale_id}", headers=headers).status_code == 200
        response = client.get(f"/api/sales/{sale_id}", headers=business_headers(other_business))
        assert response.status_code == 404

    def test_void_then_void_again(self, client, headers, individual_customer, seeded_rates):
        sale_id = client.post("/api/invoices", json=_invoice_body(individual_customer),
                              headers=headers).get_json()["sale"]["id"]

        voided = client.post(f"/api/sales/{sale_id}/void", json={"reason": "duplicate"}, headers=headers)
        assert voided.status_code == 200
        assert voided.get_json()["sale"]["status"] == "void"
        assert voided.get_json()["sale"]["status_reason"] == "duplicate"

        again = client.post(f"/api/sales/{sale_id}/void", headers=headers)
        assert again.status_code == 409
        assert again.get_json()["code"] == "invalid_status_transition"

    def test_list_sales(self, client, headers, individual_customer, seeded_rates):
        client.post("/api/invoices", json=_invoice_body(individual_customer), headers=headers)
        client.post("/api/pos/transactions",
                    json={"line_items": [{"description": "Soda", "quantity": 1, "unit_price": "2"}]},
                    headers=headers)

        response = client.get("/api/sales?channel=pos", headers=headers)
        assert response.status_code == 200
        payload = response.get_json()
        assert payload["total"] == 1
        assert payload["items"][0]["channel"] == "pos"

    def test_list_sales_rejects_bad_paging(self, client, headers):
        assert client.get("/api/sales?page=two", headers=headers).status_code == 400

    def test_sales_summary(self, client, headers, individual_customer, seeded_rates):
        client.post("/api/invoices", json=_invoice_body(individual_customer), headers=headers)
        client.post("/api/invoices", json=_invoice_body(individual_customer, status="draft"), headers=headers)

        response = client.get("/api/sales/summary?from=2024-03-01&to=2024-03-31", headers=headers)
        assert response.status_code == 200
        summary = response.get_json()["summary"]
        assert summary["transaction_count"] == 1
        assert summary["total_sales"] == "118.00"
        assert summary["customer_count"] == 1

        today = client.get("/api/sales/summary?period=today", headers=headers).get_json()["summary"]
        assert today["transaction_count"] == 0

    def test_sales_summary_rejects_unknown_channel(self, client, headers):
        assert client.get("/api/sales/summary?channel=web", headers=headers).status_code == 400

    def test_record_payment(self, client, headers, individual_customer, seeded_rates):
        sale_id = client.post("/api/invoices", json=_invoice_body(individual_customer),
                              headers=headers).get_json()["sale"]["id"]

        missing = client.post(f"/api/invoices/{sale_id}/payments", json={}, headers=headers)
        assert missing.status_code == 400

        paid = client.post(f"/api/invoices/{sale_id}/payments",
                           json={"amount": "118.00", "payment_method": "mobile_money"}, headers=headers)
        assert paid.status_code == 200
        assert paid.get_json()["sale"]["payment_status"] == "paid"

    def test_accounting_retry(self, client, headers, db_session, business, individual_customer, rate_service,
                              failing_ledger):
        sale = sales_service.create_invoice(
            db_session, business.id,
            {"customer_id": individual_customer.id,
             "line_items": [{"description": "Goods", "quantity": 1, "unit_price": "10"}]},
            rate_service=rate_service, ledger=failing_ledger,
        )
        assert sale.accounting_status == "failed"

        response = client.post(f"/api/sales/{sale.id}/accounting/retry", headers=headers)

        assert response.status_code == 200
        payload = response.get_json()
        assert payload["accounting_status"] == "processed"
        assert payload["sale"]["accounting_error"] is None
        assert Decimal(payload["sale"]["final_amount"]) == Decimal("11.80")

    def test_accounting_retry_refuses_drafts(self, client, headers, individual_customer, seeded_rates):
        sale_id = client.post("/api/invoices", json=_invoice_body(individual_customer, status="draft"),
                              headers=headers).get_json()["sale"]["id"]
        response = client.post(f"/api/sales/{sale_id}/accounting/retry", headers=headers)
        assert response.status_code == 400


class TestTaxEndpoints:

    def test_rate_lookup(self, client, headers, seeded_rates):
        response = client.get("/api/tax/rate?category=SERVICES&customer_type=company&date=2024-03-15",
                              headers=headers)
        assert response.status_code == 200
        assert response.get_json()["rate"]["tax_code"] == "WHT_SERVICES"

    def test_rate_lookup_requires_category(self, client, headers):
        assert client.get("/api/tax/rate", headers=headers).status_code == 400

    def test_preview(self, client, headers, seeded_rates):
        response = client.post("/api/tax/preview", json={
            "customer_type": "individual",
            "date": "2024-03-15",
            "lines": [{"category": "STANDARD_GOODS", "amount": "100"}, {"category": "PHARMACEUTICALS", "amount": "40"}],
        }, headers=headers)

        assert response.status_code == 200
        assert response.get_json()["totals"]["total_tax_amount"] == "18.00"

    def test_preview_rejects_non_object_lines(self, client, headers):
        response = client.post("/api/tax/preview", json={"customer_type": "individual", "lines": ["x"]},
                               headers=headers)
        assert response.status_code == 400

    def test_categories(self, client, headers, seeded_rates):
        response = client.get("/api/tax/categories", headers=headers)
        assert response.status_code == 200
        codes = {c["category_code"] for c in response.get_json()["categories"]}
        assert "STANDARD_GOODS" in codes


class TestHealth:

    def test_health(self, client, db_session):
        response = client.get("/api/health")
        assert response.status_code == 200
        payload = response.get_json()
        assert payload["status"] == "ok"
        assert payload["checks"]["database"]["accounting_failures"] == 0
