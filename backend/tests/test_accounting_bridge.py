# Overview: Pytest coverage for ledger posting of sales and failed-posting reconciliation.

from decimal import Decimal
from types import SimpleNamespace

from bizops.models import Account, JournalEntry, SaleTransaction
from bizops.services import accounting_bridge, ledger_service, sales_service
from bizops.services.accounting_bridge import REFERENCE_TYPE


def _invoice_payload(customer, unit_price="100", **extra):
    payload = {
        "customer_id": customer.id,
        "line_items": [{"description": "Goods", "quantity": 1, "unit_price": unit_price}],
    }
    payload.update(extra)
    return payload


def _entries(db_session, business, sale_id):
    db_session.expire_all()
    return ledger_service.entries_for_reference(db_session, business.id, REFERENCE_TYPE, sale_id)


def _accounts(entry):
    return {(line.account.code, line.side): line.amount for line in entry.lines}


class TestAccountSelection:

    def test_revenue_account_by_line_type(self):
        goods = SimpleNamespace(items=[SimpleNamespace(item_type="product"), SimpleNamespace(item_type="manual")])
        mixed = SimpleNamespace(items=[SimpleNamespace(item_type="product"), SimpleNamespace(item_type="service")])
        assert accounting_bridge.select_revenue_account(goods) == "4100"
        assert accounting_bridge.select_revenue_account(mixed) == "4200"

    def test_debit_account_by_payment_method(self):
        assert accounting_bridge.select_debit_account(SimpleNamespace(payment_method="cash")) == "1110"
        assert accounting_bridge.select_debit_account(SimpleNamespace(payment_method="card")) == "1200"
        assert accounting_bridge.select_debit_account(SimpleNamespace(payment_method=None)) == "1200"

    def test_posting_amount_prefers_payment_received(self):
        assert accounting_bridge.posting_amount(
            SimpleNamespace(amount_paid=Decimal("50"), final_amount=Decimal("118"))) == Decimal("50.00")
        assert accounting_bridge.posting_amount(
            SimpleNamespace(amount_paid=Decimal("0"), final_amount=Decimal("118"))) == Decimal("118.00")


class TestPostSale:

    def test_cash_pos_sale_debits_cash(self, db_session, business, rate_service):
        sale = sales_service.create_pos_transaction(
            db_session, business.id,
            {"line_items": [{"description": "Goods", "quantity": 1, "unit_price": "100"}]},
            rate_service=rate_service,
        )
        entry = _entries(db_session, business, sale.id)[0]
        assert _accounts(entry) == {("1110", "debit"): Decimal("118.00"), ("4100", "credit"): Decimal("118.00")}
        assert entry.entry_date == sale.tax_date

    def test_service_invoice_credits_service_revenue(
        self, db_session, business, individual_customer, service, rate_service
    ):
        sale = sales_service.create_invoice(
            db_session, business.id,
            {"customer_id": individual_customer.id,
             "line_items": [{"service_id": service.id, "quantity": 1, "unit_price": "200"}]},
            rate_service=rate_service,
        )
        entry = _entries(db_session, business, sale.id)[0]
        assert _accounts(entry) == {("1200", "debit"): Decimal("236.00"), ("4200", "credit"): Decimal("236.00")}

    def test_posting_is_not_repeated(self, db_session, business, individual_customer, rate_service):
        sale = sales_service.create_invoice(
            db_session, business.id, _invoice_payload(individual_customer), rate_service=rate_service,
        )
        assert accounting_bridge.post_sale(sale.id) == "processed"
        assert len(_entries(db_session, business, sale.id)) == 1

    def test_draft_is_left_pending(self, db_session, business, individual_customer, rate_service):
        sale = sales_service.create_invoice(
            db_session, business.id, _invoice_payload(individual_customer, status="draft"),
            rate_service=rate_service,
        )
        assert accounting_bridge.post_sale(sale.id) == "pending"
        assert _entries(db_session, business, sale.id) == []

    def test_zero_amount_sale_needs_no_entry(self, db_session, business, rate_service):
        sale = sales_service.create_pos_transaction(
            db_session, business.id,
            {"line_items": [{"description": "Free sample", "quantity": 1, "unit_price": "0"}]},
            rate_service=rate_service,
        )
        assert sale.accounting_status == "processed"
        assert _entries(db_session, business, sale.id) == []

    def test_missing_sale(self, app):
        assert accounting_bridge.post_sale(123456) == "failed"

    def test_unknown_account_is_recorded_as_failure(self, db_session, business, individual_customer, rate_service):
        """A business without its ledger accounts keeps the sale, with the error."""
        db_session.query(Account).filter_by(business_id=business.id, code="4100").delete()
        db_session.commit()

        sale = sales_service.create_invoice(
            db_session, business.id, _invoice_payload(individual_customer), rate_service=rate_service,
        )
        assert sale.status == "completed"
        assert sale.accounting_status == "failed"
        assert "4100" in sale.accounting_error
        assert db_session.query(JournalEntry).count() == 0


class TestReconcile:

    def test_failed_posting_recovers(self, db_session, business, individual_customer, rate_service, failing_ledger):
        sale = sales_service.create_invoice(
            db_session, business.id, _invoice_payload(individual_customer),
            rate_service=rate_service, ledger=failing_ledger,
        )
        assert sale.accounting_status == "failed"

        summary = accounting_bridge.reconcile_failed(business.id)

        assert summary == {"attempted": 1, "processed": 1, "failed": 0, "sale_ids_failed": []}
        db_session.expire_all()
        fetched = db_session.get(SaleTransaction, sale.id)
        assert fetched.accounting_processed is True
        assert fetched.accounting_error is None
        assert len(_entries(db_session, business, sale.id)) == 1

    def test_still_failing_is_reported(self, db_session, business, individual_customer, rate_service, failing_ledger):
        sale = sales_service.create_invoice(
            db_session, business.id, _invoice_payload(individual_customer),
            rate_service=rate_service, ledger=failing_ledger,
        )
        summary = accounting_bridge.reconcile_failed(business.id, ledger=failing_ledger)
        assert summary["failed"] == 1
        assert summary["sale_ids_failed"] == [sale.id]

    def test_failed_reversal_is_retried(self, db_session, business, individual_customer, rate_service, failing_ledger):
        sale = sales_service.create_invoice(
            db_session, business.id, _invoice_payload(individual_customer), rate_service=rate_service,
        )
        voided = sales_service.void_sale(db_session, business.id, sale.id, ledger=failing_ledger)
        assert voided.status == "void"
        assert voided.accounting_error.startswith("Reversal failed:")
        assert len(_entries(db_session, business, sale.id)) == 1

        summary = accounting_bridge.reconcile_failed(business.id)

        assert summary["processed"] == 1
        original, reversal = _entries(db_session, business, sale.id)
        assert reversal.reverses_entry_id == original.id

    def test_voided_sale_that_never_posted_settles_without_entry(
        self, db_session, business, individual_customer, rate_service, failing_ledger
    ):
        sale = sales_service.create_invoice(
            db_session, business.id, _invoice_payload(individual_customer),
            rate_service=rate_service, ledger=failing_ledger,
        )
        sales_service.void_sale(db_session, business.id, sale.id)

        summary = accounting_bridge.reconcile_failed(business.id)

        assert summary["processed"] == 1
        assert _entries(db_session, business, sale.id) == []
        assert db_session.get(SaleTransaction, sale.id).accounting_status == "processed"

    def test_pending_sales_only_with_flag(
        self, db_session, business, individual_customer, rate_service, failing_ledger
    ):
        sale = sales_service.create_invoice(
            db_session, business.id, _invoice_payload(individual_customer),
            rate_service=rate_service, ledger=failing_ledger,
        )
        fetched = db_session.get(SaleTransaction, sale.id)
        fetched.accounting_error = None
        db_session.commit()

        assert accounting_bridge.reconcile_failed(business.id)["attempted"] == 0
        assert accounting_bridge.reconcile_failed(business.id, include_pending=True)["processed"] == 1

    def test_scoped_to_business(
        self, db_session, business, other_business, individual_customer, rate_service, failing_ledger
    ):
        sales_service.create_invoice(
            db_session, business.id, _invoice_payload(individual_customer),
            rate_service=rate_service, ledger=failing_ledger,
        )
        assert accounting_bridge.reconcile_failed(other_business.id)["attempted"] == 0
