# Overview: Pytest coverage for the action audit trail.

from contextlib import contextmanager

from sqlalchemy.exc import OperationalError

from bizops.models import AuditLog
from bizops.services import audit_service, sales_service
from bizops.services.audit_service import TaxCalculationContext


class _BrokenSession:
    """Session whose commit fails, like a locked or unreachable database."""

    def add(self, obj):
        pass

    def commit(self):
        raise OperationalError("INSERT INTO audit_logs", {}, Exception("database is locked"))

    def rollback(self):
        pass


@contextmanager
def _broken_independent_session():
    yield _BrokenSession()


class TestLogAction:

    def test_entry_is_written_in_own_session(self, db_session, business):
        entry = audit_service.log_action(
            business_id=business.id, user_id=4, action="invoice.created",
            resource_type="invoice", resource_id=10, new_values={"final_amount": "118.00"},
        )
        assert entry is not None

        stored = db_session.query(AuditLog).one()
        assert stored.action == "invoice.created"
        assert stored.new_values == {"final_amount": "118.00"}
        assert stored.to_dict()["created_at"].endswith("Z")

    def test_write_failure_is_swallowed(self, db_session, business, monkeypatch):
        monkeypatch.setattr(audit_service, "independent_session", _broken_independent_session)

        entry = audit_service.log_action(
            business_id=business.id, user_id=None, action="invoice.created",
            resource_type="invoice", resource_id=10,
        )
        assert entry is None

    def test_sale_survives_audit_failure(self, db_session, business, individual_customer, rate_service, monkeypatch):
        """Losing the audit entry never loses the sale."""
        monkeypatch.setattr(audit_service, "independent_session", _broken_independent_session)

        sale = sales_service.create_invoice(
            db_session, business.id,
            {"customer_id": individual_customer.id,
             "line_items": [{"description": "Goods", "quantity": 1, "unit_price": "10"}]},
            rate_service=rate_service,
        )
        assert sale.id is not None
        assert sale.status == "completed"
        assert db_session.query(AuditLog).count() == 0


class TestSearchAuditLogs:

    def test_filters_and_business_scope(self, db_session, business, other_business):
        for action, resource_id in [("invoice.created", 1), ("invoice.voided", 1), ("pos.transaction.created", 2)]:
            audit_service.log_action(
                business_id=business.id, user_id=1, action=action,
                resource_type=action.rsplit(".", 1)[0], resource_id=resource_id,
            )
        audit_service.log_action(
            business_id=other_business.id, user_id=1, action="invoice.created",
            resource_type="invoice", resource_id=99,
        )

        everything = audit_service.search_audit_logs(db_session, business.id)
        assert everything["total"] == 3

        voided = audit_service.search_audit_logs(db_session, business.id, action="invoice.voided")
        assert [row["resource_id"] for row in voided["items"]] == [1]

        first_sale = audit_service.search_audit_logs(db_session, business.id, resource_id=1)
        assert first_sale["total"] == 2
        # newest first
        assert first_sale["items"][0]["action"] == "invoice.voided"

    def test_page_size_is_capped(self, db_session, business):
        page = audit_service.search_audit_logs(db_session, business.id, per_page=10_000)
        assert page["per_page"] == audit_service.MAX_PAGE_SIZE


class TestTaxCalculationContext:

    def test_serializes_named_fields_and_extra(self):
        context = TaxCalculationContext(
            line_position=2,
            item_type="product",
            category_source="product_missing_default",
            customer_type="individual",
            calculation_version="1.0",
            extra={"missing_reference": {"product_id": 9}},
        )
        data = context.to_dict()
        assert data["line_position"] == 2
        assert data["product_id"] is None
        assert data["extra"] == {"missing_reference": {"product_id": 9}}
