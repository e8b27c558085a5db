from __future__ import annotations

from ..extensions import db
from bizops.money import money_str, rate_str
from bizops.time_utils import to_utc_z, to_iso_date

class SaleTransaction(db.Model):
    """
    Sale document (invoice or point-of-sale transaction).

    WHY: One header type for both entry points. The channel decides lookup
    and tax strictness; totals, numbering, tax audit and ledger posting are
    shared.

    INVARIANTS:
    - final_amount == subtotal - discount_amount + tax_amount
    - created atomically with its line items and tax-audit records
    - accounting_processed and accounting_error are mutually exclusive;
      both unset means the ledger posting is pending
    - after creation only status, status timestamps, payment fields and the
      accounting tracking fields change
    """
    __tablename__ = "sale_transactions"
    __table_args__ = (
        db.UniqueConstraint("business_id", "transaction_number", name="uq_sale_tx_business_number"),
        db.Index("ix_sale_tx_business_status_date", "business_id", "status", "transaction_date"),
        db.Index("ix_sale_tx_business_channel", "business_id", "channel"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)

    # Human-readable number (e.g., "INV-0001", "POS-000001")
    transaction_number = db.Column(db.String(64), nullable=False)
    channel = db.Column(db.String(16), nullable=False)  # invoice, pos

    # Nullable for walk-in POS customers
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    customer_type = db.Column(db.String(16), nullable=False)  # classification used for tax

    transaction_date = db.Column(db.DateTime, nullable=False)
    # Date-only value used for effective-dated tax rate lookups
    tax_date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=True)
    country_code = db.Column(db.String(2), nullable=False)

    subtotal = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    final_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    # Lifecycle status: draft, completed, void, cancelled
    status = db.Column(db.String(16), nullable=False, default="completed", index=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    status_changed_at = db.Column(db.DateTime, nullable=True)
    status_changed_by = db.Column(db.Integer, nullable=True)
    status_reason = db.Column(db.String(255), nullable=True)

    payment_method = db.Column(db.String(32), nullable=True)  # cash, card, mobile_money, credit, bank_transfer
    payment_status = db.Column(db.String(16), nullable=False, default="unpaid")  # unpaid, partial, paid
    amount_paid = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.Integer, nullable=True)

    # Accounting bridge tracking
    accounting_processed = db.Column(db.Boolean, nullable=False, default=False)
    accounting_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    business = db.relationship("Business", backref=db.backref("sale_transactions", lazy=True))
    customer = db.relationship("Customer", backref=db.backref("sale_transactions", lazy=True))
    items = db.relationship(
        "LineItem",
        back_populates="sale_transaction",
        order_by="LineItem.position",
        lazy="select",
    )

    def __repr__(self) -> str:
        return (
            f"<SaleTransaction id={self.id} number={self.transaction_number!r} "
            f"status={self.status} final={self.final_amount}>"
        )

    @property
    def accounting_status(self) -> str:
        if self.accounting_error:
            return "failed"
        if self.accounting_processed:
            return "processed"
        return "pending"

    def summary_values(self) -> dict:
        """Fields recorded in the audit trail for a created sale."""
        return {
            "transaction_number": self.transaction_number,
            "channel": self.channel,
            "customer_id": self.customer_id,
            "subtotal": money_str(self.subtotal),
            "tax_amount": money_str(self.tax_amount),
            "discount_amount": money_str(self.discount_amount),
            "final_amount": money_str(self.final_amount),
            "payment_method": self.payment_method,
            "status": self.status,
        }

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "business_id": self.business_id,
            "transaction_number": self.transaction_number,
            "channel": self.channel,
            "customer_id": self.customer_id,
            "customer_type": self.customer_type,
            "transaction_date": to_utc_z(self.transaction_date),
            "tax_date": to_iso_date(self.tax_date),
            "due_date": to_iso_date(self.due_date),
            "country_code": self.country_code,
            "subtotal": money_str(self.subtotal),
            "tax_amount": money_str(self.tax_amount),
            "discount_amount": money_str(self.discount_amount),
            "final_amount": money_str(self.final_amount),
            "status": self.status,
            "completed_at": to_utc_z(self.completed_at),
            "status_changed_at": to_utc_z(self.status_changed_at),
            "status_reason": self.status_reason,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "amount_paid": money_str(self.amount_paid),
            "notes": self.notes,
            "created_by": self.created_by,
            "accounting_processed": self.accounting_processed,
            "accounting_error": self.accounting_error,
            "accounting_status": self.accounting_status,
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class LineItem(db.Model):
    """
    Individual line of a sale.

    References at most one of product / service / inventory item, or none
    (manual entry). tax_rate and tax_amount are NULL when no tax applies,
    never zero. Immutable once the parent transaction commits.
    """
    __tablename__ = "line_items"
    __table_args__ = (
        db.Index("ix_line_items_tx_position", "sale_transaction_id", "position"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    sale_transaction_id = db.Column(db.Integer, db.ForeignKey("sale_transactions.id"), nullable=False, index=True)

    # Submission order (1-based)
    position = db.Column(db.Integer, nullable=False)

    item_type = db.Column(db.String(16), nullable=False)  # product, service, inventory, manual
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    service_id = db.Column(db.Integer, db.ForeignKey("services.id"), nullable=True)
    inventory_item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=True)

    description = db.Column(db.String(500), nullable=False)
    quantity = db.Column(db.Numeric(14, 3), nullable=False)
    unit_price = db.Column(db.Numeric(14, 2), nullable=False)

    line_subtotal = db.Column(db.Numeric(14, 2), nullable=False)
    discount_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    tax_rate = db.Column(db.Numeric(7, 4), nullable=True)
    tax_amount = db.Column(db.Numeric(14, 2), nullable=True)
    tax_category_code = db.Column(db.String(32), nullable=False)
    category_source = db.Column(db.String(32), nullable=False)  # which classification rule matched
    tax_code = db.Column(db.String(32), nullable=True)
    line_total = db.Column(db.Numeric(14, 2), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale_transaction = db.relationship("SaleTransaction", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_transaction_id": self.sale_transaction_id,
            "position": self.position,
            "item_type": self.item_type,
            "product_id": self.product_id,
            "service_id": self.service_id,
            "inventory_item_id": self.inventory_item_id,
            "description": self.description,
            "quantity": str(self.quantity),
            "unit_price": money_str(self.unit_price),
            "line_subtotal": money_str(self.line_subtotal),
            "discount_amount": money_str(self.discount_amount),
            "tax_rate": rate_str(self.tax_rate),
            "tax_amount": money_str(self.tax_amount),
            "tax_category_code": self.tax_category_code,
            "category_source": self.category_source,
            "tax_code": self.tax_code,
            "line_total": money_str(self.line_total),
        }
