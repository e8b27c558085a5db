from __future__ import annotations

from ..extensions import db
from bizops.money import money_str, rate_str
from bizops.time_utils import to_utc_z, to_iso_date

TAX_CATEGORIES = {
    "STANDARD_GOODS": "Standard-rated goods",
    "SERVICES": "Services",
    "PHARMACEUTICALS": "Pharmaceuticals",
    "DIGITAL_SERVICES": "Digital services",
    "ESSENTIAL_GOODS": "Essential goods (zero-rated)",
    "FINANCIAL_SERVICES": "Financial services (exempt)",
    "EDUCATION_SERVICES": "Education services (exempt)",
    "AGRICULTURAL": "Agricultural produce",
    "EXPORT_GOODS": "Export goods (zero-rated)",
}


class TaxRate(db.Model):
    """
    Effective-dated jurisdictional tax rate.

    Backs the default rate service. A row with customer_type NULL applies to
    every customer class; a row with a customer_type is the variant for that
    class (e.g. withholding on services sold to companies) and wins over the
    generic row.

    Rates are percentages (18.0000 = 18%).
    """
    __tablename__ = "tax_rates"
    __table_args__ = (
        db.Index("ix_tax_rates_lookup", "country_code", "category_code", "effective_from"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    country_code = db.Column(db.String(2), nullable=False)
    category_code = db.Column(db.String(32), nullable=False)
    customer_type = db.Column(db.String(16), nullable=True)

    tax_code = db.Column(db.String(32), nullable=False)  # VAT_STD, WHT_SERVICES, VAT_ZERO, ...
    tax_name = db.Column(db.String(128), nullable=False)
    rate = db.Column(db.Numeric(7, 4), nullable=False)

    effective_from = db.Column(db.Date, nullable=False)
    effective_to = db.Column(db.Date, nullable=True)  # inclusive; NULL = open-ended

    is_exempt = db.Column(db.Boolean, nullable=False, default=False)
    is_zero_rated = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return (
            f"<TaxRate {self.country_code}/{self.category_code}/{self.customer_type or '*'} "
            f"{self.tax_code}={self.rate} from {self.effective_from}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "country_code": self.country_code,
            "category_code": self.category_code,
            "customer_type": self.customer_type,
            "tax_code": self.tax_code,
            "tax_name": self.tax_name,
            "rate": rate_str(self.rate),
            "effective_from": to_iso_date(self.effective_from),
            "effective_to": to_iso_date(self.effective_to),
            "is_exempt": self.is_exempt,
            "is_zero_rated": self.is_zero_rated,
        }


class TaxAuditRecord(db.Model):
    """
    Immutable record of one taxed line's calculation.

    WHY: Compliance reporting independent of the transaction header.
    One row per line item with a positive tax amount.

    IMMUTABLE: Never updated or deleted. A correction is a new record.
    """
    __tablename__ = "tax_audit_records"
    __table_args__ = (
        db.Index("ix_tax_audit_business_period", "business_id", "tax_period"),
        db.Index("ix_tax_audit_transaction", "transaction_type", "sale_transaction_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    sale_transaction_id = db.Column(db.Integer, db.ForeignKey("sale_transactions.id"), nullable=False)
    line_item_id = db.Column(db.Integer, db.ForeignKey("line_items.id"), nullable=True)

    transaction_type = db.Column(db.String(32), nullable=False)  # invoice, pos_sale
    transaction_date = db.Column(db.Date, nullable=False)

    tax_rate_id = db.Column(db.Integer, db.ForeignKey("tax_rates.id"), nullable=True)
    tax_code = db.Column(db.String(32), nullable=True)

    taxable_amount = db.Column(db.Numeric(14, 2), nullable=False)
    tax_rate = db.Column(db.Numeric(7, 4), nullable=False)
    tax_amount = db.Column(db.Numeric(14, 2), nullable=False)

    country_code = db.Column(db.String(2), nullable=False)
    category_code = db.Column(db.String(32), nullable=False)
    tax_period = db.Column(db.Date, nullable=False)  # first day of month

    customer_type = db.Column(db.String(16), nullable=False)
    calculation_version = db.Column(db.String(16), nullable=False)
    calculation_context = db.Column(db.JSON, nullable=False)

    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "sale_transaction_id": self.sale_transaction_id,
            "line_item_id": self.line_item_id,
            "transaction_type": self.transaction_type,
            "transaction_date": to_iso_date(self.transaction_date),
            "tax_rate_id": self.tax_rate_id,
            "tax_code": self.tax_code,
            "taxable_amount": money_str(self.taxable_amount),
            "tax_rate": rate_str(self.tax_rate),
            "tax_amount": money_str(self.tax_amount),
            "country_code": self.country_code,
            "category_code": self.category_code,
            "tax_period": to_iso_date(self.tax_period),
            "customer_type": self.customer_type,
            "calculation_version": self.calculation_version,
            "calculation_context": self.calculation_context,
            "created_at": to_utc_z(self.created_at),
        }
