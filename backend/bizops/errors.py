# Overview: Closed error taxonomy for the sales engine.

"""
Sales engine errors.

Every failure the engine can produce is one of these variants. The HTTP
boundary (routes/sales.py) switches on the class, never on message text.

FATAL (raised before commit, full rollback):
- ValidationError       bad input, nothing touched storage
- RecordLookupError     referenced product/service/customer/sale not found
- TaxCalculationError   rate service failed (TaxRateNotFoundError for a miss)
- ConcurrencyError      insufficient stock, conflicting write

RECOVERABLE (recorded, never propagated):
- AccountingError       ledger posting failed; stored on the sale
- AuditWriteError       audit log write failed; logged and dropped
"""

from __future__ import annotations


class SalesEngineError(Exception):
    """Base for all sales engine errors."""

    code = "sales_error"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


class ValidationError(SalesEngineError):
    """400-level input problem. Raised before any storage write."""

    code = "validation_error"
    http_status = 400


class InvalidStatusTransitionError(ValidationError):
    """Requested status change is not an edge of the sale state machine."""

    code = "invalid_status_transition"
    http_status = 409


class RecordLookupError(SalesEngineError):
    """A referenced record does not exist for the business."""

    code = "not_found"
    http_status = 404

    def __init__(self, resource_type: str, resource_id, message: str | None = None):
        super().__init__(
            message or f"{resource_type.capitalize()} {resource_id} not found for this business",
            details={"resource_type": resource_type, "resource_id": resource_id},
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class TaxCalculationError(SalesEngineError):
    """The rate service failed to produce a tax result."""

    code = "tax_calculation_failed"
    http_status = 422


class TaxRateNotFoundError(TaxCalculationError):
    """No effective rate exists for category/jurisdiction/date/customer class."""

    code = "tax_rate_not_found"

    def __init__(self, category: str, jurisdiction: str, as_of, customer_class: str):
        super().__init__(
            f"No tax rate for category {category} in {jurisdiction} "
            f"on {as_of} ({customer_class})",
            details={
                "category": category,
                "jurisdiction": jurisdiction,
                "as_of": str(as_of),
                "customer_class": customer_class,
            },
        )


class ConcurrencyError(SalesEngineError):
    """A conflicting state was observed while the sale was being recorded."""

    code = "conflict"
    http_status = 409


class InsufficientStockError(ConcurrencyError):
    code = "insufficient_stock"

    def __init__(self, items: list[dict]):
        super().__init__("Insufficient stock for inventory items", details={"items": items})
        self.items = items


class AccountingError(SalesEngineError):
    """Ledger posting failed. Recorded on the sale, never raised to callers."""

    code = "accounting_failed"
    http_status = 502


class AuditWriteError(SalesEngineError):
    """Audit log write failed. Logged and swallowed."""

    code = "audit_write_failed"
    http_status = 500
