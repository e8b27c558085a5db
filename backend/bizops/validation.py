from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from bizops.errors import ValidationError
from bizops.models.tax import TAX_CATEGORIES
from bizops.money import ZERO, quantize_money, to_decimal
from bizops.time_utils import normalize_datetime

ITEM_TYPES = ("product", "service", "inventory", "manual")
PAYMENT_METHODS = ("cash", "card", "mobile_money", "credit", "bank_transfer", "multiple")
CREATE_STATUSES = ("draft", "completed")

MAX_LINE_ITEMS = 500
QUANTITY_PLACES = 3

# Maximum unit price: 9,999,999,999.99
# This prevents database overflow issues and nonsensical prices
MAX_UNIT_PRICE = Decimal("9999999999.99")


@dataclass(frozen=True)
class LineItemInput:
    item_type: str
    quantity: Decimal
    unit_price: Decimal
    description: str | None = None
    discount_amount: Decimal = ZERO
    product_id: int | None = None
    service_id: int | None = None
    inventory_item_id: int | None = None
    tax_category_code: str | None = None


@dataclass(frozen=True)
class SaleInput:
    items: tuple[LineItemInput, ...]
    transaction_date: datetime
    customer_id: int | None = None
    due_date: date | None = None
    discount_amount: Decimal = ZERO
    payment_method: str | None = None
    amount_paid: Decimal | None = None
    status: str = "completed"
    country_code: str | None = None
    notes: str | None = None


def _optional_id(value: Any, field: str) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer id")
    if isinstance(value, int):
        if value <= 0:
            raise ValidationError(f"{field} must be a positive id")
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise ValidationError(f"{field} must be an integer id")


def _decimal(value: Any, field: str, *, default: Decimal | None = None) -> Decimal:
    if value is None and default is not None:
        return default
    try:
        return to_decimal(value, field)
    except ValueError as exc:
        raise ValidationError(str(exc), details={"field": field})


def _infer_item_type(raw: dict) -> str:
    if raw.get("product_id"):
        return "product"
    if raw.get("service_id"):
        return "service"
    if raw.get("inventory_item_id"):
        return "inventory"
    return "manual"


def parse_line_item(raw: Any, position: int) -> LineItemInput:
    """
    Validate one submitted line.

    item_type may be omitted; it is inferred from whichever reference id is
    present (manual when none is).
    """
    label = f"Line item {position}"
    if not isinstance(raw, dict):
        raise ValidationError(f"{label}: must be an object")

    item_type = raw.get("item_type") or _infer_item_type(raw)
    if item_type not in ITEM_TYPES:
        raise ValidationError(
            f"{label}: invalid item_type '{item_type}'. Must be one of: {', '.join(ITEM_TYPES)}"
        )

    product_id = _optional_id(raw.get("product_id"), f"{label} product_id")
    service_id = _optional_id(raw.get("service_id"), f"{label} service_id")
    inventory_item_id = _optional_id(raw.get("inventory_item_id"), f"{label} inventory_item_id")

    required_ref = {
        "product": ("product_id", product_id),
        "service": ("service_id", service_id),
        "inventory": ("inventory_item_id", inventory_item_id),
    }.get(item_type)
    if required_ref and required_ref[1] is None:
        raise ValidationError(f"{label}: {required_ref[0]} is required for {item_type} items")

    refs = [ref for ref in (product_id, service_id, inventory_item_id) if ref is not None]
    if len(refs) > 1:
        raise ValidationError(f"{label}: reference at most one of product, service or inventory item")

    quantity = _decimal(raw.get("quantity", 1), f"{label} quantity")
    if quantity <= 0:
        raise ValidationError(f"{label}: quantity must be greater than 0")
    # Stored as Numeric(14, 3); stock moves by the stored value
    if quantity.normalize().as_tuple().exponent < -QUANTITY_PLACES:
        raise ValidationError(f"{label}: quantity cannot have more than {QUANTITY_PLACES} decimal places")

    unit_price = quantize_money(_decimal(raw.get("unit_price"), f"{label} unit_price"))
    if unit_price < 0:
        raise ValidationError(f"{label}: unit_price must be at least 0")
    if unit_price > MAX_UNIT_PRICE:
        raise ValidationError(f"{label}: unit_price exceeds maximum")

    discount = quantize_money(_decimal(raw.get("discount_amount"), f"{label} discount_amount", default=ZERO))
    if discount < 0:
        raise ValidationError(f"{label}: discount_amount must be at least 0")
    if discount > quantize_money(quantity * unit_price):
        raise ValidationError(f"{label}: discount_amount cannot exceed the line amount")

    category = raw.get("tax_category_code")
    if category is not None and category not in TAX_CATEGORIES:
        raise ValidationError(f"{label}: invalid tax category code '{category}'")

    description = raw.get("description") or raw.get("item_name")
    if description is not None and len(str(description)) > 500:
        raise ValidationError(f"{label}: description cannot exceed 500 characters")
    if item_type == "manual" and not description:
        raise ValidationError(f"{label}: description is required for manual items")

    return LineItemInput(
        item_type=item_type,
        quantity=quantity,
        unit_price=unit_price,
        description=str(description) if description else None,
        discount_amount=discount,
        product_id=product_id,
        service_id=service_id,
        inventory_item_id=inventory_item_id,
        tax_category_code=category,
    )


def parse_sale_input(data: Any, *, require_customer: bool) -> SaleInput:
    """
    Validate a sale/invoice creation payload.

    Runs before any storage access: a ValidationError here leaves no trace.
    """
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")

    customer_id = _optional_id(data.get("customer_id"), "customer_id")
    if require_customer and customer_id is None:
        raise ValidationError("Customer ID is required")

    raw_items = data.get("line_items")
    if raw_items is None:
        raw_items = data.get("items")
    if not raw_items:
        raise ValidationError("At least one line item is required")
    if not isinstance(raw_items, list):
        raise ValidationError("line_items must be a list")
    if len(raw_items) > MAX_LINE_ITEMS:
        raise ValidationError(f"A sale cannot have more than {MAX_LINE_ITEMS} line items")

    items = tuple(parse_line_item(raw, i) for i, raw in enumerate(raw_items, start=1))

    try:
        transaction_date = normalize_datetime(
            data.get("transaction_date") or data.get("invoice_date")
        )
        due_raw = data.get("due_date")
        due_date = normalize_datetime(due_raw).date() if due_raw else None
    except ValueError:
        raise ValidationError("Invalid date format; use ISO-8601")

    discount = quantize_money(_decimal(data.get("discount_amount"), "discount_amount", default=ZERO))
    if discount < 0:
        raise ValidationError("discount_amount must be at least 0")

    subtotal = sum((quantize_money(item.quantity * item.unit_price) for item in items), ZERO)
    total_discount = sum((item.discount_amount for item in items), ZERO) + discount
    if total_discount > subtotal:
        raise ValidationError(
            "Total discount cannot exceed the subtotal",
            details={"subtotal": str(subtotal), "discount_amount": str(total_discount)},
        )

    payment_method = data.get("payment_method")
    if payment_method is not None and payment_method not in PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method: {payment_method}. Must be one of {list(PAYMENT_METHODS)}"
        )

    amount_paid = None
    if data.get("amount_paid") is not None:
        amount_paid = quantize_money(_decimal(data.get("amount_paid"), "amount_paid"))
        if amount_paid < 0:
            raise ValidationError("amount_paid must be at least 0")

    status = data.get("status") or "completed"
    if status not in CREATE_STATUSES:
        raise ValidationError(f"Cannot create a sale with status '{status}'")

    country_code = data.get("country_code")
    if country_code is not None:
        if not isinstance(country_code, str) or len(country_code) != 2:
            raise ValidationError("country_code must be a 2-letter code")
        country_code = country_code.upper()

    notes = data.get("notes")
    if notes is not None and len(str(notes)) > 1000:
        raise ValidationError("notes cannot exceed 1000 characters")

    return SaleInput(
        items=items,
        transaction_date=transaction_date,
        customer_id=customer_id,
        due_date=due_date,
        discount_amount=discount,
        payment_method=payment_method,
        amount_paid=amount_paid,
        status=status,
        country_code=country_code,
        notes=notes,
    )
