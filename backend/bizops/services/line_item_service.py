# Overview: Service-layer operations for sale lines; tax category classification and per-line tax.

"""
Line item processing

CATEGORY FALLBACK CHAIN (first match wins):
1. Explicit tax_category_code on the submitted line
2. product   -> Product.tax_category_code (business-scoped)
3. service   -> Service.tax_category_code, else SERVICES
4. inventory -> Product linked to the inventory item, else STANDARD_GOODS
5. anything else -> STANDARD_GOODS

CHANNEL POLICY:
- strict_lookups: a product/service that does not exist for the business
  raises RecordLookupError; otherwise the line takes the default category
  and drops the dangling reference.
- strict_tax: a TaxCalculationError propagates; otherwise the line is
  recorded untaxed (rate and amount NULL).

Inventory items themselves are always resolved strictly: a sale line cannot
move stock that does not exist.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.orm import Session

from ..errors import RecordLookupError, TaxCalculationError
from ..models import Product, Service
from ..validation import LineItemInput
from bizops.money import quantize_money
from . import tax_service
from .channels import SaleChannel
from .inventory_service import get_inventory_item
from .tax_service import TaxResult

logger = logging.getLogger(__name__)

STANDARD_GOODS = "STANDARD_GOODS"
SERVICES = "SERVICES"

# category_source values
SOURCE_OVERRIDE = "override"
SOURCE_PRODUCT = "product"
SOURCE_PRODUCT_MISSING = "product_missing_default"
SOURCE_SERVICE = "service"
SOURCE_SERVICE_DEFAULT = "service_default"
SOURCE_INVENTORY_PRODUCT = "inventory_product"
SOURCE_INVENTORY_DEFAULT = "inventory_default"
SOURCE_DEFAULT = "default"


@dataclass(frozen=True)
class Classification:
    category: str
    source: str
    record_name: str | None = None
    product_id: int | None = None
    service_id: int | None = None
    inventory_item_id: int | None = None
    missing_reference: dict | None = None


@dataclass(frozen=True)
class ProcessedLine:
    """A classified, priced and taxed line, ready to persist."""
    position: int
    item: LineItemInput
    classification: Classification
    line_subtotal: Decimal
    discount_amount: Decimal
    tax: TaxResult | None
    tax_error: str | None = None

    @property
    def category(self) -> str:
        return self.classification.category

    @property
    def is_taxed(self) -> bool:
        return self.tax is not None and self.tax.amount > 0 and self.tax.rate > 0

    @property
    def tax_rate(self) -> Decimal | None:
        return self.tax.rate if self.is_taxed else None

    @property
    def tax_amount(self) -> Decimal | None:
        return self.tax.amount if self.is_taxed else None

    @property
    def tax_code(self) -> str | None:
        return self.tax.tax_code if self.tax is not None else None

    @property
    def line_total(self) -> Decimal:
        return self.line_subtotal - self.discount_amount + (self.tax_amount or Decimal("0"))

    @property
    def description(self) -> str:
        return (
            self.item.description
            or self.classification.record_name
            or self.category.replace("_", " ").title()
        )


def classify(
    session: Session,
    business_id: int,
    item: LineItemInput,
    channel: SaleChannel,
) -> Classification:
    """Resolve the tax category of one line through the fallback chain."""
    if item.item_type == "product":
        product = (
            session.query(Product)
            .filter_by(id=item.product_id, business_id=business_id)
            .first()
        )
        if product is None:
            if channel.strict_lookups:
                raise RecordLookupError("product", item.product_id)
            logger.warning(
                "Product %s not found for business %s; %s line falls back to %s",
                item.product_id, business_id, channel.name, STANDARD_GOODS,
            )
            return Classification(
                category=item.tax_category_code or STANDARD_GOODS,
                source=SOURCE_OVERRIDE if item.tax_category_code else SOURCE_PRODUCT_MISSING,
                missing_reference={"product_id": item.product_id},
            )
        return Classification(
            category=item.tax_category_code or product.tax_category_code or STANDARD_GOODS,
            source=SOURCE_OVERRIDE if item.tax_category_code else SOURCE_PRODUCT,
            record_name=product.name,
            product_id=product.id,
        )

    if item.item_type == "service":
        service = (
            session.query(Service)
            .filter_by(id=item.service_id, business_id=business_id)
            .first()
        )
        if service is None:
            if channel.strict_lookups:
                raise RecordLookupError("service", item.service_id)
            logger.warning(
                "Service %s not found for business %s; %s line falls back to %s",
                item.service_id, business_id, channel.name, SERVICES,
            )
            return Classification(
                category=item.tax_category_code or SERVICES,
                source=SOURCE_OVERRIDE if item.tax_category_code else SOURCE_SERVICE_DEFAULT,
                missing_reference={"service_id": item.service_id},
            )
        if item.tax_category_code:
            source = SOURCE_OVERRIDE
        elif service.tax_category_code:
            source = SOURCE_SERVICE
        else:
            source = SOURCE_SERVICE_DEFAULT
        return Classification(
            category=item.tax_category_code or service.tax_category_code or SERVICES,
            source=source,
            record_name=service.name,
            service_id=service.id,
        )

    if item.item_type == "inventory":
        inventory_item = get_inventory_item(session, business_id, item.inventory_item_id)
        linked = (
            session.query(Product)
            .filter_by(business_id=business_id, inventory_item_id=inventory_item.id)
            .order_by(Product.id)
            .first()
        )
        if item.tax_category_code:
            category, source = item.tax_category_code, SOURCE_OVERRIDE
        elif linked is not None and linked.tax_category_code:
            category, source = linked.tax_category_code, SOURCE_INVENTORY_PRODUCT
        else:
            category, source = STANDARD_GOODS, SOURCE_INVENTORY_DEFAULT
        return Classification(
            category=category,
            source=source,
            record_name=inventory_item.name,
            inventory_item_id=inventory_item.id,
        )

    if item.tax_category_code:
        return Classification(category=item.tax_category_code, source=SOURCE_OVERRIDE)
    return Classification(category=STANDARD_GOODS, source=SOURCE_DEFAULT)


def process_line(
    session: Session,
    *,
    business_id: int,
    position: int,
    item: LineItemInput,
    channel: SaleChannel,
    jurisdiction: str,
    as_of,
    customer_class: str,
    rate_service,
) -> ProcessedLine:
    """
    Classify one line and compute its tax.

    Raises:
        RecordLookupError: referenced record missing (strict channels, or any
            missing inventory item)
        TaxCalculationError: rate service failed (strict_tax channels only)
    """
    classification = classify(session, business_id, item, channel)
    line_subtotal = quantize_money(item.quantity * item.unit_price)

    tax = None
    tax_error = None
    try:
        tax = tax_service.resolve(
            classification.category,
            jurisdiction,
            as_of,
            customer_class,
            line_subtotal,
            rate_service=rate_service,
            business_id=business_id,
            transaction_type=channel.transaction_type,
        )
    except TaxCalculationError as exc:
        exc.details["line_item"] = position
        if channel.strict_tax:
            raise
        logger.warning(
            "Tax calculation failed for %s line %s (business %s); recording untaxed: %s",
            channel.name, position, business_id, exc.message,
        )
        tax_error = exc.message

    return ProcessedLine(
        position=position,
        item=item,
        classification=classification,
        line_subtotal=line_subtotal,
        discount_amount=item.discount_amount,
        tax=tax,
        tax_error=tax_error,
    )


def process_lines(
    session: Session,
    *,
    business_id: int,
    items,
    channel: SaleChannel,
    jurisdiction: str,
    as_of,
    customer_class: str,
    rate_service,
) -> list[ProcessedLine]:
    """Process lines sequentially in submission order (positions are 1-based)."""
    return [
        process_line(
            session,
            business_id=business_id,
            position=position,
            item=item,
            channel=channel,
            jurisdiction=jurisdiction,
            as_of=as_of,
            customer_class=customer_class,
            rate_service=rate_service,
        )
        for position, item in enumerate(items, start=1)
    ]
