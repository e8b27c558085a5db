# Overview: Service-layer operations for tax resolution; rate lookup and per-line tax computation.

"""
Tax resolution

CONTRACT:
    resolve(category, jurisdiction, as_of, customer_class, amount) -> TaxResult

- as_of is date-only. Rate tables are effective-dated by day, so any
  time-of-day on the input is stripped before lookup.
- customer_class ("company" / "individual") is required. It selects among
  rate variants (withholding vs consumption tax); defaulting it silently
  would change the liability.
- Deterministic: same inputs, same output. No clock reads.
- A lookup miss (TaxRateNotFoundError) is distinct from a computation
  failure (TaxCalculationError). Callers decide whether either is fatal.

RATE SERVICE:
    Any object exposing
        calculate_item_tax(*, business_id, country_code, category, amount,
                           transaction_type, customer_type, transaction_date) -> TaxResult
        get_tax_rate(category, country_code, as_of, customer_type=None) -> dict
    TableRateService is the database-backed default.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from sqlalchemy import case, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import SalesEngineError, TaxCalculationError, TaxRateNotFoundError, ValidationError
from ..models import TaxRate
from ..models.catalog import CUSTOMER_TYPES
from ..models.tax import TAX_CATEGORIES
from bizops.money import ZERO, percent_of, quantize_money, quantize_rate, to_decimal
from bizops.time_utils import to_tax_date

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaxResult:
    rate: Decimal
    amount: Decimal
    tax_code: str | None
    taxable_amount: Decimal
    tax_name: str | None = None
    tax_rate_id: int | None = None
    is_exempt: bool = False
    is_zero_rated: bool = False

    def to_dict(self) -> dict:
        return {
            "tax_rate": str(self.rate),
            "tax_amount": str(self.amount),
            "tax_code": self.tax_code,
            "tax_name": self.tax_name,
            "tax_rate_id": self.tax_rate_id,
            "taxable_amount": str(self.taxable_amount),
            "is_exempt": self.is_exempt,
            "is_zero_rated": self.is_zero_rated,
        }


class TableRateService:
    """Rate service reading effective-dated TaxRate rows."""

    def __init__(self, session: Session):
        self.session = session

    def find_rate(
        self,
        category: str,
        country_code: str,
        as_of: date,
        customer_type: str | None = None,
    ) -> TaxRate | None:
        """
        Effective row for the day.

        A customer-type-specific row beats the generic (NULL) row; among
        equals the latest effective_from wins.
        """
        query = self.session.query(TaxRate).filter(
            TaxRate.country_code == country_code,
            TaxRate.category_code == category,
            TaxRate.effective_from <= as_of,
            or_(TaxRate.effective_to.is_(None), TaxRate.effective_to >= as_of),
        )
        if customer_type:
            query = query.filter(
                or_(TaxRate.customer_type == customer_type, TaxRate.customer_type.is_(None))
            )
        else:
            query = query.filter(TaxRate.customer_type.is_(None))

        return query.order_by(
            case((TaxRate.customer_type.is_(None), 1), else_=0),
            TaxRate.effective_from.desc(),
            TaxRate.id.desc(),
        ).first()

    def calculate_item_tax(
        self,
        *,
        business_id: int | None,
        country_code: str,
        category: str,
        amount: Decimal,
        transaction_type: str,
        customer_type: str,
        transaction_date: date,
    ) -> TaxResult:
        row = self.find_rate(category, country_code, transaction_date, customer_type)
        if row is None:
            raise TaxRateNotFoundError(category, country_code, transaction_date, customer_type)

        if row.is_exempt:
            rate = ZERO
            tax_amount = ZERO
        else:
            rate = Decimal(row.rate)
            tax_amount = percent_of(amount, rate)

        logger.debug(
            "Tax for business %s: %s/%s %s on %s -> %s",
            business_id, country_code, category, row.tax_code, amount, tax_amount,
        )
        return TaxResult(
            rate=quantize_rate(rate),
            amount=tax_amount,
            tax_code=row.tax_code,
            taxable_amount=amount,
            tax_name=row.tax_name,
            tax_rate_id=row.id,
            is_exempt=row.is_exempt,
            is_zero_rated=row.is_zero_rated,
        )

    def get_tax_rate(
        self,
        category: str,
        country_code: str,
        as_of: date,
        customer_type: str | None = None,
    ) -> dict:
        row = self.find_rate(category, country_code, as_of, customer_type)
        if row is None:
            raise TaxRateNotFoundError(category, country_code, as_of, customer_type or "any")
        return {
            "category": category,
            "country_code": country_code,
            "date": as_of.isoformat(),
            "tax_code": row.tax_code,
            "tax_name": row.tax_name,
            "tax_rate": str(quantize_rate(Decimal(row.rate))),
            "is_exempt": row.is_exempt,
            "is_zero_rated": row.is_zero_rated,
        }


def resolve(
    category: str,
    jurisdiction: str,
    as_of,
    customer_class: str,
    amount,
    *,
    rate_service,
    business_id: int | None = None,
    transaction_type: str = "sale",
) -> TaxResult:
    """
    Resolve rate and amount for one taxable amount.

    Raises:
        ValidationError: category, jurisdiction or customer_class missing
        TaxRateNotFoundError: no effective rate (lookup miss)
        TaxCalculationError: the rate service failed
    """
    if not category:
        raise ValidationError("Tax category is required")
    if not jurisdiction:
        raise ValidationError("Tax jurisdiction is required")
    if customer_class not in CUSTOMER_TYPES:
        raise ValidationError(
            "Customer classification is required for tax resolution",
            details={"customer_class": customer_class, "allowed": list(CUSTOMER_TYPES)},
        )

    try:
        tax_date = to_tax_date(as_of)
        taxable = quantize_money(to_decimal(amount, "amount"))
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc

    try:
        result = rate_service.calculate_item_tax(
            business_id=business_id,
            country_code=jurisdiction,
            category=category,
            amount=taxable,
            transaction_type=transaction_type,
            customer_type=customer_class,
            transaction_date=tax_date,
        )
    except TaxCalculationError:
        raise
    except SQLAlchemyError:
        raise
    except SalesEngineError as exc:
        raise TaxCalculationError(f"Tax calculation failed: {exc.message}", details=exc.details) from exc
    except Exception as exc:
        logger.error("Rate service failed for %s/%s: %s", jurisdiction, category, exc)
        raise TaxCalculationError(
            f"Tax calculation failed: {exc}",
            details={"category": category, "jurisdiction": jurisdiction},
        ) from exc

    if result is None:
        raise TaxCalculationError(
            "Tax calculation failed: no result returned",
            details={"category": category, "jurisdiction": jurisdiction},
        )

    return TaxResult(
        rate=quantize_rate(to_decimal(result.rate, "rate")),
        amount=quantize_money(to_decimal(result.amount, "tax amount")),
        tax_code=result.tax_code,
        taxable_amount=taxable,
        tax_name=result.tax_name,
        tax_rate_id=result.tax_rate_id,
        is_exempt=result.is_exempt,
        is_zero_rated=result.is_zero_rated,
    )


# =============================================================================
# AGGREGATES
# =============================================================================

@dataclass
class TaxBreakdown:
    tax_code: str | None
    tax_name: str | None
    tax_rate: Decimal
    total_amount: Decimal = ZERO
    items: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "tax_code": self.tax_code,
            "tax_name": self.tax_name,
            "tax_rate": str(self.tax_rate),
            "total_amount": str(self.total_amount),
            "items": self.items,
        }


def calculate_invoice_tax(
    lines: list[dict],
    *,
    jurisdiction: str,
    as_of,
    customer_class: str,
    rate_service,
    business_id: int | None = None,
) -> dict:
    """
    Tax for a set of (category, amount) lines with a per-tax-code breakdown.

    Any line failure aborts the whole calculation; the error's details carry
    the 1-based line number.
    """
    calculations = []
    total_taxable = ZERO
    total_tax = ZERO
    breakdown: dict[str | None, TaxBreakdown] = {}

    for index, line in enumerate(lines, start=1):
        try:
            result = resolve(
                line.get("category"),
                jurisdiction,
                as_of,
                customer_class,
                line.get("amount"),
                rate_service=rate_service,
                business_id=business_id,
            )
        except ValueError as exc:
            raise ValidationError(f"Line item {index}: {exc}") from exc
        except SalesEngineError as exc:
            exc.details["line_item"] = index
            raise

        calculations.append(result)
        total_taxable += result.taxable_amount
        total_tax += result.amount

        group = breakdown.get(result.tax_code)
        if group is None:
            group = TaxBreakdown(
                tax_code=result.tax_code,
                tax_name=result.tax_name,
                tax_rate=result.rate,
            )
            breakdown[result.tax_code] = group
        group.total_amount += result.amount
        group.items.append({
            "taxable_amount": str(result.taxable_amount),
            "tax_amount": str(result.amount),
            "category": line.get("category"),
        })

    return {
        "calculations": [c.to_dict() for c in calculations],
        "totals": {
            "total_taxable_amount": str(total_taxable),
            "total_tax_amount": str(total_tax),
        },
        "tax_breakdown": [group.to_dict() for group in breakdown.values()],
        "summary": {
            "line_item_count": len(lines),
            "unique_tax_types": len(breakdown),
        },
    }


def get_tax_categories(session: Session, country_code: str) -> list[dict]:
    """Known categories with the tax codes mapped to them for a country."""
    rows = (
        session.query(TaxRate)
        .filter(TaxRate.country_code == country_code)
        .order_by(TaxRate.category_code, TaxRate.effective_from)
        .all()
    )
    mappings: dict[str, list[dict]] = {}
    for row in rows:
        mappings.setdefault(row.category_code, []).append({
            "tax_code": row.tax_code,
            "tax_name": row.tax_name,
            "customer_type": row.customer_type,
            "rate": str(quantize_rate(Decimal(row.rate))),
            "effective_from": row.effective_from.isoformat(),
        })

    return [
        {
            "category_code": code,
            "category_name": name,
            "tax_mappings": mappings.get(code, []),
        }
        for code, name in sorted(TAX_CATEGORIES.items())
    ]


# =============================================================================
# DEFAULT RATE TABLE
# =============================================================================

# (category, customer_type, tax_code, tax_name, rate, effective_from, exempt, zero_rated)
DEFAULT_RATE_TABLE = {
    "UG": [
        ("STANDARD_GOODS", None, "VAT_STD", "VAT Standard", "18", date(2005, 7, 1), False, False),
        ("SERVICES", None, "VAT_STD", "VAT Standard", "18", date(2005, 7, 1), False, False),
        ("SERVICES", "company", "WHT_SERVICES", "Withholding Tax on Services", "6", date(2005, 7, 1), False, False),
        ("DIGITAL_SERVICES", None, "VAT_STD", "VAT Standard", "18", date(2018, 7, 1), False, False),
        ("PHARMACEUTICALS", None, "VAT_EXEMPT", "VAT Exempt", "0", date(2005, 7, 1), True, False),
        ("ESSENTIAL_GOODS", None, "VAT_ZERO", "VAT Zero-rated", "0", date(2005, 7, 1), False, True),
        ("FINANCIAL_SERVICES", None, "VAT_EXEMPT", "VAT Exempt", "0", date(2005, 7, 1), True, False),
        ("EDUCATION_SERVICES", None, "VAT_EXEMPT", "VAT Exempt", "0", date(2005, 7, 1), True, False),
        ("AGRICULTURAL", None, "VAT_EXEMPT", "VAT Exempt", "0", date(2005, 7, 1), True, False),
        ("EXPORT_GOODS", None, "VAT_ZERO", "VAT Zero-rated", "0", date(2005, 7, 1), False, True),
    ],
}


def seed_default_rates(session: Session, country_code: str) -> int:
    """
    Insert the default rate table for a country. Idempotent per
    (country, category, customer_type, tax_code, effective_from).

    Does not commit. Returns number of rows created.
    """
    table = DEFAULT_RATE_TABLE.get(country_code)
    if table is None:
        raise ValidationError(f"No default rate table for country {country_code}")

    created = 0
    for category, customer_type, tax_code, tax_name, rate, effective_from, exempt, zero in table:
        exists = session.query(TaxRate).filter_by(
            country_code=country_code,
            category_code=category,
            customer_type=customer_type,
            tax_code=tax_code,
            effective_from=effective_from,
        ).first()
        if exists:
            continue
        session.add(TaxRate(
            country_code=country_code,
            category_code=category,
            customer_type=customer_type,
            tax_code=tax_code,
            tax_name=tax_name,
            rate=Decimal(rate),
            effective_from=effective_from,
            is_exempt=exempt,
            is_zero_rated=zero,
        ))
        created += 1
    session.flush()
    return created
