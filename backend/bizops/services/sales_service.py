# Overview: Service-layer operations for sales; atomic creation of invoices and POS transactions, status changes and payments.

"""
Sales Service - atomic sale recording

WHY: A sale (header + line items + tax-audit records) is either fully
recorded or not recorded at all. Everything that is not required for the
sale to be valid (audit log, ledger posting) happens after commit, in its
own session, and can never undo the sale.

CREATION ALGORITHM:
1. Parse and validate the payload (no storage access).
2. Open one storage transaction.
3. Number the sale (count-based, business + channel scoped).
4. Classify and tax every line, in submission order.
5. Check and consume stock for inventory lines (completed sales only).
6. Insert header, then line items, then one TaxAuditRecord per taxed line.
7. Commit; any exception before this point rolls everything back.
8. Audit entry, then accounting bridge (completed sales only).

STATE MACHINE:
    draft -> completed -> void | cancelled

    draft:     recorded, no stock moved, nothing posted
    completed: stock consumed, ledger entry posted
    void / cancelled: terminal; stock restored, ledger entry reversed
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import (
    ConcurrencyError,
    InvalidStatusTransitionError,
    RecordLookupError,
    ValidationError,
)
from ..models import Business, Customer, LineItem, SaleTransaction, TaxAuditRecord
from ..validation import PAYMENT_METHODS, SaleInput, parse_sale_input
from bizops.money import ZERO, money_str, quantize_money, to_decimal
from bizops.time_utils import tax_period, to_tax_date, to_utc_z, utcnow
from . import accounting_bridge, audit_service
from .audit_service import TaxCalculationContext
from .channels import CHANNELS, INVOICE, POINT_OF_SALE, SaleChannel
from .concurrency import RETRYABLE_ERRORS, lock_for_update, run_with_retry, transaction_scope
from .document_service import next_transaction_number
from .inventory_service import consume_stock, ensure_available, restore_stock
from .line_item_service import ProcessedLine, process_lines
from .tax_service import TableRateService

logger = logging.getLogger(__name__)

VALID_STATUSES = {"draft", "completed", "void", "cancelled"}

ALLOWED_TRANSITIONS = {
    "draft": {"completed"},
    "completed": {"void", "cancelled"},
    "void": set(),
    "cancelled": set(),
}

STATUS_ACTIONS = {"completed": "completed", "void": "voided", "cancelled": "cancelled"}

# Numbering collisions surface as IntegrityError on the unique constraint
CREATE_RETRY_ON = RETRYABLE_ERRORS + (IntegrityError,)

MAX_PAGE_SIZE = 200


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, set())


@dataclass(frozen=True)
class SaleTotals:
    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    final_amount: Decimal


def compute_totals(lines: list[ProcessedLine], header_discount: Decimal = ZERO) -> SaleTotals:
    """
    Header totals from processed lines.

    final_amount == subtotal - discount_amount + tax_amount holds exactly:
    every term is already quantized to the cent.
    """
    subtotal = sum((line.line_subtotal for line in lines), ZERO)
    discount = sum((line.discount_amount for line in lines), ZERO) + header_discount
    tax = sum((line.tax_amount or ZERO for line in lines), ZERO)
    return SaleTotals(
        subtotal=subtotal,
        discount_amount=discount,
        tax_amount=tax,
        final_amount=subtotal - discount + tax,
    )


def _payment_status(final_amount: Decimal, amount_paid: Decimal) -> str:
    if amount_paid >= final_amount:
        return "paid"
    if amount_paid > 0:
        return "partial"
    return "unpaid"


def _stock_requirements(items) -> dict[int, Decimal]:
    """inventory_item_id -> total quantity over all inventory lines."""
    requirements: dict[int, Decimal] = defaultdict(lambda: Decimal("0"))
    for item in items:
        if item.item_type == "inventory" and item.inventory_item_id:
            requirements[item.inventory_item_id] += Decimal(item.quantity)
    return dict(requirements)


def _get_business(session: Session, business_id: int) -> Business:
    business = session.query(Business).filter_by(id=business_id).first()
    if business is None:
        raise RecordLookupError("business", business_id)
    if not business.is_active:
        raise ValidationError(f"Business {business_id} is not active")
    return business


def _resolve_customer(
    session: Session,
    business_id: int,
    customer_id: int | None,
    channel: SaleChannel,
) -> tuple[int | None, str]:
    """(customer_id, customer_type) for the sale; walk-in when no customer applies."""
    if customer_id is None:
        return None, channel.walk_in_customer_type

    customer = session.query(Customer).filter_by(id=customer_id, business_id=business_id).first()
    if customer is None:
        if channel.strict_lookups or channel.walk_in_customer_type is None:
            raise RecordLookupError("customer", customer_id)
        logger.warning(
            "Customer %s not found for business %s; recording %s sale as walk-in",
            customer_id, business_id, channel.name,
        )
        return None, channel.walk_in_customer_type
    return customer.id, customer.customer_type


def _record_sale(
    session: Session,
    *,
    business_id: int,
    sale_input: SaleInput,
    user_id: int | None,
    channel: SaleChannel,
    rate_service,
) -> tuple[SaleTransaction, list[ProcessedLine]]:
    """All storage work of one creation attempt. Caller owns the transaction."""
    business = _get_business(session, business_id)
    jurisdiction = (
        sale_input.country_code
        or business.country_code
        or current_app.config.get("DEFAULT_COUNTRY_CODE", "UG")
    )
    customer_id, customer_type = _resolve_customer(session, business_id, sale_input.customer_id, channel)

    number = next_transaction_number(
        session,
        business_id=business_id,
        channel=channel.name,
        prefix=channel.number_prefix,
        pad=channel.number_pad,
    )

    transaction_date = sale_input.transaction_date
    lines = process_lines(
        session,
        business_id=business_id,
        items=sale_input.items,
        channel=channel,
        jurisdiction=jurisdiction,
        as_of=transaction_date,
        customer_class=customer_type,
        rate_service=rate_service,
    )

    totals = compute_totals(lines, sale_input.discount_amount)

    if sale_input.amount_paid is not None:
        amount_paid = sale_input.amount_paid
    elif channel.payment_received_on_creation:
        amount_paid = totals.final_amount
    else:
        amount_paid = ZERO
    if amount_paid > totals.final_amount:
        if not channel.payment_received_on_creation:
            raise ValidationError("amount_paid cannot exceed the invoice total")
        # Tendered above total: the difference is change, not revenue
        amount_paid = totals.final_amount

    payment_method = sale_input.payment_method
    if payment_method is None and channel.payment_received_on_creation:
        payment_method = "cash"

    if sale_input.status == "completed":
        requirements = _stock_requirements(line.item for line in lines)
        if requirements:
            stock_rows = ensure_available(session, business_id, requirements)
            consume_stock(stock_rows, requirements)

    now = utcnow()
    sale = SaleTransaction(
        business_id=business_id,
        transaction_number=number,
        channel=channel.name,
        customer_id=customer_id,
        customer_type=customer_type,
        transaction_date=transaction_date,
        tax_date=to_tax_date(transaction_date),
        due_date=sale_input.due_date,
        country_code=jurisdiction,
        subtotal=totals.subtotal,
        tax_amount=totals.tax_amount,
        discount_amount=totals.discount_amount,
        final_amount=totals.final_amount,
        status=sale_input.status,
        completed_at=now if sale_input.status == "completed" else None,
        payment_method=payment_method,
        payment_status=_payment_status(totals.final_amount, amount_paid),
        amount_paid=amount_paid,
        notes=sale_input.notes,
        created_by=user_id,
        accounting_processed=False,
        accounting_error=None,
    )
    session.add(sale)
    session.flush()

    rows = []
    for line in lines:
        classification = line.classification
        row = LineItem(
            business_id=business_id,
            sale_transaction_id=sale.id,
            position=line.position,
            item_type=line.item.item_type,
            product_id=classification.product_id,
            service_id=classification.service_id,
            inventory_item_id=classification.inventory_item_id,
            description=line.description,
            quantity=line.item.quantity,
            unit_price=line.item.unit_price,
            line_subtotal=line.line_subtotal,
            discount_amount=line.discount_amount,
            tax_rate=line.tax_rate,
            tax_amount=line.tax_amount,
            tax_category_code=line.category,
            category_source=classification.source,
            tax_code=line.tax_code if line.is_taxed else None,
            line_total=line.line_total,
        )
        session.add(row)
        rows.append(row)
    session.flush()

    version = current_app.config.get("TAX_CALCULATION_VERSION", "1.0")
    for line, row in zip(lines, rows):
        if not line.is_taxed:
            continue
        extra = {}
        if line.classification.missing_reference:
            extra["missing_reference"] = line.classification.missing_reference
        context = TaxCalculationContext(
            line_position=line.position,
            item_type=line.item.item_type,
            category_source=line.classification.source,
            customer_type=customer_type,
            calculation_version=version,
            product_id=row.product_id,
            service_id=row.service_id,
            inventory_item_id=row.inventory_item_id,
            tax_name=line.tax.tax_name,
            is_exempt=line.tax.is_exempt,
            is_zero_rated=line.tax.is_zero_rated,
            extra=extra,
        )
        session.add(TaxAuditRecord(
            business_id=business_id,
            sale_transaction_id=sale.id,
            line_item_id=row.id,
            transaction_type=channel.transaction_type,
            transaction_date=sale.tax_date,
            tax_rate_id=line.tax.tax_rate_id,
            tax_code=line.tax.tax_code,
            taxable_amount=line.tax.taxable_amount,
            tax_rate=line.tax.rate,
            tax_amount=line.tax.amount,
            country_code=jurisdiction,
            category_code=line.category,
            tax_period=tax_period(transaction_date),
            customer_type=customer_type,
            calculation_version=version,
            calculation_context=context.to_dict(),
            created_by=user_id,
        ))
    session.flush()
    return sale, lines


def _create_transaction(
    session: Session,
    business_id: int,
    data: dict,
    user_id: int | None,
    channel: SaleChannel,
    *,
    rate_service=None,
    ledger=None,
) -> SaleTransaction:
    sale_input = parse_sale_input(data, require_customer=channel.requires_customer)
    rate_service = rate_service or TableRateService(session)

    def _op():
        with transaction_scope(session):
            sale, lines = _record_sale(
                session,
                business_id=business_id,
                sale_input=sale_input,
                user_id=user_id,
                channel=channel,
                rate_service=rate_service,
            )
            summary = sale.summary_values()
            untaxed = [line.position for line in lines if line.tax_error]
            if untaxed:
                summary["untaxed_lines"] = untaxed
            return sale.id, sale.status, summary

    try:
        sale_id, status, summary = run_with_retry(
            _op,
            session=session,
            attempts=current_app.config.get("NUMBERING_RETRY_ATTEMPTS", 3),
            retry_on=CREATE_RETRY_ON,
        )
    except CREATE_RETRY_ON as exc:
        logger.warning("Sale creation for business %s kept conflicting: %s", business_id, exc)
        raise ConcurrencyError(
            "The sale could not be recorded because of conflicting concurrent writes; retry the request",
            details={"business_id": business_id},
        ) from exc

    logger.info(
        "%s %s recorded for business %s (final %s)",
        channel.name, summary["transaction_number"], business_id, summary["final_amount"],
    )

    audit_service.log_action(
        business_id=business_id,
        user_id=user_id,
        action=channel.audit_action,
        resource_type=channel.resource_type,
        resource_id=sale_id,
        old_values=None,
        new_values=summary,
    )

    if status == "completed":
        accounting_bridge.post_sale(sale_id, ledger=ledger, user_id=user_id)

    return get_transaction(session, business_id, sale_id, refresh=True)


def create_invoice(
    session: Session,
    business_id: int,
    data: dict,
    user_id: int | None = None,
    *,
    rate_service=None,
    ledger=None,
) -> SaleTransaction:
    """
    Record an invoice.

    Strict: missing customer, product, service or a failed tax calculation
    aborts the whole invoice.
    """
    return _create_transaction(
        session, business_id, data, user_id, INVOICE,
        rate_service=rate_service, ledger=ledger,
    )


def create_pos_transaction(
    session: Session,
    business_id: int,
    data: dict,
    user_id: int | None = None,
    *,
    rate_service=None,
    ledger=None,
) -> SaleTransaction:
    """
    Record a point-of-sale transaction.

    Lenient: unknown products fall back to the default category, unknown
    customers become walk-in, and a failed tax calculation leaves the line
    untaxed. Insufficient stock still aborts.
    """
    return _create_transaction(
        session, business_id, data, user_id, POINT_OF_SALE,
        rate_service=rate_service, ledger=ledger,
    )


# =============================================================================
# READS
# =============================================================================

def get_transaction(
    session: Session,
    business_id: int,
    sale_id: int,
    *,
    refresh: bool = False,
) -> SaleTransaction:
    """Business-scoped fetch. refresh re-reads fields changed by other sessions."""
    sale = session.query(SaleTransaction).filter_by(id=sale_id, business_id=business_id).first()
    if sale is None:
        raise RecordLookupError("sale", sale_id)
    if refresh:
        session.refresh(sale)
    return sale


def list_transactions(
    session: Session,
    business_id: int,
    *,
    channel: str | None = None,
    status: str | None = None,
    customer_id: int | None = None,
    payment_method: str | None = None,
    payment_status: str | None = None,
    accounting_status: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    page: int = 1,
    per_page: int = 50,
) -> dict:
    """Newest-first page of a business's sales."""
    page = max(page, 1)
    per_page = min(max(per_page, 1), MAX_PAGE_SIZE)

    query = session.query(SaleTransaction).filter(SaleTransaction.business_id == business_id)
    if channel:
        query = query.filter(SaleTransaction.channel == channel)
    if status:
        if status not in VALID_STATUSES:
            raise ValidationError(f"Invalid status '{status}'. Must be one of: {', '.join(sorted(VALID_STATUSES))}")
        query = query.filter(SaleTransaction.status == status)
    if customer_id is not None:
        query = query.filter(SaleTransaction.customer_id == customer_id)
    if payment_method:
        query = query.filter(SaleTransaction.payment_method == payment_method)
    if payment_status:
        query = query.filter(SaleTransaction.payment_status == payment_status)
    if accounting_status == "failed":
        query = query.filter(SaleTransaction.accounting_error.isnot(None))
    elif accounting_status == "processed":
        query = query.filter(SaleTransaction.accounting_processed.is_(True))
    elif accounting_status == "pending":
        query = query.filter(
            SaleTransaction.accounting_processed.is_(False),
            SaleTransaction.accounting_error.is_(None),
        )
    elif accounting_status:
        raise ValidationError("accounting_status must be one of: failed, pending, processed")
    if start is not None:
        query = query.filter(SaleTransaction.transaction_date >= start)
    if end is not None:
        query = query.filter(SaleTransaction.transaction_date <= end)

    total = query.count()
    rows = (
        query.order_by(SaleTransaction.transaction_date.desc(), SaleTransaction.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {
        "items": [row.to_dict() for row in rows],
        "page": page,
        "per_page": per_page,
        "total": total,
    }


def sales_summary(
    session: Session,
    business_id: int,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    channel: str | None = None,
) -> dict:
    """
    Aggregate figures over a business's completed sales.

    Drafts, voided and cancelled sales are excluded. Walk-in sales do not
    count towards customer_count. The average is derived from the summed
    amounts so it stays exact to the cent.
    """
    if channel is not None and channel not in CHANNELS:
        raise ValidationError(f"Invalid channel '{channel}'. Must be one of: {', '.join(sorted(CHANNELS))}")

    query = session.query(
        func.count(SaleTransaction.id),
        func.coalesce(func.sum(SaleTransaction.final_amount), 0),
        func.coalesce(func.sum(SaleTransaction.tax_amount), 0),
        func.count(func.distinct(SaleTransaction.customer_id)),
    ).filter(
        SaleTransaction.business_id == business_id,
        SaleTransaction.status == "completed",
    )
    if channel:
        query = query.filter(SaleTransaction.channel == channel)
    if start is not None:
        query = query.filter(SaleTransaction.transaction_date >= start)
    if end is not None:
        query = query.filter(SaleTransaction.transaction_date <= end)

    count, total_sales, total_tax, customer_count = query.one()
    count = int(count or 0)
    total_sales = quantize_money(Decimal(str(total_sales or 0)))
    total_tax = quantize_money(Decimal(str(total_tax or 0)))
    average = quantize_money(total_sales / count) if count else ZERO

    return {
        "transaction_count": count,
        "total_sales": money_str(total_sales),
        "total_tax": money_str(total_tax),
        "average_transaction": money_str(average),
        "customer_count": int(customer_count or 0),
        "from": to_utc_z(start),
        "to": to_utc_z(end),
        "channel": channel,
    }


def today_summary(session: Session, business_id: int, *, channel: str | None = None) -> dict:
    """sales_summary for the current UTC day."""
    day_start = utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    return sales_summary(
        session,
        business_id,
        start=day_start,
        end=day_start + timedelta(days=1) - timedelta(microseconds=1),
        channel=channel,
    )


# =============================================================================
# STATUS CHANGES
# =============================================================================

def change_status(
    session: Session,
    business_id: int,
    sale_id: int,
    new_status: str,
    user_id: int | None = None,
    *,
    reason: str | None = None,
    ledger=None,
) -> SaleTransaction:
    """
    Move a sale along the state machine.

    Only status, status timestamps and reason change on the header; line
    items and tax-audit records are never touched. Completing a draft
    consumes stock and posts the sale; voiding/cancelling restores stock
    and posts a reversal when the sale had been posted.

    Raises:
        ValidationError: unknown status
        InvalidStatusTransitionError: not an edge of the state machine
        RecordLookupError: sale not found for the business
        InsufficientStockError: completing a draft whose stock is gone
    """
    if new_status not in VALID_STATUSES:
        raise ValidationError(
            f"Invalid status '{new_status}'. Must be one of: {', '.join(sorted(VALID_STATUSES))}"
        )

    def _op():
        with transaction_scope(session):
            sale = lock_for_update(
                session.query(SaleTransaction).filter_by(id=sale_id, business_id=business_id)
            ).first()
            if sale is None:
                raise RecordLookupError("sale", sale_id)

            old_status = sale.status
            if not can_transition(old_status, new_status):
                raise InvalidStatusTransitionError(
                    f"Cannot change sale from {old_status} to {new_status}",
                    details={"from_status": old_status, "to_status": new_status},
                )

            requirements = _stock_requirements(sale.items)
            now = utcnow()
            if new_status == "completed":
                if requirements:
                    stock_rows = ensure_available(session, business_id, requirements)
                    consume_stock(stock_rows, requirements)
                sale.completed_at = now
            elif requirements:
                restore_stock(session, business_id, requirements)

            sale.status = new_status
            sale.status_changed_at = now
            sale.status_changed_by = user_id
            sale.status_reason = reason
            return old_status, sale.accounting_processed, CHANNELS[sale.channel].resource_type

    old_status, was_posted, resource_type = run_with_retry(_op, session=session)

    audit_service.log_action(
        business_id=business_id,
        user_id=user_id,
        action=f"{resource_type}.{STATUS_ACTIONS[new_status]}",
        resource_type=resource_type,
        resource_id=sale_id,
        old_values={"status": old_status},
        new_values={"status": new_status, "reason": reason},
    )

    if new_status == "completed":
        accounting_bridge.post_sale(sale_id, ledger=ledger, user_id=user_id)
    elif was_posted:
        accounting_bridge.post_reversal(sale_id, ledger=ledger, user_id=user_id, reason=reason)

    logger.info("Sale %s moved %s -> %s for business %s", sale_id, old_status, new_status, business_id)
    return get_transaction(session, business_id, sale_id, refresh=True)


def complete_sale(session: Session, business_id: int, sale_id: int, user_id: int | None = None, **kwargs):
    return change_status(session, business_id, sale_id, "completed", user_id, **kwargs)


def void_sale(session: Session, business_id: int, sale_id: int, user_id: int | None = None, **kwargs):
    return change_status(session, business_id, sale_id, "void", user_id, **kwargs)


def cancel_sale(session: Session, business_id: int, sale_id: int, user_id: int | None = None, **kwargs):
    return change_status(session, business_id, sale_id, "cancelled", user_id, **kwargs)


# =============================================================================
# PAYMENTS
# =============================================================================

def record_payment(
    session: Session,
    business_id: int,
    sale_id: int,
    amount,
    user_id: int | None = None,
    *,
    payment_method: str | None = None,
) -> SaleTransaction:
    """
    Apply a payment against a completed invoice's outstanding balance.

    Updates amount_paid and payment_status only.
    """
    try:
        amount = quantize_money(to_decimal(amount, "amount"))
    except ValueError as exc:
        raise ValidationError(str(exc))
    if amount <= 0:
        raise ValidationError("Payment amount must be greater than 0")
    if payment_method is not None and payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method: {payment_method}. Must be one of {list(PAYMENT_METHODS)}")

    def _op():
        with transaction_scope(session):
            sale = lock_for_update(
                session.query(SaleTransaction).filter_by(id=sale_id, business_id=business_id)
            ).first()
            if sale is None:
                raise RecordLookupError("sale", sale_id)
            if sale.channel != INVOICE.name:
                raise ValidationError("Payments can only be recorded against invoices")
            if sale.status != "completed":
                raise ValidationError(f"Cannot record a payment on a {sale.status} invoice")

            paid = Decimal(sale.amount_paid or 0)
            final = Decimal(sale.final_amount)
            outstanding = final - paid
            if amount > outstanding:
                raise ValidationError(
                    "Payment exceeds the outstanding balance",
                    details={"outstanding": str(outstanding), "amount": str(amount)},
                )

            old_values = {"amount_paid": str(paid), "payment_status": sale.payment_status}
            sale.amount_paid = paid + amount
            sale.payment_status = _payment_status(final, paid + amount)
            if payment_method:
                sale.payment_method = payment_method
            new_values = {
                "amount_paid": str(paid + amount),
                "payment_status": sale.payment_status,
                "payment_amount": str(amount),
                "payment_method": sale.payment_method,
            }
            return old_values, new_values

    old_values, new_values = run_with_retry(_op, session=session)

    audit_service.log_action(
        business_id=business_id,
        user_id=user_id,
        action="invoice.payment_recorded",
        resource_type=INVOICE.resource_type,
        resource_id=sale_id,
        old_values=old_values,
        new_values=new_values,
    )
    return get_transaction(session, business_id, sale_id, refresh=True)
