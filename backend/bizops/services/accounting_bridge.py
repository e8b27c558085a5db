# Overview: Post committed sales into the journal; record the outcome on the sale without ever undoing it.

"""
Accounting bridge

WHY: A sale is valid once it commits. Ledger posting is bookkeeping that
follows; if it fails, the sale stays exactly as recorded and the failure is
kept on the sale for reconciliation.

INVARIANTS:
- Runs only after the sale's own transaction has committed, in an
  independent session. Nothing here can roll back the sale.
- Never raises. Every failure ends up in sale.accounting_error (and the log).
- Success sets accounting_processed and clears accounting_error; failure sets
  accounting_error and clears accounting_processed. Only these two columns of
  the sale are written here.
- Entries are append-only: a void/cancel posts an equal and opposite entry
  pointing at the original.
- No automatic retry. reconcile_failed() is the manual/batch path.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError

from ..errors import AccountingError, SalesEngineError
from ..models import JournalEntry, SaleTransaction
from bizops.money import ZERO, quantize_money
from bizops.time_utils import utcnow
from . import ledger_service
from .concurrency import independent_session

logger = logging.getLogger(__name__)

ACCOUNT_CODES = {
    "CASH": "1110",
    "ACCOUNTS_RECEIVABLE": "1200",
    "SALES_REVENUE": "4100",
    "SERVICE_REVENUE": "4200",
}

REFERENCE_TYPE = "sale_transaction"


def select_revenue_account(sale: SaleTransaction) -> str:
    """Service revenue when any line is service-typed, sales revenue otherwise."""
    if any(item.item_type == "service" for item in sale.items):
        return ACCOUNT_CODES["SERVICE_REVENUE"]
    return ACCOUNT_CODES["SALES_REVENUE"]


def select_debit_account(sale: SaleTransaction) -> str:
    if sale.payment_method == "cash":
        return ACCOUNT_CODES["CASH"]
    return ACCOUNT_CODES["ACCOUNTS_RECEIVABLE"]


def posting_amount(sale: SaleTransaction) -> Decimal:
    """Payment actually received, or the receivable when nothing was paid yet."""
    paid = Decimal(sale.amount_paid or 0)
    if paid > 0:
        return quantize_money(paid)
    return quantize_money(Decimal(sale.final_amount or 0))


def build_sale_lines(sale: SaleTransaction) -> list[ledger_service.JournalLine]:
    amount = posting_amount(sale)
    memo = f"{sale.channel} {sale.transaction_number}"
    return [
        ledger_service.JournalLine(select_debit_account(sale), "debit", amount, memo),
        ledger_service.JournalLine(select_revenue_account(sale), "credit", amount, memo),
    ]


def _failure_message(exc: Exception) -> str:
    if isinstance(exc, SalesEngineError):
        return exc.message
    return f"{exc.__class__.__name__}: {exc}"


def _record_outcome(sale_id: int, *, error: str | None) -> str:
    """Write the tracking fields in a fresh session after the posting session failed."""
    try:
        with independent_session() as session:
            sale = session.get(SaleTransaction, sale_id)
            if sale is None:
                return "failed"
            sale.accounting_processed = error is None
            sale.accounting_error = error
            session.commit()
            return sale.accounting_status
    except SQLAlchemyError:
        logger.exception("Could not record accounting outcome for sale %s", sale_id)
        return "failed"


def post_sale(sale_id: int, *, ledger=None, user_id: int | None = None) -> str:
    """
    Post the journal entry for a completed sale.

    Returns the sale's resulting accounting status: processed, failed, or
    pending (sale not in a postable state).
    """
    ledger = ledger or ledger_service
    try:
        with independent_session() as session:
            sale = session.get(SaleTransaction, sale_id)
            if sale is None:
                logger.error("Accounting: sale %s not found", sale_id)
                return "failed"
            if sale.status != "completed":
                logger.info("Accounting: sale %s is %s; nothing to post", sale_id, sale.status)
                return sale.accounting_status
            if sale.accounting_processed:
                return "processed"

            amount = posting_amount(sale)
            if amount > ZERO:
                result = ledger.create_journal_entry(
                    session,
                    business_id=sale.business_id,
                    description=f"Sale {sale.transaction_number}",
                    entry_date=sale.tax_date,
                    reference_type=REFERENCE_TYPE,
                    reference_id=sale.id,
                    lines=build_sale_lines(sale),
                    user_id=user_id if user_id is not None else sale.created_by,
                )
                if result is None or not result.success:
                    raise AccountingError(
                        (result.message if result is not None else None)
                        or "Ledger service rejected the journal entry",
                        details={"sale_id": sale.id},
                    )
            else:
                logger.info("Accounting: sale %s has zero amount; nothing posted", sale_id)

            sale.accounting_processed = True
            sale.accounting_error = None
            session.commit()
            logger.info("Accounting: sale %s posted (%s)", sale_id, amount)
            return "processed"
    except Exception as exc:
        message = _failure_message(exc)
        logger.warning("Accounting posting failed for sale %s: %s", sale_id, message)
        return _record_outcome(sale_id, error=message)


def _open_entry(session, sale: SaleTransaction) -> JournalEntry | None:
    """Most recent original (non-reversal) entry of the sale that has not been reversed."""
    entries = ledger_service.entries_for_reference(session, sale.business_id, REFERENCE_TYPE, sale.id)
    reversed_ids = {e.reverses_entry_id for e in entries if e.reverses_entry_id}
    originals = [e for e in entries if e.reverses_entry_id is None and e.id not in reversed_ids]
    return originals[-1] if originals else None


def post_reversal(
    sale_id: int,
    *,
    ledger=None,
    user_id: int | None = None,
    reason: str | None = None,
) -> str:
    """
    Offset the posted entry of a voided/cancelled sale.

    A sale with no open entry (nothing was ever posted) needs no reversal and
    is marked processed.
    """
    ledger = ledger or ledger_service
    try:
        with independent_session() as session:
            sale = session.get(SaleTransaction, sale_id)
            if sale is None:
                logger.error("Accounting: sale %s not found for reversal", sale_id)
                return "failed"

            entry = _open_entry(session, sale)
            if entry is not None:
                description = f"Reversal of sale {sale.transaction_number} ({sale.status})"
                if reason:
                    description = f"{description}: {reason}"
                result = ledger.reverse_journal_entry(
                    session,
                    business_id=sale.business_id,
                    entry_id=entry.id,
                    entry_date=utcnow(),
                    description=description[:255],
                    user_id=user_id,
                )
                if result is None or not result.success:
                    raise AccountingError(
                        (result.message if result is not None else None)
                        or "Ledger service rejected the reversal",
                        details={"sale_id": sale.id, "entry_id": entry.id},
                    )

            sale.accounting_processed = True
            sale.accounting_error = None
            session.commit()
            logger.info("Accounting: sale %s reversed", sale_id)
            return "processed"
    except Exception as exc:
        message = f"Reversal failed: {_failure_message(exc)}"
        logger.warning("Accounting reversal failed for sale %s: %s", sale_id, message)
        return _record_outcome(sale_id, error=message)


def reconcile_failed(
    business_id: int | None = None,
    *,
    ledger=None,
    include_pending: bool = False,
) -> dict:
    """
    Re-run posting for sales whose accounting failed.

    Completed sales get their sale entry; voided/cancelled sales get their
    reversal. With include_pending, completed sales never attempted are
    posted too.
    """
    with independent_session() as session:
        query = session.query(SaleTransaction.id, SaleTransaction.status)
        if business_id is not None:
            query = query.filter(SaleTransaction.business_id == business_id)
        if include_pending:
            query = query.filter(
                (SaleTransaction.accounting_error.isnot(None))
                | (
                    (SaleTransaction.accounting_processed.is_(False))
                    & (SaleTransaction.status == "completed")
                )
            )
        else:
            query = query.filter(SaleTransaction.accounting_error.isnot(None))
        candidates = query.order_by(SaleTransaction.id).all()

    summary = {"attempted": 0, "processed": 0, "failed": 0, "sale_ids_failed": []}
    for sale_id, status in candidates:
        if status == "draft":
            continue
        summary["attempted"] += 1
        if status == "completed":
            outcome = post_sale(sale_id, ledger=ledger)
        else:
            outcome = post_reversal(sale_id, ledger=ledger)
        if outcome == "processed":
            summary["processed"] += 1
        else:
            summary["failed"] += 1
            summary["sale_ids_failed"].append(sale_id)

    logger.info(
        "Accounting reconcile: %d attempted, %d processed, %d failed",
        summary["attempted"], summary["processed"], summary["failed"],
    )
    return summary
