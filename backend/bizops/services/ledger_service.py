# Overview: Service-layer operations for the double-entry journal; balanced, append-only entries.

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..errors import RecordLookupError, ValidationError
from ..models import Account, JournalEntry, JournalEntryLine
from bizops.money import ZERO, quantize_money, to_decimal
from bizops.time_utils import to_tax_date

"""
Journal invariants (authoritative)

- Append-only: entries are never edited or deleted.
- Every entry balances exactly: sum(debits) == sum(credits), in Decimal.
- Every line amount is positive; direction lives in `side`.
- Lines reference accounts of the entry's own business by code.
- A reversal is a new entry with sides swapped and reverses_entry_id set.
- Functions here flush but never commit; the caller owns the transaction.
"""

logger = logging.getLogger(__name__)

SIDES = ("debit", "credit")

# code -> (name, account_type)
DEFAULT_ACCOUNTS = {
    "1110": ("Cash", "asset"),
    "1200": ("Accounts Receivable", "asset"),
    "4100": ("Sales Revenue", "revenue"),
    "4200": ("Service Revenue", "revenue"),
}


@dataclass(frozen=True)
class JournalLine:
    account_code: str
    side: str
    amount: Decimal
    description: str | None = None


@dataclass(frozen=True)
class JournalResult:
    success: bool
    entry: JournalEntry | None = None
    message: str | None = None


def ensure_default_accounts(session: Session, business_id: int) -> int:
    """Create the accounts sale posting needs. Idempotent; returns number created."""
    existing = {
        code
        for (code,) in session.query(Account.code).filter(Account.business_id == business_id)
    }
    created = 0
    for code, (name, account_type) in DEFAULT_ACCOUNTS.items():
        if code in existing:
            continue
        session.add(Account(business_id=business_id, code=code, name=name, account_type=account_type))
        created += 1
    session.flush()
    return created


def _next_reference_number(session: Session, business_id: int, entry_date: date) -> str:
    count = (
        session.query(func.count(JournalEntry.id))
        .filter(JournalEntry.business_id == business_id)
        .scalar()
    )
    return f"JE-{business_id}-{entry_date:%Y%m%d}-{int(count or 0) + 1:06d}"


def _normalize_lines(lines) -> list[JournalLine]:
    normalized = []
    for index, line in enumerate(lines, start=1):
        if isinstance(line, dict):
            line = JournalLine(
                account_code=line.get("account_code") or line.get("account"),
                side=line.get("side"),
                amount=line.get("amount"),
                description=line.get("description"),
            )
        if line.side not in SIDES:
            raise ValidationError(f"Journal line {index}: side must be debit or credit")
        if not line.account_code:
            raise ValidationError(f"Journal line {index}: account is required")
        try:
            amount = quantize_money(to_decimal(line.amount, "amount"))
        except ValueError as exc:
            raise ValidationError(f"Journal line {index}: {exc}")
        if amount <= 0:
            raise ValidationError(f"Journal line {index}: amount must be positive")
        normalized.append(JournalLine(str(line.account_code), line.side, amount, line.description))
    return normalized


def create_journal_entry(
    session: Session,
    *,
    business_id: int,
    description: str,
    entry_date,
    reference_type: str | None,
    reference_id: int | None,
    lines,
    user_id: int | None = None,
    reverses_entry_id: int | None = None,
) -> JournalResult:
    """
    Record one balanced journal entry.

    An unbalanced entry is returned as JournalResult(success=False) rather
    than raised, so posting callers can record the message.

    Raises:
        ValidationError: malformed lines
        RecordLookupError: a line names an account the business does not have
    """
    normalized = _normalize_lines(lines)
    if len(normalized) < 2:
        return JournalResult(False, message="A journal entry needs at least two lines")

    debits = sum((l.amount for l in normalized if l.side == "debit"), ZERO)
    credits = sum((l.amount for l in normalized if l.side == "credit"), ZERO)
    if debits != credits:
        return JournalResult(
            False,
            message=f"Journal entry does not balance: debits {debits} != credits {credits}",
        )

    codes = {l.account_code for l in normalized}
    accounts = {
        a.code: a
        for a in session.query(Account).filter(
            Account.business_id == business_id,
            Account.code.in_(codes),
        )
    }
    for code in sorted(codes):
        if code not in accounts:
            raise RecordLookupError("account", code)
        if not accounts[code].is_active:
            return JournalResult(False, message=f"Account {code} is inactive")

    day = to_tax_date(entry_date)
    entry = JournalEntry(
        business_id=business_id,
        reference_number=_next_reference_number(session, business_id, day),
        description=description,
        entry_date=day,
        reference_type=reference_type,
        reference_id=reference_id,
        reverses_entry_id=reverses_entry_id,
        total_amount=debits,
        status="posted",
        created_by=user_id,
    )
    session.add(entry)
    session.flush()

    for line in normalized:
        session.add(JournalEntryLine(
            journal_entry_id=entry.id,
            business_id=business_id,
            account_id=accounts[line.account_code].id,
            side=line.side,
            amount=line.amount,
            description=line.description,
        ))
    session.flush()

    logger.info(
        "Journal entry %s posted for business %s (%s %s): %s",
        entry.reference_number, business_id, reference_type, reference_id, debits,
    )
    return JournalResult(True, entry=entry)


def reverse_journal_entry(
    session: Session,
    *,
    business_id: int,
    entry_id: int,
    entry_date,
    description: str | None = None,
    user_id: int | None = None,
) -> JournalResult:
    """Post the mirror of an entry (sides swapped). The original is untouched."""
    original = (
        session.query(JournalEntry)
        .filter_by(id=entry_id, business_id=business_id)
        .first()
    )
    if original is None:
        raise RecordLookupError("journal entry", entry_id)

    already = (
        session.query(JournalEntry)
        .filter_by(business_id=business_id, reverses_entry_id=original.id)
        .first()
    )
    if already is not None:
        return JournalResult(False, entry=already, message=f"Entry {original.reference_number} is already reversed")

    lines = [
        JournalLine(
            account_code=line.account.code,
            side="credit" if line.side == "debit" else "debit",
            amount=Decimal(line.amount),
            description=line.description,
        )
        for line in original.lines
    ]
    return create_journal_entry(
        session,
        business_id=business_id,
        description=description or f"Reversal of {original.reference_number}",
        entry_date=entry_date,
        reference_type=original.reference_type,
        reference_id=original.reference_id,
        lines=lines,
        user_id=user_id,
        reverses_entry_id=original.id,
    )


def entries_for_reference(
    session: Session,
    business_id: int,
    reference_type: str,
    reference_id: int,
) -> list[JournalEntry]:
    """Entries posted for a document, oldest first (originals before reversals)."""
    return (
        session.query(JournalEntry)
        .filter_by(business_id=business_id, reference_type=reference_type, reference_id=reference_id)
        .order_by(JournalEntry.id)
        .all()
    )


def account_balance(session: Session, business_id: int, account_code: str) -> Decimal:
    """Debits minus credits for an account."""
    account = session.query(Account).filter_by(business_id=business_id, code=account_code).first()
    if account is None:
        raise RecordLookupError("account", account_code)
    rows = (
        session.query(JournalEntryLine.side, func.sum(JournalEntryLine.amount))
        .filter(JournalEntryLine.account_id == account.id)
        .group_by(JournalEntryLine.side)
        .all()
    )
    totals = {side: Decimal(total or 0) for side, total in rows}
    return quantize_money(totals.get("debit", ZERO) - totals.get("credit", ZERO))
