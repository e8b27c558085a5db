from __future__ import annotations

from ..extensions import db
from bizops.money import money_str
from bizops.time_utils import to_utc_z, to_iso_date

class Account(db.Model):
    """Ledger account, unique by code within a business."""
    __tablename__ = "accounts"
    __table_args__ = (
        db.UniqueConstraint("business_id", "code", name="uq_accounts_business_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    code = db.Column(db.String(16), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    account_type = db.Column(db.String(16), nullable=False)  # asset, liability, equity, revenue, expense
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Account {self.code} {self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "code": self.code,
            "name": self.name,
            "account_type": self.account_type,
            "is_active": self.is_active,
        }


class JournalEntry(db.Model):
    """
    Balanced double-entry journal entry.

    APPEND-ONLY: entries are never edited or deleted. A reversal is a new
    entry with reverses_entry_id pointing at the original.
    """
    __tablename__ = "journal_entries"
    __table_args__ = (
        db.Index("ix_journal_entries_reference", "business_id", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    reference_number = db.Column(db.String(64), nullable=False, unique=True)
    description = db.Column(db.String(255), nullable=False)
    entry_date = db.Column(db.Date, nullable=False)

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)
    reverses_entry_id = db.Column(db.Integer, db.ForeignKey("journal_entries.id"), nullable=True)

    total_amount = db.Column(db.Numeric(14, 2), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="posted")
    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    lines = db.relationship(
        "JournalEntryLine",
        back_populates="journal_entry",
        order_by="JournalEntryLine.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "reference_number": self.reference_number,
            "description": self.description,
            "entry_date": to_iso_date(self.entry_date),
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "reverses_entry_id": self.reverses_entry_id,
            "total_amount": money_str(self.total_amount),
            "status": self.status,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "lines": [line.to_dict() for line in self.lines],
        }


class JournalEntryLine(db.Model):
    __tablename__ = "journal_entry_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    journal_entry_id = db.Column(db.Integer, db.ForeignKey("journal_entries.id"), nullable=False, index=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)

    side = db.Column(db.String(8), nullable=False)  # debit, credit
    amount = db.Column(db.Numeric(14, 2), nullable=False)  # always positive
    description = db.Column(db.String(255), nullable=True)

    journal_entry = db.relationship("JournalEntry", back_populates="lines")
    account = db.relationship("Account")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "journal_entry_id": self.journal_entry_id,
            "account_code": self.account.code if self.account else None,
            "side": self.side,
            "amount": money_str(self.amount),
            "description": self.description,
        }
