# Overview: Pytest coverage for balanced journal entries and reversals.

from datetime import date
from decimal import Decimal

import pytest

from bizops.errors import RecordLookupError, ValidationError
from bizops.models import Account, JournalEntry
from bizops.services import ledger_service
from bizops.services.ledger_service import JournalLine


def _sale_lines(amount="118.00"):
    return [
        JournalLine("1200", "debit", Decimal(amount)),
        JournalLine("4100", "credit", Decimal(amount)),
    ]


def _post(db_session, business, lines, **extra):
    kwargs = {
        "business_id": business.id,
        "description": "Test entry",
        "entry_date": date(2024, 3, 15),
        "reference_type": "sale_transaction",
        "reference_id": 1,
        "lines": lines,
    }
    kwargs.update(extra)
    return ledger_service.create_journal_entry(db_session, **kwargs)


class TestDefaultAccounts:

    def test_idempotent(self, db_session, business):
        # fixture already created them
        assert ledger_service.ensure_default_accounts(db_session, business.id) == 0
        codes = {a.code for a in db_session.query(Account).filter_by(business_id=business.id)}
        assert codes == set(ledger_service.DEFAULT_ACCOUNTS)


class TestCreateJournalEntry:

    def test_balanced_entry_is_posted(self, db_session, business):
        result = _post(db_session, business, _sale_lines())
        db_session.commit()

        assert result.success is True
        entry = result.entry
        assert entry.total_amount == Decimal("118.00")
        assert entry.reference_number == f"JE-{business.id}-20240315-000001"
        assert len(entry.lines) == 2
        assert ledger_service.account_balance(db_session, business.id, "1200") == Decimal("118.00")
        assert ledger_service.account_balance(db_session, business.id, "4100") == Decimal("-118.00")

    def test_dict_lines_accepted(self, db_session, business):
        result = _post(db_session, business, [
            {"account": "1110", "side": "debit", "amount": "10"},
            {"account_code": "4200", "side": "credit", "amount": 10},
        ])
        assert result.success is True

    def test_unbalanced_entry_is_rejected_not_raised(self, db_session, business):
        result = _post(db_session, business, [
            JournalLine("1200", "debit", Decimal("100.00")),
            JournalLine("4100", "credit", Decimal("99.99")),
        ])
        assert result.success is False
        assert "does not balance" in result.message
        assert db_session.query(JournalEntry).count() == 0

    def test_single_line_rejected(self, db_session, business):
        result = _post(db_session, business, [JournalLine("1200", "debit", Decimal("1"))])
        assert result.success is False

    @pytest.mark.parametrize("line", [
        {"account": "1200", "side": "left", "amount": "1"},
        {"side": "debit", "amount": "1"},
        {"account": "1200", "side": "debit", "amount": "0"},
        {"account": "1200", "side": "debit", "amount": "-5"},
    ])
    def test_malformed_lines(self, db_session, business, line):
        with pytest.raises(ValidationError):
            _post(db_session, business, [line, {"account": "4100", "side": "credit", "amount": "1"}])

    def test_unknown_account(self, db_session, business):
        with pytest.raises(RecordLookupError):
            _post(db_session, business, [
                JournalLine("9999", "debit", Decimal("5")),
                JournalLine("4100", "credit", Decimal("5")),
            ])

    def test_accounts_are_business_scoped(self, db_session, business, other_business):
        _post(db_session, other_business, _sale_lines("50"))
        db_session.commit()
        assert ledger_service.account_balance(db_session, business.id, "1200") == Decimal("0")

    def test_inactive_account(self, db_session, business):
        account = db_session.query(Account).filter_by(business_id=business.id, code="4100").one()
        account.is_active = False
        db_session.commit()

        result = _post(db_session, business, _sale_lines())
        assert result.success is False
        assert "inactive" in result.message


class TestReverseJournalEntry:

    def test_reversal_mirrors_original(self, db_session, business):
        original = _post(db_session, business, _sale_lines()).entry
        db_session.commit()

        result = ledger_service.reverse_journal_entry(
            db_session, business_id=business.id, entry_id=original.id, entry_date=date(2024, 3, 20),
        )
        db_session.commit()

        assert result.success is True
        reversal = result.entry
        assert reversal.reverses_entry_id == original.id
        assert reversal.reference_id == original.reference_id
        assert {(l.account.code, l.side) for l in reversal.lines} == {("1200", "credit"), ("4100", "debit")}
        assert ledger_service.account_balance(db_session, business.id, "1200") == Decimal("0")

        entries = ledger_service.entries_for_reference(db_session, business.id, "sale_transaction", 1)
        assert [e.id for e in entries] == [original.id, reversal.id]

    def test_second_reversal_refused(self, db_session, business):
        original = _post(db_session, business, _sale_lines()).entry
        first = ledger_service.reverse_journal_entry(
            db_session, business_id=business.id, entry_id=original.id, entry_date=date(2024, 3, 20),
        )
        second = ledger_service.reverse_journal_entry(
            db_session, business_id=business.id, entry_id=original.id, entry_date=date(2024, 3, 21),
        )
        assert second.success is False
        assert second.entry.id == first.entry.id

    def test_entry_of_other_business_not_found(self, db_session, business, other_business):
        original = _post(db_session, business, _sale_lines()).entry
        with pytest.raises(RecordLookupError):
            ledger_service.reverse_journal_entry(
                db_session, business_id=other_business.id, entry_id=original.id, entry_date=date(2024, 3, 20),
            )
