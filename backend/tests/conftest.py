"""
Pytest fixtures for bizops backend tests.

Provides test database setup, tenant fixtures, catalog fixtures, stub
collaborators (rate service, ledger) and a test client.
"""

from decimal import Decimal

import pytest

from bizops import create_app
from bizops.extensions import db
from bizops.models import Business, Customer, InventoryItem, Product, Service
from bizops.money import percent_of
from bizops.services import ledger_service
from bizops.services.ledger_service import JournalResult
from bizops.services.tax_service import TaxResult, seed_default_rates


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """
    Create application for testing.

    File-backed SQLite: audit writes and ledger posting use their own
    sessions, which must see the same database as the request session.
    """
    db_path = tmp_path_factory.mktemp("data") / "bizops-test.sqlite3"
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f'sqlite:///{db_path}',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DEFAULT_COUNTRY_CODE': 'UG',
        'LOG_LEVEL': 'DEBUG',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


# =============================================================================
# STUB COLLABORATORS
# =============================================================================

class StubRateService:
    """
    Rate service returning fixed percentages per category.

    Categories listed in fail_categories raise, like an unreachable
    upstream tax engine would.
    """

    DEFAULT_RATES = {
        "STANDARD_GOODS": Decimal("18"),
        "SERVICES": Decimal("18"),
        "DIGITAL_SERVICES": Decimal("18"),
        "PHARMACEUTICALS": Decimal("0"),
        "ESSENTIAL_GOODS": Decimal("0"),
    }

    def __init__(self, rates=None, fail_categories=()):
        self.rates = dict(self.DEFAULT_RATES if rates is None else rates)
        self.fail_categories = set(fail_categories)
        self.calls = []

    def calculate_item_tax(self, *, business_id, country_code, category, amount,
                           transaction_type, customer_type, transaction_date):
        self.calls.append({
            "business_id": business_id,
            "country_code": country_code,
            "category": category,
            "amount": amount,
            "transaction_type": transaction_type,
            "customer_type": customer_type,
            "transaction_date": transaction_date,
        })
        if category in self.fail_categories:
            raise RuntimeError("tax engine unavailable")
        rate = self.rates.get(category, Decimal("0"))
        return TaxResult(
            rate=rate,
            amount=percent_of(amount, rate),
            tax_code="VAT_STD" if rate else "VAT_EXEMPT",
            taxable_amount=amount,
            tax_name="VAT Standard" if rate else "VAT Exempt",
            is_exempt=not rate,
        )

    def get_tax_rate(self, category, country_code, as_of, customer_type=None):
        return {"category": category, "tax_rate": str(self.rates.get(category, Decimal("0")))}


class FailingLedger:
    """Ledger whose every call raises."""

    def __init__(self, message="ledger unavailable"):
        self.message = message
        self.calls = 0

    def create_journal_entry(self, session, **kwargs):
        self.calls += 1
        raise RuntimeError(self.message)

    def reverse_journal_entry(self, session, **kwargs):
        self.calls += 1
        raise RuntimeError(self.message)


class RejectingLedger:
    """Ledger that answers with a non-success result instead of raising."""

    def __init__(self, message="accounting period is closed"):
        self.message = message

    def create_journal_entry(self, session, **kwargs):
        return JournalResult(False, message=self.message)

    def reverse_journal_entry(self, session, **kwargs):
        return JournalResult(False, message=self.message)


@pytest.fixture
def rate_service():
    return StubRateService()


@pytest.fixture
def make_rate_service():
    """Factory for stub rate services with custom rates or failing categories."""
    return StubRateService


@pytest.fixture
def failing_ledger():
    return FailingLedger()


@pytest.fixture
def rejecting_ledger():
    return RejectingLedger()


# =============================================================================
# TENANTS AND CATALOG
# =============================================================================

@pytest.fixture(scope='function')
def business(db_session):
    """Business A (UG) with its ledger accounts."""
    biz = Business(name="Acme Traders", code="ACME", country_code="UG", is_active=True)
    db_session.add(biz)
    db_session.commit()
    ledger_service.ensure_default_accounts(db_session, biz.id)
    db_session.commit()
    return biz


@pytest.fixture(scope='function')
def other_business(db_session):
    """Business B (second tenant)."""
    biz = Business(name="Beta Supplies", code="BETA", country_code="UG", is_active=True)
    db_session.add(biz)
    db_session.commit()
    ledger_service.ensure_default_accounts(db_session, biz.id)
    db_session.commit()
    return biz


@pytest.fixture(scope='function')
def seeded_rates(db_session):
    """Default UG rate table."""
    seed_default_rates(db_session, "UG")
    db_session.commit()


@pytest.fixture(scope='function')
def company_customer(db_session, business):
    customer = Customer(business_id=business.id, name="Kampala Holdings", customer_type="company")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def individual_customer(db_session, business):
    customer = Customer(business_id=business.id, name="Jane Doe", customer_type="individual")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def product(db_session, business):
    item = Product(
        business_id=business.id,
        sku="WIDGET-1",
        name="Widget",
        unit_price=Decimal("50.00"),
        tax_category_code="STANDARD_GOODS",
    )
    db_session.add(item)
    db_session.commit()
    return item


@pytest.fixture(scope='function')
def service(db_session, business):
    svc = Service(business_id=business.id, name="Installation", unit_price=Decimal("200.00"))
    db_session.add(svc)
    db_session.commit()
    return svc


@pytest.fixture(scope='function')
def inventory_item(db_session, business):
    """Stocked item (10 on hand) sold through a linked essential-goods product."""
    item = InventoryItem(
        business_id=business.id,
        sku="SUGAR-1KG",
        name="Sugar 1kg",
        quantity_on_hand=Decimal("10"),
        cost_price=Decimal("3.00"),
        selling_price=Decimal("5.00"),
    )
    db_session.add(item)
    db_session.commit()
    linked = Product(
        business_id=business.id,
        sku="SUGAR-1KG",
        name="Sugar 1kg",
        unit_price=Decimal("5.00"),
        tax_category_code="ESSENTIAL_GOODS",
        inventory_item_id=item.id,
    )
    db_session.add(linked)
    db_session.commit()
    return item


def business_headers(business, user_id=None):
    headers = {"X-Business-Id": str(business.id)}
    if user_id is not None:
        headers["X-User-Id"] = str(user_id)
    return headers


@pytest.fixture
def headers(business):
    """Request headers scoping calls to business A as user 1."""
    return business_headers(business, user_id=1)
