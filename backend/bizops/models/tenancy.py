from __future__ import annotations

from ..extensions import db
from bizops.time_utils import to_utc_z

class Business(db.Model):
    """
    Multi-tenant root: every tenant is a Business.

    WHY: Shared-database multi-tenancy. Customers, catalog entries, sales,
    tax records and ledger accounts all carry business_id and every query
    is scoped by it.

    country_code is the default tax jurisdiction for the business's sales.
    """
    __tablename__ = "businesses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)  # Short code for lookups

    country_code = db.Column(db.String(2), nullable=True)
    currency = db.Column(db.String(3), nullable=False, default="UGX")

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Business id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "country_code": self.country_code,
            "currency": self.currency,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
