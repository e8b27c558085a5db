from __future__ import annotations

from ..extensions import db
from bizops.money import money_str
from bizops.time_utils import to_utc_z

CUSTOMER_TYPES = ("company", "individual")


class Customer(db.Model):
    """
    Customer master data.

    customer_type selects the tax rule variant (e.g. withholding for companies)
    so it is required and has no default.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_business_name", "business_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(64), nullable=True)
    customer_type = db.Column(db.String(16), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    business = db.relationship("Business", backref=db.backref("customers", lazy=True))

    def __repr__(self) -> str:
        return f"<Customer id={self.id} name={self.name!r} type={self.customer_type}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "customer_type": self.customer_type,
            "created_at": to_utc_z(self.created_at),
        }


class InventoryItem(db.Model):
    """
    Stock-keeping record.

    quantity_on_hand is decremented by inventory-typed sale lines and
    restored when such a sale is voided or cancelled.
    """
    __tablename__ = "inventory_items"
    __table_args__ = (
        db.UniqueConstraint("business_id", "sku", name="uq_inventory_items_business_sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    quantity_on_hand = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    cost_price = db.Column(db.Numeric(14, 2), nullable=True)
    selling_price = db.Column(db.Numeric(14, 2), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    business = db.relationship("Business", backref=db.backref("inventory_items", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<InventoryItem id={self.id} sku={self.sku!r} on_hand={self.quantity_on_hand}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "sku": self.sku,
            "name": self.name,
            "quantity_on_hand": str(self.quantity_on_hand),
            "cost_price": money_str(self.cost_price),
            "selling_price": money_str(self.selling_price),
            "is_active": self.is_active,
        }


class Product(db.Model):
    """
    Product catalog entry.

    tax_category_code classifies the product for tax (e.g. STANDARD_GOODS).
    inventory_item_id links a product to the stock record it sells from;
    an inventory-typed sale line finds its tax category through this link.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("business_id", "sku", name="uq_products_business_sku"),
        db.Index("ix_products_business_name", "business_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    unit_price = db.Column(db.Numeric(14, 2), nullable=True)
    cost_price = db.Column(db.Numeric(14, 2), nullable=True)
    tax_category_code = db.Column(db.String(32), nullable=False, default="STANDARD_GOODS")

    inventory_item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    business = db.relationship("Business", backref=db.backref("products", lazy=True))
    inventory_item = db.relationship("InventoryItem", backref=db.backref("products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} category={self.tax_category_code}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "unit_price": money_str(self.unit_price),
            "cost_price": money_str(self.cost_price),
            "tax_category_code": self.tax_category_code,
            "inventory_item_id": self.inventory_item_id,
            "is_active": self.is_active,
        }


class Service(db.Model):
    """Billable service. Falls back to the SERVICES tax category when unclassified."""
    __tablename__ = "services"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    unit_price = db.Column(db.Numeric(14, 2), nullable=True)
    tax_category_code = db.Column(db.String(32), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    business = db.relationship("Business", backref=db.backref("services", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "name": self.name,
            "unit_price": money_str(self.unit_price),
            "tax_category_code": self.tax_category_code,
            "is_active": self.is_active,
        }
