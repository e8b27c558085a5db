# Overview: Entry-point policies for sale creation (invoice vs point of sale).

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SaleChannel:
    """
    How one entry point treats lookups, tax failures and customers.

    strict_lookups: a missing product/service/customer aborts the sale
        (otherwise the line falls back to a default category and the
        customer to walk-in).
    strict_tax: a rate-service failure aborts the sale (otherwise the line
        is recorded untaxed).
    """
    name: str
    number_prefix: str
    number_pad: int
    transaction_type: str  # tag on tax-audit records
    resource_type: str
    audit_action: str
    strict_lookups: bool
    strict_tax: bool
    requires_customer: bool
    walk_in_customer_type: str | None
    payment_received_on_creation: bool


INVOICE = SaleChannel(
    name="invoice",
    number_prefix="INV",
    number_pad=4,
    transaction_type="invoice",
    resource_type="invoice",
    audit_action="invoice.created",
    strict_lookups=True,
    strict_tax=True,
    requires_customer=True,
    walk_in_customer_type=None,
    payment_received_on_creation=False,
)

POINT_OF_SALE = SaleChannel(
    name="pos",
    number_prefix="POS",
    number_pad=6,
    transaction_type="pos_sale",
    resource_type="pos_transaction",
    audit_action="pos.transaction.created",
    strict_lookups=False,
    strict_tax=False,
    requires_customer=False,
    walk_in_customer_type="individual",
    payment_received_on_creation=True,
)

CHANNELS = {channel.name: channel for channel in (INVOICE, POINT_OF_SALE)}
