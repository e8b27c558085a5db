# Overview: Service-layer operations for document numbering.

from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..errors import ValidationError
from ..models import SaleTransaction


def next_transaction_number(
    session: Session,
    *,
    business_id: int,
    channel: str,
    prefix: str,
    pad: int = 4,
) -> str:
    """
    Next sequential, business-scoped number for a channel (e.g. INV-0007).

    Count-based: must run inside the same storage transaction as the insert
    that uses it. Two concurrent sales can compute the same number; the
    unique constraint on (business_id, transaction_number) rejects the
    second insert and the caller retries the whole attempt.
    """
    if not business_id:
        raise ValidationError("business_id is required")
    if not channel:
        raise ValidationError("channel is required")

    count = (
        session.query(func.count(SaleTransaction.id))
        .filter(
            SaleTransaction.business_id == business_id,
            SaleTransaction.channel == channel,
        )
        .scalar()
    )
    return f"{prefix}-{int(count or 0) + 1:0{pad}d}"
