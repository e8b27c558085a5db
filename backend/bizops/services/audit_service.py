# Overview: Service-layer operations for the action audit trail; append-only writes and paged reads.

"""
Audit trail invariants (authoritative)

- Append-only: entries are never updated or deleted.
- Written AFTER the operation it describes has committed, in its own
  session. An audit failure is logged and dropped; it never blocks or
  undoes the business operation.
- old_values / new_values are JSON snapshots of the fields that changed.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import AuditWriteError
from ..models import AuditLog
from .concurrency import independent_session

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 200


@dataclass(frozen=True)
class TaxCalculationContext:
    """
    Structured calculation_context stored on every TaxAuditRecord.

    extra is the only free-form part; keys added there must not collide with
    the named fields.
    """
    line_position: int
    item_type: str
    category_source: str
    customer_type: str
    calculation_version: str
    product_id: int | None = None
    service_id: int | None = None
    inventory_item_id: int | None = None
    tax_name: str | None = None
    is_exempt: bool = False
    is_zero_rated: bool = False
    extra: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


def log_action(
    *,
    business_id: int,
    user_id: int | None,
    action: str,
    resource_type: str,
    resource_id: int | None,
    old_values: dict | None = None,
    new_values: dict | None = None,
) -> AuditLog | None:
    """
    Append one audit entry in an independent session.

    Returns the stored entry, or None when the write failed (the failure is
    logged, never raised).
    """
    try:
        with independent_session() as session:
            entry = AuditLog(
                business_id=business_id,
                user_id=user_id,
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                old_values=old_values,
                new_values=new_values,
            )
            session.add(entry)
            try:
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                raise AuditWriteError(
                    f"Failed to write audit entry {action}",
                    details={"resource_type": resource_type, "resource_id": resource_id},
                ) from exc
            return entry
    except AuditWriteError as exc:
        logger.error("%s for %s %s: %s", exc.message, resource_type, resource_id, exc.__cause__)
        return None
    except SQLAlchemyError as exc:
        logger.error("Audit session failed for %s on %s %s: %s", action, resource_type, resource_id, exc)
        return None


def search_audit_logs(
    session: Session,
    business_id: int,
    *,
    action: str | None = None,
    resource_type: str | None = None,
    resource_id: int | None = None,
    user_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    page: int = 1,
    per_page: int = 50,
) -> dict:
    """Newest-first page of a business's audit entries."""
    page = max(page, 1)
    per_page = min(max(per_page, 1), MAX_PAGE_SIZE)

    query = session.query(AuditLog).filter(AuditLog.business_id == business_id)
    if action:
        query = query.filter(AuditLog.action == action)
    if resource_type:
        query = query.filter(AuditLog.resource_type == resource_type)
    if resource_id is not None:
        query = query.filter(AuditLog.resource_id == resource_id)
    if user_id is not None:
        query = query.filter(AuditLog.user_id == user_id)
    if start is not None:
        query = query.filter(AuditLog.created_at >= start)
    if end is not None:
        query = query.filter(AuditLog.created_at <= end)

    total = query.count()
    rows = (
        query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
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
