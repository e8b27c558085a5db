# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/bizops/routes/sales.py
"""Sales API routes (invoices, POS transactions, status changes, payments)"""

from flask import Blueprint, g, jsonify, request

from ..decorators import handle_engine_errors, require_business_context
from ..errors import ValidationError
from ..extensions import db
from ..services import accounting_bridge, sales_service
from ..time_utils import parse_iso_datetime


sales_bp = Blueprint("sales", __name__, url_prefix="/api")


def _int_arg(name: str, default: int | None = None) -> int | None:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer")


def _datetime_arg(name: str):
    try:
        return parse_iso_datetime(request.args.get(name))
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 date or datetime")


@sales_bp.post("/invoices")
@require_business_context
@handle_engine_errors
def create_invoice_route():
    """
    Create an invoice.

    Lookups and tax are strict: any failure rejects the whole invoice.
    A ledger posting failure does not; it shows up as accounting_error.
    """
    data = request.get_json(silent=True) or {}
    sale = sales_service.create_invoice(db.session, g.business_id, data, g.user_id)
    return jsonify({"sale": sale.to_dict(include_items=True)}), 201


@sales_bp.post("/pos/transactions")
@require_business_context
@handle_engine_errors
def create_pos_transaction_route():
    """Create a point-of-sale transaction."""
    data = request.get_json(silent=True) or {}
    sale = sales_service.create_pos_transaction(db.session, g.business_id, data, g.user_id)
    return jsonify({"sale": sale.to_dict(include_items=True)}), 201


@sales_bp.get("/sales")
@require_business_context
@handle_engine_errors
def list_sales_route():
    """
    List sales.

    Query params: channel, status, customer_id, payment_method, payment_status,
    accounting_status (failed|pending|processed), from, to, page, per_page
    """
    result = sales_service.list_transactions(
        db.session,
        g.business_id,
        channel=request.args.get("channel"),
        status=request.args.get("status"),
        customer_id=_int_arg("customer_id"),
        payment_method=request.args.get("payment_method"),
        payment_status=request.args.get("payment_status"),
        accounting_status=request.args.get("accounting_status"),
        start=_datetime_arg("from"),
        end=_datetime_arg("to"),
        page=_int_arg("page", 1),
        per_page=_int_arg("per_page", 50),
    )
    return jsonify(result), 200


@sales_bp.get("/sales/summary")
@require_business_context
@handle_engine_errors
def sales_summary_route():
    """
    Completed-sales figures: count, total, tax, average, distinct customers.

    Query params: period=today, or from/to; channel
    """
    channel = request.args.get("channel")
    if request.args.get("period") == "today":
        result = sales_service.today_summary(db.session, g.business_id, channel=channel)
    else:
        result = sales_service.sales_summary(
            db.session,
            g.business_id,
            start=_datetime_arg("from"),
            end=_datetime_arg("to"),
            channel=channel,
        )
    return jsonify({"summary": result}), 200


@sales_bp.get("/sales/<int:sale_id>")
@require_business_context
@handle_engine_errors
def get_sale_route(sale_id: int):
    sale = sales_service.get_transaction(db.session, g.business_id, sale_id)
    return jsonify({"sale": sale.to_dict(include_items=True)}), 200


@sales_bp.post("/sales/<int:sale_id>/complete")
@require_business_context
@handle_engine_errors
def complete_sale_route(sale_id: int):
    """Complete a draft sale (consumes stock, posts to the ledger)."""
    sale = sales_service.complete_sale(db.session, g.business_id, sale_id, g.user_id)
    return jsonify({"sale": sale.to_dict()}), 200


@sales_bp.post("/sales/<int:sale_id>/void")
@require_business_context
@handle_engine_errors
def void_sale_route(sale_id: int):
    """Void a completed sale. Body: {"reason": "..."}"""
    data = request.get_json(silent=True) or {}
    sale = sales_service.void_sale(db.session, g.business_id, sale_id, g.user_id, reason=data.get("reason"))
    return jsonify({"sale": sale.to_dict()}), 200


@sales_bp.post("/sales/<int:sale_id>/cancel")
@require_business_context
@handle_engine_errors
def cancel_sale_route(sale_id: int):
    """Cancel a completed sale. Body: {"reason": "..."}"""
    data = request.get_json(silent=True) or {}
    sale = sales_service.cancel_sale(db.session, g.business_id, sale_id, g.user_id, reason=data.get("reason"))
    return jsonify({"sale": sale.to_dict()}), 200


@sales_bp.post("/invoices/<int:sale_id>/payments")
@require_business_context
@handle_engine_errors
def record_payment_route(sale_id: int):
    """Record a payment. Body: {"amount": "50.00", "payment_method": "cash"}"""
    data = request.get_json(silent=True) or {}
    if data.get("amount") is None:
        raise ValidationError("amount required")
    sale = sales_service.record_payment(
        db.session,
        g.business_id,
        sale_id,
        data.get("amount"),
        g.user_id,
        payment_method=data.get("payment_method"),
    )
    return jsonify({"sale": sale.to_dict()}), 200


@sales_bp.post("/sales/<int:sale_id>/accounting/retry")
@require_business_context
@handle_engine_errors
def retry_accounting_route(sale_id: int):
    """
    Manually re-run ledger posting for one sale.

    Completed sales get their sale entry; voided/cancelled sales their
    reversal. The outcome is returned, never raised.
    """
    sale = sales_service.get_transaction(db.session, g.business_id, sale_id)
    if sale.status == "draft":
        raise ValidationError("Draft sales are not posted to the ledger")
    if sale.status == "completed":
        outcome = accounting_bridge.post_sale(sale.id, user_id=g.user_id)
    else:
        outcome = accounting_bridge.post_reversal(sale.id, user_id=g.user_id)
    sale = sales_service.get_transaction(db.session, g.business_id, sale_id, refresh=True)
    return jsonify({"accounting_status": outcome, "sale": sale.to_dict()}), 200
