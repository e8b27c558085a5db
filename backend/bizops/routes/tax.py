# Overview: Flask API routes for tax lookups and previews; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import handle_engine_errors, require_business_context
from ..errors import ValidationError
from ..extensions import db
from ..models import Business
from ..services import tax_service
from ..time_utils import normalize_datetime, to_tax_date


tax_bp = Blueprint("tax", __name__, url_prefix="/api/tax")


def _jurisdiction(explicit: str | None) -> str:
    if explicit:
        return explicit.upper()
    business = db.session.query(Business).filter_by(id=g.business_id).first()
    if business is not None and business.country_code:
        return business.country_code
    return current_app.config.get("DEFAULT_COUNTRY_CODE", "UG")


def _as_of(raw):
    try:
        return to_tax_date(normalize_datetime(raw))
    except ValueError:
        raise ValidationError("date must be an ISO-8601 date")


@tax_bp.get("/categories")
@require_business_context
@handle_engine_errors
def list_categories_route():
    country = _jurisdiction(request.args.get("country_code"))
    categories = tax_service.get_tax_categories(db.session, country)
    return jsonify({"country_code": country, "categories": categories}), 200


@tax_bp.get("/rate")
@require_business_context
@handle_engine_errors
def get_rate_route():
    """
    Effective rate for a category.

    Query params: category (required), country_code, date, customer_type
    """
    category = request.args.get("category")
    if not category:
        raise ValidationError("category required")
    rate_service = tax_service.TableRateService(db.session)
    rate = rate_service.get_tax_rate(
        category,
        _jurisdiction(request.args.get("country_code")),
        _as_of(request.args.get("date")),
        request.args.get("customer_type"),
    )
    return jsonify({"rate": rate}), 200


@tax_bp.post("/preview")
@require_business_context
@handle_engine_errors
def preview_tax_route():
    """
    Compute tax for a set of lines without recording anything.

    Body: {"customer_type": "company", "date": "2024-03-15", "country_code": "UG",
           "lines": [{"category": "SERVICES", "amount": "100.00"}]}
    """
    data = request.get_json(silent=True) or {}
    lines = data.get("lines")
    if not lines or not isinstance(lines, list):
        raise ValidationError("lines required")
    if not all(isinstance(line, dict) for line in lines):
        raise ValidationError("each line must be an object with category and amount")
    result = tax_service.calculate_invoice_tax(
        lines,
        jurisdiction=_jurisdiction(data.get("country_code")),
        as_of=_as_of(data.get("date")),
        customer_class=data.get("customer_type"),
        rate_service=tax_service.TableRateService(db.session),
        business_id=g.business_id,
    )
    return jsonify(result), 200
