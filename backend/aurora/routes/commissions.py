# Overview: Flask API routes for the monthly commission report and payment authorization.

from flask import Blueprint, request, jsonify, g

from ..services import commission_service
from ..services.commission_service import CommissionError
from ..validation import ValidationError, coerce_int
from ..decorators import require_auth, require_role
from ..models.users import ROLE_ADMIN, ROLE_PROMOTER
from aurora.time_utils import utcnow
from . import internal_error


commissions_bp = Blueprint("commissions", __name__, url_prefix="/api/commissions")


def _period() -> tuple[int, int]:
    now = utcnow()
    month = request.args.get("month", default=now.month, type=int)
    year = request.args.get("year", default=now.year, type=int)
    return month, year


@commissions_bp.get("")
@require_auth
@require_role(ROLE_ADMIN)
def report_route():
    """Commission report for ?month=&year= (defaults to the current month)."""
    month, year = _period()
    try:
        records = commission_service.report_for(month, year)
        return jsonify({
            "month": month,
            "year": year,
            "items": [r.to_dict() for r in records],
            "total_cents": sum(r.total_cents for r in records),
        }), 200

    except CommissionError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        return internal_error("Failed to build commission report")


@commissions_bp.get("/mine")
@require_auth
@require_role(ROLE_PROMOTER)
def my_commission_route():
    month, year = _period()
    try:
        records = commission_service.report_for(month, year)
    except CommissionError as e:
        return jsonify({"error": str(e)}), 400

    mine = next((r for r in records if r.promoter_id == g.current_user.id), None)
    return jsonify({"month": month, "year": year, "record": mine.to_dict() if mine else None}), 200


@commissions_bp.post("/payments")
@require_auth
@require_role(ROLE_ADMIN)
def authorize_payment_route():
    """Body: {promoter_id, month, year, amount_cents}"""
    try:
        data = request.get_json(silent=True) or {}
        payment = commission_service.authorize_payment(
            promoter_id=coerce_int(data.get("promoter_id"), "promoter_id"),
            month=coerce_int(data.get("month"), "month"),
            year=coerce_int(data.get("year"), "year"),
            amount_cents=coerce_int(data.get("amount_cents"), "amount_cents"),
            user_id=g.current_user.id,
        )
        return jsonify({"payment": payment.to_dict()}), 200

    except (CommissionError, ValidationError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        return internal_error("Failed to authorize commission payment")
