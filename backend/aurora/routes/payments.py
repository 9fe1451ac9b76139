# Overview: Flask API routes for payment gateway webhooks.

from flask import Blueprint, request, jsonify, current_app

from ..services import sale_service
from ..services.sale_service import SaleError
from ..services.payments import PaymentGatewayError, VALID_GATEWAYS
from . import internal_error


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.post("/webhooks/<gateway>")
def webhook_route(gateway: str):
    """
    Gateway notification endpoint (unauthenticated: the gateway calls it).

    Always answers 200 for well-formed notifications, including ones that
    do not concern a known sale, so the gateway stops resending them.
    """
    gateway = gateway.lower()
    if gateway not in VALID_GATEWAYS:
        return jsonify({"error": f"Unknown gateway: {gateway}"}), 404

    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        # Mercado Pago IPN may send the id as query parameters only
        payload = {"type": request.args.get("type") or request.args.get("topic"),
                   "data": {"id": request.args.get("data.id") or request.args.get("id")}}

    try:
        sale = sale_service.handle_webhook(gateway, payload)
        if sale is None:
            return jsonify({"received": True, "sale_id": None}), 200
        current_app.logger.info("%s webhook settled sale %s", gateway, sale.id)
        return jsonify({"received": True, "sale_id": sale.id, "status": sale.status}), 200

    except SaleError as e:
        current_app.logger.warning("%s webhook rejected: %s", gateway, e)
        return jsonify({"received": True, "error": str(e)}), 200
    except PaymentGatewayError as e:
        current_app.logger.warning("%s webhook lookup failed: %s", gateway, e)
        return jsonify({"error": str(e)}), 502
    except Exception:
        return internal_error(f"Failed to process {gateway} webhook")
