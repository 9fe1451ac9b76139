# Overview: Flask API routes for sales; checkout, gateway payment and status push.

# backend/aurora/routes/sales.py
"""Sales API routes"""

import json
import queue

from flask import Blueprint, Response, request, jsonify, g, current_app

from ..extensions import db
from ..models import PDV
from ..models.sales import SALE_STATUS_PENDING, PAYMENT_INSTALLMENT
from ..services import sale_service, sale_events, installment_service
from ..services.sale_service import SaleError
from ..services.movement_service import MovementError
from ..services.payments import PaymentGatewayError
from ..validation import ValidationError, coerce_int
from ..decorators import require_auth, require_role, can_access_pdv
from ..models.users import ROLE_ADMIN, ROLE_PARTNER
from . import internal_error, not_found, forbidden


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _load_sale(sale_id: int):
    sale = sale_service.get_sale(sale_id)
    if not sale:
        return None, not_found("Sale")
    if not can_access_pdv(sale.pdv):
        return None, forbidden()
    return sale, None


@sales_bp.post("/quote")
@require_auth
def quote_route():
    """Totals for a cart without writing anything. Body: {subtotal_cents, payment_method, applied_credit_cents?}"""
    try:
        data = request.get_json(silent=True) or {}
        totals = sale_service.calculate_totals(
            coerce_int(data.get("subtotal_cents"), "subtotal_cents"),
            str(data.get("payment_method") or "").upper(),
            coerce_int(data.get("applied_credit_cents", 0), "applied_credit_cents"),
        )
        return jsonify(totals), 200

    except (SaleError, ValidationError) as e:
        return jsonify({"error": str(e)}), 400


@sales_bp.post("")
@require_auth
@require_role(ROLE_PARTNER)
def create_sale_route():
    """
    Register a sale at a PDV.

    Body: {pdv_id, payment_method, items: [{product_id, quantity}],
           customer_id? | customer: {name, whatsapp?, cpf?}, applied_credit_cents?,
           installments? (INSTALLMENT only)}
    """
    try:
        data = request.get_json(silent=True) or {}
        pdv_id = coerce_int(data.get("pdv_id"), "pdv_id")
        if not can_access_pdv(db.session.get(PDV, pdv_id)):
            return forbidden()

        items = data.get("items")
        if not isinstance(items, list) or not all(isinstance(i, dict) for i in items):
            return jsonify({"error": "items must be a list of {product_id, quantity}"}), 400

        customer_id = data.get("customer_id")
        sale = sale_service.create_sale(
            pdv_id=pdv_id,
            items=[
                {
                    "product_id": coerce_int(i.get("product_id"), "product_id"),
                    "quantity": coerce_int(i.get("quantity"), "quantity"),
                }
                for i in items
            ],
            payment_method=str(data.get("payment_method") or "").upper(),
            actor_user_id=g.current_user.id,
            customer_id=coerce_int(customer_id, "customer_id") if customer_id is not None else None,
            customer_data=data.get("customer"),
            applied_credit_cents=coerce_int(data.get("applied_credit_cents", 0), "applied_credit_cents"),
            installment_count=coerce_int(data.get("installments", 1), "installments"),
        )
        return jsonify({"sale": sale_service.get_sale_detail(sale.id)}), 201

    except SaleError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        return internal_error("Failed to create sale")


@sales_bp.get("")
@require_auth
def list_sales_route():
    pdv_id = request.args.get("pdv_id", type=int)
    if pdv_id is None:
        if g.current_user.role != ROLE_ADMIN:
            return jsonify({"error": "pdv_id required"}), 400
        sales = sale_service.list_sales()
    else:
        if not can_access_pdv(db.session.get(PDV, pdv_id)):
            return forbidden()
        sales = sale_service.list_sales_for_pdv(pdv_id, status=request.args.get("status"))
    return jsonify({"items": [s.to_dict() for s in sales], "count": len(sales)}), 200


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    sale, error = _load_sale(sale_id)
    if error:
        return error
    return jsonify({"sale": sale_service.get_sale_detail(sale.id)}), 200


@sales_bp.post("/<int:sale_id>/payment")
@require_auth
@require_role(ROLE_PARTNER)
def start_payment_route(sale_id: int):
    """
    Charge a PENDING PIX/CARD sale through a gateway.

    Body: {gateway?, card_token?, payer?: {name, email, tax_id, phone}}
    """
    sale, error = _load_sale(sale_id)
    if error:
        return error

    try:
        data = request.get_json(silent=True) or {}
        payment = sale_service.start_payment(
            sale.id,
            gateway=data.get("gateway"),
            payer=data.get("payer"),
            card_token=data.get("card_token"),
            remote_ip=request.remote_addr,
        )
        return jsonify({"payment": payment}), 200

    except SaleError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except PaymentGatewayError as e:
        current_app.logger.warning("Gateway rejected sale %s: %s", sale_id, e)
        return jsonify({"error": str(e), "gateway": e.gateway}), 502
    except Exception:
        return internal_error("Failed to start payment")


@sales_bp.post("/<int:sale_id>/complete")
@require_auth
@require_role(ROLE_PARTNER)
def complete_sale_route(sale_id: int):
    """Manual confirmation; only installment plans are settled outside a gateway."""
    sale, error = _load_sale(sale_id)
    if error:
        return error
    if sale.payment_method != PAYMENT_INSTALLMENT and g.current_user.role != ROLE_ADMIN:
        return jsonify({"error": "Only installment sales are confirmed manually"}), 400

    try:
        sale = sale_service.complete_sale(sale.id, actor_user_id=g.current_user.id)
        return jsonify({"sale": sale.to_dict()}), 200

    except SaleError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        return internal_error("Failed to complete sale")


@sales_bp.get("/overdue")
@require_auth
def overdue_installments_route():
    """Open installments past due; admins see the network, others one PDV (?pdv_id=)."""
    pdv_id = request.args.get("pdv_id", type=int)
    if pdv_id is None:
        if g.current_user.role != ROLE_ADMIN:
            return jsonify({"error": "pdv_id required"}), 400
    elif not can_access_pdv(db.session.get(PDV, pdv_id)):
        return forbidden()

    items = []
    for installment in installment_service.overdue_installments(pdv_id):
        data = installment.to_dict()
        data["pdv_id"] = installment.sale.pdv_id
        data["customer_name"] = installment.sale.customer.name if installment.sale.customer else None
        items.append(data)
    return jsonify({
        "items": items,
        "count": len(items),
        "total_cents": sum(i["amount_cents"] for i in items),
    }), 200


def _load_installment(installment_id: int):
    installment = installment_service.get_installment(installment_id)
    if not installment:
        return None, not_found("Installment")
    if not can_access_pdv(installment.sale.pdv):
        return None, forbidden()
    return installment, None


@sales_bp.post("/installments/<int:installment_id>/pay")
@require_auth
@require_role(ROLE_PARTNER)
def pay_installment_route(installment_id: int):
    """Record an installment paid at the counter."""
    installment, error = _load_installment(installment_id)
    if error:
        return error

    try:
        installment = sale_service.pay_installment(installment.id, actor_user_id=g.current_user.id)
        return jsonify({
            "installment": installment.to_dict(),
            "sale": installment.sale.to_dict(),
        }), 200

    except SaleError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        return internal_error("Failed to pay installment")


@sales_bp.post("/installments/<int:installment_id>/payment")
@require_auth
@require_role(ROLE_PARTNER)
def charge_installment_route(installment_id: int):
    """Bill an installment through Asaas. Body: {payer?: {name, email, tax_id, phone}}"""
    installment, error = _load_installment(installment_id)
    if error:
        return error

    try:
        data = request.get_json(silent=True) or {}
        payment = sale_service.charge_installment(installment.id, payer=data.get("payer"))
        return jsonify({"payment": payment}), 200

    except SaleError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except PaymentGatewayError as e:
        current_app.logger.warning("Gateway rejected installment %s: %s", installment_id, e)
        return jsonify({"error": str(e), "gateway": e.gateway}), 502
    except Exception:
        return internal_error("Failed to charge installment")


@sales_bp.post("/<int:sale_id>/cancel")
@require_auth
@require_role(ROLE_PARTNER)
def cancel_sale_route(sale_id: int):
    sale, error = _load_sale(sale_id)
    if error:
        return error

    try:
        sale = sale_service.cancel_sale(sale.id, actor_user_id=g.current_user.id)
        return jsonify({"sale": sale.to_dict()}), 200

    except (SaleError, MovementError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        return internal_error("Failed to cancel sale")


def _sse(payload: dict) -> str:
    return f"event: status\ndata: {json.dumps(payload)}\n\n"


@sales_bp.get("/<int:sale_id>/events")
@require_auth
def sale_events_route(sale_id: int):
    """
    Server-Sent Events stream of one sale's status.

    Sends the current status first, then every change; the stream ends when
    the sale leaves PENDING. Comment lines keep idle connections alive.
    """
    sale, error = _load_sale(sale_id)
    if error:
        return error

    heartbeat = current_app.config.get("SALE_EVENTS_HEARTBEAT_SECONDS", 15)
    inbox: queue.Queue = queue.Queue()
    # Subscribe before reading the status so no change is lost in between
    subscription = sale_events.subscribe(sale_id, inbox.put)
    db.session.refresh(sale)
    initial = sale_service.event_payload(sale)

    def stream():
        try:
            yield _sse(initial)
            if initial["status"] != SALE_STATUS_PENDING:
                return
            while True:
                try:
                    payload = inbox.get(timeout=heartbeat)
                except queue.Empty:
                    yield ": keep-alive\n\n"
                    continue
                yield _sse(payload)
                if payload["status"] != SALE_STATUS_PENDING:
                    return
        finally:
            subscription.close()

    response = Response(stream(), mimetype="text/event-stream")
    response.headers["Cache-Control"] = "no-cache"
    response.headers["X-Accel-Buffering"] = "no"
    response.call_on_close(subscription.close)
    return response
