"""
Sale Workflow Service

WHY: A sale at a PDV moves stock out of the PDV, freezes the prices the
customer saw and, for PIX and card, waits for a gateway to confirm payment.

LIFECYCLE:
1. create_sale: totals computed, stock checked, Sale + SaleItems + one SALE
   movement per item written in ONE transaction. CASH is COMPLETED at once;
   PIX, CARD and INSTALLMENT start PENDING.
2. start_payment: a PENDING PIX/CARD sale is charged through a gateway,
   once. INSTALLMENT sales get a plan instead (installment_service) whose
   installments are paid at the counter or charged one by one via Asaas.
3. complete_sale: the webhook of the sale's own charge, the last paid
   installment or a manual confirmation moves PENDING -> COMPLETED.
4. cancel_sale: PENDING -> CANCELLED, restocking the PDV.

Every committed status change is published to sale_events.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

from flask import current_app

from ..extensions import db
from ..models import Sale, SaleItem, Installment, Product, Customer, PDV
from ..models.sales import (
    PAYMENT_PIX,
    PAYMENT_CARD,
    PAYMENT_CASH,
    PAYMENT_INSTALLMENT,
    VALID_PAYMENT_METHODS,
    SALE_STATUS_PENDING,
    SALE_STATUS_COMPLETED,
    SALE_STATUS_CANCELLED,
    INSTALLMENT_STATUS_OPEN,
)
from ..models.inventory import KIND_SALE, KIND_RETURN
from aurora.time_utils import utcnow
from . import sale_events
from .concurrency import lock_for_update, run_with_retry
from .customer_service import CustomerError, find_or_create_customer
from .installment_service import (
    InstallmentError,
    cancel_plan_inner,
    create_plan_inner,
    find_by_gateway_payment,
    get_installment,
    is_settled,
    mark_paid_inner,
    settle_open_inner,
)
from .inventory_service import get_quantity_on_hand
from .locations import Location
from .movement_service import MovementError, _record_movement_inner
from .payments import (
    GATEWAY_ASAAS,
    METHOD_PIX,
    Payer,
    PaymentRequest,
    get_gateway,
)


class SaleError(Exception):
    """Raised for sale operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


# Methods that earn the upfront-payment discount
DISCOUNTED_METHODS = (PAYMENT_PIX, PAYMENT_CASH)
DISCOUNT_RATE = Decimal("0.10")

# Methods charged through a payment gateway
GATEWAY_METHODS = (PAYMENT_PIX, PAYMENT_CARD)


def calculate_totals(subtotal_cents: int, payment_method: str, applied_credit_cents: int = 0) -> dict:
    """
    Checkout arithmetic in cents.

    discount = 10% of subtotal for PIX and CASH (half-up), 0 otherwise
    total = max(0, subtotal - discount - credit)
    """
    if payment_method not in VALID_PAYMENT_METHODS:
        raise SaleError(f"Invalid payment method: {payment_method}. Must be one of {list(VALID_PAYMENT_METHODS)}")
    if subtotal_cents < 0:
        raise SaleError("Subtotal cannot be negative")
    if applied_credit_cents < 0:
        raise SaleError("Applied credit cannot be negative")

    discount = 0
    if payment_method in DISCOUNTED_METHODS:
        discount = int((Decimal(subtotal_cents) * DISCOUNT_RATE).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    return {
        "subtotal_cents": subtotal_cents,
        "discount_cents": discount,
        "credit_applied_cents": applied_credit_cents,
        "total_cents": max(0, subtotal_cents - discount - applied_credit_cents),
    }


def event_payload(sale: Sale) -> dict:
    return {
        "sale_id": sale.id,
        "status": sale.status,
        "total_cents": sale.total_cents,
        "gateway": sale.gateway,
    }


def _publish(sale: Sale) -> None:
    sale_events.publish(sale.id, event_payload(sale))


def _normalize_items(items: list[dict]) -> list[tuple[int, int]]:
    if not items:
        raise SaleError("Sale requires at least one item")

    normalized = []
    for item in items:
        product_id = item.get("product_id")
        quantity = item.get("quantity")
        if isinstance(product_id, bool) or not isinstance(product_id, int):
            raise SaleError("Each item requires an integer product_id")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise SaleError(f"Invalid quantity for product {product_id}")
        normalized.append((product_id, quantity))
    return normalized


def _validate_on_hand(location: Location, lines: list[tuple[int, int]]) -> None:
    product_totals: dict[int, int] = {}
    for product_id, qty in lines:
        product_totals[product_id] = product_totals.get(product_id, 0) + qty

    insufficient = []
    for product_id, qty in product_totals.items():
        on_hand = get_quantity_on_hand(location, product_id)
        if on_hand < qty:
            insufficient.append({
                "product_id": product_id,
                "requested_quantity": qty,
                "on_hand": on_hand,
            })

    if insufficient:
        raise SaleError("Insufficient stock at PDV", details={"items": insufficient})


def _resolve_customer(pdv_id: int, customer_id: int | None, customer_data: dict | None) -> Customer | None:
    if customer_id is not None:
        customer = db.session.query(Customer).filter_by(id=customer_id).first()
        if not customer:
            raise SaleError(f"Customer {customer_id} not found")
        return customer

    if not customer_data:
        return None

    try:
        return find_or_create_customer(
            name=customer_data.get("name"),
            whatsapp=customer_data.get("whatsapp"),
            cpf=customer_data.get("cpf"),
            origin_pdv_id=pdv_id,
            commit=False,
        )
    except CustomerError as e:
        raise SaleError(str(e))


def create_sale(
    pdv_id: int,
    items: list[dict],
    payment_method: str,
    actor_user_id: int | None,
    customer_id: int | None = None,
    customer_data: dict | None = None,
    applied_credit_cents: int = 0,
    installment_count: int = 1,
) -> Sale:
    """
    Register a sale and take its items out of the PDV's stock.

    Args:
        pdv_id: Selling PDV
        items: [{"product_id": int, "quantity": int}, ...]
        payment_method: PIX, CARD, CASH or INSTALLMENT
        actor_user_id: User operating the checkout
        customer_id: Existing customer, takes precedence over customer_data
        customer_data: {"name", "whatsapp", "cpf"} resolved or registered at the counter
        applied_credit_cents: Store credit from a previous return
        installment_count: Number of monthly installments (INSTALLMENT only)

    Returns:
        Sale: COMPLETED for CASH, PENDING otherwise

    Raises:
        SaleError: On invalid input or insufficient stock (details lists the shortfall)
    """
    lines = _normalize_items(items)
    if isinstance(applied_credit_cents, bool) or not isinstance(applied_credit_cents, int):
        raise SaleError("Applied credit must be an integer (cents)")
    if installment_count != 1 and payment_method != PAYMENT_INSTALLMENT:
        raise SaleError("Only INSTALLMENT sales are split into installments")

    def _op():
        pdv = db.session.query(PDV).filter_by(id=pdv_id).first()
        if not pdv:
            raise SaleError(f"PDV {pdv_id} not found")
        if not pdv.is_active:
            raise SaleError(f"PDV {pdv_id} is inactive")

        products = {}
        for product_id, _ in lines:
            product = db.session.query(Product).filter_by(id=product_id).first()
            if not product or not product.is_active:
                raise SaleError(f"Product {product_id} not found")
            products[product_id] = product

        origin = Location.pdv(pdv_id)
        _validate_on_hand(origin, lines)

        subtotal = sum(products[product_id].price_cents * qty for product_id, qty in lines)
        totals = calculate_totals(subtotal, payment_method, applied_credit_cents)

        customer = _resolve_customer(pdv_id, customer_id, customer_data)

        now = utcnow()
        sale = Sale(
            pdv_id=pdv_id,
            customer_id=customer.id if customer else None,
            created_by_user_id=actor_user_id,
            payment_method=payment_method,
            status=SALE_STATUS_COMPLETED if payment_method == PAYMENT_CASH else SALE_STATUS_PENDING,
            created_at=now,
            completed_at=now if payment_method == PAYMENT_CASH else None,
            **totals,
        )
        db.session.add(sale)
        db.session.flush()

        for product_id, qty in lines:
            try:
                movement = _record_movement_inner(
                    product_id=product_id,
                    quantity=qty,
                    origin=origin,
                    destination=Location.sale(sale.id),
                    actor_user_id=actor_user_id,
                    kind=KIND_SALE,
                    note=f"Sale #{sale.id}",
                )
            except MovementError as e:
                raise SaleError(str(e))
            db.session.add(SaleItem(
                sale_id=sale.id,
                product_id=product_id,
                quantity=qty,
                unit_price_cents=products[product_id].price_cents,
                movement_id=movement.id,
            ))

        if payment_method == PAYMENT_INSTALLMENT:
            try:
                create_plan_inner(sale, installment_count)
            except InstallmentError as e:
                raise SaleError(str(e))

        db.session.commit()
        return sale

    sale = run_with_retry(_op)
    current_app.logger.info(
        "Sale %s created at PDV %s (%s, %s cents, %s)",
        sale.id, pdv_id, payment_method, sale.total_cents, sale.status,
    )
    _publish(sale)
    return sale


def _payer_for(sale: Sale, overrides: dict | None) -> Payer:
    customer = sale.customer
    data = {
        "name": customer.name if customer else None,
        "email": customer.email if customer else None,
        "tax_id": customer.cpf if customer else None,
        "phone": customer.whatsapp if customer else None,
    }
    for key, value in (overrides or {}).items():
        if key in data and value:
            data[key] = value

    if not data["name"]:
        raise SaleError("Gateway payments require a customer name")

    return Payer(
        gateway_customer_id=customer.asaas_id if customer else None,
        **data,
    )


def _charge(adapter, request: PaymentRequest):
    current_app.logger.info("Charging sale %s through %s", request.sale_id, adapter.name)
    return adapter.create_payment(request)


def _cache_gateway_customer(adapter, result, customer) -> None:
    if (
        adapter.name == GATEWAY_ASAAS
        and result.gateway_customer_id
        and customer is not None
        and customer.asaas_id != result.gateway_customer_id
    ):
        customer.asaas_id = result.gateway_customer_id


def start_payment(
    sale_id: int,
    gateway: str | None = None,
    payer: dict | None = None,
    card_token: str | None = None,
    remote_ip: str | None = None,
) -> dict:
    """
    Charge a PENDING PIX or CARD sale through a payment gateway.

    A sale is charged once: while a charge is open the gateway payment id is
    kept and a second call is rejected. A charge the gateway refused (a
    declined card) is not kept, so the sale can be retried with a new token.

    The HTTP call happens outside any row lock; the gateway payment id is
    stored afterwards. Card data never reaches this service, only the token
    produced by the gateway's client-side tokenization.

    Returns:
        {"id", "status", "pix_payload", "pix_qr_code"}

    Raises:
        SaleError: If the sale cannot be charged
        PaymentGatewayError: If the gateway rejects the request
    """
    sale = db.session.query(Sale).filter_by(id=sale_id).first()
    if not sale:
        raise SaleError(f"Sale {sale_id} not found")
    if sale.status != SALE_STATUS_PENDING:
        raise SaleError(f"Sale {sale_id} is {sale.status}, only PENDING sales can be charged")
    if sale.payment_method not in GATEWAY_METHODS:
        raise SaleError(f"{sale.payment_method} sales are not charged through a gateway")
    if sale.gateway_payment_id:
        raise SaleError(
            f"Sale {sale_id} already has an open {sale.gateway} charge",
            details={"gateway": sale.gateway, "gateway_payment_id": sale.gateway_payment_id},
        )
    if sale.payment_method == PAYMENT_CARD and not card_token:
        raise SaleError("Card payments require a card token")

    adapter = get_gateway(gateway)
    result = _charge(adapter, PaymentRequest(
        sale_id=sale.id,
        amount_cents=sale.total_cents,
        method=sale.payment_method,
        payer=_payer_for(sale, payer),
        description=f"Aurora Folheados - Venda #{sale.id}",
        token=card_token,
        remote_ip=remote_ip,
    ))
    if result.failed:
        current_app.logger.warning("%s refused sale %s (%s)", adapter.name, sale.id, result.status)
        return result.to_dict()

    def _op():
        locked = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if locked.gateway_payment_id and locked.gateway_payment_id != result.gateway_payment_id:
            raise SaleError(f"Sale {sale_id} was charged concurrently")
        locked.gateway = adapter.name
        locked.gateway_payment_id = result.gateway_payment_id
        _cache_gateway_customer(adapter, result, locked.customer)
        db.session.commit()
        return locked

    run_with_retry(_op)
    return result.to_dict()


def _complete_inner(sale: Sale, actor_user_id: int | None = None) -> None:
    sale.status = SALE_STATUS_COMPLETED
    sale.completed_at = utcnow()
    if sale.payment_method == PAYMENT_INSTALLMENT:
        settle_open_inner(sale, actor_user_id)


def complete_sale(sale_id: int, actor_user_id: int | None = None) -> Sale:
    """
    Mark a PENDING sale COMPLETED.

    Completing an already COMPLETED sale is a no-op (gateways resend webhooks).
    For an installment sale every open installment is settled with it.
    """
    def _op():
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if not sale:
            raise SaleError(f"Sale {sale_id} not found")
        if sale.status == SALE_STATUS_COMPLETED:
            return sale, False
        if sale.status == SALE_STATUS_CANCELLED:
            raise SaleError(f"Sale {sale_id} is CANCELLED")

        _complete_inner(sale, actor_user_id)
        db.session.commit()
        return sale, True

    sale, changed = run_with_retry(_op)
    if changed:
        current_app.logger.info("Sale %s completed", sale.id)
        _publish(sale)
    return sale


def cancel_sale(sale_id: int, actor_user_id: int | None) -> Sale:
    """
    Cancel a PENDING sale and put its items back into the PDV.

    Each item gets one RETURN movement, so the ledger keeps both the sale
    and its reversal. An installment plan is cancelled with the sale unless
    an installment was already paid.
    """
    def _op():
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if not sale:
            raise SaleError(f"Sale {sale_id} not found")
        if sale.status != SALE_STATUS_PENDING:
            raise SaleError(f"Sale {sale_id} is {sale.status}, only PENDING sales can be cancelled")

        try:
            cancel_plan_inner(sale)
        except InstallmentError as e:
            raise SaleError(str(e))

        for item in sale.items:
            _record_movement_inner(
                product_id=item.product_id,
                quantity=item.quantity,
                origin=None,
                destination=Location.pdv(sale.pdv_id),
                actor_user_id=actor_user_id,
                kind=KIND_RETURN,
                note=f"Cancelled sale #{sale.id}",
            )

        sale.status = SALE_STATUS_CANCELLED
        sale.cancelled_at = utcnow()
        sale.cancelled_by_user_id = actor_user_id
        db.session.commit()
        return sale

    sale = run_with_retry(_op)
    current_app.logger.info("Sale %s cancelled by user %s", sale.id, actor_user_id)
    _publish(sale)
    return sale


# =============================================================================
# INSTALLMENTS
# =============================================================================

def pay_installment(installment_id: int, actor_user_id: int | None) -> Installment:
    """
    Settle one installment (counter payment or gateway confirmation).

    Paying the last open installment completes the sale. Paying an
    installment twice is a no-op.
    """
    def _op():
        installment = lock_for_update(db.session.query(Installment).filter_by(id=installment_id)).first()
        if not installment:
            raise SaleError(f"Installment {installment_id} not found")
        sale = lock_for_update(db.session.query(Sale).filter_by(id=installment.sale_id)).first()
        if sale.status == SALE_STATUS_CANCELLED:
            raise SaleError(f"Sale {sale.id} is CANCELLED")

        try:
            changed = mark_paid_inner(installment, actor_user_id)
        except InstallmentError as e:
            raise SaleError(str(e))

        completed = False
        if changed and sale.status == SALE_STATUS_PENDING and is_settled(sale):
            _complete_inner(sale, actor_user_id)
            completed = True
        db.session.commit()
        return installment, sale, completed

    installment, sale, completed = run_with_retry(_op)
    current_app.logger.info("Installment %s of sale %s paid", installment.number, sale.id)
    if completed:
        current_app.logger.info("Sale %s completed", sale.id)
        _publish(sale)
    return installment


def charge_installment(installment_id: int, payer: dict | None = None) -> dict:
    """
    Bill one open installment through Asaas as a PIX charge due on the
    installment's due date. The Asaas webhook settles it.

    Raises:
        SaleError: If the installment cannot be charged
        PaymentGatewayError: If the gateway rejects the request
    """
    installment = get_installment(installment_id)
    if not installment:
        raise SaleError(f"Installment {installment_id} not found")
    sale = installment.sale
    if sale.status != SALE_STATUS_PENDING:
        raise SaleError(f"Sale {sale.id} is {sale.status}, only PENDING sales can be charged")
    if installment.status != INSTALLMENT_STATUS_OPEN:
        raise SaleError(f"Installment {installment_id} is {installment.status}")
    if installment.gateway_payment_id:
        raise SaleError(
            f"Installment {installment_id} already has an open {installment.gateway} charge",
            details={"gateway": installment.gateway, "gateway_payment_id": installment.gateway_payment_id},
        )

    adapter = get_gateway(GATEWAY_ASAAS)
    result = _charge(adapter, PaymentRequest(
        sale_id=sale.id,
        amount_cents=installment.amount_cents,
        method=METHOD_PIX,
        payer=_payer_for(sale, payer),
        description=f"Aurora Folheados - Venda #{sale.id} - Parcela {installment.number}/{len(sale.installments)}",
        installment_number=installment.number,
        due_date=installment.due_date,
    ))
    if result.failed:
        return result.to_dict()

    def _op():
        locked = lock_for_update(db.session.query(Installment).filter_by(id=installment_id)).first()
        if locked.gateway_payment_id and locked.gateway_payment_id != result.gateway_payment_id:
            raise SaleError(f"Installment {installment_id} was charged concurrently")
        locked.gateway = adapter.name
        locked.gateway_payment_id = result.gateway_payment_id
        _cache_gateway_customer(adapter, result, locked.sale.customer)
        db.session.commit()
        return locked

    run_with_retry(_op)
    return result.to_dict()


# =============================================================================
# WEBHOOKS
# =============================================================================

def _webhook_matches_sale(adapter, outcome, sale: Sale) -> bool:
    """A notification settles a sale only if it is the charge that sale opened."""
    if sale.payment_method not in GATEWAY_METHODS:
        return False
    if sale.gateway and sale.gateway != adapter.name:
        return False
    if not outcome.gateway_payment_id:
        return False
    if sale.gateway_payment_id and str(outcome.gateway_payment_id) != sale.gateway_payment_id:
        return False
    return True


def handle_webhook(gateway_name: str, payload: dict) -> Sale | None:
    """
    Apply a gateway notification.

    A confirmed charge of an installment settles that installment; otherwise
    it completes the sale that opened the charge. Returns the affected sale,
    or None when the notification does not confirm a known charge (other
    events, unknown references, charges of another gateway or method).
    """
    adapter = get_gateway(gateway_name)
    outcome = adapter.parse_webhook(payload or {})
    if outcome is None or not outcome.confirmed:
        return None

    installment = find_by_gateway_payment(adapter.name, outcome.gateway_payment_id)
    if installment is not None:
        pay_installment(installment.id, actor_user_id=None)
        return get_sale(installment.sale_id)

    if outcome.sale_id is None:
        current_app.logger.warning("%s webhook without a sale reference", adapter.name)
        return None

    sale = db.session.query(Sale).filter_by(id=outcome.sale_id).first()
    if not sale:
        current_app.logger.warning("%s webhook for unknown sale %s", adapter.name, outcome.sale_id)
        return None
    if not _webhook_matches_sale(adapter, outcome, sale):
        current_app.logger.warning(
            "%s webhook payment %s does not match sale %s (%s %s %s)",
            adapter.name, outcome.gateway_payment_id, sale.id,
            sale.payment_method, sale.gateway, sale.gateway_payment_id,
        )
        return None

    return complete_sale(sale.id)


def get_sale(sale_id: int) -> Sale | None:
    return db.session.query(Sale).filter_by(id=sale_id).first()


def get_sale_detail(sale_id: int) -> dict:
    sale = get_sale(sale_id)
    if not sale:
        raise SaleError(f"Sale {sale_id} not found")
    data = sale.to_dict()
    data["items"] = [item.to_dict() for item in sale.items]
    if sale.payment_method == PAYMENT_INSTALLMENT:
        data["installments"] = [i.to_dict() for i in sale.installments]
    return data


def list_sales_for_pdv(pdv_id: int, status: str | None = None) -> list[Sale]:
    query = db.session.query(Sale).filter_by(pdv_id=pdv_id)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(Sale.created_at.desc(), Sale.id.desc()).all()


def list_sales(limit: int = 200) -> list[Sale]:
    return db.session.query(Sale).order_by(Sale.created_at.desc(), Sale.id.desc()).limit(limit).all()
