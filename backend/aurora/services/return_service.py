"""
Customer Return Service

WHY: A customer brings a piece back to the PDV. The piece goes back on the
PDV's shelf (one APPLIED RETURN movement from outside the network) and the
customer receives store credit, which a later sale can apply.

Returns are recorded COMPLETED in one step; there is no approval workflow.
"""

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import CustomerReturn, Customer, Product, PDV, Sale
from ..models.inventory import KIND_RETURN
from ..models.sales import SALE_STATUS_CANCELLED
from .concurrency import run_with_retry
from .locations import Location
from .movement_service import MovementError, _record_movement_inner


class ReturnError(Exception):
    """Raised for return operation errors."""
    pass


RETURN_STATUS_COMPLETED = "COMPLETED"


def create_return(
    pdv_id: int,
    product_id: int,
    quantity: int,
    reason: str,
    actor_user_id: int | None = None,
    customer_id: int | None = None,
    credit_cents: int | None = None,
    notes: str | None = None,
) -> CustomerReturn:
    """
    Record a return and restock the PDV.

    credit_cents defaults to the product's current price times quantity.
    """
    if not reason or not reason.strip():
        raise ReturnError("Return reason required")
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ReturnError("Quantity must be a positive integer")
    if credit_cents is not None and (isinstance(credit_cents, bool) or not isinstance(credit_cents, int) or credit_cents < 0):
        raise ReturnError("Credit must be a non-negative integer (cents)")

    def _op():
        if not db.session.query(PDV).filter_by(id=pdv_id).first():
            raise ReturnError(f"PDV {pdv_id} not found")
        product = db.session.query(Product).filter_by(id=product_id).first()
        if not product:
            raise ReturnError(f"Product {product_id} not found")
        if customer_id is not None and not db.session.query(Customer).filter_by(id=customer_id).first():
            raise ReturnError(f"Customer {customer_id} not found")

        try:
            movement = _record_movement_inner(
                product_id=product_id,
                quantity=quantity,
                origin=None,
                destination=Location.pdv(pdv_id),
                actor_user_id=actor_user_id,
                kind=KIND_RETURN,
                note=f"Customer return: {reason.strip()}",
            )
        except MovementError as e:
            raise ReturnError(str(e))

        record = CustomerReturn(
            pdv_id=pdv_id,
            customer_id=customer_id,
            product_id=product_id,
            quantity=quantity,
            reason=reason.strip(),
            credit_cents=credit_cents if credit_cents is not None else product.price_cents * quantity,
            status=RETURN_STATUS_COMPLETED,
            notes=notes,
            movement_id=movement.id,
            created_by_user_id=actor_user_id,
        )
        db.session.add(record)
        db.session.commit()
        return record

    return run_with_retry(_op)


def list_returns_for_pdv(pdv_id: int) -> list[CustomerReturn]:
    return db.session.query(CustomerReturn).filter_by(pdv_id=pdv_id).order_by(
        CustomerReturn.created_at.desc(),
        CustomerReturn.id.desc(),
    ).all()


def available_credit(customer_id: int) -> int:
    """Credit granted by returns minus credit already applied to live sales."""
    granted = db.session.query(
        func.coalesce(func.sum(CustomerReturn.credit_cents), 0)
    ).filter(CustomerReturn.customer_id == customer_id).scalar()

    spent = db.session.query(
        func.coalesce(func.sum(Sale.credit_applied_cents), 0)
    ).filter(
        Sale.customer_id == customer_id,
        Sale.status != SALE_STATUS_CANCELLED,
    ).scalar()

    return max(0, int(granted or 0) - int(spent or 0))
