# Overview: Installment plans of INSTALLMENT sales; schedule, settlement state and overdue queries.

"""
Installment Ledger

WHY: An INSTALLMENT sale is paid over several months. The plan is written
together with the sale and each installment is settled on its own, either
at the counter or through an Asaas charge. The sale itself completes when
its last installment is paid (see sale_service).

SCHEDULE:
- amounts split the sale total evenly; leftover cents go to the first
  installments so the plan always adds up to the total.
- the first installment is due INSTALLMENT_INTERVAL_DAYS after the sale,
  the next ones every INSTALLMENT_INTERVAL_DAYS after that.

Functions ending in _inner do not commit; callers own the transaction.
"""

from __future__ import annotations

from datetime import date, timedelta

from sqlalchemy import func

from ..extensions import db
from ..models import Installment, Sale
from ..models.sales import (
    INSTALLMENT_STATUS_OPEN,
    INSTALLMENT_STATUS_PAID,
    INSTALLMENT_STATUS_CANCELLED,
    SALE_STATUS_CANCELLED,
)
from aurora.time_utils import utcnow


class InstallmentError(Exception):
    """Raised for installment operation errors."""
    pass


MAX_INSTALLMENTS = 12
INSTALLMENT_INTERVAL_DAYS = 30


def build_schedule(total_cents: int, count: int, start: date) -> list[tuple[int, date]]:
    """(amount_cents, due_date) per installment, in order."""
    if isinstance(count, bool) or not isinstance(count, int) or count < 1 or count > MAX_INSTALLMENTS:
        raise InstallmentError(f"Installment count must be between 1 and {MAX_INSTALLMENTS}")
    if total_cents <= 0:
        raise InstallmentError("Installment plans need a positive total")

    base, remainder = divmod(total_cents, count)
    return [
        (base + (1 if n < remainder else 0), start + timedelta(days=INSTALLMENT_INTERVAL_DAYS * (n + 1)))
        for n in range(count)
    ]


def create_plan_inner(sale: Sale, count: int) -> list[Installment]:
    """Write the plan for a freshly flushed sale."""
    schedule = build_schedule(sale.total_cents, count, sale.created_at.date())
    installments = []
    for number, (amount, due_date) in enumerate(schedule, start=1):
        installment = Installment(
            sale_id=sale.id,
            number=number,
            amount_cents=amount,
            due_date=due_date,
            status=INSTALLMENT_STATUS_OPEN,
        )
        db.session.add(installment)
        installments.append(installment)
    db.session.flush()
    return installments


def mark_paid_inner(installment: Installment, actor_user_id: int | None) -> bool:
    """Flag one installment PAID. Returns False when it already was."""
    if installment.status == INSTALLMENT_STATUS_PAID:
        return False
    if installment.status == INSTALLMENT_STATUS_CANCELLED:
        raise InstallmentError(f"Installment {installment.id} is CANCELLED")
    installment.status = INSTALLMENT_STATUS_PAID
    installment.paid_at = utcnow()
    installment.paid_by_user_id = actor_user_id
    return True


def settle_open_inner(sale: Sale, actor_user_id: int | None) -> None:
    """Pay off every open installment (the whole sale was confirmed at once)."""
    for installment in sale.installments:
        if installment.status == INSTALLMENT_STATUS_OPEN:
            mark_paid_inner(installment, actor_user_id)


def cancel_plan_inner(sale: Sale) -> None:
    if any(i.status == INSTALLMENT_STATUS_PAID for i in sale.installments):
        raise InstallmentError(f"Sale {sale.id} already has paid installments")
    for installment in sale.installments:
        installment.status = INSTALLMENT_STATUS_CANCELLED


def is_settled(sale: Sale) -> bool:
    return bool(sale.installments) and all(i.status == INSTALLMENT_STATUS_PAID for i in sale.installments)


def get_installment(installment_id: int) -> Installment | None:
    return db.session.query(Installment).filter_by(id=installment_id).first()


def find_by_gateway_payment(gateway: str, gateway_payment_id: str | None) -> Installment | None:
    if not gateway_payment_id:
        return None
    return db.session.query(Installment).filter_by(
        gateway=gateway,
        gateway_payment_id=str(gateway_payment_id),
    ).first()


def _overdue_query(pdv_id: int | None, today: date | None):
    today = today or utcnow().date()
    query = db.session.query(Installment).join(Sale, Sale.id == Installment.sale_id).filter(
        Installment.status == INSTALLMENT_STATUS_OPEN,
        Installment.due_date < today,
        Sale.status != SALE_STATUS_CANCELLED,
    )
    if pdv_id is not None:
        query = query.filter(Sale.pdv_id == pdv_id)
    return query


def overdue_installments(pdv_id: int | None = None, today: date | None = None) -> list[Installment]:
    """Open installments past their due date, oldest first."""
    return _overdue_query(pdv_id, today).order_by(Installment.due_date.asc(), Installment.id.asc()).all()


def overdue_total_cents(pdv_id: int | None = None, today: date | None = None) -> int:
    total = _overdue_query(pdv_id, today).with_entities(
        func.coalesce(func.sum(Installment.amount_cents), 0),
    ).scalar()
    return int(total or 0)
