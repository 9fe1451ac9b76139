# Overview: Service-layer operations for promoter commissions; tier rules and monthly report.

"""
Promoter Commission Service

WHY: Promoters are paid a monthly percentage of the sales made by the PDVs
in their portfolio. The percentage depends on their level and on how fast
their PDVs turn over the reference kit.

TIER RULES:
- Turnover = pieces sold by the portfolio / (PDV count x KIT_SIZE); 0 without PDVs.
- JUNIOR: 1%, paid only when turnover >= 50% (the "trigger").
- SENIOR: 1.5%, or 2% when turnover > 75%. Always paid.
- COORDINATOR: 1% on own portfolio plus a 0.5% override on the sales of
  PDVs belonging to direct reports. Overrides do not cascade.

Rates are Decimals; money is integer cents rounded half-up.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import func

from ..extensions import db
from ..models import User, PDV, Sale, SaleItem, CommissionPayment
from ..models.users import ROLE_PROMOTER
from ..models.sales import SALE_STATUS_CANCELLED
from ..models.commissions import COMMISSION_STATUS_PAID, COMMISSION_STATUS_PENDING
from aurora.time_utils import utcnow, month_window
from .concurrency import lock_for_update, run_with_retry


class CommissionError(Exception):
    """Raised for commission operation errors."""
    pass


# =============================================================================
# CONSTANTS
# =============================================================================

KIT_SIZE = 72

LEVEL_JUNIOR = "JUNIOR"
LEVEL_SENIOR = "SENIOR"
LEVEL_COORDINATOR = "COORDINATOR"

VALID_LEVELS = (LEVEL_JUNIOR, LEVEL_SENIOR, LEVEL_COORDINATOR)

JUNIOR_RATE = Decimal("0.01")
JUNIOR_TRIGGER = 0.50

SENIOR_RATE = Decimal("0.015")
SENIOR_BONUS_RATE = Decimal("0.02")
SENIOR_BONUS_THRESHOLD = 0.75

COORDINATOR_RATE = Decimal("0.01")
COORDINATOR_OVERRIDE_RATE = Decimal("0.005")


# =============================================================================
# TIER RULES (pure)
# =============================================================================

def normalize_level(value: str | None) -> str:
    """Stored level, defaulting to JUNIOR when absent."""
    if value is None or not str(value).strip():
        return LEVEL_JUNIOR
    level = str(value).strip().upper()
    if level not in VALID_LEVELS:
        raise CommissionError(f"Invalid promoter level: {value}. Must be one of {list(VALID_LEVELS)}")
    return level


def turnover(pieces_sold: int, pdv_count: int) -> float:
    """Share of the portfolio's kit capacity sold in the period."""
    if pdv_count <= 0:
        return 0.0
    return pieces_sold / (pdv_count * KIT_SIZE)


_RATE_RULES = {
    LEVEL_JUNIOR: lambda t: JUNIOR_RATE,
    LEVEL_SENIOR: lambda t: SENIOR_BONUS_RATE if t > SENIOR_BONUS_THRESHOLD else SENIOR_RATE,
    LEVEL_COORDINATOR: lambda t: COORDINATOR_RATE,
}

_PAYABLE_RULES = {
    LEVEL_JUNIOR: lambda t: t >= JUNIOR_TRIGGER,
    LEVEL_SENIOR: lambda t: True,
    LEVEL_COORDINATOR: lambda t: True,
}

_OVERRIDE_RATES = {
    LEVEL_JUNIOR: Decimal("0"),
    LEVEL_SENIOR: Decimal("0"),
    LEVEL_COORDINATOR: COORDINATOR_OVERRIDE_RATE,
}


def rate_for(level: str, turnover_value: float) -> Decimal:
    """Base rate for a level; independent of whether the commission is payable."""
    return _RATE_RULES[normalize_level(level)](turnover_value)


def payable(level: str, turnover_value: float) -> bool:
    """Whether the level's trigger is met (only JUNIOR can miss it)."""
    return _PAYABLE_RULES[normalize_level(level)](turnover_value)


def override_rate(level: str) -> Decimal:
    return _OVERRIDE_RATES[normalize_level(level)]


def apply_rate(amount_cents: int, rate: Decimal) -> int:
    return int((Decimal(amount_cents) * rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass
class CommissionRecord:
    promoter_id: int
    promoter_name: str
    level: str
    monthly_sales_cents: int
    team_sales_cents: int
    active_pdvs: int
    pieces_sold: int
    average_turnover: float
    base_rate: Decimal
    has_trigger: bool
    commission_cents: int
    override_cents: int
    total_cents: int
    status: str
    paid_amount_cents: int | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["base_rate"] = float(self.base_rate)
        data["average_turnover"] = round(self.average_turnover, 4)
        return data


def compute_record(
    *,
    promoter_id: int,
    promoter_name: str,
    level: str | None,
    monthly_sales_cents: int,
    team_sales_cents: int,
    pdv_count: int,
    pieces_sold: int,
    status: str = COMMISSION_STATUS_PENDING,
    paid_amount_cents: int | None = None,
) -> CommissionRecord:
    """Apply the tier rules to one promoter's aggregated month."""
    level = normalize_level(level)
    turnover_value = turnover(pieces_sold, pdv_count)
    base_rate = rate_for(level, turnover_value)
    has_trigger = payable(level, turnover_value)

    commission = apply_rate(monthly_sales_cents, base_rate) if has_trigger else 0
    override = apply_rate(team_sales_cents, override_rate(level))

    return CommissionRecord(
        promoter_id=promoter_id,
        promoter_name=promoter_name,
        level=level,
        monthly_sales_cents=monthly_sales_cents,
        team_sales_cents=team_sales_cents,
        active_pdvs=pdv_count,
        pieces_sold=pieces_sold,
        average_turnover=turnover_value,
        base_rate=base_rate,
        has_trigger=has_trigger,
        commission_cents=commission,
        override_cents=override,
        total_cents=commission + override,
        status=status,
        paid_amount_cents=paid_amount_cents,
    )


# =============================================================================
# REPORT
# =============================================================================

def _sales_by_pdv(start, end) -> tuple[dict[int, int], dict[int, int]]:
    """(sales value, pieces sold) per PDV in [start, end), excluding cancelled sales."""
    value_rows = db.session.query(
        Sale.pdv_id,
        func.coalesce(func.sum(Sale.total_cents), 0),
    ).filter(
        Sale.created_at >= start,
        Sale.created_at < end,
        Sale.status != SALE_STATUS_CANCELLED,
    ).group_by(Sale.pdv_id).all()

    piece_rows = db.session.query(
        Sale.pdv_id,
        func.coalesce(func.sum(SaleItem.quantity), 0),
    ).join(SaleItem, SaleItem.sale_id == Sale.id).filter(
        Sale.created_at >= start,
        Sale.created_at < end,
        Sale.status != SALE_STATUS_CANCELLED,
    ).group_by(Sale.pdv_id).all()

    return (
        {pdv_id: int(total or 0) for pdv_id, total in value_rows},
        {pdv_id: int(pieces or 0) for pdv_id, pieces in piece_rows},
    )


def report_for(month: int, year: int) -> list[CommissionRecord]:
    """
    Monthly commission report, one record per active promoter.

    Returns:
        List of CommissionRecord ordered by promoter name

    Raises:
        CommissionError: If the period is invalid
    """
    try:
        start, end = month_window(month, year)
    except ValueError as e:
        raise CommissionError(str(e))

    promoters = db.session.query(User).filter_by(
        role=ROLE_PROMOTER,
        is_active=True,
    ).order_by(User.name).all()

    # Closed PDVs still bring in their sales but no longer count towards turnover
    pdvs_by_promoter: dict[int, list[int]] = {}
    open_pdvs: set[int] = set()
    for pdv_id, promoter_id, is_active in db.session.query(
        PDV.id, PDV.promoter_id, PDV.is_active,
    ).filter(PDV.promoter_id.isnot(None)).all():
        pdvs_by_promoter.setdefault(promoter_id, []).append(pdv_id)
        if is_active:
            open_pdvs.add(pdv_id)

    sales_value, pieces = _sales_by_pdv(start, end)

    # Direct reports include inactive promoters: their PDVs still sold
    reports_by_superior: dict[int, list[int]] = {}
    for user_id, superior_id in db.session.query(User.id, User.superior_id).filter(
        User.role == ROLE_PROMOTER,
        User.superior_id.isnot(None),
    ).all():
        reports_by_superior.setdefault(superior_id, []).append(user_id)

    payments = {
        p.promoter_id: p for p in db.session.query(CommissionPayment).filter_by(month=month, year=year).all()
    }

    records = []
    for promoter in promoters:
        level = normalize_level(promoter.promoter_level)
        own_pdvs = pdvs_by_promoter.get(promoter.id, [])

        team_sales = 0
        if level == LEVEL_COORDINATOR:
            for report_id in reports_by_superior.get(promoter.id, []):
                team_sales += sum(sales_value.get(pdv_id, 0) for pdv_id in pdvs_by_promoter.get(report_id, []))

        payment = payments.get(promoter.id)
        records.append(compute_record(
            promoter_id=promoter.id,
            promoter_name=promoter.name,
            level=level,
            monthly_sales_cents=sum(sales_value.get(pdv_id, 0) for pdv_id in own_pdvs),
            team_sales_cents=team_sales,
            pdv_count=sum(1 for pdv_id in own_pdvs if pdv_id in open_pdvs),
            pieces_sold=sum(pieces.get(pdv_id, 0) for pdv_id in own_pdvs),
            status=payment.status if payment else COMMISSION_STATUS_PENDING,
            paid_amount_cents=payment.paid_amount_cents if payment else None,
        ))

    return records


# =============================================================================
# PAYMENT AUTHORIZATION
# =============================================================================

def authorize_payment(
    promoter_id: int,
    month: int,
    year: int,
    amount_cents: int,
    user_id: int | None = None,
) -> CommissionPayment:
    """
    Mark a promoter's month as PAID (upsert keyed by promoter, month, year).

    Calling it again for the same period overwrites the paid amount.
    """
    def _op():
        if month < 1 or month > 12:
            raise CommissionError("month must be between 1 and 12")
        if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents < 0:
            raise CommissionError("Paid amount must be a non-negative integer (cents)")

        promoter = db.session.query(User).filter_by(id=promoter_id, role=ROLE_PROMOTER).first()
        if not promoter:
            raise CommissionError(f"Promoter {promoter_id} not found")

        payment = lock_for_update(
            db.session.query(CommissionPayment).filter_by(promoter_id=promoter_id, month=month, year=year)
        ).first()
        if payment is None:
            payment = CommissionPayment(promoter_id=promoter_id, month=month, year=year)
            db.session.add(payment)

        payment.status = COMMISSION_STATUS_PAID
        payment.paid_amount_cents = amount_cents
        payment.paid_at = utcnow()
        payment.authorized_by_user_id = user_id

        db.session.commit()
        return payment

    return run_with_retry(_op)
