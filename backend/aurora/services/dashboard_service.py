# Overview: Read-only aggregates for the admin, PDV and promoter dashboards.

from __future__ import annotations

from datetime import timedelta

from sqlalchemy import func

from ..extensions import db
from ..models import Sale, SaleItem, PDV, StockMovement
from ..models.sales import SALE_STATUS_CANCELLED
from aurora.time_utils import utcnow
from .installment_service import overdue_total_cents
from .inventory_service import items_for
from .locations import Location
from .pdv_service import list_by_promoter


# Portfolio PDVs holding less stock value than this are flagged
LOW_STOCK_VALUE_CENTS = 200_000


def _live_sales():
    return db.session.query(Sale).filter(Sale.status != SALE_STATUS_CANCELLED)


def admin_stats() -> dict:
    """Network totals: sale count, revenue and overdue installments (cents), active PDVs."""
    sale_count, revenue = db.session.query(
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.total_cents), 0),
    ).filter(Sale.status != SALE_STATUS_CANCELLED).one()

    return {
        "total_sales": int(sale_count or 0),
        "network_revenue_cents": int(revenue or 0),
        "active_pdvs": db.session.query(func.count(PDV.id)).filter(PDV.is_active.is_(True)).scalar() or 0,
        "overdue_cents": overdue_total_cents(),
    }


def recent_activity(limit: int = 5) -> dict:
    movements = db.session.query(StockMovement).order_by(
        StockMovement.created_at.desc(), StockMovement.id.desc()
    ).limit(limit).all()
    sales = db.session.query(Sale).order_by(Sale.created_at.desc(), Sale.id.desc()).limit(limit).all()
    return {
        "movements": [m.to_dict() for m in movements],
        "sales": [s.to_dict() for s in sales],
    }


def pdv_stats(pdv_id: int) -> dict:
    """Today's sales, the pieces sold since the start of the month and overdue installments."""
    now = utcnow()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    month_start = today.replace(day=1)

    today_count, today_value = _live_sales().with_entities(
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.total_cents), 0),
    ).filter(Sale.pdv_id == pdv_id, Sale.created_at >= today).one()

    pieces = _live_sales().join(SaleItem, SaleItem.sale_id == Sale.id).with_entities(
        func.coalesce(func.sum(SaleItem.quantity), 0),
    ).filter(Sale.pdv_id == pdv_id, Sale.created_at >= month_start).scalar()

    return {
        "pdv_id": pdv_id,
        "today_sales_count": int(today_count or 0),
        "today_sales_cents": int(today_value or 0),
        "cycle_pieces_sold": int(pieces or 0),
        "overdue_cents": overdue_total_cents(pdv_id),
    }


def promoter_portfolio(promoter_id: int, days: int | None = None) -> list[dict]:
    """
    The promoter's PDVs enriched with stock value and month-to-date sales.

    days overrides the sales window (last N days instead of the calendar month).
    """
    now = utcnow()
    if days is not None:
        since = now - timedelta(days=days)
    else:
        since = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    portfolio = []
    for pdv in list_by_promoter(promoter_id):
        stock_value = sum(
            item["quantity"] * item["price_cents"] for item in items_for(Location.pdv(pdv.id))
        )
        monthly = _live_sales().with_entities(
            func.coalesce(func.sum(Sale.total_cents), 0),
        ).filter(Sale.pdv_id == pdv.id, Sale.created_at >= since).scalar()

        data = pdv.to_dict()
        data["partner_name"] = pdv.partner.name if pdv.partner else None
        data["stock_value_cents"] = stock_value
        data["monthly_sales_cents"] = int(monthly or 0)
        data["stock_status"] = "LOW" if stock_value < LOW_STOCK_VALUE_CENTS else "NORMAL"
        portfolio.append(data)
    return portfolio
