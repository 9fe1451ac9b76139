# Overview: Service-layer operations for customers; lookup, dedup and maintenance.

from __future__ import annotations

import re
from datetime import date

from sqlalchemy import extract

from ..extensions import db
from ..models import Customer, CustomerReturn, PDV, Sale
from .concurrency import run_with_retry


class CustomerError(Exception):
    """Raised for customer operation errors."""
    pass


UPDATABLE_FIELDS = {
    "name", "whatsapp", "cpf", "email", "birth_date",
    "postal_code", "address", "number", "complement", "district", "city", "state",
    "origin_pdv_id",
}


def digits_only(value: str | None) -> str | None:
    """Strip formatting from CPF / phone input; empty becomes None."""
    if value is None:
        return None
    cleaned = re.sub(r"\D", "", str(value))
    return cleaned or None


def _normalize(data: dict) -> dict:
    cleaned = dict(data)
    if "whatsapp" in cleaned:
        cleaned["whatsapp"] = digits_only(cleaned["whatsapp"])
    if "cpf" in cleaned:
        cleaned["cpf"] = digits_only(cleaned["cpf"])
        if cleaned["cpf"] is not None and len(cleaned["cpf"]) != 11:
            raise CustomerError("CPF must have 11 digits")
    if isinstance(cleaned.get("birth_date"), str):
        try:
            cleaned["birth_date"] = date.fromisoformat(cleaned["birth_date"])
        except ValueError:
            raise CustomerError("birth_date must be YYYY-MM-DD")
    if "name" in cleaned:
        cleaned["name"] = (cleaned["name"] or "").strip()
        if not cleaned["name"]:
            raise CustomerError("Customer name required")
    return cleaned


def find_by_whatsapp(whatsapp: str | None) -> Customer | None:
    whatsapp = digits_only(whatsapp)
    if not whatsapp:
        return None
    return db.session.query(Customer).filter_by(whatsapp=whatsapp).order_by(Customer.id).first()


def find_by_cpf(cpf: str | None) -> Customer | None:
    cpf = digits_only(cpf)
    if not cpf:
        return None
    return db.session.query(Customer).filter_by(cpf=cpf).first()


def _create_customer_inner(data: dict) -> Customer:
    unknown = set(data) - UPDATABLE_FIELDS
    if unknown:
        raise CustomerError(f"Fields not allowed: {', '.join(sorted(unknown))}")
    cleaned = _normalize(data)
    if not cleaned.get("name"):
        raise CustomerError("Customer name required")

    if cleaned.get("cpf") and find_by_cpf(cleaned["cpf"]):
        raise CustomerError("A customer with this CPF already exists")

    pdv_id = cleaned.get("origin_pdv_id")
    if pdv_id is not None and db.session.query(PDV).filter_by(id=pdv_id).first() is None:
        raise CustomerError(f"PDV {pdv_id} not found")

    customer = Customer(**cleaned)
    db.session.add(customer)
    db.session.flush()
    return customer


def create_customer(data: dict, *, commit: bool = True) -> Customer:
    if not commit:
        # Caller owns the transaction (checkout)
        return _create_customer_inner(data)

    def _op():
        customer = _create_customer_inner(data)
        db.session.commit()
        return customer

    return run_with_retry(_op)


def find_or_create_customer(
    *,
    name: str | None,
    whatsapp: str | None = None,
    cpf: str | None = None,
    origin_pdv_id: int | None = None,
    commit: bool = True,
) -> Customer | None:
    """
    Resolve the customer at checkout.

    Lookup order: whatsapp (the usual key at the counter), then CPF, else a
    new record tagged with the PDV that registered it. Returns None when no
    name was given (anonymous sale).
    """
    if not name or not name.strip():
        return None

    existing = find_by_whatsapp(whatsapp) or find_by_cpf(cpf)
    if existing:
        return existing

    data = {"name": name, "whatsapp": whatsapp, "cpf": cpf, "origin_pdv_id": origin_pdv_id}
    return create_customer({k: v for k, v in data.items() if v is not None}, commit=commit)


def update_customer(customer_id: int, updates: dict) -> Customer:
    def _op():
        customer = db.session.query(Customer).filter_by(id=customer_id).first()
        if not customer:
            raise CustomerError(f"Customer {customer_id} not found")

        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise CustomerError(f"Fields not allowed: {', '.join(sorted(unknown))}")

        cleaned = _normalize(updates)
        if cleaned.get("cpf") and cleaned["cpf"] != customer.cpf:
            other = find_by_cpf(cleaned["cpf"])
            if other and other.id != customer.id:
                raise CustomerError("A customer with this CPF already exists")

        for key, value in cleaned.items():
            setattr(customer, key, value)

        db.session.commit()
        return customer

    return run_with_retry(_op)


def list_customers() -> list[Customer]:
    return db.session.query(Customer).order_by(Customer.created_at.desc(), Customer.id.desc()).all()


def list_by_pdv(pdv_id: int) -> list[Customer]:
    return db.session.query(Customer).filter_by(origin_pdv_id=pdv_id).order_by(Customer.name).all()


def birthdays_of_month(month: int) -> list[Customer]:
    """Customers whose birthday falls in the given month (1-12)."""
    if month < 1 or month > 12:
        raise CustomerError("month must be between 1 and 12")
    return db.session.query(Customer).filter(
        Customer.birth_date.isnot(None),
        extract("month", Customer.birth_date) == month,
    ).order_by(Customer.name).all()


def delete_customer(customer_id: int) -> None:
    """
    Remove a customer registered by mistake.

    Customers referenced by a sale or a return are part of the sales history
    and are kept.
    """
    def _op():
        customer = db.session.query(Customer).filter_by(id=customer_id).first()
        if not customer:
            raise CustomerError(f"Customer {customer_id} not found")
        if (
            db.session.query(Sale.id).filter_by(customer_id=customer_id).first()
            or db.session.query(CustomerReturn.id).filter_by(customer_id=customer_id).first()
        ):
            raise CustomerError(f"Customer {customer_id} has sales or returns and cannot be deleted")

        db.session.delete(customer)
        db.session.commit()

    run_with_retry(_op)
