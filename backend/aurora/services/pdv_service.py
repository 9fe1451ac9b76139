# Overview: Service-layer operations for PDVs (points of sale) and promoter portfolios.

from __future__ import annotations

from ..extensions import db
from ..models import PDV, Sale, User
from ..models.sales import SALE_STATUS_PENDING
from ..models.users import ROLE_PROMOTER, ROLE_PARTNER
from ..validation import ModelValidationPolicy, validate_payload
from .concurrency import run_with_retry
from .inventory_service import items_for
from .locations import Location
from .movement_service import pending_for


class PDVError(Exception):
    """Raised for PDV operation errors."""
    pass


PERSON_TYPES = ("FISICA", "JURIDICA")

PDV_POLICY = ModelValidationPolicy(
    writable_fields={
        "trade_name", "person_type", "document", "address", "city", "state",
        "promoter_id", "partner_id",
    },
    required_on_create={"trade_name"},
)


def _check_links(patch: dict) -> None:
    if patch.get("person_type") is not None:
        patch["person_type"] = patch["person_type"].upper()
        if patch["person_type"] not in PERSON_TYPES:
            raise PDVError(f"Invalid person_type: must be one of {list(PERSON_TYPES)}")

    promoter_id = patch.get("promoter_id")
    if promoter_id is not None:
        promoter = db.session.query(User).filter_by(id=promoter_id).first()
        if not promoter or promoter.role != ROLE_PROMOTER:
            raise PDVError(f"Promoter {promoter_id} not found")

    partner_id = patch.get("partner_id")
    if partner_id is not None:
        partner = db.session.query(User).filter_by(id=partner_id).first()
        if not partner or partner.role != ROLE_PARTNER:
            raise PDVError(f"Partner {partner_id} not found")


def list_pdvs(include_inactive: bool = False) -> list[PDV]:
    query = db.session.query(PDV)
    if not include_inactive:
        query = query.filter_by(is_active=True)
    return query.order_by(PDV.trade_name.asc(), PDV.id.asc()).all()


def get_pdv(pdv_id: int) -> PDV | None:
    return db.session.query(PDV).filter_by(id=pdv_id).first()


def get_by_partner(partner_id: int) -> PDV | None:
    """The PDV a partner user operates (first by id when several)."""
    return db.session.query(PDV).filter_by(partner_id=partner_id).order_by(PDV.id).first()


def list_by_promoter(promoter_id: int) -> list[PDV]:
    return db.session.query(PDV).filter_by(promoter_id=promoter_id, is_active=True).order_by(PDV.trade_name.asc()).all()


def create_pdv(payload: dict) -> PDV:
    patch = validate_payload(model=PDV, payload=payload, policy=PDV_POLICY, partial=False)

    def _op():
        _check_links(patch)
        pdv = PDV(**patch)
        db.session.add(pdv)
        db.session.commit()
        return pdv

    return run_with_retry(_op)


def update_pdv(pdv_id: int, payload: dict) -> PDV:
    patch = validate_payload(model=PDV, payload=payload, policy=PDV_POLICY, partial=True)

    def _op():
        pdv = db.session.query(PDV).filter_by(id=pdv_id).first()
        if not pdv:
            raise PDVError(f"PDV {pdv_id} not found")
        _check_links(patch)
        for key, value in patch.items():
            setattr(pdv, key, value)
        db.session.commit()
        return pdv

    return run_with_retry(_op)


def deactivate_pdv(pdv_id: int) -> PDV:
    """
    Close a PDV (idempotent).

    Sales and ledger rows keep pointing at it, so the row stays and only
    is_active flips. A PDV still holding stock, or with transfers waiting for
    its confirmation or sales waiting for payment, cannot be closed.
    """
    def _op():
        pdv = db.session.query(PDV).filter_by(id=pdv_id).first()
        if not pdv:
            raise PDVError(f"PDV {pdv_id} not found")
        if not pdv.is_active:
            return pdv

        location = Location.pdv(pdv.id)
        on_hand = sum(item["quantity"] for item in items_for(location))
        if on_hand > 0:
            raise PDVError(f"PDV {pdv_id} still holds {on_hand} units")
        if pending_for(location):
            raise PDVError(f"PDV {pdv_id} has transfers waiting for confirmation")
        if db.session.query(Sale).filter_by(pdv_id=pdv_id, status=SALE_STATUS_PENDING).first():
            raise PDVError(f"PDV {pdv_id} has sales waiting for payment")

        pdv.is_active = False
        db.session.commit()
        return pdv

    return run_with_retry(_op)
