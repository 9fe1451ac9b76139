# Overview: Location tags used to address stock ledger rows.

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import and_

from ..models.inventory import (
    LOCATION_CENTRAL,
    LOCATION_PROMOTER,
    LOCATION_PDV,
    LOCATION_SALE,
    STOCK_LOCATION_TYPES,
)


VALID_LOCATION_TYPES = STOCK_LOCATION_TYPES + (LOCATION_SALE,)


@dataclass(frozen=True)
class Location:
    """
    (type, id) pair naming one end of a movement.

    CENTRAL is a singleton and never carries an id; every other type does.
    """
    type: str
    id: int | None = None

    def __post_init__(self):
        if self.type not in VALID_LOCATION_TYPES:
            raise ValueError(f"Invalid location type: {self.type}")
        if self.type == LOCATION_CENTRAL:
            if self.id is not None:
                raise ValueError("CENTRAL location does not take an id")
        elif self.id is None:
            raise ValueError(f"{self.type} location requires an id")

    @classmethod
    def central(cls) -> "Location":
        return cls(LOCATION_CENTRAL)

    @classmethod
    def promoter(cls, user_id: int) -> "Location":
        return cls(LOCATION_PROMOTER, user_id)

    @classmethod
    def pdv(cls, pdv_id: int) -> "Location":
        return cls(LOCATION_PDV, pdv_id)

    @classmethod
    def sale(cls, sale_id: int) -> "Location":
        return cls(LOCATION_SALE, sale_id)

    @classmethod
    def parse(cls, location_type: str | None, location_id=None) -> "Location":
        """Build a Location from loose request input (type is case-insensitive)."""
        if not location_type:
            raise ValueError("location type required")
        location_type = str(location_type).strip().upper()
        if location_type == LOCATION_CENTRAL:
            return cls.central()
        if location_id is None or isinstance(location_id, bool):
            raise ValueError(f"{location_type} location requires an id")
        try:
            return cls(location_type, int(location_id))
        except (TypeError, ValueError):
            raise ValueError(f"Invalid location: {location_type}/{location_id}")

    @classmethod
    def from_dict(cls, data: dict | None) -> "Location | None":
        if not data:
            return None
        return cls.parse(data.get("type"), data.get("id"))

    @property
    def holds_stock(self) -> bool:
        return self.type in STOCK_LOCATION_TYPES

    def to_dict(self) -> dict:
        return {"type": self.type, "id": self.id}

    def __str__(self) -> str:
        return self.type if self.id is None else f"{self.type}:{self.id}"


def location_of(type_value: str | None, id_value: int | None) -> Location | None:
    """Rebuild a Location from stored columns (None for an outside endpoint)."""
    if type_value is None:
        return None
    return Location(type_value, id_value)


def matches(type_col, id_col, location: Location):
    """SQL clause matching the (type, id) column pair against a location."""
    if location.id is None:
        return and_(type_col == location.type, id_col.is_(None))
    return and_(type_col == location.type, id_col == location.id)
