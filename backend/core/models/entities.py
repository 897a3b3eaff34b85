"""
Kitchen records: ingredients, supplier items, components, dishes, stations, matrices.
Row-shaped dataclasses; to_dict/from_dict match the store's column names.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ItemType(str, Enum):
    INGREDIENT = "ingredient"
    SUPPLIER_ITEM = "supplier_item"
    COMPONENT = "component"


class MatrixType(str, Enum):
    STATION = "station"
    FEATURE = "feature"


@dataclass
class Ingredient:
    id: str
    name: str
    allergens: list[str] = field(default_factory=list)
    may_contain: list[str] = field(default_factory=list)
    # Shared-equipment risk
    cross_contact: bool = False
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "allergens": list(self.allergens),
            "may_contain": list(self.may_contain),
            "cross_contact": self.cross_contact,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Ingredient":
        return cls(
            id=str(d["id"]),
            name=d["name"],
            allergens=d.get("allergens", []) or [],
            may_contain=d.get("may_contain", []) or [],
            cross_contact=bool(d.get("cross_contact", False)),
            created_at=d.get("created_at", "") or "",
            updated_at=d.get("updated_at", "") or "",
        )


@dataclass
class SupplierItem:
    """Pre-made product; cross-contact is not tracked at this granularity."""
    id: str
    name: str
    supplier: str = ""
    allergens: list[str] = field(default_factory=list)
    may_contain: list[str] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "supplier": self.supplier,
            "allergens": list(self.allergens),
            "may_contain": list(self.may_contain),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "SupplierItem":
        return cls(
            id=str(d["id"]),
            name=d["name"],
            supplier=d.get("supplier", "") or "",
            allergens=d.get("allergens", []) or [],
            may_contain=d.get("may_contain", []) or [],
            created_at=d.get("created_at", "") or "",
            updated_at=d.get("updated_at", "") or "",
        )


@dataclass
class Component:
    id: str
    name: str
    # Derived from constituents at save time; never edited directly
    allergens: list[str] = field(default_factory=list)
    cross_contact: bool = False
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "allergens": list(self.allergens),
            "cross_contact": self.cross_contact,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Component":
        return cls(
            id=str(d["id"]),
            name=d["name"],
            allergens=d.get("allergens", []) or [],
            cross_contact=bool(d.get("cross_contact", False)),
            created_at=d.get("created_at", "") or "",
            updated_at=d.get("updated_at", "") or "",
        )


@dataclass
class Dish:
    id: str
    name: str
    # Name snapshot, not a reference to stations.id
    station: str = ""
    allergens: list[str] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "station": self.station,
            "allergens": list(self.allergens),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Dish":
        return cls(
            id=str(d["id"]),
            name=d["name"],
            station=d.get("station", "") or "",
            allergens=d.get("allergens", []) or [],
            created_at=d.get("created_at", "") or "",
            updated_at=d.get("updated_at", "") or "",
        )


@dataclass
class Station:
    id: str
    name: str
    display_order: int = 0
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "display_order": self.display_order,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Station":
        return cls(
            id=str(d["id"]),
            name=d["name"],
            display_order=int(d.get("display_order", 0) or 0),
            created_at=d.get("created_at", "") or "",
            updated_at=d.get("updated_at", "") or "",
        )


@dataclass
class ItemRef:
    """A constituent as submitted by staff: which record, and whether the dish can go without it."""
    id: str
    type: ItemType
    removable: bool = False
    quantity: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "removable": self.removable,
            "quantity": self.quantity,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "ItemRef":
        t = d.get("type", "ingredient")
        if isinstance(t, str):
            t = ItemType(t)
        return cls(
            id=str(d["id"]),
            type=t,
            removable=bool(d.get("removable", False)),
            quantity=d.get("quantity", "") or "",
        )


@dataclass
class Link:
    """One composition row, normalized to parent/child regardless of table column names."""
    parent_id: str
    child_id: str
    removable: bool = False
    quantity: str = ""
    order_index: int = 0


@dataclass
class Matrix:
    id: str
    name: str
    type: MatrixType
    station: Optional[str] = None
    dish_ids: list[str] = field(default_factory=list)
    # False until persisted by an explicit save
    saved: bool = False
    created_at: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "station": self.station,
            "dish_ids": list(self.dish_ids),
            "saved": self.saved,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Matrix":
        t = d.get("type", "feature")
        if isinstance(t, str):
            t = MatrixType(t)
        return cls(
            id=str(d["id"]),
            name=d["name"],
            type=t,
            station=d.get("station") or None,
            dish_ids=[str(x) for x in d.get("dish_ids", []) or []],
            saved=bool(d.get("saved", False)),
            created_at=d.get("created_at", "") or "",
        )
