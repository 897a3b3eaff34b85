"""
Read-only batch of every table, taken once per screen/request.
The aggregation and decision engines compute over this and never touch the store.
"""
from typing import Optional, Union

from core.models.entities import (
    Component,
    Dish,
    Ingredient,
    ItemType,
    Link,
    Matrix,
    Station,
    SupplierItem,
)
from core.store import tables as t

Record = Union[Ingredient, SupplierItem, Component]


def link_from_row(table: t.LinkTable, row: dict) -> Link:
    return Link(
        parent_id=str(row[table.parent_col]),
        child_id=str(row[table.child_col]),
        removable=bool(row.get("removable", False)) if table.has_removable else False,
        quantity=row.get("quantity", "") or "",
        order_index=int(row.get("order_index", 0) or 0),
    )


class StoreSnapshot:
    def __init__(
        self,
        ingredients: Optional[list[Ingredient]] = None,
        supplier_items: Optional[list[SupplierItem]] = None,
        components: Optional[list[Component]] = None,
        dishes: Optional[list[Dish]] = None,
        stations: Optional[list[Station]] = None,
        links: Optional[dict[str, list[Link]]] = None,
        matrices: Optional[list[Matrix]] = None,
    ):
        self.ingredients: dict[str, Ingredient] = {i.id: i for i in ingredients or []}
        self.supplier_items: dict[str, SupplierItem] = {s.id: s for s in supplier_items or []}
        self.components: dict[str, Component] = {c.id: c for c in components or []}
        self.dishes: dict[str, Dish] = {d.id: d for d in dishes or []}
        self.stations: dict[str, Station] = {s.id: s for s in stations or []}
        self.matrices: dict[str, Matrix] = {m.id: m for m in matrices or []}
        self.links: dict[str, list[Link]] = {lt.name: [] for lt in t.LINK_TABLES}
        for name, rows in (links or {}).items():
            self.links[name] = list(rows)
        self._by_parent: dict[str, dict[str, list[Link]]] = {}
        for name, rows in self.links.items():
            index: dict[str, list[Link]] = {}
            for link in rows:
                index.setdefault(link.parent_id, []).append(link)
            self._by_parent[name] = index

    @classmethod
    def from_rows(cls, rows: dict[str, list[dict]]) -> "StoreSnapshot":
        """Build from raw table rows (table name -> rows), e.g. the result of parallel selects."""
        links = {
            lt.name: [link_from_row(lt, r) for r in rows.get(lt.name, [])]
            for lt in t.LINK_TABLES
        }
        matrices = []
        order: dict[str, list[Link]] = {}
        for link in links[t.MATRIX_DISHES.name]:
            order.setdefault(link.parent_id, []).append(link)
        for r in rows.get(t.MATRICES, []):
            dish_links = sorted(order.get(str(r["id"]), []), key=lambda l: l.order_index)
            matrices.append(Matrix.from_dict({
                **r,
                "dish_ids": [l.child_id for l in dish_links],
                "saved": True,
            }))
        return cls(
            ingredients=[Ingredient.from_dict(r) for r in rows.get(t.INGREDIENTS, [])],
            supplier_items=[SupplierItem.from_dict(r) for r in rows.get(t.SUPPLIER_ITEMS, [])],
            components=[Component.from_dict(r) for r in rows.get(t.COMPONENTS, [])],
            dishes=[Dish.from_dict(r) for r in rows.get(t.DISHES, [])],
            stations=[Station.from_dict(r) for r in rows.get(t.STATIONS, [])],
            links=links,
            matrices=matrices,
        )

    def get(self, item_type: ItemType, item_id: str) -> Optional[Record]:
        if item_type == ItemType.INGREDIENT:
            return self.ingredients.get(item_id)
        if item_type == ItemType.SUPPLIER_ITEM:
            return self.supplier_items.get(item_id)
        return self.components.get(item_id)

    def children(self, table: t.LinkTable, parent_id: str) -> list[Link]:
        return list(self._by_parent.get(table.name, {}).get(parent_id, []))

    def component_children(self, component_id: str) -> list[tuple[ItemType, Link]]:
        out = []
        for item_type, table in t.COMPONENT_LINKS.items():
            out.extend((item_type, link) for link in self.children(table, component_id))
        return out

    def dish_constituents(self, dish_id: str) -> list[tuple[ItemType, Link]]:
        """Constituents in the order the service screen lists them: ingredients, supplier items, components."""
        out = []
        for item_type, table in t.DISH_LINKS.items():
            out.extend((item_type, link) for link in self.children(table, dish_id))
        return out

    def referencing(self, kind: str, entity_id: str) -> list[str]:
        """Names of link tables holding a row that points at this entity."""
        return [
            lt.name for lt in t.links_referencing(kind)
            if any(link.child_id == entity_id for link in self.links.get(lt.name, []))
        ]

    def component_parents(self, component_id: str) -> list[str]:
        return [l.parent_id for l in self.links[t.COMPONENT_COMPONENTS.name] if l.child_id == component_id]

    def dishes_sorted(self) -> list[Dish]:
        return sorted(self.dishes.values(), key=lambda d: d.name)

    def stations_sorted(self) -> list[Station]:
        return sorted(self.stations.values(), key=lambda s: (s.display_order, s.name))
