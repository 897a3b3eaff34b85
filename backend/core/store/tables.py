"""
Table names and composition-link column layout, shared by both backends.
"""
from dataclasses import dataclass
from typing import Optional

from core.models.entities import ItemType

INGREDIENTS = "ingredients"
SUPPLIER_ITEMS = "supplier_items"
COMPONENTS = "components"
DISHES = "dishes"
STATIONS = "stations"
MATRICES = "allergy_matrices"

ENTITY_TABLES = (INGREDIENTS, SUPPLIER_ITEMS, COMPONENTS, DISHES, STATIONS, MATRICES)

# Entity kind (as used in error messages) -> table
KIND_TABLE = {
    "ingredient": INGREDIENTS,
    "supplier_item": SUPPLIER_ITEMS,
    "component": COMPONENTS,
    "dish": DISHES,
    "station": STATIONS,
    "matrix": MATRICES,
}

ITEM_TYPE_TABLE = {
    ItemType.INGREDIENT: INGREDIENTS,
    ItemType.SUPPLIER_ITEM: SUPPLIER_ITEMS,
    ItemType.COMPONENT: COMPONENTS,
}


@dataclass(frozen=True)
class LinkTable:
    name: str
    parent_kind: str
    parent_col: str
    child_kind: str
    child_col: str
    has_removable: bool = False
    has_order: bool = False
    child_type: Optional[ItemType] = None


COMPONENT_INGREDIENTS = LinkTable(
    "component_ingredients", "component", "component_id",
    "ingredient", "ingredient_id", child_type=ItemType.INGREDIENT,
)
COMPONENT_SUPPLIER_ITEMS = LinkTable(
    "component_supplier_items", "component", "component_id",
    "supplier_item", "supplier_item_id", child_type=ItemType.SUPPLIER_ITEM,
)
COMPONENT_COMPONENTS = LinkTable(
    "component_components", "component", "parent_component_id",
    "component", "child_component_id", child_type=ItemType.COMPONENT,
)
DISH_INGREDIENTS = LinkTable(
    "dish_ingredients", "dish", "dish_id",
    "ingredient", "ingredient_id", has_removable=True, child_type=ItemType.INGREDIENT,
)
DISH_SUPPLIER_ITEMS = LinkTable(
    "dish_supplier_items", "dish", "dish_id",
    "supplier_item", "supplier_item_id", has_removable=True, child_type=ItemType.SUPPLIER_ITEM,
)
DISH_COMPONENTS = LinkTable(
    "dish_components", "dish", "dish_id",
    "component", "component_id", has_removable=True, child_type=ItemType.COMPONENT,
)
MATRIX_DISHES = LinkTable(
    "matrix_dishes", "matrix", "matrix_id",
    "dish", "dish_id", has_order=True,
)

COMPONENT_LINKS = {
    ItemType.INGREDIENT: COMPONENT_INGREDIENTS,
    ItemType.SUPPLIER_ITEM: COMPONENT_SUPPLIER_ITEMS,
    ItemType.COMPONENT: COMPONENT_COMPONENTS,
}
DISH_LINKS = {
    ItemType.INGREDIENT: DISH_INGREDIENTS,
    ItemType.SUPPLIER_ITEM: DISH_SUPPLIER_ITEMS,
    ItemType.COMPONENT: DISH_COMPONENTS,
}

LINK_TABLES = (
    COMPONENT_INGREDIENTS,
    COMPONENT_SUPPLIER_ITEMS,
    COMPONENT_COMPONENTS,
    DISH_INGREDIENTS,
    DISH_SUPPLIER_ITEMS,
    DISH_COMPONENTS,
    MATRIX_DISHES,
)
LINK_TABLES_BY_NAME = {t.name: t for t in LINK_TABLES}


def links_referencing(kind: str) -> list[LinkTable]:
    """Link tables whose child column points at `kind` (these block deletion)."""
    return [t for t in LINK_TABLES if t.child_kind == kind]
