"""
Allergen aggregation: derive "contains" and "may contain" sets from constituents.

- Ingredient / supplier item: contains = its own allergens.
- Component: contains = union over children, recursing into child components.
  Depth-first with the ancestor path; revisiting an ancestor raises CycleDetected.
- Dish: contains = persisted dish.allergens (derived at save time by derive_dish_contains).
  may_contain = direct ingredient/supplier-item may_contain minus contains.
  Components do not propagate may_contain.
Missing children (dangling links) contribute nothing.
"""
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence, TYPE_CHECKING
import logging

from core.allergens import AllergenCatalog, DEFAULT_CATALOG
from core.errors import CycleDetected, EntityNotFound
from core.models.entities import ItemType

if TYPE_CHECKING:
    from core.store.snapshot import StoreSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AllergenProfile:
    contains: list[str] = field(default_factory=list)
    may_contain: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"contains": list(self.contains), "may_contain": list(self.may_contain)}


class AllergenAggregator:
    """Pure computation over one snapshot. Component results are memoised per instance."""

    def __init__(self, snapshot: "StoreSnapshot", catalog: AllergenCatalog = DEFAULT_CATALOG):
        self._snap = snapshot
        self._catalog = catalog
        self._memo: dict[str, frozenset[str]] = {}

    def _label(self, component_id: str) -> str:
        comp = self._snap.components.get(component_id)
        return comp.name if comp else component_id

    def _raise_cycle(self, path: Sequence[str], again: str) -> None:
        start = list(path).index(again)
        cycle = [self._label(c) for c in list(path)[start:]] + [self._label(again)]
        logger.error("AGGREGATION cycle detected path=%s", cycle)
        raise CycleDetected(cycle)

    def _item_allergens(self, item_type: ItemType, item_id: str, path: tuple[str, ...]) -> frozenset[str]:
        if item_type == ItemType.COMPONENT:
            if item_id not in self._snap.components:
                return frozenset()
            return self._component_contains(item_id, path)
        rec = self._snap.get(item_type, item_id)
        return frozenset(rec.allergens) if rec is not None else frozenset()

    def _component_contains(self, component_id: str, path: tuple[str, ...]) -> frozenset[str]:
        if component_id in path:
            self._raise_cycle(path, component_id)
        if component_id in self._memo:
            return self._memo[component_id]
        here = path + (component_id,)
        acc: set[str] = set()
        for item_type, link in self._snap.component_children(component_id):
            acc |= self._item_allergens(item_type, link.child_id, here)
        result = frozenset(acc)
        self._memo[component_id] = result
        return result

    def component_contains(self, component_id: str) -> list[str]:
        if component_id not in self._snap.components:
            raise EntityNotFound("component", component_id)
        return self._catalog.ordered(self._component_contains(component_id, ()))

    def contains_of(
        self,
        items: Iterable[tuple[ItemType, str]],
        parent_id: Optional[str] = None,
    ) -> list[str]:
        """
        Union of effective allergens for a prospective constituent set (before it is saved).
        parent_id: the component being edited, so a child that leads back to it is a cycle.
        """
        path: tuple[str, ...] = (parent_id,) if parent_id else ()
        acc: set[str] = set()
        for item_type, item_id in items:
            acc |= self._item_allergens(item_type, item_id, path)
        return self._catalog.ordered(acc)

    def derive_dish_contains(self, dish_id: str) -> list[str]:
        """Flattened union over the dish's current constituents (the value persisted as dish.allergens)."""
        return self.contains_of(
            (item_type, link.child_id) for item_type, link in self._snap.dish_constituents(dish_id)
        )

    def contains(self, entity_id: str) -> list[str]:
        if entity_id in self._snap.dishes:
            return self._catalog.ordered(self._snap.dishes[entity_id].allergens)
        if entity_id in self._snap.components:
            return self.component_contains(entity_id)
        for item_type in (ItemType.INGREDIENT, ItemType.SUPPLIER_ITEM):
            rec = self._snap.get(item_type, entity_id)
            if rec is not None:
                return self._catalog.ordered(rec.allergens)
        raise EntityNotFound("entity", entity_id)

    def may_contain(self, dish_id: str) -> list[str]:
        dish = self._snap.dishes.get(dish_id)
        if dish is None:
            raise EntityNotFound("dish", dish_id)
        contains = set(dish.allergens)
        acc: set[str] = set()
        for item_type, link in self._snap.dish_constituents(dish_id):
            if item_type == ItemType.COMPONENT:
                continue
            rec = self._snap.get(item_type, link.child_id)
            if rec is not None:
                acc.update(a for a in rec.may_contain if a not in contains)
        return self._catalog.ordered(acc)

    def aggregate(self, entity_id: str) -> AllergenProfile:
        if entity_id in self._snap.dishes:
            return AllergenProfile(contains=self.contains(entity_id), may_contain=self.may_contain(entity_id))
        if entity_id in self._snap.components:
            return AllergenProfile(contains=self.component_contains(entity_id))
        raise EntityNotFound("component or dish", entity_id)
