"""
Entity store: CRUD over ingredients, supplier items, components, dishes, stations and matrices,
with name uniqueness, referential-integrity checks on delete, and derived-allergen recomputation.

Constituent updates are delete-all-then-insert per parent. This is not atomic: an observer can
briefly see a parent with no links, and a failure mid-way leaves the parent with a partial set.
Accepted under the single-user assumption; the caller reports the failure and the user retries.
"""
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, Optional, Sequence
import logging

from core.allergens import AllergenCatalog, DEFAULT_CATALOG
from core.config import get_snapshot_workers
from core.errors import (
    EntityNotFound,
    ReferentialIntegrityError,
    TransientStoreError,
    UniquenessViolation,
    ValidationError,
)
from core.evaluation.aggregation import AllergenAggregator
from core.models.entities import (
    Component,
    Dish,
    Ingredient,
    ItemRef,
    ItemType,
    Matrix,
    Station,
    SupplierItem,
)
from core.store import tables as t
from core.store.backend import TableBackend, utc_now
from core.store.reorder import ReorderResult, move_item
from core.store.snapshot import StoreSnapshot, link_from_row

logger = logging.getLogger(__name__)

_ALL_TABLES = t.ENTITY_TABLES + tuple(lt.name for lt in t.LINK_TABLES)


class EntityStore:
    def __init__(
        self,
        backend: TableBackend,
        catalog: AllergenCatalog = DEFAULT_CATALOG,
        snapshot_workers: Optional[int] = None,
    ):
        self.backend = backend
        self.catalog = catalog
        self._workers = snapshot_workers or get_snapshot_workers()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_ingredients(self) -> list[Ingredient]:
        return [Ingredient.from_dict(r) for r in self.backend.select(t.INGREDIENTS, order_by="name")]

    def list_supplier_items(self) -> list[SupplierItem]:
        return [SupplierItem.from_dict(r) for r in self.backend.select(t.SUPPLIER_ITEMS, order_by="name")]

    def list_components(self) -> list[Component]:
        return [Component.from_dict(r) for r in self.backend.select(t.COMPONENTS, order_by="name")]

    def list_dishes(self) -> list[Dish]:
        return [Dish.from_dict(r) for r in self.backend.select(t.DISHES, order_by="name")]

    def list_stations(self) -> list[Station]:
        return [Station.from_dict(r) for r in self.backend.select(t.STATIONS, order_by="display_order")]

    def links(self, table: t.LinkTable):
        return [link_from_row(table, r) for r in self.backend.select(table.name)]

    def _get_row(self, kind: str, entity_id: str) -> dict:
        for row in self.backend.select(t.KIND_TABLE[kind]):
            if str(row.get("id")) == entity_id:
                return row
        raise EntityNotFound(kind, entity_id)

    def get_ingredient(self, ingredient_id: str) -> Ingredient:
        return Ingredient.from_dict(self._get_row("ingredient", ingredient_id))

    def get_supplier_item(self, item_id: str) -> SupplierItem:
        return SupplierItem.from_dict(self._get_row("supplier_item", item_id))

    def get_component(self, component_id: str) -> Component:
        return Component.from_dict(self._get_row("component", component_id))

    def get_dish(self, dish_id: str) -> Dish:
        return Dish.from_dict(self._get_row("dish", dish_id))

    def get_station(self, station_id: str) -> Station:
        return Station.from_dict(self._get_row("station", station_id))

    def component_items(self, component_id: str) -> list[ItemRef]:
        return self._items_for(t.COMPONENT_LINKS, component_id)

    def dish_items(self, dish_id: str) -> list[ItemRef]:
        return self._items_for(t.DISH_LINKS, dish_id)

    def _items_for(self, link_map: dict, parent_id: str) -> list[ItemRef]:
        out = []
        for item_type, table in link_map.items():
            for link in self.links(table):
                if link.parent_id == parent_id:
                    out.append(ItemRef(id=link.child_id, type=item_type, removable=link.removable, quantity=link.quantity))
        return out

    def list_matrices(self) -> list[Matrix]:
        """Saved matrices, newest first, dishes in order_index order."""
        snap = StoreSnapshot.from_rows({
            t.MATRICES: self.backend.select(t.MATRICES, order_by="created_at", desc=True),
            t.MATRIX_DISHES.name: self.backend.select(t.MATRIX_DISHES.name),
        })
        return list(snap.matrices.values())

    def snapshot(self) -> StoreSnapshot:
        """
        Fetch every table as one batch, independent reads in parallel.
        Treated as consistent enough for one request; concurrent edits are not guarded.
        """
        with ThreadPoolExecutor(max_workers=min(self._workers, len(_ALL_TABLES))) as pool:
            futures = {name: pool.submit(self.backend.select, name) for name in _ALL_TABLES}
            rows = {name: f.result() for name, f in futures.items()}
        snap = StoreSnapshot.from_rows(rows)
        logger.info(
            "STORE_SNAPSHOT ingredients=%d supplier_items=%d components=%d dishes=%d stations=%d matrices=%d",
            len(snap.ingredients), len(snap.supplier_items), len(snap.components),
            len(snap.dishes), len(snap.stations), len(snap.matrices),
        )
        return snap

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _clean_name(self, name: Optional[str], field: str = "name") -> str:
        cleaned = (name or "").strip()
        if not cleaned:
            raise ValidationError(f"{field} is required", field=field)
        return cleaned

    def _clean_allergens(self, values: Optional[Iterable[str]], field: str) -> list[str]:
        values = list(values or [])
        unknown = self.catalog.unknown(values)
        if unknown:
            raise ValidationError(f"Unknown allergen(s) in {field}: {', '.join(unknown)}", field=field)
        return self.catalog.ordered(values)

    def _check_unique(self, kind: str, name: str, exclude_id: Optional[str] = None) -> None:
        for row in self.backend.select(t.KIND_TABLE[kind]):
            if row.get("name") == name and str(row.get("id")) != exclude_id:
                logger.info("STORE_DUPLICATE kind=%s name=%s", kind, name)
                raise UniquenessViolation(kind, name)

    def _clean_items(self, snap: StoreSnapshot, items: Sequence, kind: str) -> list[ItemRef]:
        try:
            refs = [i if isinstance(i, ItemRef) else ItemRef.from_dict(i) for i in items or []]
        except (KeyError, ValueError) as e:
            raise ValidationError(f"Malformed {kind} item: {e}", field="items")
        if not refs:
            raise ValidationError(f"A {kind} needs at least one ingredient, supplier item or component", field="items")
        seen = set()
        out = []
        for ref in refs:
            if snap.get(ref.type, ref.id) is None:
                raise ValidationError(f"Unknown {ref.type.value.replace('_', ' ')}: {ref.id}", field="items")
            key = (ref.type, ref.id)
            if key in seen:
                continue
            seen.add(key)
            if kind == "component":
                ref = ItemRef(id=ref.id, type=ref.type, removable=False, quantity=ref.quantity)
            out.append(ref)
        return out

    def _check_deletable(self, kind: str, entity_id: str) -> None:
        snap = self.snapshot()
        referenced_by = snap.referencing(kind, entity_id)
        if referenced_by:
            logger.info("STORE_DELETE_BLOCKED kind=%s id=%s referenced_by=%s", kind, entity_id, referenced_by)
            raise ReferentialIntegrityError(kind, entity_id, referenced_by)

    # ------------------------------------------------------------------
    # Ingredients / supplier items
    # ------------------------------------------------------------------

    def create_ingredient(
        self,
        name: str,
        allergens: Iterable[str] = (),
        may_contain: Iterable[str] = (),
        cross_contact: bool = False,
    ) -> Ingredient:
        name = self._clean_name(name)
        row = {
            "name": name,
            "allergens": self._clean_allergens(allergens, "allergens"),
            "may_contain": self._clean_allergens(may_contain, "may_contain"),
            "cross_contact": bool(cross_contact),
        }
        self._check_unique("ingredient", name)
        created = Ingredient.from_dict(self.backend.insert(t.INGREDIENTS, [row])[0])
        logger.info("STORE_CREATE kind=ingredient id=%s name=%s allergens=%s", created.id, name, created.allergens)
        return created

    def update_ingredient(
        self,
        ingredient_id: str,
        name: Optional[str] = None,
        allergens: Optional[Iterable[str]] = None,
        may_contain: Optional[Iterable[str]] = None,
        cross_contact: Optional[bool] = None,
    ) -> Ingredient:
        current = self.get_ingredient(ingredient_id)
        values: dict = {"updated_at": utc_now()}
        if name is not None:
            values["name"] = self._clean_name(name)
            self._check_unique("ingredient", values["name"], exclude_id=ingredient_id)
        if allergens is not None:
            values["allergens"] = self._clean_allergens(allergens, "allergens")
        if may_contain is not None:
            values["may_contain"] = self._clean_allergens(may_contain, "may_contain")
        if cross_contact is not None:
            values["cross_contact"] = bool(cross_contact)
        updated = Ingredient.from_dict(self.backend.update(t.INGREDIENTS, ingredient_id, values))
        logger.info("STORE_UPDATE kind=ingredient id=%s fields=%s", ingredient_id, sorted(values))
        if updated.allergens != current.allergens:
            self.refresh_dependents(ItemType.INGREDIENT, ingredient_id)
        return updated

    def delete_ingredient(self, ingredient_id: str) -> None:
        self.get_ingredient(ingredient_id)
        self._check_deletable("ingredient", ingredient_id)
        self.backend.delete(t.INGREDIENTS, id=ingredient_id)
        logger.info("STORE_DELETE kind=ingredient id=%s", ingredient_id)

    def create_supplier_item(
        self,
        name: str,
        supplier: str = "",
        allergens: Iterable[str] = (),
        may_contain: Iterable[str] = (),
    ) -> SupplierItem:
        name = self._clean_name(name)
        row = {
            "name": name,
            "supplier": (supplier or "").strip(),
            "allergens": self._clean_allergens(allergens, "allergens"),
            "may_contain": self._clean_allergens(may_contain, "may_contain"),
        }
        self._check_unique("supplier_item", name)
        created = SupplierItem.from_dict(self.backend.insert(t.SUPPLIER_ITEMS, [row])[0])
        logger.info("STORE_CREATE kind=supplier_item id=%s name=%s supplier=%s", created.id, name, created.supplier)
        return created

    def update_supplier_item(
        self,
        item_id: str,
        name: Optional[str] = None,
        supplier: Optional[str] = None,
        allergens: Optional[Iterable[str]] = None,
        may_contain: Optional[Iterable[str]] = None,
    ) -> SupplierItem:
        current = self.get_supplier_item(item_id)
        values: dict = {"updated_at": utc_now()}
        if name is not None:
            values["name"] = self._clean_name(name)
            self._check_unique("supplier_item", values["name"], exclude_id=item_id)
        if supplier is not None:
            values["supplier"] = supplier.strip()
        if allergens is not None:
            values["allergens"] = self._clean_allergens(allergens, "allergens")
        if may_contain is not None:
            values["may_contain"] = self._clean_allergens(may_contain, "may_contain")
        updated = SupplierItem.from_dict(self.backend.update(t.SUPPLIER_ITEMS, item_id, values))
        logger.info("STORE_UPDATE kind=supplier_item id=%s fields=%s", item_id, sorted(values))
        if updated.allergens != current.allergens:
            self.refresh_dependents(ItemType.SUPPLIER_ITEM, item_id)
        return updated

    def delete_supplier_item(self, item_id: str) -> None:
        self.get_supplier_item(item_id)
        self._check_deletable("supplier_item", item_id)
        self.backend.delete(t.SUPPLIER_ITEMS, id=item_id)
        logger.info("STORE_DELETE kind=supplier_item id=%s", item_id)

    # ------------------------------------------------------------------
    # Components / dishes
    # ------------------------------------------------------------------

    def _replace_links(self, link_map: dict, parent_id: str, refs: list[ItemRef]) -> None:
        for table in link_map.values():
            self.backend.delete(table.name, **{table.parent_col: parent_id})
        for item_type, table in link_map.items():
            rows = []
            for ref in refs:
                if ref.type != item_type:
                    continue
                row = {table.parent_col: parent_id, table.child_col: ref.id}
                if ref.quantity:
                    row["quantity"] = ref.quantity
                if table.has_removable:
                    row["removable"] = ref.removable
                rows.append(row)
            if rows:
                self.backend.insert(table.name, rows)

    def create_component(self, name: str, items: Sequence, cross_contact: bool = False) -> Component:
        name = self._clean_name(name)
        snap = self.snapshot()
        refs = self._clean_items(snap, items, "component")
        self._check_unique("component", name)
        allergens = AllergenAggregator(snap, self.catalog).contains_of((r.type, r.id) for r in refs)
        row = {"name": name, "allergens": allergens, "cross_contact": bool(cross_contact)}
        created = Component.from_dict(self.backend.insert(t.COMPONENTS, [row])[0])
        self._replace_links(t.COMPONENT_LINKS, created.id, refs)
        logger.info(
            "STORE_CREATE kind=component id=%s name=%s items=%d allergens=%s",
            created.id, name, len(refs), allergens,
        )
        return created

    def update_component(
        self,
        component_id: str,
        name: Optional[str] = None,
        items: Optional[Sequence] = None,
        cross_contact: Optional[bool] = None,
    ) -> Component:
        current = self.get_component(component_id)
        values: dict = {"updated_at": utc_now()}
        if name is not None:
            values["name"] = self._clean_name(name)
            self._check_unique("component", values["name"], exclude_id=component_id)
        if cross_contact is not None:
            values["cross_contact"] = bool(cross_contact)
        refs = None
        if items is not None:
            snap = self.snapshot()
            refs = self._clean_items(snap, items, "component")
            if any(r.type == ItemType.COMPONENT and r.id == component_id for r in refs):
                raise ValidationError("A component cannot contain itself", field="items")
            # Raises CycleDetected before anything is written
            values["allergens"] = AllergenAggregator(snap, self.catalog).contains_of(
                ((r.type, r.id) for r in refs), parent_id=component_id,
            )
        updated = Component.from_dict(self.backend.update(t.COMPONENTS, component_id, values))
        if refs is not None:
            self._replace_links(t.COMPONENT_LINKS, component_id, refs)
        logger.info("STORE_UPDATE kind=component id=%s fields=%s", component_id, sorted(values))
        if updated.allergens != current.allergens:
            self.refresh_dependents(ItemType.COMPONENT, component_id)
        return updated

    def delete_component(self, component_id: str) -> None:
        self.get_component(component_id)
        self._check_deletable("component", component_id)
        for table in t.COMPONENT_LINKS.values():
            self.backend.delete(table.name, **{table.parent_col: component_id})
        self.backend.delete(t.COMPONENTS, id=component_id)
        logger.info("STORE_DELETE kind=component id=%s", component_id)

    def create_dish(self, name: str, station: str, items: Sequence) -> Dish:
        name = self._clean_name(name)
        station = self._clean_name(station, field="station")
        snap = self.snapshot()
        refs = self._clean_items(snap, items, "dish")
        self._check_unique("dish", name)
        allergens = AllergenAggregator(snap, self.catalog).contains_of((r.type, r.id) for r in refs)
        row = {"name": name, "station": station, "allergens": allergens}
        created = Dish.from_dict(self.backend.insert(t.DISHES, [row])[0])
        self._replace_links(t.DISH_LINKS, created.id, refs)
        logger.info(
            "STORE_CREATE kind=dish id=%s name=%s station=%s items=%d allergens=%s",
            created.id, name, station, len(refs), allergens,
        )
        return created

    def update_dish(
        self,
        dish_id: str,
        name: Optional[str] = None,
        station: Optional[str] = None,
        items: Optional[Sequence] = None,
    ) -> Dish:
        self.get_dish(dish_id)
        values: dict = {"updated_at": utc_now()}
        if name is not None:
            values["name"] = self._clean_name(name)
            self._check_unique("dish", values["name"], exclude_id=dish_id)
        if station is not None:
            values["station"] = self._clean_name(station, field="station")
        refs = None
        if items is not None:
            snap = self.snapshot()
            refs = self._clean_items(snap, items, "dish")
            values["allergens"] = AllergenAggregator(snap, self.catalog).contains_of((r.type, r.id) for r in refs)
        updated = Dish.from_dict(self.backend.update(t.DISHES, dish_id, values))
        if refs is not None:
            self._replace_links(t.DISH_LINKS, dish_id, refs)
        logger.info("STORE_UPDATE kind=dish id=%s fields=%s", dish_id, sorted(values))
        return updated

    def delete_dish(self, dish_id: str) -> None:
        self.get_dish(dish_id)
        self._check_deletable("dish", dish_id)
        for table in t.DISH_LINKS.values():
            self.backend.delete(table.name, **{table.parent_col: dish_id})
        self.backend.delete(t.DISHES, id=dish_id)
        logger.info("STORE_DELETE kind=dish id=%s", dish_id)

    # ------------------------------------------------------------------
    # Derived allergens
    # ------------------------------------------------------------------

    def refresh_dependents(self, item_type: ItemType, item_id: str) -> int:
        """
        Re-derive allergens of every component and dish that transitively uses this item.
        Returns the number of rows rewritten.
        """
        snap = self.snapshot()
        affected_components: set[str] = set()
        frontier = []
        if item_type == ItemType.COMPONENT:
            frontier.append(item_id)
        else:
            table = t.COMPONENT_LINKS[item_type]
            frontier.extend(l.parent_id for l in snap.links[table.name] if l.child_id == item_id)
        while frontier:
            cid = frontier.pop()
            if cid in affected_components:
                continue
            affected_components.add(cid)
            frontier.extend(snap.component_parents(cid))
        if item_type == ItemType.COMPONENT:
            affected_components.discard(item_id)

        affected_dishes = {
            l.parent_id for l in snap.links[t.DISH_LINKS[item_type].name] if l.child_id == item_id
        }
        comp_links = snap.links[t.DISH_COMPONENTS.name]
        affected_dishes |= {l.parent_id for l in comp_links if l.child_id in affected_components}
        return self._rewrite_derived(snap, affected_components, affected_dishes)

    def recompute_all(self) -> int:
        """Re-derive every component and dish (e.g. after an import)."""
        snap = self.snapshot()
        return self._rewrite_derived(snap, set(snap.components), set(snap.dishes))

    def _rewrite_derived(self, snap: StoreSnapshot, component_ids: set, dish_ids: set) -> int:
        agg = AllergenAggregator(snap, self.catalog)
        rewritten = 0
        now = utc_now()
        for cid in sorted(component_ids):
            comp = snap.components.get(cid)
            if comp is None:
                continue
            derived = agg.component_contains(cid)
            if derived != self.catalog.ordered(comp.allergens):
                self.backend.update(t.COMPONENTS, cid, {"allergens": derived, "updated_at": now})
                rewritten += 1
        for did in sorted(dish_ids):
            dish = snap.dishes.get(did)
            if dish is None:
                continue
            derived = agg.derive_dish_contains(did)
            if derived != self.catalog.ordered(dish.allergens):
                self.backend.update(t.DISHES, did, {"allergens": derived, "updated_at": now})
                rewritten += 1
        if rewritten:
            logger.info(
                "STORE_RECOMPUTE components=%d dishes=%d rewritten=%d",
                len(component_ids), len(dish_ids), rewritten,
            )
        return rewritten

    # ------------------------------------------------------------------
    # Stations
    # ------------------------------------------------------------------

    def create_station(self, name: str) -> Station:
        name = self._clean_name(name)
        self._check_unique("station", name)
        stations = self.list_stations()
        next_order = max((s.display_order for s in stations), default=-1) + 1
        created = Station.from_dict(
            self.backend.insert(t.STATIONS, [{"name": name, "display_order": next_order}])[0]
        )
        logger.info("STORE_CREATE kind=station id=%s name=%s display_order=%d", created.id, name, next_order)
        return created

    def update_station(self, station_id: str, name: str) -> Station:
        """Rename only. Dishes keep the station name they were saved with."""
        self.get_station(station_id)
        name = self._clean_name(name)
        self._check_unique("station", name, exclude_id=station_id)
        updated = Station.from_dict(
            self.backend.update(t.STATIONS, station_id, {"name": name, "updated_at": utc_now()})
        )
        logger.info("STORE_UPDATE kind=station id=%s name=%s", station_id, name)
        return updated

    def delete_station(self, station_id: str) -> None:
        """Dishes tagged with this station name are left as they are."""
        self.get_station(station_id)
        self.backend.delete(t.STATIONS, id=station_id)
        logger.info("STORE_DELETE kind=station id=%s", station_id)

    def move_station(self, from_index: int, to_index: int) -> ReorderResult:
        stations = self.list_stations()
        try:
            ordered = move_item(stations, from_index, to_index)
        except IndexError as e:
            raise ValidationError(str(e), field="from_index")
        return self.reorder_stations([s.id for s in ordered])

    def reorder_stations(self, ordered_ids: Sequence[str]) -> ReorderResult:
        """
        Phase 1: build the new order locally (always succeeds).
        Phase 2: persist display_order per station; a failure is reported, not raised,
        and leaves the stored order partially updated until the next reload.
        """
        stations = {s.id: s for s in self.list_stations()}
        unknown = [sid for sid in ordered_ids if sid not in stations]
        if unknown or len(ordered_ids) != len(stations) or len(set(ordered_ids)) != len(stations):
            raise ValidationError("Reorder must list every station exactly once", field="ordered_ids")
        ordered = []
        for idx, sid in enumerate(ordered_ids):
            st = stations[sid]
            ordered.append(Station(
                id=st.id, name=st.name, display_order=idx,
                created_at=st.created_at, updated_at=st.updated_at,
            ))
        result = ReorderResult(order=ordered)
        try:
            now = utc_now()
            for st in ordered:
                self.backend.update(t.STATIONS, st.id, {"display_order": st.display_order, "updated_at": now})
        except TransientStoreError as e:
            logger.error("STATION_REORDER persist failed error=%s", e)
            result.error = str(e)
            return result
        result.persisted = True
        logger.info("STATION_REORDER persisted count=%d", len(ordered))
        return result

    # ------------------------------------------------------------------
    # Matrices (header + ordered dish links)
    # ------------------------------------------------------------------

    def save_matrix(self, matrix: Matrix) -> Matrix:
        """
        Upsert the header, then replace all matrix_dishes rows (delete-then-insert).
        An unsaved matrix gets a store-assigned id. Every dish must still exist.
        """
        name = self._clean_name(matrix.name)
        known = {str(r.get("id")) for r in self.backend.select(t.DISHES)}
        missing = [d for d in matrix.dish_ids if d not in known]
        if missing:
            raise ValidationError(f"Unknown dish(es) in matrix: {', '.join(missing)}", field="dish_ids")
        header = {
            "name": name,
            "type": matrix.type.value,
            "station": matrix.station or None,
        }
        if matrix.saved:
            header["id"] = matrix.id
        saved_row = self.backend.upsert(t.MATRICES, header)
        matrix_id = str(saved_row["id"])
        table = t.MATRIX_DISHES
        self.backend.delete(table.name, **{table.parent_col: matrix_id})
        if matrix.dish_ids:
            self.backend.insert(table.name, [
                {table.parent_col: matrix_id, table.child_col: dish_id, "order_index": idx}
                for idx, dish_id in enumerate(matrix.dish_ids)
            ])
        logger.info("MATRIX_SAVE id=%s name=%s type=%s dishes=%d", matrix_id, name, matrix.type.value, len(matrix.dish_ids))
        return Matrix(
            id=matrix_id,
            name=name,
            type=matrix.type,
            station=matrix.station,
            dish_ids=list(matrix.dish_ids),
            saved=True,
            created_at=saved_row.get("created_at", "") or matrix.created_at,
        )

    def delete_matrix(self, matrix_id: str) -> None:
        table = t.MATRIX_DISHES
        self.backend.delete(table.name, **{table.parent_col: matrix_id})
        self.backend.delete(t.MATRICES, id=matrix_id)
        logger.info("MATRIX_DELETE id=%s", matrix_id)
