"""
Backup export/import as one JSON document:
{ingredients, suppliers, components, dishes, stations, matrices, exportedAt}

Import merges into the current store through the normal create APIs:
- a record whose name already exists is skipped (references to it resolve to the existing record)
- references are remapped from exported ids to the new ids; unresolvable ones are dropped
- a record the create API rejects is reported in `failed`, the rest of the import continues
"""
from dataclasses import dataclass, field
from typing import Any, Union
import json
import logging

from core.errors import AllergyCheckError, UniquenessViolation, ValidationError
from core.models.entities import ItemType, Matrix, MatrixType
from core.store.backend import utc_now
from core.store.entity_store import EntityStore

logger = logging.getLogger(__name__)

# Per-record rejections; store outages abort the import
_REJECTED = (ValidationError, UniquenessViolation)

SECTIONS = ("ingredients", "suppliers", "components", "dishes", "stations", "matrices")


@dataclass
class ImportSummary:
    created: dict[str, int] = field(default_factory=lambda: {s: 0 for s in SECTIONS})
    skipped: dict[str, int] = field(default_factory=lambda: {s: 0 for s in SECTIONS})
    failed: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"created": dict(self.created), "skipped": dict(self.skipped), "failed": list(self.failed)}


def backup_filename(exported_at: str) -> str:
    return f"allergycheck-backup-{exported_at[:10]}.json"


def export_document(store: EntityStore) -> dict:
    snap = store.snapshot()
    components = []
    for comp in sorted(snap.components.values(), key=lambda c: c.name):
        d = comp.to_dict()
        d["items"] = [r.to_dict() for r in store.component_items(comp.id)]
        components.append(d)
    dishes = []
    for dish in snap.dishes_sorted():
        d = dish.to_dict()
        d["items"] = [r.to_dict() for r in store.dish_items(dish.id)]
        dishes.append(d)
    doc = {
        "ingredients": [i.to_dict() for i in sorted(snap.ingredients.values(), key=lambda i: i.name)],
        "suppliers": [s.to_dict() for s in sorted(snap.supplier_items.values(), key=lambda s: s.name)],
        "components": components,
        "dishes": dishes,
        "stations": [s.to_dict() for s in snap.stations_sorted()],
        "matrices": [m.to_dict() for m in store.list_matrices()],
        "exportedAt": utc_now(),
    }
    logger.info(
        "BACKUP_EXPORT %s",
        " ".join(f"{s}={len(doc[s])}" for s in SECTIONS),
    )
    return doc


def load_document(raw: Union[str, bytes, dict]) -> dict:
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Invalid file format: {e.msg}", field="document")
    if not isinstance(raw, dict):
        raise ValidationError("Invalid file format: expected a JSON object", field="document")
    return raw


class _Importer:
    def __init__(self, store: EntityStore, doc: dict):
        self.store = store
        self.doc = doc
        self.summary = ImportSummary()
        # exported id -> id in this store, per item type
        self.ids: dict[Any, dict[str, str]] = {t: {} for t in ItemType}
        self.dish_ids: dict[str, str] = {}

    def _section(self, name: str) -> list[dict]:
        rows = self.doc.get(name) or []
        return [r for r in rows if isinstance(r, dict)]

    def _fail(self, section: str, name: str, error: AllergyCheckError) -> None:
        logger.warning("BACKUP_IMPORT rejected section=%s name=%s error=%s", section, name, error)
        self.summary.failed.append(f"{section}: {name}: {error}")

    def _remap(self, items: list) -> list[dict]:
        out = []
        for raw in items or []:
            if not isinstance(raw, dict) or "id" not in raw:
                continue
            try:
                item_type = ItemType(raw.get("type", "ingredient"))
            except ValueError:
                continue
            new_id = self.ids[item_type].get(str(raw["id"]))
            if new_id is None:
                continue
            out.append({**raw, "id": new_id, "type": item_type.value})
        return out

    def _leaf(self, section: str, item_type: ItemType, existing: dict[str, str], create) -> None:
        for row in self._section(section):
            name = (row.get("name") or "").strip()
            old_id = str(row.get("id", name))
            if name in existing:
                self.ids[item_type][old_id] = existing[name]
                self.summary.skipped[section] += 1
                continue
            try:
                created = create(row)
            except _REJECTED as e:
                self._fail(section, name, e)
                continue
            existing[name] = created.id
            self.ids[item_type][old_id] = created.id
            self.summary.created[section] += 1

    def run(self) -> ImportSummary:
        store = self.store
        self._leaf(
            "ingredients", ItemType.INGREDIENT,
            {i.name: i.id for i in store.list_ingredients()},
            lambda r: store.create_ingredient(
                r.get("name"), r.get("allergens") or [], r.get("may_contain") or [], bool(r.get("cross_contact")),
            ),
        )
        self._leaf(
            "suppliers", ItemType.SUPPLIER_ITEM,
            {s.name: s.id for s in store.list_supplier_items()},
            lambda r: store.create_supplier_item(
                r.get("name"), r.get("supplier") or "", r.get("allergens") or [], r.get("may_contain") or [],
            ),
        )
        self._stations()
        self._components()
        self._dishes()
        self._matrices()
        logger.info(
            "BACKUP_IMPORT created=%s skipped=%s failed=%d",
            self.summary.created, self.summary.skipped, len(self.summary.failed),
        )
        return self.summary

    def _stations(self) -> None:
        existing = {s.name for s in self.store.list_stations()}
        ordered = []
        for row in self._section("stations"):
            try:
                ordered.append((int(row.get("display_order") or 0), row))
            except (TypeError, ValueError):
                self._fail(
                    "stations", (row.get("name") or "").strip(),
                    ValidationError(f"display_order must be an integer, got {row.get('display_order')!r}",
                                    field="display_order"),
                )
        ordered.sort(key=lambda pair: pair[0])
        for _, row in ordered:
            name = (row.get("name") or "").strip()
            if name in existing:
                self.summary.skipped["stations"] += 1
                continue
            try:
                self.store.create_station(name)
            except _REJECTED as e:
                self._fail("stations", name, e)
                continue
            existing.add(name)
            self.summary.created["stations"] += 1

    def _components(self) -> None:
        """Components can nest, so create those whose child components are resolved first."""
        existing = {c.name: c.id for c in self.store.list_components()}
        exported_ids = {str(r.get("id")) for r in self._section("components")}
        pending = []
        for row in self._section("components"):
            name = (row.get("name") or "").strip()
            if name in existing:
                self.ids[ItemType.COMPONENT][str(row.get("id"))] = existing[name]
                self.summary.skipped["components"] += 1
            else:
                pending.append(row)

        progress = True
        while pending and progress:
            progress = False
            waiting = []
            for row in pending:
                child_ids = {
                    str(i.get("id")) for i in row.get("items") or []
                    if isinstance(i, dict) and i.get("type") == ItemType.COMPONENT.value
                }
                unresolved = {c for c in child_ids if c in exported_ids and c not in self.ids[ItemType.COMPONENT]}
                if unresolved:
                    waiting.append(row)
                    continue
                progress = True
                name = (row.get("name") or "").strip()
                try:
                    created = self.store.create_component(
                        name, self._remap(row.get("items")), bool(row.get("cross_contact")),
                    )
                except _REJECTED as e:
                    self._fail("components", name, e)
                    continue
                self.ids[ItemType.COMPONENT][str(row.get("id"))] = created.id
                self.summary.created["components"] += 1
            pending = waiting
        for row in pending:
            self._fail("components", row.get("name") or "?", ValidationError("nested components could not be resolved"))

    def _dishes(self) -> None:
        existing = {d.name: d.id for d in self.store.list_dishes()}
        for row in self._section("dishes"):
            name = (row.get("name") or "").strip()
            old_id = str(row.get("id", name))
            if name in existing:
                self.dish_ids[old_id] = existing[name]
                self.summary.skipped["dishes"] += 1
                continue
            try:
                created = self.store.create_dish(name, row.get("station") or "", self._remap(row.get("items")))
            except _REJECTED as e:
                self._fail("dishes", name, e)
                continue
            existing[name] = created.id
            self.dish_ids[old_id] = created.id
            self.summary.created["dishes"] += 1

    def _matrices(self) -> None:
        existing = {(m.name, m.type) for m in self.store.list_matrices()}
        for row in self._section("matrices"):
            name = (row.get("name") or "").strip()
            try:
                matrix_type = MatrixType(row.get("type", "feature"))
            except ValueError:
                self._fail("matrices", name, ValidationError(f"Unknown matrix type: {row.get('type')}"))
                continue
            if (name, matrix_type) in existing:
                self.summary.skipped["matrices"] += 1
                continue
            dish_ids = [self.dish_ids[str(d)] for d in row.get("dish_ids") or [] if str(d) in self.dish_ids]
            matrix = Matrix(id="", name=name, type=matrix_type, station=row.get("station"), dish_ids=dish_ids)
            try:
                self.store.save_matrix(matrix)
            except _REJECTED as e:
                self._fail("matrices", name, e)
                continue
            existing.add((name, matrix_type))
            self.summary.created["matrices"] += 1


def import_document(store: EntityStore, raw: Union[str, bytes, dict]) -> ImportSummary:
    """Merge a backup document into the store. Invalid JSON or a non-object raises ValidationError."""
    return _Importer(store, load_document(raw)).run()
