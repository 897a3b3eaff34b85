"""
AllergyCheck kitchen API.

Endpoints:
    GET  /                          Health check
    GET  /allergens                 Allergen catalog
    CRUD /ingredients, /supplier-items, /components, /dishes, /stations
    POST /stations/reorder          Persist a new station order
    GET  /dishes/{id}/allergens     Contains / may-contain profile
    POST /assess                    Serve / modify / deny decision for a guest
    GET  /menu-grid                 Dishes filtered by station, search, allergens
    /matrices ...                   Station / feature matrices, CSV for printing
    GET  /export, POST /import      JSON backup
"""
from fastapi import Depends, FastAPI, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel
from typing import List, Optional
import logging
from dotenv import load_dotenv
from pathlib import Path

# Load env vars
load_dotenv(Path(__file__).parent / ".env")

# Logger
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from core.allergens import DEFAULT_CATALOG
from core.backup import backup_filename, export_document, import_document
from core.config import get_seed_demo, get_store_backend, log_config
from core.errors import (
    AllergyCheckError,
    CycleDetected,
    EntityNotFound,
    ReferentialIntegrityError,
    TransientStoreError,
    UniquenessViolation,
    ValidationError,
)
from core.evaluation.aggregation import AllergenAggregator
from core.evaluation.decision_engine import DecisionEngine
from core.matrix import MatrixBuilder
from core.menu_grid import build_menu, filter_dishes
from core.models.entities import ItemRef, ItemType
from core.store import EntityStore, get_store

app = FastAPI(title="AllergyCheck Kitchen API")
log_config()

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

decision_engine = DecisionEngine(DEFAULT_CATALOG)
_matrix_builder: Optional[MatrixBuilder] = None


def get_kitchen_store() -> EntityStore:
    return get_store()


@app.on_event("startup")
def _seed_demo_kitchen():
    """Fill an empty in-memory store with the sample kitchen when SEED_DEMO is set."""
    if get_store_backend() != "memory" or not get_seed_demo():
        return
    from seed_data import seed_store
    seed_store(get_store())


def get_matrix_builder(store: EntityStore = Depends(get_kitchen_store)) -> MatrixBuilder:
    """One builder (and its unsaved matrices) per store."""
    global _matrix_builder
    if _matrix_builder is None or _matrix_builder.store is not store:
        _matrix_builder = MatrixBuilder(store, DEFAULT_CATALOG)
    return _matrix_builder


# --- Error mapping ---
_ERROR_STATUS = (
    (ValidationError, 422),
    (EntityNotFound, 404),
    (UniquenessViolation, 409),
    (ReferentialIntegrityError, 409),
    (CycleDetected, 500),
    (TransientStoreError, 503),
)


def _status_for(exc: AllergyCheckError) -> int:
    for exc_type, status in _ERROR_STATUS:
        if isinstance(exc, exc_type):
            return status
    return 500


@app.exception_handler(AllergyCheckError)
async def _kitchen_error(request: Request, exc: AllergyCheckError):
    status = _status_for(exc)
    logger.error("REQUEST_FAILED %s %s status=%d error=%s", request.method, request.url.path, status, exc)
    body = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, ValidationError) and exc.field:
        body["field"] = exc.field
    if isinstance(exc, CycleDetected):
        body["path"] = exc.path
    if isinstance(exc, ReferentialIntegrityError):
        body["referenced_by"] = exc.referenced_by
    return JSONResponse(status_code=status, content=body)


@app.exception_handler(Exception)
async def _unexpected_error(request: Request, exc: Exception):
    logger.error("REQUEST_FAILED %s %s unexpected error: %s", request.method, request.url.path, exc, exc_info=True)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# --- Request Models ---
class ItemRefBody(BaseModel):
    id: str
    type: ItemType
    removable: bool = False
    quantity: str = ""


class IngredientBody(BaseModel):
    name: str
    allergens: List[str] = []
    may_contain: List[str] = []
    cross_contact: bool = False


class IngredientPatch(BaseModel):
    name: Optional[str] = None
    allergens: Optional[List[str]] = None
    may_contain: Optional[List[str]] = None
    cross_contact: Optional[bool] = None


class SupplierItemBody(BaseModel):
    name: str
    supplier: str = ""
    allergens: List[str] = []
    may_contain: List[str] = []


class SupplierItemPatch(BaseModel):
    name: Optional[str] = None
    supplier: Optional[str] = None
    allergens: Optional[List[str]] = None
    may_contain: Optional[List[str]] = None


class ComponentBody(BaseModel):
    name: str
    items: List[ItemRefBody] = []
    cross_contact: bool = False


class ComponentPatch(BaseModel):
    name: Optional[str] = None
    items: Optional[List[ItemRefBody]] = None
    cross_contact: Optional[bool] = None


class DishBody(BaseModel):
    name: str
    station: str = ""
    items: List[ItemRefBody] = []


class DishPatch(BaseModel):
    name: Optional[str] = None
    station: Optional[str] = None
    items: Optional[List[ItemRefBody]] = None


class StationBody(BaseModel):
    name: str


class StationReorderBody(BaseModel):
    ordered_ids: List[str]


class AssessRequest(BaseModel):
    dish_id: str
    selected_allergens: List[str] = []
    severity: str = "moderate"
    cross_contact: bool = False


class StationMatrixBody(BaseModel):
    station: str


class FeatureMatrixBody(BaseModel):
    name: str


class MatrixDishBody(BaseModel):
    dish_id: str


class MatrixMoveBody(BaseModel):
    from_index: int
    to_index: int


# --- Helpers ---

def _refs(items: Optional[List[ItemRefBody]]) -> Optional[List[ItemRef]]:
    if items is None:
        return None
    return [ItemRef(id=i.id, type=i.type, removable=i.removable, quantity=i.quantity) for i in items]


def _with_items(record, items: List[ItemRef]) -> dict:
    d = record.to_dict()
    d["items"] = [i.to_dict() for i in items]
    return d


def _check_selected(selected: List[str]) -> None:
    unknown = DEFAULT_CATALOG.unknown(selected)
    if unknown:
        raise ValidationError(f"Unknown allergen(s): {', '.join(unknown)}", field="selected_allergens")


def _matrix_view(builder: MatrixBuilder, matrix_id: str) -> dict:
    d = builder.get(matrix_id).to_dict()
    d["rows"] = [r.to_dict() for r in builder.rows(matrix_id)]
    return d


# --- Catalog ---

@app.get("/")
def health():
    return {"status": "ok", "service": "AllergyCheck Kitchen"}


@app.get("/allergens")
def list_allergens():
    return DEFAULT_CATALOG.to_list()


# --- Ingredients ---

@app.get("/ingredients")
def list_ingredients(store: EntityStore = Depends(get_kitchen_store)):
    return [i.to_dict() for i in store.list_ingredients()]


@app.post("/ingredients")
def create_ingredient(body: IngredientBody, store: EntityStore = Depends(get_kitchen_store)):
    return store.create_ingredient(body.name, body.allergens, body.may_contain, body.cross_contact).to_dict()


@app.get("/ingredients/{ingredient_id}")
def get_ingredient(ingredient_id: str, store: EntityStore = Depends(get_kitchen_store)):
    return store.get_ingredient(ingredient_id).to_dict()


@app.put("/ingredients/{ingredient_id}")
def update_ingredient(ingredient_id: str, body: IngredientPatch, store: EntityStore = Depends(get_kitchen_store)):
    return store.update_ingredient(
        ingredient_id,
        name=body.name,
        allergens=body.allergens,
        may_contain=body.may_contain,
        cross_contact=body.cross_contact,
    ).to_dict()


@app.delete("/ingredients/{ingredient_id}")
def delete_ingredient(ingredient_id: str, store: EntityStore = Depends(get_kitchen_store)):
    store.delete_ingredient(ingredient_id)
    return {"status": "ok"}


# --- Supplier items ---

@app.get("/supplier-items")
def list_supplier_items(store: EntityStore = Depends(get_kitchen_store)):
    return [s.to_dict() for s in store.list_supplier_items()]


@app.post("/supplier-items")
def create_supplier_item(body: SupplierItemBody, store: EntityStore = Depends(get_kitchen_store)):
    return store.create_supplier_item(body.name, body.supplier, body.allergens, body.may_contain).to_dict()


@app.get("/supplier-items/{item_id}")
def get_supplier_item(item_id: str, store: EntityStore = Depends(get_kitchen_store)):
    return store.get_supplier_item(item_id).to_dict()


@app.put("/supplier-items/{item_id}")
def update_supplier_item(item_id: str, body: SupplierItemPatch, store: EntityStore = Depends(get_kitchen_store)):
    return store.update_supplier_item(
        item_id,
        name=body.name,
        supplier=body.supplier,
        allergens=body.allergens,
        may_contain=body.may_contain,
    ).to_dict()


@app.delete("/supplier-items/{item_id}")
def delete_supplier_item(item_id: str, store: EntityStore = Depends(get_kitchen_store)):
    store.delete_supplier_item(item_id)
    return {"status": "ok"}


# --- Components ---

@app.get("/components")
def list_components(store: EntityStore = Depends(get_kitchen_store)):
    return [c.to_dict() for c in store.list_components()]


@app.post("/components")
def create_component(body: ComponentBody, store: EntityStore = Depends(get_kitchen_store)):
    comp = store.create_component(body.name, _refs(body.items), body.cross_contact)
    return _with_items(comp, store.component_items(comp.id))


@app.get("/components/{component_id}")
def get_component(component_id: str, store: EntityStore = Depends(get_kitchen_store)):
    comp = store.get_component(component_id)
    return _with_items(comp, store.component_items(component_id))


@app.put("/components/{component_id}")
def update_component(component_id: str, body: ComponentPatch, store: EntityStore = Depends(get_kitchen_store)):
    comp = store.update_component(
        component_id, name=body.name, items=_refs(body.items), cross_contact=body.cross_contact,
    )
    return _with_items(comp, store.component_items(component_id))


@app.delete("/components/{component_id}")
def delete_component(component_id: str, store: EntityStore = Depends(get_kitchen_store)):
    store.delete_component(component_id)
    return {"status": "ok"}


# --- Dishes ---

@app.get("/dishes")
def list_dishes(store: EntityStore = Depends(get_kitchen_store)):
    return [d.to_dict() for d in store.list_dishes()]


@app.post("/dishes")
def create_dish(body: DishBody, store: EntityStore = Depends(get_kitchen_store)):
    dish = store.create_dish(body.name, body.station, _refs(body.items))
    return _with_items(dish, store.dish_items(dish.id))


@app.get("/dishes/{dish_id}")
def get_dish(dish_id: str, store: EntityStore = Depends(get_kitchen_store)):
    dish = store.get_dish(dish_id)
    return _with_items(dish, store.dish_items(dish_id))


@app.put("/dishes/{dish_id}")
def update_dish(dish_id: str, body: DishPatch, store: EntityStore = Depends(get_kitchen_store)):
    dish = store.update_dish(dish_id, name=body.name, station=body.station, items=_refs(body.items))
    return _with_items(dish, store.dish_items(dish_id))


@app.delete("/dishes/{dish_id}")
def delete_dish(dish_id: str, store: EntityStore = Depends(get_kitchen_store)):
    store.delete_dish(dish_id)
    return {"status": "ok"}


@app.get("/dishes/{dish_id}/allergens")
def dish_allergens(dish_id: str, store: EntityStore = Depends(get_kitchen_store)):
    snap = store.snapshot()
    profile = AllergenAggregator(snap, DEFAULT_CATALOG).aggregate(dish_id)
    return {"dish_id": dish_id, **profile.to_dict()}


# --- Service assist ---

@app.post("/assess")
def assess(body: AssessRequest, store: EntityStore = Depends(get_kitchen_store)):
    _check_selected(body.selected_allergens)
    snap = store.snapshot()
    result = decision_engine.assess_dish(
        snap,
        body.dish_id,
        body.selected_allergens,
        severity=body.severity,
        cross_contact=body.cross_contact,
    )
    return result.to_dict()


@app.get("/menu-grid")
def menu_grid(
    station: Optional[List[str]] = Query(None),
    search: Optional[str] = None,
    include: Optional[List[str]] = Query(None),
    exclude: Optional[List[str]] = Query(None),
    store: EntityStore = Depends(get_kitchen_store),
):
    for values, field in ((include, "include"), (exclude, "exclude")):
        unknown = DEFAULT_CATALOG.unknown(values or [])
        if unknown:
            raise ValidationError(f"Unknown allergen(s): {', '.join(unknown)}", field=field)
    entries = build_menu(store.snapshot(), DEFAULT_CATALOG)
    matched = filter_dishes(entries, stations=station, search=search, include=include, exclude=exclude)
    return {"total": len(entries), "dishes": [e.to_dict() for e in matched]}


# --- Stations ---

@app.get("/stations")
def list_stations(store: EntityStore = Depends(get_kitchen_store)):
    return [s.to_dict() for s in store.list_stations()]


@app.post("/stations")
def create_station(body: StationBody, store: EntityStore = Depends(get_kitchen_store)):
    return store.create_station(body.name).to_dict()


@app.post("/stations/reorder")
def reorder_stations(body: StationReorderBody, store: EntityStore = Depends(get_kitchen_store)):
    return store.reorder_stations(body.ordered_ids).to_dict()


@app.put("/stations/{station_id}")
def update_station(station_id: str, body: StationBody, store: EntityStore = Depends(get_kitchen_store)):
    return store.update_station(station_id, body.name).to_dict()


@app.delete("/stations/{station_id}")
def delete_station(station_id: str, store: EntityStore = Depends(get_kitchen_store)):
    store.delete_station(station_id)
    return {"status": "ok"}


# --- Matrices ---

@app.get("/matrices")
def list_matrices(builder: MatrixBuilder = Depends(get_matrix_builder)):
    return [m.to_dict() for m in builder.list_all()]


@app.get("/matrices/stations")
def matrix_stations(builder: MatrixBuilder = Depends(get_matrix_builder)):
    return builder.available_stations()


@app.post("/matrices/station")
def generate_station_matrix(body: StationMatrixBody, builder: MatrixBuilder = Depends(get_matrix_builder)):
    matrix = builder.generate_station(body.station)
    return _matrix_view(builder, matrix.id)


@app.post("/matrices")
def create_feature_matrix(body: FeatureMatrixBody, builder: MatrixBuilder = Depends(get_matrix_builder)):
    matrix = builder.create_feature(body.name)
    return _matrix_view(builder, matrix.id)


@app.get("/matrices/{matrix_id}")
def get_matrix(matrix_id: str, builder: MatrixBuilder = Depends(get_matrix_builder)):
    return _matrix_view(builder, matrix_id)


@app.post("/matrices/{matrix_id}/regenerate")
def regenerate_matrix(matrix_id: str, builder: MatrixBuilder = Depends(get_matrix_builder)):
    builder.regenerate(matrix_id)
    return _matrix_view(builder, matrix_id)


@app.post("/matrices/{matrix_id}/dishes")
def add_matrix_dish(matrix_id: str, body: MatrixDishBody, builder: MatrixBuilder = Depends(get_matrix_builder)):
    builder.add_dish(matrix_id, body.dish_id)
    return _matrix_view(builder, matrix_id)


@app.delete("/matrices/{matrix_id}/dishes/{dish_id}")
def remove_matrix_dish(matrix_id: str, dish_id: str, builder: MatrixBuilder = Depends(get_matrix_builder)):
    builder.remove_dish(matrix_id, dish_id)
    return _matrix_view(builder, matrix_id)


@app.post("/matrices/{matrix_id}/move")
def move_matrix_dish(matrix_id: str, body: MatrixMoveBody, builder: MatrixBuilder = Depends(get_matrix_builder)):
    return builder.move_dish(matrix_id, body.from_index, body.to_index).to_dict()


@app.post("/matrices/{matrix_id}/save")
def save_matrix(matrix_id: str, builder: MatrixBuilder = Depends(get_matrix_builder)):
    matrix = builder.save(matrix_id)
    return _matrix_view(builder, matrix.id)


@app.delete("/matrices/{matrix_id}")
def delete_matrix(matrix_id: str, builder: MatrixBuilder = Depends(get_matrix_builder)):
    builder.delete(matrix_id)
    return {"status": "ok"}


@app.get("/matrices/{matrix_id}/csv")
def matrix_csv(matrix_id: str, builder: MatrixBuilder = Depends(get_matrix_builder)):
    matrix = builder.get(matrix_id)
    filename = matrix.name.replace(" ", "_").replace('"', "") + ".csv"
    return PlainTextResponse(
        builder.to_csv(matrix_id),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# --- Backup ---

@app.get("/export")
def export_backup(store: EntityStore = Depends(get_kitchen_store)):
    doc = export_document(store)
    return JSONResponse(
        content=doc,
        headers={"Content-Disposition": f'attachment; filename="{backup_filename(doc["exportedAt"])}"'},
    )


@app.post("/import")
async def import_backup(request: Request, store: EntityStore = Depends(get_kitchen_store)):
    raw = await request.body()
    summary = await run_in_threadpool(import_document, store, raw)
    return {"status": "ok", **summary.to_dict()}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app:app", host="0.0.0.0", port=8000, reload=True)
