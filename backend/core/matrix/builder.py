"""
Allergy matrices: named, ordered dish lists rendered as dish x allergen grids for printing.

Station matrices are generated from every dish tagged with the station and can only be regenerated.
Feature matrices start empty; dishes are added, removed and dragged into place by staff.
A matrix lives in this builder's session state until saved; saving replaces its stored dish order.
"""
from dataclasses import dataclass, field
from typing import List, Optional, TYPE_CHECKING
import csv
import io
import logging
import uuid

from core.allergens import AllergenCatalog, DEFAULT_CATALOG
from core.errors import EntityNotFound, TransientStoreError, ValidationError
from core.evaluation.aggregation import AllergenAggregator
from core.models.entities import Matrix, MatrixType
from core.store.reorder import ReorderResult, move_item

if TYPE_CHECKING:
    from core.store.entity_store import EntityStore
    from core.store.snapshot import StoreSnapshot

logger = logging.getLogger(__name__)

CONTAINS = "C"
MAY_CONTAIN = "M"
BLANK = ""


@dataclass
class MatrixRow:
    dish_id: str
    dish_name: str
    station: str
    # allergen id -> "C" | "M" | ""
    cells: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "dish_id": self.dish_id,
            "dish_name": self.dish_name,
            "station": self.station,
            "cells": dict(self.cells),
        }


def station_matrix_name(station: str) -> str:
    return f"{station} Station Matrix"


class MatrixBuilder:
    def __init__(self, store: "EntityStore", catalog: AllergenCatalog = DEFAULT_CATALOG):
        self.store = store
        self.catalog = catalog
        # Session state: unsaved matrices and saved ones being edited, by id
        self._local: dict[str, Matrix] = {}

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def list_saved(self, snapshot: Optional["StoreSnapshot"] = None) -> List[Matrix]:
        """Persisted matrices, newest first; dishes deleted since the save are left out."""
        snap = snapshot or self.store.snapshot()
        out = []
        for m in self.store.list_matrices():
            m.dish_ids = [d for d in m.dish_ids if d in snap.dishes]
            out.append(m)
        return out

    def list_all(self) -> List[Matrix]:
        saved = self.list_saved()
        saved_ids = {m.id for m in saved}
        unsaved = [m for m in self._local.values() if m.id not in saved_ids]
        return unsaved + [self._local.get(m.id, m) for m in saved]

    def get(self, matrix_id: str) -> Matrix:
        if matrix_id in self._local:
            return self._local[matrix_id]
        for m in self.list_saved():
            if m.id == matrix_id:
                return m
        raise EntityNotFound("matrix", matrix_id)

    def _editable(self, matrix_id: str) -> Matrix:
        """Saved matrices are copied into session state on first edit."""
        matrix = self.get(matrix_id)
        self._local[matrix.id] = matrix
        return matrix

    def available_stations(self, snapshot: Optional["StoreSnapshot"] = None) -> List[str]:
        """Station names in display order, then any station only found on dishes."""
        snap = snapshot or self.store.snapshot()
        names = [s.name for s in snap.stations_sorted()]
        extra = sorted({d.station for d in snap.dishes.values() if d.station and d.station not in names})
        return names + extra

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def _station_dish_ids(self, snap: "StoreSnapshot", station: str) -> List[str]:
        return [d.id for d in snap.dishes_sorted() if d.station == station]

    def generate_station(self, station: str) -> Matrix:
        station = (station or "").strip()
        if not station:
            raise ValidationError("station is required", field="station")
        snap = self.store.snapshot()
        matrix = Matrix(
            id=f"local-{uuid.uuid4()}",
            name=station_matrix_name(station),
            type=MatrixType.STATION,
            station=station,
            dish_ids=self._station_dish_ids(snap, station),
        )
        self._local[matrix.id] = matrix
        logger.info("MATRIX_GENERATE station=%s dishes=%d", station, len(matrix.dish_ids))
        return matrix

    def regenerate(self, matrix_id: str) -> Matrix:
        matrix = self._editable(matrix_id)
        if matrix.type != MatrixType.STATION:
            raise ValidationError("Only station matrices can be regenerated", field="type")
        matrix.dish_ids = self._station_dish_ids(self.store.snapshot(), matrix.station or "")
        logger.info("MATRIX_REGENERATE id=%s station=%s dishes=%d", matrix.id, matrix.station, len(matrix.dish_ids))
        return matrix

    def create_feature(self, name: str) -> Matrix:
        name = (name or "").strip()
        if not name:
            raise ValidationError("name is required", field="name")
        matrix = Matrix(id=f"local-{uuid.uuid4()}", name=name, type=MatrixType.FEATURE)
        self._local[matrix.id] = matrix
        logger.info("MATRIX_CREATE name=%s", name)
        return matrix

    # ------------------------------------------------------------------
    # Editing (feature matrices only)
    # ------------------------------------------------------------------

    def _feature(self, matrix_id: str) -> Matrix:
        matrix = self.get(matrix_id)
        if matrix.type == MatrixType.STATION:
            raise ValidationError("Station matrices are generated, not edited; regenerate instead", field="type")
        return self._editable(matrix_id)

    def add_dish(self, matrix_id: str, dish_id: str) -> Matrix:
        matrix = self._feature(matrix_id)
        snap = self.store.snapshot()
        if dish_id not in snap.dishes:
            raise EntityNotFound("dish", dish_id)
        if dish_id in matrix.dish_ids:
            raise ValidationError("Dish already in matrix", field="dish_id")
        matrix.dish_ids.append(dish_id)
        return matrix

    def remove_dish(self, matrix_id: str, dish_id: str) -> Matrix:
        matrix = self._feature(matrix_id)
        if dish_id not in matrix.dish_ids:
            raise EntityNotFound("matrix dish", dish_id)
        matrix.dish_ids.remove(dish_id)
        return matrix

    def move_dish(self, matrix_id: str, from_index: int, to_index: int) -> ReorderResult:
        """
        Phase 1 reorders session state. Phase 2 persists the order only for a matrix
        that is already saved; its failure is reported on the result.
        """
        matrix = self._feature(matrix_id)
        self._prune(matrix)
        try:
            matrix.dish_ids = move_item(matrix.dish_ids, from_index, to_index)
        except IndexError as e:
            raise ValidationError(str(e), field="from_index")
        result = ReorderResult(order=list(matrix.dish_ids))
        if not matrix.saved:
            return result
        try:
            self.store.save_matrix(matrix)
        except TransientStoreError as e:
            logger.error("MATRIX_REORDER persist failed id=%s error=%s", matrix.id, e)
            result.error = str(e)
            return result
        result.persisted = True
        return result

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _prune(self, matrix: Matrix) -> None:
        """Drop dishes deleted while the matrix sat in session state."""
        snap = self.store.snapshot()
        gone = [d for d in matrix.dish_ids if d not in snap.dishes]
        if gone:
            matrix.dish_ids = [d for d in matrix.dish_ids if d in snap.dishes]
            logger.info("MATRIX_PRUNE id=%s dropped=%s", matrix.id, gone)

    def save(self, matrix_id: str) -> Matrix:
        matrix = self.get(matrix_id)
        self._prune(matrix)
        saved = self.store.save_matrix(matrix)
        self._local.pop(matrix_id, None)
        self._local[saved.id] = saved
        return saved

    def delete(self, matrix_id: str) -> None:
        matrix = self.get(matrix_id)
        self._local.pop(matrix_id, None)
        if matrix.saved:
            self.store.delete_matrix(matrix_id)
        else:
            logger.info("MATRIX_DISCARD id=%s", matrix_id)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def rows(self, matrix_id: str, snapshot: Optional["StoreSnapshot"] = None) -> List[MatrixRow]:
        matrix = self.get(matrix_id)
        snap = snapshot or self.store.snapshot()
        agg = AllergenAggregator(snap, self.catalog)
        rows = []
        for dish_id in matrix.dish_ids:
            dish = snap.dishes.get(dish_id)
            if dish is None:
                continue
            contains = set(agg.contains(dish_id))
            may = set(agg.may_contain(dish_id))
            cells = {}
            for opt in self.catalog:
                if opt.id in contains:
                    cells[opt.id] = CONTAINS
                elif opt.id in may:
                    cells[opt.id] = MAY_CONTAIN
                else:
                    cells[opt.id] = BLANK
            rows.append(MatrixRow(dish_id=dish.id, dish_name=dish.name, station=dish.station, cells=cells))
        return rows

    def to_csv(self, matrix_id: str) -> str:
        """Printable grid: Dish, Station, one column per allergen (C = contains, M = may contain)."""
        buf = io.StringIO()
        writer = csv.writer(buf)
        writer.writerow(["Dish", "Station"] + [opt.name for opt in self.catalog])
        for row in self.rows(matrix_id):
            writer.writerow([row.dish_name, row.station] + [row.cells[opt.id] for opt in self.catalog])
        return buf.getvalue()
