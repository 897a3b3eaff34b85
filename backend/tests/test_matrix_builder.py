"""
Unit tests for allergy matrices: station generation, feature editing, save/load, grid cells, CSV.
Run from repo root: python -m pytest backend/tests/test_matrix_builder.py -v
"""
import csv
import io
from unittest.mock import patch

import pytest


def _kitchen():
    """Two grill dishes and one fry dish."""
    from core.matrix import MatrixBuilder
    from core.models.entities import ItemRef, ItemType
    from core.store import EntityStore, InMemoryBackend
    store = EntityStore(InMemoryBackend())
    bun = store.create_supplier_item("Brioche Bun", "Bakery", allergens=["gluten", "eggs"], may_contain=["sesame"])
    patty = store.create_ingredient("Beef Patty")
    oil = store.create_ingredient("Peanut Oil", allergens=["peanuts"])
    dishes = {
        "burger": store.create_dish("Burger", "Grill", [
            ItemRef(bun.id, ItemType.SUPPLIER_ITEM, removable=True),
            ItemRef(patty.id, ItemType.INGREDIENT),
        ]),
        "steak": store.create_dish("Aged Steak", "Grill", [ItemRef(patty.id, ItemType.INGREDIENT)]),
        "fries": store.create_dish("Fries", "Fry", [ItemRef(oil.id, ItemType.INGREDIENT)]),
    }
    store.create_station("Grill")
    store.create_station("Fry")
    return store, MatrixBuilder(store), dishes


def test_station_matrix_has_station_dishes_in_name_order():
    from core.models.entities import MatrixType
    store, builder, dishes = _kitchen()
    matrix = builder.generate_station("Grill")
    assert matrix.type == MatrixType.STATION
    assert matrix.name == "Grill Station Matrix"
    assert matrix.dish_ids == [dishes["steak"].id, dishes["burger"].id]
    assert matrix.saved is False


def test_station_matrix_is_not_editable():
    from core.errors import ValidationError
    store, builder, dishes = _kitchen()
    matrix = builder.generate_station("Grill")
    with pytest.raises(ValidationError):
        builder.add_dish(matrix.id, dishes["fries"].id)
    with pytest.raises(ValidationError):
        builder.remove_dish(matrix.id, dishes["burger"].id)
    with pytest.raises(ValidationError):
        builder.move_dish(matrix.id, 0, 1)


def test_regenerate_picks_up_new_dishes():
    from core.models.entities import ItemRef, ItemType
    store, builder, dishes = _kitchen()
    matrix = builder.generate_station("Fry")
    assert matrix.dish_ids == [dishes["fries"].id]
    oil = store.list_ingredients()[-1]
    onion = store.create_dish("Onion Rings", "Fry", [ItemRef(oil.id, ItemType.INGREDIENT)])
    assert builder.regenerate(matrix.id).dish_ids == [dishes["fries"].id, onion.id]


def test_feature_matrix_add_remove_and_duplicate():
    from core.errors import EntityNotFound, ValidationError
    store, builder, dishes = _kitchen()
    matrix = builder.create_feature("Weekend Specials")
    assert matrix.dish_ids == []
    builder.add_dish(matrix.id, dishes["fries"].id)
    builder.add_dish(matrix.id, dishes["burger"].id)
    with pytest.raises(ValidationError) as exc:
        builder.add_dish(matrix.id, dishes["fries"].id)
    assert "already in matrix" in str(exc.value)
    with pytest.raises(EntityNotFound):
        builder.add_dish(matrix.id, "missing")
    builder.remove_dish(matrix.id, dishes["fries"].id)
    assert builder.get(matrix.id).dish_ids == [dishes["burger"].id]


def test_unsaved_move_is_local_only():
    store, builder, dishes = _kitchen()
    matrix = builder.create_feature("Specials")
    for key in ("fries", "burger", "steak"):
        builder.add_dish(matrix.id, dishes[key].id)
    result = builder.move_dish(matrix.id, 2, 0)
    assert result.order == [dishes["steak"].id, dishes["fries"].id, dishes["burger"].id]
    assert result.persisted is False
    assert result.ok
    assert store.list_matrices() == []


def test_save_then_reorder_persists_order():
    from core.errors import EntityNotFound
    store, builder, dishes = _kitchen()
    matrix = builder.create_feature("Specials")
    builder.add_dish(matrix.id, dishes["fries"].id)
    builder.add_dish(matrix.id, dishes["burger"].id)
    saved = builder.save(matrix.id)
    assert saved.saved
    with pytest.raises(EntityNotFound):
        builder.get(matrix.id)
    result = builder.move_dish(saved.id, 1, 0)
    assert result.persisted
    [stored] = store.list_matrices()
    assert stored.dish_ids == [dishes["burger"].id, dishes["fries"].id]


def test_saved_reorder_failure_keeps_local_order():
    from core.errors import TransientStoreError
    store, builder, dishes = _kitchen()
    matrix = builder.create_feature("Specials")
    builder.add_dish(matrix.id, dishes["fries"].id)
    builder.add_dish(matrix.id, dishes["burger"].id)
    saved = builder.save(matrix.id)
    with patch.object(store, "save_matrix", side_effect=TransientStoreError("store unavailable")):
        result = builder.move_dish(saved.id, 1, 0)
    assert result.persisted is False
    assert result.error == "store unavailable"
    assert builder.get(saved.id).dish_ids == [dishes["burger"].id, dishes["fries"].id]
    assert store.list_matrices()[0].dish_ids == [dishes["fries"].id, dishes["burger"].id]


def test_delete_unsaved_only_drops_local_state():
    from core.errors import EntityNotFound
    store, builder, dishes = _kitchen()
    matrix = builder.create_feature("Scratch")
    with patch.object(store, "delete_matrix") as delete_matrix:
        builder.delete(matrix.id)
    delete_matrix.assert_not_called()
    with pytest.raises(EntityNotFound):
        builder.get(matrix.id)


def test_delete_saved_removes_from_store():
    store, builder, dishes = _kitchen()
    saved = builder.save(builder.generate_station("Grill").id)
    builder.delete(saved.id)
    assert store.list_matrices() == []
    assert builder.list_all() == []


def test_list_saved_skips_deleted_dishes():
    store, builder, dishes = _kitchen()
    matrix = builder.create_feature("Specials")
    builder.add_dish(matrix.id, dishes["fries"].id)
    builder.add_dish(matrix.id, dishes["steak"].id)
    saved = builder.save(matrix.id)
    # Dish row removed outside the store API, leaving a dangling matrix link
    from core.store import tables as t
    store.backend.delete(t.DISHES, id=dishes["steak"].id)
    [loaded] = builder.list_saved()
    assert loaded.id == saved.id
    assert loaded.dish_ids == [dishes["fries"].id]


def test_rows_mark_contains_and_may_contain():
    from core.matrix import BLANK, CONTAINS, MAY_CONTAIN
    store, builder, dishes = _kitchen()
    matrix = builder.generate_station("Grill")
    rows = builder.rows(matrix.id)
    assert [r.dish_name for r in rows] == ["Aged Steak", "Burger"]
    burger = rows[1]
    assert burger.cells["gluten"] == CONTAINS
    assert burger.cells["eggs"] == CONTAINS
    assert burger.cells["sesame"] == MAY_CONTAIN
    assert burger.cells["peanuts"] == BLANK
    assert set(rows[0].cells.values()) == {BLANK}
    assert len(burger.cells) == 13


def test_csv_has_header_and_one_line_per_dish():
    store, builder, dishes = _kitchen()
    matrix = builder.generate_station("Grill")
    reader = list(csv.reader(io.StringIO(builder.to_csv(matrix.id))))
    assert reader[0][:3] == ["Dish", "Station", "Dairy"]
    assert len(reader[0]) == 15
    assert [r[0] for r in reader[1:]] == ["Aged Steak", "Burger"]
    burger = dict(zip(reader[0], reader[2]))
    assert burger["Gluten"] == "C"
    assert burger["Sesame"] == "M"


def test_available_stations_in_display_order():
    from core.models.entities import ItemRef, ItemType
    store, builder, dishes = _kitchen()
    patty = store.list_ingredients()[0]
    store.create_dish("Tartare", "Raw Bar", [ItemRef(patty.id, ItemType.INGREDIENT)])
    assert builder.available_stations() == ["Grill", "Fry", "Raw Bar"]


def test_list_all_shows_unsaved_before_saved():
    store, builder, dishes = _kitchen()
    saved = builder.save(builder.generate_station("Grill").id)
    draft = builder.create_feature("Draft Specials")
    assert [m.id for m in builder.list_all()] == [draft.id, saved.id]
    assert [m.saved for m in builder.list_all()] == [False, True]


def test_dish_deleted_before_first_save_is_dropped():
    from core.store import tables as t
    store, builder, dishes = _kitchen()
    matrix = builder.create_feature("Specials")
    builder.add_dish(matrix.id, dishes["fries"].id)
    builder.add_dish(matrix.id, dishes["steak"].id)
    # No matrix_dishes row exists yet, so the delete is allowed
    store.delete_dish(dishes["fries"].id)
    saved = builder.save(matrix.id)
    assert saved.dish_ids == [dishes["steak"].id]
    rows = store.backend.select(t.MATRIX_DISHES.name)
    assert [r["dish_id"] for r in rows] == [dishes["steak"].id]
    [stored] = store.list_matrices()
    assert stored.dish_ids == [dishes["steak"].id]


def test_move_after_dish_deleted_uses_remaining_dishes():
    store, builder, dishes = _kitchen()
    matrix = builder.create_feature("Specials")
    for key in ("fries", "burger", "steak"):
        builder.add_dish(matrix.id, dishes[key].id)
    store.delete_dish(dishes["burger"].id)
    result = builder.move_dish(matrix.id, 1, 0)
    assert result.order == [dishes["steak"].id, dishes["fries"].id]
