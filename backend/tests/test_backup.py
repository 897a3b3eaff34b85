"""
Unit tests for JSON backup export/import and the bundled seed kitchen.
Run from repo root: python -m pytest backend/tests/test_backup.py -v
"""
import json

import pytest


def _store():
    from core.store import EntityStore, InMemoryBackend
    return EntityStore(InMemoryBackend())


def _seeded():
    from core.config import get_seed_path
    from core.backup import import_document
    store = _store()
    summary = import_document(store, get_seed_path().read_text(encoding="utf-8"))
    return store, summary


def test_seed_kitchen_imports_cleanly():
    store, summary = _seeded()
    assert summary.failed == []
    assert summary.created == {
        "ingredients": 12,
        "suppliers": 2,
        "components": 3,
        "dishes": 6,
        "stations": 3,
        "matrices": 1,
    }
    burger = next(d for d in store.list_dishes() if d.name == "House Burger")
    # Brioche (gluten, eggs, dairy) + House Sauce (eggs, soy, gluten) + Dijon (mustard, sulfites)
    assert burger.allergens == ["dairy", "eggs", "soy", "gluten", "mustard", "sulfites"]
    assert [s.name for s in store.list_stations()] == ["Grill", "Fry", "Saute"]


def test_export_has_every_section():
    from core.backup import SECTIONS, export_document
    store, _ = _seeded()
    doc = export_document(store)
    assert set(doc) == set(SECTIONS) | {"exportedAt"}
    sauce = next(c for c in doc["components"] if c["name"] == "House Sauce")
    assert {i["type"] for i in sauce["items"]} == {"ingredient"}
    assert doc["matrices"][0]["name"] == "Weekend Specials"
    assert len(doc["matrices"][0]["dish_ids"]) == 2
    json.dumps(doc)


def test_export_import_into_empty_store_rebuilds_composition():
    from core.backup import export_document, import_document
    source, _ = _seeded()
    doc = export_document(source)
    target = _store()
    summary = import_document(target, json.dumps(doc))
    assert summary.failed == []
    assert summary.skipped == {s: 0 for s in summary.skipped}
    by_name = {d.name: d for d in target.list_dishes()}
    assert by_name["Shrimp Tempura"].allergens == next(
        d.allergens for d in source.list_dishes() if d.name == "Shrimp Tempura"
    )
    tempura_items = target.dish_items(by_name["Shrimp Tempura"].id)
    assert {i.type.value for i in tempura_items} == {"ingredient", "component"}
    [matrix] = target.list_matrices()
    assert matrix.dish_ids == [by_name["Seared Salmon"].id, by_name["House Burger"].id]


def test_import_merges_and_skips_existing_names():
    from core.backup import export_document, import_document
    store, _ = _seeded()
    doc = export_document(store)
    summary = import_document(store, doc)
    assert sum(summary.created.values()) == 0
    assert summary.skipped["ingredients"] == 12
    assert summary.skipped["dishes"] == 6
    assert len(store.list_ingredients()) == 12


def test_import_reports_rejected_records_and_continues():
    from core.backup import import_document
    store = _store()
    doc = {
        "ingredients": [
            {"id": "a", "name": "Celery", "allergens": ["celery"]},
            {"id": "b", "name": "Butter", "allergens": ["dairy"]},
        ],
        "dishes": [{"id": "d", "name": "Toast", "station": "", "items": [{"id": "b", "type": "ingredient"}]}],
    }
    summary = import_document(store, doc)
    assert summary.created["ingredients"] == 1
    assert len(summary.failed) == 2
    assert summary.failed[0].startswith("ingredients: Celery")
    assert summary.failed[1].startswith("dishes: Toast")


def test_nested_components_created_children_first():
    from core.backup import import_document
    store = _store()
    doc = {
        "ingredients": [{"id": "i", "name": "Egg Yolk", "allergens": ["eggs"]}],
        "components": [
            {"id": "outer", "name": "Sauce Gribiche", "items": [{"id": "inner", "type": "component"}]},
            {"id": "inner", "name": "Mayonnaise", "items": [{"id": "i", "type": "ingredient"}]},
        ],
    }
    summary = import_document(store, doc)
    assert summary.created["components"] == 2
    outer = next(c for c in store.list_components() if c.name == "Sauce Gribiche")
    assert outer.allergens == ["eggs"]


def test_invalid_documents_rejected():
    from core.backup import import_document
    from core.errors import ValidationError
    with pytest.raises(ValidationError):
        import_document(_store(), "{not json")
    with pytest.raises(ValidationError):
        import_document(_store(), "[1, 2, 3]")


def test_backup_cli_export(tmp_path, monkeypatch):
    monkeypatch.setenv("STORE_BACKEND", "memory")
    from scripts.backup import main
    assert main(["export", "--out", str(tmp_path)]) == 0
    [written] = list(tmp_path.glob("allergycheck-backup-*.json"))
    doc = json.loads(written.read_text(encoding="utf-8"))
    assert doc["ingredients"] == []
    assert "exportedAt" in doc


def test_station_with_bad_display_order_is_reported():
    from core.backup import import_document
    store = _store()
    doc = {
        "ingredients": [{"id": "b", "name": "Butter", "allergens": ["dairy"]}],
        "stations": [
            {"id": "s1", "name": "Grill", "display_order": "first"},
            {"id": "s2", "name": "Fry", "display_order": 1},
        ],
    }
    summary = import_document(store, doc)
    assert summary.created["ingredients"] == 1
    assert summary.created["stations"] == 1
    assert [s.name for s in store.list_stations()] == ["Fry"]
    assert len(summary.failed) == 1
    assert summary.failed[0].startswith("stations: Grill: display_order")
