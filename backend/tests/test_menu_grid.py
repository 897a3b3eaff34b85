"""
Unit tests for the menu grid filter.
Run from repo root: python -m pytest backend/tests/test_menu_grid.py -v
"""


def _entries():
    from core.menu_grid import MenuEntry
    return [
        MenuEntry("d1", "Burger", "Grill", contains=["eggs", "gluten"], may_contain=["sesame"]),
        MenuEntry("d2", "Aged Steak", "Grill", contains=[]),
        MenuEntry("d3", "Fries", "Fry", contains=["peanuts"]),
        MenuEntry("d4", "Shrimp Tempura", "Fry", contains=["eggs", "shellfish", "gluten"]),
    ]


def test_no_filters_returns_everything():
    from core.menu_grid import filter_dishes
    assert [e.dish_id for e in filter_dishes(_entries())] == ["d1", "d2", "d3", "d4"]


def test_station_filter():
    from core.menu_grid import filter_dishes
    assert [e.name for e in filter_dishes(_entries(), stations=["Fry"])] == ["Fries", "Shrimp Tempura"]


def test_search_matches_name_or_station_case_insensitive():
    from core.menu_grid import filter_dishes
    assert [e.name for e in filter_dishes(_entries(), search="  STEAK ")] == ["Aged Steak"]
    assert [e.name for e in filter_dishes(_entries(), search="gri")] == ["Burger", "Aged Steak"]


def test_include_requires_every_allergen():
    from core.menu_grid import filter_dishes
    names = [e.name for e in filter_dishes(_entries(), include=["eggs", "gluten"])]
    assert names == ["Burger", "Shrimp Tempura"]
    assert [e.name for e in filter_dishes(_entries(), include=["eggs", "shellfish"])] == ["Shrimp Tempura"]


def test_exclude_drops_any_match_and_ignores_may_contain():
    from core.menu_grid import filter_dishes
    names = [e.name for e in filter_dishes(_entries(), exclude=["gluten", "peanuts"])]
    assert names == ["Aged Steak"]
    # Burger only may contain sesame, so it stays
    assert "Burger" in [e.name for e in filter_dishes(_entries(), exclude=["sesame"])]


def test_filters_combine():
    from core.menu_grid import filter_dishes
    names = [e.name for e in filter_dishes(_entries(), stations=["Fry", "Grill"], search="r", exclude=["shellfish"])]
    assert names == ["Burger", "Aged Steak", "Fries"]


def test_build_menu_from_store():
    from core.allergens import DEFAULT_CATALOG
    from core.menu_grid import build_menu
    from core.models.entities import ItemRef, ItemType
    from core.store import EntityStore, InMemoryBackend
    store = EntityStore(InMemoryBackend())
    bun = store.create_supplier_item("Brioche Bun", allergens=["gluten"], may_contain=["sesame"])
    store.create_dish("Burger", "Grill", [ItemRef(bun.id, ItemType.SUPPLIER_ITEM)])
    [entry] = build_menu(store.snapshot(), DEFAULT_CATALOG)
    assert entry.contains == ["gluten"]
    assert entry.may_contain == ["sesame"]
    assert entry.to_dict()["station"] == "Grill"
