"""
HTTP tests for the kitchen API (FastAPI TestClient, in-memory store).
Run from repo root: python -m pytest backend/tests/test_app.py -v
"""


def _client(monkeypatch):
    monkeypatch.setenv("STORE_BACKEND", "memory")
    from fastapi.testclient import TestClient
    from core.store import reset_store
    reset_store()
    import app as app_module
    return TestClient(app_module.app)


def _fries(client, removable=False):
    oil = client.post("/ingredients", json={"name": "Peanut Oil", "allergens": ["peanuts"]}).json()
    dish = client.post("/dishes", json={
        "name": "Fries",
        "station": "Fry",
        "items": [{"id": oil["id"], "type": "ingredient", "removable": removable}],
    })
    assert dish.status_code == 200
    return oil, dish.json()


def test_health_and_catalog(monkeypatch):
    client = _client(monkeypatch)
    assert client.get("/").json()["status"] == "ok"
    catalog = client.get("/allergens").json()
    assert len(catalog) == 13
    assert catalog[0] == {"id": "dairy", "name": "Dairy", "emoji": "\U0001F95B"}


def test_ingredient_crud_and_error_codes(monkeypatch):
    client = _client(monkeypatch)
    created = client.post("/ingredients", json={"name": "Butter", "allergens": ["dairy"]})
    assert created.status_code == 200
    ing_id = created.json()["id"]

    dup = client.post("/ingredients", json={"name": "Butter"})
    assert dup.status_code == 409
    assert dup.json()["error"] == "UniquenessViolation"

    bad = client.post("/ingredients", json={"name": "Celery", "allergens": ["celery"]})
    assert bad.status_code == 422
    assert bad.json()["field"] == "allergens"

    updated = client.put(f"/ingredients/{ing_id}", json={"may_contain": ["tree_nuts"]})
    assert updated.json()["may_contain"] == ["tree_nuts"]
    assert updated.json()["allergens"] == ["dairy"]

    assert client.get("/ingredients/missing").status_code == 404
    assert client.delete(f"/ingredients/{ing_id}").json() == {"status": "ok"}
    assert client.get("/ingredients").json() == []


def test_delete_in_use_is_conflict(monkeypatch):
    client = _client(monkeypatch)
    oil, _ = _fries(client)
    resp = client.delete(f"/ingredients/{oil['id']}")
    assert resp.status_code == 409
    assert resp.json()["referenced_by"] == ["dish_ingredients"]


def test_dish_allergens_and_assess(monkeypatch):
    client = _client(monkeypatch)
    _, dish = _fries(client, removable=True)
    assert dish["allergens"] == ["peanuts"]
    profile = client.get(f"/dishes/{dish['id']}/allergens").json()
    assert profile["contains"] == ["peanuts"]
    assert profile["may_contain"] == []

    verdict = client.post("/assess", json={
        "dish_id": dish["id"],
        "selected_allergens": ["peanuts"],
        "severity": "preference",
    }).json()
    assert verdict["decision"] == "modify"
    assert verdict["title"] == "OK If Modified"
    assert verdict["required_removals"] == ["Peanut Oil"]

    ok = client.post("/assess", json={"dish_id": dish["id"], "selected_allergens": []}).json()
    assert ok["decision"] == "ok"


def test_assess_validation(monkeypatch):
    client = _client(monkeypatch)
    _, dish = _fries(client)
    unknown = client.post("/assess", json={"dish_id": dish["id"], "selected_allergens": ["celery"]})
    assert unknown.status_code == 422
    severity = client.post("/assess", json={
        "dish_id": dish["id"], "selected_allergens": ["peanuts"], "severity": "extreme",
    })
    assert severity.status_code == 422
    missing = client.post("/assess", json={"dish_id": "missing", "selected_allergens": ["peanuts"]})
    assert missing.status_code == 404


def test_component_with_items(monkeypatch):
    client = _client(monkeypatch)
    egg = client.post("/ingredients", json={"name": "Egg Yolk", "allergens": ["eggs"]}).json()
    soy = client.post("/ingredients", json={"name": "Soy Sauce", "allergens": ["soy"]}).json()
    sauce = client.post("/components", json={
        "name": "House Sauce",
        "items": [{"id": egg["id"], "type": "ingredient"}, {"id": soy["id"], "type": "ingredient"}],
    })
    assert sauce.status_code == 200
    body = sauce.json()
    assert body["allergens"] == ["eggs", "soy"]
    assert len(body["items"]) == 2
    empty = client.post("/components", json={"name": "Nothing", "items": []})
    assert empty.status_code == 422


def test_menu_grid_filters(monkeypatch):
    client = _client(monkeypatch)
    _fries(client)
    butter = client.post("/ingredients", json={"name": "Butter", "allergens": ["dairy"]}).json()
    client.post("/dishes", json={
        "name": "Mash", "station": "Saute", "items": [{"id": butter["id"], "type": "ingredient"}],
    })
    grid = client.get("/menu-grid", params={"exclude": ["peanuts"]}).json()
    assert grid["total"] == 2
    assert [d["name"] for d in grid["dishes"]] == ["Mash"]
    assert [d["name"] for d in client.get("/menu-grid", params={"station": "Fry"}).json()["dishes"]] == ["Fries"]
    assert client.get("/menu-grid", params={"include": ["lupin"]}).status_code == 422


def test_stations_create_and_reorder(monkeypatch):
    client = _client(monkeypatch)
    ids = [client.post("/stations", json={"name": n}).json()["id"] for n in ("Grill", "Fry", "Saute")]
    result = client.post("/stations/reorder", json={"ordered_ids": [ids[2], ids[0], ids[1]]}).json()
    assert result["persisted"] is True
    assert [s["name"] for s in client.get("/stations").json()] == ["Saute", "Grill", "Fry"]


def test_matrix_flow_and_csv(monkeypatch):
    client = _client(monkeypatch)
    _, dish = _fries(client)
    station = client.post("/matrices/station", json={"station": "Fry"}).json()
    assert station["name"] == "Fry Station Matrix"
    assert station["rows"][0]["cells"]["peanuts"] == "C"
    assert client.post(f"/matrices/{station['id']}/dishes", json={"dish_id": dish["id"]}).status_code == 422

    feature = client.post("/matrices", json={"name": "Specials"}).json()
    added = client.post(f"/matrices/{feature['id']}/dishes", json={"dish_id": dish["id"]}).json()
    assert added["dish_ids"] == [dish["id"]]
    again = client.post(f"/matrices/{feature['id']}/dishes", json={"dish_id": dish["id"]})
    assert again.status_code == 422

    saved = client.post(f"/matrices/{feature['id']}/save").json()
    assert saved["saved"] is True
    listed = client.get("/matrices").json()
    assert {m["name"] for m in listed} == {"Fry Station Matrix", "Specials"}

    csv_resp = client.get(f"/matrices/{saved['id']}/csv")
    assert csv_resp.status_code == 200
    assert csv_resp.headers["content-type"].startswith("text/csv")
    assert csv_resp.text.splitlines()[1].startswith("Fries,Fry")

    assert client.delete(f"/matrices/{saved['id']}").json() == {"status": "ok"}
    assert client.get(f"/matrices/{saved['id']}").status_code == 404


def test_export_then_import(monkeypatch):
    client = _client(monkeypatch)
    _fries(client)
    exported = client.get("/export")
    assert exported.status_code == 200
    assert "allergycheck-backup-" in exported.headers["content-disposition"]
    doc = exported.json()
    assert [d["name"] for d in doc["dishes"]] == ["Fries"]

    merged = client.post("/import", content=exported.content).json()
    assert merged["skipped"]["dishes"] == 1
    assert merged["created"]["dishes"] == 0

    bad = client.post("/import", content=b"not json")
    assert bad.status_code == 422
