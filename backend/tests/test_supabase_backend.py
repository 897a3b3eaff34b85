"""
Unit tests for the Supabase table backend (client mocked): queries issued and error mapping.
Run from repo root: python -m pytest backend/tests/test_supabase_backend.py -v
"""
from unittest.mock import MagicMock

import httpx
import pytest
from postgrest.exceptions import APIError


def _backend():
    from core.store.supabase_backend import SupabaseBackend
    client = MagicMock()
    return SupabaseBackend(client=client), client


def test_select_orders_and_returns_rows():
    backend, client = _backend()
    query = client.table.return_value.select.return_value.order.return_value
    query.execute.return_value = MagicMock(data=[{"id": "1", "name": "Grill", "display_order": 0}])
    rows = backend.select("stations", order_by="display_order")
    assert rows == [{"id": "1", "name": "Grill", "display_order": 0}]
    client.table.assert_called_with("stations")
    client.table.return_value.select.return_value.order.assert_called_with("display_order", desc=False)


def test_insert_duplicate_maps_to_uniqueness_violation():
    from core.errors import UniquenessViolation
    backend, client = _backend()
    client.table.return_value.insert.return_value.execute.side_effect = APIError(
        {"code": "23505", "message": "duplicate key value violates unique constraint"}
    )
    with pytest.raises(UniquenessViolation) as exc:
        backend.insert("ingredients", [{"name": "Butter"}])
    assert exc.value.kind == "ingredient"
    assert exc.value.name == "Butter"


def test_delete_foreign_key_maps_to_referential_integrity():
    from core.errors import ReferentialIntegrityError
    backend, client = _backend()
    client.table.return_value.delete.return_value.eq.return_value.execute.side_effect = APIError(
        {"code": "23503", "message": "violates foreign key constraint"}
    )
    with pytest.raises(ReferentialIntegrityError) as exc:
        backend.delete("ingredients", id="abc")
    assert exc.value.entity_id == "abc"


def test_other_api_error_is_transient():
    from core.errors import TransientStoreError
    backend, client = _backend()
    client.table.return_value.select.return_value.execute.side_effect = APIError(
        {"code": "PGRST301", "message": "JWT expired"}
    )
    with pytest.raises(TransientStoreError):
        backend.select("dishes")


def test_network_error_is_transient():
    from core.errors import TransientStoreError
    backend, client = _backend()
    client.table.return_value.select.return_value.execute.side_effect = httpx.ConnectError("connection refused")
    with pytest.raises(TransientStoreError) as exc:
        backend.select("dishes")
    assert "store unavailable" in str(exc.value)


def test_update_missing_row_raises_key_error():
    backend, client = _backend()
    client.table.return_value.update.return_value.eq.return_value.execute.return_value = MagicMock(data=[])
    with pytest.raises(KeyError):
        backend.update("stations", "missing", {"name": "Grill"})


def test_delete_chains_every_filter():
    backend, client = _backend()
    first = client.table.return_value.delete.return_value.eq
    second = first.return_value.eq
    second.return_value.execute.return_value = MagicMock(data=[{"dish_id": "d1"}])
    removed = backend.delete("dish_ingredients", dish_id="d1", ingredient_id="i1")
    assert removed == 1
    first.assert_called_with("dish_id", "d1")
    second.assert_called_with("ingredient_id", "i1")


def test_upsert_without_id_lets_database_assign_it():
    backend, client = _backend()
    client.table.return_value.upsert.return_value.execute.return_value = MagicMock(
        data=[{"id": "m1", "name": "Specials", "type": "feature"}]
    )
    row = backend.upsert("allergy_matrices", {"id": None, "name": "Specials", "type": "feature"})
    assert row["id"] == "m1"
    client.table.return_value.upsert.assert_called_with({"name": "Specials", "type": "feature"})


def test_missing_credentials_rejected(monkeypatch):
    from core.store.supabase_backend import SupabaseBackend
    for name in ("SUPABASE_URL", "VITE_SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY", "SUPABASE_KEY", "VITE_SUPABASE_ANON_KEY"):
        monkeypatch.delenv(name, raising=False)
    with pytest.raises(ValueError):
        SupabaseBackend()


def test_insert_foreign_key_message_names_the_write():
    from core.errors import ReferentialIntegrityError
    backend, client = _backend()
    client.table.return_value.insert.return_value.execute.side_effect = APIError(
        {"code": "23503", "message": "violates foreign key constraint"}
    )
    with pytest.raises(ReferentialIntegrityError) as exc:
        backend.insert("matrix_dishes", [{"matrix_id": "m1", "dish_id": "gone", "order_index": 0}])
    assert exc.value.action == "insert"
    assert "Cannot insert" in str(exc.value)
    assert "delete" not in str(exc.value)
