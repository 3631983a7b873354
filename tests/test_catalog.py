from datetime import datetime
from decimal import Decimal

import pytest
from bson import Decimal128, ObjectId

from stockchat.catalog import CATALOG
from stockchat.config import Settings
from stockchat.repo import serialize_row


@pytest.mark.parametrize("name,expected", [
    ("products", "products"),
    ("Products", "products"),
    ("product", "products"),
    ("items", "products"),
    ("`categories`", "categories"),
    ("Supplier", "suppliers"),
    ("StockMovements", "stockmovements"),
    ("stock_movement", "stockmovements"),
    ("users", None),
    ("", None),
])
def test_resolve_collection(name, expected):
    assert CATALOG.resolve_collection(name) == expected


@pytest.mark.parametrize("name,expected", [
    ("current_quantity", "currentQuantity"),
    ("minimum_stock_level", "minimumStockLevel"),
    ("MOVEMENT_TYPE", "movementType"),
    ("currentQuantity", "currentQuantity"),
    ("id", "_id"),
    ("city", "city"),
])
def test_field_name(name, expected):
    assert CATALOG.field_name(name) == expected


def test_relations_are_declared_on_the_owning_side():
    products = CATALOG.entity("products")
    assert products.relation_to("categories").field == "category"
    assert products.relation_to("suppliers").field == "supplier"
    assert CATALOG.entity("movements").relation_to("products").field == "product"
    assert CATALOG.entity("categories").relation_to("products") is None


def test_catalog_is_read_only():
    with pytest.raises(TypeError):
        CATALOG.entities["users"] = None


def test_serialize_row_converts_bson_values():
    oid = ObjectId()
    row = serialize_row({
        "_id": oid,
        "price": Decimal128("12.50"),
        "cost": Decimal("3.25"),
        "createdAt": datetime(2024, 6, 1, 8, 30),
        "supplier": {"_id": oid, "tags": [oid]},
    })

    assert row == {
        "_id": str(oid),
        "price": 12.5,
        "cost": 3.25,
        "createdAt": "2024-06-01T08:30:00",
        "supplier": {"_id": str(oid), "tags": [str(oid)]},
    }


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "key")
    monkeypatch.setenv("APP_ENV", "Development")
    monkeypatch.setenv("LLM_MAX_RETRIES", "0")
    monkeypatch.setenv("MAX_RESULTS", "25")
    monkeypatch.delenv("MONGODB_DB", raising=False)
    monkeypatch.delenv("GEMINI_MODEL", raising=False)

    settings = Settings.from_env()

    assert settings.gemini_api_key == "key"
    assert settings.is_development
    assert settings.llm_max_retries == 1
    assert settings.max_results == 25
    assert settings.mongodb_db == "inventory"
    assert settings.gemini_model == "gemini-2.0-flash"


def test_is_numeric():
    assert CATALOG.is_numeric("products", "currentQuantity")
    assert CATALOG.is_numeric("movements", "quantity")
    assert not CATALOG.is_numeric("products", "name")
    assert not CATALOG.is_numeric("products", "unknown")
    assert not CATALOG.is_numeric("users", "quantity")
