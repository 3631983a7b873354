from datetime import datetime

import mongomock
import pytest
from bson import ObjectId

from stockchat.catalog import CATALOG
from stockchat.config import Settings
from stockchat.context import build_context
from stockchat.interpreter import QueryInterpreter
from stockchat.repo import InventoryRepository

ELECTRONICS = ObjectId()
FURNITURE = ObjectId()
OFFICE = ObjectId()
ACME = ObjectId()
GLOBEX = ObjectId()
CABLE = ObjectId()
CHAIR = ObjectId()
PAPER = ObjectId()


class ScriptedModel:
    """Stands in for LanguageModel; replies are returned in order."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    def complete(self, system, prompt, temperature, max_output_tokens=1500):
        self.calls.append({
            "system": system,
            "prompt": prompt,
            "temperature": temperature,
            "max_output_tokens": max_output_tokens,
        })
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def settings():
    return Settings(app_env="test", llm_backoff_seconds=0)


@pytest.fixture
def database():
    db = mongomock.MongoClient()["inventory"]
    db.categories.insert_many([
        {"_id": ELECTRONICS, "name": "Electronics", "description": "Electronic devices", "isActive": True},
        {"_id": FURNITURE, "name": "Furniture", "description": "Office furniture", "isActive": True},
        {"_id": OFFICE, "name": "Office Supplies", "description": "Stationery", "isActive": False},
    ])
    db.suppliers.insert_many([
        {"_id": ACME, "name": "Acme Corp", "email": "sales@acme.test", "city": "Lyon"},
        {"_id": GLOBEX, "name": "Globex", "email": "hello@globex.test", "city": "Casablanca"},
    ])
    db.products.insert_many([
        {
            "_id": CABLE, "name": "USB Cable", "category": ELECTRONICS, "supplier": ACME,
            "currentQuantity": 5, "minimumStockLevel": 10, "price": 4.5,
            "createdAt": datetime(2024, 1, 10),
        },
        {
            "_id": CHAIR, "name": "Office Chair", "category": FURNITURE, "supplier": GLOBEX,
            "currentQuantity": 20, "minimumStockLevel": 10, "price": 120,
            "createdAt": datetime(2024, 2, 1),
        },
        {
            "_id": PAPER, "name": "Printer Paper", "category": OFFICE, "supplier": ACME,
            "currentQuantity": 0, "minimumStockLevel": 5, "price": 8,
            "createdAt": datetime(2024, 3, 5),
        },
    ])
    db.stockmovements.insert_many([
        {"product": CABLE, "movementType": "in", "quantity": 50, "reason": "Purchase Order",
         "movementDate": datetime(2024, 6, 2)},
        {"product": CABLE, "movementType": "out", "quantity": 45, "reason": "Sale",
         "movementDate": datetime(2024, 6, 9)},
        {"product": CHAIR, "movementType": "out", "quantity": 2, "reason": "Sale",
         "movementDate": datetime(2024, 5, 20)},
    ])
    # Not part of the catalog; must never be reachable
    db.users.insert_one({"email": "admin@test", "password": "hash"})
    return db


@pytest.fixture
def repo(database):
    return InventoryRepository(database, CATALOG)


@pytest.fixture
def interpreter(repo):
    return QueryInterpreter(CATALOG, repo)


@pytest.fixture
def make_context(settings, database):
    def _make(*replies, settings_override=None):
        model = ScriptedModel(*replies)
        context = build_context(settings_override or settings, database, llm=model)
        return context, model
    return _make
