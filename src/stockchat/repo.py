"""Repository layer: read-only access to the inventory collections."""
from datetime import date, datetime
from decimal import Decimal
from itertools import islice
from typing import Any, Optional

from bson import Decimal128, ObjectId
from pymongo.database import Database

from stockchat.catalog import SchemaCatalog


# ============================================================================
# Helper Functions
# ============================================================================

def _serialize_value(value: Any) -> Any:
    """Convert BSON values to JSON-serializable format."""
    if isinstance(value, ObjectId):
        return str(value)
    elif isinstance(value, Decimal128):
        return float(value.to_decimal())
    elif isinstance(value, Decimal):
        return float(value)
    elif isinstance(value, (datetime, date)):
        return value.isoformat()
    elif isinstance(value, dict):
        return {k: _serialize_value(v) for k, v in value.items()}
    elif isinstance(value, (list, tuple)):
        return [_serialize_value(v) for v in value]
    return value


def serialize_row(row: dict) -> dict:
    """Convert a stored document to JSON-serializable format."""
    return {k: _serialize_value(v) for k, v in row.items()}


# ============================================================================
# Repository
# ============================================================================

class InventoryRepository:
    """Runs filter and aggregate reads. There is no write path."""

    def __init__(self, database: Database, catalog: SchemaCatalog, max_results: int = 1000):
        self.database = database
        self.catalog = catalog
        self.max_results = max_results

    def _collection(self, name: str):
        resolved = self.catalog.resolve_collection(name)
        if resolved is None:
            raise KeyError(f"Unknown collection: {name}")
        return self.database[resolved]

    def aggregate(self, collection: str, stages: list[dict]) -> list[dict]:
        cursor = self._collection(collection).aggregate(stages)
        return [serialize_row(doc) for doc in islice(cursor, self.max_results)]

    def find(
        self,
        collection: str,
        filter: Optional[dict] = None,
        projection: Optional[dict] = None,
        sort: Optional[list[tuple[str, int]]] = None,
        limit: Optional[int] = None,
    ) -> list[dict]:
        cursor = self._collection(collection).find(filter or {}, projection or None)
        if sort:
            cursor = cursor.sort(sort)
        cursor = cursor.limit(min(limit or self.max_results, self.max_results))
        return [serialize_row(doc) for doc in cursor]

    def find_populated(
        self,
        collection: str,
        populate: str,
        filter: Optional[dict] = None,
        projection: Optional[dict] = None,
        sort: Optional[list[tuple[str, int]]] = None,
        limit: Optional[int] = None,
        populated_filter: Optional[dict] = None,
    ) -> list[dict]:
        """Filtered read with one relation field replaced by its document.

        ``populated_filter``, sort keys and projection paths may address the
        populated document as ``<relation>.<field>``.
        """
        entity = self.catalog.entity(collection)
        relation = None
        if entity is not None:
            relation = next((r for r in entity.relations if r.field == populate), None)
        if relation is None:
            raise KeyError(f"No relation '{populate}' on collection {collection}")

        stages: list[dict] = [
            {"$match": filter or {}},
            {
                "$lookup": {
                    "from": relation.target,
                    "localField": relation.field,
                    "foreignField": "_id",
                    "as": relation.field,
                }
            },
            {"$unwind": {"path": f"${relation.field}", "preserveNullAndEmptyArrays": True}},
        ]
        if populated_filter:
            stages.append({"$match": populated_filter})
        if sort:
            stages.append({"$sort": dict(sort)})
        stages.append({"$limit": min(limit or self.max_results, self.max_results)})
        if projection:
            # The whole document unless specific fields of it were asked for
            prefix = f"{relation.field}."
            if not any(key.startswith(prefix) for key in projection):
                projection = {**projection, relation.field: 1}
            stages.append({"$project": projection})
        return self.aggregate(entity.name, stages)
