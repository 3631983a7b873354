"""Static description of the inventory collections.

The catalog is the single source for collection names, field names and
relations. The translator prompt, the safety validator and the interpreter
all read from the same instance, so the three cannot drift apart.
"""
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional


@dataclass(frozen=True)
class Relation:
    """A foreign reference from one collection field to another collection."""
    field: str
    target: str


@dataclass(frozen=True)
class Entity:
    """One collection with its field→type map and declared relations."""
    name: str
    label: str
    fields: Mapping[str, str]
    relations: tuple[Relation, ...] = ()
    aliases: frozenset[str] = field(default_factory=frozenset)

    def relation_to(self, target: str) -> Optional[Relation]:
        for relation in self.relations:
            if relation.target == target:
                return relation
        return None


class SchemaCatalog:
    """Read-only registry of entities and the snake→camel field table."""

    def __init__(self, entities: list[Entity], field_names: dict[str, str]):
        self._entities = MappingProxyType({e.name: e for e in entities})
        lookup = {}
        for entity in entities:
            lookup[entity.name] = entity.name
            lookup[entity.label.lower()] = entity.name
            for alias in entity.aliases:
                lookup[alias.lower()] = entity.name
        self._lookup = MappingProxyType(lookup)
        self._field_names = MappingProxyType(dict(field_names))

    @property
    def entities(self) -> Mapping[str, Entity]:
        return self._entities

    @property
    def collection_names(self) -> tuple[str, ...]:
        return tuple(self._entities)

    @property
    def field_names(self) -> Mapping[str, str]:
        return self._field_names

    def resolve_collection(self, name: str) -> Optional[str]:
        """Map a collection reference (any case, singular or alias) to its name."""
        if not name:
            return None
        key = name.strip().strip("`\"'[]").lower()
        return self._lookup.get(key)

    def entity(self, name: str) -> Optional[Entity]:
        resolved = self.resolve_collection(name)
        return self._entities.get(resolved) if resolved else None

    def field_name(self, name: str) -> str:
        """Translate a bare SQL-style field name into the stored camelCase name.

        Qualifiers (``p.name``) are resolved by the caller, which knows the
        aliases in scope.
        """
        normalized = name.strip().strip("`\"'")
        return self._field_names.get(normalized.lower(), normalized)

    def is_numeric(self, collection: str, field: str) -> bool:
        entity = self.entity(collection)
        if entity is None:
            return False
        return entity.fields.get(field, "").startswith("Number")

    def describe(self) -> str:
        """Render the schema block embedded in the translator prompt."""
        lines = []
        for entity in self._entities.values():
            lines.append(f"{entity.label} (collection: {entity.name}):")
            for name, kind in entity.fields.items():
                lines.append(f"  - {name}: {kind}")
            lines.append("")

        lines.append("RELATIONSHIPS:")
        for entity in self._entities.values():
            for relation in entity.relations:
                lines.append(
                    f"- {entity.name}.{relation.field} references {relation.target}._id"
                )
        return "\n".join(lines).strip()


# ============================================================================
# Inventory schema
# ============================================================================

PRODUCTS = Entity(
    name="products",
    label="Products",
    fields=MappingProxyType({
        "_id": "ObjectId",
        "name": "String (product name)",
        "description": "String (product description)",
        "category": "ObjectId (references categories)",
        "supplier": "ObjectId (references suppliers)",
        "currentQuantity": "Number (current stock quantity)",
        "minimumStockLevel": "Number (reorder point)",
        "price": "Number (product price)",
        "expirationDate": "Date (product expiration date, if applicable)",
        "createdAt": "Date (when the product was added)",
        "updatedAt": "Date (when the product was last updated)",
    }),
    relations=(Relation("category", "categories"), Relation("supplier", "suppliers")),
    aliases=frozenset({"product", "entities", "entity", "items", "item"}),
)

CATEGORIES = Entity(
    name="categories",
    label="Categories",
    fields=MappingProxyType({
        "_id": "ObjectId",
        "name": "String (category name)",
        "description": "String (category description)",
        "isActive": "Boolean (whether category is active)",
    }),
    aliases=frozenset({"category"}),
)

SUPPLIERS = Entity(
    name="suppliers",
    label="Suppliers",
    fields=MappingProxyType({
        "_id": "ObjectId",
        "name": "String (supplier name)",
        "email": "String (supplier email)",
        "phone": "String (supplier phone)",
        "company": "String (supplier company name)",
        "city": "String (supplier location)",
        "contactPerson": "String (contact person)",
        "paymentTerms": "String (payment terms, e.g. 'Net 30')",
        "isActive": "Boolean (whether supplier is active)",
        "createdAt": "Date (record creation timestamp)",
    }),
    aliases=frozenset({"supplier"}),
)

STOCK_MOVEMENTS = Entity(
    name="stockmovements",
    label="StockMovements",
    fields=MappingProxyType({
        "_id": "ObjectId",
        "product": "ObjectId (references products)",
        "movementType": "String (enum: 'in', 'out')",
        "quantity": "Number (quantity moved)",
        "reason": "String (reason for movement)",
        "movementDate": "Date (when movement occurred)",
        "createdAt": "Date (record creation timestamp)",
    }),
    relations=(Relation("product", "products"),),
    aliases=frozenset({
        "stockmovement", "stock_movements", "stock_movement", "movements", "movement",
    }),
)

FIELD_NAMES = {
    "name": "name",
    "description": "description",
    "current_quantity": "currentQuantity",
    "minimum_stock_level": "minimumStockLevel",
    "price": "price",
    "expiration_date": "expirationDate",
    "is_low_stock": "isLowStock",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
    "movement_type": "movementType",
    "quantity": "quantity",
    "reason": "reason",
    "movement_date": "movementDate",
    "is_active": "isActive",
    "contact_person": "contactPerson",
    "payment_terms": "paymentTerms",
    "id": "_id",
}

# The catalog is built once per process and never mutated.
CATALOG = SchemaCatalog(
    [PRODUCTS, CATEGORIES, SUPPLIERS, STOCK_MOVEMENTS],
    FIELD_NAMES,
)
