"""Shape detection and read-only execution of candidate queries.

A candidate is one of three representations:

- a pipeline literal, ``[{ $match: ... }, ...]``
- a Mongo shell call, ``db.products.find({...})`` or ``db.products.aggregate([...])``
- a minimal ``SELECT ... FROM ... [JOIN ... ON ...] [WHERE ...] [ORDER BY ...] [LIMIT n]``

The grammar only covers what the translator is told to emit. Anything else
fails closed with ExecutionFailure.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from bson import ObjectId

from stockchat.catalog import SchemaCatalog
from stockchat.errors import ExecutionFailure, LiteralSyntaxError
from stockchat.literal import (
    Scalar,
    find_closing,
    parse_arguments,
    parse_document,
    parse_pipeline,
)
from stockchat.queries import (
    AggregationPipeline,
    DeclarativeSelect,
    ExecutionResult,
    FilterQuery,
    StructuredQuery,
)
from stockchat.repo import InventoryRepository
from stockchat.validator import CALL_RE, strip_leading_comments

logger = logging.getLogger(__name__)

DEFAULT_COLLECTION = "products"

LOW_STOCK_PREDICATE = {"$expr": {"$lt": ["$currentQuantity", "$minimumStockLevel"]}}

_HINT_RE = re.compile(r"(?:^|\n)\s*(?://|/\*)\s*collection\s*:\s*([A-Za-z_]\w*)", re.IGNORECASE)
_CHAIN_RE = re.compile(r"\.\s*(sort|limit|toArray|pretty)\s*\(")
_SELECT_START_RE = re.compile(r"select\b", re.IGNORECASE)

# SELECT clause keywords, found outside quoted strings
_QUOTED_RE = re.compile(r"'(?:[^'\\]|\\.)*'|\"(?:[^\"\\]|\\.)*\"")
_CLAUSE_RE = re.compile(
    r"\b(select|from|(?:(?:inner|left|right|full|cross)\s+(?:outer\s+)?)?join|on|where|"
    r"group\s+by|having|order\s+by|limit|offset|union|into)\b",
    re.IGNORECASE,
)
_SELECT_CLAUSES = ("select", "from", "join", "on", "where", "order by", "limit")
_JOIN_KEYWORDS = frozenset({"join", "inner join", "left join", "left outer join"})

_TABLE_REF_RE = re.compile(
    r"(?P<name>[\w\[\]`\"]+(?:\.[\w\[\]`\"]+)?)(?:\s+(?:as\s+)?(?P<alias>[A-Za-z_]\w*))?",
    re.IGNORECASE,
)
_FIELD_REF_RE = re.compile(r"[A-Za-z_][\w.]*")
_ON_RE = re.compile(r"([A-Za-z_][\w.]*)\s*=\s*([A-Za-z_][\w.]*)")
_EQUALS_RE = re.compile(r"^([A-Za-z_][\w.]*)\s*=\s*(.+)$", re.DOTALL)
_QUALIFIER_RE = re.compile(r"\b([A-Za-z_]\w*)\.")
_NUMERIC_RE = re.compile(r"^-?\d+(\.\d+)?$")
_LOW_STOCK_RES = (
    re.compile(r"^current_?quantity\s*<\s*minimum_?stock_?level$"),
    re.compile(r"^minimum_?stock_?level\s*>\s*current_?quantity$"),
    re.compile(r"^is_?low_?stock(\s*=\s*(true|1))?$"),
)


def detect_shape(text: str) -> str:
    """Return "pipeline", "mongo" or "select" for a candidate query."""
    body = strip_leading_comments(text.strip())
    if (body.startswith("[") and body.endswith("]")) or (body.startswith("{") and body.endswith("}")):
        return "pipeline"
    if _SELECT_START_RE.match(body):
        return "select"
    lowered = body.lower()
    if "aggregate(" in lowered or "find(" in lowered or "db." in lowered:
        return "mongo"
    return "select"


@dataclass(frozen=True)
class _Scope:
    """Collections a SELECT statement can name, keyed by alias."""
    source: str
    base: str
    populate: Optional[str] = None
    aliases: dict = field(default_factory=dict)


class QueryInterpreter:
    """Turns candidate text into a StructuredQuery and runs it read-only."""

    def __init__(self, catalog: SchemaCatalog, repo: InventoryRepository):
        self.catalog = catalog
        self.repo = repo

    def run(self, text: str) -> tuple[StructuredQuery, ExecutionResult]:
        query = self.parse(text)
        return query, self.execute(query)

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def parse(self, text: str) -> StructuredQuery:
        if not text or not text.strip():
            raise ExecutionFailure("Empty query", fragment="")
        text = text.strip().rstrip(";").strip()

        shape = detect_shape(text)
        logger.info(f"Detected {shape} query shape")
        try:
            if shape == "pipeline":
                return self._parse_pipeline_literal(text)
            if shape == "mongo":
                return self._parse_mongo_call(text)
            return self._parse_select(text)
        except LiteralSyntaxError as e:
            raise ExecutionFailure(f"Could not parse query: {e}", fragment=_excerpt(text, e.position))

    def _resolve(self, name: str) -> str:
        resolved = self.catalog.resolve_collection(name)
        if resolved is None:
            raise ExecutionFailure(f"Unknown collection: {name}", fragment=name)
        return resolved

    def _target_from_hint(self, text: str) -> str:
        """Collection from a leading ``// collection: x`` comment or the ``db.x.`` call prefix."""
        body = strip_leading_comments(text)
        hint = _HINT_RE.search(text[:len(text) - len(body)]) or CALL_RE.match(body)
        if hint and hint.group(1):
            return self._resolve(hint.group(1))
        logger.warning(
            f"No collection hint in query, defaulting to '{DEFAULT_COLLECTION}': {text[:80]}"
        )
        return DEFAULT_COLLECTION

    def _parse_pipeline_literal(self, text: str) -> AggregationPipeline:
        collection = self._target_from_hint(text)
        stages = parse_pipeline(strip_leading_comments(text))
        return AggregationPipeline(collection, self._normalize_lookups(stages), raw=text)

    def _parse_mongo_call(self, text: str) -> Union[AggregationPipeline, FilterQuery]:
        body = strip_leading_comments(text)
        call = CALL_RE.match(body)
        if not call:
            raise ExecutionFailure("Unsupported Mongo query: expected find() or aggregate()", fragment=text[:80])
        collection = self._target_from_hint(text)

        start = call.end() - 1
        end = find_closing(body, start)
        args = body[start + 1:end].strip() if end != -1 else ""

        if call.group(2).lower() == "aggregate":
            if end == -1 or not (args.startswith("[") and args.endswith("]")):
                raise ExecutionFailure(
                    "Could not locate aggregation pipeline brackets [] in query",
                    fragment=body[:80],
                )
            sort, limit = self._parse_chain(body[end + 1:])
            if sort is not None or limit is not None:
                raise ExecutionFailure("aggregate() cannot be chained with sort() or limit()", fragment=body[end + 1:])
            stages = parse_pipeline(args)
            return AggregationPipeline(collection, self._normalize_lookups(stages), raw=text)

        if end == -1:
            raise ExecutionFailure(
                "Could not locate find filter parentheses () in query",
                fragment=body[start:start + 80],
            )
        nodes = parse_arguments(args)
        if len(nodes) > 2:
            raise ExecutionFailure("find() takes at most a filter and a projection", fragment=body[start:end + 1])
        filter = parse_document(nodes[0]) if nodes else {}
        projection = parse_document(nodes[1]) if len(nodes) > 1 else None
        sort, limit = self._parse_chain(body[end + 1:])
        return FilterQuery(collection, filter, projection, raw=text, sort=sort, limit=limit)

    def _parse_chain(self, chain: str) -> tuple[Optional[list[tuple[str, int]]], Optional[int]]:
        sort = None
        limit = None
        chain = chain.strip()
        while chain:
            link = _CHAIN_RE.match(chain)
            if not link:
                raise ExecutionFailure("Unsupported call chain", fragment=chain[:80])
            end = find_closing(chain, link.end() - 1)
            if end == -1:
                raise ExecutionFailure("Unbalanced parentheses in call chain", fragment=chain[:80])
            args = parse_arguments(chain[link.end():end])
            method = link.group(1)
            if method == "sort" and args:
                try:
                    sort = [(key, int(value)) for key, value in parse_document(args[0]).items()]
                except (TypeError, ValueError):
                    raise ExecutionFailure("sort() directions must be 1 or -1", fragment=chain[:end + 1])
            elif method == "limit" and args:
                if not isinstance(args[0], Scalar) or not isinstance(args[0].value, int):
                    raise ExecutionFailure("limit() needs an integer", fragment=chain[:end + 1])
                limit = args[0].value
            chain = chain[end + 1:].strip()
        return sort, limit

    def _normalize_lookups(self, value: Any) -> Any:
        """Point every $lookup at a declared collection name."""
        if isinstance(value, list):
            return [self._normalize_lookups(item) for item in value]
        if isinstance(value, dict):
            out = {}
            for key, child in value.items():
                if key in ("$lookup", "$graphLookup") and isinstance(child, dict):
                    child = dict(child)
                    child["from"] = self._resolve(str(child.get("from", "")))
                out[key] = self._normalize_lookups(child)
            return out
        return value

    # ------------------------------------------------------------------
    # SELECT
    # ------------------------------------------------------------------

    def _parse_select(self, text: str) -> DeclarativeSelect:
        clauses = _split_clauses(text)
        scope = self._scope(clauses)

        if "on" in clauses:
            condition = _ON_RE.fullmatch(clauses["on"])
            if not condition:
                raise ExecutionFailure("Unsupported JOIN condition", fragment=clauses["on"])
            # Both sides must name a table in scope
            self._field(condition.group(1), scope)
            self._field(condition.group(2), scope)

        projection = self._projection(clauses["select"], scope)

        predicate: dict = {}
        join_predicate = None
        sort = None
        limit = None

        where = clauses.get("where")
        if where:
            if _is_low_stock(where):
                condition, owner, sort = self._low_stock(where, scope)
            else:
                condition, owner = self._equality(where, scope)
            # Conditions on the populated side run after $lookup/$unwind
            if owner == scope.base:
                predicate = condition
            else:
                join_predicate = condition

        if "order by" in clauses:
            sort = self._order_by(clauses["order by"], scope)

        if "limit" in clauses:
            if not clauses["limit"].isdigit():
                raise ExecutionFailure("LIMIT takes a single row count", fragment=clauses["limit"])
            limit = int(clauses["limit"])

        return DeclarativeSelect(
            scope.base, predicate, projection, raw=text, populate=scope.populate,
            sort=sort, limit=limit, join_predicate=join_predicate,
        )

    def _table_ref(self, body: str) -> tuple[str, str, Optional[str]]:
        """Return (collection, name as written, alias) for a FROM or JOIN target."""
        match = _TABLE_REF_RE.fullmatch(body)
        if not match:
            raise ExecutionFailure("Unsupported table reference", fragment=body)
        name = match.group("name").split(".")[-1].strip("`\"[]")
        return self._resolve(name), name, match.group("alias")

    def _scope(self, clauses: dict) -> _Scope:
        source, name, alias = self._table_ref(clauses["from"])
        aliases = {source: source, name.lower(): source}
        if alias:
            aliases[alias.lower()] = source
        if "join" not in clauses:
            return _Scope(source=source, base=source, aliases=aliases)

        joined, joined_name, joined_alias = self._table_ref(clauses["join"])
        for key in (joined, joined_name.lower(), joined_alias.lower() if joined_alias else None):
            if key:
                aliases.setdefault(key, joined)
        base, populate = self._join_idiom(source, joined)
        return _Scope(source=source, base=base, populate=populate, aliases=aliases)

    def _join_idiom(self, left: str, right: str) -> tuple[str, str]:
        """Resolve a two-collection join as relation population on the owning side."""
        for base, other in ((left, right), (right, left)):
            relation = self.catalog.entities[base].relation_to(other)
            if relation is not None:
                return base, relation.field
        raise ExecutionFailure(f"Unsupported join between {left} and {right}", fragment=f"{left} JOIN {right}")

    def _collection_for(self, qualifier: str, scope: _Scope) -> str:
        collection = scope.aliases.get(qualifier.strip("`\"[]").lower())
        if collection is None:
            raise ExecutionFailure(f"Unknown table reference: {qualifier}", fragment=qualifier)
        return collection

    def _field(self, name: str, scope: _Scope) -> tuple[str, str]:
        """Return (stored path, owning collection) for a possibly qualified field.

        Unqualified fields belong to the FROM collection. Fields of the
        populated collection are addressed through the relation field.
        """
        qualifier, _, bare = name.strip().strip("`\"").rpartition(".")
        collection = self._collection_for(qualifier, scope) if qualifier else scope.source
        stored = self.catalog.field_name(bare)
        if collection == scope.base:
            return stored, collection
        return f"{scope.populate}.{stored}", collection

    def _projection(self, fields: str, scope: _Scope) -> Optional[dict]:
        items = [item.strip() for item in fields.split(",")]
        if all(item == "*" or item.endswith(".*") for item in items):
            for item in items:
                if item != "*":
                    self._collection_for(item[:-2], scope)
            return None

        projection = {}
        for item in items:
            name = re.split(r"\s+as\s+", item, flags=re.IGNORECASE)[0].strip()
            if not _FIELD_REF_RE.fullmatch(name):
                raise ExecutionFailure("Unsupported SELECT expression", fragment=item)
            path, _ = self._field(name, scope)
            projection[path] = 1
        return projection

    def _low_stock(self, condition: str, scope: _Scope) -> tuple[dict, str, list[tuple[str, int]]]:
        targets = {self._collection_for(q, scope) for q in _QUALIFIER_RE.findall(condition)}
        if not targets:
            # Unqualified stock fields can only mean products when products is in scope
            targets = {"products"} if "products" in scope.aliases.values() else {scope.source}
        if targets != {"products"}:
            raise ExecutionFailure("Low stock condition only applies to products", fragment=condition)
        if scope.base == "products":
            return dict(LOW_STOCK_PREDICATE), "products", [("currentQuantity", 1)]
        prefix = f"${scope.populate}."
        predicate = {"$expr": {"$lt": [f"{prefix}currentQuantity", f"{prefix}minimumStockLevel"]}}
        return predicate, "products", [(f"{scope.populate}.currentQuantity", 1)]

    def _equality(self, condition: str, scope: _Scope) -> tuple[dict, str]:
        match = _EQUALS_RE.match(condition)
        if not match or re.search(r"\s(and|or)\s", _mask_quoted(condition), re.IGNORECASE):
            raise ExecutionFailure("Unsupported WHERE condition", fragment=condition)

        path, collection = self._field(match.group(1), scope)
        stored = path.rsplit(".", 1)[-1]
        raw_value = match.group(2).strip()
        if len(raw_value) >= 2 and raw_value[0] == raw_value[-1] and raw_value[0] in ("'", '"'):
            value: Any = raw_value[1:-1]
            # Numeric fields compare as numbers even when quoted
            if _NUMERIC_RE.match(value) and self.catalog.is_numeric(collection, stored):
                value = _number(value)
        elif _NUMERIC_RE.match(raw_value):
            value = _number(raw_value)
        elif raw_value.lower() in ("true", "false"):
            value = raw_value.lower() == "true"
        else:
            raise ExecutionFailure("Unsupported WHERE value", fragment=raw_value)

        # Reference fields are stored as ObjectIds
        if isinstance(value, str) and ObjectId.is_valid(value) and self._is_reference(stored):
            value = ObjectId(value)
        return {path: value}, collection

    def _is_reference(self, field: str) -> bool:
        if field == "_id":
            return True
        return any(
            relation.field == field
            for entity in self.catalog.entities.values()
            for relation in entity.relations
        )

    def _order_by(self, clause: str, scope: _Scope) -> list[tuple[str, int]]:
        sort = []
        for item in clause.split(","):
            parts = item.split()
            if not parts or len(parts) > 2 or (len(parts) == 2 and parts[1].lower() not in ("asc", "desc")):
                raise ExecutionFailure("Unsupported ORDER BY", fragment=item.strip())
            direction = -1 if len(parts) == 2 and parts[1].lower() == "desc" else 1
            path, _ = self._field(parts[0], scope)
            sort.append((path, direction))
        return sort

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute(self, query: Union[StructuredQuery, str]) -> ExecutionResult:
        if isinstance(query, str):
            query = self.parse(query)

        try:
            if isinstance(query, AggregationPipeline):
                rows = self.repo.aggregate(query.collection, query.stages)
            elif isinstance(query, FilterQuery):
                rows = self.repo.find(
                    query.collection, query.filter, query.projection, query.sort, query.limit,
                )
            elif isinstance(query, DeclarativeSelect) and query.populate:
                rows = self.repo.find_populated(
                    query.collection, query.populate, query.predicate, query.projection,
                    query.sort, query.limit, populated_filter=query.join_predicate,
                )
            elif isinstance(query, DeclarativeSelect):
                rows = self.repo.find(
                    query.collection, query.predicate, query.projection, query.sort, query.limit,
                )
            else:
                raise ExecutionFailure(f"Unsupported query type: {type(query).__name__}")
        except ExecutionFailure:
            raise
        except Exception as e:
            raise ExecutionFailure(f"Query execution failed: {e}", fragment=query.raw[:200])

        logger.info(f"{query.kind.value} query on {query.collection} returned {len(rows)} rows")
        return ExecutionResult(rows)


def _split_clauses(text: str) -> dict[str, str]:
    """Split a SELECT into its clauses, keyed by keyword.

    Every keyword must be a supported clause, appear at most once and in
    grammar order. Keywords inside quoted strings are ignored.
    """
    masked = _mask_quoted(text)
    marks = list(_CLAUSE_RE.finditer(masked))
    if not marks or masked[:marks[0].start()].strip() or _keyword(marks[0]) != "select":
        raise ExecutionFailure("Unable to parse SELECT statement", fragment=text[:80])

    clauses: dict[str, str] = {}
    last = -1
    for i, mark in enumerate(marks):
        end = marks[i + 1].start() if i + 1 < len(marks) else len(text)
        keyword = _keyword(mark)
        fragment = text[mark.start():end].strip()
        if keyword not in _SELECT_CLAUSES:
            raise ExecutionFailure(f"Unsupported clause: {keyword.upper()}", fragment=fragment)
        if keyword == "join" and "join" in clauses:
            raise ExecutionFailure("Only a single JOIN is supported", fragment=fragment)
        position = _SELECT_CLAUSES.index(keyword)
        if keyword in clauses or position < last:
            raise ExecutionFailure(f"Unexpected {keyword.upper()} clause", fragment=fragment)
        body = text[mark.end():end].strip()
        if not body:
            raise ExecutionFailure(f"Empty {keyword.upper()} clause", fragment=fragment)
        clauses[keyword] = body
        last = position

    if "from" not in clauses:
        raise ExecutionFailure("Unable to determine collection from SELECT query", fragment=text[:80])
    if "on" in clauses and "join" not in clauses:
        raise ExecutionFailure("ON without JOIN", fragment=clauses["on"])
    return clauses


def _mask_quoted(text: str) -> str:
    """Blank out quoted string contents, keeping offsets."""
    return _QUOTED_RE.sub(lambda m: m.group(0)[0] + " " * (len(m.group(0)) - 2) + m.group(0)[-1], text)


def _keyword(mark: re.Match) -> str:
    keyword = " ".join(mark.group(1).lower().split())
    return "join" if keyword in _JOIN_KEYWORDS else keyword


def _is_low_stock(condition: str) -> bool:
    normalized = _QUALIFIER_RE.sub("", condition.lower())
    normalized = re.sub(r"\s+", " ", normalized).strip()
    return any(pattern.match(normalized) for pattern in _LOW_STOCK_RES)


def _number(text: str) -> Union[int, float]:
    return float(text) if "." in text else int(text)


def _excerpt(text: str, position: Optional[int], width: int = 40) -> str:
    if position is None:
        return text[:width * 2]
    return text[max(0, position - width):position + width]
