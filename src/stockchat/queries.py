"""Data types passed between the pipeline components."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union


class QueryKind(str, Enum):
    PIPELINE = "pipeline"
    FILTER = "filter"
    SELECT = "select"


@dataclass(frozen=True)
class AggregationPipeline:
    collection: str
    stages: list[dict]
    raw: str
    kind: QueryKind = QueryKind.PIPELINE


@dataclass(frozen=True)
class FilterQuery:
    collection: str
    filter: dict
    projection: Optional[dict]
    raw: str
    sort: Optional[list[tuple[str, int]]] = None
    limit: Optional[int] = None
    kind: QueryKind = QueryKind.FILTER


@dataclass(frozen=True)
class DeclarativeSelect:
    """A minimal SELECT, already lowered to a filter predicate.

    ``populate`` names the relation field replaced by its referenced
    document for the join idioms. ``join_predicate`` filters on that
    document and is applied after it is populated.
    """
    collection: str
    predicate: dict
    projection: Optional[dict]
    raw: str
    populate: Optional[str] = None
    join_predicate: Optional[dict] = None
    sort: Optional[list[tuple[str, int]]] = None
    limit: Optional[int] = None
    kind: QueryKind = QueryKind.SELECT


StructuredQuery = Union[AggregationPipeline, FilterQuery, DeclarativeSelect]


@dataclass(frozen=True)
class ValidationVerdict:
    allowed: bool
    reason: Optional[str] = None


@dataclass
class ExecutionResult:
    rows: list[dict[str, Any]] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)
