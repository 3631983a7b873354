"""Process-wide, read-only context shared by the pipeline components."""
from dataclasses import dataclass

from pymongo.database import Database

from stockchat.catalog import CATALOG, SchemaCatalog
from stockchat.config import Settings
from stockchat.interpreter import QueryInterpreter
from stockchat.llm import LanguageModel
from stockchat.narrator import ResultNarrator
from stockchat.repo import InventoryRepository
from stockchat.translator import QueryTranslator
from stockchat.validator import QuerySafetyValidator


@dataclass(frozen=True)
class QueryContext:
    """Built once at startup and passed explicitly into each request."""
    settings: Settings
    catalog: SchemaCatalog
    translator: QueryTranslator
    validator: QuerySafetyValidator
    interpreter: QueryInterpreter
    narrator: ResultNarrator


def build_context(
    settings: Settings,
    database: Database,
    llm: LanguageModel | None = None,
    catalog: SchemaCatalog = CATALOG,
) -> QueryContext:
    llm = llm or LanguageModel(settings)
    repo = InventoryRepository(database, catalog, max_results=settings.max_results)
    return QueryContext(
        settings=settings,
        catalog=catalog,
        translator=QueryTranslator(llm, catalog),
        validator=QuerySafetyValidator(catalog),
        interpreter=QueryInterpreter(catalog, repo),
        narrator=ResultNarrator(llm),
    )
