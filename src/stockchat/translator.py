"""Natural language to inventory query translation."""
import logging
import re
from dataclasses import dataclass

from stockchat.catalog import SchemaCatalog
from stockchat.errors import ModelUnavailable, TranslationFailure
from stockchat.llm import LanguageModel

logger = logging.getLogger(__name__)

TRANSLATION_TEMPERATURE = 0.1
TRANSLATION_MAX_TOKENS = 1500

SYSTEM_PROMPT = (
    "You are a database expert that converts natural language to read-only "
    "MongoDB queries. Respond only with the query."
)

PROMPT_TEMPLATE = """You are a database expert translating natural language questions about inventory into read-only queries.

DATABASE SCHEMA:
{schema}

Rules:
1. Generate ONLY read-only operations. NEVER insert, update, delete, drop or otherwise modify data.
2. Answer with exactly ONE of these forms:
   - db.<collection>.aggregate([ ...stages ])
   - db.<collection>.find({{ ...filter }}, {{ ...projection }})
   - SELECT <fields> FROM <collection> [alias] [JOIN <collection> [alias] ON <a.field> = <b._id>] [WHERE <field> = <value>] [ORDER BY <field> [DESC]] [LIMIT <n>]
3. Always use lowercase collection names: {collections}.
4. For name lookups (products, suppliers, categories) use a case-insensitive regex:
   {{ name: {{ $regex: 'name', $options: 'i' }} }}
5. Low stock means currentQuantity is below minimumStockLevel:
   {{ $expr: {{ $lt: ['$currentQuantity', '$minimumStockLevel'] }} }}
6. Use $lookup with the lowercase collection name to join related documents.
7. The question may be written in any language (Arabic, French, English, ...). Translate its meaning, not its words.
8. NEVER ask for clarification. If the question is ambiguous, make a reasonable assumption.
9. Do not include explanations, comments or markdown. Output the query only.

EXAMPLES:

Question: "Which products are running low?"
Query: db.products.aggregate([{{ $match: {{ $expr: {{ $lt: ['$currentQuantity', '$minimumStockLevel'] }} }} }}, {{ $sort: {{ currentQuantity: 1 }} }}])

Question: "Quels produits fournit Acme ?"
Query: db.products.aggregate([{{ $lookup: {{ from: 'suppliers', localField: 'supplier', foreignField: '_id', as: 'supplier' }} }}, {{ $unwind: '$supplier' }}, {{ $match: {{ 'supplier.name': {{ $regex: 'acme', $options: 'i' }} }} }}, {{ $project: {{ name: 1, currentQuantity: 1, 'supplier.name': 1 }} }}])

Question: "How many items were shipped out since June 1st 2024?"
Query: db.stockmovements.aggregate([{{ $match: {{ movementType: 'out', movementDate: {{ $gte: new Date('2024-06-01') }} }} }}, {{ $group: {{ _id: null, total: {{ $sum: '$quantity' }} }} }}])

USER QUESTION: "{question}"

QUERY:"""

_FENCE_RE = re.compile(r"^```[\w-]*\s*\n?(.*?)\n?\s*```$", re.DOTALL)


@dataclass(frozen=True)
class TranslationRequest:
    question: str
    schema: str


def strip_code_fence(text: str) -> str:
    """Remove a markdown code block wrapper if present."""
    cleaned = text.strip()
    match = _FENCE_RE.match(cleaned)
    if match:
        cleaned = match.group(1).strip()
    return cleaned.rstrip(";").strip()


class QueryTranslator:
    """Asks the model for a candidate query answering the question."""

    def __init__(self, llm: LanguageModel, catalog: SchemaCatalog):
        self.llm = llm
        self.catalog = catalog

    def build_request(self, question: str) -> TranslationRequest:
        return TranslationRequest(question=question, schema=self.catalog.describe())

    def build_prompt(self, request: TranslationRequest) -> str:
        return PROMPT_TEMPLATE.format(
            schema=request.schema,
            collections=", ".join(f"'{name}'" for name in self.catalog.collection_names),
            question=request.question.replace('"', '\\"'),
        )

    def translate(self, question: str) -> str:
        """Return the raw candidate query text for a question.

        Raises:
            TranslationFailure: If the model is unreachable after retries or
                returns nothing usable.
        """
        prompt = self.build_prompt(self.build_request(question))
        try:
            raw = self.llm.complete(
                SYSTEM_PROMPT,
                prompt,
                temperature=TRANSLATION_TEMPERATURE,
                max_output_tokens=TRANSLATION_MAX_TOKENS,
            )
        except ModelUnavailable as e:
            raise TranslationFailure(str(e))

        query = strip_code_fence(raw)
        if not query:
            raise TranslationFailure("LLM returned an empty query")
        logger.info(f"Generated query: {query}")
        return query
