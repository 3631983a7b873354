"""Narration of query results back into natural language."""
import json
import logging

from stockchat.errors import ModelUnavailable, NarrationFailure
from stockchat.llm import LanguageModel

logger = logging.getLogger(__name__)

NARRATION_TEMPERATURE = 0.7
NARRATION_MAX_TOKENS = 1500

# Rows beyond this are summarized by count only
MAX_ROWS_IN_PROMPT = 50

SYSTEM_PROMPT = "You are a helpful inventory assistant that explains database results clearly."

PROMPT_TEMPLATE = """You are an inventory assistant that explains database results in natural language.

USER QUESTION: "{question}"

QUERY USED: "{query}"

QUERY RESULTS ({row_count} rows{truncated}):
{results}

Provide a clear, concise response that answers the user's question based on these results.
- Reply in the same language as the user's question (Arabic, French, English, etc.)
- Be direct and informative
- Include relevant numbers and specific product names when appropriate
- Format lists if needed for readability
- If the results are empty, say plainly that no matching data was found. Never invent data.

YOUR RESPONSE:"""


class ResultNarrator:
    """Asks the model to answer the question from the result rows."""

    def __init__(self, llm: LanguageModel):
        self.llm = llm

    def build_prompt(self, question: str, query: str, rows: list[dict]) -> str:
        shown = rows[:MAX_ROWS_IN_PROMPT]
        truncated = f", first {len(shown)} shown" if len(rows) > len(shown) else ""
        return PROMPT_TEMPLATE.format(
            question=question.replace('"', '\\"'),
            query=query,
            row_count=len(rows),
            truncated=truncated,
            results=json.dumps(shown, indent=2, ensure_ascii=False, default=str) if shown else "[] (no matching data)",
        )

    def narrate(self, question: str, query: str, rows: list[dict]) -> str:
        try:
            text = self.llm.complete(
                SYSTEM_PROMPT,
                self.build_prompt(question, query, rows),
                temperature=NARRATION_TEMPERATURE,
                max_output_tokens=NARRATION_MAX_TOKENS,
            )
        except ModelUnavailable as e:
            raise NarrationFailure(str(e))

        if not text:
            raise NarrationFailure("LLM returned an empty response")
        return text
