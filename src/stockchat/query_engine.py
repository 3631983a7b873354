"""Natural language inventory query handling.

Orchestrates screening, translation, validation, execution and narration
for one chat message, recording a thinking step at each transition.
"""
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from stockchat.context import QueryContext
from stockchat.errors import QueryPipelineError, UnauthorizedOperation

logger = logging.getLogger(__name__)

REFUSAL_MESSAGE = (
    "I'm sorry, I can only provide information about your inventory. I cannot delete, "
    "update, or modify any data. Would you like to view or search for specific inventory "
    "items instead?"
)

APOLOGY_MESSAGE = (
    "I encountered an issue processing your request. Could you try asking in a different way?"
)

THINK_UNDERSTAND = "Understanding your question..."
THINK_SCHEMA = "Analyzing inventory database schema..."
THINK_TRANSLATE = "Translating to database query..."
THINK_VALIDATE = "Validating query safety..."
THINK_EXECUTE = "Executing database query..."
THINK_NARRATE = "Formatting results into natural language..."

# Destructive verb followed by an inventory noun, e.g. "delete all products"
_DESTRUCTIVE_RE = re.compile(
    r"\b(delete|remove|drop|update|insert|modify|truncate|erase|wipe|clear)\s+"
    r"(?:(?:a|an|the|one|all|every|each|from|of|my|your|this|these|those)\s+)*"
    r"(products?|suppliers?|categor(?:y|ies)|items?|records?|database|inventory|stocks?|movements?)\b",
    re.IGNORECASE,
)


class Stage(str, Enum):
    RECEIVED = "received"
    SCREENING = "screening"
    TRANSLATING = "translating"
    VALIDATING = "validating"
    EXECUTING = "executing"
    NARRATING = "narrating"
    COMPLETED = "completed"


@dataclass
class ChatOutcome:
    success: bool
    original_message: str
    thinking: list[str] = field(default_factory=list)
    response: Optional[str] = None
    query: Optional[str] = None
    results: Optional[list[dict]] = None
    message: Optional[str] = None
    error: Optional[str] = None
    status_code: int = 200


def is_destructive_request(message: str) -> bool:
    """Coarse check for obviously destructive prompts, run before any model call."""
    return _DESTRUCTIVE_RE.search(message) is not None


class ChatRequestHandler:
    """Handles one message end to end. Holds no per-request state."""

    def __init__(self, context: QueryContext):
        self.context = context

    def handle(self, message: str) -> ChatOutcome:
        thinking = [THINK_UNDERSTAND]
        stage = Stage.RECEIVED

        try:
            stage = Stage.SCREENING
            if is_destructive_request(message):
                raise UnauthorizedOperation("Destructive request detected in natural language query")
            thinking.append(THINK_SCHEMA)

            stage = Stage.TRANSLATING
            thinking.append(THINK_TRANSLATE)
            candidate = self.context.translator.translate(message)

            stage = Stage.VALIDATING
            thinking.append(THINK_VALIDATE)
            query_text = self.context.validator.validate(candidate)

            stage = Stage.EXECUTING
            thinking.append(THINK_EXECUTE)
            query, result = self.context.interpreter.run(query_text)

            stage = Stage.NARRATING
            thinking.append(THINK_NARRATE)
            response = self.context.narrator.narrate(message, query.raw, result.rows)

        except UnauthorizedOperation as e:
            logger.warning(f"Unauthorized operation during {stage.value}: {e.reason}")
            return ChatOutcome(
                success=True,
                original_message=message,
                thinking=thinking,
                response=REFUSAL_MESSAGE,
            )

        except QueryPipelineError as e:
            fragment = getattr(e, "fragment", None)
            logger.warning(
                f"{type(e).__name__} during {stage.value}: {e}"
                + (f" [fragment: {fragment}]" if fragment else "")
            )
            return self._apology(message, thinking, e)

        except Exception as e:
            logger.exception(f"Internal error during {stage.value}")
            return self._apology(message, thinking, e)

        return ChatOutcome(
            success=True,
            original_message=message,
            thinking=thinking,
            response=response,
            query=query.raw,
            results=result.rows,
        )

    def _apology(self, message: str, thinking: list[str], error: Exception) -> ChatOutcome:
        detail = None
        if self.context.settings.is_development:
            detail = f"{type(error).__name__}: {error}"
        return ChatOutcome(
            success=False,
            original_message=message,
            thinking=thinking,
            message=APOLOGY_MESSAGE,
            error=detail,
            status_code=500,
        )
