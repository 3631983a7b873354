"""Pydantic models for API request/response schemas."""
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from stockchat.query_engine import ChatOutcome


# ============================================================================
# Chat
# ============================================================================

class QueryRequest(BaseModel):
    message: Optional[str] = Field(None, description="Free-text question about the inventory, in any language")


class ChatResponse(BaseModel):
    """Assistant turn; refusals are successful turns, apologies are not."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    original_message: Optional[str] = Field(None, alias="originalMessage")
    query: Optional[str] = None
    results: Optional[list[dict[str, Any]]] = None
    thinking: list[str] = Field(default_factory=list)
    response: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_outcome(cls, outcome: ChatOutcome) -> "ChatResponse":
        return cls(
            success=outcome.success,
            original_message=outcome.original_message,
            query=outcome.query,
            results=outcome.results,
            thinking=outcome.thinking,
            response=outcome.response,
            message=outcome.message,
            error=outcome.error,
        )


# ============================================================================
# History
# ============================================================================

class HistoryResponse(BaseModel):
    success: bool = True
    history: list[dict[str, Any]] = Field(default_factory=list)


class MessageResponse(BaseModel):
    success: bool
    message: str
