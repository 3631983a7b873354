"""Routes for natural language inventory chat."""
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from stockchat.context import QueryContext
from stockchat.models import ChatResponse, HistoryResponse, MessageResponse, QueryRequest
from stockchat.query_engine import ChatRequestHandler

router = APIRouter(prefix="/api/chat", tags=["chat"])


def get_context(request: Request) -> QueryContext:
    """The read-only context built in the app lifespan."""
    return request.app.state.context


@router.post("/query", response_model=ChatResponse, response_model_exclude_none=True)
def process_query(request: QueryRequest, context: QueryContext = Depends(get_context)):
    """
    Answer a natural language question about the inventory.

    Accepts questions like:
    - "Which products are below their minimum stock level?"
    - "Quels produits fournit Acme ?"
    - "How many items were shipped out last week?"

    Returns the narrated answer with the generated query, the result rows and
    the ordered thinking steps. Requests to modify data get a polite refusal
    as a normal assistant turn.
    """
    if not request.message or not request.message.strip():
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": "Query message is required"},
        )

    outcome = ChatRequestHandler(context).handle(request.message.strip())
    body = ChatResponse.from_outcome(outcome)
    if outcome.status_code != 200:
        return JSONResponse(
            status_code=outcome.status_code,
            content=body.model_dump(by_alias=True, exclude_none=True),
        )
    return body


@router.get("/history", response_model=HistoryResponse)
def get_query_history():
    """Query history is not persisted; always empty."""
    return HistoryResponse()


@router.delete("/history", response_model=MessageResponse)
def clear_query_history():
    """Query history is not persisted; nothing to clear."""
    return MessageResponse(success=True, message="Query history cleared")
