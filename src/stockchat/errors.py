"""Failure kinds raised along the natural language query pipeline."""


# ============================================================================
# Custom Exceptions
# ============================================================================

class QueryPipelineError(Exception):
    """Base class for every failure the chat handler knows how to map."""
    pass


class TranslationFailure(QueryPipelineError):
    """Raised when the model could not turn the question into a query."""
    pass


class UnauthorizedOperation(QueryPipelineError):
    """Raised when a question or a generated query shows write intent.

    The message is an internal reason for the server log. It must never be
    shown to the end user.
    """

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ExecutionFailure(QueryPipelineError):
    """Raised when a candidate query cannot be parsed or run read-only."""

    def __init__(self, message: str, fragment: str | None = None):
        super().__init__(message)
        self.fragment = fragment


class NarrationFailure(QueryPipelineError):
    """Raised when the model could not narrate the query results."""
    pass


class ModelUnavailable(Exception):
    """Raised by the model client once its bounded retries are exhausted."""
    pass


class LiteralSyntaxError(ValueError):
    """Raised by the restricted literal parser on malformed or disallowed input."""

    def __init__(self, message: str, position: int | None = None):
        if position is not None:
            message = f"{message} (at offset {position})"
        super().__init__(message)
        self.position = position
