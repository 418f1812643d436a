"""Application error types.

Every error the service raises on purpose derives from ``AppError`` and carries
the HTTP status it maps to. The handlers in ``main.py`` turn them into a
``{"message": ..., "errors": [...]}`` body.
"""


class AppError(Exception):
    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None, errors: list[dict] | None = None):
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)


class ConfigurationError(Exception):
    """Raised at startup when the environment cannot build a working service."""


# --- Client input ---

class ToolProtocolError(AppError):
    """The model invoked a tool it was never offered."""

    status_code = 422
    default_message = "The assistant requested an unknown tool."


class ToolArgumentsError(AppError):
    status_code = 422
    default_message = "The assistant produced invalid search filters."


class TurnLimitError(AppError):
    status_code = 400


# --- Sessions ---

class SessionNotFoundError(AppError):
    status_code = 404
    default_message = "Chat session not found or expired."


class SessionConflictError(AppError):
    status_code = 409
    default_message = "Chat session was updated by another request. Please retry."


# --- LLM providers ---

class LLMProviderError(AppError):
    status_code = 502
    default_message = "The language model provider failed to respond."


class LLMRateLimitError(LLMProviderError):
    status_code = 429
    default_message = "Too many requests. Please try again later."


class LLMResponseError(LLMProviderError):
    default_message = "The language model returned a malformed response."


class ToolLoopLimitError(AppError):
    status_code = 502
    default_message = "The assistant did not produce an answer. Please try again."


class RecommendationTimeoutError(AppError):
    status_code = 504
    default_message = "The recommendation took too long. Please try again."
