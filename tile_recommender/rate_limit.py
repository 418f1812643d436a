from slowapi import Limiter
from slowapi.util import get_remote_address

from tile_recommender.config import settings

RATE_LIMIT_MESSAGE = "Too many requests, please try again later."

# Per-client limits, keyed on the remote address; in-memory storage per worker
limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)


def genai_rate_limit() -> str:
    """Limit for routes that call the LLM provider."""
    return settings.GENAI_RATE_LIMIT
