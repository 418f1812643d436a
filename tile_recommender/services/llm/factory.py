import logging

from tile_recommender.config import (
    DEFAULT_GEMINI_MODEL,
    DEFAULT_GROQ_MODEL,
    DEFAULT_OLLAMA_MODEL,
    Settings,
)
from tile_recommender.errors import ConfigurationError
from tile_recommender.services.llm.base import LLMProvider
from tile_recommender.services.llm.gemini import GeminiProvider
from tile_recommender.services.llm.groq import GroqProvider
from tile_recommender.services.llm.ollama import OllamaProvider

log = logging.getLogger(__name__)


def create_llm_provider(settings: Settings) -> LLMProvider:
    """Build the single provider named by ``LLM_PROVIDER``.

    Raises ConfigurationError when the provider needs a key that is not set.
    """
    provider = settings.LLM_PROVIDER
    timeout = settings.LLM_TIMEOUT_SECONDS

    if provider == "groq":
        if not settings.GROQ_API_KEY:
            raise ConfigurationError("GROQ_API_KEY is required when LLM_PROVIDER=groq")
        model = settings.LLM_MODEL or DEFAULT_GROQ_MODEL
        log.info("LLM_FACTORY | provider=groq | model=%s", model)
        return GroqProvider(settings.GROQ_API_KEY, model, base_url=settings.GROQ_BASE_URL, timeout=timeout)

    if provider == "ollama":
        model = settings.LLM_MODEL or DEFAULT_OLLAMA_MODEL
        log.info("LLM_FACTORY | provider=ollama | model=%s", model)
        return OllamaProvider(settings.OLLAMA_BASE_URL, model, timeout=timeout)

    if provider == "gemini":
        if not settings.GOOGLE_API_KEY:
            raise ConfigurationError("GOOGLE_API_KEY is required when LLM_PROVIDER=gemini")
        model = settings.LLM_MODEL or DEFAULT_GEMINI_MODEL
        log.info("LLM_FACTORY | provider=gemini | model=%s", model)
        return GeminiProvider(settings.GOOGLE_API_KEY, model, base_url=settings.GEMINI_BASE_URL, timeout=timeout)

    raise ConfigurationError(f"Unknown LLM_PROVIDER: {provider}")
