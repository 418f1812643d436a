from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings

BASE_DIR = Path(__file__).resolve().parent.parent

DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"
DEFAULT_GROQ_MODEL = "llama-3.1-8b-instant"
DEFAULT_OLLAMA_MODEL = "llama3.1:8b"


class Settings(BaseSettings):
    # LLM provider selection; LLM_MODEL falls back to the provider default
    LLM_PROVIDER: Literal["gemini", "groq", "ollama"] = "gemini"
    LLM_MODEL: str | None = None
    LLM_TIMEOUT_SECONDS: float = 60.0
    LLM_MAX_TOOL_ITERATIONS: int = 5

    GOOGLE_API_KEY: str = ""
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"
    GROQ_API_KEY: str = ""
    GROQ_BASE_URL: str = "https://api.groq.com/openai/v1"
    OLLAMA_BASE_URL: str = "http://localhost:11434"

    SQLITE_DB_PATH: str = str(BASE_DIR / "data" / "store.db")

    # Chat sessions
    MAX_CONVERSATION_TURNS: int = 20
    SESSION_TTL_HOURS: int = 24
    SESSION_REAPER_INTERVAL_SECONDS: int = 300

    RECOMMENDATION_RESULT_LIMIT: int = 10
    REQUEST_TIMEOUT_SECONDS: float = 120.0

    # Per-client limit on the LLM-backed chat route
    RATE_LIMIT_ENABLED: bool = True
    GENAI_RATE_LIMIT: str = "10/15minutes"

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
