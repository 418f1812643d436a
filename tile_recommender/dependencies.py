from fastapi import Depends, Request

from tile_recommender.config import settings
from tile_recommender.services.catalog import CatalogService
from tile_recommender.services.chat import ChatService
from tile_recommender.services.llm.base import LLMProvider
from tile_recommender.services.recommendation import RecommendationEngine


def get_db_path() -> str:
    """Provide the database path to endpoint functions."""
    return settings.SQLITE_DB_PATH


def get_llm_provider(request: Request) -> LLMProvider:
    """The provider built once in the app lifespan."""
    return request.app.state.llm_provider


def get_catalog(db_path: str = Depends(get_db_path)) -> CatalogService:
    return CatalogService(db_path)


def get_recommendation_engine(
    llm: LLMProvider = Depends(get_llm_provider),
    catalog: CatalogService = Depends(get_catalog),
) -> RecommendationEngine:
    return RecommendationEngine(
        llm,
        catalog,
        max_iterations=settings.LLM_MAX_TOOL_ITERATIONS,
        result_limit=settings.RECOMMENDATION_RESULT_LIMIT,
    )


def get_chat_service(
    db_path: str = Depends(get_db_path),
    engine: RecommendationEngine = Depends(get_recommendation_engine),
) -> ChatService:
    return ChatService(
        db_path,
        engine,
        max_turns=settings.MAX_CONVERSATION_TURNS,
        ttl_hours=settings.SESSION_TTL_HOURS,
        request_timeout=settings.REQUEST_TIMEOUT_SECONDS,
    )
