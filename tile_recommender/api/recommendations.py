from fastapi import APIRouter, Depends, Request

from tile_recommender.dependencies import get_chat_service
from tile_recommender.models.schemas import (
    DeleteSessionResponse,
    RecommendationRequest,
    RecommendationResponse,
    SessionHistory,
)
from tile_recommender.rate_limit import genai_rate_limit, limiter
from tile_recommender.services.chat import ChatService

router = APIRouter(prefix="/api/recommendations", tags=["recommendations"])


@router.post("", response_model=RecommendationResponse)
@limiter.limit(genai_rate_limit)
async def recommend(
    request: Request,
    payload: RecommendationRequest,
    chat: ChatService = Depends(get_chat_service),
):
    return await chat.converse(payload.prompt, payload.session_id)


@router.get("/{session_id}/history", response_model=SessionHistory)
async def get_history(
    session_id: str,
    chat: ChatService = Depends(get_chat_service),
):
    return await chat.get_history(session_id)


@router.delete("/{session_id}", response_model=DeleteSessionResponse)
async def delete_session(
    session_id: str,
    chat: ChatService = Depends(get_chat_service),
):
    await chat.delete_session(session_id)
    return DeleteSessionResponse(message="Session deleted.")
