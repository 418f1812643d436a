import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable

from tile_recommender.errors import (
    RecommendationTimeoutError,
    SessionConflictError,
    SessionNotFoundError,
    TurnLimitError,
)
from tile_recommender.models.database import (
    create_chat_session,
    delete_chat_session,
    get_chat_session,
    update_chat_session,
)
from tile_recommender.models.schemas import (
    ChatSession,
    ChatTurn,
    RecommendationResponse,
    SessionHistory,
)
from tile_recommender.services.recommendation import RecommendationEngine, RecommendationResult

log = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChatService:
    """Ties a prompt and an optional session id to the engine and the session store."""

    def __init__(
        self,
        db_path: str,
        engine: RecommendationEngine,
        max_turns: int = 20,
        ttl_hours: int = 24,
        request_timeout: float | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db_path = db_path
        self.engine = engine
        self.max_turns = max_turns
        self.ttl = timedelta(hours=ttl_hours)
        self.request_timeout = request_timeout
        self.clock = clock

    async def converse(self, prompt: str, session_id: str | None = None) -> RecommendationResponse:
        """Start a new chat session or continue an existing one."""
        if not session_id:
            return await self._start(prompt)

        session = await get_chat_session(self.db_path, session_id, self.clock())
        if session is None:
            raise SessionNotFoundError("Chat session not found or expired. Start a new conversation.")

        if session.user_turn_count() >= self.max_turns:
            raise TurnLimitError(f"Maximum {self.max_turns} turns reached. Please start a new session.")

        result = await self._run_engine(prompt, session)

        now = self.clock()
        expected_version = session.version
        session.display_history.extend(self._turns(prompt, result, now))
        session.messages = result.updated_messages
        session.last_products = result.products or []
        session.updated_at = now
        session.expires_at = now + self.ttl
        session.version = expected_version + 1

        if not await update_chat_session(self.db_path, session, expected_version):
            log.warning("CHAT_CONFLICT | session_id=%s | version=%d", session_id, expected_version)
            raise SessionConflictError()

        log.info("CHAT_TURN | session_id=%s | turns=%d | state=%s", session_id, session.user_turn_count(), result.state.value)
        return RecommendationResponse(
            session_id=session_id,
            message=result.message,
            products=result.products,
            history=session.display_history,
        )

    async def get_history(self, session_id: str) -> SessionHistory:
        """Session history without sending a new prompt."""
        session = await get_chat_session(self.db_path, session_id, self.clock())
        if session is None:
            raise SessionNotFoundError()
        return SessionHistory(
            session_id=session.session_id,
            history=session.display_history,
            last_products=session.last_products,
            created_at=session.created_at,
            updated_at=session.updated_at,
        )

    async def delete_session(self, session_id: str):
        if not await delete_chat_session(self.db_path, session_id, self.clock()):
            raise SessionNotFoundError()
        log.info("CHAT_DELETED | session_id=%s", session_id)

    # -- Helpers --

    async def _start(self, prompt: str) -> RecommendationResponse:
        result = await self._run_engine(prompt, None)

        now = self.clock()
        session = ChatSession(
            session_id=str(uuid.uuid4()),
            messages=result.updated_messages,
            display_history=self._turns(prompt, result, now),
            last_products=result.products or [],
            created_at=now,
            updated_at=now,
            expires_at=now + self.ttl,
        )
        await create_chat_session(self.db_path, session)

        log.info("CHAT_CREATED | session_id=%s | state=%s", session.session_id, result.state.value)
        return RecommendationResponse(
            session_id=session.session_id,
            message=result.message,
            products=result.products,
            history=session.display_history,
        )

    async def _run_engine(self, prompt: str, session: ChatSession | None) -> RecommendationResult:
        history = session.messages if session else []
        try:
            return await asyncio.wait_for(self.engine.recommend(prompt, history), timeout=self.request_timeout)
        except asyncio.TimeoutError as e:
            log.error("CHAT_TIMEOUT | session_id=%s | timeout=%ss", session.session_id if session else None, self.request_timeout)
            raise RecommendationTimeoutError() from e

    def _turns(self, prompt: str, result: RecommendationResult, now: datetime) -> list[ChatTurn]:
        return [
            ChatTurn(role="user", text=prompt, timestamp=now),
            ChatTurn(
                role="assistant",
                text=result.message or "",
                products=result.products or None,
                timestamp=now,
            ),
        ]
