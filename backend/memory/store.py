import asyncio
import json
import re
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from analysis.schema import STATE_NAMES
from core.config import settings
from core.logging import get_logger
from memory.models import HistoryEntry, ResolvedFilters, SessionContext

logger = get_logger(__name__)

LOCATION_TERM = re.compile(r"\b(?:in|for)\b", re.IGNORECASE)
RANKING_OR_METRIC = re.compile(r"\b(?:top|bottom|sales|revenue|profit|quantity|discount)\b", re.IGNORECASE)
HOW_ABOUT = re.compile(r"^\s*how about\b", re.IGNORECASE)


def _has_location(question: str) -> bool:
    if LOCATION_TERM.search(question):
        return True
    lowered = question.lower()
    return any(state.lower() in lowered for state in STATE_NAMES)


def enhance_question(question: str, context: SessionContext) -> str:
    """
    Rewrite an elliptical follow-up using the session's memory.

    - no location but a ranking/metric word: append "in <last state>"
    - "how about X": becomes "show <last metric> in X"

    The first applicable rule wins; otherwise the question is returned as is.
    """
    if not isinstance(question, str) or not context.last_state:
        return question

    if not _has_location(question) and RANKING_OR_METRIC.search(question):
        return f"{question} in {context.last_state}"

    if HOW_ABOUT.match(question):
        replacement = f"show {context.last_metric} in"
        return HOW_ABOUT.sub(lambda _: replacement, question, count=1)

    return question


class SessionContextStore(ABC):
    """
    Per-session conversation memory.

    Contexts are created lazily on first access. ``lock(session_id)`` holds
    the lock that serializes read-modify-write cycles of one session;
    sessions never wait on each other. A session's lock entry only lives
    while someone holds or waits on it.
    """

    def __init__(self, history_limit: int = None):
        self.history_limit = history_limit or settings.SESSION_HISTORY_LIMIT
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @asynccontextmanager
    async def lock(self, session_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[session_id] -= 1
            if not self._lock_users[session_id]:
                del self._lock_users[session_id]
                del self._locks[session_id]

    @abstractmethod
    async def _load(self, session_id: str) -> Optional[SessionContext]:
        ...

    @abstractmethod
    async def _save(self, session_id: str, context: SessionContext) -> None:
        ...

    async def get(self, session_id: str) -> SessionContext:
        context = await self._load(session_id)
        if context is None:
            context = SessionContext(last_metric=settings.DEFAULT_METRIC, last_limit=settings.DEFAULT_LIMIT)
            await self._save(session_id, context)
        return context

    async def update(
        self,
        session_id: str,
        resolved_filters: ResolvedFilters,
        result_title: str,
        chart_type: str,
    ) -> SessionContext:
        context = await self.get(session_id)

        # Absent values keep what earlier turns resolved
        if resolved_filters.state:
            context.last_state = resolved_filters.state
        if resolved_filters.year:
            context.last_year = resolved_filters.year

        context.history.append(HistoryEntry(title_text=result_title, chart_type=chart_type))
        if len(context.history) > self.history_limit:
            del context.history[: len(context.history) - self.history_limit]

        await self._save(session_id, context)
        return context

    def enhance_question(self, question: str, context: SessionContext) -> str:
        return enhance_question(question, context)


class InMemorySessionStore(SessionContextStore):
    def __init__(self, history_limit: int = None):
        super().__init__(history_limit)
        self._mem: Dict[str, SessionContext] = {}

    async def _load(self, session_id: str) -> Optional[SessionContext]:
        context = self._mem.get(session_id)
        return context.model_copy(deep=True) if context else None

    async def _save(self, session_id: str, context: SessionContext) -> None:
        self._mem[session_id] = context.model_copy(deep=True)


class RedisSessionStore(InMemorySessionStore):
    """Redis-backed contexts with TTL; falls back to process memory when Redis is unreachable."""

    def __init__(self, url: str = None, ttl_seconds: int = None, history_limit: int = None):
        super().__init__(history_limit)
        self.ttl_seconds = ttl_seconds or settings.SESSION_TTL_SECONDS
        self._redis = redis.from_url(url or settings.REDIS_URL, decode_responses=True)

    def _key(self, session_id: str) -> str:
        return f"salesviz:session:{session_id}"

    async def _load(self, session_id: str) -> Optional[SessionContext]:
        try:
            raw = await self._redis.get(self._key(session_id))
        except RedisError as e:
            logger.error(f"Redis get failed: {e}")
            return await super()._load(session_id)
        if raw:
            return SessionContext(**json.loads(raw))
        return None

    async def _save(self, session_id: str, context: SessionContext) -> None:
        try:
            await self._redis.setex(self._key(session_id), self.ttl_seconds, context.model_dump_json())
        except RedisError as e:
            logger.error(f"Redis set failed: {e}")
            await super()._save(session_id, context)


def create_session_store() -> SessionContextStore:
    if settings.SESSION_BACKEND == "redis":
        return RedisSessionStore()
    return InMemorySessionStore()
