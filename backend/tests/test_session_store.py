"""
Tests for session memory and follow-up question rewriting.
"""
import asyncio
import json
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import RedisError

from core.config import settings
from memory.models import HistoryEntry, ResolvedFilters, SessionContext
from memory.store import (
    InMemorySessionStore,
    RedisSessionStore,
    SessionContextStore,
    create_session_store,
    enhance_question,
)


@pytest.mark.asyncio
async def test_get_creates_default_context(store):
    context = await store.get("s1")

    assert context.last_state is None
    assert context.last_year is None
    assert context.last_metric == "sales"
    assert context.last_limit == 5
    assert context.history == []


@pytest.mark.asyncio
async def test_history_keeps_last_five(store):
    for i in range(1, 7):
        await store.update("s1", ResolvedFilters(), f"Q{i}", "line")

    context = await store.get("s1")
    assert [h.title_text for h in context.history] == ["Q2", "Q3", "Q4", "Q5", "Q6"]


@pytest.mark.asyncio
async def test_update_keeps_previous_filters_when_absent(store):
    await store.update("s1", ResolvedFilters(state="California", year=2017), "Top 5 Customers", "horizontal-bar")
    await store.update("s1", ResolvedFilters(), "Monthly Sales Trend", "line")

    context = await store.get("s1")
    assert context.last_state == "California"
    assert context.last_year == 2017

    await store.update("s1", ResolvedFilters(state="Texas"), "Top 5 Customers in Texas", "horizontal-bar")
    context = await store.get("s1")
    assert context.last_state == "Texas"
    assert context.last_year == 2017


@pytest.mark.asyncio
async def test_sessions_are_independent(store):
    await store.update("s1", ResolvedFilters(state="California"), "A", "line")

    assert (await store.get("s2")).last_state is None


@pytest.mark.asyncio
async def test_get_returns_a_copy(store):
    context = await store.get("s1")
    context.last_state = "Ohio"

    assert (await store.get("s1")).last_state is None


def test_base_store_is_abstract():
    with pytest.raises(TypeError):
        SessionContextStore()


@pytest.mark.asyncio
async def test_sessions_lock_independently(store):
    async with store.lock("s1"):
        # a shared lock would deadlock here
        async with store.lock("s2"):
            assert set(store._locks) == {"s1", "s2"}
    assert store._locks == {}


@pytest.mark.asyncio
async def test_locked_updates_are_not_lost(store):
    async def turn(title):
        async with store.lock("s1"):
            context = await store.get("s1")
            await asyncio.sleep(0.01)
            context.history.append(HistoryEntry(title_text=title, chart_type="line"))
            await store._save("s1", context)

    await asyncio.gather(turn("first"), turn("second"))

    context = await store.get("s1")
    assert sorted(h.title_text for h in context.history) == ["first", "second"]
    assert store._locks == {}
    assert store._lock_users == {}


# Question rewriting

def test_how_about_uses_last_metric():
    context = SessionContext(last_state="California")
    assert enhance_question("how about New York", context) == "show sales in New York"

    context = SessionContext(last_state="California", last_metric="profit")
    assert enhance_question("How about Texas", context) == "show profit in Texas"


def test_appends_last_state_to_unlocated_question():
    context = SessionContext(last_state="California")
    assert enhance_question("top 5 customers by sales", context) == "top 5 customers by sales in California"


@pytest.mark.parametrize("question", [
    "top customers in Texas",
    "Texas top customers",
    "show me the customers",
])
def test_leaves_located_or_unrelated_questions(question):
    context = SessionContext(last_state="California")
    assert enhance_question(question, context) == question


def test_no_rewrite_without_last_state():
    context = SessionContext()
    assert enhance_question("how about New York", context) == "how about New York"
    assert enhance_question("top customers", context) == "top customers"


def test_non_text_is_returned_unchanged():
    assert enhance_question(None, SessionContext(last_state="Ohio")) is None


# Backends

@pytest.fixture
def redis_store():
    store = RedisSessionStore(url="redis://localhost:6379/0", ttl_seconds=60)
    store._redis = AsyncMock()
    return store


@pytest.mark.asyncio
async def test_redis_store_round_trip(redis_store):
    redis_store._redis.get.return_value = None

    await redis_store.get("s1")

    key, ttl, payload = redis_store._redis.setex.call_args.args
    assert key == "salesviz:session:s1"
    assert ttl == 60
    assert json.loads(payload)["last_metric"] == "sales"

    redis_store._redis.get.return_value = SessionContext(last_state="Texas").model_dump_json()
    assert (await redis_store.get("s1")).last_state == "Texas"


@pytest.mark.asyncio
async def test_redis_store_falls_back_to_memory(redis_store):
    redis_store._redis.get.side_effect = RedisError("connection refused")
    redis_store._redis.setex.side_effect = RedisError("connection refused")

    await redis_store.update("s1", ResolvedFilters(state="Ohio"), "Top 5 Customers in Ohio", "horizontal-bar")

    assert (await redis_store.get("s1")).last_state == "Ohio"


def test_create_session_store(monkeypatch):
    monkeypatch.setattr(settings, "SESSION_BACKEND", "memory")
    assert isinstance(create_session_store(), InMemorySessionStore)
    assert not isinstance(create_session_store(), RedisSessionStore)

    monkeypatch.setattr(settings, "SESSION_BACKEND", "redis")
    assert isinstance(create_session_store(), RedisSessionStore)
