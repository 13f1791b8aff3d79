"""Unit tests for the per-user state store."""

import asyncio

import pytest

from reminder_engine.models.learning import LearningOutcome, LearningOutcomeType
from reminder_engine.services.store import UserStateStore


class TestUserStateStore:
    def test_get_creates_empty_state(self):
        store = UserStateStore()
        state = store.get("u1")
        assert state.context is None
        assert state.patterns == []
        assert store.get("u1") is state

    def test_peek_does_not_create(self):
        store = UserStateStore()
        assert store.peek("u1") is None
        assert store.peek("u1") is None

    def test_one_lock_per_user(self):
        store = UserStateStore()
        assert store.lock("u1") is store.lock("u1")
        assert store.lock("u1") is not store.lock("u2")

    @pytest.mark.asyncio
    async def test_users_do_not_block_each_other(self):
        store = UserStateStore()
        async with store.lock("u1"):
            await asyncio.wait_for(store.lock("u2").acquire(), timeout=1)
            store.lock("u2").release()


class TestConcurrentLearning:
    @pytest.mark.asyncio
    async def test_concurrent_updates_are_not_lost(
        self, pattern_store, state_store, make_context, user_id
    ):
        context = make_context()
        outcome = LearningOutcome(
            type=LearningOutcomeType.POSITIVE, confidence=0.9, context="context_observation"
        )

        await asyncio.gather(
            *(pattern_store.learn_from_context(user_id, context, outcome) for _ in range(10))
        )

        patterns = state_store.get(user_id).patterns
        assert len(patterns) == 1
        assert patterns[0].frequency == 10
        assert len(state_store.get(user_id).learning_sessions) == 10
