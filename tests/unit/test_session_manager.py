"""
Unit Tests for the Session Stores

Tests get-or-create, turn numbering and progress updates for the in-memory
store and the Supabase store (against a fake table client).
"""

import asyncio
import copy
import pytest
import sys
import os
import threading
from types import SimpleNamespace

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "socratic_math_tutor", "src"))

from socratic_math_tutor.config import TutorSettings
from socratic_math_tutor.errors import InputError, SessionNotFound, StoreUnavailable
from socratic_math_tutor.session_manager import (
    InMemorySessionStore,
    SupabaseSessionStore,
    create_session_store,
)
from socratic_math_tutor.session_state import NewTurn, StepProgress, session_stats

TOPIC_KEY = "primary_6_mathematics_algebra_simple_algebraic_expressions"


def make_turn(message="n + 5", frustrated=False, hint_level=0):
    return NewTurn(
        student_message=message,
        tutor_message="What does n stand for?",
        intent="ask_question",
        concept_tags=["unknown as a letter"],
        hint_level=hint_level,
        student_frustrated=frustrated,
    )


class FakeQuery:
    """Chainable stand-in for a postgrest query builder."""

    def __init__(self, table, op, payload=None):
        self.table = table
        self.op = op
        self.payload = payload
        self.filters = []

    def eq(self, column, value):
        self.filters.append((column, value))
        return self

    def _matches(self, row):
        return all(row.get(column) == value for column, value in self.filters)

    def execute(self):
        client = self.table.client
        client.execute_threads.add(threading.get_ident())
        if client.fail:
            raise ConnectionError("network down")

        if self.op == "select":
            return SimpleNamespace(data=[copy.deepcopy(r) for r in client.rows if self._matches(r)])
        if self.op == "insert":
            client.rows.append(copy.deepcopy(self.payload))
            return SimpleNamespace(data=[copy.deepcopy(self.payload)])

        # update
        if client.conflicts and any(column == "turn_count" for column, _ in self.filters):
            client.conflicts -= 1
            return SimpleNamespace(data=[])
        updated = []
        for row in client.rows:
            if self._matches(row):
                row.update(copy.deepcopy(self.payload))
                updated.append(copy.deepcopy(row))
        return SimpleNamespace(data=updated)


class FakeTable:
    def __init__(self, client):
        self.client = client

    def select(self, columns="*"):
        return FakeQuery(self, "select")

    def insert(self, payload):
        return FakeQuery(self, "insert", payload)

    def update(self, payload):
        return FakeQuery(self, "update", payload)


class FakeSupabase:
    def __init__(self):
        self.rows = []
        self.fail = False
        self.conflicts = 0
        self.tables = []
        self.execute_threads = set()

    def table(self, name):
        self.tables.append(name)
        return FakeTable(self)


class TestInMemorySessionStore:
    """Test suite for InMemorySessionStore."""

    @pytest.fixture
    def store(self):
        return InMemorySessionStore()

    @pytest.mark.asyncio
    async def test_new_session_defaults(self, store):
        session = await store.get_or_create_session("u1", "s1", TOPIC_KEY)

        assert session.uid == "u1"
        assert session.topic_key == TOPIC_KEY
        assert session.turns == []
        assert session.mastery_score == 0.0
        assert session.current_mastery_step == 1
        assert session.current_hint_level == 0
        assert not session.completed

    @pytest.mark.asyncio
    async def test_existing_session_returned(self, store):
        await store.get_or_create_session("u1", "s1", TOPIC_KEY)
        await store.append_turn("s1", make_turn())

        session = await store.get_or_create_session("u1", "s1", TOPIC_KEY)
        assert len(session.turns) == 1

    @pytest.mark.asyncio
    async def test_session_owned_by_another_user_is_rejected(self, store):
        await store.get_or_create_session("alice", "s1", TOPIC_KEY)
        await store.append_turn("s1", make_turn())

        with pytest.raises(InputError):
            await store.get_or_create_session("bob", "s1", TOPIC_KEY)

        session = await store.get("s1")
        assert session.uid == "alice"
        assert len(session.turns) == 1

    @pytest.mark.asyncio
    async def test_turn_numbers_are_gapless(self, store):
        await store.get_or_create_session("u1", "s1", TOPIC_KEY)
        for _ in range(4):
            await store.append_turn("s1", make_turn())

        session = await store.get("s1")
        assert [t.turn_number for t in session.turns] == [1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_concurrent_appends_never_collide(self, store):
        await store.get_or_create_session("u1", "s1", TOPIC_KEY)
        await asyncio.gather(*(store.append_turn("s1", make_turn(f"answer {i}")) for i in range(10)))

        session = await store.get("s1")
        assert [t.turn_number for t in session.turns] == list(range(1, 11))

    @pytest.mark.asyncio
    async def test_append_updates_counters(self, store):
        await store.get_or_create_session("u1", "s1", TOPIC_KEY)
        session = await store.append_turn("s1", make_turn("idk", frustrated=True, hint_level=2))

        assert session.frustrated_turns == 1
        assert session.current_hint_level == 2
        assert session.last_activity == session.turns[0].timestamp

    @pytest.mark.asyncio
    async def test_append_to_missing_session(self, store):
        with pytest.raises(SessionNotFound):
            await store.append_turn("missing", make_turn())

    @pytest.mark.asyncio
    async def test_returned_copies_are_detached(self, store):
        session = await store.get_or_create_session("u1", "s1", TOPIC_KEY)
        session.mastery_score = 0.9

        stored = await store.get("s1")
        assert stored.mastery_score == 0.0

    @pytest.mark.asyncio
    async def test_progress_update_and_completion(self, store):
        await store.get_or_create_session("u1", "s1", TOPIC_KEY)
        await store.apply_progress_update("s1", 0.5, 2, [StepProgress(1, "a", 2, 2, True)])
        await store.mark_completed("s1")
        await store.mark_completed("s1")

        session = await store.get("s1")
        assert session.mastery_score == 0.5
        assert session.current_mastery_step == 2
        assert session.mastery_step_progress[0].completed
        assert session.completed

    @pytest.mark.asyncio
    async def test_session_stats(self, store):
        await store.get_or_create_session("u1", "s1", TOPIC_KEY)
        await store.append_turn("s1", make_turn(hint_level=1))
        await store.append_turn("s1", make_turn(hint_level=3))

        stats = session_stats(await store.get("s1"))
        assert stats.total_turns == 2
        assert stats.average_hint_level == 2.0


class TestSupabaseSessionStore:
    """Test suite for SupabaseSessionStore."""

    @pytest.fixture
    def client(self):
        return FakeSupabase()

    @pytest.fixture
    def store(self, client):
        return SupabaseSessionStore(client)

    @pytest.mark.asyncio
    async def test_create_and_read(self, store, client):
        created = await store.get_or_create_session("u1", "s1", TOPIC_KEY)

        assert created.session_id == "s1"
        assert client.rows[0]["turn_count"] == 0
        assert set(client.tables) == {"tutor_sessions"}

        loaded = await store.get("s1")
        assert loaded.topic_key == TOPIC_KEY
        assert loaded.current_mastery_step == 1

    @pytest.mark.asyncio
    async def test_session_owned_by_another_user_is_rejected(self, store, client):
        await store.get_or_create_session("alice", "s1", TOPIC_KEY)

        with pytest.raises(InputError):
            await store.get_or_create_session("bob", "s1", TOPIC_KEY)

        assert len(client.rows) == 1
        assert client.rows[0]["uid"] == "alice"

    @pytest.mark.asyncio
    async def test_queries_run_off_the_event_loop(self, store, client):
        loop_thread = threading.get_ident()

        await store.get_or_create_session("u1", "s1", TOPIC_KEY)
        await store.append_turn("s1", make_turn())

        assert client.execute_threads
        assert loop_thread not in client.execute_threads

    @pytest.mark.asyncio
    async def test_append_round_trips_turns(self, store):
        await store.get_or_create_session("u1", "s1", TOPIC_KEY)
        await store.append_turn("s1", make_turn("idk", frustrated=True))
        session = await store.append_turn("s1", make_turn())

        assert [t.turn_number for t in session.turns] == [1, 2]
        assert session.turns[0].student_frustrated
        assert session.turns[1].concept_tags == ["unknown as a letter"]
        assert session.frustrated_turns == 1

    @pytest.mark.asyncio
    async def test_append_retries_on_conflict(self, store, client):
        await store.get_or_create_session("u1", "s1", TOPIC_KEY)
        client.conflicts = 2

        session = await store.append_turn("s1", make_turn())
        assert [t.turn_number for t in session.turns] == [1]

    @pytest.mark.asyncio
    async def test_append_gives_up_after_max_attempts(self, store, client):
        await store.get_or_create_session("u1", "s1", TOPIC_KEY)
        client.conflicts = SupabaseSessionStore.MAX_APPEND_ATTEMPTS

        with pytest.raises(StoreUnavailable):
            await store.append_turn("s1", make_turn())

    @pytest.mark.asyncio
    async def test_append_to_missing_session(self, store):
        with pytest.raises(SessionNotFound):
            await store.append_turn("missing", make_turn())

    @pytest.mark.asyncio
    async def test_unreachable_store(self, store, client):
        client.fail = True
        with pytest.raises(StoreUnavailable):
            await store.get_or_create_session("u1", "s1", TOPIC_KEY)

    @pytest.mark.asyncio
    async def test_progress_fields_round_trip(self, store):
        await store.get_or_create_session("u1", "s1", TOPIC_KEY)
        steps = [StepProgress(1, "unknown as a letter", 3, 2, False), StepProgress(2, "evaluating", 1, 1, True)]
        await store.apply_progress_update("s1", 0.6, 2, steps)
        await store.mark_completed("s1")

        session = await store.get("s1")
        assert session.mastery_score == 0.6
        assert session.current_mastery_step == 2
        assert session.mastery_step_progress == steps
        assert session.completed


def test_create_session_store_selects_backend():
    assert isinstance(create_session_store(TutorSettings(session_backend="memory")), InMemorySessionStore)
    assert isinstance(
        create_session_store(TutorSettings(session_backend="supabase"), supabase_client=FakeSupabase()),
        SupabaseSessionStore
    )
    with pytest.raises(ValueError):
        create_session_store(TutorSettings(session_backend="supabase"))
