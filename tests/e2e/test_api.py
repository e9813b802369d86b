"""
End-to-End Tests for the HTTP API

Drives the FastAPI app with TestClient. The orchestrator dependency is
replaced with one wired to in-memory stores and a scripted LLM.
"""

import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "socratic_math_tutor", "src"))
sys.path.insert(0, os.path.join(project_root, "backend"))

from fastapi.testclient import TestClient

import main
from socratic_math_tutor.curriculum_store import JsonCurriculumStore
from socratic_math_tutor.errors import GenerationFailure
from socratic_math_tutor.llm_client import GenerationResult
from socratic_math_tutor.session_manager import InMemorySessionStore
from socratic_math_tutor.turn_orchestrator import GENERIC_FAILURE_MESSAGE, TurnOrchestrator

CURRICULUM_PATH = {
    "grade": "primary-6",
    "subject": "mathematics",
    "topic": "algebra",
    "subtopic": "simple-algebraic-expressions",
}


class QueueLLM:
    def __init__(self):
        self.replies = []

    async def generate(self, prompt, session_id=None):
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def llm():
    return QueueLLM()


@pytest.fixture
def client(llm):
    orchestrator = TurnOrchestrator(
        InMemorySessionStore(),
        JsonCurriculumStore(os.path.join(project_root, "curriculum")),
        llm,
    )
    main.app.dependency_overrides[main.get_orchestrator] = lambda: orchestrator
    with TestClient(main.app) as test_client:
        yield test_client
    main.app.dependency_overrides.clear()


def opening_reply():
    return GenerationResult(
        tutor_message="Hi! If a bag has n marbles and you add 5, how many are there?",
        intent="ask_question",
        concept_tags=["unknown as a letter"],
    )


class TestHealth:
    """Health endpoints."""

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_turn_health(self, client):
        body = client.get("/api/tutor/turn").json()

        assert body["status"] == "healthy"
        assert body["service"] == "tutor-api"
        assert body["version"] == "1.0.0"
        assert "timestamp" in body


class TestTurnEndpoint:
    """POST /api/tutor/turn."""

    def test_start_turn(self, client, llm):
        llm.replies.append(opening_reply())
        response = client.post("/api/tutor/turn", json={
            "uid": "student-1",
            "session_id": "api-1",
            "curriculum_path": CURRICULUM_PATH,
            "intent": "start",
        })

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["intent"] == "ask_question"
        assert body["current_mastery_step"] == 1
        assert body["mastery_step_progress"][0]["concept_name"] == "unknown as a letter"
        assert "status_code" not in body

    def test_legacy_shape(self, client, llm):
        llm.replies.append(opening_reply())
        response = client.post("/api/tutor/turn", json={
            "user_id": "student-1",
            "session_id": "api-legacy",
            "subtopic_path": "primary_6_mathematics_algebra_simple_algebraic_expressions",
            "text": "",
            "intent": "start",
        })

        assert response.status_code == 200
        assert response.json()["success"] is True

    def test_legacy_shape_with_path_object(self, client, llm):
        llm.replies.append(opening_reply())
        response = client.post("/api/tutor/turn", json={
            "user_id": "student-1",
            "session_id": "api-legacy-object",
            "subtopic_path": CURRICULUM_PATH,
            "text": "",
            "intent": "start",
        })

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["session_id"] == "api-legacy-object"
        assert body["mastery_step_progress"][0]["concept_name"] == "unknown as a letter"

    def test_missing_message_is_client_error(self, client):
        response = client.post("/api/tutor/turn", json={
            "uid": "student-1",
            "session_id": "api-2",
            "curriculum_path": CURRICULUM_PATH,
            "student_message": "",
        })

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_invalid_body(self, client):
        response = client.post(
            "/api/tutor/turn",
            content="not json",
            headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400

    def test_generation_failure(self, client, llm):
        llm.replies.append(GenerationFailure("Language model timed out after 30s"))
        response = client.post("/api/tutor/turn", json={
            "uid": "student-1",
            "session_id": "api-3",
            "curriculum_path": CURRICULUM_PATH,
            "intent": "start",
        })

        assert response.status_code == 502
        assert response.json() == {
            "success": False,
            "tutor_message": "",
            "intent": "",
            "concept_tags": [],
            "hint_level": 0,
            "session_id": "api-3",
            "mastery_score": 0.0,
            "current_mastery_step": 1,
            "mastery_step_progress": [],
            "student_frustrated": False,
            "topic_completed": False,
            "error": GENERIC_FAILURE_MESSAGE,
        }

    def test_unknown_curriculum(self, client):
        response = client.post("/api/tutor/turn", json={
            "uid": "student-1",
            "session_id": "api-4",
            "curriculum_path": {**CURRICULUM_PATH, "subtopic": "does-not-exist"},
            "intent": "start",
        })

        assert response.status_code == 404
        assert response.json()["error"] == GENERIC_FAILURE_MESSAGE


class TestSessionEndpoint:
    """GET /api/tutor/sessions/{session_id}."""

    def test_snapshot_after_turn(self, client, llm):
        llm.replies.append(opening_reply())
        client.post("/api/tutor/turn", json={
            "uid": "student-1",
            "session_id": "api-5",
            "curriculum_path": CURRICULUM_PATH,
            "intent": "start",
        })

        response = client.get("/api/tutor/sessions/api-5")

        assert response.status_code == 200
        body = response.json()
        assert body["turn_count"] == 1
        assert body["topic_key"] == "primary_6_mathematics_algebra_simple_algebraic_expressions"
        assert body["completed"] is False
        assert body["mastery_step_progress"][0]["questions_asked"] == 1

    def test_unknown_session(self, client):
        response = client.get("/api/tutor/sessions/nope")
        assert response.status_code == 404
