"""
FastAPI Backend for the Socratic Math Tutor

Provides REST API endpoints with:
- Tutoring turns (current and legacy request shapes)
- Session snapshots with summary stats
- Supabase or in-memory session persistence
"""

from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from typing import Any, Dict
import os
import sys
import time
from datetime import datetime as dt
import logging
import signal

# Setup enhanced logging with pretty formatting
from lib.logger import setup_logging, get_logger

# Add the socratic_math_tutor package to Python path
backend_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(backend_dir)

package_src = os.path.join(project_root, 'socratic_math_tutor', 'src')
if os.path.exists(package_src) and package_src not in sys.path:
    sys.path.insert(0, package_src)

from socratic_math_tutor.config import TutorSettings
from socratic_math_tutor.curriculum_store import JsonCurriculumStore
from socratic_math_tutor.errors import SessionNotFound, TutorError
from socratic_math_tutor.llm_client import TutorLLMClient
from socratic_math_tutor.session_manager import create_session_store
from socratic_math_tutor.session_state import session_stats
from socratic_math_tutor.turn_models import SessionSnapshot, TurnRequest
from socratic_math_tutor.turn_orchestrator import TurnOrchestrator

settings = TutorSettings.from_env()

# Setup logging with colors and structured output
setup_logging(level=getattr(logging, settings.log_level, logging.INFO), use_colors=True)

# Create main logger
logger = get_logger("backend.main")

SERVICE_NAME = "tutor-api"
API_VERSION = "1.0.0"

# Singleton pattern for the orchestrator to avoid reinitializing on every request
_orchestrator_instance = None


def get_orchestrator() -> TurnOrchestrator:
    """Get or create singleton TurnOrchestrator instance."""
    global _orchestrator_instance
    if _orchestrator_instance is None:
        supabase = None
        if settings.use_supabase:
            from lib.supabase_client import get_supabase_client
            supabase = get_supabase_client(settings)

        curriculum_root = settings.curriculum_root
        if not os.path.isabs(curriculum_root):
            curriculum_root = os.path.join(project_root, curriculum_root)

        _orchestrator_instance = TurnOrchestrator(
            session_store=create_session_store(settings, supabase_client=supabase),
            curriculum_store=JsonCurriculumStore(curriculum_root),
            llm_client=TutorLLMClient(settings),
            settings=settings,
        )
        logger.success("Turn orchestrator ready", data={
            "session_backend": settings.session_backend,
            "curriculum_root": curriculum_root,
            "model": settings.openai_model,
        })
    return _orchestrator_instance


# Initialize FastAPI app
app = FastAPI(
    title="Socratic Math Tutor API",
    description="REST API for the Socratic mathematics tutoring engine",
    version=API_VERSION
)

# CORS middleware for Next.js frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:3001",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _short(value: Any) -> Any:
    if isinstance(value, str) and len(value) > 20:
        return value[:20] + "..."
    return value


# ==================== API Endpoints ====================

@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": "Socratic Math Tutor API",
        "version": API_VERSION,
        "session_backend": settings.session_backend,
    }


@app.get("/api/tutor/turn")
async def turn_health():
    """Health check for the turn endpoint."""
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "timestamp": dt.now().isoformat(),
        "version": API_VERSION,
    }


@app.post("/api/tutor/turn")
async def tutor_turn(request: Request, orchestrator: TurnOrchestrator = Depends(get_orchestrator)):
    """Process one tutoring turn."""
    start_time = time.time()

    try:
        payload: Dict[str, Any] = await request.json()
    except ValueError:
        logger.warning("Request body is not valid JSON")
        return JSONResponse(status_code=400, content={"success": False, "error": "Invalid JSON body"})

    if not isinstance(payload, dict):
        return JSONResponse(status_code=400, content={"success": False, "error": "Invalid request format"})

    try:
        turn_request = TurnRequest.from_payload(payload)
    except ValidationError as e:
        logger.warning("Invalid turn request", data={"errors": str(e.errors())})
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "Invalid request format"}
        )

    logger.request("POST", "/api/tutor/turn", user_id=turn_request.uid, data={
        "session_id": _short(turn_request.session_id),
        "intent": turn_request.intent,
        "message_length": len(turn_request.student_message),
    })

    response = await orchestrator.handle_turn(turn_request)

    logger.response(response.status_code, "/api/tutor/turn", duration=time.time() - start_time, data={
        "success": response.success,
        "intent": response.intent,
        "hint_level": response.hint_level,
        "topic_completed": response.topic_completed,
    })
    return JSONResponse(
        status_code=response.status_code,
        content=response.model_dump(exclude={"status_code"}, exclude_none=True)
    )


@app.get("/api/tutor/sessions/{session_id}", response_model=SessionSnapshot)
async def get_session(session_id: str, orchestrator: TurnOrchestrator = Depends(get_orchestrator)):
    """Get a stored session with summary stats."""
    try:
        session = await orchestrator.get_session_snapshot(session_id)
        if session is None:
            raise SessionNotFound("Session not found", session_id=session_id)
    except TutorError as e:
        logger.warning(f"Session lookup failed: {e.message}", data={"session_id": _short(session_id)})
        return JSONResponse(status_code=e.status_code, content={"detail": e.message})

    return SessionSnapshot.from_session(session, session_stats(session))


if __name__ == "__main__":
    import uvicorn

    def handle_exit(*args):
        """Handle graceful shutdown."""
        logger.section("SERVER SHUTDOWN", {"reason": "signal received"})
        sys.exit(0)

    signal.signal(signal.SIGINT, handle_exit)
    signal.signal(signal.SIGTERM, handle_exit)

    try:
        uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
    except KeyboardInterrupt:
        logger.info("🛑 Server stopped.")
        sys.exit(0)
