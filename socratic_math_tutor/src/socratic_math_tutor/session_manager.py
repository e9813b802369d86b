"""
Session Manager for State Persistence

Stores TutorSession records behind a single SessionStore interface.
Two interchangeable backends: a process-local map (development and tests)
and a Supabase table (production). The orchestrator only sees the interface.

Ordering rules:
- Turn appends for one session are serialised. The next turn number is always
  computed from the latest persisted turn count, never from a caller's copy.
- Progress fields (mastery score, current step, step progress) are
  last-writer-wins.
"""

import asyncio
import copy
import json
import logging
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List
from datetime import datetime

from socratic_math_tutor.config import TutorSettings
from socratic_math_tutor.errors import InputError, SessionNotFound, StoreUnavailable
from socratic_math_tutor.session_state import NewTurn, StepProgress, TutorSession, TutorTurn

logger = logging.getLogger(__name__)


class SessionStore(ABC):
    """Capability interface for session persistence."""

    @abstractmethod
    async def get(self, session_id: str) -> Optional[TutorSession]:
        """Load a session, or None if it does not exist."""

    @abstractmethod
    async def create_if_absent(self, session: TutorSession) -> TutorSession:
        """Persist a new session unless one with the same id exists; return the stored one."""

    @abstractmethod
    async def append_turn(self, session_id: str, new_turn: NewTurn) -> TutorSession:
        """Append a turn with the next turn number and return the updated session."""

    @abstractmethod
    async def apply_progress_update(
        self,
        session_id: str,
        mastery_score: float,
        current_step: int,
        step_progress: List[StepProgress]
    ) -> None:
        """Overwrite the mastery progress fields."""

    @abstractmethod
    async def mark_completed(self, session_id: str) -> None:
        """Latch the session as completed."""

    async def get_or_create_session(
        self,
        uid: str,
        session_id: str,
        topic_key: str
    ) -> TutorSession:
        """
        Get existing session or create new one.

        Args:
            uid: User identifier
            session_id: Session identifier
            topic_key: Flat topic key of the subtopic being studied

        Returns:
            Stored TutorSession

        Raises:
            InputError: The session id is already owned by another user
            StoreUnavailable: The underlying store cannot be reached
        """
        session = await self.get(session_id)
        if session is None:
            session = await self.create_if_absent(self._new_session(uid, session_id, topic_key))
            if session.uid == uid:
                logger.info(f"💾 [SessionStore] Created session {session_id} for topic {topic_key}")

        if session.uid != uid:
            logger.warning(f"⚠️ [SessionStore] Session {session_id} is owned by another user")
            raise InputError("Session belongs to another user", session_id=session_id)
        return session

    @staticmethod
    def _new_session(uid: str, session_id: str, topic_key: str) -> TutorSession:
        now = datetime.now()
        return TutorSession(
            uid=uid,
            session_id=session_id,
            topic_key=topic_key,
            turns=[],
            created_at=now,
            last_activity=now,
            mastery_score=0.0,
            frustrated_turns=0,
            current_hint_level=0,
            completed=False,
            current_mastery_step=1,
            mastery_step_progress=[],
        )


class InMemorySessionStore(SessionStore):
    """
    Process-local session store.

    Returns deep copies so callers never mutate stored state directly.
    Appends for one session run under a per-session asyncio lock.
    """

    def __init__(self):
        self._sessions: Dict[str, TutorSession] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        return self._locks.setdefault(session_id, asyncio.Lock())

    async def get(self, session_id: str) -> Optional[TutorSession]:
        session = self._sessions.get(session_id)
        return copy.deepcopy(session) if session else None

    async def create_if_absent(self, session: TutorSession) -> TutorSession:
        async with self._lock_for(session.session_id):
            if session.session_id not in self._sessions:
                self._sessions[session.session_id] = copy.deepcopy(session)
            return copy.deepcopy(self._sessions[session.session_id])

    async def append_turn(self, session_id: str, new_turn: NewTurn) -> TutorSession:
        async with self._lock_for(session_id):
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFound("Session not found", session_id=session_id)

            turn = TutorTurn.from_new_turn(new_turn, turn_number=len(session.turns) + 1)
            session.turns.append(turn)
            session.last_activity = turn.timestamp
            session.current_hint_level = turn.hint_level
            if turn.student_frustrated:
                session.frustrated_turns += 1
            return copy.deepcopy(session)

    async def apply_progress_update(
        self,
        session_id: str,
        mastery_score: float,
        current_step: int,
        step_progress: List[StepProgress]
    ) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound("Session not found", session_id=session_id)
        session.mastery_score = mastery_score
        session.current_mastery_step = current_step
        session.mastery_step_progress = copy.deepcopy(step_progress)
        session.last_activity = datetime.now()

    async def mark_completed(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound("Session not found", session_id=session_id)
        session.completed = True
        session.last_activity = datetime.now()


class SupabaseSessionStore(SessionStore):
    """
    Session store backed by the Supabase `tutor_sessions` table.

    Turns are kept in a JSON column next to a `turn_count` column. Appends are
    compare-and-set on `turn_count` and retried on conflict, so two concurrent
    turns can never both claim the same turn number.

    supabase-py queries are blocking, so each one runs in a worker thread.
    """

    TABLE = "tutor_sessions"
    MAX_APPEND_ATTEMPTS = 3

    def __init__(self, supabase_client):
        """
        Initialize SupabaseSessionStore.

        Args:
            supabase_client: Supabase client instance
        """
        self.supabase = supabase_client

    # ----- serialisation -----

    def session_to_dict(self, session: TutorSession) -> Dict[str, Any]:
        """
        Convert TutorSession to dictionary for storage.

        Args:
            session: TutorSession object

        Returns:
            Row dictionary
        """
        return {
            "uid": session.uid,
            "session_id": session.session_id,
            "topic_key": session.topic_key,
            "turns": json.dumps([self.turn_to_dict(turn) for turn in session.turns]),
            "turn_count": len(session.turns),
            "created_at": session.created_at.isoformat(),
            "last_activity": session.last_activity.isoformat(),
            "mastery_score": session.mastery_score,
            "frustrated_turns": session.frustrated_turns,
            "current_hint_level": session.current_hint_level,
            "completed": session.completed,
            "current_mastery_step": session.current_mastery_step,
            "mastery_step_progress": json.dumps(
                [self.step_to_dict(step) for step in session.mastery_step_progress]
            ),
        }

    def dict_to_session(self, data: Dict[str, Any]) -> TutorSession:
        """
        Convert a stored row to a TutorSession.

        Args:
            data: Row dictionary from database

        Returns:
            TutorSession object
        """
        turns = [self.dict_to_turn(turn) for turn in _load_json_list(data.get("turns"))]
        steps = [
            self.dict_to_step(step)
            for step in _load_json_list(data.get("mastery_step_progress"))
        ]
        return TutorSession(
            uid=data["uid"],
            session_id=data["session_id"],
            topic_key=data.get("topic_key") or "",
            turns=turns,
            created_at=_parse_datetime(data.get("created_at")),
            last_activity=_parse_datetime(data.get("last_activity")),
            mastery_score=float(data.get("mastery_score") or 0.0),
            frustrated_turns=int(data.get("frustrated_turns") or 0),
            current_hint_level=int(data.get("current_hint_level") or 0),
            completed=bool(data.get("completed", False)),
            current_mastery_step=int(data.get("current_mastery_step") or 1),
            mastery_step_progress=steps,
        )

    @staticmethod
    def turn_to_dict(turn: TutorTurn) -> Dict[str, Any]:
        return {
            "turn_number": turn.turn_number,
            "student_message": turn.student_message,
            "tutor_message": turn.tutor_message,
            "intent": turn.intent,
            "concept_tags": list(turn.concept_tags),
            "hint_level": turn.hint_level,
            "timestamp": turn.timestamp.isoformat(),
            "mastery_gained": list(turn.mastery_gained),
            "student_frustrated": turn.student_frustrated,
            "student_correct": turn.student_correct,
        }

    @staticmethod
    def dict_to_turn(data: Dict[str, Any]) -> TutorTurn:
        return TutorTurn(
            turn_number=int(data["turn_number"]),
            student_message=data.get("student_message", ""),
            tutor_message=data.get("tutor_message", ""),
            intent=data.get("intent", ""),
            concept_tags=list(data.get("concept_tags") or []),
            hint_level=int(data.get("hint_level") or 0),
            timestamp=_parse_datetime(data.get("timestamp")),
            mastery_gained=list(data.get("mastery_gained") or []),
            student_frustrated=bool(data.get("student_frustrated", False)),
            student_correct=data.get("student_correct"),
        )

    @staticmethod
    def step_to_dict(step: StepProgress) -> Dict[str, Any]:
        return {
            "step": step.step_number,
            "concept": step.concept_name,
            "questions_asked": step.questions_asked,
            "questions_completed": step.questions_completed,
            "completed": step.completed,
        }

    @staticmethod
    def dict_to_step(data: Dict[str, Any]) -> StepProgress:
        return StepProgress(
            step_number=int(data["step"]),
            concept_name=data.get("concept", ""),
            questions_asked=int(data.get("questions_asked") or 0),
            questions_completed=int(data.get("questions_completed") or 0),
            completed=bool(data.get("completed", False)),
        )

    # ----- store operations -----

    async def _execute(self, query, action: str, session_id: str):
        try:
            return await asyncio.to_thread(query.execute)
        except Exception as e:
            logger.error(f"❌ [SupabaseSessionStore] {action} failed for {session_id}: {e}")
            raise StoreUnavailable(f"Session store unavailable during {action}", session_id=session_id) from e

    async def _fetch_row(self, session_id: str) -> Optional[Dict[str, Any]]:
        query = self.supabase.table(self.TABLE).select('*').eq('session_id', session_id)
        result = await self._execute(query, "read", session_id)
        if result.data and len(result.data) > 0:
            return result.data[0]
        return None

    async def get(self, session_id: str) -> Optional[TutorSession]:
        row = await self._fetch_row(session_id)
        return self.dict_to_session(row) if row else None

    async def create_if_absent(self, session: TutorSession) -> TutorSession:
        existing = await self._fetch_row(session.session_id)
        if existing:
            return self.dict_to_session(existing)

        query = self.supabase.table(self.TABLE).insert(self.session_to_dict(session))
        result = await self._execute(query, "create", session.session_id)
        if result.data and len(result.data) > 0:
            return self.dict_to_session(result.data[0])
        return session

    async def append_turn(self, session_id: str, new_turn: NewTurn) -> TutorSession:
        for attempt in range(1, self.MAX_APPEND_ATTEMPTS + 1):
            row = await self._fetch_row(session_id)
            if row is None:
                raise SessionNotFound("Session not found", session_id=session_id)

            session = self.dict_to_session(row)
            expected_count = len(session.turns)
            turn = TutorTurn.from_new_turn(new_turn, turn_number=expected_count + 1)
            turns = session.turns + [turn]

            update_data = {
                "turns": json.dumps([self.turn_to_dict(t) for t in turns]),
                "turn_count": len(turns),
                "last_activity": turn.timestamp.isoformat(),
                "current_hint_level": turn.hint_level,
                "frustrated_turns": session.frustrated_turns + (1 if turn.student_frustrated else 0),
            }
            query = self.supabase.table(self.TABLE) \
                .update(update_data) \
                .eq('session_id', session_id) \
                .eq('turn_count', expected_count)
            result = await self._execute(query, "append turn", session_id)

            if result.data and len(result.data) > 0:
                return self.dict_to_session(result.data[0])

            logger.warning(
                f"⚠️ [SupabaseSessionStore] Turn {expected_count + 1} conflict on {session_id} "
                f"(attempt {attempt}/{self.MAX_APPEND_ATTEMPTS}), retrying"
            )

        raise StoreUnavailable(
            f"Could not append turn after {self.MAX_APPEND_ATTEMPTS} attempts",
            session_id=session_id
        )

    async def apply_progress_update(
        self,
        session_id: str,
        mastery_score: float,
        current_step: int,
        step_progress: List[StepProgress]
    ) -> None:
        update_data = {
            "mastery_score": mastery_score,
            "current_mastery_step": current_step,
            "mastery_step_progress": json.dumps([self.step_to_dict(step) for step in step_progress]),
            "last_activity": datetime.now().isoformat(),
        }
        query = self.supabase.table(self.TABLE).update(update_data).eq('session_id', session_id)
        result = await self._execute(query, "progress update", session_id)
        if not result.data:
            raise SessionNotFound("Session not found", session_id=session_id)

    async def mark_completed(self, session_id: str) -> None:
        update_data = {
            "completed": True,
            "last_activity": datetime.now().isoformat(),
        }
        query = self.supabase.table(self.TABLE).update(update_data).eq('session_id', session_id)
        result = await self._execute(query, "mark completed", session_id)
        if not result.data:
            raise SessionNotFound("Session not found", session_id=session_id)


def create_session_store(settings: TutorSettings, supabase_client=None) -> SessionStore:
    """
    Build the session store selected by configuration.

    Args:
        settings: Tutor settings (SESSION_BACKEND)
        supabase_client: Client to use when the Supabase backend is selected

    Returns:
        SessionStore implementation
    """
    if settings.use_supabase:
        if supabase_client is None:
            raise ValueError("SESSION_BACKEND=supabase requires a Supabase client")
        logger.info("✅ [SessionStore] Using Supabase session store")
        return SupabaseSessionStore(supabase_client)

    logger.info("✅ [SessionStore] Using in-memory session store")
    return InMemorySessionStore()


def _load_json_list(value: Any) -> List[Dict[str, Any]]:
    if not value:
        return []
    if isinstance(value, str):
        return json.loads(value)
    return list(value)


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if value:
        return datetime.fromisoformat(value)
    return datetime.now()
