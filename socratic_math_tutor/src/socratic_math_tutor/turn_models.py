"""
Turn API Models

Request/response shapes of the tutoring turn endpoint.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from socratic_math_tutor.curriculum_path import CurriculumPath
from socratic_math_tutor.session_state import SessionStats, StepProgress, TutorSession

START_INTENT = "start"


class CurriculumPathPayload(BaseModel):
    grade: str = Field(..., min_length=1)
    subject: str = Field(..., min_length=1)
    topic: str = Field(..., min_length=1)
    subtopic: str = Field(..., min_length=1)

    def to_path(self) -> CurriculumPath:
        return CurriculumPath(
            grade=self.grade,
            subject=self.subject,
            topic=self.topic,
            subtopic=self.subtopic,
        )


class TurnRequest(BaseModel):
    """
    One student turn.

    Identifier and message checks live in the orchestrator so that they
    surface as InputError rather than as schema errors.
    """
    uid: str = ""
    session_id: str = ""
    curriculum_path: Optional[CurriculumPathPayload] = None
    topic_key: Optional[str] = None
    student_message: str = ""
    intent: Optional[str] = None

    @property
    def is_start(self) -> bool:
        return self.intent == START_INTENT

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "TurnRequest":
        """
        Build a request from either the current or the legacy body shape.

        Legacy bodies use {text, user_id, session_id, subtopic_path, intent}.
        subtopic_path is normally a curriculum path object; older clients
        send the flat topic key instead.
        """
        data = dict(payload or {})
        if "uid" not in data and "user_id" in data:
            data["uid"] = data.pop("user_id")
        if "student_message" not in data and "text" in data:
            data["student_message"] = data.pop("text")
        if "subtopic_path" in data:
            legacy_path = data.pop("subtopic_path")
            target = "curriculum_path" if isinstance(legacy_path, dict) else "topic_key"
            if data.get(target) is None:
                data[target] = legacy_path

        for name in ("uid", "session_id", "student_message"):
            if data.get(name) is None:
                data.pop(name, None)
        return cls.model_validate(data)


class StepProgressPayload(BaseModel):
    step_number: int
    concept_name: str
    questions_asked: int = 0
    questions_completed: int = 0
    completed: bool = False

    @classmethod
    def from_step(cls, step: StepProgress) -> "StepProgressPayload":
        return cls(
            step_number=step.step_number,
            concept_name=step.concept_name,
            questions_asked=step.questions_asked,
            questions_completed=step.questions_completed,
            completed=step.completed,
        )


class TurnResponse(BaseModel):
    """Result of one turn, successful or not."""
    success: bool
    tutor_message: str = ""
    intent: str = ""
    concept_tags: List[str] = Field(default_factory=list)
    hint_level: int = 0
    session_id: str = ""
    mastery_score: float = 0.0
    current_mastery_step: int = 1
    mastery_step_progress: List[StepProgressPayload] = Field(default_factory=list)
    student_frustrated: bool = False
    topic_completed: bool = False
    error: Optional[str] = None
    status_code: int = 200

    @classmethod
    def failure(cls, session_id: str, message: str, status_code: int) -> "TurnResponse":
        return cls(success=False, session_id=session_id or "", error=message, status_code=status_code)


class SessionSnapshot(BaseModel):
    """Read-only view of a stored session plus its summary stats."""
    session_id: str
    uid: str
    topic_key: str
    turn_count: int
    mastery_score: float
    current_hint_level: int
    frustrated_turns: int
    completed: bool
    current_mastery_step: int
    mastery_step_progress: List[StepProgressPayload]
    average_hint_level: float
    session_duration_minutes: int
    last_activity: str

    @classmethod
    def from_session(cls, session: TutorSession, stats: SessionStats) -> "SessionSnapshot":
        return cls(
            session_id=session.session_id,
            uid=session.uid,
            topic_key=session.topic_key,
            turn_count=len(session.turns),
            mastery_score=session.mastery_score,
            current_hint_level=session.current_hint_level,
            frustrated_turns=session.frustrated_turns,
            completed=session.completed,
            current_mastery_step=session.current_mastery_step,
            mastery_step_progress=[StepProgressPayload.from_step(s) for s in session.mastery_step_progress],
            average_hint_level=stats.average_hint_level,
            session_duration_minutes=stats.session_duration_minutes,
            last_activity=session.last_activity.isoformat(),
        )
