"""
Session State Data Model

Defines the tutoring session aggregate: the session itself, its append-only
turn log and the per-step mastery progress.
"""

from dataclasses import dataclass, field
from typing import Optional, List
from datetime import datetime


@dataclass
class StepProgress:
    """Progress on one mastery step of the topic's progression."""
    step_number: int
    concept_name: str
    questions_asked: int = 0
    questions_completed: int = 0
    completed: bool = False  # Monotonic: never reset once True


@dataclass
class NewTurn:
    """A turn as produced by the orchestrator, before the store numbers and stamps it."""
    student_message: str
    tutor_message: str
    intent: str
    concept_tags: List[str] = field(default_factory=list)
    hint_level: int = 0
    mastery_gained: List[str] = field(default_factory=list)
    student_frustrated: bool = False
    student_correct: Optional[bool] = None


@dataclass
class TutorTurn:
    """One student-message / tutor-message exchange. Immutable once appended."""
    turn_number: int
    student_message: str
    tutor_message: str
    intent: str
    concept_tags: List[str] = field(default_factory=list)
    hint_level: int = 0
    timestamp: datetime = field(default_factory=datetime.now)
    mastery_gained: List[str] = field(default_factory=list)
    student_frustrated: bool = False
    student_correct: Optional[bool] = None

    @classmethod
    def from_new_turn(cls, new_turn: NewTurn, turn_number: int) -> "TutorTurn":
        return cls(
            turn_number=turn_number,
            student_message=new_turn.student_message,
            tutor_message=new_turn.tutor_message,
            intent=new_turn.intent,
            concept_tags=list(new_turn.concept_tags),
            hint_level=new_turn.hint_level,
            timestamp=datetime.now(),
            mastery_gained=list(new_turn.mastery_gained),
            student_frustrated=new_turn.student_frustrated,
            student_correct=new_turn.student_correct,
        )


@dataclass
class TutorSession:
    """Root aggregate for one {user, session_id} tutoring session."""
    uid: str
    session_id: str
    topic_key: str
    turns: List[TutorTurn] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
    last_activity: datetime = field(default_factory=datetime.now)
    mastery_score: float = 0.0
    frustrated_turns: int = 0
    current_hint_level: int = 0
    completed: bool = False  # Terminal: a new attempt needs a new session_id
    current_mastery_step: int = 1
    mastery_step_progress: List[StepProgress] = field(default_factory=list)


@dataclass
class SessionStats:
    """Summary figures for a session."""
    total_turns: int
    average_hint_level: float
    mastery_score: float
    session_duration_minutes: int


def session_stats(session: TutorSession) -> SessionStats:
    """Compute summary statistics for a session."""
    total_turns = len(session.turns)
    average_hint_level = (
        sum(turn.hint_level for turn in session.turns) / total_turns
        if total_turns > 0 else 0.0
    )
    duration = session.last_activity - session.created_at
    return SessionStats(
        total_turns=total_turns,
        average_hint_level=average_hint_level,
        mastery_score=session.mastery_score,
        session_duration_minutes=round(duration.total_seconds() / 60),
    )
