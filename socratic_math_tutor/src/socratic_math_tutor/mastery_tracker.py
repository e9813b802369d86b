"""
Mastery Progression Tracker

Turns "which concepts were touched this turn, and by whom" into updated
per-step progress, the current-step pointer and an overall mastery score.

Progress is driven by completed questions, not correctness streaks: a student
may answer many guiding sub-questions before a concept counts. Correctness only
decides whether a student's answer counts toward a step's completion.

Each turn can carry two accounting events:
- the student answering the question that was in flight (keyed by step index)
- the tutor asking a new question (keyed by the concept tags the model emitted)

The tracker is pure: it never mutates the session it is given.
"""

import copy
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from socratic_math_tutor.curriculum_store import MasteryStep
from socratic_math_tutor.session_state import StepProgress, TutorSession

logger = logging.getLogger(__name__)

ASK_QUESTION_INTENT = "ask_question"
STUDENT_RESPONSE_INTENT = "student_response"

# Score increment per touched concept when no progression is available
FALLBACK_SCORE_INCREMENT = 0.1


@dataclass
class ProgressUpdate:
    """New values for the session's mastery progress fields."""
    mastery_score: float
    current_step: int
    step_progress: List[StepProgress]


def initial_step_progress(progression: Sequence[MasteryStep]) -> List[StepProgress]:
    """One zeroed StepProgress per mastery step."""
    return [
        StepProgress(step_number=step.step, concept_name=step.concept)
        for step in progression
    ]


def compute_mastery_score(
    step_progress: Sequence[StepProgress],
    progression: Sequence[MasteryStep]
) -> float:
    """
    Overall progress from completed questions.

    Each step contributes at most its required question count, so an
    over-answered step cannot stand in for work left on other steps.
    """
    total_required = sum(step.question_count for step in progression)
    if total_required <= 0:
        return 0.0

    credited = 0
    for index, step in enumerate(progression):
        if index < len(step_progress):
            credited += min(step_progress[index].questions_completed, step.question_count)

    return min(1.0, max(0.0, credited / total_required))


def find_step_index(step_progress: Sequence[StepProgress], concept_name: str) -> Optional[int]:
    """Index of the first step whose concept matches, or None."""
    for index, step in enumerate(step_progress):
        if step.concept_name == concept_name:
            return index
    return None


def in_flight_step(session: TutorSession) -> Optional[int]:
    """
    Index of the step whose question the student is answering this turn.

    There is nothing in flight before the first turn or before progress has
    been initialised.
    """
    if not session.turns or not session.mastery_step_progress:
        return None
    index = (session.current_mastery_step or 1) - 1
    if 0 <= index < len(session.mastery_step_progress):
        return index
    return None


class MasteryProgressionTracker:
    """Computes progress updates for a session. Stateless."""

    def update_progress(
        self,
        session: TutorSession,
        concepts_touched: Iterable[str],
        progression: Optional[Sequence[MasteryStep]],
        intent: Optional[str],
        is_student_completion: bool = False,
        student_correct: bool = False
    ) -> ProgressUpdate:
        """
        Apply one accounting event, looking steps up by concept name.

        Args:
            session: Current session snapshot (not modified)
            concepts_touched: Concept names touched by the event
            progression: Topic's mastery progression, or None if unavailable
            intent: Model intent that produced the event
            is_student_completion: True when the student answered a question
            student_correct: Model's correctness judgment for that answer

        Returns:
            ProgressUpdate with the new score, current step and step progress
        """
        concepts = list(concepts_touched)
        step_progress = self._working_progress(session, progression)

        if not progression:
            # Degraded mode: forward progress without step semantics
            score = min(1.0, session.mastery_score + FALLBACK_SCORE_INCREMENT * len(concepts))
            logger.debug(f"🔍 [MasteryTracker] No progression for {session.session_id}, fallback score {score:.2f}")
            return ProgressUpdate(
                mastery_score=score,
                current_step=session.current_mastery_step,
                step_progress=step_progress,
            )

        step_indexes = []
        for concept in concepts:
            index = find_step_index(step_progress, concept)
            if index is None:
                logger.debug(f"🔍 [MasteryTracker] Concept '{concept}' not in progression, ignored")
                continue
            step_indexes.append(index)

        return self._apply(
            session,
            step_progress,
            progression,
            step_indexes,
            intent,
            is_student_completion,
            student_correct,
        )

    def record_student_completion(
        self,
        session: TutorSession,
        progression: Optional[Sequence[MasteryStep]],
        step_index: int,
        student_correct: bool
    ) -> ProgressUpdate:
        """
        Account for the student answering the in-flight question of a step.

        The step is addressed by index; its concept name is only a label.
        """
        if not progression:
            return self.update_progress(
                session, [], progression, STUDENT_RESPONSE_INTENT,
                is_student_completion=True, student_correct=student_correct
            )

        step_progress = self._working_progress(session, progression)
        step_indexes = [step_index] if 0 <= step_index < len(step_progress) else []
        return self._apply(
            session,
            step_progress,
            progression,
            step_indexes,
            STUDENT_RESPONSE_INTENT,
            True,
            student_correct,
        )

    def record_tutor_question(
        self,
        session: TutorSession,
        progression: Optional[Sequence[MasteryStep]],
        concept_tags: Iterable[str],
        intent: Optional[str]
    ) -> ProgressUpdate:
        """Account for the tutor's new output, tagged with the concepts it covers."""
        return self.update_progress(
            session, concept_tags, progression, intent,
            is_student_completion=False, student_correct=False
        )

    def _working_progress(
        self,
        session: TutorSession,
        progression: Optional[Sequence[MasteryStep]]
    ) -> List[StepProgress]:
        if not session.mastery_step_progress and progression:
            return initial_step_progress(progression)
        return copy.deepcopy(session.mastery_step_progress)

    def _apply(
        self,
        session: TutorSession,
        step_progress: List[StepProgress],
        progression: Sequence[MasteryStep],
        step_indexes: List[int],
        intent: Optional[str],
        is_student_completion: bool,
        student_correct: bool
    ) -> ProgressUpdate:
        current_step = session.current_mastery_step or 1
        step_count = len(step_progress)

        for index in step_indexes:
            step = step_progress[index]

            if is_student_completion and student_correct:
                step.questions_completed += 1
                required = progression[index].question_count if index < len(progression) else 1
                was_completed = step.completed
                step.completed = was_completed or step.questions_completed >= required

                if step.completed and not was_completed and current_step <= index + 1:
                    current_step = max(current_step, min(index + 2, step_count))
                    logger.info(
                        f"✅ [MasteryTracker] Step {step.step_number} ({step.concept_name}) completed "
                        f"for {session.session_id}, current step -> {current_step}"
                    )
            elif intent == ASK_QUESTION_INTENT:
                step.questions_asked += 1

        return ProgressUpdate(
            mastery_score=compute_mastery_score(step_progress, progression),
            current_step=current_step,
            step_progress=step_progress,
        )
