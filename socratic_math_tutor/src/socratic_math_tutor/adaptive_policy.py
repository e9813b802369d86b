"""
Adaptive Hint Policy

Detects student frustration and adjusts how much scaffolding the tutor gives.

Hint levels run from 0 (no hints) to 3 (worked micro-examples).
Algorithm:
- Correct answer -> step down one level (support fades gradually)
- Incorrect answer -> step up one level, or two if both of the last two turns
  already showed frustration or needed hints
"""

from typing import Optional
from dataclasses import dataclass

from socratic_math_tutor.safety import contains_frustration_keywords
from socratic_math_tutor.session_state import TutorSession


@dataclass
class HintAdjustment:
    """Result of a hint level check."""
    previous_level: int
    new_level: int
    direction: Optional[str]  # "increase", "decrease", or None
    reason: str


class AdaptivePolicy:
    """
    Frustration detection and hint escalation rules.
    """

    MIN_HINT_LEVEL = 0
    MAX_HINT_LEVEL = 3

    # Thresholds
    FRUSTRATED_TURNS_THRESHOLD = 2  # Session-level frustration latch
    VERY_SHORT_MESSAGE_CHARS = 5
    SHORT_MESSAGE_CHARS = 10
    SHORT_HISTORY_WINDOW = 3
    SHORT_HISTORY_MIN_COUNT = 2
    ESCALATION_WINDOW = 2

    def detect_frustration(self, session: TutorSession, message: str) -> bool:
        """
        Check if the student is showing signs of frustration.

        Args:
            session: Session before this turn
            message: Sanitized student message

        Returns:
            True if frustrated or disengaged
        """
        if session.frustrated_turns >= self.FRUSTRATED_TURNS_THRESHOLD:
            return True

        if contains_frustration_keywords(message):
            return True

        # Disengagement without frustration vocabulary: a run of terse replies
        is_very_short = len(message.strip()) < self.VERY_SHORT_MESSAGE_CHARS
        recent_turns = session.turns[-self.SHORT_HISTORY_WINDOW:]
        recent_short = sum(
            1 for turn in recent_turns
            if len(turn.student_message.strip()) < self.SHORT_MESSAGE_CHARS
        )
        return is_very_short and recent_short >= self.SHORT_HISTORY_MIN_COUNT

    def check_adjustment(self, session: TutorSession, was_correct: bool) -> HintAdjustment:
        """
        Work out the next hint level.

        Args:
            session: Session before this turn is appended
            was_correct: Model's judgment of the student's last answer

        Returns:
            HintAdjustment with the new level and why
        """
        current = self._clamp(session.current_hint_level)

        if was_correct:
            new_level = self._clamp(current - 1)
            return HintAdjustment(
                previous_level=current,
                new_level=new_level,
                direction="decrease" if new_level != current else None,
                reason="Correct answer"
            )

        recent_turns = session.turns[-self.ESCALATION_WINDOW:]
        struggling = sum(
            1 for turn in recent_turns
            if turn.student_frustrated or turn.hint_level > 0
        )

        if struggling >= self.ESCALATION_WINDOW:
            new_level = self._clamp(current + 2)
            reason = f"Incorrect after {struggling} struggling turns"
        else:
            new_level = self._clamp(current + 1)
            reason = "Incorrect answer"

        return HintAdjustment(
            previous_level=current,
            new_level=new_level,
            direction="increase" if new_level != current else None,
            reason=reason
        )

    def determine_next_hint_level(self, session: TutorSession, was_correct: bool) -> int:
        """Next hint level in [0, 3]."""
        return self.check_adjustment(session, was_correct).new_level

    def provisional_hint_level(self, session: TutorSession, frustrated: bool) -> int:
        """
        Hint level used to shape the prompt before the model has judged the answer.

        A frustrated student is treated as if the answer was wrong; otherwise the
        current level is kept.
        """
        if frustrated:
            return self.determine_next_hint_level(session, was_correct=False)
        return self._clamp(session.current_hint_level)

    def _clamp(self, level: int) -> int:
        return max(self.MIN_HINT_LEVEL, min(self.MAX_HINT_LEVEL, level))
