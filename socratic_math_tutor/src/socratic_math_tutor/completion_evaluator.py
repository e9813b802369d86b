"""Topic completion rules."""

import logging

from socratic_math_tutor.curriculum_store import CompletionPolicy
from socratic_math_tutor.session_state import TutorSession

logger = logging.getLogger(__name__)


def is_topic_complete(session: TutorSession, policy: CompletionPolicy) -> bool:
    """
    Check whether a session has satisfied the topic's completion policy.

    An under-specified policy never completes a topic.
    """
    steps = session.mastery_step_progress

    if policy.requires_all_steps:
        return bool(steps) and all(step.completed for step in steps)

    if policy.total_questions:
        total_asked = sum(step.questions_asked for step in steps)
        return total_asked >= policy.total_questions

    logger.debug(f"🔍 [CompletionEvaluator] Policy for {session.topic_key} has no criteria")
    return False
