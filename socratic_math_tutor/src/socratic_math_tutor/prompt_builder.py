"""
Prompt Builder

Composes the single prompt string sent to the language model for one turn:
role instructions, curriculum progression, recent history, adaptive
instructions and the JSON response contract.
"""

from dataclasses import dataclass
from typing import Optional

from socratic_math_tutor.curriculum_store import CurriculumContent
from socratic_math_tutor.session_state import TutorSession

HISTORY_TURNS = 3

RESPONSE_INTENTS = ("ask_question", "give_hint", "concept_closing")


@dataclass
class PromptContext:
    """Everything the prompt for one turn depends on."""
    session: TutorSession
    content: CurriculumContent
    student_message: str
    hint_level: int
    frustrated: bool
    intent: Optional[str] = None

    @property
    def turn_count(self) -> int:
        return len(self.session.turns) + 1


SYSTEM_PROMPT = """You are a supportive mathematics coach using Socratic questioning.

TEACHING PHILOSOPHY:
- NEVER give full solutions or direct answers
- Ask exactly ONE concise guiding question per turn, then wait
- Break problems into small steps, one step per turn
- Ask the student to explain their thinking before you explain
- Praise effort, never judge

MATH FORMATTING:
- Math expressions use double dollars: $$n + 5$$, $$\\frac{1}{2}$$
- Currency stays plain text: $2, $0.50"""


def build_prompt(context: PromptContext) -> str:
    """Build the prompt for the LLM."""
    content = context.content
    session = context.session

    prompt = SYSTEM_PROMPT

    topic_name = content.name or (content.path.subtopic if content.path else session.topic_key)
    prompt += f"\n\nTopic: {topic_name}"
    if content.learning_objective:
        prompt += f"\nLearning objective: {content.learning_objective}"
    prompt += f"\nTurn number: {context.turn_count}"
    prompt += f"\nHint level (0-3): {context.hint_level}"

    if context.turn_count == 1:
        prompt += "\n\nFIRST TURN: welcome the student and open with a diagnostic question."
        if content.intro_context:
            prompt += f"\nContext: {content.intro_context}"
        if content.mastery_progression:
            prompt += f"\nExample opening question: {content.mastery_progression[0].sample_question}"

    prompt += "\n\n" + _progression_section(content)
    prompt += "\n\n" + _history_section(session)
    prompt += "\n\n" + _adaptive_section(context)

    if context.student_message:
        prompt += f"\n\nCurrent student message: {context.student_message}"
    elif context.intent == "start":
        prompt += "\n\nThe student has just opened the topic and has not written anything yet."

    return prompt


def _progression_section(content: CurriculumContent) -> str:
    if not content.mastery_progression:
        return "MASTERY PROGRESSION:\n- No progression defined"

    lines = ["MASTERY PROGRESSION (follow in order):"]
    for step in content.mastery_progression:
        lines.append(
            f"Step {step.step} - {step.concept}: sample \"{step.sample_question}\"; "
            f"{step.question_count} question(s) required; success: {step.mastery_criteria}"
        )
    return "\n".join(lines)


def _history_section(session: TutorSession) -> str:
    if not session.turns:
        return "SESSION HISTORY:\n- This is the first interaction in this session"

    lines = ["RECENT CONVERSATION:"]
    for turn in session.turns[-HISTORY_TURNS:]:
        lines.append(f"Student: {turn.student_message}")
        lines.append(f"Tutor: {turn.tutor_message}")

    if session.mastery_step_progress:
        lines.append("")
        lines.append("STEP PROGRESS:")
        for step in session.mastery_step_progress:
            status = " (COMPLETED)" if step.completed else ""
            lines.append(
                f"Step {step.step_number} ({step.concept_name}): "
                f"{step.questions_asked} asked, {step.questions_completed} answered correctly{status}"
            )
    return "\n".join(lines)


def _adaptive_section(context: PromptContext) -> str:
    session = context.session
    content = context.content
    lines = ["INSTRUCTIONS FOR THIS TURN:"]

    index = session.current_mastery_step - 1
    if content.mastery_progression and 0 <= index < len(content.mastery_progression):
        step = content.mastery_progression[index]
        progress = session.mastery_step_progress[index] if index < len(session.mastery_step_progress) else None
        if progress is None or not progress.completed:
            done = progress.questions_completed if progress else 0
            remaining = max(0, step.question_count - done)
            lines.append(f"- Current step is {step.step}: use ONLY the concept tag \"{step.concept}\"")
            lines.append(f"- {remaining} more correctly answered question(s) needed for this step")

    if context.frustrated:
        lines.append("- The student seems frustrated: give a short worked micro-example before continuing")
    if context.hint_level >= 2:
        lines.append("- Give more scaffolding than usual, but still no full answer")

    concepts = [step.concept for step in content.mastery_progression]
    if concepts:
        lines.append("- Available concept tags: " + ", ".join(f"\"{c}\"" for c in concepts))

    lines.append("")
    lines.append("Respond ONLY with a JSON object:")
    lines.append("{")
    lines.append('  "tutor_message": "your reply; if intent is ask_question it MUST contain a question",')
    lines.append(f'  "intent": "{"|".join(RESPONSE_INTENTS)}",')
    lines.append('  "concept_tags": ["concept the message covers"],')
    lines.append('  "student_correct": true or false (was the student\'s last answer correct),')
    lines.append('  "hint_level": 0')
    lines.append("}")
    lines.append("- ask_question: a completely new question")
    lines.append("- give_hint: guidance or a guiding question on the current problem")
    lines.append("- concept_closing: wrapping up a completed concept")
    return "\n".join(lines)
