"""
Turn Orchestrator

Coordinates one tutoring turn:
sanitize -> load/create session -> frustration + provisional hint ->
curriculum content -> LLM -> final hint -> append turn ->
progress accounting -> completion -> response.

Session, content and generation failures abort the turn. Progress accounting
and completion marking are best-effort: the student still gets the tutor's
reply if they fail.
"""

import dataclasses
import logging
import time
from typing import List, Optional

from socratic_math_tutor.adaptive_policy import AdaptivePolicy
from socratic_math_tutor.completion_evaluator import is_topic_complete
from socratic_math_tutor.config import TutorSettings
from socratic_math_tutor.curriculum_path import CurriculumPath, path_to_topic_key, resolve_curriculum_path
from socratic_math_tutor.curriculum_store import CurriculumStore
from socratic_math_tutor.errors import InputError, ProgressUpdateFailure, TutorError
from socratic_math_tutor.llm_client import GenerationResult, TutorLLMClient
from socratic_math_tutor.mastery_tracker import MasteryProgressionTracker, ProgressUpdate, in_flight_step
from socratic_math_tutor.prompt_builder import PromptContext, build_prompt
from socratic_math_tutor.safety import sanitize_student_input
from socratic_math_tutor.session_manager import SessionStore
from socratic_math_tutor.session_state import NewTurn, TutorSession
from socratic_math_tutor.turn_models import StepProgressPayload, TurnRequest, TurnResponse

logger = logging.getLogger(__name__)

GENERIC_FAILURE_MESSAGE = "Something went wrong, please try again."


class TurnOrchestrator:
    """Runs tutoring turns against a session store, curriculum store and LLM."""

    def __init__(
        self,
        session_store: SessionStore,
        curriculum_store: CurriculumStore,
        llm_client: TutorLLMClient,
        settings: Optional[TutorSettings] = None,
        policy: Optional[AdaptivePolicy] = None,
        tracker: Optional[MasteryProgressionTracker] = None
    ):
        self.session_store = session_store
        self.curriculum_store = curriculum_store
        self.llm_client = llm_client
        self.settings = settings or TutorSettings()
        self.policy = policy or AdaptivePolicy()
        self.tracker = tracker or MasteryProgressionTracker()

    async def handle_turn(self, request: TurnRequest) -> TurnResponse:
        """
        Process a turn and convert failures into a failed TurnResponse.

        Input errors keep their message. Every other failure gets one generic
        user-facing message; the detail only goes to the log.
        """
        try:
            return await self.process_turn(request)
        except InputError as e:
            logger.warning(f"⚠️ [TurnOrchestrator] Rejected turn for {request.session_id or '?'}: {e.message}")
            return TurnResponse.failure(request.session_id, e.message, e.status_code)
        except TutorError as e:
            logger.error(f"❌ [TurnOrchestrator] Turn failed for {request.session_id}: {type(e).__name__}: {e.message}")
            return TurnResponse.failure(request.session_id, GENERIC_FAILURE_MESSAGE, e.status_code)
        except Exception as e:
            logger.exception(f"❌ [TurnOrchestrator] Unexpected error for {request.session_id}: {e}")
            return TurnResponse.failure(request.session_id, GENERIC_FAILURE_MESSAGE, 500)

    async def process_turn(self, request: TurnRequest) -> TurnResponse:
        """
        Run one turn end to end.

        Args:
            request: Validated turn request

        Returns:
            Successful TurnResponse

        Raises:
            InputError: Missing identifiers or message (before any store access),
                or a session id owned by another user
            StoreUnavailable: Session could not be loaded or created
            ContentUnavailable: No curriculum content for the path
            GenerationFailure: LLM failed or returned unusable output
        """
        start_time = time.time()

        # 1. Validate and sanitize
        path = self._validate(request)
        topic_key = path_to_topic_key(path)
        message = sanitize_student_input(
            request.student_message,
            max_length=self.settings.max_student_message_length
        )
        if not message and not request.is_start:
            raise InputError("Missing student_message", session_id=request.session_id)

        # 2. Session
        session = await self.session_store.get_or_create_session(request.uid, request.session_id, topic_key)
        was_completed = session.completed
        step_in_flight = in_flight_step(session)

        # 3. Frustration and provisional hint level
        frustrated = self.policy.detect_frustration(session, message)
        provisional_hint = self.policy.provisional_hint_level(session, frustrated)

        # 4. Curriculum content
        content = await self.curriculum_store.get_content(path)
        progression = content.mastery_progression

        # 5. Generation
        prompt = build_prompt(PromptContext(
            session=session,
            content=content,
            student_message=message,
            hint_level=provisional_hint,
            frustrated=frustrated,
            intent=request.intent,
        ))
        result = await self.llm_client.generate(prompt, session_id=session.session_id)

        # 6. Authoritative hint level; an opening turn has no answer to judge
        if session.turns:
            hint_level = self.policy.determine_next_hint_level(session, result.student_correct)
        else:
            hint_level = provisional_hint

        # 7. Append turn
        mastery_gained: List[str] = []
        if step_in_flight is not None and result.student_correct:
            mastery_gained.append(session.mastery_step_progress[step_in_flight].concept_name)

        new_turn = NewTurn(
            student_message=message,
            tutor_message=result.tutor_message,
            intent=result.intent,
            concept_tags=list(result.concept_tags),
            hint_level=hint_level,
            mastery_gained=mastery_gained,
            student_frustrated=frustrated,
            student_correct=result.student_correct,
        )
        snapshot = await self._append_turn(session, new_turn)

        # 8. Progress accounting: student completion, then tutor question
        if step_in_flight is not None:
            snapshot = await self._account(
                snapshot, "student completion",
                lambda s: self.tracker.record_student_completion(
                    s, progression, step_in_flight, result.student_correct
                )
            )
        if result.concept_tags:
            snapshot = await self._account(
                snapshot, "tutor question",
                lambda s: self.tracker.record_tutor_question(
                    s, progression, result.concept_tags, result.intent
                )
            )

        # 9. Completion
        newly_completed = False
        if not was_completed and is_topic_complete(snapshot, content.completion_policy):
            newly_completed = True
            await self._mark_completed(snapshot.session_id)
        topic_completed = was_completed or newly_completed

        processing_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"✅ [TurnOrchestrator] Turn {len(snapshot.turns)} for {snapshot.session_id} in {processing_ms}ms "
            f"(intent={result.intent}, hint={hint_level}, score={snapshot.mastery_score:.2f})"
        )

        # 10. Response
        return self._build_response(snapshot, result, hint_level, frustrated, topic_completed)

    def _validate(self, request: TurnRequest) -> CurriculumPath:
        if not request.uid or not request.uid.strip():
            raise InputError("Missing uid", session_id=request.session_id)
        if not request.session_id or not request.session_id.strip():
            raise InputError("Missing session_id")

        explicit_path = request.curriculum_path.to_path() if request.curriculum_path else None
        try:
            return resolve_curriculum_path(explicit_path, request.topic_key)
        except ValueError as e:
            raise InputError(f"Missing curriculum_path or topic_key: {e}", session_id=request.session_id) from e

    async def _append_turn(self, session: TutorSession, new_turn: NewTurn) -> TutorSession:
        """Append the turn. A failed append is logged and the pre-append snapshot kept."""
        try:
            return await self.session_store.append_turn(session.session_id, new_turn)
        except TutorError as e:
            logger.error(f"❌ [TurnOrchestrator] Failed to append turn for {session.session_id}: {e.message}")
            return session

    async def _account(self, snapshot: TutorSession, event: str, compute) -> TutorSession:
        """
        Apply one progress accounting event and persist it.

        Args:
            snapshot: Latest known session state
            event: Event name for logs
            compute: Callable taking the snapshot and returning a ProgressUpdate

        Returns:
            Snapshot with the update applied, or the input snapshot if it failed
        """
        try:
            update = await self._persist_update(snapshot, event, compute)
        except ProgressUpdateFailure as e:
            logger.error(f"❌ [TurnOrchestrator] {e.message}")
            return snapshot

        return dataclasses.replace(
            snapshot,
            mastery_score=update.mastery_score,
            current_mastery_step=update.current_step,
            mastery_step_progress=update.step_progress,
        )

    async def _persist_update(self, snapshot: TutorSession, event: str, compute) -> ProgressUpdate:
        try:
            update: ProgressUpdate = compute(snapshot)
            await self.session_store.apply_progress_update(
                snapshot.session_id,
                update.mastery_score,
                update.current_step,
                update.step_progress,
            )
        except Exception as e:
            raise ProgressUpdateFailure(
                f"{event} accounting failed: {e}", session_id=snapshot.session_id
            ) from e
        return update

    async def _mark_completed(self, session_id: str) -> None:
        try:
            await self.session_store.mark_completed(session_id)
            logger.info(f"🎉 [TurnOrchestrator] Topic completed for session {session_id}")
        except TutorError as e:
            logger.error(f"❌ [TurnOrchestrator] Failed to mark {session_id} completed: {e.message}")

    @staticmethod
    def _build_response(
        snapshot: TutorSession,
        result: GenerationResult,
        hint_level: int,
        frustrated: bool,
        topic_completed: bool
    ) -> TurnResponse:
        return TurnResponse(
            success=True,
            tutor_message=result.tutor_message,
            intent=result.intent,
            concept_tags=list(result.concept_tags),
            hint_level=hint_level,
            session_id=snapshot.session_id,
            mastery_score=snapshot.mastery_score,
            current_mastery_step=snapshot.current_mastery_step,
            mastery_step_progress=[StepProgressPayload.from_step(s) for s in snapshot.mastery_step_progress],
            student_frustrated=frustrated,
            topic_completed=topic_completed,
            status_code=200,
        )

    async def get_session_snapshot(self, session_id: str) -> Optional[TutorSession]:
        """Load a stored session without creating one."""
        return await self.session_store.get(session_id)

