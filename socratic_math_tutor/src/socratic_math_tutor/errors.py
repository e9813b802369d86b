"""
Tutor Error Taxonomy

Every failure the turn pipeline can raise. Each error carries the HTTP-style
status the transport layer should use; the orchestrator decides which ones
abort a turn and which ones are only logged.
"""

from typing import Optional


class TutorError(Exception):
    """Base class for all tutoring pipeline errors."""
    status_code = 500

    def __init__(self, message: str, session_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.session_id = session_id


class InputError(TutorError):
    """Request is missing identifiers or a required student message."""
    status_code = 400


class StoreUnavailable(TutorError):
    """Session persistence store could not be reached or kept rejecting writes."""
    status_code = 503


class SessionNotFound(TutorError):
    """Session disappeared between read and write."""
    status_code = 404


class ContentUnavailable(TutorError):
    """No curriculum content exists for the resolved path."""
    status_code = 404


class GenerationFailure(TutorError):
    """Language model errored, timed out or returned unusable output."""
    status_code = 502


class ProgressUpdateFailure(TutorError):
    """Progress bookkeeping failed. Never fatal for a turn."""
    status_code = 500
