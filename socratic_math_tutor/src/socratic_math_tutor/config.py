"""
Tutor Configuration

Reads all runtime settings from the environment (optionally via a .env file).
"""

import os
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

load_dotenv()
load_dotenv('../.env')  # Also try parent directory


@dataclass
class TutorSettings:
    """Runtime settings for the tutoring service."""
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    llm_timeout_seconds: float = 30.0
    llm_temperature: float = 0.3
    llm_max_tokens: int = 600
    # "memory" or "supabase"
    session_backend: str = "memory"
    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None
    curriculum_root: str = "curriculum"
    max_student_message_length: int = 500
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "TutorSettings":
        """Build settings from environment variables."""
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            llm_timeout_seconds=float(os.getenv("LLM_TIMEOUT_SECONDS", "30")),
            llm_temperature=float(os.getenv("LLM_TEMPERATURE", "0.3")),
            llm_max_tokens=int(os.getenv("LLM_MAX_TOKENS", "600")),
            session_backend=os.getenv("SESSION_BACKEND", "memory").lower(),
            supabase_url=os.getenv("SUPABASE_URL"),
            supabase_service_key=os.getenv("SUPABASE_SERVICE_KEY"),
            curriculum_root=os.getenv("CURRICULUM_ROOT", "curriculum"),
            max_student_message_length=int(os.getenv("MAX_STUDENT_MESSAGE_LENGTH", "500")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    @property
    def use_supabase(self) -> bool:
        return self.session_backend == "supabase"
