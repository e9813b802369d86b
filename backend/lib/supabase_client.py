"""
Supabase client for the tutor session store
"""
from typing import Optional
from supabase import create_client, Client

from socratic_math_tutor.config import TutorSettings

_supabase_client: Optional[Client] = None


def get_supabase_client(settings: Optional[TutorSettings] = None) -> Client:
    """Get or create Supabase client singleton"""
    global _supabase_client

    if _supabase_client is None:
        settings = settings or TutorSettings.from_env()

        # Service role key: the backend writes tutor_sessions directly
        if not settings.supabase_url or not settings.supabase_service_key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set when SESSION_BACKEND=supabase")

        _supabase_client = create_client(settings.supabase_url, settings.supabase_service_key)

    return _supabase_client
