"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No pipeline logic
- No behavioral constants (see constants.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to the worker, the pipeline and the live recommender.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str
    worker_id: str

    # ------------------------------------------------------------------
    # LLM configuration
    # ------------------------------------------------------------------

    llm_provider: str
    openai_api_key: str | None
    groq_api_key: str | None

    classifier_model: str
    recommender_model: str
    live_model: str
    summary_model: str

    # ------------------------------------------------------------------
    # Transcription
    # ------------------------------------------------------------------

    deepgram_api_key: str | None
    deepgram_model: str

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    supabase_url: str | None
    supabase_service_key: str | None
    audio_bucket: str

    # ------------------------------------------------------------------
    # Derived
    # ------------------------------------------------------------------

    @property
    def llm_configured(self) -> bool:
        if self.llm_provider.lower() == "groq":
            return bool(self.groq_api_key)
        return bool(self.openai_api_key)

    @property
    def transcription_configured(self) -> bool:
        return bool(self.deepgram_api_key)

    @property
    def storage_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_key)

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Missing service credentials are allowed; the components that need
        them degrade instead of failing at startup.
        """
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            worker_id=os.environ.get("WORKER_ID", f"worker-{os.getpid()}"),

            llm_provider=os.environ.get("LLM_PROVIDER", "openai"),
            openai_api_key=os.environ.get("OPENAI_API_KEY"),
            groq_api_key=os.environ.get("GROQ_API_KEY"),
            classifier_model=os.environ.get("AI_SIGNALS_MODEL", "gpt-4o-mini"),
            recommender_model=os.environ.get("RECOMMENDATIONS_MODEL", "gpt-4o"),
            live_model=os.environ.get("LIVE_MODEL", "gpt-4o-mini"),
            summary_model=os.environ.get("SUMMARY_MODEL", "gpt-4o-mini"),

            deepgram_api_key=os.environ.get("DEEPGRAM_API_KEY"),
            deepgram_model=os.environ.get("DEEPGRAM_MODEL", "nova-2"),

            supabase_url=os.environ.get("SUPABASE_URL"),
            supabase_service_key=os.environ.get("SUPABASE_SERVICE_ROLE_KEY"),
            audio_bucket=os.environ.get("AUDIO_BUCKET", "call-audio"),
        )
