"""
Central feature flags. One file controls every external dependency.

Set via environment variables (prefix FF_) or .env file.
When a flag is OFF, the system uses a local fallback. Nothing crashes.
"""

from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FeatureFlags(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Auth ─────────────────────────────────────────────────────────
    use_auth0: bool = Field(default=True, alias="FF_USE_AUTH0")
    # ON  → JWT validated via Auth0 JWKS. Needs AUTH0_DOMAIN, AUTH0_AUDIENCE.
    # OFF → Dev user injected whenever an Authorization header is present.

    # ── Cache / Realtime / Locks ─────────────────────────────────────
    use_redis: bool = Field(default=True, alias="FF_USE_REDIS")
    # ON  → Redis pub/sub for onboarding events + cross-process session locks.
    # OFF → Events silently skipped, locks held in-process only.

    # ── LLM Provider ─────────────────────────────────────────────────
    llm_provider: str = Field(default="gemini", alias="FF_LLM_PROVIDER")
    # "gemini"     → Google Gemini (OpenAI-compatible endpoint). Needs GEMINI_API_KEY.
    # "openrouter" → OpenRouter proxy. Needs OPENROUTER_API_KEY.
    # "openai"     → Direct OpenAI. Needs OPENAI_API_KEY.

    # ── Executors ────────────────────────────────────────────────────
    use_reference_lookup: bool = Field(default=True, alias="FF_USE_REFERENCE_LOOKUP")
    # ON  → fetch_reference_details asks the LLM for published vessel specs.
    # OFF → The operation reports that no reference data is available.


@lru_cache
def get_flags() -> FeatureFlags:
    return FeatureFlags()
