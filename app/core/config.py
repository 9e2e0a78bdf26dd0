"""Application configuration settings.

This module defines the application-wide settings using Pydantic's BaseSettings.
It allows for loading configurations from environment variables and .env files,
providing type validation and default values.
"""

from typing import Literal

from pydantic import Field
from pydantic import field_validator
from pydantic_settings import BaseSettings

# Default list of CORS allowed origins
DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://localhost:8000",
    "http://0.0.0.0:8000",  # Add this for local development with 0.0.0.0 host
]

# Palette handed to the visual report prompt (hex, no leading '#')
DEFAULT_VISUAL_PALETTE = ["0A2463", "1E5EF3", "00A8E8", "38B6FF", "8CDBFF"]


class Settings(BaseSettings):
    """Manages application settings, loading them from environment variables or an .env file.

    Attributes:
        openrouter_api_key: API key for OpenRouter services.
        openrouter_base_url: Base URL of the OpenAI-compatible completion endpoint.
        stance_model: Model used for per-question stance analysis.
        narrative_model: Model used for the project-wide narrative report.
        visual_model: Model used for the HTML visual report.
        summary_model: Model used for the concise llms.txt summary.
        summary_extended_model: Model used for the extended llms-full.txt summary.
        max_total_prompt_chars: Maximum characters allowed for a total assembled prompt.
        stance_fanout_concurrency: Maximum concurrent stance generations per project report.
        visual_palette: Colour palette for the visual report template.
        visual_font_family: Font family for the visual report template.
        visual_max_width_px: Content max width for the visual report template.
        output_language: Natural language the generated documents are written in.
        storage_backend: Either "supabase" or "memory".
        api_key: General API key for securing internal API endpoints.
        log_level: Level of the application loggers (uvicorn stays at INFO).
        cors_allowed_origins: List of allowed origins for CORS.
        LLM_CONNECT_TIMEOUT: LLM client connect timeout in seconds.
        LLM_READ_TIMEOUT: LLM client read timeout in seconds.
        llm_request_timeout: Hard upper bound for one completion call, retries included.
    """

    openrouter_api_key: str | None = Field(default=None)
    openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1")

    stance_model: str = Field(default="anthropic/claude-3.7-sonnet")
    narrative_model: str = Field(default="google/gemini-2.0-flash-001")
    visual_model: str = Field(default="anthropic/claude-3.7-sonnet")
    summary_model: str = Field(default="google/gemini-2.0-flash-001")
    summary_extended_model: str = Field(default="anthropic/claude-3.7-sonnet")

    llm_max_tokens: int = Field(default=8000)
    llm_temperature: float = Field(default=0.2)
    llm_max_attempts: int = Field(default=3)
    llm_retry_min_wait: float = Field(default=2.0)
    llm_retry_max_wait: float = Field(default=10.0)

    max_total_prompt_chars: int = Field(default=4_000_000)
    stance_fanout_concurrency: int = Field(default=4)

    visual_palette: list[str] = Field(default_factory=lambda: list(DEFAULT_VISUAL_PALETTE))
    visual_font_family: str = Field(default="Zen Maru Gothic")
    visual_max_width_px: int = Field(default=600)
    output_language: str = Field(default="Japanese")

    storage_backend: Literal["supabase", "memory"] = Field(default="supabase")
    supabase_url: str | None = Field(default=None)
    supabase_key: str | None = Field(default=None)
    artifact_table: str = Field(default="analysis_artifacts")
    projects_table: str = Field(default="projects")
    comments_table: str = Field(default="comments")

    api_key: str | None = Field(default=None)
    log_level: str = Field(default="INFO")

    cors_allowed_origins: list[str] = Field(
        default_factory=lambda: list(DEFAULT_CORS_ORIGINS),  # Use a copy of the default list
    )

    LLM_CONNECT_TIMEOUT: float = Field(default=10.0, description="LLM client connect timeout in seconds.")
    LLM_READ_TIMEOUT: float = Field(default=180.0, description="LLM client read timeout in seconds.")
    llm_request_timeout: float = Field(default=300.0, description="Upper bound for one completion call in seconds.")

    model_config = {
        "env_file": ".env",
        "protected_namespaces": ("settings_",),
        "env_prefix": "",  # No prefix for environment variables
        "extra": "ignore",  # Ignore extra fields
    }

    @field_validator("cors_allowed_origins", mode="before")  # type: ignore
    @classmethod
    def assemble_cors_origins(cls, v: str | list[str] | None) -> list[str]:
        """Assembles the list of CORS allowed origins.

        If 'v' is a string, it splits it by commas. If 'v' is already a list,
        it's used directly. Otherwise, returns the default list of origins.
        """
        if isinstance(v, str) and v:
            return [origin.strip() for origin in v.split(",")]
        elif isinstance(v, list):
            return v
        # Return the default if env var is empty or not a string/list
        return list(DEFAULT_CORS_ORIGINS)  # Use a copy of the default list

    @field_validator("visual_palette", mode="before")  # type: ignore
    @classmethod
    def assemble_palette(cls, v: str | list[str] | None) -> list[str]:
        if isinstance(v, str) and v:
            return [colour.strip().lstrip("#") for colour in v.split(",")]
        elif isinstance(v, list):
            return v
        return list(DEFAULT_VISUAL_PALETTE)


settings = Settings()
