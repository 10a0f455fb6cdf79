# chatgate/core/settings.py
from __future__ import annotations

from functools import lru_cache
from typing import Dict, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_ignore_empty=True, extra="ignore")

    app_env: str = "dev"
    app_name: str = "Chat Gateway"
    app_host: str = "127.0.0.1"
    app_port: int = 8000

    log_level: str = "INFO"
    log_format: str = Field(default="json", validation_alias="LOG_FORMAT")  # json|plain
    db_url: str = "sqlite:///data/app.db"

    # Identity is issued upstream; the proxy forwards the user id in this header
    user_id_header: str = Field(default="X-User-Id", validation_alias="USER_ID_HEADER")
    cors_allowed_origins: str = Field(default="http://127.0.0.1:5173", validation_alias="CORS_ALLOWED_ORIGINS")

    # Provider endpoints (OpenAI-compatible)
    openai_base_url: str = Field(default="https://api.openai.com/v1", validation_alias="OPENAI_BASE_URL")
    anthropic_base_url: str = Field(default="https://api.anthropic.com/v1", validation_alias="ANTHROPIC_BASE_URL")
    google_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta/openai", validation_alias="GOOGLE_BASE_URL"
    )
    groq_base_url: str = Field(default="https://api.groq.com/openai/v1", validation_alias="GROQ_BASE_URL")
    openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1", validation_alias="OPENROUTER_BASE_URL")
    provider_timeout_sec: float = Field(default=120.0, validation_alias="PROVIDER_TIMEOUT_SEC")

    # Server-side keys (internal i3-* adapters and charged OpenRouter fallback)
    internal_openai_api_key: Optional[str] = Field(default=None, validation_alias="INTERNAL_OPENAI_API_KEY")
    internal_anthropic_api_key: Optional[str] = Field(default=None, validation_alias="INTERNAL_ANTHROPIC_API_KEY")
    internal_google_api_key: Optional[str] = Field(default=None, validation_alias="INTERNAL_GOOGLE_API_KEY")
    internal_groq_api_key: Optional[str] = Field(default=None, validation_alias="INTERNAL_GROQ_API_KEY")
    openrouter_api_key: Optional[str] = Field(default=None, validation_alias="OPENROUTER_API_KEY")

    # Attachment store
    attachments_base_url: str = Field(default="http://127.0.0.1:9000/chat-assets", validation_alias="ATTACHMENTS_BASE_URL")
    attachments_token: Optional[str] = Field(default=None, validation_alias="ATTACHMENTS_TOKEN")
    attachments_timeout_sec: float = Field(default=30.0, validation_alias="ATTACHMENTS_TIMEOUT_SEC")

    # Plan limits (requests per 1d window)
    free_requests_1d: int = Field(default=60, validation_alias="FREE_REQUESTS_1D")
    pro_requests_1d: int = Field(default=1_000_000_000, validation_alias="PRO_REQUESTS_1D")

    # Generation
    max_steps: int = Field(default=100, validation_alias="MAX_STEPS")
    default_image_size: str = Field(default="1:1", validation_alias="DEFAULT_IMAGE_SIZE")
    default_title_model: str = Field(default="gpt-4o-mini", validation_alias="DEFAULT_TITLE_MODEL")
    title_max_chars: int = Field(default=50, validation_alias="TITLE_MAX_CHARS")

    # Streaming
    stream_heartbeat_sec: float = Field(default=10.0, validation_alias="STREAM_HEARTBEAT_SEC")
    stream_resume_grace_sec: float = Field(default=30.0, validation_alias="STREAM_RESUME_GRACE_SEC")

    # Tool services (server fallbacks when a user has no key of their own)
    tavily_api_key: Optional[str] = Field(default=None, validation_alias="TAVILY_API_KEY")
    brave_api_key: Optional[str] = Field(default=None, validation_alias="BRAVE_API_KEY")
    serper_api_key: Optional[str] = Field(default=None, validation_alias="SERPER_API_KEY")
    firecrawl_api_key: Optional[str] = Field(default=None, validation_alias="FIRECRAWL_API_KEY")
    supermemory_api_key: Optional[str] = Field(default=None, validation_alias="SUPERMEMORY_API_KEY")
    supermemory_base_url: str = Field(default="https://api.supermemory.ai", validation_alias="SUPERMEMORY_BASE_URL")
    tool_timeout_sec: float = Field(default=30.0, validation_alias="TOOL_TIMEOUT_SEC")
    search_max_results: int = Field(default=5, validation_alias="SEARCH_MAX_RESULTS")

    @property
    def db_dialect(self) -> str:
        return self.db_url.split(":", 1)[0] if ":" in self.db_url else self.db_url

    def internal_key(self, provider: str) -> Optional[str]:
        keys: Dict[str, Optional[str]] = {
            "openai": self.internal_openai_api_key,
            "anthropic": self.internal_anthropic_api_key,
            "google": self.internal_google_api_key,
            "groq": self.internal_groq_api_key,
        }
        return keys.get(provider)

    def provider_base_url(self, provider: str) -> Optional[str]:
        urls: Dict[str, str] = {
            "openai": self.openai_base_url,
            "anthropic": self.anthropic_base_url,
            "google": self.google_base_url,
            "groq": self.groq_base_url,
            "openrouter": self.openrouter_base_url,
        }
        return urls.get(provider)


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return AppSettings()
