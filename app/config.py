from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_UPSTREAM_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = "gemini-2.5-flash-image-preview"


class ConfigError(RuntimeError):
    pass


class Settings(BaseSettings):
    """Relay configuration read from the environment and an optional ``.env``."""

    gemini_api_key: str = Field(default="", description="Gemini API key, kept server-side")
    port: int = Field(default=3001, description="Listening port")
    host: str = Field(default="0.0.0.0", description="Bind address")
    cors_origin: str | None = Field(default=None, description="Comma-separated CORS allow-list, any origin when unset")
    gemini_model: str = Field(default=DEFAULT_MODEL, description="Upstream image model")
    upstream_base_url: str = Field(default=DEFAULT_UPSTREAM_BASE_URL, description="Upstream API root")
    upstream_timeout: float = Field(default=120.0, description="Outbound call timeout in seconds")
    rate_limit_max: int = Field(default=30, description="Requests per window per address on /api/")
    rate_limit_window: float = Field(default=60.0, description="Rate limit window in seconds")
    max_body_bytes: int = Field(default=12 * 1024 * 1024, description="Inbound body ceiling")
    static_dir: str = Field(default="static", description="Front-end directory")
    log_level: str = Field(default="INFO", description="Loguru level")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def cors_origins(self) -> list[str] | None:
        if not self.cors_origin:
            return None
        origins = [origin.strip() for origin in self.cors_origin.split(",") if origin.strip()]
        return origins or None

    @property
    def model_url(self) -> str:
        return f"{self.upstream_base_url.rstrip('/')}/models/{self.gemini_model}:generateContent"


def load_settings(env_file: str | None = ".env") -> Settings:
    """Build settings from the environment, reading ``env_file`` first.

    Raises ``ConfigError`` when ``GEMINI_API_KEY`` is missing so the caller can
    refuse to start. Malformed values surface as pydantic ``ValidationError``.
    """
    settings = Settings(_env_file=env_file)
    if not settings.gemini_api_key:
        raise ConfigError("Missing GEMINI_API_KEY env var.")
    return settings
