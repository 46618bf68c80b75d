from __future__ import annotations

from functools import lru_cache
from typing import Any, Literal, Mapping

from pydantic import BaseModel, Field, PostgresDsn
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


class ReasoningSettings(BaseModel):
    base_url: str = Field("https://openrouter.ai/api/v1", description="OpenAI-compatible chat completions base URL.")
    model: str = Field("deepseek/deepseek-r1-0528:free", min_length=1)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    timeout_seconds: float = Field(120.0, ge=1.0, description="HTTP timeout for a single reasoning call.")


class TavilySettings(BaseModel):
    base_url: str = Field("https://api.tavily.com")
    search_depth: Literal["basic", "advanced"] = "advanced"
    default_max_results: int = Field(5, ge=1, le=20)
    timeout_seconds: float = Field(30.0, ge=1.0)


class BrowseAISettings(BaseModel):
    base_url: str = Field("https://api.browse.ai")
    result_delay_seconds: float = Field(
        5.0,
        ge=0.0,
        description="Fixed wait between submitting a robot task and fetching its result.",
    )
    timeout_seconds: float = Field(30.0, ge=1.0)


class ApifySettings(BaseModel):
    base_url: str = Field("https://api.apify.com")
    poll_interval_seconds: float = Field(3.0, ge=0.0)
    max_poll_attempts: int = Field(60, ge=1, description="Status checks before the run is considered stuck.")
    timeout_seconds: float = Field(30.0, ge=1.0)


class ExecutionSettings(BaseModel):
    step_timeout_seconds: float = Field(
        300.0,
        ge=1.0,
        description="Hard ceiling for a single tool dispatch, including provider polling.",
    )
    max_concurrent_tasks: int | None = Field(
        default=None,
        ge=1,
        description="Optional cap on tasks orchestrated at once; unset means unbounded.",
    )


class PostgresSettings(BaseModel):
    dsn: PostgresDsn | None = Field(default=None, description="PostgreSQL DSN for task persistence.")
    pool_min_size: int = Field(1, ge=1)
    pool_max_size: int = Field(10, ge=1)


class PersistenceSettings(BaseModel):
    backend: Literal["memory", "postgres"] = "memory"


class ObservabilitySettings(BaseModel):
    prometheus_enabled: bool = Field(True)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"


class Settings(BaseSettings):
    environment: Literal["local", "test", "production"] = Field("local")
    api_v1_prefix: str = Field("/api/v1")

    openrouter_api_key: str | None = Field(default=None)
    tavily_api_key: str | None = Field(default=None)
    browseai_api_key: str | None = Field(default=None)
    apify_api_key: str | None = Field(default=None)

    reasoning: ReasoningSettings = Field(default_factory=ReasoningSettings)  # type: ignore[arg-type]
    tavily: TavilySettings = Field(default_factory=TavilySettings)  # type: ignore[arg-type]
    browseai: BrowseAISettings = Field(default_factory=BrowseAISettings)  # type: ignore[arg-type]
    apify: ApifySettings = Field(default_factory=ApifySettings)  # type: ignore[arg-type]
    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)  # type: ignore[arg-type]
    postgres: PostgresSettings = Field(default_factory=PostgresSettings)  # type: ignore[arg-type]
    persistence: PersistenceSettings = Field(default_factory=PersistenceSettings)  # type: ignore[arg-type]
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)  # type: ignore[arg-type]

    frontend_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:5173", "http://127.0.0.1:5173"],
        description="Origins permitted to access the API via CORS.",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    def missing_credentials(self) -> list[str]:
        """Return the environment names of every required credential that is unset."""
        required = {
            "OPENROUTER_API_KEY": self.openrouter_api_key,
            "TAVILY_API_KEY": self.tavily_api_key,
            "BROWSEAI_API_KEY": self.browseai_api_key,
            "APIFY_API_KEY": self.apify_api_key,
        }
        if self.persistence.backend == "postgres":
            required["POSTGRES__DSN"] = str(self.postgres.dsn) if self.postgres.dsn else None
        return [name for name, value in required.items() if not (value and value.strip())]

    def require_credentials(self) -> None:
        missing = self.missing_credentials()
        if missing:
            raise ConfigurationError(missing)


@lru_cache(maxsize=1)
def _get_cached_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]


def get_settings(overrides: Mapping[str, Any] | None = None) -> Settings:
    """Return settings, using cached defaults unless overrides are provided."""
    if overrides:
        return Settings(**dict(overrides))
    return _get_cached_settings()
