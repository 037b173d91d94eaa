from functools import lru_cache
from pathlib import Path
from typing import Annotated, List, Literal

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = Field(default="Guide Light API", env="APP_NAME", description="Human readable service name")
    environment: str = Field(default="development", env="ENVIRONMENT", description="Deployment environment name")
    debug: bool = Field(default=True, env="DEBUG", description="Enable debug mode")

    cors_origins: Annotated[List[AnyHttpUrl], NoDecode] = Field(
        default_factory=lambda: [
            "http://localhost",
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1",
            "http://127.0.0.1:5173",
        ],
        env="CORS_ORIGINS",
        description="List of allowed CORS origins",
    )

    store_backend: Literal["sql", "memory"] = Field(
        default="sql",
        env="STORE_BACKEND",
        description="Document store implementation backing profiles, groups and messages",
    )
    database_user: str = Field(default="guidelight", env="DATABASE_USER")
    database_password: str = Field(default="guidelight", env="DATABASE_PASSWORD")
    database_host: str = Field(default="db", env="DATABASE_HOST")
    database_port: int = Field(default=3306, env="DATABASE_PORT")
    database_name: str = Field(default="guidelight", env="DATABASE_NAME")

    jwt_secret_key: str = Field(default="changeme", env="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", env="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=60, env="ACCESS_TOKEN_EXPIRE_MINUTES")

    password_min_length: int = Field(default=8, env="PASSWORD_MIN_LENGTH")
    password_reset_token_ttl_seconds: int = Field(
        default=3600,
        env="PASSWORD_RESET_TOKEN_TTL_SECONDS",
        description="Lifetime of password reset tokens",
    )
    password_reset_webhook_url: AnyHttpUrl | None = Field(
        default=None,
        env="PASSWORD_RESET_WEBHOOK_URL",
        description="Optional mail relay receiving password reset requests.",
    )
    auth_cache_url: str | None = Field(
        default=None,
        env="AUTH_CACHE_URL",
        description="Redis URL used for password reset tokens; in-memory when unset.",
    )
    google_client_id: str | None = Field(
        default=None,
        env="GOOGLE_CLIENT_ID",
        description="OAuth client id accepted for federated sign-in.",
    )

    typing_clear_delay_seconds: float = Field(default=5.0, env="TYPING_CLEAR_DELAY_SECONDS")
    typing_debounce_seconds: float = Field(default=3.0, env="TYPING_DEBOUNCE_SECONDS")
    feed_scroll_delay_seconds: float = Field(default=0.1, env="FEED_SCROLL_DELAY_SECONDS")
    reply_snippet_length: int = Field(default=50, env="REPLY_SNIPPET_LENGTH")
    chat_history_default_limit: int = Field(default=50, env="CHAT_HISTORY_DEFAULT_LIMIT")
    chat_history_max_limit: int = Field(default=200, env="CHAT_HISTORY_MAX_LIMIT")
    chat_message_max_length: int = Field(default=4000, env="CHAT_MESSAGE_MAX_LENGTH")

    websocket_keepalive_timeout_seconds: float = Field(
        default=30.0, env="WEBSOCKET_KEEPALIVE_TIMEOUT_SECONDS"
    )
    websocket_keepalive_ping_interval_seconds: float = Field(
        default=30.0, env="WEBSOCKET_KEEPALIVE_PING_INTERVAL_SECONDS"
    )

    realtime_redis_url: str | None = Field(
        default=None,
        env="REALTIME_REDIS_URL",
        description="Redis URL used to fan out store change notices across instances.",
    )
    realtime_namespace: str = Field(default="guidelight.realtime", env="REALTIME_NAMESPACE")
    realtime_node_id: str | None = Field(default=None, env="REALTIME_NODE_ID")

    google_search_api_key: str | None = Field(default=None, env="GOOGLE_SEARCH_API_KEY")
    google_search_cx_id: str | None = Field(default=None, env="GOOGLE_SEARCH_CX_ID")
    google_search_url: str = Field(
        default="https://www.googleapis.com/customsearch/v1", env="GOOGLE_SEARCH_URL"
    )
    llm_api_key: str | None = Field(default=None, env="LLM_API_KEY")
    llm_api_url: str = Field(
        default="https://api.groq.com/openai/v1/chat/completions", env="LLM_API_URL"
    )
    llm_model: str = Field(default="llama-3.3-70b-versatile", env="LLM_MODEL")
    llm_timeout_seconds: float = Field(default=30.0, env="LLM_TIMEOUT_SECONDS")

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[2] / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def database_url(self) -> str:
        return (
            f"mysql+pymysql://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v):  # type: ignore[override]
        if v in (None, "", Ellipsis):
            return v
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        if isinstance(v, (list, tuple, set)):
            return list(v)
        return v


@lru_cache
def get_settings() -> Settings:
    return Settings()
