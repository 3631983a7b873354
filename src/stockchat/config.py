"""Environment-driven configuration for the inventory chat service."""
import os
from dataclasses import dataclass


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.environ.get(name, str(default)))


@dataclass(frozen=True)
class Settings:
    """Process-wide settings, read once at startup."""
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-2.0-flash"
    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_db: str = "inventory"
    app_env: str = "production"

    # Language model call bounds
    llm_max_retries: int = 3
    llm_backoff_seconds: float = 1.0
    llm_timeout_seconds: float = 30.0

    # Store bounds
    query_timeout_seconds: int = 5
    max_results: int = 1000

    # HTTP server
    host: str = "0.0.0.0"
    port: int = 8000
    reload: bool = False

    @property
    def is_development(self) -> bool:
        return self.app_env.lower() == "development"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            gemini_api_key=os.environ.get("GEMINI_API_KEY"),
            gemini_model=os.environ.get("GEMINI_MODEL", "gemini-2.0-flash"),
            mongodb_url=os.environ.get("MONGODB_URL", "mongodb://localhost:27017"),
            mongodb_db=os.environ.get("MONGODB_DB", "inventory"),
            app_env=os.environ.get("APP_ENV", "production"),
            llm_max_retries=max(1, _env_int("LLM_MAX_RETRIES", 3)),
            llm_backoff_seconds=max(0.0, _env_float("LLM_BACKOFF_SECONDS", 1.0)),
            llm_timeout_seconds=max(1.0, _env_float("LLM_TIMEOUT_SECONDS", 30.0)),
            query_timeout_seconds=max(1, _env_int("QUERY_TIMEOUT_SECONDS", 5)),
            max_results=max(1, _env_int("MAX_RESULTS", 1000)),
            host=os.environ.get("HOST", "0.0.0.0"),
            port=_env_int("PORT", 8000),
            reload=os.environ.get("RELOAD", "false").lower() == "true",
        )
