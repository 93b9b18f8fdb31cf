import os
from datetime import timedelta
from functools import lru_cache

from coursecert.services.retake_policy import InterviewPolicyConfig


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


class Settings:
    """Application settings loaded from environment variables with validation."""

    # Database settings
    @property
    def db_user(self) -> str:
        return os.getenv("DB_USER", "postgres")

    @property
    def db_password(self) -> str:
        return os.getenv("DB_PASSWORD", "postgres")

    @property
    def db_host(self) -> str:
        return os.getenv("DB_HOST", "postgres")

    @property
    def db_port(self) -> str:
        return os.getenv("DB_PORT", "5432")

    @property
    def db_name(self) -> str:
        return os.getenv("DB_NAME", "coursecert")

    @property
    def database_url(self) -> str:
        explicit = os.getenv("DATABASE_URL", "").strip()
        if explicit:
            return explicit
        return (
            f"postgresql+asyncpg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    @property
    def db_echo(self) -> bool:
        return os.getenv("DB_ECHO", "false").lower() in {"1", "true", "yes"}

    @property
    def db_auto_create(self) -> bool:
        """Create missing tables at startup (local development only)"""
        return os.getenv("DB_AUTO_CREATE", "false").lower() in {"1", "true", "yes"}

    # LLM Provider Configuration
    @property
    def primary_llm_provider(self) -> str:
        """Primary LLM provider: openai or gemini"""
        return os.getenv("PRIMARY_LLM_PROVIDER", "openai").lower()

    @property
    def openai_api_key(self) -> str | None:
        return os.getenv("OPENAI_API_KEY")

    @property
    def openai_model(self) -> str:
        return os.getenv("OPENAI_MODEL", "gpt-4o-mini")

    @property
    def gemini_api_key(self) -> str | None:
        return os.getenv("GEMINI_API_KEY")

    @property
    def gemini_model(self) -> str:
        return os.getenv("GEMINI_MODEL", "gemini-2.0-flash-001")

    @property
    def llm_timeout_seconds(self) -> float:
        return _float_env("LLM_TIMEOUT_SECONDS", 30.0)

    @property
    def llm_max_retries(self) -> int:
        return max(1, _int_env("LLM_MAX_RETRIES", 3))

    # Interview thresholds (tunable via env)
    @property
    def interview_min_pass_score(self) -> int:
        return _int_env("INTERVIEW_MIN_PASS_SCORE", 70)

    @property
    def interview_max_attempts(self) -> int:
        return _int_env("INTERVIEW_MAX_ATTEMPTS", 3)

    @property
    def interview_cooldown_seconds(self) -> int:
        return _int_env("INTERVIEW_COOLDOWN_SECONDS", 7 * 24 * 3600)

    @property
    def questions_min(self) -> int:
        return _int_env("QUESTIONS_MIN", 8)

    @property
    def questions_max(self) -> int:
        return _int_env("QUESTIONS_MAX", 15)

    def interview_policy(self) -> InterviewPolicyConfig:
        return InterviewPolicyConfig(
            min_pass_score=self.interview_min_pass_score,
            max_attempts=self.interview_max_attempts,
            cooldown=timedelta(seconds=self.interview_cooldown_seconds),
        )

    # Security & Secrets
    @property
    def environment(self) -> str:
        return os.getenv("ENVIRONMENT", "development")

    @property
    def jwt_secret(self) -> str:
        val = os.getenv("JWT_SECRET", "")
        if self.environment == "production":
            if len(val) < 32:
                raise ValueError("JWT_SECRET must be set and at least 32 characters in production")
        elif not val:
            # Dev-safe default; DO NOT use in production
            val = "dev-jwt-secret-please-change".ljust(32, "_")
        return val

    @property
    def jwt_algorithm(self) -> str:
        return os.getenv("JWT_ALGORITHM", "HS256")

    # CORS origins (comma-separated). If empty, defaults are used in main.py
    @property
    def cors_allowed_origins(self) -> list[str]:
        raw = os.getenv("ALLOWED_ORIGINS", "").strip()
        if not raw:
            return []
        return [o.strip() for o in raw.split(",") if o.strip()]

    @property
    def log_level(self) -> str:
        return os.getenv("LOG_LEVEL", "INFO").upper()

    @property
    def debug(self) -> bool:
        return os.getenv("DEBUG", "false").lower() in {"1", "true", "yes"}


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
