"""Configuration management"""
import os
from dotenv import load_dotenv

load_dotenv()

# Document store
# - 'memory' (default): in-process store, state is lost on restart
# - 'postgres': JSONB document table reached through DATABASE_URL
STORE_BACKEND: str = os.getenv("STORE_BACKEND", "memory").lower()
DATABASE_URL: str = os.getenv("DATABASE_URL", "")

# Auth provider (bearer JWT, `sub` claim is the user id)
AUTH_JWT_SECRET: str = os.getenv("AUTH_JWT_SECRET", "")
AUTH_JWT_ALGORITHM: str = os.getenv("AUTH_JWT_ALGORITHM", "HS256")
AUTH_JWT_AUDIENCE: str = os.getenv("AUTH_JWT_AUDIENCE", "")

# AI Sage text generation (any OpenAI-compatible endpoint)
INSIGHT_API_KEY: str = os.getenv("INSIGHT_API_KEY", "")
INSIGHT_BASE_URL: str = os.getenv(
    "INSIGHT_BASE_URL", "https://generativelanguage.googleapis.com/v1beta/openai/"
)
INSIGHT_MODEL: str = os.getenv("INSIGHT_MODEL", "gemini-2.5-flash")
INSIGHT_TIMEOUT_SECONDS: float = float(os.getenv("INSIGHT_TIMEOUT_SECONDS", "20"))

# API
API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
API_PORT: int = int(os.getenv("API_PORT", "8080"))
CORS_ORIGINS: list[str] = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",")
    if origin.strip()
]
RATE_LIMIT: str = os.getenv("RATE_LIMIT", "60/minute")
INSIGHT_RATE_LIMIT: str = os.getenv("INSIGHT_RATE_LIMIT", "10/minute")

# Background challenge sweeps (AI progress, due resolutions, reconciliation); 0 disables
SWEEP_INTERVAL_SECONDS: int = int(os.getenv("SWEEP_INTERVAL_SECONDS", "300"))

# Logging
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")


# Validation
def validate_config() -> None:
    """Validate configuration combinations"""
    from habitquest.exceptions import ConfigurationError

    if STORE_BACKEND not in ("memory", "postgres"):
        raise ConfigurationError(
            f"Unknown STORE_BACKEND '{STORE_BACKEND}'", config_key="STORE_BACKEND"
        )
    if STORE_BACKEND == "postgres" and not DATABASE_URL:
        raise ConfigurationError(
            "DATABASE_URL is required for the postgres store", config_key="DATABASE_URL"
        )
    if INSIGHT_TIMEOUT_SECONDS <= 0:
        raise ConfigurationError(
            "INSIGHT_TIMEOUT_SECONDS must be positive", config_key="INSIGHT_TIMEOUT_SECONDS"
        )
    if SWEEP_INTERVAL_SECONDS < 0:
        raise ConfigurationError(
            "SWEEP_INTERVAL_SECONDS must not be negative", config_key="SWEEP_INTERVAL_SECONDS"
        )
    # Auth secret and insight key are optional: endpoints that need them fail with 503/502
