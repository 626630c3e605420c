"""
Configuration & Settings
Hospitality Reputation Tracker
"""

from pydantic import BaseModel
from typing import Optional
import os

from dotenv import load_dotenv

load_dotenv()


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


class Settings(BaseModel):
    # App
    APP_NAME: str = "Hospitality Reputation Tracker"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = os.getenv("DEBUG", "").lower() in ("1", "true", "yes")

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./reputation.db")

    # Upstream credentials
    GOOGLE_PLACES_API_KEY: Optional[str] = os.getenv("GOOGLE_PLACES_API_KEY")
    SERPAPI_API_KEY: Optional[str] = os.getenv("SERPAPI_API_KEY")
    APIFY_API_TOKEN: Optional[str] = os.getenv("APIFY_API_TOKEN")
    RAPIDAPI_KEY: Optional[str] = os.getenv("RAPIDAPI_KEY")

    # LLM gateway (OpenAI-compatible chat completions)
    LLM_GATEWAY_URL: str = os.getenv(
        "LLM_GATEWAY_URL", "https://ai.gateway.lovable.dev/v1/chat/completions"
    )
    LLM_API_KEY: Optional[str] = os.getenv("LLM_API_KEY")
    LLM_MODEL: str = os.getenv("LLM_MODEL", "google/gemini-3-flash-preview")
    MAX_REVIEWS_FOR_INSIGHTS: int = 25

    # HTTP
    REQUEST_TIMEOUT: float = _env_float("REQUEST_TIMEOUT", 30.0)
    APIFY_WAIT_SECONDS: float = 180.0
    APIFY_POLL_SECONDS: float = 5.0
    USER_AGENT: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )

    # Refresh pacing. Fixed delays, not adaptive.
    DELAY_BETWEEN_CALLS_SECONDS: float = _env_float("DELAY_BETWEEN_CALLS_SECONDS", 5.0)
    RETRY_DELAY_SECONDS: float = _env_float("RETRY_DELAY_SECONDS", 10.0)
    MAX_FETCH_RETRIES: int = 1
    RESOLVE_PACING_SECONDS: float = 2.0
    RESOLVE_SOURCE_PAUSE_SECONDS: float = 1.0

    # Auto-heal
    HEAL_BATCH_SIZE: int = _env_int("HEAL_BATCH_SIZE", 3)
    HEAL_MAX_RETRIES: int = _env_int("HEAL_MAX_RETRIES", 3)
    HEAL_BATCH_DELAY_SECONDS: float = 5.0
    HEAL_RETRY_DELAY_SECONDS: float = 10.0

    # Resolver confidence
    GOOGLE_MATCH_CONFIDENCE: float = 0.9
    OTA_MATCH_CONFIDENCE: float = 0.85
    WEAK_CANDIDATE_CONFIDENCE: float = 0.3

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = _env_int("API_PORT", 8000)


settings = Settings()
