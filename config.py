from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    ai_gateway_url: str = "https://ai.gateway.lovable.dev/v1"
    ai_gateway_api_key: str = "PLACEHOLDER_AI_GATEWAY_KEY"
    jwt_secret_key: str = "dev-only-insights-secret-change-me-0000"
    database_path: str = "insights.db"
    cors_origins: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # AI round trip
    ai_model: str = "google/gemini-2.5-flash"
    ai_temperature: float = 0.3
    ai_timeout_sec: float = 60.0  # hard wall clock for the whole round trip

    # Regeneration rate limit (per caller identity)
    rate_limit_max_requests: int = 10
    rate_limit_window_sec: float = 60.0

    # Synthesis context bounds
    max_context_calls: int = 10
    max_context_emails: int = 10
    call_excerpt_chars: int = 1000
    email_excerpt_chars: int = 500
    max_summary_items: int = 5

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
