"""
Engine configuration using Pydantic settings.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Engine settings."""

    # Database (eligibility verifications and match scores)
    DATABASE_URL: str = "sqlite:///./fundmatch.db"

    # Anthropic API (optional - explanations fall back to templates without it)
    ANTHROPIC_API_KEY: str = ""
    AI_MODEL: str = "claude-sonnet-4-5-20250929"
    AI_MAX_TOKENS: int = 500
    AI_TEMPERATURE: float = 0.7
    AI_REQUEST_TIMEOUT_SECONDS: float = 30.0
    AI_MAX_RETRIES: int = 3

    # Rate limiting and spend guard
    AI_RATE_LIMIT_PER_MINUTE: int = 50
    AI_DAILY_BUDGET_KRW: float = 50000.0
    AI_COST_PER_1K_INPUT_USD: float = 0.003
    AI_COST_PER_1K_OUTPUT_USD: float = 0.015
    USD_TO_KRW: float = 1300.0

    # Circuit breaker
    CIRCUIT_FAILURE_THRESHOLD: int = 5
    CIRCUIT_FAILURE_WINDOW_SECONDS: float = 60.0
    CIRCUIT_OPEN_TIMEOUT_SECONDS: float = 30.0
    CIRCUIT_HALF_OPEN_MAX_REQUESTS: int = 1

    # Explanation cache
    EXPLANATION_CACHE_TTL_SECONDS: int = 24 * 60 * 60  # 24 hours
    EXPLANATION_BATCH_DELAY_SECONDS: float = 1.2  # Stays under 50 req/min
    EXPLANATION_TIMEOUT_SECONDS: float = 45.0  # Whole generation, retries included
    REDIS_URL: str = ""  # Empty = in-process cache

    # Extraction
    SECTION_WINDOW_CHARS: int = 2000

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Application
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    @property
    def ai_cost_per_1k_input_krw(self) -> float:
        """Input token cost per 1K tokens, in KRW."""
        return self.AI_COST_PER_1K_INPUT_USD * self.USD_TO_KRW

    @property
    def ai_cost_per_1k_output_krw(self) -> float:
        """Output token cost per 1K tokens, in KRW."""
        return self.AI_COST_PER_1K_OUTPUT_USD * self.USD_TO_KRW

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra environment variables


settings = Settings()
